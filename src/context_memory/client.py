"""Chat client that keeps a bounded memory buffer and optional rolling summaries."""
from __future__ import annotations

import logging
from typing import Any, Optional, Tuple

from .buffer import MemoryBuffer, Turn, assert_buffer
from .config import MemoryConfig
from .messages import ChatModel
from .summarizer import DEFAULT_SUMMARY_SYSTEM, RollingSummarizer, clamp_window
from .text import to_text

logger = logging.getLogger(__name__)

PROMPT_MODE = "annotated"


def _ask(model: ChatModel, prompt: str) -> str:
    if callable(model):
        reply = model([{"role": "user", "content": prompt}])
    else:
        reply = model.chat([{"role": "user", "content": prompt}])
    return to_text(reply)


def last_assistant_text(buffer: MemoryBuffer) -> str:
    """Text of the most recent assistant row, or ``""``."""
    turn = assert_buffer(buffer).last("assistant")
    return turn.text if turn is not None else ""


def print_last_reply(buffer: MemoryBuffer) -> str:
    text = last_assistant_text(buffer)
    print(text)
    return text


def chat_with_memory_one_shot(
    buffer: MemoryBuffer,
    user_msg: str,
    model: ChatModel,
    followup: Optional[str] = None,
) -> str:
    """Send one turn with the buffer as context and record both sides.

    ``followup`` (e.g. "Answer in 2 sentences.") replaces the user message as
    the trailing prompt section; the user message is still stored.
    """
    assert_buffer(buffer)
    buffer.append("user", user_msg)
    prompt = buffer.compose_prompt(followup if followup is not None else user_msg, mode=PROMPT_MODE)
    reply = _ask(model, prompt)
    buffer.append("assistant", reply)
    return reply


class ContextChatClient:
    """A persistent chat session over a :class:`MemoryBuffer`.

    Parameters
    ----------
    model : ChatModel
        Called with ``[{"role": "user", "content": prompt}]`` for chat turns
        and with the summarization message list for summaries.
    capacity : int
        Maximum rows in the buffer (raw turns + summaries).
    system_prompt : str | None
        Rendered at the top of every prompt.
    summary_n : int | None
        Summarize every ``summary_n`` raw turns; ``None`` disables summaries.
        Values above ``capacity - 1`` are reduced with a warning.
    summary_system : str
        System prompt for the summarizer.
    buffer : MemoryBuffer | None
        Reuse an existing buffer (e.g. one restored from disk) instead of
        creating one; ``capacity`` and ``system_prompt`` are then ignored.
    """

    def __init__(
        self,
        model: ChatModel,
        capacity: int = 10,
        system_prompt: Optional[str] = "Answer concisely and use prior context.",
        summary_n: Optional[int] = None,
        summary_system: str = DEFAULT_SUMMARY_SYSTEM,
        *,
        buffer: Optional[MemoryBuffer] = None,
    ) -> None:
        self.model = model
        self._buffer = assert_buffer(buffer) if buffer is not None else MemoryBuffer(
            capacity=capacity, system_prompt=system_prompt
        )

        self.summarizer: Optional[RollingSummarizer] = None
        if summary_n is not None:
            n = clamp_window(summary_n, self._buffer.capacity)
            if n is not None:
                self.summarizer = RollingSummarizer(model, n=n, system_prompt=summary_system)

    @classmethod
    def from_config(cls, model: ChatModel, config: MemoryConfig) -> "ContextChatClient":
        buffer = MemoryBuffer(
            capacity=config.capacity,
            system_prompt=config.system_prompt,
            autosave=config.autosave,
            save_dir=config.save_dir,
            save_file=config.save_file,
        )
        return cls(
            model,
            summary_n=config.summary_window,
            summary_system=config.summary_system,
            buffer=buffer,
        )

    # --------- accessors ----------
    @property
    def memory(self) -> MemoryBuffer:
        return self._buffer

    def turns(self) -> Tuple[Turn, ...]:
        return self._buffer.read()

    def clear(self) -> MemoryBuffer:
        return self._buffer.clear()

    # --------- chat ----------
    def _record(self, role: str, content: Any) -> None:
        if self.summarizer is None:
            self._buffer.append(role, content)
        else:
            self.summarizer.add_and_summarize(self._buffer, role, content)

    def chat(self, user_msg: str, followup: Optional[str] = None) -> str:
        """Record ``user_msg``, ask the model with the buffered context, record and return the reply."""
        self._record("user", user_msg)

        ask = user_msg if followup is None else followup
        prompt = self._buffer.compose_prompt(ask, mode=PROMPT_MODE)
        reply = _ask(self.model, prompt)

        self._record("assistant", reply)
        return reply
