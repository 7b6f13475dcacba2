"""Rolling summaries over a MemoryBuffer.

After a raw turn is appended, the next window of ``n`` user/assistant rows
that no surviving summary covers yet is sent to a chat model and the reply is
appended as a ``system`` row labelled ``"summary"``. The row's annotations
record which logical positions it covers::

    {"is_summary": True, "covered_from": 1, "covered_through": 4, "window_size": 4}

Coverage is read back from those annotations on every call, so the
summarizer holds no state of its own. Once a summary row is evicted its
coverage record is gone with it.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional, Sequence, Set, Tuple

from .buffer import RAW_ROLES, SUMMARY_LABEL, MemoryBuffer, Turn, assert_buffer
from .errors import ExternalFailure, InvalidArgument
from .messages import ChatMessage, ChatModel
from .text import to_text

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY_WINDOW = 5
DEFAULT_SUMMARY_SYSTEM = (
    "You are a concise scribe. Summarize faithfully in <=120 words; "
    "include decisions, actions, open questions."
)
SUMMARY_INSTRUCTION = "Summarize this window of dialogue:"
FALLBACK_PREFIX = "SUMMARY (fallback): "
FALLBACK_SEPARATOR = " | "

_reported_clamps: Set[Tuple[Any, int]] = set()


# -----------------------------
# Coverage bookkeeping
# -----------------------------
def last_covered_index(turns: Iterable[Turn]) -> int:
    """Highest ``covered_through`` among surviving summary rows; 0 if none."""
    best = 0
    for turn in turns:
        if not turn.is_summary:
            continue
        through = turn.annotations.get("covered_through")
        if isinstance(through, int) and not isinstance(through, bool) and through > best:
            best = through
    return best


def eligible_turns(turns: Iterable[Turn], last_covered: int) -> List[Turn]:
    """Raw user/assistant rows appended after ``last_covered``, in position order."""
    rows = [t for t in turns if t.role in RAW_ROLES and t.position > last_covered]
    rows.sort(key=lambda t: t.position)
    return rows


def clamp_window(n: Any, capacity: int, warn: bool = True) -> Optional[int]:
    """Limit ``n`` to ``capacity - 1`` so a summary always fits beside its window.

    Returns None (summarization off) when the buffer is too small to hold
    even a one-turn window plus its summary. ``warn=False`` silences the
    warning about the adjustment.
    """
    if isinstance(n, bool) or not isinstance(n, int) or n < 1:
        raise InvalidArgument(f"summary window must be a positive integer, got {n!r}")
    limit = capacity - 1
    if n <= limit:
        return n
    if limit < 1:
        if warn:
            logger.warning(
                "summary window %d cannot fit in capacity %d; summarization disabled.", n, capacity
            )
        return None
    if warn:
        logger.warning(
            "summary window (%d) is larger than capacity - 1 (%d). Reducing it to %d.",
            n, limit, limit,
        )
    return limit


# -----------------------------
# Model call
# -----------------------------
def build_summary_messages(window: Sequence[Turn], system_prompt: str) -> List[ChatMessage]:
    messages: List[ChatMessage] = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": SUMMARY_INSTRUCTION},
    ]
    messages.extend({"role": t.role, "content": t.text} for t in window)
    return messages


def fallback_summary(window: Sequence[Turn]) -> str:
    return FALLBACK_PREFIX + FALLBACK_SEPARATOR.join(t.text for t in window)


def invoke_model(model: Any, messages: List[ChatMessage]) -> str:
    """Call ``model`` (a callable, or an object with ``.chat``) and return its reply text.

    Raises
    ------
    ExternalFailure
        The model raised, is not callable, or replied with blank text.
    """
    if callable(model):
        call = model
    elif callable(getattr(model, "chat", None)):
        call = model.chat
    else:
        raise ExternalFailure(f"unsupported model type for summarization: {type(model).__name__}")

    try:
        reply = call(messages)
    except Exception as e:
        raise ExternalFailure(f"model call failed: {e}") from e

    text = to_text(reply)
    if not text.strip():
        raise ExternalFailure("model returned an empty summary")
    return text


# -----------------------------
# Public API
# -----------------------------
def maybe_summarize_latest_window(
    buffer: MemoryBuffer,
    model: ChatModel,
    n: int = DEFAULT_SUMMARY_WINDOW,
    system_prompt: str = DEFAULT_SUMMARY_SYSTEM,
) -> Optional[Turn]:
    """Append at most one summary row. Returns it, or None if nothing was summarized."""
    assert_buffer(buffer)
    window_size = clamp_window(n, buffer.capacity, warn=False)
    # Repeated calls with the same oversized window only warn the first time.
    if window_size != n and (n, buffer.capacity) not in _reported_clamps:
        _reported_clamps.add((n, buffer.capacity))
        clamp_window(n, buffer.capacity)
    if window_size is None:
        return None

    turns = buffer.read()
    last_covered = last_covered_index(turns)
    candidates = eligible_turns(turns, last_covered)
    if len(candidates) < window_size:
        return None

    window = candidates[:window_size]
    messages = build_summary_messages(window, system_prompt)
    try:
        summary_text = invoke_model(model, messages)
    except ExternalFailure as e:
        logger.warning(
            "Summarizer failed for positions %d-%d, using local fallback: %s",
            window[0].position, window[-1].position, e,
        )
        summary_text = fallback_summary(window)

    buffer.append(
        "system",
        summary_text,
        label=SUMMARY_LABEL,
        annotations={
            "is_summary": True,
            "covered_from": window[0].position,
            "covered_through": window[-1].position,
            "window_size": window_size,
        },
    )
    logger.debug(
        "Appended summary covering positions %d-%d", window[0].position, window[-1].position
    )
    return buffer.last("system")


def memory_add_and_summarize(
    buffer: MemoryBuffer,
    role: str,
    content: Any,
    model: Optional[ChatModel] = None,
    n: int = DEFAULT_SUMMARY_WINDOW,
    system_prompt: str = DEFAULT_SUMMARY_SYSTEM,
) -> MemoryBuffer:
    """Append a raw user/assistant turn, then summarize the next window if one is ready.

    With ``model=None`` this is a plain append.
    """
    assert_buffer(buffer)
    if role not in RAW_ROLES:
        raise InvalidArgument(f"role must be one of {RAW_ROLES}, got {role!r}")
    buffer.append(role, content)
    if model is not None:
        maybe_summarize_latest_window(buffer, model, n=n, system_prompt=system_prompt)
    return buffer


class RollingSummarizer:
    """Bundles a model with its window size and prompt.

    ``n`` is checked against the buffer capacity on each call, not here,
    because capacity can change between calls.
    """

    def __init__(
        self,
        model: ChatModel,
        n: int = DEFAULT_SUMMARY_WINDOW,
        system_prompt: str = DEFAULT_SUMMARY_SYSTEM,
    ) -> None:
        if isinstance(n, bool) or not isinstance(n, int) or n < 1:
            raise InvalidArgument(f"summary window must be a positive integer, got {n!r}")
        self.model = model
        self.n = n
        self.system_prompt = system_prompt

    def __call__(self, buffer: MemoryBuffer) -> Optional[Turn]:
        return maybe_summarize_latest_window(buffer, self.model, n=self.n, system_prompt=self.system_prompt)

    def add_and_summarize(self, buffer: MemoryBuffer, role: str, content: Any) -> MemoryBuffer:
        return memory_add_and_summarize(
            buffer, role, content, model=self.model, n=self.n, system_prompt=self.system_prompt
        )
