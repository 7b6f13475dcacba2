"""Bounded, ordered conversation buffer with FIFO eviction."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from .errors import InvalidArgument, InvalidState
from .text import to_text
from .utils.io import atomic_write_json

logger = logging.getLogger(__name__)

ROLES: Tuple[str, ...] = ("user", "assistant", "system", "tool")
RAW_ROLES: Tuple[str, ...] = ("user", "assistant")
RENDER_MODES: Tuple[str, ...] = ("plain", "annotated")
SUMMARY_LABEL = "summary"
DEFAULT_SAVE_FILE = "context_memory.json"

Timestamp = Union[datetime, str, None]
Observer = Callable[["MemoryBuffer"], None]


# -----------------------------
# Helpers
# -----------------------------
def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_timestamp(ts: Timestamp) -> datetime:
    if ts is None:
        return _utc_now()
    if isinstance(ts, datetime):
        return ts
    if isinstance(ts, str):
        try:
            return datetime.fromisoformat(ts)
        except ValueError as e:
            raise InvalidArgument(f"timestamp is not ISO-8601: {ts!r}") from e
    raise InvalidArgument(f"timestamp must be a datetime or ISO string, got {type(ts).__name__}")


def _check_capacity(capacity: Any) -> int:
    # bool is an int subclass; True is not a meaningful window size.
    if isinstance(capacity, bool) or not isinstance(capacity, int):
        raise InvalidArgument(f"capacity must be a non-negative integer, got {capacity!r}")
    if capacity < 0:
        raise InvalidArgument(f"capacity must be a non-negative integer, got {capacity}")
    return capacity


def assert_buffer(buffer: Any) -> "MemoryBuffer":
    if not isinstance(buffer, MemoryBuffer):
        raise InvalidState("`buffer` must be a MemoryBuffer created by MemoryBuffer().")
    return buffer


# -----------------------------
# Turn
# -----------------------------
@dataclass
class Turn:
    """One row of the buffer.

    ``position`` is the 1-based logical append position. It is assigned once
    at append time and survives eviction of earlier rows.
    """

    role: str
    text: str
    timestamp: datetime = field(default_factory=_utc_now)
    label: Optional[str] = None
    annotations: Dict[str, Any] = field(default_factory=dict)
    position: int = 0

    @property
    def is_summary(self) -> bool:
        return self.label == SUMMARY_LABEL and self.annotations.get("is_summary") is True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "label": self.label,
            "annotations": dict(self.annotations),
            "position": self.position,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Turn":
        role = data.get("role")
        if role not in ROLES:
            raise InvalidArgument(f"unknown role in snapshot: {role!r}")
        return cls(
            role=role,
            text=str(data.get("text") or ""),
            timestamp=_coerce_timestamp(data.get("timestamp")),
            label=data.get("label"),
            annotations=dict(data.get("annotations") or {}),
            position=int(data.get("position") or 0),
        )


# -----------------------------
# MemoryBuffer
# -----------------------------
class MemoryBuffer:
    """Keeps the last ``capacity`` turns of a conversation.

    Every mutation evicts from the front until ``len(buffer) <= capacity``,
    bumps :attr:`version`, writes a snapshot when autosave is on, and then
    notifies subscribers. Summary rows get no special protection from
    eviction.

    Parameters
    ----------
    capacity : int
        Maximum number of rows kept (raw turns and summaries alike). ``0`` is
        legal and keeps the buffer permanently empty.
    system_prompt : str | None
        Rendered as its own block ahead of the rows; never stored as a Turn.
    metadata : dict | None
        Free-form bag carried through snapshots.
    autosave, save_dir, save_file
        When ``autosave`` is true a JSON snapshot is written to
        ``save_dir/save_file`` after every mutation.
    """

    def __init__(
        self,
        capacity: int = 10,
        system_prompt: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        autosave: bool = False,
        save_dir: Union[str, Path, None] = None,
        save_file: str = DEFAULT_SAVE_FILE,
    ) -> None:
        self._capacity = _check_capacity(capacity)
        self.system_prompt = system_prompt
        self.metadata: Dict[str, Any] = dict(metadata or {})
        self.autosave = bool(autosave)
        self.save_dir = os.path.abspath(str(save_dir if save_dir is not None else Path.cwd()))
        self.save_file = str(save_file)

        self._turns: List[Turn] = []
        self._appended = 0
        self.version = 0
        self.last_persist_error: Optional[Exception] = None
        self._observers: List[Observer] = []
        self._persist_error_listeners: List[Callable[["MemoryBuffer", Exception], None]] = []

        self.persist_if_enabled()

    # --------- introspection ----------
    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def appended(self) -> int:
        """Total number of rows ever appended (the last assigned position)."""
        return self._appended

    @property
    def save_path(self) -> Path:
        return Path(self.save_dir) / self.save_file

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self.read())

    def __repr__(self) -> str:
        return f"MemoryBuffer(capacity={self._capacity}, rows={len(self._turns)}, version={self.version})"

    # --------- mutators ----------
    def append(
        self,
        role: str,
        content: Any,
        label: Optional[str] = None,
        timestamp: Timestamp = None,
        annotations: Optional[Dict[str, Any]] = None,
    ) -> "MemoryBuffer":
        """Append one row; ``content`` may be any SDK response value."""
        if role not in ROLES:
            raise InvalidArgument(f"role must be one of {ROLES}, got {role!r}")
        text = content if isinstance(content, str) else to_text(content)

        self._appended += 1
        self._turns.append(
            Turn(
                role=role,
                text=text,
                timestamp=_coerce_timestamp(timestamp),
                label=None if label is None else str(label),
                annotations=dict(annotations or {}),
                position=self._appended,
            )
        )
        self._evict()
        self._commit()
        return self

    def add_user(self, content: Any) -> "MemoryBuffer":
        return self.append("user", content)

    def add_assistant_response(self, response: Any) -> "MemoryBuffer":
        """Record an assistant reply given as raw SDK output."""
        return self.append("assistant", response)

    def set_capacity(self, capacity: int) -> "MemoryBuffer":
        self._capacity = _check_capacity(capacity)
        self._evict()
        self._commit()
        return self

    def clear(self) -> "MemoryBuffer":
        """Drop every row. Capacity, system prompt and metadata are kept."""
        self._turns.clear()
        self._commit()
        return self

    # --------- readers ----------
    def read(self) -> Tuple[Turn, ...]:
        return tuple(self._turns)

    def last(self, role: str) -> Optional[Turn]:
        for turn in reversed(self._turns):
            if turn.role == role:
                return turn
        return None

    def render(self, mode: str = "plain", include_system: bool = True) -> str:
        """Render the buffer as one prompt-ready string.

        ``plain``::

            ### System
            <system prompt>

            user: hi

            assistant: hello

        ``annotated``::

            ### System
            <system prompt>

            ### Conversation History

            - user: hi
            - assistant: hello
        """
        if mode not in RENDER_MODES:
            raise InvalidArgument(f"mode must be one of {RENDER_MODES}, got {mode!r}")

        parts: List[str] = []
        if include_system and self.system_prompt:
            parts.append(f"### System\n{self.system_prompt}")

        if self._turns:
            if mode == "plain":
                parts.append("\n\n".join(f"{t.role}: {t.text}" for t in self._turns))
            else:
                parts.append("### Conversation History")
                parts.append("\n".join(f"- {t.role}: {t.text}" for t in self._turns))

        return "\n\n".join(parts)

    def compose_prompt(self, new_user_text: str, mode: str = "plain") -> str:
        """Rendered context followed by a ``### New User Prompt`` section."""
        if not isinstance(new_user_text, str):
            raise InvalidArgument("new_user_text must be a string")
        ctx = self.render(mode)
        if not ctx:
            return new_user_text
        return f"{ctx}\n\n### New User Prompt\n{new_user_text}"

    # --------- change notification ----------
    def subscribe(self, callback: Observer) -> Callable[[], None]:
        """Call ``callback(buffer)`` after every mutation. Returns an unsubscribe function."""
        self._observers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return _unsubscribe

    def on_persist_error(self, callback: Callable[["MemoryBuffer", Exception], None]) -> None:
        self._persist_error_listeners.append(callback)

    # --------- snapshots ----------
    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "capacity": self._capacity,
            "system_prompt": self.system_prompt,
            "metadata": dict(self.metadata),
            "turns": [t.to_dict() for t in self._turns],
            "appended": self._appended,
            "autosave": self.autosave,
            "save_dir": self.save_dir,
            "save_file": self.save_file,
        }

    @classmethod
    def from_snapshot(cls, data: Mapping[str, Any]) -> "MemoryBuffer":
        """Rebuild a buffer from :meth:`to_snapshot` output without writing to disk."""
        if not isinstance(data, Mapping):
            raise InvalidArgument(f"snapshot must be a mapping, got {type(data).__name__}")
        buf = cls(
            capacity=data.get("capacity", 10),
            system_prompt=data.get("system_prompt"),
            metadata=data.get("metadata") or {},
            autosave=False,
            save_dir=data.get("save_dir"),
            save_file=data.get("save_file") or DEFAULT_SAVE_FILE,
        )
        turns = [Turn.from_dict(t) for t in data.get("turns") or []]
        for i, turn in enumerate(turns, 1):
            if turn.position <= 0:
                turn.position = i
        buf._turns = turns
        # Hand-edited snapshots may hold more rows than their capacity.
        buf._evict()
        buf._appended = max(
            int(data.get("appended") or 0),
            max((t.position for t in turns), default=0),
        )
        buf.autosave = bool(data.get("autosave", False))
        return buf

    # --------- internals ----------
    def _evict(self) -> None:
        overflow = len(self._turns) - self._capacity
        if overflow > 0:
            del self._turns[:overflow]

    def _commit(self) -> None:
        self.version += 1
        self.persist_if_enabled()
        for callback in list(self._observers):
            try:
                callback(self)
            except Exception:
                logger.exception("Buffer observer %r failed", callback)

    def persist_if_enabled(self) -> None:
        if not self.autosave:
            return
        try:
            atomic_write_json(self.save_path, self.to_snapshot())
        except (OSError, ValueError) as e:
            # The mutation already happened; report and carry on.
            logger.error("Autosave to %s failed: %s", self.save_path, e)
            self.last_persist_error = e
            for listener in list(self._persist_error_listeners):
                try:
                    listener(self, e)
                except Exception:
                    logger.exception("Persist-error listener %r failed", listener)
        else:
            self.last_persist_error = None
