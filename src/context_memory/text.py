"""Reduce arbitrary model-response values to a single plain-text string.

SDK replies come in many shapes: bare strings, ``{"content": ...}`` records,
OpenAI-style ``choices`` lists, ``messages`` lists, and chat objects that keep
their own turn history. :func:`to_text` tries a fixed, ordered set of named
strategies and returns the first hit. It never raises; anything unrecognized
is rendered with :func:`pprint.pformat` and a warning is logged.
"""
from __future__ import annotations

import logging
import pprint
from collections.abc import Mapping, Sequence
from typing import Any, Callable, List, NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)

# Keys probed, in order, on mapping-like values.
CONTENT_KEYS: Tuple[str, ...] = (
    "content",
    "text",
    "message",
    "output",
    "answer",
    "body",
    "response",
    "value",
)

_MAX_DEPTH = 8

Strategy = Callable[[Any, int], Optional[str]]


class Extraction(NamedTuple):
    strategy: str
    text: str


# -----------------------------
# Helpers
# -----------------------------
def _field(obj: Any, name: str) -> Any:
    """Mapping key or plain (non-callable) attribute lookup; None if absent."""
    if obj is None or isinstance(obj, (str, bytes, bytearray)):
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    if isinstance(obj, Sequence):
        return None
    try:
        value = getattr(obj, name, None)
    except Exception:
        return None
    if callable(value):
        return None
    return value


def _is_list(obj: Any) -> bool:
    return isinstance(obj, Sequence) and not isinstance(obj, (str, bytes, bytearray))


def _join_parts(items: Sequence[Any], depth: int) -> Optional[str]:
    """Join a list of strings or content parts (``{"type": "text", "text": ...}``)."""
    pieces: List[str] = []
    for item in items:
        if isinstance(item, str):
            pieces.append(item)
            continue
        # Role-bearing entries are messages, not parts.
        if item is None or _field(item, "role") is not None:
            return None
        inner = _field(item, "text")
        if inner is None:
            inner = _field(item, "content")
        if inner is None:
            return None
        pieces.append(_extract(inner, depth + 1).text)
    if not pieces:
        return None
    return " ".join(pieces)


def _turn_content(turn: Any, depth: int) -> str:
    if turn is None:
        return ""
    for key in ("content", "text", "message"):
        content = _field(turn, key)
        if content is not None:
            break
    else:
        return ""
    if isinstance(content, str):
        return content
    if _is_list(content):
        joined = _join_parts(content, depth)
        if joined is not None:
            return joined
    return _extract(content, depth + 1).text


# -----------------------------
# Strategies
# -----------------------------
def plain_string(value: Any, depth: int) -> Optional[str]:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, (int, float)):
        return str(value)
    if _is_list(value):
        return _join_parts(value, depth)
    return None


def keyed_mapping(value: Any, depth: int) -> Optional[str]:
    for key in CONTENT_KEYS:
        inner = _field(value, key)
        if inner is not None:
            return _extract(inner, depth + 1).text
    return None


def choice_list(value: Any, depth: int) -> Optional[str]:
    choices = _field(value, "choices")
    if not _is_list(choices) or not choices:
        return None
    first = choices[0]
    content = _field(_field(first, "message"), "content")
    if content is not None:
        return _extract(content, depth + 1).text
    text = _field(first, "text")
    if text is not None:
        return _extract(text, depth + 1).text
    return None


def message_list(value: Any, depth: int) -> Optional[str]:
    messages = _field(value, "messages")
    if not _is_list(messages) or not messages:
        return None
    content = _field(messages[-1], "content")
    if content is None:
        return None
    return _extract(content, depth + 1).text


def turn_accessor(value: Any, depth: int) -> Optional[str]:
    """Chat objects exposing ``get_turns()`` and/or ``last_turn()``."""
    if isinstance(value, (Mapping, str, bytes, bytearray)) or _is_list(value):
        return None

    get_turns = getattr(value, "get_turns", None)
    if callable(get_turns):
        try:
            try:
                turns = get_turns(include_system_prompt=False)
            except TypeError:
                turns = get_turns()
        except Exception as e:
            logger.debug("get_turns() failed on %s: %s", type(value).__name__, e)
            turns = None
        if _is_list(turns) and turns:
            chosen = turns[-1]
            for turn in reversed(turns):
                if _field(turn, "role") == "assistant":
                    chosen = turn
                    break
            return _turn_content(chosen, depth)

    last_turn = getattr(value, "last_turn", None)
    if callable(last_turn):
        for kwargs in ({"role": "assistant"}, {}):
            try:
                turn = last_turn(**kwargs)
            except Exception as e:
                logger.debug("last_turn(%s) failed on %s: %s", kwargs, type(value).__name__, e)
                continue
            content = _field(turn, "content")
            if content is not None:
                return _extract(content, depth + 1).text
    return None


def fallback(value: Any, depth: int) -> str:
    try:
        rendered = pprint.pformat(value)
    except Exception:
        rendered = f"<{type(value).__name__} object>"
    logger.warning(
        "No text strategy matched %s; using debug rendering (%d chars)",
        type(value).__name__,
        len(rendered),
    )
    return rendered


# turn_accessor only fires on opaque objects, and runs before the attribute
# probes so a chat object's own `text` or `value` field does not shadow its turns.
STRATEGIES: Tuple[Tuple[str, Strategy], ...] = (
    ("plain_string", plain_string),
    ("turn_accessor", turn_accessor),
    ("keyed_mapping", keyed_mapping),
    ("choice_list", choice_list),
    ("message_list", message_list),
)


def _extract(value: Any, depth: int) -> Extraction:
    if depth <= _MAX_DEPTH:
        for name, strategy in STRATEGIES:
            text = strategy(value, depth)
            if text is not None:
                return Extraction(name, text)
    return Extraction("fallback", fallback(value, depth))


# -----------------------------
# Public API
# -----------------------------
def extract(value: Any) -> Extraction:
    """Return the text of ``value`` together with the name of the strategy that produced it."""
    return _extract(value, 0)


def to_text(value: Any) -> str:
    """Coerce any SDK response value to a single string. Never raises."""
    return _extract(value, 0).text
