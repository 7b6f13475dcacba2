from __future__ import annotations

from typing import Any, Callable, List, TypedDict


class ChatMessage(TypedDict):
    """A single role/content pair sent to a chat model."""

    role: str            # "system" | "user" | "assistant"
    content: str


# Anything callable with a message list; the reply is reduced with text.to_text().
ChatModel = Callable[[List[ChatMessage]], Any]
