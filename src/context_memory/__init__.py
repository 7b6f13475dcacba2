"""Bounded conversational memory with rolling summaries for LLM prompts.

Typical usage
-------------
from context_memory import MemoryBuffer, memory_add_and_summarize

buf = MemoryBuffer(capacity=6, system_prompt="Answer concisely.")
memory_add_and_summarize(buf, "user", "Hi!", model=my_chat_fn, n=4)
prompt = buf.compose_prompt("And then?", mode="annotated")

The HTTP server is available through :func:`create_app`:

python scripts/run_server.py --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

from .buffer import MemoryBuffer, Turn
from .client import ContextChatClient, chat_with_memory_one_shot, last_assistant_text
from .errors import ExternalFailure, InvalidArgument, InvalidState
from .persistence import (
    disable_autosave,
    enable_autosave,
    load_memory,
    load_or_new_memory,
    save_memory,
)
from .summarizer import RollingSummarizer, maybe_summarize_latest_window, memory_add_and_summarize
from .text import to_text

__all__ = [
    "ContextChatClient",
    "ExternalFailure",
    "InvalidArgument",
    "InvalidState",
    "MemoryBuffer",
    "RollingSummarizer",
    "Turn",
    "__version__",
    "chat_with_memory_one_shot",
    "create_app",
    "disable_autosave",
    "enable_autosave",
    "get_version",
    "last_assistant_text",
    "load_memory",
    "load_or_new_memory",
    "maybe_summarize_latest_window",
    "memory_add_and_summarize",
    "save_memory",
    "to_text",
]

# ---------------------------------------------------------------------
# Version handling
# ---------------------------------------------------------------------
__version__ = "0.1.0"

def get_version() -> str:
    """Return the package version."""
    return __version__

# ---------------------------------------------------------------------
# App factory export (deferred so the core never imports FastAPI)
# ---------------------------------------------------------------------
def create_app(*args, **kwargs):
    """Return a configured FastAPI application.

    This forwards to :func:`context_memory.server.create_app`; the import
    happens on first call.
    """
    from .server import create_app as _create_app

    return _create_app(*args, **kwargs)
