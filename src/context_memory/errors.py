"""Exception taxonomy for the conversational memory buffer."""
from __future__ import annotations


class ContextMemoryError(Exception):
    """Base class for all errors raised by :mod:`context_memory`."""


class InvalidArgument(ContextMemoryError, ValueError):
    """Malformed input to a constructor or setter (negative capacity, unknown role)."""


class InvalidState(ContextMemoryError, TypeError):
    """An operation was invoked on something that is not a MemoryBuffer."""


class ExternalFailure(ContextMemoryError, RuntimeError):
    """The model-invocation collaborator raised or returned an unusable value.

    Raised internally by the summarizer and recovered locally; callers of
    the append/summarize operations never see it.
    """
