"""Chat model backed by a local GGUF file via llama.cpp.

A :class:`LlamaChatModel` is called with a list of ``{"role", "content"}``
messages and returns the reply text, which is the shape the chat client and
the rolling summarizer expect.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .messages import ChatMessage
from .text import to_text

logger = logging.getLogger(__name__)


# -----------------------------
# Types & defaults
# -----------------------------

@dataclass
class GenerationConfig:
    max_new_tokens: int = 256
    temperature: float = 0.7
    top_p: float = 0.95
    top_k: int = 50
    repeat_penalty: float = 1.1
    stop: Optional[List[str]] = None


def _bool(v: Any, default: bool) -> bool:
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    if isinstance(v, str):
        return v.strip().lower() in {"1", "true", "yes", "y", "on"}
    return bool(v)


# -----------------------------
# GGUF wrapper
# -----------------------------

class LlamaChatModel:
    """Thin wrapper around :mod:`llama_cpp` usable as a chat callable."""

    def __init__(self, model_path: str, **kwargs: Any) -> None:
        """
        Parameters
        ----------
        model_path : str
            Path to .gguf weights.
        kwargs : Any
            Passed to llama_cpp.Llama with some defaults:
              - n_threads: defaults to os.cpu_count()
              - n_gpu_layers: auto if gpu offload supported; else 0
              - use_mmap: default True, with fallback retry if OSError
        """
        # Lazy import so the buffer and summarizer work without the dep.
        from llama_cpp import Llama, llama_supports_gpu_offload  # type: ignore

        threads = kwargs.get("n_threads")
        if threads is None or int(threads) <= 0:
            kwargs["n_threads"] = os.cpu_count() or 1

        if kwargs.get("n_gpu_layers") is None:
            kwargs["n_gpu_layers"] = -1 if llama_supports_gpu_offload() else 0

        use_mmap = _bool(kwargs.get("use_mmap", True), True)
        kwargs["use_mmap"] = use_mmap
        kwargs.setdefault("verbose", False)

        try:
            self._llama = Llama(model_path=model_path, **kwargs)
        except OSError as e:
            if not use_mmap:
                raise
            # Network filesystems / Windows sometimes reject mmap.
            logger.warning("mmap load failed, retrying without mmap: %s", e)
            kwargs["use_mmap"] = False
            self._llama = Llama(model_path=model_path, **kwargs)

        self._supports_chat = hasattr(self._llama, "create_chat_completion")

        self._gen_cfg = GenerationConfig(
            max_new_tokens=int(os.environ.get("LLM_MAX_NEW", "256")),
            temperature=float(os.environ.get("LLM_TEMP", "0.7")),
            top_p=float(os.environ.get("LLM_TOP_P", "0.95")),
            top_k=int(os.environ.get("LLM_TOP_K", "50")),
            repeat_penalty=float(os.environ.get("LLM_REPEAT_PEN", "1.1")),
        )

        # Used only by the plain-completion fallback.
        self._default_stops = ["</s>", "### User", "### System"]

    def __call__(self, messages: Sequence[ChatMessage]) -> str:
        return self.chat(messages)

    def chat(
        self,
        messages: Sequence[ChatMessage],
        *,
        max_new_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Generate a reply to ``messages`` and return its text."""
        cfg = self._gen_cfg
        kwargs: Dict[str, Any] = dict(
            max_tokens=max_new_tokens or cfg.max_new_tokens,
            temperature=cfg.temperature if temperature is None else float(temperature),
            top_p=cfg.top_p,
            top_k=cfg.top_k,
            repeat_penalty=cfg.repeat_penalty,
        )

        if self._supports_chat:
            if cfg.stop:
                kwargs["stop"] = cfg.stop
            result = self._llama.create_chat_completion(messages=list(messages), **kwargs)
            return to_text(result)

        # Older builds: render a simple instruction template and complete it.
        kwargs["stop"] = cfg.stop or self._default_stops
        result = self._llama(self._render_chat(messages), **kwargs)
        return result["choices"][0]["text"]

    @staticmethod
    def _render_chat(messages: Sequence[ChatMessage]) -> str:
        lines: List[str] = []
        for m in messages:
            header = {"system": "### System", "assistant": "### Assistant"}.get(m["role"], "### User")
            lines.append(f"{header}\n{m['content'].strip()}\n")
        lines.append("### Assistant\n")
        return "\n".join(lines)


# -----------------------------
# Convenience factory
# -----------------------------

def create_from_config(cfg: Dict[str, Any]) -> LlamaChatModel:
    """Create LlamaChatModel from a config dict (e.g., loaded YAML)."""
    model_cfg = (cfg or {}).get("model", {}) if isinstance(cfg, dict) else {}
    model_dir = model_cfg.get("model_dir")
    model_path = model_cfg.get("model_path")
    if model_dir and model_path and not os.path.isabs(model_path):
        model_path = os.path.join(model_dir, model_path)

    if not model_path or not os.path.exists(model_path):
        raise FileNotFoundError(f"Model not found at: {model_path!r}")

    params = {
        "n_ctx": model_cfg.get("n_ctx", 4096),
        "n_threads": model_cfg.get("n_threads"),
        "n_gpu_layers": model_cfg.get("n_gpu_layers"),
        "use_mmap": model_cfg.get("use_mmap", True),
    }
    # Remove None entries (llama.cpp is picky)
    params = {k: v for k, v in params.items() if v is not None}

    return LlamaChatModel(model_path=model_path, **params)
