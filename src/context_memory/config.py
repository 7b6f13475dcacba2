"""Configuration loading for the context memory chat server.

Layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable CONTEXT_MEMORY_CONFIG
3. Fallback to "config/default.yaml"

Optional overrides come from environment variables with prefix
``CONTEXT_MEMORY__`` (e.g., CONTEXT_MEMORY__MEMORY__CAPACITY=12).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .buffer import DEFAULT_SAVE_FILE
from .summarizer import DEFAULT_SUMMARY_SYSTEM

logger = logging.getLogger(__name__)

ENV_PREFIX = "CONTEXT_MEMORY__"
ENV_CONFIG_PATH = "CONTEXT_MEMORY_CONFIG"
DEFAULT_CONFIG_PATH = "config/default.yaml"


@dataclass
class MemoryConfig:
    """Construction-time settings for a buffer and its summarizer."""
    capacity: int = 10
    system_prompt: Optional[str] = "Answer concisely and use prior context."
    summary_window: Optional[int] = None   # None disables rolling summaries
    summary_system: str = DEFAULT_SUMMARY_SYSTEM
    autosave: bool = False
    save_dir: Optional[str] = None
    save_file: str = DEFAULT_SAVE_FILE

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "MemoryConfig":
        """Build from a ``memory:`` config section; unknown keys are ignored."""
        data = data or {}
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown memory config keys: %s", ", ".join(unknown))
        return cls(**{k: v for k, v in data.items() if k in known})


def _parse_scalar(value: str) -> Any:
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"
    if value.lower() in {"null", "none"}:
        return None
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        return value


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix CONTEXT_MEMORY__."""
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        # e.g., CONTEXT_MEMORY__MEMORY__CAPACITY -> cfg["memory"]["capacity"]
        parts = key[len(ENV_PREFIX):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if p not in sub or not isinstance(sub[p], dict):
                sub[p] = {}
            sub = sub[p]
        sub[parts[-1]] = _parse_scalar(value)
    return cfg


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load YAML configuration.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``CONTEXT_MEMORY_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Parsed configuration dictionary with environment overrides applied.
    """
    if path is None:
        path = os.environ.get(ENV_CONFIG_PATH, DEFAULT_CONFIG_PATH)

    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("Config file not found at %s. Using defaults.", path_obj)
        cfg: Dict[str, Any] = {"memory": {}, "model": {"model_path": "models/model.gguf"}}
        return _apply_env_overrides(cfg)

    with path_obj.open("r", encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RuntimeError(f"Failed to parse config file {path_obj}: {e}") from e

    if not isinstance(cfg, dict):
        raise RuntimeError(f"Invalid config format in {path_obj}, expected dict.")

    return _apply_env_overrides(cfg)


def memory_config(cfg: Dict[str, Any]) -> MemoryConfig:
    section = cfg.get("memory") if isinstance(cfg, dict) else None
    return MemoryConfig.from_dict(section if isinstance(section, dict) else {})
