"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, List

import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


class SpyModel:
    """Chat callable that records every message list it receives."""

    def __init__(self, reply: Any = "ok"):
        self.reply = reply
        self.calls: List[list] = []

    def __call__(self, messages):
        self.calls.append(list(messages))
        return self.reply


class FailingModel:
    def __init__(self):
        self.calls = 0

    def __call__(self, messages):
        self.calls += 1
        raise ConnectionError("model unavailable")


@pytest.fixture
def spy_model() -> SpyModel:
    return SpyModel(reply="SUMMARY")


@pytest.fixture
def failing_model() -> FailingModel:
    return FailingModel()


@pytest.fixture(scope="function")
def tmp_data_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for snapshots during tests."""
    d = tmp_path / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover config vars)."""
    monkeypatch.delenv("CONTEXT_MEMORY_CONFIG", raising=False)
    for var in list(os.environ):
        if var.startswith("CONTEXT_MEMORY__"):
            monkeypatch.delenv(var, raising=False)
    yield
