from __future__ import annotations

import pytest

from context_memory.llm import LlamaChatModel, _bool, create_from_config


def test_create_from_config_missing_model(tmp_path):
    cfg = {"model": {"model_dir": str(tmp_path), "model_path": "absent.gguf"}}
    with pytest.raises(FileNotFoundError):
        create_from_config(cfg)


def test_create_from_config_without_path():
    with pytest.raises(FileNotFoundError):
        create_from_config({})


def test_fallback_chat_template():
    prompt = LlamaChatModel._render_chat(
        [
            {"role": "system", "content": "Summarize."},
            {"role": "user", "content": " hi "},
            {"role": "assistant", "content": "hello"},
        ]
    )
    assert prompt == (
        "### System\nSummarize.\n\n"
        "### User\nhi\n\n"
        "### Assistant\nhello\n\n"
        "### Assistant\n"
    )


@pytest.mark.parametrize(
    "value,default,expected",
    [(None, True, True), ("yes", False, True), ("off", True, False), (0, True, False)],
)
def test_bool_parsing(value, default, expected):
    assert _bool(value, default) is expected
