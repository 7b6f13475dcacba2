from __future__ import annotations

import logging

from context_memory.buffer import MemoryBuffer
from context_memory.client import (
    ContextChatClient,
    chat_with_memory_one_shot,
    last_assistant_text,
    print_last_reply,
)
from context_memory.config import MemoryConfig


class EchoModel:
    """Replies 'reply N' to chat prompts and 'S' to summary requests."""

    def __init__(self):
        self.prompts = []
        self.summary_calls = 0

    def __call__(self, messages):
        if messages[0]["role"] == "system":
            self.summary_calls += 1
            return {"content": "S"}
        self.prompts.append(messages[-1]["content"])
        return {"choices": [{"message": {"content": f"reply {len(self.prompts)}"}}]}


def test_chat_records_both_sides():
    model = EchoModel()
    client = ContextChatClient(model, capacity=10, system_prompt="Be brief.")

    assert client.chat("hello") == "reply 1"
    assert [(t.role, t.text) for t in client.turns()] == [("user", "hello"), ("assistant", "reply 1")]
    assert model.prompts[0] == (
        "### System\nBe brief.\n\n"
        "### Conversation History\n\n"
        "- user: hello\n\n"
        "### New User Prompt\nhello"
    )


def test_followup_replaces_trailing_section():
    model = EchoModel()
    client = ContextChatClient(model, capacity=10, system_prompt=None)
    client.chat("Tell me about frogs.", followup="Answer in 2 sentences.")
    assert model.prompts[0].endswith("### New User Prompt\nAnswer in 2 sentences.")
    assert client.turns()[0].text == "Tell me about frogs."


def test_rolling_summaries_keep_a_cushion():
    model = EchoModel()
    client = ContextChatClient(model, capacity=6, summary_n=4)
    for q in range(1, 21):
        client.chat(f"Turn {q}")

    turns = client.turns()
    assert len(turns) == 6
    assert any(t.is_summary for t in turns)
    assert model.summary_calls == 10


def test_summary_window_clamped_with_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="context_memory.summarizer"):
        client = ContextChatClient(EchoModel(), capacity=6, summary_n=8)
    assert client.summarizer.n == 5
    assert "Reducing it to 5" in caplog.text


def test_summaries_disabled_by_default():
    model = EchoModel()
    client = ContextChatClient(model, capacity=4)
    for q in range(5):
        client.chat(f"q{q}")
    assert client.summarizer is None
    assert model.summary_calls == 0
    assert len(client.turns()) == 4


def test_clear_and_memory_accessor():
    client = ContextChatClient(EchoModel(), capacity=4)
    client.chat("hi")
    assert isinstance(client.memory, MemoryBuffer)
    client.clear()
    assert client.turns() == ()


def test_from_config(tmp_path):
    cfg = MemoryConfig(capacity=5, system_prompt="cfg", summary_window=2, autosave=True, save_dir=str(tmp_path))
    client = ContextChatClient.from_config(EchoModel(), cfg)
    client.chat("hi")
    assert client.memory.capacity == 5
    assert client.memory.system_prompt == "cfg"
    assert (tmp_path / "context_memory.json").exists()
    assert any(t.is_summary for t in client.turns())


def test_one_shot_chat():
    buf = MemoryBuffer(capacity=4)
    model = EchoModel()
    reply = chat_with_memory_one_shot(buf, "question", model, followup="Be short.")
    assert reply == "reply 1"
    assert [t.text for t in buf.read()] == ["question", "reply 1"]
    assert model.prompts[0].endswith("### New User Prompt\nBe short.")


def test_last_assistant_text(capsys):
    buf = MemoryBuffer(capacity=4)
    assert last_assistant_text(buf) == ""
    buf.append("user", "q").append("assistant", "answer").append("user", "more")
    assert last_assistant_text(buf) == "answer"
    assert print_last_reply(buf) == "answer"
    assert capsys.readouterr().out == "answer\n"
