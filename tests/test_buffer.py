from __future__ import annotations

from datetime import datetime, timezone

import pytest

from context_memory.buffer import MemoryBuffer, Turn
from context_memory.errors import InvalidArgument


def _fill_pairs(buf: MemoryBuffer, pairs: int) -> None:
    for i in range(1, pairs + 1):
        buf.append("user", f"u{i}")
        buf.append("assistant", f"a{i}")


@pytest.mark.parametrize("bad", [-1, 2.5, "3", None, True])
def test_create_rejects_bad_capacity(bad):
    with pytest.raises(InvalidArgument):
        MemoryBuffer(capacity=bad)


def test_append_returns_same_buffer_for_chaining():
    buf = MemoryBuffer(capacity=3)
    assert buf.append("user", "hi").append("assistant", "hello") is buf
    assert [t.text for t in buf.read()] == ["hi", "hello"]


def test_append_rejects_unknown_role():
    buf = MemoryBuffer(capacity=3)
    with pytest.raises(InvalidArgument):
        buf.append("narrator", "once upon a time")
    assert len(buf) == 0


def test_tool_role_is_accepted():
    buf = MemoryBuffer(capacity=3)
    buf.append("tool", "42")
    assert buf.read()[0].role == "tool"


def test_capacity_never_exceeded():
    buf = MemoryBuffer(capacity=4)
    for i in range(20):
        buf.append("user" if i % 2 == 0 else "assistant", str(i))
        assert len(buf) <= 4


def test_fifo_eviction_scenario():
    # capacity 6, 4 user/assistant pairs -> rows 3..8 survive in order
    buf = MemoryBuffer(capacity=6)
    _fill_pairs(buf, 4)

    rows = buf.read()
    assert len(rows) == 6
    assert [t.text for t in rows] == ["u2", "a2", "u3", "a3", "u4", "a4"]
    assert [t.position for t in rows] == [3, 4, 5, 6, 7, 8]
    assert buf.appended == 8


def test_eviction_drops_oldest_and_keeps_order():
    buf = MemoryBuffer(capacity=3)
    for text in ("a", "b", "c"):
        buf.append("user", text)
    buf.append("user", "d")
    assert [t.text for t in buf.read()] == ["b", "c", "d"]


def test_zero_capacity_stays_empty():
    buf = MemoryBuffer(capacity=0, system_prompt="Be brief.")
    buf.append("user", "hi").append("assistant", "hello")
    assert len(buf) == 0
    assert buf.appended == 2
    assert buf.render() == "### System\nBe brief."
    assert MemoryBuffer(capacity=0).render("annotated") == ""


def test_summary_rows_are_evicted_like_any_other():
    buf = MemoryBuffer(capacity=2)
    buf.append("system", "S", label="summary", annotations={"is_summary": True})
    buf.append("user", "x").append("user", "y")
    assert all(not t.is_summary for t in buf.read())


def test_set_capacity_shrinks_from_front():
    buf = MemoryBuffer(capacity=5)
    _fill_pairs(buf, 2)
    buf.set_capacity(2)
    assert buf.capacity == 2
    assert [t.text for t in buf.read()] == ["u2", "a2"]
    with pytest.raises(InvalidArgument):
        buf.set_capacity(-1)
    assert buf.capacity == 2


def test_clear_keeps_settings():
    buf = MemoryBuffer(capacity=4, system_prompt="sys", metadata={"owner": "me"})
    _fill_pairs(buf, 2)
    buf.clear()
    assert len(buf) == 0
    assert buf.capacity == 4
    assert buf.system_prompt == "sys"
    assert buf.metadata == {"owner": "me"}


def test_read_is_a_snapshot():
    buf = MemoryBuffer(capacity=4)
    buf.append("user", "one")
    rows = buf.read()
    buf.append("user", "two")
    assert len(rows) == 1


def test_last_by_role():
    buf = MemoryBuffer(capacity=6)
    assert buf.last("assistant") is None
    _fill_pairs(buf, 2)
    buf.append("user", "u3")
    assert buf.last("assistant").text == "a2"
    assert buf.last("user").text == "u3"


def test_append_coerces_sdk_responses():
    buf = MemoryBuffer(capacity=3)
    buf.append("assistant", {"choices": [{"message": {"content": "hello"}}]})
    buf.add_assistant_response({"content": "again"})
    assert [t.text for t in buf.read()] == ["hello", "again"]


def test_timestamp_defaults_and_overrides():
    buf = MemoryBuffer(capacity=3)
    when = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    buf.append("user", "a", timestamp=when)
    buf.append("user", "b", timestamp="2024-01-02T03:04:05+00:00")
    buf.append("user", "c")
    rows = buf.read()
    assert rows[0].timestamp == when
    assert rows[1].timestamp == when
    assert rows[2].timestamp.tzinfo is not None
    with pytest.raises(InvalidArgument):
        buf.append("user", "d", timestamp="yesterday")


def test_render_plain():
    buf = MemoryBuffer(capacity=6, system_prompt="Be brief.")
    buf.append("user", "hi").append("assistant", "hello")
    assert buf.render("plain") == "### System\nBe brief.\n\nuser: hi\n\nassistant: hello"
    assert buf.render("plain", include_system=False) == "user: hi\n\nassistant: hello"


def test_render_annotated():
    buf = MemoryBuffer(capacity=6, system_prompt="Be brief.")
    buf.append("user", "hi").append("assistant", "hello")
    assert buf.render("annotated") == (
        "### System\nBe brief.\n\n"
        "### Conversation History\n\n"
        "- user: hi\n- assistant: hello"
    )


def test_render_empty_and_blank_system_prompt():
    assert MemoryBuffer(capacity=3).render() == ""
    assert MemoryBuffer(capacity=3, system_prompt="").render("annotated") == ""


def test_render_is_deterministic():
    buf = MemoryBuffer(capacity=6, system_prompt="sys")
    _fill_pairs(buf, 2)
    assert buf.render("annotated") == buf.render("annotated")
    assert buf.render("plain") == buf.render("plain")


def test_render_rejects_unknown_mode():
    with pytest.raises(InvalidArgument):
        MemoryBuffer(capacity=3).render("markdown")


def test_compose_prompt():
    buf = MemoryBuffer(capacity=6)
    assert buf.compose_prompt("first?") == "first?"

    buf.append("user", "hi")
    assert buf.compose_prompt("next?") == "user: hi\n\n### New User Prompt\nnext?"
    with pytest.raises(InvalidArgument):
        buf.compose_prompt(None)  # type: ignore[arg-type]


def test_version_and_subscribers():
    buf = MemoryBuffer(capacity=2)
    seen = []
    unsubscribe = buf.subscribe(lambda b: seen.append(b.version))

    buf.append("user", "a")
    buf.set_capacity(1)
    buf.clear()
    assert seen == [1, 2, 3]

    unsubscribe()
    buf.append("user", "b")
    assert seen == [1, 2, 3]
    assert buf.version == 4


def test_failing_subscriber_does_not_block_mutation(caplog):
    buf = MemoryBuffer(capacity=2)

    def boom(_):
        raise RuntimeError("observer down")

    buf.subscribe(boom)
    buf.append("user", "a")
    assert len(buf) == 1
    assert "observer" in caplog.text


def test_turn_dict_roundtrip():
    turn = Turn(
        role="system",
        text="S",
        label="summary",
        annotations={"is_summary": True, "covered_from": 1, "covered_through": 4, "window_size": 4},
        position=5,
    )
    assert Turn.from_dict(turn.to_dict()) == turn
    assert turn.is_summary
