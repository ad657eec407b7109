"""Tests for Session."""

import json
import logging

import pytest

from agent_memory.events import (
    AgentMessageEvent,
    CompactionEvent,
    ControlSignalEvent,
    ErrorEvent,
    EventAction,
    SystemInstructionEvent,
    ToolCallEvent,
    ToolResultEvent,
    UserMessageEvent,
)
from agent_memory.session import (
    CompactionConfig,
    MalformedSessionError,
    Session,
)


def _user(eid: str, ts: int = 0) -> UserMessageEvent:
    return UserMessageEvent(id=eid, timestamp=ts, content=f"user {eid}")


def _agent(eid: str, ts: int = 0, tokens: int | None = None) -> AgentMessageEvent:
    return AgentMessageEvent(
        id=eid, timestamp=ts, content=f"agent {eid}", agent_id="agent-1", tokens_used=tokens
    )


def _compaction(eid: str, ids: list[str]) -> CompactionEvent:
    return CompactionEvent(
        id=eid, summary="summary", compacted_event_ids=ids, compaction_strategy="sliding_window"
    )


def test_new_session_defaults():
    session = Session("agent-1")
    assert session.session_id.startswith("session_")
    assert session.agent_id == "agent-1"
    assert session.events == []
    assert session.statistics.total_events == 0
    assert session.compaction_config == CompactionConfig()
    assert session.compaction_config.trigger_threshold == 50


def test_add_event_is_chainable_and_counts_per_action():
    session = Session("agent-1")
    result = (
        session.add_event(_user("u1"))
        .add_event(_agent("a1", tokens=30))
        .add_event(ToolCallEvent(tool_name="t", tool_call_id="c1"))
        .add_event(ToolResultEvent(tool_call_id="c1", tool_name="t", result="ok", is_success=True))
        .add_event(ErrorEvent(error_type="Timeout", error_message="slow", recoverable=True))
        .add_event(_compaction("k1", ["u1"]))
        .add_event(ControlSignalEvent(signal_type="reset"))
        .add_event(_agent("a2", tokens=12))
    )
    assert result is session
    stats = session.statistics
    assert stats.total_events == 8
    assert stats.total_user_messages == 1
    assert stats.total_agent_messages == 2
    assert stats.total_tool_calls == 1
    assert stats.total_errors == 1
    assert stats.total_compactions == 1
    assert stats.total_tokens_used == 42


def test_counters_match_event_counts():
    session = Session("agent-1")
    for i in range(7):
        session.add_event(_user(f"u{i}"))
        if i % 2:
            session.add_event(_agent(f"a{i}"))
    stats = session.statistics
    assert stats.total_events == len(session.events)
    assert stats.total_user_messages == len(session.get_events_by_action(EventAction.USER_MESSAGE))
    assert stats.total_agent_messages == len(session.get_events_by_action("agent_message"))


def test_agent_message_without_tokens_adds_nothing():
    session = Session("agent-1")
    session.add_event(_agent("a1"))
    assert session.statistics.total_tokens_used == 0


def test_add_event_updates_timestamp():
    session = Session("agent-1")
    session.metadata.updated_at = 0
    session.add_event(_user("u1"))
    assert session.metadata.updated_at > 0


def test_needs_compaction_threshold_ignores_compaction_events():
    session = Session("agent-1")
    for i in range(49):
        session.add_event(_user(f"u{i}"))
    for i in range(5):
        session.add_event(_compaction(f"k{i}", ["u0"]))
    assert not session.needs_compaction()

    session.add_event(_user("u49"))
    assert session.needs_compaction()


def test_needs_compaction_disabled():
    session = Session("agent-1")
    session.update_compaction_config(enabled=False, trigger_threshold=1)
    session.add_event(_user("u1"))
    assert not session.needs_compaction()


def test_threshold_crossing_is_logged(caplog):
    session = Session("agent-1")
    session.update_compaction_config(trigger_threshold=2)
    with caplog.at_level(logging.INFO, logger="agent_memory.session"):
        session.add_event(_user("u1"))
        session.add_event(_user("u2"))
    assert "reached compaction threshold" in caplog.text


def test_update_compaction_config_merges():
    session = Session("agent-1")
    returned = session.update_compaction_config(window_size=4, strategy="semantic")
    assert returned is session
    cfg = session.compaction_config
    assert cfg.window_size == 4
    assert cfg.strategy == "semantic"
    assert cfg.trigger_threshold == 50


def test_update_compaction_config_rejects_unknown_field():
    with pytest.raises(ValueError, match="Unknown compaction config field"):
        Session("agent-1").update_compaction_config(bogus=1)


def test_compaction_config_from_env(monkeypatch):
    monkeypatch.setenv("AGENT_MEMORY_COMPACTION_THRESHOLD", "20")
    monkeypatch.setenv("AGENT_MEMORY_COMPACTION_ENABLED", "false")
    monkeypatch.setenv("AGENT_MEMORY_COMPACTION_STRATEGY", "time_based")
    monkeypatch.delenv("AGENT_MEMORY_COMPACTION_WINDOW", raising=False)
    cfg = CompactionConfig.from_env()
    assert cfg.trigger_threshold == 20
    assert cfg.enabled is False
    assert cfg.strategy == "time_based"
    assert cfg.window_size == 10


def test_query_operations():
    session = Session("agent-1")
    session.add_events(_user("u1", 100), _agent("a1", 200), _user("u2", 300), _agent("a2", 400))

    in_range = session.get_events_by_time_range(200, 300)
    assert [e.id for e in in_range] == ["a1", "u2"]

    users = session.get_events_by_action(EventAction.USER_MESSAGE)
    assert [e.id for e in users] == ["u1", "u2"]

    assert [e.id for e in session.get_last_n_events(3)] == ["a1", "u2", "a2"]
    assert session.get_last_n_events(0) == []
    assert len(session.get_last_n_events(10)) == 4


def test_conversation_turns_grouping():
    session = Session("agent-1")
    t1 = ToolCallEvent(id="t1", tool_name="calc", tool_call_id="c1")
    r1 = ToolResultEvent(id="r1", tool_call_id="c1", tool_name="calc", result="4", is_success=True)
    session.add_events(_user("u1"), _agent("a1"), t1, r1, _user("u2"))

    turns = session.get_conversation_turns()
    assert len(turns) == 2
    assert turns[0].user.id == "u1"
    assert turns[0].agent.id == "a1"
    assert [e.id for e in turns[0].tools] == ["t1", "r1"]
    assert turns[1].user.id == "u2"
    assert turns[1].agent is None
    assert turns[1].tools == []


def test_conversation_turns_drop_leading_events_and_keep_last_agent():
    session = Session("agent-1")
    session.add_events(
        SystemInstructionEvent(instruction="be nice", is_static=True),
        _agent("a0"),
        _user("u1"),
        _agent("a1"),
        _agent("a2"),
    )
    turns = session.get_conversation_turns()
    assert len(turns) == 1
    assert turns[0].agent.id == "a2"


def test_serialize_round_trip():
    session = Session("agent-1")
    session.update_compaction_config(overlap_size=3)
    session.add_events(
        _user("u1", 1),
        _agent("a1", 2, tokens=7),
        ToolCallEvent(id="t1", timestamp=3, tool_name="s", arguments={"q": 1}, tool_call_id="c"),
        ToolResultEvent(
            id="r1", timestamp=4, tool_call_id="c", tool_name="s", result={"x": [1]}, is_success=True
        ),
        _compaction("k1", ["u1", "a1"]),
    )
    session.statistics.average_response_time_ms = 120.5

    restored = Session.deserialize(session.serialize())
    assert restored.metadata == session.metadata
    assert restored.events == session.events
    assert restored.statistics == session.statistics
    assert restored.compaction_config == session.compaction_config
    assert isinstance(restored.events[3], ToolResultEvent)


def test_serialized_shape_is_camel_case():
    session = Session("agent-1")
    session.add_event(_user("u1", 1))
    data = json.loads(session.serialize())
    assert set(data) == {"metadata", "events", "statistics", "compactionConfig"}
    assert data["metadata"]["sessionId"] == session.session_id
    assert data["statistics"]["totalUserMessages"] == 1
    assert data["compactionConfig"]["triggerThreshold"] == 50
    assert data["events"][0]["action"] == "user_message"


def test_from_dict_round_trip_keeps_behavior():
    session = Session("agent-1")
    session.update_compaction_config(trigger_threshold=2)
    session.add_event(_user("u1"))
    restored = Session.from_dict(session.to_dict())
    assert not restored.needs_compaction()
    restored.add_event(_user("u2"))
    assert restored.needs_compaction()
    assert restored.statistics.total_user_messages == 2


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        "{}",
        json.dumps({"metadata": {}, "events": [], "statistics": {}, "compactionConfig": {}}),
    ],
)
def test_deserialize_rejects_malformed(payload):
    with pytest.raises(MalformedSessionError):
        Session.deserialize(payload)


def test_from_dict_rejects_unknown_event_and_extra_keys():
    good = Session("agent-1").to_dict()

    bad_event = dict(good, events=[{"id": "x", "timestamp": 1, "action": "mystery"}])
    with pytest.raises(MalformedSessionError):
        Session.from_dict(bad_event)

    with pytest.raises(MalformedSessionError):
        Session.from_dict(dict(good, extra=True))
