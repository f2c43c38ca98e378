"""
Unit tests for session event serialization.
"""

import json
from datetime import datetime, timezone

import pytest

from threadkeeper.memory import (
    EVENT_SCHEMA_VERSION,
    AgentStepEvent,
    AssistantFeedbackEvent,
    AssistantMessageEvent,
    EventLogError,
    MalformedEventError,
    RunFailureEvent,
    SessionCloseEvent,
    SessionOpenEvent,
    SessionTier,
    SessionTierChangeEvent,
    ToolCallEvent,
    ToolResultEvent,
    UnsupportedEventVersionError,
    UserMessageEvent,
    deserialize_event,
    serialize_event,
)

TS = datetime(2026, 2, 2, 10, 0, tzinfo=timezone.utc)


def _all_events():
    return [
        SessionOpenEvent(
            ts=TS,
            session_id="s1",
            client_id="local",
            previous_session_summary="earlier work",
            tier=SessionTier.RARE,
        ),
        SessionCloseEvent(
            ts=TS, session_id="s1", reason="expired", summary_text="done", keywords=["parser"]
        ),
        SessionTierChangeEvent(
            ts=TS,
            session_id="s1",
            from_tier=SessionTier.RARE,
            to_tier=SessionTier.LOW,
            score=9.5,
            hard_cap_minutes=720,
            idle_timeout_minutes=90,
        ),
        UserMessageEvent(ts=TS, session_id="s1", run_id="r1", content="hello"),
        AssistantMessageEvent(ts=TS, session_id="s1", run_id="r1", content="hi"),
        ToolCallEvent(
            ts=TS,
            session_id="s1",
            run_id="r1",
            step_id=1,
            tool_call_id="c1",
            tool_name="read_file",
            args={"path": "a.py"},
        ),
        ToolResultEvent(
            ts=TS,
            session_id="s1",
            run_id="r1",
            step_id=1,
            tool_call_id="c1",
            tool_name="read_file",
            status="failed",
            error_message="not found",
            error_code="ENOENT",
            duration_ms=12,
        ),
        RunFailureEvent(ts=TS, session_id="s1", run_id="r1", message="timeout"),
        AgentStepEvent(
            ts=TS,
            session_id="s1",
            run_id="r1",
            step=2,
            phase="act",
            summary="read the file",
            approaches_tried=["grep"],
            action_tool_name="read_file",
        ),
        AssistantFeedbackEvent(ts=TS, session_id="s1", run_id="r1", message="working on it"),
    ]


class TestSerialization:
    """Tests for serialize_event / deserialize_event."""

    @pytest.mark.parametrize("event", _all_events(), ids=lambda e: e.type)
    def test_round_trip(self, event):
        """Test that every event kind survives a round trip."""
        line = serialize_event(event)
        assert "\n" not in line

        restored = deserialize_event(line)
        assert type(restored) is type(event)
        assert restored == event

    def test_wire_format_uses_camel_case(self):
        """Test the on-disk keys."""
        event = UserMessageEvent(ts=TS, session_id="s1", run_id="r1", content="hello")
        data = json.loads(serialize_event(event))

        assert data["v"] == EVENT_SCHEMA_VERSION
        assert data["type"] == "user_message"
        assert data["sessionId"] == "s1"
        assert data["runId"] == "r1"
        assert "session_id" not in data

    def test_optional_fields_omitted(self):
        """Test that unset optional fields are not written."""
        event = ToolResultEvent(
            ts=TS,
            session_id="s1",
            run_id="r1",
            step_id=1,
            tool_call_id="c1",
            tool_name="ls",
            status="success",
            output="a.py",
        )
        data = json.loads(serialize_event(event))
        assert "errorMessage" not in data
        assert "outputRef" not in data

    def test_tier_serialized_as_value(self):
        """Test that tiers are written as plain strings."""
        event = SessionOpenEvent(ts=TS, session_id="s1", client_id="local")
        data = json.loads(serialize_event(event))
        assert data["tier"] == "rare"

    def test_tool_args_keep_arbitrary_json(self):
        """Test that tool arguments are stored as given."""
        args = {"query": "x", "limit": 3, "nested": {"flags": [True, None]}}
        event = ToolCallEvent(
            session_id="s1", run_id="r1", step_id=1, tool_call_id="c1", tool_name="t", args=args
        )
        restored = deserialize_event(serialize_event(event))
        assert restored.args == args


class TestDeserializationErrors:
    """Tests for rejected log lines."""

    def test_unsupported_version(self):
        """Test that an unknown version has its own error."""
        line = json.dumps(
            {"v": 2, "ts": TS.isoformat(), "type": "user_message", "sessionId": "s1",
             "runId": "r1", "content": "hi"}
        )  # fmt: skip
        with pytest.raises(UnsupportedEventVersionError) as exc_info:
            deserialize_event(line)

        assert exc_info.value.version == 2
        assert not isinstance(exc_info.value, MalformedEventError)

    def test_boolean_version_is_unsupported(self):
        """Test that ``true`` is not mistaken for version 1."""
        line = json.dumps({"v": True, "type": "user_message", "sessionId": "s1"})
        with pytest.raises(UnsupportedEventVersionError):
            deserialize_event(line)

    def test_non_json(self):
        """Test that garbage is reported as malformed."""
        with pytest.raises(MalformedEventError):
            deserialize_event("{not json")

    def test_non_object(self):
        """Test that a JSON array is malformed."""
        with pytest.raises(MalformedEventError):
            deserialize_event("[1, 2]")

    def test_missing_version(self):
        """Test that a record without ``v`` is malformed."""
        with pytest.raises(MalformedEventError):
            deserialize_event(json.dumps({"type": "user_message", "sessionId": "s1"}))

    def test_unknown_type(self):
        """Test that an unknown type is malformed."""
        line = json.dumps({"v": 1, "ts": TS.isoformat(), "type": "telepathy", "sessionId": "s1"})
        with pytest.raises(MalformedEventError):
            deserialize_event(line)

    def test_missing_required_field(self):
        """Test that a record missing a field of its type is malformed."""
        line = json.dumps({"v": 1, "ts": TS.isoformat(), "type": "user_message", "sessionId": "s1"})
        with pytest.raises(MalformedEventError) as exc_info:
            deserialize_event(line)
        assert exc_info.value.line == line

    def test_errors_share_base(self):
        """Test that both failures derive from EventLogError."""
        assert issubclass(MalformedEventError, EventLogError)
        assert issubclass(UnsupportedEventVersionError, EventLogError)
