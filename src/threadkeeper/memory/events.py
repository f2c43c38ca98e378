"""
Session event models for threadkeeper.

Every change to a session is recorded as one immutable event. Events
form a closed, versioned tagged union discriminated by ``type``; this
module is the single place where they are turned into log lines and
back.

Wire format, one JSON object per line::

    {"v": 1, "ts": "2026-02-02T10:00:00Z", "type": "user_message",
     "sessionId": "...", "runId": "...", "content": "..."}
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from threadkeeper.memory.exceptions import MalformedEventError, UnsupportedEventVersionError

EVENT_SCHEMA_VERSION = 1


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class SessionTier(str, Enum):
    """Activity tiers controlling idle timeout and hard age cap."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    RARE = "rare"


class EventType(str, Enum):
    """Discriminator values of the event union."""

    SESSION_OPEN = "session_open"
    SESSION_CLOSE = "session_close"
    SESSION_TIER_CHANGE = "session_tier_change"
    USER_MESSAGE = "user_message"
    ASSISTANT_MESSAGE = "assistant_message"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    RUN_FAILURE = "run_failure"
    AGENT_STEP = "agent_step"
    ASSISTANT_FEEDBACK = "assistant_feedback"


ToolEventStatus = Literal["success", "failed"]


class _WireModel(BaseModel):
    """Shared wire conventions: camelCase keys, plain enum values."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        validate_default=True,
        extra="ignore",
    )


class BaseEvent(_WireModel):
    """Fields carried by every event."""

    v: int = EVENT_SCHEMA_VERSION
    ts: datetime = Field(default_factory=utc_now)
    session_id: str


class SessionOpenEvent(BaseEvent):
    """First event of a session."""

    type: Literal["session_open"] = "session_open"
    client_id: str
    previous_session_summary: str = ""
    tier: SessionTier = SessionTier.RARE
    hard_cap_minutes: int = 24 * 60
    idle_timeout_minutes: int = 180


class SessionCloseEvent(BaseEvent):
    """Last event of a session, carrying its final summary."""

    type: Literal["session_close"] = "session_close"
    reason: str
    summary_text: str = ""
    keywords: list[str] = Field(default_factory=list)


class SessionTierChangeEvent(BaseEvent):
    """A committed activity tier change."""

    type: Literal["session_tier_change"] = "session_tier_change"
    from_tier: SessionTier
    to_tier: SessionTier
    score: float
    hard_cap_minutes: int
    idle_timeout_minutes: int


class UserMessageEvent(BaseEvent):
    type: Literal["user_message"] = "user_message"
    run_id: str
    content: str


class AssistantMessageEvent(BaseEvent):
    type: Literal["assistant_message"] = "assistant_message"
    run_id: str
    content: str


class ToolCallEvent(BaseEvent):
    type: Literal["tool_call"] = "tool_call"
    run_id: str
    step_id: int
    tool_call_id: str
    tool_name: str
    args: Any = Field(default_factory=dict)


class ToolResultEvent(BaseEvent):
    """Outcome of a tool call, correlated by ``tool_call_id``.

    Outputs above the large-output threshold are stored in a side file;
    ``output_ref`` then names that file and ``output`` holds a short
    placeholder.
    """

    type: Literal["tool_result"] = "tool_result"
    run_id: str
    step_id: int
    tool_call_id: str
    tool_name: str
    status: ToolEventStatus
    output: str = ""
    output_ref: str | None = None
    error_message: str | None = None
    error_code: str | None = None
    duration_ms: int | None = None


class RunFailureEvent(BaseEvent):
    type: Literal["run_failure"] = "run_failure"
    run_id: str
    message: str


class AgentStepEvent(BaseEvent):
    """One transition of the agent loop."""

    type: Literal["agent_step"] = "agent_step"
    run_id: str
    step: int
    phase: str
    summary: str
    approaches_tried: list[str] = Field(default_factory=list)
    action_tool_name: str | None = None
    end_status: str | None = None


class AssistantFeedbackEvent(BaseEvent):
    type: Literal["assistant_feedback"] = "assistant_feedback"
    run_id: str
    message: str


SessionEvent = Annotated[
    Union[
        SessionOpenEvent,
        SessionCloseEvent,
        SessionTierChangeEvent,
        UserMessageEvent,
        AssistantMessageEvent,
        ToolCallEvent,
        ToolResultEvent,
        RunFailureEvent,
        AgentStepEvent,
        AssistantFeedbackEvent,
    ],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[SessionEvent] = TypeAdapter(SessionEvent)


class ToolContextEntry(_WireModel):
    """Per-tool record joining a call's arguments with its result."""

    v: int = EVENT_SCHEMA_VERSION
    ts: datetime = Field(default_factory=utc_now)
    session_id: str
    tool_call_id: str
    args: Any = Field(default_factory=dict)
    status: ToolEventStatus
    output: str = ""
    output_ref: str | None = None
    error_message: str | None = None
    error_code: str | None = None
    duration_ms: int | None = None


def serialize_event(event: BaseEvent) -> str:
    """Serialize an event to a single JSON line (without newline)."""
    return event.model_dump_json(by_alias=True, exclude_none=True)


def deserialize_event(line: str) -> SessionEvent:
    """
    Parse one log line into its typed event.

    Raises:
        UnsupportedEventVersionError: The record has a ``v`` other than
            the current schema version.
        MalformedEventError: The line is not JSON, not an object, has no
            version, or does not match any event shape.
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise MalformedEventError(f"Event line is not valid JSON: {e}", line) from e

    if not isinstance(data, dict):
        raise MalformedEventError("Event line is not a JSON object", line)

    if "v" not in data:
        raise MalformedEventError("Missing 'v' field in session event", line)

    version = data["v"]
    if type(version) is not int or version != EVENT_SCHEMA_VERSION:
        raise UnsupportedEventVersionError(version, line)

    try:
        return _EVENT_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise MalformedEventError(f"Invalid session event: {e}", line) from e
