"""
In-memory session for threadkeeper.

A ``Session`` is the live projection of one session's event stream:
the ordered timeline, turn counters, tier state and derived views used
for prompt assembly. It is rebuilt from the durable log on restart and
is never persisted directly.
"""

import json
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, TypeVar, Union

from pydantic import BaseModel

from threadkeeper.memory.events import (
    AgentStepEvent,
    AssistantFeedbackEvent,
    AssistantMessageEvent,
    EventType,
    RunFailureEvent,
    SessionCloseEvent,
    SessionEvent,
    SessionOpenEvent,
    SessionTier,
    SessionTierChangeEvent,
    ToolCallEvent,
    ToolResultEvent,
    UserMessageEvent,
)
from threadkeeper.memory.tiering import (
    ScoringEntry,
    TierState,
    create_initial_tier_state,
    minutes_between,
)

MAX_ARGS_PREVIEW_CHARS = 200
MAX_OUTPUT_PREVIEW_CHARS = 700
TRUNCATION_MARKER = " ...[truncated]"

SessionTimelineEntry = Union[
    UserMessageEvent,
    AssistantMessageEvent,
    ToolCallEvent,
    ToolResultEvent,
    RunFailureEvent,
    AgentStepEvent,
    AssistantFeedbackEvent,
    SessionTierChangeEvent,
]

_T = TypeVar("_T")


def truncate(value: str, max_chars: int) -> str:
    """Cut ``value`` to ``max_chars`` and mark the cut."""
    if len(value) <= max_chars:
        return value
    return f"{value[:max_chars]}{TRUNCATION_MARKER}"


def _last_n(items: list[_T], last_n: int | None) -> list[_T]:
    if last_n is None:
        return items
    if last_n <= 0:
        return []
    return items[-last_n:]


class ConversationTurn(BaseModel):
    """A user or assistant message, as handed to prompt assembly."""

    role: str  # "user" or "assistant"
    content: str
    timestamp: datetime
    session_id: str


class ToolMemoryEvent(BaseModel):
    """A tool result joined back to the arguments of its call."""

    timestamp: datetime
    tool_call_id: str
    tool_name: str
    status: str
    args_preview: str
    output_preview: str
    output_ref: str | None = None
    error_message: str | None = None


class Session:
    """Live projection of one session's event stream.

    Counters only move for their own event kinds, ``last_activity_at``
    never moves backwards, and the timeline is append-only.
    """

    def __init__(
        self,
        session_id: str,
        client_id: str,
        started_at: datetime,
        tier: SessionTier | str = SessionTier.RARE,
        previous_session_summary: str = "",
    ):
        """Initialize an empty session.

        Args:
            session_id: Session identifier.
            client_id: Owning client identifier.
            started_at: Time the session was opened.
            tier: Initial activity tier.
            previous_session_summary: Summary carried over from the
                predecessor session.
        """
        self.id = session_id
        self.client_id = client_id
        self.started_at = started_at
        self.last_activity_at = started_at
        self.previous_session_summary = previous_session_summary
        self.tier_state: TierState = create_initial_tier_state(tier)

        self.timeline: list[SessionTimelineEntry] = []
        self.user_turn_count = 0
        self.assistant_turn_count = 0

        self.closed_at: datetime | None = None
        self.close_reason: str | None = None

        # tool_call_id -> timeline position of the latest matching call
        self._tool_call_index: dict[str, int] = {}
        self._token_estimates: dict[int, int] = {}

    @classmethod
    def from_open_event(cls, event: SessionOpenEvent) -> "Session":
        """Create a session from its ``session_open`` event."""
        session = cls(
            session_id=event.session_id,
            client_id=event.client_id,
            started_at=event.ts,
            tier=event.tier,
            previous_session_summary=event.previous_session_summary,
        )
        session.tier_state = session.tier_state.model_copy(
            update={
                "hard_cap_minutes": event.hard_cap_minutes,
                "idle_timeout_minutes": event.idle_timeout_minutes,
            }
        )
        return session

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    # =========================================================================
    # Mutation
    # =========================================================================

    def apply_event(self, event: SessionEvent) -> None:
        """Fold any event kind into the projection.

        This is the single dispatch point for event kinds; replay and
        live recording both go through it.
        """
        if isinstance(event, SessionOpenEvent):
            return
        if isinstance(event, SessionCloseEvent):
            self.closed_at = event.ts
            self.close_reason = event.reason
            return
        if isinstance(event, SessionTierChangeEvent):
            self.tier_state = TierState(
                tier=event.to_tier,
                hard_cap_minutes=event.hard_cap_minutes,
                idle_timeout_minutes=event.idle_timeout_minutes,
            )
        self.add_entry(event)

    def add_entry(self, entry: SessionTimelineEntry) -> None:
        """Append a timeline entry and advance activity bookkeeping."""
        self.timeline.append(entry)
        if entry.ts > self.last_activity_at:
            self.last_activity_at = entry.ts

        if entry.type == EventType.USER_MESSAGE:
            self.user_turn_count += 1
        elif entry.type == EventType.ASSISTANT_MESSAGE:
            self.assistant_turn_count += 1
        elif entry.type == EventType.TOOL_CALL:
            self._tool_call_index[entry.tool_call_id] = len(self.timeline) - 1

    # =========================================================================
    # Projections
    # =========================================================================

    def get_timeline(
        self,
        kinds: Iterable[EventType | str] | None = None,
        last_n: int | None = None,
    ) -> list[SessionTimelineEntry]:
        """Get timeline entries, optionally filtered by kind, then cut to the last N."""
        if kinds is None:
            entries = list(self.timeline)
        else:
            wanted = {EventType(kind).value for kind in kinds}
            entries = [e for e in self.timeline if e.type in wanted]
        return _last_n(entries, last_n)

    def get_conversation_turns(self, last_n: int | None = None) -> list[ConversationTurn]:
        """Get user and assistant messages in order.

        Args:
            last_n: Keep only the most recent N turns.

        Returns:
            Conversation turns.
        """
        turns = [
            ConversationTurn(
                role="user" if entry.type == EventType.USER_MESSAGE else "assistant",
                content=entry.content,
                timestamp=entry.ts,
                session_id=self.id,
            )
            for entry in self.timeline
            if entry.type in (EventType.USER_MESSAGE, EventType.ASSISTANT_MESSAGE)
        ]
        return _last_n(turns, last_n)

    def get_tool_events(self, last_n: int | None = None) -> list[ToolMemoryEvent]:
        """Get tool results joined with their call arguments.

        Args:
            last_n: Keep only the most recent N results.

        Returns:
            Tool events with truncated previews.
        """
        events = [
            ToolMemoryEvent(
                timestamp=entry.ts,
                tool_call_id=entry.tool_call_id,
                tool_name=entry.tool_name,
                status=entry.status,
                args_preview=truncate(
                    self.find_tool_call_args(entry.tool_call_id), MAX_ARGS_PREVIEW_CHARS
                ),
                output_preview=truncate(
                    entry.output or entry.error_message or "", MAX_OUTPUT_PREVIEW_CHARS
                ),
                output_ref=entry.output_ref,
                error_message=entry.error_message,
            )
            for entry in self.timeline
            if entry.type == EventType.TOOL_RESULT
        ]
        return _last_n(events, last_n)

    def get_agent_steps(self, last_n: int | None = None) -> list[AgentStepEvent]:
        """Get agent-loop steps in order."""
        return self.get_timeline([EventType.AGENT_STEP], last_n)  # type: ignore[return-value]

    def find_tool_call_raw_args(self, tool_call_id: str) -> Any:
        """Arguments of the latest call with this id, or ``{}`` for orphans."""
        position = self._tool_call_index.get(tool_call_id)
        if position is None:
            return {}
        args = self.timeline[position].args  # type: ignore[union-attr]
        return {} if args is None else args

    def find_tool_call_args(self, tool_call_id: str) -> str:
        """Arguments of the latest call with this id as compact JSON, or ``"{}"``."""
        return json.dumps(
            self.find_tool_call_raw_args(tool_call_id),
            separators=(",", ":"),
            ensure_ascii=False,
            default=str,
        )

    def estimate_tool_event_tokens(self, count_tokens: Callable[[str], int]) -> int:
        """Estimate tokens the tool event previews add to a prompt."""
        return sum(
            count_tokens(event.args_preview) + count_tokens(event.output_preview)
            for event in self.get_tool_events()
        )

    def get_timeline_for_scoring(self, count_tokens: Callable[[str], int]) -> list[ScoringEntry]:
        """Timeline reduced to what the activity score needs.

        Token estimates of messages are computed once per entry.
        """
        entries = []
        for position, entry in enumerate(self.timeline):
            estimate = 0
            if entry.type in (EventType.USER_MESSAGE, EventType.ASSISTANT_MESSAGE):
                if position not in self._token_estimates:
                    self._token_estimates[position] = count_tokens(entry.content)
                estimate = self._token_estimates[position]
            entries.append(ScoringEntry(type=entry.type, ts=entry.ts, token_estimate=estimate))
        return entries

    def get_exchange_count(self) -> int:
        """Completed user/assistant exchanges."""
        return min(self.user_turn_count, self.assistant_turn_count)

    def age_minutes(self, now: datetime) -> float:
        return minutes_between(self.started_at, now)

    def idle_minutes(self, now: datetime) -> float:
        return minutes_between(self.last_activity_at, now)

    def __repr__(self) -> str:
        return (
            f"Session(id={self.id!r}, client_id={self.client_id!r}, "
            f"events={len(self.timeline)}, tier={self.tier_state.tier})"
        )
