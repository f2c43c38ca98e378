"""
threadkeeper session memory.

Records conversation activity as append-only session event logs and keeps
a live projection of the active session per client.

Usage:
    from threadkeeper.memory import SessionManager

    manager = SessionManager()
    manager.initialize("local")

    # Record a turn; rotation is evaluated against the context usage
    run = manager.begin_run("local", "Refactor the parser", context_percent=42.0)
    manager.record_assistant_final("local", run.run_id, "Done.")

    # Memory for the next prompt
    context = manager.get_prompt_memory_context("local")
"""

# Events
from threadkeeper.memory.events import (
    EVENT_SCHEMA_VERSION,
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
    ToolContextEntry,
    ToolResultEvent,
    UserMessageEvent,
    deserialize_event,
    serialize_event,
)

# Exceptions
from threadkeeper.memory.exceptions import (
    EventLogError,
    MalformedEventError,
    MemoryStoreError,
    PersistenceError,
    SessionNotOpenError,
    UnsupportedEventVersionError,
)

# Session projection
from threadkeeper.memory.session import (
    ConversationTurn,
    Session,
    ToolMemoryEvent,
)

# Tiering
from threadkeeper.memory.tiering import (
    TIER_CONFIG,
    RefreshResult,
    TierState,
    compute_activity_score_from_timeline,
    refresh_tier,
    score_to_tier,
    should_close_session,
)

# Context pressure
from threadkeeper.memory.pressure import (
    ContextPressureSignal,
    PressureLevel,
    SessionStatus,
    build_auto_rotate_handoff,
    compute_context_pressure,
    render_session_status_section,
)

# Rotation
from threadkeeper.memory.rotation import (
    PendingMidnightRollover,
    RotationDecision,
    RotationDirective,
    RotationInput,
    RotationReason,
    evaluate_session_rotation,
    is_likely_topic_shift,
    is_small_talk_message,
    parse_rotation_directive,
)

# Summaries
from threadkeeper.memory.summary import extract_keywords, generate_summary

# Persistence
from threadkeeper.memory.persistence import (
    ActiveSessionStore,
    SessionPersistence,
    SessionSummaryRecord,
)

# Token counting
from threadkeeper.memory.context import TokenCounter

# Manager
from threadkeeper.memory.manager import (
    CreateSessionInput,
    CreateSessionResult,
    MemoryRunHandle,
    PromptMemoryContext,
    SessionManager,
)

__all__ = [
    # Events
    "EVENT_SCHEMA_VERSION",
    "AgentStepEvent",
    "AssistantFeedbackEvent",
    "AssistantMessageEvent",
    "EventType",
    "RunFailureEvent",
    "SessionCloseEvent",
    "SessionEvent",
    "SessionOpenEvent",
    "SessionTier",
    "SessionTierChangeEvent",
    "ToolCallEvent",
    "ToolContextEntry",
    "ToolResultEvent",
    "UserMessageEvent",
    "deserialize_event",
    "serialize_event",
    # Exceptions
    "EventLogError",
    "MalformedEventError",
    "MemoryStoreError",
    "PersistenceError",
    "SessionNotOpenError",
    "UnsupportedEventVersionError",
    # Session projection
    "ConversationTurn",
    "Session",
    "ToolMemoryEvent",
    # Tiering
    "TIER_CONFIG",
    "RefreshResult",
    "TierState",
    "compute_activity_score_from_timeline",
    "refresh_tier",
    "score_to_tier",
    "should_close_session",
    # Context pressure
    "ContextPressureSignal",
    "PressureLevel",
    "SessionStatus",
    "build_auto_rotate_handoff",
    "compute_context_pressure",
    "render_session_status_section",
    # Rotation
    "PendingMidnightRollover",
    "RotationDecision",
    "RotationDirective",
    "RotationInput",
    "RotationReason",
    "evaluate_session_rotation",
    "is_likely_topic_shift",
    "is_small_talk_message",
    "parse_rotation_directive",
    # Summaries
    "extract_keywords",
    "generate_summary",
    # Persistence
    "ActiveSessionStore",
    "SessionPersistence",
    "SessionSummaryRecord",
    # Token counting
    "TokenCounter",
    # Manager
    "CreateSessionInput",
    "CreateSessionResult",
    "MemoryRunHandle",
    "PromptMemoryContext",
    "SessionManager",
]
