"""
Session manager for threadkeeper.

Provides the main interface for recording conversation activity into
sessions: opening and closing sessions, tier refresh, rotation and
summaries. Each client has its own context and lock; all writes for one
client are sequential, different clients are independent.
"""

import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from threadkeeper.config import Config, get_config
from threadkeeper.memory.context import TokenCounter
from threadkeeper.memory.events import (
    AgentStepEvent,
    AssistantFeedbackEvent,
    AssistantMessageEvent,
    RunFailureEvent,
    SessionCloseEvent,
    SessionEvent,
    SessionOpenEvent,
    SessionTierChangeEvent,
    ToolCallEvent,
    ToolContextEntry,
    ToolEventStatus,
    ToolResultEvent,
    UserMessageEvent,
    utc_now,
)
from threadkeeper.memory.exceptions import SessionNotOpenError
from threadkeeper.memory.persistence import ActiveSessionStore, SessionPersistence
from threadkeeper.memory.pressure import SessionStatus
from threadkeeper.memory.rotation import (
    PendingMidnightRollover,
    RotationDecision,
    RotationDirective,
    RotationInput,
    evaluate_session_rotation,
)
from threadkeeper.memory.session import ConversationTurn, Session, ToolMemoryEvent
from threadkeeper.memory.summary import extract_keywords, generate_summary
from threadkeeper.memory.tiering import (
    compute_activity_score_from_timeline,
    create_initial_tier_state,
    refresh_tier,
    should_close_session,
)

logger = logging.getLogger(__name__)


class MemoryRunHandle(BaseModel):
    """Identifies the session and run a user message was recorded in."""

    session_id: str
    run_id: str
    rotation_reason: str | None = None
    previous_session_id: str | None = None


class CreateSessionInput(BaseModel):
    """Request to close the active session and open a new one."""

    reason: str
    run_id: str | None = None
    source: Literal["agent", "external", "system"] = "agent"
    confidence: float | None = None
    handoff_summary: str | None = None


class CreateSessionResult(BaseModel):
    previous_session_id: str | None
    session_id: str
    session_path: str


class PromptMemoryContext(BaseModel):
    """Memory handed to prompt assembly."""

    conversation_turns: list[ConversationTurn] = Field(default_factory=list)
    previous_session_summary: str = ""
    tool_events: list[ToolMemoryEvent] = Field(default_factory=list)


@dataclass
class ClientContext:
    """Mutable state of one client, guarded by its own lock.

    While a session is open, ``previous_session_summary`` is the summary
    it was opened with; once closed, it is the summary the next session
    will carry.
    """

    client_id: str
    lock: threading.RLock = field(default_factory=threading.RLock)
    current_session: Session | None = None
    previous_session_summary: str = ""
    pending_midnight: PendingMidnightRollover | None = None
    last_rolling_summary_turn: int = 0
    initialized: bool = False


class SessionManager:
    """Main interface for session memory.

    Provides:
    - Session lifecycle (open, expire, rotate, recover after restart)
    - Durable recording of messages, tool activity and agent steps
    - Activity tier refresh with hysteresis
    - Rotation policy evaluation before each user message
    - Rolling and final summaries
    """

    def __init__(
        self,
        data_dir: Path | str | None = None,
        config: Config | None = None,
        now: Callable[[], datetime] | None = None,
        token_counter: Callable[[str], int] | None = None,
        active_store: ActiveSessionStore | None = None,
    ):
        """Initialize the session manager.

        Args:
            data_dir: Memory data directory. Defaults to the configured
                ``memory.data_dir`` or ~/.threadkeeper/memory.
            config: Configuration. Defaults to the loaded global config.
            now: Clock returning aware datetimes.
            token_counter: Callable counting tokens of a text.
            active_store: Store for active-session markers.
        """
        self.config = config or get_config()

        self.persistence = SessionPersistence(
            data_dir or self.config.memory.data_dir,
            large_output_threshold=self.config.memory.large_output_threshold,
        )
        self.active_store = active_store or self.persistence.create_active_store()
        self.count_tokens = token_counter or TokenCounter()
        self._clock = now or utc_now

        self._contexts: dict[str, ClientContext] = {}
        self._contexts_lock = threading.Lock()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def initialize(self, client_id: str) -> None:
        """
        Prepare a client, restoring its active session if there is one.

        The session named by the client's marker is replayed from its
        log. If it has outlived its idle timeout or hard cap it is closed
        with reason ``expired_on_recovery`` instead.
        """
        ctx = self._context(client_id)
        with ctx.lock:
            self._initialize_locked(ctx)

    def shutdown(self, client_id: str | None = None) -> None:
        """Release in-memory state of one client, or of all clients.

        Open sessions stay open on disk and are resumed by the next
        ``initialize``.
        """
        with self._contexts_lock:
            if client_id is None:
                contexts = list(self._contexts.values())
                self._contexts.clear()
            else:
                removed = self._contexts.pop(client_id, None)
                contexts = [removed] if removed is not None else []

        for ctx in contexts:
            with ctx.lock:
                if ctx.current_session is not None:
                    logger.info(
                        f"Released session {ctx.current_session.id} of client {ctx.client_id}"
                    )
                ctx.current_session = None
                ctx.initialized = False

    # =========================================================================
    # Runs
    # =========================================================================

    def begin_run(
        self,
        client_id: str,
        user_message: str,
        context_percent: float | None = None,
    ) -> MemoryRunHandle:
        """
        Record an incoming user message and start a run.

        The active session is expired first if it has been idle too long
        or is too old. The rotation policy is then evaluated before the
        message is recorded, so a rotating message becomes the first
        message of the new session.

        Args:
            client_id: Client the message belongs to.
            user_message: Message text.
            context_percent: Current context-window usage, 0-100. Without
                it only the time-driven rules (midnight rollover) can fire.

        Returns:
            Handle of the run, including the rotation that happened.
        """
        ctx = self._context(client_id)
        with ctx.lock:
            self._ensure_initialized(ctx)
            now = self._now(ctx)
            self._ensure_open_session(ctx, now)

            rotation_reason = None
            previous_session_id = None
            decision = self._evaluate_rotation_locked(
                ctx, user_message, 0.0 if context_percent is None else context_percent, now
            )
            if decision.rotate and decision.reason is not None:
                rotation_reason = decision.reason.value
                result = self._rotate(ctx, rotation_reason, decision.handoff_summary, now)
                previous_session_id = result.previous_session_id

            session = self._require_session(ctx)
            run_id = str(uuid.uuid4())
            self._append(
                ctx,
                UserMessageEvent(
                    ts=now, session_id=session.id, run_id=run_id, content=user_message
                ),
            )
            self._refresh_tier(ctx, now)

            return MemoryRunHandle(
                session_id=session.id,
                run_id=run_id,
                rotation_reason=rotation_reason,
                previous_session_id=previous_session_id,
            )

    def evaluate_rotation(
        self,
        client_id: str,
        user_message: str,
        context_percent: float,
    ) -> RotationDecision:
        """Evaluate the rotation policy without applying the decision.

        A pending midnight rollover found along the way is remembered.
        """
        ctx = self._context(client_id)
        with ctx.lock:
            self._ensure_initialized(ctx)
            return self._evaluate_rotation_locked(
                ctx, user_message, context_percent, self._now(ctx)
            )

    def create_session(self, client_id: str, request: CreateSessionInput) -> CreateSessionResult:
        """Close the active session (if any) and open a new one.

        A handoff summary in the request becomes the new session's
        previous-session summary; otherwise the final summary of the
        closed session is carried over.
        """
        ctx = self._context(client_id)
        with ctx.lock:
            self._ensure_initialized(ctx)
            now = self._now(ctx)
            logger.info(
                f"Session switch requested by {request.source} for client {client_id}: "
                f"{request.reason}"
            )
            return self._rotate(ctx, request.reason, request.handoff_summary, now)

    def apply_rotation_directive(
        self,
        client_id: str,
        directive: RotationDirective,
        run_id: str | None = None,
    ) -> CreateSessionResult | None:
        """Apply a rotation proposed by the model.

        Returns:
            The switch result, or None if the directive does not rotate.
        """
        if not directive.rotate_session:
            return None

        return self.create_session(
            client_id,
            CreateSessionInput(
                reason=directive.reason or "model_directive",
                run_id=run_id,
                source="agent",
                handoff_summary=directive.handoff_summary or None,
            ),
        )

    # =========================================================================
    # Recording
    # =========================================================================

    def record_tool_call(
        self,
        client_id: str,
        run_id: str,
        step_id: int,
        tool_call_id: str,
        tool_name: str,
        args: Any = None,
    ) -> None:
        ctx = self._context(client_id)
        with ctx.lock:
            self._ensure_initialized(ctx)
            session = self._require_session(ctx)
            now = self._now(ctx)
            self._append(
                ctx,
                ToolCallEvent(
                    ts=now,
                    session_id=session.id,
                    run_id=run_id,
                    step_id=step_id,
                    tool_call_id=tool_call_id,
                    tool_name=tool_name,
                    args={} if args is None else args,
                ),
            )
            self._refresh_tier(ctx, now)

    def record_tool_result(
        self,
        client_id: str,
        run_id: str,
        step_id: int,
        tool_call_id: str,
        tool_name: str,
        status: ToolEventStatus,
        output: str | None = None,
        error_message: str | None = None,
        error_code: str | None = None,
        duration_ms: int | None = None,
    ) -> None:
        """
        Record the result of a tool call.

        Outputs above the large-output threshold are written to a side
        file; the event then references it and carries a placeholder.
        The result is also joined with its call's arguments in the
        per-tool context log.
        """
        ctx = self._context(client_id)
        with ctx.lock:
            self._ensure_initialized(ctx)
            session = self._require_session(ctx)
            now = self._now(ctx)

            output = output or ""
            output_ref = self.persistence.persist_large_tool_output(
                session.id, tool_call_id, tool_name, output
            )
            if output_ref is not None:
                output = f"[output stored in {output_ref}: {len(output)} chars]"

            self._append(
                ctx,
                ToolResultEvent(
                    ts=now,
                    session_id=session.id,
                    run_id=run_id,
                    step_id=step_id,
                    tool_call_id=tool_call_id,
                    tool_name=tool_name,
                    status=status,
                    output=output,
                    output_ref=output_ref,
                    error_message=error_message,
                    error_code=error_code,
                    duration_ms=duration_ms,
                ),
            )

            if self.config.memory.write_tool_context:
                self.persistence.append_tool_context_entry(
                    tool_name,
                    ToolContextEntry(
                        ts=now,
                        session_id=session.id,
                        tool_call_id=tool_call_id,
                        args=session.find_tool_call_raw_args(tool_call_id),
                        status=status,
                        output=output,
                        output_ref=output_ref,
                        error_message=error_message,
                        error_code=error_code,
                        duration_ms=duration_ms,
                    ),
                )

            self._refresh_tier(ctx, now)

    def record_assistant_final(self, client_id: str, run_id: str, content: str) -> None:
        """Record the assistant's final reply of a run."""
        ctx = self._context(client_id)
        with ctx.lock:
            self._ensure_initialized(ctx)
            session = self._require_session(ctx)
            now = self._now(ctx)
            self._append(
                ctx,
                AssistantMessageEvent(ts=now, session_id=session.id, run_id=run_id, content=content),
            )
            self._refresh_tier(ctx, now)
            self._maybe_create_rolling_summary(ctx, now)

    def record_run_failure(self, client_id: str, run_id: str, message: str) -> None:
        ctx = self._context(client_id)
        with ctx.lock:
            self._ensure_initialized(ctx)
            session = self._require_session(ctx)
            self._append(
                ctx,
                RunFailureEvent(
                    ts=self._now(ctx), session_id=session.id, run_id=run_id, message=message
                ),
            )

    def record_agent_step(
        self,
        client_id: str,
        run_id: str,
        step: int,
        phase: str,
        summary: str,
        approaches_tried: list[str] | None = None,
        action_tool_name: str | None = None,
        end_status: str | None = None,
    ) -> None:
        ctx = self._context(client_id)
        with ctx.lock:
            self._ensure_initialized(ctx)
            session = self._require_session(ctx)
            self._append(
                ctx,
                AgentStepEvent(
                    ts=self._now(ctx),
                    session_id=session.id,
                    run_id=run_id,
                    step=step,
                    phase=phase,
                    summary=summary,
                    approaches_tried=approaches_tried or [],
                    action_tool_name=action_tool_name,
                    end_status=end_status,
                ),
            )

    def record_assistant_feedback(self, client_id: str, run_id: str, message: str) -> None:
        ctx = self._context(client_id)
        with ctx.lock:
            self._ensure_initialized(ctx)
            session = self._require_session(ctx)
            self._append(
                ctx,
                AssistantFeedbackEvent(
                    ts=self._now(ctx), session_id=session.id, run_id=run_id, message=message
                ),
            )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_prompt_memory_context(self, client_id: str) -> PromptMemoryContext:
        """Conversation turns, carried summary and tool events for the prompt."""
        ctx = self._context(client_id)
        with ctx.lock:
            self._ensure_initialized(ctx)
            session = ctx.current_session
            if session is None:
                return PromptMemoryContext(previous_session_summary=ctx.previous_session_summary)

            return PromptMemoryContext(
                conversation_turns=session.get_conversation_turns(),
                previous_session_summary=ctx.previous_session_summary,
                tool_events=session.get_tool_events(),
            )

    def get_session_status(self, client_id: str, context_percent: float) -> SessionStatus | None:
        """Status snapshot of the active session, or None without one."""
        ctx = self._context(client_id)
        with ctx.lock:
            self._ensure_initialized(ctx)
            session = ctx.current_session
            if session is None:
                return None

            return SessionStatus(
                context_percent=context_percent,
                turns=len(session.get_conversation_turns()),
                session_age_minutes=max(0, int(session.age_minutes(self._now(ctx)))),
            )

    def get_current_session(self, client_id: str) -> Session | None:
        ctx = self._context(client_id)
        with ctx.lock:
            self._ensure_initialized(ctx)
            return ctx.current_session

    # =========================================================================
    # Internals (caller holds the client lock)
    # =========================================================================

    def _context(self, client_id: str) -> ClientContext:
        with self._contexts_lock:
            ctx = self._contexts.get(client_id)
            if ctx is None:
                ctx = ClientContext(client_id=client_id)
                self._contexts[client_id] = ctx
            return ctx

    def _now(self, ctx: ClientContext) -> datetime:
        """Current time, never earlier than the session's last activity."""
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        session = ctx.current_session
        if session is not None and now < session.last_activity_at:
            return session.last_activity_at
        return now

    def _ensure_initialized(self, ctx: ClientContext) -> None:
        if not ctx.initialized:
            self._initialize_locked(ctx)

    def _initialize_locked(self, ctx: ClientContext) -> None:
        self.persistence.start()

        ctx.current_session = None
        ctx.pending_midnight = None
        ctx.previous_session_summary = self.persistence.load_previous_session_summary(
            ctx.client_id
        )

        active_id = self.active_store.get(ctx.client_id)
        if active_id:
            logger.info(f"Found active session marker for {active_id}, replaying")
            restored = self.persistence.replay_session_file(
                self.persistence.session_path(active_id)
            )

            if restored is not None and restored.client_id != ctx.client_id:
                # Marker belongs to another client; leave it in place
                logger.warning(
                    f"Active session {active_id} belongs to {restored.client_id}, "
                    f"not {ctx.client_id}; starting fresh"
                )
            elif restored is None or restored.is_closed:
                logger.warning(f"Ignoring stale active session marker for {active_id}")
                self.active_store.clear(ctx.client_id)
            else:
                ctx.current_session = restored
                ctx.previous_session_summary = restored.previous_session_summary
                now = self._now(ctx)
                if self._is_expired(restored, now):
                    self._close_session(ctx, now, "expired_on_recovery")
                else:
                    logger.info(
                        f"Restored session {restored.id} with {len(restored.timeline)} events"
                    )

        ctx.initialized = True

    def _require_session(self, ctx: ClientContext) -> Session:
        if ctx.current_session is None:
            raise SessionNotOpenError(ctx.client_id)
        return ctx.current_session

    def _append(self, ctx: ClientContext, event: SessionEvent) -> None:
        """Durably append, then fold into the live projection."""
        self.persistence.append_event(event)
        if ctx.current_session is not None and ctx.current_session.id == event.session_id:
            ctx.current_session.apply_event(event)

    def _is_expired(self, session: Session, now: datetime) -> bool:
        return should_close_session(
            session.started_at,
            session.last_activity_at,
            session.tier_state.hard_cap_minutes,
            session.tier_state.idle_timeout_minutes,
            now,
        )

    def _ensure_open_session(self, ctx: ClientContext, now: datetime) -> None:
        session = ctx.current_session
        if session is not None:
            if not self._is_expired(session, now):
                return
            self._close_session(ctx, now, "expired")
            ctx.pending_midnight = None

        self._open_session(ctx, now)

    def _open_session(self, ctx: ClientContext, now: datetime) -> Session:
        tier_state = create_initial_tier_state(self.config.memory.initial_tier)
        event = SessionOpenEvent(
            ts=now,
            session_id=str(uuid.uuid4()),
            client_id=ctx.client_id,
            previous_session_summary=ctx.previous_session_summary,
            tier=tier_state.tier,
            hard_cap_minutes=tier_state.hard_cap_minutes,
            idle_timeout_minutes=tier_state.idle_timeout_minutes,
        )

        self.persistence.append_event(event)
        session = Session.from_open_event(event)
        ctx.current_session = session
        ctx.last_rolling_summary_turn = 0
        self.active_store.set(ctx.client_id, session.id)

        logger.info(f"Opened session {session.id} for client {ctx.client_id}")
        return session

    def _close_session(self, ctx: ClientContext, now: datetime, reason: str) -> None:
        session = self._require_session(ctx)
        summary_text = generate_summary(session, "final")
        keywords = extract_keywords(session)

        self._append(
            ctx,
            SessionCloseEvent(
                ts=now,
                session_id=session.id,
                reason=reason,
                summary_text=summary_text,
                keywords=keywords,
            ),
        )
        self.active_store.clear(ctx.client_id)
        self.persistence.save_session_summary(
            session.id, session.client_id, "final", summary_text, keywords, now
        )

        ctx.previous_session_summary = summary_text
        ctx.current_session = None
        logger.info(f"Closed session {session.id} (reason: {reason})")

    def _rotate(
        self,
        ctx: ClientContext,
        reason: str,
        handoff_summary: str | None,
        now: datetime,
    ) -> CreateSessionResult:
        previous_session_id = None
        if ctx.current_session is not None:
            previous_session_id = ctx.current_session.id
            self._close_session(ctx, now, reason)

        if handoff_summary:
            ctx.previous_session_summary = handoff_summary
        ctx.pending_midnight = None

        session = self._open_session(ctx, now)
        logger.info(f"Rotated client {ctx.client_id} into session {session.id} ({reason})")

        return CreateSessionResult(
            previous_session_id=previous_session_id,
            session_id=session.id,
            session_path=str(self.persistence.session_path(session.id)),
        )

    def _evaluate_rotation_locked(
        self,
        ctx: ClientContext,
        user_message: str,
        context_percent: float,
        now: datetime,
    ) -> RotationDecision:
        session = ctx.current_session
        try:
            decision = evaluate_session_rotation(
                RotationInput(
                    now=now,
                    user_message=user_message,
                    context_percent=context_percent,
                    turns=session.get_conversation_turns() if session is not None else [],
                    previous_session_summary=ctx.previous_session_summary,
                    pending_midnight=ctx.pending_midnight,
                    config=self.config.rotation,
                )
            )
        except Exception as e:
            logger.warning(f"Rotation evaluation failed, continuing session: {e}", exc_info=True)
            return RotationDecision(rotate=False, pending_midnight=ctx.pending_midnight)

        ctx.pending_midnight = decision.pending_midnight
        if decision.rotate:
            logger.info(f"Rotation decided for client {ctx.client_id}: {decision.reason}")
        return decision

    def _refresh_tier(self, ctx: ClientContext, now: datetime) -> None:
        session = self._require_session(ctx)
        try:
            timeline = session.get_timeline_for_scoring(self.count_tokens)
            score = compute_activity_score_from_timeline(timeline, now)
            result = refresh_tier(session.tier_state, score)
        except Exception as e:
            logger.warning(f"Tier refresh failed for session {session.id}: {e}", exc_info=True)
            return

        if not result.changed:
            session.tier_state = result.new_state
            return

        from_tier = session.tier_state.tier
        self._append(
            ctx,
            SessionTierChangeEvent(
                ts=now,
                session_id=session.id,
                from_tier=from_tier,
                to_tier=result.new_state.tier,
                score=score,
                hard_cap_minutes=result.new_state.hard_cap_minutes,
                idle_timeout_minutes=result.new_state.idle_timeout_minutes,
            ),
        )
        logger.info(
            f"Session {session.id} tier {from_tier.value} -> {result.new_state.tier.value} "
            f"(score {score:.1f})"
        )

    def _maybe_create_rolling_summary(self, ctx: ClientContext, now: datetime) -> None:
        session = self._require_session(ctx)
        every = self.config.memory.rolling_summary_every_user_turns
        user_turns = session.user_turn_count

        if every <= 0 or user_turns == 0 or user_turns % every != 0:
            return
        if ctx.last_rolling_summary_turn == user_turns:
            return

        self.persistence.save_session_summary(
            session.id,
            session.client_id,
            "rolling",
            generate_summary(session, "rolling"),
            extract_keywords(session),
            now,
        )
        ctx.last_rolling_summary_turn = user_turns
