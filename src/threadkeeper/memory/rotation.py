"""
Session rotation policy for threadkeeper.

Decides, for an incoming user message, whether the conversation should
continue in the current session or rotate into a new one. Rules are
evaluated in priority order and the first match wins:

1. ``context_overflow``: context usage at or above the force threshold.
2. ``midnight_rollover``: the calendar day changed and the user has gone
   quiet for longer than the grace window.
3. ``midnight_rollover_deferred_limit``: the day changed while the user
   was active and the deferral ceiling has been reached.
4. ``topic_shift``: enough context is used, the message is not small
   talk, and its salient terms barely overlap recent user turns.

Rules 1-3 are time and quota driven and are never vetoed by small talk.
The evaluator is pure: it reads its inputs and returns a decision.
"""

import json
import re
from collections.abc import Sequence
from datetime import datetime, timedelta
from enum import Enum
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

from threadkeeper.config.schema import RotationPolicyConfig
from threadkeeper.memory.pressure import (
    build_auto_rotate_handoff,
    compose_handoff,
    round_percent,
)
from threadkeeper.memory.session import ConversationTurn

ROTATION_HANDOFF_TURNS = 6

STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "but", "by", "for",
        "from", "how", "i", "in", "is", "it", "me", "my", "of", "on",
        "or", "our", "so", "that", "the", "their", "them", "there", "this", "to",
        "us", "we", "what", "when", "where", "who", "why", "with", "you", "your",
    }
)  # fmt: skip

SMALL_TALK_EXACT = frozenset(
    {
        "hi", "hello", "hey", "yo", "thanks", "thank you", "thx", "ok", "okay",
        "cool", "great", "nice", "bye", "goodbye", "how are you", "how r u",
        "hru", "what's up", "whats up",
    }
)  # fmt: skip

SMALL_TALK_WORDS = frozenset(
    {"hi", "hello", "hey", "yo", "thanks", "thank", "you", "ok", "okay", "cool", "great", "bye"}
)

SMALL_TALK_PATTERNS = (
    re.compile(r"^(good )?(morning|afternoon|evening)$"),
    re.compile(r"^how( is|'s)? it going$"),
    re.compile(r"^are you there$"),
    re.compile(r"^see you( later)?$"),
)

_PUNCTUATION = re.compile(r"[!?.,;:]+")
_WHITESPACE = re.compile(r"\s+")
_FENCED_JSON = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")


class RotationReason(str, Enum):
    """Why a session was rotated."""

    CONTEXT_OVERFLOW = "context_overflow"
    MIDNIGHT_ROLLOVER = "midnight_rollover"
    MIDNIGHT_ROLLOVER_DEFERRED_LIMIT = "midnight_rollover_deferred_limit"
    TOPIC_SHIFT = "topic_shift"


class PendingMidnightRollover(BaseModel):
    """A day boundary seen while the user was still active."""

    from_day_key: str
    to_day_key: str
    first_detected_at_ms: int


class RotationInput(BaseModel):
    """Everything the evaluator looks at for one incoming message."""

    now: datetime
    user_message: str
    context_percent: float
    turns: list[ConversationTurn] = Field(default_factory=list)
    previous_session_summary: str = ""
    pending_midnight: PendingMidnightRollover | None = None
    config: RotationPolicyConfig = Field(default_factory=RotationPolicyConfig)


class RotationDecision(BaseModel):
    """Evaluator verdict, plus the pending rollover to keep for next time."""

    rotate: bool
    reason: RotationReason | None = None
    handoff_summary: str | None = None
    pending_midnight: PendingMidnightRollover | None = None


class RotationDirective(BaseModel):
    """Rotation proposed by the model itself."""

    rotate_session: bool = True
    reason: str = ""
    handoff_summary: str = ""


# =============================================================================
# Evaluation
# =============================================================================


def evaluate_session_rotation(rotation_input: RotationInput) -> RotationDecision:
    """
    Decide whether to rotate before the incoming message is recorded.

    Args:
        rotation_input: Current time, message, context usage, recent
            turns, previous summary and any pending midnight rollover.

    Returns:
        The decision. When ``rotate`` is true, ``reason`` and
        ``handoff_summary`` are set.
    """
    cfg = rotation_input.config

    if rotation_input.context_percent >= cfg.force_rotate_context_percent:
        return RotationDecision(
            rotate=True,
            reason=RotationReason.CONTEXT_OVERFLOW,
            handoff_summary=build_auto_rotate_handoff(
                rotation_input.turns,
                rotation_input.context_percent,
                rotation_input.previous_session_summary,
            ),
        )

    midnight = _evaluate_midnight_rollover(rotation_input)
    if midnight.rotate:
        return midnight

    if (
        rotation_input.context_percent >= cfg.topic_shift_ready_context_percent
        and not is_small_talk_message(rotation_input.user_message, cfg)
        and is_likely_topic_shift(rotation_input.user_message, rotation_input.turns, cfg)
    ):
        return RotationDecision(
            rotate=True,
            reason=RotationReason.TOPIC_SHIFT,
            handoff_summary=compose_handoff(
                "Session rotated due to topic shift at "
                f"{round_percent(rotation_input.context_percent)}% context usage.",
                rotation_input.turns,
                ROTATION_HANDOFF_TURNS,
                rotation_input.previous_session_summary,
            ),
            pending_midnight=midnight.pending_midnight,
        )

    return RotationDecision(rotate=False, pending_midnight=midnight.pending_midnight)


def _evaluate_midnight_rollover(rotation_input: RotationInput) -> RotationDecision:
    cfg = rotation_input.config
    now = rotation_input.now
    turns = rotation_input.turns
    pending = rotation_input.pending_midnight

    if not turns:
        return RotationDecision(rotate=False)

    last_turn_at = turns[-1].timestamp
    now_day_key = day_key(now, cfg.timezone)
    is_active = now - last_turn_at <= timedelta(minutes=cfg.midnight_active_grace_minutes)

    if pending is not None and pending.to_day_key == now_day_key:
        if not is_active:
            return _midnight_decision(
                RotationReason.MIDNIGHT_ROLLOVER,
                "Session rotated for daily midnight rollover.",
                rotation_input,
            )

        deferred_ms = _epoch_ms(now) - pending.first_detected_at_ms
        if deferred_ms >= cfg.midnight_max_deferral_minutes * 60_000:
            return _midnight_decision(
                RotationReason.MIDNIGHT_ROLLOVER_DEFERRED_LIMIT,
                "Session rotated after midnight deferral limit was reached "
                "during active conversation.",
                rotation_input,
            )

        return RotationDecision(rotate=False, pending_midnight=pending)

    from_day_key = day_key(last_turn_at, cfg.timezone)
    if from_day_key == now_day_key:
        return RotationDecision(rotate=False)

    if not is_active:
        return _midnight_decision(
            RotationReason.MIDNIGHT_ROLLOVER,
            "Session rotated for daily midnight rollover.",
            rotation_input,
        )

    if (
        pending is not None
        and pending.from_day_key == from_day_key
        and pending.to_day_key == now_day_key
    ):
        next_pending = pending
    else:
        next_pending = PendingMidnightRollover(
            from_day_key=from_day_key,
            to_day_key=now_day_key,
            first_detected_at_ms=_epoch_ms(now),
        )

    return RotationDecision(rotate=False, pending_midnight=next_pending)


def _midnight_decision(
    reason: RotationReason,
    headline: str,
    rotation_input: RotationInput,
) -> RotationDecision:
    return RotationDecision(
        rotate=True,
        reason=reason,
        handoff_summary=compose_handoff(
            headline,
            rotation_input.turns,
            ROTATION_HANDOFF_TURNS,
            rotation_input.previous_session_summary,
        ),
    )


def day_key(moment: datetime, tz_name: str | None = None) -> str:
    """Calendar day of ``moment`` as ``YYYY-MM-DD`` in the given zone.

    ``None`` uses the host's local zone.
    """
    tz = ZoneInfo(tz_name) if tz_name else None
    return moment.astimezone(tz).strftime("%Y-%m-%d")


def _epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


# =============================================================================
# Message classification
# =============================================================================


def normalize_for_match(value: str) -> str:
    """Lowercase, turn punctuation into spaces, collapse whitespace."""
    value = _PUNCTUATION.sub(" ", value.lower())
    return _WHITESPACE.sub(" ", value).strip()


def tokenize_topic_text(value: str, config: RotationPolicyConfig | None = None) -> list[str]:
    """Salient terms of a message: at least 2 chars, stopwords removed."""
    stopwords = STOPWORDS
    if config is not None and config.extra_stopwords:
        stopwords = stopwords | {w.lower() for w in config.extra_stopwords}

    return [
        token
        for token in normalize_for_match(value).split(" ")
        if len(token) >= 2 and token not in stopwords
    ]


def is_small_talk_message(message: str, config: RotationPolicyConfig | None = None) -> bool:
    """
    Check whether a message is a greeting or pleasantry.

    Matching is case- and punctuation-insensitive. Empty messages count
    as small talk.
    """
    cfg = config or RotationPolicyConfig()
    text = normalize_for_match(message)
    if not text:
        return True

    if len(text) <= cfg.small_talk_max_chars:
        if text in SMALL_TALK_EXACT:
            return True
        if any(normalize_for_match(p) == text for p in cfg.extra_small_talk_phrases):
            return True
        if any(pattern.match(text) for pattern in SMALL_TALK_PATTERNS):
            return True

    words = text.split(" ")
    return len(words) <= 3 and all(word in SMALL_TALK_WORDS for word in words)


def is_likely_topic_shift(
    user_message: str,
    turns: Sequence[ConversationTurn],
    config: RotationPolicyConfig | None = None,
) -> bool:
    """
    Compare the salient terms of a message with recent user turns.

    The vocabulary is built from the last ``topic_history_user_turns``
    user turns (skipping small talk) and capped at
    ``topic_vocabulary_max_tokens`` terms. A shift is reported when the
    fraction of message terms found in it is below
    ``topic_shift_min_overlap_ratio``. Messages with too few terms, and
    sessions with no vocabulary yet, never shift.
    """
    cfg = config or RotationPolicyConfig()

    current_tokens = tokenize_topic_text(user_message, cfg)
    if len(current_tokens) < cfg.topic_shift_min_current_tokens:
        return False

    user_turns = [turn for turn in turns if turn.role == "user"]
    recent_user_turns = user_turns[-cfg.topic_history_user_turns :]

    vocabulary: set[str] = set()
    for turn in recent_user_turns:
        if len(vocabulary) >= cfg.topic_vocabulary_max_tokens:
            break
        if is_small_talk_message(turn.content, cfg):
            continue
        for token in tokenize_topic_text(turn.content, cfg):
            vocabulary.add(token)
            if len(vocabulary) >= cfg.topic_vocabulary_max_tokens:
                break

    if not vocabulary:
        return False

    overlap = sum(1 for token in current_tokens if token in vocabulary)
    return overlap / len(current_tokens) < cfg.topic_shift_min_overlap_ratio


# =============================================================================
# Model-proposed rotation
# =============================================================================


def parse_rotation_directive(text: str) -> RotationDirective | None:
    """
    Extract a rotation directive from model output.

    Accepts a bare JSON object or one inside a fenced code block, e.g.
    ``{"done": false, "rotate_session": true, "reason": "...",
    "handoff_summary": "..."}``.

    Returns:
        The directive, or None if the output is not a rotation directive.
    """
    json_text = text.strip()
    fence = _FENCED_JSON.search(json_text)
    if fence:
        json_text = fence.group(1).strip()

    try:
        parsed = json.loads(json_text)
    except json.JSONDecodeError:
        return None

    if not isinstance(parsed, dict) or parsed.get("rotate_session") is not True:
        return None

    return RotationDirective(
        reason=str(parsed.get("reason") or ""),
        handoff_summary=str(parsed.get("handoff_summary") or ""),
    )
