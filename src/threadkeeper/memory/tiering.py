"""
Activity tiering for threadkeeper.

Converts recent session activity into a tier, and each tier into the
idle timeout and hard age cap that decide when a session is closed.
Tier changes are debounced: a new tier commits only after it has been
observed on consecutive refreshes.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from pydantic import BaseModel

from threadkeeper.memory.events import EventType, SessionTier


@dataclass(frozen=True)
class SessionTierConfig:
    """Close thresholds for one tier, in minutes."""

    hard_cap_minutes: int
    idle_timeout_minutes: int


TIER_CONFIG: dict[SessionTier, SessionTierConfig] = {
    SessionTier.HIGH: SessionTierConfig(hard_cap_minutes=3 * 60, idle_timeout_minutes=20),
    SessionTier.MEDIUM: SessionTierConfig(hard_cap_minutes=6 * 60, idle_timeout_minutes=45),
    SessionTier.LOW: SessionTierConfig(hard_cap_minutes=12 * 60, idle_timeout_minutes=90),
    SessionTier.RARE: SessionTierConfig(hard_cap_minutes=24 * 60, idle_timeout_minutes=180),
}

HYSTERESIS_REQUIRED_HITS = 2
SCORING_WINDOW = timedelta(minutes=60)
TOKENS_PER_SCORE_POINT = 1500


class TierState(BaseModel):
    """Current tier, its thresholds, and the pending candidate tier."""

    tier: SessionTier
    hard_cap_minutes: int
    idle_timeout_minutes: int
    candidate_tier: SessionTier | None = None
    candidate_hits: int = 0


@dataclass
class RefreshResult:
    """Outcome of one tier refresh."""

    changed: bool
    new_state: TierState


@dataclass(frozen=True)
class ScoringEntry:
    """Minimal view of a timeline entry used for activity scoring."""

    type: str
    ts: datetime
    token_estimate: int = 0


def score_to_tier(score: float) -> SessionTier:
    """Map an activity score to a tier."""
    if score >= 40:
        return SessionTier.HIGH
    if score >= 20:
        return SessionTier.MEDIUM
    if score >= 8:
        return SessionTier.LOW
    return SessionTier.RARE


def create_initial_tier_state(tier: SessionTier | str) -> TierState:
    """Build a tier state with the thresholds of ``tier`` and no candidate."""
    tier = SessionTier(tier)
    cfg = TIER_CONFIG[tier]
    return TierState(
        tier=tier,
        hard_cap_minutes=cfg.hard_cap_minutes,
        idle_timeout_minutes=cfg.idle_timeout_minutes,
    )


def refresh_tier(current: TierState, score: float) -> RefreshResult:
    """
    Feed one activity observation into the tier state.

    - Desired tier equals the current tier: the candidate is cleared.
    - Desired tier equals the candidate: the hit count grows, and at
      ``HYSTERESIS_REQUIRED_HITS`` the tier and thresholds are swapped.
    - Otherwise the desired tier becomes the candidate with one hit.

    Args:
        current: State before the observation. Not modified.
        score: Activity score of the observation.

    Returns:
        Whether the tier changed, and the new state.
    """
    desired = score_to_tier(score)

    if desired == current.tier:
        return RefreshResult(
            changed=False,
            new_state=current.model_copy(update={"candidate_tier": None, "candidate_hits": 0}),
        )

    next_hits = current.candidate_hits + 1 if current.candidate_tier == desired else 1

    if next_hits < HYSTERESIS_REQUIRED_HITS:
        return RefreshResult(
            changed=False,
            new_state=current.model_copy(
                update={"candidate_tier": desired, "candidate_hits": next_hits}
            ),
        )

    return RefreshResult(changed=True, new_state=create_initial_tier_state(desired))


def compute_activity_score_from_timeline(
    timeline: Iterable[ScoringEntry],
    now: datetime,
) -> float:
    """
    Compute the activity score over the trailing 60 minutes.

    ``3 * user messages + 2 * assistant messages + 4 * tool calls +
    message tokens / 1500``. Entries older than the window do not count,
    so the score is a sliding rate rather than a cumulative total.
    """
    window_start = now - SCORING_WINDOW

    user_count = 0
    assistant_count = 0
    tool_count = 0
    token_sum = 0

    for entry in timeline:
        if entry.ts < window_start:
            continue

        if entry.type == EventType.USER_MESSAGE:
            user_count += 1
            token_sum += entry.token_estimate
        elif entry.type == EventType.ASSISTANT_MESSAGE:
            assistant_count += 1
            token_sum += entry.token_estimate
        elif entry.type == EventType.TOOL_CALL:
            tool_count += 1

    return 3 * user_count + 2 * assistant_count + 4 * tool_count + token_sum / TOKENS_PER_SCORE_POINT


def minutes_between(start: datetime, end: datetime) -> float:
    """Signed number of minutes from ``start`` to ``end``."""
    return (end - start).total_seconds() / 60


def should_close_session(
    started_at: datetime,
    last_activity_at: datetime,
    hard_cap_minutes: float,
    idle_timeout_minutes: float,
    now: datetime,
) -> bool:
    """True when the session has been idle too long or is too old.

    Either condition alone is enough; both compare with ``>=``.
    """
    if minutes_between(last_activity_at, now) >= idle_timeout_minutes:
        return True
    return minutes_between(started_at, now) >= hard_cap_minutes
