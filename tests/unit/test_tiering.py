"""
Unit tests for activity tiering.
"""

from datetime import datetime, timedelta, timezone

import pytest

from threadkeeper.memory import (
    TIER_CONFIG,
    EventType,
    compute_activity_score_from_timeline,
    refresh_tier,
    score_to_tier,
    should_close_session,
)
from threadkeeper.memory.events import SessionTier
from threadkeeper.memory.tiering import ScoringEntry, create_initial_tier_state

NOW = datetime(2026, 2, 2, 12, 0, tzinfo=timezone.utc)


def ago(minutes: float) -> datetime:
    return NOW - timedelta(minutes=minutes)


class TestScoreToTier:
    """Tests for score_to_tier."""

    @pytest.mark.parametrize(
        ("score", "tier"),
        [
            (0, SessionTier.RARE),
            (7.99, SessionTier.RARE),
            (8, SessionTier.LOW),
            (19.9, SessionTier.LOW),
            (20, SessionTier.MEDIUM),
            (39.9, SessionTier.MEDIUM),
            (40, SessionTier.HIGH),
            (400, SessionTier.HIGH),
        ],
    )
    def test_thresholds(self, score, tier):
        """Test the tier boundaries."""
        assert score_to_tier(score) == tier

    def test_tier_config_values(self):
        """Test the thresholds of each tier."""
        assert TIER_CONFIG[SessionTier.HIGH].idle_timeout_minutes == 20
        assert TIER_CONFIG[SessionTier.MEDIUM].hard_cap_minutes == 360
        assert TIER_CONFIG[SessionTier.LOW].idle_timeout_minutes == 90
        assert TIER_CONFIG[SessionTier.RARE].hard_cap_minutes == 1440


class TestActivityScore:
    """Tests for compute_activity_score_from_timeline."""

    def test_weights(self):
        """Test the per-kind weights and token contribution."""
        timeline = [
            ScoringEntry(type=EventType.USER_MESSAGE.value, ts=ago(5), token_estimate=1000),
            ScoringEntry(type=EventType.ASSISTANT_MESSAGE.value, ts=ago(4), token_estimate=500),
            ScoringEntry(type=EventType.TOOL_CALL.value, ts=ago(3)),
            ScoringEntry(type=EventType.TOOL_RESULT.value, ts=ago(2)),
        ]
        assert compute_activity_score_from_timeline(timeline, NOW) == 3 + 2 + 4 + 1

    def test_old_entries_ignored(self):
        """Test that only the trailing hour counts."""
        timeline = [
            ScoringEntry(type=EventType.USER_MESSAGE.value, ts=ago(61)),
            ScoringEntry(type=EventType.USER_MESSAGE.value, ts=ago(60)),
        ]
        assert compute_activity_score_from_timeline(timeline, NOW) == 3

    def test_empty_timeline(self):
        """Test that no activity scores zero."""
        assert compute_activity_score_from_timeline([], NOW) == 0


class TestRefreshTier:
    """Tests for refresh_tier hysteresis."""

    def test_single_observation_does_not_commit(self):
        """Test that one high reading only records a candidate."""
        state = create_initial_tier_state(SessionTier.RARE)
        result = refresh_tier(state, 50)

        assert result.changed is False
        assert result.new_state.tier == SessionTier.RARE
        assert result.new_state.candidate_tier == SessionTier.HIGH
        assert result.new_state.candidate_hits == 1

    def test_second_consecutive_observation_commits(self):
        """Test that two consecutive readings change the tier."""
        state = create_initial_tier_state(SessionTier.RARE)
        first = refresh_tier(state, 50)
        second = refresh_tier(first.new_state, 45)

        assert second.changed is True
        assert second.new_state.tier == SessionTier.HIGH
        assert second.new_state.idle_timeout_minutes == 20
        assert second.new_state.hard_cap_minutes == 180
        assert second.new_state.candidate_tier is None
        assert second.new_state.candidate_hits == 0

    def test_interrupted_candidate_resets(self):
        """Test that a different reading restarts the count."""
        state = create_initial_tier_state(SessionTier.RARE)
        state = refresh_tier(state, 50).new_state
        state = refresh_tier(state, 25).new_state

        assert state.tier == SessionTier.RARE
        assert state.candidate_tier == SessionTier.MEDIUM
        assert state.candidate_hits == 1

    def test_reading_current_tier_clears_candidate(self):
        """Test that a reading equal to the current tier drops the candidate."""
        state = create_initial_tier_state(SessionTier.RARE)
        state = refresh_tier(state, 50).new_state
        result = refresh_tier(state, 1)

        assert result.changed is False
        assert result.new_state.candidate_tier is None
        assert result.new_state.candidate_hits == 0

    def test_input_state_not_modified(self):
        """Test that refresh_tier returns a new state."""
        state = create_initial_tier_state(SessionTier.RARE)
        refresh_tier(state, 50)
        assert state.candidate_tier is None


class TestShouldCloseSession:
    """Tests for should_close_session."""

    def test_fresh_session_stays_open(self):
        """Test a recent, young session."""
        assert should_close_session(ago(30), ago(5), 1440, 180, NOW) is False

    def test_idle_timeout_alone(self):
        """Test idle timeout with a young session."""
        assert should_close_session(ago(200), ago(180), 1440, 180, NOW) is True
        assert should_close_session(ago(200), ago(179.9), 1440, 180, NOW) is False

    def test_hard_cap_alone(self):
        """Test hard cap with recent activity."""
        assert should_close_session(ago(1440), ago(1), 1440, 180, NOW) is True
        assert should_close_session(ago(1439.9), ago(1), 1440, 180, NOW) is False

    def test_both_exceeded(self):
        """Test that both conditions together close the session."""
        assert should_close_session(ago(2000), ago(500), 1440, 180, NOW) is True

    def test_both_at_exact_limits(self):
        """Test age and idle time both exactly at their limits."""
        assert should_close_session(ago(1440), ago(180), 1440, 180, NOW) is True

    def test_both_just_below_limits(self):
        """Test age and idle time both just under their limits."""
        assert should_close_session(ago(1439.9), ago(179.9), 1440, 180, NOW) is False
