"""
Unit tests for session summaries and token counting.
"""

from datetime import datetime, timedelta, timezone

from threadkeeper.memory import (
    AssistantMessageEvent,
    Session,
    TokenCounter,
    ToolCallEvent,
    ToolResultEvent,
    UserMessageEvent,
    extract_keywords,
    generate_summary,
)
from threadkeeper.memory.summary import build_keyword_list

T0 = datetime(2026, 2, 2, 10, 0, tzinfo=timezone.utc)


def build_session() -> Session:
    session = Session(session_id="s1", client_id="local", started_at=T0)
    session.apply_event(
        UserMessageEvent(ts=T0, session_id="s1", run_id="r1", content="Fix the parser for nested lists")
    )
    for i, status in enumerate(["success", "failed", "success"]):
        session.apply_event(
            ToolCallEvent(
                ts=T0 + timedelta(minutes=i),
                session_id="s1",
                run_id="r1",
                step_id=i,
                tool_call_id=f"c{i}",
                tool_name="run_tests",
                args={},
            )
        )
        session.apply_event(
            ToolResultEvent(
                ts=T0 + timedelta(minutes=i),
                session_id="s1",
                run_id="r1",
                step_id=i,
                tool_call_id=f"c{i}",
                tool_name="run_tests",
                status=status,
                error_message="2 tests failed" if status == "failed" else None,
            )
        )
    session.apply_event(
        AssistantMessageEvent(ts=T0, session_id="s1", run_id="r1", content="Parser fixed.")
    )
    return session


class TestGenerateSummary:
    """Tests for generate_summary."""

    def test_final_summary_sections(self):
        """Test the summary contents."""
        summary = generate_summary(build_session(), "final")

        assert summary.startswith("Summary type: final")
        assert "Fix the parser for nested lists" in summary
        assert "Parser fixed." in summary
        assert "run_tests (ok:2, fail:1)" in summary
        assert "2 tests failed" in summary

    def test_empty_session(self):
        """Test summarizing a session without activity."""
        session = Session(session_id="s1", client_id="local", started_at=T0)
        summary = generate_summary(session, "rolling")
        assert summary.startswith("Summary type: rolling")

    def test_deterministic(self):
        """Test that the same session gives the same summary."""
        assert generate_summary(build_session(), "final") == generate_summary(build_session(), "final")


class TestKeywords:
    """Tests for keyword extraction."""

    def test_user_terms_then_tools(self):
        """Test keywords from user turns followed by tool names."""
        assert extract_keywords(build_session()) == ["fix", "the", "parser", "for", "nested", "lists", "run_tests"]

    def test_keyword_limit(self):
        """Test the cap on distinct terms."""
        text = " ".join(f"term{i}" for i in range(30))
        assert len(build_keyword_list(text)) == 12

    def test_short_and_duplicate_terms_dropped(self):
        """Test that short and repeated terms are skipped."""
        assert build_keyword_list("an API api is ok, api!") == ["api"]


class TestTokenCounter:
    """Tests for TokenCounter."""

    def test_empty_text_is_free(self):
        """Test that empty text counts as zero without loading an encoding."""
        counter = TokenCounter()
        assert counter.count("") == 0
        assert counter("") == 0
        assert counter._encoding is None

    def test_count_turns_adds_overhead(self):
        """Test per-turn overhead on top of content tokens."""

        class SplitEncoding:
            def encode(self, text):
                return text.split()

        counter = TokenCounter()
        counter._encoding = SplitEncoding()
        turns = build_session().get_conversation_turns()

        # "Fix the parser for nested lists" + "Parser fixed."
        assert counter.count_turns(turns) == (4 + 6) + (4 + 2)
