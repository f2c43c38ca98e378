"""
Deterministic session summaries for threadkeeper.

Summaries are built from the session projection alone, without a model
call: recent turn snippets, tool usage counts and recent failures.
"""

import re
from collections import Counter
from typing import Literal

from threadkeeper.memory.session import Session, truncate

SummaryType = Literal["rolling", "final"]

MAX_SUMMARY_PREVIEW_CHARS = 120
SUMMARY_RECENT_TURNS = 8
MAX_KEYWORDS = 12

_KEYWORD_SPLIT = re.compile(r"[^a-z0-9_.-]+")


def build_keyword_list(text: str, limit: int = MAX_KEYWORDS) -> list[str]:
    """First ``limit`` distinct terms of at least 3 characters."""
    unique: list[str] = []
    for term in _KEYWORD_SPLIT.split(text.lower()):
        term = term.strip()
        if len(term) < 3 or term in unique:
            continue
        if len(unique) >= limit:
            break
        unique.append(term)
    return unique


def extract_keywords(session: Session) -> list[str]:
    """Keywords of a session: terms from user turns, then tool names."""
    user_text = " ".join(
        turn.content for turn in session.get_conversation_turns() if turn.role == "user"
    )
    keywords = build_keyword_list(user_text)
    for event in session.get_tool_events():
        if event.tool_name not in keywords:
            keywords.append(event.tool_name)
    return keywords


def generate_summary(session: Session, summary_type: SummaryType) -> str:
    """
    Build a plain-text summary of a session.

    Args:
        session: Session to summarize.
        summary_type: "rolling" for periodic snapshots, "final" on close.

    Returns:
        Multi-line summary text.
    """
    lines = [f"Summary type: {summary_type}"]

    latest_turns = session.get_conversation_turns(last_n=SUMMARY_RECENT_TURNS)
    if latest_turns:
        snippets = " | ".join(
            f"{turn.role}: {truncate(turn.content, MAX_SUMMARY_PREVIEW_CHARS)}"
            for turn in latest_turns
        )
        lines.append(f"Recent turns: {snippets}")

    tool_events = session.get_tool_events()
    ok_counts: Counter[str] = Counter()
    fail_counts: Counter[str] = Counter()
    for event in tool_events:
        if event.status == "success":
            ok_counts[event.tool_name] += 1
        else:
            fail_counts[event.tool_name] += 1

    totals = ok_counts + fail_counts
    if totals:
        tool_line = ", ".join(
            f"{name} (ok:{ok_counts[name]}, fail:{fail_counts[name]})"
            for name, _ in totals.most_common(5)
        )
        lines.append(f"Tools used: {tool_line}")

    recent_failures = [e for e in tool_events if e.status == "failed" and e.error_message][-3:]
    if recent_failures:
        failures = " | ".join(
            f"{e.tool_name}: {truncate(e.error_message or '', 80)}" for e in recent_failures
        )
        lines.append(f"Recent failures: {failures}")

    return "\n".join(lines)
