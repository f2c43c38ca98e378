"""
Context pressure signalling for threadkeeper.

Maps context-window usage to a severity band with an instruction for
the model, and builds the deterministic handoff used when a session is
rotated because the context is full.
"""

import math
from collections.abc import Sequence
from enum import Enum

from pydantic import BaseModel

from threadkeeper.memory.session import ConversationTurn

AUTO_ROTATE_HANDOFF_TURNS = 5
HANDOFF_TURN_MAX_CHARS = 200
HANDOFF_MAX_CHARS = 1000


class PressureLevel(str, Enum):
    """Severity bands of context usage."""

    NONE = "none"
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
    AUTO_ROTATE = "auto_rotate"


# Lower bound (inclusive percent) and instruction of each band, most severe first
PRESSURE_BANDS: list[tuple[float, PressureLevel, str]] = [
    (
        95.0,
        PressureLevel.AUTO_ROTATE,
        "SYSTEM: Context is full (>=95%). Auto-rotating session now.",
    ),
    (
        85.0,
        PressureLevel.CRITICAL,
        "CRITICAL: Context usage is very high. You MUST rotate the session NOW using "
        "create_session. Include a detailed handoff_summary of what was accomplished "
        "and what remains.",
    ),
    (
        70.0,
        PressureLevel.WARNING,
        "WARNING: Context usage is elevated. Start wrapping up your current task. "
        "Prepare a handoff summary and rotate the session soon using create_session.",
    ),
    (
        50.0,
        PressureLevel.INFO,
        "INFO: Context usage is moderate. Be mindful of context limits. "
        "Consider whether a session rotation will be needed soon.",
    ),
]


class ContextPressureSignal(BaseModel):
    """Severity band and the instruction to put in front of the model."""

    level: PressureLevel
    message: str = ""


class SessionStatus(BaseModel):
    """Snapshot of the active session for the status prompt section."""

    context_percent: float
    turns: int
    session_age_minutes: int


def round_percent(value: float) -> int:
    """Round half up, the way percentages are shown to the model."""
    return math.floor(value + 0.5)


def compute_context_pressure(context_percent: float) -> ContextPressureSignal:
    """
    Classify context usage into a pressure band.

    Bands: below 50 none, 50-69 info, 70-84 warning, 85-94 critical,
    95 and above auto_rotate. Lower bounds are inclusive.

    Args:
        context_percent: Context-window usage, 0-100.

    Returns:
        The band and its instruction (empty for ``none``).
    """
    for lower_bound, level, message in PRESSURE_BANDS:
        if context_percent >= lower_bound:
            return ContextPressureSignal(level=level, message=message)
    return ContextPressureSignal(level=PressureLevel.NONE)


def format_turn_lines(turns: Sequence[ConversationTurn], count: int) -> list[str]:
    """Render the last ``count`` turns as ``[role]: content`` lines."""
    recent = list(turns)[-count:] if count > 0 else []
    lines = []
    for turn in recent:
        content = turn.content
        if len(content) > HANDOFF_TURN_MAX_CHARS:
            content = content[:HANDOFF_TURN_MAX_CHARS] + "..."
        lines.append(f"[{turn.role}]: {content}")
    return lines


def compose_handoff(
    headline: str,
    turns: Sequence[ConversationTurn],
    turn_count: int,
    previous_summary: str = "",
) -> str:
    """Assemble a handoff: headline, recent turns, previous summary, capped."""
    parts = [headline, "", "Last conversation:", *format_turn_lines(turns, turn_count)]

    previous = previous_summary.strip()
    if previous:
        parts.extend(["", f"Previous session summary: {previous}"])

    return "\n".join(parts)[:HANDOFF_MAX_CHARS]


def build_auto_rotate_handoff(
    turns: Sequence[ConversationTurn],
    context_percent: float,
    previous_summary: str = "",
) -> str:
    """
    Build the emergency handoff for a context-overflow rotation.

    Deterministic and model-free: the last 5 turns (each cut at 200
    characters), prefixed with the triggering percentage, followed by
    the previous summary if any, and capped at 1000 characters.
    """
    return compose_handoff(
        f"Auto-rotated at {round_percent(context_percent)}% context.",
        turns,
        AUTO_ROTATE_HANDOFF_TURNS,
        previous_summary,
    )


def render_session_status_section(status: SessionStatus | None) -> str:
    """Render the session status block for the system prompt."""
    if status is None:
        return ""

    lines = [
        "# Session Status",
        "",
        f"- context_usage: {round_percent(status.context_percent)}%",
        f"- turns: {status.turns}",
        f"- session_age: {status.session_age_minutes}m",
    ]

    pressure = compute_context_pressure(status.context_percent)
    if pressure.message:
        lines.extend(["", pressure.message])

    return "\n".join(lines)
