"""
Pydantic configuration schema for threadkeeper.

This module defines all configuration models with validation.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Memory Configuration
# =============================================================================


class MemoryConfig(BaseModel):
    """Event log and session lifecycle configuration."""

    model_config = ConfigDict(extra="allow")

    data_dir: str | None = None  # Defaults to ~/.threadkeeper/memory
    large_output_threshold: int = Field(default=2000, ge=1)
    rolling_summary_every_user_turns: int = Field(default=12, ge=0)
    initial_tier: Literal["high", "medium", "low", "rare"] = "rare"
    write_tool_context: bool = True


# =============================================================================
# Rotation Policy Configuration
# =============================================================================


class RotationPolicyConfig(BaseModel):
    """Thresholds for the session rotation policy.

    Percentages are context-window usage in the 0-100 range.
    """

    model_config = ConfigDict(extra="allow")

    force_rotate_context_percent: float = Field(default=95.0, ge=0.0, le=100.0)
    topic_shift_ready_context_percent: float = Field(default=25.0, ge=0.0, le=100.0)
    small_talk_max_chars: int = Field(default=60, ge=0)
    topic_shift_min_current_tokens: int = Field(default=2, ge=1)
    topic_shift_min_overlap_ratio: float = Field(default=0.2, ge=0.0, le=1.0)
    topic_history_user_turns: int = Field(default=12, ge=1)
    topic_vocabulary_max_tokens: int = Field(default=64, ge=1)
    midnight_active_grace_minutes: float = Field(default=10.0, ge=0.0)
    midnight_max_deferral_minutes: float = Field(default=60.0, ge=0.0)

    # IANA zone used for calendar-day keys; None means the host's local zone
    timezone: str | None = None

    # Extra vocabulary merged into the built-in small-talk lists
    extra_small_talk_phrases: list[str] = Field(default_factory=list)
    extra_stopwords: list[str] = Field(default_factory=list)


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


# =============================================================================
# Root Configuration Model
# =============================================================================


class Config(BaseModel):
    """
    Root configuration model for threadkeeper.

    Configuration can be loaded from a YAML file and environment
    variables, merged in order of priority.
    """

    model_config = ConfigDict(extra="allow")

    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    rotation: RotationPolicyConfig = Field(default_factory=RotationPolicyConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
