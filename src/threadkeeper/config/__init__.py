"""Configuration for threadkeeper."""

from threadkeeper.config.loader import (
    ConfigurationError,
    clear_config_cache,
    get_config,
    load_config,
)
from threadkeeper.config.merger import deep_merge
from threadkeeper.config.schema import (
    Config,
    LoggingConfig,
    MemoryConfig,
    RotationPolicyConfig,
)

__all__ = [
    "Config",
    "ConfigurationError",
    "LoggingConfig",
    "MemoryConfig",
    "RotationPolicyConfig",
    "clear_config_cache",
    "deep_merge",
    "get_config",
    "load_config",
]
