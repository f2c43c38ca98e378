"""
Configuration loader for threadkeeper.

Sources, later ones winning:
1. Defaults from ``Config``
2. ``~/.threadkeeper/config.yaml`` (or an explicit file)
3. ``THREADKEEPER_<SECTION>__<KEY>`` environment variables
"""

import os
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from threadkeeper.config.merger import deep_merge, set_nested_value
from threadkeeper.config.schema import Config
from threadkeeper.storage.paths import get_global_config_path

ENV_PREFIX = "THREADKEEPER_"
ENV_NESTING = "__"

_config_cache: Config | None = None


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Read a YAML mapping from ``path``.

    A missing or empty file reads as ``{}``.

    Raises:
        ConfigurationError: If the file is unreadable, not YAML, or not a mapping.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e

    try:
        content = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigurationError(f"Expected a mapping at the top of {path}")
    return content


def _iter_env_overrides() -> Iterator[tuple[str, str]]:
    """Yield ``(dotted.key, raw value)`` for each nested override variable.

    Only variables with a ``__`` separator count, so ``THREADKEEPER_HOME``
    is left alone.
    """
    for name, raw in os.environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        suffix = name[len(ENV_PREFIX) :]
        if ENV_NESTING not in suffix:
            continue
        yield suffix.lower().replace(ENV_NESTING, "."), raw


def _parse_env_value(value: str) -> Any:
    """Turn an override string into a bool, number, list or string.

    Comma-separated values become lists of stripped strings.
    """
    if "," in value:
        return [item.strip() for item in value.split(",") if item.strip()]

    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError:
        return value
    if isinstance(parsed, (bool, int, float)):
        return parsed
    return value


def apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """
    Apply ``THREADKEEPER_<SECTION>__<KEY>`` variables to ``config``.

    Example: ``THREADKEEPER_ROTATION__FORCE_ROTATE_CONTEXT_PERCENT=90``
    sets ``rotation.force_rotate_context_percent``.
    """
    for key_path, raw in _iter_env_overrides():
        set_nested_value(config, key_path, _parse_env_value(raw))
    return config


def load_config(
    config_path: Path | None = None,
    skip_env: bool = False,
) -> Config:
    """
    Load and validate configuration from all sources.

    Args:
        config_path: YAML file to use instead of the global config.
        skip_env: Ignore environment overrides.

    Returns:
        Validated Config.

    Raises:
        ConfigurationError: If a file is broken or a value is out of range.
    """
    layers = Config().model_dump()
    layers = deep_merge(layers, load_yaml_file(config_path or get_global_config_path()))

    if not skip_env:
        layers = apply_env_overrides(layers)

    try:
        return Config.model_validate(layers)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def get_config(reload: bool = False) -> Config:
    """Return the process-wide Config, loading it on first use or on ``reload``."""
    global _config_cache

    if _config_cache is None or reload:
        _config_cache = load_config()
    return _config_cache


def clear_config_cache() -> None:
    """Forget the cached Config so the next get_config() reloads it."""
    global _config_cache
    _config_cache = None
