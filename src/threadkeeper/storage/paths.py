"""
Path utilities for threadkeeper.

Provides consistent path resolution for configuration and memory data.
"""

import hashlib
import os
import re
from pathlib import Path

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def get_threadkeeper_home() -> Path:
    """
    Get the threadkeeper home directory.

    Resolution order:
    1. THREADKEEPER_HOME environment variable
    2. Default: ~/.threadkeeper

    Returns:
        Path to the threadkeeper home directory.
    """
    env_home = os.environ.get("THREADKEEPER_HOME")
    if env_home:
        return Path(env_home).expanduser().resolve()
    return Path.home() / ".threadkeeper"


def get_global_config_path() -> Path:
    """
    Get the path to the global configuration file.

    Returns:
        Path to ~/.threadkeeper/config.yaml
    """
    return get_threadkeeper_home() / "config.yaml"


def get_memory_dir() -> Path:
    """
    Get the memory directory holding session logs and side files.

    Returns:
        Path to ~/.threadkeeper/memory/
    """
    return get_threadkeeper_home() / "memory"


def expand_path(path: str | Path) -> Path:
    """
    Expand a path string, handling ~ and environment variables.

    Args:
        path: Path string or Path object.

    Returns:
        Expanded and resolved Path.
    """
    if isinstance(path, str):
        path = os.path.expandvars(path)
        path = os.path.expanduser(path)
    return Path(path).resolve()


def sanitize_name(value: str) -> str:
    """
    Make an identifier safe for use inside a file name.

    Every character outside ``[A-Za-z0-9_-]`` is replaced with ``_``.

    Args:
        value: Raw identifier (client id, tool name, call id).

    Returns:
        Sanitized identifier.
    """
    return _UNSAFE_NAME_CHARS.sub("_", value)


def client_file_stem(client_id: str) -> str:
    """
    File-name stem unique to a client id.

    Sanitizing alone maps ``team/alpha`` and ``team_alpha`` to the same
    name, so a short digest of the raw id is appended.
    """
    digest = hashlib.sha256(client_id.encode("utf-8")).hexdigest()[:10]
    return f"{sanitize_name(client_id)}-{digest}"
