"""Storage utilities for threadkeeper."""

from threadkeeper.storage.paths import (
    client_file_stem,
    expand_path,
    get_global_config_path,
    get_memory_dir,
    get_threadkeeper_home,
    sanitize_name,
)

__all__ = [
    "client_file_stem",
    "expand_path",
    "get_global_config_path",
    "get_memory_dir",
    "get_threadkeeper_home",
    "sanitize_name",
]
