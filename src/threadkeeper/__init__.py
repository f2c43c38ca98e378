"""
threadkeeper - Session memory engine for conversational agents

Records every turn, tool invocation and agent step as an append-only
event log, and decides when a conversation should rotate into a new
session.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("threadkeeper")
except PackageNotFoundError:
    __version__ = "0.1.0"

__all__ = [
    "__version__",
]
