"""CLI command modules."""

from threadkeeper.cli.commands import memory

__all__ = ["memory"]
