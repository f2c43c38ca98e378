"""
Shared console and status lines for the CLI.
"""

from rich.console import Console

console = Console()

_MARKS = {
    "success": ("green", "✓"),
    "error": ("red", "✗"),
    "warning": ("yellow", "!"),
    "info": ("blue", "i"),
}


def _print_status(kind: str, message: str) -> None:
    style, mark = _MARKS[kind]
    console.print(f"[{style}]{mark}[/{style}] {message}")


def print_success(message: str) -> None:
    _print_status("success", message)


def print_error(message: str) -> None:
    _print_status("error", message)


def print_warning(message: str) -> None:
    _print_status("warning", message)


def print_info(message: str) -> None:
    _print_status("info", message)
