"""
threadkeeper memory - Session log inspection commands.

Usage:
    threadkeeper memory list
    threadkeeper memory show 6f1c2a7e-...
    threadkeeper memory status
    threadkeeper memory pressure 87
    threadkeeper memory reset local
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from threadkeeper.cli.output import console, print_error, print_success, print_warning
from threadkeeper.config import ConfigurationError, get_config
from threadkeeper.memory import (
    EventType,
    PersistenceError,
    PressureLevel,
    Session,
    SessionPersistence,
    compute_context_pressure,
)

app = typer.Typer(
    name="memory",
    help="Session log inspection and maintenance.",
)

DataDirOption = Annotated[
    Path | None,
    typer.Option(
        "--data-dir",
        "-d",
        help="Memory data directory (defaults to the configured one).",
    ),
]

LEVEL_STYLES = {
    PressureLevel.NONE: "green",
    PressureLevel.INFO: "blue",
    PressureLevel.WARNING: "yellow",
    PressureLevel.CRITICAL: "red",
    PressureLevel.AUTO_ROTATE: "bold red",
}


def _get_persistence(data_dir: Path | None) -> SessionPersistence:
    """Build the persistence layer for the configured data directory."""
    try:
        config = get_config()
    except ConfigurationError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)

    return SessionPersistence(
        data_dir or config.memory.data_dir,
        large_output_threshold=config.memory.large_output_threshold,
    )


def _format_time(value: datetime) -> str:
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def _session_state(session: Session) -> str:
    if session.is_closed:
        return f"closed ({session.close_reason})"
    return "open"


@app.command("list")
def list_sessions(
    data_dir: DataDirOption = None,
    limit: Annotated[
        int,
        typer.Option(
            "--limit",
            "-n",
            help="Maximum sessions to show.",
        ),
    ] = 20,
) -> None:
    """List session logs, most recent first."""
    persistence = _get_persistence(data_dir)
    files = persistence.list_session_files()

    if not files:
        console.print("[yellow]No sessions found.[/yellow]")
        return

    table = Table(title="Sessions")
    table.add_column("Session", style="cyan")
    table.add_column("Client")
    table.add_column("Started", style="dim")
    table.add_column("Events", justify="right")
    table.add_column("Turns", justify="right")
    table.add_column("Tier")
    table.add_column("State")

    for path in files[:limit]:
        session = persistence.replay_session_file(path)
        if session is None:
            table.add_row(path.stem, "-", "-", "-", "-", "-", "[red]unreadable[/red]")
            continue

        table.add_row(
            session.id,
            session.client_id,
            _format_time(session.started_at),
            str(len(session.timeline)),
            f"{session.user_turn_count}/{session.assistant_turn_count}",
            session.tier_state.tier.value,
            _session_state(session),
        )

    console.print(table)
    console.print(f"\n[dim]Showing {min(limit, len(files))} of {len(files)} sessions[/dim]")


@app.command()
def show(
    session_id: Annotated[
        str,
        typer.Argument(help="Session id."),
    ],
    data_dir: DataDirOption = None,
    last: Annotated[
        int | None,
        typer.Option(
            "--last",
            "-n",
            help="Show only the last N timeline entries.",
        ),
    ] = None,
) -> None:
    """Show a session's replayed timeline."""
    persistence = _get_persistence(data_dir)
    session = persistence.replay_session_file(persistence.session_path(session_id))

    if session is None:
        console.print(f"[red]Session not found: {session_id}[/red]")
        raise typer.Exit(1)

    header = (
        f"[bold]Session:[/bold] {session.id}\n"
        f"[bold]Client:[/bold] {session.client_id}\n"
        f"[bold]Started:[/bold] {_format_time(session.started_at)}\n"
        f"[bold]Tier:[/bold] {session.tier_state.tier.value}\n"
        f"[bold]State:[/bold] {_session_state(session)}"
    )
    console.print(Panel(header, title="Session", border_style="blue"))

    if session.previous_session_summary:
        console.print(Panel(session.previous_session_summary, title="Previous session"))

    for entry in session.get_timeline(last_n=last):
        _print_entry(entry)


def _print_entry(entry) -> None:
    """Display one timeline entry."""
    time = entry.ts.astimezone().strftime("%H:%M:%S")

    if entry.type == EventType.USER_MESSAGE:
        console.print(f"[dim]{time}[/dim] [bold cyan]User:[/bold cyan] {entry.content}")
    elif entry.type == EventType.ASSISTANT_MESSAGE:
        console.print(f"[dim]{time}[/dim] [bold green]Assistant:[/bold green] {entry.content}")
    elif entry.type == EventType.TOOL_CALL:
        console.print(f"[dim]{time}[/dim] [magenta]tool call[/magenta] {entry.tool_name}")
    elif entry.type == EventType.TOOL_RESULT:
        style = "green" if entry.status == "success" else "red"
        detail = f" -> {entry.output_ref}" if entry.output_ref else ""
        console.print(
            f"[dim]{time}[/dim] [{style}]tool {entry.status}[/{style}] {entry.tool_name}{detail}"
        )
    elif entry.type == EventType.RUN_FAILURE:
        console.print(f"[dim]{time}[/dim] [red]run failed:[/red] {entry.message}")
    elif entry.type == EventType.SESSION_TIER_CHANGE:
        console.print(
            f"[dim]{time}[/dim] [yellow]tier {entry.from_tier} -> {entry.to_tier}[/yellow]"
        )
    elif entry.type == EventType.AGENT_STEP:
        console.print(f"[dim]{time}[/dim] [dim]step {entry.step} ({entry.phase}):[/dim] {entry.summary}")
    else:
        console.print(f"[dim]{time}[/dim] [dim]{entry.type}[/dim]")


@app.command()
def status(data_dir: DataDirOption = None) -> None:
    """Show the active session of each client."""
    persistence = _get_persistence(data_dir)
    markers = persistence.create_active_store().list_markers()

    if not markers:
        console.print("[yellow]No active sessions.[/yellow]")
        return

    now = datetime.now(timezone.utc)

    table = Table(title="Active Sessions")
    table.add_column("Client", style="cyan")
    table.add_column("Session")
    table.add_column("Tier")
    table.add_column("Turns", justify="right")
    table.add_column("Idle (min)", justify="right")
    table.add_column("Age (min)", justify="right")

    for stem, session_id in markers.items():
        session = persistence.replay_session_file(persistence.session_path(session_id))
        if session is None:
            table.add_row(stem, session_id, "-", "-", "-", "[red]missing log[/red]")
            continue

        table.add_row(
            session.client_id,
            session_id,
            session.tier_state.tier.value,
            str(len(session.get_conversation_turns())),
            str(int(session.idle_minutes(now))),
            str(int(session.age_minutes(now))),
        )

    console.print(table)


@app.command()
def pressure(
    percent: Annotated[
        float,
        typer.Argument(help="Context window usage, 0-100."),
    ],
) -> None:
    """Show the pressure band and instruction for a context usage."""
    signal = compute_context_pressure(percent)
    style = LEVEL_STYLES[PressureLevel(signal.level)]

    console.print(f"[bold]Level:[/bold] [{style}]{PressureLevel(signal.level).value}[/{style}]")
    if signal.message:
        console.print(signal.message)


@app.command()
def reset(
    client_id: Annotated[
        str,
        typer.Argument(help="Client whose active session marker is cleared."),
    ],
    data_dir: DataDirOption = None,
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            "-f",
            help="Skip confirmation.",
        ),
    ] = False,
) -> None:
    """Forget a client's active session; its next message opens a new one."""
    persistence = _get_persistence(data_dir)
    store = persistence.create_active_store()

    if not force:
        if not typer.confirm(f"Clear the active session of {client_id}?"):
            console.print("[dim]Cancelled.[/dim]")
            return

    try:
        removed = store.clear(client_id)
    except PersistenceError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if removed:
        print_success(f"Cleared active session of {client_id}")
    else:
        print_warning(f"No active session for {client_id}")
