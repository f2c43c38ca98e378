"""
Unit tests for CLI commands.
"""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from threadkeeper import __version__
from threadkeeper.cli.app import app
from threadkeeper.config import Config
from threadkeeper.memory import ActiveSessionStore, SessionManager


@pytest.fixture
def recorded_session(mock_threadkeeper_home: Path) -> str:
    """Record one exchange in the default memory directory."""
    manager = SessionManager(
        data_dir=mock_threadkeeper_home / "memory",
        config=Config(),
        token_counter=lambda text: len(text.split()),
    )
    run = manager.begin_run("local", "explain the parser grammar")
    manager.record_tool_call("local", run.run_id, 1, "c1", "read_file", {"path": "grammar.py"})
    manager.record_tool_result("local", run.run_id, 1, "c1", "read_file", "success", output="rules")
    manager.record_assistant_final("local", run.run_id, "It is recursive descent.")
    manager.shutdown()
    return run.session_id


def test_version(cli_runner: CliRunner) -> None:
    """Test --version flag."""
    result = cli_runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_help(cli_runner: CliRunner) -> None:
    """Test --help flag."""
    result = cli_runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "threadkeeper" in result.stdout
    assert "memory" in result.stdout


def test_memory_pressure(cli_runner: CliRunner) -> None:
    """Test the pressure band lookup."""
    result = cli_runner.invoke(app, ["memory", "pressure", "87"])
    assert result.exit_code == 0
    assert "critical" in result.stdout
    assert "CRITICAL" in result.stdout


def test_memory_pressure_none(cli_runner: CliRunner) -> None:
    """Test a usage below every band."""
    result = cli_runner.invoke(app, ["memory", "pressure", "12.5"])
    assert result.exit_code == 0
    assert "none" in result.stdout


def test_memory_list_empty(cli_runner: CliRunner, mock_threadkeeper_home: Path) -> None:
    """Test listing without sessions."""
    result = cli_runner.invoke(app, ["memory", "list"])
    assert result.exit_code == 0
    assert "No sessions found" in result.stdout


def test_memory_list(cli_runner: CliRunner, recorded_session: str) -> None:
    """Test listing a recorded session."""
    result = cli_runner.invoke(app, ["memory", "list"])
    assert result.exit_code == 0
    assert "Sessions" in result.stdout
    assert "Showing 1 of 1 sessions" in result.stdout


def test_memory_list_explicit_dir(cli_runner: CliRunner, temp_dir: Path, mock_threadkeeper_home: Path) -> None:
    """Test --data-dir pointing elsewhere."""
    other = temp_dir / "elsewhere"
    other.mkdir()
    result = cli_runner.invoke(app, ["memory", "list", "--data-dir", str(other)])
    assert result.exit_code == 0
    assert "No sessions found" in result.stdout


def test_memory_show(cli_runner: CliRunner, recorded_session: str) -> None:
    """Test showing a replayed timeline."""
    result = cli_runner.invoke(app, ["memory", "show", recorded_session])
    assert result.exit_code == 0
    assert recorded_session in result.stdout
    assert "explain the parser grammar" in result.stdout
    assert "It is recursive descent." in result.stdout
    assert "read_file" in result.stdout


def test_memory_show_missing(cli_runner: CliRunner, mock_threadkeeper_home: Path) -> None:
    """Test showing an unknown session."""
    result = cli_runner.invoke(app, ["memory", "show", "nope"])
    assert result.exit_code == 1
    assert "Session not found" in result.stdout


def test_memory_status(cli_runner: CliRunner, recorded_session: str) -> None:
    """Test the active session overview."""
    result = cli_runner.invoke(app, ["memory", "status"])
    assert result.exit_code == 0
    assert "Active Sessions" in result.stdout
    assert "local" in result.stdout


def test_memory_status_empty(cli_runner: CliRunner, mock_threadkeeper_home: Path) -> None:
    """Test the overview without active sessions."""
    result = cli_runner.invoke(app, ["memory", "status"])
    assert result.exit_code == 0
    assert "No active sessions" in result.stdout


def test_memory_reset(cli_runner: CliRunner, recorded_session: str, mock_threadkeeper_home: Path) -> None:
    """Test clearing a client's marker."""
    marker = ActiveSessionStore(mock_threadkeeper_home / "memory" / "sessions").marker_path("local")
    assert marker.exists()

    result = cli_runner.invoke(app, ["memory", "reset", "local", "--force"])
    assert result.exit_code == 0
    assert "Cleared active session of local" in result.stdout
    assert not marker.exists()

    result = cli_runner.invoke(app, ["memory", "reset", "local", "--force"])
    assert "No active session for local" in result.stdout


def test_memory_reset_cancelled(cli_runner: CliRunner, recorded_session: str, mock_threadkeeper_home: Path) -> None:
    """Test declining the reset confirmation."""
    result = cli_runner.invoke(app, ["memory", "reset", "local"], input="n\n")
    assert result.exit_code == 0
    assert "Cancelled" in result.stdout
    store = ActiveSessionStore(mock_threadkeeper_home / "memory" / "sessions")
    assert store.marker_path("local").exists()
