"""
Pytest configuration and fixtures for threadkeeper tests.
"""

import tempfile
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from typer.testing import CliRunner

from threadkeeper.config import Config, clear_config_cache
from threadkeeper.memory import SessionManager, SessionPersistence

START = datetime(2026, 2, 2, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock for deterministic timestamps."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, moment: datetime) -> datetime:
        self.current = moment
        return self.current


def word_count(text: str) -> int:
    """Token counter stand-in: one token per word."""
    return len(text.split())


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def mock_threadkeeper_home(temp_dir: Path, monkeypatch) -> Generator[Path, None, None]:
    """Provide a mock ~/.threadkeeper directory and a fresh config cache."""
    home = temp_dir / ".threadkeeper"
    home.mkdir()
    (home / "memory").mkdir()

    monkeypatch.setenv("THREADKEEPER_HOME", str(home))
    clear_config_cache()
    yield home
    clear_config_cache()


@pytest.fixture
def memory_dir(temp_dir: Path) -> Path:
    """Provide an empty memory data directory."""
    path = temp_dir / "memory"
    path.mkdir()
    return path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> Config:
    """Default configuration with day keys in UTC."""
    return Config.model_validate({"rotation": {"timezone": "UTC"}})


@pytest.fixture
def persistence(memory_dir: Path) -> SessionPersistence:
    store = SessionPersistence(memory_dir)
    store.start()
    return store


@pytest.fixture
def manager_factory(memory_dir: Path, config: Config, clock: FakeClock):
    """Build session managers sharing one data directory and clock."""

    def factory(config_override: Config | None = None) -> SessionManager:
        return SessionManager(
            data_dir=memory_dir,
            config=config_override or config,
            now=clock,
            token_counter=word_count,
        )

    return factory


@pytest.fixture
def manager(manager_factory) -> Generator[SessionManager, None, None]:
    """Provide an initialized session manager on a temporary data directory."""
    session_manager = manager_factory()
    session_manager.initialize("local")
    yield session_manager
    session_manager.shutdown()


@pytest.fixture
def sample_config() -> dict:
    """Provide a sample configuration dictionary."""
    return {
        "memory": {
            "large_output_threshold": 500,
            "rolling_summary_every_user_turns": 4,
        },
        "rotation": {
            "force_rotate_context_percent": 90,
            "timezone": "Europe/Berlin",
            "extra_small_talk_phrases": ["cheers"],
        },
        "logging": {
            "level": "INFO",
        },
    }
