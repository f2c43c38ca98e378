"""
Durable storage for threadkeeper sessions.

Layout under the memory data directory::

    sessions/<session-id>.jsonl        one event per line, append-only
    sessions/active-<client>.txt       active-session marker per client
    tool-output/<session>-<tool>-<call>.txt
                                       tool outputs above the size threshold
    tool-context/<tool>.jsonl          call arguments joined with results
    summaries/<client>.jsonl           rolling and final session summaries

``<client>`` is the client file stem, unique per raw client id.

Appends either complete or raise ``PersistenceError``; nothing here
retries or swallows write failures.
"""

import logging
import os
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

from threadkeeper.memory.events import (
    BaseEvent,
    SessionOpenEvent,
    ToolContextEntry,
    deserialize_event,
    serialize_event,
)
from threadkeeper.memory.exceptions import EventLogError, PersistenceError
from threadkeeper.memory.session import Session
from threadkeeper.memory.summary import SummaryType
from threadkeeper.storage.paths import (
    client_file_stem,
    expand_path,
    get_memory_dir,
    sanitize_name,
)

logger = logging.getLogger(__name__)

LARGE_OUTPUT_THRESHOLD = 2000
SESSION_FILE_SUFFIX = ".jsonl"
MARKER_PREFIX = "active-"


class SessionSummaryRecord(BaseModel):
    """One stored summary of a session."""

    session_id: str
    client_id: str
    summary_type: SummaryType
    summary_text: str
    keywords: list[str] = Field(default_factory=list)
    created_at: datetime


def _append_line(path: Path, line: str) -> None:
    """Append one line and push it to disk before returning."""
    try:
        with path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
            fh.flush()
            os.fsync(fh.fileno())
    except OSError as e:
        raise PersistenceError(f"Cannot append to {path}: {e}", str(path)) from e


class ActiveSessionStore:
    """Per-client markers naming the session that is currently open.

    A missing marker means the client starts fresh.
    """

    def __init__(self, sessions_dir: Path):
        """Initialize the marker store.

        Args:
            sessions_dir: Directory holding the marker files.
        """
        self.sessions_dir = sessions_dir

    def marker_path(self, client_id: str) -> Path:
        return self.sessions_dir / f"{MARKER_PREFIX}{client_file_stem(client_id)}.txt"

    def get(self, client_id: str) -> str | None:
        """Read the active session id for a client, if any."""
        path = self.marker_path(client_id)
        try:
            value = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Cannot read marker {path}: {e}", str(path)) from e
        return value or None

    def set(self, client_id: str, session_id: str) -> None:
        """Point the client's marker at ``session_id``."""
        path = self.marker_path(client_id)
        tmp_path = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(session_id, encoding="utf-8")
            tmp_path.replace(path)
        except OSError as e:
            raise PersistenceError(f"Cannot write marker {path}: {e}", str(path)) from e

    def clear(self, client_id: str) -> bool:
        """Remove the client's marker.

        Returns:
            True if a marker was removed, False if there was none.
        """
        path = self.marker_path(client_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PersistenceError(f"Cannot remove marker {path}: {e}", str(path)) from e
        return True

    def list_markers(self) -> dict[str, str]:
        """All markers as ``{client file stem: session id}``."""
        markers = {}
        for path in sorted(self.sessions_dir.glob(f"{MARKER_PREFIX}*.txt")):
            try:
                session_id = path.read_text(encoding="utf-8").strip()
            except OSError as e:
                raise PersistenceError(f"Cannot read marker {path}: {e}", str(path)) from e
            if session_id:
                markers[path.stem[len(MARKER_PREFIX) :]] = session_id
        return markers


class SessionPersistence:
    """File-based event log and side storage for sessions."""

    def __init__(
        self,
        data_dir: Path | str | None = None,
        large_output_threshold: int = LARGE_OUTPUT_THRESHOLD,
    ):
        """Initialize the persistence layer.

        Args:
            data_dir: Base directory. Defaults to ~/.threadkeeper/memory.
            large_output_threshold: Tool outputs longer than this many
                characters are written to a side file.
        """
        if data_dir is None:
            self.data_dir = get_memory_dir()
        else:
            self.data_dir = expand_path(data_dir)

        self.large_output_threshold = large_output_threshold
        self.sessions_dir = self.data_dir / "sessions"
        self.tool_output_dir = self.data_dir / "tool-output"
        self.tool_context_dir = self.data_dir / "tool-context"
        self.summaries_dir = self.data_dir / "summaries"

    def start(self) -> None:
        """Create the storage directories."""
        for path in [
            self.sessions_dir,
            self.tool_output_dir,
            self.tool_context_dir,
            self.summaries_dir,
        ]:
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise PersistenceError(f"Cannot create {path}: {e}", str(path)) from e
        logger.debug(f"Session storage ready at {self.data_dir}")

    def create_active_store(self) -> ActiveSessionStore:
        return ActiveSessionStore(self.sessions_dir)

    # =========================================================================
    # Event log
    # =========================================================================

    def session_path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{session_id}{SESSION_FILE_SUFFIX}"

    def append_event(self, event: BaseEvent) -> None:
        """Durably append one event to its session's log.

        Raises:
            PersistenceError: If the write fails.
        """
        path = self.session_path(event.session_id)
        _append_line(path, serialize_event(event))
        logger.debug(f"Appended {event.type} to {path.name}")  # type: ignore[attr-defined]

    def replay_session_file(self, path: Path | str) -> Session | None:
        """
        Rebuild a session from its event log.

        Lines that cannot be decoded are skipped with a warning; the rest
        are folded in file order starting from ``session_open``; anything
        before it has no session to belong to and is ignored.

        Args:
            path: Path to a session ``.jsonl`` file.

        Returns:
            The rebuilt session, or None for missing, unreadable or empty
            files, and for logs without a ``session_open`` record.
        """
        path = Path(path)
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Cannot read session log {path}: {e}")
            return None

        session: Session | None = None
        skipped = 0

        for line_no, line in enumerate(content.splitlines(), start=1):
            if not line.strip():
                continue

            try:
                event = deserialize_event(line)
            except EventLogError as e:
                skipped += 1
                logger.warning(f"Skipping line {line_no} of {path.name}: {e}")
                continue

            if isinstance(event, SessionOpenEvent):
                if session is None:
                    session = Session.from_open_event(event)
                continue

            if session is None:
                continue
            if event.session_id != session.id:
                skipped += 1
                logger.warning(
                    f"Skipping line {line_no} of {path.name}: belongs to {event.session_id}"
                )
                continue

            session.apply_event(event)

        if session is not None:
            logger.info(
                f"Replayed session {session.id}: {len(session.timeline)} events, "
                f"{skipped} skipped"
            )
        return session

    def list_session_files(self) -> list[Path]:
        """Session logs, most recently modified first."""
        if not self.sessions_dir.is_dir():
            return []
        files = list(self.sessions_dir.glob(f"*{SESSION_FILE_SUFFIX}"))
        return sorted(files, key=lambda p: p.stat().st_mtime, reverse=True)

    # =========================================================================
    # Tool output
    # =========================================================================

    def tool_output_name(self, session_id: str, tool_call_id: str, tool_name: str) -> str:
        return f"{session_id}-{sanitize_name(tool_name)}-{sanitize_name(tool_call_id)}.txt"

    def persist_large_tool_output(
        self,
        session_id: str,
        tool_call_id: str,
        tool_name: str,
        output: str,
    ) -> str | None:
        """Write an oversized tool output to its side file.

        Returns:
            The side file name to reference from the event, or None when
            the output is small enough to keep inline.
        """
        if len(output) <= self.large_output_threshold:
            return None

        name = self.tool_output_name(session_id, tool_call_id, tool_name)
        path = self.tool_output_dir / name
        try:
            path.write_text(output, encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Cannot write tool output {path}: {e}", str(path)) from e

        logger.info(f"Stored large output of {tool_name} ({len(output)} chars) in {name}")
        return name

    def load_tool_output(self, output_ref: str) -> str:
        """Read a side-file tool output back.

        Raises:
            PersistenceError: If the file cannot be read.
        """
        path = self.tool_output_dir / Path(output_ref).name
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Cannot read tool output {path}: {e}", str(path)) from e

    def append_tool_context_entry(self, tool_name: str, entry: ToolContextEntry) -> None:
        path = self.tool_context_dir / f"{sanitize_name(tool_name)}.jsonl"
        _append_line(path, entry.model_dump_json(by_alias=True, exclude_none=True))

    # =========================================================================
    # Summaries
    # =========================================================================

    def _summaries_path(self, client_id: str) -> Path:
        return self.summaries_dir / f"{client_file_stem(client_id)}.jsonl"

    def save_session_summary(
        self,
        session_id: str,
        client_id: str,
        summary_type: SummaryType,
        summary_text: str,
        keywords: list[str],
        created_at: datetime,
    ) -> SessionSummaryRecord:
        """Append a summary to the client's summary index."""
        record = SessionSummaryRecord(
            session_id=session_id,
            client_id=client_id,
            summary_type=summary_type,
            summary_text=summary_text,
            keywords=keywords,
            created_at=created_at,
        )
        _append_line(self._summaries_path(client_id), record.model_dump_json())
        logger.debug(f"Saved {summary_type} summary for session {session_id}")
        return record

    def load_session_summaries(self, client_id: str) -> list[SessionSummaryRecord]:
        """All readable summaries of a client, oldest first."""
        path = self._summaries_path(client_id)
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise PersistenceError(f"Cannot read summaries {path}: {e}", str(path)) from e

        records = []
        for line in lines:
            if not line.strip():
                continue
            try:
                record = SessionSummaryRecord.model_validate_json(line)
            except ValueError as e:
                logger.warning(f"Skipping summary line in {path.name}: {e}")
                continue
            if record.client_id == client_id:
                records.append(record)
        return records

    def load_previous_session_summary(self, client_id: str) -> str:
        """Text of the client's most recent summary, or ``""``."""
        records = self.load_session_summaries(client_id)
        if not records:
            return ""
        latest = max(records, key=lambda r: r.created_at)
        return latest.summary_text
