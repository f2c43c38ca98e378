"""
Memory exceptions for threadkeeper.

Defines custom exceptions for event log and session errors.
"""


class MemoryStoreError(Exception):
    """Base exception for session memory errors."""

    pass


class EventLogError(MemoryStoreError):
    """Base exception for event (de)serialization errors."""

    def __init__(self, message: str, line: str | None = None):
        super().__init__(message)
        self.line = line


class MalformedEventError(EventLogError):
    """Event record is not valid JSON or does not match any event shape."""

    pass


class UnsupportedEventVersionError(EventLogError):
    """Event record carries a schema version this build cannot read."""

    def __init__(self, version: object, line: str | None = None):
        super().__init__(f"Unsupported event version: {version!r}", line)
        self.version = version


class PersistenceError(MemoryStoreError):
    """Reading or writing durable session state failed."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class SessionNotOpenError(MemoryStoreError):
    """An operation needed an open session for the client but none exists."""

    def __init__(self, client_id: str):
        super().__init__(f"No open session for client {client_id!r}")
        self.client_id = client_id
