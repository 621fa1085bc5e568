"""Database lifecycle errors."""

from __future__ import annotations


class DatabaseError(Exception):
    """Base class for every error raised by the database layer."""


class OpenError(DatabaseError):
    """The database file could not be opened or a pragma could not be applied."""

    def __init__(self, step: str, message: str = ""):
        self.step = step
        super().__init__(f"{step}: {message}" if message else step)


class PoolClosedError(DatabaseError):
    """A connection was requested from a pool that has been closed."""


class PoolTimeoutError(DatabaseError):
    """No pooled connection became available within the wait limit."""


class CloseError(DatabaseError):
    """One or more connections failed to close."""

    def __init__(self, message: str, errors: list[BaseException] | None = None):
        self.errors = errors or []
        super().__init__(message)


class MigrationError(DatabaseError):
    """Schema migration failed."""


class MigrationReadError(MigrationError):
    """A bundled migration script could not be read."""

    def __init__(self, name: str, message: str = ""):
        self.name = name
        detail = f": {message}" if message else ""
        super().__init__(f"cannot read migration {name!r}{detail}")


class MigrationApplyError(MigrationError):
    """A migration script failed to execute or could not be recorded."""

    def __init__(self, name: str, message: str = ""):
        self.name = name
        super().__init__(f"migration error: name={name!r} err={message}")
