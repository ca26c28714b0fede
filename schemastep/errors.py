"""Error kinds raised by schemastep.

Every failure the engine can hit is a MigrationError subclass, so callers
can render or map exit codes with a single except clause. Nothing in the
core terminates the process or swallows these.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .migrations.base import MigrationRecord


class MigrationError(Exception):
    """Base exception for all schemastep errors."""

    kind = "migration"

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        migration: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        self.migration = migration
        self.timestamp = datetime.now(timezone.utc)

    def __str__(self) -> str:
        text = f"[{self.kind}] {self.message}"
        if self.migration:
            text += f" (migration: {self.migration})"
        if self.details:
            text += f": {self.details}"
        return text


class NamingError(MigrationError):
    """A migration filename or label does not follow the naming convention."""

    kind = "naming"

    def __init__(self, message: str, filename: str):
        super().__init__(message, details=filename)
        self.filename = filename


class IntegrityError(MigrationError):
    """An applied migration's file no longer matches its recorded fingerprint."""

    kind = "integrity"

    def __init__(self, migration: str, stored: str, current: str):
        super().__init__(
            f"Migration {migration} has been modified after it was applied",
            details=f"stored fingerprint: {stored}, current fingerprint: {current}",
            migration=migration,
        )
        self.stored = stored
        self.current = current


class ExecutionError(MigrationError):
    """A statement inside a migration body failed.

    The migration's transaction has been rolled back. ``completed`` holds the
    records of earlier migrations in the same sequence, which stay committed.
    """

    kind = "execution"

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        migration: Optional[str] = None,
        statement_index: Optional[int] = None,
        statement: Optional[str] = None,
    ):
        super().__init__(message, details=details, migration=migration)
        self.statement_index = statement_index
        self.statement = statement
        self.completed: list["MigrationRecord"] = []


class ConnectivityError(MigrationError):
    """The database cannot be reached."""

    kind = "connection"


class FileError(MigrationError):
    """A migration file or directory cannot be read or written."""

    kind = "file"

    def __init__(self, message: str, path: str, details: Optional[str] = None):
        super().__init__(message, details=details or path)
        self.path = path


class QueryError(MigrationError):
    """A ledger or catalog query failed outside a migration body."""

    kind = "query"


class ConfigError(MigrationError):
    """Configuration could not be loaded or is invalid."""

    kind = "config"
