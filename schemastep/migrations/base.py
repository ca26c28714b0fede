"""Core data model for the migration engine.

Defines:
- MigrationDefinition: A parsed migration file (forward/reverse SQL + fingerprint)
- LedgerEntry: A row of the applied-migrations ledger
- MigrationRecord: Outcome of applying or reverting one migration
- MigrationResult: Outcome of one engine operation
- StatusEntry / MigrationStatus: Per-migration status view
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional


def fingerprint(content: bytes) -> str:
    """Content fingerprint of a migration file.

    Returns:
        SHA-256 hex digest of the raw file bytes (64 characters)
    """
    return hashlib.sha256(content).hexdigest()


class MigrationStatus(str, Enum):
    """Status of a migration."""

    PENDING = "pending"
    APPLIED = "applied"
    ROLLED_BACK = "rolled_back"
    MODIFIED = "modified"
    MISSING = "missing"


@dataclass(frozen=True)
class MigrationDefinition:
    """A migration parsed from disk.

    Attributes:
        name: Sortable identity, ``<timestamp>_<label>`` (filename without .sql)
        timestamp: ``YYYY_MM_DD_HHMMSS`` prefix
        label: Human label after the timestamp
        path: File the definition was read from
        up_sql: Forward SQL body
        down_sql: Reverse SQL body
        fingerprint: SHA-256 of the full raw file content
    """

    name: str
    timestamp: str
    label: str
    path: Path
    up_sql: str
    down_sql: str
    fingerprint: str

    @property
    def filename(self) -> str:
        return self.path.name

    def __repr__(self) -> str:
        return f"<Migration {self.name}>"


@dataclass(frozen=True)
class LedgerEntry:
    """A ledger row asserting that a migration was applied."""

    id: int
    name: str
    batch: int
    applied_at: datetime
    execution_time_ms: int
    fingerprint: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "LedgerEntry":
        return cls(
            id=int(row["id"]),
            name=row["name"],
            batch=int(row["batch"]),
            applied_at=row["applied_at"],
            execution_time_ms=int(row["execution_time_ms"]),
            fingerprint=row["fingerprint"],
        )


@dataclass
class MigrationRecord:
    """Record of a migration execution."""

    name: str
    status: MigrationStatus
    batch: Optional[int] = None
    executed_at: Optional[datetime] = None
    execution_time_ms: Optional[int] = None
    fingerprint: Optional[str] = None
    statements: int = 0
    dry_run: bool = False


@dataclass
class MigrationResult:
    """Result of an engine operation."""

    operation: str
    records: list[MigrationRecord] = field(default_factory=list)
    batch: Optional[int] = None
    dry_run: bool = False
    dropped_tables: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.records)

    @property
    def names(self) -> list[str]:
        return [r.name for r in self.records]


@dataclass
class StatusEntry:
    """Status of one migration, joining disk and ledger."""

    name: str
    status: MigrationStatus
    definition: Optional[MigrationDefinition] = None
    entry: Optional[LedgerEntry] = None

    @property
    def batch(self) -> Optional[int]:
        return self.entry.batch if self.entry else None

    @property
    def applied_at(self) -> Optional[datetime]:
        return self.entry.applied_at if self.entry else None
