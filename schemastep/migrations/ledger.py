"""Ledger of applied migrations.

The engine talks to the ledger only through the abstract Ledger interface;
PostgresLedger keeps the rows in a table inside the target database so that
recording an applied migration commits in the same transaction as the
migration's own statements.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Iterable, Optional

from ..connection import Connection
from ..errors import IntegrityError, QueryError
from ..schema import quote_identifier
from .base import LedgerEntry, MigrationDefinition

logger = logging.getLogger(__name__)

LEDGER_COLUMNS = "id, name, batch, applied_at, execution_time_ms, fingerprint"


class Ledger(ABC):
    """Read/write contract for the applied-migrations record.

    Entries are only ever inserted and deleted, never updated. A name
    appears at most once.
    """

    @abstractmethod
    async def ensure_storage(self) -> None:
        """Create the backing storage if it does not exist."""

    @abstractmethod
    async def entries(self) -> list[LedgerEntry]:
        """All entries in application order (id ascending)."""

    @abstractmethod
    async def get(self, name: str) -> Optional[LedgerEntry]:
        """Entry for a migration name, or None if it is not applied."""

    @abstractmethod
    async def record(
        self,
        definition: MigrationDefinition,
        batch: int,
        execution_time_ms: int,
    ) -> LedgerEntry:
        """Insert an entry for a freshly applied migration."""

    @abstractmethod
    async def remove(self, name: str) -> None:
        """Delete the entry for a reverted migration."""

    async def applied_names(self) -> set[str]:
        return {e.name for e in await self.entries()}

    async def last_batch(self) -> int:
        """Highest batch number, or 0 when the ledger is empty."""
        return max((e.batch for e in await self.entries()), default=0)

    async def by_batch(self, batch: int) -> list[LedgerEntry]:
        """Entries of one batch, newest first (id descending)."""
        return [e for e in reversed(await self.entries()) if e.batch == batch]

    async def latest(self, count: int) -> list[LedgerEntry]:
        """The ``count`` most recently applied entries, newest first."""
        return list(reversed(await self.entries()))[:count]

    async def after_batch(self, batch: int) -> list[LedgerEntry]:
        """Entries with a batch number above ``batch``, newest first."""
        return [e for e in reversed(await self.entries()) if e.batch > batch]

    async def history(self) -> list[LedgerEntry]:
        """All entries, most recently applied first."""
        return sorted(await self.entries(), key=lambda e: (e.applied_at, e.id), reverse=True)

    async def pending(self, definitions: Iterable[MigrationDefinition]) -> list[MigrationDefinition]:
        """Definitions with no ledger entry, in name order."""
        applied = await self.applied_names()
        return sorted((d for d in definitions if d.name not in applied), key=lambda d: d.name)

    async def verify_fingerprint(self, definition: MigrationDefinition) -> None:
        """Check an applied migration's file against its recorded fingerprint.

        No-op when the migration has not been applied.

        Raises:
            IntegrityError: If the stored and current fingerprints differ
        """
        entry = await self.get(definition.name)
        if entry is None:
            return
        if entry.fingerprint != definition.fingerprint:
            raise IntegrityError(definition.name, entry.fingerprint, definition.fingerprint)

    async def verify_all(self, definitions: Iterable[MigrationDefinition]) -> None:
        """Verify every applied definition with a single ledger read.

        Raises:
            IntegrityError: On the first (by name) modified migration
        """
        stored = {e.name: e.fingerprint for e in await self.entries()}
        for definition in sorted(definitions, key=lambda d: d.name):
            recorded = stored.get(definition.name)
            if recorded is not None and recorded != definition.fingerprint:
                raise IntegrityError(definition.name, recorded, definition.fingerprint)


class PostgresLedger(Ledger):
    """Ledger stored in a PostgreSQL table."""

    def __init__(self, conn: Connection, table: str = "schema_migrations", schema: str = "public"):
        """Initialize the ledger.

        Args:
            conn: Open connection (shared with the execution engine)
            table: Ledger table name
            schema: Schema holding the ledger table
        """
        self.conn = conn
        self.table = table
        self.schema = schema
        self.qualified = f"{quote_identifier(schema)}.{quote_identifier(table)}"

    def create_table_sql(self) -> list[str]:
        """DDL statements creating the ledger table and its indexes."""
        return [
            f"""
            CREATE TABLE IF NOT EXISTS {self.qualified} (
                id BIGSERIAL PRIMARY KEY,
                name VARCHAR(255) NOT NULL UNIQUE,
                batch INTEGER NOT NULL,
                applied_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                execution_time_ms INTEGER NOT NULL DEFAULT 0,
                fingerprint VARCHAR(64) NOT NULL
            )
            """,
            f"CREATE INDEX IF NOT EXISTS {quote_identifier(f'idx_{self.table}_batch')} "
            f"ON {self.qualified} (batch)",
            f"CREATE INDEX IF NOT EXISTS {quote_identifier(f'idx_{self.table}_applied_at')} "
            f"ON {self.qualified} (applied_at)",
        ]

    async def _fetch(self, what: str, sql: str, *args) -> list[LedgerEntry]:
        try:
            rows = await self.conn.fetch(sql, *args)
        except QueryError as e:
            raise QueryError(f"Failed to get {what}", details=e.details) from e
        return [LedgerEntry.from_row(row) for row in rows]

    async def ensure_storage(self) -> None:
        try:
            for statement in self.create_table_sql():
                await self.conn.execute(statement)
        except QueryError as e:
            raise QueryError(
                f"Failed to create migrations table {self.table}", details=e.details
            ) from e
        logger.debug(f"Ensured migrations table {self.schema}.{self.table}")

    async def entries(self) -> list[LedgerEntry]:
        return await self._fetch(
            "executed migrations",
            f"SELECT {LEDGER_COLUMNS} FROM {self.qualified} ORDER BY id ASC",
        )

    async def applied_names(self) -> set[str]:
        try:
            rows = await self.conn.fetch(f"SELECT name FROM {self.qualified}")
        except QueryError as e:
            raise QueryError("Failed to get executed migrations", details=e.details) from e
        return {row["name"] for row in rows}

    async def get(self, name: str) -> Optional[LedgerEntry]:
        found = await self._fetch(
            "migration entry",
            f"SELECT {LEDGER_COLUMNS} FROM {self.qualified} WHERE name = $1",
            name,
        )
        return found[0] if found else None

    async def last_batch(self) -> int:
        try:
            value = await self.conn.fetchval(f"SELECT COALESCE(MAX(batch), 0) FROM {self.qualified}")
        except QueryError as e:
            raise QueryError("Failed to get last batch", details=e.details) from e
        return int(value or 0)

    async def by_batch(self, batch: int) -> list[LedgerEntry]:
        return await self._fetch(
            f"migrations of batch {batch}",
            f"SELECT {LEDGER_COLUMNS} FROM {self.qualified} WHERE batch = $1 ORDER BY id DESC",
            batch,
        )

    async def latest(self, count: int) -> list[LedgerEntry]:
        return await self._fetch(
            "latest migrations",
            f"SELECT {LEDGER_COLUMNS} FROM {self.qualified} ORDER BY id DESC LIMIT $1",
            count,
        )

    async def after_batch(self, batch: int) -> list[LedgerEntry]:
        return await self._fetch(
            f"migrations after batch {batch}",
            f"SELECT {LEDGER_COLUMNS} FROM {self.qualified} WHERE batch > $1 ORDER BY id DESC",
            batch,
        )

    async def history(self) -> list[LedgerEntry]:
        return await self._fetch(
            "migration history",
            f"SELECT {LEDGER_COLUMNS} FROM {self.qualified} ORDER BY applied_at DESC, id DESC",
        )

    async def record(
        self,
        definition: MigrationDefinition,
        batch: int,
        execution_time_ms: int,
    ) -> LedgerEntry:
        try:
            row = await self.conn.fetchrow(
                f"INSERT INTO {self.qualified} (name, batch, applied_at, execution_time_ms, fingerprint) "
                f"VALUES ($1, $2, $3, $4, $5) RETURNING {LEDGER_COLUMNS}",
                definition.name,
                batch,
                datetime.now(timezone.utc),
                execution_time_ms,
                definition.fingerprint,
            )
        except QueryError as e:
            raise QueryError(
                "Failed to record migration", details=e.details, migration=definition.name
            ) from e
        return LedgerEntry.from_row(row)

    async def remove(self, name: str) -> None:
        try:
            await self.conn.execute(f"DELETE FROM {self.qualified} WHERE name = $1", name)
        except QueryError as e:
            raise QueryError(
                "Failed to remove migration record", details=e.details, migration=name
            ) from e
