"""Migration runner for applying and rolling back migrations.

Provides:
- Apply pending migrations
- Rollback by last batch, by step count or down to a batch
- Reset, fresh and refresh rebuilds
- Migration status and history reporting
- Dry-run support

Every database operation runs in one session: connect, take the advisory
lock, ensure the ledger table, load definitions from disk and verify the
fingerprints of applied ones, then act. The connection is always closed on
the way out.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from ..config import MigrationSettings, Settings, get_settings
from ..connection import Connection, get_connection
from ..errors import FileError, MigrationError
from ..schema import advisory_lock_key, create_database, drop_all_tables
from .base import (
    LedgerEntry,
    MigrationDefinition,
    MigrationResult,
    MigrationStatus,
    StatusEntry,
)
from .executor import ExecutionEngine
from .generator import MigrationGenerator
from .ledger import Ledger, PostgresLedger
from .repository import MigrationRepository

logger = logging.getLogger(__name__)

LedgerFactory = Callable[[Connection, MigrationSettings], Ledger]


def postgres_ledger(conn: Connection, settings: MigrationSettings) -> Ledger:
    return PostgresLedger(conn, table=settings.table, schema=settings.schema)


class SessionState(str, Enum):
    """Lifecycle of one runner session."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    TABLE_ENSURED = "table_ensured"
    READY = "ready"
    CLOSED = "closed"


@dataclass
class Session:
    """Resources of one open runner session."""

    conn: Connection
    ledger: Ledger
    definitions: list[MigrationDefinition]

    def by_name(self) -> dict[str, MigrationDefinition]:
        return {d.name: d for d in self.definitions}


class MigrationRunner:
    """Runner for executing migrations."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        repository: Optional[MigrationRepository] = None,
        ledger_factory: Optional[LedgerFactory] = None,
    ):
        """Initialize the runner.

        Args:
            settings: Resolved settings (uses the process-wide settings if not provided)
            repository: Optional migration repository (reads settings.migration.directory if not provided)
            ledger_factory: Builds the ledger for an open connection (PostgreSQL table by default)
        """
        self.settings = settings or get_settings()
        self.repository = repository or MigrationRepository(self.settings.migration.path)
        self.ledger_factory = ledger_factory or postgres_ledger
        self.state = SessionState.DISCONNECTED

    @asynccontextmanager
    async def _session(self, load: bool = True, verify: bool = True) -> AsyncGenerator[Session, None]:
        """Open a session and drive it to READY.

        Args:
            load: Read migration definitions from disk
            verify: Check fingerprints of applied migrations (needs load)

        Raises:
            IntegrityError: If an applied migration's file was modified
        """
        migration = self.settings.migration
        self.state = SessionState.DISCONNECTED

        async with get_connection(self.settings.database) as conn:
            self.state = SessionState.CONNECTED
            lock_key: Optional[int] = None
            try:
                if migration.advisory_lock:
                    lock_key = advisory_lock_key(migration.table)
                    await conn.acquire_lock(lock_key)

                ledger = self.ledger_factory(conn, migration)
                await ledger.ensure_storage()
                self.state = SessionState.TABLE_ENSURED

                definitions = self.repository.discover() if load else []
                if verify:
                    await ledger.verify_all(definitions)
                self.state = SessionState.READY

                yield Session(conn=conn, ledger=ledger, definitions=definitions)
            finally:
                if lock_key is not None and conn.is_connected:
                    try:
                        await conn.release_lock(lock_key)
                    except MigrationError as e:
                        logger.warning(f"Failed to release advisory lock: {e}")
                self.state = SessionState.CLOSED

    def _definitions_for(self, session: Session, entries: list[LedgerEntry]) -> list[MigrationDefinition]:
        """Match ledger entries to definitions, keeping the entries' order.

        Raises:
            FileError: If an entry has no migration file on disk
        """
        available = session.by_name()
        selected = []
        for entry in entries:
            definition = available.get(entry.name)
            if definition is None:
                raise FileError(
                    f"Migration file for applied migration {entry.name} not found",
                    str(self.repository.directory / f"{entry.name}.sql"),
                )
            selected.append(definition)
        return selected

    async def _revert(
        self,
        session: Session,
        entries: list[LedgerEntry],
        operation: str,
        dry_run: bool,
    ) -> MigrationResult:
        if not entries:
            logger.info("Nothing to roll back")
            return MigrationResult(operation=operation, dry_run=dry_run)

        definitions = self._definitions_for(session, entries)
        engine = ExecutionEngine(session.conn, session.ledger, dry_run=dry_run)
        return await engine.revert_many(definitions, operation=operation)

    async def _apply_pending(self, session: Session, limit: int, dry_run: bool) -> MigrationResult:
        pending = await session.ledger.pending(session.definitions)
        if not pending:
            logger.info("Nothing to migrate")
        engine = ExecutionEngine(session.conn, session.ledger, dry_run=dry_run)
        return await engine.apply_many(pending, limit=limit)

    def discover(self) -> list[MigrationDefinition]:
        """All migration definitions on disk, sorted by name."""
        return self.repository.discover()

    def generate(self, label: str, now: Optional[datetime] = None) -> MigrationDefinition:
        """Create a new migration file in the migrations directory."""
        generator = MigrationGenerator(self.repository.directory, self.settings.migration.timezone)
        return generator.generate(label, now=now)

    async def pending(self) -> list[MigrationDefinition]:
        """Migrations that have not been applied yet."""
        async with self._session(verify=False) as session:
            return await session.ledger.pending(session.definitions)

    async def apply(self, limit: int = 0, dry_run: bool = False) -> MigrationResult:
        """Apply pending migrations under one new batch number.

        Args:
            limit: Apply at most this many (0 applies all)
            dry_run: If True, don't actually execute migrations

        Returns:
            Result with the applied records (empty when nothing was pending)
        """
        if limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")

        async with self._session() as session:
            return await self._apply_pending(session, limit, dry_run)

    async def rollback_last_batch(self, dry_run: bool = False) -> MigrationResult:
        """Revert every migration of the most recent batch, newest first."""
        async with self._session() as session:
            batch = await session.ledger.last_batch()
            if batch == 0:
                logger.info("Nothing to roll back")
                return MigrationResult(operation="rollback", dry_run=dry_run)

            entries = await session.ledger.by_batch(batch)
            result = await self._revert(session, entries, "rollback", dry_run)
            result.batch = batch
            return result

    async def rollback_steps(self, steps: int, dry_run: bool = False) -> MigrationResult:
        """Revert the ``steps`` most recently applied migrations.

        Fewer migrations than requested is not an error.

        Raises:
            ValueError: If steps is less than 1
        """
        if steps < 1:
            raise ValueError(f"steps must be >= 1, got {steps}")

        async with self._session() as session:
            entries = await session.ledger.latest(steps)
            return await self._revert(session, entries, "rollback", dry_run)

    async def rollback_to_batch(self, batch: int, dry_run: bool = False) -> MigrationResult:
        """Revert every migration applied after ``batch``, newest first.

        Batch 0 reverts everything.

        Raises:
            ValueError: If batch is negative
        """
        if batch < 0:
            raise ValueError(f"batch must be >= 0, got {batch}")

        async with self._session() as session:
            entries = await session.ledger.after_batch(batch)
            result = await self._revert(session, entries, "rollback", dry_run)
            result.batch = batch
            return result

    async def reset_all(self, dry_run: bool = False) -> MigrationResult:
        """Revert every applied migration in reverse application order."""
        async with self._session() as session:
            entries = list(reversed(await session.ledger.entries()))
            return await self._revert(session, entries, "reset", dry_run)

    async def fresh(self) -> MigrationResult:
        """Drop every table in the schema, recreate the ledger and apply all migrations."""
        schema = self.settings.migration.schema
        async with self._session() as session:
            dropped = await drop_all_tables(session.conn, schema)
            await session.ledger.ensure_storage()
            result = await self._apply_pending(session, 0, dry_run=False)
            result.operation = "fresh"
            result.dropped_tables = dropped
            return result

    async def refresh(self) -> tuple[MigrationResult, MigrationResult]:
        """Reset every applied migration, then apply all of them again.

        Returns:
            Tuple of (reset result, apply result)
        """
        async with self._session() as session:
            entries = list(reversed(await session.ledger.entries()))
            reverted = await self._revert(session, entries, "reset", dry_run=False)
            applied = await self._apply_pending(session, 0, dry_run=False)
            return reverted, applied

    async def status(self) -> list[StatusEntry]:
        """Status of every migration on disk and every ledger entry.

        Applied migrations whose file changed are reported as MODIFIED and
        ledger entries without a file as MISSING; nothing is raised for them.

        Returns:
            Status entries sorted by name
        """
        async with self._session(verify=False) as session:
            entries = {e.name: e for e in await session.ledger.entries()}

        statuses = []
        for definition in session.definitions:
            entry = entries.pop(definition.name, None)
            if entry is None:
                status = MigrationStatus.PENDING
            elif entry.fingerprint != definition.fingerprint:
                status = MigrationStatus.MODIFIED
            else:
                status = MigrationStatus.APPLIED
            statuses.append(
                StatusEntry(name=definition.name, status=status, definition=definition, entry=entry)
            )

        for entry in entries.values():
            statuses.append(StatusEntry(name=entry.name, status=MigrationStatus.MISSING, entry=entry))

        statuses.sort(key=lambda s: s.name)
        return statuses

    async def history(self) -> list[LedgerEntry]:
        """Ledger entries, most recently applied first."""
        async with self._session(load=False, verify=False) as session:
            return await session.ledger.history()

    async def setup(self) -> bool:
        """Create the target database if needed and ensure the ledger table.

        Returns:
            True if the database was created
        """
        created = await create_database(self.settings.database)
        async with self._session(load=False, verify=False):
            logger.info(f"Migrations table {self.settings.migration.table} is ready")
        return created


# Convenience functions


async def apply_migrations(
    settings: Optional[Settings] = None,
    limit: int = 0,
    dry_run: bool = False,
) -> MigrationResult:
    """Apply pending migrations.

    Args:
        settings: Settings to use (process-wide settings if not provided)
        limit: Apply at most this many (0 applies all)
        dry_run: If True, don't execute migrations

    Returns:
        Migration result
    """
    runner = MigrationRunner(settings)
    return await runner.apply(limit=limit, dry_run=dry_run)


async def rollback_migrations(
    settings: Optional[Settings] = None,
    steps: Optional[int] = None,
    dry_run: bool = False,
) -> MigrationResult:
    """Roll back the last batch, or ``steps`` migrations when given.

    Returns:
        Migration result
    """
    runner = MigrationRunner(settings)
    if steps is None:
        return await runner.rollback_last_batch(dry_run=dry_run)
    return await runner.rollback_steps(steps, dry_run=dry_run)


async def get_migration_status(settings: Optional[Settings] = None) -> list[StatusEntry]:
    """Get migration status.

    Returns:
        List of status entries
    """
    runner = MigrationRunner(settings)
    return await runner.status()
