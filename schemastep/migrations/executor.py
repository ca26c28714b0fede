"""Execution engine for migration bodies.

Each migration runs in its own transaction together with its ledger write,
so a migration and its ledger entry are committed or discarded as one unit.
A sequence of migrations is not one transaction: a failure stops the
sequence and leaves earlier migrations committed.
"""

import logging
import time
from datetime import datetime, timezone

from ..connection import Connection
from ..errors import ExecutionError, MigrationError, QueryError
from .base import MigrationDefinition, MigrationRecord, MigrationResult, MigrationStatus
from .ledger import Ledger

logger = logging.getLogger(__name__)


def _is_comment_only(fragment: str) -> bool:
    return all(
        not line.strip() or line.strip().startswith("--")
        for line in fragment.splitlines()
    )


def split_statements(sql: str) -> list[str]:
    """Split a migration body into statements.

    A lexical split on ``;``: semicolons inside string literals or
    dollar-quoted bodies are not recognised and will break a statement.
    Empty and comment-only fragments are dropped.

    Examples:
        >>> split_statements("CREATE TABLE a (id INT);\\n-- note\\nDROP TABLE b;")
        ['CREATE TABLE a (id INT)', '-- note\\nDROP TABLE b']
    """
    statements = []
    for fragment in sql.split(";"):
        fragment = fragment.strip()
        if fragment and not _is_comment_only(fragment):
            statements.append(fragment)
    return statements


class ExecutionEngine:
    """Runs forward and reverse migration bodies."""

    def __init__(self, conn: Connection, ledger: Ledger, dry_run: bool = False):
        """Initialize the engine.

        Args:
            conn: Open connection, shared with the ledger
            ledger: Ledger to record and remove entries in
            dry_run: If True, report what would run without touching the database
        """
        self.conn = conn
        self.ledger = ledger
        self.dry_run = dry_run

    async def _run_statements(self, definition: MigrationDefinition, sql: str, direction: str) -> int:
        statements = split_statements(sql)
        for index, statement in enumerate(statements, start=1):
            try:
                await self.conn.execute(statement)
            except QueryError as e:
                raise ExecutionError(
                    f"Failed to execute SQL statement {index} ({direction})",
                    details=e.details,
                    migration=definition.name,
                    statement_index=index,
                    statement=statement,
                ) from e
        return len(statements)

    async def apply_one(self, definition: MigrationDefinition, batch: int) -> MigrationRecord:
        """Apply one migration and record it in the ledger.

        Raises:
            ExecutionError: If a statement, the ledger write or the commit fails
                (the transaction is rolled back)
        """
        if self.dry_run:
            logger.info(f"[DRY RUN] Would apply {definition.name} (batch {batch})")
            return MigrationRecord(
                name=definition.name,
                status=MigrationStatus.PENDING,
                batch=batch,
                fingerprint=definition.fingerprint,
                statements=len(split_statements(definition.up_sql)),
                dry_run=True,
            )

        logger.info(f"Migrating: {definition.name}")
        start = time.time()
        try:
            async with self.conn.transaction():
                count = await self._run_statements(definition, definition.up_sql, "up")
                # The ledger insert itself is not part of the recorded duration
                elapsed_ms = int((time.time() - start) * 1000)
                entry = await self.ledger.record(definition, batch, elapsed_ms)
        except ExecutionError as e:
            logger.error(f"Migration failed: {definition.name}: {e.message}: {e.details}")
            raise
        except MigrationError as e:
            logger.error(f"Migration failed: {definition.name}: {e}")
            raise ExecutionError(
                "Failed to apply migration",
                details=e.details or e.message,
                migration=definition.name,
            ) from e

        logger.info(f"Migrated:  {definition.name} ({elapsed_ms}ms)")
        return MigrationRecord(
            name=definition.name,
            status=MigrationStatus.APPLIED,
            batch=batch,
            executed_at=entry.applied_at,
            execution_time_ms=elapsed_ms,
            fingerprint=definition.fingerprint,
            statements=count,
        )

    async def revert_one(self, definition: MigrationDefinition) -> MigrationRecord:
        """Revert one migration and remove its ledger entry.

        Raises:
            ExecutionError: If a statement, the ledger write or the commit fails
                (the transaction is rolled back)
        """
        if self.dry_run:
            logger.info(f"[DRY RUN] Would roll back {definition.name}")
            return MigrationRecord(
                name=definition.name,
                status=MigrationStatus.APPLIED,
                fingerprint=definition.fingerprint,
                statements=len(split_statements(definition.down_sql)),
                dry_run=True,
            )

        logger.info(f"Rolling back: {definition.name}")
        start = time.time()
        try:
            async with self.conn.transaction():
                count = await self._run_statements(definition, definition.down_sql, "down")
                await self.ledger.remove(definition.name)
                elapsed_ms = int((time.time() - start) * 1000)
        except ExecutionError as e:
            logger.error(f"Rollback failed: {definition.name}: {e.message}: {e.details}")
            raise
        except MigrationError as e:
            logger.error(f"Rollback failed: {definition.name}: {e}")
            raise ExecutionError(
                "Failed to roll back migration",
                details=e.details or e.message,
                migration=definition.name,
            ) from e

        logger.info(f"Rolled back:  {definition.name} ({elapsed_ms}ms)")
        return MigrationRecord(
            name=definition.name,
            status=MigrationStatus.ROLLED_BACK,
            executed_at=datetime.now(timezone.utc),
            execution_time_ms=elapsed_ms,
            fingerprint=definition.fingerprint,
            statements=count,
        )

    async def apply_many(self, definitions: list[MigrationDefinition], limit: int = 0) -> MigrationResult:
        """Apply migrations in the given order under one new batch number.

        Args:
            definitions: Pending migrations, oldest first
            limit: Apply at most this many (0 applies all)

        Returns:
            Result with one record per applied migration

        Raises:
            ValueError: If limit is negative
            ExecutionError: On the first failing migration; ``completed``
                holds the records committed before it
        """
        if limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")

        result = MigrationResult(operation="apply", dry_run=self.dry_run)
        if not definitions:
            return result

        batch = await self.ledger.last_batch() + 1
        result.batch = batch
        selected = definitions[:limit] if limit else definitions

        for definition in selected:
            try:
                result.records.append(await self.apply_one(definition, batch))
            except ExecutionError as e:
                e.completed = list(result.records)
                raise

        logger.info(f"Applied {result.count} migration(s) in batch {batch}")
        return result

    async def revert_many(
        self,
        definitions: list[MigrationDefinition],
        limit: int = 0,
        operation: str = "rollback",
    ) -> MigrationResult:
        """Revert migrations in the order given (callers pass newest first).

        Raises:
            ValueError: If limit is negative
            ExecutionError: On the first failing migration; ``completed``
                holds the records committed before it
        """
        if limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")

        result = MigrationResult(operation=operation, dry_run=self.dry_run)
        selected = definitions[:limit] if limit else definitions

        for definition in selected:
            try:
                result.records.append(await self.revert_one(definition))
            except ExecutionError as e:
                e.completed = list(result.records)
                raise

        if selected:
            logger.info(f"Rolled back {result.count} migration(s)")
        return result
