"""Versioned SQL migrations for PostgreSQL.

Provides:
- Discovery of timestamped ``.sql`` files with Up/Down sections
- A ledger table recording applied migrations, batches and fingerprints
- Transactional apply and rollback, one transaction per migration
- Reset, fresh and refresh rebuilds
- Dry-run mode for previews

Usage:
    from schemastep.migrations import MigrationRunner

    runner = MigrationRunner()

    # Apply all pending
    result = await runner.apply()

    # Roll back the last batch
    result = await runner.rollback_last_batch()

CLI Usage:
    schemastep migrate
    schemastep rollback --step 1
    schemastep status
    schemastep make create_users_table
"""

from .base import (
    LedgerEntry,
    MigrationDefinition,
    MigrationRecord,
    MigrationResult,
    MigrationStatus,
    StatusEntry,
)
from .executor import ExecutionEngine, split_statements
from .generator import MigrationGenerator
from .ledger import Ledger, PostgresLedger
from .repository import MigrationRepository, parse_migration
from .runner import (
    MigrationRunner,
    SessionState,
    apply_migrations,
    get_migration_status,
    rollback_migrations,
)

__all__ = [
    # Data model
    "LedgerEntry",
    "MigrationDefinition",
    "MigrationRecord",
    "MigrationResult",
    "MigrationStatus",
    "StatusEntry",
    # Repository
    "MigrationRepository",
    "MigrationGenerator",
    "parse_migration",
    # Ledger and execution
    "Ledger",
    "PostgresLedger",
    "ExecutionEngine",
    "split_statements",
    # Runner
    "MigrationRunner",
    "SessionState",
    "apply_migrations",
    "rollback_migrations",
    "get_migration_status",
]
