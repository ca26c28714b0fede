"""Catalog introspection and database-level administration.

Provides:
- Identifier quoting for names that cannot be bound as parameters
- Listing and dropping user tables (used by fresh)
- Creating and dropping the target database through the maintenance database
"""

import hashlib
import logging

from .config import DatabaseSettings, Settings
from .connection import Connection, get_connection
from .errors import MigrationError, QueryError

logger = logging.getLogger(__name__)


LIST_TABLES_SQL = """
SELECT tablename
FROM pg_catalog.pg_tables
WHERE schemaname = $1
ORDER BY tablename
"""

DATABASE_EXISTS_SQL = "SELECT EXISTS(SELECT 1 FROM pg_catalog.pg_database WHERE datname = $1)"

TERMINATE_SESSIONS_SQL = """
SELECT pg_terminate_backend(pid)
FROM pg_catalog.pg_stat_activity
WHERE datname = $1 AND pid <> pg_backend_pid()
"""


def quote_identifier(name: str) -> str:
    """Quote a SQL identifier (table, index, database or role name).

    Examples:
        >>> quote_identifier("schema_migrations")
        '"schema_migrations"'
        >>> quote_identifier('odd"name')
        '"odd""name"'
    """
    return '"' + name.replace('"', '""') + '"'


def advisory_lock_key(table: str) -> int:
    """Derive a stable signed 64-bit advisory lock key from the ledger table name."""
    digest = hashlib.sha256(f"schemastep:{table}".encode()).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


async def list_tables(conn: Connection, schema: str = "public") -> list[str]:
    """List user tables in a schema.

    Args:
        conn: Open connection
        schema: Schema to inspect

    Returns:
        Table names in alphabetical order
    """
    rows = await conn.fetch(LIST_TABLES_SQL, schema)
    return [row["tablename"] for row in rows]


async def drop_all_tables(conn: Connection, schema: str = "public") -> list[str]:
    """Drop every table in a schema inside one transaction.

    Tables are dropped with CASCADE so foreign keys and dependent views do
    not block the drop.

    Args:
        conn: Open connection
        schema: Schema to empty

    Returns:
        Names of the dropped tables
    """
    tables = await list_tables(conn, schema)
    if not tables:
        logger.info(f"No tables to drop in schema {schema}")
        return []

    async with conn.transaction():
        for table in tables:
            try:
                await conn.execute(
                    f"DROP TABLE IF EXISTS {quote_identifier(schema)}.{quote_identifier(table)} CASCADE"
                )
            except QueryError as e:
                raise QueryError(f"Failed to drop table {table}", details=e.details) from e

    logger.warning(f"Dropped {len(tables)} table(s) from schema {schema}")
    return tables


async def _exists(conn: Connection, name: str) -> bool:
    return bool(await conn.fetchval(DATABASE_EXISTS_SQL, name))


async def database_exists(settings: DatabaseSettings) -> bool:
    """Check whether the target database exists.

    Connects to the maintenance database, since the target may not exist yet.
    """
    async with get_connection(settings, settings.maintenance_database) as conn:
        return await _exists(conn, settings.name)


async def create_database(settings: DatabaseSettings) -> bool:
    """Create the target database if it does not exist.

    Args:
        settings: Database connection settings

    Returns:
        True if the database was created, False if it already existed
    """
    async with get_connection(settings, settings.maintenance_database) as conn:
        if await _exists(conn, settings.name):
            logger.debug(f"Database {settings.name} already exists")
            return False

        await conn.execute(
            f"CREATE DATABASE {quote_identifier(settings.name)} "
            f"OWNER {quote_identifier(settings.user)}"
        )
        logger.info(f"Created database {settings.name}")
        return True


async def drop_database(settings: Settings) -> bool:
    """Drop the target database, terminating other sessions first.

    Args:
        settings: Full settings (the environment is checked)

    Returns:
        True if the database was dropped, False if it did not exist

    Raises:
        MigrationError: If the environment is production
    """
    if settings.is_production:
        raise MigrationError(
            "Database drop is disabled in production",
            details=f"environment is '{settings.environment}'",
        )

    db = settings.database
    async with get_connection(db, db.maintenance_database) as conn:
        if not await _exists(conn, db.name):
            return False

        await conn.fetch(TERMINATE_SESSIONS_SQL, db.name)
        await conn.execute(f"DROP DATABASE {quote_identifier(db.name)}")
        logger.warning(f"Dropped database {db.name}")
        return True
