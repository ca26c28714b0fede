"""PostgreSQL connection management.

A migration run needs exactly one connection for its whole lifetime, so
there is no pool: get_connection() opens a connection, yields it and always
closes it on the way out, including on errors.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Optional

import asyncpg

from .config import DatabaseSettings
from .errors import ConnectivityError, QueryError

logger = logging.getLogger(__name__)

DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError)


def _preview(sql: str, limit: int = 200) -> str:
    text = " ".join(sql.split())
    return text if len(text) <= limit else text[: limit - 3] + "..."


class Connection:
    """A single PostgreSQL connection wrapper.

    Exposes the handful of calls the engine needs and converts driver
    exceptions into schemastep errors.
    """

    def __init__(self, settings: DatabaseSettings, database: Optional[str] = None):
        """Initialize connection.

        Args:
            settings: Database connection settings
            database: Database to connect to (defaults to settings.name)
        """
        self.settings = settings
        self.database = database or settings.name
        self._conn: Optional[asyncpg.Connection] = None

    @property
    def is_connected(self) -> bool:
        """Check if connection is open."""
        return self._conn is not None and not self._conn.is_closed()

    def _dsn(self) -> str:
        if self.database == self.settings.name:
            return self.settings.dsn
        if self.database == self.settings.maintenance_database:
            return self.settings.admin_dsn
        return self.settings._dsn_for(self.database)

    async def connect(self) -> None:
        """Open the connection and ping the server.

        Raises:
            ConnectivityError: If the server cannot be reached or rejects the login
        """
        if self.is_connected:
            return

        target = f"{self.settings.host}:{self.settings.port}/{self.database}"
        try:
            conn = await asyncpg.connect(
                dsn=self._dsn(),
                timeout=self.settings.connect_timeout,
                command_timeout=self.settings.command_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ConnectivityError(
                f"Connection to {target} timed out after {self.settings.connect_timeout}s"
            ) from e
        except (OSError, *DRIVER_ERRORS) as e:
            raise ConnectivityError(f"Failed to connect to {target}", details=str(e)) from e

        try:
            await conn.fetchval("SELECT 1")
        except DRIVER_ERRORS as e:
            await conn.close()
            raise ConnectivityError(f"Failed to ping {target}", details=str(e)) from e

        self._conn = conn
        logger.debug(f"Connected to PostgreSQL: {target}")

    async def close(self) -> None:
        """Close the connection."""
        if self._conn is None:
            return
        try:
            await self._conn.close()
        except (OSError, *DRIVER_ERRORS) as e:
            logger.warning(f"Error closing connection: {e}")
        finally:
            self._conn = None
            logger.debug(f"Closed connection to {self.database}")

    def _raw(self) -> asyncpg.Connection:
        if self._conn is None:
            raise ConnectivityError("No database connection", details="connection is not open")
        return self._conn

    async def execute(self, sql: str, *args: Any) -> str:
        """Execute a statement and return the server status tag.

        Raises:
            QueryError: If the statement fails
        """
        conn = self._raw()
        logger.debug(f"SQL: {_preview(sql)}")
        try:
            return await conn.execute(sql, *args)
        except DRIVER_ERRORS as e:
            raise QueryError("Query failed", details=str(e)) from e

    async def fetch(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        """Run a query and return every row as a dict."""
        conn = self._raw()
        logger.debug(f"SQL: {_preview(sql)}")
        try:
            rows = await conn.fetch(sql, *args)
        except DRIVER_ERRORS as e:
            raise QueryError("Query failed", details=str(e)) from e
        return [dict(row) for row in rows]

    async def fetchrow(self, sql: str, *args: Any) -> Optional[dict[str, Any]]:
        """Run a query and return the first row, or None."""
        conn = self._raw()
        try:
            row = await conn.fetchrow(sql, *args)
        except DRIVER_ERRORS as e:
            raise QueryError("Query failed", details=str(e)) from e
        return dict(row) if row is not None else None

    async def fetchval(self, sql: str, *args: Any) -> Any:
        """Run a query and return the first column of the first row."""
        conn = self._raw()
        try:
            return await conn.fetchval(sql, *args)
        except DRIVER_ERRORS as e:
            raise QueryError("Query failed", details=str(e)) from e

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[None, None]:
        """Run the enclosed block in a transaction.

        Commits when the block exits normally and rolls back when it raises.

        Usage:
            async with conn.transaction():
                await conn.execute("CREATE TABLE widgets (id INT)")
        """
        tx = self._raw().transaction()
        try:
            await tx.start()
        except DRIVER_ERRORS as e:
            raise QueryError("Failed to begin transaction", details=str(e)) from e

        try:
            yield
        except BaseException:
            try:
                await tx.rollback()
            except (OSError, *DRIVER_ERRORS) as e:
                logger.warning(f"Rollback failed: {e}")
            raise

        try:
            await tx.commit()
        except DRIVER_ERRORS as e:
            raise QueryError("Failed to commit transaction", details=str(e)) from e

    async def acquire_lock(self, key: int) -> None:
        """Take a session-level advisory lock, waiting until it is free."""
        logger.debug(f"Waiting for advisory lock {key}")
        await self.fetchval("SELECT pg_advisory_lock($1)", key)

    async def release_lock(self, key: int) -> None:
        """Release a session-level advisory lock."""
        await self.fetchval("SELECT pg_advisory_unlock($1)", key)


@asynccontextmanager
async def get_connection(
    settings: DatabaseSettings,
    database: Optional[str] = None,
) -> AsyncGenerator[Connection, None]:
    """Context manager for a single database connection.

    Usage:
        async with get_connection(settings.database) as conn:
            await conn.execute("SELECT 1")

    Args:
        settings: Database connection settings
        database: Database to connect to (defaults to settings.name)

    Yields:
        Open connection, closed on exit
    """
    conn = Connection(settings, database)
    await conn.connect()
    try:
        yield conn
    finally:
        await conn.close()
