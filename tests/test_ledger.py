"""Tests for the ledger interface and PostgresLedger SQL."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from schemastep.errors import IntegrityError, QueryError
from schemastep.migrations.base import LedgerEntry, MigrationDefinition
from schemastep.migrations.ledger import PostgresLedger
from tests.helpers.fake_db import FakeDatabase, InMemoryLedger

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_definition(name: str, fp: str = "f" * 64) -> MigrationDefinition:
    return MigrationDefinition(
        name=name,
        timestamp=name[:17],
        label=name[18:],
        path=Path(f"{name}.sql"),
        up_sql="SELECT 1;",
        down_sql="",
        fingerprint=fp,
    )


def make_row(id: int, name: str, batch: int, fp: str = "f" * 64) -> dict:
    return {
        "id": id,
        "name": name,
        "batch": batch,
        "applied_at": T0 + timedelta(minutes=id),
        "execution_time_ms": 5,
        "fingerprint": fp,
    }


@pytest.fixture
def ledger():
    db = FakeDatabase()
    db.ledger_rows = [
        make_row(1, "2025_01_01_000001_a", 1),
        make_row(2, "2025_01_01_000002_b", 1),
        make_row(3, "2025_01_01_000003_c", 2),
    ]
    db.next_id = 4
    return InMemoryLedger(db)


class TestLedgerQueries:
    """Tests for the derived ledger views."""

    @pytest.mark.asyncio
    async def test_last_batch(self, ledger):
        """Test max batch, and 0 for an empty ledger."""
        assert await ledger.last_batch() == 2
        assert await InMemoryLedger(FakeDatabase()).last_batch() == 0

    @pytest.mark.asyncio
    async def test_by_batch_newest_first(self, ledger):
        """Test that by_batch orders by id descending."""
        assert [e.name for e in await ledger.by_batch(1)] == [
            "2025_01_01_000002_b",
            "2025_01_01_000001_a",
        ]

    @pytest.mark.asyncio
    async def test_latest_and_after_batch(self, ledger):
        """Test step and batch selections."""
        assert [e.id for e in await ledger.latest(2)] == [3, 2]
        assert [e.id for e in await ledger.latest(10)] == [3, 2, 1]
        assert [e.id for e in await ledger.after_batch(1)] == [3]
        assert [e.id for e in await ledger.after_batch(0)] == [3, 2, 1]

    @pytest.mark.asyncio
    async def test_history_newest_first(self, ledger):
        """Test history ordered by applied_at descending."""
        assert [e.id for e in await ledger.history()] == [3, 2, 1]

    @pytest.mark.asyncio
    async def test_pending(self, ledger):
        """Test pending is definitions minus applied names, in name order."""
        definitions = [
            make_definition("2025_02_01_000002_e"),
            make_definition("2025_01_01_000002_b"),
            make_definition("2025_02_01_000001_d"),
        ]

        pending = await ledger.pending(definitions)

        assert [d.name for d in pending] == ["2025_02_01_000001_d", "2025_02_01_000002_e"]

    @pytest.mark.asyncio
    async def test_verify_fingerprint(self, ledger):
        """Test fingerprint verification."""
        await ledger.verify_fingerprint(make_definition("2025_01_01_000001_a"))
        await ledger.verify_fingerprint(make_definition("2030_01_01_000000_new", fp="0" * 64))

        with pytest.raises(IntegrityError) as exc_info:
            await ledger.verify_fingerprint(make_definition("2025_01_01_000001_a", fp="0" * 64))

        assert exc_info.value.stored == "f" * 64
        assert exc_info.value.current == "0" * 64

    @pytest.mark.asyncio
    async def test_verify_all(self, ledger):
        """Test that verify_all reports the first modified migration by name."""
        definitions = [
            make_definition("2025_01_01_000003_c", fp="1" * 64),
            make_definition("2025_01_01_000002_b", fp="2" * 64),
        ]

        with pytest.raises(IntegrityError) as exc_info:
            await ledger.verify_all(definitions)

        assert exc_info.value.migration == "2025_01_01_000002_b"


@pytest.fixture
def mock_conn():
    """Create a mock Connection."""
    conn = MagicMock()
    conn.execute = AsyncMock(return_value="OK")
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=0)
    return conn


class TestPostgresLedger:
    """Tests for PostgresLedger."""

    def test_create_table_sql(self, mock_conn):
        """Test the ledger DDL."""
        statements = PostgresLedger(mock_conn, "schema_migrations").create_table_sql()

        ddl = statements[0]
        assert 'CREATE TABLE IF NOT EXISTS "public"."schema_migrations"' in ddl
        assert "id BIGSERIAL PRIMARY KEY" in ddl
        assert "name VARCHAR(255) NOT NULL UNIQUE" in ddl
        assert "applied_at TIMESTAMP WITH TIME ZONE" in ddl
        assert "fingerprint VARCHAR(64)" in ddl
        assert '"idx_schema_migrations_batch"' in statements[1]
        assert '"idx_schema_migrations_applied_at"' in statements[2]

    @pytest.mark.asyncio
    async def test_ensure_storage(self, mock_conn):
        """Test that every DDL statement is executed."""
        await PostgresLedger(mock_conn).ensure_storage()
        assert mock_conn.execute.await_count == 3

    @pytest.mark.asyncio
    async def test_ensure_storage_failure(self, mock_conn):
        """Test that DDL failures name the table."""
        mock_conn.execute.side_effect = QueryError("Query failed", details="permission denied")

        with pytest.raises(QueryError, match="schema_migrations"):
            await PostgresLedger(mock_conn).ensure_storage()

    @pytest.mark.asyncio
    async def test_record(self, mock_conn):
        """Test the insert statement and returned entry."""
        mock_conn.fetchrow.return_value = make_row(7, "2025_01_01_000001_a", 2)
        definition = make_definition("2025_01_01_000001_a")

        entry = await PostgresLedger(mock_conn, "migrations", "app").record(definition, 2, 12)

        sql, *args = mock_conn.fetchrow.await_args.args
        assert sql.startswith('INSERT INTO "app"."migrations"')
        assert "RETURNING" in sql
        assert args[0] == "2025_01_01_000001_a"
        assert args[1] == 2
        assert args[3] == 12
        assert args[4] == "f" * 64
        assert isinstance(entry, LedgerEntry)
        assert entry.id == 7

    @pytest.mark.asyncio
    async def test_record_failure(self, mock_conn):
        """Test that a failed insert carries the migration name."""
        mock_conn.fetchrow.side_effect = QueryError("Query failed", details="duplicate key")

        with pytest.raises(QueryError) as exc_info:
            await PostgresLedger(mock_conn).record(make_definition("2025_01_01_000001_a"), 1, 0)

        assert exc_info.value.migration == "2025_01_01_000001_a"

    @pytest.mark.asyncio
    async def test_remove(self, mock_conn):
        """Test delete by name."""
        await PostgresLedger(mock_conn).remove("2025_01_01_000001_a")

        sql, name = mock_conn.execute.await_args.args
        assert sql == 'DELETE FROM "public"."schema_migrations" WHERE name = $1'
        assert name == "2025_01_01_000001_a"

    @pytest.mark.asyncio
    async def test_last_batch(self, mock_conn):
        """Test COALESCE(MAX(batch), 0)."""
        mock_conn.fetchval.return_value = 4

        assert await PostgresLedger(mock_conn).last_batch() == 4
        assert "COALESCE(MAX(batch), 0)" in mock_conn.fetchval.await_args.args[0]

    @pytest.mark.asyncio
    async def test_by_batch(self, mock_conn):
        """Test the batch query ordering and parameters."""
        mock_conn.fetch.return_value = [make_row(2, "b", 1), make_row(1, "a", 1)]

        entries = await PostgresLedger(mock_conn).by_batch(1)

        sql, batch = mock_conn.fetch.await_args.args
        assert "WHERE batch = $1 ORDER BY id DESC" in sql
        assert batch == 1
        assert [e.name for e in entries] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_get_missing(self, mock_conn):
        """Test get returns None for an unknown name."""
        assert await PostgresLedger(mock_conn).get("nope") is None

    @pytest.mark.asyncio
    async def test_history_order(self, mock_conn):
        """Test history query ordering."""
        await PostgresLedger(mock_conn).history()
        assert "ORDER BY applied_at DESC" in mock_conn.fetch.await_args.args[0]

    @pytest.mark.asyncio
    async def test_applied_names(self, mock_conn):
        """Test the applied name set."""
        mock_conn.fetch.return_value = [{"name": "a"}, {"name": "b"}]
        assert await PostgresLedger(mock_conn).applied_names() == {"a", "b"}
