"""Pytest fixtures for schemastep tests."""

from pathlib import Path
from unittest.mock import patch

import pytest

from schemastep.config import (
    DatabaseSettings,
    LoggingSettings,
    MigrationSettings,
    Settings,
    set_settings,
)
from schemastep.migrations.repository import MigrationRepository
from schemastep.migrations.runner import MigrationRunner
from tests.helpers.fake_db import FakeDatabase

MIGRATION_TEMPLATE = """-- Migration: {label}
-- Created: 2025-01-01 00:00:00
-- Batch: 1

-- +migrate Up
{up}

-- +migrate Down
{down}
"""


def write_migration(directory: Path, name: str, up: str, down: str) -> Path:
    """Write a migration file named ``<name>.sql``."""
    directory.mkdir(parents=True, exist_ok=True)
    label = name[18:]
    path = directory / f"{name}.sql"
    path.write_text(MIGRATION_TEMPLATE.format(label=label, up=up, down=down), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def reset_settings():
    """Reset the process-wide settings after each test."""
    yield
    set_settings(None)


@pytest.fixture
def migrations_dir(tmp_path):
    """Empty migrations directory."""
    path = tmp_path / "migrations"
    path.mkdir()
    return path


@pytest.fixture
def settings(migrations_dir):
    """Settings pointing at the temporary migrations directory."""
    return Settings(
        database=DatabaseSettings(name="app_test", user="tester", password="s3cret"),
        migration=MigrationSettings(directory=str(migrations_dir)),
        logging=LoggingSettings(enabled=False),
    )


@pytest.fixture
def fake_db():
    """Fresh in-memory database."""
    return FakeDatabase()


@pytest.fixture
def runner(settings, migrations_dir, fake_db):
    """MigrationRunner wired to the in-memory database."""
    with patch("schemastep.migrations.runner.get_connection", fake_db.get_connection):
        yield MigrationRunner(
            settings,
            repository=MigrationRepository(migrations_dir),
            ledger_factory=fake_db.ledger_factory,
        )


@pytest.fixture
def widgets_migration(migrations_dir):
    """One migration creating the widgets table."""
    return write_migration(
        migrations_dir,
        "2024_01_01_000000_create_widgets_table",
        "CREATE TABLE widgets(id INT);",
        "DROP TABLE widgets;",
    )


@pytest.fixture
def two_migrations(migrations_dir):
    """Migrations ``a`` and ``b`` one second apart."""
    return [
        write_migration(
            migrations_dir,
            "2025_01_01_000001_a",
            "CREATE TABLE a(id INT);",
            "DROP TABLE a;",
        ),
        write_migration(
            migrations_dir,
            "2025_01_01_000002_b",
            "CREATE TABLE b(id INT);\nCREATE INDEX idx_b_id ON b(id);",
            "DROP INDEX IF EXISTS idx_b_id;\nDROP TABLE b;",
        ),
    ]
