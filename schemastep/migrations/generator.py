"""Migration file generator.

Writes a new ``YYYY_MM_DD_HHMMSS_<label>.sql`` file from a template chosen
by the label:

- ``create_<thing>_table``: CREATE TABLE with id/timestamps and a created_at index
- ``add_*``: commented ALTER TABLE ADD COLUMN skeleton
- ``drop_*``: commented ALTER TABLE DROP COLUMN skeleton
- anything else: commented generic example
"""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..errors import ConfigError, FileError, NamingError
from ..utils.naming import format_timestamp, pluralize, sanitize_label
from .base import MigrationDefinition, fingerprint
from .repository import parse_migration

logger = logging.getLogger(__name__)

CREATE_TABLE_LABEL = re.compile(r"^create_(?P<table>\w+?)_table$")

HEADER_TEMPLATE = """-- Migration: {label}
-- Created: {created}
-- Batch: 1

-- +migrate Up
{up}

-- +migrate Down
{down}
"""

CREATE_TABLE_UP = """CREATE TABLE {table} (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
    deleted_at TIMESTAMP WITH TIME ZONE
);

-- Create indexes for performance
CREATE INDEX idx_{table}_created_at ON {table}(created_at);"""

CREATE_TABLE_DOWN = """DROP INDEX IF EXISTS idx_{table}_created_at;
DROP TABLE IF EXISTS {table};"""

ADD_COLUMN_UP = """-- Add your column here
-- ALTER TABLE table_name ADD COLUMN column_name VARCHAR(255);
-- CREATE INDEX idx_table_column ON table_name(column_name);"""

ADD_COLUMN_DOWN = """-- Remove the column here
-- DROP INDEX IF EXISTS idx_table_column;
-- ALTER TABLE table_name DROP COLUMN column_name;"""

DROP_COLUMN_UP = """-- Drop your column here
-- DROP INDEX IF EXISTS idx_table_column;
-- ALTER TABLE table_name DROP COLUMN column_name;"""

DROP_COLUMN_DOWN = """-- Add the column back (data in it is not restored)
-- ALTER TABLE table_name ADD COLUMN column_name VARCHAR(255);
-- CREATE INDEX idx_table_column ON table_name(column_name);"""

GENERIC_UP = """-- Add your migration code here
-- Example:
-- CREATE TABLE new_table (
--     id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
--     name VARCHAR(255) NOT NULL,
--     created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
-- );"""

GENERIC_DOWN = """-- Add your rollback code here
-- Example:
-- DROP TABLE IF EXISTS new_table;"""


def table_name_for(label: str) -> Optional[str]:
    """Infer the table name from a ``create_<thing>_table`` label.

    Names that already end in ``s`` are taken as plural.

    Examples:
        >>> table_name_for("create_category_table")
        'categories'
        >>> table_name_for("create_users_table")
        'users'
        >>> table_name_for("add_email_to_users")
    """
    match = CREATE_TABLE_LABEL.match(label)
    if not match:
        return None
    table = match.group("table")
    if table.endswith("s"):
        return table
    # Pluralize the last word only: user_profile -> user_profiles
    head, _, last = table.rpartition("_")
    plural = pluralize(last)
    return f"{head}_{plural}" if head else plural


def render_template(label: str) -> tuple[str, str]:
    """Pick the forward/reverse template bodies for a sanitized label."""
    table = table_name_for(label)
    if table is not None:
        return CREATE_TABLE_UP.format(table=table), CREATE_TABLE_DOWN.format(table=table)
    if label.startswith("add_"):
        return ADD_COLUMN_UP, ADD_COLUMN_DOWN
    if label.startswith("drop_"):
        return DROP_COLUMN_UP, DROP_COLUMN_DOWN
    return GENERIC_UP, GENERIC_DOWN


class MigrationGenerator:
    """Creates new migration files in a directory."""

    def __init__(self, directory: str | Path, timezone: str = "UTC"):
        """Initialize the generator.

        Args:
            directory: Directory to write migration files into
            timezone: IANA zone used for the filename timestamp

        Raises:
            ConfigError: If the timezone is unknown
        """
        self.directory = Path(directory)
        try:
            self.tz = ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigError(f"Unknown timezone '{timezone}'", details=str(e)) from e

    def generate(self, label: str, now: Optional[datetime] = None) -> MigrationDefinition:
        """Write a new migration file.

        Args:
            label: Human label, sanitized to snake_case identifier characters
            now: Creation time (defaults to the current time in the configured zone)

        Returns:
            Definition of the written file

        Raises:
            NamingError: If nothing usable is left of the label
            FileError: If the file exists already or cannot be written
        """
        clean = sanitize_label(label)
        if not clean:
            raise NamingError("Migration label is empty after sanitizing", label)
        if clean != label:
            logger.debug(f"Sanitized migration label '{label}' to '{clean}'")

        moment = now.astimezone(self.tz) if now else datetime.now(self.tz)
        timestamp = format_timestamp(moment)
        name = f"{timestamp}_{clean}"
        path = self.directory / f"{name}.sql"

        up, down = render_template(clean)
        content = HEADER_TEMPLATE.format(
            label=clean,
            created=moment.strftime("%Y-%m-%d %H:%M:%S"),
            up=up,
            down=down,
        )

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(path, "x", encoding="utf-8") as f:
                f.write(content)
        except FileExistsError as e:
            raise FileError("Migration file already exists", str(path)) from e
        except OSError as e:
            raise FileError("Failed to create migration file", str(path), details=str(e)) from e

        logger.info(f"Created migration {path.name}")

        up_sql, down_sql = parse_migration(content)
        return MigrationDefinition(
            name=name,
            timestamp=timestamp,
            label=clean,
            path=path,
            up_sql=up_sql,
            down_sql=down_sql,
            fingerprint=fingerprint(content.encode("utf-8")),
        )
