"""Migration repository for discovering and parsing migration files.

Provides:
- Discovery of ``YYYY_MM_DD_HHMMSS_<label>.sql`` files in one directory
- Parsing of the Up/Down marker sections
- Content fingerprints over the raw file bytes
"""

import logging
from pathlib import Path
from typing import Optional

from ..errors import FileError, NamingError
from ..utils.naming import parse_filename
from .base import MigrationDefinition, fingerprint

logger = logging.getLogger(__name__)

UP_MARKER = "-- +migrate Up"
DOWN_MARKER = "-- +migrate Down"

MIGRATION_SUFFIX = ".sql"


def parse_migration(text: str) -> tuple[str, str]:
    """Split migration file content into forward and reverse bodies.

    Lines before the Up marker are header decoration and are dropped.
    A file without a marker yields an empty body for that direction.

    Args:
        text: Full file content

    Returns:
        Tuple of (up_sql, down_sql), each stripped
    """
    up_lines: list[str] = []
    down_lines: list[str] = []
    current: Optional[list[str]] = None

    for line in text.splitlines():
        marker = line.strip()
        if marker == UP_MARKER:
            current = up_lines
            continue
        if marker == DOWN_MARKER:
            current = down_lines
            continue
        if current is not None:
            current.append(line)

    return "\n".join(up_lines).strip(), "\n".join(down_lines).strip()


class MigrationRepository:
    """Reads migration definitions from a directory.

    Definitions are re-read on every call to discover(); nothing is cached
    between invocations.
    """

    def __init__(self, directory: str | Path):
        """Initialize the repository.

        Args:
            directory: Directory holding the migration files
        """
        self.directory = Path(directory)

    def load(self, path: Path) -> MigrationDefinition:
        """Parse one migration file.

        Raises:
            NamingError: If the filename does not follow the naming convention
            FileError: If the file cannot be read or is not valid UTF-8
        """
        parsed = parse_filename(path.name)
        if parsed is None:
            raise NamingError(
                "Invalid migration filename, expected YYYY_MM_DD_HHMMSS_<label>.sql",
                path.name,
            )
        timestamp, label = parsed

        try:
            raw = path.read_bytes()
        except OSError as e:
            raise FileError("Failed to read migration file", str(path), details=str(e)) from e

        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FileError("Migration file is not valid UTF-8", str(path), details=str(e)) from e

        up_sql, down_sql = parse_migration(text)
        if not up_sql:
            logger.warning(f"Migration {path.name} has an empty Up section")

        return MigrationDefinition(
            name=path.name[: -len(MIGRATION_SUFFIX)],
            timestamp=timestamp,
            label=label,
            path=path,
            up_sql=up_sql,
            down_sql=down_sql,
            fingerprint=fingerprint(raw),
        )

    def discover(self) -> list[MigrationDefinition]:
        """Discover all migrations in the directory.

        Scans non-recursively. Subdirectories and files without a ``.sql``
        extension are ignored. The first malformed ``.sql`` filename aborts
        the whole scan. A missing directory holds no
        migrations and is not created.

        Returns:
            Definitions sorted ascending by name

        Raises:
            NamingError: On the first file with a malformed name
            FileError: If the directory or a file cannot be read
        """
        if not self.directory.exists():
            logger.debug(f"Migrations directory {self.directory} does not exist")
            return []

        try:
            paths = sorted(
                p for p in self.directory.iterdir()
                if p.is_file() and p.suffix == MIGRATION_SUFFIX
            )
        except OSError as e:
            raise FileError(
                "Failed to read migrations directory", str(self.directory), details=str(e)
            ) from e

        definitions = [self.load(path) for path in paths]
        definitions.sort(key=lambda d: d.name)

        logger.debug(f"Discovered {len(definitions)} migration(s) in {self.directory}")
        return definitions

    def find(self, name: str) -> Optional[MigrationDefinition]:
        """Get a migration by name.

        Args:
            name: Migration name (filename without ``.sql``)

        Returns:
            Definition or None
        """
        path = self.directory / f"{name}{MIGRATION_SUFFIX}"
        if not path.is_file():
            return None
        return self.load(path)
