"""Settings for schemastep.

Settings are resolved once per process from, in increasing precedence:
built-in defaults, a YAML file, a .env file, SCHEMASTEP_* environment
variables and finally a DATABASE_URL. The result is immutable; the engine
never re-reads configuration mid-run.
"""

import os
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Optional
from urllib.parse import parse_qs, quote, unquote, urlparse

import yaml
from dotenv import load_dotenv

from .errors import ConfigError

DEFAULT_CONFIG_PATH = Path("config") / "database.yaml"

SSL_MODES = ("disable", "allow", "prefer", "require", "verify-ca", "verify-full")
LOG_LEVELS = ("debug", "info", "warning", "error", "critical")

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


@dataclass(frozen=True)
class DatabaseSettings:
    """PostgreSQL connection parameters.

    Attributes:
        host: Server hostname
        port: Server port
        name: Target database name
        user: Login role
        password: Login password (may be empty for trust/peer auth)
        sslmode: libpq-style TLS mode
        connect_timeout: Seconds to wait for the connection handshake
        command_timeout: Per-statement timeout in seconds, None for no limit
        maintenance_database: Database used for CREATE/DROP DATABASE
    """

    host: str = "localhost"
    port: int = 5432
    name: str = ""
    user: str = ""
    password: str = ""
    sslmode: str = "disable"
    connect_timeout: float = 10.0
    command_timeout: Optional[float] = None
    maintenance_database: str = "postgres"

    def _dsn_for(self, database: str) -> str:
        auth = quote(self.user, safe="")
        if self.password:
            auth += ":" + quote(self.password, safe="")
        host = f"[{self.host}]" if ":" in self.host else self.host
        return (
            f"postgresql://{auth}@{host}:{self.port}/{quote(database, safe='')}"
            f"?sslmode={self.sslmode}"
        )

    @property
    def dsn(self) -> str:
        """Connection URL for the target database."""
        return self._dsn_for(self.name)

    @property
    def admin_dsn(self) -> str:
        """Connection URL for the maintenance database."""
        return self._dsn_for(self.maintenance_database)


@dataclass(frozen=True)
class MigrationSettings:
    """Where migrations live and where the ledger is kept."""

    table: str = "schema_migrations"
    directory: str = "migrations"
    schema: str = "public"
    timezone: str = "UTC"
    advisory_lock: bool = True

    @property
    def path(self) -> Path:
        """Absolute migrations directory."""
        return Path(self.directory).expanduser().resolve()


@dataclass(frozen=True)
class LoggingSettings:
    """Append-only log file settings."""

    enabled: bool = True
    directory: str = "storage/logs"
    filename: str = "schemastep.log"
    level: str = "info"

    @property
    def path(self) -> Path:
        """Absolute log file path."""
        return Path(self.directory).expanduser().resolve() / self.filename


@dataclass(frozen=True)
class Settings:
    """Complete schemastep configuration."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    migration: MigrationSettings = field(default_factory=MigrationSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    environment: str = Environment.DEVELOPMENT.value

    @property
    def is_production(self) -> bool:
        """Check if destructive operations must be refused."""
        return self.environment.lower() in ("production", "prod")

    def validate(self) -> list[str]:
        """Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        db = self.database

        if not db.host:
            errors.append("database host is required")
        if not 1 <= db.port <= 65535:
            errors.append(f"database port must be between 1 and 65535, got {db.port}")
        if not db.name:
            errors.append("database name is required")
        if not db.user:
            errors.append("database user is required")
        if db.sslmode not in SSL_MODES:
            errors.append(f"unsupported sslmode '{db.sslmode}'")

        if not IDENTIFIER_PATTERN.match(self.migration.table):
            errors.append(
                f"migration table '{self.migration.table}' is not a plain SQL identifier"
            )
        if not IDENTIFIER_PATTERN.match(self.migration.schema):
            errors.append(f"schema '{self.migration.schema}' is not a plain SQL identifier")
        if not self.migration.directory:
            errors.append("migration directory is required")

        if self.logging.level.lower() not in LOG_LEVELS:
            errors.append(f"unknown log level '{self.logging.level}'")
        if self.logging.enabled and not self.logging.filename:
            errors.append("log filename is required when logging is enabled")

        return errors

    def redacted(self) -> dict[str, Any]:
        """Settings as a plain dict with the password masked."""
        return {
            "environment": self.environment,
            "database": {
                "host": self.database.host,
                "port": self.database.port,
                "name": self.database.name,
                "user": self.database.user,
                "password": "********" if self.database.password else "",
                "sslmode": self.database.sslmode,
            },
            "migration": {
                "table": self.migration.table,
                "directory": str(self.migration.path),
                "schema": self.migration.schema,
                "timezone": self.migration.timezone,
                "advisory_lock": self.migration.advisory_lock,
            },
            "logging": {
                "enabled": self.logging.enabled,
                "file": str(self.logging.path),
                "level": self.logging.level,
            },
        }


# Environment variable -> (section, key, converter)
ENV_OVERRIDES: dict[str, tuple[str, str, Any]] = {
    "SCHEMASTEP_DB_HOST": ("database", "host", str),
    "SCHEMASTEP_DB_PORT": ("database", "port", int),
    "SCHEMASTEP_DB_NAME": ("database", "name", str),
    "SCHEMASTEP_DB_USER": ("database", "user", str),
    "SCHEMASTEP_DB_PASSWORD": ("database", "password", str),
    "SCHEMASTEP_DB_SSLMODE": ("database", "sslmode", str),
    "SCHEMASTEP_MIGRATIONS_TABLE": ("migration", "table", str),
    "SCHEMASTEP_MIGRATIONS_DIR": ("migration", "directory", str),
    "SCHEMASTEP_LOG_LEVEL": ("logging", "level", str),
}

# YAML keys accepted as aliases of the canonical field names
YAML_ALIASES = {
    "database": {"database": "name", "dbname": "name", "username": "user"},
    "migration": {},
    "logging": {},
}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def parse_database_url(url: str) -> dict[str, Any]:
    """Split a postgres:// URL into database settings fields.

    Args:
        url: Connection URL

    Returns:
        Dict of DatabaseSettings field overrides

    Raises:
        ConfigError: If the URL is not a PostgreSQL URL or its port is invalid
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("postgres", "postgresql"):
        raise ConfigError("Unsupported database URL", details=f"scheme '{parsed.scheme}'")

    values: dict[str, Any] = {}
    if parsed.hostname:
        values["host"] = parsed.hostname
    try:
        port = parsed.port
    except ValueError as e:
        raise ConfigError("Invalid database URL port", details=str(e)) from e
    if port:
        values["port"] = port
    if parsed.path and parsed.path != "/":
        values["name"] = unquote(parsed.path.lstrip("/"))
    if parsed.username:
        values["user"] = unquote(parsed.username)
    if parsed.password:
        values["password"] = unquote(parsed.password)

    sslmode = parse_qs(parsed.query).get("sslmode")
    if sslmode:
        values["sslmode"] = sslmode[0]
    return values


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read config file {path}", details=str(e)) from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def _section(data: dict[str, Any], name: str, cls: type) -> dict[str, Any]:
    raw = data.get(name) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")

    known = set(cls.__dataclass_fields__)
    aliases = YAML_ALIASES.get(name, {})
    values = {}
    for key, value in raw.items():
        key = aliases.get(key, key)
        if key in known:
            values[key] = value
    return values


def load_settings(
    config_path: Optional[str | Path] = None,
    env_file: Optional[str | Path] = ".env",
) -> Settings:
    """Resolve settings from file, .env and environment.

    Args:
        config_path: YAML file to read (defaults to config/database.yaml if present)
        env_file: .env file to load; variables already set are not overridden

    Returns:
        Immutable Settings value

    Raises:
        ConfigError: If a file cannot be parsed or a value has the wrong type
    """
    if env_file and Path(env_file).is_file():
        load_dotenv(env_file, override=False)

    data: dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path)
        if not path.is_file():
            raise ConfigError("Config file not found", details=str(path))
        data = _read_yaml(path)
    elif DEFAULT_CONFIG_PATH.is_file():
        data = _read_yaml(DEFAULT_CONFIG_PATH)

    sections = {
        "database": _section(data, "database", DatabaseSettings),
        "migration": _section(data, "migration", MigrationSettings),
        "logging": _section(data, "logging", LoggingSettings),
    }
    environment = str(data.get("environment", Environment.DEVELOPMENT.value))

    for var, (section, key, convert) in ENV_OVERRIDES.items():
        value = os.getenv(var)
        if value:
            try:
                sections[section][key] = convert(value)
            except ValueError as e:
                raise ConfigError(f"Invalid value for {var}", details=value) from e

    if os.getenv("SCHEMASTEP_ENVIRONMENT"):
        environment = os.environ["SCHEMASTEP_ENVIRONMENT"]

    database_url = os.getenv("SCHEMASTEP_DATABASE_URL") or os.getenv("DATABASE_URL")
    if database_url:
        sections["database"].update(parse_database_url(database_url))

    try:
        database = DatabaseSettings(**sections["database"])
        database = replace(database, port=int(database.port))
        migration = MigrationSettings(**sections["migration"])
        migration = replace(migration, advisory_lock=_to_bool(migration.advisory_lock))
        logging_settings = LoggingSettings(**sections["logging"])
        logging_settings = replace(logging_settings, enabled=_to_bool(logging_settings.enabled))
    except (TypeError, ValueError) as e:
        raise ConfigError("Invalid configuration value", details=str(e)) from e

    return Settings(
        database=database,
        migration=migration,
        logging=logging_settings,
        environment=environment,
    )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def set_settings(settings: Optional[Settings]) -> None:
    """Replace the process-wide settings (None forces a reload)."""
    global _settings
    _settings = settings
