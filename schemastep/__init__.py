"""schemastep: versioned, reversible SQL migrations for PostgreSQL."""

from .config import Settings, get_settings, load_settings, set_settings
from .errors import (
    ConfigError,
    ConnectivityError,
    ExecutionError,
    FileError,
    IntegrityError,
    MigrationError,
    NamingError,
    QueryError,
)
from .migrations import MigrationRunner

__version__ = "0.1.0"

__all__ = [
    "Settings",
    "get_settings",
    "load_settings",
    "set_settings",
    "MigrationError",
    "NamingError",
    "IntegrityError",
    "ExecutionError",
    "ConnectivityError",
    "FileError",
    "QueryError",
    "ConfigError",
    "MigrationRunner",
    "__version__",
]
