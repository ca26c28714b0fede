"""Utility modules for schemastep."""

from .logging import RedactingFilter, SecretsRedactor, setup_logging
from .naming import (
    FILENAME_PATTERN,
    format_timestamp,
    parse_filename,
    pluralize,
    sanitize_label,
    to_snake_case,
)

__all__ = [
    "RedactingFilter",
    "SecretsRedactor",
    "setup_logging",
    "FILENAME_PATTERN",
    "format_timestamp",
    "parse_filename",
    "pluralize",
    "sanitize_label",
    "to_snake_case",
]
