"""Naming helpers for migration files."""

import re
from datetime import datetime
from typing import Optional

# YYYY_MM_DD_HHMMSS_label.sql
FILENAME_PATTERN = re.compile(r"^(?P<timestamp>\d{4}_\d{2}_\d{2}_\d{6})_(?P<label>.+)\.sql$")

TIMESTAMP_FORMAT = "%Y_%m_%d_%H%M%S"

IRREGULAR_PLURALS = {
    "person": "people",
    "child": "children",
    "man": "men",
    "woman": "women",
    "foot": "feet",
    "tooth": "teeth",
    "mouse": "mice",
    "goose": "geese",
}

VOWELS = "aeiou"


def to_snake_case(text: str) -> str:
    """Convert camelCase, spaces and hyphens to snake_case.

    Examples:
        >>> to_snake_case("CreateUsersTable")
        'create_users_table'
        >>> to_snake_case("add-email to users")
        'add_email_to_users'
    """
    text = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", text)
    text = text.lower().replace(" ", "_").replace("-", "_")
    text = re.sub(r"_+", "_", text)
    return text.strip("_")


def sanitize_label(label: str) -> str:
    """Make a migration label safe for use in a filename and as an identifier.

    Characters other than letters, digits and underscores are stripped, and a
    label that starts with a digit gets a ``migration_`` prefix.

    Returns:
        Sanitized label (may be empty if nothing usable was left)
    """
    label = to_snake_case(label)
    label = re.sub(r"[^a-zA-Z0-9_]", "", label)
    label = re.sub(r"_+", "_", label).strip("_")
    if label and label[0].isdigit():
        label = f"migration_{label}"
    return label


def pluralize(word: str) -> str:
    """Pluralize an English noun using basic rules.

    Examples:
        >>> pluralize("category")
        'categories'
        >>> pluralize("box")
        'boxes'
        >>> pluralize("knife")
        'knives'
        >>> pluralize("person")
        'people'
    """
    if not word:
        return ""

    word = word.lower()
    if word in IRREGULAR_PLURALS:
        return IRREGULAR_PLURALS[word]

    if word.endswith("y") and len(word) > 1 and word[-2] not in VOWELS:
        return word[:-1] + "ies"
    if word.endswith(("s", "sh", "ch", "x", "z")):
        return word + "es"
    if word.endswith("fe"):
        return word[:-2] + "ves"
    if word.endswith("f"):
        return word[:-1] + "ves"
    return word + "s"


def format_timestamp(moment: datetime) -> str:
    """Render the sortable timestamp prefix of a migration filename."""
    return moment.strftime(TIMESTAMP_FORMAT)


def parse_filename(filename: str) -> Optional[tuple[str, str]]:
    """Split a migration filename into (timestamp, label).

    Returns:
        Tuple of timestamp and label, or None if the name does not match
    """
    match = FILENAME_PATTERN.match(filename)
    if not match:
        return None
    return match.group("timestamp"), match.group("label")
