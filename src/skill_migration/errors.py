"""
Exception taxonomy for the skill migration engine.

Only schema problems and an unavailable store propagate out of a run.
Everything that happens to a single row is converted into a skip/retry
outcome and aggregated into the batch result.
"""

import sqlite3


class MigrationError(Exception):
    """Base class for all migration engine errors."""


class TransientStoreError(MigrationError):
    """Store temporarily unavailable (locked, busy, timed out, I/O hiccup)."""


class SchemaMissingError(MigrationError):
    """A table the engine depends on does not exist."""

    def __init__(self, tables: list[str]):
        self.tables = tables
        super().__init__(
            f"Missing tables: {', '.join(tables)}. Run 'skill-migrate init-schema' first."
        )


class SchemaError(MigrationError):
    """Schema bootstrap failed."""


class DataIntegrityAnomaly(MigrationError):
    """A row violates a constraint and cannot be migrated without manual repair."""


_TRANSIENT_MARKERS = (
    "locked",
    "busy",
    "disk i/o",
    "timeout",
    "interrupted",
    "unable to open",
)


def classify_store_error(exc: sqlite3.Error) -> MigrationError:
    """
    Map a sqlite3 exception onto the engine's error taxonomy.

    Args:
        exc: Exception raised by the sqlite3 driver

    Returns:
        The matching MigrationError (not raised)
    """
    message = str(exc)
    lowered = message.lower()

    if isinstance(exc, sqlite3.IntegrityError):
        return DataIntegrityAnomaly(message)

    if "no such table" in lowered:
        table = message.split(":", 1)[-1].strip()
        if table.startswith("main."):
            table = table[len("main."):]
        return SchemaMissingError([table])

    if isinstance(exc, sqlite3.OperationalError) and any(m in lowered for m in _TRANSIENT_MARKERS):
        return TransientStoreError(message)

    if isinstance(exc, sqlite3.DatabaseError) and "malformed" in lowered:
        return SchemaError(message)

    return MigrationError(message)


def is_unique_violation(exc: sqlite3.IntegrityError) -> bool:
    """Return True if the integrity error is a UNIQUE constraint failure."""
    return "unique constraint" in str(exc).lower()
