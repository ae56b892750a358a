"""Tests for store error classification."""

import sqlite3

import pytest

from skill_migration.errors import (
    DataIntegrityAnomaly,
    MigrationError,
    SchemaError,
    SchemaMissingError,
    TransientStoreError,
    classify_store_error,
    is_unique_violation,
)


class TestClassifyStoreError:
    """Tests for classify_store_error."""

    @pytest.mark.parametrize(
        "message",
        ["database is locked", "database table is locked", "disk I/O error", "interrupted"],
    )
    def test_transient(self, message):
        """Lock and I/O problems are transient."""
        assert isinstance(classify_store_error(sqlite3.OperationalError(message)), TransientStoreError)

    def test_integrity(self):
        """Constraint failures are data anomalies."""
        error = classify_store_error(sqlite3.IntegrityError("FOREIGN KEY constraint failed"))

        assert isinstance(error, DataIntegrityAnomaly)

    def test_missing_table(self):
        """A missing table names the table."""
        error = classify_store_error(sqlite3.OperationalError("no such table: main.user_skills"))

        assert isinstance(error, SchemaMissingError)
        assert error.tables == ["user_skills"]

    def test_malformed(self):
        """A corrupt database is a schema error."""
        error = classify_store_error(sqlite3.DatabaseError("database disk image is malformed"))

        assert isinstance(error, SchemaError)

    def test_other_errors_are_not_retried(self):
        """Syntax errors stay generic so they are not retried."""
        error = classify_store_error(sqlite3.OperationalError('near "SELCT": syntax error'))

        assert type(error) is MigrationError

    def test_unique_violation(self):
        """UNIQUE failures are recognized."""
        assert is_unique_violation(sqlite3.IntegrityError("UNIQUE constraint failed: skill_templates.name"))
        assert not is_unique_violation(sqlite3.IntegrityError("NOT NULL constraint failed: user_skills.level"))
