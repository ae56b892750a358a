"""Tests for the normalized schema bootstrap."""

import sqlite3

import pytest

from skill_migration.database import ensure_schema, require_schema
from skill_migration.database.schema import (
    TARGET_TABLES,
    find_duplicate_templates,
    has_unique_template_index,
)
from skill_migration.errors import SchemaError, SchemaMissingError


class TestEnsureSchema:
    """Tests for ensure_schema."""

    def test_creates_all_target_tables(self, raw_store):
        """All normalized tables exist after the bootstrap."""
        assert raw_store.missing_tables(TARGET_TABLES) == TARGET_TABLES

        ensure_schema(raw_store)

        assert raw_store.missing_tables(TARGET_TABLES) == []

    def test_is_idempotent(self, raw_store):
        """Running the bootstrap twice keeps existing rows."""
        ensure_schema(raw_store)
        raw_store.conn.execute(
            "INSERT INTO skill_templates (name, category) VALUES ('Go', 'Programming')"
        )

        ensure_schema(raw_store)

        assert raw_store.count("skill_templates") == 1

    def test_leaves_legacy_tables_alone(self, raw_store, raw_legacy):
        """Legacy rows and columns are untouched."""
        raw_legacy.add_user(1)
        raw_legacy.add_skill(1, "Go", "Programming")
        columns_before = raw_store.table_columns("skills")

        ensure_schema(raw_store)

        assert raw_store.count("skills") == 1
        assert raw_store.table_columns("skills") == columns_before

    def test_user_skills_unique_per_user_and_template(self, store, legacy):
        """A second instance for the same (user, template) is rejected."""
        legacy.add_user(1)
        store.conn.execute("INSERT INTO skill_templates (name, category) VALUES ('Go', 'Programming')")
        store.conn.execute("INSERT INTO user_skills (user_id, skill_template_id, level) VALUES (1, 1, 'expert')")

        with pytest.raises(sqlite3.IntegrityError):
            store.conn.execute(
                "INSERT INTO user_skills (user_id, skill_template_id, level) VALUES (1, 1, 'beginner')"
            )

    def test_no_unique_template_index_by_default(self, store):
        """Without the option, templates are deduplicated by lookup only."""
        assert not has_unique_template_index(store)


class TestUniqueTemplateIndex:
    """Tests for the optional unique (name, category) index."""

    def test_creates_index(self, raw_store):
        """The index is created when requested."""
        ensure_schema(raw_store, enforce_unique_templates=True)

        assert has_unique_template_index(raw_store)

    def test_refuses_over_duplicates(self, store):
        """Existing duplicate templates block the index instead of being altered."""
        for _ in range(2):
            store.conn.execute("INSERT INTO skill_templates (name, category) VALUES ('Go', 'Programming')")

        assert find_duplicate_templates(store) == [("Go", "Programming", 2)]

        with pytest.raises(SchemaError, match="duplicate"):
            ensure_schema(store, enforce_unique_templates=True)

        assert not has_unique_template_index(store)
        assert store.count("skill_templates") == 2


class TestRequireSchema:
    """Tests for require_schema."""

    def test_missing_tables_listed(self, raw_store):
        """Every absent target table is named."""
        with pytest.raises(SchemaMissingError) as exc_info:
            require_schema(raw_store)

        assert exc_info.value.tables == TARGET_TABLES
        assert "init-schema" in str(exc_info.value)

    def test_passes_after_bootstrap(self, store):
        """No error once the schema exists."""
        require_schema(store)

    def test_missing_legacy_table(self, store):
        """The legacy skills table is required too."""
        store.conn.execute("DROP TABLE skills")

        with pytest.raises(SchemaMissingError) as exc_info:
            require_schema(store)

        assert exc_info.value.tables == ["skills"]
