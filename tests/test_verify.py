"""Tests for the progress verifier."""

import pytest

from skill_migration.database import (
    DependentMigrator,
    InstanceMigrator,
    ProgressVerifier,
    SkillStore,
    format_report,
)
from skill_migration.database.dependents import KINDS


@pytest.fixture
def populated(store, legacy):
    """Legacy data with skills, endorsements, histories and project skills."""
    legacy.add_user(1)
    legacy.add_user(2)
    legacy.add_project(10)
    go = legacy.add_skill(1, "Go", "Programming")
    rust = legacy.add_skill(1, "Rust", "Programming")
    go_2 = legacy.add_skill(2, "Go", "Programming")
    legacy.add_endorsement(go, endorser_id=2, endorsee_id=1)
    legacy.add_endorsement(go_2, endorser_id=1, endorsee_id=2)
    legacy.add_history(rust, 1)
    legacy.add_project_skill(10, go)
    return store


def _migrate_everything(store):
    InstanceMigrator(store).migrate_all()
    for name in KINDS:
        DependentMigrator(store, name).migrate_all()


class TestProgressVerifier:
    """Tests for ProgressVerifier.report."""

    def test_fully_migrated_dataset(self, populated):
        """Everything migrated reports remaining 0 and 100% everywhere."""
        _migrate_everything(populated)

        report = ProgressVerifier(populated).report()

        assert report.total_legacy == 3
        assert report.mapped == 3
        assert report.remaining == 0
        assert report.completion_pct == 100.0
        assert report.templates == 2
        assert report.instances == 3
        for progress in report.dependents.values():
            assert progress.available
            assert progress.remaining == 0
            assert progress.completion_pct == 100.0
        assert report.dependents["endorsements"].migrated == 2
        assert report.is_complete
        assert report.integrity.ok

    def test_partial_progress(self, populated):
        """Before dependents run, their rows are reported as remaining."""
        InstanceMigrator(populated).migrate_batch(2)

        report = ProgressVerifier(populated).report()

        assert report.remaining == 1
        assert report.completion_pct == pytest.approx(66.67)
        endorsements = report.dependents["endorsements"]
        assert endorsements.total == 2
        assert endorsements.migrated == 0
        assert endorsements.remaining == 2
        assert endorsements.awaiting_parent == 1
        assert not report.is_complete

    def test_top_templates(self, populated):
        """Templates are ranked by the number of user skills using them."""
        _migrate_everything(populated)

        report = ProgressVerifier(populated).report()

        assert report.top_templates[0].name == "Go"
        assert report.top_templates[0].usage_count == 2
        assert report.top_templates[1].name == "Rust"

    def test_empty_legacy_table_is_complete(self, store):
        """No legacy rows means 100%."""
        report = ProgressVerifier(store).report()

        assert report.total_legacy == 0
        assert report.completion_pct == 100.0
        assert report.is_complete

    def test_before_bootstrap(self, raw_store, raw_legacy):
        """Missing target tables read as zero instead of raising."""
        raw_legacy.add_user(1)
        raw_legacy.add_skill(1, "Go", "Programming")

        report = ProgressVerifier(raw_store).report()

        assert report.total_legacy == 1
        assert report.mapped == 0
        assert report.remaining == 1
        assert report.completion_pct == 0.0
        assert report.templates == 0
        assert report.top_templates == []

    def test_missing_dependent_source(self, store):
        """A kind without a legacy table is reported unavailable and ignored for completion."""
        store.conn.execute("DROP TABLE project_skills")

        report = ProgressVerifier(store).report()

        assert not report.dependents["project_skills"].available
        assert report.is_complete

    def test_unreadable_dependent_source(self, store):
        """A legacy table missing a required column is reported, not raised."""
        store.conn.execute("DROP TABLE endorsements")
        store.conn.execute(
            "CREATE TABLE endorsements (id INTEGER PRIMARY KEY, skill_id INTEGER, endorsee_id INTEGER, created_at TEXT)"
        )
        store.conn.execute("INSERT INTO endorsements (skill_id, endorsee_id) VALUES (1, 1)")

        report = ProgressVerifier(store).report()

        progress = report.dependents["endorsements"]
        assert progress.available
        assert "endorser_id" in progress.error
        assert progress.remaining == 1
        assert not report.is_complete
        assert "unreadable" in format_report(report)

    def test_is_read_only(self, populated, db_path):
        """The verifier works on a read-only connection and changes nothing."""
        _migrate_everything(populated)
        counts = {t: populated.count(t) for t in ("skill_templates", "user_skills", "skill_migration_map")}

        with SkillStore(db_path, readonly=True) as readonly_store:
            report = ProgressVerifier(readonly_store).report()

        assert report.is_complete
        assert {t: populated.count(t) for t in counts} == counts


class TestIntegrityChecks:
    """Tests for the referential checks in the report."""

    def test_orphan_mapping_detected(self, populated):
        """A map entry whose instance was removed is flagged."""
        InstanceMigrator(populated).migrate_all()
        populated.conn.execute("PRAGMA foreign_keys = OFF")
        populated.conn.execute("DELETE FROM user_skills WHERE id = 1")
        populated.conn.execute("PRAGMA foreign_keys = ON")

        report = ProgressVerifier(populated).report()

        assert report.integrity.orphan_mappings == 1
        assert not report.integrity.ok

    def test_duplicate_templates_detected(self, store):
        """Duplicate (name, category) templates are counted."""
        for _ in range(2):
            store.conn.execute("INSERT INTO skill_templates (name, category) VALUES ('Go', 'Programming')")

        report = ProgressVerifier(store).report()

        assert report.integrity.duplicate_templates == 1

    def test_report_serializes(self, populated):
        """to_dict and the text rendering include the headline numbers."""
        _migrate_everything(populated)
        report = ProgressVerifier(populated).report()

        data = report.to_dict()
        text = format_report(report)

        assert data["completion_pct"] == 100.0
        assert data["is_complete"] is True
        assert data["dependents"]["endorsements"]["completion_pct"] == 100.0
        assert "Migration complete." in text
        assert "Integrity: OK" in text
