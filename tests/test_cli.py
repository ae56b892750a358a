"""Tests for the skill-migrate command line."""

import json

import pytest
from click.testing import CliRunner

from skill_migration import __version__
from skill_migration.cli import EXIT_ROW_ERRORS, main


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def seeded(db_path, raw_legacy):
    raw_legacy.add_user(1)
    raw_legacy.add_user(2)
    go = raw_legacy.add_skill(1, "Go", "Programming")
    raw_legacy.add_skill(2, "Go", "Programming")
    raw_legacy.add_endorsement(go, endorser_id=2, endorsee_id=1)
    return str(db_path)


def _json_from(output: str) -> dict:
    return json.loads(output[output.index("{"):])


class TestCli:
    """Tests for the CLI commands."""

    def test_version(self, runner):
        """--version prints the package version."""
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_init_schema(self, runner, seeded, raw_store):
        """init-schema creates the normalized tables and can be repeated."""
        first = runner.invoke(main, ["init-schema", "--db", seeded])
        second = runner.invoke(main, ["init-schema", "--db", seeded])

        assert first.exit_code == 0, first.output
        assert second.exit_code == 0, second.output
        assert "Schema ready" in first.output
        assert raw_store.table_exists("skill_migration_map")

    def test_skills_requires_schema(self, runner, seeded):
        """Without init-schema the skills command fails with a pointer to it."""
        result = runner.invoke(main, ["skills", "--db", seeded])

        assert result.exit_code == 1
        assert "init-schema" in result.output

    def test_skills_batch_and_rerun(self, runner, seeded):
        """One batch migrates; a repeat reports the rows as skipped."""
        runner.invoke(main, ["init-schema", "--db", seeded])

        first = runner.invoke(main, ["skills", "--db", seeded, "--batch-size", "50"])
        second = runner.invoke(main, ["skills", "--db", seeded, "--batch-size", "50"])

        assert first.exit_code == 0, first.output
        assert "Created:   2" in first.output
        assert second.exit_code == 0, second.output
        assert "Created:   0" in second.output
        assert "Skipped:   2" in second.output

    def test_skills_row_errors_exit_code(self, runner, seeded, raw_legacy):
        """Rows left unmigrated by errors give a distinct exit code."""
        raw_legacy.add_skill(404, "Ghost", "Nowhere")
        runner.invoke(main, ["init-schema", "--db", seeded])

        result = runner.invoke(main, ["skills", "--db", seeded, "--all"])

        assert result.exit_code == EXIT_ROW_ERRORS
        assert "Errors:    1" in result.output

    def test_dependents_all(self, runner, seeded):
        """Dependents run per kind and print a summary for each."""
        runner.invoke(main, ["init-schema", "--db", seeded])
        runner.invoke(main, ["skills", "--db", seeded, "--all"])

        result = runner.invoke(main, ["dependents", "all", "--db", seeded, "--all"])

        assert result.exit_code == 0, result.output
        assert "endorsements migration" in result.output
        assert "skill_histories migration" in result.output
        assert "project_skills migration" in result.output

    def test_dependents_rejects_unknown_kind(self, runner, seeded):
        """Only known kinds are accepted."""
        result = runner.invoke(main, ["dependents", "comments", "--db", seeded])

        assert result.exit_code == 2

    def test_verify_text_and_json(self, runner, seeded):
        """verify reports progress as text or JSON."""
        runner.invoke(main, ["run", "--db", seeded])

        text = runner.invoke(main, ["verify", "--db", seeded])
        as_json = runner.invoke(main, ["verify", "--db", seeded, "--json"])

        assert text.exit_code == 0, text.output
        assert "Completion:         100.00%" in text.output
        assert as_json.exit_code == 0, as_json.output
        data = _json_from(as_json.output)
        assert data["remaining"] == 0
        assert data["is_complete"] is True
        assert data["dependents"]["endorsements"]["migrated"] == 1

    def test_verify_missing_database(self, runner, tmp_path):
        """A path that does not exist is reported, not created."""
        missing = tmp_path / "nope.db"

        result = runner.invoke(main, ["verify", "--db", str(missing)])

        assert result.exit_code == 1
        assert "Database not found" in result.output
        assert not missing.exists()

    def test_run(self, runner, seeded):
        """run does everything and ends with a complete report."""
        result = runner.invoke(main, ["run", "--db", seeded, "--batch-size", "1"])

        assert result.exit_code == 0, result.output
        assert "Migration run" in result.output
        assert "Migration complete." in result.output

    def test_env_settings(self, runner, seeded, monkeypatch):
        """The database path can come from the environment."""
        monkeypatch.setenv("SKILL_MIGRATION_DB_PATH", seeded)

        result = runner.invoke(main, ["init-schema"])

        assert result.exit_code == 0, result.output
        assert seeded in result.output
