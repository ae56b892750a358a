"""
Command-line interface for the skill migration engine.

Usage:
    skill-migrate init-schema --db app.db
    skill-migrate skills --db app.db --all
    skill-migrate dependents endorsements --db app.db
    skill-migrate verify --db app.db
    skill-migrate run --db app.db
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError

# Invoked work finished but some rows were left unmigrated
EXIT_ROW_ERRORS = 3


def _configure_logging(verbose: bool) -> None:
    """Configure logging for the migration engine."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
        force=True,
    )

    for logger_name in [
        "skill_migration",
        "skill_migration.database",
        "skill_migration.database.instances",
        "skill_migration.database.dependents",
        "skill_migration.database.migrate",
    ]:
        logging.getLogger(logger_name).setLevel(level)


from . import __version__
from .config import MigrationSettings, load_settings
from .errors import MigrationError


def _load_settings(env_file: Optional[str], **overrides) -> MigrationSettings:
    try:
        return load_settings(env_file, **overrides)
    except ValidationError as e:
        raise click.ClickException(f"Invalid settings: {e}")


def _echo_summary(title: str, summary: dict[str, int]) -> None:
    click.echo(f"\n{title}")
    click.echo("=" * 40)
    click.echo(f"Processed: {summary['processed']:,}")
    click.echo(f"Created:   {summary['created']:,}")
    click.echo(f"Skipped:   {summary['skipped']:,}")
    click.echo(f"Errors:    {summary['errors']:,}")


def _exit_for_errors(errors: int) -> None:
    if errors:
        click.echo(
            f"\n{errors:,} rows left unmigrated. Check the log, fix the rows, and re-run.",
            err=True,
        )
        click.get_current_context().exit(EXIT_ROW_ERRORS)


db_option = click.option("--db", "db_path", type=click.Path(dir_okay=False), help="Database path")
env_file_option = click.option(
    "--env-file", type=click.Path(exists=True, dir_okay=False), help="Load settings from this .env file"
)
verbose_option = click.option("-v", "--verbose", is_flag=True, help="Verbose output")


@click.group()
@click.version_option(version=__version__)
def main():
    """
    Migrate legacy skills to skill templates and user skills.

    \b
    Commands:
        init-schema  Create the normalized tables (safe to repeat)
        skills       Migrate legacy skills in batches
        dependents   Migrate endorsements, skill histories, project skills
        verify       Show migration progress
        run          Do all of the above in order

    \b
    Settings come from SKILL_MIGRATION_* environment variables or .env;
    command-line options take precedence.
    """
    pass


# =============================================================================
# Schema
# =============================================================================

@main.command("init-schema")
@db_option
@env_file_option
@click.option("--unique-templates", is_flag=True, help="Also enforce unique (name, category) templates")
@verbose_option
def init_schema_cmd(db_path: Optional[str], env_file: Optional[str], unique_templates: bool, verbose: bool):
    """
    Create the normalized skill tables if they do not exist.

    \b
    Examples:
        skill-migrate init-schema --db app.db
        skill-migrate init-schema --db app.db --unique-templates
    """
    _configure_logging(verbose)

    from .database import SkillStore, ensure_schema

    settings = _load_settings(env_file, db_path=db_path, enforce_unique_templates=unique_templates or None)
    try:
        with SkillStore(settings.db_path, busy_timeout=settings.busy_timeout) as store:
            ensure_schema(store, enforce_unique_templates=settings.enforce_unique_templates)
    except MigrationError as e:
        raise click.ClickException(f"Schema setup failed: {e}")

    click.echo(f"Schema ready in {settings.db_path}")


# =============================================================================
# Instance migration
# =============================================================================

@main.command("skills")
@db_option
@env_file_option
@click.option("--batch-size", type=int, help="Legacy skills per batch (default: 50)")
@click.option("--offset", type=int, default=0, help="Unmigrated rows to skip before the first batch")
@click.option("--all", "run_all", is_flag=True, help="Keep running batches until nothing is left")
@verbose_option
def skills_cmd(
    db_path: Optional[str],
    env_file: Optional[str],
    batch_size: Optional[int],
    offset: int,
    run_all: bool,
    verbose: bool,
):
    """
    Migrate legacy skills to templates and user skills.

    Runs one batch by default. Rows already in the migration map are never
    processed again, so it is safe to repeat.

    \b
    Examples:
        skill-migrate skills --db app.db
        skill-migrate skills --db app.db --batch-size 200 --all
        skill-migrate skills --db app.db --offset 20
    """
    _configure_logging(verbose)

    from .database import InstanceMigrator, SkillStore, TemplateResolver
    from .database.schema import has_unique_template_index

    settings = _load_settings(env_file, db_path=db_path, batch_size=batch_size)
    try:
        with SkillStore(settings.db_path, busy_timeout=settings.busy_timeout) as store:
            resolver = TemplateResolver("upsert" if has_unique_template_index(store) else "lookup")
            migrator = InstanceMigrator(
                store,
                resolver=resolver,
                max_retries=settings.max_retries,
                retry_delay=settings.retry_delay,
                transient_error_budget=settings.transient_error_budget,
            )
            if run_all:
                result = migrator.migrate_all(settings.batch_size, offset=offset)
            else:
                result = migrator.migrate_batch(settings.batch_size, offset=offset)
    except MigrationError as e:
        raise click.ClickException(f"Skill migration failed: {e}")

    _echo_summary("Skill migration", result.summary())
    if result.reused:
        click.echo(f"Reused:    {result.reused:,} (mapped onto an existing user skill)")
    if result.failed_ids:
        click.echo(f"Failed ids: {', '.join(str(i) for i in result.failed_ids[:20])}")
    _exit_for_errors(result.errors)


# =============================================================================
# Dependent migration
# =============================================================================

@main.command("dependents")
@click.argument(
    "kind",
    type=click.Choice(["endorsements", "skill_histories", "project_skills", "all"]),
)
@db_option
@env_file_option
@click.option("--batch-size", type=int, help="Dependent rows per batch (default: 100)")
@click.option("--offset", type=int, default=0, help="Pending rows to skip before the first batch")
@click.option("--all", "run_all", is_flag=True, help="Keep running batches until nothing is left")
@verbose_option
def dependents_cmd(
    kind: str,
    db_path: Optional[str],
    env_file: Optional[str],
    batch_size: Optional[int],
    offset: int,
    run_all: bool,
    verbose: bool,
):
    """
    Migrate records that reference legacy skills to the v2 tables.

    Rows whose skill has not been migrated yet are skipped and picked up
    by a later run.

    \b
    Examples:
        skill-migrate dependents endorsements --db app.db
        skill-migrate dependents all --db app.db --all
    """
    _configure_logging(verbose)

    from .database import KINDS, DependentMigrator, SkillStore

    settings = _load_settings(env_file, db_path=db_path, dependent_batch_size=batch_size)
    names = list(KINDS) if kind == "all" else [kind]
    errors = 0
    try:
        with SkillStore(settings.db_path, busy_timeout=settings.busy_timeout) as store:
            for name in names:
                migrator = DependentMigrator(
                    store,
                    name,
                    max_retries=settings.max_retries,
                    retry_delay=settings.retry_delay,
                    transient_error_budget=settings.transient_error_budget,
                )
                if run_all:
                    result = migrator.migrate_all(settings.dependent_batch_size, offset=offset)
                else:
                    result = migrator.migrate_batch(settings.dependent_batch_size, offset=offset)
                _echo_summary(f"{name} migration", result.summary())
                errors += result.errors
    except MigrationError as e:
        raise click.ClickException(f"Dependent migration failed: {e}")

    _exit_for_errors(errors)


# =============================================================================
# Verification
# =============================================================================

@main.command("verify")
@db_option
@env_file_option
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@verbose_option
def verify_cmd(db_path: Optional[str], env_file: Optional[str], output_json: bool, verbose: bool):
    """
    Show migration progress. Read only.

    \b
    Examples:
        skill-migrate verify --db app.db
        skill-migrate verify --db app.db --json
    """
    _configure_logging(verbose)

    from .database import ProgressVerifier, SkillStore, format_report

    settings = _load_settings(env_file, db_path=db_path)
    if not Path(settings.db_path).exists():
        raise click.ClickException(f"Database not found: {settings.db_path}")

    try:
        with SkillStore(settings.db_path, busy_timeout=settings.busy_timeout, readonly=True) as store:
            report = ProgressVerifier(store).report()
    except MigrationError as e:
        raise click.ClickException(f"Failed to read database: {e}")

    if output_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        click.echo(format_report(report))


# =============================================================================
# Full run
# =============================================================================

@main.command("run")
@db_option
@env_file_option
@click.option("--batch-size", type=int, help="Legacy skills per batch (default: 50)")
@click.option("--dependent-batch-size", type=int, help="Dependent rows per batch (default: 100)")
@click.option("--unique-templates", is_flag=True, help="Enforce unique (name, category) templates")
@click.option("--json", "output_json", is_flag=True, help="Print the final report as JSON")
@verbose_option
def run_cmd(
    db_path: Optional[str],
    env_file: Optional[str],
    batch_size: Optional[int],
    dependent_batch_size: Optional[int],
    unique_templates: bool,
    output_json: bool,
    verbose: bool,
):
    """
    Create the schema, migrate skills and all dependents, then report.

    \b
    Examples:
        skill-migrate run --db app.db
        skill-migrate run --db app.db --batch-size 500 --json
    """
    _configure_logging(verbose)

    from .database import SkillMigrator, format_report

    settings = _load_settings(
        env_file,
        db_path=db_path,
        batch_size=batch_size,
        dependent_batch_size=dependent_batch_size,
        enforce_unique_templates=unique_templates or None,
    )
    try:
        summary = SkillMigrator(settings).migrate()
    except MigrationError as e:
        raise click.ClickException(f"Migration failed: {e}")

    _echo_summary("Migration run", summary.summary())
    if summary.report is not None:
        click.echo("")
        if output_json:
            click.echo(json.dumps(summary.report.to_dict(), indent=2))
        else:
            click.echo(format_report(summary.report))
    _exit_for_errors(summary.errors)


if __name__ == "__main__":
    main()
