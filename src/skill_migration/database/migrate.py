"""
Orchestrated migration: schema, instances, dependents, report.

Every step is idempotent, so a run interrupted at any point is resumed by
running it again. There is no step bookkeeping; progress lives in the
migration map and the v2 tables.
"""

import logging
from pathlib import Path
from typing import Optional

from ..config import MigrationSettings
from ..models import RunSummary
from .dependents import KINDS, DependentMigrator
from .instances import InstanceMigrator
from .schema import ensure_schema, has_unique_template_index
from .store import SkillStore
from .templates import TemplateResolver
from .verify import ProgressVerifier

logger = logging.getLogger(__name__)


class SkillMigrator:
    """
    Runs the whole skill migration against one database.

    Steps:
    1. Ensure the normalized schema exists
    2. Migrate legacy skills to templates and user skills
    3. Migrate each dependent kind (endorsements, skill histories, project skills)
    4. Build the progress report
    """

    def __init__(self, settings: MigrationSettings, kinds: Optional[list[str]] = None):
        """
        Initialize the migrator.

        Args:
            settings: Engine settings (database path, batch sizes, retry policy)
            kinds: Dependent kinds to migrate (default: all)
        """
        self.settings = settings
        self.kinds = kinds or list(KINDS)

    def migrate(self) -> RunSummary:
        """
        Run the full migration.

        Returns:
            RunSummary with per-step results and the final report
        """
        logger.info(f"Starting skill migration on {self.settings.db_path}")
        with SkillStore(self.settings.db_path, busy_timeout=self.settings.busy_timeout) as store:
            summary = self._run_migration(store)
        logger.info(f"Migration finished: {summary.summary()}")
        return summary

    def _run_migration(self, store: SkillStore) -> RunSummary:
        settings = self.settings
        summary = RunSummary()

        # Step 1: Schema
        logger.info("Step 1: Ensuring schema...")
        ensure_schema(store, enforce_unique_templates=settings.enforce_unique_templates)

        # Step 2: Legacy skills
        logger.info("Step 2: Migrating skills...")
        resolver = TemplateResolver("upsert" if has_unique_template_index(store) else "lookup")
        instances = InstanceMigrator(
            store,
            resolver=resolver,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay,
            transient_error_budget=settings.transient_error_budget,
        )
        summary.skills = instances.migrate_all(batch_size=settings.batch_size)
        logger.info(f"Step 2: {resolver.templates_created:,} templates created")

        # Step 3: Dependents
        for step, name in enumerate(self.kinds, start=1):
            logger.info(f"Step 3.{step}: Migrating {name}...")
            migrator = DependentMigrator(
                store,
                name,
                max_retries=settings.max_retries,
                retry_delay=settings.retry_delay,
                transient_error_budget=settings.transient_error_budget,
            )
            summary.dependents[name] = migrator.migrate_all(batch_size=settings.dependent_batch_size)

        # Step 4: Report
        logger.info("Step 4: Verifying...")
        summary.report = ProgressVerifier(store).report()
        return summary


def migrate_database(
    db_path: str | Path,
    batch_size: int = 50,
    dependent_batch_size: int = 100,
    enforce_unique_templates: bool = False,
) -> RunSummary:
    """
    Run the full skill migration on a database.

    Args:
        db_path: Path to the database holding the legacy tables
        batch_size: Legacy skills per batch
        dependent_batch_size: Dependent rows per batch
        enforce_unique_templates: Use the unique template index and upserts

    Returns:
        RunSummary
    """
    settings = MigrationSettings(
        db_path=Path(db_path),
        batch_size=batch_size,
        dependent_batch_size=dependent_batch_size,
        enforce_unique_templates=enforce_unique_templates,
    )
    return SkillMigrator(settings).migrate()
