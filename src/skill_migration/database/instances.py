"""
Instance migration: legacy ``skills`` rows -> ``user_skills`` + map entries.

Each legacy row is handled in its own transaction:

1. Re-check the migration map (another run may have mapped it)
2. Resolve the (name, category) template
3. Reuse the existing (user, template) instance or insert a new one
4. Write the map entry

A crash mid-row rolls the whole unit back, so no map entry ever exists
without its instance. Which rows remain is always recomputed from the
anti-join against the map.
"""

import logging
import sqlite3
import time
from typing import Callable, Optional

from pydantic import ValidationError

from ..errors import (
    DataIntegrityAnomaly,
    MigrationError,
    TransientStoreError,
    classify_store_error,
)
from ..models import BatchResult, LegacySkill
from .migration_map import MigrationMap
from .schema import require_schema
from .store import SkillStore
from .templates import TemplateResolver

logger = logging.getLogger(__name__)

REQUIRED_TABLES = ["skills", "users", "skill_templates", "user_skills", "skill_migration_map"]

CREATED = "created"
REUSED = "reused"
SKIPPED = "skipped"
VANISHED = "vanished"


class _AlreadyMapped(Exception):
    """Raised inside a row transaction to roll it back when the map write loses a race."""


def as_migration_error(exc: BaseException) -> MigrationError:
    """Convert anything a row unit can raise into the engine taxonomy."""
    if isinstance(exc, MigrationError):
        return exc
    if isinstance(exc, sqlite3.Error):
        return classify_store_error(exc)
    if isinstance(exc, (ValidationError, ValueError)):
        return DataIntegrityAnomaly(str(exc))
    return MigrationError(str(exc))


class InstanceMigrator:
    """
    Migrates legacy skills into templates and per-user instances.

    Row-level errors never escape a batch: transient store errors are retried
    and then counted, integrity anomalies are logged and counted. Only schema
    problems and a store that keeps failing past the error budget halt a run.
    """

    def __init__(
        self,
        store: SkillStore,
        resolver: Optional[TemplateResolver] = None,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        transient_error_budget: int = 5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the migrator.

        Args:
            store: Open skill store
            resolver: Template resolver (default: lookup strategy)
            max_retries: Attempts per row on transient errors
            retry_delay: Base delay between attempts, multiplied by the attempt number
            transient_error_budget: Consecutive transiently-failed rows tolerated
            sleep: Sleep function (overridable in tests)
        """
        self._store = store
        self._resolver = resolver or TemplateResolver()
        self._map = MigrationMap(store)
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay
        self._transient_error_budget = transient_error_budget
        self._sleep = sleep
        self._consecutive_transient = 0

    @property
    def migration_map(self) -> MigrationMap:
        return self._map

    @property
    def resolver(self) -> TemplateResolver:
        return self._resolver

    def migrate_batch(self, batch_size: int = 50, offset: int = 0) -> BatchResult:
        """
        Migrate one page of unmigrated legacy skills.

        Args:
            batch_size: Maximum legacy rows to process
            offset: Advisory number of unmigrated rows to skip

        Returns:
            BatchResult for this page. ``skipped_existing`` includes legacy
            rows up to the end of the page that were mapped before the batch.
        """
        require_schema(self._store, REQUIRED_TABLES)
        return self._run_batch(batch_size, offset, count_prior=True)

    def migrate_all(self, batch_size: int = 50, offset: int = 0) -> BatchResult:
        """
        Run batches until no unmigrated legacy row is left to attempt.

        Rows that fail during this run stay unmapped; the page offset grows
        by their number so the next page starts after them.

        Args:
            batch_size: Legacy rows per batch
            offset: Advisory number of unmigrated rows to skip up front

        Returns:
            Accumulated BatchResult for the run
        """
        require_schema(self._store, REQUIRED_TABLES)
        total = BatchResult(skipped_existing=self._map.count_mapped())
        if total.skipped_existing:
            logger.info(f"{total.skipped_existing:,} legacy skills already mapped")

        batch_num = 0
        while True:
            batch = self._run_batch(batch_size, offset + total.errors, count_prior=False)
            if batch.processed == 0:
                break
            batch_num += 1
            total.merge(batch)
            logger.info(
                f"Batch {batch_num}: processed={batch.processed} created={batch.created} "
                f"reused={batch.reused} errors={batch.errors}"
            )

        logger.info(
            f"Instance migration finished: {total.created:,} created, {total.reused:,} reused, "
            f"{total.skipped_existing:,} already mapped, {total.errors:,} errors"
        )
        return total

    def _run_batch(self, batch_size: int, offset: int, count_prior: bool) -> BatchResult:
        ids = self._map.unmigrated_ids(limit=batch_size, offset=offset)
        result = BatchResult()

        logger.debug(f"Batch at offset {offset}: {len(ids)} unmigrated skills")

        for skill_id in ids:
            result.processed += 1
            try:
                outcome = self._migrate_row_with_retry(skill_id)
            except DataIntegrityAnomaly as e:
                self._consecutive_transient = 0
                logger.warning(f"Skill #{skill_id} left unmigrated (data integrity): {e}")
                result.errors += 1
                result.failed_ids.append(skill_id)
                continue
            except TransientStoreError as e:
                self._consecutive_transient += 1
                result.errors += 1
                result.failed_ids.append(skill_id)
                logger.warning(
                    f"Skill #{skill_id} left unmigrated after {self._max_retries} attempts: {e}"
                )
                if self._consecutive_transient > self._transient_error_budget:
                    logger.error(f"Halting: {self._consecutive_transient} consecutive rows failed")
                    raise TransientStoreError(
                        f"Store unavailable: {self._consecutive_transient} consecutive rows "
                        f"failed with transient errors (last: {e})"
                    ) from e
                continue

            self._consecutive_transient = 0
            if outcome == CREATED:
                result.created += 1
            elif outcome == REUSED:
                result.reused += 1
            elif outcome == SKIPPED and not count_prior:
                result.skipped_existing += 1

        if count_prior:
            # Every mapped row in range except the ones this batch mapped, counted once
            up_to = ids[-1] if ids and len(ids) == batch_size else None
            mapped = self._map.count_mapped(up_to=up_to)
            result.skipped_existing = max(0, mapped - result.created - result.reused)

        return result

    def _migrate_row_with_retry(self, skill_id: int) -> str:
        last_error: Optional[TransientStoreError] = None
        for attempt in range(1, self._max_retries + 1):
            try:
                return self._attempt_row(skill_id)
            except Exception as e:
                error = as_migration_error(e)
                if not isinstance(error, TransientStoreError):
                    if error is e:
                        raise
                    raise error from e
                last_error = error
                logger.warning(
                    f"Transient error on skill #{skill_id} (attempt {attempt}/{self._max_retries}): {error}"
                )
                if attempt < self._max_retries and self._retry_delay > 0:
                    self._sleep(self._retry_delay * attempt)
        assert last_error is not None
        raise last_error

    def _attempt_row(self, skill_id: int) -> str:
        try:
            with self._store.transaction() as conn:
                outcome = self._migrate_row(conn, skill_id)
        except _AlreadyMapped:
            self._resolver.rollback()
            return SKIPPED
        except BaseException:
            self._resolver.rollback()
            raise
        self._resolver.commit()
        return outcome

    def _migrate_row(self, conn: sqlite3.Connection, skill_id: int) -> str:
        if self._map.is_migrated(skill_id):
            logger.debug(f"Skill #{skill_id} mapped by a concurrent run, skipping")
            return SKIPPED

        row = conn.execute("SELECT * FROM skills WHERE id = ?", (skill_id,)).fetchone()
        if row is None:
            logger.debug(f"Skill #{skill_id} no longer exists, skipping")
            return VANISHED

        skill = LegacySkill(**dict(row))
        template_id = self._resolver.resolve(
            conn,
            skill.name,
            skill.category,
            category_id=skill.category_id,
            subcategory_id=skill.subcategory_id,
        )

        existing = conn.execute(
            "SELECT id FROM user_skills WHERE user_id = ? AND skill_template_id = ?",
            (skill.user_id, template_id),
        ).fetchone()

        if existing:
            new_id = existing["id"]
            outcome = REUSED
        else:
            values = skill.instance_values(template_id)
            cursor = conn.execute(
                """
                INSERT INTO user_skills
                (user_id, skill_template_id, level, certification, credly_link, notes,
                 endorsement_count, certification_date, expiration_date, last_updated)
                VALUES (:user_id, :skill_template_id, :level, :certification, :credly_link, :notes,
                        :endorsement_count, :certification_date, :expiration_date,
                        COALESCE(:last_updated, CURRENT_TIMESTAMP))
                """,
                values,
            )
            new_id = cursor.lastrowid
            outcome = CREATED

        if not self._map.record_mapping(skill_id, new_id):
            raise _AlreadyMapped(skill_id)

        logger.debug(f"Skill #{skill_id} -> user_skill #{new_id} ({outcome})")
        return outcome
