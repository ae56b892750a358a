"""
Dependent-record migration: copy rows that reference legacy ``skills.id``
into ``*_v2`` tables that reference ``user_skills.id`` instead.

All kinds share one migrator. A kind describes its source and target
tables, how each target column is read from the source (with fallbacks for
older legacy column names), the dedup key that identifies an already
migrated row, and the column that receives the provenance note.

Each migrated legacy row is also recorded in ``dependent_migration_map``,
which keeps rows with a NULL timestamp from being copied twice.
"""

import logging
import sqlite3
import time
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..errors import (
    DataIntegrityAnomaly,
    SchemaError,
    SchemaMissingError,
    TransientStoreError,
)
from ..models import DependentProgress, DependentResult
from .instances import as_migration_error
from .store import SkillStore

logger = logging.getLogger(__name__)


class ColumnSpec(BaseModel):
    """How one target column is filled from the legacy source row."""

    model_config = ConfigDict(frozen=True)

    target: str = Field(..., description="Column in the v2 table")
    sources: tuple[str, ...] = Field(..., description="Candidate legacy columns, first present wins")
    required: bool = Field(default=False, description="NULL or absent makes the row an anomaly")
    default: Optional[Any] = Field(default=None, description="Value used when the source is NULL")
    now_if_null: bool = Field(default=False, description="Store the insert time when the source is NULL")


class DependentKind(BaseModel):
    """Description of one dependent table pair."""

    model_config = ConfigDict(frozen=True)

    name: str
    source_table: str
    target_table: str
    parent_column: str = Field(default="skill_id", description="Legacy FK to skills.id")
    columns: tuple[ColumnSpec, ...]
    dedup_columns: tuple[str, ...] = Field(
        ..., description="Target columns that, with user_skill_id, identify a migrated row"
    )
    note_column: Optional[str] = Field(default=None, description="Column receiving the provenance note")
    template_column: Optional[str] = Field(
        default=None, description="Column receiving the instance's skill_template_id"
    )


ENDORSEMENTS = DependentKind(
    name="endorsements",
    source_table="endorsements",
    target_table="endorsements_v2",
    columns=(
        ColumnSpec(target="user_id", sources=("endorsee_id", "user_id"), required=True),
        ColumnSpec(target="endorser_id", sources=("endorser_id",), required=True),
        ColumnSpec(target="comment", sources=("comment",)),
        ColumnSpec(target="created_at", sources=("created_at",), now_if_null=True),
    ),
    dedup_columns=("endorser_id", "created_at"),
    note_column="comment",
)

SKILL_HISTORIES = DependentKind(
    name="skill_histories",
    source_table="skill_histories",
    target_table="skill_histories_v2",
    columns=(
        ColumnSpec(target="user_id", sources=("user_id",), required=True),
        ColumnSpec(target="previous_level", sources=("previous_level",)),
        ColumnSpec(target="new_level", sources=("new_level",)),
        ColumnSpec(target="change_note", sources=("change_note", "note")),
        ColumnSpec(target="created_at", sources=("created_at", "updated_at"), now_if_null=True),
    ),
    dedup_columns=("created_at",),
    note_column="change_note",
)

PROJECT_SKILLS = DependentKind(
    name="project_skills",
    source_table="project_skills",
    target_table="project_skills_v2",
    columns=(
        ColumnSpec(target="project_id", sources=("project_id",), required=True),
        ColumnSpec(target="required_level", sources=("required_level",), default="beginner"),
        ColumnSpec(target="created_at", sources=("created_at",)),
    ),
    dedup_columns=("project_id",),
    template_column="skill_template_id",
)

KINDS: dict[str, DependentKind] = {
    kind.name: kind for kind in (ENDORSEMENTS, SKILL_HISTORIES, PROJECT_SKILLS)
}


def get_kind(name: str) -> DependentKind:
    """Look up a dependent kind by name."""
    try:
        return KINDS[name]
    except KeyError:
        raise ValueError(f"Unknown dependent kind: {name}. Available: {', '.join(KINDS)}") from None


def provenance_note(old_skill_id: int, note: Optional[str]) -> str:
    """Build the note pointing a v2 row back at its legacy skill."""
    text = f"Migrated from skill #{old_skill_id}"
    if note:
        text += f": {note}"
    return text


class DependentMigrator:
    """
    Translates one dependent kind through the migration map.

    Only rows whose parent skill is already mapped are selected; the rest
    are counted as ``skipped`` and picked up by a later invocation.
    """

    def __init__(
        self,
        store: SkillStore,
        kind: DependentKind | str,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        transient_error_budget: int = 5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._store = store
        self.kind = get_kind(kind) if isinstance(kind, str) else kind
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay
        self._sleep = sleep
        self._transient_error_budget = transient_error_budget
        self._consecutive_transient = 0
        self._source_columns: Optional[dict[str, Optional[str]]] = None

    @property
    def available(self) -> bool:
        """False if the legacy source table does not exist."""
        return self._store.table_exists(self.kind.source_table)

    def migrate_batch(self, batch_size: int = 100, offset: int = 0) -> DependentResult:
        """
        Migrate one page of dependent rows with mapped parents.

        Args:
            batch_size: Maximum rows to process
            offset: Advisory number of pending rows to skip

        Returns:
            DependentResult for this page
        """
        if not self._prepare():
            return DependentResult(kind=self.kind.name)
        return self._run_batch(batch_size, offset)

    def migrate_all(self, batch_size: int = 100, offset: int = 0) -> DependentResult:
        """
        Run batches until no pending row with a mapped parent is left to attempt.

        Returns:
            Accumulated DependentResult; ``skipped`` is the number of rows
            still waiting for their parent at the end of the run
        """
        total = DependentResult(kind=self.kind.name)
        if not self._prepare():
            return total

        batch_num = 0
        while True:
            batch = self._run_batch(batch_size, offset + total.errors)
            total.skipped = batch.skipped
            if batch.processed == 0:
                break
            batch_num += 1
            total.merge(batch)
            logger.info(
                f"{self.kind.name} batch {batch_num}: processed={batch.processed} "
                f"migrated={batch.migrated} errors={batch.errors}"
            )

        logger.info(
            f"{self.kind.name}: {total.migrated:,} migrated, {total.skipped:,} awaiting parent, "
            f"{total.errors:,} errors"
        )
        return total

    def progress(self) -> DependentProgress:
        """
        Count migrated, pending and parent-less rows for this kind.

        Read only. Missing target or map tables read as nothing migrated.
        """
        kind = self.kind
        if not self.available:
            return DependentProgress(kind=kind.name, available=False)

        total = self._store.count(kind.source_table)
        v2_rows = self._store.count(kind.target_table)

        if not self._store.table_exists("skill_migration_map"):
            return DependentProgress(
                kind=kind.name, total=total, remaining=total, awaiting_parent=total, v2_rows=v2_rows
            )

        awaiting = self._count_awaiting_parent()
        if self._store.missing_tables([kind.target_table, "dependent_migration_map", "user_skills"]):
            return DependentProgress(
                kind=kind.name, total=total, remaining=total, awaiting_parent=awaiting, v2_rows=v2_rows
            )

        if self._source_columns is None:
            try:
                self._source_columns = self._detect_source_columns()
            except SchemaError as e:
                logger.warning(f"Cannot read {kind.source_table}: {e}")
                return DependentProgress(
                    kind=kind.name,
                    total=total,
                    remaining=total,
                    awaiting_parent=awaiting,
                    v2_rows=v2_rows,
                    error=str(e),
                )
        pending = self._store.scalar(f"SELECT COUNT(*) FROM ({self._pending_sql()})")
        remaining = pending + awaiting
        return DependentProgress(
            kind=kind.name,
            total=total,
            migrated=total - remaining,
            remaining=remaining,
            awaiting_parent=awaiting,
            v2_rows=v2_rows,
        )

    def _prepare(self) -> bool:
        if not self.available:
            logger.info(f"No {self.kind.source_table} table in source, skipping")
            return False

        missing = self._store.missing_tables(
            [self.kind.target_table, "skill_migration_map", "dependent_migration_map", "user_skills"]
        )
        if missing:
            raise SchemaMissingError(missing)

        if self._source_columns is None:
            self._source_columns = self._detect_source_columns()
        return True

    def _detect_source_columns(self) -> dict[str, Optional[str]]:
        available = self._store.table_columns(self.kind.source_table)
        if self.kind.parent_column not in available:
            raise SchemaError(
                f"{self.kind.source_table} has no {self.kind.parent_column} column"
            )

        resolved: dict[str, Optional[str]] = {}
        for spec in self.kind.columns:
            source = next((c for c in spec.sources if c in available), None)
            if source is None and spec.required:
                raise SchemaError(
                    f"{self.kind.source_table} has none of the columns {', '.join(spec.sources)}"
                )
            resolved[spec.target] = source
            if source and source != spec.target:
                logger.info(f"{self.kind.source_table}: reading {spec.target} from '{source}'")
        return resolved

    def _source_expr(self, target: str) -> str:
        source = self._source_columns[target]
        return f"d.{source}" if source else "NULL"

    def _pending_sql(self) -> str:
        kind = self.kind
        select_cols = ", ".join(
            f"{self._source_expr(spec.target)} AS {spec.target}" for spec in kind.columns
        )
        dedup = " AND ".join(
            f"v.{col} = {self._source_expr(col)}" for col in kind.dedup_columns
        )
        return f"""
            SELECT d.id AS legacy_id,
                   d.{kind.parent_column} AS old_skill_id,
                   m.new_user_skill_id AS user_skill_id,
                   us.skill_template_id AS skill_template_id,
                   {select_cols}
            FROM {kind.source_table} d
            JOIN skill_migration_map m ON m.old_skill_id = d.{kind.parent_column}
            LEFT JOIN user_skills us ON us.id = m.new_user_skill_id
            WHERE NOT EXISTS (
                SELECT 1 FROM {kind.target_table} v
                WHERE v.user_skill_id = m.new_user_skill_id AND {dedup}
            )
            AND NOT EXISTS (
                SELECT 1 FROM dependent_migration_map dm
                WHERE dm.kind = '{kind.name}' AND dm.old_id = d.id
            )
            ORDER BY d.id
        """

    def _count_awaiting_parent(self) -> int:
        kind = self.kind
        return self._store.scalar(
            f"""
            SELECT COUNT(*)
            FROM {kind.source_table} d
            LEFT JOIN skill_migration_map m ON m.old_skill_id = d.{kind.parent_column}
            WHERE m.old_skill_id IS NULL
            """
        )

    def _run_batch(self, batch_size: int, offset: int) -> DependentResult:
        result = DependentResult(kind=self.kind.name)
        rows = self._store.execute(
            self._pending_sql() + " LIMIT ? OFFSET ?", (batch_size, offset)
        ).fetchall()
        result.skipped = self._count_awaiting_parent()

        for row in rows:
            legacy_id = row["legacy_id"]
            result.processed += 1
            try:
                inserted = self._migrate_row_with_retry(row)
            except DataIntegrityAnomaly as e:
                self._consecutive_transient = 0
                logger.warning(f"{self.kind.name} #{legacy_id} left unmigrated (data integrity): {e}")
                result.errors += 1
                result.failed_ids.append(legacy_id)
                continue
            except TransientStoreError as e:
                self._consecutive_transient += 1
                result.errors += 1
                result.failed_ids.append(legacy_id)
                logger.warning(f"{self.kind.name} #{legacy_id} left unmigrated: {e}")
                if self._consecutive_transient > self._transient_error_budget:
                    raise TransientStoreError(
                        f"Store unavailable: {self._consecutive_transient} consecutive "
                        f"{self.kind.name} rows failed with transient errors (last: {e})"
                    ) from e
                continue

            self._consecutive_transient = 0
            if inserted:
                result.migrated += 1

        return result

    def _migrate_row_with_retry(self, row: sqlite3.Row) -> bool:
        last_error: Optional[TransientStoreError] = None
        for attempt in range(1, self._max_retries + 1):
            try:
                return self._migrate_row(row)
            except Exception as e:
                error = as_migration_error(e)
                if not isinstance(error, TransientStoreError):
                    if error is e:
                        raise
                    raise error from e
                last_error = error
                logger.warning(
                    f"Transient error on {self.kind.name} #{row['legacy_id']} "
                    f"(attempt {attempt}/{self._max_retries}): {error}"
                )
                if attempt < self._max_retries and self._retry_delay > 0:
                    self._sleep(self._retry_delay * attempt)
        assert last_error is not None
        raise last_error

    def _build_values(self, row: sqlite3.Row) -> dict[str, Any]:
        kind = self.kind
        values: dict[str, Any] = {"user_skill_id": row["user_skill_id"]}
        for spec in kind.columns:
            value = row[spec.target]
            if value is None:
                if spec.required:
                    raise DataIntegrityAnomaly(f"{spec.target} is NULL")
                value = spec.default
            values[spec.target] = value
        if kind.note_column:
            values[kind.note_column] = provenance_note(row["old_skill_id"], values[kind.note_column])
        if kind.template_column:
            values[kind.template_column] = row["skill_template_id"]
        return values

    def _migrate_row(self, row: sqlite3.Row) -> bool:
        """Insert one v2 row in its own transaction. Returns False if it already exists."""
        kind = self.kind
        legacy_id = row["legacy_id"]
        values = self._build_values(row)
        columns = list(values)
        now_columns = {spec.target for spec in kind.columns if spec.now_if_null}
        placeholders = [
            f"COALESCE(:{c}, CURRENT_TIMESTAMP)" if c in now_columns else f":{c}" for c in columns
        ]
        # A NULL in the dedup key never matches, so such rows rely on the ledger alone
        dedup = " AND ".join(f"{col} = :{col}" for col in ("user_skill_id",) + kind.dedup_columns)

        with self._store.transaction() as conn:
            if conn.execute(
                "SELECT 1 FROM dependent_migration_map WHERE kind = ? AND old_id = ?",
                (kind.name, legacy_id),
            ).fetchone():
                logger.debug(f"{kind.name} #{legacy_id} already migrated, skipping")
                return False

            existing = conn.execute(
                f"SELECT id FROM {kind.target_table} WHERE {dedup} ORDER BY id LIMIT 1", values
            ).fetchone()
            if existing:
                new_id = existing["id"]
                inserted = False
            else:
                cursor = conn.execute(
                    f"INSERT INTO {kind.target_table} ({', '.join(columns)}) "
                    f"VALUES ({', '.join(placeholders)})",
                    values,
                )
                new_id = cursor.lastrowid
                inserted = True

            conn.execute(
                "INSERT INTO dependent_migration_map (kind, old_id, new_id) VALUES (?, ?, ?)",
                (kind.name, legacy_id, new_id),
            )

        if inserted:
            logger.debug(f"{kind.name} #{legacy_id} -> user_skill #{row['user_skill_id']}")
        else:
            logger.debug(f"{kind.name} #{legacy_id} matches {kind.target_table} #{new_id}, skipping")
        return inserted
