"""
Read-only reconciliation of legacy, mapped and migrated counts.

The report doubles as the termination check for orchestration: the
migration is complete when no legacy skill and no available dependent
kind has rows remaining.
"""

import logging

from ..models import DependentProgress, IntegrityReport, MigrationReport, TemplateUsage
from .dependents import KINDS, DependentMigrator
from .migration_map import MigrationMap
from .schema import find_duplicate_templates
from .store import SkillStore

logger = logging.getLogger(__name__)


class ProgressVerifier:
    """Builds a MigrationReport using SELECT queries only."""

    def __init__(self, store: SkillStore, top_n: int = 10):
        self._store = store
        self._top_n = top_n

    def report(self) -> MigrationReport:
        """
        Build the migration report.

        Missing tables read as empty, so this can run before the schema
        has been bootstrapped.

        Returns:
            MigrationReport
        """
        store = self._store
        total_legacy = store.count("skills")

        if store.table_exists("skill_migration_map") and store.table_exists("skills"):
            migration_map = MigrationMap(store)
            mapped = migration_map.count()
            remaining = migration_map.count_unmigrated()
        else:
            mapped = store.count("skill_migration_map")
            remaining = total_legacy

        report = MigrationReport(
            total_legacy=total_legacy,
            mapped=mapped,
            remaining=remaining,
            templates=store.count("skill_templates"),
            instances=store.count("user_skills"),
            dependents=self._dependent_progress(),
            top_templates=self._top_templates(),
            integrity=self._integrity(),
        )
        logger.debug(
            f"Report: {report.mapped_legacy}/{report.total_legacy} skills mapped "
            f"({report.completion_pct}%)"
        )
        return report

    def _dependent_progress(self) -> dict[str, DependentProgress]:
        return {name: DependentMigrator(self._store, kind).progress() for name, kind in KINDS.items()}

    def _top_templates(self) -> list[TemplateUsage]:
        if self._store.missing_tables(["skill_templates", "user_skills"]):
            return []
        cursor = self._store.execute(
            """
            SELECT t.name, t.category, COUNT(us.id) AS usage_count
            FROM skill_templates t
            LEFT JOIN user_skills us ON us.skill_template_id = t.id
            GROUP BY t.id
            ORDER BY usage_count DESC, t.name, t.category
            LIMIT ?
            """,
            (self._top_n,),
        )
        return [TemplateUsage(**dict(row)) for row in cursor]

    def _integrity(self) -> IntegrityReport:
        store = self._store
        if not store.table_exists("user_skills"):
            return IntegrityReport(
                orphan_mappings=store.count("skill_migration_map"),
                duplicate_templates=len(find_duplicate_templates(store)),
            )

        orphan_mappings = 0
        if store.table_exists("skill_migration_map"):
            orphan_mappings = store.scalar(
                """
                SELECT COUNT(*)
                FROM skill_migration_map m
                LEFT JOIN user_skills us ON us.id = m.new_user_skill_id
                WHERE us.id IS NULL
                """
            )

        orphan_dependents: dict[str, int] = {}
        for kind in KINDS.values():
            if not store.table_exists(kind.target_table):
                continue
            orphan_dependents[kind.name] = store.scalar(
                f"""
                SELECT COUNT(*)
                FROM {kind.target_table} v
                LEFT JOIN user_skills us ON us.id = v.user_skill_id
                WHERE us.id IS NULL
                """
            )

        return IntegrityReport(
            orphan_mappings=orphan_mappings,
            duplicate_templates=len(find_duplicate_templates(store)),
            orphan_dependents=orphan_dependents,
        )


def format_report(report: MigrationReport) -> str:
    """Render a report as plain text for the terminal."""
    lines = [
        "Skill migration progress",
        "=" * 40,
        f"Legacy skills:      {report.total_legacy:,}",
        f"Mapped:             {report.mapped_legacy:,}",
        f"Remaining:          {report.remaining:,}",
        f"Completion:         {report.completion_pct:.2f}%",
        f"Templates:          {report.templates:,}",
        f"User skills:        {report.instances:,}",
        "",
        "Dependents:",
    ]
    for name, progress in report.dependents.items():
        if not progress.available:
            lines.append(f"  {name:<16} (no legacy table)")
            continue
        if progress.error:
            lines.append(f"  {name:<16} {progress.total:,} rows, unreadable: {progress.error}")
            continue
        lines.append(
            f"  {name:<16} {progress.migrated:,}/{progress.total:,} migrated, "
            f"{progress.remaining:,} remaining ({progress.awaiting_parent:,} awaiting parent), "
            f"{progress.completion_pct:.2f}%"
        )

    if report.top_templates:
        lines.append("")
        lines.append("Top templates:")
        for usage in report.top_templates:
            lines.append(f"  {usage.name} ({usage.category}): {usage.usage_count:,}")

    integrity = report.integrity
    lines.append("")
    if integrity.ok:
        lines.append("Integrity: OK")
    else:
        lines.append("Integrity problems:")
        if integrity.orphan_mappings:
            lines.append(f"  {integrity.orphan_mappings:,} map entries point at missing user skills")
        if integrity.duplicate_templates:
            lines.append(f"  {integrity.duplicate_templates:,} duplicate (name, category) templates")
        for name, count in integrity.orphan_dependents.items():
            if count:
                lines.append(f"  {count:,} {name} v2 rows point at missing user skills")

    lines.append("")
    if report.is_complete:
        lines.append("Migration complete.")
    else:
        lines.append("Next steps:")
        if report.remaining:
            lines.append("  skill-migrate skills --all")
        if any(p.remaining for p in report.dependents.values() if p.available):
            lines.append("  skill-migrate dependents all --all")
    return "\n".join(lines)
