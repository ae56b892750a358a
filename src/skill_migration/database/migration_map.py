"""
The migration map: durable ``skills.id -> user_skills.id`` ledger.

Every migrator goes through this class instead of querying
``skill_migration_map`` directly. The map is the only record of progress;
there is no stored cursor.
"""

import logging
from typing import Optional

from ..models import MigrationMapEntry
from .store import SkillStore

logger = logging.getLogger(__name__)


class MigrationMap:
    """Repository over ``skill_migration_map``."""

    def __init__(self, store: SkillStore, legacy_table: str = "skills"):
        self._store = store
        self._legacy_table = legacy_table

    def is_migrated(self, old_skill_id: int) -> bool:
        """Return True if the legacy skill already has a map entry."""
        row = self._store.execute(
            "SELECT 1 FROM skill_migration_map WHERE old_skill_id = ?",
            (old_skill_id,),
        ).fetchone()
        return row is not None

    def record_mapping(self, old_skill_id: int, new_user_skill_id: int) -> bool:
        """
        Write a map entry.

        A duplicate old id means another run already migrated the row; that
        is reported as False rather than raised.

        Returns:
            True if the entry was written, False if the old id was already mapped
        """
        cursor = self._store.execute(
            """
            INSERT INTO skill_migration_map (old_skill_id, new_user_skill_id)
            VALUES (?, ?)
            ON CONFLICT (old_skill_id) DO NOTHING
            """,
            (old_skill_id, new_user_skill_id),
        )
        if cursor.rowcount == 0:
            logger.debug(f"Skill #{old_skill_id} already mapped, ignoring duplicate")
            return False
        return True

    def lookup(self, old_skill_id: int) -> Optional[int]:
        """Return the mapped user_skills id, or None if unmapped."""
        row = self._store.execute(
            "SELECT new_user_skill_id FROM skill_migration_map WHERE old_skill_id = ?",
            (old_skill_id,),
        ).fetchone()
        return row["new_user_skill_id"] if row else None

    def get_entry(self, old_skill_id: int) -> Optional[MigrationMapEntry]:
        row = self._store.execute(
            "SELECT old_skill_id, new_user_skill_id, migrated_at FROM skill_migration_map WHERE old_skill_id = ?",
            (old_skill_id,),
        ).fetchone()
        return MigrationMapEntry(**dict(row)) if row else None

    def unmigrated_ids(self, limit: Optional[int] = None, offset: int = 0) -> list[int]:
        """
        Legacy ids with no map entry, ascending.

        Args:
            limit: Maximum ids to return (None for all)
            offset: Unmigrated ids to skip before the page starts

        Returns:
            List of legacy skill ids
        """
        cursor = self._store.execute(
            f"""
            SELECT s.id
            FROM {self._legacy_table} s
            LEFT JOIN skill_migration_map m ON m.old_skill_id = s.id
            WHERE m.old_skill_id IS NULL
            ORDER BY s.id
            LIMIT ? OFFSET ?
            """,
            (-1 if limit is None else limit, offset),
        )
        return [row["id"] for row in cursor]

    def count(self) -> int:
        """Number of map entries (including entries for since-deleted legacy rows)."""
        return self._store.scalar("SELECT COUNT(*) FROM skill_migration_map")

    def count_unmigrated(self) -> int:
        return self._store.scalar(
            f"""
            SELECT COUNT(*)
            FROM {self._legacy_table} s
            LEFT JOIN skill_migration_map m ON m.old_skill_id = s.id
            WHERE m.old_skill_id IS NULL
            """
        )

    def count_mapped(self, up_to: Optional[int] = None) -> int:
        """
        Number of legacy rows that carry a map entry.

        Args:
            up_to: Only count legacy ids <= this value (None for all)
        """
        sql = f"""
            SELECT COUNT(*)
            FROM {self._legacy_table} s
            JOIN skill_migration_map m ON m.old_skill_id = s.id
        """
        if up_to is None:
            return self._store.scalar(sql)
        return self._store.scalar(sql + " WHERE s.id <= ?", (up_to,))
