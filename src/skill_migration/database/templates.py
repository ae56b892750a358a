"""
Template resolution: find or create the canonical skill template for a
(name, category) pair.
"""

import logging
import sqlite3
from typing import Literal, Optional

from ..errors import is_unique_violation

logger = logging.getLogger(__name__)

ResolveStrategy = Literal["lookup", "upsert"]


class TemplateResolver:
    """
    Deduplication authority for skill templates.

    Two strategies are supported:

    - ``lookup``: exact-match SELECT (lowest id first), INSERT if missing.
      Safe as long as each call runs inside a ``BEGIN IMMEDIATE`` transaction,
      which holds the database write lock between the lookup and the insert.
    - ``upsert``: ``INSERT ... ON CONFLICT DO NOTHING`` followed by a SELECT.
      Requires the unique (name, category) index from ``ensure_schema``.

    Resolved ids are cached per process. Ids seen inside an open transaction
    are staged and only promoted to the cache by ``commit()``; ``rollback()``
    discards them, so a rolled-back insert never leaks a dangling id.
    """

    def __init__(self, strategy: ResolveStrategy = "lookup"):
        if strategy not in ("lookup", "upsert"):
            raise ValueError(f"Unknown template strategy: {strategy}")
        self.strategy = strategy
        self._cache: dict[tuple[str, str], int] = {}
        self._staged: dict[tuple[str, str], int] = {}
        self._staged_created = 0
        self.templates_created = 0

    def resolve(
        self,
        conn: sqlite3.Connection,
        name: str,
        category: str,
        category_id: Optional[int] = None,
        subcategory_id: Optional[int] = None,
    ) -> int:
        """
        Get or create a template record.

        Args:
            conn: Connection with an open transaction
            name: Skill name, matched exactly
            category: Category name, matched exactly
            category_id: Category reference id, stored on creation only
            subcategory_id: Subcategory reference id, stored on creation only

        Returns:
            Template ID
        """
        if not name or not category:
            raise ValueError("Template name and category cannot be empty")

        key = (name, category)
        if key in self._staged:
            return self._staged[key]
        if key in self._cache:
            return self._cache[key]

        if self.strategy == "upsert":
            template_id = self._upsert(conn, name, category, category_id, subcategory_id)
        else:
            template_id = self._lookup(conn, name, category)
            if template_id is None:
                template_id = self._insert(conn, name, category, category_id, subcategory_id)

        self._staged[key] = template_id
        return template_id

    def _lookup(self, conn: sqlite3.Connection, name: str, category: str) -> Optional[int]:
        row = conn.execute(
            "SELECT id FROM skill_templates WHERE name = ? AND category = ? ORDER BY id LIMIT 1",
            (name, category),
        ).fetchone()
        return row["id"] if row else None

    def _insert(
        self,
        conn: sqlite3.Connection,
        name: str,
        category: str,
        category_id: Optional[int],
        subcategory_id: Optional[int],
    ) -> int:
        try:
            cursor = conn.execute(
                """
                INSERT INTO skill_templates (name, category, category_id, subcategory_id, description, is_recommended)
                VALUES (?, ?, ?, ?, '', 0)
                """,
                (name, category, category_id, subcategory_id),
            )
        except sqlite3.IntegrityError as e:
            # Unique index present and another writer got there first
            if not is_unique_violation(e):
                raise
            template_id = self._lookup(conn, name, category)
            if template_id is None:
                raise
            return template_id
        self._staged_created += 1
        logger.debug(f"Created template '{name}' ({category}) -> {cursor.lastrowid}")
        return cursor.lastrowid

    def _upsert(
        self,
        conn: sqlite3.Connection,
        name: str,
        category: str,
        category_id: Optional[int],
        subcategory_id: Optional[int],
    ) -> int:
        cursor = conn.execute(
            """
            INSERT INTO skill_templates (name, category, category_id, subcategory_id, description, is_recommended)
            VALUES (?, ?, ?, ?, '', 0)
            ON CONFLICT (name, category) DO NOTHING
            """,
            (name, category, category_id, subcategory_id),
        )
        if cursor.rowcount:
            self._staged_created += 1
            logger.debug(f"Created template '{name}' ({category}) -> {cursor.lastrowid}")
        template_id = self._lookup(conn, name, category)
        if template_id is None:
            raise RuntimeError(f"Template '{name}' ({category}) missing after upsert")
        return template_id

    def commit(self) -> None:
        """Promote ids staged in the committed transaction to the cache."""
        self._cache.update(self._staged)
        self.templates_created += self._staged_created
        self._staged.clear()
        self._staged_created = 0

    def rollback(self) -> None:
        """Discard ids staged in the rolled-back transaction."""
        self._staged.clear()
        self._staged_created = 0

    def clear_cache(self) -> None:
        self._cache.clear()
        self.rollback()

    @property
    def cache_size(self) -> int:
        return len(self._cache)
