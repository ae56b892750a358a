"""
DDL for the normalized skill schema.

The legacy tables (skills, endorsements, skill_histories, project_skills)
belong to the application and are never created or altered here. This
module only adds the normalized tables next to them:

- skill_templates: deduplicated (name, category) definitions
- user_skills: per-user instances, FK to skill_templates and users
- skill_migration_map: old skills.id -> user_skills.id ledger (no FKs)
- dependent_migration_map: (kind, legacy dependent id) -> v2 row id ledger
- endorsements_v2, skill_histories_v2, project_skills_v2: dependents keyed
  by user_skills.id
"""

import logging
import sqlite3

from ..errors import SchemaError, SchemaMissingError
from .store import SkillStore

logger = logging.getLogger(__name__)

# =============================================================================
# TEMPLATES AND INSTANCES
# =============================================================================

CREATE_SKILL_TEMPLATES = """
CREATE TABLE IF NOT EXISTS skill_templates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    category TEXT NOT NULL,
    category_id INTEGER,
    subcategory_id INTEGER,
    description TEXT,
    is_recommended BOOLEAN NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""

CREATE_SKILL_TEMPLATES_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_skill_templates_name_category ON skill_templates(name, category);
CREATE INDEX IF NOT EXISTS idx_skill_templates_category_id ON skill_templates(category_id);
"""

UNIQUE_TEMPLATE_INDEX = "idx_skill_templates_name_category_unique"

CREATE_SKILL_TEMPLATES_UNIQUE_INDEX = f"""
CREATE UNIQUE INDEX IF NOT EXISTS {UNIQUE_TEMPLATE_INDEX} ON skill_templates(name, category);
"""

CREATE_USER_SKILLS = """
CREATE TABLE IF NOT EXISTS user_skills (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    skill_template_id INTEGER NOT NULL,
    level TEXT NOT NULL,
    certification TEXT,
    credly_link TEXT,
    notes TEXT,
    endorsement_count INTEGER DEFAULT 0,
    certification_date TEXT,
    expiration_date TEXT,
    last_updated TEXT DEFAULT CURRENT_TIMESTAMP,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY (skill_template_id) REFERENCES skill_templates(id) ON DELETE CASCADE,
    UNIQUE (user_id, skill_template_id)
);
"""

CREATE_USER_SKILLS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_user_skills_user_id ON user_skills(user_id);
CREATE INDEX IF NOT EXISTS idx_user_skills_skill_template_id ON user_skills(skill_template_id);
"""

# =============================================================================
# MIGRATION MAP
# =============================================================================

# Legacy ids may point at rows that were removed later, so no FKs here.
CREATE_SKILL_MIGRATION_MAP = """
CREATE TABLE IF NOT EXISTS skill_migration_map (
    old_skill_id INTEGER NOT NULL UNIQUE,
    new_user_skill_id INTEGER NOT NULL,
    migrated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""

CREATE_SKILL_MIGRATION_MAP_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_skill_migration_map_new_id ON skill_migration_map(new_user_skill_id);
"""

# One entry per migrated dependent row; the key for rows whose timestamp is NULL.
CREATE_DEPENDENT_MIGRATION_MAP = """
CREATE TABLE IF NOT EXISTS dependent_migration_map (
    kind TEXT NOT NULL,
    old_id INTEGER NOT NULL,
    new_id INTEGER NOT NULL,
    migrated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (kind, old_id)
);
"""

# =============================================================================
# V2 DEPENDENT TABLES
# =============================================================================

CREATE_ENDORSEMENTS_V2 = """
CREATE TABLE IF NOT EXISTS endorsements_v2 (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_skill_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    endorser_id INTEGER NOT NULL,
    comment TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (user_skill_id) REFERENCES user_skills(id) ON DELETE CASCADE,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY (endorser_id) REFERENCES users(id) ON DELETE CASCADE
);
"""

CREATE_ENDORSEMENTS_V2_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_endorsements_v2_user_skill_id ON endorsements_v2(user_skill_id);
CREATE INDEX IF NOT EXISTS idx_endorsements_v2_user_id ON endorsements_v2(user_id);
CREATE INDEX IF NOT EXISTS idx_endorsements_v2_endorser_id ON endorsements_v2(endorser_id);
CREATE INDEX IF NOT EXISTS idx_endorsements_v2_dedup ON endorsements_v2(user_skill_id, endorser_id, created_at);
"""

CREATE_SKILL_HISTORIES_V2 = """
CREATE TABLE IF NOT EXISTS skill_histories_v2 (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_skill_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    previous_level TEXT,
    new_level TEXT,
    change_note TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (user_skill_id) REFERENCES user_skills(id) ON DELETE CASCADE,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);
"""

CREATE_SKILL_HISTORIES_V2_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_skill_histories_v2_user_skill_id ON skill_histories_v2(user_skill_id);
CREATE INDEX IF NOT EXISTS idx_skill_histories_v2_user_id ON skill_histories_v2(user_id);
CREATE INDEX IF NOT EXISTS idx_skill_histories_v2_dedup ON skill_histories_v2(user_skill_id, created_at);
"""

CREATE_PROJECT_SKILLS_V2 = """
CREATE TABLE IF NOT EXISTS project_skills_v2 (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL,
    user_skill_id INTEGER NOT NULL,
    skill_template_id INTEGER,
    required_level TEXT NOT NULL DEFAULT 'beginner',
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
    FOREIGN KEY (user_skill_id) REFERENCES user_skills(id) ON DELETE CASCADE,
    FOREIGN KEY (skill_template_id) REFERENCES skill_templates(id)
);
"""

CREATE_PROJECT_SKILLS_V2_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_project_skills_v2_project_id ON project_skills_v2(project_id);
CREATE INDEX IF NOT EXISTS idx_project_skills_v2_user_skill_id ON project_skills_v2(user_skill_id);
CREATE INDEX IF NOT EXISTS idx_project_skills_v2_skill_template_id ON project_skills_v2(skill_template_id);
"""

# =============================================================================
# ALL DDL STATEMENTS IN ORDER
# =============================================================================

ALL_DDL_STATEMENTS = [
    CREATE_SKILL_TEMPLATES,
    CREATE_SKILL_TEMPLATES_INDEXES,
    CREATE_USER_SKILLS,
    CREATE_USER_SKILLS_INDEXES,
    CREATE_SKILL_MIGRATION_MAP,
    CREATE_SKILL_MIGRATION_MAP_INDEXES,
    CREATE_DEPENDENT_MIGRATION_MAP,
    CREATE_ENDORSEMENTS_V2,
    CREATE_ENDORSEMENTS_V2_INDEXES,
    CREATE_SKILL_HISTORIES_V2,
    CREATE_SKILL_HISTORIES_V2_INDEXES,
    CREATE_PROJECT_SKILLS_V2,
    CREATE_PROJECT_SKILLS_V2_INDEXES,
]

# Tables the engine reads but does not own
LEGACY_TABLES = ["skills", "users"]

TARGET_TABLES = [
    "skill_templates",
    "user_skills",
    "skill_migration_map",
    "dependent_migration_map",
    "endorsements_v2",
    "skill_histories_v2",
    "project_skills_v2",
]


def _execute_script(conn: sqlite3.Connection, ddl: str) -> None:
    for statement in ddl.strip().split(";"):
        statement = statement.strip()
        if statement:
            conn.execute(statement)


def find_duplicate_templates(store: SkillStore) -> list[tuple[str, str, int]]:
    """Return (name, category, count) for every pair held by more than one template."""
    if not store.table_exists("skill_templates"):
        return []
    cursor = store.execute(
        """
        SELECT name, category, COUNT(*) AS n
        FROM skill_templates
        GROUP BY name, category
        HAVING COUNT(*) > 1
        ORDER BY name, category
        """
    )
    return [(row["name"], row["category"], row["n"]) for row in cursor]


def has_unique_template_index(store: SkillStore) -> bool:
    """Return True if the unique (name, category) template index exists."""
    row = store.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'index' AND name = ?",
        (UNIQUE_TEMPLATE_INDEX,),
    ).fetchone()
    return row is not None


def ensure_schema(store: SkillStore, enforce_unique_templates: bool = False) -> None:
    """
    Create the normalized tables if they do not exist.

    Safe to call on every startup: only CREATE ... IF NOT EXISTS is issued,
    existing tables are never dropped or altered.

    Args:
        store: Open skill store
        enforce_unique_templates: Also create a unique index on
            skill_templates(name, category)

    Raises:
        SchemaError: If any DDL fails, or duplicate templates prevent the unique index
    """
    logger.info("Ensuring normalized skill schema exists...")
    try:
        with store.transaction() as conn:
            for ddl in ALL_DDL_STATEMENTS:
                _execute_script(conn, ddl)
    except sqlite3.Error as e:
        raise SchemaError(f"Schema bootstrap failed: {e}") from e

    if enforce_unique_templates and not has_unique_template_index(store):
        duplicates = find_duplicate_templates(store)
        if duplicates:
            listed = ", ".join(f"{name!r}/{category!r} x{n}" for name, category, n in duplicates[:10])
            raise SchemaError(
                f"Cannot create unique template index: {len(duplicates)} duplicate "
                f"(name, category) pairs exist ({listed}). Merge them by hand first."
            )
        try:
            with store.transaction() as conn:
                _execute_script(conn, CREATE_SKILL_TEMPLATES_UNIQUE_INDEX)
        except sqlite3.Error as e:
            raise SchemaError(f"Creating unique template index failed: {e}") from e
        logger.info("Created unique index on skill_templates(name, category)")

    logger.info("Schema ready")


def require_schema(store: SkillStore, tables: list[str] | None = None) -> None:
    """
    Check that the legacy source and all target tables exist.

    Args:
        store: Open skill store
        tables: Tables to check (default: legacy + target tables)

    Raises:
        SchemaMissingError: Listing every absent table
    """
    missing = store.missing_tables(tables or LEGACY_TABLES + TARGET_TABLES)
    if missing:
        raise SchemaMissingError(missing)
