"""Pytest configuration and fixtures."""

import sqlite3
from pathlib import Path
from typing import Optional

import pytest

from skill_migration.database import SkillStore, ensure_schema


LEGACY_DDL = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY,
    username TEXT NOT NULL
);
CREATE TABLE skills (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    category TEXT NOT NULL,
    category_id INTEGER,
    subcategory_id INTEGER,
    level TEXT NOT NULL,
    certification TEXT,
    credly_link TEXT,
    notes TEXT,
    endorsement_count INTEGER DEFAULT 0,
    certification_date TEXT,
    expiration_date TEXT,
    last_updated TEXT
);
CREATE TABLE endorsements (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    skill_id INTEGER NOT NULL,
    endorser_id INTEGER NOT NULL,
    endorsee_id INTEGER NOT NULL,
    comment TEXT,
    created_at TEXT
);
CREATE TABLE skill_histories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    skill_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    previous_level TEXT,
    new_level TEXT,
    change_note TEXT,
    created_at TEXT
);
CREATE TABLE projects (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL
);
CREATE TABLE project_skills (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL,
    skill_id INTEGER NOT NULL,
    required_level TEXT,
    created_at TEXT
);
"""


def create_legacy_tables(db_path: Path, ddl: str = LEGACY_DDL) -> None:
    """Create the application's pre-migration tables in a fresh database."""
    conn = sqlite3.connect(str(db_path))
    try:
        conn.executescript(ddl)
        conn.commit()
    finally:
        conn.close()


class LegacyData:
    """Inserts legacy rows through a store connection (autocommit)."""

    def __init__(self, store: SkillStore):
        self.conn = store.conn

    def add_user(self, user_id: int, username: Optional[str] = None) -> int:
        self.conn.execute(
            "INSERT INTO users (id, username) VALUES (?, ?)",
            (user_id, username or f"user{user_id}"),
        )
        return user_id

    def add_skill(
        self,
        user_id: int,
        name: str,
        category: str,
        level: str = "beginner",
        skill_id: Optional[int] = None,
        **fields,
    ) -> int:
        values = {"user_id": user_id, "name": name, "category": category, "level": level, **fields}
        if skill_id is not None:
            values["id"] = skill_id
        columns = ", ".join(values)
        placeholders = ", ".join(f":{c}" for c in values)
        cursor = self.conn.execute(f"INSERT INTO skills ({columns}) VALUES ({placeholders})", values)
        return cursor.lastrowid

    def add_endorsement(
        self,
        skill_id: int,
        endorser_id: int,
        endorsee_id: int,
        created_at: Optional[str] = "2024-01-15 10:00:00",
        comment: Optional[str] = None,
    ) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO endorsements (skill_id, endorser_id, endorsee_id, comment, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (skill_id, endorser_id, endorsee_id, comment, created_at),
        )
        return cursor.lastrowid

    def add_history(
        self,
        skill_id: int,
        user_id: int,
        previous_level: Optional[str] = "beginner",
        new_level: Optional[str] = "intermediate",
        created_at: Optional[str] = "2024-02-01 09:30:00",
        change_note: Optional[str] = None,
    ) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO skill_histories (skill_id, user_id, previous_level, new_level, change_note, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (skill_id, user_id, previous_level, new_level, change_note, created_at),
        )
        return cursor.lastrowid

    def add_project(self, project_id: int, name: Optional[str] = None) -> int:
        self.conn.execute(
            "INSERT INTO projects (id, name) VALUES (?, ?)",
            (project_id, name or f"project{project_id}"),
        )
        return project_id

    def add_project_skill(
        self,
        project_id: int,
        skill_id: int,
        required_level: Optional[str] = "intermediate",
        created_at: Optional[str] = "2024-03-01 12:00:00",
    ) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO project_skills (project_id, skill_id, required_level, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (project_id, skill_id, required_level, created_at),
        )
        return cursor.lastrowid

    def count(self, table: str) -> int:
        return self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


@pytest.fixture
def db_path(tmp_path):
    """Database file with the legacy tables and no normalized tables."""
    path = tmp_path / "skills.db"
    create_legacy_tables(path)
    return path


@pytest.fixture
def raw_store(db_path):
    """Store over the legacy database before the schema bootstrap."""
    store = SkillStore(db_path, busy_timeout=1.0)
    yield store
    store.close()


@pytest.fixture
def store(raw_store):
    """Store with the normalized schema created."""
    ensure_schema(raw_store)
    return raw_store


@pytest.fixture
def legacy(store):
    """Helper for inserting legacy rows."""
    return LegacyData(store)


@pytest.fixture
def raw_legacy(raw_store):
    """Helper for inserting legacy rows before the schema bootstrap."""
    return LegacyData(raw_store)
