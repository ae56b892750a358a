"""
SQLite store holding both the legacy and the normalized skill tables.

The connection runs in autocommit mode; every unit of work opens its own
``BEGIN IMMEDIATE`` transaction so the write lock is taken before the first
read of the unit and released at commit.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional
from urllib.parse import quote

from ..errors import TransientStoreError, classify_store_error

logger = logging.getLogger(__name__)


class SkillStore:
    """
    Connection wrapper around the skills database.

    Provides per-unit transactions and the schema introspection the
    migrators use to detect legacy column variants.
    """

    def __init__(
        self,
        db_path: str | Path,
        busy_timeout: float = 30.0,
        readonly: bool = False,
    ):
        """
        Initialize the store.

        Args:
            db_path: Path to the SQLite database file (":memory:" allowed)
            busy_timeout: Seconds to wait for a locked database
            readonly: Open the database read-only (used by the verifier)
        """
        self._db_path = str(db_path)
        self._busy_timeout = busy_timeout
        self._readonly = readonly
        self._conn: Optional[sqlite3.Connection] = None
        self._columns_cache: dict[str, set[str]] = {}

    @property
    def db_path(self) -> str:
        return self._db_path

    def __enter__(self) -> "SkillStore":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def connect(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is not None:
            return self._conn

        try:
            if self._readonly:
                uri = f"file:{quote(Path(self._db_path).as_posix())}?mode=ro"
                conn = sqlite3.connect(
                    uri, uri=True, timeout=self._busy_timeout, isolation_level=None
                )
            else:
                if self._db_path != ":memory:":
                    Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(
                    self._db_path, timeout=self._busy_timeout, isolation_level=None
                )
        except sqlite3.Error as e:
            raise TransientStoreError(f"Cannot open database {self._db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        self._conn = conn
        logger.debug(f"Connected to {self._db_path} (readonly={self._readonly})")
        return conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self.connect()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self._columns_cache.clear()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block as one transaction.

        Commits on success; rolls back and re-raises on any exception,
        including KeyboardInterrupt, so a cancelled run leaves no partial unit.
        """
        conn = self.connect()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    def execute(self, sql: str, params: tuple | dict = ()) -> sqlite3.Cursor:
        """Execute a statement, translating driver errors into the engine taxonomy."""
        try:
            return self.connect().execute(sql, params)
        except sqlite3.Error as e:
            raise classify_store_error(e) from e

    def scalar(self, sql: str, params: tuple | dict = ()) -> int:
        """Execute a single-value query and return it as int (0 for NULL)."""
        row = self.execute(sql, params).fetchone()
        if row is None or row[0] is None:
            return 0
        return int(row[0])

    def table_exists(self, name: str) -> bool:
        """Return True if a table with this name exists."""
        row = self.connect().execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            (name,),
        ).fetchone()
        return row is not None

    def missing_tables(self, names: list[str]) -> list[str]:
        """Return the subset of ``names`` that do not exist, in order."""
        return [name for name in names if not self.table_exists(name)]

    def table_columns(self, name: str) -> set[str]:
        """Return the column names of a table (empty if the table is absent)."""
        if name not in self._columns_cache:
            cursor = self.connect().execute(f"PRAGMA table_info({name})")
            columns = {row["name"] for row in cursor}
            if not columns:
                return set()
            self._columns_cache[name] = columns
        return self._columns_cache[name]

    def count(self, table: str) -> int:
        """Row count of a table, 0 if it does not exist."""
        if not self.table_exists(table):
            return 0
        return self.scalar(f"SELECT COUNT(*) FROM {table}")
