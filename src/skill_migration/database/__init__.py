"""
Skill migration database module.

Provides:
- SkillStore: sqlite3 connection with per-unit transactions
- ensure_schema / require_schema: normalized table bootstrap
- TemplateResolver: (name, category) template deduplication
- MigrationMap: legacy id -> user skill id ledger
- InstanceMigrator: legacy skills -> user skills
- DependentMigrator: endorsements, skill histories, project skills -> v2 tables
- ProgressVerifier: read-only progress report
- SkillMigrator / migrate_database: full orchestrated run
"""

from .store import SkillStore
from .schema import ensure_schema, require_schema
from .templates import TemplateResolver
from .migration_map import MigrationMap
from .instances import InstanceMigrator
from .dependents import KINDS, DependentKind, DependentMigrator, get_kind
from .verify import ProgressVerifier, format_report
from .migrate import SkillMigrator, migrate_database

__all__ = [
    "SkillStore",
    "ensure_schema",
    "require_schema",
    "TemplateResolver",
    "MigrationMap",
    "InstanceMigrator",
    "KINDS",
    "DependentKind",
    "DependentMigrator",
    "get_kind",
    "ProgressVerifier",
    "format_report",
    "SkillMigrator",
    "migrate_database",
]
