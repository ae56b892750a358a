"""
Skill Migration - Online migration of a flat skills table to templates and user skills.

Moves legacy ``skills`` rows into deduplicated ``skill_templates`` plus
per-user ``user_skills``, records every move in ``skill_migration_map``,
and re-points endorsements, skill histories and project skills at the new
rows. Every step can be interrupted and re-run.

Example:
    >>> from skill_migration import migrate_database
    >>> summary = migrate_database("app.db")
    >>> summary.report.completion_pct
    100.0
"""

__version__ = "0.1.0"

from .config import MigrationSettings, load_settings
from .errors import (
    DataIntegrityAnomaly,
    MigrationError,
    SchemaError,
    SchemaMissingError,
    TransientStoreError,
)
from .models import (
    BatchResult,
    DependentProgress,
    DependentResult,
    LegacySkill,
    MigrationReport,
    RunSummary,
)
from .database import (
    DependentMigrator,
    InstanceMigrator,
    MigrationMap,
    ProgressVerifier,
    SkillMigrator,
    SkillStore,
    TemplateResolver,
    ensure_schema,
    migrate_database,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "MigrationSettings",
    "load_settings",
    # Errors
    "MigrationError",
    "TransientStoreError",
    "SchemaMissingError",
    "SchemaError",
    "DataIntegrityAnomaly",
    # Models
    "LegacySkill",
    "BatchResult",
    "DependentResult",
    "DependentProgress",
    "MigrationReport",
    "RunSummary",
    # Engine
    "SkillStore",
    "ensure_schema",
    "TemplateResolver",
    "MigrationMap",
    "InstanceMigrator",
    "DependentMigrator",
    "ProgressVerifier",
    "SkillMigrator",
    "migrate_database",
]
