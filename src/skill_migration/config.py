"""
Engine configuration from environment variables or a .env file.

Environment variables (prefix SKILL_MIGRATION_):
    DB_PATH: Path to the SQLite database holding legacy and new tables
    BATCH_SIZE: Legacy skills per batch (default: 50)
    DEPENDENT_BATCH_SIZE: Dependent rows per batch (default: 100)
    MAX_RETRIES: Attempts per row on transient store errors (default: 3)
    RETRY_DELAY: Base delay in seconds between attempts (default: 0.5)
    TRANSIENT_ERROR_BUDGET: Consecutive failed rows before the run halts (default: 5)
    BUSY_TIMEOUT: Seconds to wait on a locked database (default: 30)
    ENFORCE_UNIQUE_TEMPLATES: Create a unique (name, category) index (default: false)
"""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DB_PATH = Path.home() / ".cache" / "skill-migration" / "skills.db"


class MigrationSettings(BaseSettings):
    """Migration engine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SKILL_MIGRATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db_path: Path = Field(
        default=DEFAULT_DB_PATH,
        description="Path to the SQLite database",
    )
    batch_size: int = Field(
        default=50,
        gt=0,
        description="Legacy skills processed per batch",
    )
    dependent_batch_size: int = Field(
        default=100,
        gt=0,
        description="Dependent rows processed per batch",
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts per row when the store reports a transient error",
    )
    retry_delay: float = Field(
        default=0.5,
        ge=0.0,
        description="Base delay in seconds between row attempts (linear backoff)",
    )
    transient_error_budget: int = Field(
        default=5,
        ge=1,
        description="Consecutive rows failing on transient errors before the run halts",
    )
    busy_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Seconds to wait for a locked database before giving up",
    )
    enforce_unique_templates: bool = Field(
        default=False,
        description="Create a unique index on skill_templates(name, category) and upsert",
    )


def load_settings(env_file: Optional[str | Path] = None, **overrides) -> MigrationSettings:
    """
    Load settings, optionally from a specific .env file.

    Args:
        env_file: Path to a .env file (default: .env in the current directory)
        **overrides: Values that take precedence over the environment; None is ignored

    Returns:
        MigrationSettings instance
    """
    if env_file:
        load_dotenv(env_file, override=True)
    else:
        load_dotenv()

    values = {k: v for k, v in overrides.items() if v is not None}
    return MigrationSettings(**values)
