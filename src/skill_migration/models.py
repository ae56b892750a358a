"""
Pydantic models for legacy and migrated skill records and migration results.

Legacy rows are read with ``SELECT *`` so columns that an older legacy
database lacks fall back to the field defaults.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# RECORDS
# =============================================================================


class LegacySkill(BaseModel):
    """A row of the flat, pre-migration ``skills`` table."""

    model_config = ConfigDict(extra="ignore")

    id: int = Field(..., description="Legacy skill id")
    user_id: int = Field(..., description="Owning user")
    name: str = Field(..., description="Skill name, stored inline")
    category: str = Field(..., description="Category name, stored inline")
    category_id: Optional[int] = Field(default=None, description="Category reference id")
    subcategory_id: Optional[int] = Field(default=None, description="Subcategory reference id")
    level: Optional[str] = Field(default=None, description="beginner / intermediate / expert")
    certification: Optional[str] = Field(default=None)
    credly_link: Optional[str] = Field(default=None)
    notes: Optional[str] = Field(default=None)
    endorsement_count: Optional[int] = Field(default=0)
    certification_date: Optional[str] = Field(default=None)
    expiration_date: Optional[str] = Field(default=None)
    last_updated: Optional[str] = Field(default=None)

    def instance_values(self, template_id: int) -> dict[str, Any]:
        """Column values for a ``user_skills`` row copied from this legacy row."""
        return {
            "user_id": self.user_id,
            "skill_template_id": template_id,
            "level": self.level,
            "certification": self.certification,
            "credly_link": self.credly_link,
            "notes": self.notes,
            "endorsement_count": self.endorsement_count or 0,
            "certification_date": self.certification_date,
            "expiration_date": self.expiration_date,
            "last_updated": self.last_updated,
        }


class SkillTemplate(BaseModel):
    """A canonical (name, category) skill definition shared across users."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    category: str
    category_id: Optional[int] = None
    subcategory_id: Optional[int] = None
    description: Optional[str] = ""
    is_recommended: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class UserSkillInstance(BaseModel):
    """A per-user occurrence of a template carrying mutable state."""

    model_config = ConfigDict(extra="ignore")

    id: int
    user_id: int
    skill_template_id: int
    level: Optional[str] = None
    certification: Optional[str] = None
    credly_link: Optional[str] = None
    notes: Optional[str] = None
    endorsement_count: int = 0
    certification_date: Optional[str] = None
    expiration_date: Optional[str] = None
    last_updated: Optional[str] = None
    created_at: Optional[str] = None


class MigrationMapEntry(BaseModel):
    """One ``old_skill_id -> new_user_skill_id`` ledger entry."""

    model_config = ConfigDict(extra="ignore")

    old_skill_id: int
    new_user_skill_id: int
    migrated_at: Optional[str] = None


# =============================================================================
# RESULTS
# =============================================================================


class BatchResult(BaseModel):
    """Outcome of one Instance Migrator batch (or a whole run of batches)."""

    processed: int = Field(default=0, description="Rows attempted in this batch")
    created: int = Field(default=0, description="New user_skills rows inserted")
    reused: int = Field(default=0, description="Rows mapped onto an existing (user, template) instance")
    skipped_existing: int = Field(default=0, description="Rows found already mapped")
    errors: int = Field(default=0, description="Rows left unmigrated by a row-level error")
    failed_ids: list[int] = Field(default_factory=list, description="Legacy ids left unmigrated")

    @property
    def skipped(self) -> int:
        return self.skipped_existing

    def merge(self, other: "BatchResult") -> "BatchResult":
        """Accumulate another batch into this one."""
        self.processed += other.processed
        self.created += other.created
        self.reused += other.reused
        self.skipped_existing += other.skipped_existing
        self.errors += other.errors
        self.failed_ids.extend(other.failed_ids)
        return self

    def summary(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "created": self.created,
            "skipped": self.skipped,
            "errors": self.errors,
        }


class DependentResult(BaseModel):
    """Outcome of one Dependent-Record Migrator batch (or run)."""

    kind: str = Field(..., description="Dependent kind name")
    processed: int = Field(default=0, description="Rows attempted in this batch")
    migrated: int = Field(default=0, description="v2 rows inserted")
    skipped: int = Field(default=0, description="Rows whose parent skill is not yet mapped")
    errors: int = Field(default=0, description="Rows left unmigrated by a row-level error")
    failed_ids: list[int] = Field(default_factory=list)

    def merge(self, other: "DependentResult") -> "DependentResult":
        self.processed += other.processed
        self.migrated += other.migrated
        self.skipped = other.skipped
        self.errors += other.errors
        self.failed_ids.extend(other.failed_ids)
        return self

    def summary(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "created": self.migrated,
            "skipped": self.skipped,
            "errors": self.errors,
        }


class DependentProgress(BaseModel):
    """Migration progress for one dependent kind."""

    kind: str
    available: bool = Field(default=True, description="False if the legacy source table is absent")
    total: int = 0
    migrated: int = 0
    remaining: int = 0
    awaiting_parent: int = Field(default=0, description="Remaining rows whose parent is not yet mapped")
    v2_rows: int = Field(default=0, description="Rows present in the v2 table")
    error: Optional[str] = Field(default=None, description="Why the legacy table could not be read")

    @property
    def completion_pct(self) -> float:
        if self.total == 0:
            return 100.0
        return round(self.migrated / self.total * 100, 2)


class TemplateUsage(BaseModel):
    """A template and the number of instances referencing it."""

    name: str
    category: str
    usage_count: int


class IntegrityReport(BaseModel):
    """Referential checks over the migrated tables."""

    orphan_mappings: int = Field(default=0, description="Map entries whose instance does not exist")
    duplicate_templates: int = Field(default=0, description="(name, category) pairs with more than one template")
    orphan_dependents: dict[str, int] = Field(default_factory=dict, description="v2 rows whose instance does not exist")

    @property
    def ok(self) -> bool:
        return (
            self.orphan_mappings == 0
            and self.duplicate_templates == 0
            and not any(self.orphan_dependents.values())
        )


class MigrationReport(BaseModel):
    """Read-only reconciliation of legacy, mapped and dependent counts."""

    generated_at: datetime = Field(default_factory=datetime.now)
    total_legacy: int = 0
    mapped: int = 0
    remaining: int = 0
    templates: int = 0
    instances: int = 0
    dependents: dict[str, DependentProgress] = Field(default_factory=dict)
    top_templates: list[TemplateUsage] = Field(default_factory=list)
    integrity: IntegrityReport = Field(default_factory=IntegrityReport)

    @property
    def completion_pct(self) -> float:
        if self.total_legacy == 0:
            return 100.0
        return round(self.mapped_legacy / self.total_legacy * 100, 2)

    @property
    def mapped_legacy(self) -> int:
        """Legacy rows that carry a mapping (map entries for deleted rows excluded)."""
        return self.total_legacy - self.remaining

    @property
    def is_complete(self) -> bool:
        if self.remaining:
            return False
        return all(p.remaining == 0 for p in self.dependents.values() if p.available)

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        data["completion_pct"] = self.completion_pct
        data["is_complete"] = self.is_complete
        for kind, progress in self.dependents.items():
            data["dependents"][kind]["completion_pct"] = progress.completion_pct
        return data


class RunSummary(BaseModel):
    """Everything a full orchestrated run did, plus the final report."""

    skills: BatchResult = Field(default_factory=BatchResult)
    dependents: dict[str, DependentResult] = Field(default_factory=dict)
    report: Optional[MigrationReport] = None

    @property
    def errors(self) -> int:
        return self.skills.errors + sum(r.errors for r in self.dependents.values())

    def summary(self) -> dict[str, int]:
        """Totals across skills and every dependent kind."""
        totals = self.skills.summary()
        for result in self.dependents.values():
            for key, value in result.summary().items():
                totals[key] += value
        return totals
