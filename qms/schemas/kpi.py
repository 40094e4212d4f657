"""KPI target and plant configuration schemas."""

from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .escalation import EscalationTier


class KpiUnit(str, Enum):
    """Unit of a KPI value."""

    PPM = "PPM"
    PERCENT = "%"


class KpiStatus(str, Enum):
    """Band of a KPI value relative to its target (lower is better)."""

    EXCELLENT = "excellent"
    ON_TARGET = "onTarget"
    AT_RISK = "atRisk"
    OVER_TARGET = "overTarget"


class DefectSeverity(str, Enum):
    """Severity of a defect code."""

    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"


class KpiTarget(BaseModel):
    """Static target for one KPI category."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    target: float = Field(..., gt=0)
    unit: KpiUnit
    strategy: str = Field(default="", description="Prevention strategy for this category")
    standard: Optional[str] = Field(None, description="Governing standard (e.g. IATF 16949)")
    severity: Optional[str] = None


class KpiClassification(BaseModel):
    """Banding of an actual value against a target."""

    model_config = ConfigDict(frozen=True)

    status: KpiStatus
    label: str
    ratio: float


class DefectCode(BaseModel):
    """Entry of the fixed defect code table."""

    model_config = ConfigDict(frozen=True)

    code: str
    name: str
    category: str
    severity: DefectSeverity = DefectSeverity.MINOR


class CslLevel(BaseModel):
    """Controlled Shipping Level definition (reference data only)."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    description: str = ""
    owner: str = ""


class EngineConfig(BaseModel):
    """Immutable plant configuration handed to the engine components.

    Build a variant with :meth:`with_overrides` instead of mutating it.
    """

    model_config = ConfigDict(frozen=True)

    plant_name: str = "default"
    claim_targets: tuple[KpiTarget, ...]
    internal_targets: tuple[KpiTarget, ...]
    escalation_tiers: tuple[EscalationTier, ...]
    defect_codes: tuple[DefectCode, ...] = Field(default_factory=tuple)
    csl_levels: tuple[CslLevel, ...] = Field(default_factory=tuple)
    machining_line_markers: tuple[str, ...] = ("MC", "CNC")

    @field_validator("escalation_tiers")
    @classmethod
    def _unique_levels(cls, tiers: tuple[EscalationTier, ...]) -> tuple[EscalationTier, ...]:
        levels = [t.level for t in tiers]
        if len(levels) != len(set(levels)):
            raise ValueError(f"Duplicate escalation levels: {levels}")
        return tiers

    def claim_target(self, category: str) -> Optional[KpiTarget]:
        return next((t for t in self.claim_targets if t.id == str(category)), None)

    def internal_target(self, target_id: str) -> Optional[KpiTarget]:
        return next((t for t in self.internal_targets if t.id == target_id), None)

    def defect_code(self, code: Optional[str]) -> Optional[DefectCode]:
        if not code:
            return None
        return next((d for d in self.defect_codes if d.code == code), None)

    def with_overrides(self, **changes: Any) -> "EngineConfig":
        """Return a validated copy with some fields replaced."""
        data = self.model_dump()
        data.update(changes)
        return EngineConfig.model_validate(data)
