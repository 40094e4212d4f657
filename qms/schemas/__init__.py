"""Pydantic schemas for the quality-event engine."""

from .production import (
    DefectRecord,
    DefectType,
    ProductionRun,
    QuantitySource,
    ReworkResult,
    RunSubmission,
    Shift,
)
from .claim import ClaimCategory, ClaimRecord, ClaimStatus
from .action_plan import ActionPlan, ActionPriority, ActionSource, ActionStatus
from .escalation import (
    EscalationDecision,
    EscalationEvent,
    EscalationStatus,
    EscalationTier,
    EscalationTrigger,
)
from .kpi import (
    CslLevel,
    DefectCode,
    DefectSeverity,
    EngineConfig,
    KpiClassification,
    KpiStatus,
    KpiTarget,
    KpiUnit,
)

__all__ = [
    "DefectRecord",
    "DefectType",
    "ProductionRun",
    "QuantitySource",
    "ReworkResult",
    "RunSubmission",
    "Shift",
    "ClaimCategory",
    "ClaimRecord",
    "ClaimStatus",
    "ActionPlan",
    "ActionPriority",
    "ActionSource",
    "ActionStatus",
    "EscalationDecision",
    "EscalationEvent",
    "EscalationStatus",
    "EscalationTier",
    "EscalationTrigger",
    "CslLevel",
    "DefectCode",
    "DefectSeverity",
    "EngineConfig",
    "KpiClassification",
    "KpiStatus",
    "KpiTarget",
    "KpiUnit",
]
