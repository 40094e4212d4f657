"""Andon escalation schemas."""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class EscalationTrigger(str, Enum):
    """Signal that caused an escalation."""

    CONSECUTIVE_DEFECT = "consecutive_defect"
    REWORK_RATE = "rework_rate"
    LINE_STOP = "line_stop"


class EscalationStatus(str, Enum):
    """Lifecycle of an escalation event. Transitions are forward only."""

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class EscalationTier(BaseModel):
    """One Andon response tier and its trigger thresholds.

    A ``None`` threshold means the tier does not react to that signal.
    """

    model_config = ConfigDict(frozen=True)

    level: int = Field(..., ge=1, le=3)
    label: str = Field(..., description="Who responds (e.g. Line Leader)")
    consecutive_defects: Optional[int] = Field(None, ge=1)
    rework_pct_per_hr: Optional[float] = Field(None, gt=0)
    line_stop_minutes: Optional[float] = Field(None, gt=0)
    response_minutes: int = Field(..., gt=0, description="Maximum response time")
    required_actions: tuple[str, ...] = Field(default_factory=tuple)


class EscalationDecision(BaseModel):
    """Result of classifying one set of escalation signals."""

    model_config = ConfigDict(frozen=True)

    tier: EscalationTier
    triggered_by: EscalationTrigger
    matched_triggers: tuple[EscalationTrigger, ...]

    # Signal snapshot
    consecutive_defects: int = 0
    rework_pct_per_hr: float = 0.0
    line_stop_minutes: float = 0.0

    @property
    def level(self) -> int:
        return self.tier.level

    @property
    def response_deadline_minutes(self) -> int:
        return self.tier.response_minutes


class EscalationEvent(BaseModel):
    """An Andon alert created when an escalation threshold is crossed."""

    model_config = ConfigDict(frozen=True)

    alert_number: str = Field(..., description="AND-<timestamp>-<hex>")
    line_id: str
    level: int = Field(..., ge=1, le=3)
    label: str
    triggered_by: EscalationTrigger
    response_deadline_minutes: int
    required_actions: tuple[str, ...] = Field(default_factory=tuple)
    status: EscalationStatus = EscalationStatus.ACTIVE

    consecutive_defects: int = 0
    rework_pct_per_hr: float = 0.0
    line_stop_minutes: float = 0.0

    triggered_at: datetime
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    root_cause: Optional[str] = None
    corrective_action: Optional[str] = None

    response_minutes: Optional[float] = Field(None, description="Trigger to acknowledgement")
    resolution_minutes: Optional[float] = Field(None, description="Trigger to resolution")

    @property
    def is_open(self) -> bool:
        return self.status != EscalationStatus.RESOLVED
