"""Corrective action plan schemas."""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class ActionPriority(str, Enum):
    """Priority of a corrective action; also its listing order."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ActionStatus(str, Enum):
    """Progress of a corrective action plan."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ActionSource(str, Enum):
    """What raised the action plan."""

    KPI = "kpi"
    ANDON = "andon"
    CLAIM = "claim"
    OTHER = "other"


class ActionPlan(BaseModel):
    """A corrective action tied to a KPI, Andon alert or customer claim."""

    action_number: str = Field(..., description="ACT-YYYYMMDD-NNN")
    title: str
    description: Optional[str] = None

    source_type: ActionSource = Field(default=ActionSource.KPI)
    source_ref: Optional[str] = Field(None, description="Alert number, claim number or KPI id")
    related_kpi: Optional[str] = Field(None, description="KPI target id the action should move")

    priority: ActionPriority = Field(default=ActionPriority.MEDIUM)
    status: ActionStatus = Field(default=ActionStatus.OPEN)
    assignee_name: Optional[str] = None
    department: Optional[str] = None
    due_date: Optional[date] = None

    before_value: Optional[float] = Field(None, ge=0, description="KPI value when the plan was raised")
    after_value: Optional[float] = Field(None, ge=0, description="KPI value after the action")

    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status in (ActionStatus.OPEN, ActionStatus.IN_PROGRESS)

    @property
    def improvement(self) -> Optional[float]:
        """Drop in the KPI value between raising and completing the plan."""
        if self.before_value is None or self.after_value is None:
            return None
        return round(self.before_value - self.after_value, 4)

    class Config:
        json_schema_extra = {
            "example": {
                "action_number": "ACT-20261019-001",
                "title": "Replace worn die insert on FG-02",
                "source_type": "andon",
                "source_ref": "AND-20261019080100-3F9A1C",
                "related_kpi": "productionRework",
                "priority": "high",
                "assignee_name": "Maintenance Lead",
                "due_date": "2026-10-26",
                "before_value": 0.55,
            }
        }
