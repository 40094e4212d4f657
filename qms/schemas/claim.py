"""Customer claim schemas."""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class ClaimCategory(str, Enum):
    """Claim category; each has its own PPM target."""

    AUTOMOTIVE = "automotive"
    INDUSTRIAL = "industrial"
    MACHINING = "machining"


class ClaimStatus(str, Enum):
    """Status of a customer claim."""

    OPEN = "open"
    INVESTIGATING = "investigating"
    CORRECTIVE_ACTION = "corrective_action"
    CLOSED = "closed"


class ClaimRecord(BaseModel):
    """One externally reported customer defect event."""

    claim_number: str = Field(..., description="CLM-YYYYMM-NNN")
    claim_date: date = Field(..., description="Date the customer reported the claim")
    claim_category: ClaimCategory
    customer: str = Field(..., description="Customer name")

    part_number: str
    lot_number: Optional[str] = None
    defect_code: Optional[str] = None
    defect_description: Optional[str] = None

    shipped_qty: int = Field(..., gt=0, description="Units shipped in the claimed delivery")
    defect_qty: int = Field(..., ge=0, description="Defective units reported by the customer")

    status: ClaimStatus = Field(default=ClaimStatus.OPEN)
    containment_action: Optional[str] = None
    root_cause: Optional[str] = None
    corrective_action: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    closed_at: Optional[datetime] = None

    class Config:
        json_schema_extra = {
            "example": {
                "claim_number": "CLM-202610-001",
                "claim_date": "2026-10-02",
                "claim_category": "automotive",
                "customer": "Tier-1 Brake Systems",
                "part_number": "AX-7842-B",
                "lot_number": "LOT-2026-W40-003",
                "defect_code": "DIM-002",
                "shipped_qty": 250000,
                "defect_qty": 3,
                "status": "open",
            }
        }
