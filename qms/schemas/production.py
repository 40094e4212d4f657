"""Production run and defect record schemas."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are kept as naive UTC; aware values are converted."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Shift(str, Enum):
    """Production shift."""

    A = "A"
    B = "B"


class DefectType(str, Enum):
    """Disposition assigned to a defective unit."""

    REWORK = "rework"
    SCRAP = "scrap"


class ReworkResult(str, Enum):
    """Outcome of a rework attempt."""

    PENDING = "pending"
    GOOD = "good"
    SCRAP = "scrap"


class QuantitySource(str, Enum):
    """Where the rework/scrap totals of a run were taken from."""

    ITEMIZED = "itemized"
    FLAT = "flat"


class DefectRecord(BaseModel):
    """One categorized defect occurring within a production run.

    Quantities are deliberately unconstrained here: the disposition ledger
    validates them so it can report a typed error instead of a schema error.
    """

    model_config = ConfigDict(frozen=True)

    record_id: Optional[str] = Field(None, description="Store-assigned identifier")
    defect_code: Optional[str] = Field(None, description="Code from the defect code table (e.g. DIM-001)")
    defect_type: DefectType = Field(default=DefectType.REWORK)
    quantity: int = Field(default=1, description="Number of defective units")
    rework_result: Optional[ReworkResult] = Field(
        None,
        description="Only meaningful for rework items; missing means pending"
    )

    # Free-form measurement data
    measurement: Optional[str] = Field(None, description="Measured value as entered")
    spec_value: Optional[str] = Field(None, description="Specification the measurement was checked against")
    detail: Optional[str] = Field(None, description="Inspector remark")

    # Context used by Pareto windows and escalation signals
    category: Optional[str] = Field(None, description="Defect category, resolved from the code table when absent")
    line_id: Optional[str] = Field(None, description="Line / machine code of the parent run")
    recorded_at: Optional[datetime] = Field(None, description="When the defect was recorded")

    @field_validator("recorded_at")
    @classmethod
    def _recorded_at_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return naive_utc(value)

    @property
    def effective_rework_result(self) -> Optional[ReworkResult]:
        """Rework outcome with the pending default applied (None for scrap items)."""
        if self.defect_type != DefectType.REWORK:
            return None
        return self.rework_result or ReworkResult.PENDING


class RunSubmission(BaseModel):
    """Raw operator input for one line/shift/part/lot submission."""

    model_config = ConfigDict(extra="ignore")

    line_id: str = Field(..., description="Line or machine code (e.g. CNC-01)")
    part_number: str = Field(..., description="Part number produced")
    lot_number: Optional[str] = Field(None, description="Manufacturing lot number")
    shift: Shift = Field(default=Shift.A)
    operator: str = Field(..., description="Operator name")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    notes: Optional[str] = None

    # Quantities as typed by the operator
    total_produced: Optional[int] = Field(None, description="Units produced in the run")
    good_qty: Optional[int] = Field(None, description="Units passed first time")
    rework_qty: Optional[int] = Field(None, description="Flat rework count (used only without itemized defects)")
    scrap_qty: Optional[int] = Field(None, description="Flat scrap count (used only without itemized defects)")
    rework_good_qty: Optional[int] = None
    rework_scrap_qty: Optional[int] = None

    run_id: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return naive_utc(value)

    @classmethod
    def from_run(cls, run: "ProductionRun") -> "RunSubmission":
        """Turn a reconciled run back into ledger input."""
        return cls(
            run_id=run.run_id,
            line_id=run.line_id,
            part_number=run.part_number,
            lot_number=run.lot_number,
            shift=run.shift,
            operator=run.operator,
            timestamp=run.timestamp,
            notes=run.notes,
            total_produced=run.total_produced,
            good_qty=run.good_qty,
            rework_qty=run.rework_qty,
            scrap_qty=run.scrap_qty,
            rework_good_qty=run.rework_good_qty,
            rework_scrap_qty=run.rework_scrap_qty,
        )


class ProductionRun(BaseModel):
    """A reconciled production run. Immutable once built by the ledger."""

    model_config = ConfigDict(frozen=True)

    run_id: Optional[str] = None
    line_id: str
    part_number: str
    lot_number: Optional[str] = None
    shift: Shift = Shift.A
    operator: str
    timestamp: datetime
    notes: Optional[str] = None

    total_produced: int = Field(..., ge=0)
    good_qty: int = Field(default=0, ge=0)
    rework_qty: int = Field(default=0, ge=0)
    scrap_qty: int = Field(default=0, ge=0)
    rework_good_qty: int = Field(default=0, ge=0)
    rework_scrap_qty: int = Field(default=0, ge=0)
    rework_pending_qty: int = Field(default=0, ge=0)

    defects: tuple[DefectRecord, ...] = Field(default_factory=tuple)
    quantity_source: QuantitySource = QuantitySource.FLAT
    overridden_fields: tuple[str, ...] = Field(
        default_factory=tuple,
        description="Flat entry fields superseded by itemized defects"
    )

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return naive_utc(value)

    @computed_field
    @property
    def final_good_qty(self) -> int:
        return self.good_qty + self.rework_good_qty

    @computed_field
    @property
    def final_reject_qty(self) -> int:
        return self.scrap_qty + self.rework_scrap_qty

    @computed_field
    @property
    def unaccounted_qty(self) -> int:
        """Units neither good nor dispositioned (in-process stock)."""
        return self.total_produced - self.good_qty - self.rework_qty - self.scrap_qty

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
