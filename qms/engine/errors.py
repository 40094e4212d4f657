"""Typed errors raised by the quality-event engine.

Every error derives from :class:`QualityEngineError` so a caller can map the
whole family to a 400-class response, and exposes ``to_dict()`` so the
offending field or delta can be shown next to the input without parsing the
message.
"""

from typing import Any, Optional


class QualityEngineError(ValueError):
    """Base class for all engine input errors."""

    code: str = "quality_engine_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class InvalidQuantityError(QualityEngineError):
    """A quantity is missing, negative, or zero where a positive value is required."""

    code = "invalid_quantity"

    def __init__(self, field: str, value: Any, reason: str = "must be a non-negative integer"):
        super().__init__(f"{field}={value!r} {reason}", field=field, value=value)
        self.field = field
        self.value = value


class BalanceError(QualityEngineError):
    """Reconciled quantities do not add up; never clamped silently."""

    code = "balance_mismatch"

    def __init__(self, accounted: int, total_produced: int, message: Optional[str] = None):
        delta = accounted - total_produced
        super().__init__(
            message or (
                f"Accounted quantity {accounted} exceeds total produced "
                f"{total_produced} by {delta}"
            ),
            accounted=accounted,
            total_produced=total_produced,
            delta=delta,
        )
        self.accounted = accounted
        self.total_produced = total_produced
        self.delta = delta


class MissingDefectCodeError(QualityEngineError):
    """An itemized defect lacks its classification code."""

    code = "missing_defect_code"

    def __init__(self, item_index: int):
        super().__init__(f"Defect item #{item_index + 1} has no defect_code", item_index=item_index)
        self.item_index = item_index


class MalformedRecordError(QualityEngineError):
    """Input could not be parsed into an engine record at all."""

    code = "malformed_record"


class EscalationStateError(QualityEngineError):
    """Illegal escalation event transition or missing actor data."""

    code = "invalid_escalation_transition"


class ClaimStateError(QualityEngineError):
    """Illegal customer claim status change."""

    code = "invalid_claim_transition"


class ConfigurationError(QualityEngineError):
    """Plant configuration file is unreadable or invalid."""

    code = "invalid_configuration"


class ActionPlanStateError(QualityEngineError):
    """Illegal corrective action plan change."""

    code = "invalid_action_plan_transition"
