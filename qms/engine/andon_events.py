"""Andon escalation event lifecycle: active -> acknowledged -> resolved.

Transitions only move forward. Each transition returns a new event; stored
events are never mutated in place.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from qms.engine.errors import EscalationStateError
from qms.schemas.escalation import EscalationDecision, EscalationEvent, EscalationStatus
from qms.schemas.production import naive_utc


logger = logging.getLogger(__name__)

_STATUS_ORDER = {
    EscalationStatus.ACTIVE: 0,
    EscalationStatus.ACKNOWLEDGED: 1,
    EscalationStatus.RESOLVED: 2,
}


def new_alert_number(at: datetime) -> str:
    return f"AND-{at:%Y%m%d%H%M%S}-{uuid.uuid4().hex[:6].upper()}"


def _minutes_between(start: datetime, end: datetime) -> float:
    return round((end - start).total_seconds() / 60, 2)


def _require_forward(event: EscalationEvent, target: EscalationStatus) -> None:
    if _STATUS_ORDER[target] <= _STATUS_ORDER[event.status]:
        raise EscalationStateError(
            f"Alert {event.alert_number} cannot move from {event.status.value} to {target.value}",
            alert_number=event.alert_number,
            current_status=event.status.value,
            requested_status=target.value,
        )


def _require_text(value: Optional[str], field: str, event: EscalationEvent) -> str:
    if value is None or not str(value).strip():
        raise EscalationStateError(
            f"{field} is required to update alert {event.alert_number}",
            alert_number=event.alert_number,
            field=field,
        )
    return str(value).strip()


def open_event(
    decision: EscalationDecision,
    line_id: str,
    at: Optional[datetime] = None,
    alert_number: Optional[str] = None,
) -> EscalationEvent:
    """Create an active event from a classifier decision."""
    at = naive_utc(at) or datetime.utcnow()
    event = EscalationEvent(
        alert_number=alert_number or new_alert_number(at),
        line_id=line_id,
        level=decision.level,
        label=decision.tier.label,
        triggered_by=decision.triggered_by,
        response_deadline_minutes=decision.response_deadline_minutes,
        required_actions=decision.tier.required_actions,
        consecutive_defects=decision.consecutive_defects,
        rework_pct_per_hr=decision.rework_pct_per_hr,
        line_stop_minutes=decision.line_stop_minutes,
        triggered_at=at,
    )
    logger.info(
        "Opened alert %s on line %s: level %d (%s) by %s",
        event.alert_number, line_id, event.level, event.label, event.triggered_by.value,
    )
    return event


def acknowledge(event: EscalationEvent, actor: str, at: Optional[datetime] = None) -> EscalationEvent:
    _require_forward(event, EscalationStatus.ACKNOWLEDGED)
    actor = _require_text(actor, "actor", event)
    at = naive_utc(at) or datetime.utcnow()

    acknowledged = event.model_copy(
        update={
            "status": EscalationStatus.ACKNOWLEDGED,
            "acknowledged_at": at,
            "acknowledged_by": actor,
            "response_minutes": _minutes_between(event.triggered_at, at),
        }
    )
    logger.info("Alert %s acknowledged by %s", event.alert_number, actor)
    return acknowledged


def resolve(
    event: EscalationEvent,
    actor: str,
    corrective_action: str,
    root_cause: Optional[str] = None,
    at: Optional[datetime] = None,
) -> EscalationEvent:
    """Close an event. Resolving an active event skips acknowledgement."""
    _require_forward(event, EscalationStatus.RESOLVED)
    actor = _require_text(actor, "actor", event)
    corrective_action = _require_text(corrective_action, "corrective_action", event)
    at = naive_utc(at) or datetime.utcnow()

    updates = {
        "status": EscalationStatus.RESOLVED,
        "resolved_at": at,
        "resolved_by": actor,
        "corrective_action": corrective_action,
        "root_cause": root_cause.strip() if root_cause else None,
        "resolution_minutes": _minutes_between(event.triggered_at, at),
    }
    if event.status == EscalationStatus.ACTIVE:
        logger.warning("Alert %s resolved without acknowledgement", event.alert_number)
    resolved = event.model_copy(update=updates)
    logger.info("Alert %s resolved by %s", event.alert_number, actor)
    return resolved


def is_response_overdue(event: EscalationEvent, now: Optional[datetime] = None) -> bool:
    """True while an active event has passed its response deadline.

    Reporting only; nothing is changed on the event.
    """
    if event.status != EscalationStatus.ACTIVE:
        return False
    now = naive_utc(now) or datetime.utcnow()
    return (now - event.triggered_at).total_seconds() > event.response_deadline_minutes * 60
