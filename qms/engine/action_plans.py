"""Corrective action plans raised from KPIs, Andon alerts and claims."""

import logging
import re
from datetime import date, datetime
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError

from qms.engine.errors import ActionPlanStateError, InvalidQuantityError, MalformedRecordError
from qms.schemas.action_plan import ActionPlan, ActionPriority, ActionStatus
from qms.schemas.production import naive_utc


logger = logging.getLogger(__name__)

_ACTION_NUMBER = re.compile(r"^ACT-(\d{8})-(\d{3,})$")

# Forward moves only; completed and cancelled accept no further status change.
_TRANSITIONS = {
    ActionStatus.OPEN: {ActionStatus.IN_PROGRESS, ActionStatus.COMPLETED, ActionStatus.CANCELLED},
    ActionStatus.IN_PROGRESS: {ActionStatus.COMPLETED, ActionStatus.CANCELLED},
    ActionStatus.COMPLETED: set(),
    ActionStatus.CANCELLED: set(),
}

_PRIORITY_RANK = {priority: rank for rank, priority in enumerate(ActionPriority)}


def next_action_number(on: date, existing_numbers: Iterable[str] = ()) -> str:
    """Next ``ACT-YYYYMMDD-NNN`` number for the given day."""
    prefix = f"{on:%Y%m%d}"
    highest = 0
    for number in existing_numbers:
        match = _ACTION_NUMBER.match(number or "")
        if match and match.group(1) == prefix:
            highest = max(highest, int(match.group(2)))
    return f"ACT-{prefix}-{highest + 1:03d}"


def create_action_plan(
    data: Union[dict[str, Any], ActionPlan],
    existing_numbers: Iterable[str] = (),
    at: Optional[datetime] = None,
) -> ActionPlan:
    """Validate a new action plan and assign its number when missing."""
    payload = data.model_dump() if isinstance(data, ActionPlan) else dict(data)
    at = naive_utc(at) or datetime.utcnow()

    value = payload.get("before_value")
    if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0):
        raise InvalidQuantityError("before_value", value, "must be a non-negative number")
    if not str(payload.get("title") or "").strip():
        raise MalformedRecordError("Action plan needs a title")

    payload.setdefault("created_at", at)
    if not payload.get("action_number"):
        payload["action_number"] = next_action_number(at.date(), existing_numbers)

    try:
        plan = ActionPlan.model_validate(payload)
    except ValidationError as e:
        raise MalformedRecordError(f"Action plan could not be parsed: {e}") from e

    logger.info(
        "Created action plan %s (%s, %s) for %s",
        plan.action_number, plan.priority.value, plan.source_type.value,
        plan.source_ref or plan.related_kpi or "-",
    )
    return plan


def update_action_plan(
    plan: ActionPlan,
    status: Union[ActionStatus, str],
    at: Optional[datetime] = None,
    after_value: Optional[float] = None,
) -> ActionPlan:
    """Return a copy of the plan moved to ``status``.

    Completing stamps ``completed_at``; ``after_value`` records the KPI value
    the action achieved.
    """
    try:
        status = ActionStatus(status)
    except ValueError as e:
        raise ActionPlanStateError(f"Unknown action status {status!r}", status=str(status)) from e

    if status != plan.status and status not in _TRANSITIONS[plan.status]:
        raise ActionPlanStateError(
            f"Action plan {plan.action_number} cannot move from {plan.status.value} to {status.value}",
            action_number=plan.action_number,
            current_status=plan.status.value,
            requested_status=status.value,
        )
    if after_value is not None and (isinstance(after_value, bool) or after_value < 0):
        raise InvalidQuantityError("after_value", after_value, "must be a non-negative number")

    updates: dict[str, Any] = {"status": status}
    if after_value is not None:
        updates["after_value"] = after_value
    if status == ActionStatus.COMPLETED and plan.status != ActionStatus.COMPLETED:
        updates["completed_at"] = naive_utc(at) or datetime.utcnow()

    logger.info("Action plan %s: %s -> %s", plan.action_number, plan.status.value, status.value)
    return plan.model_copy(update=updates)


def sort_action_plans(plans: Iterable[ActionPlan]) -> list[ActionPlan]:
    """Critical first, then by due date (undated last)."""
    return sorted(
        plans,
        key=lambda p: (_PRIORITY_RANK[p.priority], p.due_date or date.max, p.action_number),
    )
