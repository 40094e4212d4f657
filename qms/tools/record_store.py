"""In-memory record store for runs, defects, claims, Andon alerts and action plans.

Writes made inside ``transaction()`` are all-or-nothing: any exception
restores the snapshot taken when the outermost transaction began.
"""

from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Iterator, Optional, Union
import json
import logging
import uuid

from pydantic import ValidationError

from qms.engine.action_plans import sort_action_plans
from qms.engine.errors import MalformedRecordError
from qms.schemas.action_plan import ActionPlan, ActionPriority, ActionStatus
from qms.schemas.claim import ClaimCategory, ClaimRecord
from qms.schemas.escalation import EscalationEvent
from qms.schemas.production import DefectRecord, ProductionRun, Shift, naive_utc


logger = logging.getLogger(__name__)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{datetime.utcnow():%Y%m%d%H%M%S}-{uuid.uuid4().hex[:8]}"


class InMemoryRecordStore:
    """Dict-backed persistence with snapshot/rollback transactions."""

    def __init__(self):
        self._runs: dict[str, ProductionRun] = {}
        self._claims: dict[str, ClaimRecord] = {}
        self._alerts: dict[str, EscalationEvent] = {}
        self._actions: dict[str, ActionPlan] = {}
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator["InMemoryRecordStore"]:
        """Group writes; nested transactions join the outermost one."""
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        snapshot = (dict(self._runs), dict(self._claims), dict(self._alerts), dict(self._actions))
        self._depth = 1
        try:
            yield self
        except BaseException:
            self._runs, self._claims, self._alerts, self._actions = snapshot
            logger.warning("Transaction rolled back")
            raise
        finally:
            self._depth = 0

    # Production runs and their defects

    def save_run(self, run: ProductionRun) -> ProductionRun:
        """Insert or replace a run, assigning ids to the run and its defects."""
        run_id = run.run_id or _new_id("RUN")
        defects = tuple(
            d if d.record_id else d.model_copy(update={"record_id": _new_id("DEF")})
            for d in run.defects
        )
        stored = run.model_copy(update={"run_id": run_id, "defects": defects})
        self._runs[run_id] = stored
        logger.debug("Saved run %s (%d defects)", run_id, len(defects))
        return stored

    def get_run(self, run_id: str) -> Optional[ProductionRun]:
        return self._runs.get(run_id)

    def delete_run(self, run_id: str) -> bool:
        return self._runs.pop(run_id, None) is not None

    def find_run_by_defect(self, record_id: str) -> Optional[ProductionRun]:
        for run in self._runs.values():
            if any(d.record_id == record_id for d in run.defects):
                return run
        return None

    def find_daily_summary(
        self,
        production_date: date,
        line_id: str,
        part_number: str,
        shift: Union[Shift, str],
    ) -> Optional[ProductionRun]:
        """The stored run for one (date, line, part, shift) key, if any."""
        shift = Shift(shift)
        for run in self._runs.values():
            if (
                run.timestamp.date() == production_date
                and run.line_id == line_id
                and run.part_number == part_number
                and run.shift == shift
            ):
                return run
        return None

    def list_runs(
        self,
        line_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        shift: Optional[Union[Shift, str]] = None,
    ) -> list[ProductionRun]:
        """Runs ordered by timestamp, optionally filtered."""
        shift = Shift(shift) if shift else None
        start, end = naive_utc(start), naive_utc(end)
        runs = [
            r for r in self._runs.values()
            if (line_id is None or r.line_id == line_id)
            and (start is None or r.timestamp >= start)
            and (end is None or r.timestamp <= end)
            and (shift is None or r.shift == shift)
        ]
        return sorted(runs, key=lambda r: r.timestamp)

    def list_defects(
        self,
        line_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[DefectRecord]:
        return [d for r in self.list_runs(line_id, start, end) for d in r.defects]

    # Customer claims

    def save_claim(self, claim: ClaimRecord) -> ClaimRecord:
        self._claims[claim.claim_number] = claim
        return claim

    def get_claim(self, claim_number: str) -> Optional[ClaimRecord]:
        return self._claims.get(claim_number)

    def claim_numbers(self) -> list[str]:
        return list(self._claims)

    def list_claims(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        category: Optional[Union[ClaimCategory, str]] = None,
    ) -> list[ClaimRecord]:
        category = ClaimCategory(category) if category else None
        claims = [
            c for c in self._claims.values()
            if (start is None or c.claim_date >= start)
            and (end is None or c.claim_date <= end)
            and (category is None or c.claim_category == category)
        ]
        return sorted(claims, key=lambda c: (c.claim_date, c.claim_number))

    # Andon alerts

    def save_alert(self, alert: EscalationEvent) -> EscalationEvent:
        self._alerts[alert.alert_number] = alert
        return alert

    def get_alert(self, alert_number: str) -> Optional[EscalationEvent]:
        return self._alerts.get(alert_number)

    def list_alerts(self, line_id: Optional[str] = None, open_only: bool = False) -> list[EscalationEvent]:
        alerts = [
            a for a in self._alerts.values()
            if (line_id is None or a.line_id == line_id)
            and (not open_only or a.is_open)
        ]
        return sorted(alerts, key=lambda a: a.triggered_at, reverse=True)

    # Corrective action plans

    def save_action_plan(self, plan: ActionPlan) -> ActionPlan:
        self._actions[plan.action_number] = plan
        return plan

    def get_action_plan(self, action_number: str) -> Optional[ActionPlan]:
        return self._actions.get(action_number)

    def action_numbers(self) -> list[str]:
        return list(self._actions)

    def list_action_plans(
        self,
        status: Optional[Union[ActionStatus, str]] = None,
        priority: Optional[Union[ActionPriority, str]] = None,
    ) -> list[ActionPlan]:
        """Plans by priority then due date, optionally filtered."""
        status = ActionStatus(status) if status else None
        priority = ActionPriority(priority) if priority else None
        plans = [
            p for p in self._actions.values()
            if (status is None or p.status == status)
            and (priority is None or p.priority == priority)
        ]
        return sort_action_plans(plans)

    # JSON persistence

    def save_json(self, path: Union[str, Path]) -> Path:
        """Write every record to one JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "runs": [r.to_dict() for r in self._runs.values()],
            "claims": [c.model_dump(mode="json") for c in self._claims.values()],
            "alerts": [a.model_dump(mode="json") for a in self._alerts.values()],
            "action_plans": [p.model_dump(mode="json") for p in self._actions.values()],
        }
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return path

    @classmethod
    def load_json(cls, path: Union[str, Path]) -> "InMemoryRecordStore":
        """Rebuild a store from a file written by :meth:`save_json`."""
        path = Path(path)
        store = cls()
        if not path.exists():
            return store
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            for raw in data.get("runs", []):
                store.save_run(ProductionRun.model_validate(raw))
            for raw in data.get("claims", []):
                store.save_claim(ClaimRecord.model_validate(raw))
            for raw in data.get("alerts", []):
                store.save_alert(EscalationEvent.model_validate(raw))
            for raw in data.get("action_plans", []):
                store.save_action_plan(ActionPlan.model_validate(raw))
        except (json.JSONDecodeError, ValidationError, AttributeError) as e:
            raise MalformedRecordError(f"Record store file {path} is invalid: {e}") from e
        logger.debug(
            "Loaded store %s: %d runs, %d claims, %d alerts, %d action plans",
            path, len(store._runs), len(store._claims), len(store._alerts), len(store._actions),
        )
        return store
