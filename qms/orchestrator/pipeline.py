"""Quality-event pipeline: submission -> ledger -> store -> escalation.

The pipeline coordinates the pure engine functions with a record store:

    reconcile → persist run + defects → derive line signals → classify → open alert

Every write of one submission happens inside a single store transaction, so a
rejected submission leaves nothing behind.
"""

from datetime import date, datetime
from typing import Any, Iterable, Optional, Union
import logging

from config.kpi_targets.loader import get_engine_config
from config.settings import get_settings
from qms.engine.action_plans import create_action_plan, update_action_plan
from qms.engine.andon_events import acknowledge, open_event, resolve
from qms.engine.claims import register_claim, update_claim_status
from qms.engine.disposition_ledger import accumulate, disposition_summary, reaggregate, reconcile
from qms.engine.errors import (
    ActionPlanStateError,
    ClaimStateError,
    EscalationStateError,
    MalformedRecordError,
    QualityEngineError,
)
from qms.engine.escalation_classifier import EscalationClassifier
from qms.engine.escalation_signals import (
    count_consecutive_defects,
    line_stop_minutes,
    rework_rate_per_hour,
)
from qms.kpi.metrics import PlantKpiMetrics
from qms.schemas.escalation import EscalationDecision, EscalationEvent
from qms.schemas.kpi import EngineConfig
from qms.schemas.production import DefectRecord, ProductionRun, naive_utc
from qms.tools.record_store import InMemoryRecordStore


logger = logging.getLogger(__name__)


def decision_to_dict(decision: Optional[EscalationDecision]) -> Optional[dict[str, Any]]:
    if decision is None:
        return None
    return {
        "level": decision.level,
        "label": decision.tier.label,
        "triggered_by": decision.triggered_by.value,
        "matched_triggers": [t.value for t in decision.matched_triggers],
        "response_deadline_minutes": decision.response_deadline_minutes,
        "required_actions": list(decision.tier.required_actions),
        "consecutive_defects": decision.consecutive_defects,
        "rework_pct_per_hr": decision.rework_pct_per_hr,
        "line_stop_minutes": decision.line_stop_minutes,
    }


def _line_outcomes(runs: Iterable[ProductionRun]) -> list[Optional[DefectRecord]]:
    """Chronological inspection entries of a line.

    Each defect item is one NG entry regardless of its quantity; a clean run
    counts as one pass.
    """
    outcomes: list[Optional[DefectRecord]] = []
    for run in runs:
        if not run.defects:
            outcomes.append(None)
            continue
        outcomes.extend(run.defects)
    return outcomes


class QualityEventPipeline:
    """Runs production submissions through the engine and persists the results."""

    def __init__(
        self,
        store: Optional[InMemoryRecordStore] = None,
        config: Optional[EngineConfig] = None,
        rework_window_minutes: Optional[int] = None,
        consecutive_lookback: Optional[int] = None,
        verbose: bool = False,
    ):
        settings = get_settings()
        self.store = store or InMemoryRecordStore()
        self.config = config or get_engine_config()
        self.classifier = EscalationClassifier(self.config)
        self.metrics = PlantKpiMetrics(self.config)
        self.rework_window_minutes = rework_window_minutes or settings.rework_rate_window_minutes
        self.consecutive_lookback = consecutive_lookback or settings.consecutive_lookback
        self.verbose = verbose

        self._workflow_log: list[dict] = []

    def _log(self, message: str, level: str = "info"):
        """Log pipeline progress."""
        entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": level,
            "message": message,
        }
        self._workflow_log.append(entry)
        getattr(logger, level, logger.info)(message)
        if self.verbose:
            print(f"[QualityEventPipeline] {message}")

    def _failure(self, error: QualityEngineError) -> dict[str, Any]:
        self._log(f"Rejected: {error.message}", "error")
        return {
            "success": False,
            "error": error.message,
            "error_type": type(error).__name__,
            "error_code": error.code,
            "details": error.details,
            "workflow_log": self._workflow_log,
        }

    def get_workflow_log(self) -> list[dict]:
        return self._workflow_log

    def submit_run(
        self,
        submission: Any,
        defect_items: Optional[Iterable[Any]] = None,
        line_stop_started_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
        accumulate_daily: bool = False,
    ) -> dict[str, Any]:
        """Reconcile, persist and escalate one production run.

        Args:
            submission: Run submission (``RunSubmission`` or dict)
            defect_items: Itemized defects for the run
            line_stop_started_at: When the line stopped, if it is stopped now
            now: Reference time for the signal windows
            accumulate_daily: Add into the existing (date, line, part, shift)
                summary instead of storing a separate run

        Returns:
            Dict with the stored run, its disposition summary, the escalation
            decision and any newly opened alert
        """
        self._workflow_log = []
        now = naive_utc(now) or datetime.utcnow()

        try:
            self._log("Step 1: Reconcile run")
            run = reconcile(submission, defect_items)
            if run.overridden_fields:
                self._log(
                    f"Itemized defects superseded {', '.join(run.overridden_fields)}", "warning"
                )

            with self.store.transaction():
                if accumulate_daily:
                    existing = self.store.find_daily_summary(
                        run.timestamp.date(), run.line_id, run.part_number, run.shift
                    )
                    if existing is not None:
                        self._log(f"Accumulating into daily summary {existing.run_id}")
                        run = accumulate(existing, run)

                self._log("Step 2: Persist run and defects")
                stored = self.store.save_run(run)

                self._log("Step 3: Evaluate escalation signals")
                decision, alert = self._escalate(stored.line_id, line_stop_started_at, now)

        except QualityEngineError as e:
            return self._failure(e)

        self._log(f"Run {stored.run_id} stored")
        return {
            "success": True,
            "run": stored.to_dict(),
            "disposition": disposition_summary(stored),
            "decision": decision_to_dict(decision),
            "alert": alert.model_dump(mode="json") if alert else None,
            "workflow_log": self._workflow_log,
        }

    def evaluate_line(
        self,
        line_id: str,
        line_stop_started_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> dict[str, float]:
        """Current escalation signals of a line."""
        now = naive_utc(now) or datetime.utcnow()
        history = self.store.list_runs(line_id=line_id)
        return {
            "consecutive_defects": count_consecutive_defects(
                _line_outcomes(history), self.consecutive_lookback
            ),
            "rework_pct_per_hr": rework_rate_per_hour(history, now, self.rework_window_minutes),
            "line_stop_minutes": line_stop_minutes(line_stop_started_at, now),
        }

    def _escalate(
        self,
        line_id: str,
        line_stop_started_at: Optional[datetime],
        now: datetime,
    ) -> tuple[Optional[EscalationDecision], Optional[EscalationEvent]]:
        signals = self.evaluate_line(line_id, line_stop_started_at, now)
        self._log(
            f"Line {line_id}: {signals['consecutive_defects']} consecutive, "
            f"{signals['rework_pct_per_hr']}%/hr rework, {signals['line_stop_minutes']} min stopped"
        )
        decision = self.classifier.classify(
            signals["consecutive_defects"],
            signals["rework_pct_per_hr"],
            signals["line_stop_minutes"],
        )
        if decision is None:
            self._log("No escalation")
            return None, None

        open_alerts = self.store.list_alerts(line_id=line_id, open_only=True)
        covering = [a for a in open_alerts if a.level >= decision.level]
        if covering:
            self._log(
                f"Level {decision.level} already covered by open alert {covering[0].alert_number}"
            )
            return decision, None

        alert = self.store.save_alert(open_event(decision, line_id, now))
        self._log(f"Opened alert {alert.alert_number} (level {alert.level}, {alert.label})", "warning")
        return decision, alert

    def _require_alert(self, alert_number: str) -> EscalationEvent:
        alert = self.store.get_alert(alert_number)
        if alert is None:
            raise EscalationStateError(f"Alert {alert_number} not found", alert_number=alert_number)
        return alert

    def acknowledge_alert(
        self,
        alert_number: str,
        actor: str,
        at: Optional[datetime] = None,
    ) -> dict[str, Any]:
        self._workflow_log = []
        try:
            alert = acknowledge(self._require_alert(alert_number), actor, at)
        except QualityEngineError as e:
            return self._failure(e)
        self.store.save_alert(alert)
        self._log(f"Alert {alert_number} acknowledged")
        return {"success": True, "alert": alert.model_dump(mode="json"), "workflow_log": self._workflow_log}

    def resolve_alert(
        self,
        alert_number: str,
        actor: str,
        corrective_action: str,
        root_cause: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> dict[str, Any]:
        self._workflow_log = []
        try:
            alert = resolve(self._require_alert(alert_number), actor, corrective_action, root_cause, at)
        except QualityEngineError as e:
            return self._failure(e)
        self.store.save_alert(alert)
        self._log(f"Alert {alert_number} resolved")
        return {"success": True, "alert": alert.model_dump(mode="json"), "workflow_log": self._workflow_log}

    def _rewrite_defects(self, record_id: str, edit: Optional[dict[str, Any]]) -> dict[str, Any]:
        self._workflow_log = []
        try:
            run = self.store.find_run_by_defect(record_id)
            if run is None:
                raise MalformedRecordError(f"Defect {record_id} not found", record_id=record_id)

            items = []
            for defect in run.defects:
                if defect.record_id != record_id:
                    items.append(defect)
                elif edit is not None:
                    changes = {k: v for k, v in edit.items() if k != "record_id"}
                    items.append({**defect.model_dump(), **changes, "record_id": record_id})

            with self.store.transaction():
                updated = self.store.save_run(reaggregate(run, items))
        except QualityEngineError as e:
            return self._failure(e)

        action = "Deleted" if edit is None else "Updated"
        self._log(f"{action} defect {record_id}; run {updated.run_id} re-aggregated")
        return {
            "success": True,
            "run": updated.to_dict(),
            "disposition": disposition_summary(updated),
            "workflow_log": self._workflow_log,
        }

    def edit_defect(self, record_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Change one stored defect record and re-aggregate its run."""
        return self._rewrite_defects(record_id, changes)

    def delete_defect(self, record_id: str) -> dict[str, Any]:
        """Remove one stored defect record and re-aggregate its run."""
        return self._rewrite_defects(record_id, None)

    def register_claim(self, data: dict[str, Any]) -> dict[str, Any]:
        self._workflow_log = []
        try:
            with self.store.transaction():
                claim = register_claim(data, self.store.claim_numbers())
                if self.store.get_claim(claim.claim_number) is not None:
                    raise ClaimStateError(
                        f"Claim {claim.claim_number} already exists",
                        claim_number=claim.claim_number,
                    )
                self.store.save_claim(claim)
        except QualityEngineError as e:
            return self._failure(e)
        self._log(f"Claim {claim.claim_number} registered")
        return {"success": True, "claim": claim.model_dump(mode="json"), "workflow_log": self._workflow_log}

    def update_claim(
        self,
        claim_number: str,
        status: str,
        at: Optional[datetime] = None,
        **fields: Optional[str],
    ) -> dict[str, Any]:
        self._workflow_log = []
        try:
            claim = self.store.get_claim(claim_number)
            if claim is None:
                raise ClaimStateError(f"Claim {claim_number} not found", claim_number=claim_number)
            claim = self.store.save_claim(update_claim_status(claim, status, at, **fields))
        except QualityEngineError as e:
            return self._failure(e)
        self._log(f"Claim {claim_number} is now {claim.status.value}")
        return {"success": True, "claim": claim.model_dump(mode="json"), "workflow_log": self._workflow_log}

    def create_action_plan(self, data: dict[str, Any], at: Optional[datetime] = None) -> dict[str, Any]:
        """Raise a corrective action plan, e.g. against an open alert or KPI."""
        self._workflow_log = []
        try:
            with self.store.transaction():
                plan = create_action_plan(data, self.store.action_numbers(), at)
                if self.store.get_action_plan(plan.action_number) is not None:
                    raise ActionPlanStateError(
                        f"Action plan {plan.action_number} already exists",
                        action_number=plan.action_number,
                    )
                self.store.save_action_plan(plan)
        except QualityEngineError as e:
            return self._failure(e)
        self._log(f"Action plan {plan.action_number} created ({plan.priority.value})")
        return {"success": True, "action_plan": plan.model_dump(mode="json"), "workflow_log": self._workflow_log}

    def update_action_plan(
        self,
        action_number: str,
        status: str,
        at: Optional[datetime] = None,
        after_value: Optional[float] = None,
    ) -> dict[str, Any]:
        self._workflow_log = []
        try:
            plan = self.store.get_action_plan(action_number)
            if plan is None:
                raise ActionPlanStateError(
                    f"Action plan {action_number} not found", action_number=action_number
                )
            plan = self.store.save_action_plan(update_action_plan(plan, status, at, after_value))
        except QualityEngineError as e:
            return self._failure(e)
        self._log(f"Action plan {action_number} is now {plan.status.value}")
        return {"success": True, "action_plan": plan.model_dump(mode="json"), "workflow_log": self._workflow_log}

    def dashboard(
        self,
        date_range: Union[str, tuple[date, date], None] = None,
        line: Optional[str] = None,
        shift: Optional[str] = None,
        today: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Dashboard KPIs over everything in the store."""
        return self.metrics.dashboard_summary(
            self.store.list_runs(),
            self.store.list_claims(),
            self.store.list_alerts(),
            date_range or get_settings().default_date_range,
            line,
            shift,
            today,
            now,
        )
