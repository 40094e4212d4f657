"""Quality-event accounting and escalation engine."""

from .errors import (
    ActionPlanStateError,
    BalanceError,
    ClaimStateError,
    ConfigurationError,
    EscalationStateError,
    InvalidQuantityError,
    MalformedRecordError,
    MissingDefectCodeError,
    QualityEngineError,
)
from .disposition_ledger import (
    accumulate,
    auto_fill_good_qty,
    disposition_summary,
    reaggregate,
    reconcile,
)
from .rate_calculator import RateCalculator, classify, compute_percent, compute_ppm
from .escalation_classifier import EscalationClassifier, classify_escalation, normalize_signal
from .andon_events import acknowledge, is_response_overdue, open_event, resolve
from .escalation_signals import count_consecutive_defects, line_stop_minutes, rework_rate_per_hour
from .pareto import ParetoResult, build_line_breakdown, build_pareto, vital_few
from .trends import build_claim_trend, build_production_trend
from .claims import next_claim_number, register_claim, update_claim_status
from .action_plans import create_action_plan, next_action_number, sort_action_plans, update_action_plan

__all__ = [
    "ActionPlanStateError",
    "BalanceError",
    "ClaimStateError",
    "ConfigurationError",
    "EscalationStateError",
    "InvalidQuantityError",
    "MalformedRecordError",
    "MissingDefectCodeError",
    "QualityEngineError",
    "accumulate",
    "auto_fill_good_qty",
    "disposition_summary",
    "reaggregate",
    "reconcile",
    "RateCalculator",
    "classify",
    "compute_percent",
    "compute_ppm",
    "EscalationClassifier",
    "classify_escalation",
    "normalize_signal",
    "acknowledge",
    "is_response_overdue",
    "open_event",
    "resolve",
    "count_consecutive_defects",
    "line_stop_minutes",
    "rework_rate_per_hour",
    "ParetoResult",
    "build_line_breakdown",
    "build_pareto",
    "vital_few",
    "build_claim_trend",
    "build_production_trend",
    "next_claim_number",
    "register_claim",
    "update_claim_status",
    "create_action_plan",
    "next_action_number",
    "sort_action_plans",
    "update_action_plan",
]
