"""Plant KPI metrics for the quality dashboard."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Optional, Union
from enum import Enum
import logging

from qms.engine.andon_events import is_response_overdue
from qms.engine.pareto import build_pareto, vital_few
from qms.engine.rate_calculator import RateCalculator, compute_percent
from qms.schemas.claim import ClaimRecord
from qms.schemas.escalation import EscalationEvent
from qms.schemas.kpi import EngineConfig, KpiClassification, KpiStatus
from qms.schemas.production import ProductionRun, Shift


logger = logging.getLogger(__name__)

DateRange = Union[str, tuple[date, date]]

PASSING_STATUSES = frozenset({KpiStatus.EXCELLENT, KpiStatus.ON_TARGET})


class MetricCategory(str, Enum):
    """Categories of plant KPI metrics."""

    CLAIM = "claim"
    INTERNAL = "internal"
    YIELD = "yield"
    ESCALATION = "escalation"


@dataclass
class MetricResult:
    """Result of computing a metric.

    Quality rates are lower-is-better; set ``higher_is_better`` for yields.
    When a KPI classification is attached, ``passed`` follows its band:
    excellent and on-target pass, at-risk and over-target do not.
    """

    metric_name: str
    category: MetricCategory
    value: float
    threshold: Optional[float] = None
    passed: Optional[bool] = None
    higher_is_better: bool = False
    classification: Optional[KpiClassification] = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def __post_init__(self):
        if self.classification is not None:
            self.passed = self.classification.status in PASSING_STATUSES
        elif self.threshold is not None:
            if self.higher_is_better:
                self.passed = self.value >= self.threshold
            else:
                self.passed = self.value <= self.threshold

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric_name": self.metric_name,
            "category": self.category.value,
            "value": self.value,
            "threshold": self.threshold,
            "passed": self.passed,
            "status": self.classification.status.value if self.classification else None,
            "details": self.details,
        }


def resolve_date_range(date_range: DateRange = "mtd", today: Optional[date] = None) -> tuple[date, date]:
    """Turn ``today``, ``mtd`` or ``ytd`` (or an explicit pair) into inclusive dates."""
    today = today or date.today()
    if isinstance(date_range, tuple):
        start, end = date_range
        if start > end:
            raise ValueError(f"Date range start {start} is after end {end}")
        return start, end

    key = (date_range or "").lower()
    if key == "today":
        return today, today
    if key == "mtd":
        return today.replace(day=1), today
    if key == "ytd":
        return today.replace(month=1, day=1), today
    raise ValueError(f"Unknown date range {date_range!r}; use today, mtd or ytd")


class PlantKpiMetrics:
    """Compute dashboard KPIs from stored runs, claims and Andon alerts.

    Empty inputs yield zero-valued metrics; nothing is ever substituted for
    missing data.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.calculator = RateCalculator(config)
        self.config = self.calculator.config

    def filter_runs(
        self,
        runs: Iterable[ProductionRun],
        start: date,
        end: date,
        line: Optional[str] = None,
        shift: Optional[Union[Shift, str]] = None,
    ) -> list[ProductionRun]:
        shift = Shift(shift) if shift else None
        return [
            r for r in runs
            if start <= r.timestamp.date() <= end
            and (line is None or r.line_id == line)
            and (shift is None or r.shift == shift)
        ]

    def compute_all(
        self,
        runs: Iterable[ProductionRun],
        claims: Iterable[ClaimRecord],
        alerts: Iterable[EscalationEvent],
        date_range: DateRange = "mtd",
        line: Optional[str] = None,
        shift: Optional[Union[Shift, str]] = None,
        today: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> list[MetricResult]:
        """Compute all plant metrics for a date range.

        Args:
            runs: Reconciled production runs
            claims: Customer claims
            alerts: Andon escalation events
            date_range: ``today``, ``mtd``, ``ytd`` or an explicit (start, end)
            line: Restrict production and alerts to one line
            shift: Restrict production to one shift
            today: Reference date for the range
            now: Reference time for overdue checks

        Returns:
            List of MetricResult objects
        """
        start, end = resolve_date_range(date_range, today)
        runs = self.filter_runs(runs, start, end, line, shift)
        claims = [c for c in claims if start <= c.claim_date <= end]
        alerts = [a for a in alerts if line is None or a.line_id == line]

        results = []
        results.extend(self.claim_ppm(claims))
        results.extend(self.internal_rates(runs))
        results.append(self.first_pass_yield(runs))
        results.append(self.final_yield(runs))
        results.append(self.open_alerts(alerts, now))

        logger.debug(
            "Computed %d metrics for %s..%s (%d runs, %d claims)",
            len(results), start, end, len(runs), len(claims),
        )
        return results

    def claim_ppm(self, claims: list[ClaimRecord]) -> list[MetricResult]:
        return [
            MetricResult(
                metric_name=f"claim_ppm_{kpi.category}",
                category=MetricCategory.CLAIM,
                value=kpi.ppm,
                threshold=kpi.target_ppm,
                classification=kpi.classification,
                details=kpi.to_dict(),
            )
            for kpi in self.calculator.evaluate_claims(claims)
        ]

    def internal_rates(self, runs: list[ProductionRun]) -> list[MetricResult]:
        return [
            MetricResult(
                metric_name=f"{kpi.target_id}_pct",
                category=MetricCategory.INTERNAL,
                value=kpi.actual_pct,
                threshold=kpi.target_pct,
                classification=kpi.classification,
                details=kpi.to_dict(),
            )
            for kpi in self.calculator.evaluate_internal(runs)
        ]

    def first_pass_yield(self, runs: list[ProductionRun]) -> MetricResult:
        """Share of units good without rework."""
        good = sum(r.good_qty for r in runs)
        total = sum(r.total_produced for r in runs)
        return MetricResult(
            metric_name="first_pass_yield_pct",
            category=MetricCategory.YIELD,
            value=compute_percent(good, total),
            higher_is_better=True,
            details={"good_qty": good, "total_produced": total},
        )

    def final_yield(self, runs: list[ProductionRun]) -> MetricResult:
        """Share of units good after rework."""
        final_good = sum(r.final_good_qty for r in runs)
        total = sum(r.total_produced for r in runs)
        return MetricResult(
            metric_name="final_yield_pct",
            category=MetricCategory.YIELD,
            value=compute_percent(final_good, total),
            higher_is_better=True,
            details={
                "final_good_qty": final_good,
                "final_reject_qty": sum(r.final_reject_qty for r in runs),
                "rework_pending_qty": sum(r.rework_pending_qty for r in runs),
                "total_produced": total,
            },
        )

    def open_alerts(self, alerts: list[EscalationEvent], now: Optional[datetime] = None) -> MetricResult:
        open_alerts = [a for a in alerts if a.is_open]
        by_level = {tier.level: 0 for tier in self.config.escalation_tiers}
        for alert in open_alerts:
            by_level[alert.level] = by_level.get(alert.level, 0) + 1
        return MetricResult(
            metric_name="open_andon_alerts",
            category=MetricCategory.ESCALATION,
            value=len(open_alerts),
            threshold=0,
            details={
                "by_level": by_level,
                "overdue": sum(1 for a in open_alerts if is_response_overdue(a, now)),
            },
        )

    def dashboard_summary(
        self,
        runs: Iterable[ProductionRun],
        claims: Iterable[ClaimRecord],
        alerts: Iterable[EscalationEvent],
        date_range: DateRange = "mtd",
        line: Optional[str] = None,
        shift: Optional[Union[Shift, str]] = None,
        today: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Everything the dashboard shows, as a JSON-ready dict."""
        runs = list(runs)
        claims = list(claims)
        alerts = list(alerts)
        start, end = resolve_date_range(date_range, today)
        metrics = self.compute_all(runs, claims, alerts, (start, end), line, shift, today, now)

        period_runs = self.filter_runs(runs, start, end, line, shift)
        pareto = build_pareto(
            (d for r in period_runs for d in r.defects),
            code_table=self.config,
        )
        return {
            "plant_name": self.config.plant_name,
            "date_range": {"start": start.isoformat(), "end": end.isoformat()},
            "filters": {"line": line, "shift": Shift(shift).value if shift else None},
            "metrics": [m.to_dict() for m in metrics],
            "production": {
                "run_count": len(period_runs),
                "total_produced": sum(r.total_produced for r in period_runs),
                "final_good_qty": sum(r.final_good_qty for r in period_runs),
                "final_reject_qty": sum(r.final_reject_qty for r in period_runs),
                "unaccounted_qty": sum(r.unaccounted_qty for r in period_runs),
            },
            "pareto": {
                "total_qty": pareto.total_qty,
                "vital_few": [i.defect_code for i in vital_few(pareto)],
                "items": pareto.to_dict()["items"][:10],
            },
        }
