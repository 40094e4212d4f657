"""PPM / percent rates and target banding.

Rounding is half-up everywhere (``0.5`` rounds away from zero), computed on
``Decimal`` so boundary values do not drift through binary floats.
"""

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from qms.engine.errors import InvalidQuantityError
from qms.schemas.claim import ClaimRecord
from qms.schemas.kpi import EngineConfig, KpiClassification, KpiStatus, KpiTarget
from qms.schemas.production import ProductionRun


logger = logging.getLogger(__name__)

# Ordered (inclusive upper ratio bound, status, label). Lower is better.
STATUS_BANDS: tuple[tuple[Optional[Decimal], KpiStatus, str], ...] = (
    (Decimal("0.6"), KpiStatus.EXCELLENT, "Excellent"),
    (Decimal("1.0"), KpiStatus.ON_TARGET, "On Target"),
    (Decimal("1.3"), KpiStatus.AT_RISK, "At Risk"),
    (None, KpiStatus.OVER_TARGET, "Over Target"),
)

PRODUCTION_GROUP = "production"
MACHINING_GROUP = "machining"


def _to_decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def compute_ppm(defect_qty: int, shipped_qty: int) -> int:
    """Defective parts per million, rounded half-up to an integer."""
    if shipped_qty <= 0:
        logger.debug("compute_ppm: shipped_qty=%s, returning 0", shipped_qty)
        return 0
    ppm = _to_decimal(defect_qty) * 1_000_000 / _to_decimal(shipped_qty)
    return int(ppm.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_percent(count: int, total: int, places: int = 2) -> float:
    """Share of ``count`` in ``total`` as a percentage, rounded half-up."""
    if total <= 0:
        logger.debug("compute_percent: total=%s, returning 0", total)
        return 0.0
    pct = _to_decimal(count) * 100 / _to_decimal(total)
    return float(pct.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP))


def classify(actual: float, target: float) -> KpiClassification:
    """Band an actual value against its target by the ratio ``actual / target``."""
    if target is None or target <= 0:
        raise InvalidQuantityError("target", target, "must be greater than 0")
    if actual is None or actual < 0:
        raise InvalidQuantityError("actual", actual)

    ratio = _to_decimal(actual) / _to_decimal(target)
    for upper, status, label in STATUS_BANDS:
        if upper is None or ratio <= upper:
            return KpiClassification(
                status=status,
                label=label,
                ratio=float(ratio.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)),
            )
    raise AssertionError("STATUS_BANDS must end with an open upper bound")


@dataclass
class ClaimCategoryKpi:
    """Customer claim result for one claim category."""

    category: str
    label: str
    target_ppm: float
    claim_count: int = 0
    defect_qty: int = 0
    shipped_qty: int = 0
    ppm: int = 0
    classification: Optional[KpiClassification] = None

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "label": self.label,
            "target_ppm": self.target_ppm,
            "claim_count": self.claim_count,
            "defect_qty": self.defect_qty,
            "shipped_qty": self.shipped_qty,
            "ppm": self.ppm,
            "status": self.classification.status.value if self.classification else None,
            "ratio": self.classification.ratio if self.classification else None,
        }


@dataclass
class LineGroupRates:
    """Rework/scrap totals for one line group (production or machining)."""

    group: str
    total_produced: int = 0
    good_qty: int = 0
    rework_qty: int = 0
    scrap_qty: int = 0
    rework_good_qty: int = 0
    rework_scrap_qty: int = 0
    lines: set[str] = field(default_factory=set)

    @property
    def rework_pct(self) -> float:
        return compute_percent(self.rework_qty, self.total_produced)

    @property
    def scrap_pct(self) -> float:
        return compute_percent(self.scrap_qty, self.total_produced)

    def add(self, run: ProductionRun) -> None:
        self.total_produced += run.total_produced
        self.good_qty += run.good_qty
        self.rework_qty += run.rework_qty
        self.scrap_qty += run.scrap_qty
        self.rework_good_qty += run.rework_good_qty
        self.rework_scrap_qty += run.rework_scrap_qty
        self.lines.add(run.line_id)


@dataclass
class InternalKpi:
    """Internal rate for one internal target."""

    target_id: str
    label: str
    target_pct: float
    count: int
    total: int
    actual_pct: float
    classification: KpiClassification

    def to_dict(self) -> dict:
        return {
            "target_id": self.target_id,
            "label": self.label,
            "target_pct": self.target_pct,
            "count": self.count,
            "total": self.total,
            "actual_pct": self.actual_pct,
            "status": self.classification.status.value,
            "ratio": self.classification.ratio,
        }


def line_group(line_id: str, markers: Iterable[str] = ("MC", "CNC")) -> str:
    """Machining when the line code contains one of the markers."""
    code = (line_id or "").upper()
    return MACHINING_GROUP if any(m.upper() in code for m in markers) else PRODUCTION_GROUP


class RateCalculator:
    """Classify rates against the targets of one plant configuration."""

    def __init__(self, config: Optional[EngineConfig] = None):
        if config is None:
            from config.kpi_targets.loader import get_engine_config
            config = get_engine_config()
        self.config = config

    def _claim_target(self, category) -> KpiTarget:
        key = getattr(category, "value", category)
        target = self.config.claim_target(key)
        if target is None:
            raise InvalidQuantityError("claim_category", key, "has no configured target")
        return target

    def _internal_target(self, target_id: str) -> KpiTarget:
        target = self.config.internal_target(target_id)
        if target is None:
            raise InvalidQuantityError("target_id", target_id, "has no configured target")
        return target

    def classify_claim(self, category, ppm: float) -> KpiClassification:
        return classify(ppm, self._claim_target(category).target)

    def classify_internal(self, target_id: str, pct: float) -> KpiClassification:
        return classify(pct, self._internal_target(target_id).target)

    def evaluate_claims(self, claims: Iterable[ClaimRecord]) -> list[ClaimCategoryKpi]:
        """Sum claims per category and classify each category's PPM.

        Every configured category is reported, including ones without claims.
        """
        results = {
            t.id: ClaimCategoryKpi(category=t.id, label=t.label, target_ppm=t.target)
            for t in self.config.claim_targets
        }
        for claim in claims:
            key = claim.claim_category.value
            if key not in results:
                logger.warning("Claim %s has unconfigured category %s", claim.claim_number, key)
                continue
            kpi = results[key]
            kpi.claim_count += 1
            kpi.defect_qty += claim.defect_qty
            kpi.shipped_qty += claim.shipped_qty

        for kpi in results.values():
            kpi.ppm = compute_ppm(kpi.defect_qty, kpi.shipped_qty)
            kpi.classification = classify(kpi.ppm, kpi.target_ppm)
        return list(results.values())

    def group_runs(self, runs: Iterable[ProductionRun]) -> dict[str, LineGroupRates]:
        groups = {
            PRODUCTION_GROUP: LineGroupRates(group=PRODUCTION_GROUP),
            MACHINING_GROUP: LineGroupRates(group=MACHINING_GROUP),
        }
        for run in runs:
            groups[line_group(run.line_id, self.config.machining_line_markers)].add(run)
        return groups

    def evaluate_internal(self, runs: Iterable[ProductionRun]) -> list[InternalKpi]:
        """Classify rework % per line group and plant-wide scrap %."""
        groups = self.group_runs(runs)
        production = groups[PRODUCTION_GROUP]
        machining = groups[MACHINING_GROUP]
        plant_total = production.total_produced + machining.total_produced

        measured = {
            "productionRework": (production.rework_qty, production.total_produced),
            "machiningRework": (machining.rework_qty, machining.total_produced),
            "productionScrap": (production.scrap_qty + machining.scrap_qty, plant_total),
        }

        results = []
        for target in self.config.internal_targets:
            if target.id not in measured:
                logger.debug("No internal measurement defined for target %s", target.id)
                continue
            count, total = measured[target.id]
            actual = compute_percent(count, total)
            results.append(
                InternalKpi(
                    target_id=target.id,
                    label=target.label,
                    target_pct=target.target,
                    count=count,
                    total=total,
                    actual_pct=actual,
                    classification=classify(actual, target.target),
                )
            )
        return results
