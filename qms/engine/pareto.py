"""Pareto analysis of defect records by code, category and line."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional, Union

from qms.engine.errors import InvalidQuantityError, MissingDefectCodeError
from qms.schemas.kpi import DefectCode, EngineConfig
from qms.schemas.production import DefectRecord, DefectType, naive_utc


logger = logging.getLogger(__name__)

UNCATEGORIZED = "uncategorized"

CodeTable = Union[EngineConfig, Mapping[str, DefectCode]]


def _pct(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


@dataclass
class ParetoItem:
    """One defect code in the ranking."""

    defect_code: str
    qty: int = 0
    entry_count: int = 0
    rework_qty: int = 0
    scrap_qty: int = 0
    name: Optional[str] = None
    category: str = UNCATEGORIZED
    severity: Optional[str] = None
    pct_of_total: float = 0.0
    cumulative_pct: float = 0.0


@dataclass
class ParetoCategory:
    """Quantity totals for one defect category."""

    category: str
    qty: int = 0
    rework_qty: int = 0
    scrap_qty: int = 0
    pct_of_total: float = 0.0


@dataclass
class ParetoResult:
    items: list[ParetoItem] = field(default_factory=list)
    categories: list[ParetoCategory] = field(default_factory=list)
    total_qty: int = 0

    def to_dict(self) -> dict:
        return {
            "total_qty": self.total_qty,
            "items": [vars(i).copy() for i in self.items],
            "categories": [vars(c).copy() for c in self.categories],
        }


@dataclass
class LineBreakdown:
    """Rework/scrap totals for one line or machine."""

    line_id: str
    rework_qty: int = 0
    scrap_qty: int = 0

    @property
    def total_qty(self) -> int:
        return self.rework_qty + self.scrap_qty


def _as_mapping(code_table: Optional[CodeTable]) -> Mapping[str, DefectCode]:
    if code_table is None:
        return {}
    if isinstance(code_table, EngineConfig):
        return {d.code: d for d in code_table.defect_codes}
    return code_table


def _in_window(record: DefectRecord, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is None and end is None:
        return True
    if record.recorded_at is None:
        return False
    if start is not None and record.recorded_at < start:
        return False
    if end is not None and record.recorded_at > end:
        return False
    return True


def build_pareto(
    records: Iterable[DefectRecord],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    category: Optional[str] = None,
    code_table: Optional[CodeTable] = None,
) -> ParetoResult:
    """Rank defect codes by quantity with running cumulative percentages.

    Args:
        records: Defect records to aggregate
        start: Inclusive lower bound on ``recorded_at``
        end: Inclusive upper bound on ``recorded_at``
        category: Keep only records of this category
        code_table: Defect code table used to fill names, categories, severity

    Returns:
        ParetoResult; empty items and categories when nothing matched

    Raises:
        MissingDefectCodeError: A record has no defect code
        InvalidQuantityError: A record quantity is below 1
    """
    codes = _as_mapping(code_table)
    items: dict[str, ParetoItem] = {}
    start, end = naive_utc(start), naive_utc(end)

    for index, record in enumerate(records):
        if not record.defect_code or not record.defect_code.strip():
            raise MissingDefectCodeError(index)
        if record.quantity < 1:
            raise InvalidQuantityError(f"records[{index}].quantity", record.quantity, "must be at least 1")
        if not _in_window(record, start, end):
            continue
        known = codes.get(record.defect_code)
        record_category = record.category or (known.category if known else None) or UNCATEGORIZED
        if category is not None and record_category != category:
            continue

        item = items.get(record.defect_code)
        if item is None:
            item = ParetoItem(
                defect_code=record.defect_code,
                name=known.name if known else None,
                category=record_category,
                severity=known.severity.value if known else None,
            )
            items[record.defect_code] = item
        item.qty += record.quantity
        item.entry_count += 1
        if record.defect_type == DefectType.SCRAP:
            item.scrap_qty += record.quantity
        else:
            item.rework_qty += record.quantity

    total = sum(i.qty for i in items.values())
    if total == 0:
        return ParetoResult()

    ranked = sorted(items.values(), key=lambda i: (-i.qty, i.defect_code))
    running = Decimal(0)
    for item in ranked:
        share = Decimal(item.qty) * 100 / Decimal(total)
        running += share
        item.pct_of_total = _pct(share)
        item.cumulative_pct = _pct(running)

    categories: dict[str, ParetoCategory] = {}
    for item in ranked:
        cat = categories.setdefault(item.category, ParetoCategory(category=item.category))
        cat.qty += item.qty
        cat.rework_qty += item.rework_qty
        cat.scrap_qty += item.scrap_qty
    for cat in categories.values():
        cat.pct_of_total = _pct(Decimal(cat.qty) * 100 / Decimal(total))

    logger.debug("Pareto over %d codes, %d units", len(ranked), total)
    return ParetoResult(
        items=ranked,
        categories=sorted(categories.values(), key=lambda c: (-c.qty, c.category)),
        total_qty=total,
    )


def vital_few(result: ParetoResult, threshold: float = 80) -> list[ParetoItem]:
    """Leading items up to and including the one that reaches ``threshold`` %."""
    selected = []
    for item in result.items:
        selected.append(item)
        if item.cumulative_pct >= threshold:
            break
    return selected


def build_line_breakdown(records: Iterable[DefectRecord]) -> list[LineBreakdown]:
    """Rework and scrap quantities per line, largest first."""
    lines: dict[str, LineBreakdown] = {}
    for record in records:
        line_id = record.line_id or "unknown"
        row = lines.setdefault(line_id, LineBreakdown(line_id=line_id))
        if record.defect_type == DefectType.SCRAP:
            row.scrap_qty += record.quantity
        else:
            row.rework_qty += record.quantity
    return sorted(lines.values(), key=lambda r: (-r.total_qty, r.line_id))
