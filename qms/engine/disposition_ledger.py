"""Disposition ledger: reconcile one production run into good/rework/scrap.

Itemized defect records are the single source of truth for the rework and
scrap totals whenever at least one item is supplied. The flat count fields
of a submission are an entry convenience and are only used when the operator
typed totals without any itemized detail. A flat value that disagrees with the
itemized sums is superseded, logged, and listed in
``ProductionRun.overridden_fields``.

All functions here are pure: they never persist anything.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError

from qms.engine.errors import (
    BalanceError,
    InvalidQuantityError,
    MalformedRecordError,
    MissingDefectCodeError,
)
from qms.engine.rate_calculator import compute_percent
from qms.schemas.production import (
    DefectRecord,
    DefectType,
    ProductionRun,
    QuantitySource,
    ReworkResult,
    RunSubmission,
)


logger = logging.getLogger(__name__)

SubmissionInput = Union[RunSubmission, ProductionRun, dict]
DefectInput = Union[DefectRecord, dict]


@dataclass(frozen=True)
class _Dispositions:
    """Rework/scrap totals derived from one source."""

    rework_qty: int
    scrap_qty: int
    rework_good_qty: int
    rework_scrap_qty: int
    source: QuantitySource

    @property
    def rework_pending_qty(self) -> int:
        return max(0, self.rework_qty - self.rework_good_qty - self.rework_scrap_qty)


QUANTITY_FIELDS = frozenset({
    "total_produced",
    "good_qty",
    "rework_qty",
    "scrap_qty",
    "rework_good_qty",
    "rework_scrap_qty",
    "quantity",
})


def _raise_quantity_error(e: ValidationError, prefix: str = "") -> None:
    """Re-raise a schema error on a quantity field as InvalidQuantityError."""
    for error in e.errors():
        loc = error.get("loc") or ()
        if loc and loc[0] in QUANTITY_FIELDS:
            raise InvalidQuantityError(
                f"{prefix}{loc[0]}", error.get("input"), "must be a whole number"
            ) from e


def _coerce_submission(submission: SubmissionInput) -> RunSubmission:
    if isinstance(submission, RunSubmission):
        return submission
    if isinstance(submission, ProductionRun):
        return RunSubmission.from_run(submission)
    try:
        return RunSubmission.model_validate(submission)
    except ValidationError as e:
        _raise_quantity_error(e)
        raise MalformedRecordError(f"Run submission could not be parsed: {e}") from e


def _coerce_items(defect_items: Optional[Iterable[DefectInput]]) -> list[DefectRecord]:
    items = []
    for index, item in enumerate(defect_items or ()):
        if isinstance(item, DefectRecord):
            items.append(item)
            continue
        try:
            items.append(DefectRecord.model_validate(item))
        except ValidationError as e:
            _raise_quantity_error(e, f"defect_items[{index}].")
            raise MalformedRecordError(
                f"Defect item #{index + 1} could not be parsed: {e}",
                item_index=index,
            ) from e
    return items


def _non_negative(field: str, value: Optional[int]) -> Optional[int]:
    if value is not None and value < 0:
        raise InvalidQuantityError(field, value)
    return value


def _validate_quantities(sub: RunSubmission, items: list[DefectRecord]) -> int:
    """Reject malformed quantities before any computation. Returns total produced."""
    if sub.total_produced is None:
        raise InvalidQuantityError("total_produced", None, "is required")
    if sub.total_produced < 1:
        raise InvalidQuantityError("total_produced", sub.total_produced, "must be at least 1")

    for field in ("good_qty", "rework_qty", "scrap_qty", "rework_good_qty", "rework_scrap_qty"):
        _non_negative(field, getattr(sub, field))

    for index, item in enumerate(items):
        if item.quantity < 1:
            raise InvalidQuantityError(
                f"defect_items[{index}].quantity", item.quantity, "must be at least 1"
            )
    for index, item in enumerate(items):
        if not item.defect_code or not item.defect_code.strip():
            raise MissingDefectCodeError(index)

    return sub.total_produced


def _derive_dispositions(sub: RunSubmission, items: list[DefectRecord]) -> _Dispositions:
    if not items:
        return _Dispositions(
            rework_qty=sub.rework_qty or 0,
            scrap_qty=sub.scrap_qty or 0,
            rework_good_qty=sub.rework_good_qty or 0,
            rework_scrap_qty=sub.rework_scrap_qty or 0,
            source=QuantitySource.FLAT,
        )

    rework = [i for i in items if i.defect_type == DefectType.REWORK]
    return _Dispositions(
        rework_qty=sum(i.quantity for i in rework),
        scrap_qty=sum(i.quantity for i in items if i.defect_type == DefectType.SCRAP),
        rework_good_qty=sum(
            i.quantity for i in rework if i.effective_rework_result == ReworkResult.GOOD
        ),
        rework_scrap_qty=sum(
            i.quantity for i in rework if i.effective_rework_result == ReworkResult.SCRAP
        ),
        source=QuantitySource.ITEMIZED,
    )


def _overridden_fields(sub: RunSubmission, derived: _Dispositions) -> tuple[str, ...]:
    if derived.source != QuantitySource.ITEMIZED:
        return ()
    overridden = []
    for field in ("rework_qty", "scrap_qty", "rework_good_qty", "rework_scrap_qty"):
        flat = getattr(sub, field)
        if flat is not None and flat != getattr(derived, field):
            overridden.append(field)
    return tuple(overridden)


def _normalize_item(item: DefectRecord, sub: RunSubmission) -> DefectRecord:
    updates: dict[str, Any] = {"defect_code": item.defect_code.strip()}
    if item.line_id is None:
        updates["line_id"] = sub.line_id
    if item.recorded_at is None:
        updates["recorded_at"] = sub.timestamp
    updates["rework_result"] = item.effective_rework_result
    return item.model_copy(update=updates)


def _check_rework_split(rework_qty: int, rework_good_qty: int, rework_scrap_qty: int) -> None:
    resolved = rework_good_qty + rework_scrap_qty
    if resolved > rework_qty:
        raise BalanceError(
            accounted=resolved,
            total_produced=rework_qty,
            message=(
                f"Rework outcomes ({rework_good_qty} good + {rework_scrap_qty} scrap) "
                f"exceed rework quantity {rework_qty}"
            ),
        )


def _check_balance(total: int, good: int, rework: int, scrap: int) -> None:
    accounted = good + rework + scrap
    if accounted > total:
        raise BalanceError(accounted=accounted, total_produced=total)


def reconcile(
    submission: SubmissionInput,
    defect_items: Optional[Iterable[DefectInput]] = None,
) -> ProductionRun:
    """Validate and reconcile one production run submission.

    Args:
        submission: Operator input (``RunSubmission``, a dict, or a previously
            reconciled ``ProductionRun``)
        defect_items: Itemized defects; authoritative for rework/scrap totals
            when non-empty

    Returns:
        A reconciled, immutable ProductionRun

    Raises:
        InvalidQuantityError, MissingDefectCodeError, BalanceError,
        MalformedRecordError
    """
    sub = _coerce_submission(submission)
    items = _coerce_items(defect_items)
    total = _validate_quantities(sub, items)

    derived = _derive_dispositions(sub, items)
    _check_rework_split(derived.rework_qty, derived.rework_good_qty, derived.rework_scrap_qty)

    # goodQty is never auto-filled here; see auto_fill_good_qty
    good = sub.good_qty or 0
    _check_balance(total, good, derived.rework_qty, derived.scrap_qty)

    overridden = _overridden_fields(sub, derived)
    if overridden:
        logger.warning(
            "Itemized defects supersede flat entry fields %s on line %s part %s",
            ", ".join(overridden), sub.line_id, sub.part_number,
        )

    run = ProductionRun(
        run_id=sub.run_id,
        line_id=sub.line_id,
        part_number=sub.part_number,
        lot_number=sub.lot_number,
        shift=sub.shift,
        operator=sub.operator,
        timestamp=sub.timestamp,
        notes=sub.notes,
        total_produced=total,
        good_qty=good,
        rework_qty=derived.rework_qty,
        scrap_qty=derived.scrap_qty,
        rework_good_qty=derived.rework_good_qty,
        rework_scrap_qty=derived.rework_scrap_qty,
        rework_pending_qty=derived.rework_pending_qty,
        defects=tuple(_normalize_item(i, sub) for i in items),
        quantity_source=derived.source,
        overridden_fields=overridden,
    )
    logger.debug(
        "Reconciled line=%s part=%s total=%d good=%d rework=%d scrap=%d unaccounted=%d",
        run.line_id, run.part_number, run.total_produced, run.good_qty,
        run.rework_qty, run.scrap_qty, run.unaccounted_qty,
    )
    return run


def auto_fill_good_qty(
    submission: SubmissionInput,
    defect_items: Optional[Iterable[DefectInput]] = None,
) -> int:
    """Explicit, user-triggered good quantity: ``total - rework - scrap``."""
    sub = _coerce_submission(submission)
    items = _coerce_items(defect_items)
    total = _validate_quantities(sub, items)
    derived = _derive_dispositions(sub, items)

    good = total - derived.rework_qty - derived.scrap_qty
    if good < 0:
        raise BalanceError(accounted=derived.rework_qty + derived.scrap_qty, total_produced=total)
    return good


def reaggregate(
    run: ProductionRun,
    defect_items: Optional[Iterable[DefectInput]] = None,
) -> ProductionRun:
    """Rebuild a stored run after one of its defect records was edited or deleted.

    Rework/scrap totals come from the remaining items only; an itemized run
    whose last item was removed ends with zero rework and scrap.
    """
    sub = RunSubmission.from_run(run).model_copy(
        update={
            "rework_qty": None,
            "scrap_qty": None,
            "rework_good_qty": None,
            "rework_scrap_qty": None,
        }
    )
    if run.quantity_source == QuantitySource.FLAT and not defect_items:
        sub = RunSubmission.from_run(run)
    return reconcile(sub, defect_items)


def accumulate(existing: ProductionRun, incoming: ProductionRun) -> ProductionRun:
    """Merge a new submission into the daily summary for the same key.

    The key is (production date, line, part number, shift). Quantities add up,
    defects are concatenated, notes are joined, and the operator of the latest
    submission is kept.
    """
    key_existing = (existing.timestamp.date(), existing.line_id, existing.part_number, existing.shift)
    key_incoming = (incoming.timestamp.date(), incoming.line_id, incoming.part_number, incoming.shift)
    if key_existing != key_incoming:
        raise MalformedRecordError(
            f"Cannot accumulate runs with different summary keys: {key_existing} vs {key_incoming}"
        )

    totals = {
        field: getattr(existing, field) + getattr(incoming, field)
        for field in (
            "total_produced", "good_qty", "rework_qty", "scrap_qty",
            "rework_good_qty", "rework_scrap_qty", "rework_pending_qty",
        )
    }
    _check_rework_split(totals["rework_qty"], totals["rework_good_qty"], totals["rework_scrap_qty"])
    _check_balance(totals["total_produced"], totals["good_qty"], totals["rework_qty"], totals["scrap_qty"])

    notes = "; ".join(n for n in (existing.notes, incoming.notes) if n) or None
    both_itemized = (
        existing.quantity_source == QuantitySource.ITEMIZED
        and incoming.quantity_source == QuantitySource.ITEMIZED
    )
    return existing.model_copy(
        update={
            **totals,
            "operator": incoming.operator,
            "timestamp": max(existing.timestamp, incoming.timestamp),
            "lot_number": incoming.lot_number or existing.lot_number,
            "notes": notes,
            "defects": existing.defects + incoming.defects,
            "quantity_source": QuantitySource.ITEMIZED if both_itemized else QuantitySource.FLAT,
            "overridden_fields": tuple(
                dict.fromkeys(existing.overridden_fields + incoming.overridden_fields)
            ),
        }
    )


def disposition_summary(run: ProductionRun) -> dict[str, Any]:
    """Final good/reject quantities and percentages of a reconciled run."""
    return {
        "total_produced": run.total_produced,
        "final_good_qty": run.final_good_qty,
        "final_reject_qty": run.final_reject_qty,
        "rework_pending_qty": run.rework_pending_qty,
        "unaccounted_qty": run.unaccounted_qty,
        "good_pct": compute_percent(run.final_good_qty, run.total_produced),
        "reject_pct": compute_percent(run.final_reject_qty, run.total_produced),
    }
