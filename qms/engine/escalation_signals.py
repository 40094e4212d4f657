"""Derive escalation signals from a line's recent history."""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

from qms.engine.rate_calculator import compute_percent
from qms.schemas.production import DefectRecord, ProductionRun, naive_utc


logger = logging.getLogger(__name__)


def count_consecutive_defects(
    outcomes: Sequence[Optional[DefectRecord]],
    lookback: Optional[int] = None,
) -> int:
    """Length of the trailing streak of the latest defect's code.

    ``outcomes`` is in chronological order; ``None`` stands for a unit that
    passed inspection and breaks the streak. Only the last ``lookback``
    outcomes are considered when given.
    """
    if lookback is not None:
        outcomes = outcomes[-lookback:] if lookback > 0 else []
    if not outcomes or outcomes[-1] is None:
        return 0

    code = outcomes[-1].defect_code
    streak = 0
    for outcome in reversed(outcomes):
        if outcome is None or outcome.defect_code != code:
            break
        streak += 1
    return streak


def rework_rate_per_hour(
    runs: Iterable[ProductionRun],
    now: Optional[datetime] = None,
    window_minutes: int = 60,
) -> float:
    """Rework percentage of the runs inside the trailing window, scaled to one hour."""
    if window_minutes <= 0:
        return 0.0
    now = naive_utc(now) or datetime.utcnow()
    start = now - timedelta(minutes=window_minutes)

    produced = rework = 0
    for run in runs:
        if start < run.timestamp <= now:
            produced += run.total_produced
            rework += run.rework_qty
    if produced == 0:
        logger.debug("No production in the last %d minutes", window_minutes)
        return 0.0

    pct = compute_percent(rework, produced, places=4)
    return round(pct * 60 / window_minutes, 4)


def line_stop_minutes(stopped_at: Optional[datetime], now: Optional[datetime] = None) -> float:
    """Minutes a line has been stopped; 0 when it is running."""
    if stopped_at is None:
        return 0.0
    now = naive_utc(now) or datetime.utcnow()
    stopped_at = naive_utc(stopped_at)
    return max(0.0, round((now - stopped_at).total_seconds() / 60, 2))
