"""Time-bucketed production and claim trends."""

import logging
from typing import Iterable

import pandas as pd

from qms.engine.rate_calculator import compute_percent, compute_ppm
from qms.schemas.claim import ClaimRecord
from qms.schemas.production import ProductionRun


logger = logging.getLogger(__name__)

SUPPORTED_FREQUENCIES = ("D", "M")

PRODUCTION_COLUMNS = [
    "period", "total_produced", "good_qty", "rework_qty", "scrap_qty",
    "rework_good_qty", "rework_scrap_qty",
    "rework_pct", "scrap_pct", "first_pass_yield_pct",
]
CLAIM_COLUMNS = ["period", "claim_category", "claim_count", "defect_qty", "shipped_qty", "ppm"]

_QTY_FIELDS = [
    "total_produced", "good_qty", "rework_qty", "scrap_qty",
    "rework_good_qty", "rework_scrap_qty",
]


def _check_freq(freq: str) -> str:
    freq = freq.upper()
    if freq not in SUPPORTED_FREQUENCIES:
        raise ValueError(f"Unsupported trend frequency {freq!r}; use one of {SUPPORTED_FREQUENCIES}")
    return freq


def build_production_trend(runs: Iterable[ProductionRun], freq: str = "M") -> pd.DataFrame:
    """Per-period production totals with rework %, scrap % and first-pass yield.

    Args:
        runs: Reconciled production runs
        freq: ``"D"`` for daily or ``"M"`` for monthly buckets

    Returns:
        DataFrame ordered by period; empty (with columns) when there are no runs
    """
    freq = _check_freq(freq)
    rows = [
        {"timestamp": run.timestamp, **{f: getattr(run, f) for f in _QTY_FIELDS}}
        for run in runs
    ]
    if not rows:
        return pd.DataFrame(columns=PRODUCTION_COLUMNS)

    df = pd.DataFrame(rows)
    df["period"] = pd.to_datetime(df["timestamp"]).dt.to_period(freq).astype(str)
    trend = df.groupby("period", sort=True)[_QTY_FIELDS].sum().reset_index()

    trend["rework_pct"] = [
        compute_percent(r, t) for r, t in zip(trend["rework_qty"], trend["total_produced"])
    ]
    trend["scrap_pct"] = [
        compute_percent(s, t) for s, t in zip(trend["scrap_qty"], trend["total_produced"])
    ]
    trend["first_pass_yield_pct"] = [
        compute_percent(g, t) for g, t in zip(trend["good_qty"], trend["total_produced"])
    ]
    logger.debug("Production trend: %d runs in %d periods", len(df), len(trend))
    return trend[PRODUCTION_COLUMNS]


def build_claim_trend(claims: Iterable[ClaimRecord], freq: str = "M") -> pd.DataFrame:
    """Per-period, per-category claim counts and PPM."""
    freq = _check_freq(freq)
    rows = [
        {
            "claim_date": claim.claim_date,
            "claim_category": claim.claim_category.value,
            "defect_qty": claim.defect_qty,
            "shipped_qty": claim.shipped_qty,
        }
        for claim in claims
    ]
    if not rows:
        return pd.DataFrame(columns=CLAIM_COLUMNS)

    df = pd.DataFrame(rows)
    df["period"] = pd.to_datetime(df["claim_date"]).dt.to_period(freq).astype(str)
    trend = (
        df.groupby(["period", "claim_category"], sort=True)
        .agg(
            claim_count=("defect_qty", "size"),
            defect_qty=("defect_qty", "sum"),
            shipped_qty=("shipped_qty", "sum"),
        )
        .reset_index()
    )
    trend["ppm"] = [
        compute_ppm(int(d), int(s)) for d, s in zip(trend["defect_qty"], trend["shipped_qty"])
    ]
    return trend[CLAIM_COLUMNS]
