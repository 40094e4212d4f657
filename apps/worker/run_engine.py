"""Command-line worker that pushes one production run through the engine.

Reads a run submission from JSON, reconciles it, classifies escalation and
prints the result as JSON. With ``--store`` the records are kept in a JSON
file between invocations so line history builds up.
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from config.kpi_targets.loader import get_engine_config
from config.log_setup import configure_logging
from config.settings import get_settings
from qms.engine.errors import QualityEngineError
from qms.engine.rate_calculator import RateCalculator
from qms.orchestrator.pipeline import QualityEventPipeline
from qms.schemas.production import ProductionRun
from qms.tools.record_store import InMemoryRecordStore


logger = logging.getLogger(__name__)


def load_run_file(path: str) -> tuple[dict, list]:
    """Split a run file into the submission and its defect items.

    Accepted shapes: ``{"run": {...}, "defect_items": [...]}`` or a flat
    submission object carrying an optional ``defect_items`` list.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")

    items = data.get("defect_items") or []
    submission = data.get("run", {k: v for k, v in data.items() if k != "defect_items"})
    return submission, items


def run_engine(
    submission: dict,
    defect_items: list,
    line_stop_minutes: Optional[float] = None,
    config_file: Optional[str] = None,
    store_file: Optional[str] = None,
    accumulate_daily: bool = False,
    verbose: bool = True,
) -> dict:
    """Run one submission through the pipeline.

    Args:
        submission: Run submission fields
        defect_items: Itemized defects
        line_stop_minutes: How long the line has currently been stopped
        config_file: Plant configuration YAML (settings/bundled default when None)
        store_file: JSON record store to load and update
        accumulate_daily: Merge into the existing daily summary for the key
        verbose: Whether to print progress

    Returns:
        Pipeline result dict with an added ``kpi`` section
    """
    config = get_engine_config(config_file)
    store = InMemoryRecordStore.load_json(store_file) if store_file else InMemoryRecordStore()
    pipeline = QualityEventPipeline(store=store, config=config, verbose=verbose)

    now = datetime.utcnow()
    stopped_at = now - timedelta(minutes=line_stop_minutes) if line_stop_minutes else None
    result = pipeline.submit_run(
        {"timestamp": now, **submission},
        defect_items,
        line_stop_started_at=stopped_at,
        now=now,
        accumulate_daily=accumulate_daily,
    )

    if result.get("success"):
        run = ProductionRun.model_validate(result["run"])
        result["kpi"] = [k.to_dict() for k in RateCalculator(config).evaluate_internal([run])]
        if store_file:
            store.save_json(store_file)
            if verbose:
                print(f"Record store saved to: {store_file}")
    return result


def main():
    """Main entry point for CLI usage."""
    parser = argparse.ArgumentParser(
        description="Reconcile a production run and classify Andon escalation"
    )
    parser.add_argument(
        "--run-file",
        type=str,
        required=True,
        help="Path to JSON file containing the run submission"
    )
    parser.add_argument(
        "--line-stop-minutes",
        type=float,
        default=None,
        help="Minutes the line has been stopped"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Plant configuration YAML (defaults to settings.kpi_targets_file)"
    )
    parser.add_argument(
        "--store",
        type=str,
        default=None,
        help="JSON record store file kept between runs"
    )
    parser.add_argument(
        "--accumulate",
        action="store_true",
        help="Add into the daily summary for the same date/line/part/shift"
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress progress output"
    )

    args = parser.parse_args()
    configure_logging(get_settings())

    try:
        submission, items = load_run_file(args.run_file)
        result = run_engine(
            submission,
            items,
            line_stop_minutes=args.line_stop_minutes,
            config_file=args.config,
            store_file=args.store,
            accumulate_daily=args.accumulate,
            verbose=not args.quiet,
        )
    except (OSError, ValueError, QualityEngineError) as e:
        logger.error("Cannot process %s: %s", args.run_file, e)
        sys.exit(2)

    print(json.dumps(result, indent=2, default=str))
    if not result.get("success"):
        sys.exit(1)


if __name__ == "__main__":
    main()
