#!/usr/bin/env python3
"""Validate a plant configuration file and print what it defines."""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.kpi_targets.loader import DEFAULT_CONFIG_PATH, load_engine_config
from config.settings import get_settings
from qms.engine.errors import ConfigurationError


def main() -> int:
    parser = argparse.ArgumentParser(description="Validate a plant KPI/escalation configuration.")
    parser.add_argument(
        "--file",
        default=None,
        help="Plant configuration YAML (defaults to settings.kpi_targets_file or the bundled file)",
    )
    args = parser.parse_args()

    settings = get_settings()
    config_path = Path(args.file or settings.kpi_targets_file or DEFAULT_CONFIG_PATH).resolve()

    try:
        config = load_engine_config(config_path)
    except ConfigurationError as e:
        print(f"Invalid configuration: {e.message}")
        return 1

    print(f"Plant: {config.plant_name} ({config_path})")

    print("\nClaim targets:")
    for target in config.claim_targets:
        print(f"  - {target.id}: {target.target:g} {target.unit.value} ({target.standard or '-'})")

    print("\nInternal targets:")
    for target in config.internal_targets:
        print(f"  - {target.id}: {target.target:.2f}{target.unit.value}")

    print("\nEscalation tiers:")
    for tier in sorted(config.escalation_tiers, key=lambda t: t.level):
        triggers = []
        if tier.consecutive_defects is not None:
            triggers.append(f"{tier.consecutive_defects} consecutive")
        if tier.rework_pct_per_hr is not None:
            triggers.append(f"rework {tier.rework_pct_per_hr:.2f}%/hr")
        if tier.line_stop_minutes is not None:
            triggers.append(f"line stop {tier.line_stop_minutes:g} min")
        print(f"  L{tier.level} {tier.label}: {' / '.join(triggers)}; respond in {tier.response_minutes} min")

    print(f"\nDefect codes: {len(config.defect_codes)}")
    print(f"Machining line markers: {', '.join(config.machining_line_markers)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
