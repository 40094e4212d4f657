"""Load and validate the plant configuration from YAML files."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional
import yaml
from pydantic import ValidationError

from qms.engine.errors import ConfigurationError
from qms.schemas.escalation import EscalationTier
from qms.schemas.kpi import CslLevel, DefectCode, EngineConfig, KpiTarget


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "default_plant.yaml"

REQUIRED_SECTIONS = ("claim_targets", "internal_targets", "escalation_tiers")


def load_engine_config(file_path: str | Path) -> EngineConfig:
    """Load a single plant configuration from a YAML file."""
    file_path = Path(file_path)
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read plant configuration {file_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Plant configuration {file_path} must be a mapping")

    missing = [s for s in REQUIRED_SECTIONS if not data.get(s)]
    if missing:
        raise ConfigurationError(
            f"Plant configuration {file_path} is missing sections: {', '.join(missing)}"
        )

    try:
        config = EngineConfig(
            plant_name=data.get("plant_name", file_path.stem),
            claim_targets=tuple(KpiTarget(**t) for t in data["claim_targets"]),
            internal_targets=tuple(KpiTarget(**t) for t in data["internal_targets"]),
            escalation_tiers=tuple(
                EscalationTier(**t) for t in data["escalation_tiers"]
            ),
            defect_codes=tuple(DefectCode(**d) for d in data.get("defect_codes", [])),
            csl_levels=tuple(CslLevel(**c) for c in data.get("csl_levels", [])),
            machining_line_markers=tuple(data.get("machining_line_markers", ("MC", "CNC"))),
        )
    except (TypeError, ValidationError) as e:
        raise ConfigurationError(f"Invalid plant configuration {file_path}: {e}") from e

    logger.debug(
        "Loaded plant configuration %s (%d claim targets, %d tiers, %d defect codes)",
        config.plant_name,
        len(config.claim_targets),
        len(config.escalation_tiers),
        len(config.defect_codes),
    )
    return config


@lru_cache(maxsize=8)
def _load_cached(resolved_path: str) -> EngineConfig:
    return load_engine_config(resolved_path)


def get_engine_config(file_path: Optional[str | Path] = None) -> EngineConfig:
    """Get the plant configuration, defaulting to the configured or bundled file."""
    if file_path is None:
        from config.settings import get_settings
        file_path = get_settings().kpi_targets_file or DEFAULT_CONFIG_PATH

    return _load_cached(str(Path(file_path).resolve()))


def default_engine_config() -> EngineConfig:
    """The bundled configuration, independent of environment settings."""
    return _load_cached(str(DEFAULT_CONFIG_PATH.resolve()))
