"""Andon escalation classification.

Tiers are checked from the highest level down and the first tier with any
matching trigger wins, so a signal set that crosses both the level-1 and
level-3 thresholds is reported at level 3 only.
"""

import logging
import math
from typing import Optional

from qms.schemas.escalation import EscalationDecision, EscalationTier, EscalationTrigger
from qms.schemas.kpi import EngineConfig


logger = logging.getLogger(__name__)

# (trigger, tier threshold attribute, signal key). Order sets the primary trigger.
TRIGGER_CHECKS: tuple[tuple[EscalationTrigger, str, str], ...] = (
    (EscalationTrigger.CONSECUTIVE_DEFECT, "consecutive_defects", "consecutive_defects"),
    (EscalationTrigger.REWORK_RATE, "rework_pct_per_hr", "rework_pct_per_hr"),
    (EscalationTrigger.LINE_STOP, "line_stop_minutes", "line_stop_minutes"),
)


def normalize_signal(value) -> float:
    """Map missing, negative or NaN signal values to 0."""
    if value is None:
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number) or number < 0:
        return 0
    return value if isinstance(value, int) else number


def _matched_triggers(tier: EscalationTier, signals: dict[str, float]) -> tuple[EscalationTrigger, ...]:
    matched = []
    for trigger, threshold_attr, signal_key in TRIGGER_CHECKS:
        threshold = getattr(tier, threshold_attr)
        if threshold is not None and signals[signal_key] >= threshold:
            matched.append(trigger)
    return tuple(matched)


class EscalationClassifier:
    """Map current signals of one line to the Andon tier that must respond."""

    def __init__(self, config: Optional[EngineConfig] = None):
        if config is None:
            from config.kpi_targets.loader import get_engine_config
            config = get_engine_config()
        self.config = config
        self.tiers: tuple[EscalationTier, ...] = tuple(
            sorted(config.escalation_tiers, key=lambda t: t.level, reverse=True)
        )

    def classify(
        self,
        consecutive_same_cause_defects: int,
        rework_rate_per_hour: float,
        line_stop_minutes: float,
    ) -> Optional[EscalationDecision]:
        """Return the escalation decision, or None when no tier is triggered."""
        signals = {
            "consecutive_defects": consecutive_same_cause_defects,
            "rework_pct_per_hr": rework_rate_per_hour,
            "line_stop_minutes": line_stop_minutes,
        }
        for tier in self.tiers:
            matched = _matched_triggers(tier, signals)
            if not matched:
                continue
            decision = EscalationDecision(
                tier=tier,
                triggered_by=matched[0],
                matched_triggers=matched,
                consecutive_defects=consecutive_same_cause_defects,
                rework_pct_per_hr=rework_rate_per_hour,
                line_stop_minutes=line_stop_minutes,
            )
            logger.debug(
                "Escalation level %d (%s) triggered by %s",
                tier.level, tier.label, ", ".join(t.value for t in matched),
            )
            return decision
        return None


_default_classifier: Optional[EscalationClassifier] = None


def classify_escalation(
    consecutive_same_cause_defects: int,
    rework_rate_per_hour: float,
    line_stop_minutes: float,
) -> Optional[EscalationDecision]:
    """Classify with the bundled default plant configuration."""
    global _default_classifier
    if _default_classifier is None:
        from config.kpi_targets.loader import default_engine_config
        _default_classifier = EscalationClassifier(default_engine_config())
    return _default_classifier.classify(
        consecutive_same_cause_defects, rework_rate_per_hour, line_stop_minutes
    )
