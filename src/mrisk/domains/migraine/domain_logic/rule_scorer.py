"""Rule-based scoring, factor ranking and confidence estimation.

The rule-based path is the fallback for every user: it needs no training
data and is fully deterministic. Each candidate's raw score is weighted by
the factor's cap and the weighted contributions are summed.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from mrisk.domains.migraine.domain_logic.feature_extractor import FactorCandidate
from mrisk.domains.migraine.domain_logic.risk_models import (
    CONFIDENCE_CEILING,
    FACTOR_CAPS,
    FACTOR_NAMES,
    HISTORY_SATURATION,
    TOP_FACTOR_LIMIT,
    RiskFactor,
)

# Confidence weights for data completeness
CONFIDENCE_BASE = 0.10
CONFIDENCE_HISTORY = 0.40
CONFIDENCE_WEATHER = 0.15
CONFIDENCE_HEALTH = 0.15
CONFIDENCE_CHECK_IN = 0.10

# Model-path blend of completeness and hold-out calibration
MODEL_COMPLETENESS_WEIGHT = 0.6
MODEL_CALIBRATION_WEIGHT = 0.4


def _clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    """Clamp a value to [lo, hi]."""
    return max(lo, min(hi, value))


@dataclass(frozen=True)
class ScoredFactors:
    overall_risk: float
    factors: list[RiskFactor] = field(default_factory=list)


class RuleBasedScorer:
    """Weighted sum of capped factor contributions."""

    def __init__(self, caps: dict[str, float] | None = None) -> None:
        self._caps = dict(caps or FACTOR_CAPS)

    def weigh(self, candidate: FactorCandidate) -> RiskFactor | None:
        """Convert a candidate into a RiskFactor, or None for unknown ids."""
        cap = self._caps.get(candidate.id)
        if cap is None:
            return None
        return RiskFactor(
            id=candidate.id,
            name=FACTOR_NAMES.get(candidate.id, candidate.id),
            contribution=_clamp(candidate.raw) * cap,
            cap=cap,
            explanation=candidate.explanation,
            source=candidate.source,
        )

    def score(self, candidates: Iterable[FactorCandidate]) -> ScoredFactors:
        factors = [f for f in (self.weigh(c) for c in candidates) if f is not None]
        total = sum(f.contribution for f in factors)
        return ScoredFactors(overall_risk=_clamp(total), factors=factors)


def top_factors(factors: Iterable[RiskFactor], limit: int = TOP_FACTOR_LIMIT) -> list[RiskFactor]:
    """Up to ``limit`` non-zero factors by descending contribution, ties by id."""
    ranked = sorted(
        (f for f in factors if f.contribution > 0),
        key=lambda f: (-f.contribution, f.id),
    )
    return ranked[:limit]


def completeness_confidence(
    history_count: int,
    has_weather: bool,
    has_health: bool,
    has_check_in: bool,
) -> float:
    """Confidence from how much data backs the estimate.

    Grows with history length until HISTORY_SATURATION episodes and with
    each present context source, capped at CONFIDENCE_CEILING.
    """
    confidence = CONFIDENCE_BASE
    confidence += CONFIDENCE_HISTORY * min(1.0, max(0, history_count) / HISTORY_SATURATION)
    if has_weather:
        confidence += CONFIDENCE_WEATHER
    if has_health:
        confidence += CONFIDENCE_HEALTH
    if has_check_in:
        confidence += CONFIDENCE_CHECK_IN
    return min(confidence, CONFIDENCE_CEILING)


def model_confidence(completeness: float, calibration: float) -> float:
    """Blend data completeness with the model's hold-out calibration."""
    blended = MODEL_COMPLETENESS_WEIGHT * completeness + MODEL_CALIBRATION_WEIGHT * calibration
    return _clamp(blended, 0.0, CONFIDENCE_CEILING)
