"""24-hour risk forecast from hourly weather projections."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime

from mrisk.domains.migraine.domain_logic.feature_extractor import FeatureExtractor, naive_local
from mrisk.domains.migraine.domain_logic.model_lifecycle import ModelLifecycleController
from mrisk.domains.migraine.domain_logic.risk_models import (
    DailyCheckIn,
    EpisodeRecord,
    ForecastHour,
    HealthSnapshot,
    HourlyForecastPoint,
)
from mrisk.domains.migraine.domain_logic.rule_scorer import RuleBasedScorer, top_factors

logger = logging.getLogger(__name__)

FORECAST_HOURS = 24
GENERAL_FACTOR = "General"


class ForecastGenerator:
    """Scores each upcoming forecast hour through the current prediction path.

    Reads the lifecycle controller's model but never changes its status or
    starts training; a model error on one hour falls back to the rule-based
    score for that hour only.
    """

    def __init__(
        self,
        extractor: FeatureExtractor | None = None,
        scorer: RuleBasedScorer | None = None,
        controller: ModelLifecycleController | None = None,
    ) -> None:
        self._extractor = extractor or FeatureExtractor()
        self._scorer = scorer or RuleBasedScorer()
        self._controller = controller

    def generate(
        self,
        history: Sequence[EpisodeRecord],
        forecast_hours: Iterable[ForecastHour],
        health: HealthSnapshot | None = None,
        check_in: DailyCheckIn | None = None,
        *,
        now: datetime | None = None,
        recent_check_ins: Sequence[DailyCheckIn] = (),
    ) -> list[HourlyForecastPoint]:
        if not history:
            return []

        ref = naive_local(now) if now is not None else datetime.now()
        current_hour = ref.replace(minute=0, second=0, microsecond=0)
        upcoming = sorted(
            (h for h in forecast_hours if naive_local(h.date) >= current_hour),
            key=lambda h: naive_local(h.date),
        )[:FORECAST_HOURS]

        model = self._controller.model if self._controller is not None else None

        points: list[HourlyForecastPoint] = []
        for hour in upcoming:
            features = self._extractor.extract(
                history,
                weather=hour.as_snapshot(),
                health=health,
                check_in=check_in,
                now=hour.date,
                recent_check_ins=recent_check_ins,
            )
            scored = self._scorer.score(features.candidates)
            risk = scored.overall_risk
            if model is not None:
                try:
                    risk = model.predict_probability(features.vector)
                except Exception as exc:
                    logger.debug("Model prediction failed for %s, using rules: %s", hour.date, exc)

            leading = top_factors(scored.factors, limit=1)
            points.append(
                HourlyForecastPoint(
                    hour=hour.hour,
                    risk=risk,
                    timestamp=hour.date,
                    primary_factor=leading[0].name if leading else GENERAL_FACTOR,
                )
            )
        return points
