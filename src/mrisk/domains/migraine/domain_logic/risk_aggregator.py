"""Risk aggregation: the single entry point for scoring and forecasting.

Chooses between the rule-based scorer and the personalized model based on
the lifecycle controller's status, attaches confidence, factor attribution
and recommendations, and publishes the result to listeners and the
companion device.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

from mrisk.domains.migraine.connectors import (
    CheckInStore,
    CompanionChannel,
    HealthMetricsProvider,
    WeatherProvider,
)
from mrisk.domains.migraine.domain_logic.feature_extractor import FeatureExtractor, naive_local
from mrisk.domains.migraine.domain_logic.forecast import ForecastGenerator
from mrisk.domains.migraine.domain_logic.model_lifecycle import ModelLifecycleController
from mrisk.domains.migraine.domain_logic.recommendations import build_recommendations
from mrisk.domains.migraine.domain_logic.risk_models import (
    TOP_FACTOR_LIMIT,
    DailyCheckIn,
    EpisodeRecord,
    ForecastHour,
    HealthSnapshot,
    HourlyForecastPoint,
    ModelStatus,
    PredictionSource,
    RiskLevel,
    RiskScore,
    WeatherSnapshot,
)
from mrisk.domains.migraine.domain_logic.rule_scorer import (
    RuleBasedScorer,
    completeness_confidence,
    model_confidence,
    top_factors,
)

logger = logging.getLogger(__name__)

TRAINING_CHECK_IN_DAYS = 365
RECENT_CHECK_IN_DAYS = 7


class RiskAggregator:
    """Computes RiskScores and hourly forecasts for one user profile."""

    def __init__(
        self,
        controller: ModelLifecycleController | None = None,
        extractor: FeatureExtractor | None = None,
        scorer: RuleBasedScorer | None = None,
        *,
        history_source: Callable[[], Sequence[EpisodeRecord]] | None = None,
        weather_provider: WeatherProvider | None = None,
        health_provider: HealthMetricsProvider | None = None,
        check_in_store: CheckInStore | None = None,
        companion: CompanionChannel | None = None,
        latitude: float = 40.7128,
        longitude: float = -74.0060,
        refresh_interval: timedelta = timedelta(minutes=5),
        top_factor_limit: int = TOP_FACTOR_LIMIT,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._clock = clock
        self._controller = controller or ModelLifecycleController(clock=clock)
        self._extractor = extractor or FeatureExtractor()
        self._scorer = scorer or RuleBasedScorer()
        self._forecaster = ForecastGenerator(self._extractor, self._scorer, self._controller)
        self._history_source = history_source
        self._weather_provider = weather_provider
        self._health_provider = health_provider
        self._check_in_store = check_in_store
        self._companion = companion
        self._latitude = latitude
        self._longitude = longitude
        self._refresh_interval = refresh_interval
        self._top_factor_limit = top_factor_limit

        self._current_risk: RiskScore | None = None
        self._hourly_forecast: list[HourlyForecastPoint] = []
        self._is_calculating = False
        self._last_refresh: datetime | None = None
        self._listeners: list[Callable[[RiskScore], None]] = []
        self.unavailable_sources: set[str] = set()

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def current_risk(self) -> RiskScore | None:
        return self._current_risk

    @property
    def hourly_forecast(self) -> list[HourlyForecastPoint]:
        return list(self._hourly_forecast)

    @property
    def is_calculating(self) -> bool:
        return self._is_calculating

    @property
    def model_status(self) -> ModelStatus:
        return self._controller.status

    @property
    def controller(self) -> ModelLifecycleController:
        return self._controller

    @property
    def last_refresh(self) -> datetime | None:
        return self._last_refresh

    def add_listener(self, callback: Callable[[RiskScore], None]) -> None:
        self._listeners.append(callback)

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    async def calculate_risk_score(
        self,
        history: Sequence[EpisodeRecord],
        weather: WeatherSnapshot | None = None,
        health: HealthSnapshot | None = None,
        check_in: DailyCheckIn | None = None,
        *,
        now: datetime | None = None,
        recent_check_ins: Sequence[DailyCheckIn] = (),
    ) -> RiskScore:
        """Score the current risk. Always returns a RiskScore."""
        self._is_calculating = True
        try:
            score = await self._calculate(
                list(history), weather, health, check_in,
                naive_local(now) if now is not None else self._clock(),
                recent_check_ins,
            )
        finally:
            self._is_calculating = False

        self._publish(score)
        return score

    async def _calculate(
        self,
        history: list[EpisodeRecord],
        weather: WeatherSnapshot | None,
        health: HealthSnapshot | None,
        check_in: DailyCheckIn | None,
        now: datetime,
        recent_check_ins: Sequence[DailyCheckIn],
    ) -> RiskScore:
        # Scoring uses the status as it was when the call began
        status = self._controller.status
        model = self._controller.model

        if self._controller.should_train(len(history)):
            await self._controller.evaluate(history, self._training_check_ins())

        features = self._extractor.extract(
            history, weather, health, check_in,
            now=now, recent_check_ins=recent_check_ins,
        )
        scored = self._scorer.score(features.candidates)
        completeness = completeness_confidence(
            len(history),
            has_weather="weather" in features.sources,
            has_health="health" in features.sources,
            has_check_in="check_in" in features.sources,
        )

        overall = scored.overall_risk
        confidence = completeness
        source = PredictionSource.RULE_BASED
        if status.is_active and model is not None:
            try:
                overall = model.predict_probability(features.vector)
                confidence = model_confidence(completeness, model.calibration_confidence)
                source = PredictionSource.PERSONALIZED_MODEL
            except Exception as exc:
                self._controller.mark_failed(str(exc))
                overall = scored.overall_risk

        ranked = top_factors(scored.factors, limit=self._top_factor_limit)
        return RiskScore(
            overall_risk=overall,
            risk_level=RiskLevel.from_risk(overall),
            confidence=confidence,
            prediction_source=source,
            top_factors=ranked,
            factors=scored.factors,
            recommendations=build_recommendations(ranked, has_history=bool(history)),
            timestamp=now,
        )

    def _training_check_ins(self) -> list[DailyCheckIn]:
        if self._check_in_store is None:
            return []
        try:
            return self._check_in_store.load_recent(TRAINING_CHECK_IN_DAYS)
        except Exception as exc:
            logger.warning("Check-in store unavailable for training: %s", exc)
            return []

    def _publish(self, score: RiskScore) -> None:
        self._current_risk = score
        for callback in self._listeners:
            try:
                callback(score)
            except Exception:
                logger.exception("Risk score listener failed")
        if self._companion is None:
            return
        try:
            self._companion.send_risk_score(score)
        except Exception as exc:
            logger.warning("Companion push failed: %s", exc)

    # ------------------------------------------------------------------
    # Forecast
    # ------------------------------------------------------------------

    async def generate_24_hour_forecast(
        self,
        history: Sequence[EpisodeRecord],
        forecast_hours: Sequence[ForecastHour],
        health: HealthSnapshot | None = None,
        check_in: DailyCheckIn | None = None,
        *,
        now: datetime | None = None,
        recent_check_ins: Sequence[DailyCheckIn] = (),
    ) -> list[HourlyForecastPoint]:
        """Hourly risk for the upcoming 24 forecast hours."""
        points = self._forecaster.generate(
            list(history), forecast_hours, health, check_in,
            now=now if now is not None else self._clock(),
            recent_check_ins=recent_check_ins,
        )
        self._hourly_forecast = points
        return points

    # ------------------------------------------------------------------
    # Provider-driven refresh
    # ------------------------------------------------------------------

    async def refresh(self, force: bool = False) -> RiskScore | None:
        """Gather inputs from the providers, then score and forecast.

        Throttled to once per refresh interval unless forced. A provider
        that fails is logged, listed in ``unavailable_sources`` and treated
        as absent for this refresh.
        """
        now = self._clock()
        if (
            not force
            and self._last_refresh is not None
            and self._current_risk is not None
            and now - self._last_refresh < self._refresh_interval
        ):
            return self._current_risk

        unavailable: set[str] = set()

        history: list[EpisodeRecord] = []
        if self._history_source is not None:
            try:
                history = list(self._history_source())
            except Exception as exc:
                logger.warning("Episode history unavailable: %s", exc)
                unavailable.add("history")

        weather = None
        forecast_hours: list[ForecastHour] = []
        if self._weather_provider is not None:
            try:
                weather = await self._weather_provider.current_snapshot()
                forecast_hours = await self._weather_provider.fetch_forecast(
                    self._latitude, self._longitude
                )
            except Exception as exc:
                logger.warning("Weather provider failed: %s", exc)
                unavailable.add("weather")

        health = None
        if self._health_provider is not None:
            try:
                if self._health_provider.is_authorized():
                    health = await self._health_provider.latest_snapshot()
            except Exception as exc:
                logger.warning("Health provider failed: %s", exc)
                unavailable.add("health")

        check_in = None
        recent: list[DailyCheckIn] = []
        if self._check_in_store is not None:
            try:
                check_in = self._check_in_store.load_today()
                recent = self._check_in_store.load_recent(RECENT_CHECK_IN_DAYS)
            except Exception as exc:
                logger.warning("Check-in store failed: %s", exc)
                unavailable.add("check_in")

        self.unavailable_sources = unavailable
        self._last_refresh = now

        score = await self.calculate_risk_score(
            history, weather, health, check_in, now=now, recent_check_ins=recent,
        )
        await self.generate_24_hour_forecast(
            history, forecast_hours, health, check_in, now=now, recent_check_ins=recent,
        )
        return score
