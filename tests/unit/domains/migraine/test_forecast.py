"""Tests for the 24-hour ForecastGenerator."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import numpy as np
import pytest

from mrisk.domains.migraine.domain_logic.forecast import ForecastGenerator
from mrisk.domains.migraine.domain_logic.model_lifecycle import ModelLifecycleController
from mrisk.domains.migraine.domain_logic.model_trainer import TrainedModel, TrainingResult
from mrisk.domains.migraine.domain_logic.risk_models import (
    EpisodeRecord,
    ForecastHour,
    ModelState,
)

NOW = datetime(2026, 3, 18, 8, 30)


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _hour(offset: int, delta: float = 0.0, **kwargs) -> ForecastHour:
    at = NOW.replace(minute=0) + timedelta(hours=offset)
    return ForecastHour(
        date=at, hour=at.hour, temperature=11.0,
        pressure=1013.0 + delta, pressure_change_24h=delta, **kwargs,
    )


def _history(*days_ago: float) -> list[EpisodeRecord]:
    return [
        EpisodeRecord(start=NOW - timedelta(days=d), end=NOW - timedelta(days=d, hours=-3), severity=5)
        for d in sorted(days_ago, reverse=True)
    ]


class CountingTrainer:
    def __init__(self) -> None:
        self.calls = 0

    def train(self, history, check_ins=(), *, progress=None):
        self.calls += 1
        raise AssertionError("forecast must not train")


class HalfEstimator:
    def predict_proba(self, rows):
        return np.array([[0.5, 0.5]] * len(rows))


@pytest.fixture
def generator() -> ForecastGenerator:
    return ForecastGenerator()


class TestWindow:
    def test_empty_history_yields_empty_forecast(self, generator):
        assert generator.generate([], [_hour(h) for h in range(24)], now=NOW) == []

    def test_drops_past_hours_and_caps_at_24(self, generator):
        hours = [_hour(h) for h in range(-5, 40)]
        points = generator.generate(_history(30, 10), hours, now=NOW)
        assert len(points) == 24
        # The current hour is included even though it started 30 minutes ago
        assert points[0].timestamp == NOW.replace(minute=0)
        assert points[0].hour == 8

    def test_unsorted_input_is_ordered(self, generator):
        hours = [_hour(h) for h in (5, 1, 3, 2, 4)]
        points = generator.generate(_history(30, 10), hours, now=NOW)
        assert [p.timestamp for p in points] == sorted(p.timestamp for p in points)

    def test_fewer_hours_than_window(self, generator):
        points = generator.generate(_history(10), [_hour(h) for h in range(6)], now=NOW)
        assert len(points) == 6


class TestRisk:
    def test_risk_rises_with_pressure_change(self, generator):
        # All hours fall on the same day so history-derived factors stay fixed
        hours = [_hour(h, delta=float(h)) for h in range(0, 12)]
        points = generator.generate(_history(60, 30), hours, now=NOW)
        risks = [p.risk for p in points]
        assert risks == sorted(risks)
        assert risks[-1] > risks[0]
        assert all(0.0 <= r <= 1.0 for r in risks)

    def test_risk_rises_with_pressure_inside_a_time_bucket(self, generator):
        # Three mid-morning episodes switch on the time-of-day factor; hours
        # 09-11 share one 3-hour bucket, so only pressure varies between them
        history = [EpisodeRecord(start=datetime(2026, 2, d, 10, 0), severity=5) for d in (6, 7, 8)]
        hours = [_hour(h, delta=float(h)) for h in (1, 2, 3)]
        risks = [p.risk for p in generator.generate(history, hours, now=NOW)]
        assert risks == sorted(risks)
        assert risks[-1] > risks[0]

    def test_time_of_day_steps_at_bucket_boundaries(self, generator):
        # 08:00 is in the 06-09 bucket, 09:00-11:00 in the episodes' bucket,
        # 12:00 in the next one. Risk is flat within a bucket and steps at edges.
        history = [EpisodeRecord(start=datetime(2026, 2, d, 10, 0), severity=5) for d in (6, 7, 8)]
        hours = [_hour(h) for h in range(5)]
        risks = [p.risk for p in generator.generate(history, hours, now=NOW)]
        assert risks[1:4] == pytest.approx([risks[1]] * 3)
        assert risks[1] == pytest.approx(risks[0] + 0.08)
        assert risks[4] == pytest.approx(risks[0])

    def test_primary_factor_general_when_nothing_contributes(self, generator):
        points = generator.generate(_history(10), [_hour(1, delta=0.0)], now=NOW)
        assert points[0].primary_factor == "General"

    def test_primary_factor_names_leading_factor(self, generator):
        points = generator.generate(_history(10), [_hour(1, delta=-8.0)], now=NOW)
        assert points[0].primary_factor == "Barometric Pressure Change"

    def test_rain_hours_score_higher(self, generator):
        dry = generator.generate(_history(10), [_hour(2)], now=NOW)[0]
        wet = generator.generate(_history(10), [_hour(2, precipitation=1.2, condition_code=61)], now=NOW)[0]
        assert wet.risk > dry.risk


class TestModelInteraction:
    def test_forecast_never_starts_training(self):
        trainer = CountingTrainer()
        controller = ModelLifecycleController(trainer, clock=lambda: NOW)
        generator = ForecastGenerator(controller=controller)
        history = [
            EpisodeRecord(start=NOW - timedelta(days=2 * i + 1), severity=5) for i in range(25)
        ]
        points = generator.generate(history, [_hour(h) for h in range(24)], now=NOW)
        assert len(points) == 24
        assert trainer.calls == 0
        assert controller.status.state is ModelState.RULE_BASED

    def test_uses_active_model(self):
        class Trainer:
            def train(self, history, check_ins=(), *, progress=None):
                model = TrainedModel(
                    estimator=HalfEstimator(), calibration_confidence=0.8,
                    trained_at=NOW, episode_count=len(history),
                )
                return TrainingResult(
                    model=model, rows=40, positive_days=10,
                    brier_score=0.1, baseline_brier_score=0.2, skill=0.5,
                )

        controller = ModelLifecycleController(Trainer(), clock=lambda: NOW)
        history = [
            EpisodeRecord(start=NOW - timedelta(days=2 * i + 1), severity=5) for i in range(25)
        ]

        async def train():
            await controller.evaluate(history)
            await controller.wait_for_training()

        _run(train())

        points = ForecastGenerator(controller=controller).generate(
            history, [_hour(h, delta=-10.0) for h in range(3)], now=NOW,
        )
        assert [p.risk for p in points] == [0.5, 0.5, 0.5]
        assert controller.status.is_active
