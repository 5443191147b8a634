"""Personalized model training.

Builds one labeled row per calendar day of the user's history and fits a
calibrated logistic regression on it. Training is synchronous and CPU bound;
the lifecycle controller runs it in a worker thread.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any

import numpy as np
from sklearn.calibration import CalibratedClassifierCV
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import brier_score_loss
from sklearn.model_selection import train_test_split
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from mrisk.domains.migraine.domain_logic.feature_extractor import (
    FeatureExtractor,
    FeatureVector,
    naive_local,
)
from mrisk.domains.migraine.domain_logic.risk_models import (
    CONFIDENCE_CEILING,
    DailyCheckIn,
    EpisodeRecord,
)

logger = logging.getLogger(__name__)

MIN_TRAINING_ROWS = 14
MIN_CLASS_DAYS = 5
CHECK_IN_LOOKBACK_DAYS = 7
LOGREG_MAX_ITER = 1000


class TrainingError(Exception):
    """Raised when a personalized model cannot be trained or has no skill."""


@dataclass(frozen=True)
class TrainedModel:
    """A fitted estimator plus what it was trained on."""

    estimator: Any
    calibration_confidence: float
    trained_at: datetime
    episode_count: int

    def predict_probability(self, vector: FeatureVector) -> float:
        """Probability of an episode starting within the next 24 hours."""
        row = vector.as_array().reshape(1, -1)
        probability = float(self.estimator.predict_proba(row)[0][1])
        if not math.isfinite(probability):
            raise ValueError("model produced a non-finite probability")
        return max(0.0, min(1.0, probability))


@dataclass(frozen=True)
class TrainingResult:
    model: TrainedModel
    rows: int
    positive_days: int
    brier_score: float
    baseline_brier_score: float
    skill: float

    @property
    def calibration_confidence(self) -> float:
        return self.model.calibration_confidence


class ModelTrainer:
    """Fits a per-user model from episode history and daily check-ins."""

    def __init__(
        self,
        extractor: FeatureExtractor | None = None,
        holdout_fraction: float = 0.25,
        random_seed: int = 7,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._extractor = extractor or FeatureExtractor()
        self._holdout_fraction = holdout_fraction
        self._random_seed = random_seed
        self._clock = clock

    # ------------------------------------------------------------------
    # Dataset
    # ------------------------------------------------------------------

    def build_dataset(
        self,
        history: Iterable[EpisodeRecord],
        check_ins: Iterable[DailyCheckIn] = (),
    ) -> tuple[np.ndarray, np.ndarray]:
        """One row per day from the first to the last episode day.

        Label is 1 when an episode starts during that day. Features see only
        episodes that started before the day, plus the day's own check-in.
        """
        episodes = sorted(history, key=lambda e: naive_local(e.start))
        if not episodes:
            raise TrainingError("No episodes to train on")

        by_day: dict[date, DailyCheckIn] = {c.day: c for c in check_ins}
        onset_days = {naive_local(e.start).date() for e in episodes}
        first_day = naive_local(episodes[0].start).date()
        last_day = naive_local(episodes[-1].start).date()

        rows: list[np.ndarray] = []
        labels: list[int] = []
        day = first_day
        while day <= last_day:
            day_start = datetime.combine(day, time.min)
            prior = [e for e in episodes if naive_local(e.start) < day_start]
            recent = [
                by_day[d]
                for d in (day - timedelta(days=n) for n in range(1, CHECK_IN_LOOKBACK_DAYS + 1))
                if d in by_day
            ]
            features = self._extractor.extract(
                prior,
                check_in=by_day.get(day),
                now=day_start,
                recent_check_ins=recent,
            )
            rows.append(features.vector.as_array())
            labels.append(1 if day in onset_days else 0)
            day += timedelta(days=1)

        return np.vstack(rows), np.asarray(labels, dtype=int)

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train(
        self,
        history: Sequence[EpisodeRecord],
        check_ins: Sequence[DailyCheckIn] = (),
        *,
        progress: Callable[[float], None] | None = None,
    ) -> TrainingResult:
        """Fit and validate a model. Raises TrainingError on any failure."""
        report = progress or (lambda _value: None)
        report(0.1)

        X, y = self.build_dataset(history, check_ins)
        positives = int(y.sum())
        negatives = int(len(y) - positives)
        if len(y) < MIN_TRAINING_ROWS:
            raise TrainingError(f"Too few training days: {len(y)}")
        if positives < MIN_CLASS_DAYS or negatives < MIN_CLASS_DAYS:
            raise TrainingError(
                f"Degenerate labels: {positives} migraine day(s), {negatives} clear day(s)"
            )
        report(0.4)

        X_train, X_test, y_train, y_test = train_test_split(
            X, y,
            test_size=self._holdout_fraction,
            stratify=y,
            random_state=self._random_seed,
        )
        min_class = int(min(y_train.sum(), len(y_train) - y_train.sum()))
        if min_class < 2:
            raise TrainingError("Not enough examples of each class after hold-out split")

        pipeline = Pipeline([
            ("scaler", StandardScaler()),
            ("logreg", LogisticRegression(max_iter=LOGREG_MAX_ITER)),
        ])
        estimator = CalibratedClassifierCV(pipeline, method="sigmoid", cv=min(3, min_class))

        # Runs in a worker thread: convergence is read from the fitted
        # solvers instead of changing the process-wide warning filters.
        try:
            estimator.fit(X_train, y_train)
            if not _converged(estimator):
                raise TrainingError(
                    f"Model did not converge within {LOGREG_MAX_ITER} iterations"
                )
            report(0.7)
            predicted = estimator.predict_proba(X_test)[:, 1]
        except (ValueError, FloatingPointError, np.linalg.LinAlgError) as exc:
            raise TrainingError(f"Numerical failure while fitting: {exc}") from exc

        if not np.all(np.isfinite(predicted)):
            raise TrainingError("Model produced non-finite probabilities")

        brier = float(brier_score_loss(y_test, predicted))
        base_rate = float(y_train.mean())
        baseline = float(np.mean((y_test - base_rate) ** 2))
        if baseline <= 0:
            raise TrainingError("Hold-out set has no variance")
        skill = 1.0 - brier / baseline
        if not math.isfinite(skill) or skill <= 0:
            raise TrainingError(f"Model shows no skill over the base rate (skill={skill:.3f})")
        report(0.9)

        calibration = max(0.0, min(CONFIDENCE_CEILING, 0.5 + 0.5 * skill))
        model = TrainedModel(
            estimator=estimator,
            calibration_confidence=calibration,
            trained_at=self._clock(),
            episode_count=len(history),
        )
        logger.info(
            "Trained personalized model on %d days (%d positive), brier=%.4f skill=%.3f",
            len(y), positives, brier, skill,
        )
        report(1.0)
        return TrainingResult(
            model=model,
            rows=len(y),
            positive_days=positives,
            brier_score=brier,
            baseline_brier_score=baseline,
            skill=skill,
        )


def _converged(estimator: CalibratedClassifierCV) -> bool:
    """Whether every cross-validated logistic regression reached a solution."""
    for calibrated in estimator.calibrated_classifiers_:
        logreg = calibrated.estimator.named_steps["logreg"]
        if np.any(logreg.n_iter_ >= logreg.max_iter):
            return False
    return True
