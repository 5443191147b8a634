"""Model lifecycle state machine.

One controller per user profile. It decides when a personalized model
should be (re)trained, runs at most one training task at a time, and owns
the ModelStatus value that scoring reads.

    ruleBased ──(history >= threshold)──> trainingModel
    trainingModel ──> trainingModel (progress) | modelActive | modelFailed
    modelActive ──(enough new episodes, or stale)──> trainingModel
    modelActive ──(prediction error)──> modelFailed
    modelFailed ──(cooldown elapsed)──> trainingModel

All status writes happen on the event loop. Progress reported from the
training thread is marshalled back with ``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any, Protocol, runtime_checkable

from mrisk.domains.migraine.domain_logic.model_trainer import (
    ModelTrainer,
    TrainedModel,
    TrainingError,
)
from mrisk.domains.migraine.domain_logic.risk_models import (
    DailyCheckIn,
    EpisodeRecord,
    ModelState,
    ModelStatus,
)

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS: dict[ModelState, frozenset[ModelState]] = {
    ModelState.RULE_BASED: frozenset({ModelState.TRAINING_MODEL}),
    ModelState.TRAINING_MODEL: frozenset({
        ModelState.TRAINING_MODEL,
        ModelState.MODEL_ACTIVE,
        ModelState.MODEL_FAILED,
    }),
    ModelState.MODEL_ACTIVE: frozenset({ModelState.TRAINING_MODEL, ModelState.MODEL_FAILED}),
    ModelState.MODEL_FAILED: frozenset({ModelState.TRAINING_MODEL}),
}


class InvalidTransitionError(Exception):
    """Raised on a ModelStatus change the state machine does not allow."""


@runtime_checkable
class ModelStateStore(Protocol):
    """Persists training bookkeeping across restarts."""

    def load_model_state(self) -> dict[str, Any] | None:
        ...

    def save_model_state(self, state: dict[str, Any]) -> None:
        ...


class ModelLifecycleController:
    """Owns ModelStatus and the background training task."""

    def __init__(
        self,
        trainer: ModelTrainer | None = None,
        *,
        min_entries: int = 20,
        retrain_new_episodes: int = 10,
        retrain_interval: timedelta = timedelta(days=7),
        failure_cooldown: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = datetime.now,
        state_store: ModelStateStore | None = None,
    ) -> None:
        self._trainer = trainer or ModelTrainer(clock=clock)
        self._min_entries = min_entries
        self._retrain_new_episodes = retrain_new_episodes
        self._retrain_interval = retrain_interval
        self._failure_cooldown = failure_cooldown
        self._clock = clock
        self._state_store = state_store

        self._status = ModelStatus.rule_based()
        self._model: TrainedModel | None = None
        self._task: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self._listeners: list[Callable[[ModelStatus], None]] = []
        self.transitions: list[tuple[ModelState, ModelState]] = []

        self._last_trained_at: datetime | None = None
        self._episodes_at_training = 0
        self._last_failed_at: datetime | None = None
        self._load_state()

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def status(self) -> ModelStatus:
        return self._status

    @property
    def model(self) -> TrainedModel | None:
        """The active model, or None unless status is modelActive."""
        return self._model if self._status.is_active else None

    @property
    def is_training(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_failed_at(self) -> datetime | None:
        return self._last_failed_at

    def add_listener(self, callback: Callable[[ModelStatus], None]) -> None:
        self._listeners.append(callback)

    def should_train(self, history_count: int) -> bool:
        """Whether the current state and history call for a training run."""
        state = self._status.state
        if state is ModelState.TRAINING_MODEL or self.is_training:
            return False
        if history_count < self._min_entries:
            return False
        if state is ModelState.RULE_BASED:
            return self._cooldown_elapsed()
        if state is ModelState.MODEL_FAILED:
            return self._last_failed_at is None or self._cooldown_elapsed()
        # Active: retrain on enough new data or a stale model
        new_episodes = history_count - self._episodes_at_training
        if new_episodes >= self._retrain_new_episodes:
            return True
        if self._last_trained_at is None or new_episodes < 1:
            return False
        return self._clock() - self._last_trained_at >= self._retrain_interval

    async def evaluate(
        self,
        history: Sequence[EpisodeRecord],
        check_ins: Sequence[DailyCheckIn] = (),
    ) -> bool:
        """Start a background training task if one is due.

        Returns True when a task was started. Triggers arriving while a task
        is running are ignored.
        """
        async with self._lock:
            if not self.should_train(len(history)):
                return False
            self._transition(ModelStatus.training(0.0))
            self._task = asyncio.create_task(
                self._run_training(list(history), list(check_ins))
            )
            logger.info("Started personalized model training on %d episodes", len(history))
            return True

    async def wait_for_training(self) -> None:
        """Wait for the running training task, if any."""
        task = self._task
        if task is not None and not task.done():
            await task

    async def close(self) -> None:
        """Cancel a running training task."""
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def mark_failed(self, reason: str) -> None:
        """Record a failure of the active model observed during prediction."""
        if not self._status.is_active:
            return
        logger.warning("Personalized model failed during prediction: %s", reason)
        self._fail()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, new_status: ModelStatus) -> None:
        old_state = self._status.state
        if new_status.state not in _ALLOWED_TRANSITIONS[old_state]:
            raise InvalidTransitionError(
                f"Cannot move from {old_state.value} to {new_status.state.value}"
            )
        self._status = new_status
        self.transitions.append((old_state, new_status.state))
        for callback in self._listeners:
            try:
                callback(new_status)
            except Exception:
                logger.exception("Model status listener failed")

    def _apply_progress(self, value: float) -> None:
        # Late progress after completion is dropped.
        if self._status.is_training:
            self._transition(ModelStatus.training(value))

    def _cooldown_elapsed(self) -> bool:
        if self._last_failed_at is None:
            return True
        return self._clock() - self._last_failed_at >= self._failure_cooldown

    def _fail(self) -> None:
        self._transition(ModelStatus.failed())
        self._model = None
        self._last_failed_at = self._clock()
        self._save_state()

    async def _run_training(
        self,
        history: list[EpisodeRecord],
        check_ins: list[DailyCheckIn],
    ) -> None:
        loop = asyncio.get_running_loop()

        def progress(value: float) -> None:
            loop.call_soon_threadsafe(self._apply_progress, value)

        try:
            result = await asyncio.to_thread(
                self._trainer.train, history, check_ins, progress=progress
            )
        except TrainingError as exc:
            logger.warning("Personalized model training failed: %s", exc)
            async with self._lock:
                self._fail()
            return
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Unexpected error while training personalized model")
            async with self._lock:
                self._fail()
            return

        async with self._lock:
            self._model = result.model
            self._episodes_at_training = len(history)
            self._last_trained_at = result.model.trained_at
            self._transition(ModelStatus.active(result.calibration_confidence))
            self._save_state()
        logger.info(
            "Personalized model active (calibration confidence %.2f)",
            result.calibration_confidence,
        )

    def _load_state(self) -> None:
        if self._state_store is None:
            return
        state = self._state_store.load_model_state()
        if not state:
            return
        self._last_trained_at = _parse_time(state.get("last_trained_at"))
        self._last_failed_at = _parse_time(state.get("last_failed_at"))
        self._episodes_at_training = int(state.get("episodes_at_training") or 0)

    def _save_state(self) -> None:
        if self._state_store is None:
            return
        self._state_store.save_model_state({
            "last_trained_at": self._last_trained_at.isoformat() if self._last_trained_at else None,
            "last_failed_at": self._last_failed_at.isoformat() if self._last_failed_at else None,
            "episodes_at_training": self._episodes_at_training,
        })


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)
