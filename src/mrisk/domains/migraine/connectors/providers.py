"""Concrete provider implementations."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta

from mrisk.core.storage.repository import HealthLogRepository
from mrisk.domains.migraine.connectors.mock_data import (
    get_mock_forecast,
    get_mock_health,
    get_mock_weather,
)
from mrisk.domains.migraine.domain_logic.risk_models import (
    DailyCheckIn,
    ForecastHour,
    HealthSnapshot,
    WeatherSnapshot,
)

logger = logging.getLogger(__name__)


class MockWeatherProvider:
    """Uses mock weather generators. Always available."""

    def __init__(self, clock: Callable[[], datetime] = datetime.now) -> None:
        self._clock = clock

    async def fetch_forecast(self, latitude: float, longitude: float) -> list[ForecastHour]:
        return get_mock_forecast(self._clock())

    async def current_snapshot(self) -> WeatherSnapshot | None:
        return get_mock_weather(self._clock())


class MockHealthProvider:
    """Uses the mock wearable snapshot. Needs no permission, so place it
    last in a composite to keep it the fallback."""

    def __init__(self, clock: Callable[[], datetime] = datetime.now) -> None:
        self._clock = clock

    def is_authorized(self) -> bool:
        return True

    async def latest_snapshot(self) -> HealthSnapshot | None:
        return get_mock_health(self._clock())

    @property
    def data_source(self) -> str:
        return "mock"


class RepositoryCheckInStore:
    """CheckInStore backed by the encrypted health log."""

    def __init__(
        self,
        repository: HealthLogRepository,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._repo = repository
        self._today = today

    def load_today(self) -> DailyCheckIn | None:
        return self._repo.get_check_in(self._today())

    def save(self, check_in: DailyCheckIn) -> None:
        self._repo.save_check_in(check_in)
        logger.info("Saved daily check-in for %s", check_in.day.isoformat())

    def load_recent(self, days: int) -> list[DailyCheckIn]:
        since = self._today() - timedelta(days=max(0, days))
        return self._repo.list_check_ins(since=since)
