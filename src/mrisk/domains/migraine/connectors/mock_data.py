"""Mock weather and wearable data for development and testing.

The mock day is deliberately unremarkable: mild weather with a small
pressure drift, a slightly short night and ordinary heart metrics. Risk
computed from it should land in the low-to-moderate band.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from mrisk.domains.migraine.domain_logic.risk_models import (
    ForecastHour,
    HealthSnapshot,
    WeatherSnapshot,
)

BASE_PRESSURE_HPA = 1013.0


def get_mock_weather(now: datetime | None = None) -> WeatherSnapshot:
    """Return mock current conditions."""
    now = now or datetime.now()
    return WeatherSnapshot(
        timestamp=now.replace(minute=0, second=0, microsecond=0),
        temperature=18.5,
        pressure=BASE_PRESSURE_HPA - 1.5,
        pressure_change_24h=-1.5,
        precipitation=0.0,
        condition_code=2,  # partly cloudy
    )


def get_mock_forecast(now: datetime | None = None, hours: int = 48) -> list[ForecastHour]:
    """Return mock hourly projections starting at the current hour.

    Pressure falls through the first day (a passing front) and recovers,
    with light rain around the trough.
    """
    start = (now or datetime.now()).replace(minute=0, second=0, microsecond=0)
    forecast = []
    for offset in range(hours):
        moment = start + timedelta(hours=offset)
        drift = -4.0 * math.sin(math.pi * min(offset, 36) / 36)
        raining = 14 <= offset <= 22
        forecast.append(
            ForecastHour(
                date=moment,
                hour=moment.hour,
                temperature=round(16 + 4 * math.sin(2 * math.pi * (moment.hour - 9) / 24), 1),
                pressure=round(BASE_PRESSURE_HPA + drift, 1),
                pressure_change_24h=round(drift, 1),
                precipitation=0.6 if raining else 0.0,
                condition_code=61 if raining else 3,
            )
        )
    return forecast


def get_mock_health(now: datetime | None = None) -> HealthSnapshot:
    """Return a mock wearable snapshot."""
    return HealthSnapshot(
        captured_at=now or datetime.now(),
        sleep_hours=6.8,
        hrv_ms=42.0,
        resting_heart_rate=68.0,
        steps=6200,
    )
