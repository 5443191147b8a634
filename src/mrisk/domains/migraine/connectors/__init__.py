"""Migraine data connectors: abstraction layer for context inputs and outputs."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from mrisk.domains.migraine.domain_logic.risk_models import (
    DailyCheckIn,
    ForecastHour,
    HealthSnapshot,
    RiskScore,
    WeatherSnapshot,
)


@runtime_checkable
class WeatherProvider(Protocol):
    """Current conditions and hourly forecast for a location.

    Either method may raise on network or decoding failure; the risk
    aggregator treats that as weather being unavailable.
    """

    async def fetch_forecast(self, latitude: float, longitude: float) -> list[ForecastHour]:
        """Hourly projections, starting at or before the current hour."""
        ...

    async def current_snapshot(self) -> WeatherSnapshot | None:
        """Latest observed conditions, or None when none are known."""
        ...


@runtime_checkable
class HealthMetricsProvider(Protocol):
    """Wearable health metrics. Authorization is the provider's concern."""

    def is_authorized(self) -> bool:
        ...

    async def latest_snapshot(self) -> HealthSnapshot | None:
        """Most recent metrics, or None when nothing has been recorded."""
        ...

    @property
    def data_source(self) -> str:
        """Label for the active data source, e.g. 'wearable' or 'mock'."""
        ...


@runtime_checkable
class CheckInStore(Protocol):
    """Daily self-reported state, at most one entry per calendar day."""

    def load_today(self) -> DailyCheckIn | None:
        ...

    def save(self, check_in: DailyCheckIn) -> None:
        """Insert, or overwrite the entry for the same day."""
        ...

    def load_recent(self, days: int) -> list[DailyCheckIn]:
        """Entries from the last ``days`` days, oldest first."""
        ...


@runtime_checkable
class CompanionChannel(Protocol):
    """Push channel to a companion device such as a watch."""

    def send_risk_score(self, score: RiskScore) -> None:
        ...
