"""Tests for the CompositeHealthProvider."""

from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from mrisk.domains.migraine.connectors import HealthMetricsProvider
from mrisk.domains.migraine.connectors.composite import CompositeHealthProvider
from mrisk.domains.migraine.connectors.providers import MockHealthProvider
from mrisk.domains.migraine.domain_logic.risk_models import HealthSnapshot

NOW = datetime(2026, 3, 18, 7, 0)


def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class WearableProvider:
    """Authorized wearable with a fixed snapshot (or none)."""

    def __init__(self, snapshot: HealthSnapshot | None, authorized: bool = True) -> None:
        self._snapshot = snapshot
        self._authorized = authorized
        self.reads = 0

    def is_authorized(self):
        return self._authorized

    async def latest_snapshot(self):
        self.reads += 1
        return self._snapshot

    @property
    def data_source(self):
        return "wearable"


def _wearable_snapshot() -> HealthSnapshot:
    return HealthSnapshot(captured_at=NOW, sleep_hours=4.2, hrv_ms=28.0)


class TestPriorityOrdering:
    def test_first_provider_with_data_wins(self):
        composite = CompositeHealthProvider([
            WearableProvider(_wearable_snapshot()), MockHealthProvider(lambda: NOW),
        ])
        snapshot = _run(composite.latest_snapshot())
        assert snapshot.sleep_hours == 4.2

    def test_falls_through_when_first_has_nothing(self):
        composite = CompositeHealthProvider([
            WearableProvider(None), MockHealthProvider(lambda: NOW),
        ])
        snapshot = _run(composite.latest_snapshot())
        assert snapshot.sleep_hours == 6.8

    def test_unauthorized_provider_is_never_read(self):
        locked = WearableProvider(_wearable_snapshot(), authorized=False)
        composite = CompositeHealthProvider([locked, MockHealthProvider(lambda: NOW)])
        snapshot = _run(composite.latest_snapshot())
        assert snapshot.sleep_hours == 6.8
        assert locked.reads == 0

    def test_no_data_anywhere(self):
        composite = CompositeHealthProvider([WearableProvider(None)])
        assert _run(composite.latest_snapshot()) is None


class TestAuthorizationAndSource:
    def test_authorized_if_any_provider_is(self):
        composite = CompositeHealthProvider([
            WearableProvider(None, authorized=False), WearableProvider(None),
        ])
        assert composite.is_authorized() is True

    def test_unauthorized_if_none_are(self):
        composite = CompositeHealthProvider([WearableProvider(None, authorized=False)])
        assert composite.is_authorized() is False

    def test_data_source_of_first_authorized(self):
        composite = CompositeHealthProvider([
            WearableProvider(None, authorized=False), MockHealthProvider(lambda: NOW),
        ])
        assert composite.data_source == "mock"

    def test_data_source_falls_back_to_last(self):
        composite = CompositeHealthProvider([WearableProvider(None, authorized=False)])
        assert composite.data_source == "wearable"

    def test_requires_a_provider(self):
        with pytest.raises(ValueError, match="At least one"):
            CompositeHealthProvider([])

    def test_satisfies_protocol(self):
        composite = CompositeHealthProvider([MockHealthProvider()])
        assert isinstance(composite, HealthMetricsProvider)
