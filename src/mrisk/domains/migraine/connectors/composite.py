"""Composite health metrics provider: merges multiple sources with priority.

Priority order is the list order, e.g. wearable > mock. The first authorized
provider that returns a snapshot wins; unauthorized providers are skipped.
"""

from __future__ import annotations

import logging

from mrisk.domains.migraine.connectors import HealthMetricsProvider
from mrisk.domains.migraine.domain_logic.risk_models import HealthSnapshot

logger = logging.getLogger(__name__)


class CompositeHealthProvider:
    """Merges multiple HealthMetricsProviders with priority ordering.

    Usage::

        composite = CompositeHealthProvider([
            wearable_provider,  # Highest priority
            MockHealthProvider(),  # Fallback
        ])
        snapshot = await composite.latest_snapshot()
    """

    def __init__(self, providers: list[HealthMetricsProvider]) -> None:
        """Initialize with providers in priority order (highest first).

        Args:
            providers: Ordered list of HealthMetricsProviders. First
                authorized provider with data wins.
        """
        if not providers:
            raise ValueError("At least one provider is required")
        self._providers = providers

    async def latest_snapshot(self) -> HealthSnapshot | None:
        """Return the snapshot from the highest-priority provider with data."""
        for provider in self._providers:
            if not provider.is_authorized():
                continue
            snapshot = await provider.latest_snapshot()
            if snapshot is not None:
                return snapshot
        return None

    def is_authorized(self) -> bool:
        """True if any provider is authorized."""
        return any(p.is_authorized() for p in self._providers)

    @property
    def data_source(self) -> str:
        """Return the data source of the first authorized provider."""
        for provider in self._providers:
            if provider.is_authorized():
                return provider.data_source
        return self._providers[-1].data_source
