"""Companion device push: compact risk payload for a watch-sized display."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from mrisk.domains.migraine.domain_logic.risk_models import RiskScore

logger = logging.getLogger(__name__)

COMPANION_FACTOR_LIMIT = 3
COMPANION_RECOMMENDATION_LIMIT = 3


def build_companion_payload(score: RiskScore) -> dict[str, Any]:
    """Reduce a RiskScore to what a small screen shows."""
    return {
        "riskPercentage": score.risk_percentage,
        "riskLevel": score.risk_level.value,
        "topFactors": [
            {"name": f.name, "contribution": f.contribution_percentage}
            for f in score.top_factors[:COMPANION_FACTOR_LIMIT]
        ],
        "recommendations": list(score.recommendations[:COMPANION_RECOMMENDATION_LIMIT]),
        "confidence": round(score.confidence, 2),
        "timestamp": score.timestamp.isoformat() if score.timestamp else None,
    }


class PendingPayloadCompanion:
    """CompanionChannel that delivers through an optional transport.

    When no transport is configured, the device is unreachable, or delivery
    fails, the latest payload is kept in ``pending_payload`` so the device can
    pick it up on its next sync. A newer payload replaces an older one.
    """

    def __init__(
        self,
        transport: Callable[[dict[str, Any]], None] | None = None,
        is_reachable: Callable[[], bool] | None = None,
    ) -> None:
        self._transport = transport
        self._is_reachable = is_reachable or (lambda: transport is not None)
        self.pending_payload: dict[str, Any] | None = None
        self.sent_count = 0

    def send_risk_score(self, score: RiskScore) -> None:
        payload = build_companion_payload(score)
        self.pending_payload = payload
        if self._transport is None or not self._is_reachable():
            logger.debug("Companion unreachable; risk payload left pending")
            return
        self._transport(payload)
        self.pending_payload = None
        self.sent_count += 1

    def take_pending(self) -> dict[str, Any] | None:
        """Return and clear the pending payload (device sync)."""
        payload, self.pending_payload = self.pending_payload, None
        return payload
