"""Tests for the companion device payload and pending-delivery channel."""

from __future__ import annotations

from datetime import datetime

import pytest

from mrisk.domains.migraine.connectors import CompanionChannel
from mrisk.domains.migraine.connectors.companion import (
    PendingPayloadCompanion,
    build_companion_payload,
)
from mrisk.domains.migraine.domain_logic.risk_models import (
    FACTOR_CAPS,
    FACTOR_NAMES,
    FACTOR_SOURCES,
    PredictionSource,
    RiskFactor,
    RiskLevel,
    RiskScore,
)

NOW = datetime(2026, 3, 18, 15, 0)


def _factor(factor_id: str, contribution: float) -> RiskFactor:
    return RiskFactor(
        id=factor_id, name=FACTOR_NAMES[factor_id], contribution=contribution,
        cap=FACTOR_CAPS[factor_id], explanation="", source=FACTOR_SOURCES[factor_id],
    )


def _score() -> RiskScore:
    factors = [
        _factor("pressure_change", 0.2), _factor("sleep", 0.15),
        _factor("stress", 0.1), _factor("hydration", 0.05),
    ]
    return RiskScore(
        overall_risk=0.5,
        risk_level=RiskLevel.HIGH,
        confidence=0.7345,
        prediction_source=PredictionSource.RULE_BASED,
        top_factors=factors,
        factors=factors,
        recommendations=["a", "b", "c", "d"],
        timestamp=NOW,
    )


class TestPayload:
    def test_compact_fields(self):
        payload = build_companion_payload(_score())
        assert payload["riskPercentage"] == 50
        assert payload["riskLevel"] == RiskLevel.HIGH.value
        assert payload["confidence"] == 0.73
        assert payload["timestamp"] == NOW.isoformat()

    def test_truncates_to_three(self):
        payload = build_companion_payload(_score())
        assert [f["name"] for f in payload["topFactors"]] == [
            "Barometric Pressure Change", FACTOR_NAMES["sleep"], FACTOR_NAMES["stress"],
        ]
        assert payload["recommendations"] == ["a", "b", "c"]


class TestPendingPayloadCompanion:
    def test_without_transport_payload_stays_pending(self):
        companion = PendingPayloadCompanion()
        companion.send_risk_score(_score())
        assert companion.pending_payload["riskPercentage"] == 50
        assert companion.sent_count == 0

    def test_delivered_when_reachable(self):
        delivered = []
        companion = PendingPayloadCompanion(transport=delivered.append)
        companion.send_risk_score(_score())
        assert len(delivered) == 1
        assert companion.pending_payload is None
        assert companion.sent_count == 1

    def test_unreachable_device_keeps_latest_only(self):
        delivered = []
        companion = PendingPayloadCompanion(delivered.append, is_reachable=lambda: False)
        companion.send_risk_score(_score())
        companion.send_risk_score(_score())
        assert delivered == []
        assert companion.take_pending() is not None
        assert companion.take_pending() is None

    def test_transport_error_propagates_and_keeps_payload(self):
        def broken(payload):
            raise ConnectionError("bluetooth off")

        companion = PendingPayloadCompanion(transport=broken)
        with pytest.raises(ConnectionError):
            companion.send_risk_score(_score())
        assert companion.pending_payload is not None

    def test_satisfies_protocol(self):
        assert isinstance(PendingPayloadCompanion(), CompanionChannel)
