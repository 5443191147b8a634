"""MCP tools for migraine risk scoring, forecasting and model status."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from mrisk.core.storage.repository import HealthLogRepository
    from mrisk.domains.migraine.connectors import (
        CheckInStore,
        HealthMetricsProvider,
        WeatherProvider,
    )
    from mrisk.domains.migraine.domain_logic.risk_aggregator import RiskAggregator

logger = logging.getLogger(__name__)


def register_risk_tools(
    mcp: FastMCP,
    aggregator: RiskAggregator,
    repository: HealthLogRepository,
    weather_provider: WeatherProvider,
    health_provider: HealthMetricsProvider,
    check_in_store: CheckInStore,
    *,
    default_latitude: float,
    default_longitude: float,
    min_entries: int,
) -> None:
    """Register risk scoring and forecast tools on the MCP server."""

    @mcp.tool
    async def calculate_risk_score(ctx: Context, force_refresh: bool = True) -> str:
        """Estimate the current migraine risk from your log, weather, wearable and check-in.

        Args:
            force_refresh: Recompute even if a score from the last few minutes exists.
        """
        score = await aggregator.refresh(force=force_refresh)
        if score is None:
            return json.dumps({"status": "error", "message": "No risk score available"})

        result = score.to_dict()
        result["model_status"] = aggregator.model_status.to_dict()
        result["unavailable_sources"] = sorted(aggregator.unavailable_sources)
        result["all_factors"] = [f.to_dict() for f in score.factors]
        logger.info(
            "Risk score %d%% (%s, %s)",
            score.risk_percentage, score.risk_level.value, score.prediction_source.value,
        )
        return json.dumps(result)

    @mcp.tool
    async def generate_24_hour_forecast(
        ctx: Context,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> str:
        """Hour-by-hour migraine risk for the next 24 hours.

        Args:
            latitude: Forecast location latitude. Defaults to the configured location.
            longitude: Forecast location longitude. Defaults to the configured location.
        """
        lat = default_latitude if latitude is None else latitude
        lon = default_longitude if longitude is None else longitude
        unavailable: list[str] = []

        try:
            hours = await weather_provider.fetch_forecast(lat, lon)
        except Exception as exc:
            logger.warning("Weather forecast unavailable: %s", exc)
            hours = []
            unavailable.append("weather")

        health = None
        try:
            if health_provider.is_authorized():
                health = await health_provider.latest_snapshot()
        except Exception as exc:
            logger.warning("Health provider failed: %s", exc)
            unavailable.append("health")

        history = repository.list_episodes()
        points = await aggregator.generate_24_hour_forecast(
            history,
            hours,
            health,
            check_in_store.load_today(),
            recent_check_ins=check_in_store.load_recent(7),
        )
        peak = max(points, key=lambda p: p.risk) if points else None
        return json.dumps({
            "forecast": [p.to_dict() for p in points],
            "peak": peak.to_dict() if peak else None,
            "prediction_source": (
                "personalizedModel" if aggregator.model_status.is_active else "ruleBased"
            ),
            "unavailable_sources": unavailable,
            "note": "" if history else "Log your first migraine to enable the forecast.",
        })

    @mcp.tool
    async def get_model_status(ctx: Context) -> str:
        """Show whether predictions come from general rules or your personalized model."""
        episodes = repository.count_episodes()
        status = aggregator.model_status
        return json.dumps({
            "model_status": status.to_dict(),
            "episodes_logged": episodes,
            "episodes_needed": max(0, min_entries - episodes),
            "threshold": min_entries,
        })
