"""Integration tests for the Migraine Risk MCP server."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta

import pytest
from fastmcp import Client

from mrisk.core.server.app import create_app
from mrisk.domains.migraine.domain_logic.recommendations import FIRST_EPISODE_MESSAGE

NOW = datetime(2026, 3, 18, 9, 0)


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _payload(result) -> dict:
    """Decode the JSON text a tool returned."""
    content = getattr(result, "content", result)
    return json.loads(content[0].text)


ALL_EXPECTED_TOOLS = [
    "health_check",
    "calculate_risk_score",
    "generate_24_hour_forecast",
    "get_model_status",
    "log_episode",
    "save_daily_check_in",
    "get_daily_check_in",
    "delete_episode",
    "delete_all_data",
]


@pytest.fixture
def client(health_repository):
    """MCP client connected to a server with an in-memory health log and fixed clock."""
    mcp = create_app(repository_override=health_repository, clock=lambda: NOW)
    return Client(mcp)


def _call(client, tool: str, args: dict | None = None) -> dict:
    async def _go():
        async with client:
            return _payload(await client.call_tool(tool, args or {}))
    return _run(_go())


def test_server_starts_and_lists_tools(client):
    """Server should start and expose all registered tools."""
    async def _check():
        async with client:
            tools = await client.list_tools()
            tool_names = [t.name for t in tools]
            for expected in ALL_EXPECTED_TOOLS:
                assert expected in tool_names, f"Missing tool: {expected}"
    _run(_check())


def test_health_check_returns_ok(client):
    result = _call(client, "health_check")
    assert result["status"] == "ok"
    assert result["episodes_logged"] == 0
    assert result["model_status"]["state"] == "ruleBased"
    assert result["health_source"] == "mock"
    assert result["today"] == "2026-03-18"


class TestRiskScore:
    def test_empty_log_uses_rules_and_first_episode_prompt(self, client):
        result = _call(client, "calculate_risk_score")
        assert result["prediction_source"] == "ruleBased"
        assert result["recommendations"] == [FIRST_EPISODE_MESSAGE]
        # Mock weather and health are present, no history, no check-in
        assert result["confidence"] == pytest.approx(0.40)
        assert result["unavailable_sources"] == []
        assert 0 <= result["risk_percentage"] <= 100

    def test_logged_data_changes_score(self, client):
        async def _go():
            async with client:
                baseline = _payload(await client.call_tool("calculate_risk_score", {}))
                for days_ago in (9, 6, 3):
                    start = (NOW - timedelta(days=days_ago)).isoformat()
                    await client.call_tool("log_episode", {"severity": 7, "start": start})
                await client.call_tool(
                    "save_daily_check_in", {"stress_level": 5, "hydration_level": 1},
                )
                after = _payload(await client.call_tool("calculate_risk_score", {}))
                return baseline, after

        baseline, after = _run(_go())
        assert after["overall_risk"] > baseline["overall_risk"]
        assert after["confidence"] > baseline["confidence"]
        ids = {f["id"] for f in after["all_factors"]}
        assert {"stress", "hydration", "recent_frequency"} <= ids


class TestLogEpisode:
    def test_saves_episode_with_weather(self, client):
        result = _call(client, "log_episode", {
            "severity": 6, "triggers": ["Stress", "weather"], "medications": ["sumatriptan"],
        })
        assert result["status"] == "saved"
        assert result["episode_id"]
        assert result["start"] == NOW.isoformat()
        assert result["weather_attached"] is True
        assert result["episodes_logged"] == 1

    def test_old_episode_gets_no_weather(self, client):
        start = (NOW - timedelta(days=2)).isoformat()
        result = _call(client, "log_episode", {"severity": 4, "start": start})
        assert result["weather_attached"] is False

    @pytest.mark.parametrize("args,message", [
        ({"severity": 11}, "severity"),
        ({"severity": 0}, "severity"),
        ({"severity": 5, "start": "yesterday"}, "ISO 8601"),
        ({"severity": 5, "triggers": ["full moon"]}, "Unknown trigger"),
        ({"severity": 5, "start": "2026-03-18T08:00", "end": "2026-03-18T07:00"}, "end"),
    ])
    def test_rejects_invalid_input(self, client, args, message):
        result = _call(client, "log_episode", args)
        assert result["status"] == "error"
        assert message in result["message"]


class TestCheckIn:
    def test_round_trip_and_same_day_replace(self, client):
        async def _go():
            async with client:
                await client.call_tool("save_daily_check_in", {"stress_level": 4})
                await client.call_tool(
                    "save_daily_check_in", {"stress_level": 2, "caffeine_cups": 3},
                )
                return _payload(await client.call_tool("get_daily_check_in", {}))

        check_in = _run(_go())["check_in"]
        assert check_in["day"] == "2026-03-18"
        assert check_in["stress_level"] == 2
        assert check_in["caffeine_cups"] == 3
        assert check_in["hydration_level"] is None

    def test_missing_day_returns_none(self, client):
        assert _call(client, "get_daily_check_in", {"day": "2026-01-01"})["check_in"] is None

    def test_out_of_range_level_rejected(self, client):
        result = _call(client, "save_daily_check_in", {"hydration_level": 9})
        assert result["status"] == "error"


class TestForecast:
    def test_empty_log_has_no_forecast(self, client):
        result = _call(client, "generate_24_hour_forecast")
        assert result["forecast"] == []
        assert result["peak"] is None
        assert result["note"]

    def test_forecast_after_logging(self, client):
        async def _go():
            async with client:
                start = (NOW - timedelta(days=3)).isoformat()
                await client.call_tool("log_episode", {"severity": 5, "start": start})
                return _payload(await client.call_tool("generate_24_hour_forecast", {}))

        result = _run(_go())
        assert len(result["forecast"]) == 24
        assert result["forecast"][0]["hour"] == 9
        assert result["prediction_source"] == "ruleBased"
        assert result["peak"]["risk"] == max(p["risk"] for p in result["forecast"])


class TestModelStatus:
    def test_counts_down_to_threshold(self, client):
        async def _go():
            async with client:
                before = _payload(await client.call_tool("get_model_status", {}))
                for days_ago in (4, 2):
                    start = (NOW - timedelta(days=days_ago)).isoformat()
                    await client.call_tool("log_episode", {"severity": 5, "start": start})
                after = _payload(await client.call_tool("get_model_status", {}))
                return before, after

        before, after = _run(_go())
        assert before["model_status"] == {"state": "ruleBased"}
        assert before["episodes_needed"] == 20
        assert after["episodes_logged"] == 2
        assert after["episodes_needed"] == 18


class TestDataManagement:
    def test_delete_episode(self, client):
        async def _go():
            async with client:
                saved = _payload(await client.call_tool("log_episode", {"severity": 5}))
                deleted = _payload(await client.call_tool(
                    "delete_episode", {"episode_id": saved["episode_id"]},
                ))
                again = _payload(await client.call_tool(
                    "delete_episode", {"episode_id": saved["episode_id"]},
                ))
                return deleted, again

        deleted, again = _run(_go())
        assert deleted["status"] == "deleted"
        assert deleted["episodes_logged"] == 0
        assert again["status"] == "not_found"

    def test_delete_all_requires_confirmation(self, client, health_repository):
        _call(client, "log_episode", {"severity": 5})
        result = _call(client, "delete_all_data", {"confirm": "yes"})
        assert result["status"] == "cancelled"
        assert health_repository.count_episodes() == 1

    def test_delete_all_wipes_log(self, client, health_repository):
        async def _go():
            async with client:
                for days_ago in (3, 2):
                    start = (NOW - timedelta(days=days_ago)).isoformat()
                    await client.call_tool("log_episode", {"severity": 5, "start": start})
                await client.call_tool("save_daily_check_in", {"stress_level": 3})
                return _payload(await client.call_tool(
                    "delete_all_data", {"confirm": "DELETE_ALL"},
                ))

        result = _run(_go())
        assert result["status"] == "all_deleted"
        assert result["episodes_deleted"] == 2
        assert result["model_status"] == {"state": "ruleBased"}
        assert health_repository.count_episodes() == 0
        assert health_repository.list_check_ins() == []
