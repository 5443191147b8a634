"""MCP tools for logging episodes and daily check-ins.

Entries are persisted to the encrypted health log and feed both the
rule-based scorer and personalized model training.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import date, datetime
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from mrisk.core.storage.repository import HealthLogRepository
    from mrisk.domains.migraine.connectors import CheckInStore, WeatherProvider

from mrisk.core.storage.repository import RepositoryError
from mrisk.domains.migraine.domain_logic.risk_models import (
    SEVERITY_MAX,
    SEVERITY_MIN,
    TRIGGER_NAMES,
    DailyCheckIn,
    EpisodeRecord,
)

logger = logging.getLogger(__name__)

# Weather is attached only when the episode started recently enough for
# current conditions to describe its onset.
WEATHER_ATTACH_WINDOW_HOURS = 6


def _error(message: str) -> str:
    return json.dumps({"status": "error", "message": message})


def _parse_time(value: str, field: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(f"{field} must be ISO 8601, got {value!r}") from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _check_level(value: int | None, field: str) -> None:
    if value is not None and not 1 <= value <= 5:
        raise ValueError(f"{field} must be between 1 and 5")


def register_log_entry_tools(
    mcp: FastMCP,
    repository: HealthLogRepository,
    check_in_store: CheckInStore,
    weather_provider: WeatherProvider | None = None,
    *,
    clock: Callable[[], datetime] = datetime.now,
) -> None:
    """Register episode and check-in logging tools on the MCP server."""

    @mcp.tool
    async def log_episode(
        ctx: Context,
        severity: int,
        start: str = "",
        end: str = "",
        location: str = "",
        symptoms: list[str] | None = None,
        triggers: list[str] | None = None,
        medications: list[str] | None = None,
        note: str = "",
    ) -> str:
        """Record a migraine episode in your health log.

        Args:
            severity: Pain severity from 1 (mild) to 10 (worst).
            start: Start time (ISO 8601). Defaults to now.
            end: End time (ISO 8601). Leave empty while the episode is ongoing.
            location: Where the pain is (e.g., 'left temple', 'behind eyes').
            symptoms: Symptoms such as 'aura', 'nausea', 'photophobia'.
            triggers: Suspected triggers, from: stress, lack_of_sleep, dehydration,
                weather, hormones, alcohol, caffeine, food, exercise, screen_time, other.
            medications: Medications taken (e.g., 'sumatriptan', 'ibuprofen').
            note: Free-text note.
        """
        if not SEVERITY_MIN <= severity <= SEVERITY_MAX:
            return _error(f"severity must be between {SEVERITY_MIN} and {SEVERITY_MAX}")

        now = clock()
        try:
            start_time = _parse_time(start, "start") if start else now
            end_time = _parse_time(end, "end") if end else None
        except ValueError as exc:
            return _error(str(exc))

        trigger_set = frozenset(t.strip().lower() for t in triggers or [])
        unknown = sorted(trigger_set - set(TRIGGER_NAMES))
        if unknown:
            return _error(f"Unknown trigger(s): {', '.join(unknown)}")

        weather = None
        recent = (now - start_time).total_seconds() <= WEATHER_ATTACH_WINDOW_HOURS * 3600
        if weather_provider is not None and recent:
            try:
                weather = await weather_provider.current_snapshot()
            except Exception as exc:
                logger.warning("Could not attach weather to episode: %s", exc)

        episode = EpisodeRecord(
            start=start_time,
            end=end_time,
            severity=severity,
            location=location,
            symptoms=frozenset(s.strip().lower() for s in symptoms or []),
            triggers=trigger_set,
            medications=frozenset(m.strip().lower() for m in medications or []),
            note=note or None,
            weather=weather,
        )
        try:
            episode_id = repository.save_episode(episode)
        except RepositoryError as exc:
            return _error(str(exc))

        return json.dumps({
            "status": "saved",
            "episode_id": episode_id,
            "start": start_time.isoformat(),
            "end": end_time.isoformat() if end_time else None,
            "severity": severity,
            "weather_attached": weather is not None,
            "episodes_logged": repository.count_episodes(),
        })

    @mcp.tool
    async def save_daily_check_in(
        ctx: Context,
        stress_level: int | None = None,
        hydration_level: int | None = None,
        caffeine_cups: int | None = None,
        day: str = "",
    ) -> str:
        """Record how today is going. A second check-in on the same day replaces the first.

        Args:
            stress_level: 1 (calm) to 5 (very stressed).
            hydration_level: 1 (barely drank) to 5 (well hydrated).
            caffeine_cups: Cups of coffee or equivalent today.
            day: Calendar day (ISO 8601 date). Defaults to today.
        """
        try:
            _check_level(stress_level, "stress_level")
            _check_level(hydration_level, "hydration_level")
            if caffeine_cups is not None and caffeine_cups < 0:
                raise ValueError("caffeine_cups must not be negative")
            check_in_day = date.fromisoformat(day) if day else clock().date()
        except ValueError as exc:
            return _error(str(exc))

        check_in = DailyCheckIn(
            day=check_in_day,
            stress_level=stress_level,
            hydration_level=hydration_level,
            caffeine_cups=caffeine_cups,
        )
        check_in_store.save(check_in)
        return json.dumps({"status": "saved", "check_in": check_in.to_dict()})

    @mcp.tool
    async def get_daily_check_in(ctx: Context, day: str = "") -> str:
        """Show the check-in recorded for a day (today by default).

        Args:
            day: Calendar day (ISO 8601 date). Defaults to today.
        """
        if not day:
            check_in = check_in_store.load_today()
        else:
            try:
                check_in = repository.get_check_in(date.fromisoformat(day))
            except ValueError as exc:
                return _error(str(exc))
        return json.dumps({"check_in": check_in.to_dict() if check_in else None})
