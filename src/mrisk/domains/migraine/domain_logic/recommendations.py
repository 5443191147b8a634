"""Canned, factor-driven recommendations."""

from __future__ import annotations

from collections.abc import Iterable

from mrisk.domains.migraine.domain_logic.risk_models import RiskFactor

FIRST_EPISODE_MESSAGE = (
    "Log your first migraine to start building your personal risk profile."
)
DEFAULT_MESSAGE = "Keep up your healthy habits and stay hydrated."

# Factors sharing a message are deduplicated after formatting.
_TEMPLATES: dict[str, str] = {
    "pressure_change": "Pressure is changing. Stay hydrated and keep rescue medication close.",
    "adverse_weather": "Stormy weather ahead. Plan indoor rest breaks if you are sensitive to it.",
    "sleep": "You slept less than usual. Consider a short rest and an early night.",
    "heart_rate_variability": "Your body shows signs of stress. Try relaxation or breathing exercises.",
    "resting_heart_rate": "Your body shows signs of stress. Try relaxation or breathing exercises.",
    "low_activity": "A short walk can help. Gentle movement may reduce tension.",
    "cycle_phase": "Hormonal changes may raise your risk. Keep your usual routine steady.",
    "stress": "Stress is high today. Schedule a break and try relaxation techniques.",
    "hydration": "Drink more water. Aim for 8 glasses today.",
    "caffeine": "Keep caffeine steady. Large increases and sudden cuts can both trigger migraines.",
    "recent_frequency": "You have had several episodes recently. Track triggers closely and rest when you can.",
    "episode_interval": "You are approaching your usual gap between episodes. Keep medication on hand.",
    "time_of_day": "This is a common time for your migraines. Take extra care over the next hours.",
    "day_of_week": "This weekday is a common migraine day for you. Keep your routine consistent.",
    "medication_overuse": "Frequent pain medication use can cause rebound headaches. Consider talking to your doctor.",
    "recent_episode": "You had a migraine in the last two days. Rest and avoid known triggers while you recover.",
    "weekend_schedule": "Weekend schedule changes can trigger migraines. Keep sleep and meal times regular.",
    "trigger_pattern": "Your logs show recurring triggers. Limit exposure to them today.",
}


def build_recommendations(
    ranked_factors: Iterable[RiskFactor],
    has_history: bool = True,
) -> list[str]:
    """Recommendations ordered by factor contribution, without duplicates.

    ``ranked_factors`` must already be in descending contribution order.
    """
    if not has_history:
        return [FIRST_EPISODE_MESSAGE]

    messages: list[str] = []
    for factor in ranked_factors:
        if factor.contribution <= 0:
            continue
        message = _TEMPLATES.get(factor.id)
        if message and message not in messages:
            messages.append(message)

    return messages or [DEFAULT_MESSAGE]
