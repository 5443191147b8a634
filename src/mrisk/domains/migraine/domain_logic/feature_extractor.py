"""Feature extraction: episode history + context snapshots -> risk signals.

Produces two things from the same inputs:
    - candidate factors (id, raw score in [0, 1], explanation, source) for
      the rule-based scorer and for explaining model predictions
    - a fixed-order numeric feature vector for the personalized model

Every candidate is computed independently. A signal with no data behind it
is omitted rather than scored as zero, and a signal whose computation fails
on malformed input is omitted without affecting the others.
"""

from __future__ import annotations

import logging
import math
import statistics
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import numpy as np

from mrisk.domains.migraine.domain_logic.risk_models import (
    NSAIDS,
    SEVERITY_MAX,
    SEVERITY_MIN,
    TRIGGER_NAMES,
    TRIPTANS,
    CyclePhase,
    DailyCheckIn,
    EpisodeRecord,
    HealthSnapshot,
    WeatherSnapshot,
)

logger = logging.getLogger(__name__)

DEFAULT_PRESSURE_BASELINE = 5.0   # hPa, population median change at onset
MIN_PRESSURE_BASELINE = 1.0
DEFAULT_CAFFEINE_CUPS = 2.0
PERSONAL_CYCLE_MIN_EPISODES = 5
RECENT_EPISODE_WINDOW = timedelta(days=2)
TRIGGER_PATTERN_MIN_EPISODES = 3
TRIGGER_PATTERN_SHARE = 0.40
TRIGGER_PATTERN_LISTED = 3

CYCLE_PHASE_PRIOR: dict[CyclePhase, float] = {
    CyclePhase.MENSTRUAL: 1.0,
    CyclePhase.LUTEAL: 0.6,
    CyclePhase.OVULATORY: 0.3,
    CyclePhase.FOLLICULAR: 0.0,
}

FEATURE_NAMES: tuple[str, ...] = (
    # Calendar
    "weekday_sin",
    "weekday_cos",
    "is_weekend",
    # History
    "days_since_last",
    "episodes_7d",
    "episodes_30d",
    "avg_severity",
    "interval_ratio",
    # Weather
    "pressure_change_abs",
    "adverse_weather",
    "weather_known",
    # Health
    "sleep_hours",
    "sleep_known",
    "hrv_ms",
    "hrv_known",
    "resting_hr",
    "resting_hr_known",
    "steps_k",
    "steps_known",
    "cycle_prior",
    "cycle_known",
    # Check-in
    "stress",
    "stress_known",
    "hydration",
    "hydration_known",
    "caffeine",
    "caffeine_known",
    # Medication
    "triptan_7d",
    "nsaid_7d",
)


def _clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    """Clamp a value to [lo, hi]."""
    return max(lo, min(hi, value))


def _finite(val) -> float:
    """Convert to a finite float or raise ValueError."""
    if isinstance(val, bool):
        raise ValueError("boolean is not a measurement")
    number = float(val)
    if not math.isfinite(number):
        raise ValueError(f"non-finite value: {val!r}")
    return number


def _level(val, lo: int = 1, hi: int = 5) -> int:
    """Validate a self-reported 1-5 level."""
    number = _finite(val)
    if number != int(number) or not lo <= number <= hi:
        raise ValueError(f"level out of range: {val!r}")
    return int(number)


def naive_local(dt: datetime) -> datetime:
    """Normalize a datetime to naive local time for comparisons."""
    if dt.tzinfo is not None:
        return dt.astimezone().replace(tzinfo=None)
    return dt


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FactorCandidate:
    id: str
    raw: float
    explanation: str
    source: str


@dataclass(frozen=True)
class FeatureVector:
    """Fixed-order numeric features. Column order is FEATURE_NAMES."""

    values: tuple[float, ...]

    names = FEATURE_NAMES

    def as_array(self) -> np.ndarray:
        return np.asarray(self.values, dtype=float)

    def as_dict(self) -> dict[str, float]:
        return dict(zip(self.names, self.values))


@dataclass(frozen=True)
class ExtractedFeatures:
    vector: FeatureVector
    candidates: list[FactorCandidate] = field(default_factory=list)

    @property
    def sources(self) -> set[str]:
        return {c.source for c in self.candidates}


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

@dataclass
class _Inputs:
    now: datetime
    history: list[EpisodeRecord]
    weather: WeatherSnapshot | None
    health: HealthSnapshot | None
    check_in: DailyCheckIn | None
    recent_check_ins: list[DailyCheckIn]


class FeatureExtractor:
    """Turns raw inputs into factor candidates and a model feature vector."""

    def __init__(
        self,
        default_pressure_baseline: float = DEFAULT_PRESSURE_BASELINE,
        default_caffeine_cups: float = DEFAULT_CAFFEINE_CUPS,
    ) -> None:
        self._default_pressure_baseline = default_pressure_baseline
        self._default_caffeine_cups = default_caffeine_cups
        self._factor_fns: list[tuple[str, Callable[[_Inputs], FactorCandidate | None]]] = [
            ("pressure_change", self._pressure_change),
            ("adverse_weather", self._adverse_weather),
            ("sleep", self._sleep),
            ("heart_rate_variability", self._heart_rate_variability),
            ("resting_heart_rate", self._resting_heart_rate),
            ("low_activity", self._low_activity),
            ("cycle_phase", self._cycle_phase),
            ("stress", self._stress),
            ("hydration", self._hydration),
            ("caffeine", self._caffeine),
            ("recent_frequency", self._recent_frequency),
            ("episode_interval", self._episode_interval),
            ("time_of_day", self._time_of_day),
            ("day_of_week", self._day_of_week),
            ("medication_overuse", self._medication_overuse),
            ("recent_episode", self._recent_episode),
            ("weekend_schedule", self._weekend_schedule),
            ("trigger_pattern", self._trigger_pattern),
        ]

    def extract(
        self,
        history: Iterable[EpisodeRecord],
        weather: WeatherSnapshot | None = None,
        health: HealthSnapshot | None = None,
        check_in: DailyCheckIn | None = None,
        *,
        now: datetime | None = None,
        recent_check_ins: Sequence[DailyCheckIn] = (),
    ) -> ExtractedFeatures:
        """Extract factor candidates and the feature vector.

        Episodes starting after ``now`` are ignored. Never raises on bad
        measurement values; the affected factor is simply left out.
        """
        ref = naive_local(now) if now is not None else datetime.now()
        episodes = sorted(
            (e for e in history if naive_local(e.start) <= ref),
            key=lambda e: naive_local(e.start),
        )
        inputs = _Inputs(
            now=ref,
            history=episodes,
            weather=weather,
            health=health,
            check_in=check_in,
            recent_check_ins=list(recent_check_ins),
        )

        candidates: list[FactorCandidate] = []
        for factor_id, fn in self._factor_fns:
            try:
                candidate = fn(inputs)
            except (TypeError, ValueError, ArithmeticError, statistics.StatisticsError) as exc:
                logger.debug("Factor %s omitted: %s", factor_id, exc)
                continue
            if candidate is None:
                continue
            if not math.isfinite(candidate.raw):
                logger.debug("Factor %s omitted: non-finite score", factor_id)
                continue
            candidates.append(
                FactorCandidate(
                    id=candidate.id,
                    raw=_clamp(candidate.raw),
                    explanation=candidate.explanation,
                    source=candidate.source,
                )
            )

        return ExtractedFeatures(vector=self._vector(inputs), candidates=candidates)

    # ------------------------------------------------------------------
    # Weather
    # ------------------------------------------------------------------

    def _pressure_baseline(self, history: list[EpisodeRecord]) -> float:
        """Median absolute 24h pressure change at onset of weather-tagged episodes."""
        changes = []
        for episode in history:
            if episode.weather is None:
                continue
            try:
                changes.append(abs(_finite(episode.weather.pressure_change_24h)))
            except (TypeError, ValueError):
                continue
        if not changes:
            return self._default_pressure_baseline
        return max(MIN_PRESSURE_BASELINE, statistics.median(changes))

    def _pressure_change(self, i: _Inputs) -> FactorCandidate | None:
        if i.weather is None:
            return None
        delta = _finite(i.weather.pressure_change_24h)
        baseline = self._pressure_baseline(i.history)
        direction = "dropped" if delta < 0 else "rose"
        return FactorCandidate(
            id="pressure_change",
            raw=abs(delta) / (2 * baseline),
            explanation=(
                f"Pressure {direction} {abs(delta):.1f} hPa in 24h "
                f"(your typical change at onset: {baseline:.1f} hPa)"
            ),
            source="weather",
        )

    def _adverse_weather(self, i: _Inputs) -> FactorCandidate | None:
        if i.weather is None:
            return None
        code = int(_finite(i.weather.condition_code))
        precipitation = _finite(i.weather.precipitation)
        adverse = code >= 61 or precipitation > 0
        return FactorCandidate(
            id="adverse_weather",
            raw=1.0 if adverse else 0.0,
            explanation="Rain or storms expected" if adverse else "No adverse weather",
            source="weather",
        )

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def _sleep(self, i: _Inputs) -> FactorCandidate | None:
        if i.health is None or i.health.sleep_hours is None:
            return None
        hours = _finite(i.health.sleep_hours)
        if not 0 <= hours <= 24:
            raise ValueError(f"sleep hours out of range: {hours}")
        return FactorCandidate(
            id="sleep",
            raw=(7.5 - hours) / 3,
            explanation=f"Only {hours:.1f} hours of sleep last night",
            source="health",
        )

    def _heart_rate_variability(self, i: _Inputs) -> FactorCandidate | None:
        if i.health is None or i.health.hrv_ms is None:
            return None
        hrv = _finite(i.health.hrv_ms)
        if hrv <= 0:
            raise ValueError(f"hrv out of range: {hrv}")
        return FactorCandidate(
            id="heart_rate_variability",
            raw=(50 - hrv) / 30,
            explanation=f"HRV at {hrv:.0f} ms suggests elevated stress",
            source="health",
        )

    def _resting_heart_rate(self, i: _Inputs) -> FactorCandidate | None:
        if i.health is None or i.health.resting_heart_rate is None:
            return None
        rhr = _finite(i.health.resting_heart_rate)
        if not 20 <= rhr <= 250:
            raise ValueError(f"resting heart rate out of range: {rhr}")
        return FactorCandidate(
            id="resting_heart_rate",
            raw=(rhr - 70) / 20,
            explanation=f"Resting heart rate at {rhr:.0f} bpm",
            source="health",
        )

    def _low_activity(self, i: _Inputs) -> FactorCandidate | None:
        if i.health is None or i.health.steps is None:
            return None
        steps = _finite(i.health.steps)
        if steps < 0:
            raise ValueError(f"negative step count: {steps}")
        return FactorCandidate(
            id="low_activity",
            raw=(5000 - steps) / 3000,
            explanation=f"Only {int(steps)} steps today",
            source="health",
        )

    def _cycle_weight(self, history: list[EpisodeRecord]) -> float:
        """Personal sensitivity to hormonal triggers.

        With little history the population prior applies at full weight.
        Afterwards the weight scales between 0.25 and 1.0 with the share of
        episodes tagged with the hormones trigger (30% or more = full weight).
        """
        if len(history) < PERSONAL_CYCLE_MIN_EPISODES:
            return 1.0
        share = sum(1 for e in history if "hormones" in e.triggers) / len(history)
        return 0.25 + 0.75 * _clamp(share / 0.3)

    def _cycle_phase(self, i: _Inputs) -> FactorCandidate | None:
        if i.health is None:
            return None
        phase = i.health.effective_cycle_phase
        if phase is None:
            return None
        phase = CyclePhase(phase)
        prior = CYCLE_PHASE_PRIOR[phase]
        return FactorCandidate(
            id="cycle_phase",
            raw=prior * self._cycle_weight(i.history),
            explanation=f"Cycle in {phase.value} phase",
            source="health",
        )

    # ------------------------------------------------------------------
    # Check-in
    # ------------------------------------------------------------------

    def _stress(self, i: _Inputs) -> FactorCandidate | None:
        if i.check_in is None or i.check_in.stress_level is None:
            return None
        stress = _level(i.check_in.stress_level)
        return FactorCandidate(
            id="stress",
            raw=(stress - 1) / 4,
            explanation=f"Stress level {stress}/5 today",
            source="check_in",
        )

    def _hydration(self, i: _Inputs) -> FactorCandidate | None:
        if i.check_in is None or i.check_in.hydration_level is None:
            return None
        hydration = _level(i.check_in.hydration_level)
        return FactorCandidate(
            id="hydration",
            raw=(5 - hydration) / 4,
            explanation=f"Hydration level {hydration}/5 today",
            source="check_in",
        )

    def _caffeine_average(self, i: _Inputs) -> float:
        today = i.check_in.day if i.check_in is not None else None
        cups = []
        for entry in i.recent_check_ins:
            if entry.day == today or entry.caffeine_cups is None:
                continue
            try:
                value = _finite(entry.caffeine_cups)
            except (TypeError, ValueError):
                continue
            if value >= 0:
                cups.append(value)
        if not cups:
            return self._default_caffeine_cups
        return sum(cups) / len(cups)

    def _caffeine(self, i: _Inputs) -> FactorCandidate | None:
        if i.check_in is None or i.check_in.caffeine_cups is None:
            return None
        cups = _finite(i.check_in.caffeine_cups)
        if cups < 0:
            raise ValueError(f"negative caffeine: {cups}")
        average = self._caffeine_average(i)
        excess = (cups - 4) / 4
        withdrawal = (average - cups) / average if average >= 2 else 0.0
        if withdrawal > excess:
            explanation = f"{cups:.0f} cups vs your usual {average:.1f} (withdrawal)"
        else:
            explanation = f"{cups:.0f} cups of caffeine today"
        return FactorCandidate(
            id="caffeine",
            raw=max(excess, withdrawal),
            explanation=explanation,
            source="check_in",
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def _recent_frequency(self, i: _Inputs) -> FactorCandidate | None:
        if not i.history:
            return None
        count = _count_since(i.history, i.now - timedelta(days=7))
        return FactorCandidate(
            id="recent_frequency",
            raw=count / 3,
            explanation=f"{count} episode(s) in the last 7 days",
            source="history",
        )

    def _episode_interval(self, i: _Inputs) -> FactorCandidate | None:
        if len(i.history) < 2:
            return None
        ratio, median_gap = _interval_ratio(i.history, i.now)
        return FactorCandidate(
            id="episode_interval",
            raw=ratio,
            explanation=(
                f"{ratio:.0%} of your typical {median_gap / 24:.1f}-day gap "
                "between episodes has passed"
            ),
            source="history",
        )

    def _time_of_day(self, i: _Inputs) -> FactorCandidate | None:
        if len(i.history) < 3:
            return None
        bucket = i.now.hour // 3
        matching = sum(1 for e in i.history if naive_local(e.start).hour // 3 == bucket)
        share = matching / len(i.history)
        start = bucket * 3
        return FactorCandidate(
            id="time_of_day",
            raw=(share / (1 / 8) - 1) / 2,
            explanation=(
                f"{share:.0%} of your episodes start between "
                f"{start:02d}:00 and {start + 3:02d}:00"
            ),
            source="history",
        )

    def _day_of_week(self, i: _Inputs) -> FactorCandidate | None:
        if len(i.history) < 3:
            return None
        weekday = i.now.weekday()
        matching = sum(1 for e in i.history if naive_local(e.start).weekday() == weekday)
        share = matching / len(i.history)
        return FactorCandidate(
            id="day_of_week",
            raw=(share / (1 / 7) - 1) / 2,
            explanation=f"{share:.0%} of your episodes fall on {i.now.strftime('%A')}",
            source="history",
        )

    def _medication_overuse(self, i: _Inputs) -> FactorCandidate | None:
        if not any(e.medications & (TRIPTANS | NSAIDS) for e in i.history):
            return None
        triptans, nsaids = _medication_counts(i.history, i.now)
        return FactorCandidate(
            id="medication_overuse",
            raw=(max(triptans / 3, nsaids / 4) - 0.5) * 2,
            explanation=(
                f"{triptans} triptan and {nsaids} NSAID use(s) in 7 days "
                "(rebound headache risk)"
            ),
            source="history",
        )

    def _recent_episode(self, i: _Inputs) -> FactorCandidate | None:
        if not i.history:
            return None
        last = i.history[-1]
        elapsed = i.now - naive_local(last.end or last.start)
        recent = elapsed < RECENT_EPISODE_WINDOW
        hours = elapsed.total_seconds() / 3600
        return FactorCandidate(
            id="recent_episode",
            raw=1.0 if recent else 0.0,
            explanation=(
                f"Last migraine ended {hours:.0f} hours ago" if recent
                else "No migraine in the last 2 days"
            ),
            source="history",
        )

    def _weekend_schedule(self, i: _Inputs) -> FactorCandidate | None:
        # Only meaningful once the user has a log to compare against
        if not i.history:
            return None
        weekend = i.now.weekday() >= 5
        return FactorCandidate(
            id="weekend_schedule",
            raw=1.0 if weekend else 0.0,
            explanation=(
                "Weekend schedule changes can trigger migraines" if weekend
                else "Weekday routine"
            ),
            source="history",
        )

    def _trigger_pattern(self, i: _Inputs) -> FactorCandidate | None:
        """Triggers tagged on more than 40% of episodes."""
        if len(i.history) < TRIGGER_PATTERN_MIN_EPISODES:
            return None
        total = len(i.history)
        shares = {
            name: sum(1 for e in i.history if name in e.triggers) / total
            for name in TRIGGER_NAMES
            if name != "other"
        }
        frequent = sorted(
            ((share, name) for name, share in shares.items() if share > TRIGGER_PATTERN_SHARE),
            key=lambda pair: (-pair[0], pair[1]),
        )[:TRIGGER_PATTERN_LISTED]
        if not frequent:
            return FactorCandidate(
                id="trigger_pattern",
                raw=0.0,
                explanation="No single trigger dominates your episodes",
                source="history",
            )
        listed = ", ".join(
            f"{name.replace('_', ' ')} ({share:.0%})" for share, name in frequent
        )
        return FactorCandidate(
            id="trigger_pattern",
            raw=1.0,
            explanation=f"Frequent triggers in your log: {listed}",
            source="history",
        )

    # ------------------------------------------------------------------
    # Feature vector
    # ------------------------------------------------------------------

    def _vector(self, i: _Inputs) -> FeatureVector:
        values: dict[str, float] = dict.fromkeys(FEATURE_NAMES, 0.0)

        weekday = i.now.weekday()
        values["weekday_sin"] = math.sin(2 * math.pi * weekday / 7)
        values["weekday_cos"] = math.cos(2 * math.pi * weekday / 7)
        values["is_weekend"] = 1.0 if weekday >= 5 else 0.0

        values["days_since_last"] = 60.0
        if i.history:
            last = i.history[-1]
            last_time = naive_local(last.end or last.start)
            days = (i.now - last_time).total_seconds() / 86400
            values["days_since_last"] = _clamp(days, 0.0, 60.0)
            values["episodes_7d"] = float(_count_since(i.history, i.now - timedelta(days=7)))
            values["episodes_30d"] = float(_count_since(i.history, i.now - timedelta(days=30)))
            severities = [_clamp(e.severity, SEVERITY_MIN, SEVERITY_MAX) for e in i.history]
            values["avg_severity"] = sum(severities) / len(severities)
        if len(i.history) >= 2:
            try:
                ratio, _ = _interval_ratio(i.history, i.now, cap=3.0)
                values["interval_ratio"] = ratio
            except (ValueError, ArithmeticError):
                pass

        values["sleep_hours"] = 7.5
        values["hrv_ms"] = 50.0
        values["resting_hr"] = 70.0
        values["steps_k"] = 5.0
        values["stress"] = 1.0
        values["hydration"] = 5.0
        values["caffeine"] = self._default_caffeine_cups

        if i.weather is not None:
            _fill(values, "pressure_change_abs", "weather_known",
                  lambda: abs(_finite(i.weather.pressure_change_24h)))
            if values["weather_known"]:
                try:
                    values["adverse_weather"] = 1.0 if (
                        _finite(i.weather.condition_code) >= 61
                        or _finite(i.weather.precipitation) > 0
                    ) else 0.0
                except (TypeError, ValueError):
                    pass

        health = i.health
        if health is not None:
            if health.sleep_hours is not None:
                _fill(values, "sleep_hours", "sleep_known", lambda: _finite(health.sleep_hours))
            if health.hrv_ms is not None:
                _fill(values, "hrv_ms", "hrv_known", lambda: _finite(health.hrv_ms))
            if health.resting_heart_rate is not None:
                _fill(values, "resting_hr", "resting_hr_known",
                      lambda: _finite(health.resting_heart_rate))
            if health.steps is not None:
                _fill(values, "steps_k", "steps_known", lambda: _finite(health.steps) / 1000)
            phase = health.effective_cycle_phase
            if phase is not None:
                values["cycle_prior"] = CYCLE_PHASE_PRIOR[CyclePhase(phase)]
                values["cycle_known"] = 1.0

        check_in = i.check_in
        if check_in is not None:
            if check_in.stress_level is not None:
                _fill(values, "stress", "stress_known", lambda: float(_level(check_in.stress_level)))
            if check_in.hydration_level is not None:
                _fill(values, "hydration", "hydration_known",
                      lambda: float(_level(check_in.hydration_level)))
            if check_in.caffeine_cups is not None:
                _fill(values, "caffeine", "caffeine_known", lambda: _finite(check_in.caffeine_cups))

        triptans, nsaids = _medication_counts(i.history, i.now)
        values["triptan_7d"] = float(triptans)
        values["nsaid_7d"] = float(nsaids)

        return FeatureVector(values=tuple(values[name] for name in FEATURE_NAMES))


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def _fill(values: dict[str, float], key: str, known_key: str, getter: Callable[[], float]) -> None:
    """Set a value and its known-indicator, leaving the neutral default on bad input."""
    try:
        value = getter()
    except (TypeError, ValueError):
        return
    if not math.isfinite(value) or value < 0:
        return
    values[key] = value
    values[known_key] = 1.0


def _count_since(history: list[EpisodeRecord], since: datetime) -> int:
    return sum(1 for e in history if naive_local(e.start) > since)


def _interval_ratio(
    history: list[EpisodeRecord], now: datetime, cap: float = 1.0,
) -> tuple[float, float]:
    """Elapsed time since the last episode relative to the median gap.

    Returns (ratio clamped to [0, cap], median gap in hours).
    """
    starts = [naive_local(e.start) for e in history]
    gaps = [
        (later - earlier).total_seconds() / 3600
        for earlier, later in zip(starts, starts[1:])
    ]
    median_gap = statistics.median(gaps)
    if median_gap <= 0:
        raise ValueError("episodes share a start time; no interval")
    last = history[-1]
    elapsed = (now - naive_local(last.end or last.start)).total_seconds() / 3600
    return _clamp(elapsed / median_gap, 0.0, cap), median_gap


def _medication_counts(history: list[EpisodeRecord], now: datetime) -> tuple[int, int]:
    """Episodes in the last 7 days where a triptan / NSAID was taken."""
    since = now - timedelta(days=7)
    recent = [e for e in history if naive_local(e.start) > since]
    triptans = sum(1 for e in recent if e.medications & TRIPTANS)
    nsaids = sum(1 for e in recent if e.medications & NSAIDS)
    return triptans, nsaids
