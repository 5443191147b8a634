"""Migraine risk data model and domain constants.

Everything the prediction engine reads or produces is defined here:
episode history, weather / wearable / check-in snapshots, and the ephemeral
results (factors, scores, forecast points, model status).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Maximum contribution of each factor to the overall risk. A factor's raw
# score (0-1) is multiplied by its cap, so no single signal can dominate.
FACTOR_CAPS: dict[str, float] = {
    # Weather
    "pressure_change": 0.25,
    "adverse_weather": 0.10,
    # Wearable health
    "sleep": 0.25,
    "heart_rate_variability": 0.12,
    "resting_heart_rate": 0.08,
    "low_activity": 0.05,
    "cycle_phase": 0.15,
    # Daily check-in
    "stress": 0.15,
    "hydration": 0.10,
    "caffeine": 0.08,
    # Episode history
    "recent_frequency": 0.15,
    "episode_interval": 0.15,
    "time_of_day": 0.08,
    "day_of_week": 0.05,
    "medication_overuse": 0.12,
    "recent_episode": 0.10,
    "weekend_schedule": 0.05,
    "trigger_pattern": 0.10,
}

FACTOR_NAMES: dict[str, str] = {
    "pressure_change": "Barometric Pressure Change",
    "adverse_weather": "Adverse Weather",
    "sleep": "Poor Sleep",
    "heart_rate_variability": "Low Heart Rate Variability",
    "resting_heart_rate": "Elevated Resting Heart Rate",
    "low_activity": "Low Activity",
    "cycle_phase": "Menstrual Cycle Phase",
    "stress": "High Stress",
    "hydration": "Low Hydration",
    "caffeine": "Caffeine Intake",
    "recent_frequency": "High Recent Frequency",
    "episode_interval": "Typical Interval Reached",
    "time_of_day": "Peak Time Window",
    "day_of_week": "High-Risk Day",
    "medication_overuse": "Medication Overuse Risk",
    "recent_episode": "Recent Migraine",
    "weekend_schedule": "Weekend Schedule Change",
    "trigger_pattern": "Personal Trigger Pattern",
}

# Data source each factor depends on; removing that input removes the factor.
FACTOR_SOURCES: dict[str, str] = {
    "pressure_change": "weather",
    "adverse_weather": "weather",
    "sleep": "health",
    "heart_rate_variability": "health",
    "resting_heart_rate": "health",
    "low_activity": "health",
    "cycle_phase": "health",
    "stress": "check_in",
    "hydration": "check_in",
    "caffeine": "check_in",
    "recent_frequency": "history",
    "episode_interval": "history",
    "time_of_day": "history",
    "day_of_week": "history",
    "medication_overuse": "history",
    "recent_episode": "history",
    "weekend_schedule": "history",
    "trigger_pattern": "history",
}

TRIGGER_NAMES = (
    "stress",
    "lack_of_sleep",
    "dehydration",
    "weather",
    "hormones",
    "alcohol",
    "caffeine",
    "food",
    "exercise",
    "screen_time",
    "other",
)

TRIPTANS = frozenset({"sumatriptan", "rizatriptan", "eletriptan", "naratriptan", "frovatriptan"})
NSAIDS = frozenset({"ibuprofen", "naproxen", "excedrin"})

SEVERITY_MIN = 1
SEVERITY_MAX = 10

TOP_FACTOR_LIMIT = 5
CONFIDENCE_CEILING = 0.95
HISTORY_SATURATION = 30          # episodes; confidence stops growing beyond this


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class RiskLevel(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    SEVERE = "severe"

    @classmethod
    def from_risk(cls, risk: float) -> RiskLevel:
        """Band a [0, 1] risk value."""
        if risk < 0.25:
            return cls.LOW
        if risk < 0.50:
            return cls.MODERATE
        if risk < 0.75:
            return cls.HIGH
        return cls.SEVERE


class PredictionSource(str, Enum):
    RULE_BASED = "ruleBased"
    PERSONALIZED_MODEL = "personalizedModel"


class CyclePhase(str, Enum):
    MENSTRUAL = "menstrual"
    FOLLICULAR = "follicular"
    OVULATORY = "ovulatory"
    LUTEAL = "luteal"

    @classmethod
    def from_days_since_menstruation(cls, days: int) -> CyclePhase:
        """Approximate the phase of a ~28-day cycle."""
        day = days % 28
        if day <= 4:
            return cls.MENSTRUAL
        if day <= 12:
            return cls.FOLLICULAR
        if day <= 16:
            return cls.OVULATORY
        return cls.LUTEAL


class ModelState(str, Enum):
    RULE_BASED = "ruleBased"
    TRAINING_MODEL = "trainingModel"
    MODEL_ACTIVE = "modelActive"
    MODEL_FAILED = "modelFailed"


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WeatherSnapshot:
    """Point-in-time weather, either current or recorded at episode onset."""

    timestamp: datetime
    temperature: float
    pressure: float                  # hPa
    pressure_change_24h: float       # hPa, negative = falling
    precipitation: float = 0.0
    condition_code: int = 0          # WMO weather code
    latitude: float | None = None
    longitude: float | None = None

    @property
    def is_precipitating(self) -> bool:
        return self.precipitation > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "temperature": self.temperature,
            "pressure": self.pressure,
            "pressure_change_24h": self.pressure_change_24h,
            "precipitation": self.precipitation,
            "condition_code": self.condition_code,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WeatherSnapshot:
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            temperature=data.get("temperature", 0.0),
            pressure=data.get("pressure", 1013.0),
            pressure_change_24h=data.get("pressure_change_24h", 0.0),
            precipitation=data.get("precipitation", 0.0),
            condition_code=data.get("condition_code", 0),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
        )


@dataclass(frozen=True)
class ForecastHour:
    """One hourly weather projection."""

    date: datetime
    hour: int                        # local hour, 0-23
    temperature: float
    pressure: float
    pressure_change_24h: float
    precipitation: float = 0.0
    condition_code: int = 0

    def as_snapshot(self) -> WeatherSnapshot:
        return WeatherSnapshot(
            timestamp=self.date,
            temperature=self.temperature,
            pressure=self.pressure,
            pressure_change_24h=self.pressure_change_24h,
            precipitation=self.precipitation,
            condition_code=self.condition_code,
        )


@dataclass(frozen=True)
class EpisodeRecord:
    """A logged migraine episode. Immutable once saved."""

    start: datetime
    severity: int
    end: datetime | None = None
    location: str = ""
    symptoms: frozenset[str] = frozenset()
    triggers: frozenset[str] = frozenset()
    medications: frozenset[str] = frozenset()
    note: str | None = None
    weather: WeatherSnapshot | None = None
    id: str = ""

    @property
    def is_open(self) -> bool:
        return self.end is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat() if self.end else None,
            "severity": self.severity,
            "location": self.location,
            "symptoms": sorted(self.symptoms),
            "triggers": sorted(self.triggers),
            "medications": sorted(self.medications),
            "note": self.note,
            "weather": self.weather.to_dict() if self.weather else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EpisodeRecord:
        end = data.get("end")
        weather = data.get("weather")
        return cls(
            id=data.get("id", ""),
            start=datetime.fromisoformat(data["start"]),
            end=datetime.fromisoformat(end) if end else None,
            severity=int(data.get("severity", SEVERITY_MIN)),
            location=data.get("location", ""),
            symptoms=frozenset(data.get("symptoms", ())),
            triggers=frozenset(data.get("triggers", ())),
            medications=frozenset(data.get("medications", ())),
            note=data.get("note"),
            weather=WeatherSnapshot.from_dict(weather) if weather else None,
        )


@dataclass(frozen=True)
class HealthSnapshot:
    """Wearable metrics captured at a point in time. Every metric is optional."""

    captured_at: datetime
    sleep_hours: float | None = None
    hrv_ms: float | None = None
    resting_heart_rate: float | None = None
    steps: int | None = None
    cycle_phase: CyclePhase | None = None
    days_since_menstruation: int | None = None

    @property
    def effective_cycle_phase(self) -> CyclePhase | None:
        if self.cycle_phase is not None:
            return self.cycle_phase
        if self.days_since_menstruation is not None and self.days_since_menstruation >= 0:
            return CyclePhase.from_days_since_menstruation(self.days_since_menstruation)
        return None


@dataclass(frozen=True)
class DailyCheckIn:
    """Self-reported state for one calendar day."""

    day: date
    stress_level: int | None = None      # 1-5
    hydration_level: int | None = None   # 1-5
    caffeine_cups: int | None = None     # >= 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "day": self.day.isoformat(),
            "stress_level": self.stress_level,
            "hydration_level": self.hydration_level,
            "caffeine_cups": self.caffeine_cups,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DailyCheckIn:
        return cls(
            day=date.fromisoformat(data["day"]),
            stress_level=data.get("stress_level"),
            hydration_level=data.get("hydration_level"),
            caffeine_cups=data.get("caffeine_cups"),
        )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RiskFactor:
    """One explanatory signal and its share of the overall risk."""

    id: str
    name: str
    contribution: float
    cap: float
    explanation: str
    source: str

    @property
    def contribution_percentage(self) -> int:
        return round(self.contribution * 100)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "contribution": round(self.contribution, 4),
            "cap": self.cap,
            "explanation": self.explanation,
            "source": self.source,
        }


@dataclass(frozen=True)
class RiskScore:
    """Point-in-time risk estimate. Ephemeral; never persisted by the engine."""

    overall_risk: float
    risk_level: RiskLevel
    confidence: float
    prediction_source: PredictionSource
    top_factors: list[RiskFactor] = field(default_factory=list)
    factors: list[RiskFactor] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    timestamp: datetime | None = None

    @property
    def risk_percentage(self) -> int:
        return round(self.overall_risk * 100)

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_risk": round(self.overall_risk, 4),
            "risk_percentage": self.risk_percentage,
            "risk_level": self.risk_level.value,
            "confidence": round(self.confidence, 4),
            "prediction_source": self.prediction_source.value,
            "top_factors": [f.to_dict() for f in self.top_factors],
            "recommendations": list(self.recommendations),
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass(frozen=True)
class HourlyForecastPoint:
    hour: int
    risk: float
    timestamp: datetime | None = None
    primary_factor: str = "General"

    def to_dict(self) -> dict[str, Any]:
        return {
            "hour": self.hour,
            "risk": round(self.risk, 4),
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "primary_factor": self.primary_factor,
        }


@dataclass(frozen=True)
class ModelStatus:
    """Immutable value of the per-profile model lifecycle state."""

    state: ModelState
    progress: float | None = None
    confidence: float | None = None

    @classmethod
    def rule_based(cls) -> ModelStatus:
        return cls(ModelState.RULE_BASED)

    @classmethod
    def training(cls, progress: float = 0.0) -> ModelStatus:
        return cls(ModelState.TRAINING_MODEL, progress=max(0.0, min(1.0, progress)))

    @classmethod
    def active(cls, confidence: float) -> ModelStatus:
        return cls(ModelState.MODEL_ACTIVE, confidence=max(0.0, min(1.0, confidence)))

    @classmethod
    def failed(cls) -> ModelStatus:
        return cls(ModelState.MODEL_FAILED)

    @property
    def is_active(self) -> bool:
        return self.state is ModelState.MODEL_ACTIVE

    @property
    def is_training(self) -> bool:
        return self.state is ModelState.TRAINING_MODEL

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"state": self.state.value}
        if self.progress is not None:
            data["progress"] = round(self.progress, 4)
        if self.confidence is not None:
            data["confidence"] = round(self.confidence, 4)
        return data
