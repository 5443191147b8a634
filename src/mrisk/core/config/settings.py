"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Migraine risk engine configuration."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "protected_namespaces": (),
    }

    # Server
    # Default to loopback: the server exposes personal health data and has no
    # auth layer. Opt into `0.0.0.0` explicitly when you intend remote access.
    mrisk_host: str = "127.0.0.1"
    mrisk_port: int = 8011
    mrisk_log_level: str = "info"
    mrisk_allow_insecure_bind: bool = False

    # Storage (episode log, daily check-ins, model bookkeeping)
    db_path: str = "~/.mrisk/health_log.db"
    encryption_key: str = ""
    # Comma-separated keys that still decrypt; the log is re-encrypted on startup
    encryption_retired_keys: str = ""

    # Personalized model lifecycle
    model_min_entries: int = 20
    retrain_new_episodes: int = 10
    retrain_interval_days: int = 7
    failure_cooldown_hours: float = 24.0
    training_holdout_fraction: float = 0.25
    training_random_seed: int = 7

    # Scoring
    auto_refresh_seconds: int = 300
    top_factor_limit: int = 5

    # Location used for forecast requests when the caller gives none
    default_latitude: float = 40.7128
    default_longitude: float = -74.0060


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
