"""Migraine Risk MCP Server — application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from fastmcp import FastMCP

from mrisk.core.config.settings import get_settings
from mrisk.core.storage.database import HealthLogDatabase
from mrisk.core.storage.encryption import EncryptionError, FieldEncryptor
from mrisk.core.storage.repository import HealthLogRepository
from mrisk.domains.migraine.connectors import (
    CompanionChannel,
    HealthMetricsProvider,
    WeatherProvider,
)
from mrisk.domains.migraine.connectors.companion import PendingPayloadCompanion
from mrisk.domains.migraine.connectors.composite import CompositeHealthProvider
from mrisk.domains.migraine.connectors.providers import (
    MockHealthProvider,
    MockWeatherProvider,
    RepositoryCheckInStore,
)
from mrisk.domains.migraine.domain_logic.model_lifecycle import ModelLifecycleController
from mrisk.domains.migraine.domain_logic.model_trainer import ModelTrainer
from mrisk.domains.migraine.domain_logic.risk_aggregator import RiskAggregator
from mrisk.domains.migraine.tools.data_management_tools import register_data_management_tools
from mrisk.domains.migraine.tools.log_entry_tools import register_log_entry_tools
from mrisk.domains.migraine.tools.risk_tools import register_risk_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "Migraine Risk"
SERVER_VERSION = "0.1.0"


def _open_repository(
    db_path: str, encryption_key: str, retired_keys: str = ""
) -> HealthLogRepository:
    """Open the configured health log, or an in-memory one without a key.

    When retired keys are configured, every stored payload is re-encrypted
    under the primary key before the server starts.
    """
    if encryption_key:
        retired = [k for k in retired_keys.split(",") if k.strip()]
        try:
            encryptor = FieldEncryptor(encryption_key, retired_keys=retired)
        except EncryptionError as exc:
            logger.error("Failed to initialize storage: %s", exc)
            logger.warning("Continuing with an in-memory health log; data will not be stored")
            encryptor = FieldEncryptor.ephemeral()
            db_path = ":memory:"
    else:
        encryptor = FieldEncryptor.ephemeral()
        db_path = ":memory:"

    database = HealthLogDatabase(db_path)
    database.initialize()
    logger.info(
        "Health log initialized: %s (schema v%d)", db_path, database.get_schema_version()
    )
    repository = HealthLogRepository(database, encryptor)
    if encryptor.has_retired_keys:
        repository.rotate_encryption()
    return repository


def create_app(
    *,
    repository_override: HealthLogRepository | None = None,
    weather_provider_override: WeatherProvider | None = None,
    health_provider_override: HealthMetricsProvider | None = None,
    companion_override: CompanionChannel | None = None,
    clock: Callable[[], datetime] | None = None,
) -> FastMCP:
    """Create and configure the Migraine Risk MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Opens the encrypted health log (episodes, check-ins, model state)
    3. Wires weather / health providers and the companion channel
    4. Builds the model lifecycle controller and risk aggregator
    5. Registers all tools
    """
    settings = get_settings()
    now = clock or datetime.now

    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "Personal migraine log with a risk-prediction engine. "
            "Log episodes and daily check-ins, then ask for the current risk, "
            "the factors driving it, and an hour-by-hour forecast. Predictions "
            "switch from general rules to a personalized model once enough "
            "episodes are logged. Not a medical diagnosis."
        ),
    )

    # --- Storage ---
    repository = repository_override or _open_repository(
        settings.db_path, settings.encryption_key, settings.encryption_retired_keys
    )
    check_in_store = RepositoryCheckInStore(repository, today=lambda: now().date())

    # --- Providers ---
    if weather_provider_override is not None:
        weather_provider = weather_provider_override
    else:
        weather_provider = MockWeatherProvider(clock=now)
        logger.info("Using mock weather provider")

    if health_provider_override is not None:
        health_provider = health_provider_override
    else:
        health_provider = CompositeHealthProvider([MockHealthProvider(clock=now)])
        logger.info("Using mock health provider")

    companion = companion_override or PendingPayloadCompanion()

    # --- Prediction engine ---
    trainer = ModelTrainer(
        holdout_fraction=settings.training_holdout_fraction,
        random_seed=settings.training_random_seed,
        clock=now,
    )
    controller = ModelLifecycleController(
        trainer,
        min_entries=settings.model_min_entries,
        retrain_new_episodes=settings.retrain_new_episodes,
        retrain_interval=timedelta(days=settings.retrain_interval_days),
        failure_cooldown=timedelta(hours=settings.failure_cooldown_hours),
        clock=now,
        state_store=repository,
    )
    aggregator = RiskAggregator(
        controller,
        history_source=repository.list_episodes,
        weather_provider=weather_provider,
        health_provider=health_provider,
        check_in_store=check_in_store,
        companion=companion,
        latitude=settings.default_latitude,
        longitude=settings.default_longitude,
        refresh_interval=timedelta(seconds=settings.auto_refresh_seconds),
        top_factor_limit=settings.top_factor_limit,
        clock=now,
    )

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "episodes_logged": repository.count_episodes(),
            "model_status": controller.status.to_dict(),
            "health_source": health_provider.data_source,
            "today": now().date().isoformat(),
        }

    register_risk_tools(
        server,
        aggregator,
        repository,
        weather_provider,
        health_provider,
        check_in_store,
        default_latitude=settings.default_latitude,
        default_longitude=settings.default_longitude,
        min_entries=settings.model_min_entries,
    )
    register_log_entry_tools(server, repository, check_in_store, weather_provider, clock=now)
    register_data_management_tools(server, repository, controller)
    logger.info("Migraine risk, log entry and data management tools registered")

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
