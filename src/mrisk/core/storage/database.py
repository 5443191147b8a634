"""SQLite database management for the migraine health log.

Handles connection lifecycle, schema creation, and migrations.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Migrations, applied in order. Each records its own schema_version row.
# ---------------------------------------------------------------------------

_SCHEMA_VERSION_TABLE = """
CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

_EPISODE_LOG = """
-- One row per logged episode. Everything but the start time is encrypted.
CREATE TABLE IF NOT EXISTS episodes (
    id          TEXT PRIMARY KEY,
    start_time  TEXT NOT NULL,
    payload_enc TEXT NOT NULL,
    created_at  TEXT NOT NULL DEFAULT (datetime('now'))
);

-- At most one check-in per calendar day; later saves overwrite.
CREATE TABLE IF NOT EXISTS daily_check_ins (
    day         TEXT PRIMARY KEY,
    payload_enc TEXT NOT NULL,
    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_episodes_start ON episodes(start_time);
"""

# Retrain and cooldown bookkeeping that must survive restarts
_MODEL_STATE = """
CREATE TABLE IF NOT EXISTS model_state (
    profile    TEXT PRIMARY KEY,
    state_json TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


_MIGRATIONS: tuple[tuple[int, str, str], ...] = (
    (1, "episode log and daily check-ins", _EPISODE_LOG),
    (2, "model_state table", _MODEL_STATE),
)

SCHEMA_VERSION = _MIGRATIONS[-1][0]


class DatabaseError(Exception):
    """Raised when database operations fail."""


class HealthLogDatabase:
    """SQLite database manager for the episode log.

    Supports both file-based and in-memory (`:memory:`) databases.
    In-memory mode is used for testing and for servers started without
    an encryption key.

    Usage::

        with HealthLogDatabase(":memory:") as db:
            db.connection.execute(...)
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the active database connection.

        Raises:
            DatabaseError: If the database has not been initialized.
        """
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    @property
    def path(self) -> str:
        return self._db_path

    def initialize(self) -> None:
        """Open the connection and apply pending migrations. Idempotent."""
        if self._conn is not None:
            return
        self._conn = self._connect()
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._migrate()
        logger.info("Health log database initialized: %s", self._db_path)

    def _connect(self) -> sqlite3.Connection:
        target = self._db_path
        try:
            if target != ":memory:":
                db_file = Path(target).expanduser()
                db_file.parent.mkdir(parents=True, exist_ok=True)
                target = str(db_file)
            # Tools run on the server's worker threads
            return sqlite3.connect(target, check_same_thread=False)
        except (sqlite3.Error, OSError) as exc:
            raise DatabaseError(f"Cannot open health log at {self._db_path}: {exc}") from exc

    def _migrate(self) -> None:
        conn = self.connection
        conn.executescript(_SCHEMA_VERSION_TABLE)
        current = self.get_schema_version()
        for version, description, ddl in _MIGRATIONS:
            if version <= current:
                continue
            conn.executescript(ddl)
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
            conn.commit()
            logger.info("Applied schema migration V%d: %s", version, description)

    def get_schema_version(self) -> int:
        """Highest applied migration, 0 for a fresh file."""
        row = self.connection.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] or 0

    def close(self) -> None:
        if self._conn is None:
            return
        self._conn.close()
        self._conn = None
        logger.info("Health log database closed")

    def __enter__(self) -> HealthLogDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()
