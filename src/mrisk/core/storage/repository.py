"""Health log repository: CRUD for the encrypted episode log.

The repository mediates between domain records (EpisodeRecord,
DailyCheckIn) and the SQLite database, using FieldEncryptor for everything
except the lookup columns.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import replace
from datetime import date, datetime
from typing import Any

from mrisk.core.storage.database import HealthLogDatabase
from mrisk.core.storage.encryption import EncryptionError, FieldEncryptor
from mrisk.domains.migraine.domain_logic.risk_models import (
    SEVERITY_MAX,
    SEVERITY_MIN,
    DailyCheckIn,
    EpisodeRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "default"


class RepositoryError(Exception):
    """Raised when repository operations fail."""


def _naive(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        return dt.astimezone().replace(tzinfo=None)
    return dt


class HealthLogRepository:
    """CRUD repository for episodes, daily check-ins and model bookkeeping.

    Usage::

        db = HealthLogDatabase(":memory:")
        db.initialize()
        repo = HealthLogRepository(db, FieldEncryptor(key="..."))

        episode_id = repo.save_episode(episode)
        history = repo.list_episodes()
    """

    def __init__(self, database: HealthLogDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    # ------------------------------------------------------------------
    # Episodes
    # ------------------------------------------------------------------

    def save_episode(self, episode: EpisodeRecord) -> str:
        """Persist an episode. Episodes are immutable once saved.

        Returns:
            The episode ID (generated when ``episode.id`` is empty).

        Raises:
            RepositoryError: If the episode ends before it starts or the
                ID already exists.
        """
        start = _naive(episode.start)
        end = _naive(episode.end) if episode.end is not None else None
        if end is not None and end < start:
            raise RepositoryError("Episode end must not be before its start")

        eid = episode.id or self._new_id()
        record = replace(episode, id=eid, start=start, end=end)
        conn = self._db.connection
        if conn.execute("SELECT 1 FROM episodes WHERE id = ?", (eid,)).fetchone():
            raise RepositoryError(f"Episode {eid} already exists")

        conn.execute(
            "INSERT INTO episodes (id, start_time, payload_enc) VALUES (?, ?, ?)",
            (eid, start.isoformat(), self._enc.encrypt(record.to_dict())),
        )
        conn.commit()
        logger.info("Saved episode %s (severity=%d)", eid, episode.severity)
        return eid

    def get_episode(self, episode_id: str) -> EpisodeRecord | None:
        row = self._db.connection.execute(
            "SELECT payload_enc FROM episodes WHERE id = ?", (episode_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_episode(row)

    def list_episodes(
        self,
        *,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[EpisodeRecord]:
        """Episodes oldest first, optionally from ``since`` (inclusive)."""
        query = "SELECT payload_enc FROM episodes"
        params: list[Any] = []
        if since is not None:
            query += " WHERE start_time >= ?"
            params.append(_naive(since).isoformat())
        query += " ORDER BY start_time ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_episode(row) for row in rows]

    def count_episodes(self) -> int:
        row = self._db.connection.execute("SELECT COUNT(*) FROM episodes").fetchone()
        return row[0]

    def delete_episode(self, episode_id: str) -> bool:
        """Delete an episode. Returns False when it did not exist."""
        conn = self._db.connection
        cursor = conn.execute("DELETE FROM episodes WHERE id = ?", (episode_id,))
        conn.commit()
        if cursor.rowcount:
            logger.info("Deleted episode %s", episode_id)
        return cursor.rowcount > 0

    def _row_to_episode(self, row: Any) -> EpisodeRecord:
        data = self._enc.decrypt(row["payload_enc"])
        try:
            episode = EpisodeRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise RepositoryError(f"Corrupt episode payload: {exc}") from exc
        # Severity is clipped on read
        severity = max(SEVERITY_MIN, min(SEVERITY_MAX, episode.severity))
        return replace(episode, severity=severity) if severity != episode.severity else episode

    # ------------------------------------------------------------------
    # Daily check-ins
    # ------------------------------------------------------------------

    def save_check_in(self, check_in: DailyCheckIn) -> None:
        """Insert or overwrite the check-in for ``check_in.day``."""
        conn = self._db.connection
        conn.execute(
            """INSERT INTO daily_check_ins (day, payload_enc) VALUES (?, ?)
               ON CONFLICT(day) DO UPDATE SET
                   payload_enc = excluded.payload_enc,
                   updated_at = datetime('now')""",
            (check_in.day.isoformat(), self._enc.encrypt(check_in.to_dict())),
        )
        conn.commit()

    def get_check_in(self, day: date) -> DailyCheckIn | None:
        row = self._db.connection.execute(
            "SELECT payload_enc FROM daily_check_ins WHERE day = ?", (day.isoformat(),)
        ).fetchone()
        if row is None:
            return None
        return DailyCheckIn.from_dict(self._enc.decrypt(row["payload_enc"]))

    def list_check_ins(self, *, since: date | None = None) -> list[DailyCheckIn]:
        """Check-ins oldest first, optionally from ``since`` (inclusive)."""
        query = "SELECT payload_enc FROM daily_check_ins"
        params: list[Any] = []
        if since is not None:
            query += " WHERE day >= ?"
            params.append(since.isoformat())
        query += " ORDER BY day ASC"
        rows = self._db.connection.execute(query, params).fetchall()
        return [DailyCheckIn.from_dict(self._enc.decrypt(row["payload_enc"])) for row in rows]

    # ------------------------------------------------------------------
    # Model lifecycle bookkeeping
    # ------------------------------------------------------------------

    def load_model_state(self, profile: str = DEFAULT_PROFILE) -> dict[str, Any] | None:
        row = self._db.connection.execute(
            "SELECT state_json FROM model_state WHERE profile = ?", (profile,)
        ).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row["state_json"])
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable model state for profile %s", profile)
            return None

    def save_model_state(self, state: dict[str, Any], profile: str = DEFAULT_PROFILE) -> None:
        conn = self._db.connection
        conn.execute(
            """INSERT INTO model_state (profile, state_json) VALUES (?, ?)
               ON CONFLICT(profile) DO UPDATE SET
                   state_json = excluded.state_json,
                   updated_at = datetime('now')""",
            (profile, json.dumps(state, separators=(",", ":"))),
        )
        conn.commit()

    # ------------------------------------------------------------------
    # Key rotation
    # ------------------------------------------------------------------

    def rotate_encryption(self) -> int:
        """Re-encrypt every stored payload under the primary key.

        Runs in one transaction; a token no configured key can read aborts
        the rotation and leaves the log unchanged.

        Returns:
            Number of rows re-encrypted.
        """
        conn = self._db.connection
        rotated = 0
        try:
            for table, key_column in (("episodes", "id"), ("daily_check_ins", "day")):
                rows = conn.execute(f"SELECT {key_column}, payload_enc FROM {table}").fetchall()
                for row in rows:
                    conn.execute(
                        f"UPDATE {table} SET payload_enc = ? WHERE {key_column} = ?",
                        (self._enc.rotate(row["payload_enc"]), row[key_column]),
                    )
                    rotated += 1
        except EncryptionError as exc:
            conn.rollback()
            raise RepositoryError(f"Key rotation aborted: {exc}") from exc
        conn.commit()
        logger.info("Re-encrypted %d health log rows under the primary key", rotated)
        return rotated

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_all_data(self) -> int:
        """Delete every episode, check-in and model record.

        Returns:
            Number of episodes deleted.
        """
        conn = self._db.connection
        count = self.count_episodes()
        conn.execute("DELETE FROM episodes")
        conn.execute("DELETE FROM daily_check_ins")
        conn.execute("DELETE FROM model_state")
        conn.commit()
        logger.warning("Deleted ALL health log data: %d episodes removed", count)
        return count
