"""Forecast cache keyed by rounded coordinate and UTC hour.

Entries are never evicted: the hour component of the key changes every
60 minutes, so stale entries simply become unreachable.
"""

import json
import logging
import sqlite3
from datetime import UTC, datetime

from weatheralert.models.common import epoch_ms
from weatheralert.models.forecast import Coordinate, Forecast

logger = logging.getLogger(__name__)

KEY_PREFIX = "wx"


def key_for(coord: Coordinate, now: datetime | None = None) -> str:
    """Round to ~1.1 km and truncate to the hour so nearby calls share an entry."""
    if now is None:
        now = datetime.now(UTC)
    hour = now.astimezone(UTC).strftime("%Y-%m-%dT%H")
    return f"{KEY_PREFIX}:{coord.latitude:.2f},{coord.longitude:.2f}:{hour}"


class CacheStore:
    """Best-effort persistence: reads never raise, write failures are swallowed."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def put(self, key: str, forecast: Forecast) -> None:
        blob = json.dumps({"t": epoch_ms(), "data": forecast.to_dict()})
        try:
            self.conn.execute(
                "INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "updated_at = CURRENT_TIMESTAMP",
                (key, blob),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            logger.warning("Cache write failed for %s: %s", key, e)

    def get(self, key: str) -> Forecast | None:
        try:
            row = self.conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            logger.warning("Cache read failed for %s: %s", key, e)
            return None
        if row is None:
            return None
        try:
            payload = json.loads(row[0])
            return Forecast.from_dict(payload["data"])
        except (ValueError, KeyError, TypeError, OverflowError) as e:
            logger.warning("Ignoring malformed cache entry %s: %s", key, e)
            return None

    def latest(self) -> Forecast | None:
        """Most recently written forecast under any key, for read-only views."""
        try:
            row = self.conn.execute(
                "SELECT key FROM kv_store WHERE key LIKE ? ORDER BY updated_at DESC, rowid DESC LIMIT 1",
                (f"{KEY_PREFIX}:%",),
            ).fetchone()
        except sqlite3.Error:
            return None
        if row is None:
            return None
        return self.get(row[0])
