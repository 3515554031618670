"""Repository for locally scheduled alerts."""

import sqlite3
from datetime import datetime

from weatheralert.models.common import parse_timestamp


def save_alert(
    conn: sqlite3.Connection,
    slot_time: datetime,
    fires_at: datetime,
    title: str,
    body: str,
) -> int:
    """Persist a pending alert. Returns the row id."""
    cursor = conn.execute(
        "INSERT INTO scheduled_alerts (slot_time, fires_at, title, body) "
        "VALUES (?, ?, ?, ?)",
        (slot_time.isoformat(), fires_at.isoformat(), title, body),
    )
    conn.commit()
    assert cursor.lastrowid is not None
    return cursor.lastrowid


def get_due_alerts(conn: sqlite3.Connection, now: datetime) -> list[dict]:
    """Pending alerts whose fire time has passed, oldest first."""
    rows = conn.execute(
        "SELECT * FROM scheduled_alerts WHERE status = 'pending' AND fires_at <= ? "
        "ORDER BY fires_at",
        (now.isoformat(),),
    ).fetchall()
    return [dict(r) for r in rows]


def mark_delivered(conn: sqlite3.Connection, alert_id: int, delivered_at: datetime) -> None:
    conn.execute(
        "UPDATE scheduled_alerts SET status = 'delivered', delivered_at = ? WHERE id = ?",
        (delivered_at.isoformat(), alert_id),
    )
    conn.commit()


def get_pending_alerts(conn: sqlite3.Connection) -> list[dict]:
    rows = conn.execute(
        "SELECT * FROM scheduled_alerts WHERE status = 'pending' ORDER BY fires_at"
    ).fetchall()
    return [dict(r) for r in rows]


def get_recent_alerts(conn: sqlite3.Connection, limit: int = 20) -> list[dict]:
    rows = conn.execute(
        "SELECT * FROM scheduled_alerts ORDER BY id DESC LIMIT ?", (limit,)
    ).fetchall()
    return [dict(r) for r in rows]


def get_pending_for_slot(conn: sqlite3.Connection, slot_time: datetime) -> dict | None:
    row = conn.execute(
        "SELECT * FROM scheduled_alerts WHERE status = 'pending' AND slot_time = ?",
        (slot_time.isoformat(),),
    ).fetchone()
    return dict(row) if row is not None else None


def get_latest_pending_slot_time(conn: sqlite3.Connection) -> datetime | None:
    """Slot time of the most recently scheduled pending alert, if any."""
    row = conn.execute(
        "SELECT slot_time FROM scheduled_alerts WHERE status = 'pending' "
        "ORDER BY id DESC LIMIT 1"
    ).fetchone()
    if row is None:
        return None
    return parse_timestamp(row[0])
