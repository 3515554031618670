"""Initial schema: forecast cache, system state, alerts, and cycle log."""

import sqlite3

DDL = [
    # String-keyed JSON blobs (forecast cache)
    """
    CREATE TABLE IF NOT EXISTS kv_store (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,

    # System state (last device position, etc.)
    """
    CREATE TABLE IF NOT EXISTS system_state (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,

    # Local notifications waiting for delivery
    """
    CREATE TABLE IF NOT EXISTS scheduled_alerts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        slot_time TEXT NOT NULL,
        fires_at TEXT NOT NULL,
        title TEXT NOT NULL,
        body TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        delivered_at TEXT
    )
    """,
    (
        "CREATE INDEX IF NOT EXISTS idx_scheduled_alerts_due "
        "ON scheduled_alerts(status, fires_at)"
    ),

    # Refresh cycle log
    """
    CREATE TABLE IF NOT EXISTS cycles (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        cycle_id TEXT UNIQUE NOT NULL,
        trigger TEXT NOT NULL,
        config_hash TEXT,
        started_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        completed_at TEXT,
        status TEXT NOT NULL DEFAULT 'loading',
        latitude REAL,
        longitude REAL,
        city TEXT,
        country TEXT,
        slot_count INTEGER NOT NULL DEFAULT 0,
        next_bad_time TEXT,
        alert_scheduled INTEGER NOT NULL DEFAULT 0,
        error_message TEXT
    )
    """,
]


def up(conn: sqlite3.Connection) -> None:
    for stmt in DDL:
        conn.execute(stmt)
    conn.commit()
