"""At most one pending alert per forecast slot."""

import sqlite3


def up(conn: sqlite3.Connection) -> None:
    # Keep the oldest pending row for each slot before adding the constraint.
    conn.execute(
        "DELETE FROM scheduled_alerts WHERE status = 'pending' AND id NOT IN ("
        "SELECT MIN(id) FROM scheduled_alerts WHERE status = 'pending' GROUP BY slot_time)"
    )
    conn.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_scheduled_alerts_pending_slot "
        "ON scheduled_alerts(slot_time) WHERE status = 'pending'"
    )
    conn.commit()
