"""Repository for system state and the refresh cycle log."""

import sqlite3

# --- System state ---

def get_system_state(conn: sqlite3.Connection, key: str) -> str | None:
    """Get a system state value."""
    row = conn.execute(
        "SELECT value FROM system_state WHERE key = ?", (key,)
    ).fetchone()
    if row is None:
        return None
    return row[0]


def set_system_state(conn: sqlite3.Connection, key: str, value: str) -> None:
    """Set a system state value."""
    conn.execute(
        "INSERT INTO system_state (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP) "
        "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP",
        (key, value),
    )
    conn.commit()


# --- Cycles ---

def create_cycle(
    conn: sqlite3.Connection, cycle_id: str, trigger: str, config_hash: str | None = None
) -> None:
    """Record the start of a refresh cycle."""
    conn.execute(
        "INSERT INTO cycles (cycle_id, trigger, config_hash) VALUES (?, ?, ?)",
        (cycle_id, trigger, config_hash),
    )
    conn.commit()


def complete_cycle(
    conn: sqlite3.Connection,
    cycle_id: str,
    status: str,
    error_message: str | None = None,
    **fields: int | float | str | None,
) -> None:
    """Record cycle completion with whatever fields are known."""
    sets = ["completed_at = CURRENT_TIMESTAMP", "status = ?"]
    params: list = [status]

    if error_message is not None:
        sets.append("error_message = ?")
        params.append(error_message)
    for key, val in fields.items():
        if val is not None:
            sets.append(f"{key} = ?")
            params.append(val)

    params.append(cycle_id)
    conn.execute(f"UPDATE cycles SET {', '.join(sets)} WHERE cycle_id = ?", params)
    conn.commit()


def get_latest_cycle(conn: sqlite3.Connection) -> dict | None:
    """Get the most recent cycle."""
    row = conn.execute(
        "SELECT * FROM cycles ORDER BY id DESC LIMIT 1"
    ).fetchone()
    if row is None:
        return None
    return dict(row)


def get_recent_cycles(conn: sqlite3.Connection, limit: int = 20) -> list[dict]:
    rows = conn.execute(
        "SELECT * FROM cycles ORDER BY id DESC LIMIT ?", (limit,)
    ).fetchall()
    return [dict(r) for r in rows]
