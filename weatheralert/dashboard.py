"""Weather alert dashboard: a read-only FastAPI view over the daemon's database."""

import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from weatheralert.alerts.classifier import assess, find_next_bad_slot
from weatheralert.models.forecast import Coordinate, Place
from weatheralert.pipeline.refresh import REMEDIATION_HINT
from weatheralert.reporting.formatters import location_label
from weatheralert.storage import alert_repo, state_repo
from weatheralert.storage.cache_store import CacheStore
from weatheralert.storage.database import open_db

DB_PATH = Path("data") / "weatheralert.db"

app = FastAPI(title="Weather Alert Dashboard", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET"],
    allow_headers=["*"],
)


def _conn() -> sqlite3.Connection:
    return open_db(DB_PATH)


@app.get("/api/status")
def get_status():
    """Last cycle state, location label, and error with remediation hint."""
    conn = _conn()
    try:
        latest = state_repo.get_latest_cycle(conn)
        if latest is None:
            return {"state": "idle", "location": "Locating...", "error": None, "hint": None}
        coord = None
        if latest["latitude"] is not None and latest["longitude"] is not None:
            coord = Coordinate(latest["latitude"], latest["longitude"])
        error = latest["error_message"]
        return {
            "state": latest["status"],
            "trigger": latest["trigger"],
            "location": location_label(Place(latest["city"], latest["country"]), coord),
            "started_at": latest["started_at"],
            "completed_at": latest["completed_at"],
            "next_bad_time": latest["next_bad_time"],
            "error": error,
            "hint": REMEDIATION_HINT if error else None,
            "timestamp": datetime.now(UTC).isoformat(),
        }
    finally:
        conn.close()


@app.get("/api/forecast")
def get_forecast():
    """Latest cached forecast with per-slot assessment."""
    conn = _conn()
    try:
        forecast = CacheStore(conn).latest()
        if forecast is None:
            raise HTTPException(status_code=404, detail="No forecast cached yet")
        next_bad = find_next_bad_slot(forecast)
        slots = []
        for slot in forecast.slots:
            verdict = assess(slot)
            slots.append({
                **slot.to_dict(),
                "is_bad": verdict.is_bad,
                "reasons": [r.value for r in verdict.reasons],
                "advice": verdict.advice,
            })
        return {
            "current": slots[0],
            "slots": slots,
            "next_bad_time": next_bad.time.isoformat() if next_bad else None,
        }
    finally:
        conn.close()


@app.get("/api/alerts")
def get_alerts(limit: int = 20):
    conn = _conn()
    try:
        return alert_repo.get_recent_alerts(conn, limit=limit)
    finally:
        conn.close()


@app.get("/api/cycles")
def get_cycles(limit: int = 20):
    conn = _conn()
    try:
        return state_repo.get_recent_cycles(conn, limit=limit)
    finally:
        conn.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8777)
