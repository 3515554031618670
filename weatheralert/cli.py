"""CLI entry point for the weather alert service."""

import argparse
import logging
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from weatheralert.alerts.classifier import assess
from weatheralert.config.loader import (
    get_config_value,
    load_config,
    redacted_dump,
    save_config,
    set_config_value,
)
from weatheralert.ingest.geocoder import Geocoder, PlaceSearch
from weatheralert.models.forecast import Coordinate, Place
from weatheralert.models.reporting import OrchestratorState
from weatheralert.pipeline.refresh import REMEDIATION_HINT, create_orchestrator
from weatheralert.reporting.formatters import (
    format_error_text,
    format_forecast_text,
    format_summary_json,
    format_summary_text,
    header_subtitle,
    location_label,
)
from weatheralert.storage import alert_repo, state_repo
from weatheralert.storage.cache_store import CacheStore
from weatheralert.storage.database import open_db

DEFAULT_CONFIG = "config/weatheralert.yaml"
DEFAULT_DB = "data/weatheralert.db"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="weatheralert",
        description="Hourly bad-weather alerts, one hour ahead",
    )
    parser.add_argument("--config", default=DEFAULT_CONFIG, help="Config YAML path")
    parser.add_argument("--db", default=DEFAULT_DB, help="SQLite DB path")

    sub = parser.add_subparsers(dest="command")

    # refresh
    refresh_p = sub.add_parser("refresh", help="Run one refresh cycle")
    refresh_p.add_argument("--lat", type=float, help="Latitude override")
    refresh_p.add_argument("--lon", type=float, help="Longitude override")
    refresh_p.add_argument("--json", action="store_true", help="Print the cycle summary as JSON")

    # place
    place_p = sub.add_parser("place", help="Search a place and refresh for it")
    place_p.add_argument("query", help="Place name, e.g. 'Galway, Ireland'")
    place_p.add_argument("--pick", type=int, help="Refresh for the Nth match (1-based)")

    # read-only views
    sub.add_parser("forecast", help="Show the last cached forecast")
    sub.add_parser("status", help="Show the last refresh cycle")
    sub.add_parser("alerts", help="List scheduled alerts")

    # daemon
    daemon_p = sub.add_parser("daemon", help="Run the polling daemon")
    group = daemon_p.add_mutually_exclusive_group()
    group.add_argument("--stop", action="store_true", help="Stop a running daemon")
    group.add_argument("--status", action="store_true", help="Show daemon status")
    group.add_argument("--background", action="store_true", help="Pause polling")
    group.add_argument("--foreground", action="store_true", help="Resume polling")

    # config show / config set
    config_p = sub.add_parser("config", help="Config operations")
    config_sub = config_p.add_subparsers(dest="config_command")
    config_sub.add_parser("show", help="Display current config")
    set_p = config_sub.add_parser("set", help="Set a config value")
    set_p.add_argument("keyvalue", help="key=value to set")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.config)

    if args.command == "refresh":
        return _cmd_refresh(config, args)
    elif args.command == "place":
        return _cmd_place(config, args)
    elif args.command == "forecast":
        return _cmd_forecast(config, args)
    elif args.command == "status":
        return _cmd_status(args)
    elif args.command == "alerts":
        return _cmd_alerts(args)
    elif args.command == "daemon":
        return _cmd_daemon(config, args)
    elif args.command == "config":
        return _cmd_config(config, args)
    else:
        parser.print_help()
        return 1


def _run_and_report(orchestrator, summary, config, as_json: bool = False) -> int:
    if summary is None:
        print("A refresh is already running")
        return 1
    orchestrator.wait_for_enrichment(timeout=config.geocoding.timeout_seconds * 2)
    if as_json:
        print(format_summary_json(summary))
        return 0 if not summary.errors else 1
    logging.getLogger(__name__).info("\n%s", format_summary_text(summary))

    view = orchestrator.snapshot()
    tz = ZoneInfo(config.alerts.timezone) if config.alerts.timezone else None
    label = location_label(view["place"], view["coordinate"])
    print(header_subtitle(OrchestratorState(view["state"]), view["forecast"], orchestrator.now()))
    if view["forecast"] is not None:
        print(format_forecast_text(view["forecast"], label, tz))
    if view["error"]:
        print(format_error_text(view["error"], REMEDIATION_HINT))
    next_bad = view["next_bad_slot"]
    if next_bad is not None:
        reasons = ", ".join(r.value for r in assess(next_bad).reasons)
        print(f"Next bad weather: {next_bad.time.astimezone(tz):%H:%M} ({reasons})")
    if summary.alert_scheduled and summary.next_bad_time is not None:
        print(f"🔔 Alert scheduled 1 hour before {summary.next_bad_time.astimezone(tz):%H:%M}")
    return 0 if not summary.errors else 1


def _cmd_refresh(config, args) -> int:
    conn = open_db(args.db)
    orchestrator = create_orchestrator(config, conn)
    try:
        if args.lat is not None and args.lon is not None:
            summary = orchestrator.refresh_for(Coordinate(args.lat, args.lon))
        else:
            summary = orchestrator.refresh()
        return _run_and_report(orchestrator, summary, config, as_json=args.json)
    finally:
        orchestrator.close()
        conn.close()


def _cmd_place(config, args) -> int:
    geo = config.geocoding
    search = PlaceSearch(
        Geocoder(
            nominatim_url=geo.nominatim_url,
            bigdatacloud_url=geo.bigdatacloud_url,
            user_agent=geo.user_agent,
            timeout=geo.timeout_seconds,
        )
    )
    matches = search.run(args.query) or []
    if not matches:
        print(f"No places found for {args.query!r}")
        return 1

    if args.pick is None:
        for i, m in enumerate(matches, start=1):
            print(f"{i}. {m.label} ({m.latitude:.3f}, {m.longitude:.3f})")
        print("Re-run with --pick N to refresh for a place")
        return 0

    if not 1 <= args.pick <= len(matches):
        print(f"--pick must be between 1 and {len(matches)}")
        return 1
    match = matches[args.pick - 1]

    conn = open_db(args.db)
    orchestrator = create_orchestrator(config, conn)
    try:
        summary = orchestrator.refresh_for(match.coordinate, match.city, match.country)
        return _run_and_report(orchestrator, summary, config)
    finally:
        orchestrator.close()
        conn.close()


def _cmd_forecast(config, args) -> int:
    conn = open_db(args.db)
    try:
        forecast = CacheStore(conn).latest()
        if forecast is None:
            print("No cached forecast yet, run `weatheralert refresh`")
            return 1
        latest = state_repo.get_latest_cycle(conn) or {}
        coord = None
        if latest.get("latitude") is not None and latest.get("longitude") is not None:
            coord = Coordinate(latest["latitude"], latest["longitude"])
        label = location_label(Place(latest.get("city"), latest.get("country")), coord)
        tz = ZoneInfo(config.alerts.timezone) if config.alerts.timezone else None
        print(format_forecast_text(forecast, label, tz))
        return 0
    finally:
        conn.close()


def _cmd_status(args) -> int:
    conn = open_db(args.db)
    try:
        latest = state_repo.get_latest_cycle(conn)
        if latest is None:
            print("State: idle (no refresh yet)")
            return 0
        print(f"State: {latest['status']} | Trigger: {latest['trigger']}")
        print(f"Started: {latest['started_at']} | Completed: {latest['completed_at']}")
        if latest["latitude"] is not None:
            coord = Coordinate(latest["latitude"], latest["longitude"])
            print(f"Location: {location_label(Place(latest['city'], latest['country']), coord)}")
        print(f"Slots: {latest['slot_count']} | Next bad: {latest['next_bad_time'] or 'none'}")
        if latest["error_message"]:
            print(format_error_text(latest["error_message"], REMEDIATION_HINT))
        return 0
    finally:
        conn.close()


def _cmd_alerts(args) -> int:
    conn = open_db(args.db)
    try:
        alerts = alert_repo.get_recent_alerts(conn)
        if not alerts:
            print("No alerts scheduled")
            return 0
        now = datetime.now(UTC).isoformat()
        for a in alerts:
            marker = "pending" if a["status"] == "pending" and a["fires_at"] > now else a["status"]
            print(f"[{marker}] {a['fires_at']}  {a['title']}: {a['body']}")
        return 0
    finally:
        conn.close()


def _cmd_daemon(config, args) -> int:
    from weatheralert.daemon import RefreshDaemon, daemon_status, signal_daemon, stop_daemon

    if args.stop:
        return stop_daemon()
    if args.status:
        return daemon_status()
    if args.background or args.foreground:
        return signal_daemon(foreground=args.foreground)
    RefreshDaemon(config, db_path=args.db).start()
    return 0


def _cmd_config(config, args) -> int:
    if args.config_command == "show":
        print(redacted_dump(config))
        return 0
    elif args.config_command == "set":
        kv = args.keyvalue
        if "=" not in kv:
            print("Error: use key=value format")
            return 1
        key, value = kv.split("=", 1)
        try:
            new_config = set_config_value(config, key.strip(), value.strip())
            save_config(new_config, args.config)
            print(f"Set {key.strip()} = {get_config_value(new_config, key.strip())}")
            return 0
        except Exception as e:
            print(f"Error: {e}")
            return 1
    else:
        print("Use: config show | config set key=value")
        return 1
