"""Foreground refresh daemon: polls the forecast and delivers due alerts.

The process stands in for the app's foreground lifetime. SIGUSR1 moves it
to the background (polling stops), SIGUSR2 brings it back (polling
re-armed, catch-up refresh if the gap exceeded the poll interval).

Usage:
    python -m weatheralert daemon
    python -m weatheralert daemon --stop
    python -m weatheralert daemon --status
"""

import json
import logging
import os
import signal
import sys
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from weatheralert.alerts.notifier import LocalNotifier
from weatheralert.config.schema import AppConfig
from weatheralert.models.reporting import CycleSummary, OrchestratorState
from weatheralert.pipeline.refresh import RefreshOrchestrator, create_notifier, create_orchestrator
from weatheralert.reporting.formatters import format_summary_text
from weatheralert.storage.database import open_db

logger = logging.getLogger(__name__)

TICK_SECONDS = 1.0
PID_DIR = Path("data")
PID_FILE = PID_DIR / "daemon.pid"
STATE_FILE = PID_DIR / "daemon_state.json"
LOG_DIR = Path("logs")
MAX_LOG_FILES = 100  # Keep last 100 cycle logs


class RefreshDaemon:
    """Drives one RefreshOrchestrator for the life of the process."""

    def __init__(self, config: AppConfig, db_path: str = "data/weatheralert.db"):
        self.config = config
        self.db_path = db_path
        self.orchestrator: RefreshOrchestrator | None = None
        self.notifier = None
        self._running = False
        self._pending_transition: str | None = None
        self._total_cycles = 0
        self._total_successes = 0
        self._total_failures = 0
        self._started_at: str | None = None

    def start(self) -> None:
        """Start the daemon loop."""
        self._check_not_already_running()
        self._write_pid()
        self._setup_signals()
        self._running = True
        self._started_at = datetime.now(UTC).isoformat()

        conn = open_db(self.db_path)
        self.notifier = create_notifier(self.config, conn)
        if not self.notifier.request_permission():
            logger.warning("Notifications setup: permission not granted, alerts will not be delivered")
        self.orchestrator = create_orchestrator(self.config, conn, notifier=self.notifier)

        interval = self.config.ops.poll_interval_minutes
        logger.info("Daemon started: poll=%dmin pid=%d", interval, os.getpid())
        print(f"🔄 Weather alert daemon started (pid {os.getpid()}, every {interval} min)")
        print(f"   Logs: {LOG_DIR}/")
        print("   Stop: python -m weatheralert daemon --stop")

        try:
            self._run_logged(self.orchestrator.mount)
            self._loop()
        except KeyboardInterrupt:
            logger.info("Daemon interrupted by keyboard")
        finally:
            self._cleanup()
            self.orchestrator.close()
            conn.close()

    def _loop(self) -> None:
        """Tick once per second so signals are handled promptly."""
        assert self.orchestrator is not None
        while self._running:
            self._apply_transition()
            self._run_logged(self.orchestrator.poll_due)
            self._deliver_due()
            time.sleep(TICK_SECONDS)

    def _apply_transition(self) -> None:
        assert self.orchestrator is not None
        transition, self._pending_transition = self._pending_transition, None
        if transition == "background":
            logger.info("App moved to background, polling paused")
            self.orchestrator.on_background()
            self._save_state()
        elif transition == "foreground":
            logger.info("App moved to foreground")
            self._run_logged(self.orchestrator.on_foreground)

    def _deliver_due(self) -> None:
        if isinstance(self.notifier, LocalNotifier):
            try:
                self.notifier.deliver_due(datetime.now(UTC))
            except Exception:
                logger.exception("Alert delivery failed")

    def _run_logged(self, trigger: Callable[[], CycleSummary | None]) -> CycleSummary | None:
        """Run a trigger; if it produced a cycle, log it to its own file."""
        timestamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        log_file = LOG_DIR / f"cycle_{timestamp}.log"

        file_handler = logging.FileHandler(log_file, delay=True)
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        root_logger = logging.getLogger()
        root_logger.addHandler(file_handler)

        try:
            summary = trigger()
        except Exception:
            self._total_cycles += 1
            self._total_failures += 1
            logger.exception("Refresh trigger crashed")
            return None
        finally:
            root_logger.removeHandler(file_handler)
            file_handler.close()

        if summary is None:
            return None

        self._total_cycles += 1
        if summary.errors:
            self._total_failures += 1
        else:
            self._total_successes += 1
        logger.info("\n%s", format_summary_text(summary))
        self._save_state()
        self._rotate_logs()
        return summary

    def _rotate_logs(self) -> None:
        """Keep only the most recent log files."""
        if not LOG_DIR.exists():
            return
        logs = sorted(LOG_DIR.glob("cycle_*.log"))
        if len(logs) > MAX_LOG_FILES:
            for old in logs[: len(logs) - MAX_LOG_FILES]:
                old.unlink(missing_ok=True)

    def _setup_signals(self) -> None:
        """SIGTERM/SIGINT stop; SIGUSR1/SIGUSR2 background/foreground."""
        def _stop(signum: int, frame: object) -> None:
            sig_name = signal.Signals(signum).name
            logger.info("Received %s, shutting down gracefully...", sig_name)
            print(f"\n⏹️  Received {sig_name}, finishing current cycle...")
            self._running = False

        def _background(signum: int, frame: object) -> None:
            self._pending_transition = "background"

        def _foreground(signum: int, frame: object) -> None:
            self._pending_transition = "foreground"

        signal.signal(signal.SIGTERM, _stop)
        signal.signal(signal.SIGINT, _stop)
        signal.signal(signal.SIGUSR1, _background)
        signal.signal(signal.SIGUSR2, _foreground)

    def _check_not_already_running(self) -> None:
        """Prevent duplicate daemons."""
        if PID_FILE.exists():
            try:
                pid = int(PID_FILE.read_text().strip())
                os.kill(pid, 0)
                print(f"❌ Daemon already running (pid {pid}). Stop it first:")
                print("   python -m weatheralert daemon --stop")
                sys.exit(1)
            except (ProcessLookupError, ValueError):
                # Stale PID file, process is dead
                PID_FILE.unlink(missing_ok=True)
            except PermissionError:
                print(f"❌ Daemon may be running (pid {pid}), can't verify.")
                sys.exit(1)

    def _write_pid(self) -> None:
        PID_DIR.mkdir(parents=True, exist_ok=True)
        PID_FILE.write_text(str(os.getpid()))

    def _save_state(self) -> None:
        """Persist daemon stats for status reporting."""
        orch = self.orchestrator
        state = {
            "pid": os.getpid(),
            "started_at": self._started_at,
            "poll_interval_minutes": self.config.ops.poll_interval_minutes,
            "foreground": orch is not None and orch.next_poll_at is not None,
            "state": orch.state.value if orch else OrchestratorState.IDLE.value,
            "error": orch.error if orch else None,
            "total_cycles": self._total_cycles,
            "total_successes": self._total_successes,
            "total_failures": self._total_failures,
            "last_update": datetime.now(UTC).isoformat(),
        }
        PID_DIR.mkdir(parents=True, exist_ok=True)
        STATE_FILE.write_text(json.dumps(state, indent=2))

    def _cleanup(self) -> None:
        """Remove PID file on exit."""
        PID_FILE.unlink(missing_ok=True)
        self._save_state()
        logger.info(
            "Daemon stopped after %d cycles (%d ok, %d failed)",
            self._total_cycles, self._total_successes, self._total_failures,
        )
        print(
            f"⏹️  Daemon stopped after {self._total_cycles} cycles "
            f"({self._total_successes} ok, {self._total_failures} failed)"
        )


def _read_pid() -> int | None:
    try:
        return int(PID_FILE.read_text().strip())
    except (OSError, ValueError):
        return None


def stop_daemon() -> int:
    """Stop a running daemon by sending SIGTERM."""
    if not PID_FILE.exists():
        print("No daemon running (no PID file found)")
        return 1

    pid = _read_pid()
    if pid is None:
        print("Corrupt PID file, removing")
        PID_FILE.unlink(missing_ok=True)
        return 1

    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        print(f"Daemon not running (stale pid {pid}), cleaning up")
        PID_FILE.unlink(missing_ok=True)
        STATE_FILE.unlink(missing_ok=True)
        return 0

    print(f"Stopping daemon (pid {pid})...")
    os.kill(pid, signal.SIGTERM)

    # Wait up to 30s for graceful shutdown
    for _ in range(30):
        time.sleep(1)
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            print("✅ Daemon stopped")
            PID_FILE.unlink(missing_ok=True)
            return 0

    print("⚠️  Daemon didn't stop in 30s, sending SIGKILL")
    os.kill(pid, signal.SIGKILL)
    PID_FILE.unlink(missing_ok=True)
    return 0


def signal_daemon(foreground: bool) -> int:
    """Send a foreground/background transition to the running daemon."""
    pid = _read_pid()
    if pid is None:
        print("No daemon running (no PID file found)")
        return 1
    try:
        os.kill(pid, signal.SIGUSR2 if foreground else signal.SIGUSR1)
    except ProcessLookupError:
        print(f"Daemon not running (stale pid {pid})")
        return 1
    print(f"Sent {'foreground' if foreground else 'background'} to pid {pid}")
    return 0


def daemon_status() -> int:
    """Print daemon status from state file."""
    if not STATE_FILE.exists():
        print("No daemon state found")
        return 1

    state = json.loads(STATE_FILE.read_text())
    pid = state.get("pid", "?")

    running = False
    try:
        os.kill(int(pid), 0)
        running = True
    except (ProcessLookupError, ValueError, TypeError):
        pass

    status_icon = "🟢" if running else "🔴"
    print(f"{status_icon} Daemon {'running' if running else 'stopped'}")
    print(f"  PID: {pid}")
    print(f"  Poll interval: {state.get('poll_interval_minutes', '?')} min")
    print(f"  Foreground: {state.get('foreground', '?')}")
    print(f"  State: {state.get('state', '?')}")
    if state.get("error"):
        print(f"  Error: {state['error']}")
    print(f"  Started: {state.get('started_at', '?')}")
    print(f"  Total cycles: {state.get('total_cycles', 0)}")
    print(f"  Successes: {state.get('total_successes', 0)}")
    print(f"  Failures: {state.get('total_failures', 0)}")
    print(f"  Last update: {state.get('last_update', '?')}")
    return 0
