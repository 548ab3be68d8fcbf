"""
Holocron watch daemon -- unattended sync while the repository is unlocked.

Wires the pieces together for one repository:

    passphrase -> SessionLockManager.unlock -> Session
    Session -> SyncOrchestrator -> AutoSyncScheduler (interval + calendar)
    plaintext edits -> record_activity ; idle timeout -> flush + lock -> exit

The daemon exits on SIGTERM/SIGINT or as soon as the session locks.
"""

from __future__ import annotations

import logging
import os
import signal
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .config import LOCAL_DIR
from .errors import HolocronError, InvalidInputError
from .lock import SessionLockManager, format_time_remaining
from .scheduler import AutoSyncScheduler
from .settings import HolocronSettings, load_settings
from .sync.engine import SyncOrchestrator
from .sync.models import SyncResult
from .sync.runner import CommandRunner
from .sync.tree import iter_plaintext_files

logger = logging.getLogger("holocron.daemon")

PID_FILE = "daemon.pid"
LOG_DIR = "logs"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


class DaemonConfig:
    """Configuration for the watch daemon.

    Attributes:
        repo_root: Repository root.
        local_dir: Local-only state directory (PID file, logs).
        poll_interval: Seconds between activity scans.
        log_file: Path for daemon log output.
    """

    def __init__(self, repo_root: Path, poll_interval: float = 1.0):
        self.repo_root = Path(repo_root).expanduser()
        self.local_dir = self.repo_root / LOCAL_DIR
        self.poll_interval = poll_interval

        log_dir = self.local_dir / LOG_DIR
        log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = log_dir / "daemon.log"


class SyncDaemon:
    """Runs scheduled syncs until stopped or locked.

    Args:
        config: Daemon configuration.
        settings: User settings (loaded from the repository when omitted).
        runner: Command runner for git.
        lock_manager: Pre-built lock manager (tests inject clocks here).
    """

    def __init__(
        self,
        config: DaemonConfig,
        settings: Optional[HolocronSettings] = None,
        runner: Optional[CommandRunner] = None,
        lock_manager: Optional[SessionLockManager] = None,
    ):
        self.config = config
        self.settings = settings or load_settings(config.repo_root)
        self.runner = runner
        self.lock_manager = lock_manager or SessionLockManager(config.repo_root, self.settings.lock)
        self.lock_manager.on_lock = self._on_lock
        self.lock_manager.on_warn = self._on_warn
        self.lock_manager.add_flush_hook(self._flush)

        self.orchestrator: Optional[SyncOrchestrator] = None
        self.scheduler: Optional[AutoSyncScheduler] = None
        self.started_at: Optional[datetime] = None
        self._stop_event = threading.Event()
        self._log_handler: Optional[logging.Handler] = None
        self._last_mtime = 0.0

    @property
    def running(self) -> bool:
        return self.started_at is not None and not self._stop_event.is_set()

    def start(self, passphrase: str, install_signals: bool = True) -> None:
        """Unlock, then start the scheduler and the idle timer.

        Raises:
            AuthenticationFailed: Wrong passphrase.
        """
        self._setup_logging()
        try:
            self._write_pid()
        except HolocronError:
            self._remove_log_handler()
            raise
        try:
            session = self.lock_manager.unlock(passphrase)
        except HolocronError:
            self._remove_pid()
            self._remove_log_handler()
            raise

        self.orchestrator = SyncOrchestrator(
            self.config.repo_root, session, runner=self.runner, settings=self.settings
        )
        self.scheduler = AutoSyncScheduler(
            sync=self._sync,
            has_changes=self.orchestrator.has_changes,
            changed_files=lambda: self.orchestrator.status().changed_files,
            config=self.settings.schedule,
            interval_prefix=self.settings.sync.auto_message_prefix,
            calendar_prefix=self.settings.sync.scheduled_message_prefix,
        )

        if install_signals:
            self._setup_signals()

        self._stop_event.clear()
        self.started_at = datetime.now(timezone.utc)
        self._last_mtime = self._latest_mtime()
        self.scheduler.start()
        logger.info("Daemon started for %s (PID %d)", self.config.repo_root, os.getpid())

    def stop(self) -> None:
        """Stop scheduling, flush and lock, remove the PID file."""
        logger.info("Daemon stopping...")
        self._stop_event.set()
        if self.scheduler is not None:
            self.scheduler.stop()
        if not self.lock_manager.is_locked:
            self.lock_manager.lock()
        self._remove_pid()
        logger.info("Daemon stopped.")
        self._remove_log_handler()

    def run_forever(self) -> None:
        """Block until stop is signaled or the session locks."""
        try:
            while not self._stop_event.is_set():
                self.poll_activity()
                self._stop_event.wait(timeout=self.config.poll_interval)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def poll_activity(self) -> bool:
        """Treat plaintext edits as user activity. Returns True on new edits."""
        latest = self._latest_mtime()
        if latest > self._last_mtime:
            self._last_mtime = latest
            self.lock_manager.record_activity()
            return True
        return False

    def _latest_mtime(self) -> float:
        latest = 0.0
        for path in iter_plaintext_files(self.config.repo_root):
            try:
                latest = max(latest, path.stat().st_mtime)
            except OSError:
                continue
        return latest

    def _sync(self, message: str) -> SyncResult:
        return self.orchestrator.sync_all(message)

    def _flush(self) -> None:
        if self.orchestrator is None:
            return
        report = self.orchestrator.encrypt_all()
        if report.failures:
            raise HolocronError(
                f"{len(report.failures)} file(s) could not be encrypted before locking"
            )

    def _on_warn(self, remaining: float) -> None:
        logger.warning("Idle: locking in %s", format_time_remaining(remaining))

    def _on_lock(self) -> None:
        logger.info("Session locked; daemon exiting")
        self._stop_event.set()

    def _setup_logging(self) -> None:
        """Attach a file handler for daemon output."""
        if self._log_handler is not None:
            return
        handler = logging.FileHandler(self.config.log_file)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root = logging.getLogger()
        root.addHandler(handler)
        root.setLevel(logging.INFO)
        self._log_handler = handler

    def _remove_log_handler(self) -> None:
        if self._log_handler is not None:
            logging.getLogger().removeHandler(self._log_handler)
            self._log_handler.close()
            self._log_handler = None

    def _setup_signals(self) -> None:
        """Register signal handlers for graceful shutdown."""
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum, frame):
        logger.info("Received signal %s -- stopping", signal.Signals(signum).name)
        self._stop_event.set()

    def _write_pid(self) -> None:
        existing = read_pid(self.config.repo_root)
        if existing is not None and existing != os.getpid():
            raise InvalidInputError(
                f"Daemon already running (PID {existing})",
                hint="Stop it first or remove .holocron/local/daemon.pid.",
            )
        pid_path = self.config.local_dir / PID_FILE
        pid_path.parent.mkdir(parents=True, exist_ok=True)
        pid_path.write_text(str(os.getpid()), encoding="utf-8")

    def _remove_pid(self) -> None:
        pid_path = self.config.local_dir / PID_FILE
        if pid_path.exists():
            pid_path.unlink()


def read_pid(repo_root: Path) -> Optional[int]:
    """Read the daemon PID, clearing a stale PID file.

    Returns:
        PID as int, or None if no daemon is running.
    """
    pid_path = Path(repo_root).expanduser() / LOCAL_DIR / PID_FILE
    if not pid_path.exists():
        return None
    try:
        pid = int(pid_path.read_text(encoding="utf-8").strip())
        os.kill(pid, 0)
        return pid
    except (ValueError, ProcessLookupError, PermissionError):
        pid_path.unlink(missing_ok=True)
        return None


def is_running(repo_root: Path) -> bool:
    return read_pid(repo_root) is not None
