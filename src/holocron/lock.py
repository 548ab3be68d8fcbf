"""
Session lock manager -- idle timeout with a warning phase.

    UNLOCKED --(remaining <= warning)--> WARNING --(remaining <= 0)--> LOCKED
        ^                                   |
        +------ activity / stay_unlocked ---+

Locking flushes pending work first (encrypt dirty notes), then destroys
the session key material. If a flush fails, an automatic lock waits for
the next check so nothing is lost; a manual lock always goes through.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .audit import audit_event
from .errors import HolocronError
from .session import Session
from .settings import LockConfig

logger = logging.getLogger("holocron.lock")

Unlocker = Callable[[Path, str], Session]


class LockState(str, Enum):
    """Lock manager state."""

    UNLOCKED = "unlocked"
    WARNING = "warning"
    LOCKED = "locked"


def format_time_remaining(seconds: float) -> str:
    """``245`` -> ``"4m 5s"``, ``42`` -> ``"42s"``."""
    total = max(0, int(seconds))
    minutes, secs = divmod(total, 60)
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def _default_unlocker(repo_root: Path, passphrase: str) -> Session:
    from .repo import unlock

    return unlock(repo_root, passphrase)


class SessionLockManager:
    """Owns the unlocked session and locks it after inactivity.

    Args:
        repo_root: Repository root (for audit entries and unlocking).
        config: Idle lock settings.
        unlocker: ``(repo_root, passphrase) -> Session``; defaults to
            :func:`holocron.repo.unlock`.
        clock: Monotonic seconds source.
        on_warn: Called with the seconds remaining when WARNING begins.
        on_lock: Called after the session is destroyed.
    """

    def __init__(
        self,
        repo_root: Path,
        config: Optional[LockConfig] = None,
        unlocker: Optional[Unlocker] = None,
        clock: Callable[[], float] = time.monotonic,
        on_warn: Optional[Callable[[float], None]] = None,
        on_lock: Optional[Callable[[], None]] = None,
    ) -> None:
        self.repo_root = Path(repo_root)
        self.config = config or LockConfig()
        self._unlocker = unlocker or _default_unlocker
        self._clock = clock
        self.on_warn = on_warn
        self.on_lock = on_lock

        self._lock = threading.RLock()
        self._state = LockState.LOCKED
        self._session: Optional[Session] = None
        self._last_activity = clock()
        self._flush_hooks: list[Callable[[], None]] = []

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> LockState:
        with self._lock:
            return self._state

    @property
    def session(self) -> Optional[Session]:
        with self._lock:
            return self._session

    @property
    def is_locked(self) -> bool:
        return self.state == LockState.LOCKED

    def add_flush_hook(self, hook: Callable[[], None]) -> None:
        """Register work to run before the session is destroyed."""
        self._flush_hooks.append(hook)

    # ------------------------------------------------------------------
    # Unlock / activity
    # ------------------------------------------------------------------

    def unlock(self, passphrase: str) -> Session:
        """Unlock the repository and start the idle timer.

        Raises:
            AuthenticationFailed: Wrong passphrase (state stays LOCKED).
        """
        session = self._unlocker(self.repo_root, passphrase)
        with self._lock:
            if self._session is not None and self._session is not session:
                self._session.destroy()
            self._session = session
            self._last_activity = self._clock()
            self._state = LockState.UNLOCKED
        logger.info(
            "Session unlocked (idle lock %s, timeout %s)",
            "on" if self.config.lock_on_idle else "off",
            format_time_remaining(self.config.idle_timeout_seconds),
        )
        if self.config.lock_on_idle:
            self.start()
        return session

    def record_activity(self) -> None:
        """Note user activity; cancels a pending warning."""
        with self._lock:
            if self._state == LockState.LOCKED:
                return
            self._last_activity = self._clock()
            if self._state == LockState.WARNING:
                logger.debug("Activity during warning; staying unlocked")
            self._state = LockState.UNLOCKED

    def reset_timer(self) -> None:
        self.record_activity()

    def stay_unlocked(self) -> None:
        """Dismiss the lock warning and restart the idle timer."""
        self.record_activity()

    def time_until_lock(self) -> float:
        """Seconds left before the idle lock (0 when locked)."""
        with self._lock:
            if self._state == LockState.LOCKED:
                return 0.0
            idle = self._clock() - self._last_activity
            return max(0.0, self.config.idle_timeout_seconds - idle)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def check(self) -> LockState:
        """Evaluate the idle timer once and return the resulting state."""
        warn_remaining: Optional[float] = None
        with self._lock:
            if self._state == LockState.LOCKED or not self.config.lock_on_idle:
                return self._state
            remaining = self.time_until_lock()
            locked = remaining <= 0 and self._do_lock(manual=False)
            if (
                remaining > 0
                and self.config.warn_before_lock
                and remaining <= self.config.warning_seconds
                and self._state == LockState.UNLOCKED
            ):
                self._state = LockState.WARNING
                warn_remaining = remaining
                logger.info("Locking in %s", format_time_remaining(remaining))
            state = self._state

        if locked:
            self._after_lock()
        elif warn_remaining is not None and self.on_warn is not None:
            self.on_warn(warn_remaining)
        return state

    def lock(self) -> bool:
        """Lock now, regardless of the timer."""
        with self._lock:
            if self._state == LockState.LOCKED:
                return True
            locked = self._do_lock(manual=True)
        if locked:
            self._after_lock()
        return locked

    def _run_flush_hooks(self, manual: bool) -> bool:
        for hook in self._flush_hooks:
            try:
                hook()
            except (HolocronError, OSError) as exc:
                if manual:
                    logger.warning("Flush before lock failed, locking anyway: %s", exc)
                    continue
                logger.warning("Flush before lock failed, deferring lock: %s", exc)
                return False
        return True

    def _do_lock(self, manual: bool) -> bool:
        if not self._run_flush_hooks(manual):
            return False

        if self._session is not None:
            self._session.destroy()
            self._session = None
        self._state = LockState.LOCKED
        self._detach_timer()

        reason = "manual" if manual else "idle timeout"
        audit_event(self.repo_root, "LOCK", f"Session locked ({reason})")
        logger.info("Session locked (%s)", reason)
        return True

    def _after_lock(self) -> None:
        if self.on_lock is not None:
            self.on_lock()

    # ------------------------------------------------------------------
    # Timer thread
    # ------------------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            # Each timer thread gets its own event, so a loop that locked
            # the session winds down even if unlock() starts a new one.
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._loop, args=(stop_event,), name="lock-timer", daemon=True
            )
            self._stop_event = stop_event
            self._thread = thread
        thread.start()

    def _detach_timer(self) -> Optional[threading.Thread]:
        with self._lock:
            thread, self._thread = self._thread, None
            self._stop_event.set()
            return thread

    def stop(self) -> None:
        thread = self._detach_timer()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)

    def _loop(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                self.check()
            except Exception as exc:
                logger.error("Lock check error: %s", exc)
            stop_event.wait(timeout=self.config.check_interval_seconds)
