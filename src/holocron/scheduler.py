"""
Auto-sync scheduler -- interval and calendar triggers.

Two independent triggers, each evaluated by its own worker thread:

    interval  : every N minutes since the trigger was enabled
    calendar  : at HH:MM on selected weekdays (0 = Sunday), once per day

Triggers are pure evaluators over an injected clock, so tests drive them
with ``tick_interval(now)`` / ``tick_calendar(now)`` instead of sleeping.
A trigger that fires while nothing changed does nothing; the interval
anchor still advances so skipped ticks never bunch up.
"""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timedelta
from pathlib import PurePosixPath
from typing import Callable, Iterable, Optional

from .errors import HolocronError
from .settings import ScheduleConfig

logger = logging.getLogger("holocron.scheduler")

Clock = Callable[[], datetime]

INTERVAL_PREFIX = "Auto-sync"
CALENDAR_PREFIX = "Scheduled sync"


def sunday_weekday(moment: datetime) -> int:
    """Weekday with 0 = Sunday ... 6 = Saturday."""
    return (moment.weekday() + 1) % 7


def _note_title(path: str) -> str:
    name = PurePosixPath(path).name
    for suffix in (".md.enc", ".md"):
        if name.endswith(suffix):
            name = name[: -len(suffix)]
            break
    return " ".join(word[:1].upper() + word[1:] for word in name.split("-"))


def commit_message(changed_files: Iterable[str], prefix: str = INTERVAL_PREFIX) -> str:
    """Build an automatic commit message from changed file paths.

    A note and its ciphertext count once.

    >>> commit_message(["notes/my-first-note.md", "notes/my-first-note.md.enc"])
    'Auto-sync: 1 note updated'
    >>> commit_message(["assets/logo.png"], "Scheduled sync")
    'Scheduled sync: Updates'
    """
    seen: dict[str, str] = {}
    for path in changed_files:
        if not (path.endswith(".md") or path.endswith(".md.enc")):
            continue
        key = path[: -len(".enc")] if path.endswith(".enc") else path
        title = _note_title(path)
        if title:
            seen.setdefault(key, title)

    count = len(seen)
    if count == 0:
        return f"{prefix}: Updates"
    return f"{prefix}: {count} note{'s' if count > 1 else ''} updated"


class IntervalTrigger:
    """Fires each time ``minutes`` elapse since it was enabled.

    The anchor moves forward by whole intervals, so a late tick fires once
    and the next fire stays on the original cadence.
    """

    def __init__(self, minutes: int, clock: Clock = datetime.now) -> None:
        if minutes < 1:
            raise ValueError("interval must be at least 1 minute")
        self.interval = timedelta(minutes=minutes)
        self._clock = clock
        self._anchor: Optional[datetime] = None

    @property
    def enabled(self) -> bool:
        return self._anchor is not None

    def enable(self, now: Optional[datetime] = None) -> None:
        self._anchor = now or self._clock()

    def disable(self) -> None:
        self._anchor = None

    def next_due(self) -> Optional[datetime]:
        return self._anchor + self.interval if self._anchor is not None else None

    def due(self, now: datetime) -> bool:
        if self._anchor is None:
            return False
        elapsed = now - self._anchor
        if elapsed < self.interval:
            return False
        self._anchor += self.interval * (elapsed // self.interval)
        return True


class CalendarTrigger:
    """Fires once at ``time_of_day`` on each selected weekday.

    The last fired date survives disable/enable, and a slot that began
    before the trigger was (re-)enabled is never fired.
    """

    def __init__(self, time_of_day: str, days_of_week: Iterable[int], clock: Clock = datetime.now) -> None:
        self.time_of_day = time_of_day
        self.days_of_week = set(days_of_week)
        self._clock = clock
        self._enabled_at: Optional[datetime] = None
        self._last_fired: Optional[date] = None

    @property
    def enabled(self) -> bool:
        return self._enabled_at is not None

    def enable(self, now: Optional[datetime] = None) -> None:
        self._enabled_at = now or self._clock()

    def disable(self) -> None:
        self._enabled_at = None

    def _slot(self, day: date) -> datetime:
        hour, minute = (int(part) for part in self.time_of_day.split(":"))
        return datetime(day.year, day.month, day.day, hour, minute)

    def due(self, now: datetime) -> bool:
        if self._enabled_at is None:
            return False
        if sunday_weekday(now) not in self.days_of_week:
            return False
        if now.strftime("%H:%M") != self.time_of_day:
            return False
        if self._last_fired == now.date():
            return False
        if self._slot(now.date()) < self._enabled_at.replace(tzinfo=None):
            return False
        self._last_fired = now.date()
        return True

    def next_due(self, now: Optional[datetime] = None) -> Optional[datetime]:
        """Next slot that would fire, within the coming week."""
        if self._enabled_at is None or not self.days_of_week:
            return None
        now = now or self._clock()
        for offset in range(8):
            day = now.date() + timedelta(days=offset)
            slot = self._slot(day)
            if sunday_weekday(slot) not in self.days_of_week:
                continue
            if slot + timedelta(minutes=1) <= now or self._last_fired == day:
                continue
            return slot
        return None


class AutoSyncScheduler:
    """Runs interval and calendar triggers on background threads.

    Args:
        sync: Called with a commit message when a trigger fires.
        has_changes: Returns True when there is something to commit.
        config: Schedule settings.
        clock: Returns the current local time.
        changed_files: Returns changed paths for the commit message.
        poll_seconds: How often each worker evaluates its trigger.
    """

    def __init__(
        self,
        sync: Callable[[str], object],
        has_changes: Callable[[], bool],
        config: Optional[ScheduleConfig] = None,
        clock: Clock = datetime.now,
        changed_files: Optional[Callable[[], list[str]]] = None,
        poll_seconds: float = 1.0,
        interval_prefix: str = INTERVAL_PREFIX,
        calendar_prefix: str = CALENDAR_PREFIX,
    ) -> None:
        self._sync = sync
        self._has_changes = has_changes
        self._changed_files = changed_files or (lambda: [])
        self.clock = clock
        self.poll_seconds = poll_seconds
        self.interval_prefix = interval_prefix
        self.calendar_prefix = calendar_prefix

        self.config = config or ScheduleConfig()
        self.interval = IntervalTrigger(self.config.interval_minutes, clock)
        self.calendar = CalendarTrigger(self.config.time_of_day, self.config.days_of_week, clock)
        self.last_error: Optional[BaseException] = None
        self.last_run: Optional[datetime] = None

        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self.apply(self.config)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def apply(self, config: ScheduleConfig) -> None:
        """Adopt new settings.

        The interval anchor resets only when the interval is (re-)enabled
        or its length changes. Calendar time or day changes take effect
        for the next slot.
        """
        previous = self.config
        now = self.clock()

        if config.interval_enabled:
            changed = config.interval_minutes != previous.interval_minutes
            if changed:
                self.interval = IntervalTrigger(config.interval_minutes, self.clock)
            if changed or not self.interval.enabled:
                self.interval.enable(now)
        else:
            self.interval.disable()

        self.calendar.time_of_day = config.time_of_day
        self.calendar.days_of_week = set(config.days_of_week)
        if config.calendar_enabled:
            if not self.calendar.enabled:
                self.calendar.enable(now)
        else:
            self.calendar.disable()

        self.config = config
        logger.info(
            "Schedule: interval=%s (%d min), calendar=%s (%s on %s)",
            "on" if config.interval_enabled else "off",
            config.interval_minutes,
            "on" if config.calendar_enabled else "off",
            config.time_of_day,
            ",".join(str(d) for d in config.days_of_week),
        )

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _fire(self, prefix: str) -> Optional[object]:
        try:
            if not self._has_changes():
                logger.debug("%s: no changes to sync", prefix)
                return None
            message = commit_message(self._changed_files(), prefix)
            logger.info("%s triggered: %s", prefix, message)
            result = self._sync(message)
            self.last_run = self.clock()
            self.last_error = None
            return result
        except HolocronError as exc:
            self.last_error = exc
            logger.error("%s failed: %s", prefix, exc)
            return None

    def tick_interval(self, now: Optional[datetime] = None) -> Optional[object]:
        """Evaluate the interval trigger once. Returns the sync result if it ran."""
        if not self.interval.due(now or self.clock()):
            return None
        return self._fire(self.interval_prefix)

    def tick_calendar(self, now: Optional[datetime] = None) -> Optional[object]:
        """Evaluate the calendar trigger once. Returns the sync result if it ran."""
        if not self.calendar.due(now or self.clock()):
            return None
        return self._fire(self.calendar_prefix)

    def next_run(self) -> Optional[datetime]:
        """Earliest upcoming trigger time, if any trigger is enabled."""
        candidates = [t for t in (self.interval.next_due(), self.calendar.next_due()) if t is not None]
        return min(candidates) if candidates else None

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        workers = [
            ("interval", self.tick_interval),
            ("calendar", self.tick_calendar),
        ]
        for name, tick in workers:
            t = threading.Thread(target=self._loop, args=(name, tick), name=f"autosync-{name}", daemon=True)
            t.start()
            self._threads.append(t)
        logger.info("Auto-sync scheduler started")

    def stop(self) -> None:
        self._stop_event.set()
        current = threading.current_thread()
        for t in self._threads:
            if t is not current:
                t.join(timeout=5)
        self._threads = []
        logger.info("Auto-sync scheduler stopped")

    def _loop(self, name: str, tick: Callable[[Optional[datetime]], object]) -> None:
        while not self._stop_event.is_set():
            try:
                tick(self.clock())
            except Exception as exc:
                logger.error("Scheduler %s tick error: %s", name, exc)
            self._stop_event.wait(timeout=self.poll_seconds)
