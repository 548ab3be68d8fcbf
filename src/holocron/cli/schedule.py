"""Schedule commands: show and change auto-sync triggers."""

from __future__ import annotations

from typing import Optional

import click
from pydantic import ValidationError
from rich.panel import Panel

from ._common import console, repo_option, repo_path
from ..settings import LockConfig, ScheduleConfig, load_settings, save_settings

DAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]


def _parse_days(value: str) -> list[int]:
    """``mon,wed,5`` -> ``[1, 3, 5]``."""
    days: list[int] = []
    lookup = {name.lower(): i for i, name in enumerate(DAY_NAMES)}
    for part in value.split(","):
        part = part.strip().lower()
        if not part:
            continue
        if part.isdigit():
            days.append(int(part))
        elif part[:3] in lookup:
            days.append(lookup[part[:3]])
        else:
            raise click.BadParameter(f"unknown day: {part}", param_hint="--days")
    return days


def register_schedule_commands(main: click.Group) -> None:
    """Register the schedule command group."""

    @main.group()
    def schedule():
        """Auto-sync schedule (used by `holocron watch`)."""

    @schedule.command("show")
    @repo_option
    def schedule_show(repo: str):
        """Show the current schedule."""
        settings = load_settings(repo_path(repo))
        sched = settings.schedule
        lock = settings.lock
        days = ", ".join(DAY_NAMES[d] for d in sched.days_of_week) or "[dim]none[/]"
        console.print(
            Panel(
                f"Interval: {'[green]on[/]' if sched.interval_enabled else '[dim]off[/]'}"
                f" every {sched.interval_minutes} min\n"
                f"Calendar: {'[green]on[/]' if sched.calendar_enabled else '[dim]off[/]'}"
                f" at {sched.time_of_day} on {days}\n"
                f"Idle lock: {'[green]on[/]' if lock.lock_on_idle else '[dim]off[/]'}"
                f" after {int(lock.idle_timeout_seconds // 60)} min"
                f" (warn {int(lock.warning_seconds)}s before)\n"
                f"Remote: [cyan]{settings.sync.remote}[/]"
                f"  Branch: [cyan]{settings.sync.branch or '(current)'}[/]",
                title="Schedule",
                border_style="cyan",
            )
        )

    @schedule.command("set")
    @repo_option
    @click.option("--interval/--no-interval", default=None, help="Enable interval sync.")
    @click.option("--minutes", type=int, default=None, help="Interval length (1-1440).")
    @click.option("--calendar/--no-calendar", default=None, help="Enable calendar sync.")
    @click.option("--at", "time_of_day", default=None, help="Calendar time, HH:MM (24h).")
    @click.option("--days", default=None, help="Calendar days, e.g. mon,wed,fri or 1,3,5 (0 = Sunday).")
    @click.option("--idle-minutes", type=float, default=None, help="Idle lock timeout in minutes.")
    @click.option("--idle-lock/--no-idle-lock", default=None, help="Lock when idle.")
    @click.option("--remote", default=None, help="Remote used by sync.")
    def schedule_set(
        repo: str,
        interval: Optional[bool],
        minutes: Optional[int],
        calendar: Optional[bool],
        time_of_day: Optional[str],
        days: Optional[str],
        idle_minutes: Optional[float],
        idle_lock: Optional[bool],
        remote: Optional[str],
    ):
        """Change the schedule. Unspecified options keep their value."""
        root = repo_path(repo)
        settings = load_settings(root)

        data = settings.schedule.model_dump()
        if interval is not None:
            data["interval_enabled"] = interval
        if minutes is not None:
            data["interval_minutes"] = minutes
        if calendar is not None:
            data["calendar_enabled"] = calendar
        if time_of_day is not None:
            data["time_of_day"] = time_of_day
        if days is not None:
            data["days_of_week"] = _parse_days(days)

        try:
            settings.schedule = ScheduleConfig.model_validate(data)
            lock_data = settings.lock.model_dump()
            if idle_minutes is not None:
                lock_data["idle_timeout_seconds"] = idle_minutes * 60
            if idle_lock is not None:
                lock_data["lock_on_idle"] = idle_lock
            settings.lock = LockConfig.model_validate(lock_data)
        except ValidationError as exc:
            for err in exc.errors():
                field = ".".join(str(p) for p in err["loc"])
                console.print(f"[bold red]Invalid {field}:[/] {err['msg']}")
            raise SystemExit(1)

        if remote is not None:
            settings.sync.remote = remote

        path = save_settings(root, settings)
        console.print(f"[green]Schedule saved[/] [dim]({path})[/]")
