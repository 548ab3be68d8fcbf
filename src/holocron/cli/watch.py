"""Watch command: run auto-sync in the foreground until idle lock."""

from __future__ import annotations

import sys

import click

from ._common import console, fail, get_passphrase, repo_option, repo_path
from ..errors import HolocronError
from ..lock import format_time_remaining


def register_watch_commands(main: click.Group) -> None:
    """Register the watch and daemon status commands."""

    @main.command("watch")
    @repo_option
    def watch_cmd(repo: str):
        """Unlock and sync on schedule until idle or Ctrl+C.

        Uses the schedule from `holocron schedule`. Plaintext edits count
        as activity; when the idle timeout passes, pending notes are
        encrypted, the key is wiped and the watcher exits.
        """
        from ..daemon import DaemonConfig, SyncDaemon, is_running

        root = repo_path(repo)
        if is_running(root):
            console.print("[yellow]A watcher is already running for this repository.[/]")
            sys.exit(0)

        config = DaemonConfig(root)
        svc = SyncDaemon(config)
        try:
            svc.start(get_passphrase(root))
        except HolocronError as exc:
            fail(exc)

        sched = svc.settings.schedule
        lock = svc.settings.lock
        console.print(f"\n  [green]Watching[/] [cyan]{root}[/]")
        console.print(
            f"  Interval: {'every %d min' % sched.interval_minutes if sched.interval_enabled else 'off'}"
            f" | Calendar: {sched.time_of_day if sched.calendar_enabled else 'off'}"
        )
        if lock.lock_on_idle:
            console.print(f"  Idle lock: {format_time_remaining(lock.idle_timeout_seconds)}")
        console.print(f"  Log: {config.log_file}")
        console.print("  [dim]Ctrl+C to stop[/]\n")
        svc.run_forever()
        console.print("[dim]Watcher stopped; session locked.[/]")

    @main.command("watch-status")
    @repo_option
    def watch_status_cmd(repo: str):
        """Show whether a watcher is running."""
        from ..daemon import read_pid

        pid = read_pid(repo_path(repo))
        if pid is None:
            console.print("[dim]No watcher running.[/]")
        else:
            console.print(f"[green]Watcher running[/] (PID {pid})")
