"""Audit command: show the local audit trail."""

from __future__ import annotations

import click
from rich.table import Table

from ._common import console, repo_option, repo_path
from ..audit import read_audit_log


def register_audit_commands(main: click.Group) -> None:
    """Register the audit command."""

    @main.command("audit")
    @repo_option
    @click.option("--limit", "-n", default=20, help="Show the last N entries (0 = all).")
    def audit_cmd(repo: str, limit: int):
        """Show recent unlocks, locks and syncs."""
        entries = read_audit_log(repo_path(repo), limit=limit)
        if not entries:
            console.print("[dim]No audit entries.[/]")
            return

        table = Table(show_header=True, header_style="bold")
        table.add_column("Time", style="dim")
        table.add_column("Event", style="cyan")
        table.add_column("Detail")
        for entry in entries:
            table.add_row(entry.timestamp[:19].replace("T", " "), entry.event_type, entry.detail)
        console.print(table)
