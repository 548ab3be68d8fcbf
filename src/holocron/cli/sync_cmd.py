"""Sync commands: status, sync, pull, push."""

from __future__ import annotations

from typing import Optional

import click
from rich.panel import Panel
from rich.table import Table

from ._common import console, fail, open_session, remembered_passphrase, repo_option, repo_path
from ..errors import HolocronError
from ..sync import PassReport, SyncOrchestrator, SyncOutcome
from ..sync.models import SyncStatus


def _print_failures(report: PassReport, action: str) -> None:
    for failure in report.failures:
        console.print(f"  [red]could not {action}[/] {failure.path}: [dim]{failure.error}[/]")


def _status_panel(status: SyncStatus) -> Panel:
    tracking = f"ahead {status.ahead}, behind {status.behind}"
    lines = [
        f"Branch: [cyan]{status.branch}[/] [dim]({tracking})[/]",
        f"Pending encryption: [bold]{len(status.pending)}[/]",
        f"Modified: {len(status.modified)}  Added: {len(status.added)}  "
        f"Deleted: {len(status.deleted)}  Untracked: {len(status.untracked)}",
    ]
    if status.has_conflicts:
        lines.append(f"[bold red]Conflicts: {len(status.conflicted_files)}[/]")
    border = "red" if status.has_conflicts else ("yellow" if status.has_changes else "green")
    return Panel("\n".join(lines), title="Sync status", border_style=border)


def register_sync_commands(main: click.Group) -> None:
    """Register sync commands."""

    @main.command("status")
    @repo_option
    @click.option("--files", "show_files", is_flag=True, help="List changed files.")
    def status_cmd(repo: str, show_files: bool):
        """Show branch, tracking and pending changes."""
        root = repo_path(repo)
        passphrase = remembered_passphrase(root)
        remembered = passphrase is not None
        session = open_session(root, passphrase) if remembered else None
        try:
            status = SyncOrchestrator(root, session).status()
        except HolocronError as exc:
            fail(exc)
        finally:
            if session is not None:
                session.destroy()

        console.print()
        console.print(_status_panel(status))
        if not remembered:
            console.print("[dim]Unsaved plaintext edits are only counted with a remembered passphrase.[/]")

        if show_files and status.changed_files:
            table = Table(show_header=True, header_style="bold")
            table.add_column("Change")
            table.add_column("Path")
            for label, paths in (
                ("pending", status.pending),
                ("modified", status.modified),
                ("added", status.added),
                ("deleted", status.deleted),
                ("untracked", status.untracked),
                ("conflict", status.conflicted_files),
            ):
                for path in paths:
                    table.add_row(label, path)
            console.print(table)

    @main.command("sync")
    @repo_option
    @click.option("-m", "--message", default=None, help="Commit message.")
    @click.option("--remote", default=None, help="Remote to push to (default from settings).")
    @click.option("--branch", default=None, help="Branch to push (default: current).")
    def sync_cmd(repo: str, message: Optional[str], remote: Optional[str], branch: Optional[str]):
        """Encrypt changed notes, commit and push."""
        root = repo_path(repo)
        session = open_session(root)
        try:
            result = SyncOrchestrator(root, session).sync_all(message, remote=remote, branch=branch)
        except HolocronError as exc:
            fail(exc)
        finally:
            session.destroy()

        report = result.encrypted
        console.print(f"  Encrypted: [bold]{len(report.processed)}[/]  unchanged: {len(report.skipped)}")
        if result.deleted:
            console.print(f"  Deleted: [bold]{len(result.deleted)}[/]")
        _print_failures(report, "encrypt")

        if result.outcome == SyncOutcome.NO_CHANGES:
            console.print("[dim]Nothing to commit.[/]")
        elif result.outcome == SyncOutcome.SKIPPED:
            console.print("[yellow]Another sync is already running.[/]")
        else:
            console.print(f"[green]Synced[/] [cyan]{result.branch}[/]: {result.message}")

    @main.command("pull")
    @repo_option
    @click.option("--remote", default=None, help="Remote to pull from (default from settings).")
    @click.option("--branch", default=None, help="Branch to pull (default: current).")
    def pull_cmd(repo: str, remote: Optional[str], branch: Optional[str]):
        """Pull, merge and decrypt received notes."""
        root = repo_path(repo)
        session = open_session(root)
        try:
            result = SyncOrchestrator(root, session).pull(remote, branch)
        except HolocronError as exc:
            fail(exc)
        finally:
            session.destroy()

        if result.has_conflicts:
            console.print(f"[bold red]Merge conflict[/] in {len(result.conflicted_files)} file(s):")
            for path in result.conflicted_files:
                console.print(f"  [yellow]{path}[/]")
            console.print("[dim]Resolve the files, commit, then run `holocron sync`.[/]")
            raise SystemExit(1)

        console.print(f"[green]Pulled.[/] Decrypted: [bold]{len(result.decrypted.processed)}[/]")
        if result.removed:
            console.print(f"  Removed (deleted elsewhere): [bold]{len(result.removed)}[/]")
        _print_failures(result.decrypted, "decrypt")

    @main.command("push")
    @repo_option
    @click.option("--remote", default=None, help="Remote (default from settings).")
    @click.option("--branch", default=None, help="Branch (default: current).")
    def push_cmd(repo: str, remote: Optional[str], branch: Optional[str]):
        """Push committed ciphertext without syncing."""
        root = repo_path(repo)
        try:
            output = SyncOrchestrator(root, None).push(remote, branch)
        except HolocronError as exc:
            fail(exc)
        console.print(f"[green]Pushed.[/] [dim]{output}[/]")
