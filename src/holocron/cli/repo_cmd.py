"""Repository commands: init, info, rotate-passphrase, migrate, remember, forget."""

from __future__ import annotations

import click
from rich.panel import Panel

from ._common import console, fail, get_passphrase, repo_option, repo_path
from ..crypto.envelope import DEFAULT_ITERATIONS, MIN_ITERATIONS
from ..errors import HolocronError
from ..repo import (
    describe,
    forget_passphrase,
    init_repo,
    migrate_legacy,
    remember_passphrase,
    rotate_passphrase,
    unlock,
)


def register_repo_commands(main: click.Group) -> None:
    """Register repository lifecycle commands."""

    @main.command("init")
    @repo_option
    @click.option(
        "--iterations",
        default=DEFAULT_ITERATIONS,
        type=click.IntRange(min=MIN_ITERATIONS),
        show_default=True,
        help="PBKDF2 iterations for the key encryption key.",
    )
    @click.option("--remember", is_flag=True, help="Remember the passphrase on this machine.")
    def init_cmd(repo: str, iterations: int, remember: bool):
        """Create a new encrypted repository."""
        root = repo_path(repo)
        passphrase = click.prompt("New passphrase", hide_input=True, confirmation_prompt=True)
        try:
            session = init_repo(root, passphrase, iterations=iterations)
            session.destroy()
            if remember:
                remember_passphrase(root, passphrase)
        except HolocronError as exc:
            fail(exc)

        console.print()
        console.print(
            Panel(
                f"Path: [cyan]{root}[/]\n"
                f"KDF: PBKDF2-SHA256 x {iterations:,}\n"
                f"Remembered: {'[green]yes[/]' if remember else '[dim]no[/]'}\n\n"
                "[dim]Write notes under notes/ and boards under kanban/.\n"
                "Only *.enc files are committed.[/]",
                title="Repository initialized",
                border_style="green",
            )
        )

    @main.command("info")
    @repo_option
    def info_cmd(repo: str):
        """Show the repository's non-secret config."""
        try:
            info = describe(repo_path(repo))
        except HolocronError as exc:
            fail(exc)

        lines = [f"Path: [cyan]{info['path']}[/]", f"Config: [bold]{info['config']}[/]"]
        if info["config"] == "present":
            lines += [
                f"Version: {info['version']}",
                f"KDF iterations: {info['kdf_iterations']:,}",
                f"Created: {info['created_at']}",
                f"Remembered passphrase: {'[green]yes[/]' if info['remembered'] else '[dim]no[/]'}",
            ]
        elif info["config"] == "legacy":
            lines.append("[yellow]Legacy config -- run `holocron migrate`.[/]")
        console.print(Panel("\n".join(lines), title="Holocron", border_style="cyan"))

    @main.command("rotate-passphrase")
    @repo_option
    def rotate_cmd(repo: str):
        """Change the passphrase. Notes are not re-encrypted."""
        root = repo_path(repo)
        old = click.prompt("Current passphrase", hide_input=True)
        new = click.prompt("New passphrase", hide_input=True, confirmation_prompt=True)
        try:
            rotate_passphrase(root, old, new)
        except HolocronError as exc:
            fail(exc)
        console.print("[green]Passphrase changed.[/] Commit .holocron/config.json with your next sync.")

    @main.command("migrate")
    @repo_option
    def migrate_cmd(repo: str):
        """Convert a legacy encrypted config to the current format."""
        root = repo_path(repo)
        passphrase = click.prompt("Passphrase", hide_input=True)
        try:
            session = migrate_legacy(root, passphrase)
            session.destroy()
        except HolocronError as exc:
            fail(exc)
        console.print("[green]Config migrated.[/] Run `holocron sync` to re-encrypt your notes.")

    @main.command("remember")
    @repo_option
    def remember_cmd(repo: str):
        """Store the passphrase on this machine (never committed)."""
        root = repo_path(repo)
        passphrase = get_passphrase(root, use_remembered=False)
        try:
            unlock(root, passphrase).destroy()
            path = remember_passphrase(root, passphrase)
        except HolocronError as exc:
            fail(exc)
        console.print(f"[green]Passphrase remembered[/] [dim]({path})[/]")

    @main.command("forget")
    @repo_option
    def forget_cmd(repo: str):
        """Delete the remembered passphrase."""
        if forget_passphrase(repo_path(repo)):
            console.print("[green]Remembered passphrase deleted.[/]")
        else:
            console.print("[dim]No remembered passphrase.[/]")
