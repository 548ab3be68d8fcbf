"""Branch commands: list, create, switch, delete."""

from __future__ import annotations

import click
from rich.table import Table

from ._common import console, fail, repo_option, repo_path
from ..errors import HolocronError
from ..sync import GitClient


def register_branch_commands(main: click.Group) -> None:
    """Register the branch command group."""

    @main.group()
    def branch():
        """Local and remote branches."""

    @branch.command("list")
    @repo_option
    @click.option("--all", "-a", "show_remote", is_flag=True, help="Include remote branches.")
    def branch_list(repo: str, show_remote: bool):
        """List branches."""
        try:
            branches = GitClient(repo_path(repo)).list_branches()
        except HolocronError as exc:
            fail(exc)

        table = Table(show_header=True, header_style="bold")
        table.add_column("", width=1)
        table.add_column("Branch")
        table.add_column("Where", style="dim")
        for info in branches:
            if info.is_remote and not show_remote:
                continue
            table.add_row(
                "[green]*[/]" if info.is_current else "",
                f"[bold]{info.name}[/]" if info.is_current else info.name,
                "remote" if info.is_remote else "local",
            )
        console.print(table)

    @branch.command("create")
    @repo_option
    @click.argument("name")
    def branch_create(repo: str, name: str):
        """Create a branch and switch to it."""
        try:
            GitClient(repo_path(repo)).create_branch(name)
        except HolocronError as exc:
            fail(exc)
        console.print(f"[green]Created and switched to[/] [cyan]{name}[/]")

    @branch.command("switch")
    @repo_option
    @click.argument("name")
    def branch_switch(repo: str, name: str):
        """Switch to an existing branch.

        Run `holocron pull` afterwards to decrypt the branch's notes.
        """
        try:
            GitClient(repo_path(repo)).switch_branch(name)
        except HolocronError as exc:
            fail(exc)
        console.print(f"[green]Switched to[/] [cyan]{name}[/]")

    @branch.command("delete")
    @repo_option
    @click.argument("name")
    def branch_delete(repo: str, name: str):
        """Delete a merged local branch."""
        try:
            GitClient(repo_path(repo)).delete_branch(name)
        except HolocronError as exc:
            fail(exc)
        console.print(f"[green]Deleted[/] [cyan]{name}[/]")
