"""Shared utilities for all CLI command modules.

Provides the Rich console instance, the repository option, error
reporting and passphrase acquisition used by every command group.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import NoReturn, Optional

import click
from rich.console import Console

from .. import DEFAULT_REPO
from ..errors import AuthenticationFailed, HolocronError, ValidationFailed, VersionControlError
from ..repo import recall_passphrase, unlock
from ..session import Session

console = Console()
logger = logging.getLogger("holocron.cli")

PASSPHRASE_ENV = "HOLOCRON_PASSPHRASE"

repo_option = click.option(
    "--repo",
    default=DEFAULT_REPO,
    type=click.Path(file_okay=False),
    help="Repository path (default: $HOLOCRON_REPO or current directory).",
)


def repo_path(repo: str) -> Path:
    return Path(repo).expanduser().resolve()


def fail(exc: HolocronError) -> NoReturn:
    """Print an error with its hint and exit 1."""
    console.print(f"[bold red]Error:[/] {exc.message}")
    if isinstance(exc, ValidationFailed):
        for issue in exc.issues:
            console.print(f"  [red]-[/] {issue['field']}: {issue['message']}")
    if isinstance(exc, VersionControlError) and exc.conflicted_files:
        for path in exc.conflicted_files:
            console.print(f"  [yellow]conflict[/] {path}")
    if exc.hint:
        console.print(f"[dim]{exc.hint}[/]")
    sys.exit(1)


def remembered_passphrase(repo: Path) -> Optional[str]:
    """The passphrase stored on this machine, if usable."""
    try:
        return recall_passphrase(repo)
    except AuthenticationFailed as exc:
        logger.debug("Remembered passphrase unusable: %s", exc)
        return None


def get_passphrase(repo: Path, prompt: str = "Passphrase", use_remembered: bool = True) -> str:
    """Remembered passphrase, then $HOLOCRON_PASSPHRASE, then a hidden prompt."""
    if use_remembered:
        remembered = remembered_passphrase(repo)
        if remembered:
            return remembered
    env_value = os.environ.get(PASSPHRASE_ENV)
    if env_value:
        return env_value
    return click.prompt(prompt, hide_input=True)


def open_session(repo: Path, passphrase: Optional[str] = None) -> Session:
    """Unlock the repository or exit with an error."""
    try:
        return unlock(repo, passphrase or get_passphrase(repo))
    except HolocronError as exc:
        fail(exc)
