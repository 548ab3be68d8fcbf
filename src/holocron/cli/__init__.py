"""
Holocron CLI -- encrypted notes, synchronized through git.

Each command group lives in its own module and is attached to the main
Click group through a ``register_*_commands`` function.

Entry point: holocron.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="holocron")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr.")
def main(verbose: bool):
    """Holocron -- local-first encrypted notes over git.

    Plaintext stays on this machine. Only ciphertext is committed.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .repo_cmd import register_repo_commands
from .sync_cmd import register_sync_commands
from .branch import register_branch_commands
from .schedule import register_schedule_commands
from .watch import register_watch_commands
from .audit_cmd import register_audit_commands

register_repo_commands(main)
register_sync_commands(main)
register_branch_commands(main)
register_schedule_commands(main)
register_watch_commands(main)
register_audit_commands(main)
