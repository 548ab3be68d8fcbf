"""
Command execution boundary.

The orchestrator talks to version control only through
``CommandRunner.run(args, cwd)``. The default runner shells out; tests
and alternative backends supply their own.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger("holocron.sync.runner")


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command."""

    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """stdout and stderr combined, for message classification."""
        return f"{self.stdout}\n{self.stderr}".strip()


class CommandRunner(Protocol):
    """Anything that can run a command in a directory."""

    def run(self, args: list[str], cwd: Path) -> CommandResult:
        ...


class SubprocessRunner:
    """Runs commands as blocking child processes.

    Args:
        timeout: Seconds before a command is abandoned (None = wait forever).
        env: Optional environment overrides.
    """

    def __init__(self, timeout: Optional[float] = 300, env: Optional[dict[str, str]] = None) -> None:
        self.timeout = timeout
        self.env = env

    def run(self, args: list[str], cwd: Path) -> CommandResult:
        import os

        env = None
        if self.env:
            env = os.environ.copy()
            env.update(self.env)

        logger.debug("Running: %s (cwd=%s)", " ".join(args), cwd)
        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                check=False,
                cwd=str(cwd),
                env=env,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            return CommandResult(stdout="", stderr=f"{args[0]}: command not found ({exc})", exit_code=127)
        except subprocess.TimeoutExpired:
            return CommandResult(stdout="", stderr=f"{' '.join(args)}: timed out after {self.timeout}s", exit_code=124)
        return CommandResult(stdout=result.stdout, stderr=result.stderr, exit_code=result.returncode)
