"""Shared test fixtures for holocron."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Union

import pytest

from holocron.keymaterial import Secret
from holocron.session import Session
from holocron.sync.runner import CommandResult

PASSPHRASE = "correct horse battery"
TEST_ITERATIONS = 100_000

Response = Union[CommandResult, Callable[[list[str]], CommandResult]]


class FakeRunner:
    """Scripted ``CommandRunner`` for git-free tests.

    Rules match on the git sub-command prefix (``-c key=value`` options are
    ignored). The most recently added matching rule wins; anything
    unmatched succeeds with empty output.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self._rules: list[tuple[tuple[str, ...], Response]] = []

    @staticmethod
    def _subcommand(args: list[str]) -> list[str]:
        rest = list(args[1:]) if args and args[0] == "git" else list(args)
        while len(rest) >= 2 and rest[0] == "-c":
            rest = rest[2:]
        return rest

    def on(self, *prefix: str, stdout: str = "", stderr: str = "", exit_code: int = 0,
           handler: Callable[[list[str]], CommandResult] = None) -> "FakeRunner":
        response: Response = handler or CommandResult(stdout=stdout, stderr=stderr, exit_code=exit_code)
        self._rules.append((tuple(prefix), response))
        return self

    def run(self, args: list[str], cwd: Path) -> CommandResult:
        self.calls.append(list(args))
        sub = self._subcommand(args)
        for prefix, response in reversed(self._rules):
            if tuple(sub[:len(prefix)]) == prefix:
                return response(sub) if callable(response) else response
        return CommandResult(stdout="", stderr="", exit_code=0)

    def commands(self, *prefix: str) -> list[list[str]]:
        """Recorded sub-commands that start with ``prefix``."""
        subs = [self._subcommand(call) for call in self.calls]
        return [sub for sub in subs if tuple(sub[:len(prefix)]) == prefix]


@pytest.fixture
def fake_runner() -> FakeRunner:
    """A runner that reports branch ``main`` and succeeds at everything else."""
    runner = FakeRunner()
    runner.on("symbolic-ref", "--short", stdout="main\n")
    return runner


@pytest.fixture
def repo_root(tmp_path: Path) -> Path:
    """An empty repository working tree with the note directories."""
    root = tmp_path / "vault"
    for subdir in ("notes", "kanban", "assets", ".holocron/local"):
        (root / subdir).mkdir(parents=True)
    return root


@pytest.fixture
def dek_bytes() -> bytes:
    return bytes(range(32))


@pytest.fixture
def session(dek_bytes: bytes) -> Session:
    """An unlocked session over a fixed test key."""
    return Session(Secret(dek_bytes, kind="dek"), passphrase=Secret(PASSPHRASE, kind="passphrase"))
