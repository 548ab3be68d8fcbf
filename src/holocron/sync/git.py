"""
Git surface consumed by the sync engine.

Every call goes through a ``CommandRunner``. Non-zero exits become a
``VersionControlError`` whose kind is read from git's own output, so
"nothing to commit" or "rejected" are distinct, actionable outcomes
instead of generic failures.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from ..errors import InvalidInputError, VcsErrorKind, VersionControlError
from .models import Author, BranchInfo, SyncStatus
from .runner import CommandResult, CommandRunner, SubprocessRunner

logger = logging.getLogger("holocron.sync.git")

DEFAULT_AUTHOR_NAME = "Holocron User"
DEFAULT_AUTHOR_EMAIL = "user@holocron.local"
DEFAULT_BRANCH = "main"

_CONFLICT_CODES = {"DD", "AU", "UD", "UA", "DU", "AA", "UU"}

# Order matters: the first matching marker wins.
_CLASSIFIERS: list[tuple[VcsErrorKind, tuple[str, ...]]] = [
    (VcsErrorKind.NOTHING_TO_COMMIT, (
        "nothing to commit",
        "nothing added to commit",
        "no changes added to commit",
    )),
    (VcsErrorKind.MERGE_CONFLICT, (
        "conflict (",
        "automatic merge failed",
        "unmerged files",
        "you have not concluded your merge",
    )),
    (VcsErrorKind.NO_UPSTREAM, (
        "no upstream branch",
        "has no upstream",
        "no tracking information",
        "no configured push destination",
        "does not appear to be a git repository",
    )),
    (VcsErrorKind.REJECTED_PUSH, (
        "[rejected]",
        "failed to push some refs",
        "non-fast-forward",
        "fetch first",
    )),
    (VcsErrorKind.NOT_A_REPOSITORY, ("not a git repository",)),
]


def classify(output: str) -> VcsErrorKind:
    """Map git output to an error kind."""
    lowered = output.lower()
    for kind, markers in _CLASSIFIERS:
        if any(marker in lowered for marker in markers):
            return kind
    return VcsErrorKind.COMMAND_FAILED


def _split_z(output: str) -> list[str]:
    return [item for item in output.split("\0") if item]


class GitClient:
    """Thin, typed wrapper over the git CLI for one repository.

    Args:
        repo_root: Working tree root.
        runner: Command runner (defaults to a subprocess runner).
    """

    def __init__(self, repo_root: Path, runner: Optional[CommandRunner] = None) -> None:
        self.repo_root = Path(repo_root)
        self.runner = runner or SubprocessRunner()

    def _git(self, *args: str, check: bool = True) -> CommandResult:
        cmd = ["git", *args]
        result = self.runner.run(cmd, self.repo_root)
        if check and not result.ok:
            kind = classify(result.output)
            logger.error("Git command failed: %s -> %s", " ".join(cmd), result.stderr.strip() or result.stdout.strip())
            raise VersionControlError(
                f"git {args[0] if args else ''} failed: {(result.stderr or result.stdout).strip()}",
                kind=kind,
                stderr=result.stderr or result.stdout,
                command=cmd,
            )
        return result

    # ------------------------------------------------------------------
    # Repository
    # ------------------------------------------------------------------

    def is_repo(self) -> bool:
        """True when ``repo_root`` is the top level of a git work tree."""
        result = self._git("rev-parse", "--show-toplevel", check=False)
        if not result.ok:
            return False
        return Path(result.stdout.strip()).resolve() == self.repo_root.resolve()

    def init(self, branch: str = DEFAULT_BRANCH) -> None:
        self._git("init")
        self._git("symbolic-ref", "HEAD", f"refs/heads/{branch}")
        logger.info("Initialized git repository at %s", self.repo_root)

    def head(self) -> Optional[str]:
        """Current commit hash, or None on an unborn branch."""
        result = self._git("rev-parse", "--verify", "-q", "HEAD", check=False)
        return result.stdout.strip() or None if result.ok else None

    def current_branch(self) -> str:
        result = self._git("symbolic-ref", "--short", "-q", "HEAD", check=False)
        return result.stdout.strip() if result.ok and result.stdout.strip() else "HEAD"

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status_porcelain(self) -> list[tuple[str, str]]:
        """``(XY code, path)`` pairs from ``git status --porcelain -z``."""
        result = self._git("status", "--porcelain", "-z", "--untracked-files=all")
        entries: list[tuple[str, str]] = []
        tokens = result.stdout.split("\0")
        i = 0
        while i < len(tokens):
            token = tokens[i]
            i += 1
            if len(token) < 4:
                continue
            code, path = token[:2], token[3:]
            if code[0] in "RC":
                # Rename/copy: the next token is the original path.
                i += 1
            entries.append((code, path))
        return entries

    def ahead_behind(self) -> tuple[int, int]:
        result = self._git("rev-list", "--left-right", "--count", "HEAD...@{u}", check=False)
        if not result.ok:
            return 0, 0
        parts = result.stdout.split()
        try:
            return int(parts[0]), int(parts[1])
        except (IndexError, ValueError):
            return 0, 0

    def status(self) -> SyncStatus:
        """Full working tree status."""
        status = SyncStatus(branch=self.current_branch())
        status.ahead, status.behind = self.ahead_behind()

        for code, path in self.status_porcelain():
            if code in _CONFLICT_CODES:
                status.conflicted_files.append(path)
            elif code == "??":
                status.untracked.append(path)
            elif code[0] == "A":
                status.added.append(path)
            elif "D" in code:
                status.deleted.append(path)
            else:
                status.modified.append(path)

        status.has_conflicts = bool(status.conflicted_files)
        return status

    def conflicted_files(self) -> list[str]:
        result = self._git("diff", "--name-only", "-z", "--diff-filter=U", check=False)
        return _split_z(result.stdout) if result.ok else []

    def changed_between(self, old: str, new: str = "HEAD") -> list[str]:
        """Paths that differ between two commits."""
        result = self._git("diff", "--name-only", "-z", old, new)
        return _split_z(result.stdout)

    def tracked_files(self, *pathspecs: str) -> list[str]:
        result = self._git("ls-files", "-z", "--", *pathspecs)
        return _split_z(result.stdout)

    # ------------------------------------------------------------------
    # Stage / commit / push / pull
    # ------------------------------------------------------------------

    def add(self, *pathspecs: str) -> None:
        """Stage additions, modifications and deletions for the pathspecs."""
        if not pathspecs:
            return
        self._git("add", "-A", "--", *pathspecs)

    def commit(self, message: str, author: Optional[Author] = None) -> str:
        """Commit staged changes.

        Raises:
            InvalidInputError: Empty message.
            VersionControlError: ``NOTHING_TO_COMMIT`` when nothing is staged.
        """
        if not message or not message.strip():
            raise InvalidInputError("Commit message is required")
        args: list[str] = []
        if author is not None:
            args += ["-c", f"user.name={author.name}", "-c", f"user.email={author.email}"]
        args += ["commit", "-m", message]
        return self._git(*args).stdout

    def push(self, remote: Optional[str] = None, branch: Optional[str] = None) -> str:
        args = ["push"]
        if remote:
            args.append(remote)
            if branch:
                args.append(branch)
        result = self._git(*args)
        return (result.stdout or result.stderr).strip()

    def pull(self, remote: Optional[str] = None, branch: Optional[str] = None) -> CommandResult:
        """Fetch and merge. Never raises; the caller classifies the result."""
        args = ["pull", "--no-rebase", "--no-edit"]
        if remote:
            args.append(remote)
            if branch:
                args.append(branch)
        return self._git(*args, check=False)

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    def _check_branch_name(self, name: str) -> None:
        if not name or not name.strip():
            raise InvalidInputError("Branch name is required")
        if name.startswith("-"):
            raise InvalidInputError(f"Invalid branch name: {name}")
        result = self._git("check-ref-format", "--branch", name, check=False)
        if not result.ok:
            raise InvalidInputError(f"Invalid branch name: {name}")

    def list_branches(self) -> list[BranchInfo]:
        result = self._git("branch", "-a", "--format=%(HEAD) %(refname)")
        branches: list[BranchInfo] = []
        for line in result.stdout.splitlines():
            if len(line) < 3:
                continue
            ref = line[2:].strip()
            if ref.endswith("/HEAD"):
                continue
            is_remote = ref.startswith("refs/remotes/")
            name = ref.removeprefix("refs/remotes/" if is_remote else "refs/heads/")
            branches.append(BranchInfo(name=name, is_current=line[0] == "*", is_remote=is_remote))
        return branches

    def create_branch(self, name: str) -> str:
        self._check_branch_name(name)
        result = self._git("checkout", "-b", name)
        return (result.stdout or result.stderr).strip()

    def switch_branch(self, name: str) -> str:
        self._check_branch_name(name)
        result = self._git("checkout", name)
        return (result.stdout or result.stderr).strip()

    def delete_branch(self, name: str) -> str:
        self._check_branch_name(name)
        result = self._git("branch", "-d", name)
        return (result.stdout or result.stderr).strip()

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def config_get(self, key: str) -> Optional[str]:
        result = self._git("config", "--get", key, check=False)
        value = result.stdout.strip()
        return value if result.ok and value else None

    def author(self) -> Author:
        """Configured user identity with documented fallbacks."""
        return Author(
            name=self.config_get("user.name") or DEFAULT_AUTHOR_NAME,
            email=self.config_get("user.email") or DEFAULT_AUTHOR_EMAIL,
        )
