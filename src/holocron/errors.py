"""
Error kinds for the sync engine.

Every failure that reaches a user carries a short actionable hint.
Per-file failures during bulk passes are collected as records instead
(see ``holocron.sync.models.FileFailure``) so a single bad file never
aborts a pass.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class HolocronError(Exception):
    """Base class for all holocron errors."""

    hint: str = ""

    def __init__(self, message: str, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if hint is not None:
            self.hint = hint


class InvalidInputError(HolocronError):
    """Raised when a required parameter is missing or malformed."""


class NotFoundError(HolocronError):
    """Raised when a file or config document does not exist."""

    hint = "Run `holocron init` to create a repository."


class AuthenticationFailed(HolocronError):
    """Raised when the DEK cannot be unwrapped (wrong passphrase or corrupted config)."""

    hint = "Check your passphrase and try again."


class DecryptionFailed(HolocronError):
    """Raised when a ciphertext file is corrupted, truncated or relocated."""

    hint = "The file was moved, truncated, or encrypted for a different location."


class ValidationFailed(HolocronError):
    """Raised when the config document fails schema validation.

    Attributes:
        issues: One dict per problem with ``field`` and ``message`` keys.
    """

    hint = "Fix or restore .holocron/config.json from git history."

    def __init__(self, message: str, issues: Optional[list[dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.issues = issues or []

    @property
    def fields(self) -> list[str]:
        return [issue["field"] for issue in self.issues]


class MigrationRequired(HolocronError):
    """Raised when only the legacy encrypted config blob is present."""

    hint = "Run `holocron migrate` to convert the legacy config."

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class PermissionDeniedError(HolocronError):
    """Raised when a path escapes the repository sandbox."""


class SessionLockedError(HolocronError):
    """Raised when key material is requested from a locked session."""

    hint = "Unlock the repository with your passphrase."


class UnsyncedChangesError(HolocronError):
    """Raised when a pull would overwrite a note edited since the last sync."""

    hint = "Your version was kept. Merge in the incoming copy saved beside it, then sync."

    def __init__(self, message: str, incoming: Optional[str] = None) -> None:
        super().__init__(message)
        self.incoming = incoming


class VcsErrorKind(str, Enum):
    """Classification of git failures."""

    NOTHING_TO_COMMIT = "nothing-to-commit"
    NO_UPSTREAM = "no-upstream"
    REJECTED_PUSH = "rejected-push"
    MERGE_CONFLICT = "merge-conflict"
    NOT_A_REPOSITORY = "not-a-repository"
    COMMAND_FAILED = "command-failed"


_VCS_HINTS = {
    VcsErrorKind.NOTHING_TO_COMMIT: "Nothing changed since the last sync.",
    VcsErrorKind.NO_UPSTREAM: (
        "No upstream branch configured. Run: "
        "git push --set-upstream origin <branch>"
    ),
    VcsErrorKind.REJECTED_PUSH: "Push rejected. Remote has changes. Pull first.",
    VcsErrorKind.MERGE_CONFLICT: (
        "Resolve the conflicted files, commit, then sync again."
    ),
    VcsErrorKind.NOT_A_REPOSITORY: "Run `holocron init` inside the repository.",
    VcsErrorKind.COMMAND_FAILED: "See the git output above.",
}


class VersionControlError(HolocronError):
    """Raised when a git invocation fails.

    Attributes:
        kind: Classified failure kind.
        stderr: Raw stderr (or stdout when stderr was empty) of the command.
        command: The argument list that was run.
    """

    def __init__(
        self,
        message: str,
        kind: VcsErrorKind = VcsErrorKind.COMMAND_FAILED,
        stderr: str = "",
        command: Optional[list[str]] = None,
        conflicted_files: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=_VCS_HINTS[kind])
        self.kind = kind
        self.stderr = stderr
        self.command = command or []
        self.conflicted_files = conflicted_files or []
