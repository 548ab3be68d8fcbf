"""
Sync data models -- state, status and results for the sync engine.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SyncState(str, Enum):
    """Orchestrator state machine."""

    CLEAN = "clean"
    STAGING = "staging"
    COMMITTING = "committing"
    PULLING = "pulling"
    CONFLICTED = "conflicted"
    ERROR = "error"


class SyncOutcome(str, Enum):
    """How a sync_all call ended."""

    PUSHED = "pushed"
    NO_CHANGES = "no-changes"
    SKIPPED = "skipped"


class Author(BaseModel):
    """Commit author identity."""

    name: str
    email: str


class BranchInfo(BaseModel):
    """One local or remote branch."""

    name: str
    is_current: bool = False
    is_remote: bool = False


class SyncStatus(BaseModel):
    """Working tree status, derived per call and never persisted."""

    branch: str = "main"
    ahead: int = 0
    behind: int = 0
    modified: list[str] = Field(default_factory=list)
    added: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    untracked: list[str] = Field(default_factory=list)
    has_conflicts: bool = False
    conflicted_files: list[str] = Field(default_factory=list)
    # Plaintext notes whose ciphertext is missing or stale, and notes
    # deleted locally whose ciphertext is still tracked.
    pending: list[str] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(
            self.modified or self.added or self.deleted or self.untracked or self.pending
        )

    @property
    def changed_files(self) -> list[str]:
        return [*self.pending, *self.added, *self.modified, *self.deleted, *self.untracked]


class FileFailure(BaseModel):
    """A single file that failed during a bulk crypto pass."""

    path: str
    error: str


class PassReport(BaseModel):
    """Result of a bulk encrypt or decrypt pass."""

    processed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failures: list[FileFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class SyncResult(BaseModel):
    """Result of a sync_all call."""

    outcome: SyncOutcome
    message: str = ""
    branch: Optional[str] = None
    encrypted: PassReport = Field(default_factory=PassReport)
    # Notes whose deletion this sync propagated.
    deleted: list[str] = Field(default_factory=list)
    push_output: str = ""
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def committed(self) -> bool:
        return self.outcome == SyncOutcome.PUSHED


class PullResult(BaseModel):
    """Result of a pull."""

    success: bool
    has_conflicts: bool = False
    conflicted_files: list[str] = Field(default_factory=list)
    decrypted: PassReport = Field(default_factory=PassReport)
    # Notes deleted on another machine and removed here.
    removed: list[str] = Field(default_factory=list)
    output: str = ""
