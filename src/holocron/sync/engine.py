"""
Sync Orchestrator -- encrypts, commits, pushes, pulls and decrypts.

    holocron sync  ->  encrypt changed notes -> stage ciphertext -> commit -> push
    holocron pull  ->  pull (merge) -> detect conflicts -> decrypt received ciphertext

State machine:

    CLEAN -> STAGING -> COMMITTING -> CLEAN
    CLEAN -> PULLING -> CLEAN | CONFLICTED
    any step failure -> ERROR (cause kept in ``last_error``)

Plaintext under ``notes/`` and ``kanban/`` never reaches git: staging adds
non-note paths with pathspec excludes, then the explicit list of
ciphertext files. Files already encrypted stay encrypted when a later
step fails, so retrying is idempotent.

Deleting a note's plaintext deletes the note: the next sync removes its
ciphertext. The local manifest (``NoteManifest``) separates deleted notes
from ciphertext never decrypted on this machine. A pull never overwrites
a note edited since the last sync; the incoming version is written
beside it and reported as a per-file failure.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Collection, Iterable, Optional

from ..audit import audit_event
from ..crypto.codec import (
    atomic_write,
    ciphertext_path,
    decrypt_file,
    plaintext_path,
    relative_aad,
    write_decrypted,
    write_encrypted,
)
from ..errors import (
    DecryptionFailed,
    HolocronError,
    SessionLockedError,
    UnsyncedChangesError,
    VcsErrorKind,
    VersionControlError,
)
from ..session import Session
from ..settings import HolocronSettings, load_settings
from .git import GitClient, classify
from .manifest import NoteManifest
from .models import (
    Author,
    FileFailure,
    PassReport,
    PullResult,
    SyncOutcome,
    SyncResult,
    SyncState,
    SyncStatus,
)
from .runner import CommandRunner
from .tree import ENCRYPTED_DIRS, is_encrypted_path, iter_ciphertext_files, iter_plaintext_files

logger = logging.getLogger("holocron.sync.engine")

DEFAULT_MESSAGE = "Manual sync"
INCOMING_MARKER = ".incoming"
_ADD_BATCH = 200


def incoming_copy_path(plaintext: Path) -> Path:
    """``notes/a.md`` -> ``notes/a.incoming.md``."""
    return plaintext.with_name(f"{plaintext.stem}{INCOMING_MARKER}{plaintext.suffix}")


class SyncOrchestrator:
    """Drives the encrypted commit/pull pipeline for one repository.

    Args:
        repo_root: Repository root.
        session: Unlocked session holding the DEK. May be None for
            push, status and branch work, which never touch keys.
        runner: Command runner for git (defaults to subprocess).
        settings: User settings (loaded from disk when omitted).
        max_workers: Thread pool size for per-file crypto.
        git: Pre-built git client (overrides ``runner``).
    """

    def __init__(
        self,
        repo_root: Path,
        session: Optional[Session],
        runner: Optional[CommandRunner] = None,
        settings: Optional[HolocronSettings] = None,
        max_workers: int = 4,
        git: Optional[GitClient] = None,
    ) -> None:
        self.repo_root = Path(repo_root).expanduser()
        self.session = session
        self.git = git or GitClient(self.repo_root, runner)
        self.settings = settings or load_settings(self.repo_root)
        self.max_workers = max(1, max_workers)
        self.manifest = NoteManifest(self.repo_root)

        self._op_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._state = SyncState.CLEAN
        self.last_error: Optional[BaseException] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: SyncState) -> None:
        with self._state_lock:
            if state != self._state:
                logger.debug("Sync state %s -> %s", self._state.value, state.value)
            self._state = state

    def _fail(self, exc: BaseException, operation: str) -> None:
        self.last_error = exc
        self._set_state(SyncState.ERROR)
        logger.error("%s failed: %s", operation, exc)
        audit_event(
            self.repo_root,
            "SYNC_ERROR",
            f"{operation} failed: {exc}",
            {"operation": operation, "error": type(exc).__name__},
        )

    def _session(self) -> Session:
        if self.session is None:
            raise SessionLockedError("No unlocked session")
        return self.session

    def _rel(self, path: Path) -> str:
        return relative_aad(path, self.repo_root)

    def _remote(self, remote: Optional[str]) -> str:
        return remote or self.settings.sync.remote

    def _branch(self, branch: Optional[str]) -> str:
        return branch or self.settings.sync.branch or self.git.current_branch()

    # ------------------------------------------------------------------
    # Bulk crypto passes
    # ------------------------------------------------------------------

    def _run_pass(
        self,
        paths: list[Path],
        worker: Callable[[Path, bytes], bool],
        action: str,
    ) -> PassReport:
        """Run ``worker`` over ``paths`` on the pool, collecting per-file results.

        ``worker`` returns True when it wrote a file, False when skipped.
        """
        report = PassReport()
        if not paths:
            return report

        with self._session().use_dek() as dek:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                futures = [(path, pool.submit(worker, path, dek)) for path in paths]
                for path, future in futures:
                    rel = self._rel(path)
                    try:
                        wrote = future.result()
                    except (HolocronError, OSError) as exc:
                        logger.warning("Failed to %s %s: %s", action, rel, exc)
                        report.failures.append(FileFailure(path=rel, error=str(exc)))
                        continue
                    (report.processed if wrote else report.skipped).append(rel)

        logger.info(
            "%s pass: %d processed, %d unchanged, %d failed",
            action.capitalize(),
            len(report.processed),
            len(report.skipped),
            len(report.failures),
        )
        return report

    def _needs_encryption(self, plaintext: Path, dek: bytes) -> bool:
        target = ciphertext_path(plaintext)
        if not target.exists():
            return True
        try:
            current = decrypt_file(target, dek, self.repo_root)
        except DecryptionFailed:
            return True
        return current != plaintext.read_bytes()

    def _encrypt_one(self, plaintext: Path, dek: bytes) -> bool:
        if not self._needs_encryption(plaintext, dek):
            return False
        write_encrypted(plaintext, dek, self.repo_root)
        return True

    def _decrypt_one(self, ciphertext: Path, dek: bytes, keep: Collection[str] = ()) -> bool:
        target = plaintext_path(ciphertext)
        if not target.exists():
            write_decrypted(ciphertext, dek, self.repo_root)
            return True
        data = decrypt_file(ciphertext, dek, self.repo_root)
        if target.read_bytes() == data:
            return False
        if self._rel(target) in keep:
            copy = incoming_copy_path(target)
            atomic_write(copy, data)
            incoming = self._rel(copy)
            raise UnsyncedChangesError(
                f"Local edits not yet synced; incoming version saved to {incoming}",
                incoming=incoming,
            )
        atomic_write(target, data)
        return True

    def encrypt_all(self) -> PassReport:
        """Encrypt every plaintext note whose ciphertext is missing or stale."""
        paths = list(iter_plaintext_files(self.repo_root))
        report = self._run_pass(paths, self._encrypt_one, "encrypt")
        self.manifest.update(add=[self._rel(path) for path in paths])
        return report

    def decrypt_all(
        self,
        paths: Optional[Iterable[Path]] = None,
        keep: Collection[str] = (),
    ) -> PassReport:
        """Decrypt ciphertext files into their plaintext siblings.

        Args:
            paths: Ciphertext files to decrypt (default: all of them).
            keep: Plaintext paths with unsynced local edits. These are
                never overwritten; a differing incoming version is saved
                beside them and reported as a failure.
        """
        targets = list(paths) if paths is not None else list(iter_ciphertext_files(self.repo_root))
        keep = frozenset(keep)
        report = self._run_pass(
            targets, lambda path, dek: self._decrypt_one(path, dek, keep), "decrypt"
        )
        present = [plaintext_path(path) for path in targets]
        self.manifest.update(add=[self._rel(path) for path in present if path.exists()])
        return report

    def pending_plaintext(self) -> list[str]:
        """Plaintext notes that the next sync would encrypt."""
        if self.session is None or not self.session.is_unlocked:
            return []
        pending: list[str] = []
        with self.session.use_dek() as dek:
            for path in iter_plaintext_files(self.repo_root):
                try:
                    if self._needs_encryption(path, dek):
                        pending.append(self._rel(path))
                except OSError as exc:
                    logger.debug("Cannot compare %s: %s", path, exc)
        return pending

    def deleted_notes(self) -> list[Path]:
        """Ciphertext whose plaintext existed here and has since been deleted."""
        known = self.manifest.load()
        if not known:
            return []
        return [
            path
            for path in iter_ciphertext_files(self.repo_root)
            if not plaintext_path(path).exists() and self._rel(plaintext_path(path)) in known
        ]

    def remove_deleted(self) -> list[str]:
        """Delete the ciphertext of notes deleted locally.

        Returns:
            The plaintext paths of the removed notes.
        """
        removed: list[str] = []
        for path in self.deleted_notes():
            removed.append(self._rel(plaintext_path(path)))
            path.unlink()
        if removed:
            self.manifest.update(remove=removed)
            logger.info("Removed ciphertext of %d deleted note(s)", len(removed))
        return removed

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> SyncStatus:
        status = self.git.status()
        deleted = [self._rel(plaintext_path(path)) for path in self.deleted_notes()]
        status.pending = self.pending_plaintext() + deleted
        return status

    def has_changes(self) -> bool:
        return self.status().has_changes

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def _ciphertext_pathspecs(self) -> list[str]:
        """Every ciphertext file on disk plus tracked ones deleted from disk."""
        present = {self._rel(path) for path in iter_ciphertext_files(self.repo_root)}
        tracked = {
            path
            for path in self.git.tracked_files(*ENCRYPTED_DIRS)
            if is_encrypted_path(path)
        }
        deleted = {path for path in tracked if not (self.repo_root / path).exists()}
        return sorted(present | deleted)

    def stage(self) -> list[str]:
        """Stage non-note paths and ciphertext, never plaintext notes.

        Returns:
            The ciphertext paths that were staged.
        """
        # The local dir is gitignored; naming an ignored path makes `git add` fail.
        excludes = [f":(exclude){name}" for name in ENCRYPTED_DIRS]
        self.git.add(".", *excludes)

        specs = self._ciphertext_pathspecs()
        for i in range(0, len(specs), _ADD_BATCH):
            self.git.add(*specs[i:i + _ADD_BATCH])
        logger.debug("Staged %d ciphertext file(s)", len(specs))
        return specs

    # ------------------------------------------------------------------
    # Sync / pull / push
    # ------------------------------------------------------------------

    def sync_all(
        self,
        message: Optional[str] = None,
        author: Optional[Author] = None,
        remote: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> SyncResult:
        """Encrypt, stage, commit and push.

        A call that arrives while another operation is running returns
        ``SyncOutcome.SKIPPED`` immediately.

        Raises:
            VersionControlError: Unresolved conflicts, or a failed git step.
            SessionLockedError: The session was locked.
        """
        if not self._op_lock.acquire(blocking=False):
            logger.info("Sync already in progress; skipping")
            return SyncResult(outcome=SyncOutcome.SKIPPED, message=message or "")
        try:
            if self.state == SyncState.CONFLICTED:
                remaining = self.git.conflicted_files()
                if remaining:
                    raise VersionControlError(
                        f"{len(remaining)} file(s) still in conflict",
                        kind=VcsErrorKind.MERGE_CONFLICT,
                        conflicted_files=remaining,
                    )
                self._set_state(SyncState.CLEAN)
            return self._sync(message or DEFAULT_MESSAGE, author, remote, branch)
        finally:
            self._op_lock.release()

    def _sync(
        self,
        message: str,
        author: Optional[Author],
        remote: Optional[str],
        branch: Optional[str],
    ) -> SyncResult:
        try:
            self._set_state(SyncState.STAGING)
            report = self.encrypt_all()
            deleted = self.remove_deleted()
            self.stage()

            self._set_state(SyncState.COMMITTING)
            author = author or self.git.author()
            target_branch = self._branch(branch)
            try:
                self.git.commit(message, author)
            except VersionControlError as exc:
                if exc.kind != VcsErrorKind.NOTHING_TO_COMMIT:
                    raise
                ahead, _ = self.git.ahead_behind()
                if not ahead:
                    logger.info("Nothing to commit")
                    self._set_state(SyncState.CLEAN)
                    return SyncResult(
                        outcome=SyncOutcome.NO_CHANGES,
                        message=message,
                        branch=target_branch,
                        encrypted=report,
                        deleted=deleted,
                    )
                logger.info("Nothing new to commit; pushing %d pending commit(s)", ahead)
            else:
                logger.info("Committed: %s", message)
                audit_event(
                    self.repo_root,
                    "SYNC_COMMIT",
                    message,
                    {
                        "branch": target_branch,
                        "encrypted": len(report.processed),
                        "deleted": len(deleted),
                    },
                )

            push_output = self.git.push(self._remote(remote), target_branch)
            audit_event(
                self.repo_root,
                "SYNC_PUSH",
                f"Pushed {target_branch} to {self._remote(remote)}",
            )
            self._set_state(SyncState.CLEAN)
            self.last_error = None
            return SyncResult(
                outcome=SyncOutcome.PUSHED,
                message=message,
                branch=target_branch,
                encrypted=report,
                deleted=deleted,
                push_output=push_output,
            )
        except HolocronError as exc:
            self._fail(exc, "sync")
            raise
        except OSError as exc:
            self._fail(exc, "sync")
            raise HolocronError(f"Sync failed: {exc}") from exc

    def pull(self, remote: Optional[str] = None, branch: Optional[str] = None) -> PullResult:
        """Pull and merge, then decrypt what arrived.

        On conflict the state becomes CONFLICTED and nothing is decrypted.

        Raises:
            VersionControlError: Pull failed for a reason other than conflicts.
        """
        with self._op_lock:
            try:
                return self._pull(self._remote(remote), self._branch(branch))
            except HolocronError as exc:
                self._fail(exc, "pull")
                raise

    def _pull(self, remote: str, branch: str) -> PullResult:
        self._set_state(SyncState.PULLING)
        # Notes edited since the last sync; the merge must not overwrite them.
        unsynced = set(self.pending_plaintext())
        old_head = self.git.head()
        result = self.git.pull(remote, branch)

        if not result.ok:
            conflicted = self.git.conflicted_files()
            kind = classify(result.output)
            if conflicted or kind == VcsErrorKind.MERGE_CONFLICT:
                self._set_state(SyncState.CONFLICTED)
                logger.warning("Pull produced %d conflict(s)", len(conflicted))
                audit_event(
                    self.repo_root,
                    "SYNC_CONFLICT",
                    f"Merge conflict pulling {remote}/{branch}",
                    {"files": conflicted},
                )
                return PullResult(
                    success=False,
                    has_conflicts=True,
                    conflicted_files=conflicted,
                    output=result.output,
                )
            raise VersionControlError(
                f"git pull failed: {result.stderr.strip() or result.stdout.strip()}",
                kind=kind,
                stderr=result.stderr,
                command=["git", "pull", remote, branch],
            )

        new_head = self.git.head()
        targets, dropped = self._received_ciphertext(old_head, new_head)
        report = self.decrypt_all(targets, keep=unsynced)
        removed = self._remove_dropped_plaintext(dropped, unsynced, report)

        self._set_state(SyncState.CLEAN)
        self.last_error = None
        audit_event(
            self.repo_root,
            "SYNC_PULL",
            f"Pulled {remote}/{branch}",
            {
                "decrypted": len(report.processed),
                "removed": len(removed),
                "failed": len(report.failures),
            },
        )
        return PullResult(success=True, decrypted=report, removed=removed, output=result.output)

    def _received_ciphertext(
        self, old_head: Optional[str], new_head: Optional[str]
    ) -> tuple[list[Path], list[Path]]:
        """Split what the pull brought into ciphertext to decrypt and ciphertext removed.

        Ciphertext lacking a plaintext sibling is decrypted too, unless the
        note was deleted here and the merge left it untouched.
        """
        targets: set[Path] = set()
        dropped: set[Path] = set()
        if old_head and new_head and old_head != new_head:
            for rel in self.git.changed_between(old_head, new_head):
                if not is_encrypted_path(rel):
                    continue
                path = self.repo_root / rel
                (targets if path.exists() else dropped).add(path)
        elif not old_head:
            targets.update(iter_ciphertext_files(self.repo_root))

        known = self.manifest.load()
        for path in iter_ciphertext_files(self.repo_root):
            plaintext = plaintext_path(path)
            if not plaintext.exists() and self._rel(plaintext) not in known:
                targets.add(path)
        return sorted(targets), sorted(dropped)

    def _remove_dropped_plaintext(
        self, dropped: list[Path], unsynced: Collection[str], report: PassReport
    ) -> list[str]:
        """Delete plaintext of notes deleted on another machine.

        A note edited here since the last sync is kept and reported.
        """
        removed: list[str] = []
        for ciphertext in dropped:
            plaintext = plaintext_path(ciphertext)
            if not plaintext.exists():
                continue
            rel = self._rel(plaintext)
            if rel in unsynced:
                logger.warning("Keeping %s: deleted remotely but edited locally", rel)
                report.failures.append(
                    FileFailure(path=rel, error="Deleted on another machine; local edits kept")
                )
                continue
            plaintext.unlink()
            removed.append(rel)
        if removed:
            self.manifest.update(remove=removed)
            logger.info("Removed %d note(s) deleted on another machine", len(removed))
        return removed

    def push(self, remote: Optional[str] = None, branch: Optional[str] = None) -> str:
        """Push the current branch.

        Raises:
            VersionControlError: ``NO_UPSTREAM`` or ``REJECTED_PUSH`` among others.
        """
        with self._op_lock:
            remote_name = self._remote(remote)
            target = self._branch(branch)
            try:
                output = self.git.push(remote_name, target)
            except HolocronError as exc:
                self._fail(exc, "push")
                raise
            audit_event(self.repo_root, "SYNC_PUSH", f"Pushed {target} to {remote_name}")
            if self.state == SyncState.ERROR:
                self._set_state(SyncState.CLEAN)
            return output

