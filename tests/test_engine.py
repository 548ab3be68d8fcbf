"""Tests for the sync orchestrator with real crypto and a scripted git."""

from __future__ import annotations

from pathlib import Path

import pytest

from holocron.crypto.codec import ciphertext_path, decrypt_file, encrypt_bytes, write_encrypted
from holocron.errors import SessionLockedError, VcsErrorKind, VersionControlError
from holocron.settings import HolocronSettings
from holocron.sync.engine import DEFAULT_MESSAGE, SyncOrchestrator
from holocron.sync.models import SyncOutcome, SyncState
from holocron.sync.runner import CommandResult

from conftest import FakeRunner

UNMERGED = ("diff", "--name-only", "-z", "--diff-filter=U")


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


@pytest.fixture
def orchestrator(repo_root, session, fake_runner) -> SyncOrchestrator:
    return SyncOrchestrator(repo_root, session, fake_runner, settings=HolocronSettings(), max_workers=2)


@pytest.fixture
def notes(repo_root) -> list[Path]:
    return [
        _write(repo_root / "notes" / "alpha.md", "# Alpha\n"),
        _write(repo_root / "notes" / "deep" / "beta.md", "# Beta\n"),
        _write(repo_root / "kanban" / "board.json", '{"columns": []}'),
    ]


def _incoming(repo_root: Path, dek: bytes, rel: str, text: str) -> Path:
    """Write ciphertext for ``rel`` as a merge would, leaving plaintext alone."""
    target = repo_root / (rel + ".enc")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(encrypt_bytes(text.encode("utf-8"), dek, rel))
    return target


def _heads(*values: str):
    remaining = list(values)

    def handler(args: list[str]) -> CommandResult:
        return CommandResult(stdout=remaining.pop(0) + "\n", stderr="", exit_code=0)

    return handler


class TestEncryptPass:
    """Bulk encryption of plaintext notes."""

    def test_encrypts_then_skips_unchanged(self, orchestrator, notes, repo_root, dek_bytes):
        first = orchestrator.encrypt_all()
        assert sorted(first.processed) == [
            "kanban/board.json",
            "notes/alpha.md",
            "notes/deep/beta.md",
        ]
        for note in notes:
            assert decrypt_file(ciphertext_path(note), dek_bytes, repo_root) == note.read_bytes()

        second = orchestrator.encrypt_all()
        assert second.processed == []
        assert len(second.skipped) == 3

    def test_reencrypts_modified_note(self, orchestrator, notes):
        orchestrator.encrypt_all()
        notes[0].write_text("# Alpha\n\nmore\n")
        report = orchestrator.encrypt_all()
        assert report.processed == ["notes/alpha.md"]

    def test_empty_tree(self, orchestrator):
        report = orchestrator.encrypt_all()
        assert report.ok
        assert report.processed == []

    def test_locked_session_refuses(self, orchestrator, notes, session):
        session.destroy()
        with pytest.raises(SessionLockedError):
            orchestrator.encrypt_all()

    def test_no_session(self, repo_root, fake_runner, notes):
        orch = SyncOrchestrator(repo_root, None, fake_runner, settings=HolocronSettings())
        with pytest.raises(SessionLockedError):
            orch.encrypt_all()

    def test_pending_reported_in_status(self, orchestrator, notes):
        status = orchestrator.status()
        assert len(status.pending) == 3
        assert status.has_changes
        orchestrator.encrypt_all()
        assert orchestrator.status().pending == []


class TestDecryptPass:
    """Bulk decryption with per-file failures."""

    def test_bad_file_does_not_abort_pass(self, orchestrator, repo_root, dek_bytes):
        good = _write(repo_root / "notes" / "good.md", "good")
        write_encrypted(good, dek_bytes, repo_root)
        good.unlink()
        (repo_root / "notes" / "bad.md.enc").write_bytes(b"\x00" * 64)

        report = orchestrator.decrypt_all()
        assert report.processed == ["notes/good.md.enc"]
        assert [f.path for f in report.failures] == ["notes/bad.md.enc"]
        assert good.read_text() == "good"
        assert not (repo_root / "notes" / "bad.md").exists()


class TestStage:
    """Plaintext notes never reach git."""

    def test_stage_adds_non_note_paths_then_ciphertext(self, orchestrator, notes, fake_runner):
        orchestrator.encrypt_all()
        fake_runner.on("ls-files", stdout="notes/gone.md.enc\0notes/alpha.md.enc\0")

        staged = orchestrator.stage()

        adds = fake_runner.commands("add")
        assert adds[0] == ["add", "-A", "--", ".", ":(exclude)notes", ":(exclude)kanban"]
        # Naming a gitignored path (the local dir) would make `git add` fail.
        assert not any(".holocron" in arg for add in adds for arg in add)
        assert staged == [
            "kanban/board.json.enc",
            "notes/alpha.md.enc",
            "notes/deep/beta.md.enc",
            "notes/gone.md.enc",
        ]
        assert adds[1][3:] == staged
        for add in adds:
            assert not any(arg.endswith(".md") or arg.endswith(".json") for arg in add)


class TestSyncAll:
    """encrypt -> stage -> commit -> push."""

    def test_pushes(self, orchestrator, notes, fake_runner, repo_root):
        result = orchestrator.sync_all()
        assert result.outcome == SyncOutcome.PUSHED
        assert result.committed
        assert result.message == DEFAULT_MESSAGE
        assert len(result.encrypted.processed) == 3
        assert fake_runner.commands("push") == [["push", "origin", "main"]]
        assert orchestrator.state == SyncState.CLEAN
        assert ciphertext_path(notes[0]).exists()

    def test_no_changes(self, orchestrator, fake_runner):
        fake_runner.on("commit", stdout="nothing to commit, working tree clean", exit_code=1)
        result = orchestrator.sync_all("Auto-sync: Updates")
        assert result.outcome == SyncOutcome.NO_CHANGES
        assert not result.committed
        assert fake_runner.commands("push") == []
        assert orchestrator.state == SyncState.CLEAN

    def test_nothing_new_but_ahead_still_pushes(self, orchestrator, fake_runner):
        fake_runner.on("commit", stdout="nothing to commit", exit_code=1)
        fake_runner.on("rev-list", stdout="1\t0\n")
        result = orchestrator.sync_all()
        assert result.outcome == SyncOutcome.PUSHED
        assert len(fake_runner.commands("push")) == 1

    def test_overlapping_call_is_skipped(self, orchestrator, fake_runner):
        orchestrator._op_lock.acquire()
        try:
            result = orchestrator.sync_all()
        finally:
            orchestrator._op_lock.release()
        assert result.outcome == SyncOutcome.SKIPPED
        assert fake_runner.commands("commit") == []

    def test_push_failure_sets_error_and_keeps_ciphertext(self, orchestrator, notes, fake_runner):
        fake_runner.on("push", stderr=" ! [rejected] main -> main (fetch first)", exit_code=1)
        with pytest.raises(VersionControlError) as exc_info:
            orchestrator.sync_all()
        assert exc_info.value.kind == VcsErrorKind.REJECTED_PUSH
        assert orchestrator.state == SyncState.ERROR
        assert orchestrator.last_error is exc_info.value
        assert all(ciphertext_path(note).exists() for note in notes)

    def test_retry_after_failure_recovers(self, orchestrator, notes, fake_runner):
        fake_runner.on("push", stderr="fatal: no upstream branch", exit_code=1)
        with pytest.raises(VersionControlError):
            orchestrator.sync_all()
        fake_runner.on("push")
        result = orchestrator.sync_all()
        assert result.outcome == SyncOutcome.PUSHED
        assert result.encrypted.processed == []
        assert orchestrator.state == SyncState.CLEAN
        assert orchestrator.last_error is None


class TestDeletion:
    """Deleting a note's plaintext deletes the note."""

    TRACKED = "kanban/board.json.enc\0notes/alpha.md.enc\0notes/deep/beta.md.enc\0"

    def test_sync_removes_ciphertext_of_deleted_note(self, orchestrator, notes, fake_runner):
        orchestrator.encrypt_all()
        notes[0].unlink()

        status = orchestrator.status()
        assert status.pending == ["notes/alpha.md"]
        assert status.has_changes

        fake_runner.on("ls-files", stdout=self.TRACKED)
        result = orchestrator.sync_all("Remove alpha")
        assert result.deleted == ["notes/alpha.md"]
        assert not ciphertext_path(notes[0]).exists()
        assert "notes/alpha.md.enc" in fake_runner.commands("add")[-1]
        assert "notes/alpha.md" not in orchestrator.manifest.load()
        assert orchestrator.status().pending == []

    def test_never_decrypted_ciphertext_is_not_a_deletion(self, orchestrator, repo_root, dek_bytes):
        _incoming(repo_root, dek_bytes, "notes/from-elsewhere.md", "hello")
        assert orchestrator.deleted_notes() == []
        assert orchestrator.status().pending == []

        result = orchestrator.sync_all()
        assert result.deleted == []
        assert (repo_root / "notes" / "from-elsewhere.md.enc").exists()

    def test_pull_does_not_restore_deleted_note(self, orchestrator, notes, fake_runner):
        orchestrator.encrypt_all()
        notes[0].unlink()
        fake_runner.on("rev-parse", "--verify", handler=_heads("aaa", "aaa"))

        result = orchestrator.pull()
        assert result.success
        assert result.decrypted.processed == []
        assert not notes[0].exists()
        assert orchestrator.deleted_notes() == [ciphertext_path(notes[0])]

    def test_remote_edit_brings_deleted_note_back(self, orchestrator, notes, repo_root, dek_bytes, fake_runner):
        orchestrator.encrypt_all()
        notes[0].unlink()

        def merge(args):
            _incoming(repo_root, dek_bytes, "notes/alpha.md", "# Alpha\n\nedited elsewhere\n")
            return CommandResult(stdout="Fast-forward\n", stderr="", exit_code=0)

        fake_runner.on("pull", handler=merge)
        fake_runner.on("rev-parse", "--verify", handler=_heads("aaa", "bbb"))
        fake_runner.on("diff", "--name-only", "-z", "aaa", "bbb", stdout="notes/alpha.md.enc\0")

        result = orchestrator.pull()
        assert result.decrypted.processed == ["notes/alpha.md.enc"]
        assert notes[0].read_text() == "# Alpha\n\nedited elsewhere\n"


class TestPull:
    """pull -> conflicts -> decrypt."""

    def test_conflict_stops_before_decrypt(self, orchestrator, repo_root, dek_bytes, fake_runner):
        note = _write(repo_root / "notes" / "a.md", "mine")
        write_encrypted(note, dek_bytes, repo_root)
        note.unlink()
        fake_runner.on("pull", stdout="CONFLICT (content): Merge conflict in notes/a.md.enc", exit_code=1)
        fake_runner.on(*UNMERGED, stdout="notes/a.md.enc\0")

        result = orchestrator.pull()
        assert not result.success
        assert result.has_conflicts
        assert result.conflicted_files == ["notes/a.md.enc"]
        assert orchestrator.state == SyncState.CONFLICTED
        assert not note.exists()

        with pytest.raises(VersionControlError) as exc_info:
            orchestrator.sync_all()
        assert exc_info.value.kind == VcsErrorKind.MERGE_CONFLICT
        assert exc_info.value.conflicted_files == ["notes/a.md.enc"]

    def test_resolved_conflict_allows_sync(self, orchestrator, fake_runner):
        fake_runner.on("pull", stdout="CONFLICT (content): Merge conflict in x", exit_code=1)
        fake_runner.on(*UNMERGED, stdout="notes/a.md.enc\0")
        orchestrator.pull()
        fake_runner.on(*UNMERGED, stdout="")
        assert orchestrator.sync_all().outcome == SyncOutcome.PUSHED
        assert orchestrator.state == SyncState.CLEAN

    def _merge_brings(self, fake_runner, repo_root, dek_bytes, changes: dict, removed=()):
        """Script a pull whose merge rewrites or deletes ciphertext."""

        def merge(args):
            for rel, text in changes.items():
                _incoming(repo_root, dek_bytes, rel, text)
            for rel in removed:
                (repo_root / (rel + ".enc")).unlink()
            return CommandResult(stdout="Fast-forward\n", stderr="", exit_code=0)

        diff = "".join(f"{rel}.enc\0" for rel in (*changes, *removed))
        fake_runner.on("pull", handler=merge)
        fake_runner.on("rev-parse", "--verify", handler=_heads("aaa", "bbb"))
        fake_runner.on("diff", "--name-only", "-z", "aaa", "bbb", stdout=diff + "assets/logo.png\0")

    def test_decrypts_received_ciphertext(self, orchestrator, repo_root, dek_bytes, fake_runner):
        stale = _write(repo_root / "notes" / "stale.md", "old text")
        orchestrator.encrypt_all()
        self._merge_brings(fake_runner, repo_root, dek_bytes, {
            "notes/incoming.md": "from another machine",
            "notes/stale.md": "new remote text",
        })

        result = orchestrator.pull()
        assert result.success
        assert sorted(result.decrypted.processed) == ["notes/incoming.md.enc", "notes/stale.md.enc"]
        assert (repo_root / "notes" / "incoming.md").read_text() == "from another machine"
        assert stale.read_text() == "new remote text"
        assert orchestrator.state == SyncState.CLEAN

    def test_unsynced_local_edit_is_not_overwritten(self, orchestrator, repo_root, dek_bytes, fake_runner):
        note = _write(repo_root / "notes" / "shared.md", "v1")
        orchestrator.encrypt_all()
        note.write_text("local edit")
        self._merge_brings(fake_runner, repo_root, dek_bytes, {"notes/shared.md": "desktop edit"})

        result = orchestrator.pull()
        assert result.success
        assert note.read_text() == "local edit"
        assert (repo_root / "notes" / "shared.incoming.md").read_text() == "desktop edit"
        assert result.decrypted.processed == []
        [failure] = result.decrypted.failures
        assert failure.path == "notes/shared.md.enc"
        assert "notes/shared.incoming.md" in failure.error

    def test_identical_local_edit_is_not_a_failure(self, orchestrator, repo_root, dek_bytes, fake_runner):
        note = _write(repo_root / "notes" / "shared.md", "v1")
        orchestrator.encrypt_all()
        note.write_text("same words")
        self._merge_brings(fake_runner, repo_root, dek_bytes, {"notes/shared.md": "same words"})

        result = orchestrator.pull()
        assert result.decrypted.ok
        assert not (repo_root / "notes" / "shared.incoming.md").exists()

    def test_remote_deletion_removes_clean_plaintext(self, orchestrator, repo_root, dek_bytes, fake_runner):
        clean = _write(repo_root / "notes" / "clean.md", "unchanged")
        edited = _write(repo_root / "notes" / "edited.md", "v1")
        orchestrator.encrypt_all()
        edited.write_text("v2 not synced yet")
        self._merge_brings(fake_runner, repo_root, dek_bytes, {},
                           removed=("notes/clean.md", "notes/edited.md"))

        result = orchestrator.pull()
        assert result.removed == ["notes/clean.md"]
        assert not clean.exists()
        assert edited.read_text() == "v2 not synced yet"
        assert [f.path for f in result.decrypted.failures] == ["notes/edited.md"]

    def test_unrelated_failure_raises(self, orchestrator, fake_runner):
        fake_runner.on("pull", stderr="fatal: couldn't find remote ref main", exit_code=1)
        with pytest.raises(VersionControlError) as exc_info:
            orchestrator.pull()
        assert exc_info.value.kind == VcsErrorKind.COMMAND_FAILED
        assert orchestrator.state == SyncState.ERROR


class TestPush:
    """Standalone push without key material."""

    def test_push_without_session(self, repo_root, fake_runner):
        orch = SyncOrchestrator(repo_root, None, fake_runner, settings=HolocronSettings())
        orch.push()
        assert fake_runner.commands("push") == [["push", "origin", "main"]]

    def test_no_upstream(self, repo_root):
        runner = FakeRunner().on(
            "push", stderr="fatal: The current branch dev has no upstream branch.", exit_code=128
        )
        orch = SyncOrchestrator(repo_root, None, runner, settings=HolocronSettings())
        with pytest.raises(VersionControlError) as exc_info:
            orch.push(branch="dev")
        assert exc_info.value.kind == VcsErrorKind.NO_UPSTREAM
        assert "set-upstream" in exc_info.value.hint
