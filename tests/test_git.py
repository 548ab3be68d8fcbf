"""Tests for the git client against a scripted runner."""

from __future__ import annotations

import pytest

from holocron.errors import InvalidInputError, VcsErrorKind, VersionControlError
from holocron.sync.git import DEFAULT_AUTHOR_EMAIL, DEFAULT_AUTHOR_NAME, GitClient, classify
from holocron.sync.models import Author

from conftest import FakeRunner


@pytest.fixture
def git(repo_root, fake_runner) -> GitClient:
    return GitClient(repo_root, fake_runner)


class TestClassify:
    """Error kinds read from git's output."""

    @pytest.mark.parametrize(
        "output, kind",
        [
            ("On branch main\nnothing to commit, working tree clean", VcsErrorKind.NOTHING_TO_COMMIT),
            ("CONFLICT (content): Merge conflict in notes/a.md.enc\n"
             "Automatic merge failed; fix conflicts", VcsErrorKind.MERGE_CONFLICT),
            ("fatal: The current branch dev has no upstream branch.", VcsErrorKind.NO_UPSTREAM),
            ("There is no tracking information for the current branch.", VcsErrorKind.NO_UPSTREAM),
            (" ! [rejected]        main -> main (fetch first)\n"
             "error: failed to push some refs", VcsErrorKind.REJECTED_PUSH),
            ("fatal: not a git repository (or any of the parent directories)",
             VcsErrorKind.NOT_A_REPOSITORY),
            ("fatal: something else entirely", VcsErrorKind.COMMAND_FAILED),
        ],
    )
    def test_kinds(self, output, kind):
        assert classify(output) == kind

    def test_failed_command_carries_kind_and_hint(self, git, fake_runner):
        fake_runner.on("push", stderr="error: failed to push some refs", exit_code=1)
        with pytest.raises(VersionControlError) as exc_info:
            git.push("origin", "main")
        assert exc_info.value.kind == VcsErrorKind.REJECTED_PUSH
        assert "Pull first" in exc_info.value.hint
        assert exc_info.value.command[:2] == ["git", "push"]


class TestStatus:
    """Porcelain parsing."""

    def test_categories(self, git, fake_runner):
        porcelain = "\0".join([
            " M notes/a.md.enc",
            "A  notes/b.md.enc",
            " D notes/c.md.enc",
            "?? assets/img.png",
            "UU kanban/board.json.enc",
            "R  notes/new.md.enc",
            "notes/old.md.enc",
            "",
        ])
        fake_runner.on("status", stdout=porcelain)
        fake_runner.on("rev-list", stdout="2\t1\n")

        status = git.status()
        assert status.branch == "main"
        assert (status.ahead, status.behind) == (2, 1)
        assert status.modified == ["notes/a.md.enc", "notes/new.md.enc"]
        assert status.added == ["notes/b.md.enc"]
        assert status.deleted == ["notes/c.md.enc"]
        assert status.untracked == ["assets/img.png"]
        assert status.conflicted_files == ["kanban/board.json.enc"]
        assert status.has_conflicts
        assert status.has_changes

    def test_clean_tree(self, git, fake_runner):
        status = git.status()
        assert not status.has_changes
        assert not status.has_conflicts

    def test_no_upstream_means_zero_ahead_behind(self, git, fake_runner):
        fake_runner.on("rev-list", stderr="fatal: no upstream configured", exit_code=128)
        assert git.ahead_behind() == (0, 0)

    def test_detached_head(self, repo_root):
        runner = FakeRunner().on("symbolic-ref", exit_code=1)
        assert GitClient(repo_root, runner).current_branch() == "HEAD"

    def test_unborn_head(self, git, fake_runner):
        fake_runner.on("rev-parse", "--verify", exit_code=1)
        assert git.head() is None


class TestCommit:
    """Commit, push and pull."""

    def test_commit_sets_author(self, git, fake_runner):
        git.commit("Manual sync", Author(name="Ada", email="ada@example.com"))
        call = fake_runner.calls[-1]
        assert call[:5] == ["git", "-c", "user.name=Ada", "-c", "user.email=ada@example.com"]
        assert call[5:] == ["commit", "-m", "Manual sync"]

    def test_empty_message_rejected(self, git):
        with pytest.raises(InvalidInputError):
            git.commit("   ")

    def test_nothing_to_commit(self, git, fake_runner):
        fake_runner.on("commit", stdout="nothing to commit, working tree clean", exit_code=1)
        with pytest.raises(VersionControlError) as exc_info:
            git.commit("msg")
        assert exc_info.value.kind == VcsErrorKind.NOTHING_TO_COMMIT

    def test_pull_never_raises(self, git, fake_runner):
        fake_runner.on("pull", stdout="CONFLICT (content): Merge conflict in x", exit_code=1)
        result = git.pull("origin", "main")
        assert not result.ok
        assert fake_runner.commands("pull") == [["pull", "--no-rebase", "--no-edit", "origin", "main"]]

    def test_add_without_pathspecs_is_noop(self, git, fake_runner):
        git.add()
        assert fake_runner.commands("add") == []


class TestBranches:
    """Branch listing and validation."""

    def test_list(self, git, fake_runner):
        fake_runner.on("branch", "-a", stdout=(
            "* refs/heads/main\n"
            "  refs/heads/drafts\n"
            "  refs/remotes/origin/HEAD\n"
            "  refs/remotes/origin/main\n"
        ))
        branches = git.list_branches()
        assert [(b.name, b.is_current, b.is_remote) for b in branches] == [
            ("main", True, False),
            ("drafts", False, False),
            ("origin/main", False, True),
        ]

    def test_create_runs_checkout(self, git, fake_runner):
        git.create_branch("drafts")
        assert fake_runner.commands("checkout") == [["checkout", "-b", "drafts"]]

    @pytest.mark.parametrize("name", ["", "  ", "-rf"])
    def test_invalid_names_rejected_locally(self, git, fake_runner, name):
        with pytest.raises(InvalidInputError):
            git.switch_branch(name)
        assert fake_runner.commands("checkout") == []

    def test_ref_format_failure(self, git, fake_runner):
        fake_runner.on("check-ref-format", exit_code=1)
        with pytest.raises(InvalidInputError):
            git.delete_branch("bad..name")
        assert fake_runner.commands("branch", "-d") == []


class TestAuthor:
    """Identity lookup."""

    def test_fallbacks(self, git, fake_runner):
        fake_runner.on("config", exit_code=1)
        author = git.author()
        assert author.name == DEFAULT_AUTHOR_NAME
        assert author.email == DEFAULT_AUTHOR_EMAIL

    def test_configured(self, git, fake_runner):
        fake_runner.on("config", "--get", "user.name", stdout="Ada\n")
        fake_runner.on("config", "--get", "user.email", stdout="ada@example.com\n")
        assert git.author() == Author(name="Ada", email="ada@example.com")
