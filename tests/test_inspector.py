"""Tests for read-only repository queries."""

from __future__ import annotations

from pathlib import Path

from helpers import commit_file, run_git

from branch_manager.executor import CommandExecutor
from branch_manager.inspector import RepositoryInspector, SyncStatus, UpstreamRef


def _inspector(path: Path) -> RepositoryInspector:
    return RepositoryInspector(CommandExecutor(path), network_timeout=5.0)


class TestRepository:
    def test_is_repository(self, repo: Path, tmp_path: Path):
        outside = tmp_path / "plain"
        outside.mkdir()
        assert _inspector(repo).is_repository()
        assert not _inspector(outside).is_repository()

    def test_toplevel_from_subdirectory(self, repo: Path):
        sub = repo / "src"
        sub.mkdir()
        assert _inspector(sub).toplevel().resolve() == repo.resolve()

    def test_integrity_of_healthy_repository(self, repo: Path):
        report = _inspector(repo).repository_integrity()
        assert report.ok
        assert report.issues == []

    def test_integrity_outside_repository(self, tmp_path: Path):
        outside = tmp_path / "plain"
        outside.mkdir()
        report = _inspector(outside).repository_integrity()
        assert not report.ok
        assert report.issues == ["not a git repository"]


class TestWorkingTree:
    def test_clean(self, repo: Path):
        report = _inspector(repo).working_tree_report()
        assert report.is_clean
        assert report.summary() == "clean"

    def test_counts_each_kind(self, repo: Path):
        (repo / "README.md").write_text("changed\n")
        (repo / "staged.txt").write_text("new\n")
        run_git(repo, "add", "staged.txt")
        (repo / "notes" / "todo.txt").parent.mkdir()
        (repo / "notes" / "todo.txt").write_text("x\n")

        report = _inspector(repo).working_tree_report()

        assert report.staged == ["staged.txt"]
        assert report.modified == ["README.md"]
        assert report.untracked == ["notes/todo.txt"]
        assert not report.is_clean
        assert report.summary() == "1 staged, 1 modified, 1 untracked"

    def test_path_with_spaces(self, repo: Path):
        commit_file(repo, "my file.txt", "a\n")
        (repo / "my file.txt").write_text("b\n")
        assert _inspector(repo).working_tree_report().modified == ["my file.txt"]


class TestBranches:
    def test_current_branch_and_detached_head(self, repo: Path):
        inspector = _inspector(repo)
        assert inspector.current_branch() == "main"
        run_git(repo, "checkout", "--detach", "HEAD")
        assert inspector.current_branch() == ""
        assert inspector.is_detached()

    def test_branch_exists(self, repo: Path):
        run_git(repo, "branch", "feature/x")
        inspector = _inspector(repo)
        assert inspector.branch_exists("feature/x")
        assert not inspector.branch_exists("feature/y")
        assert inspector.local_branches() == ["feature/x", "main"]

    def test_merged_branches(self, repo: Path):
        run_git(repo, "branch", "merged")
        run_git(repo, "checkout", "-b", "unmerged")
        commit_file(repo, "u.txt", "u\n")
        run_git(repo, "checkout", "main")

        merged = _inspector(repo).merged_branches("main")

        assert "merged" in merged
        assert "unmerged" not in merged

    def test_ahead_behind(self, repo: Path):
        run_git(repo, "checkout", "-b", "topic")
        commit_file(repo, "a.txt", "a\n")
        commit_file(repo, "b.txt", "b\n")
        inspector = _inspector(repo)
        assert inspector.ahead_behind("topic", "main") == (2, 0)
        assert inspector.ahead_behind("main", "topic") == (0, 2)
        assert inspector.count_commits("main..topic") == 2
        assert inspector.ahead_behind("topic", "missing") is None


class TestUpstream:
    def test_no_upstream(self, repo: Path):
        info = _inspector(repo).sync_status("main")
        assert info.status == SyncStatus.NO_UPSTREAM
        assert info.upstream is None

    def test_up_to_date_and_ahead(self, repo: Path, remote: Path):
        inspector = _inspector(repo)
        info = inspector.sync_status("main")
        assert info.upstream == UpstreamRef("origin", "main")
        assert info.status == SyncStatus.UP_TO_DATE

        commit_file(repo, "local.txt", "l\n")
        info = inspector.sync_status("main")
        assert info.status == SyncStatus.AHEAD
        assert (info.ahead, info.behind) == (1, 0)

    def test_diverged(self, repo: Path, other_clone: Path):
        commit_file(other_clone, "theirs.txt", "t\n")
        run_git(other_clone, "push", "origin", "main")
        commit_file(repo, "ours.txt", "o\n")
        run_git(repo, "fetch", "origin")

        info = _inspector(repo).sync_status("main")

        assert info.status == SyncStatus.DIVERGED
        assert (info.ahead, info.behind) == (1, 1)

    def test_remote_has_branch(self, repo: Path, remote: Path):
        inspector = _inspector(repo)
        assert inspector.remote_has_branch("origin", "main") is True
        assert inspector.remote_has_branch("origin", "nope") is False

    def test_unreachable_remote_is_unknown(self, repo: Path, tmp_path: Path):
        run_git(repo, "remote", "add", "gone", str(tmp_path / "missing.git"))
        inspector = _inspector(repo)
        assert inspector.remote_has_branch("gone", "main") is None
        assert not inspector.remote_reachable("gone")

    def test_remotes(self, repo: Path, remote: Path):
        inspector = _inspector(repo)
        assert inspector.remotes() == ["origin"]
        assert inspector.default_remote() == "origin"
        assert inspector.remote_url("origin") == str(remote)


class TestStash:
    def test_stash_selector(self, repo: Path):
        (repo / "README.md").write_text("dirty\n")
        run_git(repo, "stash", "push", "-m", "keep me")
        commit = run_git(repo, "rev-parse", "stash@{0}")

        inspector = _inspector(repo)

        assert inspector.stash_selector(commit) == "stash@{0}"
        assert inspector.stash_selector("0" * 40) == ""
        assert inspector.stash_entries()[0][2].endswith("keep me")
