"""Tests for snapshots, restore and pruning."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from helpers import ScriptedPrompter, commit_file, current_branch, run_git

from branch_manager.audit import OperationStatus
from branch_manager.config import Config
from branch_manager.errors import BranchManagerError, OperationCancelled
from branch_manager.manager import BranchManager


def _other_repository(tmp_path: Path) -> Path:
    other = tmp_path / "elsewhere"
    other.mkdir()
    run_git(other, "init", "-b", "main")
    commit_file(other, "notes.txt", "original\n")
    return other


class TestCreateSnapshot:
    def test_clean_tree_snapshot_files(self, manager, repo: Path):
        snapshot = manager.backups.create_snapshot("merge")

        assert snapshot.id.startswith("merge_main_")
        assert snapshot.branch == "main"
        assert snapshot.head_commit == run_git(repo, "rev-parse", "HEAD")
        assert snapshot.repository == "local"
        assert snapshot.stash_commit == ""
        for name in ("metadata.json", "branches.txt", "remotes.txt", "status.txt",
                     "recent_commits.txt"):
            assert (snapshot.path / name).exists()
        metadata = json.loads((snapshot.path / "metadata.json").read_text())
        assert metadata["operation"] == "merge"

    def test_dirty_tracked_changes_are_stashed_without_touching_tree(self, manager, repo: Path):
        (repo / "README.md").write_text("work in progress\n")
        (repo / "scratch.txt").write_text("untracked\n")

        snapshot = manager.backups.create_snapshot("switch")

        assert snapshot.stash_commit
        assert manager.backups.stash_present(snapshot)
        assert (repo / "README.md").read_text() == "work in progress\n"
        assert snapshot.untracked == ["scratch.txt"]
        assert snapshot.stash_message in run_git(repo, "stash", "list")

    def test_ids_are_unique(self, manager):
        first = manager.backups.create_snapshot("delete")
        second = manager.backups.create_snapshot("delete")
        assert first.id != second.id

    def test_remote_url_recorded(self, manager, remote: Path):
        assert manager.backups.create_snapshot("push").repository == str(remote)


class TestListAndGet:
    def test_newest_first(self, manager):
        first = manager.backups.create_snapshot("create")
        second = manager.backups.create_snapshot("delete")
        ids = [s.id for s in manager.backups.list_snapshots()]
        assert ids == [second.id, first.id]

    def test_other_repositories_hidden_by_default(self, manager, state_paths, tmp_path):
        other = _other_repository(tmp_path)
        BranchManager(Config(), state_paths, other).backups.create_snapshot("merge")
        mine = manager.backups.create_snapshot("merge")

        assert [s.id for s in manager.backups.list_snapshots()] == [mine.id]
        assert len(manager.backups.list_snapshots(all_repositories=True)) == 2

    def test_unreadable_snapshot_is_skipped(self, manager, state_paths):
        (state_paths.backups_dir / "broken").mkdir()
        (state_paths.backups_dir / "broken" / "metadata.json").write_text("{not json")
        assert manager.backups.list_snapshots() == []

    def test_get_unknown(self, manager):
        with pytest.raises(BranchManagerError):
            manager.backups.get("nope")


class TestRestore:
    def test_reapplies_stashed_changes(self, manager, repo: Path):
        (repo / "README.md").write_text("precious\n")
        snapshot = manager.backups.create_snapshot("merge")
        run_git(repo, "checkout", "--", "README.md")

        result = manager.backups.restore(snapshot.id, ScriptedPrompter())

        assert result.branch_restored
        assert result.stash_restored
        assert (repo / "README.md").read_text() == "precious\n"
        assert not manager.backups.stash_present(snapshot)

    def test_returns_to_snapshot_branch(self, manager, repo: Path):
        snapshot = manager.backups.create_snapshot("create")
        run_git(repo, "checkout", "-b", "feature/x")

        result = manager.backups.restore(snapshot.id, ScriptedPrompter())

        assert result.branch_restored
        assert current_branch(repo) == "main"

    def test_declined_restore_is_cancelled(self, manager, repo: Path):
        snapshot = manager.backups.create_snapshot("create")
        run_git(repo, "checkout", "-b", "feature/x")

        with pytest.raises(OperationCancelled):
            manager.backups.restore(snapshot.id, ScriptedPrompter(False))
        assert current_branch(repo) == "feature/x"

    def test_dirty_tree_requires_consent(self, manager, repo: Path):
        snapshot = manager.backups.create_snapshot("create")
        run_git(repo, "checkout", "-b", "feature/x")
        (repo / "README.md").write_text("unsaved\n")

        with pytest.raises(OperationCancelled):
            manager.backups.restore(snapshot.id, ScriptedPrompter(True, False))
        assert (repo / "README.md").read_text() == "unsaved\n"

    def test_dirty_tree_stashed_on_consent(self, manager, repo: Path):
        snapshot = manager.backups.create_snapshot("create")
        run_git(repo, "checkout", "-b", "feature/x")
        (repo / "README.md").write_text("unsaved\n")

        result = manager.backups.restore(snapshot.id, ScriptedPrompter(True, True))

        assert current_branch(repo) == "main"
        assert "Stashed current changes" in result.messages
        assert "auto-stash before restoring" in run_git(repo, "stash", "list")

    def test_deleted_branch_reported(self, manager, repo: Path):
        run_git(repo, "checkout", "-b", "feature/gone")
        snapshot = manager.backups.create_snapshot("delete")
        run_git(repo, "checkout", "main")
        run_git(repo, "branch", "-D", "feature/gone")

        result = manager.backups.restore(snapshot.id, ScriptedPrompter())

        assert not result.branch_restored
        assert "no longer exists" in result.messages[0]


class TestPrune:
    def test_prune_zero_removes_everything_and_drops_stash(self, manager, repo: Path):
        (repo / "README.md").write_text("dirty\n")
        snapshot = manager.backups.create_snapshot("merge")

        removed = manager.backups.prune(0)

        assert removed == [snapshot.id]
        assert not snapshot.path.exists()
        assert run_git(repo, "stash", "list") == ""

    def test_recent_snapshots_kept(self, manager):
        snapshot = manager.backups.create_snapshot("merge")
        assert manager.backups.prune(7) == []
        assert snapshot.path.exists()

    def test_held_snapshot_kept(self, manager):
        snapshot = manager.backups.create_snapshot("merge")
        with manager.backups.hold(snapshot):
            assert manager.backups.prune(0) == []
        assert manager.backups.prune(0) == [snapshot.id]

    def test_other_repository_snapshot_with_stash_kept(self, manager, state_paths, tmp_path):
        other = _other_repository(tmp_path)
        other_manager = BranchManager(Config(), state_paths, other)
        (other / "notes.txt").write_text("edited\n")
        stashed = other_manager.backups.create_snapshot("merge")
        run_git(other, "checkout", "--", "notes.txt")
        plain = other_manager.backups.create_snapshot("create")

        removed = manager.backups.prune(0)

        assert removed == [plain.id]
        assert stashed.path.exists()
        assert "branch-manager snapshot" in run_git(other, "stash", "list")

    def test_other_repository_snapshot_kept_while_locked(self, manager, state_paths, tmp_path):
        other_manager = BranchManager(Config(), state_paths, _other_repository(tmp_path))
        snapshot = other_manager.backups.create_snapshot("merge")

        with other_manager.exclusive("merge"):
            assert manager.backups.prune(0) == []
        assert snapshot.path.exists()
        assert manager.backups.prune(0) == [snapshot.id]


class TestAuditedSnapshotOperations:
    def test_restore_writes_one_audit_entry(self, manager, repo: Path):
        snapshot = manager.backups.create_snapshot("SWITCH_BRANCH")
        run_git(repo, "checkout", "-b", "feature/x")
        before = [e.operation for e in manager.audit.recent()]

        manager.ctx.restore_snapshot(snapshot.id)

        entries = manager.audit.recent()
        assert [e.operation for e in entries] == [*before, "RESTORE_BACKUP"]
        assert entries[-1].status == OperationStatus.SUCCESS
        assert entries[-1].branch == "main"
        assert snapshot.id in entries[-1].details
        assert current_branch(repo) == "main"

    def test_failed_restore_is_logged(self, make_manager, repo: Path):
        manager = make_manager(ScriptedPrompter(False))
        snapshot = manager.backups.create_snapshot("create")

        with pytest.raises(OperationCancelled):
            manager.ctx.restore_snapshot(snapshot.id)

        [entry] = manager.audit.recent()
        assert entry.operation == "RESTORE_BACKUP"
        assert entry.status == OperationStatus.FAILED

    def test_prune_is_logged_only_when_something_was_removed(self, manager, repo: Path):
        (repo / "README.md").write_text("dirty\n")
        snapshot = manager.backups.create_snapshot("merge")

        assert manager.ctx.prune_snapshots(0) == [snapshot.id]
        assert manager.ctx.prune_snapshots(0) == []

        [entry] = manager.audit.recent()
        assert entry.operation == "PRUNE_BACKUPS"
        assert "Removed 1 snapshot(s)" in entry.details
