"""Tests for merging, conflict analysis and resolution."""

from __future__ import annotations

from pathlib import Path

import pytest
from helpers import ScriptedPrompter, commit_file, current_branch, run_git

from branch_manager.errors import BranchManagerError, ErrorCategory, OperationCancelled
from branch_manager.merge import (
    ConflictComplexity,
    MergeStatus,
    MergeStrategy,
    MergeType,
    Resolution,
    analyze_conflict,
    categorize,
    has_conflict_markers,
    keep_ours,
)

CONFLICT_TEXT = (
    "alpha\n"
    "<<<<<<< HEAD\n"
    "  beta\n"
    "=======\n"
    "beta  \n"
    ">>>>>>> feature/ws\n"
    "gamma\n"
)


def _feature_with_commits(repo: Path, name: str = "feature/x", count: int = 2) -> None:
    run_git(repo, "checkout", "-b", name)
    for i in range(count):
        commit_file(repo, f"f{i}.txt", f"{i}\n")
    run_git(repo, "checkout", "main")


def _diverge(repo: Path, ours: str, theirs: str, branch: str = "feature/ws") -> None:
    """Make main and ``branch`` change the same line of a.txt differently."""
    commit_file(repo, "a.txt", "alpha\nbeta\ngamma\n", "add a.txt")
    run_git(repo, "checkout", "-b", branch)
    commit_file(repo, "a.txt", f"alpha\n{theirs}\ngamma\n", "theirs")
    run_git(repo, "checkout", "main")
    commit_file(repo, "a.txt", f"alpha\n{ours}\ngamma\n", "ours")


class TestConflictAnalysis:
    @pytest.mark.parametrize(
        ("markers", "lines", "expected"),
        [
            (3, 10, ConflictComplexity.SIMPLE),
            (4, 10, ConflictComplexity.MODERATE),
            (3, 11, ConflictComplexity.MODERATE),
            (10, 50, ConflictComplexity.MODERATE),
            (11, 0, ConflictComplexity.COMPLEX),
            (0, 51, ConflictComplexity.COMPLEX),
        ],
    )
    def test_categorize(self, markers, lines, expected):
        assert categorize(markers, lines) == expected

    def test_whitespace_only_conflict(self):
        conflict = analyze_conflict("a.txt", CONFLICT_TEXT)
        assert conflict.marker_count == 3
        assert conflict.changed_lines == 2
        assert conflict.complexity == ConflictComplexity.SIMPLE
        assert conflict.auto_resolvable

    def test_real_conflict_not_auto_resolvable(self):
        text = CONFLICT_TEXT.replace("beta  \n", "BETA\n")
        assert not analyze_conflict("a.txt", text).auto_resolvable

    def test_diff3_base_section_ignored(self):
        text = (
            "<<<<<<< HEAD\n  x\n||||||| base\nx\n=======\nx  \n>>>>>>> other\n"
        )
        assert analyze_conflict("b.txt", text).auto_resolvable
        assert keep_ours(text) == "  x\n"

    def test_keep_ours(self):
        assert keep_ours(CONFLICT_TEXT) == "alpha\n  beta\ngamma\n"
        assert not has_conflict_markers(keep_ours(CONFLICT_TEXT))

    def test_marker_detection_needs_both_ends(self):
        assert has_conflict_markers(CONFLICT_TEXT)
        assert not has_conflict_markers("<<<<<<< only an opening line\n")


class TestPreview:
    def test_fast_forward_preview(self, manager, repo: Path):
        _feature_with_commits(repo)

        preview = manager.merges.preview("feature/x", "main")

        assert preview.commit_count == 2
        assert preview.merge_type == MergeType.FAST_FORWARD
        assert ("A", "f0.txt") in preview.changed_files
        assert len(preview.commits) == 2

    def test_diverged_preview_needs_merge_commit(self, manager, repo: Path):
        _feature_with_commits(repo)
        commit_file(repo, "main.txt", "m\n")
        assert manager.merges.preview("feature/x", "main").merge_type == MergeType.MERGE_COMMIT

    def test_unknown_branch(self, manager):
        with pytest.raises(BranchManagerError) as excinfo:
            manager.merges.preview("feature/ghost", "main")
        assert excinfo.value.category == ErrorCategory.REPOSITORY


class TestMerge:
    def test_identical_branches_are_noop(self, manager, repo: Path):
        run_git(repo, "branch", "feature/same")

        outcome = manager.merges.merge("feature/same", "main")

        assert outcome.status == MergeStatus.NOOP
        assert outcome.commits_merged == 0
        assert manager.backups.list_snapshots() == []

    def test_self_merge_rejected(self, manager):
        with pytest.raises(BranchManagerError) as excinfo:
            manager.merges.merge("main", "main")
        assert excinfo.value.category == ErrorCategory.USER_INPUT

    def test_fast_forward(self, manager, repo: Path):
        _feature_with_commits(repo)
        feature_head = run_git(repo, "rev-parse", "feature/x")

        outcome = manager.merges.merge("feature/x")

        assert outcome.status == MergeStatus.MERGED
        assert outcome.merge_type == MergeType.FAST_FORWARD
        assert outcome.commits_merged == 2
        assert outcome.snapshot_id
        assert run_git(repo, "rev-parse", "main") == feature_head
        assert manager.audit.recent(1)[0].operation == "MERGE_FAST_FORWARD"

    def test_forced_merge_commit(self, manager, repo: Path):
        _feature_with_commits(repo)

        outcome = manager.merges.merge(
            "feature/x", "main", strategy=MergeStrategy.MERGE_COMMIT, message="Merge feature x"
        )

        assert outcome.merge_type == MergeType.MERGE_COMMIT
        assert run_git(repo, "log", "-1", "--format=%s") == "Merge feature x"
        assert len(run_git(repo, "log", "-1", "--format=%P").split()) == 2

    def test_fast_forward_strategy_refused_when_diverged(self, manager, repo: Path):
        _feature_with_commits(repo)
        commit_file(repo, "main.txt", "m\n")
        with pytest.raises(BranchManagerError) as excinfo:
            manager.merges.merge("feature/x", "main", strategy=MergeStrategy.FAST_FORWARD)
        assert excinfo.value.category == ErrorCategory.USER_INPUT

    def test_checks_out_target(self, manager, repo: Path):
        _feature_with_commits(repo)
        run_git(repo, "checkout", "feature/x")
        manager.merges.merge("feature/x", "main")
        assert current_branch(repo) == "main"

    def test_declined(self, make_manager, repo: Path):
        _feature_with_commits(repo)
        with pytest.raises(OperationCancelled):
            make_manager(ScriptedPrompter(False)).merges.merge("feature/x", "main")

    def test_workflow_validation(self, manager, repo: Path):
        run_git(repo, "branch", "develop")
        _feature_with_commits(repo)
        with pytest.raises(OperationCancelled):
            manager.merges.merge("feature/x", "develop", validate_workflow=True)

    def test_target_refreshed_from_upstream(self, manager, repo: Path, other_clone: Path):
        _feature_with_commits(repo)
        commit_file(other_clone, "upstream.txt", "u\n")
        run_git(other_clone, "push", "origin", "main")

        outcome = manager.merges.merge("feature/x", "main")

        assert outcome.status == MergeStatus.MERGED
        assert (repo / "upstream.txt").exists()
        assert (repo / "f1.txt").exists()


class TestConflicts:
    def test_whitespace_conflict_is_auto_resolvable(self, manager, repo: Path):
        _diverge(repo, "  beta", "beta  ")

        outcome = manager.merges.merge("feature/ws", "main")

        assert outcome.status == MergeStatus.CONFLICTED
        assert not outcome.success
        assert outcome.commits_merged == 0
        [conflict] = outcome.conflicts
        assert conflict.path == "a.txt"
        assert conflict.auto_resolvable
        assert conflict.complexity == ConflictComplexity.SIMPLE
        assert manager.inspector.merge_in_progress()
        assert manager.audit.recent(1)[0].status == "FAILED"

    def test_completion_blocked_until_resolved(self, manager, repo: Path):
        _diverge(repo, "  beta", "beta  ")
        manager.merges.merge("feature/ws", "main")

        with pytest.raises(BranchManagerError) as excinfo:
            manager.merges.complete()
        assert excinfo.value.category == ErrorCategory.CONFLICT

        # staging the file with markers still counts as unresolved
        run_git(repo, "add", "a.txt")
        assert manager.merges.validate_resolution() == ["a.txt"]
        with pytest.raises(BranchManagerError):
            manager.merges.complete()
        assert manager.inspector.merge_in_progress()

    def test_resolve_whitespace_then_complete(self, manager, repo: Path):
        _diverge(repo, "  beta", "beta  ")
        manager.merges.merge("feature/ws", "main")

        assert manager.merges.resolve_file("a.txt", Resolution.WHITESPACE)
        result = manager.merges.complete()

        assert result.success
        assert not manager.inspector.merge_in_progress()
        assert (repo / "a.txt").read_text() == "alpha\n  beta\ngamma\n"
        assert len(run_git(repo, "log", "-1", "--format=%P").split()) == 2

    def test_whitespace_resolution_refused_for_real_conflict(self, manager, repo: Path):
        _diverge(repo, "ours", "theirs")
        outcome = manager.merges.merge("feature/ws", "main")

        assert not outcome.conflicts[0].auto_resolvable
        assert not manager.merges.resolve_file("a.txt", Resolution.WHITESPACE)
        assert manager.merges.validate_resolution() == ["a.txt"]

    def test_take_theirs(self, manager, repo: Path):
        _diverge(repo, "ours", "theirs")
        manager.merges.merge("feature/ws", "main")

        assert manager.merges.resolve_file("a.txt", Resolution.THEIRS)
        manager.merges.complete()

        assert (repo / "a.txt").read_text() == "alpha\ntheirs\ngamma\n"

    def test_interactive_resolution(self, make_manager, repo: Path):
        _diverge(repo, "ours", "theirs")
        engine = make_manager(ScriptedPrompter(True, "ours")).merges
        engine.merge("feature/ws", "main")

        summary = engine.resolve_interactively()

        assert summary.resolved == ["a.txt"]
        assert summary.complete
        engine.complete()
        assert (repo / "a.txt").read_text() == "alpha\nours\ngamma\n"

    def test_interactive_skip_leaves_conflict(self, make_manager, repo: Path):
        _diverge(repo, "ours", "theirs")
        engine = make_manager(ScriptedPrompter(True, "skip")).merges
        engine.merge("feature/ws", "main")

        summary = engine.resolve_interactively()

        assert summary.skipped == ["a.txt"]
        assert not summary.complete

    def test_abort(self, manager, repo: Path):
        _diverge(repo, "ours", "theirs")
        before = run_git(repo, "rev-parse", "HEAD")
        manager.merges.merge("feature/ws", "main")

        result = manager.merges.abort()

        assert result.message == "Merge aborted"
        assert not manager.inspector.merge_in_progress()
        assert run_git(repo, "rev-parse", "HEAD") == before
        assert (repo / "a.txt").read_text() == "alpha\nours\ngamma\n"

    def test_new_merge_refused_while_conflicted(self, manager, repo: Path):
        _diverge(repo, "ours", "theirs")
        run_git(repo, "branch", "feature/other", "feature/ws~1")
        manager.merges.merge("feature/ws", "main")

        with pytest.raises(BranchManagerError) as excinfo:
            manager.merges.merge("feature/other", "main")
        assert excinfo.value.category == ErrorCategory.CONFLICT

    def test_complete_without_merge(self, manager):
        with pytest.raises(BranchManagerError) as excinfo:
            manager.merges.complete()
        assert excinfo.value.category == ErrorCategory.USER_INPUT
