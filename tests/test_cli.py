"""Tests for the command-line interface."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from helpers import ScriptedPrompter, commit_file, current_branch, run_git
from typer.testing import CliRunner

from branch_manager import __version__, cli
from branch_manager.cli import app

runner = CliRunner()


@pytest.fixture
def in_repo(repo: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(repo)
    return repo


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    package_logger = logging.getLogger("branch_manager")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(logging.NOTSET)


class TestVersion:
    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"branch-manager {__version__}" in result.stdout

    def test_version_command(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestBranchCommands:
    def test_create_and_status_json(self, in_repo: Path):
        result = runner.invoke(app, ["--no-confirm", "create", "feature/login"])
        assert result.exit_code == 0, result.output
        assert current_branch(in_repo) == "feature/login"

        result = runner.invoke(app, ["status", "--json", "--no-fetch"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["current_branch"] == "feature/login"
        assert data["working_tree"]["clean"] is True
        assert data["sync"]["sync_status"] == "no-upstream"

    def test_create_with_workflow_type(self, in_repo: Path):
        result = runner.invoke(
            app, ["create", "--no-confirm", "-t", "hotfix", "Crash on start"]
        )
        assert result.exit_code == 0, result.output
        assert current_branch(in_repo) == "hotfix/crash-on-start"

    def test_invalid_name_exits_with_user_input_code(self, in_repo: Path):
        result = runner.invoke(app, ["create", "--no-confirm", "bad name"])
        assert result.exit_code == 2
        assert "Invalid branch name" in result.output

    def test_cleanup_dry_run(self, in_repo: Path):
        run_git(in_repo, "branch", "feature/done")
        result = runner.invoke(app, ["cleanup", "--dry-run", "--json"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["candidates"] == ["feature/done"]
        assert run_git(in_repo, "branch", "--list", "feature/done")


class TestMergeCommands:
    def test_merge_into_itself_exits_2(self, in_repo: Path):
        result = runner.invoke(app, ["merge", "main", "main"])
        assert result.exit_code == 2

    def test_continue_and_abort_are_exclusive(self, in_repo: Path):
        result = runner.invoke(app, ["merge", "--continue", "--abort"])
        assert result.exit_code == 2

    def test_conflicted_merge_exits_4(self, in_repo: Path):
        commit_file(in_repo, "a.txt", "one\n")
        run_git(in_repo, "checkout", "-b", "feature/c")
        commit_file(in_repo, "a.txt", "theirs\n")
        run_git(in_repo, "checkout", "main")
        commit_file(in_repo, "a.txt", "ours\n")

        result = runner.invoke(app, ["--no-confirm", "merge", "feature/c"])

        assert result.exit_code == 4
        assert "a.txt" in result.output

        result = runner.invoke(app, ["--no-confirm", "merge", "--abort"])
        assert result.exit_code == 0, result.output

    def test_preview_json(self, in_repo: Path):
        run_git(in_repo, "checkout", "-b", "feature/p")
        commit_file(in_repo, "p.txt", "p\n")
        run_git(in_repo, "checkout", "main")

        result = runner.invoke(app, ["merge", "feature/p", "--preview", "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["commit_count"] == 1
        assert data["merge_type"] == "fast-forward"


class TestConfigCommands:
    def test_set_then_get(self, isolated_env: Path):
        result = runner.invoke(app, ["config", "set", "default_base_branch", "develop"])
        assert result.exit_code == 0, result.output

        result = runner.invoke(app, ["config", "get", "DEFAULT_BASE_BRANCH"])
        assert result.exit_code == 0
        assert result.stdout.strip() == "develop"
        assert "DEFAULT_BASE_BRANCH=develop" in (isolated_env / "config").read_text()

    def test_unknown_key(self):
        result = runner.invoke(app, ["config", "set", "COLOR", "blue"])
        assert result.exit_code == 2

    def test_show_json(self):
        result = runner.invoke(app, ["config", "show", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["DEFAULT_WORKFLOW"] == "github-flow"

    def test_path(self, isolated_env: Path):
        result = runner.invoke(app, ["config", "path"])
        assert result.stdout.strip() == str(isolated_env / "config")


class TestOtherCommands:
    def test_outside_repository_exits_3(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        plain = tmp_path / "plain"
        plain.mkdir()
        monkeypatch.chdir(plain)

        result = runner.invoke(app, ["status", "--json"])

        assert result.exit_code == 3

    def test_workflow_suggest(self, in_repo: Path):
        result = runner.invoke(app, ["workflow", "suggest", "feature", "Add", "Search"])
        assert result.exit_code == 0
        assert result.stdout.strip() == "feature/add-search"

    def test_backup_list_json(self, in_repo: Path):
        runner.invoke(app, ["--no-confirm", "create", "feature/snap"])
        result = runner.invoke(app, ["backup", "list", "--json"])
        assert result.exit_code == 0, result.output
        [snapshot] = json.loads(result.stdout)
        assert snapshot["operation"] == "CREATE_BRANCH"

    def test_audit_recent_json(self, in_repo: Path):
        runner.invoke(app, ["--no-confirm", "create", "feature/audited"])
        result = runner.invoke(app, ["audit", "recent", "--json"])
        assert result.exit_code == 0, result.output
        [entry] = json.loads(result.stdout)
        assert entry["operation"] == "CREATE_BRANCH"
        assert entry["branch"] == "feature/audited"


class TestSnapshotCommands:
    def test_restore_is_audited(self, in_repo: Path, manager):
        snapshot = manager.backups.create_snapshot("SWITCH_BRANCH")
        run_git(in_repo, "checkout", "-b", "feature/x")

        result = runner.invoke(app, ["--no-confirm", "backup", "restore", snapshot.id])

        assert result.exit_code == 0, result.output
        assert current_branch(in_repo) == "main"
        assert [e.operation for e in manager.audit.recent()] == ["RESTORE_BACKUP"]

    def test_prune_waits_for_the_repository_lock(self, in_repo: Path, manager):
        snapshot = manager.backups.create_snapshot("MERGE_BRANCH")

        with manager.exclusive("merge"):
            result = runner.invoke(app, ["backup", "prune", "--days", "0"])

        assert result.exit_code == 8
        assert snapshot.path.exists()

        result = runner.invoke(app, ["backup", "prune", "--days", "0"])
        assert result.exit_code == 0, result.output
        assert not snapshot.path.exists()
        assert [e.operation for e in manager.audit.recent()] == ["PRUNE_BACKUPS"]


def test_resolve_without_completing_exits_4(in_repo: Path, monkeypatch: pytest.MonkeyPatch):
    commit_file(in_repo, "a.txt", "one\n")
    run_git(in_repo, "checkout", "-b", "feature/c")
    commit_file(in_repo, "a.txt", "theirs\n")
    run_git(in_repo, "checkout", "main")
    commit_file(in_repo, "a.txt", "ours\n")
    assert runner.invoke(app, ["--no-confirm", "merge", "feature/c"]).exit_code == 4
    monkeypatch.setattr(cli, "ConsolePrompter", lambda console: ScriptedPrompter("ours", False))

    result = runner.invoke(app, ["resolve"])

    assert result.exit_code == 4
    assert "Merge still in progress" in result.output
    assert (in_repo / ".git" / "MERGE_HEAD").exists()
