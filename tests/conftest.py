"""Pytest configuration and fixtures for branch-manager tests.

Every test that touches git works on a real repository created in
``tmp_path``; remotes are bare repositories on the local filesystem.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
from helpers import commit_file, run_git

from branch_manager.config import Config, StatePaths
from branch_manager.manager import BranchManager


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep git identity, git config and the state directory inside tmp_path."""
    gitconfig = tmp_path / "gitconfig"
    gitconfig.write_text("")
    state = tmp_path / "state"
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(gitconfig))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test User")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test User")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    monkeypatch.setenv("BRANCH_MANAGER_HOME", str(state))
    return state


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    """A repository on ``main`` with one commit."""
    path = tmp_path / "repo"
    path.mkdir()
    run_git(path, "init", "-b", "main")
    commit_file(path, "README.md", "# test repo\n", "init")
    return path


@pytest.fixture
def remote(tmp_path: Path, repo: Path) -> Path:
    """A bare ``origin`` for ``repo`` with ``main`` pushed and tracked."""
    path = tmp_path / "origin.git"
    run_git(tmp_path, "init", "--bare", "-b", "main", str(path))
    run_git(repo, "remote", "add", "origin", str(path))
    run_git(repo, "push", "-u", "origin", "main")
    return path


@pytest.fixture
def other_clone(tmp_path: Path, remote: Path) -> Path:
    """A second working copy of ``origin`` used to publish upstream commits."""
    path = tmp_path / "other"
    run_git(tmp_path, "clone", str(remote), str(path))
    return path


@pytest.fixture
def state_paths(isolated_env: Path) -> StatePaths:
    return StatePaths(isolated_env).ensure()


@pytest.fixture
def make_manager(repo: Path, state_paths: StatePaths) -> Callable[..., BranchManager]:
    """Factory for a manager on ``repo`` with an optional prompter and config overrides."""

    def factory(prompter=None, **overrides) -> BranchManager:
        config = Config().with_overrides(**overrides)
        return BranchManager(config, state_paths, repo, prompter)

    return factory


@pytest.fixture
def manager(make_manager) -> BranchManager:
    return make_manager()
