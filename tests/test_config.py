"""Tests for configuration parsing, persistence and state paths."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from branch_manager.config import (
    CONFIG_KEYS,
    Config,
    ConfigStore,
    StatePaths,
    build_config,
    parse_config_lines,
    resolve_state_dir,
)
from branch_manager.errors import BranchManagerError, ErrorCategory
from branch_manager.workflow import WorkflowName


class TestResolveStateDir:
    def test_explicit_home_wins(self, monkeypatch, tmp_path):
        monkeypatch.setenv("BRANCH_MANAGER_HOME", str(tmp_path / "bm"))
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
        assert resolve_state_dir() == tmp_path / "bm"

    def test_xdg_config_home(self, monkeypatch, tmp_path):
        monkeypatch.delenv("BRANCH_MANAGER_HOME", raising=False)
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
        assert resolve_state_dir() == tmp_path / "xdg" / "branch-manager"

    def test_home_fallback(self, monkeypatch, tmp_path):
        monkeypatch.delenv("BRANCH_MANAGER_HOME", raising=False)
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        assert resolve_state_dir() == tmp_path / ".config" / "branch-manager"


def test_state_paths_layout(tmp_path: Path):
    paths = StatePaths(tmp_path / "state").ensure()
    assert paths.config_file == tmp_path / "state" / "config"
    assert paths.operations_log == tmp_path / "state" / "logs" / "operations.log"
    assert paths.diagnostic_log.name == "branch_manager.log"
    assert paths.stats_file.name == "operation_stats.txt"
    for directory in (paths.logs_dir, paths.backups_dir, paths.locks_dir):
        assert directory.is_dir()


class TestParsing:
    def test_comments_quotes_and_unknown_keys(self):
        values = parse_config_lines(
            [
                "# comment",
                "",
                'DEFAULT_BASE_BRANCH="develop"',
                "CONFLICT_RESOLUTION_TOOL='vim -d'",
                "export AUTO_FETCH=false",
                "SOMETHING_ELSE=1",
                "not a setting",
            ]
        )
        assert values == {
            "DEFAULT_BASE_BRANCH": "develop",
            "CONFLICT_RESOLUTION_TOOL": "vim -d",
            "AUTO_FETCH": "false",
        }

    def test_missing_keys_fall_back_to_defaults(self):
        config = build_config({"DEFAULT_WORKFLOW": "gitflow"})
        assert config.default_workflow == WorkflowName.GITFLOW
        assert config.default_base_branch == "main"
        assert config.backup_retention_days == 7
        assert config.require_confirmation is True

    def test_invalid_value_is_ignored_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="branch_manager"):
            config = build_config({"AUTO_FETCH": "sometimes", "BACKUP_RETENTION_DAYS": "-3"})
        assert config.auto_fetch is True
        assert config.backup_retention_days == 7
        assert "AUTO_FETCH" in caplog.text

    @pytest.mark.parametrize(("raw", "expected"), [("500", 60.0), ("0", 1.0), ("5", 5.0)])
    def test_network_timeout_is_clamped(self, raw, expected):
        assert build_config({"NETWORK_TIMEOUT": raw}).network_timeout == expected

    def test_custom_prefixes(self):
        config = build_config({"CUSTOM_WORKFLOW_PREFIXES": "task/, spike/"})
        assert config.custom_prefixes == ("task/", "spike/")


class TestConfig:
    def test_overrides_skip_none(self):
        config = Config().with_overrides(default_base_branch=None, auto_fetch=False)
        assert config.default_base_branch == "main"
        assert config.auto_fetch is False

    def test_get_by_key(self):
        assert Config().get("default_base_branch") == "main"
        with pytest.raises(BranchManagerError) as excinfo:
            Config().get("NOPE")
        assert excinfo.value.category == ErrorCategory.USER_INPUT

    def test_items_follow_key_order(self):
        keys = [key for key, _ in Config().items()]
        assert keys == list(CONFIG_KEYS)
        assert dict(Config().items())["AUTO_FETCH"] == "true"

    def test_whole_second_timeout_renders_without_fraction(self):
        assert dict(Config().items())["NETWORK_TIMEOUT"] == "10"
        assert dict(Config(network_timeout=2.5).items())["NETWORK_TIMEOUT"] == "2.5"


class TestConfigStore:
    def test_load_creates_defaults(self, tmp_path: Path):
        store = ConfigStore(tmp_path / "config")
        config = store.load()
        assert store.path.exists()
        assert config == Config()
        text = store.path.read_text()
        assert "DEFAULT_BASE_BRANCH=main" in text
        assert 'CONFLICT_RESOLUTION_TOOL="code --wait"' in text

    def test_load_is_idempotent(self, tmp_path: Path):
        store = ConfigStore(tmp_path / "config")
        assert store.load() == store.load()

    def test_default_file_writes_integral_timeout(self, tmp_path: Path):
        store = ConfigStore(tmp_path / "config")
        store.load()
        assert "NETWORK_TIMEOUT=10\n" in store.path.read_text()

    def test_set_rewrites_line_and_keeps_comments(self, tmp_path: Path):
        store = ConfigStore(tmp_path / "config")
        store.path.write_text("# mine\nDEFAULT_BASE_BRANCH=main\n# trailing\n")

        config = store.set("default_base_branch", "develop")

        assert config.default_base_branch == "develop"
        assert store.path.read_text() == "# mine\nDEFAULT_BASE_BRANCH=develop\n# trailing\n"

    def test_set_appends_missing_key_and_quotes_spaces(self, tmp_path: Path):
        store = ConfigStore(tmp_path / "config")
        store.path.write_text("DEFAULT_BASE_BRANCH=main\n")

        store.set("CONFLICT_RESOLUTION_TOOL", "vim -d")

        assert store.path.read_text().endswith('CONFLICT_RESOLUTION_TOOL="vim -d"\n')
        assert store.get("CONFLICT_RESOLUTION_TOOL") == "vim -d"

    def test_set_rejects_unknown_key(self, tmp_path: Path):
        with pytest.raises(BranchManagerError) as excinfo:
            ConfigStore(tmp_path / "config").set("COLOR", "blue")
        assert excinfo.value.category == ErrorCategory.USER_INPUT

    def test_set_rejects_invalid_value(self, tmp_path: Path):
        store = ConfigStore(tmp_path / "config")
        with pytest.raises(BranchManagerError):
            store.set("DEFAULT_WORKFLOW", "trunk")
        with pytest.raises(BranchManagerError):
            store.set("LOG_LEVEL", "chatty")
        assert store.load().default_workflow == WorkflowName.GITHUB_FLOW
