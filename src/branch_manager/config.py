"""Configuration store and state-directory layout."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any

from .errors import BranchManagerError, ErrorCategory
from .workflow import WorkflowName

logger = logging.getLogger(__name__)

STATE_DIR_ENV = "BRANCH_MANAGER_HOME"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

# =============================================================================
# State Paths
# =============================================================================


def resolve_state_dir() -> Path:
    """Locate the tool's state directory.

    Priority order:
    1. $BRANCH_MANAGER_HOME environment variable
    2. $XDG_CONFIG_HOME/branch-manager
    3. ~/.config/branch-manager
    """
    env_home = os.environ.get(STATE_DIR_ENV)
    if env_home:
        return Path(os.path.expandvars(env_home)).expanduser()

    xdg_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_home:
        return Path(xdg_home).expanduser() / "branch-manager"

    return Path.home() / ".config" / "branch-manager"


@dataclass(frozen=True)
class StatePaths:
    """Files and directories the tool persists under its state directory."""

    root: Path

    @property
    def config_file(self) -> Path:
        return self.root / "config"

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    @property
    def diagnostic_log(self) -> Path:
        return self.logs_dir / "branch_manager.log"

    @property
    def operations_log(self) -> Path:
        return self.logs_dir / "operations.log"

    @property
    def stats_file(self) -> Path:
        return self.logs_dir / "operation_stats.txt"

    @property
    def backups_dir(self) -> Path:
        return self.root / "backups"

    @property
    def locks_dir(self) -> Path:
        return self.root / "locks"

    def ensure(self) -> StatePaths:
        for directory in (self.root, self.logs_dir, self.backups_dir, self.locks_dir):
            directory.mkdir(parents=True, exist_ok=True)
        return self


# =============================================================================
# Config Model
# =============================================================================


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("true", "yes", "1", "on"):
        return True
    if lowered in ("false", "no", "0", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _parse_retention(value: str) -> int:
    days = int(value)
    if days < 0:
        raise ValueError("retention must not be negative")
    return days


def _parse_timeout(value: str) -> float:
    return min(max(float(value), 1.0), 60.0)


def _parse_log_level(value: str) -> str:
    level = value.strip().upper()
    if level not in LOG_LEVELS:
        raise ValueError(f"unknown log level: {value!r}")
    return level


def _parse_prefixes(value: str) -> tuple[str, ...]:
    prefixes = tuple(p.strip() for p in value.split(",") if p.strip())
    if not prefixes:
        raise ValueError("at least one prefix is required")
    return prefixes


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, tuple):
        return ",".join(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@dataclass(frozen=True)
class Config:
    """Settings for one process, built once at startup."""

    default_base_branch: str = "main"
    default_workflow: WorkflowName = WorkflowName.GITHUB_FLOW
    auto_cleanup_merged: bool = True
    conflict_tool: str = "code --wait"
    backup_retention_days: int = 7
    log_level: str = "INFO"
    auto_fetch: bool = True
    require_confirmation: bool = True
    network_timeout: float = 10.0
    custom_prefixes: tuple[str, ...] = ("feat/", "fix/", "chore/")

    def get(self, key: str) -> Any:
        spec = _KEYS.get(key.upper())
        if spec is None:
            raise BranchManagerError(f"Unknown configuration key: {key}", ErrorCategory.USER_INPUT)
        return getattr(self, spec.attr)

    def with_overrides(self, **overrides: Any) -> Config:
        """Return a copy with non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def items(self) -> list[tuple[str, str]]:
        """Key/value pairs in file order, formatted as they are written."""
        return [(key, _format_value(getattr(self, spec.attr))) for key, spec in _KEYS.items()]

    def to_dict(self) -> dict:
        return dict(self.items())


@dataclass(frozen=True)
class _KeySpec:
    attr: str
    parse: Callable[[str], Any]
    comment: str


_KEYS: MappingProxyType[str, _KeySpec] = MappingProxyType(
    {
        "DEFAULT_BASE_BRANCH": _KeySpec(
            "default_base_branch", str.strip, "Default base branch for new branches"
        ),
        "DEFAULT_WORKFLOW": _KeySpec(
            "default_workflow", WorkflowName, "github-flow, gitflow or custom"
        ),
        "AUTO_CLEANUP_MERGED": _KeySpec(
            "auto_cleanup_merged", _parse_bool, "Delete merged branches after merge-and-push"
        ),
        "CONFLICT_RESOLUTION_TOOL": _KeySpec(
            "conflict_tool", str.strip, "Command used to open conflicted files"
        ),
        "BACKUP_RETENTION_DAYS": _KeySpec(
            "backup_retention_days", _parse_retention, "Days to keep snapshots and daily logs"
        ),
        "LOG_LEVEL": _KeySpec("log_level", _parse_log_level, "DEBUG, INFO, WARNING or ERROR"),
        "AUTO_FETCH": _KeySpec("auto_fetch", _parse_bool, "Fetch before create, merge and status"),
        "REQUIRE_CONFIRMATION": _KeySpec(
            "require_confirmation", _parse_bool, "Ask before mutating operations"
        ),
        "NETWORK_TIMEOUT": _KeySpec(
            "network_timeout", _parse_timeout, "Seconds before a remote call is abandoned"
        ),
        "CUSTOM_WORKFLOW_PREFIXES": _KeySpec(
            "custom_prefixes", _parse_prefixes, "Comma-separated prefixes for the custom workflow"
        ),
    }
)

CONFIG_KEYS = tuple(_KEYS)


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def parse_config_lines(lines: list[str]) -> dict[str, str]:
    """Extract recognized KEY=value pairs, skipping comments and unknown keys."""
    values: dict[str, str] = {}
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw = line.partition("=")
        key = key.strip().upper()
        if key.startswith("EXPORT "):
            key = key[len("EXPORT ") :].strip()
        if key in _KEYS:
            values[key] = _strip_quotes(raw)
    return values


def build_config(values: dict[str, str]) -> Config:
    """Merge parsed file values over the built-in defaults."""
    kwargs: dict[str, Any] = {}
    for key, raw in values.items():
        spec = _KEYS[key]
        try:
            kwargs[spec.attr] = spec.parse(raw)
        except ValueError as e:
            logger.warning("Ignoring invalid %s=%r: %s", key, raw, e)
    return Config(**kwargs)


# =============================================================================
# Config Store
# =============================================================================


class ConfigStore:
    """Reads and writes the key=value configuration file."""

    def __init__(self, path: Path):
        self.path = path

    def write_defaults(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        lines = ["# branch-manager configuration", ""]
        defaults = Config()
        for key, spec in _KEYS.items():
            value = _format_value(getattr(defaults, spec.attr))
            if " " in value:
                value = f'"{value}"'
            lines.append(f"# {spec.comment}")
            lines.append(f"{key}={value}")
        self.path.write_text("\n".join(lines) + "\n")
        logger.info("Created default configuration at %s", self.path)

    def load(self) -> Config:
        """Load configuration, creating the file with defaults when absent."""
        if not self.path.exists():
            self.write_defaults()
        return build_config(parse_config_lines(self.path.read_text().splitlines()))

    def get(self, key: str) -> Any:
        return self.load().get(key)

    def set(self, key: str, value: str) -> Config:
        """Validate and persist one setting, preserving the rest of the file."""
        key = key.strip().upper()
        spec = _KEYS.get(key)
        if spec is None:
            raise BranchManagerError(
                f"Unknown configuration key: {key}. Known keys: {', '.join(CONFIG_KEYS)}",
                ErrorCategory.USER_INPUT,
            )
        try:
            spec.parse(value)
        except ValueError as e:
            raise BranchManagerError(f"Invalid value for {key}: {e}", ErrorCategory.USER_INPUT) from e

        if not self.path.exists():
            self.write_defaults()

        rendered = f'"{value}"' if " " in value else value
        lines = self.path.read_text().splitlines()
        for i, line in enumerate(lines):
            stripped = line.strip()
            if stripped.startswith("#") or "=" not in stripped:
                continue
            if stripped.partition("=")[0].strip().upper() == key:
                lines[i] = f"{key}={rendered}"
                break
        else:
            lines.append(f"{key}={rendered}")

        self.path.write_text("\n".join(lines) + "\n")
        logger.info("Set %s=%s in %s", key, value, self.path)
        return self.load()
