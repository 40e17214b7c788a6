"""Audit trail: operation logs, statistics, rotation and troubleshooting reports."""

from __future__ import annotations

import getpass
import logging
import os
import platform
import shutil
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.logging import RichHandler

from ._version import __version__
from .config import StatePaths

if TYPE_CHECKING:
    from .config import Config
    from .inspector import RepositoryInspector

logger = logging.getLogger(__name__)

STATS_HEADER = (
    "# Operation Statistics\n"
    "# Format: operation|success_count|failure_count|last_success|last_failure\n"
)

# =============================================================================
# Logging Setup
# =============================================================================


def setup_logging(level: str, log_file: Path | None = None, console: Console | None = None):
    """Route the package's loggers to the terminal (rich) and the diagnostic log."""
    package_logger = logging.getLogger("branch_manager")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    package_logger.setLevel(level)

    rich_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        show_time=False,
        markup=False,
    )
    rich_handler.setLevel(level)
    package_logger.addHandler(rich_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("[%(asctime)s] [%(levelname)s] %(name)s: %(message)s")
        )
        file_handler.setLevel(logging.DEBUG)
        package_logger.setLevel(logging.DEBUG)
        package_logger.addHandler(file_handler)


# =============================================================================
# Domain Models
# =============================================================================


class OperationStatus(StrEnum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


def _clean_field(value: str) -> str:
    return value.replace("|", "/").replace("\r", " ").replace("\n", " ").strip()


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return os.environ.get("USER", "unknown")


@dataclass(frozen=True)
class AuditEntry:
    """One line of the operation log."""

    timestamp: datetime
    user: str
    operation: str
    branch: str
    status: OperationStatus
    details: str
    cwd: str
    pid: int

    def to_line(self) -> str:
        fields = (
            self.timestamp.isoformat(timespec="seconds"),
            self.user,
            self.operation,
            self.branch,
            self.status.value,
            self.details,
            self.cwd,
            str(self.pid),
        )
        return "|".join(_clean_field(f) for f in fields)

    @classmethod
    def from_line(cls, line: str) -> AuditEntry | None:
        parts = line.rstrip("\n").split("|")
        if len(parts) != 8:
            return None
        try:
            return cls(
                timestamp=datetime.fromisoformat(parts[0]),
                user=parts[1],
                operation=parts[2],
                branch=parts[3],
                status=OperationStatus(parts[4]),
                details=parts[5],
                cwd=parts[6],
                pid=int(parts[7]),
            )
        except ValueError:
            return None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(timespec="seconds"),
            "user": self.user,
            "operation": self.operation,
            "branch": self.branch,
            "status": self.status.value,
            "details": self.details,
            "cwd": self.cwd,
            "pid": self.pid,
        }


@dataclass
class OperationStats:
    """Running counters for one operation name."""

    operation: str
    success_count: int = 0
    failure_count: int = 0
    last_success: str = "never"
    last_failure: str = "never"

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count

    @property
    def success_rate(self) -> float:
        return 100.0 * self.success_count / self.total if self.total else 0.0

    def to_line(self) -> str:
        return (
            f"{self.operation}|{self.success_count}|{self.failure_count}"
            f"|{self.last_success}|{self.last_failure}"
        )

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "last_success": self.last_success,
            "last_failure": self.last_failure,
            "success_rate": round(self.success_rate, 1),
        }


# =============================================================================
# Audit Log
# =============================================================================


class AuditLog:
    """Append-only operation log with per-day copies and counters."""

    def __init__(self, paths: StatePaths, retention_days: int = 7):
        self.paths = paths
        self.retention_days = retention_days

    def daily_log(self, day: datetime | None = None) -> Path:
        day = day or datetime.now()
        return self.paths.logs_dir / f"operations_{day:%Y%m%d}.log"

    def log_operation(
        self,
        operation: str,
        branch: str,
        status: OperationStatus,
        details: str = "",
    ) -> AuditEntry:
        """Append one entry to the master and daily logs and update counters."""
        entry = AuditEntry(
            timestamp=datetime.now().astimezone(),
            user=_current_user(),
            operation=operation,
            branch=branch or "-",
            status=status,
            details=details,
            cwd=os.getcwd(),
            pid=os.getpid(),
        )
        self.paths.logs_dir.mkdir(parents=True, exist_ok=True)
        line = entry.to_line() + "\n"
        for path in (self.paths.operations_log, self.daily_log(entry.timestamp)):
            with open(path, "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
        self._update_stats(operation, status, entry.timestamp)

        log = logger.info if status == OperationStatus.SUCCESS else logger.warning
        log("%s %s on %s %s", operation, status.value, entry.branch, details)
        return entry

    def recent(self, count: int = 20) -> list[AuditEntry]:
        """Most recent entries from the master log, oldest first."""
        if not self.paths.operations_log.exists():
            return []
        lines = self.paths.operations_log.read_text(encoding="utf-8").splitlines()
        entries = [AuditEntry.from_line(line) for line in lines[-count:]]
        return [e for e in entries if e is not None]

    # -- statistics ---------------------------------------------------------

    def stats(self) -> list[OperationStats]:
        path = self.paths.stats_file
        if not path.exists():
            return []
        result = []
        for line in path.read_text(encoding="utf-8").splitlines():
            if not line.strip() or line.startswith("#"):
                continue
            parts = line.split("|")
            if len(parts) != 5:
                continue
            try:
                result.append(
                    OperationStats(parts[0], int(parts[1]), int(parts[2]), parts[3], parts[4])
                )
            except ValueError:
                logger.warning("Skipping malformed stats line: %s", line)
        return result

    def _update_stats(self, operation: str, status: OperationStatus, when: datetime):
        by_name = {s.operation: s for s in self.stats()}
        stats = by_name.setdefault(operation, OperationStats(operation))
        stamp = when.isoformat(timespec="seconds")
        if status == OperationStatus.SUCCESS:
            stats.success_count += 1
            stats.last_success = stamp
        else:
            stats.failure_count += 1
            stats.last_failure = stamp

        body = "".join(s.to_line() + "\n" for s in by_name.values())
        tmp = self.paths.stats_file.with_suffix(".tmp")
        tmp.write_text(STATS_HEADER + body, encoding="utf-8")
        tmp.replace(self.paths.stats_file)

    # -- rotation -----------------------------------------------------------

    def rotate(self, max_size_mb: float = 10, max_files: int = 5) -> list[Path]:
        """Rotate logs larger than ``max_size_mb``, keeping ``max_files`` generations."""
        rotated = []
        limit = int(max_size_mb * 1024 * 1024)
        candidates = [self.paths.operations_log, self.paths.diagnostic_log]
        candidates += sorted(self.paths.logs_dir.glob("operations_*.log"))
        for path in candidates:
            if path.exists() and path.stat().st_size > limit:
                _rotate_file(path, max_files)
                rotated.append(path)
                logger.info("Rotated %s", path.name)
        return rotated

    def prune_daily_logs(self, retention_days: int | None = None) -> list[Path]:
        days = self.retention_days if retention_days is None else retention_days
        cutoff = datetime.now() - timedelta(days=days)
        removed = []
        for path in self.paths.logs_dir.glob("operations_*.log*"):
            stamp = path.name.removeprefix("operations_")[:8]
            try:
                day = datetime.strptime(stamp, "%Y%m%d")
            except ValueError:
                continue
            if day < cutoff:
                path.unlink()
                removed.append(path)
        return removed

    # -- troubleshooting ----------------------------------------------------

    def generate_report(self, config: Config, inspector: RepositoryInspector) -> Path:
        """Write a troubleshooting report and return its path."""
        now = datetime.now()
        path = self.paths.logs_dir / f"troubleshooting_report_{now:%Y%m%d_%H%M%S}.txt"
        sections: list[tuple[str, list[str]]] = []

        git_version = inspector.executor.run("--version")
        sections.append(
            (
                "SYSTEM INFORMATION",
                [
                    f"Date: {now.isoformat(timespec='seconds')}",
                    f"User: {_current_user()}",
                    f"Platform: {platform.platform()}",
                    f"Python: {sys.version.split()[0]}",
                    f"branch-manager: {__version__}",
                    f"Git: {git_version.output if git_version.ok else 'not available'}",
                    f"Working Directory: {os.getcwd()}",
                ],
            )
        )

        git_info = [f"Repository: {inspector.toplevel()}"]
        if inspector.is_repository():
            git_info.append(f"Current Branch: {inspector.current_branch() or '(detached)'}")
            git_info.append(f"Head Commit: {inspector.head_commit() or 'unknown'}")
            git_info.append(f"Working Tree: {inspector.working_tree_report().summary()}")
            for remote in inspector.remote_infos():
                git_info.append(f"Remote {remote.name}: {remote.url}")
        else:
            git_info.append("Not inside a git repository")
        sections.append(("GIT INFORMATION", git_info))

        sections.append(("CONFIGURATION", [f"{k}={v}" for k, v in config.items()]))
        sections.append(("RECENT OPERATIONS", [e.to_line() for e in self.recent(20)]))
        sections.append(
            (
                "OPERATION STATISTICS",
                [f"{s.to_line()} ({s.success_rate:.1f}% success)" for s in self.stats()],
            )
        )

        recent_log: list[str] = []
        if self.paths.diagnostic_log.exists():
            recent_log = self.paths.diagnostic_log.read_text(encoding="utf-8").splitlines()[-50:]
        sections.append(("RECENT LOG ENTRIES", recent_log))

        health = []
        integrity = inspector.repository_integrity()
        health.append(f"Integrity: {'OK' if integrity.ok else 'ISSUES FOUND'}")
        health.extend(f"  {issue}" for issue in integrity.issues)
        usage = shutil.disk_usage(inspector.repo_path)
        mb = 1024 * 1024
        health.append(f"Disk free: {usage.free // mb} MB of {usage.total // mb} MB")
        sections.append(("REPOSITORY HEALTH CHECK", health))

        self.paths.logs_dir.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write("Branch Manager Troubleshooting Report\n")
            for title, lines in sections:
                f.write(f"\n=== {title} ===\n")
                f.write("\n".join(lines) if lines else "(none)")
                f.write("\n")
        logger.info("Troubleshooting report written to %s", path)
        return path


def _rotate_file(path: Path, max_files: int) -> None:
    oldest = path.with_name(f"{path.name}.{max_files}")
    if oldest.exists():
        oldest.unlink()
    for generation in range(max_files - 1, 0, -1):
        older = path.with_name(f"{path.name}.{generation}")
        if older.exists():
            older.replace(path.with_name(f"{path.name}.{generation + 1}"))
    if max_files > 0:
        path.replace(path.with_name(f"{path.name}.1"))
    else:
        path.unlink()
    path.touch()
