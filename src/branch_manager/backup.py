"""Backup and rollback: snapshots taken before every destructive operation."""

from __future__ import annotations

import json
import logging
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

from .errors import BranchManagerError, ErrorCategory, LockHeldError, OperationCancelled
from .executor import CommandExecutor
from .inspector import RepositoryInspector
from .locking import lock_path_for, operation_lock
from .prompts import Prompter
from .workflow import slugify

logger = logging.getLogger(__name__)

STASH_MESSAGE_PREFIX = "branch-manager snapshot"

# =============================================================================
# Domain Models
# =============================================================================


@dataclass
class Snapshot:
    """Metadata of one rollback point."""

    id: str
    operation: str
    branch: str
    head_commit: str
    repository: str
    repository_root: str
    working_directory: str
    created_at: datetime
    stash_commit: str = ""
    untracked: list[str] = field(default_factory=list)
    path: Path | None = None

    @property
    def stash_message(self) -> str:
        return f"{STASH_MESSAGE_PREFIX} {self.id}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operation": self.operation,
            "branch": self.branch,
            "head_commit": self.head_commit,
            "repository": self.repository,
            "repository_root": self.repository_root,
            "working_directory": self.working_directory,
            "created_at": self.created_at.isoformat(),
            "stash_commit": self.stash_commit,
            "untracked": self.untracked,
        }

    @classmethod
    def from_dict(cls, data: dict, path: Path | None = None) -> Snapshot:
        return cls(
            id=data["id"],
            operation=data["operation"],
            branch=data.get("branch", ""),
            head_commit=data.get("head_commit", ""),
            repository=data.get("repository", "local"),
            repository_root=data.get("repository_root", ""),
            working_directory=data.get("working_directory", ""),
            created_at=datetime.fromisoformat(data["created_at"]),
            stash_commit=data.get("stash_commit", ""),
            untracked=list(data.get("untracked", [])),
            path=path,
        )


@dataclass
class RestoreResult:
    """What a restore actually changed."""

    snapshot: Snapshot
    branch_restored: bool = False
    stash_restored: bool = False
    messages: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "snapshot": self.snapshot.id,
            "branch_restored": self.branch_restored,
            "stash_restored": self.stash_restored,
            "messages": self.messages,
        }


# =============================================================================
# Backup Manager
# =============================================================================


class BackupManager:
    """Creates, lists, restores and prunes snapshots under one backups root."""

    def __init__(
        self,
        executor: CommandExecutor,
        inspector: RepositoryInspector,
        backups_dir: Path,
        locks_dir: Path | None = None,
    ):
        self.executor = executor
        self.inspector = inspector
        self.backups_dir = backups_dir
        self.locks_dir = locks_dir
        self._in_use: set[str] = set()

    def _allocate_dir(self, operation: str, branch: str) -> tuple[str, Path]:
        self.backups_dir.mkdir(parents=True, exist_ok=True)
        base = f"{operation}_{slugify(branch) or 'detached'}_{datetime.now():%Y%m%d_%H%M%S_%f}"
        snapshot_id, counter = base, 1
        while True:
            path = self.backups_dir / snapshot_id
            try:
                path.mkdir()
                return snapshot_id, path
            except FileExistsError:
                counter += 1
                snapshot_id = f"{base}-{counter}"

    def _capture(self, path: Path, name: str, *args: str) -> None:
        result = self.executor.run(*args)
        text = result.stdout if result.ok else f"unavailable: {result.stderr.strip()}\n"
        (path / name).write_text(text, encoding="utf-8")

    def _stash_tracked_changes(self, snapshot: Snapshot) -> str:
        """Record dirty tracked state as a named stash entry without touching the tree."""
        created = self.executor.run("stash", "create", snapshot.stash_message)
        commit = created.output
        if not created.ok or not commit:
            if not created.ok:
                logger.warning("Could not capture working tree changes: %s", created.stderr.strip())
            return ""
        stored = self.executor.run("stash", "store", "-m", snapshot.stash_message, commit)
        if not stored.ok:
            logger.warning("Could not store snapshot stash: %s", stored.stderr.strip())
            return ""
        return commit

    def create_snapshot(self, operation: str) -> Snapshot:
        """Capture branch, head commit, remotes, branches and dirty state."""
        branch = self.inspector.current_branch()
        snapshot_id, path = self._allocate_dir(operation, branch)
        snapshot = Snapshot(
            id=snapshot_id,
            operation=operation,
            branch=branch,
            head_commit=self.inspector.head_commit(),
            repository=self.inspector.remote_url("origin") or "local",
            repository_root=str(self.inspector.toplevel()),
            working_directory=str(self.executor.repo_path.resolve()),
            created_at=datetime.now().astimezone(),
            path=path,
        )

        report = self.inspector.working_tree_report()
        if report.staged or report.modified:
            snapshot.stash_commit = self._stash_tracked_changes(snapshot)
        snapshot.untracked = report.untracked

        (path / "metadata.json").write_text(
            json.dumps(snapshot.to_dict(), indent=2), encoding="utf-8"
        )
        self._capture(path, "branches.txt", "branch", "-a", "-vv")
        self._capture(path, "remotes.txt", "remote", "-v")
        self._capture(path, "status.txt", "status", "--short", "--branch")
        self._capture(path, "recent_commits.txt", "log", "--oneline", "-10")

        logger.info("Snapshot %s created", snapshot_id)
        return snapshot

    @contextmanager
    def hold(self, snapshot: Snapshot) -> Iterator[Snapshot]:
        """Protect ``snapshot`` from pruning while an operation uses it."""
        self._in_use.add(snapshot.id)
        try:
            yield snapshot
        finally:
            self._in_use.discard(snapshot.id)

    def _load(self, path: Path) -> Snapshot | None:
        try:
            data = json.loads((path / "metadata.json").read_text(encoding="utf-8"))
            return Snapshot.from_dict(data, path)
        except (OSError, ValueError, KeyError) as e:
            logger.warning("Skipping unreadable snapshot %s: %s", path.name, e)
            return None

    def list_snapshots(self, all_repositories: bool = False) -> list[Snapshot]:
        """Snapshots newest first; by default only those of this repository."""
        if not self.backups_dir.exists():
            return []
        root = str(self.inspector.toplevel())
        snapshots = []
        for path in self.backups_dir.iterdir():
            if not path.is_dir():
                continue
            snapshot = self._load(path)
            if snapshot is None:
                continue
            if all_repositories or snapshot.repository_root == root:
                snapshots.append(snapshot)
        return sorted(snapshots, key=lambda s: s.created_at, reverse=True)

    def get(self, snapshot_id: str) -> Snapshot:
        path = self.backups_dir / snapshot_id
        snapshot = self._load(path) if path.is_dir() else None
        if snapshot is None:
            raise BranchManagerError(f"Snapshot not found: {snapshot_id}", ErrorCategory.USER_INPUT)
        return snapshot

    def stash_present(self, snapshot: Snapshot) -> bool:
        return bool(snapshot.stash_commit) and bool(
            self.inspector.stash_selector(snapshot.stash_commit)
        )

    def restore(self, snapshot_id: str, prompter: Prompter) -> RestoreResult:
        """Return to the snapshot's branch and optionally re-apply its stash."""
        snapshot = self.get(snapshot_id)
        if snapshot.repository_root and snapshot.repository_root != str(self.inspector.toplevel()):
            raise BranchManagerError(
                f"Snapshot {snapshot_id} belongs to {snapshot.repository_root}",
                ErrorCategory.USER_INPUT,
            )
        if not prompter.confirm(f"Restore snapshot {snapshot_id}?", default=True):
            raise OperationCancelled()

        result = RestoreResult(snapshot)
        current = self.inspector.current_branch()
        if not snapshot.branch:
            result.messages.append("Snapshot was taken on a detached HEAD; branch left unchanged")
        elif not self.inspector.branch_exists(snapshot.branch):
            result.messages.append(f"Branch '{snapshot.branch}' no longer exists")
        elif snapshot.branch == current:
            result.branch_restored = True
        else:
            self._protect_current_work(snapshot, prompter, result)
            self.executor.check(
                "checkout", snapshot.branch, message=f"Could not check out '{snapshot.branch}'"
            )
            result.branch_restored = True
            result.messages.append(f"Checked out '{snapshot.branch}'")

        if snapshot.stash_commit:
            selector = self.inspector.stash_selector(snapshot.stash_commit)
            if not selector:
                result.messages.append("Recorded stash is no longer present")
            elif prompter.confirm(f"Re-apply stashed changes from {selector}?", default=True):
                popped = self.executor.run("stash", "pop", selector)
                if popped.ok:
                    result.stash_restored = True
                    result.messages.append(f"Re-applied {selector}")
                else:
                    result.messages.append(
                        f"Could not re-apply {selector}; it is kept in the stash list"
                    )
                    logger.warning("stash pop failed: %s", popped.stderr.strip())

        logger.info("Snapshot %s restored", snapshot_id)
        return result

    def _protect_current_work(
        self, snapshot: Snapshot, prompter: Prompter, result: RestoreResult
    ) -> None:
        if self.inspector.is_clean_working_tree():
            return
        if not prompter.confirm(
            "The working tree has uncommitted changes. Stash them before restoring?",
            default=False,
        ):
            raise OperationCancelled("Restore cancelled; uncommitted changes were left untouched")
        self.executor.check(
            "stash", "push", "--include-untracked", "-m",
            f"branch-manager: auto-stash before restoring {snapshot.id}",
        )
        result.messages.append("Stashed current changes")

    def prune(self, retention_days: int) -> list[str]:
        """Delete snapshots older than the retention window.

        Stash entries live in the snapshot's own repository, so snapshots of
        other repositories are only removed when they recorded no stash, and
        never while that repository's lock is held.
        """
        cutoff = datetime.now().astimezone() - timedelta(days=retention_days)
        root = str(self.inspector.toplevel())
        removed = []
        for snapshot in self.list_snapshots(all_repositories=True):
            if snapshot.id in self._in_use or snapshot.created_at >= cutoff:
                continue
            if snapshot.repository_root == root:
                self._drop(snapshot)
            elif snapshot.stash_commit:
                logger.info(
                    "Keeping %s: its stash lives in %s", snapshot.id, snapshot.repository_root
                )
                continue
            elif not self._drop_foreign(snapshot):
                continue
            removed.append(snapshot.id)
            logger.info("Pruned snapshot %s", snapshot.id)
        return removed

    def _drop(self, snapshot: Snapshot) -> None:
        if snapshot.stash_commit:
            selector = self.inspector.stash_selector(snapshot.stash_commit)
            if selector:
                self.executor.run("stash", "drop", selector)
        if snapshot.path is not None:
            shutil.rmtree(snapshot.path)

    def _drop_foreign(self, snapshot: Snapshot) -> bool:
        """Remove another repository's snapshot unless that repository is busy."""
        if self.locks_dir is None or not snapshot.repository_root:
            self._drop(snapshot)
            return True
        lock_file = lock_path_for(self.locks_dir, Path(snapshot.repository_root))
        try:
            with operation_lock(lock_file, "backup prune"):
                self._drop(snapshot)
        except LockHeldError:
            logger.info("Keeping %s: %s is in use", snapshot.id, snapshot.repository_root)
            return False
        return True
