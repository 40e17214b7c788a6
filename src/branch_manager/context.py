"""Shared engine context: collaborators, audited operations and decision helpers."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TypeVar

from .audit import AuditLog, OperationStatus
from .backup import BackupManager, RestoreResult, Snapshot
from .config import Config
from .errors import BranchManagerError, ErrorCategory, OperationCancelled
from .executor import CommandExecutor, CommandResult
from .inspector import RepositoryInspector
from .prompts import Choice, Prompter
from .workflow import WorkflowPatterns

logger = logging.getLogger(__name__)

T = TypeVar("T")

DIRTY_TREE_CHOICES = (
    Choice("stash", "Stash changes (restorable later)"),
    Choice("commit", "Commit changes now"),
    Choice("discard", "Discard all changes (destructive)"),
    Choice("cancel", "Cancel"),
)
SHOW_DIFF_CHOICE = Choice("diff", "Show what changed")

RECOVERY_CHOICES = (
    Choice("retry", "Retry the operation"),
    Choice("details", "Show error details"),
    Choice("snapshot", "Create a recovery snapshot and stop"),
    Choice("abort", "Abort"),
)


@dataclass
class AuditRecord:
    """Outcome of an audited operation, filled in by the engine."""

    operation: str
    branch: str
    details: str = ""
    status: OperationStatus | None = OperationStatus.SUCCESS

    def skip(self, details: str = "") -> None:
        """Nothing was mutated; do not write a log entry."""
        self.status = None
        self.details = details

    def fail(self, details: str) -> None:
        self.status = OperationStatus.FAILED
        self.details = details


@dataclass
class EngineContext:
    """Everything an engine needs, built once from one :class:`Config`."""

    config: Config
    executor: CommandExecutor
    inspector: RepositoryInspector
    backups: BackupManager
    audit: AuditLog
    patterns: WorkflowPatterns
    prompter: Prompter

    def git(
        self, *args: str, message: str | None = None, timeout: float | None = None
    ) -> CommandResult:
        return self.executor.check(*args, message=message, timeout=timeout)

    @contextmanager
    def audited(self, operation: str, branch: str) -> Iterator[AuditRecord]:
        """Write exactly one audit entry for the enclosed operation."""
        record = AuditRecord(operation, branch)
        try:
            yield record
        except BranchManagerError as e:
            self.audit.log_operation(
                operation, record.branch, OperationStatus.FAILED, f"{e.category}: {e.message}"
            )
            raise
        except Exception as e:
            self.audit.log_operation(operation, record.branch, OperationStatus.FAILED, repr(e))
            raise
        if record.status is not None:
            self.audit.log_operation(operation, record.branch, record.status, record.details)

    def snapshot(self, operation: str) -> Snapshot:
        return self.backups.create_snapshot(operation)

    def ensure_integrity(self) -> None:
        """Block mutating operations on a corrupted repository."""
        report = self.inspector.repository_integrity()
        if not report.ok:
            raise BranchManagerError(
                "Repository integrity check failed",
                ErrorCategory.REPOSITORY,
                command="git fsck --connectivity-only",
                stderr="\n".join(report.issues),
            )

    def offer_restore(self, snapshot: Snapshot, error: BranchManagerError) -> None:
        """After a failed mutation, offer to roll back to ``snapshot``."""
        if not self.prompter.interactive:
            self.prompter.show(f"Snapshot {snapshot.id} can be restored with 'backup restore'")
            return
        if self.prompter.confirm(
            f"{error.message}. Restore snapshot {snapshot.id}?", default=False
        ):
            try:
                self.restore_snapshot(snapshot.id)
            except BranchManagerError as restore_error:
                logger.error("Restore of %s failed: %s", snapshot.id, restore_error.message)

    # -- snapshots ----------------------------------------------------------

    def restore_snapshot(self, snapshot_id: str) -> RestoreResult:
        """Restore ``snapshot_id`` and record it in the audit log."""
        snapshot = self.backups.get(snapshot_id)
        branch = snapshot.branch or self.inspector.current_branch()
        with self.audited("RESTORE_BACKUP", branch) as record:
            result = self.backups.restore(snapshot_id, self.prompter)
            record.details = "; ".join([snapshot_id, *result.messages])
        return result

    def prune_snapshots(self, retention_days: int) -> list[str]:
        with self.audited("PRUNE_BACKUPS", self.inspector.current_branch()) as record:
            removed = self.backups.prune(retention_days)
            if removed:
                record.details = (
                    f"Removed {len(removed)} snapshot(s) older than {retention_days} day(s)"
                )
            else:
                record.skip()
        return removed

    # -- dirty working tree -------------------------------------------------

    def resolve_dirty_tree(self, operation: str, allow_diff: bool = False) -> str:
        """Bring the tree to a clean state, returning the stash commit if one was made."""
        report = self.inspector.working_tree_report()
        if report.is_clean:
            return ""
        if report.conflicted:
            raise BranchManagerError(
                f"Unresolved conflicts in {len(report.conflicted)} file(s)",
                ErrorCategory.CONFLICT,
            )
        if not self.prompter.interactive:
            raise BranchManagerError(
                f"Working tree has uncommitted changes ({report.summary()})",
                ErrorCategory.REPOSITORY,
                command="git status",
            )

        choices = DIRTY_TREE_CHOICES[:3] + ((SHOW_DIFF_CHOICE,) if allow_diff else ()) + (
            DIRTY_TREE_CHOICES[3],
        )
        while True:
            answer = self.prompter.choose(
                f"Working tree has uncommitted changes ({report.summary()})",
                choices,
                default="cancel",
            )
            match answer:
                case "stash":
                    return self.stash_changes(f"before {operation}")
                case "commit":
                    message = self.prompter.ask(
                        "Commit message", default=f"WIP: save work before {operation}"
                    )
                    self.git("add", "-A")
                    self.git("commit", "-m", message, message="Could not commit changes")
                    return ""
                case "discard":
                    confirmation = self.prompter.ask(
                        "Type 'yes' to permanently discard all uncommitted changes"
                    )
                    if confirmation.strip().lower() != "yes":
                        continue
                    self.discard_changes()
                    return ""
                case "diff":
                    self.prompter.show(self.executor.run("status", "--short").stdout)
                    self.prompter.show(self.executor.run("diff", "--stat").stdout)
                case _:
                    raise OperationCancelled()

    def stash_changes(self, reason: str) -> str:
        self.git(
            "stash", "push", "--include-untracked", "-m", f"branch-manager: auto-stash {reason}",
            message="Could not stash changes",
        )
        return self.inspector.head_commit("stash@{0}")

    def discard_changes(self) -> None:
        with self.audited("DISCARD_CHANGES", self.inspector.current_branch()):
            snapshot = self.snapshot("DISCARD_CHANGES")
            with self.backups.hold(snapshot):
                self.git("reset", "--hard", "HEAD")
                self.git("clean", "-fd")

    def pop_stash(self, commit: str) -> bool:
        """Re-apply the stash entry holding ``commit``; False leaves it stashed."""
        selector = self.inspector.stash_selector(commit)
        if not selector:
            return False
        result = self.executor.run("stash", "pop", selector)
        if not result.ok:
            logger.warning("Could not re-apply %s: %s", selector, result.stderr.strip())
        return result.ok

    # -- recovery -----------------------------------------------------------

    def with_recovery(self, operation: str, action: Callable[[], T]) -> T:
        """Run ``action``; on a classified failure offer retry/details/snapshot/abort."""
        while True:
            try:
                return action()
            except OperationCancelled:
                raise
            except BranchManagerError as e:
                if not self.prompter.interactive or e.category in (
                    ErrorCategory.USER_INPUT,
                    ErrorCategory.CONFLICT,
                ):
                    raise
                if not self._choose_recovery(operation, e):
                    raise

    def _choose_recovery(self, operation: str, error: BranchManagerError) -> bool:
        """True to retry, False to propagate ``error``."""
        while True:
            answer = self.prompter.choose(
                f"{operation} failed [{error.category}]: {error.message}",
                RECOVERY_CHOICES,
                default="abort",
            )
            match answer:
                case "retry":
                    return True
                case "details":
                    self.prompter.show(f"Command: {error.command or '-'}")
                    self.prompter.show(f"Output: {error.stderr or '-'}")
                    for hint in error.remediation:
                        self.prompter.show(f"  - {hint}")
                case "snapshot":
                    snapshot = self.snapshot("ERROR_RECOVERY")
                    self.prompter.show(f"Recovery snapshot {snapshot.id} created")
                    return False
                case _:
                    return False


@dataclass
class OperationResult:
    """Result of one engine operation."""

    operation: str
    branch: str
    success: bool = True
    message: str = ""
    snapshot_id: str = ""
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "branch": self.branch,
            "success": self.success,
            "message": self.message,
            "snapshot_id": self.snapshot_id,
            **self.extra,
        }
