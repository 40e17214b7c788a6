"""Facade wiring every engine from one Config, plus compound workflows."""

from __future__ import annotations

import logging
import shlex
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .audit import AuditLog
from .backup import BackupManager
from .branches import BranchEngine
from .config import Config, ConfigStore, StatePaths, resolve_state_dir
from .context import EngineContext, OperationResult
from .errors import BranchManagerError, ErrorCategory
from .executor import CommandExecutor
from .inspector import BranchSyncInfo, RemoteInfo, RepositoryInspector, WorkingTreeReport
from .locking import lock_path_for, operation_lock
from .merge import MergeEngine, MergeStatus
from .prompts import AutoPrompter, Prompter
from .sync import SyncEngine
from .workflow import PROTECTED_BRANCHES, WorkflowPatterns

logger = logging.getLogger(__name__)

# =============================================================================
# Domain Models
# =============================================================================


@dataclass
class RepositoryStatus:
    """Snapshot of the repository for the ``status`` command."""

    path: Path
    current_branch: str
    head_commit: str
    workflow: str
    working_tree: WorkingTreeReport
    sync: BranchSyncInfo | None = None
    merge_in_progress: bool = False
    rebase_in_progress: bool = False
    branches: list[BranchSyncInfo] = field(default_factory=list)
    remotes: list[RemoteInfo] = field(default_factory=list)
    last_fetch: datetime | None = None
    last_commit_date: datetime | None = None
    fetch_errors: list[str] = field(default_factory=list)

    @property
    def detached(self) -> bool:
        return not self.current_branch

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "current_branch": self.current_branch or None,
            "detached": self.detached,
            "head_commit": self.head_commit or None,
            "workflow": self.workflow,
            "working_tree": self.working_tree.to_dict(),
            "sync": self.sync.to_dict() if self.sync else None,
            "merge_in_progress": self.merge_in_progress,
            "rebase_in_progress": self.rebase_in_progress,
            "branches": [b.to_dict() for b in self.branches],
            "remotes": [r.to_dict() for r in self.remotes],
            "last_fetch": self.last_fetch.isoformat() if self.last_fetch else None,
            "last_commit_date": (
                self.last_commit_date.isoformat() if self.last_commit_date else None
            ),
            "fetch_errors": self.fetch_errors,
        }


@dataclass
class WorkflowReport:
    """Steps taken by a compound workflow."""

    name: str
    steps: list[str] = field(default_factory=list)
    success: bool = True

    def add(self, step: str) -> None:
        logger.info("%s: %s", self.name, step)
        self.steps.append(step)

    def to_dict(self) -> dict:
        return {"name": self.name, "steps": self.steps, "success": self.success}


# =============================================================================
# Branch Manager
# =============================================================================


class BranchManager:
    """Owns the engines for one repository and one configuration."""

    def __init__(
        self,
        config: Config,
        paths: StatePaths,
        repo_path: Path = Path("."),
        prompter: Prompter | None = None,
    ):
        self.config = config
        self.paths = paths
        executor = CommandExecutor(repo_path)
        inspector = RepositoryInspector(executor, config.network_timeout)
        self.ctx = EngineContext(
            config=config,
            executor=executor,
            inspector=inspector,
            backups=BackupManager(executor, inspector, paths.backups_dir, paths.locks_dir),
            audit=AuditLog(paths, config.backup_retention_days),
            patterns=WorkflowPatterns.build(config.custom_prefixes),
            prompter=prompter or AutoPrompter(),
        )
        self.sync = SyncEngine(self.ctx)
        self.branches = BranchEngine(self.ctx, self.sync)
        self.merges = MergeEngine(self.ctx, self.sync)

    @classmethod
    def from_environment(
        cls,
        repo_path: Path = Path("."),
        prompter: Prompter | None = None,
        **overrides,
    ) -> BranchManager:
        """Load configuration from the state directory and apply overrides."""
        paths = StatePaths(resolve_state_dir()).ensure()
        config = ConfigStore(paths.config_file).load().with_overrides(**overrides)
        return cls(config, paths, repo_path, prompter)

    @property
    def inspector(self) -> RepositoryInspector:
        return self.ctx.inspector

    @property
    def backups(self) -> BackupManager:
        return self.ctx.backups

    @property
    def audit(self) -> AuditLog:
        return self.ctx.audit

    @property
    def patterns(self) -> WorkflowPatterns:
        return self.ctx.patterns

    @property
    def prompter(self) -> Prompter:
        return self.ctx.prompter

    def require_repository(self) -> None:
        if not self.inspector.is_repository():
            raise BranchManagerError(
                f"Not a git repository: {self.ctx.executor.repo_path.resolve()}",
                ErrorCategory.REPOSITORY,
                command="git rev-parse --is-inside-work-tree",
            )

    @contextmanager
    def exclusive(self, operation: str) -> Iterator[None]:
        """Serialize mutating commands on this repository."""
        self.require_repository()
        lock_file = lock_path_for(self.paths.locks_dir, self.inspector.toplevel())
        with operation_lock(lock_file, operation):
            yield

    # -- status -------------------------------------------------------------

    def status(
        self,
        all_branches: bool = False,
        remote: bool = False,
        verbose: bool = False,
        fetch_first: bool | None = None,
    ) -> RepositoryStatus:
        self.require_repository()
        if fetch_first is None:
            fetch_first = self.config.auto_fetch
        fetch_errors = []
        if fetch_first and self.inspector.remotes():
            report = self.sync.fetch()
            fetch_errors = [f"{r.remote}: {r.error}" for r in report.failed]

        current = self.inspector.current_branch()
        status = RepositoryStatus(
            path=self.inspector.toplevel(),
            current_branch=current,
            head_commit=self.inspector.head_commit(),
            workflow=self.config.default_workflow.value,
            working_tree=self.inspector.working_tree_report(),
            sync=self.inspector.sync_status(current) if current else None,
            merge_in_progress=self.inspector.merge_in_progress(),
            rebase_in_progress=self.inspector.rebase_in_progress(),
            fetch_errors=fetch_errors,
        )
        if all_branches:
            status.branches = [self.inspector.sync_status(b) for b in self.inspector.local_branches()]
        if remote:
            status.remotes = self.inspector.remote_infos(check_reachability=True)
        if verbose:
            status.last_fetch = self.inspector.last_fetch_time()
            status.last_commit_date = self.inspector.last_commit_date()
        return status

    # -- workflow helpers ---------------------------------------------------

    def suggest_branch(self, branch_type: str, description: str) -> str:
        return self.patterns.suggest_name(self.config.default_workflow, branch_type, description)

    def create_workflow_branch(
        self, branch_type: str, description: str, base: str | None = None, fetch: bool = True
    ) -> OperationResult:
        """Create a branch whose name is derived from a type and free text."""
        suggested = self.suggest_branch(branch_type, description)
        name = self.prompter.ask("Branch name", default=suggested) or suggested
        return self.branches.create(name, base, fetch=fetch)

    def complete_feature(self, target: str | None = None) -> WorkflowReport:
        """Sync the current feature branch, merge it into ``target``, clean up and push."""
        target = target or self.config.default_base_branch
        feature = self.inspector.current_branch()
        if not feature or feature == target or feature in PROTECTED_BRANCHES:
            raise BranchManagerError(
                f"Check out the feature branch to complete (currently '{feature or 'detached'}')",
                ErrorCategory.USER_INPUT,
            )

        report = WorkflowReport("complete-feature")
        if self.inspector.upstream_of(feature) is not None:
            outcome = self.sync.sync(feature)
            if not outcome.success:
                report.success = False
                report.add(f"sync of '{feature}' stopped on conflicts")
                return report
            report.add(f"synced '{feature}' ({outcome.action})")

        self.branches.switch(target)
        report.add(f"switched to '{target}'")
        if self.inspector.upstream_of(target) is not None:
            outcome = self.sync.sync(target)
            if not outcome.success:
                report.success = False
                report.add(f"sync of '{target}' stopped on conflicts")
                return report
            report.add(f"synced '{target}' ({outcome.action})")

        merged = self.merges.merge(feature, target, skip_sync=True)
        if merged.status == MergeStatus.CONFLICTED:
            report.success = False
            report.add(f"merge stopped on conflicts in {len(merged.conflicts)} file(s)")
            return report
        report.add(f"merged '{feature}' into '{target}' ({merged.status})")

        safe, reason = self.branches.is_safe_to_delete(feature, target)
        if safe:
            self.branches.delete(feature, target)
            report.add(f"deleted '{feature}'")
        else:
            report.add(f"kept '{feature}': {reason}")

        if "origin" in self.inspector.remotes():
            result = self.sync.push()
            report.add(result.message)
        return report

    def merge_and_push(self, source: str, target: str | None = None) -> WorkflowReport:
        """Merge, clean up merged branches when configured, then push."""
        target = target or self.config.default_base_branch
        report = WorkflowReport("merge-and-push")
        merged = self.merges.merge(source, target)
        if merged.status == MergeStatus.CONFLICTED:
            report.success = False
            report.add(f"merge stopped on conflicts in {len(merged.conflicts)} file(s)")
            return report
        report.add(f"merged '{source}' into '{target}' ({merged.status})")

        if self.config.auto_cleanup_merged:
            cleanup = self.branches.cleanup(target, auto=True)
            report.add(f"cleaned up {len(cleanup.deleted)} merged branch(es)")

        if "origin" in self.inspector.remotes() and self.prompter.confirm(
            f"Push '{target}' to origin?", default=True
        ):
            if self.inspector.current_branch() != target:
                self.branches.switch(target)
            result = self.sync.push()
            report.add(result.message)
        return report

    def setup_shared_config(self) -> Path | None:
        """Write push_config.sh for companion scripts; None if it already exists."""
        path = self.inspector.toplevel() / "push_config.sh"
        if path.exists():
            return None
        values = {
            "DEFAULT_BRANCH": self.config.default_base_branch,
            "AUTO_FETCH": str(self.config.auto_fetch).lower(),
            "REQUIRE_CONFIRMATION": str(self.config.require_confirmation).lower(),
            "LOG_LEVEL": self.config.log_level,
            "LOG_DIR": str(self.paths.logs_dir),
            "BACKUP_DIR": str(self.paths.backups_dir),
            "BACKUP_RETENTION_DAYS": str(self.config.backup_retention_days),
            "DEFAULT_WORKFLOW": self.config.default_workflow.value,
        }
        lines = ["#!/bin/sh", "# Shared configuration written by branch-manager", ""]
        lines += [f"{key}={shlex.quote(value)}" for key, value in values.items()]
        lines += ["", "export " + " ".join(values)]
        path.write_text("\n".join(lines) + "\n")
        path.chmod(0o755)
        logger.info("Shared configuration written to %s", path)
        return path
