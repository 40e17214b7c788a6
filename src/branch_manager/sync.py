"""Remote sync engine: fetch, upstream tracking, pull/rebase and push."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from .context import EngineContext, OperationResult
from .errors import BranchManagerError, ErrorCategory, OperationCancelled
from .executor import PUSH_TIMEOUT
from .inspector import BranchSyncInfo, SyncStatus, UpstreamRef

logger = logging.getLogger(__name__)

# =============================================================================
# Domain Models
# =============================================================================


class SyncStrategy(StrEnum):
    AUTO = "auto"
    PULL = "pull"
    REBASE = "rebase"


class SyncAction(StrEnum):
    """What a sync actually did."""

    NONE = "none"
    FAST_FORWARD = "fast-forward"
    MERGED = "merged"
    REBASED = "rebased"
    CONFLICTED = "conflicted"


@dataclass
class FetchResult:
    remote: str
    success: bool
    error: str = ""
    category: ErrorCategory | None = None

    def to_dict(self) -> dict:
        return {
            "remote": self.remote,
            "success": self.success,
            "error": self.error,
            "category": self.category.value if self.category else None,
        }


@dataclass
class FetchReport:
    """Per-remote fetch results; one failing remote does not stop the others."""

    results: list[FetchResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def failed(self) -> list[FetchResult]:
        return [r for r in self.results if not r.success]


@dataclass
class SyncOutcome:
    """Result of reconciling a branch with its upstream."""

    branch: str
    before: BranchSyncInfo
    action: SyncAction = SyncAction.NONE
    conflicts: list[str] = field(default_factory=list)
    snapshot_id: str = ""
    stash_restored: bool | None = None
    fetch: FetchReport | None = None

    @property
    def success(self) -> bool:
        return self.action != SyncAction.CONFLICTED

    def to_dict(self) -> dict:
        return {
            "branch": self.branch,
            "before": self.before.to_dict(),
            "action": self.action.value,
            "success": self.success,
            "conflicts": self.conflicts,
            "snapshot_id": self.snapshot_id,
        }


# =============================================================================
# Sync Engine
# =============================================================================


class SyncEngine:
    """Fetch, upstream configuration and reconciliation with remotes."""

    def __init__(self, ctx: EngineContext):
        self.ctx = ctx
        self.inspector = ctx.inspector

    @property
    def timeout(self) -> float:
        return self.ctx.config.network_timeout

    def _require_branch(self, branch: str | None) -> str:
        branch = branch or self.inspector.current_branch()
        if not branch:
            raise BranchManagerError(
                "HEAD is detached; name a branch explicitly", ErrorCategory.REPOSITORY
            )
        if not self.inspector.branch_exists(branch):
            raise BranchManagerError(f"Branch '{branch}' does not exist", ErrorCategory.REPOSITORY)
        return branch

    # -- fetch --------------------------------------------------------------

    def fetch(self, remote: str | None = None) -> FetchReport:
        """Fetch one remote, or every configured remote."""
        report = FetchReport()
        remotes = [remote] if remote else self.inspector.remotes()
        if not remotes:
            logger.info("No remotes configured; nothing to fetch")
        for name in remotes:
            result = self.ctx.executor.run("fetch", "--prune", name, timeout=self.timeout)
            if result.ok:
                report.results.append(FetchResult(name, True))
            else:
                error = result.stderr.strip() or "fetch failed"
                logger.warning("Fetch from %s failed: %s", name, error)
                report.results.append(FetchResult(name, False, error, result.category))
        return report

    # -- reconciliation -----------------------------------------------------

    def fast_forward_branch(self, branch: str) -> bool:
        """Bring ``branch`` up to its upstream when that is a pure fast-forward.

        Used to refresh a base or target branch before branching or merging.
        Returns False (with a warning) whenever it cannot do so safely.
        """
        upstream = self.inspector.upstream_of(branch)
        if upstream is None:
            return False
        if self.ctx.config.auto_fetch:
            self.fetch(upstream.remote)
        info = self.inspector.sync_status(branch)
        if info.status in (SyncStatus.UP_TO_DATE, SyncStatus.AHEAD):
            return True
        if info.status != SyncStatus.BEHIND:
            logger.warning("'%s' is %s relative to %s; not updating", branch, info.status, upstream)
            return False
        if branch == self.inspector.current_branch() and not self.inspector.is_clean_working_tree():
            logger.warning("'%s' has local changes; not updating from %s", branch, upstream)
            return False

        with self.ctx.audited("SYNC_BRANCH", branch) as record:
            snapshot = self.ctx.snapshot("SYNC_BRANCH")
            with self.ctx.backups.hold(snapshot):
                self._fast_forward(branch, upstream)
            record.details = f"fast-forward {info.behind} commit(s) from {upstream}"
        return True

    def _fast_forward(self, branch: str, upstream: UpstreamRef) -> None:
        if branch == self.inspector.current_branch():
            self.ctx.git("merge", "--ff-only", upstream.ref)
        else:
            self.ctx.git("fetch", ".", f"{upstream.ref}:refs/heads/{branch}")

    def sync(
        self, branch: str | None = None, strategy: SyncStrategy = SyncStrategy.AUTO
    ) -> SyncOutcome:
        """Reconcile ``branch`` with its upstream."""
        current = self.inspector.current_branch()
        branch = self._require_branch(branch)
        upstream = self.inspector.upstream_of(branch)
        if upstream is None:
            raise BranchManagerError(
                f"No upstream configured for '{branch}'. Use 'branch-manager upstream set'",
                ErrorCategory.REPOSITORY,
            )

        with self.ctx.audited("SYNC_BRANCH", branch) as record:
            fetch_report = self.fetch(upstream.remote)
            info = self.inspector.sync_status(branch)
            outcome = SyncOutcome(branch, info, fetch=fetch_report)

            if info.status in (SyncStatus.UP_TO_DATE, SyncStatus.AHEAD, SyncStatus.UNKNOWN):
                record.skip()
                return outcome

            if branch != current:
                if info.status != SyncStatus.BEHIND:
                    raise BranchManagerError(
                        f"'{branch}' has diverged from {upstream}; switch to it before syncing",
                        ErrorCategory.USER_INPUT,
                    )
                snapshot = self.ctx.snapshot("SYNC_BRANCH")
                with self.ctx.backups.hold(snapshot):
                    self._fast_forward(branch, upstream)
                outcome.action = SyncAction.FAST_FORWARD
                outcome.snapshot_id = snapshot.id
                record.details = f"{outcome.action} from {upstream}"
                return outcome

            stash_commit = self.ctx.resolve_dirty_tree("sync")
            snapshot = self.ctx.snapshot("SYNC_BRANCH")
            outcome.snapshot_id = snapshot.id
            with self.ctx.backups.hold(snapshot):
                if strategy == SyncStrategy.REBASE:
                    self._rebase(upstream, outcome)
                else:
                    self._pull(upstream, outcome)

            if outcome.action == SyncAction.CONFLICTED:
                record.fail(f"conflicts in {len(outcome.conflicts)} file(s); resolution required")
                return outcome

            if stash_commit:
                outcome.stash_restored = self.ctx.prompter.confirm(
                    "Re-apply the changes stashed before syncing?", default=True
                ) and self.ctx.pop_stash(stash_commit)
            record.details = f"{outcome.action} from {upstream}"
            return outcome

    def _pull(self, upstream: UpstreamRef, outcome: SyncOutcome) -> None:
        if self.ctx.executor.run("merge", "--ff-only", upstream.ref).ok:
            outcome.action = SyncAction.FAST_FORWARD
            return
        result = self.ctx.executor.run("merge", "--no-ff", "--no-edit", upstream.ref)
        if result.ok:
            outcome.action = SyncAction.MERGED
        elif self.inspector.merge_in_progress():
            outcome.action = SyncAction.CONFLICTED
            outcome.conflicts = self.inspector.unmerged_paths()
        else:
            raise result.to_error(f"Could not merge {upstream} into {outcome.branch}")

    def _rebase(self, upstream: UpstreamRef, outcome: SyncOutcome) -> None:
        result = self.ctx.executor.run("rebase", upstream.ref)
        if result.ok:
            outcome.action = SyncAction.REBASED
        elif self.inspector.rebase_in_progress():
            outcome.action = SyncAction.CONFLICTED
            outcome.conflicts = self.inspector.unmerged_paths()
        else:
            raise result.to_error(f"Could not rebase {outcome.branch} onto {upstream}")

    # -- upstream tracking --------------------------------------------------

    def set_upstream(
        self,
        branch: str | None = None,
        remote: str | None = None,
        remote_branch: str | None = None,
        create_remote: bool | None = None,
    ) -> OperationResult:
        """Track ``remote/remote_branch``, pushing to create it when missing."""
        branch = self._require_branch(branch)
        remote = remote or self.inspector.default_remote()
        if not remote or remote not in self.inspector.remotes():
            raise BranchManagerError(
                f"Remote '{remote or 'origin'}' does not exist", ErrorCategory.REPOSITORY,
                command="git remote -v",
            )
        remote_branch = remote_branch or branch
        target = UpstreamRef(remote, remote_branch)

        with self.ctx.audited("SET_UPSTREAM", branch) as record:
            exists = self.inspector.remote_has_branch(remote, remote_branch)
            if exists is None:
                raise BranchManagerError(
                    f"Remote '{remote}' is unreachable",
                    ErrorCategory.NETWORK,
                    command=f"git ls-remote --heads {remote}",
                )
            if not exists:
                if create_remote is None:
                    create_remote = self.ctx.prompter.confirm(
                        f"'{target}' does not exist. Push '{branch}' to create it?", default=False
                    )
                if not create_remote:
                    record.skip()
                    return OperationResult(
                        "SET_UPSTREAM", branch, False, f"'{target}' does not exist; not tracking"
                    )
                self.ctx.git(
                    "push", "-u", remote, f"{branch}:{remote_branch}",
                    timeout=PUSH_TIMEOUT, message=f"Could not push '{branch}' to {remote}",
                )
            else:
                self.ctx.git(
                    "fetch", remote,
                    f"refs/heads/{remote_branch}:refs/remotes/{remote}/{remote_branch}",
                    timeout=self.timeout,
                )
                self.ctx.git("branch", f"--set-upstream-to={target.ref}", branch)
            record.details = f"tracking {target}"
            return OperationResult("SET_UPSTREAM", branch, True, f"'{branch}' now tracks {target}")

    def remove_upstream(self, branch: str | None = None) -> OperationResult:
        branch = self._require_branch(branch)
        upstream = self.inspector.upstream_of(branch)
        if upstream is None:
            return OperationResult("REMOVE_UPSTREAM", branch, True, f"'{branch}' has no upstream")
        with self.ctx.audited("REMOVE_UPSTREAM", branch) as record:
            self.ctx.git("branch", "--unset-upstream", branch)
            record.details = f"was tracking {upstream}"
        return OperationResult(
            "REMOVE_UPSTREAM", branch, True, f"'{branch}' no longer tracks {upstream}"
        )

    def auto_configure_upstream(self, branch: str) -> UpstreamRef | None:
        """Offer tracking for a branch that follows the active workflow's naming."""
        if not self.ctx.patterns.validate_name(branch, self.ctx.config.default_workflow):
            return None
        existing = self.inspector.upstream_of(branch)
        if existing is not None:
            return existing
        remote = self.inspector.default_remote()
        if not remote:
            return None
        if not self.ctx.prompter.confirm(
            f"Set up upstream tracking for '{branch}' on '{remote}'?", default=False
        ):
            return None
        try:
            result = self.set_upstream(branch, remote, branch, create_remote=True)
        except BranchManagerError as e:
            logger.warning("Upstream not configured for '%s': %s", branch, e.message)
            return None
        return self.inspector.upstream_of(branch) if result.success else None

    # -- push ---------------------------------------------------------------

    def push(self, message: str | None = None, remote: str = "origin") -> OperationResult:
        """Commit pending changes and push the current branch."""
        branch = self.inspector.current_branch()
        if not branch:
            raise BranchManagerError("HEAD is detached; nothing to push", ErrorCategory.REPOSITORY)
        if remote not in self.inspector.remotes():
            raise BranchManagerError(
                f"No '{remote}' remote configured", ErrorCategory.REPOSITORY,
                command="git remote -v",
            )

        with self.ctx.audited("PUSH_TO_REMOTE", branch) as record:
            report = self.inspector.working_tree_report()
            if report.conflicted:
                raise BranchManagerError(
                    "Resolve conflicts before pushing", ErrorCategory.CONFLICT
                )
            info = self.inspector.sync_status(branch)
            if report.is_clean and info.upstream is not None and info.ahead == 0:
                record.skip()
                return OperationResult("PUSH_TO_REMOTE", branch, True, "Nothing to push")

            if not self.ctx.prompter.confirm(f"Push '{branch}' to {remote}?", default=True):
                raise OperationCancelled()

            snapshot = self.ctx.snapshot("PUSH_TO_REMOTE")
            with self.ctx.backups.hold(snapshot):
                if not report.is_clean:
                    self._commit_all(branch, message)
                try:
                    self.ctx.git(
                        "push", "-u", remote, branch,
                        timeout=PUSH_TIMEOUT, message=f"Could not push '{branch}' to {remote}",
                    )
                except BranchManagerError as e:
                    self.ctx.offer_restore(snapshot, e)
                    raise
            record.details = f"pushed to {remote}/{branch}"
            return OperationResult(
                "PUSH_TO_REMOTE", branch, True, f"Pushed '{branch}' to {remote}", snapshot.id
            )

    def _commit_all(self, branch: str, message: str | None) -> None:
        default = f"Auto-commit: Updates on {datetime.now():%Y-%m-%d %H:%M:%S}"
        message = message or self.ctx.prompter.ask("Commit message", default=default) or default
        with self.ctx.audited("COMMIT", branch) as record:
            self.ctx.git("add", "-A")
            self.ctx.git("commit", "-m", message, message="Could not commit changes")
            record.details = message
