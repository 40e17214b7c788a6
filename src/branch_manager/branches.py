"""Branch lifecycle engine: create, switch, delete and cleanup."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .context import EngineContext, OperationResult
from .errors import BranchManagerError, ErrorCategory, OperationCancelled
from .executor import PUSH_TIMEOUT
from .inspector import UpstreamRef
from .prompts import Choice
from .sync import SyncEngine
from .workflow import PROTECTED_BRANCHES, validate_branch_name

logger = logging.getLogger(__name__)

DUPLICATE_CHOICES = (
    Choice("switch", "Switch to the existing branch"),
    Choice("variant", "Create a numbered variant instead"),
    Choice("recreate", "Delete the existing branch and recreate it"),
    Choice("cancel", "Cancel"),
)


@dataclass
class CleanupReport:
    """Branches considered, deleted and skipped by a cleanup run."""

    target: str
    candidates: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "target": self.target,
            "candidates": self.candidates,
            "deleted": self.deleted,
            "failed": self.failed,
            "dry_run": self.dry_run,
        }


class BranchEngine:
    """Creates, switches and deletes branches with validation and snapshots."""

    def __init__(self, ctx: EngineContext, sync: SyncEngine):
        self.ctx = ctx
        self.sync = sync
        self.inspector = ctx.inspector

    # -- validation ---------------------------------------------------------

    def validate_name(self, name: str) -> list[str]:
        """Raise on an invalid name; return non-fatal workflow warnings."""
        validate_branch_name(name)
        if not self.ctx.executor.run("check-ref-format", "--branch", name).ok:
            raise BranchManagerError(
                f"'{name}' is not a valid git branch name",
                ErrorCategory.USER_INPUT,
                command=f"git check-ref-format --branch {name}",
            )
        workflow = self.ctx.config.default_workflow
        if self.ctx.patterns.validate_name(name, workflow):
            return []
        prefixes = ", ".join(self.ctx.patterns.prefixes_for(workflow))
        return [f"'{name}' does not follow {workflow} naming ({prefixes})"]

    def next_variant(self, name: str) -> str:
        """First unused ``<name>-v<N>`` with N starting at 2."""
        version = 2
        while self.inspector.branch_exists(f"{name}-v{version}"):
            version += 1
        return f"{name}-v{version}"

    def is_safe_to_delete(self, branch: str, target: str) -> tuple[bool, str]:
        if branch == self.inspector.current_branch():
            return False, "it is the current branch"
        if branch in PROTECTED_BRANCHES:
            return False, "it is a protected branch"
        if branch == target:
            return False, "it is the merge target"
        if branch not in self.inspector.merged_branches(target):
            return False, f"it is not fully merged into '{target}'"
        return True, ""

    # -- create -------------------------------------------------------------

    def create(self, name: str, base: str | None = None, fetch: bool = True) -> OperationResult:
        """Create ``name`` from ``base`` and check it out."""
        base = base or self.ctx.config.default_base_branch
        for warning in self.validate_name(name):
            logger.warning(warning)
            if not self.ctx.prompter.confirm(f"{warning}. Continue anyway?", default=True):
                raise OperationCancelled()
        self.ctx.ensure_integrity()

        recreate = False
        if self.inspector.branch_exists(name):
            answer = self._resolve_duplicate(name)
            if answer == "switch":
                return self.switch(name)
            if answer == "variant":
                name = self.next_variant(name)
                logger.info("Using variant name '%s'", name)
            else:
                recreate = True

        with self.ctx.audited("CREATE_BRANCH", name) as record:
            self.ctx.resolve_dirty_tree("create")
            start_point = self._resolve_base(base)
            if fetch and self.ctx.config.auto_fetch and start_point == base:
                self.sync.fast_forward_branch(base)

            snapshot = self.ctx.snapshot("CREATE_BRANCH")
            with self.ctx.backups.hold(snapshot):
                try:
                    self.ctx.git(
                        "checkout", "-B" if recreate else "-b", name, start_point,
                        message=f"Could not create '{name}' from '{start_point}'",
                    )
                except BranchManagerError as e:
                    self.ctx.offer_restore(snapshot, e)
                    raise

            upstream = self.sync.auto_configure_upstream(name)
            record.details = f"from {start_point}" + (" (recreated)" if recreate else "")
            return OperationResult(
                "CREATE_BRANCH",
                name,
                True,
                f"Created '{name}' from '{start_point}'",
                snapshot.id,
                {"base": start_point, "upstream": str(upstream) if upstream else None},
            )

    def _resolve_duplicate(self, name: str) -> str:
        if not self.ctx.prompter.interactive:
            raise BranchManagerError(
                f"Branch '{name}' already exists", ErrorCategory.USER_INPUT
            )
        answer = self.ctx.prompter.choose(
            f"Branch '{name}' already exists", DUPLICATE_CHOICES, default="cancel"
        )
        if answer == "recreate":
            if name == self.inspector.current_branch() and not self.inspector.is_clean_working_tree():
                raise BranchManagerError(
                    f"'{name}' is checked out with uncommitted changes", ErrorCategory.REPOSITORY
                )
            if not self.ctx.prompter.confirm(
                f"Delete '{name}' and recreate it? Unmerged commits will only be kept in the snapshot",
                default=False,
            ):
                raise OperationCancelled()
        elif answer not in ("switch", "variant"):
            raise OperationCancelled()
        return answer

    def _resolve_base(self, base: str) -> str:
        if self.inspector.branch_exists(base):
            return base
        refs = self.inspector.remote_branch_refs(base)
        if refs:
            return refs[0].ref
        raise BranchManagerError(
            f"Base branch '{base}' does not exist", ErrorCategory.REPOSITORY,
            command=f"git show-ref refs/heads/{base}",
        )

    # -- switch -------------------------------------------------------------

    def switch(self, target: str, force: bool = False) -> OperationResult:
        """Check out ``target``, tracking a remote branch when only that exists."""
        current = self.inspector.current_branch()
        if target == current:
            return OperationResult("SWITCH_BRANCH", target, True, f"Already on '{target}'")

        track = self._resolve_switch_target(target)

        with self.ctx.audited("SWITCH_BRANCH", target) as record:
            stash_commit = ""
            if not force:
                stash_commit = self.ctx.resolve_dirty_tree(
                    f"switching to {target}", allow_diff=True
                )

            snapshot = self.ctx.snapshot("SWITCH_BRANCH")
            with self.ctx.backups.hold(snapshot):
                args = ["checkout", target] if track is None else [
                    "checkout", "-b", target, "--track", track.ref
                ]
                try:
                    self.ctx.git(*args, message=f"Could not switch to '{target}'")
                except BranchManagerError as e:
                    self.ctx.offer_restore(snapshot, e)
                    raise

            sync_info = self.inspector.sync_status(target)
            restored = False
            if stash_commit and self.ctx.prompter.confirm(
                "Re-apply the changes stashed for this switch?", default=False
            ):
                restored = self.ctx.pop_stash(stash_commit)

            record.details = f"from {current or 'detached HEAD'}"
            return OperationResult(
                "SWITCH_BRANCH",
                target,
                True,
                f"Switched to '{target}'",
                snapshot.id,
                {
                    "previous": current,
                    "sync": sync_info.to_dict(),
                    "stash_commit": stash_commit,
                    "stash_restored": restored,
                },
            )

    def _resolve_switch_target(self, target: str) -> UpstreamRef | None:
        if self.inspector.branch_exists(target):
            return None
        refs = self.inspector.remote_branch_refs(target)
        if not refs:
            raise BranchManagerError(
                f"Branch '{target}' does not exist locally or on any remote",
                ErrorCategory.REPOSITORY,
            )
        if not self.ctx.prompter.confirm(
            f"'{target}' only exists as {refs[0]}. Create a local tracking branch?", default=True
        ):
            raise OperationCancelled()
        return refs[0]

    # -- delete -------------------------------------------------------------

    def delete(
        self,
        branch: str,
        target: str | None = None,
        force: bool = False,
        confirm: bool = True,
    ) -> OperationResult:
        """Delete a local branch after checking it is merged into ``target``."""
        target = target or self.ctx.config.default_base_branch
        if not self.inspector.branch_exists(branch):
            raise BranchManagerError(f"Branch '{branch}' does not exist", ErrorCategory.REPOSITORY)
        safe, reason = self.is_safe_to_delete(branch, target)
        if not safe and not (force and reason.startswith("it is not fully merged")):
            raise BranchManagerError(
                f"Refusing to delete '{branch}': {reason}", ErrorCategory.USER_INPUT
            )
        if confirm and not self.ctx.prompter.confirm(f"Delete branch '{branch}'?", default=True):
            raise OperationCancelled()

        with self.ctx.audited("DELETE_BRANCH", branch) as record:
            head = self.inspector.head_commit(branch)
            snapshot = self.ctx.snapshot("DELETE_BRANCH")
            with self.ctx.backups.hold(snapshot):
                # merge state was checked against target, not HEAD
                self.ctx.git(
                    "branch", "-D", branch,
                    message=f"Could not delete '{branch}'",
                )
            remote_deleted = self._offer_remote_delete(branch)
            record.details = f"was at {head[:12]}" + (", remote deleted" if remote_deleted else "")
            return OperationResult(
                "DELETE_BRANCH",
                branch,
                True,
                f"Deleted '{branch}' (was {head[:12]})",
                snapshot.id,
                {"remote_deleted": remote_deleted},
            )

    def _offer_remote_delete(self, branch: str) -> bool:
        refs = [r for r in self.inspector.remote_branch_refs(branch) if r.remote == "origin"]
        if not refs or not self.ctx.prompter.confirm(
            f"Also delete '{refs[0]}' on the remote?", default=False
        ):
            return False
        result = self.ctx.executor.run("push", "origin", "--delete", branch, timeout=PUSH_TIMEOUT)
        if not result.ok:
            logger.warning("Could not delete remote branch %s: %s", refs[0], result.stderr.strip())
        return result.ok

    def cleanup(
        self, target: str | None = None, auto: bool = False, dry_run: bool = False
    ) -> CleanupReport:
        """Delete local branches fully merged into ``target``."""
        target = target or self.ctx.config.default_base_branch
        if not self.inspector.branch_exists(target):
            raise BranchManagerError(f"Branch '{target}' does not exist", ErrorCategory.REPOSITORY)

        report = CleanupReport(target, dry_run=dry_run)
        current = self.inspector.current_branch()
        report.candidates = [
            b
            for b in self.inspector.merged_branches(target)
            if b not in (current, target) and b not in PROTECTED_BRANCHES
        ]
        if dry_run or not report.candidates:
            return report

        if not auto and not self.ctx.prompter.confirm(
            f"Delete {len(report.candidates)} merged branch(es): {', '.join(report.candidates)}?",
            default=True,
        ):
            raise OperationCancelled()

        self.ctx.ensure_integrity()
        for branch in report.candidates:
            try:
                self.delete(branch, target, confirm=False)
                report.deleted.append(branch)
            except BranchManagerError as e:
                report.failed[branch] = e.message
        return report
