"""Output formatters for branch-manager."""

from __future__ import annotations

import json
from datetime import datetime
from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from .audit import AuditEntry, OperationStats
    from .backup import RestoreResult, Snapshot
    from .branches import CleanupReport
    from .config import Config
    from .context import OperationResult
    from .errors import BranchManagerError
    from .inspector import BranchSyncInfo
    from .manager import RepositoryStatus, WorkflowReport
    from .merge import Conflict, MergeOutcome, MergePreview
    from .sync import FetchReport, SyncOutcome


class OutputFormatter:
    """Format output for terminal or JSON."""

    def __init__(self, console: Console, use_json: bool = False):
        self.console = console
        self.use_json = use_json

    def _print_json(self, data: dict | list):
        self.console.print_json(json.dumps(data, default=str))

    # -- status -------------------------------------------------------------

    def print_status(self, status: RepositoryStatus):
        """Print repository status."""
        if self.use_json:
            self._print_json(status.to_dict())
            return

        table = Table(title="Repository Status", show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value")

        branch = f"[green]{status.current_branch}[/]" if status.current_branch else "[red]detached HEAD[/]"
        table.add_row("Repository", str(status.path))
        table.add_row("Branch", branch)
        table.add_row("Commit", status.head_commit[:12] if status.head_commit else "[dim]no commits[/]")
        table.add_row("Workflow", status.workflow)
        if status.sync is not None:
            upstream = str(status.sync.upstream) if status.sync.upstream else "[dim]none[/]"
            table.add_row("Upstream", upstream)
            table.add_row("Sync", self._get_sync_icon(status.sync))
        table.add_row("Working tree", self._get_working_tree_display(status))
        if status.merge_in_progress:
            table.add_row("State", "[bold red]merge in progress[/]")
        if status.rebase_in_progress:
            table.add_row("State", "[bold red]rebase in progress[/]")
        if status.last_commit_date is not None:
            table.add_row("Last commit", self._format_date(status.last_commit_date))
        if status.last_fetch is not None:
            table.add_row("Last fetch", self._format_date(status.last_fetch))
        self.console.print(table)

        for error in status.fetch_errors:
            self.console.print(f"[yellow]Fetch failed:[/] {error}")

        tree = status.working_tree
        changed = len(tree.staged) + len(tree.modified) + len(tree.untracked)
        if tree.conflicted or (not tree.is_clean and changed <= 20):
            self._print_changed_paths(status)

        if status.branches:
            self.console.print()
            self.print_branch_table(status.branches, status.current_branch)
        if status.remotes:
            self.console.print()
            self._print_remote_table(status)

    def _print_changed_paths(self, status: RepositoryStatus):
        tree = status.working_tree
        for label, color, paths in (
            ("conflicted", "red", tree.conflicted),
            ("staged", "green", tree.staged),
            ("modified", "yellow", tree.modified),
            ("untracked", "red", tree.untracked),
        ):
            for path in paths:
                self.console.print(f"  [{color}]{label:>10}[/] {path}")

    def print_branch_table(self, branches: list[BranchSyncInfo], current: str = ""):
        table = Table(title="Local Branches")
        table.add_column("Branch", style="cyan")
        table.add_column("Upstream")
        table.add_column("Sync", justify="center")
        for info in branches:
            name = f"[bold green]* {info.branch}[/]" if info.branch == current else info.branch
            upstream = str(info.upstream) if info.upstream else "[dim]-[/]"
            table.add_row(name, upstream, self._get_sync_icon(info))
        self.console.print(table)

    def _print_remote_table(self, status: RepositoryStatus):
        table = Table(title="Remotes")
        table.add_column("Remote", style="cyan")
        table.add_column("URL")
        table.add_column("Reachable", justify="center")
        for remote in status.remotes:
            match remote.reachable:
                case True:
                    reachable = "[green]✓[/]"
                case False:
                    reachable = "[red]✗ unreachable[/]"
                case _:
                    reachable = "[dim]?[/]"
            table.add_row(remote.name, remote.url, reachable)
        self.console.print(table)

    def _get_sync_icon(self, info: BranchSyncInfo) -> str:
        """Get sync status icon."""
        from .inspector import SyncStatus

        match info.status:
            case SyncStatus.UP_TO_DATE:
                return "[green]✓ up-to-date[/]"
            case SyncStatus.AHEAD:
                return f"[yellow]⬆ {info.ahead}[/]"
            case SyncStatus.BEHIND:
                return f"[blue]⬇ {info.behind}[/]"
            case SyncStatus.DIVERGED:
                return f"[red]⬆{info.ahead} ⬇{info.behind}[/]"
            case SyncStatus.NO_UPSTREAM:
                return "[dim]no upstream[/]"
            case _:
                return "[dim]unknown[/]"

    def _get_working_tree_display(self, status: RepositoryStatus) -> str:
        tree = status.working_tree
        if tree.is_clean:
            return "[green]clean[/]"

        parts = []
        if tree.staged:
            parts.append(f"[green]+{len(tree.staged)}[/]")
        if tree.modified:
            parts.append(f"[yellow]~{len(tree.modified)}[/]")
        if tree.untracked:
            parts.append(f"[red]?{len(tree.untracked)}[/]")
        if tree.conflicted:
            parts.append(f"[bold red]!{len(tree.conflicted)}[/]")
        return " ".join(parts)

    def _format_date(self, dt: datetime | None) -> str:
        """Format datetime for display."""
        if dt is None:
            return "[dim]unknown[/]"

        now = datetime.now(dt.tzinfo)
        delta = now - dt

        if delta.days == 0:
            hours = delta.seconds // 3600
            if hours == 0:
                minutes = delta.seconds // 60
                return f"[green]{minutes}m ago[/]"
            return f"[green]{hours}h ago[/]"
        elif delta.days == 1:
            return "[green]yesterday[/]"
        elif delta.days < 7:
            return f"[yellow]{delta.days}d ago[/]"
        return f"[red]{dt.strftime('%Y-%m-%d')}[/]"

    # -- operations ---------------------------------------------------------

    def print_result(self, result: OperationResult):
        if self.use_json:
            self._print_json(result.to_dict())
            return
        icon = "[green]✓[/]" if result.success else "[yellow]![/]"
        self.console.print(f"{icon} {result.message}")
        if result.snapshot_id:
            self.console.print(f"  [dim]snapshot: {result.snapshot_id}[/]")
        upstream = result.extra.get("upstream")
        if upstream:
            self.console.print(f"  [dim]tracking: {upstream}[/]")
        sync = result.extra.get("sync")
        if sync and sync.get("upstream"):
            self.console.print(
                f"  [dim]{sync['sync_status']} relative to {sync['upstream']}[/]"
            )
        if result.extra.get("stash_commit") and not result.extra.get("stash_restored"):
            self.console.print("  [yellow]Your changes are kept in the stash ('git stash list')[/]")

    def print_preview(self, preview: MergePreview):
        if self.use_json:
            self._print_json(preview.to_dict())
            return
        self.console.print(
            f"[bold]Merge preview:[/] {preview.source} → {preview.target} "
            f"([cyan]{preview.merge_type}[/], {preview.commit_count} commit(s))"
        )
        for commit in preview.commits[:20]:
            self.console.print(f"  [dim]{commit}[/]")
        if preview.changed_files:
            table = Table(title="Changed Files")
            table.add_column("Status", justify="center")
            table.add_column("File", style="cyan")
            for status, path in preview.changed_files:
                table.add_row(status, path)
            self.console.print(table)

    def print_merge_outcome(self, outcome: MergeOutcome):
        if self.use_json:
            self._print_json(outcome.to_dict())
            return
        from .merge import MergeStatus

        for warning in outcome.warnings:
            self.console.print(f"[yellow]Warning:[/] {warning}")
        match outcome.status:
            case MergeStatus.NOOP:
                self.console.print(
                    f"[green]✓[/] '{outcome.target}' already contains '{outcome.source}' "
                    "(0 commits merged)"
                )
            case MergeStatus.MERGED:
                self.console.print(
                    f"[green]✓[/] Merged {outcome.commits_merged} commit(s) from "
                    f"'{outcome.source}' into '{outcome.target}' ({outcome.merge_type})"
                )
            case MergeStatus.CONFLICTED:
                self.console.print(
                    f"[bold red]✗ Merge of '{outcome.source}' into '{outcome.target}' "
                    "stopped on conflicts[/]"
                )
                self.print_conflicts(outcome.conflicts)
        if outcome.snapshot_id:
            self.console.print(f"  [dim]snapshot: {outcome.snapshot_id}[/]")

    def print_conflicts(self, conflicts: list[Conflict]):
        if self.use_json:
            self._print_json([c.to_dict() for c in conflicts])
            return
        if not conflicts:
            self.console.print("[green]No conflicted files[/]")
            return
        table = Table(title="Conflicts")
        table.add_column("File", style="cyan")
        table.add_column("Complexity", justify="center")
        table.add_column("Markers", justify="right")
        table.add_column("Lines", justify="right")
        table.add_column("Auto", justify="center")
        colors = {"simple": "green", "moderate": "yellow", "complex": "red"}
        for conflict in conflicts:
            color = colors.get(conflict.complexity.value, "white")
            table.add_row(
                conflict.path,
                f"[{color}]{conflict.complexity}[/]",
                str(conflict.marker_count),
                str(conflict.changed_lines),
                "[green]whitespace[/]" if conflict.auto_resolvable else "",
            )
        self.console.print(table)
        self.console.print(
            "Resolve with [bold]branch-manager resolve[/], then "
            "[bold]branch-manager merge --continue[/] or [bold]--abort[/]"
        )

    def print_sync_outcome(self, outcome: SyncOutcome):
        if self.use_json:
            self._print_json(outcome.to_dict())
            return
        from .sync import SyncAction

        if outcome.fetch is not None:
            self.print_fetch_report(outcome.fetch, quiet_success=True)
        if outcome.action == SyncAction.NONE:
            self.console.print(
                f"[green]✓[/] '{outcome.branch}' is {outcome.before.status}; nothing to do"
            )
        elif outcome.action == SyncAction.CONFLICTED:
            self.console.print(f"[bold red]✗ Sync of '{outcome.branch}' stopped on conflicts[/]")
            for path in outcome.conflicts:
                self.console.print(f"  [red]{path}[/]")
        else:
            self.console.print(f"[green]✓[/] '{outcome.branch}' updated ({outcome.action})")
        if outcome.snapshot_id:
            self.console.print(f"  [dim]snapshot: {outcome.snapshot_id}[/]")

    def print_fetch_report(self, report: FetchReport, quiet_success: bool = False):
        if self.use_json:
            self._print_json([r.to_dict() for r in report.results])
            return
        for result in report.results:
            if result.success and not quiet_success:
                self.console.print(f"[green]✓[/] fetched {result.remote}")
            elif not result.success:
                self.console.print(f"[red]✗[/] {result.remote}: {result.error}")

    def print_cleanup(self, report: CleanupReport):
        if self.use_json:
            self._print_json(report.to_dict())
            return
        if not report.candidates:
            self.console.print(f"[green]No merged branches to clean up against '{report.target}'[/]")
            return
        title = "Would delete" if report.dry_run else "Cleanup"
        table = Table(title=f"{title} (merged into {report.target})")
        table.add_column("Branch", style="cyan")
        table.add_column("Status", justify="center")
        for branch in report.candidates:
            if report.dry_run:
                status = "[dim]merged[/]"
            elif branch in report.deleted:
                status = "[green]✓ deleted[/]"
            else:
                status = f"[red]✗ {report.failed.get(branch, 'skipped')[:50]}[/]"
            table.add_row(branch, status)
        self.console.print(table)

    # -- backups ------------------------------------------------------------

    def print_snapshots(self, snapshots: list[Snapshot]):
        if self.use_json:
            self._print_json([s.to_dict() for s in snapshots])
            return
        if not snapshots:
            self.console.print("[dim]No snapshots[/]")
            return
        table = Table(title="Snapshots")
        table.add_column("ID", style="cyan")
        table.add_column("Operation")
        table.add_column("Branch", style="green")
        table.add_column("Commit")
        table.add_column("Stash", justify="center")
        table.add_column("Created")
        for snapshot in snapshots:
            table.add_row(
                snapshot.id,
                snapshot.operation,
                snapshot.branch or "[dim]detached[/]",
                snapshot.head_commit[:12] or "[dim]unknown[/]",
                "[yellow]yes[/]" if snapshot.stash_commit else "",
                self._format_date(snapshot.created_at),
            )
        self.console.print(table)

    def print_restore(self, result: RestoreResult):
        if self.use_json:
            self._print_json(result.to_dict())
            return
        self.console.print(f"[green]✓[/] Restored snapshot {result.snapshot.id}")
        for message in result.messages:
            self.console.print(f"  {message}")

    # -- config and audit ---------------------------------------------------

    def print_config(self, config: Config, source: str = ""):
        if self.use_json:
            self._print_json(config.to_dict())
            return
        table = Table(title=f"Configuration{f' ({source})' if source else ''}")
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        for key, value in config.items():
            table.add_row(key, value)
        self.console.print(table)

    def print_stats(self, stats: list[OperationStats]):
        if self.use_json:
            self._print_json([s.to_dict() for s in stats])
            return
        if not stats:
            self.console.print("[dim]No operations recorded yet[/]")
            return
        table = Table(title="Operation Statistics")
        table.add_column("Operation", style="cyan")
        table.add_column("Success", justify="right", style="green")
        table.add_column("Failed", justify="right", style="red")
        table.add_column("Rate", justify="right")
        table.add_column("Last success")
        table.add_column("Last failure")
        for s in sorted(stats, key=lambda s: s.operation):
            table.add_row(
                s.operation,
                str(s.success_count),
                str(s.failure_count),
                f"{s.success_rate:.1f}%",
                s.last_success,
                s.last_failure,
            )
        self.console.print(table)

    def print_entries(self, entries: list[AuditEntry]):
        if self.use_json:
            self._print_json([e.to_dict() for e in entries])
            return
        table = Table(title="Recent Operations")
        table.add_column("Time")
        table.add_column("Operation", style="cyan")
        table.add_column("Branch", style="green")
        table.add_column("Status", justify="center")
        table.add_column("Details")
        for e in entries:
            status = "[green]✓[/]" if e.status.value == "SUCCESS" else "[red]✗[/]"
            table.add_row(
                e.timestamp.strftime("%Y-%m-%d %H:%M:%S"), e.operation, e.branch, status, e.details
            )
        self.console.print(table)

    def print_workflow_report(self, report: WorkflowReport):
        if self.use_json:
            self._print_json(report.to_dict())
            return
        self.console.print(f"[bold]{report.name}[/]")
        for step in report.steps:
            self.console.print(f"  [green]•[/] {step}")
        if not report.success:
            self.console.print("[bold red]Workflow stopped before completion[/]")

    def print_guidance(self, workflow: str, prefixes: tuple[str, ...], lines: tuple[str, ...]):
        if self.use_json:
            self._print_json({"workflow": workflow, "prefixes": prefixes, "guidance": lines})
            return
        body = "\n".join(f"• {line}" for line in lines)
        body += f"\n\n[cyan]Prefixes:[/] {', '.join(prefixes)}"
        self.console.print(Panel(body, title=f"{workflow} workflow"))

    # -- errors -------------------------------------------------------------

    def print_error(self, error: BranchManagerError):
        if self.use_json:
            self._print_json({"error": error.to_dict()})
            return
        lines = [f"[bold]{error.message}[/]", ""]
        lines.append(f"[cyan]Category:[/] {error.category} ({error.category.description})")
        if error.command:
            lines.append(f"[cyan]Command:[/] {error.command}")
        if error.stderr:
            lines.append(f"[cyan]Output:[/] {error.stderr}")
        lines.append("")
        lines.append("[cyan]Try:[/]")
        lines.extend(f"  • {hint}" for hint in error.remediation)
        self.console.print(Panel("\n".join(lines), title="[red]Error[/]", border_style="red"))
