"""Command-line interface for branch-manager."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from ._version import __version__
from .audit import setup_logging
from .config import CONFIG_KEYS, ConfigStore, StatePaths, resolve_state_dir
from .errors import BranchManagerError, ErrorCategory, OperationCancelled
from .formatters import OutputFormatter
from .manager import BranchManager
from .merge import MergeStatus, MergeStrategy
from .prompts import AutoPrompter, ConsolePrompter
from .sync import SyncStrategy
from .workflow import WorkflowName

logger = logging.getLogger(__name__)

T = TypeVar("T")

# =============================================================================
# CLI Application
# =============================================================================


app = typer.Typer(
    name="branch-manager",
    help="Safety-oriented Git branch workflows: validation, snapshots, conflict help and audit.",
    no_args_is_help=False,
)
upstream_app = typer.Typer(help="Configure upstream tracking", no_args_is_help=True)
config_app = typer.Typer(help="Show or change configuration")
workflow_app = typer.Typer(help="Workflow guidance and compound workflows", no_args_is_help=True)
backup_app = typer.Typer(help="List, restore and prune snapshots", no_args_is_help=True)
audit_app = typer.Typer(help="Operation history, statistics and reports", no_args_is_help=True)
app.add_typer(upstream_app, name="upstream")
app.add_typer(config_app, name="config")
app.add_typer(workflow_app, name="workflow")
app.add_typer(backup_app, name="backup")
app.add_typer(audit_app, name="audit")


@dataclass
class GlobalOptions:
    """Flags given before the command name."""

    debug: bool = False
    no_confirm: bool = False
    no_fetch: bool = False
    workflow: WorkflowName | None = None
    base: str | None = None


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"branch-manager {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Log every git command and decision",
    ),
    no_confirm: bool = typer.Option(
        False,
        "--no-confirm",
        help="Answer every prompt with its default",
    ),
    no_fetch: bool = typer.Option(
        False,
        "--no-fetch",
        help="Never contact remotes before an operation",
    ),
    workflow: WorkflowName = typer.Option(
        None,
        "--workflow",
        help="Workflow naming convention for this run",
    ),
    base: str = typer.Option(
        None,
        "--base",
        help="Base branch for this run",
    ),
):
    """Safety-oriented Git branch workflows.

    Run without a command to start the interactive menu.
    """
    ctx.obj = GlobalOptions(debug, no_confirm, no_fetch, workflow, base)
    if ctx.invoked_subcommand is None:
        from .menu import MenuMachine

        console, formatter = get_console_and_formatter(False)
        manager = get_manager(ctx, console)
        with handle_errors(formatter):
            manager.require_repository()
            MenuMachine(manager, formatter, ConsolePrompter(console)).run()


def get_console_and_formatter(json_output: bool) -> tuple[Console, OutputFormatter]:
    """Create console and formatter."""
    console = Console(highlight=not json_output)
    formatter = OutputFormatter(console, use_json=json_output)
    return console, formatter


def _global_options(ctx: typer.Context) -> GlobalOptions:
    options = ctx.find_object(GlobalOptions)
    return options if options is not None else GlobalOptions()


def get_manager(
    ctx: typer.Context,
    console: Console,
    no_confirm: bool = False,
    no_fetch: bool = False,
    json_output: bool = False,
) -> BranchManager:
    """Build a manager from the stored configuration plus command-line flags."""
    options = _global_options(ctx)
    paths = StatePaths(resolve_state_dir()).ensure()
    config = (
        ConfigStore(paths.config_file)
        .load()
        .with_overrides(
            default_workflow=options.workflow,
            default_base_branch=options.base,
            auto_fetch=False if options.no_fetch or no_fetch else None,
            require_confirmation=False if options.no_confirm or no_confirm else None,
            log_level="DEBUG" if options.debug else None,
        )
    )
    setup_logging(config.log_level, paths.diagnostic_log)
    if config.require_confirmation and not json_output:
        prompter = ConsolePrompter(Console(stderr=True))
    else:
        prompter = AutoPrompter(console if not json_output else None)
    return BranchManager(config, paths, Path("."), prompter)


@contextmanager
def handle_errors(formatter: OutputFormatter) -> Iterator[None]:
    """Map failures to the error panel and the category's exit code."""
    try:
        yield
    except OperationCancelled as e:
        formatter.console.print(f"[yellow]{e.message}[/]")
        raise typer.Exit(e.exit_code)
    except BranchManagerError as e:
        logger.debug("%s failure: %s", e.category, e.message)
        formatter.print_error(e)
        raise typer.Exit(e.exit_code)
    except KeyboardInterrupt:
        formatter.console.print("\n[yellow]Interrupted[/]")
        raise typer.Exit(1)


def run_locked(manager: BranchManager, operation: str, action: Callable[[], T]) -> T:
    """Run a mutating action under the repository lock with recovery choices."""
    with manager.exclusive(operation):
        return manager.ctx.with_recovery(operation, action)


def _exit_on_conflict(success: bool):
    if not success:
        raise typer.Exit(ErrorCategory.CONFLICT.exit_code)


# =============================================================================
# Branch Commands
# =============================================================================


@app.command()
def create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Branch name (or description with --workflow-type)"),
    base_arg: str = typer.Argument(None, metavar="[BASE]", help="Branch to start from"),
    workflow_type: str = typer.Option(
        None,
        "--workflow-type",
        "-t",
        help="Branch type (feature, bugfix, hotfix, release); NAME becomes its description",
    ),
    base: str = typer.Option(None, "--base", "-b", help="Branch to start from"),
    no_fetch: bool = typer.Option(False, "--no-fetch", help="Do not refresh the base first"),
    no_confirm: bool = typer.Option(False, "--no-confirm", help="Answer prompts with defaults"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Create a branch and switch to it."""
    console, formatter = get_console_and_formatter(json_output)
    manager = get_manager(ctx, console, no_confirm, no_fetch, json_output)
    start = base or base_arg
    with handle_errors(formatter):
        if workflow_type:
            result = run_locked(
                manager,
                "create",
                lambda: manager.create_workflow_branch(
                    workflow_type, name, start, fetch=manager.config.auto_fetch
                ),
            )
        else:
            result = run_locked(
                manager,
                "create",
                lambda: manager.branches.create(name, start, fetch=manager.config.auto_fetch),
            )
        formatter.print_result(result)


@app.command()
def switch(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Branch to check out"),
    force: bool = typer.Option(
        False, "--force", "-f", help="Skip the uncommitted-changes check"
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Switch to another branch, tracking a remote branch when needed."""
    console, formatter = get_console_and_formatter(json_output)
    manager = get_manager(ctx, console, json_output=json_output)
    with handle_errors(formatter):
        result = run_locked(manager, "switch", lambda: manager.branches.switch(name, force))
        formatter.print_result(result)


@app.command()
def delete(
    ctx: typer.Context,
    branch: str = typer.Argument(..., help="Branch to delete"),
    target: str = typer.Option(
        None, "--target", "-t", help="Branch it must be merged into (default: base branch)"
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Delete even if not merged"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Delete a local branch after a merge check and snapshot."""
    console, formatter = get_console_and_formatter(json_output)
    manager = get_manager(ctx, console, json_output=json_output)
    with handle_errors(formatter):
        result = run_locked(
            manager, "delete", lambda: manager.branches.delete(branch, target, force)
        )
        formatter.print_result(result)


@app.command()
def cleanup(
    ctx: typer.Context,
    target: str = typer.Argument(None, help="Branch others must be merged into"),
    auto: bool = typer.Option(False, "--auto", help="Delete without asking"),
    dry_run: bool = typer.Option(
        False, "--dry-run", "-n", help="Show what would be deleted"
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Delete local branches already merged into the target."""
    console, formatter = get_console_and_formatter(json_output)
    manager = get_manager(ctx, console, json_output=json_output)
    with handle_errors(formatter):
        report = run_locked(
            manager, "cleanup", lambda: manager.branches.cleanup(target, auto, dry_run)
        )
        formatter.print_cleanup(report)
        if not report.success:
            raise typer.Exit(ErrorCategory.GIT_COMMAND.exit_code)


@app.command()
def status(
    ctx: typer.Context,
    all_branches: bool = typer.Option(False, "--all", "-a", help="Include every local branch"),
    remote: bool = typer.Option(False, "--remote", "-r", help="Check remote reachability"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show fetch and commit times"),
    no_fetch: bool = typer.Option(False, "--no-fetch", help="Skip fetching first"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show branch, sync and working tree status."""
    console, formatter = get_console_and_formatter(json_output)
    manager = get_manager(ctx, console, no_fetch=no_fetch, json_output=json_output)
    with handle_errors(formatter):
        if not json_output:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
                transient=True,
            ) as progress:
                progress.add_task(
                    "Fetching and analyzing..." if manager.config.auto_fetch else "Analyzing...",
                    total=None,
                )
                repo_status = manager.status(all_branches, remote, verbose)
        else:
            repo_status = manager.status(all_branches, remote, verbose)
        formatter.print_status(repo_status)


# =============================================================================
# Merge Commands
# =============================================================================


@app.command()
def merge(
    ctx: typer.Context,
    source: str = typer.Argument(None, help="Branch to merge"),
    target: str = typer.Argument(None, help="Branch to merge into (default: base branch)"),
    strategy: MergeStrategy = typer.Option(
        MergeStrategy.AUTO, "--strategy", "-s", help="Merge strategy"
    ),
    no_sync: bool = typer.Option(False, "--no-sync", help="Do not refresh the target first"),
    workflow_validate: bool = typer.Option(
        False, "--workflow-validate", help="Check the merge direction against the workflow"
    ),
    message: str = typer.Option(None, "--message", "-m", help="Merge commit message"),
    preview: bool = typer.Option(False, "--preview", help="Show what would be merged"),
    continue_merge: bool = typer.Option(
        False, "--continue", help="Commit a merge whose conflicts are resolved"
    ),
    abort_merge: bool = typer.Option(False, "--abort", help="Abort the merge in progress"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Merge a branch into the target behind a snapshot."""
    console, formatter = get_console_and_formatter(json_output)

    if continue_merge and abort_merge:
        console.print("[red]Error: --continue and --abort are mutually exclusive[/]")
        raise typer.Exit(ErrorCategory.USER_INPUT.exit_code)

    manager = get_manager(ctx, console, json_output=json_output)
    with handle_errors(formatter):
        if continue_merge:
            result = run_locked(manager, "merge --continue", manager.merges.complete)
            formatter.print_result(result)
            _exit_on_conflict(result.success)
            return
        if abort_merge:
            formatter.print_result(run_locked(manager, "merge --abort", manager.merges.abort))
            return

        if not source:
            raise BranchManagerError("Name the branch to merge", ErrorCategory.USER_INPUT)
        merge_target = target or manager.config.default_base_branch
        if preview:
            manager.require_repository()
            formatter.print_preview(manager.merges.preview(source, merge_target))
            return

        outcome = run_locked(
            manager,
            "merge",
            lambda: manager.merges.merge(
                source,
                merge_target,
                strategy,
                skip_sync=no_sync,
                message=message,
                validate_workflow=workflow_validate,
            ),
        )
        formatter.print_merge_outcome(outcome)
        _exit_on_conflict(outcome.status != MergeStatus.CONFLICTED)


@app.command()
def resolve(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Resolve conflicts file by file, then offer to complete the merge."""
    console, formatter = get_console_and_formatter(json_output)
    manager = get_manager(ctx, console, json_output=json_output)
    with handle_errors(formatter):
        with manager.exclusive("resolve"):
            conflicts = manager.merges.conflicts()
            if not conflicts:
                formatter.print_conflicts(conflicts)
                return
            formatter.print_conflicts(conflicts)
            summary = manager.merges.resolve_interactively()
            if summary.aborted:
                console.print("[yellow]Merge aborted[/]")
                return
            for path in summary.resolved:
                console.print(f"[green]✓[/] {path}")
            for path in summary.skipped:
                console.print(f"[yellow]skipped[/] {path}")
            if summary.complete and manager.prompter.confirm(
                "All conflicts resolved. Complete the merge now?", default=True
            ):
                formatter.print_result(manager.merges.complete())
                return
        console.print("[yellow]Merge still in progress; finish with 'merge --continue'[/]")
        _exit_on_conflict(False)


# =============================================================================
# Remote Commands
# =============================================================================


@app.command()
def sync(
    ctx: typer.Context,
    branch: str = typer.Argument(None, help="Branch to sync (default: current)"),
    strategy: SyncStrategy = typer.Option(
        SyncStrategy.AUTO, "--strategy", "-s", help="How to integrate upstream commits"
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Bring a branch up to date with its upstream."""
    console, formatter = get_console_and_formatter(json_output)
    manager = get_manager(ctx, console, json_output=json_output)
    with handle_errors(formatter):
        outcome = run_locked(manager, "sync", lambda: manager.sync.sync(branch, strategy))
        formatter.print_sync_outcome(outcome)
        _exit_on_conflict(outcome.success)


@app.command()
def push(
    ctx: typer.Context,
    message: str = typer.Argument(None, help="Commit message for pending changes"),
    remote: str = typer.Option("origin", "--remote", help="Remote to push to"),
    no_confirm: bool = typer.Option(False, "--no-confirm", help="Answer prompts with defaults"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Commit pending changes and push the current branch."""
    console, formatter = get_console_and_formatter(json_output)
    manager = get_manager(ctx, console, no_confirm, json_output=json_output)
    with handle_errors(formatter):
        result = run_locked(manager, "push", lambda: manager.sync.push(message, remote))
        formatter.print_result(result)


@app.command()
def fetch(
    ctx: typer.Context,
    remote: str = typer.Argument(None, help="Remote to fetch (default: all)"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Fetch and prune remotes."""
    console, formatter = get_console_and_formatter(json_output)
    manager = get_manager(ctx, console, json_output=json_output)
    with handle_errors(formatter):
        with manager.exclusive("fetch"):
            report = manager.sync.fetch(remote)
        formatter.print_fetch_report(report)
        if not report.success:
            category = report.failed[0].category or ErrorCategory.NETWORK
            raise typer.Exit(category.exit_code)


@upstream_app.command("set")
def upstream_set(
    ctx: typer.Context,
    branch: str = typer.Argument(None, help="Local branch (default: current)"),
    remote: str = typer.Option(None, "--remote", "-r", help="Remote name"),
    remote_branch: str = typer.Option(None, "--remote-branch", help="Remote branch name"),
    create: bool = typer.Option(
        None, "--create/--no-create", help="Push to create the remote branch when missing"
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Track a remote branch."""
    console, formatter = get_console_and_formatter(json_output)
    manager = get_manager(ctx, console, json_output=json_output)
    with handle_errors(formatter):
        result = run_locked(
            manager,
            "upstream set",
            lambda: manager.sync.set_upstream(branch, remote, remote_branch, create),
        )
        formatter.print_result(result)


@upstream_app.command("remove")
def upstream_remove(
    ctx: typer.Context,
    branch: str = typer.Argument(None, help="Local branch (default: current)"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Stop tracking the upstream branch."""
    console, formatter = get_console_and_formatter(json_output)
    manager = get_manager(ctx, console, json_output=json_output)
    with handle_errors(formatter):
        result = run_locked(
            manager, "upstream remove", lambda: manager.sync.remove_upstream(branch)
        )
        formatter.print_result(result)


# =============================================================================
# Configuration Commands
# =============================================================================


def _config_store() -> ConfigStore:
    return ConfigStore(StatePaths(resolve_state_dir()).ensure().config_file)


@config_app.callback(invoke_without_command=True)
def config_main(ctx: typer.Context):
    """Show or change configuration (default: show)."""
    if ctx.invoked_subcommand is None:
        config_show(json_output=False)


@config_app.command("show")
def config_show(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show every setting."""
    console, formatter = get_console_and_formatter(json_output)
    store = _config_store()
    with handle_errors(formatter):
        formatter.print_config(store.load(), str(store.path))


@config_app.command("get")
def config_get(key: str = typer.Argument(..., help=f"One of: {', '.join(CONFIG_KEYS)}")):
    """Print one setting."""
    console, formatter = get_console_and_formatter(False)
    with handle_errors(formatter):
        config = _config_store().load()
        value = dict(config.items()).get(key.upper())
        if value is None:
            config.get(key)
        console.print(value, markup=False, highlight=False)


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Setting name"),
    value: str = typer.Argument(..., help="New value"),
):
    """Validate and store one setting."""
    console, formatter = get_console_and_formatter(False)
    with handle_errors(formatter):
        config = _config_store().set(key, value)
        console.print(f"[green]✓[/] {key.upper()}={dict(config.items())[key.upper()]}")


@config_app.command("path")
def config_path():
    """Print the configuration file location."""
    print(_config_store().path)


# =============================================================================
# Workflow Commands
# =============================================================================


@workflow_app.command("guide")
def workflow_guide(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Explain the active workflow's branch conventions."""
    console, formatter = get_console_and_formatter(json_output)
    manager = get_manager(ctx, console, json_output=json_output)
    workflow = manager.config.default_workflow
    formatter.print_guidance(
        workflow.value, manager.patterns.prefixes_for(workflow), manager.patterns.guidance(workflow)
    )


@workflow_app.command("suggest")
def workflow_suggest(
    ctx: typer.Context,
    branch_type: str = typer.Argument(..., metavar="TYPE", help="feature, bugfix, hotfix..."),
    description: list[str] = typer.Argument(..., help="Free-text description"),
):
    """Suggest a branch name for the active workflow."""
    console, formatter = get_console_and_formatter(False)
    manager = get_manager(ctx, console)
    with handle_errors(formatter):
        print(manager.suggest_branch(branch_type, " ".join(description)))


@workflow_app.command("complete-feature")
def workflow_complete_feature(
    ctx: typer.Context,
    target: str = typer.Argument(None, help="Branch to merge into (default: base branch)"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Sync, merge, clean up and push the current feature branch."""
    console, formatter = get_console_and_formatter(json_output)
    manager = get_manager(ctx, console, json_output=json_output)
    with handle_errors(formatter):
        report = run_locked(
            manager, "complete-feature", lambda: manager.complete_feature(target)
        )
        formatter.print_workflow_report(report)
        _exit_on_conflict(report.success)


@workflow_app.command("merge-and-push")
def workflow_merge_and_push(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="Branch to merge"),
    target: str = typer.Argument(None, help="Branch to merge into (default: base branch)"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Merge a branch, clean up merged branches and push the target."""
    console, formatter = get_console_and_formatter(json_output)
    manager = get_manager(ctx, console, json_output=json_output)
    with handle_errors(formatter):
        report = run_locked(
            manager, "merge-and-push", lambda: manager.merge_and_push(source, target)
        )
        formatter.print_workflow_report(report)
        _exit_on_conflict(report.success)


@workflow_app.command("setup-config")
def workflow_setup_config(ctx: typer.Context):
    """Write push_config.sh for companion scripts."""
    console, formatter = get_console_and_formatter(False)
    manager = get_manager(ctx, console)
    with handle_errors(formatter):
        manager.require_repository()
        path = manager.setup_shared_config()
        if path is None:
            console.print("[yellow]push_config.sh already exists; left unchanged[/]")
        else:
            console.print(f"[green]✓[/] Wrote {path}")


# =============================================================================
# Backup Commands
# =============================================================================


@backup_app.command("list")
def backup_list(
    ctx: typer.Context,
    all_repositories: bool = typer.Option(
        False, "--all", "-a", help="Include snapshots of other repositories"
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List snapshots, newest first."""
    console, formatter = get_console_and_formatter(json_output)
    manager = get_manager(ctx, console, json_output=json_output)
    with handle_errors(formatter):
        formatter.print_snapshots(manager.backups.list_snapshots(all_repositories))


@backup_app.command("restore")
def backup_restore(
    ctx: typer.Context,
    snapshot_id: str = typer.Argument(..., metavar="ID", help="Snapshot to restore"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Return the repository to a snapshot's branch and changes."""
    console, formatter = get_console_and_formatter(json_output)
    manager = get_manager(ctx, console, json_output=json_output)
    with handle_errors(formatter):
        result = run_locked(
            manager, "backup restore", lambda: manager.ctx.restore_snapshot(snapshot_id)
        )
        formatter.print_restore(result)


@backup_app.command("prune")
def backup_prune(
    ctx: typer.Context,
    days: int = typer.Option(
        None, "--days", "-d", min=0, help="Keep snapshots newer than this (default: config)"
    ),
):
    """Delete snapshots older than the retention window."""
    console, formatter = get_console_and_formatter(False)
    manager = get_manager(ctx, console)
    with handle_errors(formatter):
        retention = days if days is not None else manager.config.backup_retention_days
        removed = run_locked(
            manager, "backup prune", lambda: manager.ctx.prune_snapshots(retention)
        )
        console.print(f"[green]✓[/] Removed {len(removed)} snapshot(s)")
        for snapshot_id in removed:
            console.print(f"  [dim]{snapshot_id}[/]")


# =============================================================================
# Audit Commands
# =============================================================================


@audit_app.command("recent")
def audit_recent(
    ctx: typer.Context,
    count: int = typer.Argument(20, min=1, help="Number of entries"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show the most recent operations."""
    console, formatter = get_console_and_formatter(json_output)
    manager = get_manager(ctx, console, json_output=json_output)
    formatter.print_entries(manager.audit.recent(count))


@audit_app.command("stats")
def audit_stats(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show success and failure counts per operation."""
    console, formatter = get_console_and_formatter(json_output)
    manager = get_manager(ctx, console, json_output=json_output)
    formatter.print_stats(manager.audit.stats())


@audit_app.command("rotate")
def audit_rotate(
    ctx: typer.Context,
    max_size_mb: float = typer.Option(10, "--max-size-mb", help="Rotate logs above this size"),
    max_files: int = typer.Option(5, "--max-files", min=1, help="Rotated copies to keep"),
):
    """Rotate large logs and delete expired daily logs."""
    console, formatter = get_console_and_formatter(False)
    manager = get_manager(ctx, console)
    rotated = manager.audit.rotate(max_size_mb, max_files)
    pruned = manager.audit.prune_daily_logs()
    console.print(
        f"[green]✓[/] Rotated {len(rotated)} log(s), removed {len(pruned)} expired daily log(s)"
    )


@audit_app.command("report")
def audit_report(ctx: typer.Context):
    """Write a troubleshooting report."""
    console, formatter = get_console_and_formatter(False)
    manager = get_manager(ctx, console)
    with handle_errors(formatter):
        path = manager.audit.generate_report(manager.config, manager.inspector)
        console.print(f"[green]✓[/] Report written to {path}")


# =============================================================================
# Help and Version
# =============================================================================


@app.command("help")
def help_command(ctx: typer.Context):
    """Show this help."""
    print(ctx.parent.get_help() if ctx.parent else ctx.get_help())


@app.command("version")
def version_command():
    """Show version."""
    print(f"branch-manager {__version__}")
