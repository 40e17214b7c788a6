"""Interactive mode as a finite-state machine.

Each menu is a state; every item either moves to another state or runs an
action and stays put. Actions call the same manager operations as the
command-line verbs, so the menu adds navigation and nothing else.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType

from .errors import BranchManagerError, OperationCancelled
from .formatters import OutputFormatter
from .manager import BranchManager
from .prompts import Choice, Prompter

logger = logging.getLogger(__name__)


class MenuState(StrEnum):
    MAIN_MENU = "main"
    BRANCH_MENU = "branch"
    MERGE_MENU = "merge"
    REMOTE_MENU = "remote"
    MAINTENANCE_MENU = "maintenance"
    EXIT = "exit"


@dataclass(frozen=True)
class MenuItem:
    key: str
    label: str
    target: MenuState | None = None
    action: str | None = None


BACK = MenuItem("back", "Back", MenuState.MAIN_MENU)

MENUS = MappingProxyType(
    {
        MenuState.MAIN_MENU: (
            MenuItem("status", "Repository status", action="status"),
            MenuItem("branches", "Branch operations", MenuState.BRANCH_MENU),
            MenuItem("merge", "Merge and conflicts", MenuState.MERGE_MENU),
            MenuItem("remote", "Remote sync", MenuState.REMOTE_MENU),
            MenuItem("maintenance", "Backups, audit, config", MenuState.MAINTENANCE_MENU),
            MenuItem("quit", "Quit", MenuState.EXIT),
        ),
        MenuState.BRANCH_MENU: (
            MenuItem("create", "Create a branch", action="create"),
            MenuItem("suggest", "Create a branch from a workflow type", action="create_workflow"),
            MenuItem("switch", "Switch branch", action="switch"),
            MenuItem("delete", "Delete a branch", action="delete"),
            MenuItem("cleanup", "Clean up merged branches", action="cleanup"),
            MenuItem("list", "List branches", action="list_branches"),
            BACK,
        ),
        MenuState.MERGE_MENU: (
            MenuItem("preview", "Preview a merge", action="preview"),
            MenuItem("merge", "Merge a branch", action="merge"),
            MenuItem("resolve", "Resolve conflicts", action="resolve"),
            MenuItem("continue", "Complete the merge in progress", action="complete"),
            MenuItem("abort", "Abort the merge in progress", action="abort"),
            MenuItem("complete-feature", "Finish current feature", action="complete_feature"),
            BACK,
        ),
        MenuState.REMOTE_MENU: (
            MenuItem("sync", "Sync current branch", action="sync"),
            MenuItem("fetch", "Fetch all remotes", action="fetch"),
            MenuItem("push", "Commit and push", action="push"),
            MenuItem("upstream", "Set upstream", action="set_upstream"),
            MenuItem("unset", "Remove upstream", action="remove_upstream"),
            BACK,
        ),
        MenuState.MAINTENANCE_MENU: (
            MenuItem("snapshots", "List snapshots", action="list_snapshots"),
            MenuItem("restore", "Restore a snapshot", action="restore"),
            MenuItem("prune", "Prune old snapshots", action="prune"),
            MenuItem("recent", "Recent operations", action="recent"),
            MenuItem("stats", "Operation statistics", action="stats"),
            MenuItem("report", "Troubleshooting report", action="report"),
            MenuItem("config", "Show configuration", action="show_config"),
            MenuItem("guide", "Workflow guide", action="guide"),
            BACK,
        ),
    }
)

TRANSITIONS = MappingProxyType(
    {
        (state, item.key): item.target or state
        for state, items in MENUS.items()
        for item in items
    }
)

TITLES = MappingProxyType(
    {
        MenuState.MAIN_MENU: "Branch manager",
        MenuState.BRANCH_MENU: "Branches",
        MenuState.MERGE_MENU: "Merge",
        MenuState.REMOTE_MENU: "Remote",
        MenuState.MAINTENANCE_MENU: "Maintenance",
    }
)


def transition(state: MenuState, key: str) -> MenuState:
    """Next state for ``key``; unknown keys leave the state unchanged."""
    return TRANSITIONS.get((state, key), state)


class MenuMachine:
    """Runs menus until the EXIT state is reached."""

    def __init__(self, manager: BranchManager, formatter: OutputFormatter, navigator: Prompter):
        self.manager = manager
        self.formatter = formatter
        self.navigator = navigator
        self.state = MenuState.MAIN_MENU

    def item(self, key: str) -> MenuItem | None:
        for item in MENUS.get(self.state, ()):
            if item.key == key:
                return item
        return None

    def step(self, key: str) -> MenuState:
        """Apply one selection: run its action, then follow the transition."""
        item = self.item(key)
        if item is not None and item.action:
            self.perform(item.action)
        self.state = transition(self.state, key)
        return self.state

    def perform(self, action: str) -> None:
        """Run an action; failures are reported and the menu carries on."""
        handler = getattr(self, f"do_{action}")
        try:
            handler()
        except OperationCancelled as e:
            self.formatter.console.print(f"[yellow]{e.message}[/]")
        except BranchManagerError as e:
            self.formatter.print_error(e)

    def run(self) -> None:
        while self.state != MenuState.EXIT:
            items = MENUS[self.state]
            back = "quit" if self.state == MenuState.MAIN_MENU else "back"
            key = self.navigator.choose(
                TITLES[self.state], [Choice(i.key, i.label) for i in items], default=back
            )
            logger.debug("menu %s -> %s", self.state, key)
            self.step(key)

    # -- helpers ------------------------------------------------------------

    def _ask(self, question: str, default: str = "") -> str:
        return self.navigator.ask(question, default=default).strip()

    def _require(self, question: str, default: str = "") -> str:
        answer = self._ask(question, default)
        if not answer:
            raise OperationCancelled("Nothing entered")
        return answer

    def _locked(self, operation: str, action: Callable[[], object]):
        with self.manager.exclusive(operation):
            return self.manager.ctx.with_recovery(operation, action)

    @property
    def base(self) -> str:
        return self.manager.config.default_base_branch

    # -- actions ------------------------------------------------------------

    def do_status(self) -> None:
        self.formatter.print_status(self.manager.status(fetch_first=False))

    def do_create(self) -> None:
        name = self._require("New branch name")
        base = self._ask("Base branch", self.base)
        self.formatter.print_result(
            self._locked("create", lambda: self.manager.branches.create(name, base))
        )

    def do_create_workflow(self) -> None:
        branch_type = self._require("Branch type", "feature")
        description = self._require("Short description")
        self.formatter.print_result(
            self._locked(
                "create",
                lambda: self.manager.create_workflow_branch(branch_type, description),
            )
        )

    def do_switch(self) -> None:
        name = self._require("Switch to branch")
        self.formatter.print_result(
            self._locked("switch", lambda: self.manager.branches.switch(name))
        )

    def do_delete(self) -> None:
        name = self._require("Branch to delete")
        self.formatter.print_result(
            self._locked("delete", lambda: self.manager.branches.delete(name))
        )

    def do_cleanup(self) -> None:
        target = self._ask("Merged into", self.base)
        self.formatter.print_cleanup(
            self._locked("cleanup", lambda: self.manager.branches.cleanup(target))
        )

    def do_list_branches(self) -> None:
        inspector = self.manager.inspector
        self.formatter.print_branch_table(
            [inspector.sync_status(b) for b in inspector.local_branches()],
            inspector.current_branch(),
        )

    def do_preview(self) -> None:
        source = self._require("Branch to merge")
        target = self._ask("Merge into", self.base)
        self.formatter.print_preview(self.manager.merges.preview(source, target))

    def do_merge(self) -> None:
        source = self._require("Branch to merge")
        target = self._ask("Merge into", self.base)
        self.formatter.print_merge_outcome(
            self._locked("merge", lambda: self.manager.merges.merge(source, target))
        )

    def do_resolve(self) -> None:
        with self.manager.exclusive("resolve"):
            summary = self.manager.merges.resolve_interactively()
        if summary.aborted:
            self.formatter.console.print("[yellow]Merge aborted[/]")
        else:
            self.formatter.console.print(
                f"Resolved {len(summary.resolved)} file(s), skipped {len(summary.skipped)}"
            )

    def do_complete(self) -> None:
        self.formatter.print_result(self._locked("merge --continue", self.manager.merges.complete))

    def do_abort(self) -> None:
        self.formatter.print_result(self._locked("merge --abort", self.manager.merges.abort))

    def do_complete_feature(self) -> None:
        target = self._ask("Merge into", self.base)
        self.formatter.print_workflow_report(
            self._locked("complete-feature", lambda: self.manager.complete_feature(target))
        )

    def do_sync(self) -> None:
        self.formatter.print_sync_outcome(self._locked("sync", self.manager.sync.sync))

    def do_fetch(self) -> None:
        with self.manager.exclusive("fetch"):
            self.formatter.print_fetch_report(self.manager.sync.fetch())

    def do_push(self) -> None:
        self.formatter.print_result(self._locked("push", self.manager.sync.push))

    def do_set_upstream(self) -> None:
        remote = self._ask("Remote", self.manager.inspector.default_remote() or "origin")
        self.formatter.print_result(
            self._locked("upstream set", lambda: self.manager.sync.set_upstream(remote=remote))
        )

    def do_remove_upstream(self) -> None:
        self.formatter.print_result(
            self._locked("upstream remove", self.manager.sync.remove_upstream)
        )

    def do_list_snapshots(self) -> None:
        self.formatter.print_snapshots(self.manager.backups.list_snapshots())

    def do_restore(self) -> None:
        snapshot_id = self._require("Snapshot id")
        self.formatter.print_restore(
            self._locked("restore", lambda: self.manager.ctx.restore_snapshot(snapshot_id))
        )

    def do_prune(self) -> None:
        retention = self.manager.config.backup_retention_days
        removed = self._locked("prune", lambda: self.manager.ctx.prune_snapshots(retention))
        self.formatter.console.print(f"Removed {len(removed)} snapshot(s)")

    def do_recent(self) -> None:
        self.formatter.print_entries(self.manager.audit.recent())

    def do_stats(self) -> None:
        self.formatter.print_stats(self.manager.audit.stats())

    def do_report(self) -> None:
        path = self.manager.audit.generate_report(self.manager.config, self.manager.inspector)
        self.formatter.console.print(f"Report written to {path}")

    def do_show_config(self) -> None:
        self.formatter.print_config(self.manager.config)

    def do_guide(self) -> None:
        workflow = self.manager.config.default_workflow
        self.formatter.print_guidance(
            workflow.value,
            self.manager.patterns.prefixes_for(workflow),
            self.manager.patterns.guidance(workflow),
        )
