"""Read-only repository queries.

Every query degrades to an "unknown" value (empty string, zero, ``None`` or
:attr:`SyncStatus.UNKNOWN`) instead of raising, so status reporting keeps
working on a half-broken repository.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path

from .executor import CommandExecutor

logger = logging.getLogger(__name__)

# =============================================================================
# Domain Models
# =============================================================================


class SyncStatus(StrEnum):
    """Branch sync status relative to its upstream."""

    UP_TO_DATE = "up-to-date"
    AHEAD = "ahead"
    BEHIND = "behind"
    DIVERGED = "diverged"
    NO_UPSTREAM = "no-upstream"
    UNKNOWN = "unknown"

    @classmethod
    def from_counts(cls, ahead: int, behind: int) -> SyncStatus:
        if ahead > 0 and behind > 0:
            return cls.DIVERGED
        if ahead > 0:
            return cls.AHEAD
        if behind > 0:
            return cls.BEHIND
        return cls.UP_TO_DATE


@dataclass(frozen=True)
class UpstreamRef:
    """Remote + remote-branch pair a local branch tracks."""

    remote: str
    branch: str

    @property
    def ref(self) -> str:
        return f"{self.remote}/{self.branch}"

    def __str__(self) -> str:
        return self.ref


@dataclass
class WorkingTreeReport:
    """Counts (and paths) of pending changes in the working tree."""

    staged: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    untracked: list[str] = field(default_factory=list)
    conflicted: list[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (self.staged or self.modified or self.untracked or self.conflicted)

    def summary(self) -> str:
        if self.is_clean:
            return "clean"
        parts = []
        if self.staged:
            parts.append(f"{len(self.staged)} staged")
        if self.modified:
            parts.append(f"{len(self.modified)} modified")
        if self.untracked:
            parts.append(f"{len(self.untracked)} untracked")
        if self.conflicted:
            parts.append(f"{len(self.conflicted)} conflicted")
        return ", ".join(parts)

    def to_dict(self) -> dict:
        return {
            "clean": self.is_clean,
            "staged": len(self.staged),
            "modified": len(self.modified),
            "untracked": len(self.untracked),
            "conflicted": len(self.conflicted),
        }


@dataclass
class BranchSyncInfo:
    """Sync state of one local branch."""

    branch: str
    upstream: UpstreamRef | None = None
    status: SyncStatus = SyncStatus.UNKNOWN
    ahead: int = 0
    behind: int = 0

    def to_dict(self) -> dict:
        return {
            "branch": self.branch,
            "upstream": str(self.upstream) if self.upstream else None,
            "sync_status": self.status.value,
            "ahead": self.ahead,
            "behind": self.behind,
        }


@dataclass
class IntegrityReport:
    """Result of the repository consistency check."""

    ok: bool
    issues: list[str] = field(default_factory=list)


@dataclass
class RemoteInfo:
    """A configured remote and whether it answered."""

    name: str
    url: str
    reachable: bool | None = None

    def to_dict(self) -> dict:
        return {"name": self.name, "url": self.url, "reachable": self.reachable}


# =============================================================================
# Repository Inspector
# =============================================================================


class RepositoryInspector:
    """Read-only queries against one repository."""

    def __init__(self, executor: CommandExecutor, network_timeout: float = 10.0):
        self.executor = executor
        self.network_timeout = network_timeout

    @property
    def repo_path(self) -> Path:
        return self.executor.repo_path

    def _git(self, *args: str, timeout: float | None = None):
        return self.executor.run(*args, timeout=timeout)

    # -- repository ---------------------------------------------------------

    def is_repository(self) -> bool:
        result = self._git("rev-parse", "--is-inside-work-tree")
        return result.ok and result.output == "true"

    def toplevel(self) -> Path:
        result = self._git("rev-parse", "--show-toplevel")
        return Path(result.output) if result.ok else self.repo_path.resolve()

    def git_path(self, name: str) -> Path:
        """Resolve a path inside the git directory (e.g. MERGE_HEAD)."""
        result = self._git("rev-parse", "--git-path", name)
        path = Path(result.output if result.ok else f".git/{name}")
        return path if path.is_absolute() else self.repo_path / path

    def repository_integrity(self) -> IntegrityReport:
        """Run git's connectivity checker."""
        if not self.is_repository():
            return IntegrityReport(False, ["not a git repository"])
        result = self._git("fsck", "--connectivity-only", "--no-progress", "--no-dangling")
        if result.ok:
            return IntegrityReport(True)
        issues = [line for line in (result.stderr + result.stdout).splitlines() if line.strip()]
        return IntegrityReport(False, issues or [f"git fsck exited with {result.returncode}"])

    # -- working tree -------------------------------------------------------

    def working_tree_report(self) -> WorkingTreeReport:
        """Parse ``git status --porcelain=v2`` into per-kind path lists."""
        report = WorkingTreeReport()
        result = self._git("status", "--porcelain=v2", "--untracked-files=all")
        if not result.ok:
            logger.warning("Could not read working tree status: %s", result.stderr.strip())
            return report
        for line in result.stdout.splitlines():
            if line.startswith("1 ") or line.startswith("2 "):
                # 1 XY sub mH mI mW hH hI path / 2 ... path<TAB>orig
                xy = line[2:4]
                parts = line.split(" ", 8 if line.startswith("1 ") else 9)
                path = parts[-1].split("\t")[0]
                if xy[0] != ".":
                    report.staged.append(path)
                if xy[1] != ".":
                    report.modified.append(path)
            elif line.startswith("u "):
                report.conflicted.append(line.split(" ", 10)[-1])
            elif line.startswith("? "):
                report.untracked.append(line[2:])
        return report

    def is_clean_working_tree(self) -> bool:
        return self.working_tree_report().is_clean

    def unmerged_paths(self) -> list[str]:
        result = self._git("diff", "--name-only", "--diff-filter=U")
        return result.lines if result.ok else []

    def staged_paths(self) -> list[str]:
        result = self._git("diff", "--cached", "--name-only")
        return result.lines if result.ok else []

    def merge_in_progress(self) -> bool:
        return self.git_path("MERGE_HEAD").exists()

    def rebase_in_progress(self) -> bool:
        return self.git_path("rebase-merge").exists() or self.git_path("rebase-apply").exists()

    # -- branches -----------------------------------------------------------

    def current_branch(self) -> str:
        """Current branch name, or "" on detached HEAD."""
        result = self._git("symbolic-ref", "--quiet", "--short", "HEAD")
        return result.output if result.ok else ""

    def is_detached(self) -> bool:
        return self.current_branch() == ""

    def head_commit(self, ref: str = "HEAD") -> str:
        result = self._git("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}")
        return result.output if result.ok else ""

    def local_branches(self) -> list[str]:
        result = self._git("for-each-ref", "--format=%(refname:short)", "refs/heads")
        return result.lines if result.ok else []

    def remote_branch_refs(self, name: str) -> list[UpstreamRef]:
        """Remote-tracking refs named ``<remote>/<name>``."""
        refs = []
        for remote in self.remotes():
            ref = f"refs/remotes/{remote}/{name}"
            if self._git("show-ref", "--verify", "--quiet", ref).ok:
                refs.append(UpstreamRef(remote, name))
        return refs

    def branch_exists(self, name: str, local: bool = True, remote: bool = False) -> bool:
        if local and self._git("show-ref", "--verify", "--quiet", f"refs/heads/{name}").ok:
            return True
        if remote and self.remote_branch_refs(name):
            return True
        return False

    def remote_has_branch(self, remote: str, branch: str) -> bool | None:
        """Ask the remote directly; None when it could not be reached."""
        result = self._git(
            "ls-remote", "--exit-code", "--heads", remote, f"refs/heads/{branch}",
            timeout=self.network_timeout,
        )
        if result.ok:
            return True
        if result.returncode == 2:
            return False
        logger.warning("Could not query %s: %s", remote, result.stderr.strip())
        return None

    def merged_branches(self, target: str) -> list[str]:
        result = self._git("branch", "--merged", target, "--format=%(refname:short)")
        return result.lines if result.ok else []

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        return self._git("merge-base", "--is-ancestor", ancestor, descendant).ok

    def count_commits(self, range_spec: str) -> int:
        result = self._git("rev-list", "--count", range_spec)
        try:
            return int(result.output) if result.ok else 0
        except ValueError:
            return 0

    def ahead_behind(self, source: str, target: str) -> tuple[int, int] | None:
        """(ahead, behind) of ``source`` relative to ``target``."""
        result = self._git("rev-list", "--left-right", "--count", f"{target}...{source}")
        if not result.ok:
            return None
        parts = result.output.split()
        if len(parts) != 2:
            return None
        return int(parts[1]), int(parts[0])

    def last_commit_date(self, ref: str = "HEAD") -> datetime | None:
        result = self._git("log", "-1", "--format=%cI", ref)
        if result.ok and result.output:
            try:
                return datetime.fromisoformat(result.output)
            except ValueError:
                return None
        return None

    # -- upstream -----------------------------------------------------------

    def upstream_of(self, branch: str) -> UpstreamRef | None:
        remote = self._git("config", "--get", f"branch.{branch}.remote")
        merge = self._git("config", "--get", f"branch.{branch}.merge")
        if not (remote.ok and merge.ok and remote.output and merge.output):
            return None
        remote_branch = merge.output.removeprefix("refs/heads/")
        return UpstreamRef(remote.output, remote_branch)

    def sync_status(self, branch: str) -> BranchSyncInfo:
        info = BranchSyncInfo(branch=branch)
        upstream = self.upstream_of(branch)
        if upstream is None:
            info.status = SyncStatus.NO_UPSTREAM
            return info
        info.upstream = upstream
        counts = self.ahead_behind(branch, upstream.ref)
        if counts is None:
            logger.warning("Could not compare %s with %s", branch, upstream)
            return info
        info.ahead, info.behind = counts
        info.status = SyncStatus.from_counts(*counts)
        return info

    # -- remotes ------------------------------------------------------------

    def remotes(self) -> list[str]:
        result = self._git("remote")
        return result.lines if result.ok else []

    def default_remote(self) -> str:
        remotes = self.remotes()
        if "origin" in remotes:
            return "origin"
        return remotes[0] if remotes else ""

    def remote_url(self, remote: str) -> str:
        result = self._git("remote", "get-url", remote)
        return result.output if result.ok else ""

    def remote_reachable(self, remote: str, timeout: float | None = None) -> bool:
        result = self._git(
            "ls-remote", "--heads", remote, timeout=timeout or self.network_timeout
        )
        return result.ok

    def remote_infos(self, check_reachability: bool = False) -> list[RemoteInfo]:
        infos = []
        for name in self.remotes():
            info = RemoteInfo(name=name, url=self.remote_url(name))
            if check_reachability:
                info.reachable = self.remote_reachable(name)
            infos.append(info)
        return infos

    def last_fetch_time(self) -> datetime | None:
        fetch_head = self.git_path("FETCH_HEAD")
        if fetch_head.exists():
            return datetime.fromtimestamp(fetch_head.stat().st_mtime)
        return None

    # -- stash --------------------------------------------------------------

    def stash_entries(self) -> list[tuple[str, str, str]]:
        """(selector, commit, message) for each stash entry."""
        result = self._git("stash", "list", "--format=%gd%x1f%H%x1f%gs")
        entries = []
        if result.ok:
            for line in result.lines:
                parts = line.split("\x1f")
                if len(parts) == 3:
                    entries.append((parts[0], parts[1], parts[2]))
        return entries

    def stash_selector(self, commit: str) -> str:
        """Selector (stash@{n}) of the entry holding ``commit``, or ""."""
        for selector, sha, _ in self.stash_entries():
            if sha == commit:
                return selector
        return ""
