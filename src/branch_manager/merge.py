"""Merge and conflict engine.

A merge that stops on conflicts leaves the repository in a "resolution
required" state. It is exited only through :meth:`MergeEngine.complete`
(which refuses while conflict markers remain) or :meth:`MergeEngine.abort`.
"""

from __future__ import annotations

import logging
import re
import shlex
import shutil
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from .context import EngineContext, OperationResult
from .errors import BranchManagerError, ErrorCategory, OperationCancelled
from .prompts import Choice
from .sync import SyncEngine

logger = logging.getLogger(__name__)

FALLBACK_TOOLS = ("code --wait", "vim", "nano")

_MARKER_LINE = re.compile(r"^(<<<<<<<|=======|>>>>>>>)( |$)", re.MULTILINE)
_OPEN_MARKER = re.compile(r"^<<<<<<<( |$)", re.MULTILINE)
_CLOSE_MARKER = re.compile(r"^>>>>>>>( |$)", re.MULTILINE)

# =============================================================================
# Domain Models
# =============================================================================


class MergeStrategy(StrEnum):
    AUTO = "auto"
    FAST_FORWARD = "fast-forward"
    MERGE_COMMIT = "merge-commit"


class MergeType(StrEnum):
    FAST_FORWARD = "fast-forward"
    MERGE_COMMIT = "merge-commit"


class MergeStatus(StrEnum):
    MERGED = "merged"
    NOOP = "no-op"
    CONFLICTED = "conflicted"


class ConflictComplexity(StrEnum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class Resolution(StrEnum):
    OURS = "ours"
    THEIRS = "theirs"
    WHITESPACE = "whitespace"
    TOOL = "tool"
    SKIP = "skip"
    ABORT = "abort"


@dataclass
class MergePreview:
    source: str
    target: str
    commit_count: int
    merge_type: MergeType
    changed_files: list[tuple[str, str]] = field(default_factory=list)
    commits: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "target": self.target,
            "commit_count": self.commit_count,
            "merge_type": self.merge_type.value,
            "changed_files": [{"status": s, "file": f} for s, f in self.changed_files],
            "commits": self.commits,
        }


@dataclass
class ConflictHunk:
    """One ``<<<<<<< ... >>>>>>>`` region."""

    ours: list[str] = field(default_factory=list)
    theirs: list[str] = field(default_factory=list)


@dataclass
class Conflict:
    path: str
    complexity: ConflictComplexity
    auto_resolvable: bool
    marker_count: int = 0
    changed_lines: int = 0

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "complexity": self.complexity.value,
            "auto_resolvable": self.auto_resolvable,
            "marker_count": self.marker_count,
            "changed_lines": self.changed_lines,
        }


@dataclass
class MergeOutcome:
    source: str
    target: str
    status: MergeStatus
    merge_type: MergeType | None = None
    commits_merged: int = 0
    conflicts: list[Conflict] = field(default_factory=list)
    snapshot_id: str = ""
    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status != MergeStatus.CONFLICTED

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "target": self.target,
            "status": self.status.value,
            "success": self.success,
            "merge_type": self.merge_type.value if self.merge_type else None,
            "commits_merged": self.commits_merged,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "snapshot_id": self.snapshot_id,
            "warnings": self.warnings,
        }


@dataclass
class ResolutionSummary:
    resolved: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    aborted: bool = False

    @property
    def complete(self) -> bool:
        return not self.skipped and not self.aborted


# =============================================================================
# Conflict Analysis
# =============================================================================


def count_markers(text: str) -> int:
    return len(_MARKER_LINE.findall(text))


def has_conflict_markers(text: str) -> bool:
    return bool(_OPEN_MARKER.search(text) and _CLOSE_MARKER.search(text))


def parse_conflict_hunks(text: str) -> list[ConflictHunk]:
    """Split conflict regions into our side and their side (diff3 base ignored)."""
    hunks: list[ConflictHunk] = []
    current: ConflictHunk | None = None
    side = ""
    for line in text.splitlines(keepends=True):
        if line.startswith("<<<<<<<"):
            current, side = ConflictHunk(), "ours"
        elif current is not None and line.startswith("|||||||") and side == "ours":
            side = "base"
        elif current is not None and line.rstrip("\r\n") == "=======" and side in ("ours", "base"):
            side = "theirs"
        elif current is not None and line.startswith(">>>>>>>") and side == "theirs":
            hunks.append(current)
            current, side = None, ""
        elif current is not None and side == "ours":
            current.ours.append(line)
        elif current is not None and side == "theirs":
            current.theirs.append(line)
    return hunks


def categorize(marker_count: int, changed_lines: int) -> ConflictComplexity:
    if marker_count <= 3 and changed_lines <= 10:
        return ConflictComplexity.SIMPLE
    if marker_count <= 10 and changed_lines <= 50:
        return ConflictComplexity.MODERATE
    return ConflictComplexity.COMPLEX


def _without_whitespace(lines: list[str]) -> str:
    return "".join("".join(lines).split())


def is_whitespace_only(hunks: list[ConflictHunk]) -> bool:
    return bool(hunks) and all(
        _without_whitespace(h.ours) == _without_whitespace(h.theirs) for h in hunks
    )


def analyze_conflict(path: str, text: str) -> Conflict:
    hunks = parse_conflict_hunks(text)
    changed = sum(len(h.ours) + len(h.theirs) for h in hunks)
    markers = count_markers(text)
    return Conflict(
        path=path,
        complexity=categorize(markers, changed),
        auto_resolvable=is_whitespace_only(hunks),
        marker_count=markers,
        changed_lines=changed,
    )


def keep_ours(text: str) -> str:
    """Drop every conflict region's "theirs" side and the markers."""
    out: list[str] = []
    side = ""
    for line in text.splitlines(keepends=True):
        if line.startswith("<<<<<<<") and not side:
            side = "ours"
        elif line.startswith("|||||||") and side == "ours":
            side = "base"
        elif line.rstrip("\r\n") == "=======" and side in ("ours", "base"):
            side = "theirs"
        elif line.startswith(">>>>>>>") and side == "theirs":
            side = ""
        elif side in ("", "ours"):
            out.append(line)
    return "".join(out)


# =============================================================================
# Merge Engine
# =============================================================================


class MergeEngine:
    """Previews, performs and completes merges."""

    def __init__(self, ctx: EngineContext, sync: SyncEngine):
        self.ctx = ctx
        self.sync = sync
        self.inspector = ctx.inspector

    def _require_branch(self, name: str) -> None:
        if not self.inspector.branch_exists(name):
            raise BranchManagerError(f"Branch '{name}' does not exist", ErrorCategory.REPOSITORY)

    def preview(self, source: str, target: str) -> MergePreview:
        self._require_branch(source)
        self._require_branch(target)
        count = self.inspector.count_commits(f"{target}..{source}")
        fast_forward = count > 0 and self.inspector.is_ancestor(target, source)
        changed = []
        diff = self.ctx.executor.run("diff", "--name-status", f"{target}...{source}")
        for line in diff.lines:
            status, _, path = line.partition("\t")
            changed.append((status, path))
        log = self.ctx.executor.run("log", "--oneline", "--no-decorate", f"{target}..{source}")
        return MergePreview(
            source,
            target,
            count,
            MergeType.FAST_FORWARD if fast_forward else MergeType.MERGE_COMMIT,
            changed,
            log.lines,
        )

    def merge(
        self,
        source: str,
        target: str | None = None,
        strategy: MergeStrategy = MergeStrategy.AUTO,
        skip_sync: bool = False,
        message: str | None = None,
        validate_workflow: bool = False,
    ) -> MergeOutcome:
        """Merge ``source`` into ``target`` behind a snapshot."""
        target = target or self.ctx.config.default_base_branch
        if source == target:
            raise BranchManagerError(
                f"Cannot merge '{source}' into itself", ErrorCategory.USER_INPUT
            )
        self._require_branch(source)
        self._require_branch(target)
        if self.inspector.merge_in_progress() or self.inspector.rebase_in_progress():
            raise BranchManagerError(
                "A merge or rebase is already in progress", ErrorCategory.CONFLICT,
                command="git status",
            )

        if self.inspector.head_commit(source) == self.inspector.head_commit(target):
            return MergeOutcome(source, target, MergeStatus.NOOP)

        warnings = []
        if validate_workflow:
            advice = self.ctx.patterns.validate_merge_target(
                self.ctx.config.default_workflow, source, target
            )
            if not advice.ok:
                warnings.append(advice.message)
                logger.warning(advice.message)
                if not self.ctx.prompter.confirm(f"{advice.message}. Continue?", default=False):
                    raise OperationCancelled()

        self.ctx.resolve_dirty_tree("merge")
        self.ctx.ensure_integrity()
        if not skip_sync and self.ctx.config.auto_fetch:
            self.sync.fast_forward_branch(target)

        preview = self.preview(source, target)
        if preview.commit_count == 0:
            return MergeOutcome(source, target, MergeStatus.NOOP, warnings=warnings)
        if strategy == MergeStrategy.FAST_FORWARD and preview.merge_type != MergeType.FAST_FORWARD:
            raise BranchManagerError(
                f"'{target}' cannot be fast-forwarded to '{source}'; use --strategy merge-commit",
                ErrorCategory.USER_INPUT,
            )
        merge_type = (
            MergeType.MERGE_COMMIT if strategy == MergeStrategy.MERGE_COMMIT else preview.merge_type
        )

        if not self.ctx.prompter.confirm(
            f"Merge {preview.commit_count} commit(s) from '{source}' into '{target}' ({merge_type})?",
            default=True,
        ):
            raise OperationCancelled()

        operation = (
            "MERGE_FAST_FORWARD" if merge_type == MergeType.FAST_FORWARD else "MERGE_COMMIT"
        )
        outcome = MergeOutcome(
            source, target, MergeStatus.MERGED, merge_type, preview.commit_count, warnings=warnings
        )
        with self.ctx.audited(operation, f"{source}->{target}") as record:
            snapshot = self.ctx.snapshot("MERGE_BRANCH")
            outcome.snapshot_id = snapshot.id
            with self.ctx.backups.hold(snapshot):
                if self.inspector.current_branch() != target:
                    self.ctx.git("checkout", target, message=f"Could not check out '{target}'")
                if merge_type == MergeType.FAST_FORWARD:
                    result = self.ctx.executor.run("merge", "--ff-only", source)
                else:
                    result = self.ctx.executor.run(
                        "merge", "--no-ff", "-m",
                        message or f"Merge branch '{source}' into {target}", source,
                    )
                if not result.ok:
                    if self.inspector.merge_in_progress():
                        outcome.status = MergeStatus.CONFLICTED
                        outcome.commits_merged = 0
                        outcome.conflicts = self.conflicts()
                        record.fail(
                            f"conflicts in {len(outcome.conflicts)} file(s); resolution required"
                        )
                        return outcome
                    error = result.to_error(f"Merge of '{source}' into '{target}' failed")
                    self.ctx.offer_restore(snapshot, error)
                    raise error
            record.details = f"{preview.commit_count} commit(s)"
        return outcome

    # -- conflicts ----------------------------------------------------------

    def _read(self, path: str) -> str | None:
        file_path = self.inspector.toplevel() / path
        try:
            return file_path.read_text(encoding="utf-8", errors="replace")
        except (FileNotFoundError, IsADirectoryError):
            return None

    def conflicts(self) -> list[Conflict]:
        """Analyze every unmerged path."""
        result = []
        for path in self.inspector.unmerged_paths():
            text = self._read(path)
            if text is None:
                # deleted on one side
                result.append(Conflict(path, ConflictComplexity.COMPLEX, False))
            else:
                result.append(analyze_conflict(path, text))
        return result

    def resolve_file(self, path: str, resolution: Resolution) -> bool:
        """Apply one resolution; True when the file is staged as resolved."""
        match resolution:
            case Resolution.OURS | Resolution.THEIRS:
                result = self.ctx.executor.run("checkout", f"--{resolution}", "--", path)
                if not result.ok:
                    logger.warning("Could not take %s for %s: %s", resolution, path, result.stderr.strip())
                    return False
            case Resolution.WHITESPACE:
                text = self._read(path)
                if text is None or not analyze_conflict(path, text).auto_resolvable:
                    logger.warning("%s differs in more than whitespace", path)
                    return False
                (self.inspector.toplevel() / path).write_text(keep_ours(text), encoding="utf-8")
            case Resolution.TOOL:
                self.launch_tool(path)
                text = self._read(path)
                if text is not None and has_conflict_markers(text):
                    logger.warning("%s still contains conflict markers", path)
                    return False
            case _:
                return False
        self.ctx.git("add", "--", path, message=f"Could not stage {path}")
        logger.info("Resolved %s using %s", path, resolution)
        return True

    def tool_argv(self, path: str) -> list[str]:
        for command in (self.ctx.config.conflict_tool, *FALLBACK_TOOLS):
            argv = shlex.split(command)
            if argv and shutil.which(argv[0]):
                return [*argv, path]
        raise BranchManagerError(
            f"No merge tool found (tried {self.ctx.config.conflict_tool!r} and fallbacks)",
            ErrorCategory.SYSTEM,
        )

    def launch_tool(self, path: str) -> None:
        argv = self.tool_argv(str(Path(path)))
        result = self.ctx.executor.run_argv(argv, capture=False)
        if not result.ok:
            logger.warning("%s exited with %s", argv[0], result.returncode)

    def resolve_interactively(self) -> ResolutionSummary:
        """Walk every conflicted file and ask how to resolve it."""
        summary = ResolutionSummary()
        for conflict in self.conflicts():
            self.ctx.prompter.show(
                f"{conflict.path}: {conflict.complexity}, {conflict.marker_count} markers, "
                f"{conflict.changed_lines} lines"
                + (" (differs only in whitespace)" if conflict.auto_resolvable else "")
            )
            choices = [Choice("ours", "Keep our version"), Choice("theirs", "Keep their version")]
            if conflict.auto_resolvable:
                choices.append(Choice("whitespace", "Auto-resolve whitespace (keep ours)"))
            choices += [
                Choice("tool", "Open in merge tool"),
                Choice("skip", "Skip this file"),
                Choice("abort", "Abort the whole merge"),
            ]
            answer = Resolution(
                self.ctx.prompter.choose(
                    f"Resolve {conflict.path}",
                    choices,
                    default="whitespace" if conflict.auto_resolvable else "skip",
                )
            )
            if answer == Resolution.ABORT:
                self.abort()
                summary.aborted = True
                return summary
            if self.resolve_file(conflict.path, answer):
                summary.resolved.append(conflict.path)
            else:
                summary.skipped.append(conflict.path)
        return summary

    def validate_resolution(self) -> list[str]:
        """Paths still unmerged or staged with conflict markers."""
        problems = list(self.inspector.unmerged_paths())
        for path in self.inspector.staged_paths():
            if path in problems:
                continue
            text = self._read(path)
            if text is not None and has_conflict_markers(text):
                problems.append(path)
        return problems

    def complete(self) -> OperationResult:
        """Commit the merge (or continue the rebase) once every conflict is resolved."""
        rebasing = self.inspector.rebase_in_progress()
        if not rebasing and not self.inspector.merge_in_progress():
            raise BranchManagerError("No merge in progress", ErrorCategory.USER_INPUT)
        problems = self.validate_resolution()
        if problems:
            raise BranchManagerError(
                f"Unresolved conflicts remain in: {', '.join(problems)}",
                ErrorCategory.CONFLICT,
            )

        branch = self.inspector.current_branch()
        with self.ctx.audited("MERGE_COMPLETE", branch) as record:
            if rebasing:
                result = self.ctx.executor.run(
                    "rebase", "--continue", env={"GIT_EDITOR": "true"}
                )
                if not result.ok:
                    if self.inspector.rebase_in_progress():
                        record.fail("rebase stopped on further conflicts")
                        return OperationResult(
                            "MERGE_COMPLETE", branch, False,
                            "Rebase stopped on further conflicts; resolve them and continue again",
                            extra={"conflicts": self.inspector.unmerged_paths()},
                        )
                    raise result.to_error("Could not continue the rebase")
            else:
                self.ctx.git("commit", "--no-edit", message="Could not commit the merge")
            record.details = "rebase continued" if rebasing else "merge committed"
        return OperationResult(
            "MERGE_COMPLETE", branch or "-", True,
            "Rebase completed" if rebasing else "Merge completed",
        )

    def abort(self) -> OperationResult:
        branch = self.inspector.current_branch()
        if self.inspector.rebase_in_progress():
            args = ("rebase", "--abort")
        elif self.inspector.merge_in_progress():
            args = ("merge", "--abort")
        else:
            raise BranchManagerError("No merge in progress", ErrorCategory.USER_INPUT)
        with self.ctx.audited("MERGE_ABORT", branch):
            self.ctx.git(*args)
        return OperationResult("MERGE_ABORT", branch or "-", True, f"{args[0].title()} aborted")
