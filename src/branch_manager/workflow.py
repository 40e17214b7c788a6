"""Workflow pattern engine: branch naming conventions and merge-target rules."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType

from .errors import BranchManagerError, ErrorCategory

BRANCH_NAME_PATTERN = re.compile(r"^[A-Za-z0-9/_-]+$")
RESERVED_NAMES = frozenset({"HEAD", "master", "main", "origin", "upstream"})
PROTECTED_BRANCHES = frozenset({"main", "master", "develop", "dev"})


class WorkflowName(StrEnum):
    """Supported branching models."""

    GITHUB_FLOW = "github-flow"
    GITFLOW = "gitflow"
    CUSTOM = "custom"


class BranchType(StrEnum):
    """Logical branch kinds that map onto workflow prefixes."""

    FEATURE = "feature"
    HOTFIX = "hotfix"
    RELEASE = "release"
    DEVELOP = "develop"


_TYPE_ALIASES = MappingProxyType(
    {
        "feature": BranchType.FEATURE,
        "feat": BranchType.FEATURE,
        "hotfix": BranchType.HOTFIX,
        "fix": BranchType.HOTFIX,
        "release": BranchType.RELEASE,
        "rel": BranchType.RELEASE,
        "develop": BranchType.DEVELOP,
        "dev": BranchType.DEVELOP,
    }
)

DEFAULT_PREFIXES = MappingProxyType(
    {
        WorkflowName.GITHUB_FLOW: ("feature/", "hotfix/"),
        WorkflowName.GITFLOW: ("feature/", "develop/", "release/", "hotfix/"),
        WorkflowName.CUSTOM: ("feat/", "fix/", "chore/"),
    }
)

GUIDANCE = MappingProxyType(
    {
        WorkflowName.GITHUB_FLOW: (
            "Branch from main for every change: feature/<topic> or hotfix/<topic>.",
            "Keep branches short-lived and open a pull request early.",
            "Merge back into main once reviewed, then delete the branch.",
        ),
        WorkflowName.GITFLOW: (
            "feature/* branches start from develop and merge back into develop.",
            "release/* branches start from develop and merge into main and develop.",
            "hotfix/* branches start from main and merge into main and develop.",
        ),
        WorkflowName.CUSTOM: (
            "Use the configured prefixes (CUSTOM_WORKFLOW_PREFIXES).",
            "Merge targets are not checked for the custom workflow.",
        ),
    }
)


def slugify(text: str) -> str:
    """Lower-case, collapse non-alphanumeric runs to one hyphen, trim hyphens."""
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def validate_branch_name(name: str) -> None:
    """Raise USER_INPUT when ``name`` is not an acceptable branch name."""
    if not name:
        raise BranchManagerError("Branch name cannot be empty", ErrorCategory.USER_INPUT)
    if not BRANCH_NAME_PATTERN.match(name):
        raise BranchManagerError(
            f"Invalid branch name '{name}': use letters, digits, '/', '_' and '-' only",
            ErrorCategory.USER_INPUT,
        )
    if name in RESERVED_NAMES:
        raise BranchManagerError(
            f"'{name}' is a reserved name and cannot be created",
            ErrorCategory.USER_INPUT,
        )


@dataclass(frozen=True)
class MergeAdvice:
    """Outcome of checking a merge against the active workflow."""

    ok: bool
    message: str = ""


@dataclass(frozen=True)
class WorkflowPatterns:
    """Immutable workflow -> prefix table, built once per process."""

    prefixes: MappingProxyType = field(default_factory=lambda: DEFAULT_PREFIXES)

    @classmethod
    def build(cls, custom_prefixes: Iterable[str] | None = None) -> WorkflowPatterns:
        table = dict(DEFAULT_PREFIXES)
        if custom_prefixes:
            table[WorkflowName.CUSTOM] = tuple(custom_prefixes)
        return cls(MappingProxyType(table))

    def prefixes_for(self, workflow: WorkflowName) -> tuple[str, ...]:
        return self.prefixes[WorkflowName(workflow)]

    def validate_name(self, name: str, workflow: WorkflowName) -> bool:
        """True when ``name`` starts with one of the workflow's prefixes."""
        return any(name.startswith(prefix) for prefix in self.prefixes_for(workflow))

    def suggest_name(self, workflow: WorkflowName, branch_type: str, description: str) -> str:
        """Build ``<prefix><slug>`` for a logical branch type and free text."""
        slug = slugify(description)
        if not slug:
            raise BranchManagerError(
                "Description must contain at least one letter or digit",
                ErrorCategory.USER_INPUT,
            )
        return self._prefix_for_type(WorkflowName(workflow), branch_type) + slug

    def _prefix_for_type(self, workflow: WorkflowName, branch_type: str) -> str:
        prefixes = self.prefixes_for(workflow)
        if workflow == WorkflowName.CUSTOM:
            wanted = branch_type.strip().lower().rstrip("/") + "/"
            return wanted if wanted in prefixes else prefixes[0]

        kind = _TYPE_ALIASES.get(branch_type.strip().lower(), BranchType.FEATURE)
        if kind in (BranchType.RELEASE, BranchType.DEVELOP) and workflow != WorkflowName.GITFLOW:
            kind = BranchType.FEATURE
        return f"{kind.value}/"

    def validate_merge_target(
        self, workflow: WorkflowName, source: str, target: str
    ) -> MergeAdvice:
        """Check a merge direction against the workflow's conventions."""
        match WorkflowName(workflow):
            case WorkflowName.GITHUB_FLOW:
                if target not in ("main", "master"):
                    return MergeAdvice(
                        False, f"GitHub Flow merges into main or master, not '{target}'"
                    )
            case WorkflowName.GITFLOW:
                if source.startswith("feature/") and target != "develop":
                    return MergeAdvice(
                        False, f"GitFlow feature branches merge into develop, not '{target}'"
                    )
                if source.startswith(("hotfix/", "release/")) and target not in ("main", "master"):
                    return MergeAdvice(
                        False,
                        f"GitFlow {source.split('/')[0]} branches merge into main or master, "
                        f"not '{target}'",
                    )
            case WorkflowName.CUSTOM:
                pass
        return MergeAdvice(True)

    def guidance(self, workflow: WorkflowName) -> tuple[str, ...]:
        return GUIDANCE[WorkflowName(workflow)]


def is_protected(branch: str) -> bool:
    return branch in PROTECTED_BRANCHES
