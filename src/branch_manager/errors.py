"""Error taxonomy shared by every engine.

Failed mutations raise :class:`BranchManagerError` carrying an
:class:`ErrorCategory`. The CLI has a single handler that turns the category
into an exit code and a remediation list.
"""

from __future__ import annotations

from enum import StrEnum
from types import MappingProxyType


class ErrorCategory(StrEnum):
    """Failure categories for version-control operations."""

    GIT_COMMAND = "GIT_COMMAND"
    NETWORK = "NETWORK"
    PERMISSION = "PERMISSION"
    REPOSITORY = "REPOSITORY"
    USER_INPUT = "USER_INPUT"
    CONFLICT = "CONFLICT"
    AUTHENTICATION = "AUTHENTICATION"
    SYSTEM = "SYSTEM"

    @property
    def description(self) -> str:
        return CATEGORY_DESCRIPTIONS[self]

    @property
    def remediation(self) -> tuple[str, ...]:
        return REMEDIATIONS[self]

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self]


CATEGORY_DESCRIPTIONS = MappingProxyType(
    {
        ErrorCategory.GIT_COMMAND: "Git command execution failed",
        ErrorCategory.NETWORK: "Network or remote repository issue",
        ErrorCategory.PERMISSION: "File system permission issue",
        ErrorCategory.REPOSITORY: "Repository state or integrity issue",
        ErrorCategory.USER_INPUT: "Invalid user input or configuration",
        ErrorCategory.CONFLICT: "Merge or rebase conflict",
        ErrorCategory.AUTHENTICATION: "Authentication or credential issue",
        ErrorCategory.SYSTEM: "System or environment issue",
    }
)

REMEDIATIONS = MappingProxyType(
    {
        ErrorCategory.GIT_COMMAND: (
            "Re-run with --debug to see the exact git invocation",
            "Check 'git status' for an unexpected repository state",
            "Consult 'git help <command>' for the failing subcommand",
        ),
        ErrorCategory.NETWORK: (
            "Check your internet connection",
            "Verify the remote URL with 'git remote -v'",
            "Retry later, or run with --no-fetch to work offline",
        ),
        ErrorCategory.PERMISSION: (
            "Check file permissions in the repository and state directory",
            "Make sure no other process holds files open in .git",
        ),
        ErrorCategory.REPOSITORY: (
            "Run 'git status' to inspect the repository",
            "Run 'git fsck' to check repository integrity",
            "Run 'git gc --prune=now' to clean up loose objects",
        ),
        ErrorCategory.USER_INPUT: (
            "Check the command arguments with 'branch-manager help'",
            "Review configuration with 'branch-manager config show'",
        ),
        ErrorCategory.CONFLICT: (
            "Resolve conflicts with 'branch-manager resolve'",
            "Finish with 'branch-manager merge --continue'",
            "Or abandon with 'branch-manager merge --abort' or 'git mergetool'",
        ),
        ErrorCategory.AUTHENTICATION: (
            "Check your SSH keys with 'ssh -T git@github.com'",
            "Refresh stored credentials or personal access token",
        ),
        ErrorCategory.SYSTEM: (
            "Make sure git is installed and on PATH",
            "Generate a report with 'branch-manager audit report'",
        ),
    }
)

EXIT_CODES = MappingProxyType(
    {
        ErrorCategory.GIT_COMMAND: 1,
        ErrorCategory.USER_INPUT: 2,
        ErrorCategory.REPOSITORY: 3,
        ErrorCategory.CONFLICT: 4,
        ErrorCategory.NETWORK: 5,
        ErrorCategory.AUTHENTICATION: 6,
        ErrorCategory.PERMISSION: 7,
        ErrorCategory.SYSTEM: 8,
    }
)


class BranchManagerError(Exception):
    """A classified failure with enough context to explain it to the user."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        command: str = "",
        stderr: str = "",
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.command = command
        self.stderr = stderr

    @property
    def exit_code(self) -> int:
        return self.category.exit_code

    @property
    def remediation(self) -> tuple[str, ...]:
        return self.category.remediation

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "category": self.category.value,
            "description": self.category.description,
            "command": self.command,
            "stderr": self.stderr,
            "remediation": list(self.remediation),
        }


class OperationCancelled(BranchManagerError):
    """The user declined at a decision point."""

    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message, ErrorCategory.USER_INPUT)

    @property
    def exit_code(self) -> int:
        return 1


class LockHeldError(BranchManagerError):
    """Another mutating command is running against the same repository."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.SYSTEM)
