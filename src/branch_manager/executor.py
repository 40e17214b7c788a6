"""Command executor: argv-only subprocess calls with failure classification."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from .errors import BranchManagerError, ErrorCategory

logger = logging.getLogger(__name__)

DEFAULT_NETWORK_TIMEOUT = 10.0
PUSH_TIMEOUT = 120.0

# =============================================================================
# Failure Classification
# =============================================================================

_NETWORK_PATTERNS = (
    "could not resolve hostname",
    "could not resolve host",
    "connection refused",
    "connection timed out",
    "network is unreachable",
    "operation timed out",
    "unable to access",
    "could not read from remote repository",
)
_AUTH_PATTERNS = (
    "authentication failed",
    "permission denied (publickey",
    "could not read username",
    "invalid username or password",
)
_REPOSITORY_PATTERNS = (
    "not a git repository",
    "invalid object name",
    "bad object",
    "corrupt",
    "unknown revision",
)
_CONFLICT_PATTERNS = (
    "merge conflict",
    "needs merge",
    "unmerged",
    "you have not concluded your merge",
)


def classify_failure(returncode: int, stderr: str, timed_out: bool = False) -> ErrorCategory:
    """Map an exit code and stderr text to an :class:`ErrorCategory`.

    Authentication is checked before network because git reports a rejected
    public key together with "Could not read from remote repository".
    """
    if timed_out:
        return ErrorCategory.NETWORK

    text = stderr.lower()
    if any(p in text for p in _AUTH_PATTERNS):
        return ErrorCategory.AUTHENTICATION
    if any(p in text for p in _NETWORK_PATTERNS):
        return ErrorCategory.NETWORK
    if any(p in text for p in _REPOSITORY_PATTERNS):
        return ErrorCategory.REPOSITORY
    if "CONFLICT" in stderr or any(p in text for p in _CONFLICT_PATTERNS):
        return ErrorCategory.CONFLICT
    if "permission denied" in text:
        return ErrorCategory.PERMISSION

    match returncode:
        case 129:
            return ErrorCategory.USER_INPUT
        case 127:
            return ErrorCategory.SYSTEM
        case 1 | 128:
            return ErrorCategory.GIT_COMMAND
        case _:
            return ErrorCategory.SYSTEM


# =============================================================================
# Command Execution
# =============================================================================


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of one external command."""

    args: tuple[str, ...]
    stdout: str
    stderr: str
    returncode: int
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def command(self) -> str:
        return shlex.join(self.args)

    @property
    def output(self) -> str:
        return self.stdout.strip()

    @property
    def lines(self) -> list[str]:
        return [line for line in self.stdout.splitlines() if line.strip()]

    @property
    def category(self) -> ErrorCategory:
        return classify_failure(self.returncode, self.stderr + self.stdout, self.timed_out)

    def to_error(self, message: str | None = None) -> BranchManagerError:
        detail = self.stderr.strip() or self.stdout.strip()
        if self.timed_out:
            detail = detail or "command timed out"
        return BranchManagerError(
            message or f"Command failed: {self.command}",
            category=self.category,
            command=self.command,
            stderr=detail,
        )


class CommandExecutor:
    """Runs git (or another program) inside one repository.

    Commands are always argument vectors. A non-zero exit never raises from
    :meth:`run`; callers inspect the result or use :meth:`check`.
    """

    def __init__(self, repo_path: Path, program: str = "git"):
        self.repo_path = Path(repo_path)
        self.program = program

    def _env(self, extra: Mapping[str, str] | None) -> dict[str, str]:
        env = dict(os.environ)
        # English messages keep classification stable; never block on credentials.
        env["LC_ALL"] = "C"
        env["GIT_TERMINAL_PROMPT"] = "0"
        if extra:
            env.update(extra)
        return env

    def run(
        self,
        *args: str,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run ``<program> *args`` and capture its output."""
        return self.run_argv([self.program, *args], timeout=timeout, env=env)

    def run_argv(
        self,
        argv: Sequence[str],
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
        capture: bool = True,
    ) -> CommandResult:
        """Run an arbitrary argument vector in the repository."""
        argv = tuple(argv)
        logger.debug("run: %s", shlex.join(argv))
        try:
            completed = subprocess.run(
                argv,
                cwd=self.repo_path,
                capture_output=capture,
                text=True,
                check=False,
                timeout=timeout,
                env=self._env(env),
                stdin=subprocess.DEVNULL if capture else None,
            )
        except subprocess.TimeoutExpired:
            logger.warning("timed out after %ss: %s", timeout, shlex.join(argv))
            return CommandResult(argv, "", f"timed out after {timeout}s", -1, timed_out=True)
        except FileNotFoundError:
            return CommandResult(argv, "", f"{argv[0]}: command not found", 127)
        except OSError as e:
            return CommandResult(argv, "", str(e), 126)

        result = CommandResult(
            argv,
            completed.stdout or "",
            completed.stderr or "",
            completed.returncode,
        )
        if not result.ok:
            logger.debug("exit %s: %s", result.returncode, result.stderr.strip())
        return result

    def check(
        self,
        *args: str,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
        message: str | None = None,
    ) -> CommandResult:
        """Run a git command and raise a classified error on failure."""
        result = self.run(*args, timeout=timeout, env=env)
        if not result.ok:
            raise result.to_error(message)
        return result
