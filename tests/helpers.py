"""Git helpers and a scripted prompter shared by the test modules."""

from __future__ import annotations

import subprocess
from collections import deque
from collections.abc import Sequence
from pathlib import Path

from branch_manager.prompts import Choice


def run_git(cwd: Path, *args: str) -> str:
    """Run git and return stdout; fail the test on a non-zero exit."""
    completed = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=False,
    )
    assert completed.returncode == 0, f"git {' '.join(args)} failed: {completed.stderr}"
    return completed.stdout.strip()


def commit_file(repo: Path, name: str, content: str, message: str | None = None) -> str:
    """Write ``name`` and commit it; returns the new commit id."""
    path = repo / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    run_git(repo, "add", "--", name)
    run_git(repo, "commit", "-m", message or f"Update {name}")
    return run_git(repo, "rev-parse", "HEAD")


def current_branch(repo: Path) -> str:
    return run_git(repo, "symbolic-ref", "--short", "HEAD")


class ScriptedPrompter:
    """Answers decision points from a queue, falling back to each default.

    Every question asked is recorded so tests can assert on what was offered.
    """

    interactive = True

    def __init__(self, *answers):
        self.answers = deque(answers)
        self.questions: list[str] = []
        self.shown: list[str] = []

    def _next(self, question: str, default):
        self.questions.append(question)
        return self.answers.popleft() if self.answers else default

    def confirm(self, question: str, default: bool = False) -> bool:
        return bool(self._next(question, default))

    def choose(self, question: str, choices: Sequence[Choice], default: str) -> str:
        answer = self._next(question, default)
        assert answer in [c.key for c in choices], f"{answer!r} not offered for {question!r}"
        return answer

    def ask(self, question: str, default: str = "") -> str:
        return self._next(question, default)

    def show(self, message: str) -> None:
        self.shown.append(message)
