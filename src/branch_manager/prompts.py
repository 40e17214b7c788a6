"""Decision points.

Engines never read stdin directly; they ask a :class:`Prompter`. The console
prompter renders with rich, the non-interactive one answers every question
with its default so flag-driven runs are deterministic.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from rich.console import Console
from rich.prompt import Confirm, Prompt


@dataclass(frozen=True)
class Choice:
    """One selectable answer at a decision point."""

    key: str
    label: str


class Prompter(Protocol):
    interactive: bool

    def confirm(self, question: str, default: bool = False) -> bool: ...

    def choose(self, question: str, choices: Sequence[Choice], default: str) -> str: ...

    def ask(self, question: str, default: str = "") -> str: ...

    def show(self, message: str) -> None: ...


class ConsolePrompter:
    """Asks the user on the terminal."""

    interactive = True

    def __init__(self, console: Console | None = None):
        self.console = console or Console(stderr=True)

    def confirm(self, question: str, default: bool = False) -> bool:
        return Confirm.ask(question, default=default, console=self.console)

    def choose(self, question: str, choices: Sequence[Choice], default: str) -> str:
        self.console.print(f"[bold]{question}[/]")
        for index, choice in enumerate(choices, 1):
            self.console.print(f"  [cyan]{index}[/]) {choice.label}")
        keys = [c.key for c in choices]
        numbers = [str(i) for i in range(1, len(choices) + 1)]
        answer = Prompt.ask(
            "Select",
            choices=numbers + keys,
            default=str(keys.index(default) + 1) if default in keys else None,
            show_choices=False,
            console=self.console,
        )
        return keys[int(answer) - 1] if answer in numbers else answer

    def ask(self, question: str, default: str = "") -> str:
        return Prompt.ask(question, default=default, console=self.console)

    def show(self, message: str) -> None:
        self.console.print(message)


class AutoPrompter:
    """Answers every decision point with its default."""

    interactive = False

    def __init__(self, console: Console | None = None):
        self.console = console

    def confirm(self, question: str, default: bool = False) -> bool:
        return default

    def choose(self, question: str, choices: Sequence[Choice], default: str) -> str:
        return default

    def ask(self, question: str, default: str = "") -> str:
        return default

    def show(self, message: str) -> None:
        if self.console is not None:
            self.console.print(message)
