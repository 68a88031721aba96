"""Operator prompting for workflow decision points.

The driver never reads the terminal directly; it receives a :class:`Prompter`.
:class:`ConsolePrompter` asks through click; :class:`ScriptedPrompter` replays
prepared answers so the workflow runs non-interactively in tests and scripts.

Key Exports:
    Prompter: Protocol with ``ask``, ``confirm`` and ``choose``
    ConsolePrompter: Interactive terminal implementation
    ScriptedPrompter: Replays a queue of answers and records the questions

Example:
    >>> prompter = ScriptedPrompter(["stash", "add login page", "y"])
    >>> prompter.choose("Uncommitted changes", ["commit", "stash", "cancel"])
    'stash'
    >>> prompter.questions
    ['Uncommitted changes']
"""

from collections import deque
from collections.abc import Iterable, Sequence
from typing import Protocol

import click
import structlog

from shipflow.exceptions import OperatorAbortedError

log = structlog.get_logger(__name__)

_YES = {"y", "yes", "true", "1"}
_NO = {"n", "no", "false", "0"}


class Prompter(Protocol):
    def ask(self, question: str, default: str | None = None) -> str: ...

    def confirm(self, question: str, default: bool = False) -> bool: ...

    def choose(self, question: str, choices: Sequence[str], default: str | None = None) -> str: ...


class ConsolePrompter:
    """Prompts on the terminal through click."""

    def ask(self, question: str, default: str | None = None) -> str:
        try:
            answer = click.prompt(question, default=default or "", show_default=bool(default))
        except click.Abort as e:
            raise OperatorAbortedError("Input cancelled") from e
        return str(answer).strip()

    def confirm(self, question: str, default: bool = False) -> bool:
        try:
            return click.confirm(question, default=default)
        except click.Abort as e:
            raise OperatorAbortedError("Input cancelled") from e

    def choose(self, question: str, choices: Sequence[str], default: str | None = None) -> str:
        for number, choice in enumerate(choices, start=1):
            click.echo(f"  {number}. {choice}")
        by_number = {str(n): c for n, c in enumerate(choices, start=1)}
        while True:
            answer = self.ask(question, default=default)
            selected = by_number.get(answer) or (answer.lower() if answer.lower() in choices else None)
            if selected:
                return selected
            click.echo(f"  Please enter 1-{len(choices)} or one of: {', '.join(choices)}")


class ScriptedPrompter:
    """Answers prompts from a prepared queue.

    An empty-string answer selects the prompt's default. When the queue runs
    out, defaults are used if present; otherwise OperatorAbortedError is raised.

    Attributes:
        questions: Every question asked, in order
    """

    def __init__(self, answers: Iterable[str] = ()) -> None:
        self._answers = deque(answers)
        self.questions: list[str] = []

    def _next(self, question: str, default: str | None) -> str:
        self.questions.append(question)
        if self._answers:
            answer = self._answers.popleft().strip()
            if answer or default is None:
                log.debug("scripted_answer", question=question, answer=answer)
                return answer
        if default is not None:
            return default
        raise OperatorAbortedError(f"No scripted answer for: {question}")

    def ask(self, question: str, default: str | None = None) -> str:
        return self._next(question, default)

    def confirm(self, question: str, default: bool = False) -> bool:
        answer = self._next(question, "y" if default else "n").lower()
        if answer in _YES:
            return True
        if answer in _NO:
            return False
        raise ValueError(f"Unrecognized yes/no answer {answer!r} for: {question}")

    def choose(self, question: str, choices: Sequence[str], default: str | None = None) -> str:
        answer = self._next(question, default)
        if answer.isdigit() and 1 <= int(answer) <= len(choices):
            return choices[int(answer) - 1]
        if answer.lower() in choices:
            return answer.lower()
        raise ValueError(f"Scripted answer {answer!r} is not one of {list(choices)}")

    @property
    def remaining(self) -> int:
        return len(self._answers)
