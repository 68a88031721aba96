"""Pytest configuration and shared fixtures."""

from collections.abc import Callable
from pathlib import Path

import pytest

from shipflow.config.settings import ShipflowSettings
from shipflow.engine.context import WorkflowContext
from shipflow.engine.progress import ProgressTracker
from shipflow.execution.cache import ResultCache
from shipflow.execution.executor import CommandExecutor
from shipflow.execution.history import CommandHistory
from shipflow.execution.models import CommandLike, CommandOptions, CommandResult
from shipflow.utils.interactive import ScriptedPrompter


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeExecutor(CommandExecutor):
    """CommandExecutor that answers from a table instead of spawning processes.

    Responses are looked up by the longest registered prefix of the command
    text. When several results are registered for a prefix they are returned
    in order and the last one repeats. Unknown commands succeed with no output.
    Cache and history behave exactly as in the real executor.
    """

    def __init__(self, cache: ResultCache | None = None, history: CommandHistory | None = None) -> None:
        super().__init__(cache=cache, history=history)
        self.responses: dict[str, list[CommandResult]] = {}
        self.calls: list[str] = []
        self.options: list[CommandOptions] = []

    def respond(self, prefix: str, *results: CommandResult) -> "FakeExecutor":
        self.responses[prefix] = list(results)
        return self

    def _lookup(self, key: str) -> CommandResult:
        matches = [p for p in self.responses if key.startswith(p)]
        if not matches:
            return CommandResult.ok("", command=key)
        queue = self.responses[max(matches, key=len)]
        result = queue.pop(0) if len(queue) > 1 else queue[0]
        return result.with_command(key)

    def _spawn(self, command: CommandLike, key: str, opts: CommandOptions) -> CommandResult:
        self.spawn_count += 1
        self.calls.append(key)
        self.options.append(opts)
        return self._record(key, self._lookup(key))

    async def _spawn_async(self, command: CommandLike, key: str, opts: CommandOptions) -> CommandResult:
        return self._spawn(command, key, opts)

    def called(self, prefix: str) -> list[str]:
        return [c for c in self.calls if c.startswith(prefix)]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_executor() -> FakeExecutor:
    """FakeExecutor where untracked-file checks fail, as in a clean repository."""
    executor = FakeExecutor()
    executor.respond("git ls-files --error-unmatch", CommandResult.failure("error: pathspec did not match"))
    executor.respond("git rev-parse --verify", CommandResult.failure("", exit_code=1))
    executor.respond("git rev-parse --git-path", CommandResult.ok(".git/shipflow-index\n"))
    return executor


@pytest.fixture
def executor_factory() -> Callable[..., FakeExecutor]:
    return FakeExecutor


@pytest.fixture
def settings(tmp_path: Path) -> ShipflowSettings:
    """Settings with fast retries and a project id."""
    return ShipflowSettings(
        retry={"max_attempts": 2, "delay_seconds": 0},
        hosting={"project_id": "acme-web", "sites": ["mysite"]},
    )


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]):
    async def sleep(delay: float) -> None:
        sleeps.append(delay)

    return sleep


@pytest.fixture
def progress_lines() -> list[str]:
    return []


@pytest.fixture
def make_context(
    tmp_path: Path, settings: ShipflowSettings, fake_executor: FakeExecutor, fake_sleep, progress_lines: list[str]
) -> Callable[..., WorkflowContext]:
    """Build a WorkflowContext rooted at tmp_path around the fake executor."""

    def factory(answers: list[str] | None = None, executor: FakeExecutor | None = None) -> WorkflowContext:
        return WorkflowContext.create(
            settings,
            ScriptedPrompter(answers or []),
            root=tmp_path,
            executor=executor or fake_executor,
            tracker=ProgressTracker(echo=progress_lines.append),
            sleep=fake_sleep,
        )

    return factory
