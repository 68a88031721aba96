"""Per-invocation context for the workflow.

Everything process-wide for one run (settings, executor and its cache, the
workflow state, the progress tracker, the prompter and the tool adapters)
lives on a :class:`WorkflowContext` created at entry and closed at exit.
Nothing is stored at module level.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from shipflow.config.settings import ShipflowSettings
from shipflow.engine.mutation import Sleep
from shipflow.engine.progress import ProgressTracker
from shipflow.engine.state import WorkflowState
from shipflow.execution.cache import ResultCache
from shipflow.execution.executor import CommandExecutor
from shipflow.execution.history import CommandHistory
from shipflow.git.repository import GitRepository
from shipflow.providers.github_cli import PullRequestManager
from shipflow.providers.hosting import HostingClient
from shipflow.utils.interactive import Prompter

log = structlog.get_logger(__name__)


@dataclass
class WorkflowContext:
    """Collaborators shared by the steps of one workflow run.

    Attributes:
        settings: Loaded configuration
        root: Repository root; relative artifact paths resolve against it
        executor: Command executor (owns the result cache)
        state: Workflow state for this run
        tracker: Progress tracker for this run
        prompter: Operator prompting capability
        git: Git adapter
        pull_requests: ``gh`` adapter
        hosting: ``firebase`` adapter
        branch: Working branch once known
        outputs: Values handed from one step to a later one
    """

    settings: ShipflowSettings
    root: Path
    executor: CommandExecutor
    state: WorkflowState
    tracker: ProgressTracker
    prompter: Prompter
    git: GitRepository
    pull_requests: PullRequestManager
    hosting: HostingClient
    branch: str | None = None
    outputs: dict[str, Any] = field(default_factory=dict)
    closed: bool = False

    @classmethod
    def create(
        cls,
        settings: ShipflowSettings,
        prompter: Prompter,
        operation_name: str = "workflow",
        root: Path | None = None,
        options: dict[str, Any] | None = None,
        executor: CommandExecutor | None = None,
        tracker: ProgressTracker | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> WorkflowContext:
        root = root or Path.cwd()
        if executor is None:
            cache = ResultCache(settings.cache.ttl_seconds) if settings.cache.enabled else None
            log_dir = settings.paths.command_log_dir
            history = CommandHistory(log_dir=log_dir if log_dir.is_absolute() else root / log_dir)
            executor = CommandExecutor(
                cache=cache, history=history, cwd=root, default_timeout=settings.commands.default_timeout
            )
        git = GitRepository(executor, remote=settings.repository.remote)
        return cls(
            settings=settings,
            root=root,
            executor=executor,
            state=WorkflowState.initialize(operation_name, options),
            tracker=tracker or ProgressTracker(),
            prompter=prompter,
            git=git,
            pull_requests=PullRequestManager(
                executor,
                git,
                max_attempts=settings.retry.max_attempts,
                retry_delay=settings.retry.delay_seconds,
                sleep=sleep,
            ),
            hosting=HostingClient(executor, settings.hosting, settings.paths, root=root),
        )

    def resolve(self, path: Path) -> Path:
        return path if path.is_absolute() else self.root / path

    def close(self) -> None:
        """Clear the result cache so nothing leaks into a later invocation."""
        if self.closed:
            return
        if self.executor.cache is not None:
            self.executor.cache.clear()
        self.closed = True
        log.debug("workflow_context_closed", operation=self.state.operation_name)
