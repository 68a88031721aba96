"""
Step-based progress tracking for the workflow driver.

Each step moves through ``pending -> running -> {succeeded | failed | skipped}``.
Steps run in ascending order and at most one is running at a time. Every
transition prints a progress line and emits a structlog event; nothing else
depends on that output.

``finish_progress`` is terminal for the whole tracker. A step still running
at that point is force-failed and steps never reached are marked skipped, so
the tracker always ends in a reportable state.

Example:
    >>> tracker = ProgressTracker()
    >>> tracker.init_progress(2, "Release", steps=[("Build", "Compile"), ("Ship", "Deploy")])
    >>> tracker.start_step("Build")
    >>> tracker.complete_step(True, "built in 4s")
    >>> tracker.skip_step("Ship", "nothing to deploy")
    >>> tracker.finish_progress(True)
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import click
import structlog

from shipflow.enums import StepStatus
from shipflow.exceptions import StepTransitionError

log = structlog.get_logger(__name__)


def format_duration(seconds: float) -> str:
    """Format a duration as ``1h 1m``, ``1m 5s`` or ``45s``."""
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


@dataclass
class WorkflowStep:
    """One named, ordered stage of the workflow."""

    id: int
    name: str
    description: str = ""
    status: StepStatus = StepStatus.PENDING
    message: str | None = None
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "message": self.message,
            "duration": self.duration,
        }


class ProgressTracker:
    """Ordered step tracker with human-readable progress lines.

    Args:
        echo: Line printer, ``click.echo`` by default
        clock: Monotonic time source
    """

    def __init__(
        self,
        echo: Callable[[str], None] = click.echo,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._echo = echo
        self._clock = clock
        self.title = ""
        self.total_steps = 0
        self.steps: list[WorkflowStep] = []
        self.started_at: float | None = None
        self.finished_at: float | None = None
        self.success: bool | None = None

    @property
    def finished(self) -> bool:
        return self.finished_at is not None

    @property
    def current_step(self) -> WorkflowStep | None:
        """The running step, if any."""
        for step in self.steps:
            if step.status is StepStatus.RUNNING:
                return step
        return None

    def get_step(self, name: str) -> WorkflowStep | None:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def init_progress(
        self,
        total_steps: int,
        title: str = "Workflow",
        steps: Sequence[tuple[str, str]] | None = None,
    ) -> None:
        """Start tracking.

        Args:
            total_steps: Number of steps expected
            title: Heading printed once
            steps: Optional ``(name, description)`` pairs declared up front;
                when omitted, steps are created as they are started
        """
        if steps is not None and len(steps) != total_steps:
            raise ValueError("total_steps does not match the declared steps")
        self.title = title
        self.total_steps = total_steps
        self.steps = [WorkflowStep(id=i, name=n, description=d) for i, (n, d) in enumerate(steps or (), start=1)]
        self.started_at = self._clock()
        self.finished_at = None
        self.success = None

        self._echo("")
        self._echo(click.style(f"=== {title} ===", bold=True))
        log.info("progress_started", title=title, total_steps=total_steps)

    def _ensure_active(self) -> None:
        if self.started_at is None:
            raise StepTransitionError("Progress has not been initialized")
        if self.finished:
            raise StepTransitionError("Progress is already finished")

    def start_step(self, name: str) -> WorkflowStep:
        """Mark a step running.

        Raises:
            StepTransitionError: If another step is running, the step has
                already run, or it would run out of order
        """
        self._ensure_active()
        running = self.current_step
        if running is not None:
            raise StepTransitionError(f"Cannot start '{name}' while '{running.name}' is running")

        step = self.get_step(name)
        if step is None:
            step = WorkflowStep(id=len(self.steps) + 1, name=name)
            self.steps.append(step)
            self.total_steps = max(self.total_steps, len(self.steps))
        elif step.status is not StepStatus.PENDING:
            raise StepTransitionError(f"Step '{name}' is already {step.status}")

        later = [s for s in self.steps if s.id > step.id and s.status is not StepStatus.PENDING]
        if later:
            raise StepTransitionError(f"Step '{name}' cannot start after '{later[0].name}'")

        step.status = StepStatus.RUNNING
        step.started_at = self._clock()
        self._echo("")
        self._echo(click.style(f"Step {step.id}/{self.total_steps}: {step.name}", fg="cyan", bold=True))
        if step.description:
            self._echo(f"  {step.description}")
        log.info("step_started", step=step.name, index=step.id, total=self.total_steps)
        return step

    def update_step(self, message: str) -> None:
        """Print an intermediate message for the running step."""
        step = self.current_step
        if step is None:
            raise StepTransitionError("No step is running")
        self._echo(f"  ... {message}")
        log.debug("step_updated", step=step.name, message=message)

    def complete_step(self, success: bool = True, message: str | None = None) -> WorkflowStep:
        """Finish the running step.

        Raises:
            StepTransitionError: If no step is running
        """
        self._ensure_active()
        step = self.current_step
        if step is None:
            raise StepTransitionError("complete_step called without a running step")

        step.status = StepStatus.SUCCEEDED if success else StepStatus.FAILED
        step.message = message
        step.finished_at = self._clock()
        elapsed = format_duration(step.duration or 0.0)
        marker = click.style("✓", fg="green") if success else click.style("✗", fg="red")
        suffix = f": {message}" if message else ""
        self._echo(f"  {marker} {step.name} ({elapsed}){suffix}")
        log.info("step_completed", step=step.name, success=success, message=message)
        return step

    def skip_step(self, name: str, reason: str | None = None) -> WorkflowStep:
        """Mark a pending or running step skipped."""
        self._ensure_active()
        step = self.get_step(name)
        if step is None:
            running = self.current_step
            if running is not None:
                raise StepTransitionError(f"Cannot skip '{name}' while '{running.name}' is running")
            step = WorkflowStep(id=len(self.steps) + 1, name=name)
            self.steps.append(step)
            self.total_steps = max(self.total_steps, len(self.steps))
        elif step.status.is_terminal:
            raise StepTransitionError(f"Step '{name}' is already {step.status}")

        step.status = StepStatus.SKIPPED
        step.message = reason
        step.finished_at = self._clock()
        suffix = f": {reason}" if reason else ""
        self._echo(f"  {click.style('-', dim=True)} {step.name} skipped{suffix}")
        log.info("step_skipped", step=step.name, reason=reason)
        return step

    def finish_progress(self, success: bool, message: str | None = None) -> None:
        """Close the tracker. Safe to call in any state, but only once."""
        if self.started_at is None:
            self.started_at = self._clock()
        if self.finished:
            raise StepTransitionError("Progress is already finished")

        running = self.current_step
        if running is not None:
            running.status = StepStatus.FAILED
            running.message = "interrupted"
            running.finished_at = self._clock()
            success = False
            log.warning("step_force_failed", step=running.name)
        for step in self.steps:
            if step.status is StepStatus.PENDING:
                step.status = StepStatus.SKIPPED
                step.message = "not reached"

        self.finished_at = self._clock()
        self.success = success
        elapsed = format_duration(self.finished_at - self.started_at)
        self._echo("")
        if success:
            self._echo(click.style(f"=== COMPLETED SUCCESSFULLY ({elapsed}) ===", fg="green", bold=True))
        else:
            self._echo(click.style(f"=== COMPLETED WITH ERRORS ({elapsed}) ===", fg="red", bold=True))
        if message:
            self._echo(message)
        log.info("progress_finished", success=success, duration=round(self.finished_at - self.started_at, 3))

    def stats(self) -> dict[str, Any]:
        counts = {status.value: 0 for status in StepStatus}
        for step in self.steps:
            counts[step.status.value] += 1
        end = self.finished_at if self.finished_at is not None else self._clock()
        return {
            "title": self.title,
            "total_steps": self.total_steps,
            "completed": counts[StepStatus.SUCCEEDED.value],
            "failed": counts[StepStatus.FAILED.value],
            "skipped": counts[StepStatus.SKIPPED.value],
            "pending": counts[StepStatus.PENDING.value],
            "running": counts[StepStatus.RUNNING.value],
            "elapsed": (end - self.started_at) if self.started_at is not None else 0.0,
            "success": self.success,
        }
