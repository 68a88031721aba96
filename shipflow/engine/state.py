"""
Lifecycle record of one workflow invocation.

A :class:`WorkflowState` is created by :meth:`WorkflowState.initialize` when
the run starts and moves to a terminal state exactly once, through either
:meth:`complete` or :meth:`fail`. Later terminal calls are ignored and return
False, so cleanup paths may call ``fail`` without checking first.

Besides the terminal outcome, the state collects metrics, deduplicated
warnings and errors, per-step statuses, preview URLs and the pull-request URL
for the completion summary and the JSON report.

Persistence helpers at the bottom write the report and the last successful
preview atomically using aiofiles. They are best-effort: a write failure is
logged, never raised.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiofiles
import structlog

from shipflow.enums import StepStatus, WorkflowStatus

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TrackedIssue:
    """A warning or error recorded during the run."""

    message: str
    step: str | None = None
    suggestion: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "step": self.step,
            "suggestion": self.suggestion,
            "timestamp": self.timestamp,
        }


@dataclass
class WorkflowState:
    """Aggregate record of one end-to-end run."""

    operation_name: str
    started_at: datetime
    options: dict[str, Any] = field(default_factory=dict)
    finished_at: datetime | None = None
    success: bool | None = None
    error: str | None = None
    suggestion: str | None = None
    aborted: bool = False
    current_step: str | None = None
    step_statuses: dict[str, StepStatus] = field(default_factory=dict)
    metrics: dict[str, Any] = field(default_factory=dict)
    warnings: list[TrackedIssue] = field(default_factory=list)
    errors: list[TrackedIssue] = field(default_factory=list)
    preview_urls: dict[str, str] = field(default_factory=dict)
    preview_recovered: bool = False
    pr_url: str | None = None
    pr_already_exists: bool = False

    @classmethod
    def initialize(cls, operation_name: str, options: dict[str, Any] | None = None) -> WorkflowState:
        state = cls(operation_name=operation_name, started_at=datetime.now(UTC), options=dict(options or {}))
        log.info("workflow_initialized", operation=operation_name)
        return state

    @property
    def is_terminal(self) -> bool:
        return self.finished_at is not None

    @property
    def status(self) -> WorkflowStatus:
        if not self.is_terminal:
            return WorkflowStatus.RUNNING
        return WorkflowStatus.COMPLETED if self.success else WorkflowStatus.FAILED

    @property
    def duration(self) -> float:
        end = self.finished_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()

    def complete(self, aborted: bool = False) -> bool:
        """Mark the run successful. Returns False if already terminal."""
        if self.is_terminal:
            log.debug("workflow_terminal_ignored", operation=self.operation_name, requested="complete")
            return False
        self.finished_at = datetime.now(UTC)
        self.success = True
        self.aborted = aborted
        self.metrics["duration"] = self.duration
        log.info("workflow_completed", operation=self.operation_name, duration=round(self.duration, 3))
        return True

    def fail(self, error: BaseException | str, suggestion: str | None = None) -> bool:
        """Mark the run failed. Returns False if already terminal."""
        if self.is_terminal:
            log.debug("workflow_terminal_ignored", operation=self.operation_name, requested="fail")
            return False
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        self.finished_at = datetime.now(UTC)
        self.success = False
        self.error = message
        self.suggestion = suggestion or getattr(error, "suggestion", None)
        self.metrics["duration"] = self.duration
        self.track_error(message, step=self.current_step, suggestion=self.suggestion)
        log.error("workflow_failed", operation=self.operation_name, error=message, step=self.current_step)
        return True

    def set_current_step(self, name: str | None) -> None:
        self.current_step = name

    def record_step(self, name: str, status: StepStatus) -> None:
        self.step_statuses[name] = status

    def steps_with(self, status: StepStatus) -> list[str]:
        return [name for name, s in self.step_statuses.items() if s is status]

    def track_error(self, message: str, step: str | None = None, suggestion: str | None = None) -> bool:
        """Record an error unless the same message was already recorded for the step."""
        if any(e.message == message and e.step == step for e in self.errors):
            return False
        self.errors.append(TrackedIssue(message=message, step=step, suggestion=suggestion))
        return True

    def add_warning(self, message: str, step: str | None = None) -> bool:
        if any(w.message == message for w in self.warnings):
            return False
        self.warnings.append(TrackedIssue(message=message, step=step or self.current_step))
        log.warning("workflow_warning", message=message, step=step or self.current_step)
        return True

    def update_metrics(self, **values: Any) -> None:
        self.metrics.update(values)

    def increment(self, counter: str, amount: int = 1) -> int:
        self.metrics[counter] = self.metrics.get(counter, 0) + amount
        return self.metrics[counter]

    def set_preview_urls(self, urls: dict[str, str], recovered: bool = False) -> None:
        self.preview_urls = dict(urls)
        self.preview_recovered = recovered
        self.metrics["preview_urls"] = len(urls)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation_name,
            "status": self.status.value,
            "success": self.success,
            "aborted": self.aborted,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error": self.error,
            "suggestion": self.suggestion,
            "options": self.options,
            "steps": {name: status.value for name, status in self.step_statuses.items()},
            "metrics": self.metrics,
            "warnings": [w.to_dict() for w in self.warnings],
            "errors": [e.to_dict() for e in self.errors],
            "preview_urls": self.preview_urls,
            "preview_recovered": self.preview_recovered,
            "pr_url": self.pr_url,
            "pr_already_exists": self.pr_already_exists,
        }


async def write_json_atomic(path: Path, payload: dict[str, Any]) -> bool:
    """Write JSON to ``path`` through a temporary file and rename.

    Returns:
        True on success, False if the write failed (logged)
    """
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(tmp_path, "w") as f:
            await f.write(json.dumps(payload, indent=2, default=str))
        tmp_path.replace(path)
    except OSError as e:
        log.warning("json_write_failed", path=str(path), error=str(e))
        return False
    return True


async def save_report(state: WorkflowState, path: Path, extra: dict[str, Any] | None = None) -> bool:
    payload = state.to_dict()
    if extra:
        payload.update(extra)
    saved = await write_json_atomic(path, payload)
    if saved:
        log.debug("workflow_report_saved", path=str(path))
    return saved


async def save_last_successful_preview(path: Path, urls: dict[str, str], channel_id: str | None, branch: str) -> bool:
    """Remember the last preview that deployed cleanly, for later recovery."""
    payload = {
        "timestamp": datetime.now(UTC).isoformat(),
        "branch": branch,
        "channel_id": channel_id,
        "urls": urls,
    }
    return await write_json_atomic(path, payload)
