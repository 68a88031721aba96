"""Enumerations shared across the workflow engine."""

from enum import Enum


class StepStatus(str, Enum):
    """Lifecycle of a single workflow step.

    ``PENDING -> RUNNING -> {SUCCEEDED | FAILED | SKIPPED}``. A step may also
    go straight from ``PENDING`` to ``SKIPPED``.
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.SUCCEEDED, StepStatus.FAILED, StepStatus.SKIPPED)

    def __str__(self) -> str:
        return self.value


class WorkflowStatus(str, Enum):
    """Overall status of one workflow invocation."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class DirtyTreeAction(str, Enum):
    """Operator choices when the working tree is dirty before a branch switch."""

    COMMIT = "commit"
    STASH = "stash"
    CANCEL = "cancel"

    def __str__(self) -> str:
        return self.value
