"""Custom exception hierarchy for shipflow.

Ordinary command failures are *not* exceptions: the command executor returns
a :class:`~shipflow.execution.models.CommandResult` with ``success=False`` and
leaves the decision to the caller. The classes below cover the cases where a
caller needs to transfer control: missing authentication, violated
preconditions, an operator cancelling at a prompt, and a mutation that ran out
of retries.

Exception Hierarchy:
    ShipflowError (base)
    ├── ConfigurationError
    ├── CommandError
    ├── AuthenticationRequiredError
    ├── PreconditionFailedError
    ├── OperatorAbortedError
    ├── RetryExhaustedError
    └── WorkflowError
        └── StepTransitionError

Example Usage:
    >>> from shipflow.exceptions import PreconditionFailedError
    >>> if head == base:
    ...     raise PreconditionFailedError(
    ...         "Cannot open a pull request from main into main",
    ...         suggestion="git checkout -b feature/my-change",
    ...     )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shipflow.execution.models import CommandResult


class ShipflowError(Exception):
    """Base exception for all shipflow errors.

    Attributes:
        message: Human-readable error description
        suggestion: Optional remediation shown to the operator
    """

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)


class ConfigurationError(ShipflowError):
    """Configuration file is unreadable, malformed, or holds invalid values."""

    pass


class CommandError(ShipflowError):
    """An external command failed where the caller requires its output.

    Adapters that cannot continue without a command's answer call
    ``CommandResult.raise_for_status()`` which raises this error.

    Attributes:
        command: The command text that failed
        result: The failed result, including captured output
    """

    def __init__(
        self,
        message: str,
        command: str = "",
        result: CommandResult | None = None,
        suggestion: str | None = None,
    ) -> None:
        super().__init__(message, suggestion=suggestion)
        self.command = command
        self.result = result

    @property
    def timed_out(self) -> bool:
        return bool(self.result and self.result.timed_out)


class AuthenticationRequiredError(ShipflowError):
    """An external tool reported that the operator is not logged in.

    Attributes:
        tool: Name of the tool needing authentication (``gh``, ``firebase``)
    """

    def __init__(self, message: str, tool: str, suggestion: str | None = None) -> None:
        super().__init__(message, suggestion=suggestion)
        self.tool = tool


class PreconditionFailedError(ShipflowError):
    """The repository is not in a state where the operation makes sense.

    Examples:
        - Opening a pull request from the trunk branch
        - Missing pull-request title
        - Detached HEAD where a branch name is required
    """

    pass


class OperatorAbortedError(ShipflowError):
    """The operator explicitly cancelled at a decision point.

    Not a defect: the driver logs it and finishes cleanly.
    """

    pass


class RetryExhaustedError(ShipflowError):
    """A mutation used up its attempts without succeeding or reconciling.

    Attributes:
        action: Description of the mutation, e.g. ``"create pull request"``
        attempts: Number of attempts made
        last_error: The error raised by the final attempt
    """

    def __init__(
        self,
        message: str,
        action: str,
        attempts: int,
        last_error: BaseException | None = None,
        suggestion: str | None = None,
    ) -> None:
        super().__init__(message, suggestion=suggestion)
        self.action = action
        self.attempts = attempts
        self.last_error = last_error


class WorkflowError(ShipflowError):
    """A workflow step failed in a way that ends the run."""

    pass


class StepTransitionError(WorkflowError):
    """An illegal progress-tracker transition was requested.

    Raised, for example, when completing a step that was never started or
    starting a step while another one is still running.
    """

    pass
