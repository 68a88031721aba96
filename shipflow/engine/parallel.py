"""
Concurrent fan-out of independent async operations.

Used for prefetching independent read-only queries at workflow start and for
running the two repository hygiene sub-tasks side by side.

Semantics:
    - Every operation is started concurrently.
    - The runner returns only after *all* operations have settled; a failing
      operation never cancels its siblings.
    - If any operation raised, the failure of the earliest one in input
      order is re-raised once everything has settled.
    - Results preserve input order regardless of completion order.

There is no concurrency limit: callers pass a handful of operations that are
each bounded by their own command timeout.

Example:
    >>> branch, entries = await run_parallel(
    ...     [git.current_branch, git.status_entries],
    ...     label="prefetch",
    ... )
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]


@dataclass
class OperationResult:
    """Settled outcome of one operation.

    Attributes:
        index: Position of the operation in the input sequence
        success: True if the operation returned normally
        value: Return value when successful
        error: Exception raised when unsuccessful
        execution_time: Seconds from start to settle
    """

    index: int
    success: bool
    value: Any = None
    error: BaseException | None = None
    execution_time: float = 0.0


async def _invoke(index: int, operation: Operation[Any]) -> OperationResult:
    started = time.monotonic()
    try:
        value = await operation()
    except Exception as e:
        return OperationResult(index=index, success=False, error=e, execution_time=time.monotonic() - started)
    return OperationResult(index=index, success=True, value=value, execution_time=time.monotonic() - started)


async def settle_parallel(operations: Sequence[Operation[Any]], label: str = "parallel") -> list[OperationResult]:
    """Run all operations concurrently and return every outcome in input order."""
    if not operations:
        return []

    log.debug("parallel_execution_started", label=label, operations=len(operations))
    started = time.monotonic()
    outcomes = await asyncio.gather(*(_invoke(i, op) for i, op in enumerate(operations)))

    failed = [o.index for o in outcomes if not o.success]
    log.debug(
        "parallel_execution_complete",
        label=label,
        operations=len(outcomes),
        failed=failed,
        duration=round(time.monotonic() - started, 3),
    )
    return list(outcomes)


async def run_parallel(operations: Sequence[Operation[Any]], label: str = "parallel") -> list[Any]:
    """Run operations concurrently and return their results in input order.

    Args:
        operations: Zero-argument async callables
        label: Name used in log events

    Returns:
        Results, one per operation, in input order

    Raises:
        Exception: The error of the first failing operation (input order),
            raised only after all operations have settled
    """
    outcomes = await settle_parallel(operations, label)
    for outcome in outcomes:
        if not outcome.success:
            assert outcome.error is not None
            log.warning("parallel_operation_failed", label=label, index=outcome.index, error=str(outcome.error))
            raise outcome.error
    return [o.value for o in outcomes]
