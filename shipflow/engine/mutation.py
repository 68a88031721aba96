"""Idempotent execution of mutations against remote state.

Creating a pull request (or any other remote object) is unsafe to retry
blindly: a previous run may have created it before failing, or a network
error may hide a create that actually went through. This module makes such
calls converge on one remote object.

Algorithm:
    1. Optional existence check. If the object is found, reconcile it with
       the conflict resolver and return it tagged ``already_exists``. This is
       a fast path only; its failure or absence never blocks step 2.
    2. Attempt the mutation up to ``max_attempts`` times with a fixed delay.
    3. When a failed attempt's error text matches the conflict detector,
       re-query the object through the resolver and return it tagged
       ``already_exists``. This reactive path is authoritative.
    4. Otherwise raise :class:`RetryExhaustedError` carrying the last error.

Authentication and precondition errors are never retried.

Key Exports:
    retry_with_reconciliation: Pure retry loop over an attempt closure
    RetryableMutation: Mutation description including the existence check
    MutationOutcome: Result plus ``already_exists`` and attempt count

Example:
    >>> mutation = RetryableMutation(
    ...     action="create pull request",
    ...     attempt=create,
    ...     conflict_detector=is_pr_conflict,
    ...     conflict_resolver=reconcile,
    ...     existence_check=find_existing,
    ... )
    >>> outcome = await mutation.run()
    >>> outcome.already_exists
    True
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

import structlog

from shipflow.exceptions import (
    AuthenticationRequiredError,
    CommandError,
    OperatorAbortedError,
    PreconditionFailedError,
    RetryExhaustedError,
)

log = structlog.get_logger(__name__)

T = TypeVar("T")

NON_RETRYABLE: tuple[type[BaseException], ...] = (
    AuthenticationRequiredError,
    PreconditionFailedError,
    OperatorAbortedError,
)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class MutationOutcome(Generic[T]):
    """Result of an idempotent mutation.

    Attributes:
        value: The created or reconciled object
        already_exists: True when the object existed before this call
        attempts: Mutation attempts made (0 when the existence check hit)
    """

    value: T
    already_exists: bool = False
    attempts: int = 0


def error_text(error: BaseException) -> str:
    """Text a conflict detector is matched against."""
    parts = [getattr(error, "message", None) or str(error)]
    if isinstance(error, CommandError) and error.result is not None:
        parts.append(error.result.combined)
    return "\n".join(p for p in parts if p)


async def retry_with_reconciliation(
    attempt: Callable[[], Awaitable[T]],
    *,
    action: str,
    max_attempts: int,
    delay: float,
    is_conflict: Callable[[str], bool],
    resolve_conflict: Callable[[], Awaitable[T]],
    non_retryable: tuple[type[BaseException], ...] = NON_RETRYABLE,
    sleep: Sleep = asyncio.sleep,
) -> MutationOutcome[T]:
    """Run ``attempt`` with fixed-delay retries and conflict reconciliation.

    Args:
        attempt: Performs the mutation; raises on failure
        action: Description used in logs and errors
        max_attempts: Total attempts, at least 1
        delay: Seconds slept between attempts
        is_conflict: Predicate over the error text of a failed attempt
        resolve_conflict: Fetches the existing object after a conflict
        non_retryable: Exception types raised immediately
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        MutationOutcome with ``already_exists`` set when a conflict was resolved

    Raises:
        RetryExhaustedError: All attempts failed without a detected conflict
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: Exception | None = None
    for number in range(1, max_attempts + 1):
        try:
            value = await attempt()
        except non_retryable:
            raise
        except Exception as e:
            last_error = e
            if is_conflict(error_text(e)):
                log.info("mutation_conflict_detected", action=action, attempt=number)
                value = await resolve_conflict()
                return MutationOutcome(value=value, already_exists=True, attempts=number)
            if number == max_attempts:
                break
            log.warning(
                "retry_attempt",
                action=action,
                attempt=number,
                max_attempts=max_attempts,
                delay=delay,
                error=str(e),
            )
            await sleep(delay)
        else:
            log.info("mutation_succeeded", action=action, attempts=number)
            return MutationOutcome(value=value, already_exists=False, attempts=number)

    log.error("retry_exhausted", action=action, attempts=max_attempts, error=str(last_error))
    suggestion = getattr(last_error, "suggestion", None)
    raise RetryExhaustedError(
        f"Failed to {action} after {max_attempts} attempt(s): {last_error}",
        action=action,
        attempts=max_attempts,
        last_error=last_error,
        suggestion=suggestion,
    ) from last_error


@dataclass
class RetryableMutation(Generic[T]):
    """A non-idempotent remote call and how to reconcile it.

    Attributes:
        action: Description, e.g. ``"create pull request"``
        attempt: Performs the mutation once; raises on failure
        conflict_detector: Matches error text meaning "already exists"
        conflict_resolver: Produces the final object from existing remote
            state. Receives the object found by the existence check, or
            None when called after a reactive conflict and expected to
            re-query.
        existence_check: Optional cheap lookup returning the object or None
        max_attempts: Total attempts
        retry_delay: Seconds between attempts
    """

    action: str
    attempt: Callable[[], Awaitable[T]]
    conflict_detector: Callable[[str], bool]
    conflict_resolver: Callable[[T | None], Awaitable[T]]
    existence_check: Callable[[], Awaitable[T | None]] | None = None
    max_attempts: int = 2
    retry_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.retry_delay < 0:
            raise ValueError("retry_delay must not be negative")

    async def _precheck(self) -> MutationOutcome[T] | None:
        if self.existence_check is None:
            return None
        try:
            existing = await self.existence_check()
        except Exception as e:
            log.debug("mutation_precheck_failed", action=self.action, error=str(e))
            return None
        if existing is None:
            return None

        log.info("mutation_target_exists", action=self.action)
        try:
            value = await self.conflict_resolver(existing)
        except Exception as e:
            log.warning("mutation_reconcile_failed", action=self.action, error=str(e))
            value = existing
        return MutationOutcome(value=value, already_exists=True, attempts=0)

    async def run(self, sleep: Sleep = asyncio.sleep) -> MutationOutcome[T]:
        """Execute the mutation idempotently."""
        found = await self._precheck()
        if found is not None:
            return found

        async def requery() -> T:
            return await self.conflict_resolver(None)

        return await retry_with_reconciliation(
            self.attempt,
            action=self.action,
            max_attempts=self.max_attempts,
            delay=self.retry_delay,
            is_conflict=self.conflict_detector,
            resolve_conflict=requery,
            sleep=sleep,
        )
