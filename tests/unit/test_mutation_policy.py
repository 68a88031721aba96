"""Tests for engine/mutation.py."""

import pytest

from shipflow.engine.mutation import RetryableMutation, error_text, retry_with_reconciliation
from shipflow.exceptions import (
    AuthenticationRequiredError,
    CommandError,
    PreconditionFailedError,
    RetryExhaustedError,
)
from shipflow.execution.models import CommandResult


def _is_conflict(text):
    return "already exists" in text.lower()


class Attempts:
    """Attempt closure raising the queued errors, then returning a value."""

    def __init__(self, *errors, value="created"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class TestRetryWithReconciliation:
    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self, fake_sleep, sleeps):
        attempt = Attempts()

        outcome = await retry_with_reconciliation(
            attempt,
            action="create thing",
            max_attempts=2,
            delay=1.0,
            is_conflict=_is_conflict,
            resolve_conflict=Attempts(value="existing"),
            sleep=fake_sleep,
        )

        assert outcome.value == "created"
        assert outcome.already_exists is False
        assert outcome.attempts == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_retries_after_transient_failure(self, fake_sleep, sleeps):
        attempt = Attempts(RuntimeError("connection reset"))

        outcome = await retry_with_reconciliation(
            attempt,
            action="create thing",
            max_attempts=2,
            delay=1.5,
            is_conflict=_is_conflict,
            resolve_conflict=Attempts(value="existing"),
            sleep=fake_sleep,
        )

        assert outcome.value == "created"
        assert outcome.attempts == 2
        assert sleeps == [1.5]

    @pytest.mark.asyncio
    async def test_conflict_resolves_existing(self, fake_sleep, sleeps):
        attempt = Attempts(RuntimeError("a pull request already exists"))
        resolver = Attempts(value="existing")

        outcome = await retry_with_reconciliation(
            attempt,
            action="create thing",
            max_attempts=3,
            delay=1.0,
            is_conflict=_is_conflict,
            resolve_conflict=resolver,
            sleep=fake_sleep,
        )

        assert outcome.value == "existing"
        assert outcome.already_exists is True
        assert attempt.calls == 1
        assert resolver.calls == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_conflict_detected_in_command_output(self, fake_sleep):
        result = CommandResult.failure("exit status 1", output="pull request already exists: #7")
        attempt = Attempts(CommandError("Pull request creation failed", result=result))

        outcome = await retry_with_reconciliation(
            attempt,
            action="create thing",
            max_attempts=1,
            delay=0,
            is_conflict=_is_conflict,
            resolve_conflict=Attempts(value="existing"),
            sleep=fake_sleep,
        )

        assert outcome.already_exists is True

    @pytest.mark.asyncio
    async def test_exhaustion_carries_last_error(self, fake_sleep, sleeps):
        attempt = Attempts(RuntimeError("first"), RuntimeError("second"))

        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry_with_reconciliation(
                attempt,
                action="create thing",
                max_attempts=2,
                delay=1.0,
                is_conflict=_is_conflict,
                resolve_conflict=Attempts(),
                sleep=fake_sleep,
            )

        error = exc_info.value
        assert error.attempts == 2
        assert error.action == "create thing"
        assert str(error.last_error) == "second"
        assert error.__cause__ is error.last_error
        assert sleeps == [1.0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            AuthenticationRequiredError("not logged in", tool="gh"),
            PreconditionFailedError("head equals base"),
        ],
    )
    async def test_non_retryable_errors_propagate(self, fake_sleep, error):
        attempt = Attempts(error)

        with pytest.raises(type(error)):
            await retry_with_reconciliation(
                attempt,
                action="create thing",
                max_attempts=3,
                delay=1.0,
                is_conflict=_is_conflict,
                resolve_conflict=Attempts(),
                sleep=fake_sleep,
            )

        assert attempt.calls == 1

    @pytest.mark.asyncio
    async def test_rejects_zero_attempts(self, fake_sleep):
        with pytest.raises(ValueError):
            await retry_with_reconciliation(
                Attempts(),
                action="x",
                max_attempts=0,
                delay=0,
                is_conflict=_is_conflict,
                resolve_conflict=Attempts(),
                sleep=fake_sleep,
            )


class TestRetryableMutation:
    @pytest.mark.asyncio
    async def test_existence_check_short_circuits(self, fake_sleep):
        attempt = Attempts()
        resolved = []

        async def resolver(existing):
            resolved.append(existing)
            return f"updated {existing}"

        async def exists():
            return "pr-7"

        mutation = RetryableMutation(
            action="create pull request",
            attempt=attempt,
            conflict_detector=_is_conflict,
            conflict_resolver=resolver,
            existence_check=exists,
        )
        outcome = await mutation.run(sleep=fake_sleep)

        assert outcome.value == "updated pr-7"
        assert outcome.already_exists is True
        assert outcome.attempts == 0
        assert attempt.calls == 0
        assert resolved == ["pr-7"]

    @pytest.mark.asyncio
    async def test_failed_existence_check_falls_through(self, fake_sleep):
        attempt = Attempts()

        async def exists():
            raise RuntimeError("lookup failed")

        async def resolver(existing):
            return "existing"

        mutation = RetryableMutation(
            action="create pull request",
            attempt=attempt,
            conflict_detector=_is_conflict,
            conflict_resolver=resolver,
            existence_check=exists,
        )
        outcome = await mutation.run(sleep=fake_sleep)

        assert outcome.value == "created"
        assert attempt.calls == 1

    @pytest.mark.asyncio
    async def test_reconcile_failure_keeps_existing_object(self, fake_sleep):
        async def exists():
            return "pr-7"

        async def resolver(existing):
            raise RuntimeError("edit failed")

        mutation = RetryableMutation(
            action="create pull request",
            attempt=Attempts(),
            conflict_detector=_is_conflict,
            conflict_resolver=resolver,
            existence_check=exists,
        )
        outcome = await mutation.run(sleep=fake_sleep)

        assert outcome.value == "pr-7"
        assert outcome.already_exists is True

    @pytest.mark.asyncio
    async def test_reactive_conflict_requeries(self, fake_sleep):
        received = []

        async def resolver(existing):
            received.append(existing)
            return "requeried"

        async def missing():
            return None

        mutation = RetryableMutation(
            action="create pull request",
            attempt=Attempts(RuntimeError("Already exists")),
            conflict_detector=_is_conflict,
            conflict_resolver=resolver,
            existence_check=missing,
        )
        outcome = await mutation.run(sleep=fake_sleep)

        assert outcome.value == "requeried"
        assert outcome.already_exists is True
        assert outcome.attempts == 1
        assert received == [None]

    def test_validates_configuration(self):
        async def noop(_=None):
            return None

        with pytest.raises(ValueError):
            RetryableMutation(
                action="x", attempt=noop, conflict_detector=_is_conflict, conflict_resolver=noop, max_attempts=0
            )
        with pytest.raises(ValueError):
            RetryableMutation(
                action="x", attempt=noop, conflict_detector=_is_conflict, conflict_resolver=noop, retry_delay=-1
            )


def test_error_text_includes_command_output():
    result = CommandResult.failure("stderr text", output="stdout text")
    error = CommandError("Failed", result=result)

    text = error_text(error)

    assert "Failed" in text
    assert "stdout text" in text
    assert "stderr text" in text
