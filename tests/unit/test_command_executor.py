"""Tests for execution/executor.py."""

import asyncio
import time

import pytest

from shipflow.exceptions import CommandError
from shipflow.execution.cache import ResultCache
from shipflow.execution.executor import CommandExecutor
from shipflow.execution.models import CommandOptions, CommandResult


class TestExecute:
    """Blocking execution against real processes."""

    def test_captures_output(self):
        result = CommandExecutor().execute("echo hello")

        assert result.success is True
        assert result.text == "hello"
        assert result.exit_code == 0
        assert result.error is None
        assert result.command == "echo hello"

    def test_argument_vector_runs_without_shell(self):
        result = CommandExecutor().execute(["echo", "a b"])

        assert result.success is True
        assert result.text == "a b"
        assert result.command == "echo 'a b'"

    def test_non_zero_exit_is_a_failed_result(self):
        result = CommandExecutor().execute("echo oops >&2; exit 3")

        assert result.success is False
        assert result.exit_code == 3
        assert result.error == "oops"
        assert result.timed_out is False

    def test_failure_without_stderr_describes_status(self):
        result = CommandExecutor().execute("exit 4")

        assert result.error == "Command exited with status 4"

    def test_missing_executable_does_not_raise(self):
        result = CommandExecutor().execute(["shipflow-no-such-binary-xyz"])

        assert result.success is False
        assert result.error.startswith("Failed to start command")
        assert result.exit_code is None

    def test_timeout_kills_process(self):
        started = time.monotonic()
        result = CommandExecutor().execute("sleep 5", timeout=0.2)

        assert result.success is False
        assert result.timed_out is True
        assert "timed out" in result.error
        assert time.monotonic() - started < 4

    def test_timeout_keeps_partial_output(self):
        result = CommandExecutor().execute("echo partial; sleep 5", timeout=0.5)

        assert result.timed_out is True
        assert result.text == "partial"

    def test_default_timeout_applies(self):
        result = CommandExecutor(default_timeout=0.2).execute("sleep 5")

        assert result.timed_out is True

    def test_environment_is_merged(self):
        result = CommandExecutor().execute("echo $SHIPFLOW_TEST_VALUE", env={"SHIPFLOW_TEST_VALUE": "merged"})

        assert result.text == "merged"

    def test_working_directory(self, tmp_path):
        (tmp_path / "marker.txt").write_text("x")

        result = CommandExecutor(cwd=tmp_path).execute("ls")

        assert "marker.txt" in result.output

    def test_exit_on_error_raises_system_exit(self):
        with pytest.raises(SystemExit) as exc_info:
            CommandExecutor().execute("exit 2", exit_on_error=True)

        assert exc_info.value.code == 1

    def test_exit_on_error_ignored_on_success(self):
        result = CommandExecutor().execute("true", CommandOptions(exit_on_error=True))

        assert result.success is True

    def test_every_spawn_is_recorded(self):
        executor = CommandExecutor()

        executor.execute("echo one")
        executor.execute("exit 1")

        records = executor.history.recent()
        assert [r.command for r in records] == ["exit 1", "echo one"]
        assert records[0].result.success is False


class TestCaching:
    """Interaction between the executor and the result cache."""

    def test_cacheable_command_spawns_once(self):
        executor = CommandExecutor(cache=ResultCache(patterns=[r"^echo "]))

        first = executor.execute("echo cached")
        second = executor.execute("echo cached")

        assert first == second
        assert executor.spawn_count == 1

    def test_disable_cache_always_spawns(self):
        executor = CommandExecutor(cache=ResultCache(patterns=[r"^echo "]))

        executor.execute("echo cached")
        executor.execute("echo cached", disable_cache=True)

        assert executor.spawn_count == 2

    def test_streamed_output_is_never_cached(self):
        executor = CommandExecutor(cache=ResultCache(patterns=[r"^true$"]))

        executor.execute("true", capture_output=False)
        executor.execute("true", capture_output=False)

        assert executor.spawn_count == 2

    def test_non_cacheable_command_always_spawns(self):
        executor = CommandExecutor(cache=ResultCache())

        executor.execute("echo not-in-allow-list")
        executor.execute("echo not-in-allow-list")

        assert executor.spawn_count == 2

    def test_failed_results_are_not_cached(self):
        executor = CommandExecutor(cache=ResultCache(patterns=[r"^exit "]))

        executor.execute("exit 1")
        executor.execute("exit 1")

        assert executor.spawn_count == 2


class TestExecuteAsync:
    """Awaitable execution."""

    @pytest.mark.asyncio
    async def test_captures_output(self):
        result = await CommandExecutor().execute_async(["echo", "async"])

        assert result.success is True
        assert result.text == "async"

    @pytest.mark.asyncio
    async def test_timeout(self):
        result = await CommandExecutor().execute_async("sleep 5", CommandOptions(timeout=0.2))

        assert result.timed_out is True
        assert result.success is False

    @pytest.mark.asyncio
    async def test_timeout_keeps_partial_output(self):
        result = await CommandExecutor().execute_async("echo partial; sleep 5", CommandOptions(timeout=0.5))

        assert result.timed_out is True
        assert result.text == "partial"

    @pytest.mark.asyncio
    async def test_missing_executable(self):
        result = await CommandExecutor().execute_async(["shipflow-no-such-binary-xyz"])

        assert result.success is False
        assert "Failed to start command" in result.error

    @pytest.mark.asyncio
    async def test_concurrent_identical_queries_share_one_process(self):
        executor = CommandExecutor(cache=ResultCache(patterns=[r"^echo "]))

        first, second = await asyncio.gather(
            executor.execute_async("echo shared"),
            executor.execute_async("echo shared"),
        )

        assert first.text == second.text == "shared"
        assert executor.spawn_count == 1

    @pytest.mark.asyncio
    async def test_extract_from_command(self):
        value = await CommandExecutor().extract_from_command("echo 'version: 1.2.3'", r"version: (\S+)")

        assert value == "1.2.3"

    @pytest.mark.asyncio
    async def test_extract_from_command_without_match(self):
        value = await CommandExecutor().extract_from_command("echo nothing", r"version: (\S+)")

        assert value is None

    @pytest.mark.asyncio
    async def test_extract_from_failed_command(self):
        value = await CommandExecutor().extract_from_command("echo 'version: 1' && exit 1", r"version: (\S+)")

        assert value is None


class TestCommandResult:
    """Invariants of the result type."""

    def test_successful_result_cannot_carry_error(self):
        with pytest.raises(ValueError):
            CommandResult(success=True, error="boom")

    def test_timed_out_result_cannot_succeed(self):
        with pytest.raises(ValueError):
            CommandResult(success=True, timed_out=True)

    def test_raise_for_status(self):
        result = CommandResult.failure("fatal: not a git repository", exit_code=128, command="git status")

        with pytest.raises(CommandError) as exc_info:
            result.raise_for_status()

        assert exc_info.value.command == "git status"
        assert exc_info.value.result is result
        assert "not a git repository" in exc_info.value.message

    def test_combined_joins_output_and_error(self):
        result = CommandResult.failure("err", output="out")

        assert result.combined == "out\nerr"
