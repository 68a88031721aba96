"""Blocking and awaitable execution of external commands.

Every invocation returns a :class:`CommandResult`; ordinary failures (non-zero
exit, timeout, missing executable) never raise. The caller decides whether to
continue, retry or stop.

This module offers:
    - CommandExecutor.execute: blocking, for simple sequential call sites
    - CommandExecutor.execute_async: awaitable, used by the workflow engine

Key Features:
    - Capture or stream-through output
    - Per-call timeout; the whole process group is killed on expiry
    - Transparent use of the read-only :class:`ResultCache`
    - Every spawned command is recorded in :class:`CommandHistory`
    - ``exit_on_error`` for scripts that cannot continue after a failure

Example:
    >>> executor = CommandExecutor(cache=ResultCache())
    >>> result = executor.execute("git branch --show-current")
    >>> if result.success:
    ...     print(result.text)
    >>> result = await executor.execute_async(
    ...     ["git", "push", "-u", "origin", "feature/x"],
    ...     CommandOptions(timeout=60),
    ... )

Thread Safety:
    Each call spawns an independent process. The cache and history are plain
    in-process structures meant for one workflow at a time.
"""

from __future__ import annotations

import asyncio
import os
import re
import signal
import subprocess
import time
from collections.abc import Callable
from pathlib import Path

import structlog

from shipflow.execution.cache import ResultCache
from shipflow.execution.history import CommandHistory
from shipflow.execution.models import CommandLike, CommandOptions, CommandResult, command_text

log = structlog.get_logger(__name__)


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")


async def _drain(stream: asyncio.StreamReader | None, sink: bytearray) -> None:
    """Read ``stream`` to EOF into ``sink`` so output read before a timeout is kept."""
    if stream is None:
        return
    while True:
        chunk = await stream.read(65536)
        if not chunk:
            return
        sink.extend(chunk)


def _kill_process_group(pid: int) -> None:
    if not hasattr(os, "killpg"):
        return
    try:
        os.killpg(pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


class CommandExecutor:
    """Run external commands and return structured results.

    Args:
        cache: Result cache for read-only queries; None disables caching
        history: Command history; a fresh in-memory one is created if omitted
        cwd: Default working directory
        default_timeout: Timeout applied when a call does not set one
        clock: Monotonic time source used for durations
    """

    def __init__(
        self,
        cache: ResultCache | None = None,
        history: CommandHistory | None = None,
        cwd: Path | None = None,
        default_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cache = cache
        self.history = history if history is not None else CommandHistory()
        self.cwd = cwd
        self.default_timeout = default_timeout
        self._clock = clock
        self.spawn_count = 0

    def _resolve(self, options: CommandOptions | None, overrides: dict) -> CommandOptions:
        return (options or CommandOptions()).merged(**overrides)

    def _use_cache(self, key: str, options: CommandOptions) -> bool:
        return (
            self.cache is not None
            and options.capture_output
            and not options.disable_cache
            and self.cache.is_cacheable(key)
        )

    def _environment(self, options: CommandOptions) -> dict[str, str] | None:
        if not options.env:
            return None
        return {**os.environ, **options.env}

    def _timeout(self, options: CommandOptions) -> float | None:
        return options.timeout if options.timeout is not None else self.default_timeout

    def execute(self, command: CommandLike, options: CommandOptions | None = None, **overrides) -> CommandResult:
        """Run a command to completion, blocking the caller.

        Args:
            command: Shell string, or argument vector executed without a shell
            options: Execution options
            **overrides: Individual CommandOptions fields, e.g. ``timeout=5``

        Returns:
            The structured result. Never raises for command failure unless
            ``exit_on_error`` is set.
        """
        opts = self._resolve(options, overrides)
        key = command_text(command)
        if self._use_cache(key, opts):
            assert self.cache is not None
            result = self.cache.get_or_compute(key, lambda: self._spawn(command, key, opts))
        else:
            result = self._spawn(command, key, opts)
        return self._finish(key, result, opts)

    async def execute_async(
        self, command: CommandLike, options: CommandOptions | None = None, **overrides
    ) -> CommandResult:
        """Awaitable variant of :meth:`execute`."""
        opts = self._resolve(options, overrides)
        key = command_text(command)
        if self._use_cache(key, opts):
            assert self.cache is not None
            result = await self.cache.get_or_compute_async(key, lambda: self._spawn_async(command, key, opts))
        else:
            result = await self._spawn_async(command, key, opts)
        return self._finish(key, result, opts)

    async def extract_from_command(
        self, command: CommandLike, pattern: str | re.Pattern[str], options: CommandOptions | None = None
    ) -> str | None:
        """Run a command and return the first capture group found in its output.

        Returns:
            Group 1 of the first match (stripped), or None when the command
            failed or nothing matched.
        """
        result = await self.execute_async(command, options, ignore_error=True)
        if not result.success:
            return None
        match = re.search(pattern, result.output)
        if match is None or match.lastindex is None:
            return None
        return match.group(1).strip()

    def _spawn(self, command: CommandLike, key: str, opts: CommandOptions) -> CommandResult:
        timeout = self._timeout(opts)
        started = self._clock()
        self.spawn_count += 1
        log.debug("command_started", command=key, timeout=timeout)

        try:
            process = subprocess.Popen(
                command,
                shell=isinstance(command, str),
                cwd=opts.cwd or self.cwd,
                env=self._environment(opts),
                stdout=subprocess.PIPE if opts.capture_output else None,
                stderr=subprocess.PIPE if opts.capture_output else None,
                start_new_session=opts.capture_output,
            )
        except OSError as e:
            result = CommandResult.failure(f"Failed to start command: {e}", command=key)
            return self._record(key, result)

        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            if opts.capture_output:
                _kill_process_group(process.pid)
            process.kill()
            stdout, stderr = process.communicate()
            result = CommandResult.timeout(
                timeout or 0.0, output=_decode(stdout), duration=self._clock() - started, command=key
            )
            return self._record(key, result)

        result = self._build(key, process.returncode, stdout, stderr, self._clock() - started)
        return self._record(key, result)

    async def _spawn_async(self, command: CommandLike, key: str, opts: CommandOptions) -> CommandResult:
        timeout = self._timeout(opts)
        started = self._clock()
        self.spawn_count += 1
        log.debug("command_started", command=key, timeout=timeout)

        stream = asyncio.subprocess.PIPE if opts.capture_output else None
        try:
            if isinstance(command, str):
                process = await asyncio.create_subprocess_shell(
                    command,
                    cwd=opts.cwd or self.cwd,
                    env=self._environment(opts),
                    stdout=stream,
                    stderr=stream,
                    start_new_session=opts.capture_output,
                )
            else:
                process = await asyncio.create_subprocess_exec(
                    *command,
                    cwd=opts.cwd or self.cwd,
                    env=self._environment(opts),
                    stdout=stream,
                    stderr=stream,
                    start_new_session=opts.capture_output,
                )
        except OSError as e:
            result = CommandResult.failure(f"Failed to start command: {e}", command=key)
            return self._record(key, result)

        stdout, stderr = bytearray(), bytearray()
        completion = asyncio.gather(
            _drain(process.stdout, stdout), _drain(process.stderr, stderr), process.wait()
        )
        try:
            await asyncio.wait_for(asyncio.shield(completion), timeout=timeout)
        except asyncio.CancelledError:
            completion.cancel()
            raise
        except TimeoutError:
            if opts.capture_output:
                _kill_process_group(process.pid)
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await completion
            result = CommandResult.timeout(
                timeout or 0.0, output=_decode(bytes(stdout)), duration=self._clock() - started, command=key
            )
            return self._record(key, result)

        result = self._build(key, process.returncode, bytes(stdout), bytes(stderr), self._clock() - started)
        return self._record(key, result)

    def _build(
        self, key: str, returncode: int | None, stdout: bytes | None, stderr: bytes | None, duration: float
    ) -> CommandResult:
        out = _decode(stdout)
        err = _decode(stderr)
        if returncode == 0:
            return CommandResult.ok(out, duration=duration, command=key)
        return CommandResult.failure(
            err.strip() or f"Command exited with status {returncode}",
            output=out,
            exit_code=returncode,
            duration=duration,
            command=key,
        )

    def _record(self, key: str, result: CommandResult) -> CommandResult:
        self.history.record(key, result)
        return result

    def _finish(self, key: str, result: CommandResult, opts: CommandOptions) -> CommandResult:
        if result.success:
            log.debug("command_succeeded", command=key, duration=round(result.duration, 3))
            return result

        if opts.ignore_error:
            log.debug("command_failed_ignored", command=key, exit_code=result.exit_code)
        else:
            log.error(
                "command_failed",
                command=key,
                exit_code=result.exit_code,
                timed_out=result.timed_out,
                error=result.error,
            )

        if opts.exit_on_error:
            raise SystemExit(1)
        return result
