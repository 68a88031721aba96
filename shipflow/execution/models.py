"""Data types produced and consumed by the command executor."""

from __future__ import annotations

import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path

from shipflow.exceptions import CommandError

CommandLike = str | Sequence[str]


def command_text(command: CommandLike) -> str:
    """Normalize a command to the text used for logging and cache keys.

    Strings are taken as-is (stripped); argument vectors are shell-joined so
    ``["git", "status"]`` and ``"git status"`` share a cache entry.
    """
    if isinstance(command, str):
        return command.strip()
    return shlex.join(command)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command invocation.

    Never mutated after construction. A successful result carries no error,
    and a timed-out result is never successful.

    Attributes:
        success: True when the process exited with status 0
        output: Captured standard output (empty when streamed)
        error: Captured standard error or a spawn failure description
        timed_out: True when the process was killed after its timeout
        exit_code: Process exit status, None if it never started or was killed
        duration: Wall-clock seconds spent
        command: Normalized command text
    """

    success: bool
    output: str = ""
    error: str | None = None
    timed_out: bool = False
    exit_code: int | None = None
    duration: float = 0.0
    command: str = ""

    def __post_init__(self) -> None:
        if self.success and self.error is not None:
            raise ValueError("A successful CommandResult cannot carry an error")
        if self.timed_out and self.success:
            raise ValueError("A timed-out CommandResult cannot be successful")

    @classmethod
    def ok(cls, output: str = "", **kwargs) -> CommandResult:
        return cls(success=True, output=output, exit_code=kwargs.pop("exit_code", 0), **kwargs)

    @classmethod
    def failure(cls, error: str, output: str = "", **kwargs) -> CommandResult:
        return cls(success=False, output=output, error=error, **kwargs)

    @classmethod
    def timeout(cls, timeout: float, output: str = "", **kwargs) -> CommandResult:
        return cls(
            success=False,
            output=output,
            error=f"Command timed out after {timeout:g}s",
            timed_out=True,
            **kwargs,
        )

    @property
    def text(self) -> str:
        """Trimmed standard output."""
        return self.output.strip()

    @property
    def combined(self) -> str:
        """Output and error text together, for pattern matching."""
        return "\n".join(part for part in (self.output, self.error or "") if part)

    def with_command(self, command: str) -> CommandResult:
        return replace(self, command=command)

    def raise_for_status(self, message: str | None = None) -> CommandResult:
        """Raise CommandError if the command failed, otherwise return self."""
        if not self.success:
            detail = (self.error or "").strip() or f"exit status {self.exit_code}"
            raise CommandError(
                message or f"Command failed: {self.command}: {detail}",
                command=self.command,
                result=self,
            )
        return self


@dataclass(frozen=True)
class CommandOptions:
    """Per-call options for the command executor.

    Attributes:
        capture_output: Capture stdout/stderr; False streams them to the terminal
        ignore_error: Do not log a non-zero exit as an error
        timeout: Seconds before the process is killed; None uses the executor default
        disable_cache: Bypass cache lookup and storage for this call
        exit_on_error: Raise SystemExit(1) when the command fails
        cwd: Working directory override
        env: Extra environment variables merged over the current environment
    """

    capture_output: bool = True
    ignore_error: bool = False
    timeout: float | None = None
    disable_cache: bool = False
    exit_on_error: bool = False
    cwd: Path | None = None
    env: Mapping[str, str] | None = None

    def merged(self, **overrides) -> CommandOptions:
        if not overrides:
            return self
        return replace(self, **overrides)


@dataclass
class CommandRecord:
    """One entry in the command history."""

    command: str
    result: CommandResult
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    log_file: Path | None = None
