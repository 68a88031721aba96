"""Command execution layer: executor, result cache and command history.

Key Exports:
    - CommandExecutor: Blocking and awaitable command execution
    - CommandResult: Immutable outcome of one invocation
    - CommandOptions: Per-call execution options
    - ResultCache: Short-TTL memoization of read-only queries
    - CommandHistory: Recent outputs and persisted deployment logs
"""

from shipflow.execution.cache import ResultCache
from shipflow.execution.executor import CommandExecutor
from shipflow.execution.history import CommandHistory
from shipflow.execution.models import CommandOptions, CommandRecord, CommandResult

__all__ = [
    "CommandExecutor",
    "CommandHistory",
    "CommandOptions",
    "CommandRecord",
    "CommandResult",
    "ResultCache",
]
