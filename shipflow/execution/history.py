"""Recent command outputs and persisted deployment command logs.

The executor records every invocation here. Deployment, channel and preview
commands are additionally written to ``<temp>/command-logs`` so that preview
URLs can be recovered after a run that reported failure.
"""

from __future__ import annotations

import re
from collections import deque
from collections.abc import Callable, Iterator
from datetime import datetime
from pathlib import Path

import structlog

from shipflow.execution.models import CommandRecord, CommandResult

log = structlog.get_logger(__name__)

MAX_RECORDS = 100
LOG_NAME_MAX = 50

_PERSIST_PATTERN = re.compile(r"deploy|hosting:channel|preview", re.IGNORECASE)
_SLUG_PATTERN = re.compile(r"[^a-zA-Z0-9]")
_LOG_NAME_PATTERN = re.compile(r"deploy|hosting-channel|preview", re.IGNORECASE)

HistoryFilter = str | re.Pattern[str] | Callable[[CommandRecord], bool] | None


def log_file_name(command: str, timestamp: datetime) -> str:
    """Build ``{timestamp}-{slug}.log`` for a command.

    The slug replaces each non-alphanumeric character with ``-`` and is cut
    to 50 characters.
    """
    slug = _SLUG_PATTERN.sub("-", command)[:LOG_NAME_MAX]
    stamp = timestamp.strftime("%Y-%m-%dT%H-%M-%S-%f")
    return f"{stamp}-{slug}.log"


def format_log(record: CommandRecord) -> str:
    result = record.result
    return (
        f"COMMAND: {record.command}\n"
        f"TIMESTAMP: {record.timestamp.isoformat()}\n"
        f"DURATION: {result.duration:.2f}s\n"
        f"SUCCESS: {str(result.success).lower()}\n"
        f"\n--- OUTPUT ---\n{result.output}\n"
        f"\n--- ERROR ---\n{result.error or ''}\n"
    )


class CommandHistory:
    """Bounded history of command invocations.

    Args:
        log_dir: Directory for persisted deployment logs; None disables persistence
        max_records: Number of records retained in memory
    """

    def __init__(self, log_dir: Path | None = None, max_records: int = MAX_RECORDS) -> None:
        self._records: deque[CommandRecord] = deque(maxlen=max_records)
        self._log_dir = log_dir

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[CommandRecord]:
        return iter(self._records)

    @staticmethod
    def should_persist(command: str) -> bool:
        return bool(_PERSIST_PATTERN.search(command))

    def record(self, command: str, result: CommandResult) -> CommandRecord:
        entry = CommandRecord(command=command, result=result)
        if self._log_dir is not None and self.should_persist(command):
            entry.log_file = self._persist(entry)
        self._records.append(entry)
        return entry

    def _persist(self, entry: CommandRecord) -> Path | None:
        assert self._log_dir is not None
        path = self._log_dir / log_file_name(entry.command, entry.timestamp)
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(format_log(entry))
        except OSError as e:
            log.warning("command_log_write_failed", path=str(path), error=str(e))
            return None
        log.debug("command_log_written", path=str(path))
        return path

    def recent(self, match: HistoryFilter = None) -> list[CommandRecord]:
        """Return records, newest first, optionally filtered.

        Args:
            match: Substring of the command, compiled regex searched in the
                command, or a predicate over the record
        """
        records = list(reversed(self._records))
        if match is None:
            return records
        if isinstance(match, str):
            return [r for r in records if match in r.command]
        if isinstance(match, re.Pattern):
            return [r for r in records if match.search(r.command)]
        return [r for r in records if match(r)]

    def find_deployment_logs(self) -> list[Path]:
        """Persisted deployment logs, newest first by modification time."""
        if self._log_dir is None or not self._log_dir.is_dir():
            return []
        logs = [p for p in self._log_dir.glob("*.log") if _LOG_NAME_PATTERN.search(p.name)]
        return sorted(logs, key=lambda p: p.stat().st_mtime, reverse=True)


def read_log_output(path: Path) -> str:
    """Return the OUTPUT and ERROR sections of a persisted log."""
    try:
        text = path.read_text()
    except OSError as e:
        log.debug("command_log_read_failed", path=str(path), error=str(e))
        return ""
    marker = "--- OUTPUT ---"
    index = text.find(marker)
    return text[index + len(marker):] if index >= 0 else text
