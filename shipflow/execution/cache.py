"""Short-TTL cache for read-only command results.

The workflow re-asks the same questions (current branch, is the tree dirty)
several times within a few hundred milliseconds. Memoizing those answers for
a few seconds removes redundant process spawns without letting an answer
survive across the multi-second gaps between operator prompts.

Key Features:
    - Static allow-list classifier: only read-only command shapes are cached
    - Only successful results are stored
    - Injectable clock for deterministic expiry
    - Concurrent async lookups of the same key share one computation
    - Hit/miss statistics

Example:
    >>> cache = ResultCache(ttl_seconds=3.0)
    >>> cache.is_cacheable("git branch --show-current")
    True
    >>> cache.is_cacheable("git commit -m wip")
    False
    >>> result = cache.get_or_compute("git status --porcelain", run_it)

Thread Safety:
    Designed for single-threaded cooperative use within one process. The
    cache is never shared across processes.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

import structlog

from shipflow.execution.models import CommandResult

log = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS = 3.0

# Read-only query shapes. Anything not matched here is never cached.
CACHEABLE_PATTERNS: tuple[str, ...] = (
    r"^git branch --show-current$",
    r"^git rev-parse --abbrev-ref HEAD$",
    r"^git rev-parse --show-toplevel$",
    r"^git status(\s|$)",
    r"^git diff(\s|$)",
    r"^git log(\s|$)",
    r"^git remote get-url\s",
    r"^gh auth status(\s|$)",
    r"^firebase login:list(\s|$)",
)


@dataclass(frozen=True)
class CacheEntry:
    """A memoized command result, valid while ``now - timestamp < ttl``."""

    command: str
    result: CommandResult
    timestamp: float

    def is_fresh(self, now: float, ttl: float) -> bool:
        return now - self.timestamp < ttl


class ResultCache:
    """TTL cache keyed by normalized command text.

    Args:
        ttl_seconds: Lifetime of an entry
        patterns: Regexes describing cacheable commands
        clock: Monotonic time source, replaceable in tests
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        patterns: Iterable[str] = CACHEABLE_PATTERNS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl = ttl_seconds
        self._patterns = [re.compile(p) for p in patterns]
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Future[CommandResult]] = {}
        self._hits = 0
        self._misses = 0

    @property
    def ttl(self) -> float:
        return self._ttl

    def now(self) -> float:
        return self._clock()

    def is_cacheable(self, command: str) -> bool:
        """Return True if the command matches the read-only allow-list."""
        text = command.strip()
        return any(p.search(text) for p in self._patterns)

    def get(self, command: str) -> CommandResult | None:
        """Return a fresh cached result, dropping it if expired."""
        entry = self._entries.get(command)
        if entry is None:
            self._misses += 1
            log.debug("cache_miss", command=command)
            return None
        if entry.is_fresh(self._clock(), self._ttl):
            self._hits += 1
            log.debug("cache_hit", command=command)
            return entry.result
        del self._entries[command]
        self._misses += 1
        log.debug("cache_expired", command=command)
        return None

    def put(self, command: str, result: CommandResult) -> bool:
        """Store a result if the command is cacheable and succeeded."""
        if not result.success or not self.is_cacheable(command):
            return False
        self._entries[command] = CacheEntry(command=command, result=result, timestamp=self._clock())
        log.debug("cache_set", command=command)
        return True

    def get_or_compute(self, command: str, compute: Callable[[], CommandResult]) -> CommandResult:
        """Return the cached result or compute, store and return a new one.

        Non-cacheable commands always call ``compute``.
        """
        if not self.is_cacheable(command):
            return compute()
        cached = self.get(command)
        if cached is not None:
            return cached
        result = compute()
        self.put(command, result)
        return result

    async def get_or_compute_async(
        self, command: str, compute: Callable[[], Awaitable[CommandResult]]
    ) -> CommandResult:
        """Awaitable variant of :meth:`get_or_compute`.

        Concurrent callers asking for the same cacheable command while the
        first computation is still running await that computation instead of
        spawning their own process.
        """
        if not self.is_cacheable(command):
            return await compute()
        cached = self.get(command)
        if cached is not None:
            return cached

        pending = self._inflight.get(command)
        if pending is not None:
            log.debug("cache_join_inflight", command=command)
            return await asyncio.shield(pending)

        future: asyncio.Future[CommandResult] = asyncio.get_running_loop().create_future()
        self._inflight[command] = future
        try:
            result = await compute()
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unobserved failure is not reported at GC.
            future.exception()
            raise
        except BaseException:
            future.cancel()
            raise
        else:
            self.put(command, result)
            future.set_result(result)
            return result
        finally:
            self._inflight.pop(command, None)

    def clear(self) -> int:
        """Drop all entries. Called once at workflow teardown."""
        count = len(self._entries)
        self._entries.clear()
        log.debug("cache_cleared", entries_cleared=count)
        return count

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "size": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total else 0.0,
            "ttl_seconds": self._ttl,
        }
