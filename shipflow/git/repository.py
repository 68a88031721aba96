"""Named git queries and mutations built on the command executor.

Queries go through the result cache. After any mutation made through this
client, queries bypass the cache for one TTL window: any cached answer still
fresh at that point predates the mutation and must not be observed.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import structlog

from shipflow.exceptions import PreconditionFailedError
from shipflow.execution.executor import CommandExecutor
from shipflow.execution.models import CommandOptions, CommandResult
from shipflow.git import parser
from shipflow.git.models import StatusEntry

log = structlog.get_logger(__name__)

PUSH_TIMEOUT = 120.0
FETCH_TIMEOUT = 30.0
SCRATCH_INDEX = "shipflow-index"


class GitRepository:
    """Git operations for the working copy the workflow runs in.

    Args:
        executor: Command executor
        remote: Remote name used for push and fetch
        cwd: Repository directory; the executor default when None
    """

    def __init__(self, executor: CommandExecutor, remote: str = "origin", cwd: Path | None = None) -> None:
        self.executor = executor
        self.remote = remote
        self.cwd = cwd
        self._last_mutation: float | None = None

    def _query_options(self, fresh: bool = False) -> CommandOptions:
        cache = self.executor.cache
        recently_mutated = (
            cache is not None and self._last_mutation is not None and cache.now() - self._last_mutation < cache.ttl
        )
        return CommandOptions(ignore_error=True, disable_cache=fresh or recently_mutated, cwd=self.cwd)

    async def _query(self, *args: str, fresh: bool = False) -> CommandResult:
        return await self.executor.execute_async(["git", *args], self._query_options(fresh))

    async def _mutate(
        self,
        *args: str,
        timeout: float | None = None,
        message: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        result = await self.executor.execute_async(
            ["git", *args], CommandOptions(timeout=timeout, disable_cache=True, cwd=self.cwd, env=env)
        )
        if self.executor.cache is not None:
            self._last_mutation = self.executor.cache.now()
        return result.raise_for_status(message)

    async def current_branch(self, fresh: bool = False) -> str | None:
        """Current branch name, or None when detached or not in a repository."""
        result = await self._query("branch", "--show-current", fresh=fresh)
        if result.success:
            branch = parser.parse_current_branch(result.output)
            if branch:
                return branch
        fallback = await self._query("rev-parse", "--abbrev-ref", "HEAD", fresh=fresh)
        if fallback.success:
            return parser.parse_current_branch(fallback.output)
        return None

    async def require_branch(self, fresh: bool = False) -> str:
        branch = await self.current_branch(fresh=fresh)
        if branch is None:
            raise PreconditionFailedError(
                "Could not determine the current git branch",
                suggestion="Run inside a git repository with a branch checked out: git checkout main",
            )
        return branch

    async def status_entries(self, fresh: bool = False) -> list[StatusEntry]:
        result = await self._query("status", "--porcelain", fresh=fresh)
        result.raise_for_status("Could not read the working tree status")
        return parser.parse_status(result.output)

    async def changed_files(self, base: str) -> list[str]:
        """Files changed on this branch relative to its merge base with ``base``."""
        result = await self._query("diff", "--name-only", f"{base}...HEAD")
        return parser.parse_lines(result.output) if result.success else []

    async def commit_subjects(self, base: str) -> list[str]:
        result = await self._query("log", "--pretty=format:%s", f"{base}..HEAD")
        return parser.parse_lines(result.output) if result.success else []

    async def branch_exists(self, name: str) -> bool:
        result = await self._query("rev-parse", "--verify", "--quiet", f"refs/heads/{name}", fresh=True)
        return result.success

    async def commits_behind(self, branch: str) -> int | None:
        """Commits on ``<remote>/<branch>`` missing locally, None if unknown."""
        fetched = await self.executor.execute_async(
            ["git", "fetch", self.remote, branch],
            CommandOptions(ignore_error=True, timeout=FETCH_TIMEOUT, cwd=self.cwd),
        )
        if not fetched.success:
            return None
        result = await self._query("rev-list", "--count", f"{branch}..{self.remote}/{branch}", fresh=True)
        return parser.parse_count(result.output) if result.success else None

    async def is_tracked(self, path: str) -> bool:
        result = await self._query("ls-files", "--error-unmatch", "--", path, fresh=True)
        return result.success

    async def create_branch(self, name: str) -> None:
        await self._mutate("checkout", "-b", name, message=f"Failed to create branch {name}")
        log.info("branch_created", branch=name)

    async def checkout(self, name: str) -> None:
        await self._mutate("checkout", name, message=f"Failed to switch to branch {name}")
        log.info("branch_switched", branch=name)

    async def stage_all(self) -> None:
        await self._mutate("add", "-A", message="Failed to stage changes")

    async def stage(self, paths: Sequence[str]) -> None:
        await self._mutate("add", "-A", "--", *paths, message="Failed to stage changes")

    async def git_path(self, name: str) -> Path:
        """Location of ``name`` inside the git directory."""
        result = await self._query("rev-parse", "--git-path", name, fresh=True)
        result.raise_for_status("Could not locate the git directory")
        path = Path(result.text)
        return path if path.is_absolute() or self.cwd is None else self.cwd / path

    async def commit(self, message: str, add: Sequence[str] = (), remove: Sequence[str] = ()) -> None:
        """Commit the index, or only the listed path changes.

        With ``add`` or ``remove`` the commit is built in a scratch index
        read from HEAD: ``remove`` paths are dropped and ``add`` paths are
        taken from the working tree. Anything else staged in the real index
        stays staged and is not committed.
        """
        if add or remove:
            await self._commit_paths(message, add, remove)
        else:
            await self._mutate("commit", "-m", message, message="Failed to commit changes")
        log.info("changes_committed", message=message, paths=[*add, *remove])

    async def _commit_paths(self, message: str, add: Sequence[str], remove: Sequence[str]) -> None:
        index = await self.git_path(SCRATCH_INDEX)
        env = {"GIT_INDEX_FILE": str(index)}
        try:
            await self._mutate("read-tree", "HEAD", env=env, message="Failed to read HEAD")
            if remove:
                await self._mutate(
                    "rm", "--cached", "-r", "--ignore-unmatch", "--", *remove, env=env, message="Failed to untrack files"
                )
            if add:
                await self._mutate("add", "-A", "--", *add, env=env, message="Failed to stage changes")
            await self._mutate("commit", "-m", message, env=env, message="Failed to commit changes")
        finally:
            index.unlink(missing_ok=True)

    async def commit_all(self, message: str) -> None:
        await self.stage_all()
        await self.commit(message)

    async def stash(self, message: str) -> None:
        await self._mutate("stash", "push", "--include-untracked", "-m", message, message="Failed to stash changes")
        log.info("changes_stashed", message=message)

    async def stash_apply(self) -> None:
        await self._mutate("stash", "apply", message="Failed to apply stashed changes")

    async def push(self, branch: str, set_upstream: bool = True) -> None:
        args = ["push", "-u", self.remote, branch] if set_upstream else ["push", self.remote, branch]
        await self._mutate(*args, timeout=PUSH_TIMEOUT, message=f"Failed to push {branch} to {self.remote}")
        log.info("branch_pushed", branch=branch, remote=self.remote)

    async def untrack(self, paths: Sequence[str]) -> None:
        if not paths:
            return
        await self._mutate("rm", "--cached", "-r", "--ignore-unmatch", "--", *paths, message="Failed to untrack files")
        log.info("files_untracked", paths=list(paths))
