"""Pull-request operations through the ``gh`` command-line tool.

Creation is idempotent: it goes through :class:`RetryableMutation`, with a
lookup of open pull requests for the same head/base pair as the fast path
and "already exists" error text as the authoritative conflict signal.
"""

from __future__ import annotations

import asyncio

import structlog

from shipflow.engine.mutation import MutationOutcome, RetryableMutation, Sleep
from shipflow.exceptions import AuthenticationRequiredError, CommandError, PreconditionFailedError
from shipflow.execution.executor import CommandExecutor
from shipflow.execution.models import CommandOptions, CommandResult
from shipflow.git.repository import GitRepository
from shipflow.providers import parsers
from shipflow.providers.models import PullRequest, PullRequestStatus

log = structlog.get_logger(__name__)

PR_FIELDS = "number,url,headRefName,baseRefName,title,state"
GH_TIMEOUT = 60.0
AUTH_SUGGESTION = "gh auth login"


class PullRequestManager:
    """Create, update, inspect and merge pull requests.

    Args:
        executor: Command executor
        git: Repository client, used to push the head branch before creating
        max_attempts: Create attempts
        retry_delay: Seconds between create attempts
        sleep: Awaitable sleep used between attempts
    """

    def __init__(
        self,
        executor: CommandExecutor,
        git: GitRepository,
        max_attempts: int = 2,
        retry_delay: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.executor = executor
        self.git = git
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._sleep = sleep

    async def _gh(self, *args: str, query: bool = False, quiet: bool = False) -> CommandResult:
        options = CommandOptions(ignore_error=query or quiet, disable_cache=not query, timeout=GH_TIMEOUT)
        return await self.executor.execute_async(["gh", *args], options)

    def _raise_for(self, result: CommandResult, message: str) -> None:
        if result.success:
            return
        if parsers.is_gh_auth_failure(result.combined):
            raise AuthenticationRequiredError(
                "GitHub CLI is not authenticated", tool="gh", suggestion=AUTH_SUGGESTION
            )
        raise CommandError(f"{message}: {(result.error or '').strip()}", command=result.command, result=result)

    async def check_auth(self) -> bool:
        result = await self.executor.execute_async(["gh", "auth", "status"], CommandOptions(ignore_error=True))
        return result.success

    async def require_auth(self) -> None:
        if not await self.check_auth():
            raise AuthenticationRequiredError("GitHub CLI is not authenticated", tool="gh", suggestion=AUTH_SUGGESTION)

    async def find_existing(self, head: str, base: str) -> PullRequest | None:
        """Open pull request for ``head`` into ``base``, or None.

        Raises:
            CommandError: If the lookup itself failed
            ValueError: If the output could not be parsed
        """
        result = await self._gh(
            "pr", "list", "--head", head, "--base", base, "--state", "open", "--json", PR_FIELDS, "--limit", "1",
            query=True,
        )
        self._raise_for(result, "Could not list pull requests")
        matches = [pr for pr in parsers.parse_pr_list(result.output) if pr.head in (None, head)]
        return matches[0] if matches else None

    async def view(self, ref: str) -> PullRequest:
        """Look up a pull request by number, URL or branch name."""
        result = await self._gh("pr", "view", ref, "--json", PR_FIELDS, query=True)
        self._raise_for(result, f"Could not view pull request {ref}")
        return parsers.parse_pr_view(result.output)

    async def update(self, pr: PullRequest, title: str, body: str) -> PullRequest:
        ref = str(pr.number) if pr.number is not None else (pr.url or "")
        result = await self._gh("pr", "edit", ref, "--title", title, "--body", body)
        self._raise_for(result, f"Could not update pull request {ref}")
        log.info("pull_request_updated", number=pr.number, url=pr.url)
        return PullRequest(number=pr.number, url=pr.url, head=pr.head, base=pr.base, title=title, state=pr.state)

    async def create(
        self, title: str, body: str, head: str, base: str, draft: bool = False
    ) -> MutationOutcome[PullRequest]:
        """Create a pull request, or reconcile the one that already exists.

        Raises:
            PreconditionFailedError: Missing title or head equals base
            AuthenticationRequiredError: ``gh`` is not logged in
            RetryExhaustedError: Creation kept failing without a conflict
        """
        if not title.strip():
            raise PreconditionFailedError("A pull request title is required")
        if head == base:
            raise PreconditionFailedError(
                f"Cannot open a pull request from {head} into itself",
                suggestion="git checkout -b feature/<name>",
            )
        await self.require_auth()
        await self.git.push(head)

        async def attempt() -> PullRequest:
            args = ["pr", "create", "--title", title, "--body", body, "--base", base, "--head", head]
            if draft:
                args.append("--draft")
            result = await self._gh(*args, quiet=True)
            self._raise_for(result, "Pull request creation failed")
            url = parsers.parse_pr_url(result.output)
            log.info("pull_request_created", url=url, head=head, base=base)
            return PullRequest(
                number=parsers.pr_number_from_url(url), url=url, head=head, base=base, title=title, state="OPEN"
            )

        async def resolve(existing: PullRequest | None) -> PullRequest:
            if existing is None:
                existing = await self.view(head)
            try:
                return await self.update(existing, title, body)
            except CommandError as e:
                log.warning("pull_request_update_failed", number=existing.number, error=e.message)
                return existing

        async def lookup() -> PullRequest | None:
            return await self.find_existing(head, base)

        mutation = RetryableMutation(
            action="create pull request",
            attempt=attempt,
            conflict_detector=parsers.is_pr_conflict,
            conflict_resolver=resolve,
            existence_check=lookup,
            max_attempts=self.max_attempts,
            retry_delay=self.retry_delay,
        )
        outcome = await mutation.run(sleep=self._sleep)
        if outcome.already_exists:
            log.info("pull_request_already_exists", url=outcome.value.url, head=head, base=base)
        return outcome

    async def status(self, ref: str) -> PullRequestStatus:
        result = await self._gh("pr", "view", ref, "--json", "state,mergeable,reviewDecision", query=True)
        self._raise_for(result, f"Could not read pull request {ref}")
        return parsers.parse_pr_status(result.output)

    async def merge(self, ref: str, delete_branch: bool = False) -> None:
        """Merge an open, mergeable pull request with a merge commit.

        Raises:
            PreconditionFailedError: Not open or not mergeable
        """
        status = await self.status(ref)
        if not status.is_open:
            raise PreconditionFailedError(f"Pull request {ref} is {status.state.lower()}, not open")
        if not status.is_mergeable:
            raise PreconditionFailedError(
                f"Pull request {ref} is not mergeable ({status.mergeable})",
                suggestion=f"Resolve conflicts, then: gh pr merge {ref} --merge",
            )
        args = ["pr", "merge", ref, "--merge"]
        if delete_branch:
            args.append("--delete-branch")
        result = await self._gh(*args)
        self._raise_for(result, f"Could not merge pull request {ref}")
        log.info("pull_request_merged", ref=ref)
