"""Tests for providers/github_cli.py."""

import json

import pytest
from structlog.testing import capture_logs

from shipflow.exceptions import AuthenticationRequiredError, CommandError, PreconditionFailedError, RetryExhaustedError
from shipflow.execution.models import CommandResult
from shipflow.git.repository import GitRepository
from shipflow.providers.github_cli import PullRequestManager

PR_URL = "https://github.com/acme/web/pull/7"
EXISTING = {
    "number": 7,
    "url": PR_URL,
    "headRefName": "feature/login",
    "baseRefName": "main",
    "title": "Old title",
    "state": "OPEN",
}


@pytest.fixture
def manager(fake_executor, fake_sleep):
    return PullRequestManager(fake_executor, GitRepository(fake_executor), max_attempts=2, retry_delay=1.0, sleep=fake_sleep)


class TestCreate:
    @pytest.mark.asyncio
    async def test_creates_new_pull_request(self, manager, fake_executor):
        fake_executor.respond("gh pr list", CommandResult.ok("[]"))
        fake_executor.respond("gh pr create", CommandResult.ok(f"{PR_URL}\n"))

        outcome = await manager.create("Add login", "body", head="feature/login", base="main")

        assert outcome.already_exists is False
        assert outcome.attempts == 1
        assert outcome.value.number == 7
        assert outcome.value.url == PR_URL
        assert fake_executor.called("git push -u origin feature/login")
        [create] = fake_executor.called("gh pr create")
        assert "--base main --head feature/login" in create

    @pytest.mark.asyncio
    async def test_draft_flag(self, manager, fake_executor):
        fake_executor.respond("gh pr create", CommandResult.ok(PR_URL))

        await manager.create("Add login", "body", head="feature/login", base="main", draft=True)

        assert fake_executor.called("gh pr create")[0].endswith("--draft")

    @pytest.mark.asyncio
    async def test_existing_pull_request_is_updated(self, manager, fake_executor):
        fake_executor.respond("gh pr list", CommandResult.ok(json.dumps([EXISTING])))

        outcome = await manager.create("New title", "new body", head="feature/login", base="main")

        assert outcome.already_exists is True
        assert outcome.attempts == 0
        assert outcome.value.title == "New title"
        assert outcome.value.url == PR_URL
        assert fake_executor.called("gh pr create") == []
        assert fake_executor.called("gh pr edit 7 --title 'New title' --body 'new body'")

    @pytest.mark.asyncio
    async def test_conflict_on_create_reconciles(self, manager, fake_executor, sleeps):
        fake_executor.respond("gh pr list", CommandResult.ok("[]"))
        fake_executor.respond(
            "gh pr create",
            CommandResult.failure(
                f'a pull request for branch "feature/login" into branch "main" already exists:\n{PR_URL}'
            ),
        )
        fake_executor.respond("gh pr view feature/login", CommandResult.ok(json.dumps(EXISTING)))

        outcome = await manager.create("Add login", "body", head="feature/login", base="main")

        assert outcome.already_exists is True
        assert outcome.attempts == 1
        assert outcome.value.number == 7
        assert len(fake_executor.called("gh pr create")) == 1
        assert fake_executor.called("gh pr edit 7")
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_resolved_conflict_logs_no_error(self, manager, fake_executor):
        fake_executor.respond("gh pr list", CommandResult.ok("[]"))
        fake_executor.respond(
            "gh pr create",
            CommandResult.failure('a pull request for branch "feature/login" into branch "main" already exists'),
        )
        fake_executor.respond("gh pr view feature/login", CommandResult.ok(json.dumps(EXISTING)))

        with capture_logs() as logs:
            outcome = await manager.create("Add login", "body", head="feature/login", base="main")

        assert outcome.already_exists is True
        assert [entry for entry in logs if entry["log_level"] == "error"] == []

    @pytest.mark.asyncio
    async def test_failed_update_after_conflict_keeps_existing(self, manager, fake_executor):
        fake_executor.respond("gh pr list", CommandResult.ok("[]"))
        fake_executor.respond(
            "gh pr create",
            CommandResult.failure('a pull request for branch "feature/login" into branch "main" already exists'),
        )
        fake_executor.respond("gh pr view feature/login", CommandResult.ok(json.dumps(EXISTING)))
        fake_executor.respond("gh pr edit", CommandResult.failure("GraphQL: Resource not accessible by integration"))

        outcome = await manager.create("Add login", "body", head="feature/login", base="main")

        assert outcome.already_exists is True
        assert outcome.value.number == 7
        assert outcome.value.title == "Old title"

    @pytest.mark.asyncio
    async def test_failed_view_after_conflict_propagates(self, manager, fake_executor):
        fake_executor.respond(
            "gh pr create",
            CommandResult.failure('a pull request for branch "feature/login" into branch "main" already exists'),
        )
        fake_executor.respond("gh pr view feature/login", CommandResult.failure("HTTP 502"))

        with pytest.raises(CommandError):
            await manager.create("Add login", "body", head="feature/login", base="main")


    @pytest.mark.asyncio
    async def test_lookup_failure_does_not_block_create(self, manager, fake_executor):
        fake_executor.respond("gh pr list", CommandResult.failure("HTTP 502"))
        fake_executor.respond("gh pr create", CommandResult.ok(PR_URL))

        outcome = await manager.create("Add login", "body", head="feature/login", base="main")

        assert outcome.already_exists is False

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, manager, fake_executor, sleeps):
        fake_executor.respond(
            "gh pr create", CommandResult.failure("HTTP 502: Bad Gateway"), CommandResult.ok(PR_URL)
        )

        outcome = await manager.create("Add login", "body", head="feature/login", base="main")

        assert outcome.attempts == 2
        assert sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, manager, fake_executor):
        fake_executor.respond("gh pr create", CommandResult.failure("HTTP 502: Bad Gateway"))

        with pytest.raises(RetryExhaustedError) as exc_info:
            await manager.create("Add login", "body", head="feature/login", base="main")

        assert exc_info.value.attempts == 2
        assert len(fake_executor.called("gh pr create")) == 2

    @pytest.mark.asyncio
    async def test_requires_authentication(self, manager, fake_executor):
        fake_executor.respond("gh auth status", CommandResult.failure("You are not logged into any GitHub hosts"))

        with pytest.raises(AuthenticationRequiredError) as exc_info:
            await manager.create("Add login", "body", head="feature/login", base="main")

        assert exc_info.value.suggestion == "gh auth login"
        assert fake_executor.called("git push") == []

    @pytest.mark.asyncio
    async def test_head_equal_to_base(self, manager, fake_executor):
        with pytest.raises(PreconditionFailedError):
            await manager.create("Add login", "body", head="main", base="main")

        assert fake_executor.calls == []

    @pytest.mark.asyncio
    async def test_blank_title(self, manager):
        with pytest.raises(PreconditionFailedError):
            await manager.create("  ", "body", head="feature/login", base="main")


class TestMerge:
    @pytest.mark.asyncio
    async def test_merges_mergeable_pull_request(self, manager, fake_executor):
        fake_executor.respond(
            "gh pr view 7", CommandResult.ok('{"state": "OPEN", "mergeable": "MERGEABLE", "reviewDecision": "APPROVED"}')
        )

        await manager.merge("7", delete_branch=True)

        assert fake_executor.called("gh pr merge 7 --merge --delete-branch")

    @pytest.mark.asyncio
    async def test_refuses_conflicting_pull_request(self, manager, fake_executor):
        fake_executor.respond("gh pr view 7", CommandResult.ok('{"state": "OPEN", "mergeable": "CONFLICTING"}'))

        with pytest.raises(PreconditionFailedError, match="not mergeable"):
            await manager.merge("7")

        assert fake_executor.called("gh pr merge") == []

    @pytest.mark.asyncio
    async def test_refuses_closed_pull_request(self, manager, fake_executor):
        fake_executor.respond("gh pr view 7", CommandResult.ok('{"state": "MERGED", "mergeable": "UNKNOWN"}'))

        with pytest.raises(PreconditionFailedError, match="merged"):
            await manager.merge("7")


@pytest.mark.asyncio
async def test_status(manager, fake_executor):
    fake_executor.respond(
        "gh pr view 7", CommandResult.ok('{"state": "OPEN", "mergeable": "MERGEABLE", "reviewDecision": "REVIEW_REQUIRED"}')
    )

    status = await manager.status("7")

    assert status.review_decision == "REVIEW_REQUIRED"


@pytest.mark.asyncio
async def test_find_existing_ignores_other_heads(manager, fake_executor):
    fake_executor.respond("gh pr list", CommandResult.ok(json.dumps([{**EXISTING, "headRefName": "feature/other"}])))

    assert await manager.find_existing("feature/login", "main") is None
