"""CLI entry point for shipflow."""

import asyncio
import sys
from collections.abc import Awaitable, Callable
from typing import Any

import click
import structlog

from shipflow.config.settings import ShipflowSettings, load_settings
from shipflow.engine.context import WorkflowContext
from shipflow.engine.driver import WorkflowDriver, WorkflowOptions
from shipflow.engine.hygiene import run_repo_hygiene
from shipflow.engine.parallel import settle_parallel
from shipflow.engine.recovery import recover_preview_urls
from shipflow.exceptions import ConfigurationError, PreconditionFailedError, ShipflowError
from shipflow.providers.parsers import generate_channel_id
from shipflow.utils import console
from shipflow.utils.interactive import ConsolePrompter
from shipflow.utils.logging_config import configure_logging

log = structlog.get_logger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def _context(settings: ShipflowSettings, operation: str, options: dict[str, Any] | None = None) -> WorkflowContext:
    return WorkflowContext.create(settings, ConsolePrompter(), operation_name=operation, options=options)


def _execute(name: str, action: Callable[[], Awaitable[int]]) -> None:
    """Run an async command body and translate the outcome into an exit code."""
    try:
        code = asyncio.run(action())
    except ShipflowError as e:
        console.error(e.message, e.suggestion)
        log.debug(f"{name}_error", exc_info=True)
        sys.exit(EXIT_FAILURE)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        log.error(f"{name}_unexpected", exc_info=True)
        sys.exit(EXIT_FAILURE)
    sys.exit(code)


@click.group()
@click.option("--config", "config_path", default=None, type=click.Path(), help="Path to configuration file")
@click.option("--log-level", default="WARNING", help="Logging level")
@click.option("--log-json", is_flag=True, help="Emit logs as JSON lines")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, log_level: str, log_json: bool) -> None:
    """shipflow: guided feature branch, preview deploy and pull request workflow."""
    configure_logging(log_level, json_format=log_json)
    try:
        settings = load_settings(config_path)
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("config_error", exc_info=True)
        sys.exit(EXIT_FAILURE)
    ctx.obj = {"settings": settings}


@cli.command("run")
@click.option("--branch", help="Work on this branch instead of asking")
@click.option("--skip-preview", is_flag=True, help="Do not deploy a preview channel")
@click.option("--skip-pr", is_flag=True, help="Do not create a pull request")
@click.option("--title", help="Pull request title")
@click.option("--body", help="Pull request body")
@click.option("--message", "commit_message", help="Commit message for pending changes")
@click.option("--draft", is_flag=True, help="Open the pull request as a draft")
@click.pass_context
def run_command(
    ctx: click.Context,
    branch: str | None,
    skip_preview: bool,
    skip_pr: bool,
    title: str | None,
    body: str | None,
    commit_message: str | None,
    draft: bool,
) -> None:
    """Run the whole workflow: branch, commit, hygiene, preview, pull request."""
    settings = ctx.obj["settings"]
    options = WorkflowOptions(
        branch=branch,
        skip_preview=skip_preview,
        skip_pr=skip_pr,
        title=title,
        body=body,
        draft=draft,
        commit_message=commit_message,
    )

    async def action() -> int:
        state = await WorkflowDriver(_context(settings, "workflow"), options).run()
        return EXIT_SUCCESS if state.success else EXIT_FAILURE

    _execute("run", action)


@cli.command("status")
@click.pass_context
def status_command(ctx: click.Context) -> None:
    """Show branch, working tree and tool authentication status."""
    settings = ctx.obj["settings"]

    async def action() -> int:
        wf = _context(settings, "status")
        try:
            branch, entries, gh_auth, hosting_auth = await settle_parallel(
                [wf.git.current_branch, wf.git.status_entries, wf.pull_requests.check_auth, wf.hosting.check_auth],
                label="status",
            )
        finally:
            wf.close()
        console.section("Repository")
        console.check("Branch", bool(branch.success and branch.value), branch.value or "unknown")
        if entries.success:
            console.check("Working tree clean", not entries.value, f"{len(entries.value)} change(s)" if entries.value else None)
        else:
            console.check("Working tree readable", False, str(entries.error))
        console.section("Tools")
        console.check("gh authenticated", bool(gh_auth.value), None if gh_auth.value else "Suggestion: gh auth login")
        console.check(
            "firebase authenticated", bool(hosting_auth.value), None if hosting_auth.value else "Suggestion: firebase login"
        )
        return EXIT_SUCCESS

    _execute("status", action)


@cli.group("pr")
def pr_group() -> None:
    """Pull request commands."""


@pr_group.command("create")
@click.option("--title", required=True, help="Pull request title")
@click.option("--body", default="", help="Pull request body")
@click.option("--base", default=None, help="Target branch (defaults to the trunk branch)")
@click.option("--draft", is_flag=True, help="Open as a draft")
@click.pass_context
def pr_create(ctx: click.Context, title: str, body: str, base: str | None, draft: bool) -> None:
    """Create a pull request for the current branch, or update the existing one."""
    settings = ctx.obj["settings"]

    async def action() -> int:
        wf = _context(settings, "create-pr")
        try:
            head = await wf.git.require_branch()
            target = base or settings.repository.trunk_branch
            if head == target:
                raise PreconditionFailedError(
                    f"Current branch is {head}", suggestion="git checkout -b feature/<name>"
                )
            outcome = await wf.pull_requests.create(title, body, head=head, base=target, draft=draft)
        finally:
            wf.close()
        verb = "Updated existing" if outcome.already_exists else "Created"
        console.success(f"{verb} pull request: {outcome.value.url}")
        return EXIT_SUCCESS

    _execute("pr_create", action)


@pr_group.command("status")
@click.argument("ref")
@click.pass_context
def pr_status(ctx: click.Context, ref: str) -> None:
    """Show state, mergeability and review decision of a pull request."""
    settings = ctx.obj["settings"]

    async def action() -> int:
        wf = _context(settings, "pr-status")
        try:
            status = await wf.pull_requests.status(ref)
        finally:
            wf.close()
        console.info(f"State:     {status.state}")
        console.info(f"Mergeable: {status.mergeable or 'unknown'}")
        console.info(f"Review:    {status.review_decision or 'none'}")
        return EXIT_SUCCESS

    _execute("pr_status", action)


@pr_group.command("merge")
@click.argument("ref")
@click.option("--delete-branch", is_flag=True, help="Delete the head branch after merging")
@click.pass_context
def pr_merge(ctx: click.Context, ref: str, delete_branch: bool) -> None:
    """Merge an open, mergeable pull request."""
    settings = ctx.obj["settings"]

    async def action() -> int:
        wf = _context(settings, "pr-merge")
        try:
            await wf.pull_requests.merge(ref, delete_branch=delete_branch)
        finally:
            wf.close()
        console.success(f"Merged pull request {ref}")
        console.info(f"Next: git checkout {settings.repository.trunk_branch} && git pull")
        return EXIT_SUCCESS

    _execute("pr_merge", action)


@cli.command("preview")
@click.option("--channel", default=None, help="Channel id (derived from the branch by default)")
@click.pass_context
def preview_command(ctx: click.Context, channel: str | None) -> None:
    """Deploy the current branch to a preview channel."""
    settings = ctx.obj["settings"]

    async def action() -> int:
        wf = _context(settings, "preview")
        try:
            channel_id = channel or generate_channel_id(await wf.git.require_branch(), settings.hosting.channel_prefix)
            result = await wf.hosting.deploy_channel(channel_id)
            urls = result.urls
            if not result.success:
                console.error(result.error or "Deploy failed", result.hint)
                recovered = await recover_preview_urls(settings.paths, wf.root, result.output, wf.executor.history)
                if recovered is None:
                    return EXIT_FAILURE
                console.warning(f"Recovered preview URLs from {recovered.source}")
                urls = recovered.urls
        finally:
            wf.close()
        for site, url in urls.items():
            console.success(f"{site}: {url}")
        return EXIT_SUCCESS

    _execute("preview", action)


@cli.group("channels")
def channels_group() -> None:
    """Preview channel maintenance."""


@channels_group.command("list")
@click.option("--site", default=None, help="Hosting site (project default when omitted)")
@click.pass_context
def channels_list(ctx: click.Context, site: str | None) -> None:
    """List preview channels, newest first."""
    settings = ctx.obj["settings"]

    async def action() -> int:
        wf = _context(settings, "channels-list")
        try:
            channels = await wf.hosting.list_channels(site)
        except ValueError as e:
            raise ShipflowError(f"Could not read channel list: {e}") from e
        finally:
            wf.close()
        if not channels:
            console.info("No preview channels")
        for channel in sorted(channels, key=lambda c: c.create_time.timestamp() if c.create_time else 0, reverse=True):
            created = channel.create_time.date().isoformat() if channel.create_time else "unknown"
            console.info(f"{channel.id}  created {created}  {channel.url or ''}")
        return EXIT_SUCCESS

    _execute("channels_list", action)


@channels_group.command("cleanup")
@click.option("--site", default=None, help="Hosting site (project default when omitted)")
@click.option("--keep", type=int, default=None, help="Channels to keep (configured threshold by default)")
@click.pass_context
def channels_cleanup(ctx: click.Context, site: str | None, keep: int | None) -> None:
    """Delete the oldest preview channels beyond the threshold."""
    settings = ctx.obj["settings"]

    async def action() -> int:
        wf = _context(settings, "channels-cleanup")
        try:
            result = await wf.hosting.cleanup_channels(site, keep)
        except ValueError as e:
            raise ShipflowError(f"Could not read channel list: {e}") from e
        finally:
            wf.close()
        console.info(f"Kept {len(result.kept)}, deleted {len(result.deleted)}")
        for channel_id in result.failed:
            console.error(f"Could not delete {channel_id}")
        return EXIT_FAILURE if result.failed else EXIT_SUCCESS

    _execute("channels_cleanup", action)


@cli.command("hygiene")
@click.option("--no-commit", is_flag=True, help="Leave the changes uncommitted")
@click.pass_context
def hygiene_command(ctx: click.Context, no_commit: bool) -> None:
    """Repair .gitignore, untrack preview artifacts and prune stale temp files."""
    settings = ctx.obj["settings"]

    async def action() -> int:
        wf = _context(settings, "hygiene")
        try:
            report = await run_repo_hygiene(wf.git, wf.root, settings.paths, settings.hygiene, commit=not no_commit)
        finally:
            wf.close()
        for pattern in report.gitignore_added:
            console.success(f"Added {pattern} to .gitignore")
        for path in report.untracked:
            console.success(f"Untracked {path}")
        if report.pruned:
            console.success(f"Pruned {len(report.pruned)} stale temp file(s)")
        if report.committed:
            console.success("Committed hygiene changes")
        if not report.changed:
            console.info("Nothing to clean")
        return EXIT_SUCCESS

    _execute("hygiene", action)


if __name__ == "__main__":
    cli()
