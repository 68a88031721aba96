"""
The release workflow state machine.

Steps run strictly in order, each one a progress-tracker step:

    Branch Setup -> Code Changes -> Repo Hygiene -> Preview Deploy -> Pull Request -> Completion

Branch Setup and Code Changes may ask the operator for decisions. Repo
Hygiene and Preview Deploy failures do not stop the run by themselves: a
failed deploy first tries to recover preview URLs from on-disk artifacts and
then lets the operator decide whether to continue. Pull Request goes through
the idempotent mutation policy, so an existing pull request for the same
branch pair counts as success.

Completion always runs. It prints the summary, writes the JSON report, closes
the progress tracker and clears the result cache.

Error handling:
    - OperatorAbortedError ends the run early as a clean, successful exit
    - ShipflowError fails the workflow state; the summary shows the cause
      and remediation
    - anything else fails the state and propagates after Completion

Example:
    >>> ctx = WorkflowContext.create(settings, ConsolePrompter())
    >>> state = await WorkflowDriver(ctx, WorkflowOptions(skip_preview=True)).run()
    >>> state.success
    True
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass

import structlog

from shipflow.engine.context import WorkflowContext
from shipflow.engine.hygiene import run_repo_hygiene
from shipflow.engine.parallel import run_parallel, settle_parallel
from shipflow.engine.recovery import recover_preview_urls
from shipflow.engine.state import WorkflowState, save_last_successful_preview, save_report
from shipflow.engine.summary import format_preview_links, render_summary
from shipflow.enums import DirtyTreeAction, StepStatus
from shipflow.exceptions import OperatorAbortedError, ShipflowError, WorkflowError
from shipflow.execution.models import CommandOptions
from shipflow.git.parser import (
    create_branch_name,
    default_commit_message,
    is_feature_branch,
    is_trunk_branch,
    suggest_pr_content,
)
from shipflow.providers.parsers import generate_channel_id
from shipflow.utils import console

log = structlog.get_logger(__name__)

STEP_BRANCH = "Branch Setup"
STEP_CHANGES = "Code Changes"
STEP_HYGIENE = "Repo Hygiene"
STEP_PREVIEW = "Preview Deploy"
STEP_PR = "Pull Request"
STEP_COMPLETION = "Completion"

WORKFLOW_STEPS: tuple[tuple[str, str], ...] = (
    (STEP_BRANCH, "Make sure work happens on a feature branch"),
    (STEP_CHANGES, "Commit pending changes"),
    (STEP_HYGIENE, "Keep preview artifacts out of version control"),
    (STEP_PREVIEW, "Deploy the branch to a preview channel"),
    (STEP_PR, "Create or update the pull request"),
    (STEP_COMPLETION, "Summarize the run"),
)

MAX_LISTED_CHANGES = 10


@dataclass
class WorkflowOptions:
    """Operator choices given up front on the command line."""

    branch: str | None = None
    skip_preview: bool = False
    skip_pr: bool = False
    title: str | None = None
    body: str | None = None
    draft: bool = False
    commit_message: str | None = None


class WorkflowDriver:
    """Runs the release workflow over a :class:`WorkflowContext`."""

    def __init__(self, ctx: WorkflowContext, options: WorkflowOptions | None = None) -> None:
        self.ctx = ctx
        self.options = options or WorkflowOptions()
        self.state: WorkflowState = ctx.state
        self.tracker = ctx.tracker
        self.prompter = ctx.prompter
        self.git = ctx.git
        self.settings = ctx.settings

    async def run(self) -> WorkflowState:
        self.state.options.update({k: v for k, v in asdict(self.options).items() if v not in (None, False)})
        self.tracker.init_progress(len(WORKFLOW_STEPS), "Shipflow release workflow", steps=WORKFLOW_STEPS)
        try:
            await self._prefetch()
            await self._run_step(STEP_BRANCH, self._branch_setup)
            await self._run_step(STEP_CHANGES, self._code_changes)
            await self._run_step(STEP_HYGIENE, self._repo_hygiene)
            await self._run_step(STEP_PREVIEW, self._preview_deploy)
            await self._run_step(STEP_PR, self._pull_request)
            self.state.complete()
        except OperatorAbortedError as e:
            log.info("workflow_aborted", step=self.state.current_step, reason=e.message)
            console.warning(f"Cancelled: {e.message}")
            self._close_running_step(StepStatus.SKIPPED, "cancelled by operator")
            self.state.complete(aborted=True)
        except ShipflowError as e:
            console.error(e.message, e.suggestion)
            self._close_running_step(StepStatus.FAILED, e.message)
            self.state.fail(e)
        except BaseException as e:
            self._close_running_step(StepStatus.FAILED, "interrupted")
            self.state.fail(str(e) or type(e).__name__)
            raise
        finally:
            await self._completion()
        return self.state

    async def _prefetch(self) -> None:
        # Warms the cache for the branch and status checks Branch Setup makes next.
        await settle_parallel([self.git.current_branch, self.git.status_entries], label="prefetch")

    async def _run_step(self, name: str, handler: Callable[[], Awaitable[str | None]]) -> None:
        self.state.set_current_step(name)
        self.tracker.start_step(name)
        message = await handler()
        if self.tracker.current_step is not None:
            self.tracker.complete_step(True, message)
        step = self.tracker.get_step(name)
        if step is not None:
            self.state.record_step(name, step.status)

    def _skip(self, reason: str) -> None:
        running = self.tracker.current_step
        if running is not None:
            self.tracker.skip_step(running.name, reason)

    def _close_running_step(self, status: StepStatus, message: str) -> None:
        running = self.tracker.current_step
        if running is None:
            closed = self.tracker.get_step(self.state.current_step or "")
            if closed is not None and closed.status.is_terminal:
                self.state.record_step(closed.name, closed.status)
            return
        if status is StepStatus.SKIPPED:
            self.tracker.skip_step(running.name, message)
        else:
            self.tracker.complete_step(False, message)
        self.state.record_step(running.name, running.status)

    async def _prepare_switch(self, target: str) -> bool:
        """Handle a dirty tree before switching branches. Returns True if changes were stashed."""
        entries = await self.git.status_entries()
        if not entries:
            return False

        console.warning(f"You have {len(entries)} uncommitted change(s)")
        choices = [action.value for action in DirtyTreeAction]
        action = DirtyTreeAction(
            self.prompter.choose(
                "How should uncommitted changes be handled before switching branches?",
                choices,
                default=DirtyTreeAction.COMMIT.value,
            )
        )
        if action is DirtyTreeAction.CANCEL:
            raise OperatorAbortedError("Branch switch cancelled")
        if action is DirtyTreeAction.STASH:
            await self.git.stash(f"Stashed changes before switching to {target}")
            self.state.increment("stashes")
            console.success("Changes stashed")
            return True

        message = self.prompter.ask("Commit message", default=default_commit_message(target))
        await self.git.commit_all(message)
        self.state.increment("commits")
        console.success(f"Committed: {message}")
        return False

    async def _switch_to(self, target: str) -> None:
        if await self.git.branch_exists(target):
            await self.git.checkout(target)
        else:
            await self.git.create_branch(target)

    async def _warn_if_behind(self, trunk: str) -> None:
        behind = await self.git.commits_behind(trunk)
        if behind:
            self.state.add_warning(f"{trunk} is {behind} commit(s) behind {self.git.remote}/{trunk}; consider git pull")

    async def _branch_setup(self) -> str:
        repo = self.settings.repository
        branch = await self.git.require_branch()

        if self.options.branch and self.options.branch != branch:
            target = self.options.branch
            await self._prepare_switch(target)
            await self._switch_to(target)
            branch = target
        elif is_trunk_branch(branch, repo.trunk_branch):
            await self._warn_if_behind(branch)
            description = self.prompter.ask("What are you working on? (used to name the feature branch)")
            if not description:
                raise OperatorAbortedError("A description is required to create a feature branch")
            target = create_branch_name(description, repo.feature_prefix, repo.branch_name_max_length)
            stashed = await self._prepare_switch(target)
            await self._switch_to(target)
            if stashed and self.prompter.confirm(f"Apply the stashed changes to {target}?", default=False):
                await self.git.stash_apply()
            branch = target
        elif not is_feature_branch(branch, repo.feature_prefix):
            self.state.add_warning(f"Working on '{branch}', which is not a {repo.feature_prefix} branch")

        self.ctx.branch = branch
        self.state.update_metrics(branch=branch)
        return f"On {branch}"

    async def _code_changes(self) -> str:
        entries = await self.git.status_entries()
        if not entries:
            return "Working tree clean"

        console.info(f"{len(entries)} uncommitted change(s):")
        for entry in entries[:MAX_LISTED_CHANGES]:
            console.info(f"  {entry.code} {entry.path}")
        if len(entries) > MAX_LISTED_CHANGES:
            console.info(f"  ... and {len(entries) - MAX_LISTED_CHANGES} more")

        if not self.prompter.confirm("Commit these changes?", default=True):
            self.state.add_warning("Continuing with uncommitted changes")
            return "Left uncommitted"

        assert self.ctx.branch is not None
        message = self.options.commit_message or self.prompter.ask(
            "Commit message", default=default_commit_message(self.ctx.branch)
        )
        await self.git.commit_all(message)
        self.state.increment("commits")
        return f"Committed: {message}"

    async def _repo_hygiene(self) -> str | None:
        try:
            report = await run_repo_hygiene(self.git, self.ctx.root, self.settings.paths, self.settings.hygiene)
        except (ShipflowError, OSError) as e:
            message = getattr(e, "message", None) or str(e)
            self.state.add_warning(f"Repository hygiene failed: {message}")
            self.tracker.complete_step(False, message)
            return None

        self.state.update_metrics(
            gitignore_patterns_added=len(report.gitignore_added),
            files_untracked=len(report.untracked),
            temp_files_pruned=len(report.pruned),
        )
        if not report.changed:
            return "Nothing to clean"
        parts = []
        if report.gitignore_added:
            parts.append(f"{len(report.gitignore_added)} .gitignore pattern(s) added")
        if report.untracked:
            parts.append(f"{len(report.untracked)} artifact(s) untracked")
        if report.pruned:
            parts.append(f"{len(report.pruned)} stale temp file(s) pruned")
        if report.committed:
            parts.append("committed")
        return ", ".join(parts)

    async def _preview_deploy(self) -> str | None:
        if self.options.skip_preview:
            self._skip("not requested")
            return None

        commands = self.settings.commands
        if commands.build_command:
            self.tracker.update_step(f"Building: {commands.build_command}")
            build = await self.ctx.executor.execute_async(
                commands.build_command,
                CommandOptions(capture_output=False, timeout=commands.build_timeout, disable_cache=True),
            )
            if not build.success:
                return await self._deploy_failed(f"Build failed: {build.error}", "", None)

        hosting = self.ctx.hosting
        if not await hosting.check_auth():
            return await self._deploy_failed("Hosting CLI is not authenticated", "", "firebase login")

        assert self.ctx.branch is not None
        channel = generate_channel_id(self.ctx.branch, self.settings.hosting.channel_prefix)
        self.tracker.update_step(f"Deploying to channel {channel}")
        result = await hosting.deploy_channel(channel)
        if not result.success:
            return await self._deploy_failed(result.error or "Deploy failed", result.output, result.hint)

        self.state.set_preview_urls(result.urls)
        await save_last_successful_preview(
            self.ctx.resolve(self.settings.paths.last_preview_file), result.urls, result.channel_id, self.ctx.branch
        )
        for site, url in result.urls.items():
            console.success(f"{site}: {url}")
        if self.settings.hosting.auto_cleanup:
            await self._cleanup_channels()
        return f"Deployed {len(result.urls)} preview URL(s)"

    async def _cleanup_channels(self) -> None:
        sites = self.settings.hosting.sites or [None]

        async def cleanup(site: str | None) -> None:
            await self.ctx.hosting.cleanup_channels(site)

        try:
            await run_parallel([lambda s=site: cleanup(s) for site in sites], label="channel-cleanup")
        except (ShipflowError, ValueError) as e:
            self.state.add_warning(f"Preview channel cleanup failed: {e}")

    async def _deploy_failed(self, error: str, output: str, hint: str | None) -> str | None:
        console.error(error, hint)
        recovered = await recover_preview_urls(
            self.settings.paths, self.ctx.root, output, self.ctx.executor.history
        )
        if recovered is not None:
            self.state.set_preview_urls(recovered.urls, recovered=True)
            self.state.add_warning(f"Preview deploy reported a failure; URLs recovered from {recovered.source}")
            return f"Recovered {len(recovered.urls)} preview URL(s) from {recovered.source}"

        self.tracker.complete_step(False, error)
        if self.prompter.confirm("Preview deployment failed. Continue without a preview?", default=False):
            self.state.add_warning(f"Continuing without a preview deployment ({error})")
            return None
        raise WorkflowError(f"Preview deployment failed: {error}", suggestion=hint)

    async def _pull_request(self) -> str | None:
        if self.options.skip_pr:
            self._skip("not requested")
            return None
        if not self.options.title and not self.prompter.confirm("Create a pull request now?", default=True):
            self._skip("declined")
            return None

        assert self.ctx.branch is not None
        trunk = self.settings.repository.trunk_branch
        files, subjects = await run_parallel(
            [lambda: self.git.changed_files(trunk), lambda: self.git.commit_subjects(trunk)], label="pr-content"
        )
        suggestion = suggest_pr_content(files, subjects)
        title = self.options.title or self.prompter.ask("Pull request title", default=suggestion.title)
        body = self.options.body or suggestion.body
        if self.state.preview_urls:
            body = f"{body}\n{format_preview_links(self.state.preview_urls)}"

        outcome = await self.ctx.pull_requests.create(
            title, body, head=self.ctx.branch, base=trunk, draft=self.options.draft
        )
        self.state.pr_url = outcome.value.url
        self.state.pr_already_exists = outcome.already_exists
        self.state.update_metrics(pr_attempts=outcome.attempts)
        if outcome.already_exists:
            return f"Updated existing pull request {outcome.value.url}"
        return f"Created {outcome.value.url}"

    async def _completion(self) -> None:
        self.state.set_current_step(STEP_COMPLETION)
        try:
            self.tracker.start_step(STEP_COMPLETION)
            render_summary(self.state, self.tracker, trunk=self.settings.repository.trunk_branch)
            self.tracker.complete_step(True)
            self.state.record_step(STEP_COMPLETION, StepStatus.SUCCEEDED)
            self.state.update_metrics(cache=self.ctx.executor.cache.get_stats() if self.ctx.executor.cache else None)
            await save_report(
                self.state,
                self.ctx.resolve(self.settings.paths.report_file),
                extra={"progress": self.tracker.stats(), "steps_detail": [s.to_dict() for s in self.tracker.steps]},
            )
        finally:
            if not self.tracker.finished:
                self.tracker.finish_progress(bool(self.state.success))
            self.ctx.close()
