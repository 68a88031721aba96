"""Completion summary printed at the end of every run."""

from collections.abc import Callable

import click

from shipflow.engine.progress import ProgressTracker, format_duration
from shipflow.engine.state import WorkflowState
from shipflow.enums import StepStatus
from shipflow.providers.parsers import pr_number_from_url

_MARKERS = {
    StepStatus.SUCCEEDED: ("✓", "green"),
    StepStatus.FAILED: ("✗", "red"),
    StepStatus.SKIPPED: ("-", None),
}


def format_preview_links(urls: dict[str, str]) -> str:
    """Markdown section listing preview URLs, for pull-request bodies."""
    if not urls:
        return ""
    lines = ["### Preview", ""]
    lines += [f"- **{site}**: {url}" for site, url in urls.items()]
    return "\n".join(lines) + "\n"


def next_steps(state: WorkflowState, trunk: str) -> list[str]:
    if not state.success:
        if state.suggestion:
            return [f"Fix the problem above, e.g.: {state.suggestion}", "Then re-run: shipflow run"]
        return ["Fix the problem above, then re-run: shipflow run"]
    if state.aborted:
        return ["Nothing was changed after the cancellation. Re-run when ready: shipflow run"]

    steps = []
    if state.preview_urls:
        steps.append("Share the preview URLs with reviewers")
    if state.pr_url:
        number = pr_number_from_url(state.pr_url)
        ref = str(number) if number is not None else state.pr_url
        steps.append(f"Check review status: shipflow pr status {ref}")
        steps.append(f"After approval: shipflow pr merge {ref}")
        steps.append(f"After merging: git checkout {trunk} && git pull")
    else:
        steps.append("Open a pull request when ready: shipflow pr create --title '...'")
    return steps


def render_summary(
    state: WorkflowState,
    tracker: ProgressTracker,
    trunk: str = "main",
    echo: Callable[[str], None] = click.echo,
) -> None:
    echo("")
    echo(click.style("Workflow Summary", bold=True))
    if state.aborted:
        outcome = click.style("CANCELLED", fg="yellow")
    elif state.success:
        outcome = click.style("SUCCESS", fg="green")
    else:
        outcome = click.style("FAILED", fg="red")
    echo(f"  Status:   {outcome} ({format_duration(state.duration)})")

    for step in tracker.steps:
        if step.status in (StepStatus.PENDING, StepStatus.RUNNING):
            continue
        symbol, color = _MARKERS[step.status]
        detail = f" - {step.message}" if step.message else ""
        echo(f"  {click.style(symbol, fg=color)} {step.name}{detail}")

    if state.preview_urls:
        label = "Preview URLs (recovered)" if state.preview_recovered else "Preview URLs"
        echo(f"  {label}:")
        for site, url in state.preview_urls.items():
            echo(f"    {site}: {url}")

    if state.pr_url:
        note = " (already existed, updated)" if state.pr_already_exists else ""
        echo(f"  Pull request: {state.pr_url}{note}")

    if state.warnings:
        echo("  Warnings:")
        for warning in state.warnings:
            echo(f"    - {warning.message}")

    if state.error:
        echo(click.style(f"  Error: {state.error}", fg="red"))
        if state.suggestion:
            echo(f"  Suggestion: {state.suggestion}")

    echo("  Next steps:")
    for step_text in next_steps(state, trunk):
        echo(f"    - {step_text}")
