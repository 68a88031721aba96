"""Parsers for git command output and branch-name helpers.

Every function here is pure: it takes command output (or plain values) and
returns data, without running anything.

Contracts:
    parse_current_branch: trimmed stdout of ``git branch --show-current``;
        empty output or ``HEAD`` (detached) yields None
    parse_status: ``git status --porcelain`` (v1) lines, ``XY path`` or
        ``XY orig -> path``; blank lines ignored
    parse_count: trimmed integer from ``git rev-list --count``; None if not an integer
    parse_lines: non-empty stripped lines, e.g. ``git diff --name-only``

Example:
    >>> parse_current_branch("feature/login\\n")
    'feature/login'
    >>> create_branch_name("Add SSO login!")
    'feature/add-sso-login'
"""

import re
from collections import Counter
from collections.abc import Iterable, Sequence
from pathlib import PurePosixPath

from shipflow.exceptions import PreconditionFailedError
from shipflow.git.models import PullRequestSuggestion, StatusEntry

DEFAULT_FEATURE_PREFIX = "feature/"
DEFAULT_MAX_LENGTH = 40
TRUNK_BRANCHES = ("main", "master")


def parse_current_branch(output: str) -> str | None:
    branch = output.strip()
    if not branch or branch == "HEAD":
        return None
    return branch


def parse_status(output: str) -> list[StatusEntry]:
    entries = []
    for line in output.splitlines():
        if len(line) < 4 or not line.strip():
            continue
        index, worktree, rest = line[0], line[1], line[3:]
        original = None
        if " -> " in rest:
            original, rest = rest.split(" -> ", 1)
        entries.append(StatusEntry(index=index, worktree=worktree, path=_unquote(rest), original_path=original))
    return entries


def _unquote(path: str) -> str:
    if len(path) >= 2 and path[0] == path[-1] == '"':
        return path[1:-1]
    return path


def parse_count(output: str) -> int | None:
    text = output.strip()
    return int(text) if text.isdigit() else None


def parse_lines(output: str) -> list[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]


def is_feature_branch(branch: str, prefix: str = DEFAULT_FEATURE_PREFIX) -> bool:
    return branch.startswith(prefix) and len(branch) > len(prefix)


def is_trunk_branch(branch: str, trunk: str = "main") -> bool:
    return branch == trunk or branch in TRUNK_BRANCHES


def create_branch_name(
    description: str,
    prefix: str = DEFAULT_FEATURE_PREFIX,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> str:
    """Turn a free-text description into a branch name.

    Lowercases, drops everything but letters, digits, whitespace and dashes,
    joins words with dashes, and truncates the slug to ``max_length``.

    Raises:
        PreconditionFailedError: If nothing usable remains
    """
    slug = re.sub(r"[^a-z0-9\s-]", "", description.lower())
    slug = re.sub(r"\s+", "-", slug.strip())
    slug = re.sub(r"-+", "-", slug).strip("-")
    slug = slug[:max_length].rstrip("-")
    if not slug:
        raise PreconditionFailedError(
            f"Cannot derive a branch name from {description!r}",
            suggestion="Describe the change with letters or digits, e.g. 'add login page'",
        )
    return f"{prefix}{slug}"


def default_commit_message(branch: str) -> str:
    """Commit message derived from the branch name, e.g. ``feature/add-login`` -> ``Add login``."""
    name = branch.rsplit("/", 1)[-1]
    words = re.sub(r"[-_]+", " ", name).strip()
    if not words:
        return "Update project files"
    return words[0].upper() + words[1:]


def suggest_pr_content(changed_files: Sequence[str], commit_subjects: Sequence[str]) -> PullRequestSuggestion:
    """Suggest a pull-request title and body.

    Title: the only commit subject if there is exactly one; otherwise the
    most-changed directory and file type; otherwise the most common file
    type; otherwise a generic title.
    """
    files = [f for f in changed_files if f]
    commits = [c for c in commit_subjects if c]

    directories: Counter[str] = Counter()
    extensions: Counter[str] = Counter()
    by_directory: dict[str, list[str]] = {}
    for name in files:
        path = PurePosixPath(name)
        directory = str(path.parent)
        directories[directory] += 1
        if path.suffix:
            extensions[path.suffix.lstrip(".")] += 1
        by_directory.setdefault(directory, []).append(path.name)

    top_dir = directories.most_common(1)[0][0] if directories else ""
    top_ext = extensions.most_common(1)[0][0] if extensions else ""

    if len(commits) == 1:
        title = commits[0]
    elif top_dir and top_dir != ".":
        title = f"Update {top_dir} ({top_ext})" if top_ext else f"Update {top_dir}"
    elif top_ext:
        title = f"Update {top_ext} files"
    else:
        title = "Update project files"

    lines = ["## Changes", ""]
    if by_directory:
        lines.append("### Modified Files")
        for directory, names in by_directory.items():
            label = "Root" if directory == "." else directory
            lines.append(f"- {label}: {', '.join(names)}")
    if len(commits) > 1:
        lines += ["", "### Commit History"]
        lines += [f"- {subject}" for subject in commits]

    return PullRequestSuggestion(title=title, body="\n".join(lines) + "\n")


def temp_file_deletions(entries: Iterable[StatusEntry], temp_dir: str = "temp") -> list[StatusEntry]:
    """Deleted entries that are generated preview artifacts."""
    return [e for e in entries if e.is_deleted and e.is_temp_file(temp_dir)]
