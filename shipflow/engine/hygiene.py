"""Repository hygiene: keep preview artifacts out of version control.

Two independent sub-tasks run concurrently through the parallel runner:

- gitignore repair: append missing artifact patterns, then untrack any
  artifact files that are still in the index
- stale temp pruning: delete files in the temp directory older than the
  configured age, keeping the reports recovery relies on

Afterwards, staged removals of artifact files (and the .gitignore change)
are committed on their own.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path

import aiofiles
import structlog

from shipflow.config.settings import HygieneConfig, PathsConfig
from shipflow.engine.parallel import run_parallel
from shipflow.git.parser import temp_file_deletions
from shipflow.git.repository import GitRepository

log = structlog.get_logger(__name__)

GITIGNORE_HEADER = "# Preview deployment files"
HYGIENE_COMMIT_MESSAGE = "chore: Update gitignore and remove temporary files from tracking"
PRESERVED_TEMP_FILES = frozenset(
    {"firebase-deploy.log", "preview-urls.json", "last-successful-preview.json", "workflow-report.json"}
)


@dataclass
class HygieneReport:
    gitignore_added: list[str] = field(default_factory=list)
    untracked: list[str] = field(default_factory=list)
    pruned: list[Path] = field(default_factory=list)
    committed: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.gitignore_added or self.untracked or self.pruned or self.committed)


def missing_patterns(content: str, patterns: list[str]) -> list[str]:
    present = {line.strip() for line in content.splitlines()}
    return [p for p in patterns if p not in present]


async def ensure_gitignore(path: Path, patterns: list[str]) -> list[str]:
    """Append missing patterns under a header. Returns the patterns added."""
    content = ""
    if path.exists():
        async with aiofiles.open(path) as f:
            content = await f.read()

    missing = missing_patterns(content, patterns)
    if not missing:
        return []

    block = []
    if content and not content.endswith("\n"):
        block.append("")
    if GITIGNORE_HEADER not in content:
        block.append(("\n" if content else "") + GITIGNORE_HEADER)
    block.extend(missing)
    async with aiofiles.open(path, "a") as f:
        await f.write("\n".join(block) + "\n")
    log.info("gitignore_updated", path=str(path), added=missing)
    return missing


async def fix_gitignore(
    git: GitRepository, root: Path, config: HygieneConfig, paths: PathsConfig
) -> tuple[list[str], list[str]]:
    """Repair .gitignore and untrack artifact files. Returns (added, untracked)."""
    patterns = list(dict.fromkeys([*config.gitignore_patterns, *paths.ignore_patterns]))
    added = await ensure_gitignore(root / ".gitignore", patterns)

    candidates = list(config.untrack_files)
    if not paths.temp_path.is_absolute():
        candidates.append(paths.temp_dir.strip("/"))
    tracked = [path for path in candidates if await git.is_tracked(path)]
    await git.untrack(tracked)
    return added, tracked


def prune_stale_files(temp_dir: Path, max_age_days: int, now: float | None = None) -> list[Path]:
    """Delete files older than ``max_age_days`` below ``temp_dir``."""
    if not temp_dir.is_dir():
        return []
    cutoff = (now if now is not None else time.time()) - max_age_days * 86400
    pruned = []
    for path in sorted(temp_dir.rglob("*")):
        if not path.is_file() or path.name in PRESERVED_TEMP_FILES:
            continue
        try:
            if path.stat().st_mtime < cutoff:
                path.unlink()
                pruned.append(path)
        except OSError as e:
            log.warning("temp_prune_failed", path=str(path), error=str(e))
    if pruned:
        log.info("temp_files_pruned", count=len(pruned), directory=str(temp_dir))
    return pruned


async def commit_artifact_removals(git: GitRepository, temp_dir: str = "temp") -> bool:
    """Commit removals of artifact files and the .gitignore change, if any.

    Only those paths go into the commit. Other staged or unstaged work is
    left as it was.
    """
    entries = await git.status_entries(fresh=True)
    removals = [e.path for e in temp_file_deletions(entries, temp_dir)]
    gitignore = [e.path for e in entries if e.path == ".gitignore"]
    if not removals and not gitignore:
        return False

    await git.commit(HYGIENE_COMMIT_MESSAGE, add=gitignore, remove=removals)
    await git.untrack(removals)
    if gitignore:
        await git.stage(gitignore)
    return True


async def run_repo_hygiene(
    git: GitRepository,
    root: Path,
    paths: PathsConfig,
    config: HygieneConfig,
    commit: bool = True,
    now: float | None = None,
) -> HygieneReport:
    temp_dir = paths.temp_path if paths.temp_path.is_absolute() else root / paths.temp_path

    async def repair() -> tuple[list[str], list[str]]:
        return await fix_gitignore(git, root, config, paths)

    async def prune() -> list[Path]:
        return await asyncio.to_thread(prune_stale_files, temp_dir, paths.stale_temp_days, now)

    (added, untracked), pruned = await run_parallel([repair, prune], label="repo-hygiene")
    report = HygieneReport(gitignore_added=added, untracked=untracked, pruned=pruned)
    if commit:
        report.committed = await commit_artifact_removals(git, paths.temp_dir)
    return report
