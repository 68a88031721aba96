"""Recovery of preview URLs after a deploy reported failure.

The hosting CLI sometimes exits non-zero after the channel was actually
deployed, and earlier runs leave URL reports behind. Sources are tried in
order and the first one yielding valid preview URLs wins:

    1. the failed command's own output
    2. the deploy log
    3. ``preview-urls.json``
    4. ``last-successful-preview.json``
    5. the newest persisted deployment command log

All sources are optional; unreadable or malformed files are skipped.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import aiofiles
import structlog

from shipflow.config.settings import PathsConfig
from shipflow.execution.history import CommandHistory, read_log_output
from shipflow.providers.parsers import is_valid_preview_url, parse_deploy_output

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RecoveredPreview:
    urls: dict[str, str]
    source: str


def _valid(urls: dict[str, str]) -> dict[str, str]:
    return {site: url for site, url in urls.items() if isinstance(url, str) and is_valid_preview_url(url)}


async def _read(path: Path) -> str | None:
    if not path.is_file():
        return None
    try:
        async with aiofiles.open(path) as f:
            return await f.read()
    except OSError as e:
        log.debug("recovery_source_unreadable", path=str(path), error=str(e))
        return None


async def _urls_from_report(path: Path) -> dict[str, str]:
    text = await _read(path)
    if not text:
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        log.debug("recovery_report_malformed", path=str(path))
        return {}
    urls = data.get("urls") if isinstance(data, dict) else None
    return _valid(urls) if isinstance(urls, dict) else {}


async def _urls_from_text(path: Path) -> dict[str, str]:
    text = await _read(path)
    return _valid(parse_deploy_output(text)) if text else {}


async def recover_preview_urls(
    paths: PathsConfig,
    root: Path,
    failed_output: str = "",
    history: CommandHistory | None = None,
) -> RecoveredPreview | None:
    """Find preview URLs from the best available source, or None."""
    def resolve(p: Path) -> Path:
        return p if p.is_absolute() else root / p

    if failed_output:
        urls = _valid(parse_deploy_output(failed_output))
        if urls:
            return _found(urls, "command output")

    urls = await _urls_from_text(resolve(paths.deploy_log))
    if urls:
        return _found(urls, "deploy log")

    for label, report in (
        ("preview report", paths.preview_urls_file),
        ("last successful preview", paths.last_preview_file),
    ):
        urls = await _urls_from_report(resolve(report))
        if urls:
            return _found(urls, label)

    if history is not None:
        for log_file in history.find_deployment_logs()[:1]:
            urls = _valid(parse_deploy_output(read_log_output(log_file)))
            if urls:
                return _found(urls, f"command log {log_file.name}")

    log.info("preview_recovery_failed")
    return None


def _found(urls: dict[str, str], source: str) -> RecoveredPreview:
    log.info("preview_urls_recovered", source=source, urls=urls)
    return RecoveredPreview(urls=urls, source=source)
