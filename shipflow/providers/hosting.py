"""Preview channel deployment through the ``firebase`` command-line tool.

A deploy writes its full output to the deploy log and the extracted preview
URLs to ``preview-urls.json`` under the temp directory; both files feed URL
recovery when a later step reports failure.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import aiofiles
import structlog

from shipflow.config.settings import HostingConfig, PathsConfig
from shipflow.engine.state import write_json_atomic
from shipflow.execution.executor import CommandExecutor
from shipflow.execution.models import CommandOptions
from shipflow.providers import parsers
from shipflow.providers.models import CleanupResult, DeployResult, PreviewChannel

log = structlog.get_logger(__name__)

LIST_TIMEOUT = 60.0
_EPOCH = datetime.fromtimestamp(0, UTC)


class HostingClient:
    """Deploy, list and delete hosting preview channels.

    Args:
        executor: Command executor
        config: Hosting settings
        paths: Artifact locations
        root: Directory relative artifact paths are resolved against
    """

    def __init__(
        self,
        executor: CommandExecutor,
        config: HostingConfig,
        paths: PathsConfig,
        root: Path | None = None,
    ) -> None:
        self.executor = executor
        self.config = config
        self.paths = paths
        self.root = root or Path.cwd()

    def _path(self, relative: Path) -> Path:
        return relative if relative.is_absolute() else self.root / relative

    def _project_args(self) -> list[str]:
        return ["--project", self.config.project_id] if self.config.project_id else []

    async def check_auth(self) -> bool:
        result = await self.executor.execute_async(
            ["firebase", "login:list", "--json"], CommandOptions(ignore_error=True, timeout=LIST_TIMEOUT)
        )
        return result.success and parsers.parse_login_list(result.output)

    async def deploy_channel(self, channel_id: str) -> DeployResult:
        """Deploy the current build to a preview channel.

        Never raises for a failed deploy; inspect ``DeployResult.success``.
        """
        channel = parsers.clean_channel_id(channel_id)
        command = [
            "firebase",
            "hosting:channel:deploy",
            channel,
            *self._project_args(),
            "--expires",
            self.config.channel_expires,
            "--json",
        ]
        log.info("preview_deploy_started", channel=channel, project=self.config.project_id)
        result = await self.executor.execute_async(
            command, CommandOptions(timeout=self.config.deploy_timeout, ignore_error=True, disable_cache=True)
        )

        log_file = self._path(self.paths.deploy_log)
        await self._save_log(log_file, result.combined)

        urls = parsers.parse_deploy_output(result.output) if result.success else {}
        if result.success and urls:
            await write_json_atomic(
                self._path(self.paths.preview_urls_file),
                {"timestamp": datetime.now(UTC).isoformat(), "channel_id": channel, "urls": urls},
            )
            log.info("preview_deploy_succeeded", channel=channel, urls=urls)
            return DeployResult(success=True, channel_id=channel, urls=urls, output=result.combined, log_file=log_file)

        if result.success:
            error = "Deploy finished but no preview URLs were found in its output"
        elif result.timed_out:
            error = f"Deploy timed out after {self.config.deploy_timeout:g}s"
        else:
            error = (result.error or "Deploy failed").strip()
        hint = parsers.deploy_error_hint(result.combined)
        log.warning("preview_deploy_failed", channel=channel, error=error, hint=hint)
        return DeployResult(
            success=False, channel_id=channel, error=error, hint=hint, output=result.combined, log_file=log_file
        )

    async def _save_log(self, path: Path, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "w") as f:
                await f.write(content)
        except OSError as e:
            log.warning("deploy_log_write_failed", path=str(path), error=str(e))

    async def list_channels(self, site: str | None = None) -> list[PreviewChannel]:
        """Preview channels of a site (the project default when None).

        Raises:
            CommandError: The list command failed
            ValueError: Its output could not be parsed
        """
        command = ["firebase", "hosting:channel:list", *self._project_args()]
        if site:
            command += ["--site", site]
        command.append("--json")
        result = await self.executor.execute_async(command, CommandOptions(timeout=LIST_TIMEOUT, disable_cache=True))
        result.raise_for_status("Could not list preview channels")
        return parsers.parse_channel_list(result.output, site=site)

    async def delete_channel(self, channel_id: str, site: str | None = None) -> bool:
        command = ["firebase", "hosting:channel:delete", channel_id, *self._project_args()]
        if site:
            command += ["--site", site]
        command.append("--force")
        result = await self.executor.execute_async(command, CommandOptions(timeout=LIST_TIMEOUT, disable_cache=True))
        if result.success:
            log.info("preview_channel_deleted", channel=channel_id, site=site)
        return result.success

    async def cleanup_channels(self, site: str | None = None, keep: int | None = None) -> CleanupResult:
        """Delete the oldest channels beyond ``keep`` (the configured threshold by default)."""
        limit = keep if keep is not None else self.config.channel_threshold
        channels = await self.list_channels(site)
        channels.sort(key=lambda c: c.create_time or _EPOCH, reverse=True)

        cleanup = CleanupResult(site=site or "default", kept=[c.id for c in channels[:limit]])
        for channel in channels[limit:]:
            if await self.delete_channel(channel.id, site):
                cleanup.deleted.append(channel.id)
            else:
                cleanup.failed.append(channel.id)
        log.info("preview_channels_cleaned", site=site, deleted=len(cleanup.deleted), failed=len(cleanup.failed))
        return cleanup
