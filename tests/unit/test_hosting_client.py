"""Tests for providers/hosting.py."""

import json

import pytest

from shipflow.config.settings import HostingConfig, PathsConfig
from shipflow.exceptions import CommandError
from shipflow.execution.models import CommandResult
from shipflow.providers.hosting import HostingClient

DEPLOY_OK = json.dumps(
    {"status": "success", "result": {"mysite": {"site": "mysite", "url": "https://mysite--preview-login.web.app"}}}
)


def _channels(*entries):
    return json.dumps(
        {
            "status": "success",
            "result": {
                "channels": [
                    {"name": f"projects/1/sites/mysite/channels/{name}", "createTime": created}
                    for name, created in entries
                ]
            },
        }
    )


@pytest.fixture
def client(fake_executor, tmp_path):
    config = HostingConfig(project_id="acme-web", channel_threshold=2)
    return HostingClient(fake_executor, config, PathsConfig(), root=tmp_path)


class TestDeploy:
    @pytest.mark.asyncio
    async def test_successful_deploy(self, client, fake_executor, tmp_path):
        fake_executor.respond("firebase hosting:channel:deploy", CommandResult.ok(DEPLOY_OK))

        result = await client.deploy_channel("Preview/Login")

        assert result.success is True
        assert result.channel_id == "preview-login"
        assert result.urls == {"mysite": "https://mysite--preview-login.web.app"}
        [command] = fake_executor.called("firebase hosting:channel:deploy")
        assert command == (
            "firebase hosting:channel:deploy preview-login --project acme-web --expires 7d --json"
        )
        assert fake_executor.options[0].disable_cache is True
        saved = json.loads((tmp_path / "temp" / "preview-urls.json").read_text())
        assert saved["urls"] == result.urls
        assert (tmp_path / "temp" / "firebase-deploy.log").read_text() == DEPLOY_OK

    @pytest.mark.asyncio
    async def test_failed_deploy_returns_hint(self, client, fake_executor, tmp_path):
        fake_executor.respond(
            "firebase hosting:channel:deploy",
            CommandResult.failure("Error: Failed to authenticate, have you run firebase login?"),
        )

        result = await client.deploy_channel("preview-login")

        assert result.success is False
        assert result.hint == "firebase login --reauth"
        assert "Failed to authenticate" in result.error
        assert not (tmp_path / "temp" / "preview-urls.json").exists()
        assert "Failed to authenticate" in (tmp_path / "temp" / "firebase-deploy.log").read_text()

    @pytest.mark.asyncio
    async def test_success_without_urls_is_a_failure(self, client, fake_executor):
        fake_executor.respond("firebase hosting:channel:deploy", CommandResult.ok("Deploy complete!"))

        result = await client.deploy_channel("preview-login")

        assert result.success is False
        assert "no preview URLs" in result.error

    @pytest.mark.asyncio
    async def test_timeout(self, client, fake_executor):
        fake_executor.respond("firebase hosting:channel:deploy", CommandResult.timeout(180))

        result = await client.deploy_channel("preview-login")

        assert result.success is False
        assert result.error == "Deploy timed out after 180s"


@pytest.mark.asyncio
async def test_check_auth(client, fake_executor):
    fake_executor.respond("firebase login:list", CommandResult.ok('{"result": [{"user": {"email": "a@b.c"}}]}'))

    assert await client.check_auth() is True


@pytest.mark.asyncio
async def test_check_auth_without_accounts(client, fake_executor):
    fake_executor.respond("firebase login:list", CommandResult.ok('{"result": []}'))

    assert await client.check_auth() is False


@pytest.mark.asyncio
async def test_list_channels_failure_raises(client, fake_executor):
    fake_executor.respond("firebase hosting:channel:list", CommandResult.failure("Site not found"))

    with pytest.raises(CommandError):
        await client.list_channels("mysite")


@pytest.mark.asyncio
async def test_cleanup_deletes_oldest_beyond_threshold(client, fake_executor):
    fake_executor.respond(
        "firebase hosting:channel:list",
        CommandResult.ok(
            _channels(
                ("preview-b", "2024-02-01T00:00:00Z"),
                ("preview-d", "2024-04-01T00:00:00Z"),
                ("preview-a", "2024-01-01T00:00:00Z"),
                ("preview-c", "2024-03-01T00:00:00Z"),
            )
        ),
    )
    fake_executor.respond("firebase hosting:channel:delete preview-a", CommandResult.failure("permission denied"))

    result = await client.cleanup_channels("mysite")

    assert result.kept == ["preview-d", "preview-c"]
    assert result.deleted == ["preview-b"]
    assert result.failed == ["preview-a"]
    assert fake_executor.called("firebase hosting:channel:delete preview-b --project acme-web --site mysite --force")


@pytest.mark.asyncio
async def test_cleanup_with_explicit_keep(client, fake_executor):
    fake_executor.respond(
        "firebase hosting:channel:list",
        CommandResult.ok(_channels(("preview-a", "2024-01-01T00:00:00Z"), ("preview-b", "2024-02-01T00:00:00Z"))),
    )

    result = await client.cleanup_channels(keep=5)

    assert result.deleted == []
    assert result.site == "default"
