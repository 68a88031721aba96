"""Tests for providers/parsers.py."""

import json

import pytest

from shipflow.providers import parsers

DEPLOY_JSON = json.dumps(
    {
        "status": "success",
        "result": {
            "mysite": {
                "site": "mysite",
                "url": "https://mysite--preview-login-a1b2c3.web.app",
                "expireTime": "2024-05-08T12:00:00Z",
            },
            "admin": {"site": "admin", "url": "https://admin--preview-login-d4e5f6.web.app"},
        },
    }
)

DEPLOY_TEXT = """
=== Deploying to 'acme-web'...
i  hosting[mysite]: beginning deploy...
+  hosting:channel: Channel URL (mysite): https://mysite--preview-login-a1b2c3.web.app [expires 2024-05-08]
+  hosting:channel: Channel URL (admin): https://admin--preview-login-d4e5f6.web.app [expires 2024-05-08]
"""

CHANNEL_LIST = json.dumps(
    {
        "status": "success",
        "result": {
            "channels": [
                {"name": "projects/1/sites/mysite/channels/live", "url": "https://mysite.web.app"},
                {
                    "name": "projects/1/sites/mysite/channels/preview-old",
                    "url": "https://mysite--preview-old.web.app",
                    "createTime": "2024-04-01T10:00:00.000Z",
                    "expireTime": "2024-04-08T10:00:00Z",
                },
                {
                    "name": "projects/1/sites/mysite/channels/preview-new",
                    "url": "https://mysite--preview-new.web.app",
                    "createTime": "2024-05-01T10:00:00Z",
                },
            ]
        },
    }
)


class TestPullRequestOutput:
    @pytest.mark.parametrize(
        "text",
        [
            'a pull request for branch "feature/x" into branch "main" already exists:',
            "GraphQL: A pull request already exists for acme:feature/x.",
        ],
    )
    def test_conflict_detection(self, text):
        assert parsers.is_pr_conflict(text) is True

    def test_other_errors_are_not_conflicts(self):
        assert parsers.is_pr_conflict("HTTP 502: Bad Gateway") is False

    def test_auth_failure_detection(self):
        assert parsers.is_gh_auth_failure("You are not logged into any GitHub hosts. Run gh auth login") is True
        assert parsers.is_gh_auth_failure("no commits between main and feature/x") is False

    def test_parse_pr_url(self):
        text = "Creating pull request for feature/x into main\n\nhttps://github.com/acme/web/pull/42\n"

        assert parsers.parse_pr_url(text) == "https://github.com/acme/web/pull/42"
        assert parsers.pr_number_from_url("https://github.com/acme/web/pull/42") == 42
        assert parsers.parse_pr_url("no url here") is None
        assert parsers.pr_number_from_url(None) is None

    def test_parse_pr_list(self):
        text = json.dumps(
            [
                {
                    "number": 7,
                    "url": "https://github.com/acme/web/pull/7",
                    "headRefName": "feature/x",
                    "baseRefName": "main",
                    "title": "Add x",
                    "state": "OPEN",
                }
            ]
        )

        [pr] = parsers.parse_pr_list(text)

        assert pr.number == 7
        assert pr.head == "feature/x"
        assert pr.base == "main"

    def test_parse_empty_pr_list(self):
        assert parsers.parse_pr_list("") == []
        assert parsers.parse_pr_list("[]") == []

    def test_parse_pr_list_rejects_objects(self):
        with pytest.raises(ValueError):
            parsers.parse_pr_list('{"number": 1}')

    def test_parse_pr_view_number_from_url(self):
        pr = parsers.parse_pr_view('{"url": "https://github.com/acme/web/pull/9"}')

        assert pr.number == 9

    def test_parse_pr_view_rejects_garbage(self):
        with pytest.raises(ValueError):
            parsers.parse_pr_view("not json")

    def test_parse_pr_status(self):
        status = parsers.parse_pr_status('{"state": "OPEN", "mergeable": "MERGEABLE", "reviewDecision": ""}')

        assert status.is_open is True
        assert status.is_mergeable is True
        assert status.review_decision is None


class TestHostingUrls:
    def test_extract_from_channel_lines(self):
        urls = parsers.extract_hosting_urls(DEPLOY_TEXT)

        assert urls == [
            "https://mysite--preview-login-a1b2c3.web.app",
            "https://admin--preview-login-d4e5f6.web.app",
        ]

    def test_extract_bare_urls_deduplicated(self):
        text = "see https://mysite--p.web.app and https://mysite--p.web.app or https://other.firebaseapp.com"

        assert parsers.extract_hosting_urls(text) == ["https://mysite--p.web.app", "https://other.firebaseapp.com"]

    @pytest.mark.parametrize(
        ("url", "valid"),
        [
            ("https://mysite--preview-x.web.app", True),
            ("https://mysite.firebaseapp.com/", True),
            ("http://mysite--preview-x.web.app", False),
            ("https://example.com", False),
        ],
    )
    def test_is_valid_preview_url(self, url, valid):
        assert parsers.is_valid_preview_url(url) is valid

    def test_site_and_channel_from_url(self):
        url = "https://mysite--preview-login.web.app"

        assert parsers.url_site(url) == "mysite"
        assert parsers.extract_channel_id(url) == "preview-login"
        assert parsers.extract_channel_id("https://mysite.web.app") is None

    def test_categorize_keeps_first_per_site(self):
        urls = ["https://a--one.web.app", "https://a--two.web.app", "https://b--one.web.app"]

        assert parsers.categorize_urls(urls) == {"a": "https://a--one.web.app", "b": "https://b--one.web.app"}


class TestDeployOutput:
    def test_json_output(self):
        assert parsers.parse_deploy_json(DEPLOY_JSON) == {
            "mysite": "https://mysite--preview-login-a1b2c3.web.app",
            "admin": "https://admin--preview-login-d4e5f6.web.app",
        }

    def test_text_output(self):
        assert parsers.parse_deploy_output(DEPLOY_TEXT) == {
            "mysite": "https://mysite--preview-login-a1b2c3.web.app",
            "admin": "https://admin--preview-login-d4e5f6.web.app",
        }

    def test_json_without_result(self):
        assert parsers.parse_deploy_json('{"status": "error", "error": "boom"}') == {}

    def test_error_hints(self):
        assert parsers.deploy_error_hint("Error: Failed to authenticate, have you run firebase login?") == (
            "firebase login --reauth"
        )
        assert "project_id" in parsers.deploy_error_hint("Error: Site not found")
        assert parsers.deploy_error_hint("connect ETIMEDOUT 1.2.3.4:443") == "Check your network connection and retry"
        assert parsers.deploy_error_hint("something else") is None


class TestChannels:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("Preview_Feature/Login", "preview-feature-login"),
            ("--a--b--", "a-b"),
            ("x" * 80, "x" * 63),
        ],
    )
    def test_clean_channel_id(self, raw, expected):
        assert parsers.clean_channel_id(raw) == expected

    def test_generate_channel_id_uses_last_segment(self):
        assert parsers.generate_channel_id("feature/add-login") == "preview-add-login"
        assert parsers.generate_channel_id("feature/Add_Login", prefix="") == "add-login"

    def test_parse_channel_list_skips_live(self):
        channels = parsers.parse_channel_list(CHANNEL_LIST, site="mysite")

        assert [c.id for c in channels] == ["preview-old", "preview-new"]
        assert channels[0].site == "mysite"
        assert channels[0].create_time.year == 2024
        assert channels[1].expire_time is None

    def test_parse_channel_list_rejects_unexpected_shape(self):
        with pytest.raises(ValueError):
            parsers.parse_channel_list('{"result": {}}')

    def test_parse_login_list(self):
        assert parsers.parse_login_list('{"status": "success", "result": [{"user": {"email": "a@b.c"}}]}') is True
        assert parsers.parse_login_list('{"status": "success", "result": []}') is False
        assert parsers.parse_login_list("Logged in as a@b.c") is True
