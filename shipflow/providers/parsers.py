"""Parsers for ``gh`` and ``firebase`` command output.

All functions are pure and never run commands.

Contracts:
    is_pr_conflict: True when error text says the pull request already exists
    is_gh_auth_failure / is_hosting_auth_failure: True when error text says
        the operator must log in
    parse_pr_url: first ``https://github.com/<owner>/<repo>/pull/<n>`` URL
    parse_pr_list: JSON array from ``gh pr list --json number,url,headRefName,baseRefName,title,state``
    parse_pr_view: JSON object from ``gh pr view --json ...``
    extract_hosting_urls: unique ``*.web.app`` / ``*.firebaseapp.com`` URLs in order of appearance
    parse_deploy_json: site -> URL map from ``firebase hosting:channel:deploy --json``
    parse_channel_list: channels from ``firebase hosting:channel:list --json``
"""

from __future__ import annotations

import json
import re
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

from shipflow.providers.models import PreviewChannel, PullRequest, PullRequestStatus

PR_URL_PATTERN = re.compile(r"https://github\.com/[^\s/]+/[^\s/]+/pull/(\d+)")

PR_CONFLICT_MARKERS = (
    "already exists",
    "already a pull request",
    "a pull request for branch",
    "pull request exists",
)

GH_AUTH_MARKERS = (
    "not logged in",
    "gh auth login",
    "authentication required",
    "bad credentials",
    "http 401",
)

HOSTING_AUTH_MARKERS = (
    "not authorized",
    "failed to authenticate",
    "firebase login",
    "authentication error",
    "no authorized accounts",
)

HOSTING_URL_PATTERN = re.compile(
    r"https://[a-zA-Z0-9][a-zA-Z0-9-]*(?:--[a-zA-Z0-9][a-zA-Z0-9-]*)?\.(?:web\.app|firebaseapp\.com)"
)
CHANNEL_URL_LINE = re.compile(r"Channel URL \([^)]+\): (https://\S+)")

CHANNEL_ID_MAX = 63


def _contains_any(text: str, markers: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in markers)


def is_pr_conflict(text: str) -> bool:
    return _contains_any(text, PR_CONFLICT_MARKERS)


def is_gh_auth_failure(text: str) -> bool:
    return _contains_any(text, GH_AUTH_MARKERS)


def is_hosting_auth_failure(text: str) -> bool:
    return _contains_any(text, HOSTING_AUTH_MARKERS)


def parse_pr_url(text: str) -> str | None:
    match = PR_URL_PATTERN.search(text)
    return match.group(0) if match else None


def pr_number_from_url(url: str | None) -> int | None:
    if not url:
        return None
    match = PR_URL_PATTERN.search(url)
    return int(match.group(1)) if match else None


def _pull_request(item: dict[str, Any]) -> PullRequest:
    url = item.get("url")
    number = item.get("number")
    return PullRequest(
        number=int(number) if number is not None else pr_number_from_url(url),
        url=url,
        head=item.get("headRefName"),
        base=item.get("baseRefName"),
        title=item.get("title"),
        state=item.get("state"),
    )


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Unexpected non-JSON output: {text[:80]!r}") from e


def parse_pr_list(text: str) -> list[PullRequest]:
    """Parse ``gh pr list --json``.

    Raises:
        ValueError: If the output is not a JSON array
    """
    data = _load_json(text.strip() or "[]")
    if not isinstance(data, list):
        raise ValueError("Expected a JSON array of pull requests")
    return [_pull_request(item) for item in data if isinstance(item, dict)]


def parse_pr_view(text: str) -> PullRequest:
    """Parse ``gh pr view --json``.

    Raises:
        ValueError: If the output is not a JSON object
    """
    data = _load_json(text)
    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object describing a pull request")
    return _pull_request(data)


def parse_pr_status(text: str) -> PullRequestStatus:
    data = _load_json(text)
    if not isinstance(data, dict) or "state" not in data:
        raise ValueError("Expected a JSON object with a 'state' field")
    return PullRequestStatus(
        state=str(data["state"]),
        mergeable=data.get("mergeable"),
        review_decision=data.get("reviewDecision") or None,
    )


def extract_hosting_urls(text: str) -> list[str]:
    """All preview/hosting URLs in deploy output, deduplicated in order."""
    found: list[str] = []
    for match in CHANNEL_URL_LINE.finditer(text):
        url = match.group(1).rstrip("/.,")
        if is_valid_preview_url(url) and url not in found:
            found.append(url)
    for match in HOSTING_URL_PATTERN.finditer(text):
        url = match.group(0)
        if url not in found:
            found.append(url)
    return found


def is_valid_preview_url(url: str) -> bool:
    return bool(HOSTING_URL_PATTERN.fullmatch(url.rstrip("/")))


def url_site(url: str) -> str | None:
    """Site name: the host label before ``--`` (or the whole first label)."""
    host = urlparse(url).hostname or ""
    label = host.split(".", 1)[0]
    return label.split("--", 1)[0] or None


def extract_channel_id(url: str) -> str | None:
    """Channel part of a preview URL host, ``site--<channel>.web.app``."""
    host = urlparse(url).hostname or ""
    label = host.split(".", 1)[0]
    if "--" not in label:
        return None
    return label.split("--", 1)[1] or None


def categorize_urls(urls: list[str]) -> dict[str, str]:
    """Key preview URLs by site name; the first URL per site wins."""
    categorized: dict[str, str] = {}
    for url in urls:
        site = url_site(url) or "preview"
        categorized.setdefault(site, url)
    return categorized


def parse_deploy_json(text: str) -> dict[str, str]:
    """Site -> URL from ``hosting:channel:deploy --json``; empty if not JSON."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return {}
    result = data.get("result") if isinstance(data, dict) else None
    if not isinstance(result, dict):
        return {}
    urls = {}
    for site, entry in result.items():
        if isinstance(entry, dict) and isinstance(entry.get("url"), str):
            urls[entry.get("site") or site] = entry["url"]
    return urls


def parse_deploy_output(text: str) -> dict[str, str]:
    """Preview URLs keyed by site, from JSON output or free text."""
    return parse_deploy_json(text.strip()) or categorize_urls(extract_hosting_urls(text))


def clean_channel_id(raw: str) -> str:
    """Channel ids allow only lowercase letters, digits and dashes."""
    cleaned = re.sub(r"[^a-zA-Z0-9-]", "-", raw).lower()
    cleaned = re.sub(r"-+", "-", cleaned).strip("-")
    return cleaned[:CHANNEL_ID_MAX].rstrip("-")


def generate_channel_id(branch: str, prefix: str = "preview") -> str:
    name = branch.rsplit("/", 1)[-1]
    return clean_channel_id(f"{prefix}-{name}" if prefix else name)


def _timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def parse_channel_list(text: str, site: str | None = None) -> list[PreviewChannel]:
    """Preview channels, excluding the ``live`` channel.

    Raises:
        ValueError: If the output is not the expected JSON document
    """
    data = _load_json(text)
    result = data.get("result") if isinstance(data, dict) else None
    channels = result.get("channels") if isinstance(result, dict) else None
    if not isinstance(channels, list):
        raise ValueError("Expected result.channels in channel list output")

    parsed = []
    for item in channels:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        channel_id = str(item["name"]).rsplit("/channels/", 1)[-1]
        if channel_id == "live":
            continue
        parsed.append(
            PreviewChannel(
                id=channel_id,
                site=site,
                url=item.get("url"),
                create_time=_timestamp(item.get("createTime")),
                expire_time=_timestamp(item.get("expireTime")),
            )
        )
    return parsed


def parse_login_list(text: str) -> bool:
    """True when ``firebase login:list`` reports at least one account."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return "logged in as" in text.lower()
    result = data.get("result") if isinstance(data, dict) else None
    return bool(result)


def deploy_error_hint(text: str) -> str | None:
    """Remediation for well-known deploy failures."""
    lowered = text.lower()
    if is_hosting_auth_failure(text):
        return "firebase login --reauth"
    if "not found" in lowered:
        return "Check hosting.project_id and that the site exists: firebase hosting:sites:list"
    if "etimedout" in lowered or "econnrefused" in lowered or "network" in lowered:
        return "Check your network connection and retry"
    return None
