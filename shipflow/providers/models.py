"""Data types returned by the provider adapters."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class PullRequest:
    """A pull request as reported by ``gh``."""

    number: int | None
    url: str | None
    head: str | None = None
    base: str | None = None
    title: str | None = None
    state: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "url": self.url,
            "head": self.head,
            "base": self.base,
            "title": self.title,
            "state": self.state,
        }


@dataclass(frozen=True)
class PullRequestStatus:
    """Merge readiness of a pull request."""

    state: str
    mergeable: str | None = None
    review_decision: str | None = None

    @property
    def is_open(self) -> bool:
        return self.state.upper() == "OPEN"

    @property
    def is_mergeable(self) -> bool:
        return (self.mergeable or "").upper() == "MERGEABLE"


@dataclass(frozen=True)
class PreviewChannel:
    """A hosting preview channel."""

    id: str
    site: str | None = None
    url: str | None = None
    create_time: datetime | None = None
    expire_time: datetime | None = None


@dataclass
class DeployResult:
    """Outcome of a preview channel deployment.

    Attributes:
        success: True when the deploy command succeeded and produced URLs
        channel_id: Channel deployed to
        urls: Preview URLs keyed by site
        error: Failure description
        hint: Remediation for a recognized failure
        output: Combined deploy output
    """

    success: bool
    channel_id: str
    urls: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    hint: str | None = None
    output: str = ""
    log_file: Path | None = None


@dataclass
class CleanupResult:
    """Channels removed by a cleanup pass."""

    site: str
    kept: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
