"""Adapters for the code-hosting CLI (``gh``) and the hosting-provider CLI (``firebase``)."""

from shipflow.providers.github_cli import PullRequestManager
from shipflow.providers.hosting import HostingClient

__all__ = ["HostingClient", "PullRequestManager"]
