"""Git adapter: output parsers and the repository query/mutation client."""

from shipflow.git.models import PullRequestSuggestion, StatusEntry
from shipflow.git.repository import GitRepository

__all__ = ["GitRepository", "PullRequestSuggestion", "StatusEntry"]
