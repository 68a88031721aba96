"""Value types produced by the git output parsers."""

from dataclasses import dataclass

TEMP_FILE_NAMES = frozenset({".env.build", "preview-dashboard.html"})


@dataclass(frozen=True)
class StatusEntry:
    """One line of ``git status --porcelain``.

    Attributes:
        index: Staged status code (first column)
        worktree: Unstaged status code (second column)
        path: Current path of the file
        original_path: Source path for renames and copies
    """

    index: str
    worktree: str
    path: str
    original_path: str | None = None

    @property
    def code(self) -> str:
        return f"{self.index}{self.worktree}"

    @property
    def is_untracked(self) -> bool:
        return self.code == "??"

    @property
    def is_deleted(self) -> bool:
        return "D" in self.code

    def is_temp_file(self, temp_dir: str = "temp") -> bool:
        """True for generated preview artifacts that must not be tracked."""
        return self.path in TEMP_FILE_NAMES or self.path.startswith(f"{temp_dir.strip('/')}/")


@dataclass(frozen=True)
class PullRequestSuggestion:
    """Suggested pull-request title and body derived from the branch contents."""

    title: str
    body: str
