from __future__ import annotations


class HistoryGrepError(RuntimeError):
    """Base class for errors raised while searching repository history."""


class DiscoveryError(HistoryGrepError):
    """The scan root could not be listed."""


class RepositoryOpenError(HistoryGrepError):
    """A candidate directory is not a git repository."""


class HistoryError(HistoryGrepError):
    """Enumerating commits or resolving a commit failed."""


class DiffError(HistoryError):
    """Computing the diff between two commits failed."""


class RunError(HistoryGrepError):
    def __init__(self, repo_name: str, cause: BaseException) -> None:
        super().__init__(f"{repo_name}: {cause}")
        self.repo_name = repo_name
        self.cause = cause
