from __future__ import annotations

import dataclasses
import datetime as dt
from pathlib import Path

from .errors import HistoryError


@dataclasses.dataclass(frozen=True)
class Commit:
    sha: str
    parents: tuple[str, ...]
    author_name: str
    author_email: str
    authored_at: dt.datetime
    committed_at: dt.datetime

    @property
    def short_sha(self) -> str:
        # Abbreviations can collide in large repositories; git itself would pick a longer prefix.
        return self.sha[:8]

    @property
    def is_root(self) -> bool:
        return not self.parents

    @property
    def is_linear(self) -> bool:
        return len(self.parents) == 1

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1


@dataclasses.dataclass(frozen=True)
class RepositoryHandle:
    name: str
    path: Path


@dataclasses.dataclass(frozen=True)
class MatchRecord:
    commit: Commit
    repo_name: str


@dataclasses.dataclass(frozen=True)
class ScanOutcome:
    repo_name: str
    matches: tuple[MatchRecord, ...] = ()
    error: HistoryError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, repo_name: str, matches: list[MatchRecord]) -> ScanOutcome:
        return cls(repo_name=repo_name, matches=tuple(matches))

    @classmethod
    def failure(cls, repo_name: str, error: HistoryError) -> ScanOutcome:
        return cls(repo_name=repo_name, error=error)


@dataclasses.dataclass(frozen=True)
class BoundPolicy:
    max_matches: int
    min_timestamp: dt.datetime

    def __post_init__(self) -> None:
        if self.max_matches <= 0:
            raise ValueError(f"max_matches must be positive, got {self.max_matches}")
        if self.min_timestamp.tzinfo is None:
            object.__setattr__(self, "min_timestamp", self.min_timestamp.replace(tzinfo=dt.timezone.utc))

    def limit_reached(self, count: int) -> bool:
        return count >= self.max_matches

    def too_old(self, commit: Commit) -> bool:
        return commit.authored_at < self.min_timestamp
