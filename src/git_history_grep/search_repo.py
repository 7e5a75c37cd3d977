from __future__ import annotations

import re

from .errors import HistoryError
from .git import iter_commits, resolve_commit
from .models import BoundPolicy, MatchRecord, RepositoryHandle, ScanOutcome
from .search_match import commit_matches


def _walk_history(regex: re.Pattern[str], bounds: BoundPolicy, repo: RepositoryHandle) -> list[MatchRecord]:
    matches: list[MatchRecord] = []
    commits = iter_commits(repo)
    try:
        for commit in commits:
            # Root commits have nothing to diff against; merge diffs are not evaluated.
            if not commit.is_linear:
                continue
            parent = resolve_commit(repo, commit.parents[0])
            if commit_matches(regex, repo, parent, commit):
                matches.append(MatchRecord(commit=commit, repo_name=repo.name))
            if bounds.limit_reached(len(matches)) or bounds.too_old(commit):
                break
    finally:
        commits.close()
    return matches


def scan_repo(regex: re.Pattern[str], bounds: BoundPolicy, repo: RepositoryHandle) -> ScanOutcome:
    """
    Walk one repository's history newest-first and collect matching linear commits.

    Stopping at the match limit or the age cutoff is a successful outcome. Git
    failures become a failed outcome for this repository only.
    """
    try:
        matches = _walk_history(regex, bounds, repo)
    except HistoryError as e:
        return ScanOutcome.failure(repo.name, e)
    return ScanOutcome.success(repo.name, matches)
