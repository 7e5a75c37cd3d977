from __future__ import annotations

import re
import sys
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path

from .errors import RepositoryOpenError, RunError
from .git import list_subdirectories, open_repository
from .models import BoundPolicy, MatchRecord, RepositoryHandle, ScanOutcome
from .search_repo import scan_repo


def discover_repositories(
    root: Path,
    exclude_dirnames: Iterable[str] = (),
) -> tuple[list[RepositoryHandle], list[tuple[str, RepositoryOpenError]]]:
    repos: list[RepositoryHandle] = []
    skipped: list[tuple[str, RepositoryOpenError]] = []
    for path in list_subdirectories(root, frozenset(exclude_dirnames)):
        try:
            repos.append(open_repository(path))
        except RepositoryOpenError as e:
            skipped.append((path.name, e))
    return repos, skipped


def scan_repositories(
    regex: re.Pattern[str],
    bounds: BoundPolicy,
    repos: list[RepositoryHandle],
    *,
    jobs: int = 0,
    on_progress: Callable[[int, int, ScanOutcome], None] | None = None,
) -> list[ScanOutcome]:
    """
    Scan every repository concurrently and return the outcomes in `repos` order.

    `jobs=0` runs one worker per repository; a positive value caps the pool.
    The first failed outcome to complete raises RunError. Tasks not yet started
    are cancelled then; tasks already running finish in the background.
    """
    if not repos:
        return []
    workers = jobs if jobs > 0 else len(repos)
    slots: list[ScanOutcome | None] = [None] * len(repos)
    failure: ScanOutcome | None = None
    drained = False

    ex = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="scan")
    try:
        futs: dict[Future[ScanOutcome], int] = {ex.submit(scan_repo, regex, bounds, repo): i for i, repo in enumerate(repos)}
        for done, fut in enumerate(as_completed(futs), start=1):
            outcome = fut.result()
            slots[futs[fut]] = outcome
            if on_progress is not None:
                on_progress(done, len(futs), outcome)
            if not outcome.ok:
                failure = outcome
                break
        else:
            drained = True
    finally:
        ex.shutdown(wait=drained, cancel_futures=not drained)

    if failure is not None:
        assert failure.error is not None
        raise RunError(failure.repo_name, failure.error) from failure.error

    outcomes: list[ScanOutcome] = []
    for outcome in slots:
        assert outcome is not None
        outcomes.append(outcome)
    return outcomes


def aggregate_matches(outcomes: list[ScanOutcome]) -> list[MatchRecord]:
    out: list[MatchRecord] = []
    for outcome in outcomes:
        out.extend(outcome.matches)
    return out


def run_search(
    regex: re.Pattern[str],
    root: Path,
    bounds: BoundPolicy,
    *,
    jobs: int = 0,
    exclude_dirnames: Iterable[str] = (),
    quiet: bool = False,
) -> list[MatchRecord]:
    repos, skipped = discover_repositories(root, exclude_dirnames)
    for name, err in skipped:
        print(f"Skipping {name}: {err}", file=sys.stderr)

    if not repos:
        print(f"No git repositories found under: {root}", file=sys.stderr)
        return []

    def progress(done: int, total: int, outcome: ScanOutcome) -> None:
        if quiet:
            return
        status = f"{len(outcome.matches)} matches" if outcome.ok else "failed"
        print(f"Scanned {done}/{total} repos ({outcome.repo_name}: {status})", file=sys.stderr)

    if not quiet:
        pool = f"{jobs} workers" if jobs > 0 else "one worker per repo"
        print(f"Scanning {len(repos)} repos under {root} ({pool})...", file=sys.stderr)

    outcomes = scan_repositories(regex, bounds, repos, jobs=jobs, on_progress=progress)
    return aggregate_matches(outcomes)
