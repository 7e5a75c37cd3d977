from __future__ import annotations

import datetime as dt
import os
import re
import subprocess
import threading
import time
from pathlib import Path

import pytest

from git_history_grep import search_run
from git_history_grep.errors import DiscoveryError, HistoryError, RunError
from git_history_grep.models import BoundPolicy, Commit, MatchRecord, RepositoryHandle, ScanOutcome
from git_history_grep.search_run import discover_repositories, run_search, scan_repositories

UTC = dt.timezone.utc
TODO = re.compile("TODO")
BOUNDS = BoundPolicy(max_matches=100, min_timestamp=dt.datetime(1970, 1, 1, tzinfo=UTC))


def _run(cmd: list[str], *, cwd: Path, env: dict[str, str] | None = None) -> str:
    proc = subprocess.run(cmd, cwd=str(cwd), env=env, check=True, capture_output=True, text=True)
    return proc.stdout


def _init_repo(repo: Path) -> None:
    repo.mkdir(parents=True, exist_ok=True)
    _run(["git", "init"], cwd=repo)
    _run(["git", "config", "user.name", "Test User"], cwd=repo)
    _run(["git", "config", "user.email", "test@example.com"], cwd=repo)
    _run(["git", "config", "commit.gpgsign", "false"], cwd=repo)


def _commit(repo: Path, files: dict[str, str], *, date: str) -> str:
    for name, content in files.items():
        (repo / name).write_text(content, encoding="utf-8")
    _run(["git", "add", "--all"], cwd=repo)
    env = os.environ.copy()
    env["GIT_AUTHOR_DATE"] = date
    env["GIT_COMMITTER_DATE"] = date
    _run(["git", "commit", "-m", "change"], cwd=repo, env=env)
    return _run(["git", "rev-parse", "HEAD"], cwd=repo).strip()


def _repo_with_todos(repo: Path, todos: int) -> list[str]:
    _init_repo(repo)
    _commit(repo, {"a.txt": "start\n"}, date="2024-01-01T12:00:00+00:00")
    shas: list[str] = []
    for n in range(todos):
        shas.append(_commit(repo, {f"f{n}.txt": f"TODO {n}\n"}, date=f"2024-01-{n + 2:02d}T12:00:00+00:00"))
    _commit(repo, {"z.txt": "plain\n"}, date="2024-02-01T12:00:00+00:00")
    return list(reversed(shas))


def _fake_record(repo_name: str, n: int) -> MatchRecord:
    when = dt.datetime(2024, 1, 1, tzinfo=UTC) + dt.timedelta(days=n)
    commit = Commit(
        sha=f"{n:040x}",
        parents=("f" * 40,),
        author_name="A",
        author_email="a@example.com",
        authored_at=when,
        committed_at=when,
    )
    return MatchRecord(commit=commit, repo_name=repo_name)


def _handles(*names: str) -> list[RepositoryHandle]:
    return [RepositoryHandle(name=n, path=Path("/nonexistent") / n) for n in names]


def test_one_match_one_empty_one_not_a_repo(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    root = tmp_path / "root"
    [match] = _repo_with_todos(root / "alpha", 1)
    _repo_with_todos(root / "beta", 0)
    (root / "notrepo").mkdir()
    (root / "README.txt").write_text("not a dir\n", encoding="utf-8")

    records = run_search(TODO, root, BOUNDS, quiet=True)

    assert [(r.repo_name, r.commit.sha) for r in records] == [("alpha", match)]
    err = capsys.readouterr().err
    assert "Skipping notrepo" in err


def test_discover_repositories_reports_skipped(tmp_path: Path) -> None:
    root = tmp_path / "root"
    _init_repo(root / "b")
    _init_repo(root / "a")
    (root / "junk").mkdir()
    _init_repo(root / "ignored")

    repos, skipped = discover_repositories(root, exclude_dirnames=["ignored"])

    assert [r.name for r in repos] == ["a", "b"]
    assert [name for name, _ in skipped] == ["junk"]


def test_unreadable_root_is_fatal(tmp_path: Path) -> None:
    with pytest.raises(DiscoveryError):
        run_search(TODO, tmp_path / "missing", BOUNDS, quiet=True)


def test_no_repositories_is_empty_success(tmp_path: Path) -> None:
    assert run_search(TODO, tmp_path, BOUNDS, quiet=True) == []


@pytest.mark.parametrize("jobs", [0, 1, 3])
def test_output_follows_discovery_order(tmp_path: Path, jobs: int) -> None:
    root = tmp_path / "root"
    c_shas = _repo_with_todos(root / "c", 2)
    a_shas = _repo_with_todos(root / "a", 3)
    b_shas = _repo_with_todos(root / "b", 1)

    records = run_search(TODO, root, BOUNDS, jobs=jobs, quiet=True)

    expected = [("a", s) for s in a_shas] + [("b", s) for s in b_shas] + [("c", s) for s in c_shas]
    assert [(r.repo_name, r.commit.sha) for r in records] == expected


def test_repeated_runs_are_identical(tmp_path: Path) -> None:
    root = tmp_path / "root"
    _repo_with_todos(root / "one", 2)
    _repo_with_todos(root / "two", 2)

    first = run_search(TODO, root, BOUNDS, quiet=True)
    second = run_search(TODO, root, BOUNDS, quiet=True)
    assert first == second
    assert len(first) == 4


def test_completion_order_does_not_leak(monkeypatch: pytest.MonkeyPatch) -> None:
    delays = {"first": 0.3, "second": 0.0, "third": 0.1}

    def fake_scan(regex, bounds, repo):  # type: ignore[no-untyped-def]
        time.sleep(delays[repo.name])
        return ScanOutcome.success(repo.name, [_fake_record(repo.name, 1), _fake_record(repo.name, 0)])

    monkeypatch.setattr(search_run, "scan_repo", fake_scan)
    finished: list[str] = []
    outcomes = scan_repositories(
        TODO,
        BOUNDS,
        _handles("first", "second", "third"),
        on_progress=lambda done, total, o: finished.append(o.repo_name),
    )

    assert [o.repo_name for o in outcomes] == ["first", "second", "third"]
    assert finished[0] == "second"
    assert sorted(finished) == ["first", "second", "third"]
    records = search_run.aggregate_matches(outcomes)
    assert [r.repo_name for r in records] == ["first", "first", "second", "second", "third", "third"]


def test_first_failure_fails_the_run(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_scan(regex, bounds, repo):  # type: ignore[no-untyped-def]
        if repo.name == "broken":
            return ScanOutcome.failure(repo.name, HistoryError("cannot resolve commit deadbeef"))
        return ScanOutcome.success(repo.name, [_fake_record(repo.name, 0)])

    monkeypatch.setattr(search_run, "scan_repo", fake_scan)
    with pytest.raises(RunError) as ei:
        scan_repositories(TODO, BOUNDS, _handles("ok1", "broken", "ok2"))

    assert ei.value.repo_name == "broken"
    assert isinstance(ei.value.cause, HistoryError)
    assert "cannot resolve commit deadbeef" in str(ei.value)


def test_failure_does_not_wait_for_slow_tasks(monkeypatch: pytest.MonkeyPatch) -> None:
    release = threading.Event()
    slow_done = threading.Event()

    def fake_scan(regex, bounds, repo):  # type: ignore[no-untyped-def]
        if repo.name == "slow":
            release.wait(timeout=10)
            slow_done.set()
            return ScanOutcome.success(repo.name, [])
        return ScanOutcome.failure(repo.name, HistoryError("boom"))

    monkeypatch.setattr(search_run, "scan_repo", fake_scan)
    with pytest.raises(RunError):
        scan_repositories(TODO, BOUNDS, _handles("slow", "broken"))

    assert not slow_done.is_set()
    release.set()
    assert slow_done.wait(timeout=10)


def test_bounded_pool_caps_concurrency(monkeypatch: pytest.MonkeyPatch) -> None:
    lock = threading.Lock()
    running = 0
    peak = 0

    def fake_scan(regex, bounds, repo):  # type: ignore[no-untyped-def]
        nonlocal running, peak
        with lock:
            running += 1
            peak = max(peak, running)
        time.sleep(0.02)
        with lock:
            running -= 1
        return ScanOutcome.success(repo.name, [])

    monkeypatch.setattr(search_run, "scan_repo", fake_scan)
    outcomes = scan_repositories(TODO, BOUNDS, _handles(*[f"r{i}" for i in range(8)]), jobs=2)

    assert len(outcomes) == 8
    assert peak <= 2
