from __future__ import annotations

import dataclasses
import io
import re
import subprocess
import threading
from collections.abc import Generator
from pathlib import Path

from .errors import DiffError, DiscoveryError, HistoryError, RepositoryOpenError
from .models import Commit, RepositoryHandle
from .search_periods import parse_iso_datetime

_SEP = "\x1f"
_COMMIT_FORMAT = _SEP.join(["%H", "%P", "%an", "%ae", "%aI", "%cI"])
_DIFF_PREFIX = "diff --git "
_DIFF_HEADER = re.compile(r"^diff --git a/(.*?) b/(.*?)$")
_QUOTED_B_SIDE = re.compile(r' ("b/(?:[^"\\]|\\.)*")$')
_C_ESCAPES = {"a": 7, "b": 8, "t": 9, "n": 10, "v": 11, "f": 12, "r": 13, "\"": 34, "\\": 92}


def run_git(args: list[str], cwd: Path) -> tuple[int, str, str]:
    proc = subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
    )
    return proc.returncode, proc.stdout, proc.stderr


def list_subdirectories(root: Path, exclude_dirnames: set[str] | frozenset[str] = frozenset()) -> list[Path]:
    try:
        entries = sorted(root.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise DiscoveryError(f"cannot list {root}: {e}") from e
    return [p for p in entries if p.is_dir() and p.name not in exclude_dirnames]


def open_repository(path: Path) -> RepositoryHandle:
    try:
        code, out, err = run_git(["rev-parse", "--absolute-git-dir"], cwd=path)
    except OSError as e:
        raise RepositoryOpenError(str(e)) from e
    if code != 0:
        raise RepositoryOpenError(err.strip() or f"git rev-parse exited {code}")
    git_dir = Path(out.strip()).resolve()
    top = path.resolve()
    # A directory nested inside some other work tree is not a repository of its own.
    if git_dir != top and not (top / ".git").exists():
        raise RepositoryOpenError(f"not a repository root (belongs to {git_dir})")
    return RepositoryHandle(name=path.name, path=top)


def parse_commit_line(line: str) -> Commit:
    parts = line.rstrip("\n").split(_SEP)
    if len(parts) != 6:
        raise HistoryError(f"unexpected git log record: {line[:200]!r}")
    sha, parents, author_name, author_email, authored_iso, committed_iso = parts
    try:
        authored_at = parse_iso_datetime(authored_iso)
        committed_at = parse_iso_datetime(committed_iso)
    except ValueError as e:
        raise HistoryError(f"bad timestamp in commit {sha}: {e}") from e
    return Commit(
        sha=sha,
        parents=tuple(parents.split()),
        author_name=author_name,
        author_email=author_email,
        authored_at=authored_at,
        committed_at=committed_at,
    )


def has_commits(repo: RepositoryHandle) -> bool:
    try:
        code, _, _ = run_git(["rev-parse", "--verify", "--quiet", "HEAD^{commit}"], cwd=repo.path)
    except OSError as e:
        raise HistoryError(f"cannot read {repo.path}: {e}") from e
    return code == 0


def iter_commits(repo: RepositoryHandle) -> Generator[Commit, None, None]:
    """
    Stream commits reachable from HEAD, newest committer time first.

    The generator owns a `git log` process; closing it early kills the process.
    """
    if not has_commits(repo):
        return

    cmd = ["git", "log", "--no-color", f"--format={_COMMIT_FORMAT}", "HEAD"]
    try:
        proc = subprocess.Popen(
            cmd,
            cwd=str(repo.path),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as e:
        raise HistoryError(f"failed to start git log: {e}") from e

    stderr_chunks: list[str] = []
    stderr_chars = 0
    max_stderr_chars = 50_000

    def drain_stderr() -> None:
        nonlocal stderr_chars
        if proc.stderr is None:
            return
        while True:
            chunk = proc.stderr.read(8192)
            if not chunk:
                return
            if stderr_chars >= max_stderr_chars:
                continue
            take = chunk[: max_stderr_chars - stderr_chars]
            stderr_chunks.append(take)
            stderr_chars += len(take)

    stderr_thread = threading.Thread(target=drain_stderr, daemon=True)
    stderr_thread.start()

    finished = False
    try:
        assert proc.stdout is not None
        for raw_line in proc.stdout:
            if not raw_line.strip():
                continue
            yield parse_commit_line(raw_line)
        finished = True
    finally:
        if not finished and proc.poll() is None:
            proc.kill()
        if proc.stdout is not None:
            proc.stdout.close()
        code = proc.wait()
        stderr_thread.join()

    if code != 0:
        raise HistoryError(f"git log exited {code}: {''.join(stderr_chunks).strip()[:500]}")


def resolve_commit(repo: RepositoryHandle, sha: str) -> Commit:
    try:
        code, out, err = run_git(["show", "-s", "--no-color", f"--format={_COMMIT_FORMAT}", f"{sha}^{{commit}}"], cwd=repo.path)
    except OSError as e:
        raise HistoryError(f"cannot resolve commit {sha}: {e}") from e
    if code != 0:
        raise HistoryError(f"cannot resolve commit {sha}: {err.strip()[:500]}")
    lines = [line for line in out.splitlines() if line.strip()]
    if not lines:
        raise HistoryError(f"cannot resolve commit {sha}: empty output")
    return parse_commit_line(lines[-1])


@dataclasses.dataclass(frozen=True)
class FileChange:
    path: str
    patch: str = dataclasses.field(repr=False)


def unquote_c_path(quoted: str) -> str:
    """Undo git's core.quotePath quoting: "b/\\303\\274ber.txt" -> b/über.txt."""
    s = quoted[1:-1] if len(quoted) >= 2 and quoted[0] == quoted[-1] == '"' else quoted
    out = bytearray()
    i = 0
    while i < len(s):
        ch = s[i]
        if ch != "\\" or i + 1 >= len(s):
            out += ch.encode("utf-8")
            i += 1
            continue
        nxt = s[i + 1]
        digits = s[i + 1 : i + 4]
        if len(digits) == 3 and all(c in "01234567" for c in digits):
            out.append(int(digits, 8) & 0xFF)
            i += 4
        elif nxt in _C_ESCAPES:
            out.append(_C_ESCAPES[nxt])
            i += 2
        else:
            out += nxt.encode("utf-8")
            i += 2
    return out.decode("utf-8", errors="replace")


def header_path(header: str) -> str:
    line = header.rstrip("\n")
    m = _QUOTED_B_SIDE.search(line)
    if m:
        return unquote_c_path(m.group(1))[len("b/") :]
    m = _DIFF_HEADER.match(line)
    if m:
        return m.group(2)
    return line[len(_DIFF_PREFIX) :]


def split_patch(text: str) -> list[FileChange]:
    changes: list[FileChange] = []
    path = ""
    buf: list[str] = []
    for line in io.StringIO(text):
        if line.startswith(_DIFF_PREFIX):
            if buf:
                changes.append(FileChange(path, "".join(buf)))
            path = header_path(line)
            buf = [line]
            continue
        if buf:
            buf.append(line)
    if buf:
        changes.append(FileChange(path, "".join(buf)))
    return changes


def diff_tree(repo: RepositoryHandle, parent: Commit, child: Commit) -> list[FileChange]:
    args = [
        "diff-tree",
        "-r",
        "-p",
        "--no-color",
        "--no-ext-diff",
        "--no-textconv",
        "--no-renames",
        parent.sha,
        child.sha,
    ]
    try:
        code, out, err = run_git(args, cwd=repo.path)
    except OSError as e:
        raise DiffError(f"cannot diff {parent.short_sha}..{child.short_sha}: {e}") from e
    if code != 0:
        raise DiffError(f"cannot diff {parent.short_sha}..{child.short_sha}: {err.strip()[:500]}")
    return split_patch(out)
