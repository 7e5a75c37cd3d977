from __future__ import annotations

import argparse
import datetime as dt
import re
import sys
from pathlib import Path

from .errors import DiscoveryError, RunError
from .models import BoundPolicy
from .search_periods import parse_since
from .search_render import write_matches
from .search_run import run_search


def _positive_int(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from None
    if n <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {n}")
    return n


def _non_negative_int(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from None
    if n < 0:
        raise argparse.ArgumentTypeError(f"expected 0 or more, got {n}")
    return n


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="git-history-grep",
        description="Search the history of every git repo in a directory for commits whose diff matches a regex.",
    )
    parser.add_argument("pattern", help="Regular expression tested against each changed file's patch text.")
    parser.add_argument("root", type=Path, help="Directory whose immediate subdirectories are git repos.")
    parser.add_argument("--max-matches", type=_positive_int, default=100, help="Stop a repo's walk after this many matches.")
    parser.add_argument(
        "--since",
        type=str,
        default="18m",
        help="Stop a repo's walk at the first commit authored before this (e.g. 18m, 2y, 30d, 2024-01-31).",
    )
    parser.add_argument("--jobs", type=_non_negative_int, default=0, help="Parallel repo scans (0 = one per repo).")
    parser.add_argument("--exclude", type=str, action="append", default=[], help="Subdirectory name to skip (repeatable).")
    parser.add_argument("--format", choices=["text", "json"], default="text", help="Output format.")
    parser.add_argument("--quiet", action="store_true", help="Do not print progress to stderr.")
    return parser


def main(argv: list[str] | None = None, *, now: dt.datetime | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        min_timestamp = parse_since(args.since, now=now)
    except ValueError as e:
        parser.error(str(e))

    try:
        regex = re.compile(args.pattern)
    except re.error as e:
        print(f"Failed to compile regex {args.pattern!r}: {e}", file=sys.stderr)
        return 1

    bounds = BoundPolicy(max_matches=args.max_matches, min_timestamp=min_timestamp)
    try:
        matches = run_search(
            regex,
            args.root,
            bounds,
            jobs=args.jobs,
            exclude_dirnames=args.exclude,
            quiet=bool(args.quiet),
        )
    except (DiscoveryError, RunError) as e:
        print(f"Search failed: {e}", file=sys.stderr)
        return 1

    write_matches(matches, sys.stdout, fmt=args.format)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
