from __future__ import annotations

import json
from typing import TextIO

from .models import MatchRecord


def format_match(record: MatchRecord) -> str:
    c = record.commit
    return f"{c.short_sha} {record.repo_name} {c.authored_at.strftime('%Y-%m-%dT%H:%M')} {c.author_name}"


def match_to_dict(record: MatchRecord) -> dict[str, str]:
    c = record.commit
    return {
        "repo": record.repo_name,
        "sha": c.sha,
        "short_sha": c.short_sha,
        "author_name": c.author_name,
        "author_email": c.author_email,
        "authored_at": c.authored_at.isoformat(),
        "committed_at": c.committed_at.isoformat(),
    }


def write_matches(records: list[MatchRecord], out: TextIO, *, fmt: str = "text") -> None:
    if fmt == "json":
        out.write(json.dumps([match_to_dict(r) for r in records], indent=2, sort_keys=True) + "\n")
        return
    if fmt != "text":
        raise ValueError(f"Unknown output format: {fmt!r}")
    for r in records:
        out.write(format_match(r) + "\n")
