from __future__ import annotations

import re

from .git import diff_tree
from .models import Commit, RepositoryHandle


def commit_matches(regex: re.Pattern[str], repo: RepositoryHandle, parent: Commit, child: Commit) -> bool:
    """
    True when the patch text of any path changed between `parent` and `child`
    matches `regex`. Stops at the first matching path.
    """
    for change in diff_tree(repo, parent, child):
        if regex.search(change.patch):
            return True
    return False
