from __future__ import annotations

from typing import Iterable


def next_free_id(prefix: str, existing: Iterable[str], *, width: int = 3, start: int = 1) -> str:
    """
    First `<prefix><n>` (n zero-padded to `width`) that is not in `existing`.

    Counting starts after the number of existing ids so generated ids stay short and ordered
    for the common case, but the loop guarantees no collision even after deletions or imports.
    """
    taken = set(existing)
    n = max(int(start), len(taken) + 1)
    while True:
        candidate = f"{prefix}{n:0{width}d}"
        if candidate not in taken:
            return candidate
        n += 1
