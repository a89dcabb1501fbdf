from __future__ import annotations

from typing import Iterable, Protocol, TypeVar


class HasId(Protocol):
    @property
    def id(self) -> str: ...


T = TypeVar("T", bound=HasId)


def new_by_id(known: Iterable[HasId], received: Iterable[T]) -> list[T]:
    """
    Received items whose id is absent from `known`, in arrival order.

    Identity is the id only (two distinct sites may share a coordinate). Duplicates inside
    `received` collapse to their first occurrence, so merging the same batch twice is a no-op.
    """
    seen = {k.id for k in known}
    out: list[T] = []
    for item in received:
        if item.id in seen:
            continue
        seen.add(item.id)
        out.append(item)
    return out
