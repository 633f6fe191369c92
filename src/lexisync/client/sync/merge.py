"""Last-writer-wins reconciliation of two collection snapshots."""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable
from typing import TypeVar

from lexisync.client.sync.types import Entity

T = TypeVar("T")


def merge_by_timestamp(
    local: Iterable[T],
    remote: Iterable[T],
    key: Callable[[T], Hashable],
    clock: Callable[[T], float],
) -> list[T]:
    """Merge two snapshots keyed by natural key.

    Local entities seed the result. A remote entity is added when its key
    is absent and replaces the present entity only when its clock is
    strictly greater, so ties and missing timestamps keep the local side.
    Entities are replaced whole, never merged field by field.

    Args:
        local: Local snapshot.
        remote: Remote snapshot.
        key: Natural key of an entity.
        clock: Comparable modification time of an entity.

    Returns:
        One entity per distinct natural key. Order is not significant.
    """
    merged: dict[Hashable, T] = {}
    for item in local:
        merged[key(item)] = item

    for item in remote:
        k = key(item)
        existing = merged.get(k)
        if existing is None or clock(item) > clock(existing):
            merged[k] = item

    return list(merged.values())


def merge_items(
    local: Iterable[Entity],
    remote: Iterable[Entity],
) -> list[Entity]:
    """Merge entity snapshots using their own natural key and clock."""
    return merge_by_timestamp(
        local,
        remote,
        key=lambda item: item.natural_key,
        clock=lambda item: item.clock,
    )
