"""Match local entities to remote records.

Remote records are indexed twice: by primary key and by natural key. A
local entity resolves by its own id first and falls back to its natural
key, which covers legacy remote rows created before ids were assigned
locally.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from lexisync.client.sync.types import Entity, PlannedWrite

logger = logging.getLogger(__name__)


class RemoteIndex:
    """Two-level lookup over a remote snapshot.

    Precedence: primary key, then natural key. When two remote records
    share a natural key (pre-migration duplicates), the first record seen
    while building the index owns that key.
    """

    def __init__(self) -> None:
        self.by_id: dict[str, Entity] = {}
        self.by_natural_key: dict[Any, Entity] = {}

    @classmethod
    def build(cls, records: Iterable[Entity]) -> RemoteIndex:
        index = cls()
        for record in records:
            index.by_id[record.id] = record
            key = record.natural_key
            owner = index.by_natural_key.get(key)
            if owner is None:
                index.by_natural_key[key] = record
            elif owner.id != record.id:
                logger.warning(
                    "Duplicate remote records for %r: keeping %s, ignoring %s",
                    key,
                    owner.id,
                    record.id,
                )
        return index

    def __len__(self) -> int:
        return len(self.by_id)

    def resolve(self, entity: Entity) -> Entity | None:
        """Find the remote record matching a local entity, if any."""
        match = self.by_id.get(entity.id)
        if match is not None:
            return match
        return self.by_natural_key.get(entity.natural_key)

    def plan(self, entities: Iterable[Entity]) -> list[PlannedWrite]:
        """Pair every entity with its matched remote record (or None)."""
        return [PlannedWrite(item=e, existing=self.resolve(e)) for e in entities]
