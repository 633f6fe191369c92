"""Batched record upsert with per-item retry.

This module provides:
- BatchUpserter: writes a merge plan to a remote collection in
  concurrent batches, creating or updating each record
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from lexisync.client.sync.retry import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_ATTEMPTS,
    retry_with_backoff,
)
from lexisync.client.sync.types import PlannedWrite, UpsertResult

if TYPE_CHECKING:
    from lexisync.client.api import PocketBaseClient
    from lexisync.client.sync.types import CollectionSpec

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10


class BatchUpserter:
    """Writes planned entities to one remote collection.

    Items within a batch run concurrently; batches run one after the
    other so at most batch_size writes are outstanding. Creates carry the
    entity's stable id as the record primary key, which makes a replayed
    plan update the records a previous run created.

    upsert() never raises: an item that still fails after its retries is
    logged and reported in UpsertResult.failed.
    """

    def __init__(
        self,
        client: PocketBaseClient,
        spec: CollectionSpec,
        user_id: str,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the upserter.

        Args:
            client: PocketBase client used for writes.
            spec: Collection being written.
            user_id: Owner stamped on every record.
            batch_size: Writes issued concurrently per batch.
            max_attempts: Attempts per item for transient failures.
            initial_backoff: Delay after the first failed attempt.
            backoff_multiplier: Multiplier for each retry delay.
            sleep: Sleep coroutine (injectable for tests).
        """
        self._client = client
        self._spec = spec
        self._user_id = user_id
        self._batch_size = batch_size
        self._max_attempts = max_attempts
        self._initial_backoff = initial_backoff
        self._backoff_multiplier = backoff_multiplier
        self._sleep = sleep

    async def upsert(self, plan: list[PlannedWrite]) -> UpsertResult:
        """Write every planned entity to the remote collection.

        Args:
            plan: (entity, matched remote record) pairs.

        Returns:
            Counts of created, updated and failed items.
        """
        result = UpsertResult()
        for start in range(0, len(plan), self._batch_size):
            batch = plan[start : start + self._batch_size]
            outcomes = await asyncio.gather(
                *(self._write_item(write) for write in batch)
            )
            for write, ok in zip(batch, outcomes):
                if not ok:
                    result.failed.append(write.item.id)
                elif write.is_create:
                    result.created += 1
                else:
                    result.updated += 1

        if result.failed:
            logger.warning(
                "%s: %d of %d items not written this cycle",
                self._spec.name,
                len(result.failed),
                len(plan),
            )
        return result

    async def _write_item(self, write: PlannedWrite) -> bool:
        """Create or update one record. Returns False if it was dropped."""
        data = write.item.to_record(self._user_id)
        collection = self._spec.name

        if write.existing is not None:
            record_id = write.existing.id

            def operation() -> Awaitable[Any]:
                return self._client.update_record(collection, record_id, data)

        else:
            payload = {**data, "id": write.item.id}

            def operation() -> Awaitable[Any]:
                return self._client.create_record(collection, payload)

        try:
            await retry_with_backoff(
                operation,
                max_attempts=self._max_attempts,
                initial_backoff=self._initial_backoff,
                backoff_multiplier=self._backoff_multiplier,
                sleep=self._sleep,
            )
        except Exception as e:
            logger.error(
                "Failed to sync %s item %s (%r): %s",
                collection,
                write.item.id,
                write.item.natural_key,
                e,
            )
            return False
        return True
