"""Sync engine reconciling local collections with PocketBase.

This module provides:
- SyncEngine: full bidirectional sync and push-only sync of the local
  collections, guarded so that only one cycle runs at a time

Full sync, per collection:
    fetch remote -> read local -> merge -> push merged -> import merged

Push-only:
    read local -> push
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Protocol

from lexisync.client.api import build_filter
from lexisync.client.sync.identity import RemoteIndex
from lexisync.client.sync.merge import merge_items
from lexisync.client.sync.types import (
    CollectionResult,
    FlightState,
    SyncError,
    SyncResult,
    UpsertResult,
    calculate_fingerprint,
)
from lexisync.client.sync.upload import BatchUpserter
from lexisync.core.config import SyncConfig
from lexisync.core.types import SyncStatus

if TYPE_CHECKING:
    from lexisync.client.api import PocketBaseClient
    from lexisync.client.sync.types import CollectionSpec

logger = logging.getLogger(__name__)

StatusListener = Callable[[SyncStatus], None]


class LocalSource(Protocol):
    """Local collection capability consumed by the engine."""

    @property
    def spec(self) -> CollectionSpec: ...

    def get_all_items(self) -> list[Any]: ...

    def import_items(self, items: Iterable[Any]) -> None: ...


class SyncEngine:
    """Coordinates synchronization of local collections with the server.

    Usage:
        store = LocalStore(path)
        engine = SyncEngine(client, [store.vocabulary, store.history])
        await engine.sync()

    Only `status` and `last_sync_time` are meant to be observed from the
    outside; per-item failures are reported through logging.
    """

    def __init__(
        self,
        client: PocketBaseClient,
        collections: list[LocalSource],
        config: SyncConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the sync engine.

        Args:
            client: PocketBase client (provides the current user id).
            collections: Local collections to keep in sync, in sync order.
            config: Batching and retry settings.
            sleep: Sleep coroutine used for retry backoff.
        """
        self._client = client
        self._collections = {c.spec.name: c for c in collections}
        self._config = config or SyncConfig()
        self._sleep = sleep

        self._flight = FlightState.IDLE
        self._status = SyncStatus.IDLE
        self._last_sync_time: datetime | None = None
        self._pushed_fingerprints: dict[str, str] = {}
        self._status_listeners: list[StatusListener] = []

    # === Observable state ===

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def last_sync_time(self) -> datetime | None:
        return self._last_sync_time

    @property
    def flight_state(self) -> FlightState:
        return self._flight

    @property
    def has_identity(self) -> bool:
        return bool(self._client.user_id)

    @property
    def is_running(self) -> bool:
        return self._flight is not FlightState.IDLE

    @property
    def collection_names(self) -> list[str]:
        return list(self._collections)

    @property
    def config(self) -> SyncConfig:
        return self._config

    def _collection(self, name: str) -> LocalSource:
        try:
            return self._collections[name]
        except KeyError:
            raise SyncError(f"Unknown collection: {name}") from None

    def add_status_listener(self, callback: StatusListener) -> None:
        """Register a callback invoked on every status change."""
        self._status_listeners.append(callback)

    def _set_status(self, status: SyncStatus) -> None:
        self._status = status
        for callback in list(self._status_listeners):
            try:
                callback(status)
            except Exception as e:
                logger.warning("Status listener failed: %s", e)

    # === Fingerprints ===

    def current_fingerprint(self, name: str) -> str:
        """Fingerprint of the current local snapshot of a collection."""
        return calculate_fingerprint(self._collection(name).get_all_items())

    def last_pushed_fingerprint(self, name: str) -> str | None:
        """Fingerprint recorded after the last successful push."""
        return self._pushed_fingerprints.get(name)

    # === Single-flight guard ===

    def _try_acquire(self, kind: FlightState) -> bool:
        """Claim the guard. Must run before the caller's first await."""
        if self._flight is not FlightState.IDLE:
            logger.debug(
                "Sync already in flight (%s), dropping %s",
                self._flight.name,
                kind.name,
            )
            return False
        self._flight = kind
        return True

    def _release(self) -> None:
        self._flight = FlightState.IDLE

    # === Public entry points ===

    async def sync(self) -> SyncResult | None:
        """Run a full bidirectional sync of every collection.

        Returns:
            SyncResult on success, None if skipped (no identity, another
            cycle in flight) or failed. Never raises.
        """
        user_id = self._client.user_id
        if not user_id:
            logger.debug("No authenticated user, skipping sync")
            return None
        if not self._try_acquire(FlightState.FULL_SYNC):
            return None

        self._set_status(SyncStatus.SYNCING)
        logger.info("Starting full sync for user %s", user_id)
        try:
            result = SyncResult()
            for collection in self._collections.values():
                result.collections.append(
                    await self._sync_collection(collection, user_id)
                )
            self._last_sync_time = datetime.now(timezone.utc)
            result.finished_at = self._last_sync_time
            self._set_status(SyncStatus.SYNCED)
            logger.info("Sync complete")
            return result
        except Exception:
            logger.exception("Sync failed")
            self._set_status(SyncStatus.ERROR)
            return None
        finally:
            self._release()

    async def push_only(self, names: Iterable[str] | None = None) -> SyncResult | None:
        """Upload the current local snapshot without fetching or merging.

        Args:
            names: Collections to push (default: all).

        Returns:
            SyncResult on success, None if skipped or failed. The published
            status is left untouched. Never raises.
        """
        user_id = self._client.user_id
        if not user_id:
            return None
        if not self._try_acquire(FlightState.PUSH_ONLY):
            return None

        selected = list(self._collections) if names is None else list(names)
        try:
            result = SyncResult()
            for name in selected:
                collection = self._collection(name)
                items = collection.get_all_items()
                upsert = await self._push(collection.spec, items, user_id)
                self._pushed_fingerprints[name] = calculate_fingerprint(items)
                result.collections.append(
                    CollectionResult(
                        name=name,
                        local_count=len(items),
                        merged_count=len(items),
                        upsert=upsert,
                    )
                )
                logger.info("Pushed %d %s items", len(items), name)
            result.finished_at = datetime.now(timezone.utc)
            return result
        except Exception:
            logger.exception("Push failed")
            return None
        finally:
            self._release()

    async def force_sync(self) -> SyncResult | None:
        """Forget recorded fingerprints and run a full sync."""
        self._pushed_fingerprints.clear()
        return await self.sync()

    async def delete_from_server(self, name: str, item: Any) -> int:
        """Delete the current user's remote records matching an item's natural key.

        Returns:
            Number of records deleted. Errors are logged, not raised.
        """
        user_id = self._client.user_id
        if not user_id:
            return 0

        deleted = 0
        try:
            records = await self._client.list_records(
                name, filter=build_filter(user=user_id, **item.natural_key_fields())
            )
            for record in records:
                await self._client.delete_record(name, record["id"])
                deleted += 1
                logger.info("Deleted %s record %s", name, record["id"])
        except Exception as e:
            logger.error("Delete of %r from %s failed: %s", item.natural_key, name, e)
        return deleted

    # === Cycle steps ===

    async def _sync_collection(
        self, collection: LocalSource, user_id: str
    ) -> CollectionResult:
        spec = collection.spec
        remote = await self._fetch_remote(spec, user_id)
        logger.info("Fetched %d %s items from server", len(remote), spec.name)

        local = collection.get_all_items()
        merged = merge_items(local, remote)
        logger.info(
            "%s: %d local, %d remote, %d merged",
            spec.name,
            len(local),
            len(remote),
            len(merged),
        )

        upsert = await self._push(spec, merged, user_id)
        collection.import_items(merged)
        self._pushed_fingerprints[spec.name] = calculate_fingerprint(merged)

        return CollectionResult(
            name=spec.name,
            local_count=len(local),
            remote_count=len(remote),
            merged_count=len(merged),
            upsert=upsert,
        )

    async def _fetch_remote(self, spec: CollectionSpec, user_id: str) -> list[Any]:
        """Fetch the remote snapshot. A failed fetch yields an empty snapshot.

        With an empty snapshot the merge keeps every local entity, which
        favors progress over safety when the server is unreachable.
        """
        try:
            records = await self._client.list_records(
                spec.name, filter=build_filter(user=user_id), sort=spec.sort
            )
        except Exception as e:
            logger.warning(
                "Fetch of %s failed, using empty remote snapshot: %s", spec.name, e
            )
            return []
        return [spec.from_record(record) for record in records]

    async def _push(
        self, spec: CollectionSpec, items: list[Any], user_id: str
    ) -> UpsertResult:
        """Plan creates/updates against current remote records and write them."""
        existing = await self._client.list_records(
            spec.name, filter=build_filter(user=user_id)
        )
        index = RemoteIndex.build(spec.from_record(record) for record in existing)
        plan = index.plan(items)

        upserter = BatchUpserter(
            self._client,
            spec,
            user_id,
            batch_size=self._config.batch_size,
            max_attempts=self._config.max_attempts,
            initial_backoff=self._config.initial_backoff,
            backoff_multiplier=self._config.backoff_multiplier,
            sleep=self._sleep,
        )
        return await upserter.upsert(plan)
