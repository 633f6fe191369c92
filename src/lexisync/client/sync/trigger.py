"""Change trigger deciding when the engine runs.

This module provides:
- TriggerKind, TriggerEvent: events published on the trigger channel
- SyncTrigger: consumes the channel and invokes the engine

Event handling:
    | Event             | Action                                          |
    |-------------------|-------------------------------------------------|
    | LOGIN             | Full sync now                                   |
    | IDENTITY_RESTORED | Full sync, once per trigger lifetime            |
    | LOCAL_CHANGE      | If the fingerprint moved, (re)arm the debounce  |
    |                   | timer; push-only when it expires                |

The debounce is trailing only: every change inside the quiet period
restarts the timer and there is no maximum wait. When the quiet period
ends while the engine is busy, the dirty collections stay dirty and the
timer is re-armed.

The notify_* methods only enqueue and must be called from the thread
running the event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Coroutine, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from lexisync.client.api import PocketBaseClient
    from lexisync.client.state import LocalCollection
    from lexisync.client.sync.engine import SyncEngine
    from lexisync.client.sync.types import SyncResult

logger = logging.getLogger(__name__)


class TriggerKind(Enum):
    """Kinds of events that may start a sync."""

    LOGIN = "login"
    IDENTITY_RESTORED = "identity_restored"
    LOCAL_CHANGE = "local_change"


@dataclass
class TriggerEvent:
    """An event on the trigger channel.

    Attributes:
        kind: What happened.
        collection: Changed collection (LOCAL_CHANGE only).
        user_id: User that became available (LOGIN / IDENTITY_RESTORED).
    """

    kind: TriggerKind
    collection: str | None = None
    user_id: str | None = None


class SyncTrigger:
    """Turns login, session-restore and local-change events into syncs.

    Usage:
        trigger = SyncTrigger(engine)
        trigger.attach_client(client)
        trigger.attach(store.collections)
        trigger.start()
        ...
        await trigger.stop()
    """

    def __init__(
        self,
        engine: SyncEngine,
        debounce_seconds: float | None = None,
    ) -> None:
        """Initialize the trigger.

        Args:
            engine: Engine to invoke.
            debounce_seconds: Quiet period before a push-only sync
                (default: the engine's SyncConfig.debounce_seconds).
        """
        self._engine = engine
        if debounce_seconds is None:
            debounce_seconds = engine.config.debounce_seconds
        self._debounce_seconds = debounce_seconds

        self._queue: asyncio.Queue[TriggerEvent] = asyncio.Queue()
        self._consumer: asyncio.Task[None] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._dirty: set[str] = set()
        self._restored = False
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def is_running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    @property
    def debounce_seconds(self) -> float:
        return self._debounce_seconds

    @property
    def push_pending(self) -> bool:
        """Check whether a debounced push is scheduled."""
        return self._timer is not None

    # === Producers ===

    def notify_login(self, user_id: str | None = None) -> None:
        """A user logged in."""
        self._queue.put_nowait(TriggerEvent(TriggerKind.LOGIN, user_id=user_id))

    def notify_identity_restored(self, user_id: str | None = None) -> None:
        """A previously known user was restored from local storage."""
        self._queue.put_nowait(
            TriggerEvent(TriggerKind.IDENTITY_RESTORED, user_id=user_id)
        )

    def notify_local_change(self, collection: str) -> None:
        """A local collection was mutated."""
        self._queue.put_nowait(
            TriggerEvent(TriggerKind.LOCAL_CHANGE, collection=collection)
        )

    def attach(self, collections: Iterable[LocalCollection]) -> None:
        """Subscribe to change notifications of local collections."""
        for collection in collections:
            collection.add_listener(self.notify_local_change)

    def attach_client(self, client: PocketBaseClient) -> None:
        """Subscribe to login events of the API client.

        A client that already holds a saved session counts as a restored
        identity.
        """

        def on_auth(user_id: str | None) -> None:
            if user_id:
                self.notify_login(user_id)

        client.add_auth_listener(on_auth)
        if client.is_authenticated:
            self.notify_identity_restored(client.user_id)

    # === Lifecycle ===

    def start(self) -> None:
        """Start consuming the channel. Requires a running event loop."""
        if self.is_running:
            logger.warning("SyncTrigger already running")
            return
        self._consumer = asyncio.get_running_loop().create_task(
            self._run(), name="SyncTrigger"
        )
        logger.debug("SyncTrigger started")

    async def stop(self) -> None:
        """Stop consuming, drop any pending push and wait for running syncs."""
        self._cancel_timer()
        if self._consumer is not None:
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        # A deferred push may have re-armed the timer meanwhile
        self._cancel_timer()
        logger.debug("SyncTrigger stopped")

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                self.handle(event)
            except Exception as e:
                logger.warning("Failed to handle %s: %s", event.kind.value, e)
            finally:
                self._queue.task_done()

    # === Dispatch ===

    def handle(self, event: TriggerEvent) -> None:
        """Apply the action for one event."""
        if event.kind is TriggerKind.LOGIN:
            logger.info("User logged in (%s), syncing", event.user_id)
            self._spawn(self._engine.sync())
        elif event.kind is TriggerKind.IDENTITY_RESTORED:
            if self._restored:
                return
            self._restored = True
            logger.info("User restored from storage (%s), syncing", event.user_id)
            self._spawn(self._engine.sync())
        elif event.kind is TriggerKind.LOCAL_CHANGE and event.collection:
            self._on_local_change(event.collection)

    def _on_local_change(self, name: str) -> None:
        if not self._engine.has_identity:
            return
        fingerprint = self._engine.current_fingerprint(name)
        if not fingerprint:
            return
        if fingerprint == self._engine.last_pushed_fingerprint(name):
            return
        self._dirty.add(name)
        self._schedule_push()

    def _schedule_push(self) -> None:
        """(Re)arm the debounce timer."""
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._debounce_seconds, self._flush)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _flush(self) -> None:
        self._timer = None
        names = sorted(self._dirty)
        self._dirty.clear()
        if names:
            logger.debug("Quiet period over, pushing %s", ", ".join(names))
            self._spawn(self._push(names))

    async def _push(self, names: list[str]) -> SyncResult | None:
        # Checked without an await before push_only claims the guard
        if self._engine.is_running:
            logger.debug("Engine busy, deferring push of %s", ", ".join(names))
            self._dirty.update(names)
            self._schedule_push()
            return None
        return await self._engine.push_only(names)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def force_sync(self) -> SyncResult | None:
        """Drop pending pushes and run a full sync now."""
        self._cancel_timer()
        self._dirty.clear()
        self._restored = False
        return await self._engine.force_sync()
