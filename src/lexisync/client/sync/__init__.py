"""Sync engine for the vocabulary and history collections.

Architecture:
    SyncTrigger → SyncEngine → (RemoteIndex, merge_items, BatchUpserter)

Components:
- **SyncTrigger**: Consumes login / restore / local-change events, debounces
  local changes into push-only syncs
- **SyncEngine**: Orchestrates fetch → merge → upsert → import per collection,
  owns the single-flight guard and the published status
- **RemoteIndex**: Matches local entities to remote records by id, then by
  natural key
- **merge_items**: Last-writer-wins merge keyed by natural key
- **BatchUpserter**: Concurrent batched creates/updates with per-item retry
"""

from lexisync.client.sync.engine import SyncEngine
from lexisync.client.sync.identity import RemoteIndex
from lexisync.client.sync.merge import merge_by_timestamp, merge_items
from lexisync.client.sync.retry import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_BACKOFF,
    NETWORK_EXCEPTIONS,
    is_transient_error,
    retry_with_backoff,
)
from lexisync.client.sync.trigger import SyncTrigger, TriggerEvent, TriggerKind
from lexisync.client.sync.types import (
    HISTORY,
    VOCABULARY,
    CollectionResult,
    CollectionSpec,
    FlightState,
    HistorySyncItem,
    PlannedWrite,
    SyncError,
    SyncItem,
    SyncResult,
    UpsertResult,
    calculate_fingerprint,
    parse_timestamp,
)
from lexisync.client.sync.upload import DEFAULT_BATCH_SIZE, BatchUpserter

__all__ = [
    # Retry functions and constants
    "DEFAULT_BACKOFF_MULTIPLIER",
    "DEFAULT_INITIAL_BACKOFF",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_MAX_BACKOFF",
    "NETWORK_EXCEPTIONS",
    "is_transient_error",
    "retry_with_backoff",
    # Types and dataclasses
    "HISTORY",
    "VOCABULARY",
    "CollectionResult",
    "CollectionSpec",
    "FlightState",
    "HistorySyncItem",
    "PlannedWrite",
    "SyncError",
    "SyncItem",
    "SyncResult",
    "UpsertResult",
    "calculate_fingerprint",
    "parse_timestamp",
    # Merge and identity
    "RemoteIndex",
    "merge_by_timestamp",
    "merge_items",
    # Upsert
    "DEFAULT_BATCH_SIZE",
    "BatchUpserter",
    # Orchestration
    "SyncEngine",
    "SyncTrigger",
    "TriggerEvent",
    "TriggerKind",
]
