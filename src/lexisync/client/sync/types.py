"""Shared types and dataclasses for sync operations.

This module provides:
- SyncItem, HistorySyncItem: entities of the two synced collections
- CollectionSpec: binds a collection name to its entity type
- PlannedWrite: one (entity, matched remote record) pair of a merge plan
- UpsertResult, CollectionResult, SyncResult: operation results
- FlightState: single-flight guard values of the engine
- SyncError: engine-level exception
- Timestamp helpers shared by the merger and the record converters
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Protocol

from lexisync.core.types import Language, Level

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class SyncError(Exception):
    """Base exception for sync errors."""


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a PocketBase or ISO-8601 timestamp.

    PocketBase serializes dates as "2024-01-01 12:00:00.000Z". Naive values
    are taken as UTC. Empty or unparseable values yield None.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value or not isinstance(value, str):
        return None

    text = value.strip().replace(" ", "T", 1)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    """Serialize a timestamp as ISO-8601 (None stays None)."""
    return value.isoformat() if value else None


def clock_value(value: datetime | None) -> float:
    """Comparable clock value; a missing timestamp is epoch zero."""
    if value is None:
        return 0.0
    return value.timestamp()


@dataclass
class SyncItem:
    """A vocabulary entry as seen by the sync engine.

    The natural key is (word, language). `updated` is the merge clock.
    """

    id: str
    word: str
    meaning: str = ""
    language: str = Language.JA.value
    level: str = Level.NEW.value
    reading: str | None = None
    pinyin: str | None = None
    romanization: str | None = None
    examples: list[str] = field(default_factory=list)
    created: datetime | None = None
    updated: datetime | None = None

    @property
    def natural_key(self) -> tuple[str, str]:
        return (self.word, self.language)

    @property
    def clock(self) -> float:
        return clock_value(self.updated)

    def natural_key_fields(self) -> dict[str, str]:
        """Natural key as remote filter fields."""
        return {"word": self.word, "language": self.language}

    def fingerprint(self) -> str:
        stamp = self.updated or self.created
        return f"{self.word}:{self.language}:{self.level}:{format_timestamp(stamp)}"

    def to_record(self, user_id: str) -> dict[str, Any]:
        """Build the remote record payload (without primary key)."""
        return {
            "word": self.word,
            "reading": self.reading or "",
            "pinyin": self.pinyin or "",
            "romanization": self.romanization or "",
            "meaning": self.meaning,
            "language": self.language,
            "level": self.level,
            "examples": list(self.examples),
            "user": user_id,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> SyncItem:
        """Create from a remote record; empty optional strings become None."""
        return cls(
            id=record["id"],
            word=record.get("word") or "",
            meaning=record.get("meaning") or "",
            language=record.get("language") or Language.JA.value,
            level=record.get("level") or Level.NEW.value,
            reading=record.get("reading") or None,
            pinyin=record.get("pinyin") or None,
            romanization=record.get("romanization") or None,
            examples=list(record.get("examples") or []),
            created=parse_timestamp(record.get("created")),
            updated=parse_timestamp(record.get("updated")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the local store."""
        return {
            "id": self.id,
            "word": self.word,
            "meaning": self.meaning,
            "language": self.language,
            "level": self.level,
            "reading": self.reading,
            "pinyin": self.pinyin,
            "romanization": self.romanization,
            "examples": list(self.examples),
            "created": format_timestamp(self.created),
            "updated": format_timestamp(self.updated),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncItem:
        """Deserialize from the local store."""
        return cls(
            id=data["id"],
            word=data["word"],
            meaning=data.get("meaning", ""),
            language=data.get("language", Language.JA.value),
            level=data.get("level", Level.NEW.value),
            reading=data.get("reading"),
            pinyin=data.get("pinyin"),
            romanization=data.get("romanization"),
            examples=list(data.get("examples") or []),
            created=parse_timestamp(data.get("created")),
            updated=parse_timestamp(data.get("updated")),
        )


@dataclass
class HistorySyncItem:
    """A watched video. The natural key is video_id; watched_at is the clock."""

    id: str
    video_id: str
    watched_at: datetime
    title: str = ""
    language: str = Language.JA.value
    thumbnail: str | None = None
    channel: str | None = None
    duration: float | None = None
    progress: float = 0.0
    is_favorite: bool = False

    @property
    def natural_key(self) -> str:
        return self.video_id

    @property
    def clock(self) -> float:
        return clock_value(self.watched_at)

    def natural_key_fields(self) -> dict[str, str]:
        return {"video_id": self.video_id}

    def fingerprint(self) -> str:
        return (
            f"{self.video_id}:{self.progress}:{self.is_favorite}:"
            f"{format_timestamp(self.watched_at)}"
        )

    def to_record(self, user_id: str) -> dict[str, Any]:
        return {
            "video_id": self.video_id,
            "title": self.title,
            "thumbnail": self.thumbnail or "",
            "channel": self.channel or "",
            "duration": self.duration or 0,
            "language": self.language,
            "watched_at": format_timestamp(self.watched_at),
            "progress": self.progress,
            "is_favorite": self.is_favorite,
            "user": user_id,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> HistorySyncItem:
        return cls(
            id=record["id"],
            video_id=record.get("video_id") or "",
            watched_at=parse_timestamp(record.get("watched_at")) or EPOCH,
            title=record.get("title") or "",
            language=record.get("language") or Language.JA.value,
            thumbnail=record.get("thumbnail") or None,
            channel=record.get("channel") or None,
            duration=record.get("duration") or None,
            progress=float(record.get("progress") or 0.0),
            is_favorite=bool(record.get("is_favorite", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "video_id": self.video_id,
            "watched_at": format_timestamp(self.watched_at),
            "title": self.title,
            "language": self.language,
            "thumbnail": self.thumbnail,
            "channel": self.channel,
            "duration": self.duration,
            "progress": self.progress,
            "is_favorite": self.is_favorite,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistorySyncItem:
        return cls(
            id=data["id"],
            video_id=data["video_id"],
            watched_at=parse_timestamp(data.get("watched_at")) or EPOCH,
            title=data.get("title", ""),
            language=data.get("language", Language.JA.value),
            thumbnail=data.get("thumbnail"),
            channel=data.get("channel"),
            duration=data.get("duration"),
            progress=float(data.get("progress", 0.0)),
            is_favorite=bool(data.get("is_favorite", False)),
        )


class Entity(Protocol):
    """Structural type shared by SyncItem and HistorySyncItem."""

    id: str

    @property
    def natural_key(self) -> Any: ...

    @property
    def clock(self) -> float: ...

    def natural_key_fields(self) -> dict[str, str]: ...

    def fingerprint(self) -> str: ...

    def to_record(self, user_id: str) -> dict[str, Any]: ...

    def to_dict(self) -> dict[str, Any]: ...


@dataclass(frozen=True)
class CollectionSpec:
    """Describes one synced collection.

    Attributes:
        name: Remote collection name (also the local table name).
        item_type: Entity class of the collection.
        sort: Remote sort expression used when fetching.
    """

    name: str
    item_type: type[SyncItem] | type[HistorySyncItem]
    sort: str

    def from_record(self, record: dict[str, Any]) -> Any:
        return self.item_type.from_record(record)

    def from_dict(self, data: dict[str, Any]) -> Any:
        return self.item_type.from_dict(data)


VOCABULARY = CollectionSpec(name="vocabulary", item_type=SyncItem, sort="-updated")
HISTORY = CollectionSpec(name="history", item_type=HistorySyncItem, sort="-watched_at")


def calculate_fingerprint(items: list[Any]) -> str:
    """Deterministic fingerprint of the mutable fields of every item.

    Independent of item order, so a merged snapshot and the store it was
    imported into fingerprint the same.
    """
    return "|".join(sorted(item.fingerprint() for item in items))


@dataclass
class PlannedWrite:
    """One entry of a merge plan.

    Attributes:
        item: Entity to write.
        existing: Matched remote record (update) or None (create).
    """

    item: Any
    existing: Any | None = None

    @property
    def is_create(self) -> bool:
        return self.existing is None


@dataclass
class UpsertResult:
    """Outcome of one upsert run."""

    created: int = 0
    updated: int = 0
    failed: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.created + self.updated + len(self.failed)


@dataclass
class CollectionResult:
    """Per-collection counts of a full sync."""

    name: str
    local_count: int = 0
    remote_count: int = 0
    merged_count: int = 0
    upsert: UpsertResult = field(default_factory=UpsertResult)


@dataclass
class SyncResult:
    """Result of a full sync or push-only run."""

    collections: list[CollectionResult] = field(default_factory=list)
    finished_at: datetime | None = None

    @property
    def failed_items(self) -> int:
        return sum(len(c.upsert.failed) for c in self.collections)


class FlightState(Enum):
    """Single-flight guard of the engine."""

    IDLE = auto()
    FULL_SYNC = auto()
    PUSH_ONLY = auto()

