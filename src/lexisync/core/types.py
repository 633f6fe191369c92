"""Shared types for lexisync.

This module defines enums used by the data model, the engine and the CLI.
"""

from __future__ import annotations

from enum import Enum


class SyncStatus(str, Enum):
    """Published status of the sync engine.

    idle -> syncing -> {synced, error}, and back to syncing on the next run.
    """

    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


class Language(str, Enum):
    """Source language of a vocabulary or history entry."""

    JA = "ja"
    ZH = "zh"
    KO = "ko"
    EN = "en"


class Level(str, Enum):
    """Learning level of a vocabulary entry."""

    NEW = "new"
    LEARNING = "learning"
    KNOWN = "known"
    IGNORED = "ignored"
