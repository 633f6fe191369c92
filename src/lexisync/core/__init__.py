"""Core module - Shared configuration and types."""

from lexisync.core.config import (
    ServerConfig,
    SyncConfig,
    get_config_dir,
    get_config_file,
    load_config,
    load_server_config,
    load_sync_config,
    save_config,
)
from lexisync.core.types import Language, Level, SyncStatus

__all__ = [
    # Config
    "ServerConfig",
    "SyncConfig",
    "get_config_dir",
    "get_config_file",
    "load_config",
    "load_server_config",
    "load_sync_config",
    "save_config",
    # Types
    "Language",
    "Level",
    "SyncStatus",
]
