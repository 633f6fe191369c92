"""Shared configuration classes for lexisync.

This module provides:
- ServerConfig: connection settings for the remote record store
- SyncConfig: tuning knobs of the sync engine (batching, retry, debounce)
- JSON config file helpers used by the CLI (server session and the
  optional "sync" tuning section)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any


@dataclass
class ServerConfig:
    """Configuration for connecting to a PocketBase server.

    Attributes:
        server_url: Base URL of the server (e.g., "https://pb.example.com").
        token: Authentication token of the current user (empty when logged out).
        user_id: Record id of the authenticated user, if known.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str = ""
    user_id: str | None = None
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS."""
        return self.server_url.startswith("https://")


@dataclass
class SyncConfig:
    """Tuning parameters for the sync engine.

    Attributes:
        batch_size: Number of remote writes issued concurrently per batch.
        max_attempts: Attempts per item before it is dropped for the cycle.
        initial_backoff: Delay after the first failed attempt, in seconds.
        backoff_multiplier: Multiplier applied to the delay after each failure.
        debounce_seconds: Quiet period before a push-only sync fires.
        page_size: Records requested per page when listing a collection.
    """

    batch_size: int = 10
    max_attempts: int = 3
    initial_backoff: float = 1.0
    backoff_multiplier: float = 2.0
    debounce_seconds: float = 2.0
    page_size: int = 500

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be positive, got {self.max_attempts}")
        if self.page_size < 1:
            raise ValueError(f"page_size must be positive, got {self.page_size}")


def get_config_dir() -> Path:
    """Get the configuration directory for lexisync.

    Returns:
        Path to ~/.lexisync.
    """
    return Path.home() / ".lexisync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def load_server_config() -> ServerConfig | None:
    """Build a ServerConfig from the saved config file.

    Returns:
        ServerConfig, or None if no server URL has been configured.
    """
    config = load_config()
    if not config.get("server_url"):
        return None
    return ServerConfig(
        server_url=config["server_url"],
        token=config.get("auth_token", ""),
        user_id=config.get("user_id"),
        timeout=float(config.get("timeout", 30.0)),
        verify_ssl=bool(config.get("verify_ssl", True)),
    )


def load_sync_config() -> SyncConfig:
    """Build a SyncConfig from the optional "sync" section of the config file.

    Unknown keys are ignored; missing keys keep their defaults.
    """
    section = load_config().get("sync") or {}
    known = {f.name for f in fields(SyncConfig)}
    return SyncConfig(**{k: v for k, v in section.items() if k in known})
