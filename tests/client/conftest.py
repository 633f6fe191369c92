"""Shared fixtures for client tests."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from lexisync.client.state import LocalStore
from tests.client.fakes import FakeRemote, SleepRecorder


@pytest.fixture
def remote() -> FakeRemote:
    """In-memory PocketBase client logged in as user1."""
    return FakeRemote()


@pytest.fixture
def sleeper() -> SleepRecorder:
    """Sleep replacement recording backoff delays."""
    return SleepRecorder()


@pytest.fixture
def store(tmp_path: Path) -> Generator[LocalStore, None, None]:
    """Local SQLite store in a temporary directory."""
    s = LocalStore(tmp_path / "local.db")
    yield s
    s.close()
