"""Tests for retry with backoff and the batched upserter."""

from __future__ import annotations

import asyncio

import pytest

from lexisync.client.api import (
    APIError,
    AuthenticationError,
    NetworkError,
    ValidationError,
)
from lexisync.client.sync.identity import RemoteIndex
from lexisync.client.sync.retry import is_transient_error, retry_with_backoff
from lexisync.client.sync.types import (
    HISTORY,
    VOCABULARY,
    CollectionSpec,
    PlannedWrite,
    SyncItem,
)
from lexisync.client.sync.upload import BatchUpserter
from tests.client.fakes import (
    FakeRemote,
    SleepRecorder,
    history,
    network_error,
    ts,
    vocab,
)


class TestIsTransientError:
    """Tests for transient error classification."""

    def test_network_error_is_transient(self) -> None:
        assert is_transient_error(NetworkError("boom")) is True

    def test_status_zero_is_transient(self) -> None:
        assert is_transient_error(APIError("aborted", status_code=0)) is True

    def test_absent_status_is_transient(self) -> None:
        assert is_transient_error(APIError("no response")) is True

    def test_connection_errors_are_transient(self) -> None:
        assert is_transient_error(ConnectionRefusedError()) is True
        assert is_transient_error(TimeoutError()) is True

    def test_http_errors_are_permanent(self) -> None:
        assert is_transient_error(ValidationError("bad", 400)) is False
        assert is_transient_error(AuthenticationError("denied", 403)) is False
        assert is_transient_error(APIError("server", 500)) is False

    def test_other_exceptions_are_permanent(self) -> None:
        assert is_transient_error(ValueError("bug")) is False


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, sleeper: SleepRecorder) -> None:
        """Should return immediately without sleeping."""

        async def func() -> str:
            return "ok"

        assert await retry_with_backoff(func, sleep=sleeper) == "ok"
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self, sleeper: SleepRecorder) -> None:
        """Should retry transient failures with doubling delays."""
        attempts = 0

        async def func() -> str:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise network_error()
            return "ok"

        assert await retry_with_backoff(func, sleep=sleeper) == "ok"
        assert attempts == 3
        assert sleeper.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, sleeper: SleepRecorder) -> None:
        """Should raise the last error after three attempts."""
        attempts = 0

        async def func() -> None:
            nonlocal attempts
            attempts += 1
            raise network_error()

        with pytest.raises(NetworkError):
            await retry_with_backoff(func, sleep=sleeper)
        assert attempts == 3
        assert sleeper.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self, sleeper: SleepRecorder) -> None:
        """Should raise non-transient errors after one attempt."""
        attempts = 0

        async def func() -> None:
            nonlocal attempts
            attempts += 1
            raise ValidationError("bad", 400)

        with pytest.raises(ValidationError):
            await retry_with_backoff(func, sleep=sleeper)
        assert attempts == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_backoff_capped(self, sleeper: SleepRecorder) -> None:
        """Delays should not exceed max_backoff."""

        async def func() -> None:
            raise network_error()

        with pytest.raises(NetworkError):
            await retry_with_backoff(
                func, max_attempts=5, max_backoff=3.0, sleep=sleeper
            )
        assert sleeper.delays == [1.0, 2.0, 3.0, 3.0]


def make_upserter(
    remote: FakeRemote,
    sleeper: SleepRecorder,
    spec: CollectionSpec = VOCABULARY,
    batch_size: int = 10,
) -> BatchUpserter:
    return BatchUpserter(remote, spec, "user1", batch_size=batch_size, sleep=sleeper)  # type: ignore[arg-type]


class TestBatchUpserter:
    """Tests for BatchUpserter."""

    @pytest.mark.asyncio
    async def test_creates_with_stable_id(
        self, remote: FakeRemote, sleeper: SleepRecorder
    ) -> None:
        """Unmatched items are created with their own id as primary key."""
        item = history("v1", watched_at=ts(3), title="Episode 1")

        result = await make_upserter(remote, sleeper, spec=HISTORY).upsert(
            [PlannedWrite(item=item)]
        )

        assert result.created == 1
        assert remote.ops("create") == [("create", "history", "h-v1")]
        assert remote.ops("update") == []
        stored = remote.records["history"]["h-v1"]
        assert stored["video_id"] == "v1"
        assert stored["user"] == "user1"

    @pytest.mark.asyncio
    async def test_updates_matched_record(
        self, remote: FakeRemote, sleeper: SleepRecorder
    ) -> None:
        """Matched items are updated by the remote primary key."""
        remote.seed("vocabulary", {"id": "legacy", "word": "猫", "language": "ja", "user": "user1"})
        existing = SyncItem.from_record(remote.records["vocabulary"]["legacy"])
        item = vocab("猫", level="known", id="new-id")

        result = await make_upserter(remote, sleeper).upsert(
            [PlannedWrite(item=item, existing=existing)]
        )

        assert result.updated == 1
        assert remote.ops("update") == [("update", "vocabulary", "legacy")]
        assert remote.records["vocabulary"]["legacy"]["level"] == "known"

    @pytest.mark.asyncio
    async def test_transient_failure_retried(
        self, remote: FakeRemote, sleeper: SleepRecorder
    ) -> None:
        """A transient failure is retried and eventually written."""
        remote.failures["猫-ja"] = [network_error()]

        result = await make_upserter(remote, sleeper).upsert(
            [PlannedWrite(item=vocab("猫"))]
        )

        assert result.created == 1
        assert len(remote.ops("create")) == 2
        assert sleeper.delays == [1.0]

    @pytest.mark.asyncio
    async def test_transient_failure_exhausted(
        self, remote: FakeRemote, sleeper: SleepRecorder
    ) -> None:
        """A permanently unreachable item is attempted three times then dropped."""
        remote.failures["猫-ja"] = [network_error() for _ in range(5)]

        result = await make_upserter(remote, sleeper).upsert(
            [PlannedWrite(item=vocab("猫")), PlannedWrite(item=vocab("犬"))]
        )

        assert result.failed == ["猫-ja"]
        assert result.created == 1
        assert [c for c in remote.ops("create") if c[2] == "猫-ja"] == [
            ("create", "vocabulary", "猫-ja")
        ] * 3
        assert sleeper.delays == [1.0, 2.0]
        assert "猫-ja" not in remote.records["vocabulary"]

    @pytest.mark.asyncio
    async def test_permanent_failure_attempted_once(
        self, remote: FakeRemote, sleeper: SleepRecorder
    ) -> None:
        """A validation error is not retried and does not abort the batch."""
        remote.failures["猫-ja"] = [ValidationError("invalid", 400)]

        result = await make_upserter(remote, sleeper).upsert(
            [PlannedWrite(item=vocab("猫")), PlannedWrite(item=vocab("犬"))]
        )

        assert result.failed == ["猫-ja"]
        assert len([c for c in remote.ops("create") if c[2] == "猫-ja"]) == 1
        assert sleeper.delays == []
        assert "犬-ja" in remote.records["vocabulary"]

    @pytest.mark.asyncio
    async def test_replay_is_idempotent(
        self, remote: FakeRemote, sleeper: SleepRecorder
    ) -> None:
        """Replaying a plan after re-resolving turns creates into updates."""
        items = [vocab(f"w{i}", updated=ts(1)) for i in range(4)]
        upserter = make_upserter(remote, sleeper)

        await upserter.upsert(RemoteIndex().plan(items))
        first_state = {k: dict(v) for k, v in remote.records["vocabulary"].items()}

        existing = [SyncItem.from_record(r) for r in remote.records["vocabulary"].values()]
        second = await upserter.upsert(RemoteIndex.build(existing).plan(items))

        assert second.created == 0
        assert second.updated == 4
        assert remote.records["vocabulary"] == first_state

    @pytest.mark.asyncio
    async def test_retried_create_after_partial_failure(
        self, remote: FakeRemote, sleeper: SleepRecorder
    ) -> None:
        """Re-running after a partial failure never duplicates records."""
        items = [vocab("a"), vocab("b")]
        remote.failures["b-ja"] = [ValidationError("invalid", 400)]
        upserter = make_upserter(remote, sleeper)

        await upserter.upsert(RemoteIndex().plan(items))
        existing = [SyncItem.from_record(r) for r in remote.records["vocabulary"].values()]
        result = await upserter.upsert(RemoteIndex.build(existing).plan(items))

        assert result.updated == 1
        assert result.created == 1
        assert sorted(remote.records["vocabulary"]) == ["a-ja", "b-ja"]

    @pytest.mark.asyncio
    async def test_batches_bound_concurrency(self, sleeper: SleepRecorder) -> None:
        """At most batch_size writes are in flight at once."""

        class SlowRemote(FakeRemote):
            def __init__(self) -> None:
                super().__init__()
                self.in_flight = 0
                self.peak = 0

            async def create_record(self, collection, data):  # type: ignore[no-untyped-def]
                self.in_flight += 1
                self.peak = max(self.peak, self.in_flight)
                await asyncio.sleep(0.01)
                self.in_flight -= 1
                return await super().create_record(collection, data)

        remote = SlowRemote()
        items = [vocab(f"w{i}") for i in range(25)]

        result = await make_upserter(remote, sleeper, batch_size=10).upsert(
            RemoteIndex().plan(items)
        )

        assert result.created == 25
        assert remote.peak == 10

    @pytest.mark.asyncio
    async def test_empty_plan(self, remote: FakeRemote, sleeper: SleepRecorder) -> None:
        """An empty plan writes nothing."""
        result = await make_upserter(remote, sleeper).upsert([])

        assert result.total == 0
        assert remote.calls == []
