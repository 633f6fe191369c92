"""Tests for the local collection store."""

from __future__ import annotations

from pathlib import Path

import pytest

from lexisync.client.state import LocalStore
from tests.client.fakes import history, ts, vocab


class TestLocalStore:
    """Tests for LocalStore."""

    def test_creates_database(self, tmp_path: Path) -> None:
        """Should create the database file and parent directory."""
        db_path = tmp_path / "nested" / "local.db"

        with LocalStore(db_path) as store:
            assert db_path.exists()
            assert [c.name for c in store.collections] == ["vocabulary", "history"]

    def test_collection_lookup(self, store: LocalStore) -> None:
        """Should return collections by name."""
        assert store.collection("history") is store.history
        with pytest.raises(KeyError):
            store.collection("notes")

    def test_state_roundtrip(self, store: LocalStore) -> None:
        """Should store and overwrite key-value state."""
        assert store.get_state("last_sync_time") is None

        store.set_state("last_sync_time", "a")
        store.set_state("last_sync_time", "b")

        assert store.get_state("last_sync_time") == "b"

    def test_persists_across_reopen(self, tmp_path: Path) -> None:
        """Entities survive closing and reopening the database."""
        db_path = tmp_path / "local.db"
        item = vocab("猫", meaning="cat", examples=["猫が好き"], updated=ts(2))

        with LocalStore(db_path) as store:
            store.vocabulary.put_item(item)

        with LocalStore(db_path) as store:
            assert store.vocabulary.get_all_items() == [item]


class TestLocalCollection:
    """Tests for LocalCollection."""

    def test_put_and_get(self, store: LocalStore) -> None:
        """Should read back an entity by natural key."""
        item = vocab("日本", reading="にほん", updated=ts(1))
        store.vocabulary.put_item(item)

        assert store.vocabulary.get_item(("日本", "ja")) == item
        assert store.vocabulary.get_item(("日本", "zh")) is None
        assert len(store.vocabulary) == 1

    def test_import_replaces_by_natural_key(self, store: LocalStore) -> None:
        """Import overwrites entries with the same natural key, keeps others."""
        store.vocabulary.put_item(vocab("猫", level="new", id="old-id"))
        store.vocabulary.put_item(vocab("犬"))

        store.vocabulary.import_items([vocab("猫", level="known", id="new-id"), vocab("鳥")])

        items = {i.word: i for i in store.vocabulary.get_all_items()}
        assert set(items) == {"猫", "犬", "鳥"}
        assert items["猫"].level == "known"
        assert items["猫"].id == "new-id"
        assert len(store.vocabulary) == 3

    def test_history_keyed_by_video_id(self, store: LocalStore) -> None:
        """History entries with the same video id collapse to one."""
        store.history.import_items([history("v1", progress=10.0)])
        store.history.import_items([history("v1", progress=90.0, id="other")])

        items = store.history.get_all_items()
        assert len(items) == 1
        assert items[0].progress == 90.0

    def test_snapshot_keeps_insertion_order(self, store: LocalStore) -> None:
        """Snapshots are stable between reads."""
        store.history.import_items([history(v) for v in ("c", "a", "b")])

        first = [i.video_id for i in store.history.get_all_items()]
        second = [i.video_id for i in store.history.get_all_items()]

        assert first == ["c", "a", "b"]
        assert first == second

    def test_remove_item(self, store: LocalStore) -> None:
        """Should remove by natural key and report whether it existed."""
        item = vocab("猫")
        store.vocabulary.put_item(item)

        assert store.vocabulary.remove_item(item) is True
        assert store.vocabulary.remove_item(item) is False
        assert len(store.vocabulary) == 0

    def test_clear(self, store: LocalStore) -> None:
        store.history.import_items([history("a"), history("b")])

        store.history.clear()

        assert store.history.get_all_items() == []

    def test_listeners_notified_on_mutation(self, store: LocalStore) -> None:
        """Every mutation notifies listeners with the collection name."""
        seen: list[str] = []
        store.vocabulary.add_listener(seen.append)

        store.vocabulary.put_item(vocab("猫"))
        store.vocabulary.import_items([vocab("犬")])
        store.vocabulary.remove_item(vocab("猫"))
        store.vocabulary.remove_item(vocab("猫"))

        assert seen == ["vocabulary", "vocabulary", "vocabulary"]

    def test_failing_listener_is_isolated(self, store: LocalStore) -> None:
        """A raising listener does not break the write or other listeners."""
        seen: list[str] = []

        def broken(name: str) -> None:
            raise RuntimeError("listener bug")

        store.history.add_listener(broken)
        store.history.add_listener(seen.append)
        store.history.put_item(history("v1"))

        assert seen == ["history"]
        assert len(store.history) == 1

    def test_failed_import_rolls_back(self, store: LocalStore) -> None:
        """A failing import leaves the collection untouched."""
        store.vocabulary.put_item(vocab("猫"))

        class Broken:
            natural_key = ("壊", "ja")
            id = "broken"

            def to_dict(self) -> dict:  # type: ignore[type-arg]
                raise ValueError("not serializable")

        with pytest.raises(ValueError):
            store.vocabulary.import_items([vocab("犬"), Broken()])

        assert [i.word for i in store.vocabulary.get_all_items()] == ["猫"]
