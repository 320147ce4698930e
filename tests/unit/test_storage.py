# tests/unit/test_storage.py
"""Tests for the persisted key-value store."""

import json
import re

from utils.storage import (
    PLAYER_ID_KEY,
    JsonFileStore,
    KeyValueStore,
    generate_player_id,
    load_or_create_player_id,
)


class TestKeyValueStore:
    def test_get_set_remove(self):
        store = KeyValueStore()
        assert store.get("k") is None
        store.set("k", "v")
        assert store.get("k") == "v"
        store.remove("k")
        store.remove("k")
        assert store.get("k") is None


class TestJsonFileStore:
    """Tests for the file-backed store."""

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "data" / "identity.json"
        JsonFileStore(str(path)).set("nickname", "Ann")

        assert JsonFileStore(str(path)).get("nickname") == "Ann"
        assert json.loads(path.read_text()) == {"nickname": "Ann"}

    def test_remove_persists(self, tmp_path):
        path = tmp_path / "identity.json"
        store = JsonFileStore(str(path))
        store.set("room_id", "ABC123")
        store.remove("room_id")

        assert JsonFileStore(str(path)).get("room_id") is None

    def test_corrupt_file_starts_empty(self, tmp_path, caplog):
        path = tmp_path / "identity.json"
        path.write_text("{not json")

        store = JsonFileStore(str(path))
        assert store.get("player_id") is None
        assert "Starting empty" in caplog.text


class TestPlayerIdentity:
    """Tests for the local player id."""

    def test_format(self):
        assert re.fullmatch(r"player_\d{13}_[a-z0-9]{9}", generate_player_id())

    def test_created_once(self):
        store = KeyValueStore()
        first = load_or_create_player_id(store)
        assert load_or_create_player_id(store) == first
        assert store.get(PLAYER_ID_KEY) == first
