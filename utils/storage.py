"""Small persistent key-value store for the local player identity.

Values live in a JSON file so the identity survives restarts of the
terminal client.
"""
import json
import logging
import random
import string
import time
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

PLAYER_ID_KEY = "player_id"
NICKNAME_KEY = "nickname"
ROOM_ID_KEY = "room_id"

_ID_ALPHABET = string.ascii_lowercase + string.digits


class KeyValueStore:
    """In-memory string store. Base class for the file-backed store."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str):
        self._data[key] = value

    def remove(self, key: str):
        self._data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """Key-value store persisted as a flat JSON object."""

    def __init__(self, path: str):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self):
        """Load existing data, starting empty if the file is absent or corrupt."""
        if not self.path.exists():
            return
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read %s: %s. Starting empty.", self.path, e)
            return
        if isinstance(data, dict):
            self._data = {str(k): str(v) for k, v in data.items() if v is not None}

    def _save(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, 'w', encoding='utf-8') as f:
            json.dump(self._data, f, indent=2)
        tmp.replace(self.path)

    def set(self, key: str, value: str):
        super().set(key, value)
        self._save()

    def remove(self, key: str):
        if key in self._data:
            super().remove(key)
            self._save()


def generate_player_id() -> str:
    """Create a new id of the form ``player_<epoch-ms>_<9 base36 chars>``."""
    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(9))
    return f"player_{int(time.time() * 1000)}_{suffix}"


def load_or_create_player_id(store: KeyValueStore) -> str:
    """Return the persisted player id, creating and saving one on first run."""
    player_id = store.get(PLAYER_ID_KEY)
    if player_id:
        return player_id
    player_id = generate_player_id()
    store.set(PLAYER_ID_KEY, player_id)
    return player_id
