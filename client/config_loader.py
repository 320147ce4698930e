"""Configuration loader for session client settings."""
import copy
import json
import logging
import os
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

API_BASE_URL_ENV = "PVT_API_BASE_URL"

DEFAULTS: Dict[str, Any] = {
    "server": {
        "api_base_url": "http://localhost:9001",
        "connect_timeout_seconds": 3.0,
    },
    "session": {
        "leave_grace_seconds": 0.15,
        "location_interval_seconds": 1.0,
        "proximity_alert_seconds": 3.0,
    },
    "room_defaults": {
        "maxPlayers": 20,
        "hidingSeconds": 60,
        "chaseSeconds": 600,
        "proximityRadiusMeters": 30,
        "captureRadiusMeters": 10,
        "jailRadiusMeters": 15,
    },
    "voice": {
        "ice_servers": [
            "stun:stun.l.google.com:19302",
            "stun:stun1.l.google.com:19302",
        ],
        "audio_device": "default",
        "audio_format": "pulse",
    },
    "identity": {
        "path": "data/identity.json",
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively overlay ``override`` onto a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def normalize_base_url(url: str) -> str:
    """Trim whitespace and trailing slashes."""
    return url.strip().rstrip("/")


def to_ws_url(base_url: str) -> str:
    """Derive the WebSocket address from an HTTP(S) base URL.

    ws:// and wss:// addresses are passed through unchanged.
    """
    base = normalize_base_url(base_url)
    if base.startswith("ws://") or base.startswith("wss://"):
        return base
    if base.startswith("https://"):
        return "wss://" + base[len("https://"):]
    if base.startswith("http://"):
        return "ws://" + base[len("http://"):]
    return base


class ConfigLoader:
    """Loads and provides access to client configuration."""

    _instance = None
    _config_dir = "config"
    _filename = "client_settings.json"

    def __new__(cls):
        """Singleton pattern to ensure only one config loader."""
        if cls._instance is None:
            cls._instance = super(ConfigLoader, cls).__new__(cls)
            cls._instance._load()
        return cls._instance

    def _load(self):
        """Load the settings file on top of the built-in defaults."""
        self.settings = _merge(DEFAULTS, self._load_json(self._filename))

    def _load_json(self, filename: str) -> Dict[str, Any]:
        """Load a JSON configuration file."""
        filepath = os.path.join(self._config_dir, filename)
        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.warning("Config file %s not found. Using defaults.", filename)
            return {}
        except json.JSONDecodeError as e:
            logger.warning("Error parsing %s: %s. Using defaults.", filename, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Config file %s is not an object. Using defaults.", filename)
            return {}
        return data

    def get(self, *keys, default=None):
        """Get a nested configuration value."""
        value = self.settings
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def get_api_base_url(self) -> str:
        """Base URL, with the environment variable taking precedence."""
        env_url = os.environ.get(API_BASE_URL_ENV)
        if env_url:
            return normalize_base_url(env_url)
        return normalize_base_url(self.get("server", "api_base_url", default=""))

    def get_ws_url(self) -> str:
        return to_ws_url(self.get_api_base_url())

    @property
    def connect_timeout(self) -> float:
        return float(self.get("server", "connect_timeout_seconds", default=3.0))

    @property
    def leave_grace_seconds(self) -> float:
        return float(self.get("session", "leave_grace_seconds", default=0.15))

    @property
    def location_interval_seconds(self) -> float:
        return float(self.get("session", "location_interval_seconds", default=1.0))

    @property
    def proximity_alert_seconds(self) -> float:
        return float(self.get("session", "proximity_alert_seconds", default=3.0))

    def get_room_defaults(self) -> Dict[str, Any]:
        return dict(self.get("room_defaults", default={}))

    def get_ice_servers(self) -> List[str]:
        return list(self.get("voice", "ice_servers", default=[]))

    def get_audio_device(self) -> str:
        return self.get("voice", "audio_device", default="default")

    def get_audio_format(self) -> Optional[str]:
        return self.get("voice", "audio_format", default=None) or None

    def get_identity_path(self) -> str:
        return self.get("identity", "path", default="data/identity.json")
