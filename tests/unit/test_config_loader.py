"""Unit tests for client/config_loader.py - ConfigLoader class."""
import json

import pytest

from client.config_loader import ConfigLoader, normalize_base_url, to_ws_url


class TestConfigLoaderSingleton:
    """Tests for ConfigLoader singleton pattern."""

    def test_singleton_returns_same_instance(self, temp_config_dir):
        """Test ConfigLoader returns the same instance."""
        config1 = ConfigLoader()
        config2 = ConfigLoader()

        assert config1 is config2

    def test_singleton_persists_data(self, temp_config_dir):
        config1 = ConfigLoader()
        config2 = ConfigLoader()

        assert config1.settings is config2.settings


class TestConfigLoading:
    """Tests for configuration file loading."""

    def test_file_overrides_defaults(self, temp_config_dir):
        """Test values from the file win and untouched defaults remain."""
        config = ConfigLoader()

        assert config.connect_timeout == 0.2
        assert config.leave_grace_seconds == 0.01
        assert config.get_room_defaults()["chaseSeconds"] == 600
        assert config.get_ice_servers()

    def test_missing_file_uses_defaults(self, temp_config_dir, caplog):
        """Test missing config file falls back to defaults with a warning."""
        (temp_config_dir / "client_settings.json").unlink()
        ConfigLoader._instance = None

        config = ConfigLoader()

        assert config.connect_timeout == 3.0
        assert config.leave_grace_seconds == 0.15
        assert "client_settings.json" in caplog.text

    def test_invalid_json_uses_defaults(self, temp_config_dir, caplog):
        """Test invalid JSON falls back to defaults with a warning."""
        (temp_config_dir / "client_settings.json").write_text("{invalid json")
        ConfigLoader._instance = None

        config = ConfigLoader()

        assert config.location_interval_seconds == 1.0
        assert "Error parsing" in caplog.text

    def test_non_object_uses_defaults(self, temp_config_dir):
        (temp_config_dir / "client_settings.json").write_text(json.dumps([1, 2]))
        ConfigLoader._instance = None

        assert ConfigLoader().proximity_alert_seconds == 3.0


class TestGet:
    """Tests for nested lookups."""

    def test_nested_value(self, config):
        assert config.get("server", "connect_timeout_seconds") == 0.2

    def test_missing_key_returns_default(self, config):
        assert config.get("server", "nope", default="x") == "x"
        assert config.get("server", "connect_timeout_seconds", "deeper") is None

    def test_room_defaults_are_a_copy(self, config):
        config.get_room_defaults()["maxPlayers"] = 1
        assert config.get_room_defaults()["maxPlayers"] == 20


class TestServerAddress:
    """Tests for base URL handling."""

    def test_base_url_from_file_is_normalized(self, config):
        assert config.get_api_base_url() == "http://test.local:9001"
        assert config.get_ws_url() == "ws://test.local:9001"

    def test_environment_overrides_file(self, config, monkeypatch):
        monkeypatch.setenv("PVT_API_BASE_URL", " https://game.example.com/// ")
        assert config.get_api_base_url() == "https://game.example.com"
        assert config.get_ws_url() == "wss://game.example.com"

    @pytest.mark.parametrize("base, expected", [
        ("http://host:1", "ws://host:1"),
        ("https://host", "wss://host"),
        ("ws://host/", "ws://host"),
        ("wss://host", "wss://host"),
    ])
    def test_to_ws_url(self, base, expected):
        assert to_ws_url(base) == expected

    def test_normalize_base_url(self):
        assert normalize_base_url("  http://x//  ") == "http://x"


class TestVoiceAndIdentity:
    """Tests for voice and identity settings."""

    def test_audio_defaults(self, config):
        assert config.get_audio_device() == "default"
        assert config.get_audio_format() == "pulse"

    def test_identity_path_from_file(self, config, tmp_path):
        assert config.get_identity_path() == str(tmp_path / "identity.json")
