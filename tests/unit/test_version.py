"""Tests for version.py module."""
import pytest


class TestGetVersion:
    """Tests for get_version() function."""

    def test_get_version_from_file(self, tmp_path, monkeypatch):
        """Test reading version from VERSION file."""
        version_file = tmp_path / "VERSION"
        version_file.write_text("v0.2.0\n")

        import version
        monkeypatch.setattr(version, "_get_version_file_path", lambda: version_file)

        assert version.get_version() == "v0.2.0"

    def test_get_version_strips_whitespace(self, tmp_path, monkeypatch):
        """Test that version string is stripped of whitespace."""
        version_file = tmp_path / "VERSION"
        version_file.write_text("  v0.2.0  \n\n")

        import version
        monkeypatch.setattr(version, "_get_version_file_path", lambda: version_file)

        assert version.get_version() == "v0.2.0"

    def test_get_version_file_not_found(self, tmp_path, monkeypatch):
        """Test handling of missing VERSION file."""
        version_file = tmp_path / "nonexistent" / "VERSION"

        import version
        monkeypatch.setattr(version, "_get_version_file_path", lambda: version_file)

        assert version.get_version() == "unknown"

    def test_get_version_empty_file(self, tmp_path, monkeypatch):
        version_file = tmp_path / "VERSION"
        version_file.write_text("\n")

        import version
        monkeypatch.setattr(version, "_get_version_file_path", lambda: version_file)

        assert version.get_version() == "unknown"


class TestVersionFilePath:
    """Tests for _get_version_file_path()."""

    def test_points_next_to_module(self):
        import version
        path = version._get_version_file_path()
        assert path.name == "VERSION"
        assert path.parent.joinpath("version.py").exists()

    def test_module_constant_is_a_string(self):
        import version
        assert isinstance(version.VERSION, str)
        assert version.VERSION
