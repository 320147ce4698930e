"""
Version information for the Police vs Thieves session client.

VERSION is read from the VERSION file next to this module.
"""
from pathlib import Path


def _get_version_file_path() -> Path:
    """Get the path to the VERSION file in the project root."""
    return Path(__file__).parent / "VERSION"


def get_version() -> str:
    """Read and return the version string from VERSION file.

    Returns:
        Version string (e.g., "dev", "v2026.10.18"), or "unknown" when the
        file is missing or unreadable.
    """
    try:
        return _get_version_file_path().read_text(encoding="utf-8").strip() or "unknown"
    except OSError:
        return "unknown"


# Expose VERSION constant at module level
VERSION = get_version()
