"""Presentation-layer notifications raised by the session runtime.

The runtime never draws anything itself. It reports alerts, vibration
patterns and proximity banners through a Notifier; the terminal client
supplies one backed by rich, tests supply a recording one.
"""
from typing import Sequence

# Pause/buzz pattern in milliseconds used for proximity warnings.
PROXIMITY_VIBRATION = (0, 200, 100, 200)


class Notifier:
    """Base notifier. Every hook is a no-op."""

    def alert(self, title: str, message: str) -> None:
        """Show a blocking-style message to the player."""

    def vibrate(self, pattern: Sequence[int] = PROXIMITY_VIBRATION) -> None:
        """Haptic feedback."""

    def show_proximity(self, message: str) -> None:
        """Show the transient 'someone is near' banner."""

    def hide_proximity(self) -> None:
        """Remove the proximity banner."""
