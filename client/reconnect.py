"""Opt-in reconnection policy with exponential backoff."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconnectPolicy:
    """How often and how patiently to retry a failed connection.

    The transport never reconnects on its own; a caller that wants retries
    hands one of these to ``ConnectionManager.reconnect``.
    """
    max_attempts: int = 5
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        if attempt < 1:
            return 0.0
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    async def run(self, connect: Callable[[], Awaitable[None]]) -> bool:
        """Call ``connect`` until it succeeds or attempts run out.

        Returns True if reconnection succeeded, False otherwise.
        Cancellation propagates to the caller.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                await connect()
                return True
            except ConnectionError as e:
                logger.warning("Reconnect attempt %d/%d failed: %s", attempt, self.max_attempts, e)
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.delay_for(attempt))

        logger.error("Max reconnect attempts reached")
        return False
