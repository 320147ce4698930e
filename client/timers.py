"""Named one-shot timers on the running event loop."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict

logger = logging.getLogger(__name__)


class TimerManager:
    """Runs callbacks after a delay. Restarting a timer id replaces it."""

    def __init__(self):
        self._timers: Dict[str, asyncio.Task] = {}

    def start_timer(
        self,
        timer_id: str,
        duration_seconds: float,
        callback: Callable[[], Any]
    ) -> None:
        """Start a timer that calls ``callback`` when it expires.

        Args:
            timer_id: Unique identifier for this timer.
            duration_seconds: How long until the timer fires.
            callback: Plain or async function to call.
        """
        # Cancel existing timer with same ID
        self.cancel_timer(timer_id)

        async def timer_task():
            try:
                await asyncio.sleep(duration_seconds)
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                pass  # Timer was cancelled, don't fire
            except Exception:
                logger.exception("Timer %s callback failed", timer_id)
            finally:
                if self._timers.get(timer_id) is task:
                    del self._timers[timer_id]

        task = asyncio.create_task(timer_task())
        self._timers[timer_id] = task

    def cancel_timer(self, timer_id: str) -> bool:
        """Cancel a timer if it exists.

        Returns:
            True if a timer was cancelled, False if no such timer.
        """
        task = self._timers.pop(timer_id, None)
        if task:
            task.cancel()
            return True
        return False

    def cancel_all(self) -> None:
        """Cancel all active timers."""
        for task in self._timers.values():
            task.cancel()
        self._timers.clear()

    def is_active(self, timer_id: str) -> bool:
        """Check if a timer is currently active."""
        return timer_id in self._timers
