"""Deferred one-shot tasks."""
import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable, Set

import logging
log = logging.getLogger(__name__)


TimerCallbackType = Callable[[], Awaitable[None]]


class Timers():
    """Runs callbacks once after a delay without holding up the caller.

    Keyed timers replace each other: scheduling a key that is already pending cancels the old
    timer first, which makes them usable as debouncers. Anonymous timers are fire-and-forget.

    Errors raised by a callback are logged rather than lost with the task.

    """
    def __init__(self) -> None:
        self._keyed: Dict[Hashable, "asyncio.Task[Any]"] = {}
        self._anonymous: Set["asyncio.Task[Any]"] = set()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._keyed

    def __len__(self) -> int:
        return len(self._keyed) + len(self._anonymous)

    def schedule(self, key: Hashable, delay: float, callback: TimerCallbackType) -> None:
        """Runs a callback after a delay, replacing any timer pending under the same key.

        Must be called from within a running event loop.

        Args:
            key: Identifies the timer, e.g. a guild or message ID.
            delay: Seconds to wait before running the callback.
            callback: Coroutine function to run.

        """
        self.cancel(key)

        async def run() -> None:
            await asyncio.sleep(delay)
            # Unregister before running so the callback can schedule or cancel its own key
            self._keyed.pop(key, None)
            await self._call(callback)
        self._keyed[key] = asyncio.get_running_loop().create_task(run())

    def defer(self, delay: float, callback: TimerCallbackType) -> None:
        """Runs a callback after a delay.

        Args:
            delay: Seconds to wait before running the callback.
            callback: Coroutine function to run.

        """
        async def run() -> None:
            await asyncio.sleep(delay)
            await self._call(callback)
        task = asyncio.get_running_loop().create_task(run())
        self._anonymous.add(task)
        task.add_done_callback(self._anonymous.discard)

    def cancel(self, key: Hashable) -> bool:
        """Cancels a pending keyed timer.

        Args:
            key: Timer to be cancelled.

        Returns:
            `True` if a pending timer was cancelled.

        """
        task = self._keyed.pop(key, None)
        if task is None:
            return False
        task.cancel()
        return True

    def cancel_all(self) -> None:
        """Cancels every pending timer. Used on shutdown."""
        for task in list(self._keyed.values()) + list(self._anonymous):
            task.cancel()
        self._keyed = {}
        self._anonymous = set()

    async def _call(self, callback: TimerCallbackType) -> None:
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("Unhandled exception in deferred task")
