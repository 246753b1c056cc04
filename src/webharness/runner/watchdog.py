"""Resettable idle timer for console activity."""

import asyncio
import logging

logger = logging.getLogger(__name__)


class IdleWatchdog:
    """One-shot timer that fires unless it keeps being reset.

    ``reset()`` pushes the deadline to ``now + duration``. Firing is terminal:
    later resets are ignored. ``cancel()`` wins over a pending firing, so a
    cancelled watchdog never reports as fired.
    """

    def __init__(self, duration: float):
        self.duration = duration
        self.deadline: float | None = None
        self._handle: asyncio.TimerHandle | None = None
        self._done = asyncio.Event()
        self._fired = False
        self._cancelled = False

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def armed(self) -> bool:
        return self._handle is not None and not self._done.is_set()

    def arm(self) -> None:
        self.reset()

    def reset(self) -> None:
        if self._done.is_set():
            return
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self.deadline = loop.time() + self.duration
        self._handle = loop.call_at(self.deadline, self._fire)

    def _fire(self) -> None:
        if self._done.is_set():
            return
        self._fired = True
        self._done.set()
        logger.debug(f'Idle watchdog fired after {self.duration:.1f}s without activity')

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        if not self._done.is_set():
            self._cancelled = True
            self._done.set()

    async def wait(self) -> bool:
        """Block until fired or cancelled; True if it fired."""
        await self._done.wait()
        return self._fired
