import asyncio
from typing import Callable, Optional


class CoalescingTimer:
    """Collapse a burst of ``touch()`` calls into one callback.

    Every ``touch()`` cancels the scheduled callback and schedules it again
    ``delay`` seconds later on the running event loop, so the callback fires
    once after the input has been quiet for ``delay`` seconds.
    """

    def __init__(self, delay: float, callback: Callable[[], None]):
        self.delay = delay
        self.callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def touch(self):
        loop = asyncio.get_running_loop()
        self.cancel()
        self._handle = loop.call_later(self.delay, self._fire)

    def flush(self) -> bool:
        """Fire now if a callback is scheduled. Returns whether it fired."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._fire()
        return True

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self):
        self._handle = None
        self.callback()
