"""
Timers for the cooperative event loop.

Everything time-based in the backend (drag settling, resolver cooldown,
debounced URL writes) goes through a Scheduler, so tests can drive time by
hand instead of sleeping. Debouncer holds at most one pending job: scheduling
again cancels the previous job and starts the delay over.
"""

import asyncio
from typing import Callable, Optional, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Runs a callback once after a delay (seconds)."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class LoopScheduler:
    """
    Scheduler backed by an asyncio event loop.

    With no loop given, the loop running at scheduling time is used, so a
    scheduler can be built at import time and used from async handlers.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class Debouncer:
    """
    Run a callback once the calls to schedule() have been quiet for `delay`.

    Usage:
        debouncer = Debouncer(scheduler, 0.5, write_url)
        debouncer.schedule()   # (re)starts the delay
        debouncer.cancel()     # drops the pending job
    """

    def __init__(self, scheduler: Scheduler, delay: float, callback: Callable[[], None]):
        self._scheduler = scheduler
        self._delay = delay
        self._callback = callback
        self._handle: Optional[TimerHandle] = None

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self):
        """Cancel any pending job and schedule a new one."""
        self.cancel()
        self._handle = self._scheduler.call_later(self._delay, self._fire)

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def flush(self) -> bool:
        """Run the pending job now. Returns False if nothing was pending."""
        if self._handle is None:
            return False
        self.cancel()
        self._callback()
        return True

    def _fire(self):
        self._handle = None
        self._callback()
