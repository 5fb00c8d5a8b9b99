"""Shared pytest fixtures for infracanvas tests."""

from typing import Callable, Optional

import pytest

from canvas_backend.containment import ContainmentResolver
from canvas_backend.session import CanvasSession
from canvas_backend.shape_store import ShapeStore
from canvas_backend.url_sync import UrlLocation
from canvas_core.models import Shape, ShapeInit


class ManualTimer:
    def __init__(self, when: float, order: int, callback: Callable[[], None]):
        self.when = when
        self.order = order
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic clock: timers only fire when advance() is called."""

    def __init__(self):
        self.now = 0.0
        self._timers: list[ManualTimer] = []
        self._order = 0

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        self._order += 1
        timer = ManualTimer(self.now + delay, self._order, callback)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> int:
        return len([t for t in self._timers if not t.cancelled])

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in order."""
        target = self.now + seconds
        while True:
            due = [t for t in self._timers if not t.cancelled and t.when <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: (t.when, t.order))
            self._timers.remove(timer)
            self.now = max(self.now, timer.when)
            timer.callback()
        self.now = target


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def store() -> ShapeStore:
    return ShapeStore()


@pytest.fixture
def resolver(store: ShapeStore, scheduler: ManualScheduler):
    resolver = ContainmentResolver(store, scheduler, settle_delay=0.05, cooldown=0.1)
    yield resolver
    resolver.dispose()


@pytest.fixture
def location() -> UrlLocation:
    return UrlLocation("http://localhost/")


@pytest.fixture
def session(scheduler: ManualScheduler, location: UrlLocation):
    session = CanvasSession(scheduler=scheduler, location=location)
    session.start()
    yield session
    session.dispose()


@pytest.fixture
def add_shape(store: ShapeStore):
    """Create a shape in the store fixture: add_shape("vpc", 0, 0, 400, 300, id="vpc-1")."""

    def _add(
        type: str,
        x: float = 0,
        y: float = 0,
        w: Optional[float] = None,
        h: Optional[float] = None,
        id: Optional[str] = None,
        parent_id: Optional[str] = None,
        label: Optional[str] = None,
        target: Optional[ShapeStore] = None,
    ) -> Shape:
        return (target or store).create_shape(ShapeInit(
            type=type, x=x, y=y, w=w, h=h, id=id, parent_id=parent_id, label=label,
        ))

    return _add
