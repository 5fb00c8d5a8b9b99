"""
Infracanvas Backend - the live canvas session and its API.
"""

from .shape_store import ShapeStore, StoreChange, ChangeSource, ChangeScope, Subscription
from .scheduler import Debouncer, LoopScheduler, Scheduler
from .containment import ContainmentResolver, ResolverState, ReparentOp
from .url_sync import UrlLocation, UrlStateSynchronizer
from .session import CanvasSession, DRAG_MIME_TYPE
from .settings import Settings

__all__ = [
    "ShapeStore",
    "StoreChange",
    "ChangeSource",
    "ChangeScope",
    "Subscription",
    "Debouncer",
    "LoopScheduler",
    "Scheduler",
    "ContainmentResolver",
    "ResolverState",
    "ReparentOp",
    "UrlLocation",
    "UrlStateSynchronizer",
    "CanvasSession",
    "DRAG_MIME_TYPE",
    "Settings",
]
