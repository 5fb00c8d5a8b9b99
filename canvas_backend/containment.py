"""
Containment Resolver - keeps parentage in step with geometry.

Listens to user edits of the document. A batch that moves any shape is a
drag signal: once drags have settled, a reparenting pass puts every selected
leaf under the smallest container holding its center (or on the page if
none does), in one store batch.

The pass mutates the store, which would re-trigger the listener, so the
resolver is an explicit two-state machine:

    IDLE --DRAG_ENDED--> IDLE (pass scheduled)
    IDLE --PASS_STARTED--> PROCESSING
    PROCESSING --DRAG_ENDED--> PROCESSING (ignored)
    PROCESSING --PASS_FINISHED--> PROCESSING (cooldown scheduled)
    PROCESSING --COOLDOWN_ELAPSED--> IDLE

Drag signals dropped during PROCESSING are picked up by the next drag end.
"""

from dataclasses import dataclass
from enum import Enum

from canvas_core.geometry import find_parent_container
from canvas_core.logging import get_logger
from canvas_core.models import ContainerShape, LeafShape

from .scheduler import Debouncer, Scheduler
from .shape_store import ChangeScope, ChangeSource, ShapeStore, StoreChange

logger = get_logger("containment")

# Quiet time after the last drag signal before a pass runs (seconds)
DEFAULT_SETTLE_DELAY = 0.05
# Time after a pass during which drag signals are ignored (seconds)
DEFAULT_COOLDOWN = 0.1


class ResolverState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"


class ResolverEvent(str, Enum):
    DRAG_ENDED = "drag_ended"
    PASS_STARTED = "pass_started"
    PASS_FINISHED = "pass_finished"
    COOLDOWN_ELAPSED = "cooldown_elapsed"


@dataclass(frozen=True)
class ReparentOp:
    shape_id: str
    new_parent_id: str


def compute_reparent_ops(store: ShapeStore, candidates: list) -> list[ReparentOp]:
    """
    Work out which candidate shapes need a new parent.

    Containers and arrows are never candidates. Candidates are compared
    against every container on the page.
    """
    shapes = store.get_shapes()
    containers = [s for s in shapes if isinstance(s, ContainerShape)]
    page_id = store.page_id

    ops = []
    for shape in candidates:
        if not isinstance(shape, LeafShape):
            continue
        winner = find_parent_container(shape, containers)
        new_parent_id = winner.id if winner else page_id
        if new_parent_id != shape.parent_id:
            ops.append(ReparentOp(shape.id, new_parent_id))
    return ops


class ContainmentResolver:
    """
    Reparents dragged leaves after each drag settles.

    Usage:
        resolver = ContainmentResolver(store, scheduler)
        ...
        resolver.dispose()
    """

    def __init__(
        self,
        store: ShapeStore,
        scheduler: Scheduler,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        cooldown: float = DEFAULT_COOLDOWN,
    ):
        self._store = store
        self._state = ResolverState.IDLE
        self._pass_timer = Debouncer(scheduler, settle_delay, self._run_scheduled_pass)
        self._cooldown_timer = Debouncer(scheduler, cooldown, self._end_cooldown)
        self._subscription = store.listen(
            self._on_change,
            source=ChangeSource.USER,
            scope=ChangeScope.DOCUMENT,
        )
        self._disposed = False

    @property
    def state(self) -> ResolverState:
        return self._state

    @property
    def pass_pending(self) -> bool:
        return self._pass_timer.pending

    # --- State machine ---

    def _transition(self, event: ResolverEvent) -> bool:
        """
        Apply an event. Returns True if the event was accepted.

        This is the only place the state changes or timers are started.
        """
        if self._disposed:
            return False

        if event is ResolverEvent.DRAG_ENDED:
            if self._state is ResolverState.PROCESSING:
                logger.debug("Drag signal ignored while processing")
                return False
            self._pass_timer.schedule()
            return True

        if event is ResolverEvent.PASS_STARTED:
            if self._state is ResolverState.PROCESSING:
                return False
            self._pass_timer.cancel()
            self._state = ResolverState.PROCESSING
            return True

        if event is ResolverEvent.PASS_FINISHED:
            if self._state is not ResolverState.PROCESSING:
                return False
            self._cooldown_timer.schedule()
            return True

        if event is ResolverEvent.COOLDOWN_ELAPSED:
            if self._state is not ResolverState.PROCESSING:
                return False
            self._state = ResolverState.IDLE
            return True

        raise ValueError(f"Unknown resolver event: {event}")

    # --- Callbacks ---

    def _on_change(self, change: StoreChange):
        if change.moved_shape_ids():
            self._transition(ResolverEvent.DRAG_ENDED)

    def _run_scheduled_pass(self):
        self.resolve()

    def _end_cooldown(self):
        self._transition(ResolverEvent.COOLDOWN_ELAPSED)

    # --- Pass ---

    def resolve(self) -> list[ReparentOp]:
        """
        Run a reparenting pass over the selected shapes now.

        Returns the ops that were applied (empty if a pass is already in
        progress or nothing needed to move).
        """
        if not self._transition(ResolverEvent.PASS_STARTED):
            return []
        try:
            ops = compute_reparent_ops(self._store, self._store.get_selected_shapes())
            applied = self.apply(ops)
        finally:
            self._transition(ResolverEvent.PASS_FINISHED)
        return applied

    def apply(self, ops: list[ReparentOp]) -> list[ReparentOp]:
        """Apply reparent ops in one batch, then raise the moved shapes. Missing shapes are skipped."""
        applied = []
        with self._store.batch(ChangeSource.USER):
            for op in ops:
                if not self._store.has_shape(op.shape_id):
                    continue
                if op.new_parent_id != self._store.page_id and not self._store.has_shape(op.new_parent_id):
                    continue
                if self._store.reparent_shapes([op.shape_id], op.new_parent_id):
                    applied.append(op)
            self._store.bring_to_front([op.shape_id for op in applied])

        if applied:
            logger.info("Reparented %d shape(s): %s", len(applied),
                        ", ".join(f"{op.shape_id} -> {op.new_parent_id}" for op in applied))
        return applied

    def dispose(self):
        """Cancel timers and stop listening to the store."""
        self._pass_timer.cancel()
        self._cooldown_timer.cancel()
        self._subscription.dispose()
        self._disposed = True
