"""
Shape Store - In-memory canvas state with change notifications.

This module implements:
- One page of shapes and arrow bindings with O(1) lookups by id
- Batched mutation: any number of changes inside ``batch()`` produce one
  StoreChange notification when the outer batch exits
- Filtered listeners by change source (user / remote) and scope
  (document / session), each returning a disposable Subscription
- Selection and camera (session scope, never part of a snapshot)
- Snapshot get/load; a load parses fully before replacing anything

The store is the only mutable state; the resolver, layout command and URL
synchronizer all read and write through it.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Iterator, Optional

from canvas_core.catalog import MIN_HEIGHT, MIN_WIDTH, ComponentCatalog
from canvas_core.errors import DanglingReferenceError
from canvas_core.logging import get_logger
from canvas_core.models import (
    PAGE_ROOT_ID,
    ArrowBinding,
    ArrowShape,
    BoxShape,
    Shape,
    ShapeInit,
    Terminal,
    build_snapshot,
    parse_snapshot,
    shape_from_init,
)

logger = get_logger("store")

# Fields callers may change with update_shape (parentage goes through reparent_shapes)
_UPDATABLE_FIELDS = {"x", "y", "w", "h", "label", "color", "opacity", "properties"}


class ChangeSource(str, Enum):
    USER = "user"      # direct edits (drags, drops, commands)
    REMOTE = "remote"  # state loaded from elsewhere (URL, snapshot file)


class ChangeScope(str, Enum):
    DOCUMENT = "document"  # shapes and bindings
    SESSION = "session"    # selection and camera


@dataclass
class StoreChange:
    """Everything that changed in one outer batch."""
    source: ChangeSource
    scope: ChangeScope
    added: dict[str, Any] = field(default_factory=dict)
    updated: dict[str, tuple[Any, Any]] = field(default_factory=dict)  # id -> (before, after)
    removed: dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.updated or self.removed)

    def moved_shape_ids(self) -> list[str]:
        """Ids of shapes whose x or y changed in this batch."""
        moved = []
        for shape_id, (before, after) in self.updated.items():
            if not isinstance(before, BoxShape) or not isinstance(after, BoxShape):
                continue
            if before.x != after.x or before.y != after.y:
                moved.append(shape_id)
        return moved


class Subscription:
    """Handle returned by listen(); dispose() stops delivery."""

    def __init__(self, store: "ShapeStore", entry: list):
        self._store = store
        self._entry = entry

    @property
    def active(self) -> bool:
        return self._entry in self._store._listeners

    def dispose(self):
        if self._entry in self._store._listeners:
            self._store._listeners.remove(self._entry)


@dataclass
class _PendingChange:
    source: ChangeSource
    document: StoreChange
    session: StoreChange


class ShapeStore:
    """
    Holds the shapes of one page and notifies listeners of changes.

    Mutations outside an explicit batch() are wrapped in their own batch,
    so every public mutator emits at most one notification per scope.
    """

    def __init__(self, catalog: Optional[ComponentCatalog] = None, page_id: str = PAGE_ROOT_ID):
        self._catalog = catalog or ComponentCatalog()
        self._page_id = page_id
        self._shapes: dict[str, Shape] = {}
        self._bindings: dict[str, ArrowBinding] = {}
        self._bindings_by_arrow: dict[str, set[str]] = {}
        self._selected: list[str] = []
        self._camera: tuple[float, float, float] = (0.0, 0.0, 1.0)  # x, y, zoom
        self._seq = 0

        self._listeners: list[list] = []  # [handler, source, scope]
        self._batch_depth = 0
        self._pending: Optional[_PendingChange] = None

    # --- Properties ---

    @property
    def catalog(self) -> ComponentCatalog:
        return self._catalog

    @property
    def page_id(self) -> str:
        return self._page_id

    @property
    def camera(self) -> tuple[float, float, float]:
        return self._camera

    # --- Listeners ---

    def listen(
        self,
        handler: Callable[[StoreChange], None],
        source: Optional[ChangeSource] = None,
        scope: Optional[ChangeScope] = None,
    ) -> Subscription:
        """
        Register a change handler.

        Args:
            handler: Called with each StoreChange after its batch commits
            source: Only deliver changes from this source (None for all)
            scope: Only deliver changes in this scope (None for all)

        Returns:
            Subscription; call dispose() to stop delivery
        """
        entry = [handler, source, scope]
        self._listeners.append(entry)
        return Subscription(self, entry)

    def subscribe(
        self,
        predicate: Callable[[StoreChange], bool],
        handler: Callable[[StoreChange], None],
    ) -> Subscription:
        """Register a handler for the changes that satisfy predicate."""
        def filtered(change: StoreChange):
            if predicate(change):
                handler(change)
        return self.listen(filtered)

    def _emit(self, change: StoreChange):
        for entry in list(self._listeners):
            handler, source, scope = entry
            if entry not in self._listeners:
                continue
            if source is not None and change.source != source:
                continue
            if scope is not None and change.scope != scope:
                continue
            handler(change)

    # --- Batching ---

    @contextmanager
    def batch(self, source: ChangeSource = ChangeSource.USER) -> Iterator["ShapeStore"]:
        """
        Group mutations into one notification per scope.

        Nested batches join the outermost one (and its source).
        """
        if self._batch_depth == 0:
            self._pending = _PendingChange(
                source=source,
                document=StoreChange(source, ChangeScope.DOCUMENT),
                session=StoreChange(source, ChangeScope.SESSION),
            )
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0:
                pending, self._pending = self._pending, None
                for change in (pending.document, pending.session):
                    if not change.is_empty:
                        self._emit(change)

    def _record(self, scope: ChangeScope, record_id: str, before: Any, after: Any):
        """Fold one record change into the pending batch."""
        change = self._pending.document if scope == ChangeScope.DOCUMENT else self._pending.session
        if record_id in change.added:
            if after is None:
                del change.added[record_id]
            else:
                change.added[record_id] = after
        elif record_id in change.updated:
            original = change.updated[record_id][0]
            if after is None:
                del change.updated[record_id]
                change.removed[record_id] = original
            else:
                change.updated[record_id] = (original, after)
        elif record_id in change.removed:
            original = change.removed.pop(record_id)
            change.updated[record_id] = (original, after)
        elif before is None:
            change.added[record_id] = after
        elif after is None:
            change.removed[record_id] = before
        else:
            change.updated[record_id] = (before, after)

    # --- Reads ---

    def get_shape(self, shape_id: str) -> Optional[Shape]:
        return self._shapes.get(shape_id)

    def has_shape(self, shape_id: str) -> bool:
        return shape_id in self._shapes

    def get_shapes(self, page_id: Optional[str] = None) -> list[Shape]:
        """All shapes on the page, in creation order."""
        if page_id is not None and page_id != self._page_id:
            return []
        return sorted(self._shapes.values(), key=lambda s: s.seq)

    def get_children(self, parent_id: str) -> list[Shape]:
        """Children of a shape (or the page), back to front."""
        children = [s for s in self._shapes.values() if s.parent_id == parent_id]
        return sorted(children, key=lambda s: (s.index, s.seq))

    def get_bindings(self, arrow_id: str) -> list[ArrowBinding]:
        return [self._bindings[b] for b in sorted(self._bindings_by_arrow.get(arrow_id, ()))]

    def get_all_bindings(self) -> list[ArrowBinding]:
        return list(self._bindings.values())

    # --- Shape mutations ---

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def _next_index(self, parent_id: str) -> int:
        indexes = [s.index for s in self._shapes.values() if s.parent_id == parent_id]
        return max(indexes, default=0) + 1

    def _put_shape(self, shape: Shape):
        with self.batch():
            before = self._shapes.get(shape.id)
            self._shapes[shape.id] = shape
            self._record(ChangeScope.DOCUMENT, shape.id, before, shape)

    def create_shape(self, init: ShapeInit) -> Shape:
        """
        Create a shape, applying the catalog defaults for its kind.

        Raises:
            ValueError: If the id is already taken
        """
        if init.id is not None and init.id in self._shapes:
            raise ValueError(f"Shape already exists: {init.id}")
        parent_id = init.parent_id or self._page_id
        if parent_id != self._page_id and parent_id not in self._shapes:
            raise DanglingReferenceError(parent_id)
        init = init.model_copy(update={"parent_id": parent_id})
        shape = shape_from_init(init, self._next_seq(), self._next_index(parent_id), self._catalog)
        self._put_shape(shape)
        logger.debug("Created %s shape %s", shape.type, shape.id)
        return shape

    def update_shape(self, shape_id: str, **changes) -> Shape:
        """
        Update fields of an existing shape.

        Raises:
            DanglingReferenceError: If the shape does not exist
            ValueError: If a field cannot be changed
        """
        shape = self._shapes.get(shape_id)
        if shape is None:
            raise DanglingReferenceError(shape_id)
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        changes = {k: v for k, v in changes.items() if hasattr(shape, k)}
        if not changes:
            return shape
        for key in ("x", "y"):
            if key in changes:
                changes[key] = float(changes[key])
        if "w" in changes:
            changes["w"] = max(float(changes["w"]), MIN_WIDTH)
        if "h" in changes:
            changes["h"] = max(float(changes["h"]), MIN_HEIGHT)
        if "opacity" in changes:
            changes["opacity"] = min(max(float(changes["opacity"]), 0.0), 1.0)
        updated = shape.model_copy(update=changes)
        self._put_shape(updated)
        return updated

    def delete_shapes(self, shape_ids: Iterable[str]) -> list[str]:
        """
        Delete shapes (unknown ids are ignored).

        Children of a deleted container move up to the container's parent.
        Bindings attached to a deleted shape or arrow are removed too.

        Returns:
            Ids that were actually deleted
        """
        deleted = []
        with self.batch():
            for shape_id in shape_ids:
                shape = self._shapes.get(shape_id)
                if shape is None:
                    continue
                new_parent = shape.parent_id if shape.parent_id in self._shapes else self._page_id
                for child in self.get_children(shape_id):
                    self._put_shape(child.model_copy(update={
                        "parent_id": new_parent,
                        "index": self._next_index(new_parent),
                    }))
                for binding in list(self._bindings.values()):
                    if binding.arrow_id == shape_id or binding.shape_id == shape_id:
                        self._remove_binding(binding.id)
                del self._shapes[shape_id]
                self._record(ChangeScope.DOCUMENT, shape_id, shape, None)
                deleted.append(shape_id)
            if deleted:
                self._set_selection([s for s in self._selected if s not in deleted])
        return deleted

    def reparent_shapes(self, shape_ids: Iterable[str], parent_id: str) -> list[str]:
        """
        Move shapes under a new parent, placing each on top of its new siblings.

        Missing shapes are skipped. A shape is never made its own ancestor.

        Raises:
            DanglingReferenceError: If the parent does not exist
        """
        if parent_id != self._page_id and parent_id not in self._shapes:
            raise DanglingReferenceError(parent_id)
        moved = []
        with self.batch():
            for shape_id in shape_ids:
                shape = self._shapes.get(shape_id)
                if shape is None or shape.parent_id == parent_id:
                    continue
                if shape_id == parent_id or self._is_ancestor(shape_id, parent_id):
                    logger.debug("Refusing to parent %s under its own descendant %s", shape_id, parent_id)
                    continue
                self._put_shape(shape.model_copy(update={
                    "parent_id": parent_id,
                    "index": self._next_index(parent_id),
                }))
                moved.append(shape_id)
        return moved

    def _is_ancestor(self, ancestor_id: str, shape_id: str) -> bool:
        seen: set[str] = set()
        current = self._shapes.get(shape_id)
        while current is not None and current.parent_id not in seen:
            if current.parent_id == ancestor_id:
                return True
            seen.add(current.parent_id)
            current = self._shapes.get(current.parent_id)
        return False

    def bring_to_front(self, shape_ids: Iterable[str]):
        """Raise shapes above their siblings, keeping their relative order."""
        with self.batch():
            for shape_id in shape_ids:
                shape = self._shapes.get(shape_id)
                if shape is None:
                    continue
                siblings = [s for s in self._shapes.values()
                            if s.parent_id == shape.parent_id and s.id != shape_id]
                top = max((s.index for s in siblings), default=0)
                if shape.index <= top:
                    self._put_shape(shape.model_copy(update={"index": top + 1}))

    # --- Arrows ---

    def create_arrow(self, from_id: str, to_id: str, label: str = "") -> ArrowShape:
        """
        Create an arrow bound to two shapes.

        Raises:
            DanglingReferenceError: If either endpoint does not exist
        """
        for endpoint in (from_id, to_id):
            if endpoint not in self._shapes:
                raise DanglingReferenceError(endpoint)
        with self.batch():
            start = self._shapes[from_id]
            arrow = self.create_shape(ShapeInit(
                type="arrow",
                x=getattr(start, "x", 0),
                y=getattr(start, "y", 0),
                label=label,
            ))
            self.bind_arrow(arrow.id, from_id, Terminal.START)
            self.bind_arrow(arrow.id, to_id, Terminal.END)
        return arrow

    def bind_arrow(self, arrow_id: str, shape_id: str, terminal: Terminal) -> ArrowBinding:
        """Attach one end of an arrow, replacing any binding on that terminal."""
        arrow = self._shapes.get(arrow_id)
        if not isinstance(arrow, ArrowShape):
            raise DanglingReferenceError(arrow_id)
        if shape_id not in self._shapes:
            raise DanglingReferenceError(shape_id)
        terminal = Terminal(terminal)
        with self.batch():
            for existing in self.get_bindings(arrow_id):
                if existing.terminal is terminal:
                    self._remove_binding(existing.id)
            binding = ArrowBinding(arrow_id=arrow_id, shape_id=shape_id, terminal=terminal)
            self._put_binding(binding)
        return binding

    def _put_binding(self, binding: ArrowBinding):
        with self.batch():
            before = self._bindings.get(binding.id)
            self._bindings[binding.id] = binding
            self._bindings_by_arrow.setdefault(binding.arrow_id, set()).add(binding.id)
            self._record(ChangeScope.DOCUMENT, binding.id, before, binding)

    def _remove_binding(self, binding_id: str):
        binding = self._bindings.pop(binding_id, None)
        if binding is None:
            return
        self._bindings_by_arrow.get(binding.arrow_id, set()).discard(binding_id)
        self._record(ChangeScope.DOCUMENT, binding_id, binding, None)

    # --- Selection & camera (session scope) ---

    def select(self, shape_ids: Iterable[str]) -> list[str]:
        """Replace the selection; unknown ids are dropped."""
        with self.batch():
            self._set_selection([s for s in shape_ids if s in self._shapes])
        return list(self._selected)

    def _set_selection(self, shape_ids: list[str]):
        if shape_ids == self._selected:
            return
        before = list(self._selected)
        self._selected = list(dict.fromkeys(shape_ids))
        self._record(ChangeScope.SESSION, "instance:selection", before, list(self._selected))

    def get_selected_ids(self) -> list[str]:
        return list(self._selected)

    def get_selected_shapes(self) -> list[Shape]:
        return [self._shapes[s] for s in self._selected if s in self._shapes]

    def set_camera(self, x: float, y: float, zoom: float = 1.0):
        if zoom <= 0:
            raise ValueError("Camera zoom must be positive")
        with self.batch():
            before = self._camera
            self._camera = (float(x), float(y), float(zoom))
            if before != self._camera:
                self._record(ChangeScope.SESSION, "camera:page", before, self._camera)

    def screen_to_page(self, point: tuple[float, float]) -> tuple[float, float]:
        """Convert a screen point to page coordinates using the camera."""
        cx, cy, zoom = self._camera
        sx, sy = point
        return (sx / zoom - cx, sy / zoom - cy)

    # --- Snapshots ---

    def get_snapshot(self) -> dict:
        """Serialize the document (shapes and bindings) to a snapshot dict."""
        return build_snapshot(self._page_id, self.get_shapes(), list(self._bindings.values()))

    def load_snapshot(self, snapshot: dict, source: ChangeSource = ChangeSource.REMOTE):
        """
        Replace the whole document with a snapshot.

        The snapshot is parsed before anything is touched; on DecodeError the
        store is unchanged. Selection is cleared.
        """
        page_id, shapes, bindings = parse_snapshot(snapshot, self._catalog)
        with self.batch(source):
            for shape_id in list(self._shapes):
                old = self._shapes.pop(shape_id)
                self._record(ChangeScope.DOCUMENT, shape_id, old, None)
            for binding_id in list(self._bindings):
                self._remove_binding(binding_id)
            self._bindings_by_arrow.clear()

            self._page_id = page_id
            for shape in shapes:
                self._put_shape(shape)
            for binding in bindings:
                if binding.arrow_id in self._shapes and binding.shape_id in self._shapes:
                    self._put_binding(binding)
            self._seq = max((s.seq for s in shapes), default=0)
            self._set_selection([])
        logger.debug("Loaded snapshot: %d shapes, %d bindings", len(shapes), len(bindings))
