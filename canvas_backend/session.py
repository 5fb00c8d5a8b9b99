"""
Canvas Session - one open canvas and the services that follow it.

A session owns the shape store and wires the containment resolver and the
URL synchronizer to it. It is also where user commands enter: dropping a
component from the palette, running the auto layout, exporting.
"""

from typing import Optional

from canvas_core.canonical import canonicalize
from canvas_core.catalog import ComponentCatalog
from canvas_core.errors import DanglingReferenceError
from canvas_core.generators import ExportResult, FormatRegistry, default_registry, export_diagram
from canvas_core.geometry import find_parent_container, resolve_parents
from canvas_core.layout import (
    DEFAULT_ITERATIONS,
    DEFAULT_SPACING,
    ForceOptions,
    LayoutOptions,
    compute_layout,
)
from canvas_core.logging import get_logger
from canvas_core.models import (
    ArrowShape,
    CanonicalDiagram,
    ContainerShape,
    PositionUpdate,
    Shape,
    ShapeInit,
    empty_snapshot,
)
from canvas_core.validation import ValidationIssue, validate_diagram

from .containment import ContainmentResolver
from .scheduler import LoopScheduler, Scheduler
from .settings import Settings
from .shape_store import ChangeSource, ShapeStore
from .url_sync import UrlLocation, UrlStateSynchronizer

logger = get_logger("session")

# Drag payload key for palette components; the value is a catalog id
DRAG_MIME_TYPE = "application/x-infracanvas-component"


class CanvasSession:
    """
    Wires store, resolver and URL sync together.

    Usage:
        session = CanvasSession(scheduler=LoopScheduler())
        session.start()
        session.handle_drop({DRAG_MIME_TYPE: "vpc"}, (200, 150))
        result = session.export("mermaid-c4")
        session.dispose()
    """

    def __init__(
        self,
        scheduler: Optional[Scheduler] = None,
        location: Optional[UrlLocation] = None,
        catalog: Optional[ComponentCatalog] = None,
        registry: Optional[FormatRegistry] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or Settings()
        self.catalog = catalog or ComponentCatalog()
        self.registry = registry or default_registry()
        self.scheduler = scheduler or LoopScheduler()
        self.location = location or UrlLocation(self.settings.base_url)

        self.store = ShapeStore(self.catalog)
        self.resolver = ContainmentResolver(
            self.store,
            self.scheduler,
            settle_delay=self.settings.settle_delay,
            cooldown=self.settings.cooldown,
        )
        self.url_sync = UrlStateSynchronizer(
            self.store,
            self.location,
            self.scheduler,
            param=self.settings.url_param,
            write_delay=self.settings.write_delay,
        )
        self._started = False

    def start(self):
        """Apply any state carried by the URL and begin syncing."""
        if self._started:
            return
        self.url_sync.start()
        self._started = True

    def dispose(self):
        self.resolver.dispose()
        self.url_sync.dispose()
        self._started = False

    # --- Commands ---

    def handle_drop(self, data_transfer: dict, screen_point: tuple[float, float]) -> Optional[Shape]:
        """
        Create a component dropped from the palette.

        Args:
            data_transfer: Drag payload; the catalog id is under DRAG_MIME_TYPE
            screen_point: Drop position in screen coordinates

        Returns:
            The new shape (selected), or None if the payload names no known component
        """
        component_id = data_transfer.get(DRAG_MIME_TYPE)
        if not component_id:
            return None
        spec = self.catalog.get(component_id)
        if spec is None:
            logger.warning("Dropped unknown component: %s", component_id)
            return None

        px, py = self.store.screen_to_page(screen_point)
        init = ShapeInit(
            type=spec.id,
            x=px - spec.width / 2,
            y=py - spec.height / 2,
            w=spec.width,
            h=spec.height,
            label=spec.label,
        )

        with self.store.batch():
            shape = self.store.create_shape(init)
            containers = [s for s in self.store.get_shapes() if isinstance(s, ContainerShape)]
            parent = find_parent_container(shape, containers)
            if parent is not None:
                self.store.reparent_shapes([shape.id], parent.id)
            self.store.select([shape.id])

        logger.info("Dropped %s at (%.0f, %.0f)", spec.id, px, py)
        return self.store.get_shape(shape.id)

    def add_shape(self, init: ShapeInit) -> Shape:
        """Create a shape and place it under its geometric parent."""
        with self.store.batch():
            shape = self.store.create_shape(init)
            if init.parent_id is None and not isinstance(shape, ArrowShape):
                containers = [s for s in self.store.get_shapes() if isinstance(s, ContainerShape)]
                parent = find_parent_container(shape, containers)
                if parent is not None:
                    self.store.reparent_shapes([shape.id], parent.id)
        return self.store.get_shape(shape.id)

    def move_shape(self, shape_id: str, x: float, y: float) -> Shape:
        """Move (drag) a shape, selecting it first like a pointer drag does."""
        with self.store.batch():
            self.store.select([shape_id])
            shape = self.store.update_shape(shape_id, x=x, y=y)
        return shape

    def apply_layout(
        self,
        direction: str = "top-down",
        spacing: float = DEFAULT_SPACING,
        options: Optional[LayoutOptions] = None,
        algorithm: str = "hierarchical",
        iterations: int = DEFAULT_ITERATIONS,
        force_options: Optional[ForceOptions] = None,
    ) -> list[PositionUpdate]:
        """
        Run a layout algorithm ("hierarchical" or "force-directed") and apply it in one batch.

        Parentage is brought in line with the laid-out geometry in the same batch.
        """
        updates = compute_layout(self.store.get_shapes(), algorithm, direction, spacing, options,
                                 iterations, force_options)
        with self.store.batch():
            for update in updates:
                if self.store.has_shape(update.id):
                    self.store.update_shape(update.id, **update.changes())
            self._sync_parents()
        logger.info("Applied %s layout to %d shapes", algorithm, len(updates))
        return updates

    def _sync_parents(self):
        page_id = self.store.page_id
        targets = {
            shape_id: parent_id or page_id
            for shape_id, parent_id in resolve_parents(self.store.get_shapes()).items()
        }
        stale = [s for s, target in targets.items() if self.store.get_shape(s).parent_id != target]
        # Lift stale shapes to the page first; what remains is a subtree of the
        # target forest, so no reparent below can create a cycle.
        self.store.reparent_shapes(stale, page_id)
        for shape_id in stale:
            if targets[shape_id] != page_id:
                self.store.reparent_shapes([shape_id], targets[shape_id])

    def connect(self, from_id: str, to_id: str, label: str = "") -> Shape:
        return self.store.create_arrow(from_id, to_id, label)

    def delete(self, shape_ids: list[str]) -> list[str]:
        deleted = self.store.delete_shapes(shape_ids)
        missing = [s for s in shape_ids if s not in deleted]
        if missing and not deleted:
            raise DanglingReferenceError(missing[0])
        return deleted

    def reset(self):
        """Clear the canvas."""
        self.store.load_snapshot(empty_snapshot(self.store.page_id), source=ChangeSource.USER)

    # --- Export ---

    def canonical(self, format_id: str = "json") -> CanonicalDiagram:
        return canonicalize(self.store.get_shapes(), self.store, format_id)

    def export(self, format_id: str) -> ExportResult:
        """
        Export the canvas.

        Raises:
            UnsupportedFormatError: Unknown format id
            GenerationError: The generator failed
        """
        self.registry.get(format_id)
        return export_diagram(self.canonical(format_id), format_id, self.registry)

    def validate(self) -> list[ValidationIssue]:
        return validate_diagram(self.canonical())

    def share_url(self) -> str:
        return self.url_sync.share_url()

    def open_url(self, url: str) -> bool:
        """Navigate to a URL (for example a shared link) and apply its state."""
        before = self.url_sync.last_applied
        self.location.navigate(url)
        if not self._started:
            self.url_sync.sync_from_url()
        return self.url_sync.last_applied != before
