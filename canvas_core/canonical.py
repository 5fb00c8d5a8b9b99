"""
Diagram canonicalization - shapes and arrow bindings to a CanonicalDiagram.

Unlike layout, canonicalization trusts the store's parentage rather than
recomputing it. It never fails: dangling parent ids become page-level items
and arrows with a detached endpoint are dropped (and counted in the log).
"""

from datetime import datetime, timezone
from typing import Iterable, Optional, Protocol

from .logging import get_logger
from .models import (
    ArrowBinding,
    ArrowShape,
    BoxShape,
    CanonicalDiagram,
    CanvasItem,
    Connection,
    ContainerShape,
    ExportMetadata,
    Shape,
    Terminal,
)

logger = get_logger("canonical")


class BindingSource(Protocol):
    """Anything that can list the bindings of an arrow (the shape store does)."""

    def get_bindings(self, arrow_id: str) -> list[ArrowBinding]:
        ...


class BindingList:
    """A BindingSource over a plain list of bindings."""

    def __init__(self, bindings: Iterable[ArrowBinding]):
        self._by_arrow: dict[str, list[ArrowBinding]] = {}
        for binding in bindings:
            self._by_arrow.setdefault(binding.arrow_id, []).append(binding)

    def get_bindings(self, arrow_id: str) -> list[ArrowBinding]:
        return list(self._by_arrow.get(arrow_id, []))


def shape_to_item(shape: BoxShape) -> CanvasItem:
    """Project a box shape onto a CanvasItem (parent/children filled in later)."""
    properties = dict(shape.properties)
    properties.update({
        "componentKind": shape.component_kind,
        "w": shape.w,
        "h": shape.h,
        "color": shape.color,
    })
    if isinstance(shape, ContainerShape):
        properties["opacity"] = shape.opacity

    return CanvasItem(
        id=shape.id,
        key=f"{shape.component_kind}-{shape.id}",
        label=shape.label or shape.component_kind,
        x=shape.x,
        y=shape.y,
        properties=properties,
        is_bounding_box=isinstance(shape, ContainerShape),
    )


def arrow_to_connection(
    arrow: ArrowShape,
    bindings: list[ArrowBinding],
    item_ids: set[str],
) -> Optional[Connection]:
    """Resolve an arrow's endpoints; None if either end is detached."""
    start = next((b for b in bindings if b.terminal is Terminal.START), None)
    end = next((b for b in bindings if b.terminal is Terminal.END), None)
    if start is None or end is None:
        return None
    if start.shape_id not in item_ids or end.shape_id not in item_ids:
        return None

    properties = {
        "arrowheadStart": arrow.properties.get("arrowheadStart", "none"),
        "arrowheadEnd": arrow.properties.get("arrowheadEnd", "arrow"),
        "color": arrow.properties.get("color", "black"),
        "size": arrow.properties.get("size", "medium"),
        "dash": arrow.properties.get("dash", "solid"),
    }
    return Connection(
        id=arrow.id,
        from_shape_id=start.shape_id,
        to_shape_id=end.shape_id,
        label=arrow.label or None,
        properties=properties,
    )


def canonicalize(
    shapes: Iterable[Shape],
    bindings: BindingSource,
    format_id: str = "json",
    exported_at: Optional[datetime] = None,
) -> CanonicalDiagram:
    """
    Build the canonical diagram from a point-in-time shape list.

    Args:
        shapes: All shapes on the page (arrows included)
        bindings: Where arrow endpoint bindings are looked up
        format_id: Requested export format, stamped into the metadata
        exported_at: Export timestamp (defaults to now, UTC)

    Returns:
        A CanonicalDiagram with parent/children mirroring the store
    """
    shapes = list(shapes)
    boxes = [s for s in shapes if isinstance(s, BoxShape)]
    arrows = [s for s in shapes if isinstance(s, ArrowShape)]

    items = [shape_to_item(shape) for shape in boxes]
    item_index = {item.id: item for item in items}

    for shape, item in zip(boxes, items):
        parent_id = shape.parent_id
        if parent_id in item_index and parent_id != shape.id:
            item.parent_id = parent_id
            item_index[parent_id].children.append(item.id)

    connections: list[Connection] = []
    detached = 0
    for arrow in arrows:
        connection = arrow_to_connection(arrow, bindings.get_bindings(arrow.id), set(item_index))
        if connection is None:
            detached += 1
            continue
        connections.append(connection)

    if detached:
        logger.warning("Skipped %d detached arrow(s) during canonicalization", detached)

    return CanonicalDiagram(
        items=items,
        connections=connections,
        metadata=ExportMetadata(
            exported_at=exported_at or datetime.now(timezone.utc),
            format=format_id,
        ),
    )
