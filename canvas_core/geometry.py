"""
Containment by geometry.

The single rule shared by the containment resolver and the layout engine:
a shape belongs to the smallest-area container whose rectangle contains the
shape's center point. Ties between equal-area containers go to the most
recently created one (higher ``seq``), then to the smaller id.

Containers are ranked by (area, -seq, id). A container may only be parented
by a container of strictly higher rank, so the parent relation can never
form a cycle, even for identical overlapping containers.
"""

from typing import Iterable, Optional

from .models import BoxShape, ContainerShape, Shape


def contains_point(container: BoxShape, px: float, py: float) -> bool:
    """Check whether a point lies inside (or on the edge of) a shape's rectangle."""
    left, top, right, bottom = container.bounds()
    return left <= px <= right and top <= py <= bottom


def containment_rank(container: BoxShape) -> tuple[float, int, str]:
    """Total order used to pick a parent: smaller area first, newer first, then id."""
    return (container.area, -container.seq, container.id)


def find_parent_container(
    shape: BoxShape,
    containers: Iterable[ContainerShape],
) -> Optional[ContainerShape]:
    """
    Find the container that should own a shape.

    Args:
        shape: The shape whose parent is wanted
        containers: Candidate containers (the shape itself is skipped)

    Returns:
        The winning container, or None if the shape belongs to the page
    """
    cx, cy = shape.center()
    own_rank = containment_rank(shape) if isinstance(shape, ContainerShape) else None

    best: Optional[ContainerShape] = None
    best_rank = None
    for container in containers:
        if container.id == shape.id:
            continue
        if not contains_point(container, cx, cy):
            continue
        rank = containment_rank(container)
        if own_rank is not None and rank <= own_rank:
            continue
        if best_rank is None or rank < best_rank:
            best, best_rank = container, rank
    return best


def resolve_parents(shapes: Iterable[Shape]) -> dict[str, Optional[str]]:
    """
    Compute the geometric parent of every box shape.

    Returns:
        Map of shape id -> container id (None for page-level shapes).
        Arrows are not included.
    """
    boxes = [s for s in shapes if isinstance(s, BoxShape)]
    containers = [s for s in boxes if isinstance(s, ContainerShape)]
    result: dict[str, Optional[str]] = {}
    for shape in boxes:
        parent = find_parent_container(shape, containers)
        result[shape.id] = parent.id if parent else None
    return result
