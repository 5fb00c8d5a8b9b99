"""
Auto layout of canvas shapes: hierarchical packing of the containment tree
and a force-directed alternative.

The hierarchical layout is a pure function over a shape snapshot:
- Build the containment forest from geometry (never from stored parentage,
  so stale parent data cannot skew the result)
- Assign each node its depth as level
- Pack each level in a row (top-down) or a column (left-right)
- Grow every container that has children to the bounding box of all its
  descendants plus padding

Containers are measured deepest level first, and a grown container advances
the packing cursor by its final extent. When no box reaches into the band of
a deeper level, running the layout again on its own output reproduces the
same boxes. A root container taller than the band step (an empty one keeps
its size) can cover shapes packed in the next band, and a second run then
nests them inside it.

Dense inputs may still overlap after layout; there is no collision
avoidance beyond the spacing increment.

force_directed_layout is the alternative: a seeded spring simulation that
nudges shapes apart while keeping children near their container.
"""

import math
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from .geometry import find_parent_container
from .logging import get_logger
from .models import BoxShape, ContainerShape, PositionUpdate, Shape

logger = get_logger("layout")


# Default layout parameters
DEFAULT_SPACING = 100
DEFAULT_START_X = 50
DEFAULT_START_Y = 50
DEFAULT_CONTAINER_PADDING = 50

# Extra distance between level bands
LEVEL_GAP_TOP_DOWN = 100
LEVEL_GAP_LEFT_RIGHT = 150

# Force-directed defaults
DEFAULT_ITERATIONS = 300
DEFAULT_REPULSION = 1000
DEFAULT_ATTRACTION = 0.1

# Leaves whose centers are closer than this get a weak spring between them
PROXIMITY_DISTANCE = 300
PROXIMITY_REST_LENGTH = 150
CONTAINMENT_REST_LENGTH = 100
# Containment springs are this many times stiffer than proximity springs
CONTAINMENT_STRENGTH_FACTOR = 5

# The simulation stops once total kinetic energy falls below this
ENERGY_THRESHOLD = 0.01

# Heavier kinds resist forces more
KIND_MASS_FACTOR = {
    "database": 2.0,
    "load-balancer": 1.8,
    "compute": 1.5,
    "storage": 1.2,
    "user": 0.8,
    "external-system": 0.9,
}


class LayoutAlgorithm(str, Enum):
    HIERARCHICAL = "hierarchical"
    FORCE_DIRECTED = "force-directed"


class LayoutDirection(str, Enum):
    TOP_DOWN = "top-down"
    LEFT_RIGHT = "left-right"


@dataclass
class LayoutOptions:
    start_x: float = DEFAULT_START_X
    start_y: float = DEFAULT_START_Y
    container_padding: float = DEFAULT_CONTAINER_PADDING


@dataclass
class HierarchyNode:
    """A node of the containment forest (transient, layout only)."""
    id: str
    is_container: bool
    x: float
    y: float
    width: float
    height: float
    children: list["HierarchyNode"] = field(default_factory=list)
    parent: Optional["HierarchyNode"] = None
    level: int = 0

    def descendants(self) -> list["HierarchyNode"]:
        """All nodes below this one, depth-first."""
        result = []
        for child in self.children:
            result.append(child)
            result.extend(child.descendants())
        return result


def build_hierarchy(shapes: Iterable[Shape]) -> list[HierarchyNode]:
    """
    Build the containment forest from shape geometry.

    Args:
        shapes: Shapes to arrange (arrows are ignored)

    Returns:
        Root nodes in input order, with levels assigned
    """
    boxes = [s for s in shapes if isinstance(s, BoxShape)]
    containers = [s for s in boxes if isinstance(s, ContainerShape)]

    nodes: dict[str, HierarchyNode] = {
        s.id: HierarchyNode(
            id=s.id,
            is_container=isinstance(s, ContainerShape),
            x=s.x,
            y=s.y,
            width=s.w,
            height=s.h,
        )
        for s in boxes
    }

    roots: list[HierarchyNode] = []
    for shape in boxes:
        node = nodes[shape.id]
        parent = find_parent_container(shape, containers)
        if parent is None:
            roots.append(node)
        else:
            parent_node = nodes[parent.id]
            node.parent = parent_node
            parent_node.children.append(node)

    _assign_levels(roots, 0)
    return roots


def _assign_levels(nodes: list[HierarchyNode], level: int):
    for node in nodes:
        node.level = level
        _assign_levels(node.children, level + 1)


def flatten_levels(roots: list[HierarchyNode]) -> list[list[HierarchyNode]]:
    """Group nodes by level, depth-first pre-order within each level."""
    levels: list[list[HierarchyNode]] = []

    def visit(node: HierarchyNode):
        while len(levels) <= node.level:
            levels.append([])
        levels[node.level].append(node)
        for child in node.children:
            visit(child)

    for root in roots:
        visit(root)
    return levels


def hierarchical_layout(
    shapes: Iterable[Shape],
    direction: str = LayoutDirection.TOP_DOWN.value,
    spacing: float = DEFAULT_SPACING,
    options: Optional[LayoutOptions] = None,
) -> list[PositionUpdate]:
    """
    Compute a hierarchical layout.

    Args:
        shapes: Shape snapshot (not mutated)
        direction: "top-down" or "left-right"
        spacing: Gap between nodes in a level
        options: Start position and container padding

    Returns:
        Position updates in level-major order. Grown containers carry w/h.

    Raises:
        ValueError: If direction is unknown
    """
    direction = LayoutDirection(direction)
    options = options or LayoutOptions()

    roots = build_hierarchy(shapes)
    levels = flatten_levels(roots)

    # id -> [x, y, width, height]
    rects: dict[str, list[float]] = {}
    grown: set[str] = set()

    for level_index in range(len(levels) - 1, -1, -1):
        nodes = levels[level_index]
        for node in nodes:
            if node.is_container and node.children:
                rects[node.id] = _enclosing_rect(node, rects, options.container_padding)
                grown.add(node.id)
        _pack_level(nodes, level_index, direction, spacing, options, rects, grown)

    updates = []
    for nodes in levels:
        for node in nodes:
            x, y, width, height = rects[node.id]
            if node.id in grown:
                updates.append(PositionUpdate(id=node.id, x=x, y=y, w=width, h=height))
            else:
                updates.append(PositionUpdate(id=node.id, x=x, y=y))

    logger.debug(
        "Hierarchical layout: %d shapes, %d levels, %d containers grown",
        len(updates), len(levels), len(grown),
    )
    return updates


def _pack_level(
    nodes: list[HierarchyNode],
    level_index: int,
    direction: LayoutDirection,
    spacing: float,
    options: LayoutOptions,
    rects: dict[str, list[float]],
    grown: set[str],
):
    """Place the nodes of one level side by side."""
    if direction is LayoutDirection.TOP_DOWN:
        y = options.start_y + level_index * (spacing + LEVEL_GAP_TOP_DOWN)
        x = options.start_x
        for node in nodes:
            if node.id in grown:
                x += rects[node.id][2] + spacing
                continue
            rects[node.id] = [x, y, node.width, node.height]
            x += node.width + spacing
    else:
        x = options.start_x + level_index * (spacing + LEVEL_GAP_LEFT_RIGHT)
        y = options.start_y
        for node in nodes:
            if node.id in grown:
                y += rects[node.id][3] + spacing
                continue
            rects[node.id] = [x, y, node.width, node.height]
            y += node.height + spacing


def _enclosing_rect(
    node: HierarchyNode,
    rects: dict[str, list[float]],
    padding: float,
) -> list[float]:
    """Bounding box of every descendant's computed rectangle, plus padding."""
    min_x = min_y = float("inf")
    max_x = max_y = float("-inf")
    for descendant in node.descendants():
        x, y, width, height = rects[descendant.id]
        min_x = min(min_x, x)
        min_y = min(min_y, y)
        max_x = max(max_x, x + width)
        max_y = max(max_y, y + height)
    return [
        min_x - padding,
        min_y - padding,
        max_x - min_x + 2 * padding,
        max_y - min_y + 2 * padding,
    ]


# --- Force-directed layout ---

@dataclass
class ForceOptions:
    seed: int = 0
    damping: float = 0.9
    time_step: float = 0.1
    container_constraints: bool = True
    constraint_padding: float = 20


@dataclass
class _Body:
    """Simulation state of one box (transient, layout only)."""
    id: str
    x: float
    y: float
    width: float
    height: float
    mass: float
    vx: float = 0.0
    vy: float = 0.0
    fx: float = 0.0
    fy: float = 0.0

    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2


@dataclass
class _Spring:
    source: _Body
    target: _Body
    strength: float
    rest_length: float


def _mass(shape: BoxShape) -> float:
    return shape.w * shape.h / 10000 * KIND_MASS_FACTOR.get(shape.component_kind, 1.0)


def force_directed_layout(
    shapes: Iterable[Shape],
    iterations: int = DEFAULT_ITERATIONS,
    repulsion: float = DEFAULT_REPULSION,
    attraction: float = DEFAULT_ATTRACTION,
    options: Optional[ForceOptions] = None,
) -> list[PositionUpdate]:
    """
    Compute a force-directed layout.

    Every pair of boxes repels. Springs pull each box towards the container
    whose rectangle holds its center, and pull nearby leaves together. Boxes
    that start on exactly the same center are first spread apart by a
    seeded jitter, so equal inputs and seeds always give equal output.

    Args:
        shapes: Shape snapshot (not mutated)
        iterations: Upper bound on simulation steps
        repulsion: Strength of the pairwise inverse-square push
        attraction: Stiffness of proximity springs
        options: Seed, damping, time step and container constraints

    Returns:
        One position update per box, in input order. Sizes never change.

    Raises:
        ValueError: If iterations or repulsion is negative
    """
    if iterations < 0:
        raise ValueError(f"iterations must not be negative, got {iterations}")
    if repulsion < 0:
        raise ValueError(f"repulsion must not be negative, got {repulsion}")
    options = options or ForceOptions()

    boxes = [s for s in shapes if isinstance(s, BoxShape)]
    containers = [s for s in boxes if isinstance(s, ContainerShape)]
    bodies = [_Body(id=s.id, x=s.x, y=s.y, width=s.w, height=s.h, mass=_mass(s)) for s in boxes]
    by_id = {body.id: body for body in bodies}

    _spread_coincident(bodies, random.Random(options.seed))

    # Containment is fixed from the starting geometry
    contained: list[tuple[_Body, _Body]] = []
    springs: list[_Spring] = []
    for shape in boxes:
        parent = find_parent_container(shape, containers)
        if parent is not None:
            child, container = by_id[shape.id], by_id[parent.id]
            contained.append((child, container))
            springs.append(_Spring(child, container, attraction * CONTAINMENT_STRENGTH_FACTOR,
                                   CONTAINMENT_REST_LENGTH))

    leaves = [by_id[s.id] for s in boxes if not isinstance(s, ContainerShape)]
    for i, first in enumerate(leaves):
        for second in leaves[i + 1:]:
            if _distance(first, second)[2] < PROXIMITY_DISTANCE:
                springs.append(_Spring(first, second, attraction, PROXIMITY_REST_LENGTH))

    steps = 0
    for _ in range(iterations):
        _step(bodies, springs, contained, repulsion, options)
        steps += 1
        if _energy(bodies) < ENERGY_THRESHOLD:
            break

    logger.debug(
        "Force-directed layout: %d shapes, %d springs, %d steps, energy %.4f",
        len(bodies), len(springs), steps, _energy(bodies),
    )
    return [PositionUpdate(id=body.id, x=round(body.x), y=round(body.y)) for body in bodies]


def _spread_coincident(bodies: list[_Body], rng: random.Random):
    """Move each body sharing a center with an earlier one by one unit in a random direction."""
    seen: set[tuple[float, float]] = set()
    for body in bodies:
        while body.center() in seen:
            angle = rng.uniform(0, 2 * math.pi)
            body.x += math.cos(angle)
            body.y += math.sin(angle)
        seen.add(body.center())


def _distance(source: _Body, target: _Body) -> tuple[float, float, float]:
    """(dx, dy, distance) between two centers."""
    sx, sy = source.center()
    tx, ty = target.center()
    dx, dy = tx - sx, ty - sy
    return dx, dy, math.hypot(dx, dy)


def _step(
    bodies: list[_Body],
    springs: list[_Spring],
    contained: list[tuple[_Body, _Body]],
    repulsion: float,
    options: ForceOptions,
):
    for body in bodies:
        body.fx = body.fy = 0.0

    for i, first in enumerate(bodies):
        for second in bodies[i + 1:]:
            dx, dy, distance = _distance(first, second)
            if distance == 0:
                continue
            force = repulsion / (distance * distance)
            fx, fy = dx / distance * force, dy / distance * force
            first.fx -= fx
            first.fy -= fy
            second.fx += fx
            second.fy += fy

    for spring in springs:
        dx, dy, distance = _distance(spring.source, spring.target)
        if distance == 0:
            continue
        force = spring.strength * (distance - spring.rest_length)
        fx, fy = dx / distance * force, dy / distance * force
        spring.source.fx += fx
        spring.source.fy += fy
        spring.target.fx -= fx
        spring.target.fy -= fy

    if options.container_constraints:
        padding = options.constraint_padding
        for child, container in contained:
            min_x = container.x + padding
            max_x = container.x + container.width - child.width - padding
            min_y = container.y + padding
            max_y = container.y + container.height - child.height - padding
            if child.x < min_x:
                child.fx += (min_x - child.x) * 0.1
            if child.x > max_x:
                child.fx += (max_x - child.x) * 0.1
            if child.y < min_y:
                child.fy += (min_y - child.y) * 0.1
            if child.y > max_y:
                child.fy += (max_y - child.y) * 0.1

    for body in bodies:
        body.vx = (body.vx + body.fx / body.mass * options.time_step) * options.damping
        body.vy = (body.vy + body.fy / body.mass * options.time_step) * options.damping
        body.x += body.vx * options.time_step
        body.y += body.vy * options.time_step


def _energy(bodies: list[_Body]) -> float:
    return sum(body.vx * body.vx + body.vy * body.vy for body in bodies)


def compute_layout(
    shapes: Iterable[Shape],
    algorithm: str = LayoutAlgorithm.HIERARCHICAL.value,
    direction: str = LayoutDirection.TOP_DOWN.value,
    spacing: float = DEFAULT_SPACING,
    options: Optional[LayoutOptions] = None,
    iterations: int = DEFAULT_ITERATIONS,
    force_options: Optional[ForceOptions] = None,
) -> list[PositionUpdate]:
    """
    Run the named layout algorithm.

    direction, spacing and options apply to the hierarchical layout;
    iterations and force_options to the force-directed one.

    Raises:
        ValueError: If the algorithm or direction is unknown
    """
    algorithm = LayoutAlgorithm(algorithm)
    if algorithm is LayoutAlgorithm.FORCE_DIRECTED:
        return force_directed_layout(shapes, iterations, options=force_options)
    return hierarchical_layout(shapes, direction, spacing, options)
