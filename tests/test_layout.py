"""Tests for the layout engines."""

import math

import pytest

from canvas_core.layout import (
    ForceOptions,
    LayoutOptions,
    build_hierarchy,
    compute_layout,
    flatten_levels,
    force_directed_layout,
    hierarchical_layout,
)
from canvas_core.models import ArrowShape, ContainerShape, LeafShape


def container(id: str, x: float, y: float, w: float, h: float, type: str = "vpc") -> ContainerShape:
    return ContainerShape(id=id, type=type, x=x, y=y, w=w, h=h)


def leaf(id: str, x: float, y: float, w: float = 120, h: float = 80) -> LeafShape:
    return LeafShape(id=id, type="compute", x=x, y=y, w=w, h=h)


def apply(shapes, updates):
    by_id = {u.id: u for u in updates}
    return [s.model_copy(update=by_id[s.id].changes()) if s.id in by_id else s for s in shapes]


def boxes(shapes):
    return {s.id: (s.x, s.y, s.w, s.h) for s in shapes if isinstance(s, ContainerShape)}


class TestHierarchy:
    def test_levels_follow_geometry_not_stored_parent(self) -> None:
        vpc = container("vpc", 0, 0, 400, 300)
        # Stored parent is stale: points at the page
        web = leaf("web", 50, 50)
        roots = build_hierarchy([vpc, web])

        assert [r.id for r in roots] == ["vpc"]
        assert [c.id for c in roots[0].children] == ["web"]
        assert roots[0].children[0].level == 1

    def test_flatten_is_level_major(self) -> None:
        shapes = [
            container("vpc", 0, 0, 600, 400),
            container("subnet", 20, 20, 250, 200, type="subnet"),
            leaf("web", 40, 40),
            leaf("lonely", 900, 900),
        ]
        levels = flatten_levels(build_hierarchy(shapes))
        assert [[n.id for n in level] for level in levels] == [["vpc", "lonely"], ["subnet"], ["web"]]


class TestHierarchicalLayout:
    def test_top_down_root_leaves(self) -> None:
        updates = hierarchical_layout([leaf("a", 500, 500), leaf("b", 900, 10)])

        assert [(u.id, u.x, u.y) for u in updates] == [("a", 50, 50), ("b", 270, 50)]
        assert all(u.w is None and u.h is None for u in updates)

    def test_left_right_root_leaves(self) -> None:
        updates = hierarchical_layout([leaf("a", 500, 500), leaf("b", 900, 10)], direction="left-right")
        assert [(u.id, u.x, u.y) for u in updates] == [("a", 50, 50), ("b", 50, 230)]

    def test_container_grows_around_descendants(self) -> None:
        shapes = [container("vpc", 0, 0, 400, 300), leaf("web", 50, 50)]
        updates = {u.id: u for u in hierarchical_layout(shapes)}

        # web sits on level 1: y = 50 + 1 * (100 + 100)
        assert (updates["web"].x, updates["web"].y) == (50, 250)
        vpc = updates["vpc"]
        assert (vpc.x, vpc.y, vpc.w, vpc.h) == (0, 200, 220, 180)

    def test_left_right_level_step(self) -> None:
        shapes = [container("vpc", 0, 0, 400, 300), leaf("web", 50, 50)]
        updates = {u.id: u for u in hierarchical_layout(shapes, direction="left-right", spacing=50)}
        # x = 50 + 1 * (50 + 150)
        assert (updates["web"].x, updates["web"].y) == (250, 50)

    def test_nested_containers_include_all_descendants(self) -> None:
        shapes = [
            container("vpc", 0, 0, 600, 400),
            container("subnet", 20, 20, 250, 200, type="subnet"),
            leaf("web", 40, 40),
        ]
        updates = {u.id: u for u in hierarchical_layout(shapes)}

        web, subnet, vpc = updates["web"], updates["subnet"], updates["vpc"]
        assert (web.x, web.y) == (50, 450)
        assert (subnet.x, subnet.y, subnet.w, subnet.h) == (0, 400, 220, 180)
        assert (vpc.x, vpc.y, vpc.w, vpc.h) == (-50, 350, 320, 280)

    def test_empty_container_keeps_its_size(self) -> None:
        updates = hierarchical_layout([container("subnet", 300, 300, 200, 120, type="subnet")])
        assert updates[0].w is None and updates[0].h is None
        assert (updates[0].x, updates[0].y) == (50, 50)

    def test_custom_options(self) -> None:
        options = LayoutOptions(start_x=0, start_y=10, container_padding=10)
        shapes = [container("vpc", 0, 0, 400, 300), leaf("web", 50, 50)]
        updates = {u.id: u for u in hierarchical_layout(shapes, spacing=20, options=options)}

        assert (updates["web"].x, updates["web"].y) == (0, 130)
        vpc = updates["vpc"]
        assert (vpc.x, vpc.y, vpc.w, vpc.h) == (-10, 120, 140, 100)

    def test_arrows_are_excluded(self) -> None:
        updates = hierarchical_layout([leaf("a", 0, 0), ArrowShape(id="arrow")])
        assert [u.id for u in updates] == ["a"]

    def test_unknown_direction(self) -> None:
        with pytest.raises(ValueError):
            hierarchical_layout([leaf("a", 0, 0)], direction="diagonal")

    def test_input_is_not_mutated(self) -> None:
        shapes = [container("vpc", 0, 0, 400, 300), leaf("web", 50, 50)]
        hierarchical_layout(shapes)
        assert (shapes[0].x, shapes[0].y, shapes[0].w) == (0, 0, 400)

    @pytest.mark.parametrize("direction", ["top-down", "left-right"])
    def test_second_run_keeps_container_boxes(self, direction: str) -> None:
        shapes = [
            container("vpc", 0, 0, 800, 500),
            container("subnet", 20, 20, 300, 200, type="subnet"),
            leaf("web", 40, 40),
            leaf("api", 400, 300),
            container("vpc-b", 1000, 0, 400, 300),
            leaf("db", 1050, 50),
            leaf("user", 2000, 2000),
        ]
        first = apply(shapes, hierarchical_layout(shapes, direction=direction))
        second = apply(first, hierarchical_layout(first, direction=direction))

        assert boxes(second) == boxes(first)

    def test_tall_empty_container_covers_next_band(self) -> None:
        shapes = [
            container("tall", 0, 0, 200, 407),
            container("vpc-b", 1000, 0, 400, 300),
            leaf("db", 1050, 50),
        ]
        first = apply(shapes, hierarchical_layout(shapes))
        # tall keeps its 407 height at y=50, reaching past the level-1 band at y=250
        assert boxes(first)["tall"] == (50, 50, 200, 407)
        assert boxes(first)["vpc-b"] == (0, 200, 220, 180)

        roots = build_hierarchy(first)
        assert [r.id for r in roots] == ["tall"]
        assert [c.id for c in roots[0].children] == ["vpc-b"]

        second = apply(first, hierarchical_layout(first))
        assert boxes(second)["tall"] == (-50, 350, 320, 280)


def center_distance(updates, first: str, second: str) -> float:
    by_id = {u.id: u for u in updates}
    a, b = by_id[first], by_id[second]
    return math.hypot(a.x - b.x, a.y - b.y)


class TestForceDirectedLayout:
    def test_lone_shape_stays_put(self) -> None:
        updates = force_directed_layout([leaf("a", 37, 42)])
        assert [(u.id, u.x, u.y) for u in updates] == [("a", 37, 42)]

    def test_zero_iterations_keeps_positions(self) -> None:
        updates = force_directed_layout([leaf("a", 0, 0), leaf("b", 500, 0)], iterations=0)
        assert [(u.id, u.x, u.y) for u in updates] == [("a", 0, 0), ("b", 500, 0)]

    def test_stacked_shapes_are_pushed_apart(self) -> None:
        updates = force_directed_layout([leaf("a", 100, 100), leaf("b", 100, 100)])
        assert center_distance(updates, "a", "b") > 100

    def test_same_seed_gives_same_layout(self) -> None:
        shapes = [
            container("vpc", 0, 0, 400, 300),
            leaf("web", 150, 100),
            leaf("api", 150, 100),
            leaf("user", 600, 50),
        ]
        first = force_directed_layout(shapes, options=ForceOptions(seed=7))
        second = force_directed_layout(shapes, options=ForceOptions(seed=7))
        assert first == second

    def test_child_stays_inside_container(self) -> None:
        shapes = [container("vpc", 0, 0, 400, 300), leaf("web", 150, 100)]
        updates = {u.id: u for u in force_directed_layout(shapes)}

        vpc, web = updates["vpc"], updates["web"]
        cx, cy = web.x + 60, web.y + 40
        assert vpc.x <= cx <= vpc.x + 400
        assert vpc.y <= cy <= vpc.y + 300
        assert vpc.w is None and web.w is None

    def test_arrows_are_excluded_and_input_not_mutated(self) -> None:
        shapes = [leaf("a", 0, 0), leaf("b", 0, 0), ArrowShape(id="arrow")]
        updates = force_directed_layout(shapes)

        assert [u.id for u in updates] == ["a", "b"]
        assert (shapes[1].x, shapes[1].y) == (0, 0)

    @pytest.mark.parametrize("kwargs", [{"iterations": -1}, {"repulsion": -5}])
    def test_negative_parameters(self, kwargs) -> None:
        with pytest.raises(ValueError):
            force_directed_layout([leaf("a", 0, 0)], **kwargs)


class TestComputeLayout:
    def test_dispatches_by_algorithm(self) -> None:
        shapes = [leaf("a", 500, 500), leaf("b", 900, 10)]

        assert compute_layout(shapes) == hierarchical_layout(shapes)
        assert compute_layout(shapes, "force-directed", iterations=5) == force_directed_layout(shapes, 5)

    def test_unknown_algorithm(self) -> None:
        with pytest.raises(ValueError):
            compute_layout([leaf("a", 0, 0)], "spectral")
