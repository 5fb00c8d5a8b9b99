"""Tests for containment by geometry."""

import itertools

from canvas_core.geometry import contains_point, find_parent_container, resolve_parents
from canvas_core.models import ArrowShape, ContainerShape, LeafShape


def container(id: str, x: float, y: float, w: float, h: float, seq: int = 0) -> ContainerShape:
    return ContainerShape(id=id, type="vpc", x=x, y=y, w=w, h=h, seq=seq)


def leaf(id: str, x: float, y: float, w: float = 20, h: float = 20, seq: int = 0) -> LeafShape:
    return LeafShape(id=id, type="compute", x=x, y=y, w=w, h=h, seq=seq)


class TestContainsPoint:
    def test_inside(self) -> None:
        assert contains_point(container("a", 0, 0, 100, 100), 50, 50)

    def test_edges_are_inclusive(self) -> None:
        box = container("a", 0, 0, 100, 100)
        assert contains_point(box, 0, 0)
        assert contains_point(box, 100, 100)

    def test_outside(self) -> None:
        assert not contains_point(container("a", 0, 0, 100, 100), 100.5, 50)


class TestFindParentContainer:
    def test_smallest_enclosing_container_wins(self) -> None:
        """A leaf centered at P goes to the 40x40 container, not the 100x100 one."""
        outer = container("A", 0, 0, 100, 100)
        inner = container("B", 30, 30, 40, 40)
        shape = leaf("leaf", 40, 40)  # center (50, 50)

        assert find_parent_container(shape, [outer, inner]).id == "B"
        assert find_parent_container(shape, [inner, outer]).id == "B"

    def test_no_container_means_page(self) -> None:
        assert find_parent_container(leaf("leaf", 500, 500), [container("A", 0, 0, 100, 100)]) is None

    def test_container_is_never_its_own_parent(self) -> None:
        box = container("A", 0, 0, 100, 100)
        assert find_parent_container(box, [box]) is None

    def test_equal_area_prefers_newer_container(self) -> None:
        old = container("old", 0, 0, 100, 100, seq=1)
        new = container("new", 10, 10, 100, 100, seq=2)
        shape = leaf("leaf", 40, 40)

        assert find_parent_container(shape, [old, new]).id == "new"
        assert find_parent_container(shape, [new, old]).id == "new"

    def test_equal_area_and_seq_prefers_smaller_id(self) -> None:
        a = container("a", 0, 0, 100, 100)
        b = container("b", 0, 0, 100, 100)
        assert find_parent_container(leaf("leaf", 40, 40), [b, a]).id == "a"

    def test_identical_containers_do_not_form_a_cycle(self) -> None:
        a = container("a", 0, 0, 100, 100, seq=1)
        b = container("b", 0, 0, 100, 100, seq=2)

        parent_of_a = find_parent_container(a, [a, b])
        parent_of_b = find_parent_container(b, [a, b])

        # The newer twin nests inside the older one, never both ways
        assert parent_of_a is None
        assert parent_of_b is not None and parent_of_b.id == "a"

    def test_container_nests_in_larger_container(self) -> None:
        vpc = container("vpc", 0, 0, 400, 300)
        subnet = container("subnet", 20, 20, 200, 120)
        assert find_parent_container(subnet, [vpc, subnet]).id == "vpc"
        assert find_parent_container(vpc, [vpc, subnet]) is None


class TestResolveParents:
    def test_same_result_for_every_input_order(self) -> None:
        shapes = [
            container("vpc", 0, 0, 400, 300, seq=1),
            container("subnet", 20, 20, 200, 150, seq=2),
            container("twin", 20, 20, 200, 150, seq=3),
            leaf("web", 50, 50, seq=4),
            leaf("db", 300, 200, seq=5),
            leaf("outside", 900, 900, seq=6),
        ]
        expected = resolve_parents(shapes)

        for order in itertools.permutations(shapes):
            assert resolve_parents(order) == expected

        assert expected["web"] == "twin"
        assert expected["db"] == "vpc"
        assert expected["outside"] is None

    def test_arrows_are_not_included(self) -> None:
        result = resolve_parents([container("a", 0, 0, 100, 100), ArrowShape(id="arrow")])
        assert "arrow" not in result
