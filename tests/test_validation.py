"""Tests for diagram validation."""

from canvas_core.canonical import canonicalize
from canvas_core.models import CanonicalDiagram, CanvasItem, Connection
from canvas_core.validation import IssueSeverity, validate_diagram, validation_summary


def item(item_id, kind="compute", parent_id=None, children=(), label="Item", w=120):
    return CanvasItem(
        id=item_id,
        key=f"{kind}-{item_id}",
        label=label,
        x=0,
        y=0,
        properties={"componentKind": kind, "w": w},
        is_bounding_box=kind in ("vpc", "subnet"),
        parent_id=parent_id,
        children=list(children),
    )


def connection(conn_id, source, target):
    return Connection(id=conn_id, from_shape_id=source, to_shape_id=target)


def messages(issues, severity):
    return [i.message for i in issues if i.severity == severity]


class TestValidateDiagram:
    def test_empty_diagram(self) -> None:
        issues = validate_diagram(CanonicalDiagram())
        assert len(issues) == 1
        assert issues[0].severity == IssueSeverity.INFO

    def test_clean_store_diagram(self, store, add_shape) -> None:
        add_shape("vpc", 0, 0, 400, 300, id="vpc-1", label="Main")
        add_shape("compute", 50, 50, id="web", parent_id="vpc-1", label="Web")
        add_shape("database", 200, 50, id="db", parent_id="vpc-1", label="DB")
        store.create_arrow("web", "db")

        issues = validate_diagram(canonicalize(store.get_shapes(), store))

        assert issues == []

    def test_unknown_parent(self) -> None:
        diagram = CanonicalDiagram(items=[item("web", parent_id="vpc-gone")])
        issues = validate_diagram(diagram)

        assert any("vpc-gone" in m for m in messages(issues, IssueSeverity.ERROR))

    def test_children_must_point_back(self) -> None:
        diagram = CanonicalDiagram(items=[
            item("vpc-1", kind="vpc", children=["web"], w=400),
            item("web"),
        ])
        issues = validate_diagram(diagram)

        assert [i.item_id for i in issues] == ["vpc-1"]

    def test_parent_cycle_reported_once(self) -> None:
        diagram = CanonicalDiagram(items=[
            item("a", kind="subnet", parent_id="b", children=["b"]),
            item("b", kind="subnet", parent_id="a", children=["a"]),
        ])
        errors = messages(validate_diagram(diagram), IssueSeverity.ERROR)

        assert len([m for m in errors if m.startswith("Parent cycle")]) == 1

    def test_connection_problems(self) -> None:
        diagram = CanonicalDiagram(
            items=[item("a"), item("b")],
            connections=[
                connection("c1", "a", "b"),
                connection("c2", "a", "b"),
                connection("c3", "a", "a"),
                connection("c4", "a", "ghost"),
            ],
        )
        issues = validate_diagram(diagram)
        by_connection = {i.connection_id: i.severity for i in issues}

        assert by_connection == {
            "c2": IssueSeverity.WARNING,
            "c3": IssueSeverity.WARNING,
            "c4": IssueSeverity.ERROR,
        }

    def test_narrow_vpc_and_empty_label(self) -> None:
        diagram = CanonicalDiagram(items=[item("vpc-1", kind="vpc", w=200, label="  ")])
        warnings = messages(validate_diagram(diagram), IssueSeverity.WARNING)

        assert "Item has an empty label" in warnings
        assert any("narrower than 300px (200px)" in m for m in warnings)


def test_summary_and_dict_form() -> None:
    diagram = CanonicalDiagram(
        items=[item("a", parent_id="missing")],
        connections=[connection("c1", "a", "a")],
    )
    issues = validate_diagram(diagram)

    assert validation_summary(issues) == {
        "total": 2, "errors": 1, "warnings": 1, "info": 0, "valid": False,
    }
    assert issues[0].to_dict() == {
        "type": "error",
        "message": "Item references non-existent parent: missing",
        "itemId": "a",
    }
