"""Tests for CanvasSession commands."""

import pytest

from canvas_backend.session import DRAG_MIME_TYPE, CanvasSession
from canvas_backend.settings import Settings
from canvas_backend.shape_store import ChangeScope
from canvas_backend.url_sync import UrlLocation
from canvas_core.codec import decode_snapshot
from canvas_core.errors import DanglingReferenceError, UnsupportedFormatError
from canvas_core.geometry import resolve_parents
from canvas_core.models import PAGE_ROOT_ID, ShapeInit


class TestDrop:
    def test_drop_centers_and_selects(self, session) -> None:
        shape = session.handle_drop({DRAG_MIME_TYPE: "vpc"}, (200, 150))

        assert (shape.x, shape.y) == (50, 50)
        assert session.store.get_selected_ids() == [shape.id]

    def test_drop_respects_camera(self, session) -> None:
        session.store.set_camera(0, 0, zoom=2)
        shape = session.handle_drop({DRAG_MIME_TYPE: "compute"}, (400, 400))

        assert (shape.x, shape.y) == (140, 160)

    def test_drop_inside_container_is_parented(self, session) -> None:
        vpc = session.handle_drop({DRAG_MIME_TYPE: "vpc"}, (200, 150))
        web = session.handle_drop({DRAG_MIME_TYPE: "compute"}, (200, 150))

        assert web.parent_id == vpc.id
        assert session.store.get_selected_ids() == [web.id]

    @pytest.mark.parametrize("payload", [{}, {DRAG_MIME_TYPE: ""}, {DRAG_MIME_TYPE: "mainframe"}])
    def test_unknown_payload_is_ignored(self, session, payload) -> None:
        assert session.handle_drop(payload, (10, 10)) is None
        assert session.store.get_shapes() == []


class TestCommands:
    def test_add_shape_finds_parent(self, session) -> None:
        session.add_shape(ShapeInit(type="vpc", id="vpc-1", x=0, y=0, w=400, h=300))
        web = session.add_shape(ShapeInit(type="compute", id="web", x=50, y=50))

        assert web.parent_id == "vpc-1"

    def test_layout_is_one_change_and_syncs_parents(self, session) -> None:
        session.add_shape(ShapeInit(type="vpc", id="vpc-1", x=0, y=0, w=300, h=200))
        session.add_shape(ShapeInit(type="compute", id="web", x=10, y=10, parent_id="vpc-1"))
        session.add_shape(ShapeInit(type="database", id="db", x=800, y=800))
        session.store.update_shape("db", x=20, y=100)  # now overlaps the VPC, but is not its child
        changes = []
        session.store.listen(changes.append, scope=ChangeScope.DOCUMENT)

        updates = session.apply_layout("top-down")

        assert len(changes) == 1
        assert {u.id for u in updates} == {"vpc-1", "web", "db"}
        shapes = session.store.get_shapes()
        expected = {s: p or PAGE_ROOT_ID for s, p in resolve_parents(shapes).items()}
        assert {s.id: s.parent_id for s in shapes} == expected

    def test_layout_rejects_unknown_direction(self, session) -> None:
        with pytest.raises(ValueError):
            session.apply_layout("diagonal")

    def test_force_directed_layout_is_one_change(self, session) -> None:
        session.add_shape(ShapeInit(type="compute", id="web", x=100, y=100))
        session.add_shape(ShapeInit(type="compute", id="api", x=100, y=100))
        changes = []
        session.store.listen(changes.append, scope=ChangeScope.DOCUMENT)

        updates = session.apply_layout(algorithm="force-directed")

        assert len(changes) == 1
        assert [u.id for u in updates] == ["web", "api"]
        web, api = session.store.get_shape("web"), session.store.get_shape("api")
        assert (web.x, web.y) != (api.x, api.y)

    def test_layout_rejects_unknown_algorithm(self, session) -> None:
        with pytest.raises(ValueError):
            session.apply_layout(algorithm="spectral")

    def test_delete_unknown(self, session) -> None:
        with pytest.raises(DanglingReferenceError):
            session.delete(["shape:nope"])

    def test_reset_clears_everything(self, session) -> None:
        session.handle_drop({DRAG_MIME_TYPE: "vpc"}, (200, 150))
        session.reset()

        assert session.store.get_shapes() == []
        assert session.store.get_selected_ids() == []


class TestExport:
    def test_export_mermaid(self, session) -> None:
        session.add_shape(ShapeInit(type="vpc", id="vpc-1", x=0, y=0, w=400, h=300, label="Main VPC"))
        session.add_shape(ShapeInit(type="compute", id="compute-1", x=50, y=50, label="Web"))

        result = session.export("mermaid-c4")

        assert result.extension == "mmd"
        assert 'System(compute_1, "Web", "Compute (t3.micro)")' in result.content

    def test_export_unknown_format(self, session) -> None:
        with pytest.raises(UnsupportedFormatError):
            session.export("visio")

    def test_canonical_metadata_names_format(self, session) -> None:
        assert session.canonical("terraform").metadata.format == "terraform"


class TestSharing:
    def test_share_url_round_trips_into_a_new_session(self, session, scheduler) -> None:
        session.add_shape(ShapeInit(type="vpc", id="vpc-1", x=0, y=0, w=400, h=300))
        session.add_shape(ShapeInit(type="compute", id="web", x=50, y=50))
        url = session.share_url()

        other = CanvasSession(scheduler=scheduler, location=UrlLocation(url))
        other.start()
        try:
            assert other.store.get_snapshot() == session.store.get_snapshot()
            assert other.store.get_shape("web").parent_id == "vpc-1"
        finally:
            other.dispose()

    def test_open_url(self, scheduler) -> None:
        source = CanvasSession(scheduler=scheduler, location=UrlLocation())
        source.add_shape(ShapeInit(type="storage", id="bucket"))
        url = source.share_url()

        target = CanvasSession(scheduler=scheduler, location=UrlLocation())
        assert target.open_url(url) is True
        assert target.store.has_shape("bucket")
        assert target.open_url("http://localhost/?canvas=garbage") is False
        assert target.store.has_shape("bucket")

    def test_custom_param(self, scheduler) -> None:
        location = UrlLocation()
        session = CanvasSession(
            scheduler=scheduler,
            location=location,
            settings=Settings(url_param="state", write_delay=0.2),
        )
        session.start()
        session.add_shape(ShapeInit(type="compute", id="web"))
        scheduler.advance(0.2)

        assert location.get_param("canvas") is None
        assert decode_snapshot(location.get_param("state")) == session.store.get_snapshot()
        session.dispose()
