"""Tests for URL state synchronization."""

import base64
import logging
import zlib

import pytest

from canvas_backend.shape_store import ShapeStore
from canvas_backend.url_sync import UrlLocation, UrlStateSynchronizer
from canvas_core.codec import decode_snapshot, encode_snapshot
from canvas_core.models import ShapeInit


@pytest.fixture
def sync(store, location, scheduler):
    sync = UrlStateSynchronizer(store, location, scheduler, write_delay=0.5)
    yield sync
    sync.dispose()


def shared_token() -> str:
    other = ShapeStore()
    other.create_shape(ShapeInit(type="vpc", id="vpc-1", x=0, y=0, w=400, h=300))
    other.create_shape(ShapeInit(type="compute", id="web", x=50, y=50, parent_id="vpc-1"))
    return encode_snapshot(other.get_snapshot())


class TestUrlLocation:
    def test_replace_keeps_other_params_and_history(self) -> None:
        location = UrlLocation("http://example.com/app?theme=dark")
        location.replace_params({"canvas": "abc"})

        assert location.get_param("canvas") == "abc"
        assert location.get_param("theme") == "dark"
        assert len(location.history) == 1

        location.replace_params({"canvas": None})
        assert location.url == "http://example.com/app?theme=dark"

    def test_navigate_notifies(self) -> None:
        location = UrlLocation()
        seen = []
        unsubscribe = location.on_change(seen.append)
        location.navigate("http://localhost/?a=1")
        unsubscribe()
        location.navigate("http://localhost/?a=2")

        assert seen == ["http://localhost/?a=1"]


class TestWritePath:
    def test_ten_mutations_make_one_write(self, store, location, scheduler, sync, add_shape) -> None:
        sync.start()
        add_shape("compute", id="web")

        for i in range(10):
            store.update_shape("web", x=i * 10)
            scheduler.advance(0.1)
        assert sync.write_count == 0

        scheduler.advance(0.5)

        assert sync.write_count == 1
        assert decode_snapshot(location.get_param("canvas")) == store.get_snapshot()
        assert store.get_shape("web").x == 90
        assert len(location.history) == 1  # replaced, never pushed

    def test_unchanged_state_is_not_rewritten(self, store, scheduler, sync, add_shape) -> None:
        sync.start()
        add_shape("compute", id="web")
        scheduler.advance(0.5)

        store.select(["web"])  # session-only change, same snapshot
        scheduler.advance(0.5)

        assert sync.write_count == 1

    def test_share_url_writes_immediately(self, store, location, sync, add_shape) -> None:
        sync.start()
        add_shape("vpc", id="vpc-1")

        url = sync.share_url()

        assert "canvas=" in url
        assert not sync.write_pending
        assert decode_snapshot(location.get_param("canvas")) == store.get_snapshot()

    def test_dispose_cancels_pending_write(self, store, scheduler, sync, add_shape) -> None:
        sync.start()
        add_shape("compute")
        sync.dispose()
        scheduler.advance(1)

        assert sync.write_count == 0


class TestReadPath:
    def test_applies_parameter_on_start(self, store, scheduler) -> None:
        location = UrlLocation(f"http://localhost/?canvas={shared_token()}")
        sync = UrlStateSynchronizer(store, location, scheduler)
        sync.start()

        assert store.get_shape("web").parent_id == "vpc-1"
        scheduler.advance(1)
        assert sync.write_count == 0  # applying a read does not write it back

    def test_applies_external_navigation(self, store, location, scheduler, sync) -> None:
        sync.start()
        location.navigate(f"http://localhost/?canvas={shared_token()}")

        assert store.has_shape("vpc-1")
        assert sync.last_applied == location.get_param("canvas")

    def test_own_write_is_not_read_back(self, store, location, scheduler, sync, add_shape) -> None:
        sync.start()
        add_shape("compute", id="web")
        scheduler.advance(0.5)
        changes = []
        store.listen(changes.append)

        location.navigate(location.url)

        assert changes == []

    def test_invalid_parameter_is_stripped(self, store, scheduler, caplog) -> None:
        location = UrlLocation("http://localhost/?canvas=not-valid&theme=dark")
        sync = UrlStateSynchronizer(store, location, scheduler)

        with caplog.at_level(logging.WARNING, logger="infracanvas"):
            sync.start()

        assert store.get_shapes() == []
        assert location.get_param("canvas") is None
        assert location.url == "http://localhost/?theme=dark"
        assert len(location.history) == 1
        assert "not-valid" not in location.url
        assert any(record.levelno == logging.ERROR for record in caplog.records)

    def test_invalid_navigation_keeps_current_state(self, store, location, scheduler, sync, add_shape) -> None:
        sync.start()
        add_shape("compute", id="web")
        before = store.get_snapshot()

        location.navigate("http://localhost/?canvas=eJzLSM3JyQcABiwCFQ")

        assert store.get_snapshot() == before
        assert location.get_param("canvas") is None

    def test_deeply_nested_parameter_is_stripped(self, store, scheduler) -> None:
        payload = zlib.compress(b"[" * 100000)
        token = base64.urlsafe_b64encode(payload).decode().rstrip("=")
        location = UrlLocation(f"http://localhost/?canvas={token}&theme=dark")
        sync = UrlStateSynchronizer(store, location, scheduler)

        sync.start()

        assert store.get_shapes() == []
        assert location.url == "http://localhost/?theme=dark"
        sync.dispose()
