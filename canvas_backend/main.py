"""
Infracanvas Backend - FastAPI Application

Serves one CanvasSession:
- REST API for shapes, arrows, selection, layout, export and share links
- WebSocket endpoint broadcasting canvas_updated events
- CORS configuration for local frontend development
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from canvas_core.errors import DanglingReferenceError, GenerationError, UnsupportedFormatError
from canvas_core.layout import DEFAULT_ITERATIONS, ForceOptions
from canvas_core.logging import get_logger, setup_logging
from canvas_core.validation import validation_summary

from .session import DRAG_MIME_TYPE, CanvasSession
from .settings import Settings
from .websocket_manager import WebSocketManager, canvas_message

logger = get_logger("api")


# --- Request models ---

class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DropRequest(_Request):
    """A palette component dropped at a screen point."""
    component_id: str
    x: float
    y: float


class UpdateShapeRequest(_Request):
    """Partial shape update. Changing x/y is treated as a drag of that shape."""
    x: Optional[float] = None
    y: Optional[float] = None
    w: Optional[float] = None
    h: Optional[float] = None
    label: Optional[str] = None
    color: Optional[str] = None
    opacity: Optional[float] = None
    properties: Optional[dict[str, Any]] = None


class CreateArrowRequest(_Request):
    from_id: str
    to_id: str
    label: str = ""


class SelectionRequest(_Request):
    ids: list[str]


class LayoutRequest(_Request):
    algorithm: str = "hierarchical"
    direction: str = "top-down"
    spacing: float = 100
    iterations: int = DEFAULT_ITERATIONS
    seed: int = 0


class OpenShareRequest(_Request):
    url: str


def create_app(session: Optional[CanvasSession] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the API around a session (a fresh one if none is given)."""
    settings = settings or (session.settings if session else Settings.from_env())
    session = session or CanvasSession(settings=settings)
    ws_manager = WebSocketManager()

    # --- Async change notification ---
    # Bridge between sync store listeners and async WebSocket broadcasts

    change_event: Optional[asyncio.Event] = None

    def on_canvas_change(change):
        if change_event is not None:
            change_event.set()

    async def change_broadcaster(event: asyncio.Event):
        """Background task that broadcasts changes to WebSocket clients."""
        while True:
            await event.wait()
            event.clear()
            await ws_manager.notify_canvas_updated(
                session.location.url,
                len(session.store.get_shapes()),
            )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal change_event
        change_event = asyncio.Event()
        subscription = session.store.listen(on_canvas_change)
        session.start()
        broadcaster_task = asyncio.create_task(change_broadcaster(change_event))
        logger.info("Canvas session started (%s)", session.location.url)

        yield

        broadcaster_task.cancel()
        try:
            await broadcaster_task
        except asyncio.CancelledError:
            pass
        subscription.dispose()
        session.dispose()
        change_event = None

    app = FastAPI(
        title="Infracanvas API",
        description="Backend API for the infrastructure canvas",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.session = session
    app.state.ws_manager = ws_manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Health / state ---

    @app.get("/api/health")
    async def health_check():
        return {
            "status": "ok",
            "connections": ws_manager.connection_count,
            "shapes": len(session.store.get_shapes()),
        }

    @app.get("/api/canvas")
    async def get_canvas():
        """Get the current canvas snapshot, selection and resolver state."""
        return {
            "snapshot": session.store.get_snapshot(),
            "selected": session.store.get_selected_ids(),
            "resolver": session.resolver.state.value,
        }

    # --- Shapes ---

    @app.post("/api/shapes")
    async def drop_shape(request: DropRequest):
        """Drop a palette component at a screen point."""
        shape = session.handle_drop({DRAG_MIME_TYPE: request.component_id}, (request.x, request.y))
        if shape is None:
            raise HTTPException(status_code=400, detail=f"Unknown component: {request.component_id}")
        return {"success": True, "shape": shape.to_record()}

    @app.patch("/api/shapes/{shape_id}")
    async def update_shape(shape_id: str, request: UpdateShapeRequest):
        """Update a shape. A position change counts as a drag."""
        changes = request.model_dump(exclude_none=True)
        try:
            x, y = changes.pop("x", None), changes.pop("y", None)
            with session.store.batch():
                if x is not None or y is not None:
                    current = session.store.get_shape(shape_id)
                    if current is None:
                        raise DanglingReferenceError(shape_id)
                    session.move_shape(
                        shape_id,
                        current.x if x is None else x,
                        current.y if y is None else y,
                    )
                if changes:
                    session.store.update_shape(shape_id, **changes)
        except DanglingReferenceError:
            raise HTTPException(status_code=404, detail="Shape not found")
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"success": True, "shape": session.store.get_shape(shape_id).to_record()}

    @app.delete("/api/shapes/{shape_id}")
    async def delete_shape(shape_id: str):
        try:
            session.delete([shape_id])
        except DanglingReferenceError:
            raise HTTPException(status_code=404, detail="Shape not found")
        return {"success": True}

    @app.post("/api/arrows")
    async def create_arrow(request: CreateArrowRequest):
        try:
            arrow = session.connect(request.from_id, request.to_id, request.label)
        except DanglingReferenceError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"success": True, "arrow": arrow.to_record()}

    @app.post("/api/selection")
    async def select_shapes(request: SelectionRequest):
        return {"selected": session.store.select(request.ids)}

    @app.post("/api/containment/resolve")
    async def resolve_containment():
        """Run a reparenting pass over the selection now."""
        ops = session.resolver.resolve()
        return {
            "reparented": [{"shapeId": op.shape_id, "newParentId": op.new_parent_id} for op in ops],
        }

    # --- Layout ---

    @app.post("/api/layout")
    async def auto_layout(request: LayoutRequest):
        try:
            updates = session.apply_layout(
                request.direction,
                request.spacing,
                algorithm=request.algorithm,
                iterations=request.iterations,
                force_options=ForceOptions(seed=request.seed),
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {
            "success": True,
            "updates": [u.model_dump(exclude_none=True) for u in updates],
        }

    # --- Export ---

    @app.get("/api/formats")
    async def list_formats():
        return {"formats": [fmt.to_dict() for fmt in session.registry]}

    @app.get("/api/export/{format_id}")
    async def export_canvas(format_id: str):
        try:
            result = session.export(format_id)
        except (UnsupportedFormatError, GenerationError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"format": format_id, "content": result.content, "extension": result.extension}

    @app.get("/api/validate")
    async def validate_canvas():
        issues = session.validate()
        return {
            "issues": [issue.to_dict() for issue in issues],
            "summary": validation_summary(issues),
        }

    # --- Share links ---

    @app.get("/api/share")
    async def get_share_url():
        return {"url": session.share_url(), "param": session.url_sync.param}

    @app.post("/api/share")
    async def open_share_url(request: OpenShareRequest):
        """Apply the state carried by a shared URL. Invalid state is discarded, never raised."""
        applied = session.open_url(request.url)
        return {"applied": applied, "url": session.location.url}

    # --- WebSocket ---

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await ws_manager.connect(
            websocket,
            greeting=canvas_message("canvas_state", session.location.url, len(session.store.get_shapes())),
        )
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await ws_manager.disconnect(websocket)

    return app


settings = Settings.from_env()
app = create_app(settings=settings)


def run():
    """Console entry point: serve the API with uvicorn."""
    import uvicorn
    setup_logging(settings.log_level)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
