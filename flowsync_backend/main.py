"""
Flowsync Backend - FastAPI Application

This is the main entry point for the flowsync backend.
It provides:
- REST API for the three editing surfaces (text, canvas, assistant),
  undo/redo, conversions and export
- WebSocket endpoint for real-time updates and canvas change events
- CORS configuration for local frontend development

All state lives in a DiagramSession created by `create_app()` and handed
to endpoints through a dependency; there are no module-level singletons.
"""
import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import ValidationError

from flowsync_core import (
    DiagramParser,
    ExportError,
    FlowchartParser,
    ParseError,
    TextToGraphConverter,
    VisualElement,
    graph_to_text,
    non_deleted,
)

from .assistant import ChatInterceptor, DiagramReplyInterceptor, build_prompt
from .config import SyncSettings, load_settings
from .diagram_store import DiagramStore
from .export import render_png, render_svg
from .models import (
    ChatRequest,
    ConvertElementsRequest,
    ConvertTextRequest,
    ElementsRequest,
    NewDocumentRequest,
    RenderingRequest,
    SurfaceRequest,
    TextUpdateRequest,
)
from .sync_coordinator import SyncCoordinator
from .websocket_manager import WebSocketCanvas, WebSocketManager

log = logging.getLogger(__name__)


class DiagramSession:
    """Everything one open document needs, wired together."""

    def __init__(self, settings: SyncSettings, parser: Optional[DiagramParser] = None):
        self.settings = settings
        self.store = DiagramStore(settings.default_diagram, max_history=settings.max_history)
        self.converter = TextToGraphConverter(parser or FlowchartParser(), retry_delay=settings.parse_retry_delay)
        self.ws_manager = WebSocketManager()
        self.coordinator = SyncCoordinator(
            self.store, self.converter, WebSocketCanvas(self.ws_manager), settings
        )
        self.assistant: ChatInterceptor = DiagramReplyInterceptor(self.store)
        self._change_event = asyncio.Event()

    # --- Async change notification ---
    # Bridge between sync DiagramStore callbacks and async WebSocket broadcasts

    def on_store_change(self):
        """Callback for store changes - sets event for async handler."""
        self._change_event.set()

    async def change_broadcaster(self):
        """Background task that broadcasts changes to WebSocket clients."""
        while True:
            await self._change_event.wait()
            self._change_event.clear()
            await self.ws_manager.notify_diagram_updated(self.store.get_state())


def get_session(request: Request) -> DiagramSession:
    return request.app.state.session


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup/shutdown tasks."""
    session: DiagramSession = app.state.session

    session.store.on_change(session.on_store_change)
    session.store.on_change(session.coordinator.notify_text_changed)

    broadcaster_task = asyncio.create_task(session.change_broadcaster())

    # Initial load of the template diagram
    await session.coordinator.update_scene(session.store.text, force=True)

    yield

    # Cleanup
    broadcaster_task.cancel()
    try:
        await broadcaster_task
    except asyncio.CancelledError:
        pass
    await session.coordinator.close()


router = APIRouter(prefix="/api")


# --- Health Check ---

@router.get("/health")
async def health_check(session: DiagramSession = Depends(get_session)):
    """Health check endpoint."""
    return {"status": "ok", "connections": session.ws_manager.connection_count}


# --- Canonical Text ---

@router.get("/diagram")
async def get_diagram(session: DiagramSession = Depends(get_session)):
    """Get the current store state."""
    return session.store.get_state()


def _apply(update, text: str, store: DiagramStore) -> dict:
    try:
        changed = update(text)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "changed": changed, "state": store.get_state()}


@router.put("/diagram/text")
async def update_from_text(request: TextUpdateRequest, session: DiagramSession = Depends(get_session)):
    """Apply an edit from the text editor."""
    return _apply(session.store.from_text, request.text, session.store)


@router.post("/diagram/ai")
async def update_from_ai(request: TextUpdateRequest, session: DiagramSession = Depends(get_session)):
    """Apply diagram text produced by the assistant."""
    return _apply(session.store.from_ai, request.text, session.store)


@router.post("/diagram/undo")
async def undo(session: DiagramSession = Depends(get_session)):
    """Step back in history (no-op at the oldest entry)."""
    changed = session.store.undo()
    return {"success": changed, "state": session.store.get_state()}


@router.post("/diagram/redo")
async def redo(session: DiagramSession = Depends(get_session)):
    """Step forward in history (no-op at the newest entry)."""
    changed = session.store.redo()
    return {"success": changed, "state": session.store.get_state()}


@router.patch("/diagram/surface")
async def set_active_surface(request: SurfaceRequest, session: DiagramSession = Depends(get_session)):
    """Switch the active editing surface."""
    session.store.set_active_surface(request.surface)
    return {"success": True, "state": session.store.get_state()}


@router.patch("/diagram/rendering")
async def set_rendering(request: RenderingRequest, session: DiagramSession = Depends(get_session)):
    """Report whether the preview renderer is busy."""
    session.store.set_rendering(request.is_rendering)
    return {"success": True, "state": session.store.get_state()}


@router.post("/diagram/new")
async def new_document(request: NewDocumentRequest, session: DiagramSession = Depends(get_session)):
    """Open a fresh document."""
    try:
        session.store.new_document(request.text or session.settings.default_diagram)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "state": session.store.get_state()}


# --- Canvas ---

@router.get("/canvas")
async def get_canvas(session: DiagramSession = Depends(get_session)):
    """Get the canvas session state (elements, staged text, errors)."""
    return session.coordinator.get_state()


@router.post("/canvas/elements")
async def canvas_elements_changed(request: ElementsRequest, session: DiagramSession = Depends(get_session)):
    """Report the canvas elements after a local edit."""
    session.coordinator.on_elements_changed(request.elements)
    return {"success": True, "canvas": session.coordinator.get_state()}


@router.post("/canvas/sync")
async def sync_canvas_to_editor(session: DiagramSession = Depends(get_session)):
    """Promote the staged canvas text to the canonical text."""
    if not session.coordinator.sync_to_editor():
        raise HTTPException(status_code=409, detail="No staged canvas changes to sync")
    return {"success": True, "state": session.store.get_state()}


@router.post("/canvas/reload")
async def reload_canvas(session: DiagramSession = Depends(get_session)):
    """Re-render the canonical text on the canvas."""
    rendered = await session.coordinator.reload()
    return {"success": rendered, "canvas": session.coordinator.get_state()}


@router.post("/canvas/resize")
async def resize_canvas(session: DiagramSession = Depends(get_session)):
    """Refresh the canvas after its container was resized."""
    await session.coordinator.on_resize()
    return {"success": True}


# --- Stateless Conversions ---

@router.post("/convert/elements")
async def convert_elements(request: ConvertElementsRequest):
    """Convert canvas elements to diagram text."""
    return {"text": graph_to_text(non_deleted(request.elements), direction=request.direction)}


@router.post("/convert/text")
async def convert_text(request: ConvertTextRequest, session: DiagramSession = Depends(get_session)):
    """Convert diagram text to canvas elements."""
    try:
        elements = await session.converter.preview(request.text)
    except ParseError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"elements": [e.to_json_dict() for e in elements]}


# --- Assistant ---

@router.post("/chat/prepare")
async def prepare_chat(request: ChatRequest, session: DiagramSession = Depends(get_session)):
    """Attach the current diagram to a conversation and build the prompt."""
    if not request.messages:
        raise HTTPException(status_code=400, detail="At least one message is required")
    messages = session.assistant.prepare_request(request.messages)
    return {
        "messages": [m.model_dump() for m in messages],
        "prompt": build_prompt(messages, session.store.text),
    }


@router.post("/chat/response")
async def process_chat_response(request: ChatRequest, session: DiagramSession = Depends(get_session)):
    """Apply the diagram found in the newest assistant reply."""
    code = session.assistant.process_response(request.messages)
    return {"success": code is not None, "text": code, "state": session.store.get_state()}


# --- Export ---

@router.get("/export/svg")
async def export_svg(session: DiagramSession = Depends(get_session)):
    """Export the current canvas render as SVG."""
    svg = render_svg(session.coordinator.elements)
    return Response(content=svg, media_type="image/svg+xml")


@router.get("/export/png")
async def export_png(session: DiagramSession = Depends(get_session)):
    """Export the current canvas render as PNG."""
    try:
        png = render_png(render_svg(session.coordinator.elements))
    except ExportError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return Response(content=png, media_type="image/png")


# --- WebSocket ---

async def _handle_client_message(session: DiagramSession, websocket: WebSocket, data: str):
    if data == "ping":
        await websocket.send_text('{"type": "pong"}')
        return

    try:
        message = json.loads(data)
        message_type = message.get("type")
        if message_type == "elements_changed":
            elements = [VisualElement.model_validate(e) for e in message.get("elements", [])]
            session.coordinator.on_elements_changed(elements)
        elif message_type == "resize":
            await session.coordinator.on_resize()
        else:
            raise ValueError(f"Unknown message type: {message_type!r}")
    except (ValueError, AttributeError, ValidationError) as e:
        await websocket.send_text(json.dumps({"type": "error", "detail": str(e)}))


async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time updates.

    Clients receive diagram_updated, canvas_rendered and canvas_refresh
    events, and may send "ping", elements_changed and resize messages.
    """
    session: DiagramSession = websocket.app.state.session
    await session.ws_manager.connect(websocket)

    try:
        while True:
            data = await websocket.receive_text()
            await _handle_client_message(session, websocket, data)
    except WebSocketDisconnect:
        await session.ws_manager.disconnect(websocket)
    except Exception:
        log.exception("WebSocket handler failed")
        await session.ws_manager.disconnect(websocket)


# --- FastAPI App ---

def create_app(settings: Optional[SyncSettings] = None, parser: Optional[DiagramParser] = None) -> FastAPI:
    """Build the application with its own DiagramSession."""
    settings = settings or load_settings()

    app = FastAPI(
        title="Flowsync API",
        description="Backend API keeping diagram text, canvas and assistant in sync",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.session = DiagramSession(settings, parser=parser)

    # CORS for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    app.add_api_websocket_route("/ws", websocket_endpoint)
    return app


# --- Run with uvicorn ---

def run():
    """Console entry point."""
    import uvicorn

    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
