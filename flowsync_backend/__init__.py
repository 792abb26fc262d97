"""
Flowsync Backend - The editing surfaces and the glue between them.

Run the server with `flowsync-server` or `python -m flowsync_backend.main`.
"""

from .config import SyncSettings, load_settings, DEFAULT_DIAGRAM
from .diagram_store import DiagramStore
from .sync_coordinator import SyncCoordinator, CanvasRenderer
from .assistant import (
    ChatMessage,
    ChatInterceptor,
    DiagramReplyInterceptor,
    build_prompt,
    extract_diagram_block,
    find_current_diagram,
)
from .export import render_svg, render_png

__all__ = [
    # Configuration
    "SyncSettings",
    "load_settings",
    "DEFAULT_DIAGRAM",
    # Canonical text
    "DiagramStore",
    # Canvas surface
    "SyncCoordinator",
    "CanvasRenderer",
    # Assistant surface
    "ChatMessage",
    "ChatInterceptor",
    "DiagramReplyInterceptor",
    "build_prompt",
    "extract_diagram_block",
    "find_current_diagram",
    # Export
    "render_svg",
    "render_png",
]
