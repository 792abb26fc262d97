"""
Flowsync Core - Models and converters shared by every editing surface.

This package holds the two directions of the text/canvas conversion and
the data they operate on, so the backend and the MCP tools agree on a
single definition of both.
"""

from .models import (
    # Enums
    Surface,
    SyncState,
    ElementKind,
    NodeShape,
    # Models
    VisualElement,
    GraphNode,
    GraphEdge,
    DiagramGraph,
    non_deleted,
)

from .errors import FlowsyncError, ParseError, ConversionError, ExportError
from .graph_to_text import graph_to_text, build_graph, render_graph, resolve_label, sanitize_label
from .text_to_graph import (
    DiagramParser,
    ParserGuard,
    TextToGraphConverter,
    normalize_text,
    has_declaration,
)
from .parser import FlowchartParser
from .layout import tree_layout

__all__ = [
    # Enums
    "Surface",
    "SyncState",
    "ElementKind",
    "NodeShape",
    # Models
    "VisualElement",
    "GraphNode",
    "GraphEdge",
    "DiagramGraph",
    "non_deleted",
    # Errors
    "FlowsyncError",
    "ParseError",
    "ConversionError",
    "ExportError",
    # Canvas -> text
    "graph_to_text",
    "build_graph",
    "render_graph",
    "resolve_label",
    "sanitize_label",
    # Text -> canvas
    "DiagramParser",
    "ParserGuard",
    "TextToGraphConverter",
    "normalize_text",
    "has_declaration",
    "FlowchartParser",
    # Layout
    "tree_layout",
]
