"""
Canvas elements -> diagram text.

Pure conversion from a flat list of visual elements to canonical text:
1. Classify elements into nodes (rectangle, diamond, ellipse and aliases)
   and connectors (arrow); everything else is ignored
2. Resolve and sanitize a label for each of them
3. Drop connectors that do not bind two surviving nodes
4. Re-number nodes `n1, n2, ...` in first-seen order and emit text

The conversion is lossy (positions, styling and free text are dropped) but
deterministic: the same element list in the same order always yields the
same text.
"""

import logging
import re
from typing import Iterable

from .models import (
    DiagramGraph,
    GraphEdge,
    GraphNode,
    NodeShape,
    NODE_KIND_SHAPES,
    VisualElement,
)

log = logging.getLogger(__name__)

DEFAULT_DIRECTION = "TD"

# Prefix of the synthesized label for a node without text
DEFAULT_LABEL_PREFIXES: dict[NodeShape, str] = {
    NodeShape.RECTANGLE: "Node",
    NodeShape.DIAMOND: "Decision",
    NodeShape.OVAL: "Oval",
}

# Opening and closing delimiters of each shape in diagram syntax
SHAPE_DELIMITERS: dict[NodeShape, tuple[str, str]] = {
    NodeShape.RECTANGLE: ("[", "]"),
    NodeShape.DIAMOND: ("{", "}"),
    NodeShape.OVAL: ("((", "))"),
}

_BRACKETS_RE = re.compile(r"[\[\](){}]")
_QUOTES_RE = re.compile(r"[\"']")


def sanitize_label(label: str) -> str:
    """
    Make a label safe to embed in diagram syntax.

    Brackets, parentheses and braces become underscores, quotes are
    removed, surrounding whitespace is trimmed.

    Examples:
        'A[B]"C"' -> 'A_B_C'
        "  Say 'hi' " -> "Say hi"
    """
    if not label:
        return ""
    label = _BRACKETS_RE.sub("_", label)
    label = _QUOTES_RE.sub("", label)
    return label.strip()


def resolve_label(element: VisualElement) -> str:
    """
    Pick the display text of an element.

    Priority: own label, then `properties["text"]`, then a synthesized
    `<ShapeWord>_<first 4 chars of id>` for nodes. Connectors fall back to
    an empty label.
    """
    if element.label and element.label.strip():
        return element.label.strip()

    secondary = element.properties.get("text")
    if isinstance(secondary, str) and secondary.strip():
        return secondary.strip()

    shape = NODE_KIND_SHAPES.get(element.kind)
    if shape is None or not element.id:
        return ""
    return f"{DEFAULT_LABEL_PREFIXES[shape]}_{element.id[:4]}"


def build_graph(elements: Iterable[VisualElement]) -> DiagramGraph:
    """Classify a flat element list into a node/edge graph."""
    graph = DiagramGraph()

    for element in elements:
        # Skip elements without an ID
        if not element.id:
            continue

        shape = NODE_KIND_SHAPES.get(element.kind)
        if shape is not None:
            graph.nodes[element.id] = GraphNode(
                element_id=element.id,
                shape=shape,
                label=sanitize_label(resolve_label(element)),
            )
        elif element.is_connector:
            # Only arrows that connect two elements
            if element.start_binding and element.end_binding:
                graph.edges.append(GraphEdge(
                    source=element.start_binding,
                    target=element.end_binding,
                    label=sanitize_label(resolve_label(element)),
                ))

    return graph


def render_graph(graph: DiagramGraph, direction: str = DEFAULT_DIRECTION) -> str:
    """Emit diagram text for a graph: declaration, nodes, then edges."""
    node_ids = graph.node_ids()
    lines = [f"graph {direction}"]

    for element_id, node in graph.nodes.items():
        opening, closing = SHAPE_DELIMITERS[node.shape]
        lines.append(f"  {node_ids[element_id]}{opening}{node.label}{closing}")

    for edge in graph.connected_edges():
        source = node_ids[edge.source]
        target = node_ids[edge.target]
        if edge.label:
            lines.append(f"  {source} -->|{edge.label}| {target}")
        else:
            lines.append(f"  {source} --> {target}")

    return "\n".join(lines) + "\n"


def graph_to_text(elements: Iterable[VisualElement], direction: str = DEFAULT_DIRECTION) -> str:
    """Convert canvas elements to canonical diagram text."""
    graph = build_graph(elements)
    connected = graph.connected_edges()
    log.debug(
        "Converted %d nodes, %d connections (%d dangling dropped)",
        len(graph.nodes), len(connected), len(graph.edges) - len(connected),
    )
    return render_graph(graph, direction)
