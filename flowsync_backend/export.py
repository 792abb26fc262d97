"""
Export of the current canvas render.

- SVG: drawn directly from the visual elements
- PNG: the SVG rasterized with cairosvg
"""

import html
import logging
from typing import Iterable

from flowsync_core import ExportError, VisualElement, non_deleted

log = logging.getLogger(__name__)

PADDING = 50
DEFAULT_WIDTH = 800
DEFAULT_HEIGHT = 600
FILL = "#e1f5fe"
STROKE = "#0288d1"


def _label(element: VisualElement) -> str:
    text = element.label or element.properties.get("text") or ""
    return html.escape(str(text).strip())


def render_svg(elements: Iterable[VisualElement], width: int = DEFAULT_WIDTH, height: int = DEFAULT_HEIGHT) -> str:
    """Create an SVG document from canvas elements."""
    elements = non_deleted(elements)
    nodes = [e for e in elements if e.is_node]
    arrows = [e for e in elements if e.is_connector]

    # Calculate bounds
    min_x = min((n.x for n in nodes), default=0)
    min_y = min((n.y for n in nodes), default=0)
    max_x = max((n.x + n.width for n in nodes), default=0)
    max_y = max((n.y + n.height for n in nodes), default=0)

    view_width = max(width, max_x - min_x + PADDING * 2)
    view_height = max(height, max_y - min_y + PADDING * 2)

    def shift(x: float, y: float) -> tuple[float, float]:
        return x - min_x + PADDING, y - min_y + PADDING

    svg_parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{view_width}" height="{view_height}" viewBox="0 0 {view_width} {view_height}">',
        '  <defs>',
        '    <marker id="arrowhead" markerWidth="10" markerHeight="7" refX="9" refY="3.5" orient="auto">',
        '      <polygon points="0 0, 10 3.5, 0 7" fill="#333"/>',
        '    </marker>',
        '  </defs>',
        '  <rect width="100%" height="100%" fill="white"/>',
    ]

    for node in nodes:
        x, y = shift(node.x, node.y)
        w, h = node.width, node.height

        if node.kind in ("ellipse", "circle"):
            svg_parts.append(f'  <ellipse cx="{x + w / 2}" cy="{y + h / 2}" rx="{w / 2}" ry="{h / 2}" fill="{FILL}" stroke="{STROKE}" stroke-width="2"/>')
        elif node.kind in ("diamond", "rhombus"):
            points = f"{x + w / 2},{y} {x + w},{y + h / 2} {x + w / 2},{y + h} {x},{y + h / 2}"
            svg_parts.append(f'  <polygon points="{points}" fill="{FILL}" stroke="{STROKE}" stroke-width="2"/>')
        else:
            svg_parts.append(f'  <rect x="{x}" y="{y}" width="{w}" height="{h}" rx="5" fill="{FILL}" stroke="{STROKE}" stroke-width="2"/>')

        label = _label(node)
        if label:
            svg_parts.append(f'  <text x="{x + w / 2}" y="{y + h / 2 + 5}" text-anchor="middle" font-family="Arial" font-size="14" fill="#333">{label}</text>')

    node_lookup = {n.id: n for n in nodes}

    for arrow in arrows:
        src = node_lookup.get(arrow.start_binding)
        tgt = node_lookup.get(arrow.end_binding)
        if src is None or tgt is None:
            continue

        x1, y1 = shift(*src.center())
        x2, y2 = shift(*tgt.center())
        svg_parts.append(f'  <line x1="{x1}" y1="{y1}" x2="{x2}" y2="{y2}" stroke="#333" stroke-width="2" marker-end="url(#arrowhead)"/>')

        label = _label(arrow)
        if label:
            svg_parts.append(f'  <text x="{(x1 + x2) / 2}" y="{(y1 + y2) / 2 - 10}" text-anchor="middle" font-family="Arial" font-size="12" fill="#666">{label}</text>')

    svg_parts.append('</svg>')
    return '\n'.join(svg_parts)


def render_png(svg: str, scale: float = 1.0) -> bytes:
    """Rasterize an SVG document. Raises ExportError if cairo is unavailable."""
    try:
        import cairosvg
    except (ImportError, OSError) as exc:
        raise ExportError(f"PNG export needs cairosvg and the cairo library: {exc}") from exc

    log.debug("Rasterizing SVG (%d chars) at scale %s", len(svg), scale)
    return cairosvg.svg2png(bytestring=svg.encode("utf-8"), scale=scale)
