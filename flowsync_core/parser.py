"""
Default grammar/layout collaborator for flowchart text.

Understands the flowchart subset the engine emits and consumes:
- Declaration: `graph TD` / `flowchart LR` (direction optional)
- Nodes: `A[Rect]`, `A(Round)`, `A{Decision}`, `A((Oval))`, bare `A`
- Edges: `A --> B`, `A -->|label| B`, `A -- label --> B`, `A --- B`,
  chained as `A --> B --> C`
- `%%` comments; styling lines (classDef, class, style, linkStyle, click)
  and subgraph markers are skipped

Parsed nodes are laid out with `layout.tree_layout` and returned as
visual elements, connectors bound to the node elements they join.
"""

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass
from typing import Optional

from .errors import ParseError
from .layout import tree_layout
from .models import ElementKind, VisualElement

log = logging.getLogger(__name__)

_HEADER_RE = re.compile(r"^(?:graph|flowchart)(?:\s+(?P<direction>TD|TB|BT|LR|RL))?\s*;?$")

_NODE_RE = re.compile(
    r"""
    (?P<id>[A-Za-z0-9_]+)\s*
    (?:
        \(\((?P<oval>[^()]*)\)\)
      | \[(?P<rect>[^\[\]]*)\]
      | \{(?P<diamond>[^{}]*)\}
      | \((?P<round>[^()]*)\)
    )?
    """,
    re.VERBOSE,
)

_LINK_RE = re.compile(
    r"""
    \s*
    (?:
        -->(?:\s*\|(?P<label>[^|]*)\|)?
      | ---(?:\s*\|(?P<open_label>[^|]*)\|)?
      | --\s+(?P<inline>[^-|>][^>]*?)\s+-->
    )
    \s*
    """,
    re.VERBOSE,
)

_SKIPPED_PREFIXES = ("classDef ", "class ", "style ", "linkStyle ", "click ", "subgraph")

_SHAPE_KINDS = {
    "rect": ElementKind.RECTANGLE,
    "round": ElementKind.RECTANGLE,
    "diamond": ElementKind.DIAMOND,
    "oval": ElementKind.ELLIPSE,
}


def generate_element_id() -> str:
    """Generate a unique element ID."""
    return f"el{uuid.uuid4().hex[:8]}"


def _clean_label(label: str) -> str:
    label = label.strip()
    if len(label) >= 2 and label[0] == label[-1] == '"':
        label = label[1:-1]
    return label


@dataclass
class ParsedNode:
    node_id: str
    kind: ElementKind
    label: str


@dataclass
class ParsedEdge:
    source: str
    target: str
    label: Optional[str] = None


class FlowchartParser:
    """
    Parses flowchart text into laid-out visual elements.

    Holds per-instance state while parsing and must not be entered
    concurrently; callers serialize access (see ParserGuard).
    """

    def __init__(self):
        self._busy = False

    async def parse(self, text: str) -> list[VisualElement]:
        """Parse and lay out diagram text. Raises ParseError on bad input."""
        if self._busy:
            raise RuntimeError("FlowchartParser does not support concurrent parsing")

        self._busy = True
        try:
            direction, nodes, edges = self.parse_structure(text)
            # Let other tasks run between parsing and layout
            await asyncio.sleep(0)
            return self._build_elements(direction, nodes, edges)
        finally:
            self._busy = False

    def parse_structure(self, text: str) -> tuple[str, dict[str, ParsedNode], list[ParsedEdge]]:
        """Parse text into (direction, nodes by id, edges) without layout."""
        lines = [line.strip() for line in text.splitlines()]
        statements = [(n, line) for n, line in enumerate(lines, start=1) if line and not line.startswith("%%")]
        if not statements:
            raise ParseError("Diagram text is empty")

        line_no, header = statements[0]
        match = _HEADER_RE.match(header)
        if match is None:
            raise ParseError(f"Unsupported diagram declaration: {header!r}", line=line_no)
        direction = match.group("direction") or "TD"

        nodes: dict[str, ParsedNode] = {}
        edges: list[ParsedEdge] = []

        for line_no, line in statements[1:]:
            for statement in line.split(";"):
                statement = statement.strip()
                if not statement or statement == "end" or statement.startswith(_SKIPPED_PREFIXES):
                    continue
                self._parse_statement(statement, line_no, nodes, edges)

        return direction, nodes, edges

    def _parse_statement(
        self,
        statement: str,
        line_no: int,
        nodes: dict[str, ParsedNode],
        edges: list[ParsedEdge],
    ):
        pos = 0
        previous: Optional[str] = None
        pending_label: Optional[str] = None

        while True:
            node_match = _NODE_RE.match(statement, pos)
            if node_match is None:
                raise ParseError(f"Expected a node at {statement[pos:]!r}", line=line_no)

            node_id = self._register_node(node_match, nodes)
            if previous is not None:
                edges.append(ParsedEdge(source=previous, target=node_id, label=pending_label))

            pos = node_match.end()
            if pos >= len(statement):
                return

            link_match = _LINK_RE.match(statement, pos)
            if link_match is None:
                raise ParseError(f"Unexpected text {statement[pos:]!r}", line=line_no)

            label = link_match.group("label") or link_match.group("open_label") or link_match.group("inline")
            pending_label = _clean_label(label) if label else None
            previous = node_id
            pos = link_match.end()
            if pos >= len(statement):
                raise ParseError("Edge is missing its target node", line=line_no)

    def _register_node(self, match: re.Match, nodes: dict[str, ParsedNode]) -> str:
        node_id = match.group("id")
        for group, kind in _SHAPE_KINDS.items():
            label = match.group(group)
            if label is not None:
                nodes[node_id] = ParsedNode(node_id=node_id, kind=kind, label=_clean_label(label))
                break
        else:
            if node_id not in nodes:
                nodes[node_id] = ParsedNode(node_id=node_id, kind=ElementKind.RECTANGLE, label=node_id)
        return node_id

    def _build_elements(
        self,
        direction: str,
        nodes: dict[str, ParsedNode],
        edges: list[ParsedEdge],
    ) -> list[VisualElement]:
        element_ids = {node_id: generate_element_id() for node_id in nodes}

        node_elements = [
            VisualElement(
                id=element_ids[node.node_id],
                kind=node.kind.value,
                label=node.label,
                properties={"sourceId": node.node_id},
            )
            for node in nodes.values()
        ]
        tree_layout(
            node_elements,
            [(element_ids[e.source], element_ids[e.target]) for e in edges],
            direction=direction,
        )
        by_id = {element.id: element for element in node_elements}

        arrows = []
        for edge in edges:
            start = by_id[element_ids[edge.source]]
            end = by_id[element_ids[edge.target]]
            (x1, y1), (x2, y2) = start.center(), end.center()
            arrows.append(VisualElement(
                id=generate_element_id(),
                kind=ElementKind.ARROW.value,
                label=edge.label,
                start_binding=start.id,
                end_binding=end.id,
                x=x1,
                y=y1,
                width=x2 - x1,
                height=y2 - y1,
            ))

        return node_elements + arrows
