"""
Core data models for diagram synchronization.

These models describe the two representations of a diagram that the
engine moves between:
- VisualElement: a flat, loosely-typed record as edited on the canvas
- DiagramGraph: the node/edge graph derived from a list of elements

Field Naming Convention:
- Python attributes are snake_case (`start_binding`, `is_deleted`)
- Canvas payloads use camelCase (`startBinding`, `isDeleted`) and are
  accepted on input and produced by `to_json_dict()`
- Excalidraw-style `type`/`text` are accepted as aliases of `kind`/`label`
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional
from pydantic import BaseModel, Field, model_validator


class Surface(str, Enum):
    """Editing surfaces that can produce canonical text."""
    TEXT = "text"
    CANVAS = "canvas"
    AI = "ai"


class SyncState(str, Enum):
    """States of a canvas session."""
    IDLE = "idle"
    CONVERTING = "converting"
    STAGED = "staged"


class ElementKind(str, Enum):
    """Shape and connector vocabulary of the canvas."""
    RECTANGLE = "rectangle"
    DIAMOND = "diamond"
    RHOMBUS = "rhombus"      # Alias for diamond
    ELLIPSE = "ellipse"
    CIRCLE = "circle"        # Alias for ellipse
    ARROW = "arrow"
    LINE = "line"
    TEXT = "text"


class NodeShape(str, Enum):
    """Shape families that map to diagram syntax."""
    RECTANGLE = "rectangle"
    DIAMOND = "diamond"
    OVAL = "oval"


# Element kinds that produce graph nodes, and the shape family of each
NODE_KIND_SHAPES: dict[str, NodeShape] = {
    ElementKind.RECTANGLE.value: NodeShape.RECTANGLE,
    ElementKind.DIAMOND.value: NodeShape.DIAMOND,
    ElementKind.RHOMBUS.value: NodeShape.DIAMOND,
    ElementKind.ELLIPSE.value: NodeShape.OVAL,
    ElementKind.CIRCLE.value: NodeShape.OVAL,
}

CONNECTOR_KINDS = frozenset({ElementKind.ARROW.value})


def _binding_target(value: Any) -> Optional[str]:
    """Reduce a binding (id string or {"elementId": id}) to the bound id."""
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("elementId")
    if value is None or value == "":
        return None
    return str(value)


class VisualElement(BaseModel):
    """
    A node or connector as it exists on the canvas.

    Bindings are weak references: they may name an element that no longer
    exists.
    """
    id: Optional[str] = None
    kind: str = ""
    label: Optional[str] = None
    # Secondary text-bearing properties (e.g. {"text": "..."})
    properties: dict[str, Any] = Field(default_factory=dict)
    # Connectors only
    start_binding: Optional[str] = None
    end_binding: Optional[str] = None
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0
    is_deleted: bool = False

    @model_validator(mode='before')
    @classmethod
    def convert_canvas_fields(cls, data: Any) -> Any:
        """Accept camelCase and Excalidraw-style field names."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if 'type' in data and 'kind' not in data:
            data['kind'] = data.pop('type')
        if 'text' in data and 'label' not in data:
            data['label'] = data.pop('text')
        if 'startBinding' in data and 'start_binding' not in data:
            data['start_binding'] = data.pop('startBinding')
        if 'endBinding' in data and 'end_binding' not in data:
            data['end_binding'] = data.pop('endBinding')
        if 'isDeleted' in data and 'is_deleted' not in data:
            data['is_deleted'] = data.pop('isDeleted')
        for key in ('start_binding', 'end_binding'):
            if key in data:
                data[key] = _binding_target(data[key])
        if data.get('properties') is None:
            data.pop('properties', None)
        return data

    @property
    def is_node(self) -> bool:
        return self.kind in NODE_KIND_SHAPES

    @property
    def is_connector(self) -> bool:
        return self.kind in CONNECTOR_KINDS

    def center(self) -> tuple[float, float]:
        """Get the center point of the element."""
        return (self.x + self.width / 2, self.y + self.height / 2)

    def to_json_dict(self) -> dict:
        """Convert to the camelCase payload used at the canvas boundary."""
        result: dict[str, Any] = {
            "id": self.id,
            "kind": self.kind,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
        }
        if self.label is not None:
            result["label"] = self.label
        if self.properties:
            result["properties"] = dict(self.properties)
        if self.start_binding:
            result["startBinding"] = self.start_binding
        if self.end_binding:
            result["endBinding"] = self.end_binding
        if self.is_deleted:
            result["isDeleted"] = True
        return result


def non_deleted(elements: Iterable[VisualElement]) -> list[VisualElement]:
    """Drop elements the canvas has marked as deleted."""
    return [e for e in elements if not e.is_deleted]


@dataclass
class GraphNode:
    """A node of the derived graph."""
    element_id: str
    shape: NodeShape
    label: str


@dataclass
class GraphEdge:
    """A directed edge between two element ids."""
    source: str
    target: str
    label: str = ""


@dataclass
class DiagramGraph:
    """
    Graph derived from a flat element list.

    `nodes` is keyed by element id and keeps first-seen order.
    """
    nodes: dict[str, GraphNode] = field(default_factory=dict)
    edges: list[GraphEdge] = field(default_factory=list)

    def node_ids(self) -> dict[str, str]:
        """Map element ids to compact ids `n1, n2, ...` in first-seen order."""
        return {element_id: f"n{index}" for index, element_id in enumerate(self.nodes, start=1)}

    def connected_edges(self) -> list[GraphEdge]:
        """Edges whose both ends are surviving nodes."""
        return [e for e in self.edges if e.source in self.nodes and e.target in self.nodes]
