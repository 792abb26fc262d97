"""
Layout for parsed diagram nodes.

Places node elements on a hierarchy derived from edge directions:
nodes with no incoming edges form the first level, their targets the
next one, and so on. The diagram direction picks the axis:
- TD / TB: levels go top to bottom
- BT: levels go bottom to top
- LR: levels go left to right
- RL: levels go right to left

All layout functions modify elements in-place and return the list.
"""

from collections import defaultdict
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from .models import VisualElement


# Default layout parameters
DEFAULT_SPACING_X = 200
DEFAULT_SPACING_Y = 150
DEFAULT_START_X = 100
DEFAULT_START_Y = 100
DEFAULT_NODE_WIDTH = 150
DEFAULT_NODE_HEIGHT = 80

HORIZONTAL_DIRECTIONS = {"LR", "RL"}
REVERSED_DIRECTIONS = {"BT", "RL"}


def assign_levels(node_ids: list[str], links: Iterable[tuple[str, str]]) -> dict[str, int]:
    """
    Assign each node its depth in the hierarchy (BFS from the roots).

    Links to unknown nodes are ignored. Cycles without a root start from
    the first node; unreachable nodes stay at level 0.
    """
    children: dict[str, list[str]] = {node_id: [] for node_id in node_ids}
    has_parent: set[str] = set()

    for source, target in links:
        if source in children and target in children:
            children[source].append(target)
            has_parent.add(target)

    # Find roots (nodes with no incoming edges)
    roots = [node_id for node_id in node_ids if node_id not in has_parent]
    if not roots:
        roots = node_ids[:1]

    levels: dict[str, int] = {}
    queue = [(r, 0) for r in roots]

    while queue:
        node_id, level = queue.pop(0)
        if node_id in levels:
            continue
        levels[node_id] = level
        for child in children.get(node_id, []):
            queue.append((child, level + 1))

    # Handle disconnected nodes
    for node_id in node_ids:
        levels.setdefault(node_id, 0)

    return levels


def tree_layout(
    nodes: list["VisualElement"],
    links: Iterable[tuple[str, str]],
    direction: str = "TD",
    spacing_x: float = DEFAULT_SPACING_X,
    spacing_y: float = DEFAULT_SPACING_Y,
    start_x: float = DEFAULT_START_X,
    start_y: float = DEFAULT_START_Y,
) -> list["VisualElement"]:
    """
    Arrange node elements in a hierarchical layout.

    Args:
        nodes: Node elements to arrange (ids must be set)
        links: (source id, target id) pairs defining the hierarchy
        direction: Diagram direction keyword (TD, TB, BT, LR, RL)
        spacing_x: Horizontal spacing between nodes
        spacing_y: Vertical spacing between nodes
        start_x: X coordinate of the first node
        start_y: Y coordinate of the first node

    Returns:
        The same list of elements (modified in-place)
    """
    if not nodes:
        return nodes

    levels = assign_levels([n.id for n in nodes], links)
    depth = max(levels.values())
    horizontal = direction in HORIZONTAL_DIRECTIONS
    reverse = direction in REVERSED_DIRECTIONS

    # Assign positions by level
    level_counts: dict[int, int] = defaultdict(int)

    for node in nodes:
        level = levels[node.id]
        idx = level_counts[level]
        level_counts[level] += 1
        if reverse:
            level = depth - level

        if not node.width:
            node.width = DEFAULT_NODE_WIDTH
        if not node.height:
            node.height = DEFAULT_NODE_HEIGHT

        if horizontal:
            node.x = start_x + level * spacing_x
            node.y = start_y + idx * spacing_y
        else:
            node.x = start_x + idx * spacing_x
            node.y = start_y + level * spacing_y

    return nodes
