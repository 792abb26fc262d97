"""
Diagram text -> canvas elements.

The actual parsing and layout is done by an external collaborator (any
object implementing `DiagramParser`). This module adds what surrounds it:
- Normalization of bare node/edge fragments
- A guard that keeps at most one parse in flight
- A cache of one: text identical to the last successful conversion is
  not converted again unless forced
"""

import asyncio
import logging
import re
from typing import Optional, Protocol

from .errors import ParseError
from .models import VisualElement

log = logging.getLogger(__name__)

DEFAULT_DECLARATION = "graph TD"

# Diagram-type keywords that may open a diagram
DECLARATION_KEYWORDS = (
    "graph",
    "flowchart",
    "sequenceDiagram",
    "classDiagram",
    "stateDiagram",
    "gantt",
    "pie",
    "journey",
)

# Keyword (optionally versioned, e.g. stateDiagram-v2) ending at whitespace or end of line
_DECLARATION_RE = re.compile(r"^(?:%s)(?:-v\d+)?(?=\s|;|$)" % "|".join(DECLARATION_KEYWORDS))
# Link or shape syntax: a header carrying it is a statement, not a declaration
_STATEMENT_RE = re.compile(r"--|==|[\[\](){}]")

DEFAULT_RETRY_DELAY = 0.05


def has_declaration(text: str) -> bool:
    """
    Check whether text opens with a diagram-type declaration line.

    Examples:
        "flowchart LR" -> True
        "pie --> cake" -> False (a node that happens to be named `pie`)
    """
    stripped = text.strip()
    if not stripped:
        return False
    header = stripped.splitlines()[0].split(";", 1)[0]
    return _DECLARATION_RE.match(header) is not None and _STATEMENT_RE.search(header) is None


def normalize_text(text: str) -> str:
    """
    Trim text and prepend the default declaration to bare fragments.

    Examples:
        "A-->B" -> "graph TD\\nA-->B"
        "flowchart LR\\nA-->B" -> unchanged
    """
    code = text.strip()
    if not code:
        return ""
    if not has_declaration(code):
        code = f"{DEFAULT_DECLARATION}\n{code}"
    return code


class DiagramParser(Protocol):
    """The grammar/layout collaborator. Not safe for concurrent use."""

    async def parse(self, text: str) -> list[VisualElement]:
        ...


class ParserGuard:
    """
    Async mutex around the parser.

    A caller that finds the guard held sleeps for a fixed delay and checks
    again; waiters are not served in arrival order.
    """

    def __init__(self, retry_delay: float = DEFAULT_RETRY_DELAY):
        self._retry_delay = retry_delay
        self._held = False

    @property
    def locked(self) -> bool:
        return self._held

    async def acquire(self):
        while self._held:
            await asyncio.sleep(self._retry_delay)
        self._held = True

    def release(self):
        self._held = False

    async def __aenter__(self) -> "ParserGuard":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.release()


class TextToGraphConverter:
    """Turns canonical text into visual elements through a DiagramParser."""

    def __init__(self, parser: DiagramParser, retry_delay: float = DEFAULT_RETRY_DELAY):
        self._parser = parser
        self._guard = ParserGuard(retry_delay)
        self._last_text: Optional[str] = None

    @property
    def guard(self) -> ParserGuard:
        return self._guard

    @property
    def last_text(self) -> Optional[str]:
        """Normalized text of the last successful conversion."""
        return self._last_text

    def invalidate(self):
        """Forget the last conversion so the next request always parses."""
        self._last_text = None

    async def convert(self, text: str, force: bool = False) -> Optional[list[VisualElement]]:
        """
        Convert text to elements.

        Returns None when there is nothing to do (empty text, or the same
        text as the last successful conversion and `force` is false).
        Raises ParseError when the parser rejects the text.
        """
        code = normalize_text(text)
        if not code:
            log.warning("Diagram text is empty, nothing to convert")
            return None

        if code == self._last_text and not force:
            log.debug("Text unchanged since last conversion, skipping")
            return None

        elements = await self._parse(code)
        self._last_text = code
        return elements

    async def preview(self, text: str) -> list[VisualElement]:
        """Convert text without consulting or updating the cache."""
        code = normalize_text(text)
        if not code:
            raise ParseError("Diagram text is empty")
        return await self._parse(code)

    async def _parse(self, code: str) -> list[VisualElement]:
        async with self._guard:
            log.debug("Parsing diagram text (%d chars)", len(code))
            try:
                elements = await self._parser.parse(code)
            except ParseError:
                raise
            except Exception as exc:
                raise ParseError(str(exc) or exc.__class__.__name__) from exc

        if elements is None:
            raise ParseError("Parser returned no elements")

        log.debug("Parsed %d elements", len(elements))
        return list(elements)
