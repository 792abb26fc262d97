"""
Error types raised by the conversion pipeline.

None of these are fatal: each one belongs to a single operation and is
reported to the surface that triggered it.
"""

from typing import Optional


class FlowsyncError(Exception):
    """Base class for all flowsync errors."""


class ParseError(FlowsyncError):
    """Diagram text could not be turned into visual elements."""

    def __init__(self, message: str, line: Optional[int] = None):
        self.message = message
        self.line = line
        if line is not None:
            message = f"Line {line}: {message}"
        super().__init__(message)


class ConversionError(FlowsyncError):
    """Visual elements could not be turned back into diagram text."""


class ExportError(FlowsyncError):
    """The current render could not be exported."""
