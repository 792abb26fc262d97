"""
Diagram Store - Canonical text, its history, and the active surface.

This module implements:
- A single canonical diagram text (one document open at a time)
- Three update entry points, one per editing surface
- Linear undo/redo over text snapshots
- An error slot and a rendering flag reported by the surfaces
- Change callbacks for real-time sync

Only the store mutates canonical text and history. Every public mutation
completes before callbacks run, so no partially-applied state is visible.
"""

import logging
from typing import Callable, Optional

from flowsync_core import Surface

from .config import DEFAULT_DIAGRAM

log = logging.getLogger(__name__)


class DiagramStore:
    """
    Holds the canonical diagram text and its history.

    The history system works via snapshots:
    - Each accepted update appends the new text and points the index at it
    - Any entries after the index (an undone branch) are discarded first
    - Undo/redo move the index and replay the stored text; they never
      convert anything, so they cannot fail
    - Updates equal to the current text are ignored, so history never
      holds two consecutive equal entries
    """

    def __init__(self, initial_text: str = DEFAULT_DIAGRAM, max_history: Optional[int] = None):
        self._check_text(initial_text)
        self._max_history = max_history
        self._text = initial_text
        self._history: list[str] = [initial_text]
        self._history_index = 0
        self._active_surface = Surface.TEXT
        self._error: Optional[str] = None
        self._is_rendering = False
        self._on_change_callbacks: list[Callable[[], None]] = []

    @staticmethod
    def _check_text(text: str):
        if not isinstance(text, str) or not text.strip():
            raise ValueError("Diagram text must not be empty")

    # --- Properties ---

    @property
    def text(self) -> str:
        """Get the canonical diagram text."""
        return self._text

    @property
    def history(self) -> tuple[str, ...]:
        return tuple(self._history)

    @property
    def history_index(self) -> int:
        return self._history_index

    @property
    def active_surface(self) -> Surface:
        """Surface that most recently produced the canonical text."""
        return self._active_surface

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def is_rendering(self) -> bool:
        return self._is_rendering

    @property
    def can_undo(self) -> bool:
        """Check if undo is available."""
        return self._history_index > 0

    @property
    def can_redo(self) -> bool:
        """Check if redo is available."""
        return self._history_index < len(self._history) - 1

    # --- Change Callbacks ---

    def on_change(self, callback: Callable[[], None]):
        """Register a callback for store changes."""
        self._on_change_callbacks.append(callback)

    def _notify_change(self):
        """Notify all registered callbacks of a change."""
        for callback in self._on_change_callbacks:
            callback()

    # --- Updates ---

    def _commit(self, text: str, surface: Surface) -> bool:
        """Append text to history as the new canonical text."""
        self._check_text(text)
        if text == self._text:
            return False

        # A new update invalidates the undone branch
        del self._history[self._history_index + 1:]
        self._history.append(text)

        # Trim history if a cap is configured
        if self._max_history is not None and len(self._history) > self._max_history:
            self._history.pop(0)

        self._history_index = len(self._history) - 1
        self._text = text
        self._active_surface = surface
        self._error = None

        log.debug("Accepted %s update (history %d/%d)",
                  surface.value, self._history_index + 1, len(self._history))
        self._notify_change()
        return True

    def from_text(self, text: str) -> bool:
        """Apply text typed in the text editor. Returns False on a no-op."""
        return self._commit(text, Surface.TEXT)

    def from_canvas(self, text: str) -> bool:
        """Apply text converted from the canvas. Returns False on a no-op."""
        return self._commit(text, Surface.CANVAS)

    def from_ai(self, text: str) -> bool:
        """Apply text produced by the assistant. Returns False on a no-op."""
        return self._commit(text, Surface.AI)

    # --- Undo/Redo ---

    def undo(self) -> bool:
        """Step back one history entry. Returns False at the oldest entry."""
        if not self.can_undo:
            return False

        self._history_index -= 1
        self._text = self._history[self._history_index]
        self._notify_change()
        return True

    def redo(self) -> bool:
        """Step forward one history entry. Returns False at the newest entry."""
        if not self.can_redo:
            return False

        self._history_index += 1
        self._text = self._history[self._history_index]
        self._notify_change()
        return True

    # --- Surface reports ---

    def set_error(self, error: Optional[str]):
        """Set or clear (None) the error reported by a surface."""
        self._error = error
        self._notify_change()

    def set_active_surface(self, surface: Surface | str):
        """Mark which surface the user is working in."""
        self._active_surface = Surface(surface)
        self._notify_change()

    def set_rendering(self, is_rendering: bool):
        self._is_rendering = is_rendering
        self._notify_change()

    # --- Document lifecycle ---

    def new_document(self, text: Optional[str] = None):
        """Reset the store to a fresh document with a single history entry."""
        text = DEFAULT_DIAGRAM if text is None else text
        self._check_text(text)
        self._text = text
        self._history = [text]
        self._history_index = 0
        self._active_surface = Surface.TEXT
        self._error = None
        self._is_rendering = False
        self._notify_change()

    def get_state(self) -> dict:
        """Get the full current state for API responses."""
        return {
            "text": self._text,
            "history_index": self._history_index,
            "history_length": len(self._history),
            "active_surface": self._active_surface.value,
            "error": self._error,
            "is_rendering": self._is_rendering,
            "can_undo": self.can_undo,
            "can_redo": self.can_redo,
        }
