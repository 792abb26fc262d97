"""Shared pytest fixtures for flowsync tests."""

import asyncio
from typing import Callable, Optional

import pytest

from flowsync_backend.config import SyncSettings
from flowsync_core import VisualElement


class ScriptedParser:
    """
    Stand-in for the grammar/layout collaborator.

    Returns (or raises) whatever `results` maps the normalized text to;
    unknown text yields a single rectangle labelled with its last line.
    Tracks how many parses overlap so tests can check serialization.
    """

    def __init__(self, results: Optional[dict] = None, delay: float = 0.0):
        self.results = results or {}
        self.delay = delay
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0

    async def parse(self, text: str) -> list[VisualElement]:
        self.calls.append(text)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            result = self.results.get(text)
            if isinstance(result, Exception):
                raise result
            if result is None:
                label = text.splitlines()[-1].strip()
                result = [VisualElement(id=f"el{len(self.calls)}", kind="rectangle", label=label)]
            return result
        finally:
            self.active -= 1


class RecordingCanvas:
    """CanvasRenderer that remembers what it was asked to draw."""

    def __init__(self, on_render: Optional[Callable[[list[VisualElement]], None]] = None):
        self.rendered: list[list[VisualElement]] = []
        self.refreshes = 0
        self.on_render = on_render

    async def render(self, elements: list[VisualElement]) -> None:
        self.rendered.append(list(elements))
        if self.on_render is not None:
            self.on_render(elements)

    async def refresh(self) -> None:
        self.refreshes += 1


@pytest.fixture
def settings():
    """Settings with every delay at zero."""
    return SyncSettings(debounce_delay=0, parse_retry_delay=0, settle_delay=0)


@pytest.fixture
def parser():
    return ScriptedParser()


@pytest.fixture
def canvas():
    return RecordingCanvas()


@pytest.fixture
def start_elements():
    """Factory for the two-node, one-arrow scene used across tests.

    Usage:
        start_elements(start="Begin", end="Finish")
    """

    def _create(start="Start", end="End", arrow_label=None):
        return [
            VisualElement(id="e1", kind="rectangle", label=start),
            VisualElement(id="e2", kind="rectangle", label=end),
            VisualElement(id="e3", kind="arrow", label=arrow_label, start_binding="e1", end_binding="e2"),
        ]

    return _create
