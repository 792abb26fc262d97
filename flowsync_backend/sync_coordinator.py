"""
Sync Coordinator - Mediates between the canonical text and the canvas.

Two directions, handled differently:
- Text -> canvas: when the canonical text changes and the canvas is not
  the active surface, the text is converted and rendered right away.
- Canvas -> text: local edits are converted after a quiet period and the
  result is only *staged*. It reaches the store when the user asks for it
  (`sync_to_editor`), because the conversion is lossy and pushing it
  automatically would bounce edits between the two surfaces.

A guard flag is held for a whole convert/render cycle. Text changes
arriving meanwhile are coalesced into one follow-up run. Element changes
arriving meanwhile are held until the cycle ends; if the canvas then differs
from what was rendered, they are handled as a user edit, otherwise as the
canvas echoing our render.

Store notifications that leave the canonical text alone (error slot,
rendering flag, active surface) never trigger a conversion.
"""

import asyncio
import logging
from typing import Coroutine, Optional, Protocol, Sequence

from flowsync_core import (
    ConversionError,
    ParseError,
    Surface,
    SyncState,
    TextToGraphConverter,
    VisualElement,
    graph_to_text,
    non_deleted,
)

from .config import SyncSettings
from .diagram_store import DiagramStore

log = logging.getLogger(__name__)


class CanvasRenderer(Protocol):
    """The canvas collaborator."""

    async def render(self, elements: list[VisualElement]) -> None:
        ...

    async def refresh(self) -> None:
        ...


class SyncCoordinator:
    """Keeps one canvas session in step with a DiagramStore."""

    def __init__(
        self,
        store: DiagramStore,
        converter: TextToGraphConverter,
        canvas: CanvasRenderer,
        settings: Optional[SyncSettings] = None,
    ):
        self._store = store
        self._converter = converter
        self._canvas = canvas
        self._settings = settings or SyncSettings()

        self._state = SyncState.IDLE
        self._elements: list[VisualElement] = []
        self._staged_text: Optional[str] = None
        self._load_error: Optional[str] = None
        self._failed_text: Optional[str] = None

        self._seen_text = store.text
        self._rendered: list[VisualElement] = []

        self._updating = False
        self._pending = False
        self._edits_pending = False
        self._request_counter = 0
        self._debounce_task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()
        self.ready = asyncio.Event()

    # --- Properties ---

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def elements(self) -> list[VisualElement]:
        """Elements currently on the canvas."""
        return list(self._elements)

    @property
    def staged_text(self) -> Optional[str]:
        """Text converted from the canvas and not yet synced."""
        return self._staged_text

    @property
    def load_error(self) -> Optional[str]:
        """Last parse error shown on the canvas."""
        return self._load_error

    @property
    def is_loading(self) -> bool:
        return self._updating

    @property
    def can_sync(self) -> bool:
        """True when there is staged text that differs from the canonical text."""
        return (
            self._state == SyncState.STAGED
            and self._staged_text is not None
            and self._staged_text != self._store.text
        )

    def get_state(self) -> dict:
        return {
            "state": self._state.value,
            "elements": [e.to_json_dict() for e in self._elements],
            "staged_text": self._staged_text,
            "can_sync": self.can_sync,
            "load_error": self._load_error,
            "is_loading": self.is_loading,
        }

    # --- Task bookkeeping ---

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def close(self):
        """Cancel the pending debounce and any scheduled updates."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._debounce_task = None

    # --- Text -> canvas ---

    def notify_text_changed(self):
        """Store change callback: schedule a scene update on the running loop."""
        self._spawn(self.on_text_changed())

    async def on_text_changed(self) -> bool:
        """React to a store change; only a new canonical text is converted."""
        text = self._store.text
        if text == self._seen_text:
            log.debug("Store change left the text unchanged, nothing to convert")
            return False
        self._seen_text = text
        return await self._apply_text_change()

    async def _apply_text_change(self) -> bool:
        if self._store.text != self._failed_text:
            self._load_error = None
        if self._store.active_surface == Surface.CANVAS:
            log.debug("Canvas is the active surface, skipping conversion")
            return False
        return await self.update_scene(self._store.text)

    async def update_scene(self, text: str, force: bool = False) -> bool:
        """
        Convert text and render it on the canvas.

        Returns True when a new scene was rendered. On a parse error the
        previous scene is kept and the message is stored in `load_error`.
        """
        if self._updating and not force:
            log.debug("Scene update in progress, coalescing request")
            self._pending = True
            return False

        self._request_counter += 1
        request_id = self._request_counter
        self._updating = True
        self._state = SyncState.CONVERTING
        self.ready.clear()

        try:
            try:
                elements = await self._converter.convert(text, force=force)
            except ParseError as exc:
                if request_id != self._request_counter:
                    log.debug("Ignoring parse error of stale request %d: %s", request_id, exc)
                    return False
                log.warning("Keeping previous render, parse failed: %s", exc)
                self._load_error = str(exc)
                self._failed_text = text
                return False

            if elements is None:
                return False

            if request_id != self._request_counter:
                log.debug("Discarding stale conversion %d (latest is %d)",
                          request_id, self._request_counter)
                # The cached text was never rendered
                self._converter.invalidate()
                return False

            self._elements = elements
            self._rendered = list(elements)
            self._staged_text = None
            self._load_error = None
            self._failed_text = None
            await self._canvas.render(elements)
            await asyncio.sleep(self._settings.settle_delay)
            return True
        finally:
            if request_id == self._request_counter:
                self._updating = False
                self._state = SyncState.STAGED if self._staged_text is not None else SyncState.IDLE
                self.ready.set()
                if self._edits_pending:
                    self._edits_pending = False
                    if self._elements != self._rendered:
                        log.debug("Canvas edited during scene update, scheduling conversion")
                        self._schedule_conversion()
                if self._pending:
                    self._pending = False
                    self._spawn(self._apply_text_change())

    async def reload(self) -> bool:
        """Re-render the canonical text, ignoring the guard and the cache."""
        return await self.update_scene(self._store.text, force=True)

    async def on_resize(self):
        """Refresh the canvas after its container changed size."""
        await self._canvas.refresh()

    # --- Canvas -> text ---

    def on_elements_changed(self, elements: Sequence[VisualElement]):
        """
        Canvas change callback.

        The local element set is always replaced. Outside a scene update the
        debounce timer is restarted; during one, the change is looked at
        again when the update finishes.
        """
        self._elements = list(elements)

        if self._updating:
            self._edits_pending = True
            return

        self._schedule_conversion()

    def _schedule_conversion(self):
        # The scene no longer matches the last converted text
        self._converter.invalidate()

        if self._debounce_task is not None:
            self._debounce_task.cancel()
        self._debounce_task = self._spawn(self._convert_after_delay(self._elements))

    async def _convert_after_delay(self, elements: list[VisualElement]):
        await asyncio.sleep(self._settings.debounce_delay)
        self._debounce_task = None

        try:
            text = graph_to_text(non_deleted(elements))
        except Exception as exc:
            log.exception("Canvas to text conversion failed")
            error = ConversionError(str(exc))
            self._store.set_error(f"Conversion error: {error}")
            return

        self._staged_text = text
        if not self._updating:
            self._state = SyncState.STAGED
        log.debug("Staged canvas text (%d chars)", len(text))

    async def flush(self):
        """Wait for a pending debounced conversion to finish."""
        task = self._debounce_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def sync_to_editor(self) -> bool:
        """Promote the staged text to the store. Returns False if nothing to sync."""
        if not self.can_sync:
            return False

        log.info("Syncing canvas to editor")
        self._store.from_canvas(self._staged_text)
        self._state = SyncState.IDLE
        return True
