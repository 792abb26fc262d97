"""Tests for the canvas-surface sync state machine."""

import asyncio

import pytest

from flowsync_backend.diagram_store import DiagramStore
from flowsync_backend.sync_coordinator import SyncCoordinator
from flowsync_core import ParseError, Surface, SyncState, TextToGraphConverter, VisualElement, graph_to_text

from conftest import RecordingCanvas, ScriptedParser

TEXT_A = "graph TD\n  A"
TEXT_B = "graph TD\n  B"


def make_coordinator(settings, parser=None, canvas=None, text=TEXT_A):
    store = DiagramStore(text)
    parser = parser or ScriptedParser()
    canvas = canvas or RecordingCanvas()
    converter = TextToGraphConverter(parser, retry_delay=settings.parse_retry_delay)
    coordinator = SyncCoordinator(store, converter, canvas, settings)
    return store, parser, canvas, coordinator


async def settle(seconds=0.05):
    await asyncio.sleep(seconds)


class TestTextToCanvas:
    def test_text_change_renders(self, settings):
        store, parser, canvas, coordinator = make_coordinator(settings)

        async def scenario():
            rendered = await coordinator.update_scene(store.text)
            return rendered

        assert asyncio.run(scenario())
        assert len(canvas.rendered) == 1
        assert coordinator.elements == canvas.rendered[0]
        assert coordinator.state == SyncState.IDLE
        assert coordinator.ready.is_set()
        assert not coordinator.is_loading

    def test_unchanged_text_not_reconverted(self, settings):
        store, parser, canvas, coordinator = make_coordinator(settings)

        async def scenario():
            await coordinator.update_scene(store.text)
            return await coordinator.update_scene(store.text)

        assert not asyncio.run(scenario())
        assert len(parser.calls) == 1
        assert len(canvas.rendered) == 1

    def test_parse_failure_keeps_previous_render(self, settings):
        bad = "graph TD\n  A -->"
        parser = ScriptedParser({bad: ParseError("Edge is missing its target node", line=2)})
        store, parser, canvas, coordinator = make_coordinator(settings, parser=parser)

        async def scenario():
            await coordinator.update_scene(store.text)
            before = coordinator.elements
            store.from_text(bad)
            rendered = await coordinator.on_text_changed()
            return before, rendered

        before, rendered = asyncio.run(scenario())

        assert not rendered
        assert coordinator.elements == before
        assert len(canvas.rendered) == 1
        assert coordinator.load_error == "Line 2: Edge is missing its target node"
        assert store.error is None
        assert coordinator.state == SyncState.IDLE

    def test_error_cleared_by_next_text_change(self, settings):
        bad = "graph TD\n  A -->"
        parser = ScriptedParser({bad: ParseError("broken")})
        store, parser, canvas, coordinator = make_coordinator(settings, parser=parser)

        async def scenario():
            store.from_text(bad)
            await coordinator.on_text_changed()
            assert coordinator.load_error == "broken"
            store.from_text(TEXT_B)
            await coordinator.on_text_changed()

        asyncio.run(scenario())
        assert coordinator.load_error is None
        assert len(canvas.rendered) == 1

    def test_canvas_active_skips_conversion(self, settings):
        store, parser, canvas, coordinator = make_coordinator(settings)

        async def scenario():
            store.from_canvas(TEXT_B)
            return await coordinator.on_text_changed()

        assert not asyncio.run(scenario())
        assert parser.calls == []
        assert canvas.rendered == []

    def test_store_callback_schedules_update(self, settings):
        store, parser, canvas, coordinator = make_coordinator(settings)
        store.on_change(coordinator.notify_text_changed)

        async def scenario():
            store.from_ai(TEXT_B)
            await settle()

        asyncio.run(scenario())
        assert parser.calls == [TEXT_B]
        assert len(canvas.rendered) == 1

    def test_notifications_during_update_are_coalesced(self, settings):
        parser = ScriptedParser(delay=0.01)
        store, parser, canvas, coordinator = make_coordinator(settings, parser=parser)

        async def scenario():
            first = asyncio.create_task(coordinator.update_scene(store.text))
            await asyncio.sleep(0)
            store.from_text(TEXT_B)
            third = "graph TD\n  C"
            store.from_text(third)
            assert not await coordinator.update_scene(TEXT_B)
            assert not await coordinator.update_scene(third)
            await first
            await settle()

        asyncio.run(scenario())

        # One follow-up run for the latest text, not one per notification
        assert parser.calls == [TEXT_A, "graph TD\n  C"]
        assert parser.max_active == 1
        assert canvas.rendered[-1][0].label == "C"

    def test_stale_result_is_discarded(self, settings):
        parser = ScriptedParser(delay=0.01)
        store, parser, canvas, coordinator = make_coordinator(settings, parser=parser)

        async def scenario():
            older = asyncio.create_task(coordinator.update_scene(TEXT_A))
            await asyncio.sleep(0)
            newer = asyncio.create_task(coordinator.update_scene(TEXT_B, force=True))
            return await asyncio.gather(older, newer)

        older, newer = asyncio.run(scenario())

        assert (older, newer) == (False, True)
        assert len(canvas.rendered) == 1
        assert canvas.rendered[0][0].label == "B"
        assert parser.max_active == 1
        assert coordinator.state == SyncState.IDLE
        assert not coordinator.is_loading

    def test_stale_parse_error_is_ignored(self, settings):
        bad = "graph TD\n  A -->"

        class SlowFailingConverter:
            """Fails on `bad` after a delay; converts anything else at once."""

            async def convert(self, text, force=False):
                if text == bad:
                    await asyncio.sleep(0.02)
                    raise ParseError("broken")
                return [VisualElement(id="ok", kind="rectangle", label="B")]

            def invalidate(self):
                pass

        store = DiagramStore(TEXT_A)
        canvas = RecordingCanvas()
        coordinator = SyncCoordinator(store, SlowFailingConverter(), canvas, settings)

        async def scenario():
            older = asyncio.create_task(coordinator.update_scene(bad))
            await asyncio.sleep(0)
            newer = asyncio.create_task(coordinator.update_scene(TEXT_B, force=True))
            return await asyncio.gather(older, newer)

        assert asyncio.run(scenario()) == [False, True]
        assert coordinator.load_error is None
        assert canvas.rendered[-1][0].label == "B"
        assert coordinator.state == SyncState.IDLE

    def test_metadata_changes_do_not_reconvert(self, settings):
        store, parser, canvas, coordinator = make_coordinator(settings)
        store.on_change(coordinator.notify_text_changed)

        async def scenario():
            await coordinator.update_scene(store.text)
            store.set_rendering(True)
            store.set_error("Render failed")
            store.set_active_surface(Surface.AI)
            await settle()

        asyncio.run(scenario())
        assert len(parser.calls) == 1
        assert len(canvas.rendered) == 1

    def test_reload_bypasses_cache(self, settings):
        store, parser, canvas, coordinator = make_coordinator(settings)

        async def scenario():
            await coordinator.update_scene(store.text)
            return await coordinator.reload()

        assert asyncio.run(scenario())
        assert len(parser.calls) == 2
        assert len(canvas.rendered) == 2

    def test_resize_refreshes_canvas(self, settings):
        store, parser, canvas, coordinator = make_coordinator(settings)

        asyncio.run(coordinator.on_resize())

        assert canvas.refreshes == 1
        assert parser.calls == []

    def test_loading_until_settled(self, settings):
        settings.settle_delay = 0.02
        store, parser, canvas, coordinator = make_coordinator(settings)

        async def scenario():
            task = asyncio.create_task(coordinator.update_scene(store.text))
            await asyncio.sleep(0.005)
            loading = coordinator.is_loading, coordinator.ready.is_set()
            await task
            return loading

        assert asyncio.run(scenario()) == (True, False)
        assert coordinator.ready.is_set()


class TestCanvasToText:
    def test_edit_is_staged_not_committed(self, settings, start_elements):
        store, parser, canvas, coordinator = make_coordinator(settings)
        elements = start_elements()

        async def scenario():
            coordinator.on_elements_changed(elements)
            await coordinator.flush()

        asyncio.run(scenario())

        assert coordinator.elements == elements
        assert coordinator.staged_text == graph_to_text(elements)
        assert coordinator.state == SyncState.STAGED
        assert coordinator.can_sync
        assert store.text == TEXT_A
        assert store.history == (TEXT_A,)

    def test_debounce_restarts_on_each_edit(self, settings, start_elements):
        settings.debounce_delay = 0.02
        store, parser, canvas, coordinator = make_coordinator(settings)

        async def scenario():
            coordinator.on_elements_changed(start_elements(end="Draft"))
            await asyncio.sleep(0.005)
            coordinator.on_elements_changed(start_elements(end="Final"))
            assert coordinator.staged_text is None
            await coordinator.flush()

        asyncio.run(scenario())
        assert coordinator.staged_text == "graph TD\n  n1[Start]\n  n2[Final]\n  n1 --> n2\n"

    def test_deleted_elements_dropped(self, settings, start_elements):
        store, parser, canvas, coordinator = make_coordinator(settings)
        elements = start_elements()
        elements[1] = elements[1].model_copy(update={"is_deleted": True})

        async def scenario():
            coordinator.on_elements_changed(elements)
            await coordinator.flush()

        asyncio.run(scenario())
        assert coordinator.staged_text == "graph TD\n  n1[Start]\n"

    def test_render_echo_is_not_staged(self, settings):
        store, parser, canvas, coordinator = make_coordinator(settings)
        canvas.on_render = coordinator.on_elements_changed

        async def scenario():
            await coordinator.update_scene(store.text)
            await settle()

        asyncio.run(scenario())

        assert coordinator.staged_text is None
        assert coordinator.state == SyncState.IDLE
        assert coordinator.elements == canvas.rendered[0]

    def test_conversion_failure_reported_to_store(self, settings, start_elements, monkeypatch):
        def broken(elements, direction="TD"):
            raise RuntimeError("boom")

        monkeypatch.setattr("flowsync_backend.sync_coordinator.graph_to_text", broken)
        store, parser, canvas, coordinator = make_coordinator(settings)
        elements = start_elements()

        async def scenario():
            coordinator.on_elements_changed(elements)
            await coordinator.flush()

        asyncio.run(scenario())

        assert store.error == "Conversion error: boom"
        assert coordinator.elements == elements
        assert coordinator.staged_text is None
        assert store.text == TEXT_A

    def test_staged_edit_survives_store_metadata_changes(self, settings, start_elements):
        store, parser, canvas, coordinator = make_coordinator(settings)
        store.on_change(coordinator.notify_text_changed)
        edited = start_elements()

        async def scenario():
            await coordinator.update_scene(store.text)
            coordinator.on_elements_changed(edited)
            await coordinator.flush()
            store.set_rendering(True)
            store.set_error("Render failed")
            store.set_active_surface(Surface.AI)
            await settle()

        asyncio.run(scenario())

        assert coordinator.staged_text == graph_to_text(edited)
        assert coordinator.elements == edited
        assert coordinator.state == SyncState.STAGED
        assert coordinator.can_sync
        assert len(parser.calls) == 1
        assert len(canvas.rendered) == 1

    def test_conversion_failure_keeps_edited_scene(self, settings, start_elements, monkeypatch):
        def broken(elements, direction="TD"):
            raise RuntimeError("boom")

        monkeypatch.setattr("flowsync_backend.sync_coordinator.graph_to_text", broken)
        store, parser, canvas, coordinator = make_coordinator(settings)
        store.on_change(coordinator.notify_text_changed)
        edited = start_elements()

        async def scenario():
            await coordinator.update_scene(store.text)
            coordinator.on_elements_changed(edited)
            await coordinator.flush()
            await settle()

        asyncio.run(scenario())

        assert store.error == "Conversion error: boom"
        assert coordinator.elements == edited
        assert len(parser.calls) == 1
        assert len(canvas.rendered) == 1

    def test_edit_during_scene_update_is_staged(self, settings, start_elements):
        settings.settle_delay = 0.05
        store, parser, canvas, coordinator = make_coordinator(settings)
        edited = start_elements(end="UserEdit")

        async def scenario():
            task = asyncio.create_task(coordinator.update_scene(store.text))
            await asyncio.sleep(0.02)
            assert coordinator.is_loading
            coordinator.on_elements_changed(edited)
            rendered = await task
            await coordinator.flush()
            return rendered

        assert asyncio.run(scenario())

        assert coordinator.elements == edited
        assert "UserEdit" in coordinator.staged_text
        assert coordinator.state == SyncState.STAGED
        assert coordinator.can_sync

    def test_canvas_edit_invalidates_cached_text(self, settings, start_elements):
        store, parser, canvas, coordinator = make_coordinator(settings)

        async def scenario():
            await coordinator.update_scene(store.text)
            coordinator.on_elements_changed(start_elements())
            await coordinator.flush()
            return await coordinator.update_scene(store.text)

        assert asyncio.run(scenario())
        assert len(canvas.rendered) == 2

    def test_text_render_clears_staged_text(self, settings, start_elements):
        store, parser, canvas, coordinator = make_coordinator(settings)

        async def scenario():
            coordinator.on_elements_changed(start_elements())
            await coordinator.flush()
            store.from_text(TEXT_B)
            await coordinator.on_text_changed()

        asyncio.run(scenario())

        assert coordinator.staged_text is None
        assert coordinator.state == SyncState.IDLE
        assert not coordinator.can_sync

    def test_close_cancels_pending_debounce(self, settings, start_elements):
        settings.debounce_delay = 10
        store, parser, canvas, coordinator = make_coordinator(settings)

        async def scenario():
            coordinator.on_elements_changed(start_elements())
            await coordinator.close()

        asyncio.run(scenario())
        assert coordinator.staged_text is None


class TestSyncToEditor:
    def test_promotes_staged_text(self, settings, start_elements):
        store, parser, canvas, coordinator = make_coordinator(settings)
        store.on_change(coordinator.notify_text_changed)

        async def scenario():
            coordinator.on_elements_changed(start_elements())
            await coordinator.flush()
            synced = coordinator.sync_to_editor()
            await settle()
            return synced

        assert asyncio.run(scenario())

        assert store.text == graph_to_text(start_elements())
        assert store.active_surface == Surface.CANVAS
        assert store.history_index == 1
        assert coordinator.state == SyncState.IDLE
        assert not coordinator.can_sync
        # The canvas already shows this change
        assert parser.calls == []
        assert canvas.rendered == []

    def test_nothing_staged(self, settings):
        store, parser, canvas, coordinator = make_coordinator(settings)

        assert not coordinator.sync_to_editor()
        assert store.history == (TEXT_A,)

    def test_staged_equal_to_canonical_text(self, settings, start_elements):
        elements = start_elements()
        store, parser, canvas, coordinator = make_coordinator(settings, text=graph_to_text(elements))

        async def scenario():
            coordinator.on_elements_changed(elements)
            await coordinator.flush()

        asyncio.run(scenario())

        assert coordinator.state == SyncState.STAGED
        assert not coordinator.can_sync
        assert not coordinator.sync_to_editor()

    def test_second_sync_is_rejected(self, settings, start_elements):
        store, parser, canvas, coordinator = make_coordinator(settings)

        async def scenario():
            coordinator.on_elements_changed(start_elements())
            await coordinator.flush()

        asyncio.run(scenario())

        assert coordinator.sync_to_editor()
        assert not coordinator.sync_to_editor()
        assert store.history_index == 1

    def test_get_state(self, settings, start_elements):
        store, parser, canvas, coordinator = make_coordinator(settings)

        async def scenario():
            coordinator.on_elements_changed(start_elements())
            await coordinator.flush()

        asyncio.run(scenario())
        state = coordinator.get_state()

        assert state["state"] == "staged"
        assert state["can_sync"] is True
        assert state["elements"][2]["startBinding"] == "e1"
        assert state["load_error"] is None


@pytest.mark.parametrize("delay", [0, 0.01])
def test_edit_after_render_round_trip(settings, delay):
    """A scene rendered from text, edited on the canvas and synced back."""
    settings.debounce_delay = delay
    scene = [
        VisualElement(id="s1", kind="rectangle", label="Start"),
        VisualElement(id="s2", kind="diamond", label="Ok?"),
        VisualElement(id="s3", kind="arrow", start_binding="s1", end_binding="s2"),
    ]
    parser = ScriptedParser({TEXT_A: scene})
    store, parser, canvas, coordinator = make_coordinator(settings, parser=parser)

    async def scenario():
        await coordinator.update_scene(store.text)
        edited = coordinator.elements + [
            VisualElement(id="s4", kind="ellipse", label="Done"),
            VisualElement(id="s5", kind="arrow", label="yes", start_binding="s2", end_binding="s4"),
        ]
        coordinator.on_elements_changed(edited)
        await coordinator.flush()
        return coordinator.sync_to_editor()

    assert asyncio.run(scenario())
    assert store.text == (
        "graph TD\n"
        "  n1[Start]\n"
        "  n2{Ok?}\n"
        "  n3((Done))\n"
        "  n1 --> n2\n"
        "  n2 -->|yes| n3\n"
    )
