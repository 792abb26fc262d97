"""Tests for the MCP tools exposed to AI agents."""

import importlib.util
import json
from pathlib import Path
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from flowsync_backend.config import DEFAULT_DIAGRAM
from flowsync_backend.main import create_app

SERVER_PATH = Path(__file__).parent.parent / "mcp-server" / "server.py"


@pytest.fixture(scope="module")
def server():
    spec = importlib.util.spec_from_file_location("flowsync_mcp_server", SERVER_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def api_calls(server, monkeypatch):
    """Record api_request calls instead of sending them."""
    calls = []

    def fake_request(method, endpoint, **kwargs):
        calls.append((method, endpoint, kwargs.get("json")))
        return {"success": True}

    monkeypatch.setattr(server, "api_request", fake_request)
    return calls


class TestToolRequests:
    def test_get_current(self, server, api_calls):
        assert json.loads(server.diagram_get_current()) == {"success": True}
        assert api_calls == [("GET", "/diagram", None)]

    def test_apply_ai_update(self, server, api_calls):
        server.diagram_apply_ai_update("graph TD\n  A --> B")
        assert api_calls == [("POST", "/diagram/ai", {"text": "graph TD\n  A --> B"})]

    def test_apply_assistant_reply(self, server, api_calls):
        server.diagram_apply_assistant_reply("```mermaid\ngraph TD\n  A\n```", request="make A")

        method, endpoint, body = api_calls[0]
        assert (method, endpoint) == ("POST", "/chat/response")
        assert [m["role"] for m in body["messages"]] == ["user", "assistant"]

    def test_history_and_canvas(self, server, api_calls):
        server.diagram_undo()
        server.diagram_redo()
        server.diagram_get_canvas()
        server.diagram_sync_canvas()

        assert [(m, e) for m, e, _ in api_calls] == [
            ("POST", "/diagram/undo"),
            ("POST", "/diagram/redo"),
            ("GET", "/canvas"),
            ("POST", "/canvas/sync"),
        ]

    def test_convert_elements(self, server, api_calls):
        server.diagram_convert_elements([{"id": "a", "type": "rectangle"}], direction="LR")
        assert api_calls[0][2] == {"elements": [{"id": "a", "type": "rectangle"}], "direction": "LR"}


class _Borrowed:
    """Context manager handing out an already-open client."""

    def __init__(self, client):
        self._client = client

    def __enter__(self):
        return self._client

    def __exit__(self, *exc_info):
        return False


class TestAgainstBackend:
    @pytest.fixture
    def backend(self, server, settings, monkeypatch):
        with TestClient(create_app(settings)) as client:
            monkeypatch.setattr(server, "httpx", SimpleNamespace(Client=lambda **kwargs: _Borrowed(client)))
            yield client

    def test_ai_update_round_trip(self, server, backend):
        result = json.loads(server.diagram_apply_ai_update("graph TD\n  Agent --> Done"))

        assert result["changed"] is True
        assert json.loads(server.diagram_get_current())["active_surface"] == "ai"

        server.diagram_undo()
        assert json.loads(server.diagram_get_current())["text"] == DEFAULT_DIAGRAM

    def test_convert_elements(self, server, backend):
        result = json.loads(server.diagram_convert_elements([
            {"id": "x", "type": "rectangle", "text": "Solo"},
        ]))
        assert result == {"text": "graph TD\n  n1[Solo]\n"}

    def test_api_errors_are_raised(self, server, backend):
        with pytest.raises(Exception, match="API error: No staged canvas changes"):
            server.diagram_sync_canvas()
