#!/usr/bin/env python3
"""
Flowsync MCP Server

Provides MCP tools for AI agents to act as the assistant surface of a
running flowsync backend. Every accepted change becomes the canonical
diagram text and is immediately reflected in the text editor and canvas
via WebSocket updates.
"""

import httpx
from mcp.server.fastmcp import FastMCP
from typing import Optional
import json
import os

# Backend API URL
API_BASE = os.environ.get("FLOWSYNC_API_BASE", "http://127.0.0.1:8765/api")

# Create MCP server
mcp = FastMCP("flowsync")


# --- HTTP Client Helper ---

def api_request(method: str, endpoint: str, **kwargs) -> dict:
    """Make a request to the flowsync backend."""
    url = f"{API_BASE}{endpoint}"
    with httpx.Client(timeout=30.0) as client:
        if method == "GET":
            response = client.get(url, params=kwargs.get("params"))
        elif method == "POST":
            response = client.post(url, json=kwargs.get("json"), params=kwargs.get("params"))
        elif method == "PUT":
            response = client.put(url, json=kwargs.get("json"))
        elif method == "PATCH":
            response = client.patch(url, json=kwargs.get("json"))
        else:
            raise ValueError(f"Unknown method: {method}")

        if response.status_code >= 400:
            error = response.json().get("detail", "Unknown error")
            raise Exception(f"API error: {error}")

        return response.json()


# ============================================================================
# INSPECTION TOOLS
# ============================================================================

@mcp.tool()
def diagram_get_current() -> str:
    """
    Get the current canonical diagram.

    Returns the diagram text together with history position, the active
    surface and any error reported by a surface. Use this to see what the
    user is working on before proposing changes.
    """
    result = api_request("GET", "/diagram")
    return json.dumps(result, indent=2)


@mcp.tool()
def diagram_get_canvas() -> str:
    """
    Get the canvas state.

    Returns the rendered elements, any canvas edits converted to text but
    not yet synced (staged_text), and the last parse error shown on the
    canvas.
    """
    result = api_request("GET", "/canvas")
    return json.dumps(result, indent=2)


# ============================================================================
# ASSISTANT UPDATES
# ============================================================================

@mcp.tool()
def diagram_apply_ai_update(text: str) -> str:
    """
    Replace the diagram with new flowchart text.

    Args:
        text: Complete flowchart text, e.g. "graph TD\\n  A[Start] --> B[End]"

    The text becomes the canonical diagram and is recorded in undo history.
    Sending the current text again is a no-op ("changed": false).
    """
    result = api_request("POST", "/diagram/ai", json={"text": text})
    return json.dumps(result, indent=2)


@mcp.tool()
def diagram_apply_assistant_reply(reply: str, request: Optional[str] = None) -> str:
    """
    Apply the diagram contained in an assistant reply.

    Args:
        reply: Assistant message text containing a ```mermaid code block
        request: The user message the reply answers (optional)

    The first fenced code block of the reply becomes the canonical diagram.
    Replies without a code block leave the diagram unchanged.
    """
    messages = []
    if request:
        messages.append({"role": "user", "content": request})
    messages.append({"role": "assistant", "content": reply})

    result = api_request("POST", "/chat/response", json={"messages": messages})
    return json.dumps(result, indent=2)


@mcp.tool()
def diagram_convert_elements(elements: list[dict], direction: str = "TD") -> str:
    """
    Convert canvas elements to flowchart text without changing the diagram.

    Args:
        elements: Canvas elements (id, kind/type, label/text, startBinding, endBinding)
        direction: Flow direction of the output (TD, TB, BT, LR, RL)

    Only rectangles, diamonds, ellipses and arrows bound at both ends are kept.
    """
    result = api_request("POST", "/convert/elements", json={
        "elements": elements,
        "direction": direction
    })
    return json.dumps(result, indent=2)


# ============================================================================
# HISTORY / CANVAS SYNC
# ============================================================================

@mcp.tool()
def diagram_undo() -> str:
    """
    Revert the last change.

    Steps back one entry in the diagram history. Does nothing at the
    oldest entry.
    """
    result = api_request("POST", "/diagram/undo")
    return json.dumps(result, indent=2)


@mcp.tool()
def diagram_redo() -> str:
    """
    Reapply an undone change.

    Steps forward one entry in the diagram history. Does nothing at the
    newest entry.
    """
    result = api_request("POST", "/diagram/redo")
    return json.dumps(result, indent=2)


@mcp.tool()
def diagram_sync_canvas() -> str:
    """
    Push the user's canvas edits into the diagram text.

    Fails when the canvas has no staged changes that differ from the
    current diagram text.
    """
    result = api_request("POST", "/canvas/sync")
    return json.dumps(result, indent=2)


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    mcp.run()
