"""
Pydantic models for API requests.

Each surface talks to the backend with its own request type:
- Text editor: TextUpdateRequest
- Canvas: ElementsRequest
- Assistant: TextUpdateRequest (direct) or ChatRequest (raw conversation)
"""
from typing import Optional
from pydantic import BaseModel, Field

from flowsync_core import Surface, VisualElement

from .assistant import ChatMessage


class TextUpdateRequest(BaseModel):
    """Request to replace the canonical text."""
    text: str


class NewDocumentRequest(BaseModel):
    """Request to open a fresh document (template text when omitted)."""
    text: Optional[str] = None


class SurfaceRequest(BaseModel):
    """Request to change the active surface."""
    surface: Surface


class RenderingRequest(BaseModel):
    """Report from the preview renderer."""
    is_rendering: bool


class ElementsRequest(BaseModel):
    """Current canvas elements after a local edit."""
    elements: list[VisualElement] = Field(default_factory=list)


class ConvertElementsRequest(BaseModel):
    """Request to convert elements to text without touching the store."""
    elements: list[VisualElement] = Field(default_factory=list)
    direction: str = Field(default="TD", pattern=r"^(TD|TB|BT|LR|RL)$")


class ConvertTextRequest(BaseModel):
    """Request to convert text to elements without touching the canvas."""
    text: str


class ChatRequest(BaseModel):
    """A chat conversation, newest message last."""
    messages: list[ChatMessage] = Field(default_factory=list)
