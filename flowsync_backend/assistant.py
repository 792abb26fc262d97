"""
Assistant surface - Diagram text in and out of chat conversations.

The chat transport (model calls, streaming) lives outside this package.
It calls a `ChatInterceptor` at two points:
- `prepare_request(messages)` before sending, so the model sees the
  current diagram
- `process_response(messages)` after a reply, so a diagram block in the
  reply becomes the canonical text
"""

import logging
import re
from typing import Optional, Protocol, runtime_checkable

from pydantic import BaseModel

from .diagram_store import DiagramStore

log = logging.getLogger(__name__)

# First fenced block, optionally tagged as mermaid
DIAGRAM_BLOCK_RE = re.compile(r"```(?:mermaid)?\s*([\s\S]*?)```")

FLOWCHART_PROMPT_TEMPLATE = """You are a flowchart specialist that helps users create and modify Mermaid-syntax flowcharts.

When responding to a user request, please follow these guidelines:
1. Always include the COMPLETE, UPDATED flowchart Mermaid code in your response.
2. Put the code in a code block with the mermaid syntax tag: ```mermaid ... ```
3. Keep your explanations brief and focused on the changes you've made.
4. Ensure your Mermaid syntax is correct and follows best practices.
5. For user experience, maintain the graph TD direction unless specifically asked to change it.

The user will provide the current flowchart (if any) in their message. If they don't, assume they want to start from scratch.

Current conversation:
{chat_history}

User request: {input}

Your response (include the complete flowchart in mermaid code block):"""


class ChatMessage(BaseModel):
    """A single chat message."""
    role: str
    content: str


def extract_diagram_block(content: str) -> Optional[str]:
    """Return the trimmed body of the first fenced code block, if any."""
    match = DIAGRAM_BLOCK_RE.search(content or "")
    if match is None:
        return None
    code = match.group(1).strip()
    return code or None


def has_diagram_block(content: str) -> bool:
    return extract_diagram_block(content) is not None


def attach_current_diagram(content: str, diagram_text: str) -> str:
    """Prefix a user request with the current diagram."""
    return f"Current flowchart:\n```mermaid\n{diagram_text}\n```\n\nMy request: {content}"


def find_current_diagram(messages: list[ChatMessage]) -> Optional[str]:
    """
    Find the diagram a conversation is about.

    A diagram in the latest message wins; otherwise the newest assistant
    message carrying one.
    """
    if not messages:
        return None

    latest = extract_diagram_block(messages[-1].content)
    if latest:
        return latest

    for message in reversed(messages[:-1]):
        if message.role == "assistant":
            code = extract_diagram_block(message.content)
            if code:
                return code
    return None


def build_prompt(messages: list[ChatMessage], current_diagram: Optional[str] = None) -> str:
    """Render the flowchart-assistant prompt for the chat transport."""
    if not messages:
        raise ValueError("At least one message is required")

    current = current_diagram or find_current_diagram(messages)
    history = "\n".join(f"{m.role}: {m.content}" for m in messages[:-1])
    request = messages[-1].content
    if current and current not in request:
        request = attach_current_diagram(request, current)

    return FLOWCHART_PROMPT_TEMPLATE.format(chat_history=history, input=request)


@runtime_checkable
class ChatInterceptor(Protocol):
    """Hooks the chat transport calls around each exchange."""

    def prepare_request(self, messages: list[ChatMessage]) -> list[ChatMessage]:
        ...

    def process_response(self, messages: list[ChatMessage]) -> Optional[str]:
        ...


class DiagramReplyInterceptor:
    """Feeds the canonical text to the assistant and applies its replies."""

    def __init__(self, store: DiagramStore):
        self._store = store

    def prepare_request(self, messages: list[ChatMessage]) -> list[ChatMessage]:
        """
        Return messages with the current diagram attached to the last
        user message, unless that message already carries a diagram.
        """
        messages = [m.model_copy() for m in messages]
        if not messages:
            return messages

        last = messages[-1]
        if last.role == "user" and not has_diagram_block(last.content):
            last.content = attach_current_diagram(last.content, self._store.text)
        return messages

    def process_response(self, messages: list[ChatMessage]) -> Optional[str]:
        """
        Apply the diagram in the newest assistant message to the store.

        Returns the extracted text, or None when the reply has no diagram.
        """
        replies = [m for m in messages if m.role == "assistant"]
        if not replies:
            return None

        code = extract_diagram_block(replies[-1].content)
        if code is None:
            log.debug("Assistant reply carries no diagram block")
            return None

        if self._store.from_ai(code):
            log.info("Applied assistant diagram (%d chars)", len(code))
        return code
