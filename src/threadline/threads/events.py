"""Thread event model.

A thread is an append-only, per-conversation sequence of ThreadEvents. Events
are immutable once appended; everything the UI shows is derived from them.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from collections.abc import Mapping
from typing import Any


class EventType(str, Enum):
    """Kinds of events recorded in a thread."""

    USER_MESSAGE = "USER_MESSAGE"
    AGENT_MESSAGE = "AGENT_MESSAGE"
    TOOL_CALL = "TOOL_CALL"
    TOOL_RESULT = "TOOL_RESULT"
    TOOL_APPROVAL_REQUEST = "TOOL_APPROVAL_REQUEST"
    TOOL_APPROVAL_RESPONSE = "TOOL_APPROVAL_RESPONSE"
    SYSTEM_PROMPT = "SYSTEM_PROMPT"
    USER_SYSTEM_PROMPT = "USER_SYSTEM_PROMPT"
    LOCAL_SYSTEM_MESSAGE = "LOCAL_SYSTEM_MESSAGE"

    @classmethod
    def coerce(cls, value: EventType | str) -> EventType | str:
        """Return the matching EventType, or the raw string for unknown types."""
        if isinstance(value, EventType):
            return value
        try:
            return cls(value)
        except ValueError:
            return value


ContentBlock = dict[str, Any]


def _is_text_block(block: Any) -> bool:
    return (
        isinstance(block, dict)
        and block.get("type") == "text"
        and isinstance(block.get("text"), str)
    )


def _content_blocks(content: Any) -> list[ContentBlock]:
    """Normalize recorded result content to a list of dict blocks.

    A bare string becomes one text block; anything else that is not a dict
    block is dropped.
    """
    if isinstance(content, str):
        return [text_block(content)]
    if isinstance(content, (list, tuple)):
        return [block for block in content if isinstance(block, dict)]
    return []


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the agent."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        return cls(
            id=data["id"],
            name=data["name"],
            arguments=dict(data.get("arguments") or {}),
        )


@dataclass(frozen=True)
class ToolResult:
    """Outcome of a tool invocation; ``id`` matches the originating ToolCall."""

    content: list[ContentBlock] = field(default_factory=list)
    is_error: bool = False
    id: str | None = None

    def text(self) -> str:
        """Extract text content from the result."""
        return "\n".join(
            block.get("text", "") for block in self.content if _is_text_block(block)
        )

    def first_text(self) -> str | None:
        """Return the first text block, or None if the result has no text."""
        for block in self.content:
            if _is_text_block(block):
                return block["text"]
        return None

    def with_id(self, call_id: str) -> ToolResult:
        return replace(self, id=call_id)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "content": list(self.content), "is_error": self.is_error}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolResult:
        return cls(
            id=data.get("id") if isinstance(data.get("id"), str) else None,
            content=_content_blocks(data.get("content")),
            is_error=bool(data.get("is_error", data.get("isError", False))),
        )


def text_block(text: str) -> ContentBlock:
    return {"type": "text", "text": text}


def create_tool_result(text: str, call_id: str | None = None) -> ToolResult:
    """Build a successful single-text-block result."""
    return ToolResult(content=[text_block(text)], is_error=False, id=call_id)


def create_error_result(message: str, call_id: str | None = None) -> ToolResult:
    """Build a failed single-text-block result."""
    return ToolResult(content=[text_block(message)], is_error=True, id=call_id)


def as_tool_call(data: Any) -> ToolCall | None:
    """Return TOOL_CALL event data as a ToolCall, or None if it is malformed."""
    if isinstance(data, ToolCall):
        return data
    if not isinstance(data, dict):
        return None
    arguments = data.get("arguments")
    if (
        isinstance(data.get("id"), str)
        and isinstance(data.get("name"), str)
        and (arguments is None or isinstance(arguments, Mapping))
    ):
        return ToolCall.from_dict(data)
    return None


def as_tool_result(data: Any) -> ToolResult | None:
    """Return TOOL_RESULT event data as a ToolResult, or None if it is malformed."""
    if isinstance(data, ToolResult):
        return data
    if isinstance(data, dict):
        return ToolResult.from_dict(data)
    return None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ThreadEvent:
    """One immutable entry in a thread's event log.

    ``data`` depends on ``type``: message text for message events, a ToolCall
    for TOOL_CALL, a ToolResult for TOOL_RESULT, and approval payloads (see
    threadline.approval.types) for the approval events.
    """

    id: str
    thread_id: str
    type: EventType | str
    timestamp: datetime
    data: Any = None
