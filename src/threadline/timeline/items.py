"""Timeline item types.

A Timeline is the only thing a rendering layer consumes. Its items form a
tagged union discriminated by ``type``:

    user_message | agent_message | tool_execution | system_message | ephemeral_message

Items are derived from thread events and are never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Union

from threadline.threads.events import ToolCall, ToolResult


def _ts(value: datetime) -> str:
    return value.isoformat()


@dataclass(frozen=True)
class UserMessageItem:
    type: ClassVar[str] = "user_message"

    id: str
    content: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "id": self.id,
            "content": self.content,
            "timestamp": _ts(self.timestamp),
        }


@dataclass(frozen=True)
class AgentMessageItem:
    """Agent text with thinking spans kept inline; ``thinking`` lists their contents."""

    type: ClassVar[str] = "agent_message"

    id: str
    content: str
    timestamp: datetime
    thinking: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "id": self.id,
            "content": self.content,
            "timestamp": _ts(self.timestamp),
            "thinking": list(self.thinking),
        }


@dataclass(frozen=True)
class ToolExecutionItem:
    """A tool call with its result, or with ``result=None`` while in flight.

    Stamped with the call's timestamp, not the result's.
    """

    type: ClassVar[str] = "tool_execution"

    call_id: str
    call: ToolCall
    timestamp: datetime
    result: ToolResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "call_id": self.call_id,
            "call": self.call.to_dict(),
            "result": self.result.to_dict() if self.result is not None else None,
            "timestamp": _ts(self.timestamp),
        }


@dataclass(frozen=True)
class SystemMessageItem:
    type: ClassVar[str] = "system_message"

    id: str
    content: str
    timestamp: datetime
    original_event_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "id": self.id,
            "content": self.content,
            "timestamp": _ts(self.timestamp),
            "original_event_type": self.original_event_type,
        }


@dataclass(frozen=True)
class EphemeralMessageItem:
    """Live streaming update; replaced by the persisted event once it lands."""

    type: ClassVar[str] = "ephemeral_message"

    message_type: str
    content: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "message_type": self.message_type,
            "content": self.content,
            "timestamp": _ts(self.timestamp),
        }


ProcessedItem = Union[UserMessageItem, AgentMessageItem, ToolExecutionItem, SystemMessageItem]
TimelineItem = Union[ProcessedItem, EphemeralMessageItem]


@dataclass(frozen=True)
class EphemeralMessage:
    """Transient message emitted by the provider layer while a turn streams.

    ``type`` is one of "user", "assistant", "system", "tool", "thinking".
    """

    type: str
    content: str
    timestamp: datetime


@dataclass(frozen=True)
class TimelineMetadata:
    event_count: int
    message_count: int
    last_activity: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_count": self.event_count,
            "message_count": self.message_count,
            "last_activity": _ts(self.last_activity),
        }


@dataclass(frozen=True)
class Timeline:
    items: list[TimelineItem]
    metadata: TimelineMetadata

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "metadata": self.metadata.to_dict(),
        }


@dataclass(frozen=True)
class ProcessedThreads:
    """Main thread timeline plus one timeline per delegated thread."""

    main: Timeline
    delegates: dict[str, Timeline] = field(default_factory=dict)
