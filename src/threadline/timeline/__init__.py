"""Timeline projection: thread events in, renderable items out."""

from threadline.timeline.items import (
    AgentMessageItem,
    EphemeralMessage,
    EphemeralMessageItem,
    ProcessedItem,
    ProcessedThreads,
    SystemMessageItem,
    Timeline,
    TimelineItem,
    TimelineMetadata,
    ToolExecutionItem,
    UserMessageItem,
)
from threadline.timeline.projector import StreamingStats, StreamingTimeline, TimelineProjector
from threadline.timeline.thinking import (
    ThinkingExtraction,
    count_words,
    extract_thinking_blocks,
    summarize_thinking,
)

__all__ = [
    "AgentMessageItem",
    "EphemeralMessage",
    "EphemeralMessageItem",
    "ProcessedItem",
    "ProcessedThreads",
    "StreamingStats",
    "StreamingTimeline",
    "SystemMessageItem",
    "ThinkingExtraction",
    "Timeline",
    "TimelineItem",
    "TimelineMetadata",
    "TimelineProjector",
    "ToolExecutionItem",
    "UserMessageItem",
    "count_words",
    "extract_thinking_blocks",
    "summarize_thinking",
]
