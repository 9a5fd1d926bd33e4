"""Threadline: event-sourced conversation core for coding agents."""

__version__ = "0.1.0"

# Public API
from threadline.approval import (
    ApprovalCallback,
    ApprovalDecision,
    EventApprovalCallback,
    PolicyEngine,
    ToolPolicy,
)
from threadline.config import Config, get_config, load_config
from threadline.conversation import Conversation
from threadline.errors import ThreadlineError, ThreadStorageError
from threadline.threads import (
    EventLog,
    EventType,
    InMemoryEventLog,
    ThreadEvent,
    ToolCall,
    ToolResult,
)
from threadline.timeline import (
    EphemeralMessage,
    StreamingTimeline,
    Timeline,
    TimelineProjector,
    extract_thinking_blocks,
)
from threadline.tools import Tool, ToolAnnotations, ToolContext, ToolExecutor

__all__ = [
    # Main entry point
    "Conversation",
    # Config
    "Config",
    "get_config",
    "load_config",
    # Errors
    "ThreadlineError",
    "ThreadStorageError",
    # Threads
    "EventLog",
    "EventType",
    "InMemoryEventLog",
    "ThreadEvent",
    "ToolCall",
    "ToolResult",
    # Timeline
    "EphemeralMessage",
    "StreamingTimeline",
    "Timeline",
    "TimelineProjector",
    "extract_thinking_blocks",
    # Approval
    "ApprovalCallback",
    "ApprovalDecision",
    "EventApprovalCallback",
    "PolicyEngine",
    "ToolPolicy",
    # Tools
    "Tool",
    "ToolAnnotations",
    "ToolContext",
    "ToolExecutor",
]
