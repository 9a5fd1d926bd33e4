"""Thread events, event logs and snapshot storage."""

from threadline.threads.events import (
    ContentBlock,
    EventType,
    ThreadEvent,
    ToolCall,
    ToolResult,
    create_error_result,
    create_tool_result,
    text_block,
)
from threadline.threads.log import (
    EventLog,
    InMemoryEventLog,
    generate_thread_id,
    is_delegate_thread,
    parent_thread_id,
)
from threadline.threads.storage import list_threads, load_thread, save_thread

__all__ = [
    "ContentBlock",
    "EventLog",
    "EventType",
    "InMemoryEventLog",
    "ThreadEvent",
    "ToolCall",
    "ToolResult",
    "create_error_result",
    "create_tool_result",
    "generate_thread_id",
    "is_delegate_thread",
    "list_threads",
    "load_thread",
    "parent_thread_id",
    "save_thread",
    "text_block",
]
