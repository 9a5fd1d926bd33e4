"""Tool interface and approval-gated execution."""

from threadline.tools.executor import CANCELLED_MESSAGE, DENIED_MESSAGE, ToolExecutor
from threadline.tools.tool import Tool, ToolAnnotations, ToolContext

__all__ = [
    "CANCELLED_MESSAGE",
    "DENIED_MESSAGE",
    "Tool",
    "ToolAnnotations",
    "ToolContext",
    "ToolExecutor",
]
