"""Tool approval: layered policy plus event-backed interactive approval."""

from threadline.approval.events import EventApprovalCallback
from threadline.approval.policy import PolicyEngine
from threadline.approval.types import (
    ApprovalCallback,
    ApprovalCallbackMissingError,
    ApprovalCancelledError,
    ApprovalDecision,
    ApprovalError,
    ToolApprovalRequest,
    ToolApprovalResponse,
    ToolCallNotFoundError,
    ToolPolicy,
)

__all__ = [
    "ApprovalCallback",
    "ApprovalCallbackMissingError",
    "ApprovalCancelledError",
    "ApprovalDecision",
    "ApprovalError",
    "EventApprovalCallback",
    "PolicyEngine",
    "ToolApprovalRequest",
    "ToolApprovalResponse",
    "ToolCallNotFoundError",
    "ToolPolicy",
]
