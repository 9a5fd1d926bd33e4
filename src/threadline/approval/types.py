"""Approval decisions, policies, event payloads and errors."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from threadline.errors import ThreadlineError


class ApprovalDecision(str, Enum):
    """Outcome of an approval check for one tool call."""

    ALLOW_ONCE = "allow_once"
    ALLOW_SESSION = "allow_session"
    DENY = "deny"

    @property
    def allowed(self) -> bool:
        return self is not ApprovalDecision.DENY


class ToolPolicy(str, Enum):
    """Explicit per-tool override."""

    ALLOW = "allow"
    DENY = "deny"
    REQUIRE_APPROVAL = "require-approval"


@dataclass(frozen=True)
class ToolApprovalRequest:
    """Payload of a TOOL_APPROVAL_REQUEST event."""

    tool_call_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"tool_call_id": self.tool_call_id}


@dataclass(frozen=True)
class ToolApprovalResponse:
    """Payload of a TOOL_APPROVAL_RESPONSE event."""

    tool_call_id: str
    decision: ApprovalDecision

    def to_dict(self) -> dict[str, Any]:
        return {"tool_call_id": self.tool_call_id, "decision": self.decision.value}


def approval_call_id(data: Any) -> str | None:
    """Read the tool call id out of an approval event payload."""
    if isinstance(data, (ToolApprovalRequest, ToolApprovalResponse)):
        return data.tool_call_id
    if isinstance(data, dict):
        value = data.get("tool_call_id")
        return value if isinstance(value, str) else None
    return None


def approval_decision(data: Any) -> ApprovalDecision | None:
    """Read the decision out of a TOOL_APPROVAL_RESPONSE payload."""
    if isinstance(data, ToolApprovalResponse):
        return data.decision
    if isinstance(data, dict) and "decision" in data:
        try:
            return ApprovalDecision(data["decision"])
        except ValueError:
            return None
    return None


@runtime_checkable
class ApprovalCallback(Protocol):
    """Interactive approval collaborator (a UI prompt, an event round trip, ...)."""

    async def request_approval(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        *,
        tool_call_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ApprovalDecision:
        ...


class ApprovalError(ThreadlineError):
    """An approval request could not be completed."""


class ToolCallNotFoundError(ApprovalError):
    """No TOOL_CALL event matches the call awaiting approval."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"could not find TOOL_CALL event for {tool_name}")
        self.tool_name = tool_name


class ApprovalCallbackMissingError(ApprovalError):
    """Interactive approval is required but nobody can be asked."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(
            f"Tool '{tool_name}' requires approval but no approval callback configured"
        )
        self.tool_name = tool_name


class ApprovalCancelledError(ApprovalError):
    """The wait for an approval response was aborted."""

    def __init__(self, tool_call_id: str) -> None:
        super().__init__(f"Approval for tool call {tool_call_id} was cancelled")
        self.tool_call_id = tool_call_id
