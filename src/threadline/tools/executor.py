"""Tool execution with approval.

ToolExecutor is the seam between the agent's turn loop and the tool
collaborators: look the tool up, ask the PolicyEngine, run the tool, hand back
a ToolResult. Every failure comes back as an error result so one bad tool call
never halts the turn loop. Recording TOOL_CALL / TOOL_RESULT events is the
caller's job.
"""

from __future__ import annotations

from collections.abc import Iterable

from threadline.approval.policy import PolicyEngine
from threadline.approval.types import ApprovalCancelledError, ApprovalDecision, ApprovalError
from threadline.logging import get_logger
from threadline.threads.events import ToolCall, ToolResult, create_error_result
from threadline.tools.tool import Tool, ToolContext

log = get_logger("tools.executor")

DENIED_MESSAGE = "Tool execution denied by approval policy"
CANCELLED_MESSAGE = "Tool execution cancelled"


class ToolExecutor:
    """Registry of tools plus the approval-gated execution path."""

    def __init__(self, policy_engine: PolicyEngine | None = None) -> None:
        self.policy_engine = policy_engine or PolicyEngine()
        self._tools: dict[str, Tool] = {}

    def register_tool(self, tool: Tool, name: str | None = None) -> None:
        self._tools[name or tool.name] = tool

    def register_tools(self, tools: Iterable[Tool]) -> None:
        for tool in tools:
            self.register_tool(tool)

    def get_tool(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def available_tool_names(self) -> list[str]:
        return list(self._tools)

    async def request_permission(
        self, call: ToolCall, context: ToolContext | None = None
    ) -> ApprovalDecision:
        """Run the policy check for a call without executing it.

        Raises:
            KeyError: The tool is not registered.
            ApprovalError: The approval could not be completed.
        """
        tool = self._tools.get(call.name)
        if tool is None:
            raise KeyError(call.name)
        return await self.policy_engine.evaluate(
            call.name,
            call.arguments,
            tool=tool,
            tool_call_id=call.id,
            cancel_event=context.cancel_event if context else None,
        )

    async def execute_tool(self, call: ToolCall, context: ToolContext | None = None) -> ToolResult:
        """Approve and run one tool call; never raises for tool or policy failures."""
        context = context or ToolContext()

        tool = self._tools.get(call.name)
        if tool is None:
            log.warning("Unknown tool requested: %s", call.name)
            return create_error_result(f"Tool '{call.name}' not found", call.id)

        try:
            decision = await self.request_permission(call, context)
        except ApprovalCancelledError:
            return create_error_result(CANCELLED_MESSAGE, call.id)
        except ApprovalError as e:
            log.warning("Approval failed for %s (%s): %s", call.name, call.id, e)
            return create_error_result(str(e), call.id)
        except Exception as e:
            # A broken approval callback fails this call only
            log.exception("Approval callback error for %s (%s)", call.name, call.id)
            return create_error_result(f"Approval failed: {e}", call.id)

        if decision is ApprovalDecision.DENY:
            log.info("Tool %s (%s) denied", call.name, call.id)
            return create_error_result(DENIED_MESSAGE, call.id)

        return await self.execute_approved_tool(tool, call, context)

    async def execute_approved_tool(
        self, tool: Tool, call: ToolCall, context: ToolContext
    ) -> ToolResult:
        """Run a tool whose call has already been approved."""
        if context.cancelled:
            return create_error_result(CANCELLED_MESSAGE, call.id)

        try:
            result = await tool.execute(call.arguments, context)
        except Exception as e:
            log.exception("Tool %s (%s) raised", call.name, call.id)
            return create_error_result(str(e) or type(e).__name__, call.id)

        if result.id is None:
            result = result.with_id(call.id)
        return result
