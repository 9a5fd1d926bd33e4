"""Conversation: one thread's log, timeline, and approval-gated tools.

Each Conversation owns its TimelineProjector, StreamingTimeline, PolicyEngine
(and so its session approval cache) and ToolExecutor. Nothing is shared
between conversations except the event log they are given.

A conversation attached to a thread that already has events (for example
after restore()) picks up where that thread left off: the timeline is loaded
from the recorded events, and tools the user approved for the whole session
stay approved.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from pathlib import Path

from threadline.approval.events import EventApprovalCallback
from threadline.approval.policy import PolicyEngine
from threadline.approval.types import (
    ApprovalCallback,
    ApprovalDecision,
    ToolApprovalResponse,
    approval_call_id,
    approval_decision,
)
from threadline.config import Config, get_config
from threadline.logging import get_thread_logger
from threadline.threads.events import (
    EventType,
    ThreadEvent,
    ToolCall,
    ToolResult,
    as_tool_call,
    create_error_result,
)
from threadline.threads.log import EventLog, InMemoryEventLog, generate_thread_id
from threadline.threads.storage import get_thread_path, load_thread, save_thread
from threadline.timeline.items import EphemeralMessage, Timeline
from threadline.timeline.projector import StreamingTimeline, TimelineProjector
from threadline.tools.executor import CANCELLED_MESSAGE, ToolExecutor
from threadline.tools.tool import Tool, ToolContext


def session_approved_tools(events: Iterable[ThreadEvent]) -> set[str]:
    """Names of tools a thread's recorded responses approved for the session."""
    names: dict[str, str] = {}
    approved: set[str] = set()
    for event in events:
        if event.type == EventType.TOOL_CALL:
            call = as_tool_call(event.data)
            if call is not None:
                names[call.id] = call.name
        elif event.type == EventType.TOOL_APPROVAL_RESPONSE:
            call_id = approval_call_id(event.data)
            if (
                call_id in names
                and approval_decision(event.data) is ApprovalDecision.ALLOW_SESSION
            ):
                approved.add(names[call_id])
    return approved


class Conversation:
    """A single conversation thread and the services derived from it.

    Args:
        event_log: Where events are recorded.
        thread_id: Thread to use; a new id is generated when omitted.
        config: Policy and logging config; the global config when omitted.
        approval_callback: Interactive approval collaborator. When omitted,
            approvals round-trip through TOOL_APPROVAL_* events on this thread.
        tools: Tools to register with the executor.
    """

    def __init__(
        self,
        event_log: EventLog,
        thread_id: str | None = None,
        config: Config | None = None,
        approval_callback: ApprovalCallback | None = None,
        tools: Iterable[Tool] = (),
    ) -> None:
        self.event_log = event_log
        self.thread_id = thread_id or generate_thread_id()
        self.config = config or get_config()
        self._log = get_thread_logger("conversation", self.thread_id)

        self._event_approvals: EventApprovalCallback | None = None
        if approval_callback is None:
            self._event_approvals = EventApprovalCallback(event_log, self.thread_id)
            approval_callback = self._event_approvals

        self.policy_engine = PolicyEngine(self.config.tools, approval_callback)
        self.executor = ToolExecutor(self.policy_engine)
        self.executor.register_tools(tools)
        self.projector = TimelineProjector()
        self.stream = StreamingTimeline(self.projector)

        # Subscribe before reading so nothing appended in between is missed;
        # the stream ignores events it has already seen
        self._unsubscribe = event_log.subscribe(self._on_event)
        recorded = self.events()
        self.stream.load_events(recorded)
        for tool_name in sorted(session_approved_tools(recorded)):
            self.policy_engine.approve_for_session(tool_name)
            self._log.debug("Resumed session approval for %s", tool_name)

    @classmethod
    def restore(
        cls,
        project_root: str,
        thread_id: str,
        config: Config | None = None,
        tools: Iterable[Tool] = (),
    ) -> Conversation:
        """Rebuild a conversation from a saved snapshot into a fresh in-memory log."""
        event_log = InMemoryEventLog()
        event_log.load(load_thread(get_thread_path(project_root, thread_id)))
        return cls(event_log, thread_id=thread_id, config=config, tools=tools)

    def close(self) -> None:
        self._unsubscribe()
        if self._event_approvals is not None:
            self._event_approvals.close()

    def _on_event(self, event: ThreadEvent) -> None:
        if event.thread_id == self.thread_id:
            self.stream.append_event(event)

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def add_user_message(self, text: str) -> ThreadEvent:
        return self.event_log.append(self.thread_id, EventType.USER_MESSAGE, text)

    def add_agent_message(self, text: str) -> ThreadEvent:
        return self.event_log.append(self.thread_id, EventType.AGENT_MESSAGE, text)

    def add_system_message(
        self, text: str, event_type: EventType = EventType.LOCAL_SYSTEM_MESSAGE
    ) -> ThreadEvent:
        return self.event_log.append(self.thread_id, event_type, text)

    def events(self) -> list[ThreadEvent]:
        return self.event_log.read(self.thread_id)

    # -------------------------------------------------------------------------
    # Tools
    # -------------------------------------------------------------------------

    def _context(self, context: ToolContext | None) -> ToolContext:
        return context or ToolContext(thread_id=self.thread_id)

    async def _execute(self, call: ToolCall, context: ToolContext) -> ToolResult:
        try:
            result = await self.executor.execute_tool(call, context)
        except asyncio.CancelledError:
            # Close the call in the log so it does not stay in flight
            self._log.info("Tool call %s cancelled", call.id)
            self.event_log.append(
                self.thread_id,
                EventType.TOOL_RESULT,
                create_error_result(CANCELLED_MESSAGE, call.id),
            )
            raise
        self.event_log.append(self.thread_id, EventType.TOOL_RESULT, result)
        return result

    async def run_tool_call(self, call: ToolCall, context: ToolContext | None = None) -> ToolResult:
        """Record the call, execute it behind the approval policy, record the result.

        If the task is cancelled, a cancelled error result is recorded before
        the cancellation propagates.
        """
        self.event_log.append(self.thread_id, EventType.TOOL_CALL, call)
        return await self._execute(call, self._context(context))

    async def run_tool_calls(
        self, calls: Sequence[ToolCall], context: ToolContext | None = None
    ) -> list[ToolResult]:
        """Run several calls of one agent turn concurrently.

        All TOOL_CALL events are recorded before any call starts; each call
        then waits for its own approval independently.
        """
        for call in calls:
            self.event_log.append(self.thread_id, EventType.TOOL_CALL, call)

        ctx = self._context(context)
        return list(await asyncio.gather(*(self._execute(call, ctx) for call in calls)))

    # -------------------------------------------------------------------------
    # Approvals
    # -------------------------------------------------------------------------

    def respond_to_approval(
        self, tool_call_id: str, decision: ApprovalDecision | str
    ) -> ThreadEvent:
        """Record the user's answer to a pending approval request."""
        if self._event_approvals is not None:
            return self._event_approvals.respond(tool_call_id, decision)
        return self.event_log.append(
            self.thread_id,
            EventType.TOOL_APPROVAL_RESPONSE,
            ToolApprovalResponse(tool_call_id=tool_call_id, decision=ApprovalDecision(decision)),
        )

    def pending_approvals(self) -> list[ToolCall]:
        if self._event_approvals is None:
            return []
        return self._event_approvals.pending_approvals()

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def timeline(self, ephemeral_messages: Sequence[EphemeralMessage] = ()) -> Timeline:
        return self.stream.timeline(ephemeral_messages)

    def save(self, project_root: str) -> Path:
        path = save_thread(project_root, self.thread_id, self.events())
        self._log.info("Saved to %s", path)
        return path
