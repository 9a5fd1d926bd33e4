"""Shared test utilities for threadline tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel

from threadline.approval.types import ApprovalDecision
from threadline.threads.events import (
    EventType,
    ThreadEvent,
    ToolCall,
    ToolResult,
    create_tool_result,
)
from threadline.tools.tool import Tool, ToolAnnotations, ToolContext

BASE_TIME = datetime(2026, 1, 17, 12, 0, 0, tzinfo=timezone.utc)


def ts(seconds: float) -> datetime:
    """Timestamp ``seconds`` after BASE_TIME."""
    return BASE_TIME + timedelta(seconds=seconds)


class StepClock:
    """Deterministic clock for InMemoryEventLog: each call advances one second."""

    def __init__(self, start: datetime = BASE_TIME, step: float = 1.0) -> None:
        self._now = start
        self._step = timedelta(seconds=step)

    def __call__(self) -> datetime:
        now = self._now
        self._now += self._step
        return now


def create_event(
    event_id: str,
    event_type: EventType | str,
    data: Any = None,
    seconds: float = 0,
    thread_id: str = "tl_main",
) -> ThreadEvent:
    """Create a ThreadEvent stamped ``seconds`` after BASE_TIME."""
    return ThreadEvent(
        id=event_id,
        thread_id=thread_id,
        type=event_type,
        timestamp=ts(seconds),
        data=data,
    )


def create_call_event(
    event_id: str,
    call_id: str,
    name: str = "bash",
    arguments: dict[str, Any] | None = None,
    seconds: float = 0,
    thread_id: str = "tl_main",
) -> ThreadEvent:
    return create_event(
        event_id,
        EventType.TOOL_CALL,
        ToolCall(id=call_id, name=name, arguments=arguments or {}),
        seconds,
        thread_id,
    )


def create_result_event(
    event_id: str,
    call_id: str | None,
    text: str = "ok",
    seconds: float = 0,
    thread_id: str = "tl_main",
) -> ThreadEvent:
    return create_event(
        event_id,
        EventType.TOOL_RESULT,
        create_tool_result(text, call_id),
        seconds,
        thread_id,
    )


# -----------------------------------------------------------------------------
# Tools
# -----------------------------------------------------------------------------


class EchoArgs(BaseModel):
    text: str
    repeat: int = 1


class EchoTool(Tool):
    """Writes nothing, but is not annotated read-only."""

    name = "echo"
    description = "Echo text back"
    schema = EchoArgs

    def __init__(self) -> None:
        self.calls: list[EchoArgs] = []

    async def execute_validated(self, args: EchoArgs, context: ToolContext) -> ToolResult:
        self.calls.append(args)
        return create_tool_result(" ".join([args.text] * args.repeat))


class ReadArgs(BaseModel):
    path: str


class ReadFileTool(Tool):
    name = "file_read"
    description = "Read a file"
    annotations = ToolAnnotations(read_only_hint=True, title="Read file")
    schema = ReadArgs

    async def execute_validated(self, args: ReadArgs, context: ToolContext) -> ToolResult:
        return create_tool_result(f"contents of {args.path}")


class BashTool(Tool):
    name = "bash"
    description = "Run a shell command"
    annotations = ToolAnnotations(destructive_hint=True)

    def __init__(self) -> None:
        self.commands: list[str] = []

    async def execute_validated(
        self, args: dict[str, Any], context: ToolContext
    ) -> ToolResult:
        command = str(args.get("command", ""))
        self.commands.append(command)
        return create_tool_result(f"ran {command}")


class FailingTool(Tool):
    name = "explode"
    description = "Always raises"

    async def execute_validated(
        self, args: dict[str, Any], context: ToolContext
    ) -> ToolResult:
        raise RuntimeError("kaboom")


# -----------------------------------------------------------------------------
# Approval
# -----------------------------------------------------------------------------


class ScriptedApprovalCallback:
    """ApprovalCallback returning queued decisions and recording each request."""

    def __init__(self, *decisions: ApprovalDecision) -> None:
        self.decisions = list(decisions)
        self.requests: list[tuple[str, dict[str, Any], str | None]] = []

    async def request_approval(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        *,
        tool_call_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ApprovalDecision:
        self.requests.append((tool_name, arguments, tool_call_id))
        if not self.decisions:
            raise AssertionError(f"Unexpected approval request for {tool_name}")
        return self.decisions.pop(0)


class BrokenApprovalCallback:
    async def request_approval(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        *,
        tool_call_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ApprovalDecision:
        raise ConnectionError("approval service unavailable")


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Yield to the event loop until ``predicate()`` is true.

    Raises:
        asyncio.TimeoutError: If timeout is exceeded
    """

    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(poll(), timeout=timeout)
