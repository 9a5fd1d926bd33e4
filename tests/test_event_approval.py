"""Tests for event-backed interactive approval."""

from __future__ import annotations

import asyncio

import pytest

from threadline.approval.events import EventApprovalCallback
from threadline.approval.types import (
    ApprovalCancelledError,
    ApprovalDecision,
    ToolApprovalResponse,
    ToolCallNotFoundError,
)
from threadline.threads.events import EventType, ToolCall, create_error_result
from threadline.threads.log import InMemoryEventLog
from tests.utils import wait_until

THREAD = "tl_main"


def record_call(
    event_log: InMemoryEventLog, call_id: str, name: str = "bash", **arguments
) -> ToolCall:
    call = ToolCall(id=call_id, name=name, arguments=arguments)
    event_log.append(THREAD, EventType.TOOL_CALL, call)
    return call


def events_of(event_log: InMemoryEventLog, event_type: EventType) -> list:
    return [e for e in event_log.read(THREAD) if e.type == event_type]


@pytest.fixture
def approvals(event_log: InMemoryEventLog):
    callback = EventApprovalCallback(event_log, THREAD)
    yield callback
    callback.close()


class TestRequestApproval:
    """Appending requests and resolving on responses."""

    @pytest.mark.asyncio
    async def test_request_then_respond(
        self, event_log: InMemoryEventLog, approvals: EventApprovalCallback
    ) -> None:
        record_call(event_log, "c1", command="ls")

        task = asyncio.create_task(
            approvals.request_approval("bash", {"command": "ls"}, tool_call_id="c1")
        )
        await wait_until(lambda: approvals.is_waiting("c1"))

        requests = events_of(event_log, EventType.TOOL_APPROVAL_REQUEST)
        assert len(requests) == 1
        assert requests[0].data.tool_call_id == "c1"
        assert [call.id for call in approvals.pending_approvals()] == ["c1"]

        approvals.respond("c1", ApprovalDecision.ALLOW_SESSION)

        assert await task is ApprovalDecision.ALLOW_SESSION
        assert not approvals.is_waiting("c1")
        assert approvals.pending_approvals() == []

    @pytest.mark.asyncio
    async def test_response_appended_directly_to_log(
        self, event_log: InMemoryEventLog, approvals: EventApprovalCallback
    ) -> None:
        record_call(event_log, "c1")
        task = asyncio.create_task(approvals.request_approval("bash", {}, tool_call_id="c1"))
        await wait_until(lambda: approvals.is_waiting("c1"))

        event_log.append(
            THREAD,
            EventType.TOOL_APPROVAL_RESPONSE,
            {"tool_call_id": "c1", "decision": "deny"},
        )
        assert await task is ApprovalDecision.DENY

    @pytest.mark.asyncio
    async def test_tool_call_not_found(self, approvals: EventApprovalCallback) -> None:
        with pytest.raises(ToolCallNotFoundError, match="could not find TOOL_CALL event for bash"):
            await approvals.request_approval("bash", {"command": "ls"})

    @pytest.mark.asyncio
    async def test_explicit_id_must_match(
        self, event_log: InMemoryEventLog, approvals: EventApprovalCallback
    ) -> None:
        record_call(event_log, "c1")
        with pytest.raises(ToolCallNotFoundError):
            await approvals.request_approval("bash", {}, tool_call_id="c2")

    @pytest.mark.asyncio
    async def test_match_by_name_and_arguments(
        self, event_log: InMemoryEventLog, approvals: EventApprovalCallback
    ) -> None:
        record_call(event_log, "c1", command="ls")
        record_call(event_log, "c2", command="pwd")

        task = asyncio.create_task(approvals.request_approval("bash", {"command": "pwd"}))
        await wait_until(lambda: approvals.is_waiting("c2"))
        assert not approvals.is_waiting("c1")

        approvals.respond("c2", "allow_once")
        assert await task is ApprovalDecision.ALLOW_ONCE


class TestIdempotentResume:
    """Re-entering after a restart reuses what the log already holds."""

    @pytest.mark.asyncio
    async def test_existing_response_returned(
        self, event_log: InMemoryEventLog, approvals: EventApprovalCallback
    ) -> None:
        record_call(event_log, "c1")
        event_log.append(
            THREAD,
            EventType.TOOL_APPROVAL_RESPONSE,
            ToolApprovalResponse(tool_call_id="c1", decision=ApprovalDecision.ALLOW_ONCE),
        )

        decision = await approvals.request_approval("bash", {}, tool_call_id="c1")

        assert decision is ApprovalDecision.ALLOW_ONCE
        assert events_of(event_log, EventType.TOOL_APPROVAL_REQUEST) == []
        assert not approvals.is_waiting("c1")

    @pytest.mark.asyncio
    async def test_existing_request_not_duplicated(
        self, event_log: InMemoryEventLog, approvals: EventApprovalCallback
    ) -> None:
        record_call(event_log, "c1")
        event_log.append(THREAD, EventType.TOOL_APPROVAL_REQUEST, {"tool_call_id": "c1"})

        task = asyncio.create_task(approvals.request_approval("bash", {}, tool_call_id="c1"))
        await wait_until(lambda: approvals.is_waiting("c1"))
        assert len(events_of(event_log, EventType.TOOL_APPROVAL_REQUEST)) == 1

        approvals.respond("c1", "deny")
        assert await task is ApprovalDecision.DENY

    @pytest.mark.asyncio
    async def test_concurrent_requests_for_same_call(
        self, event_log: InMemoryEventLog, approvals: EventApprovalCallback
    ) -> None:
        record_call(event_log, "c1")
        first = asyncio.create_task(approvals.request_approval("bash", {}, tool_call_id="c1"))
        second = asyncio.create_task(approvals.request_approval("bash", {}, tool_call_id="c1"))
        await wait_until(lambda: approvals.is_waiting("c1"))
        await asyncio.sleep(0)

        assert len(events_of(event_log, EventType.TOOL_APPROVAL_REQUEST)) == 1

        approvals.respond("c1", "allow_once")
        assert await first is ApprovalDecision.ALLOW_ONCE
        assert await second is ApprovalDecision.ALLOW_ONCE

    @pytest.mark.asyncio
    async def test_second_response_ignored(
        self, event_log: InMemoryEventLog, approvals: EventApprovalCallback
    ) -> None:
        record_call(event_log, "c1")
        first = approvals.respond("c1", "deny")
        second = approvals.respond("c1", "allow_session")

        assert second is first
        assert len(events_of(event_log, EventType.TOOL_APPROVAL_RESPONSE)) == 1
        assert await approvals.request_approval("bash", {}, tool_call_id="c1") is (
            ApprovalDecision.DENY
        )


class TestConcurrentApprovals:
    """Independent calls never block each other."""

    @pytest.mark.asyncio
    async def test_out_of_order_resolution(
        self, event_log: InMemoryEventLog, approvals: EventApprovalCallback
    ) -> None:
        record_call(event_log, "c1", command="make")
        record_call(event_log, "c2", name="file_write", path="a.txt")

        t1 = asyncio.create_task(
            approvals.request_approval("bash", {"command": "make"}, tool_call_id="c1")
        )
        t2 = asyncio.create_task(
            approvals.request_approval("file_write", {"path": "a.txt"}, tool_call_id="c2")
        )
        await wait_until(lambda: approvals.is_waiting("c1") and approvals.is_waiting("c2"))

        approvals.respond("c2", "allow_once")
        assert await t2 is ApprovalDecision.ALLOW_ONCE
        assert not t1.done()

        approvals.respond("c1", "deny")
        assert await t1 is ApprovalDecision.DENY

    @pytest.mark.asyncio
    async def test_identical_calls_without_id(
        self,
        event_log: InMemoryEventLog,
        approvals: EventApprovalCallback,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        record_call(event_log, "c1", command="ls")
        record_call(event_log, "c2", command="ls")

        with caplog.at_level("WARNING", logger="threadline"):
            t_newest = asyncio.create_task(approvals.request_approval("bash", {"command": "ls"}))
            await wait_until(lambda: approvals.is_waiting("c2"))
            t_older = asyncio.create_task(approvals.request_approval("bash", {"command": "ls"}))
            await wait_until(lambda: approvals.is_waiting("c1"))

        assert "identical bash calls" in caplog.text
        requested = [e.data.tool_call_id for e in events_of(event_log, EventType.TOOL_APPROVAL_REQUEST)]
        assert requested == ["c2", "c1"]

        approvals.respond("c1", "deny")
        approvals.respond("c2", "allow_once")
        assert await t_older is ApprovalDecision.DENY
        assert await t_newest is ApprovalDecision.ALLOW_ONCE

    @pytest.mark.asyncio
    async def test_response_from_other_thread(
        self, event_log: InMemoryEventLog, approvals: EventApprovalCallback
    ) -> None:
        record_call(event_log, "c1")
        task = asyncio.create_task(approvals.request_approval("bash", {}, tool_call_id="c1"))
        await wait_until(lambda: approvals.is_waiting("c1"))

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, approvals.respond, "c1", "allow_once")

        assert await asyncio.wait_for(task, timeout=1.0) is ApprovalDecision.ALLOW_ONCE

    @pytest.mark.asyncio
    async def test_other_threads_ignored(
        self, event_log: InMemoryEventLog, approvals: EventApprovalCallback
    ) -> None:
        record_call(event_log, "c1")
        task = asyncio.create_task(approvals.request_approval("bash", {}, tool_call_id="c1"))
        await wait_until(lambda: approvals.is_waiting("c1"))

        event_log.append(
            "tl_other",
            EventType.TOOL_APPROVAL_RESPONSE,
            {"tool_call_id": "c1", "decision": "allow_once"},
        )
        await asyncio.sleep(0)
        assert not task.done()

        approvals.respond("c1", "deny")
        assert await task is ApprovalDecision.DENY


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_event(
        self, event_log: InMemoryEventLog, approvals: EventApprovalCallback
    ) -> None:
        record_call(event_log, "c1")
        cancel = asyncio.Event()
        task = asyncio.create_task(
            approvals.request_approval("bash", {}, tool_call_id="c1", cancel_event=cancel)
        )
        await wait_until(lambda: approvals.is_waiting("c1"))

        cancel.set()
        with pytest.raises(ApprovalCancelledError):
            await task

        # The request stays on record for a later resume
        assert [call.id for call in approvals.pending_approvals()] == ["c1"]

        # Until the call is closed with a result
        event_log.append(THREAD, EventType.TOOL_RESULT, create_error_result("cancelled", "c1"))
        assert approvals.pending_approvals() == []

    @pytest.mark.asyncio
    async def test_cancel_by_id(
        self, event_log: InMemoryEventLog, approvals: EventApprovalCallback
    ) -> None:
        record_call(event_log, "c1")
        task = asyncio.create_task(approvals.request_approval("bash", {}, tool_call_id="c1"))
        await wait_until(lambda: approvals.is_waiting("c1"))

        assert approvals.cancel("c1") is True
        with pytest.raises(ApprovalCancelledError):
            await task
        assert approvals.cancel("c1") is False

    @pytest.mark.asyncio
    async def test_close_rejects_waiters(self, event_log: InMemoryEventLog) -> None:
        approvals = EventApprovalCallback(event_log, THREAD)
        record_call(event_log, "c1")
        task = asyncio.create_task(approvals.request_approval("bash", {}, tool_call_id="c1"))
        await wait_until(lambda: approvals.is_waiting("c1"))

        approvals.close()
        with pytest.raises(ApprovalCancelledError):
            await task

    @pytest.mark.asyncio
    async def test_resume_after_cancel(
        self, event_log: InMemoryEventLog, approvals: EventApprovalCallback
    ) -> None:
        record_call(event_log, "c1")
        task = asyncio.create_task(approvals.request_approval("bash", {}, tool_call_id="c1"))
        await wait_until(lambda: approvals.is_waiting("c1"))
        approvals.cancel("c1")
        with pytest.raises(ApprovalCancelledError):
            await task

        approvals.respond("c1", "allow_once")
        decision = await approvals.request_approval("bash", {}, tool_call_id="c1")
        assert decision is ApprovalDecision.ALLOW_ONCE
        assert len(events_of(event_log, EventType.TOOL_APPROVAL_REQUEST)) == 1
