"""Event-backed interactive approval.

Approval requests and responses are ordinary thread events, so a decision is
part of the replayable record:

    TOOL_CALL{id}  ->  TOOL_APPROVAL_REQUEST{tool_call_id}
                   ->  TOOL_APPROVAL_RESPONSE{tool_call_id, decision}

EventApprovalCallback appends the request and parks the caller on a future
keyed by tool call id. Whoever appends the matching response event (a UI,
an API handler, a test) resolves it through the log subscription. Each call id
has its own future, so unrelated calls never block each other.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import Any

from threadline.approval.types import (
    ApprovalCancelledError,
    ApprovalDecision,
    ToolApprovalRequest,
    ToolApprovalResponse,
    ToolCallNotFoundError,
    approval_call_id,
    approval_decision,
)
from threadline.logging import get_logger
from threadline.threads.events import (
    EventType,
    ThreadEvent,
    ToolCall,
    as_tool_call,
    as_tool_result,
)
from threadline.threads.log import EventLog

log = get_logger("approval.events")


def _settle(future: asyncio.Future[ApprovalDecision], decision: ApprovalDecision) -> None:
    if not future.done():
        future.set_result(decision)


def _fail(future: asyncio.Future[ApprovalDecision], error: BaseException) -> None:
    if not future.done():
        future.set_exception(error)


def _in_loop_thread(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False


class EventApprovalCallback:
    """ApprovalCallback that round-trips through TOOL_APPROVAL_* events."""

    def __init__(self, event_log: EventLog, thread_id: str) -> None:
        self._event_log = event_log
        self._thread_id = thread_id
        self._waiters: dict[str, asyncio.Future[ApprovalDecision]] = {}
        self._wait_counts: Counter[str] = Counter()
        self._unsubscribe = event_log.subscribe(self._on_event)

    @property
    def thread_id(self) -> str:
        return self._thread_id

    def close(self) -> None:
        """Stop listening to the log and reject anything still waiting."""
        self._unsubscribe()
        self.cancel_all()

    # -------------------------------------------------------------------------
    # ApprovalCallback
    # -------------------------------------------------------------------------

    async def request_approval(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        *,
        tool_call_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ApprovalDecision:
        """Ask for approval of a recorded tool call and wait for the answer.

        Resuming is idempotent: an existing response is returned directly and
        an existing request is not appended again.

        Raises:
            ToolCallNotFoundError: No matching TOOL_CALL event in the thread.
            ApprovalCancelledError: The wait was aborted.
        """
        events = self._event_log.read(self._thread_id)
        call = self._find_tool_call(events, tool_name, arguments, tool_call_id)
        if call is None:
            raise ToolCallNotFoundError(tool_name)

        # Nothing below awaits until the request is appended, so the
        # check-then-append is atomic per call id on this event loop.
        future = self._waiters.get(call.id)
        if future is None or future.done():
            future = asyncio.get_running_loop().create_future()
            self._waiters[call.id] = future

        # Re-read after registering so a response appended from another
        # thread in between is not missed.
        events = self._event_log.read(self._thread_id)
        existing = self._find_response(events, call.id)
        if existing is not None:
            log.debug("Reusing recorded decision %s for %s", existing.value, call.id)
            self._forget(call.id, future)
            return existing

        if not self._has_request(events, call.id):
            self._event_log.append(
                self._thread_id,
                EventType.TOOL_APPROVAL_REQUEST,
                ToolApprovalRequest(tool_call_id=call.id),
            )
            log.debug("Approval requested for %s (%s)", call.name, call.id)

        return await self._wait(call.id, future, cancel_event)

    # -------------------------------------------------------------------------
    # Responding and inspection
    # -------------------------------------------------------------------------

    def respond(self, tool_call_id: str, decision: ApprovalDecision | str) -> ThreadEvent:
        """Record a decision for a pending request.

        A second response for the same call is not recorded; the first one
        stands and is returned.
        """
        decision = ApprovalDecision(decision)
        for event in reversed(self._event_log.read(self._thread_id)):
            if (
                event.type == EventType.TOOL_APPROVAL_RESPONSE
                and approval_call_id(event.data) == tool_call_id
            ):
                log.warning("Approval for %s already answered, ignoring", tool_call_id)
                return event

        return self._event_log.append(
            self._thread_id,
            EventType.TOOL_APPROVAL_RESPONSE,
            ToolApprovalResponse(tool_call_id=tool_call_id, decision=decision),
        )

    def pending_approvals(self) -> list[ToolCall]:
        """Tool calls with an approval request but no response or result yet, oldest first."""
        events = self._event_log.read(self._thread_id)
        calls: dict[str, ToolCall] = {}
        requested: list[str] = []
        answered: set[str] = set()

        for event in events:
            if event.type == EventType.TOOL_CALL:
                call = as_tool_call(event.data)
                if call is not None:
                    calls[call.id] = call
            elif event.type == EventType.TOOL_APPROVAL_REQUEST:
                call_id = approval_call_id(event.data)
                if call_id is not None and call_id not in requested:
                    requested.append(call_id)
            elif event.type == EventType.TOOL_APPROVAL_RESPONSE:
                call_id = approval_call_id(event.data)
                if call_id is not None:
                    answered.add(call_id)
            elif event.type == EventType.TOOL_RESULT:
                result = as_tool_result(event.data)
                if result is not None and result.id is not None:
                    answered.add(result.id)

        return [calls[cid] for cid in requested if cid not in answered and cid in calls]

    def is_waiting(self, tool_call_id: str) -> bool:
        future = self._waiters.get(tool_call_id)
        return future is not None and not future.done()

    def cancel(self, tool_call_id: str) -> bool:
        """Reject the wait for one call. Returns True if something was waiting."""
        future = self._waiters.pop(tool_call_id, None)
        if future is None or future.done():
            return False
        self._dispatch(future, _fail, ApprovalCancelledError(tool_call_id))
        return True

    def cancel_all(self) -> None:
        for tool_call_id in list(self._waiters):
            self.cancel(tool_call_id)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _wait(
        self,
        call_id: str,
        future: asyncio.Future[ApprovalDecision],
        cancel_event: asyncio.Event | None,
    ) -> ApprovalDecision:
        # asyncio.wait never cancels the shared future, so another caller
        # waiting on the same call id is unaffected if this one is cancelled.
        pending: set[asyncio.Future[Any]] = {future}
        cancel_task: asyncio.Task[Any] | None = None
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            pending.add(cancel_task)

        self._wait_counts[call_id] += 1
        try:
            await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if cancel_task is not None:
                cancel_task.cancel()
            self._wait_counts[call_id] -= 1
            if self._wait_counts[call_id] <= 0:
                del self._wait_counts[call_id]
                if not future.done():
                    # Last waiter gone; a later resume registers a new future
                    self._forget(call_id, future)
                    future.cancel()

        if future.done() and not future.cancelled():
            self._forget(call_id, future)
            return future.result()

        log.debug("Approval wait for %s aborted", call_id)
        raise ApprovalCancelledError(call_id)

    def _forget(self, call_id: str, future: asyncio.Future[ApprovalDecision]) -> None:
        if self._waiters.get(call_id) is future:
            del self._waiters[call_id]

    def _dispatch(self, future: asyncio.Future[ApprovalDecision], fn: Any, value: Any) -> None:
        loop = future.get_loop()
        if _in_loop_thread(loop):
            fn(future, value)
        else:
            loop.call_soon_threadsafe(fn, future, value)

    def _on_event(self, event: ThreadEvent) -> None:
        if event.thread_id != self._thread_id:
            return
        if event.type != EventType.TOOL_APPROVAL_RESPONSE:
            return

        call_id = approval_call_id(event.data)
        decision = approval_decision(event.data)
        if call_id is None or decision is None:
            log.warning("Malformed approval response %s ignored", event.id)
            return

        future = self._waiters.pop(call_id, None)
        if future is not None and not future.done():
            log.debug("Approval for %s resolved: %s", call_id, decision.value)
            self._dispatch(future, _settle, decision)

    def _find_tool_call(
        self,
        events: list[ThreadEvent],
        tool_name: str,
        arguments: dict[str, Any],
        tool_call_id: str | None,
    ) -> ToolCall | None:
        calls = [
            call
            for call in (as_tool_call(e.data) for e in events if e.type == EventType.TOOL_CALL)
            if call is not None and call.name == tool_name
        ]

        if tool_call_id is not None:
            for call in calls:
                if call.id == tool_call_id:
                    return call
            return None

        # Fallback: match by name and structural argument equality, newest
        # first, preferring calls nobody has answered or is waiting on.
        matches = [call for call in reversed(calls) if call.arguments == arguments]
        if not matches:
            return None

        answered = {
            approval_call_id(e.data)
            for e in events
            if e.type == EventType.TOOL_APPROVAL_RESPONSE
        }
        open_matches = [
            call
            for call in matches
            if call.id not in answered and not self.is_waiting(call.id)
        ]
        if len(open_matches) > 1:
            log.warning(
                "%d identical %s calls awaiting approval; matching %s. "
                "Pass tool_call_id to disambiguate.",
                len(open_matches),
                tool_name,
                open_matches[0].id,
            )
        return open_matches[0] if open_matches else matches[0]

    @staticmethod
    def _find_response(events: list[ThreadEvent], call_id: str) -> ApprovalDecision | None:
        for event in events:
            if (
                event.type == EventType.TOOL_APPROVAL_RESPONSE
                and approval_call_id(event.data) == call_id
            ):
                decision = approval_decision(event.data)
                if decision is not None:
                    return decision
        return None

    @staticmethod
    def _has_request(events: list[ThreadEvent], call_id: str) -> bool:
        return any(
            event.type == EventType.TOOL_APPROVAL_REQUEST
            and approval_call_id(event.data) == call_id
            for event in events
        )
