"""Timeline projection from thread events.

TimelineProjector folds a thread's append-only event log, plus the transient
messages of the turn currently streaming, into the Timeline a UI renders.

The fold pairs each TOOL_CALL with its TOOL_RESULT into one tool_execution
item stamped at the call's time. Results with no pending call surface as
system messages; calls still waiting for a result surface as tool executions
without a result. Malformed payloads never raise: a bad TOOL_CALL is skipped
and a bad TOOL_RESULT shows up as an orphaned result.

Two ways in:
- TimelineProjector takes the whole event list each time. AGENT_MESSAGE
  parsing is memoized per event id and the fold of each thread resumes where
  the previous call stopped when the new list extends the old one.
- StreamingTimeline is fed one event at a time and keeps its items sorted,
  so an in-order append costs the same at event 10 as at event 10,000.
Both caches are pure memoization and can be dropped at any time.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, MutableMapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime

from threadline.logging import TRACE, get_logger
from threadline.threads.events import (
    EventType,
    ThreadEvent,
    ToolCall,
    ToolResult,
    as_tool_call,
    as_tool_result,
    utc_now,
)
from threadline.threads.log import is_delegate_thread
from threadline.timeline.items import (
    AgentMessageItem,
    EphemeralMessage,
    EphemeralMessageItem,
    ProcessedItem,
    ProcessedThreads,
    SystemMessageItem,
    Timeline,
    TimelineItem,
    TimelineMetadata,
    ToolExecutionItem,
    UserMessageItem,
)
from threadline.timeline.thinking import extract_thinking_blocks

log = get_logger("timeline")

ORPHANED_PREFIX = "Tool result (orphaned): "
NON_TEXT_RESULT = "[non-text result]"

PendingCalls = dict[str, tuple[ThreadEvent, ToolCall]]
EventCache = MutableMapping[str, tuple[ProcessedItem, ...]]


@dataclass
class _FoldState:
    """Where the fold of one thread stopped last time."""

    count: int = 0
    last_id: str | None = None
    items: list[ProcessedItem] = field(default_factory=list)
    pending: PendingCalls = field(default_factory=dict)

    def extended_by(self, events: Sequence[ThreadEvent]) -> bool:
        # Logs are append-only, so matching the last folded id is enough
        if len(events) < self.count:
            return False
        return self.count == 0 or events[self.count - 1].id == self.last_id


def _message_text(data: object) -> str:
    if data is None:
        return ""
    return data if isinstance(data, str) else str(data)


def _by_timestamp(events: Iterable[ThreadEvent]) -> list[ThreadEvent]:
    # sorted() is stable, so equal timestamps keep insertion order
    return sorted(events, key=lambda e: e.timestamp)


def _user_item(event: ThreadEvent) -> UserMessageItem:
    return UserMessageItem(
        id=event.id,
        content=_message_text(event.data),
        timestamp=event.timestamp,
    )


def _system_item(event: ThreadEvent) -> SystemMessageItem:
    return SystemMessageItem(
        id=event.id,
        content=_message_text(event.data),
        timestamp=event.timestamp,
        original_event_type=EventType(event.type).value,
    )


def _orphaned_item(event: ThreadEvent, result: ToolResult | None) -> SystemMessageItem:
    first_text = result.first_text() if result is not None else None
    log.warning(
        "Orphaned tool result %s (call id %s)",
        event.id,
        result.id if result is not None else None,
    )
    return SystemMessageItem(
        id=event.id,
        content=ORPHANED_PREFIX + (first_text if first_text is not None else NON_TEXT_RESULT),
        timestamp=event.timestamp,
        original_event_type=EventType.TOOL_RESULT.value,
    )


def _is_message(item: TimelineItem) -> bool:
    return isinstance(item, (UserMessageItem, AgentMessageItem))


class TimelineProjector:
    """Builds Timelines from thread events for one conversation.

    Args:
        cache: Mapping used to memoize parsed AGENT_MESSAGE events by id.
            Defaults to a private dict; inject one to share or inspect it.
    """

    def __init__(self, cache: EventCache | None = None) -> None:
        self._event_cache: EventCache = cache if cache is not None else {}
        self._fold_states: dict[str, _FoldState] = {}

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def process_threads(self, events: Sequence[ThreadEvent]) -> Timeline:
        """Build the main thread's timeline from a mix of thread events."""
        groups = self._group_events_by_thread(events)
        main_id = self._main_thread_id(groups)
        if main_id is None:
            return self.build_timeline([], [])
        items = self._process_thread_incremental(main_id, groups[main_id])
        return self.build_timeline(items, [])

    def process_all_threads(self, events: Sequence[ThreadEvent]) -> ProcessedThreads:
        """Build the main timeline and one timeline per delegated thread."""
        groups = self._group_events_by_thread(events)
        main_id = self._main_thread_id(groups)

        main = self.build_timeline(
            self._process_thread_incremental(main_id, groups[main_id]) if main_id else [],
            [],
        )
        delegates = {
            thread_id: self.build_timeline(
                self._process_thread_incremental(thread_id, thread_events), []
            )
            for thread_id, thread_events in groups.items()
            if thread_id != main_id
        }
        log.debug(
            "Processed %d events: main=%s (%d items), %d delegate threads",
            len(events),
            main_id,
            len(main.items),
            len(delegates),
        )
        return ProcessedThreads(main=main, delegates=delegates)

    def process_events(self, events: Sequence[ThreadEvent]) -> list[ProcessedItem]:
        """Fold a single thread's events into timeline items."""
        thread_id = events[0].thread_id if events else "main"
        return self._process_thread_incremental(thread_id, _by_timestamp(events))

    def process_thread(
        self,
        events: Sequence[ThreadEvent],
        ephemeral_messages: Sequence[EphemeralMessage] = (),
    ) -> Timeline:
        """Fold one thread and merge in the streaming messages."""
        return self.build_timeline(
            self.process_events(events),
            self.process_ephemeral_events(ephemeral_messages),
        )

    def process_ephemeral_events(
        self, messages: Sequence[EphemeralMessage]
    ) -> list[EphemeralMessageItem]:
        """Map streaming messages 1:1 to ephemeral items, content untouched."""
        return [
            EphemeralMessageItem(
                message_type=msg.type,
                content=msg.content,
                timestamp=msg.timestamp,
            )
            for msg in messages
        ]

    def build_timeline(
        self,
        processed: Sequence[ProcessedItem],
        ephemeral: Sequence[EphemeralMessageItem],
    ) -> Timeline:
        """Merge processed and ephemeral items in chronological order."""
        items: list[TimelineItem] = sorted(
            [*processed, *ephemeral], key=lambda item: item.timestamp
        )

        last_activity: datetime = (
            max(item.timestamp for item in items) if items else utc_now()
        )

        return Timeline(
            items=items,
            metadata=TimelineMetadata(
                event_count=len(processed),
                message_count=sum(1 for item in processed if _is_message(item)),
                last_activity=last_activity,
            ),
        )

    def clear_cache(self) -> None:
        """Drop all memoized parsing and fold state."""
        self._event_cache.clear()
        self._fold_states.clear()

    # -------------------------------------------------------------------------
    # Thread grouping
    # -------------------------------------------------------------------------

    def _group_events_by_thread(
        self, events: Iterable[ThreadEvent]
    ) -> dict[str, list[ThreadEvent]]:
        grouped: dict[str, list[ThreadEvent]] = {}
        for event in events:
            grouped.setdefault(event.thread_id, []).append(event)

        ordered = {tid: _by_timestamp(evts) for tid, evts in grouped.items()}
        return dict(sorted(ordered.items(), key=lambda kv: kv[1][0].timestamp))

    def _main_thread_id(self, groups: dict[str, list[ThreadEvent]]) -> str | None:
        if len(groups) == 1:
            return next(iter(groups))
        for thread_id in groups:
            if not is_delegate_thread(thread_id):
                return thread_id
        if groups:
            log.warning("No main thread among %d delegate threads", len(groups))
        return None

    # -------------------------------------------------------------------------
    # Folding
    # -------------------------------------------------------------------------

    def _process_thread_incremental(
        self, thread_id: str, events: list[ThreadEvent]
    ) -> list[ProcessedItem]:
        state = self._fold_states.get(thread_id)
        if state is None or not state.extended_by(events):
            state = _FoldState()
            self._fold_states[thread_id] = state

        start = state.count
        self._fold(events[start:], state.items, state.pending)
        state.count = len(events)
        state.last_id = events[-1].id if events else None

        if log.isEnabledFor(TRACE):
            log.log(
                TRACE,
                "Folded %s: %d new of %d events, %d pending calls",
                thread_id,
                len(events) - start,
                len(events),
                len(state.pending),
            )

        # Calls still waiting for a result
        in_flight = [
            ToolExecutionItem(call_id=call.id, call=call, timestamp=event.timestamp)
            for event, call in state.pending.values()
        ]
        return state.items + in_flight

    def _fold(
        self,
        events: Iterable[ThreadEvent],
        items: list[ProcessedItem],
        pending: PendingCalls,
    ) -> None:
        for event in events:
            match event.type:
                case EventType.USER_MESSAGE:
                    items.append(_user_item(event))

                case EventType.AGENT_MESSAGE:
                    items.extend(self._agent_message_items(event))

                case (
                    EventType.SYSTEM_PROMPT
                    | EventType.USER_SYSTEM_PROMPT
                    | EventType.LOCAL_SYSTEM_MESSAGE
                ):
                    items.append(_system_item(event))

                case EventType.TOOL_CALL:
                    call = as_tool_call(event.data)
                    if call is None:
                        log.warning("Malformed TOOL_CALL %s skipped", event.id)
                        continue
                    pending[call.id] = (event, call)

                case EventType.TOOL_RESULT:
                    items.append(self._tool_result_item(event, pending))

                case _:
                    # Approval events and unknown types have no timeline item
                    pass

    def _agent_message_items(self, event: ThreadEvent) -> tuple[ProcessedItem, ...]:
        cached = self._event_cache.get(event.id)
        if cached is not None:
            return cached

        extraction = extract_thinking_blocks(_message_text(event.data))
        items: tuple[ProcessedItem, ...] = ()
        if extraction.content.strip():
            items = (
                AgentMessageItem(
                    id=event.id,
                    content=extraction.content,
                    timestamp=event.timestamp,
                    thinking=extraction.blocks,
                ),
            )

        self._event_cache[event.id] = items
        return items

    def _tool_result_item(self, event: ThreadEvent, pending: PendingCalls) -> ProcessedItem:
        result = as_tool_result(event.data)
        entry = pending.pop(result.id, None) if result and result.id else None

        if entry is not None and result is not None:
            call_event, call = entry
            return ToolExecutionItem(
                call_id=call.id,
                call=call,
                timestamp=call_event.timestamp,
                result=result,
            )
        return _orphaned_item(event, result)


@dataclass
class StreamingStats:
    """Counters for how appended events were folded."""

    appended: int = 0
    fast_path: int = 0
    refolds: int = 0


class StreamingTimeline:
    """One thread's Timeline, kept current one appended event at a time.

    An event no older than the last folded one is folded in place: its item
    goes on the end of the sorted item list, and a TOOL_RESULT swaps the
    in-flight tool execution for the completed one by index. An event that
    arrives out of order makes the whole thread refold. Events already seen
    (by id) are ignored.

    Safe to feed from an EventLog listener on any thread.

    Args:
        projector: Supplies the AGENT_MESSAGE parse cache; a private one is
            created when omitted.
    """

    def __init__(self, projector: TimelineProjector | None = None) -> None:
        self._projector = projector or TimelineProjector()
        self._lock = threading.Lock()
        self.stats = StreamingStats()
        self._clear()

    def _clear(self) -> None:
        self._events: list[ThreadEvent] = []
        self._seen: set[str] = set()
        self._items: list[ProcessedItem] = []
        self._in_flight: dict[str, int] = {}
        self._message_count = 0
        self._last_timestamp: datetime | None = None

    def __len__(self) -> int:
        return len(self._items)

    def reset(self) -> None:
        with self._lock:
            self._clear()
            self.stats = StreamingStats()

    def append_event(self, event: ThreadEvent) -> None:
        with self._lock:
            if event.id in self._seen:
                return
            self._seen.add(event.id)
            self._events.append(event)
            self.stats.appended += 1

            if self._last_timestamp is None or event.timestamp >= self._last_timestamp:
                self.stats.fast_path += 1
                self._fold_event(event)
                return

            self.stats.refolds += 1
            log.debug(
                "Event %s arrived out of order, refolding %d events",
                event.id,
                len(self._events),
            )
            self._refold()

    def load_events(self, events: Iterable[ThreadEvent]) -> None:
        """Bulk-add recorded events (e.g. on resume) with a single refold."""
        with self._lock:
            added = 0
            for event in events:
                if event.id not in self._seen:
                    self._seen.add(event.id)
                    self._events.append(event)
                    added += 1
            if added:
                self._refold()
            log.debug("Loaded %d events, %d items", added, len(self._items))

    def timeline(self, ephemeral_messages: Sequence[EphemeralMessage] = ()) -> Timeline:
        with self._lock:
            items = list(self._items)
            message_count = self._message_count

        if ephemeral_messages:
            return self._projector.build_timeline(
                items,
                self._projector.process_ephemeral_events(ephemeral_messages),
            )

        return Timeline(
            items=items,
            metadata=TimelineMetadata(
                event_count=len(items),
                message_count=message_count,
                last_activity=items[-1].timestamp if items else utc_now(),
            ),
        )

    def _refold(self) -> None:
        # list.sort is stable: equal timestamps keep arrival order
        self._events.sort(key=lambda e: e.timestamp)
        self._items = []
        self._in_flight = {}
        self._message_count = 0
        self._last_timestamp = None
        for event in self._events:
            self._fold_event(event)

    def _add(self, item: ProcessedItem) -> None:
        self._items.append(item)
        if _is_message(item):
            self._message_count += 1

    def _fold_event(self, event: ThreadEvent) -> None:
        self._last_timestamp = event.timestamp

        match event.type:
            case EventType.USER_MESSAGE:
                self._add(_user_item(event))

            case EventType.AGENT_MESSAGE:
                for item in self._projector._agent_message_items(event):
                    self._add(item)

            case (
                EventType.SYSTEM_PROMPT
                | EventType.USER_SYSTEM_PROMPT
                | EventType.LOCAL_SYSTEM_MESSAGE
            ):
                self._add(_system_item(event))

            case EventType.TOOL_CALL:
                call = as_tool_call(event.data)
                if call is None:
                    log.warning("Malformed TOOL_CALL %s skipped", event.id)
                    return
                self._in_flight[call.id] = len(self._items)
                self._add(ToolExecutionItem(call_id=call.id, call=call, timestamp=event.timestamp))

            case EventType.TOOL_RESULT:
                result = as_tool_result(event.data)
                index = self._in_flight.pop(result.id, None) if result and result.id else None
                if index is None or result is None:
                    self._add(_orphaned_item(event, result))
                    return
                self._items[index] = replace(self._items[index], result=result)

            case _:
                pass
