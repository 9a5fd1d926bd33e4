"""Event log interface and an in-memory implementation.

The durable storage engine lives outside this package; anything that
satisfies EventLog can back a conversation. InMemoryEventLog is the reference
implementation used by tests and by short-lived sessions.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from threadline.logging import get_logger
from threadline.threads.events import EventType, ThreadEvent, utc_now

log = get_logger("threads")

DELEGATE_SEPARATOR = "."

EventListener = Callable[[ThreadEvent], None]


@runtime_checkable
class EventLog(Protocol):
    """Append-only, per-thread ordered event storage."""

    def append(self, thread_id: str, type: EventType | str, data: Any) -> ThreadEvent:
        """Append an event and return it."""
        ...

    def read(self, thread_id: str) -> list[ThreadEvent]:
        """Return a thread's events in append order."""
        ...

    def generate_id(self) -> str:
        """Return a fresh, unique event id."""
        ...

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Call ``listener`` with every appended event; returns an unsubscribe function."""
        ...


def generate_thread_id() -> str:
    """Generate a main thread id like ``tl_20260117_a1b2c3``."""
    return f"tl_{utc_now().strftime('%Y%m%d')}_{uuid.uuid4().hex[:6]}"


def is_delegate_thread(thread_id: str) -> bool:
    return DELEGATE_SEPARATOR in thread_id


def parent_thread_id(thread_id: str) -> str:
    """Return the top-level thread id for a (possibly delegated) thread."""
    return thread_id.split(DELEGATE_SEPARATOR, 1)[0]


class InMemoryEventLog:
    """Thread-safe in-memory EventLog.

    Listeners run synchronously after the event is stored, outside the lock,
    so a listener may append further events.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or utc_now
        self._threads: dict[str, list[ThreadEvent]] = {}
        self._listeners: list[EventListener] = []
        self._lock = threading.RLock()

    def generate_id(self) -> str:
        return f"evt_{uuid.uuid4().hex}"

    def create_delegate_thread_id(self, parent_id: str) -> str:
        """Return the next unused ``<parent>.<n>`` id for a delegated thread."""
        with self._lock:
            prefix = f"{parent_id}{DELEGATE_SEPARATOR}"
            existing = {
                tid[len(prefix):]
                for tid in self._threads
                if tid.startswith(prefix)
            }
            n = 1
            while str(n) in existing:
                n += 1
            delegate_id = f"{prefix}{n}"
            self._threads.setdefault(delegate_id, [])
            return delegate_id

    def append(self, thread_id: str, type: EventType | str, data: Any) -> ThreadEvent:
        event = ThreadEvent(
            id=self.generate_id(),
            thread_id=thread_id,
            type=EventType.coerce(type),
            timestamp=self._clock(),
            data=data,
        )
        with self._lock:
            self._threads.setdefault(thread_id, []).append(event)
            listeners = list(self._listeners)

        log.debug("Appended %s to %s (%s)", event.type, thread_id, event.id)
        self._notify(listeners, event)
        return event

    def load(self, events: Iterable[ThreadEvent]) -> None:
        """Insert already-recorded events (e.g. from a snapshot) without notifying."""
        with self._lock:
            for event in events:
                self._threads.setdefault(event.thread_id, []).append(event)

    def read(self, thread_id: str) -> list[ThreadEvent]:
        with self._lock:
            return list(self._threads.get(thread_id, ()))

    def read_with_delegates(self, thread_id: str) -> list[ThreadEvent]:
        """Return events of a thread and all threads delegated from it."""
        prefix = f"{thread_id}{DELEGATE_SEPARATOR}"
        with self._lock:
            events: list[ThreadEvent] = []
            for tid, thread_events in self._threads.items():
                if tid == thread_id or tid.startswith(prefix):
                    events.extend(thread_events)
            return events

    def thread_ids(self) -> list[str]:
        with self._lock:
            return list(self._threads)

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, listeners: list[EventListener], event: ThreadEvent) -> None:
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                log.exception("Event listener failed for %s", event.id)
