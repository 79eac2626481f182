"""Status broadcaster: ordered, fire-and-forget execution events.

Usage::

    broadcaster = StatusBroadcaster()
    unsubscribe = broadcaster.on(lambda event: print(event.to_json()))
    sub = broadcaster.subscribe(maxsize=100)      # queue for another thread
    broadcaster.set_channel(JsonLinesChannel(Path("events.jsonl")))

    broadcaster.emit(EventType.TASK_STARTED, {"taskId": "t1"})

Emission never raises and never holds a lock while a callback runs. Listener
errors are logged, a full subscriber queue drops the event for that
subscriber, and channel messages that cannot be sent wait in a bounded
pending buffer until the next successful send.
"""

from __future__ import annotations

import json
import queue
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from rich.markup import escape

from autodev import log
from autodev.tasks.model import now_ms

DEFAULT_SUBSCRIBER_MAXSIZE = 100
DEFAULT_PENDING_LIMIT = 1000
DEFAULT_HISTORY_LIMIT = 500


class EventType(str, Enum):
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    PHASE_CHANGED = "phase_changed"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"


@dataclass(frozen=True)
class StatusEvent:
    type: EventType
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ms)
    sequence: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "payload": self.payload, "timestamp": self.timestamp}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class Channel(Protocol):
    """Outbound transport for serialized events (a socket, a file, ...)."""

    @property
    def connected(self) -> bool: ...

    def send(self, message: str) -> None: ...


class JsonLinesChannel:
    """Appends each event as one JSON line to *path*."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def connected(self) -> bool:
        return True

    def send(self, message: str) -> None:
        with self.path.open("a", encoding="utf-8") as f:
            f.write(message + "\n")


class Subscription:
    """A bounded event queue fed by the broadcaster."""

    def __init__(self, owner: StatusBroadcaster, maxsize: int) -> None:
        self._owner = owner
        self.queue: queue.Queue[StatusEvent] = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def get(self, timeout: float | None = None) -> StatusEvent | None:
        """Next event, or ``None`` if none arrives within *timeout*."""
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[StatusEvent]:
        events: list[StatusEvent] = []
        while True:
            try:
                events.append(self.queue.get_nowait())
            except queue.Empty:
                return events

    def close(self) -> None:
        self._owner.unsubscribe(self)


class StatusBroadcaster:
    """Translates orchestrator transitions into an ordered event stream.

    :meth:`publish` stamps and queues an event under a short lock.
    :meth:`dispatch` hands queued events to listeners, subscribers and the
    channel with no lock held, one thread at a time and in sequence order.
    Listeners run inline on the delivering thread; consumers that may be slow
    should use :meth:`subscribe` instead.
    """

    def __init__(
        self,
        *,
        channel: Channel | None = None,
        pending_limit: int = DEFAULT_PENDING_LIMIT,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self._lock = threading.RLock()
        self._idle = threading.Condition(self._lock)
        self._sequence = 0
        self._listeners: list[Callable[[StatusEvent], None]] = []
        self._subscriptions: list[Subscription] = []
        self._channel = channel
        self._outbox: deque[StatusEvent] = deque()
        self._dispatcher: int | None = None
        self._pending: deque[str] = deque(maxlen=pending_limit)
        self._history: deque[StatusEvent] = deque(maxlen=history_limit)

    # ── registration ─────────────────────────────────────────────

    def on(self, callback: Callable[[StatusEvent], None]) -> Callable[[], None]:
        """Register an inline listener; returns a function that removes it."""
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def subscribe(self, maxsize: int = DEFAULT_SUBSCRIBER_MAXSIZE) -> Subscription:
        sub = Subscription(self, maxsize)
        with self._lock:
            self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    def set_channel(self, channel: Channel | None) -> None:
        with self._lock:
            self._channel = channel
        if channel is not None:
            self.dispatch()

    # ── emission ─────────────────────────────────────────────────

    def emit(self, event_type: EventType | str, payload: dict[str, Any] | None = None) -> StatusEvent:
        """Publish one event and deliver everything queued so far."""
        event = self.publish(event_type, payload)
        self.dispatch()
        return event

    def publish(self, event_type: EventType | str, payload: dict[str, Any] | None = None) -> StatusEvent:
        """Stamp and queue an event without running any callback."""
        event_type = EventType(event_type)
        with self._lock:
            self._sequence += 1
            event = StatusEvent(type=event_type, payload=dict(payload or {}), sequence=self._sequence)
            self._history.append(event)
            self._outbox.append(event)
        return event

    def dispatch(self) -> None:
        """Deliver queued events in order.

        Returns at once when another thread (or an outer call on this one) is
        already delivering; that call picks up the new events.
        """
        with self._lock:
            if self._dispatcher is not None:
                return
            self._dispatcher = threading.get_ident()

        finished = False
        try:
            while True:
                with self._lock:
                    event = self._outbox.popleft() if self._outbox else None
                    listeners = list(self._listeners)
                    subscriptions = list(self._subscriptions)
                if event is not None:
                    self._deliver(event, listeners, subscriptions)
                    continue

                self._flush_pending()
                with self._lock:
                    if self._outbox:
                        continue
                    self._dispatcher = None
                    self._idle.notify_all()
                    finished = True
                    return
        finally:
            if not finished:
                with self._lock:
                    self._dispatcher = None
                    self._idle.notify_all()

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until every published event has been delivered.

        Returns ``False`` on timeout, or when called from inside a listener
        while events are still queued behind it.
        """
        deadline = time.monotonic() + timeout
        while True:
            self.dispatch()
            with self._lock:
                if not self._outbox and self._dispatcher is None:
                    return True
                if self._dispatcher == threading.get_ident():
                    return False
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                if self._dispatcher is not None:
                    self._idle.wait(remaining)

    @property
    def events(self) -> list[StatusEvent]:
        """Recent events, oldest first."""
        with self._lock:
            return list(self._history)

    @property
    def pending(self) -> int:
        """Messages waiting for the channel to (re)connect."""
        with self._lock:
            return len(self._pending)

    def _deliver(
        self,
        event: StatusEvent,
        listeners: list[Callable[[StatusEvent], None]],
        subscriptions: list[Subscription],
    ) -> None:
        for callback in listeners:
            try:
                callback(event)
            except Exception as e:
                log.warn(f"Event listener failed on {event.type.value}: {escape(str(e))}")

        for sub in subscriptions:
            try:
                sub.queue.put_nowait(event)
            except queue.Full:
                sub.dropped += 1

        message = event.to_json()
        with self._lock:
            self._pending.append(message)

    def _flush_pending(self) -> None:
        """Send buffered messages; only the delivering thread calls this."""
        channel = self._channel
        if channel is None or not channel.connected:
            return
        while True:
            with self._lock:
                if not self._pending:
                    return
                message = self._pending[0]
            try:
                channel.send(message)
            except Exception as e:
                log.debug(f"Status channel send failed, keeping {self.pending} queued: {escape(str(e))}")
                return
            with self._lock:
                if self._pending and self._pending[0] is message:
                    self._pending.popleft()
