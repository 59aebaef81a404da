"""In-process pub-sub shared by every backend.

Provides bounded, closable subscriptions, a per-kind registry and ordered
non-blocking fan-out.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
import time
from collections import deque
from collections.abc import Callable, Iterable, Iterator, Sequence
from typing import Generic, TypeVar

from ..core.config import WatchOptions
from ..core.errors import KindRequiredError, StoreClosedError
from ..core.types import Event, EventType

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription(Generic[T]):
    """A live registration receiving one kind's events.

    Args:
        kind: Kind this subscription is scoped to
        options: Delivery options (filter, buffer size, replay)
        on_cancel: Called once with the subscription when cancel() is invoked

    Invariants:
        - The buffer never holds more than options.buffer_size events
        - offer() never blocks; a full buffer drops the event
        - After close, buffered events can still be read; then get() returns None
    """

    def __init__(
        self,
        kind: str,
        options: WatchOptions,
        on_cancel: Callable[[Subscription[T]], None] | None = None,
    ):
        self.kind = kind
        self.options = options
        self._on_cancel = on_cancel
        self._buffer: deque[Event[T]] = deque()
        self._cond = threading.Condition(threading.Lock())
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def accepts(self, event_type: EventType) -> bool:
        return self.options.accepts(event_type)

    def offer(self, event: Event[T]) -> bool:
        """Enqueue without blocking. Returns False if dropped or closed."""
        with self._cond:
            if self._closed:
                return False
            if len(self._buffer) >= self.options.buffer_size:
                self.dropped += 1
                logger.debug(
                    f"Dropped {event.event_type.value} event for {event.kind}/{event.key}: buffer full"
                )
                return False
            self._buffer.append(event)
            self._cond.notify()
            return True

    def put(self, event: Event[T]) -> bool:
        """Enqueue, waiting for space. Returns False once the subscription is closed."""
        with self._cond:
            while not self._closed and len(self._buffer) >= self.options.buffer_size:
                self._cond.wait()
            if self._closed:
                return False
            self._buffer.append(event)
            self._cond.notify_all()
            return True

    def get(self, timeout: float | None = None) -> Event[T] | None:
        """Return the next event, or None at end of stream.

        Raises:
            queue.Empty: if timeout expires with the subscription still open
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while not self._buffer:
                if self._closed:
                    return None
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise queue.Empty
                self._cond.wait(remaining)
            event = self._buffer.popleft()
            # wake a replay producer waiting for space
            self._cond.notify_all()
            return event

    def get_nowait(self) -> Event[T] | None:
        return self.get(timeout=0)

    def cancel(self) -> None:
        """Unregister and close. Safe to call more than once."""
        if self._on_cancel is not None:
            self._on_cancel(self)
        self.close()

    def close(self) -> None:
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()

    def __len__(self) -> int:
        with self._cond:
            return len(self._buffer)

    def __iter__(self) -> Iterator[Event[T]]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cancel()
        return False


class WatchRegistry(Generic[T]):
    """Per-kind registry of subscriptions.

    Invariants:
        - register/unregister are O(1) and guarded by one lock
        - After close(), every subscription is closed and register() fails
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subs: dict[str, dict[int, Subscription[T]]] = {}
        self._ids: dict[int, int] = {}
        self._counter = itertools.count(1)
        self._closed = False

    def register(self, kind: str, options: WatchOptions) -> Subscription[T]:
        if not kind:
            raise KindRequiredError()
        sub: Subscription[T] = Subscription(kind, options, on_cancel=self.unregister)
        with self._lock:
            if self._closed:
                raise StoreClosedError()
            sub_id = next(self._counter)
            self._subs.setdefault(kind, {})[sub_id] = sub
            self._ids[id(sub)] = sub_id
        logger.debug(f"Registered watcher {sub_id} on kind {kind!r}")
        return sub

    def unregister(self, sub: Subscription[T]) -> None:
        with self._lock:
            sub_id = self._ids.pop(id(sub), None)
            if sub_id is None:
                return
            subs = self._subs.get(sub.kind)
            if subs is not None:
                subs.pop(sub_id, None)
                if not subs:
                    del self._subs[sub.kind]
        logger.debug(f"Unregistered watcher {sub_id} on kind {sub.kind!r}")

    def subscribers(self, kind: str) -> list[Subscription[T]]:
        """Snapshot of the subscriptions currently registered on a kind."""
        with self._lock:
            return list(self._subs.get(kind, {}).values())

    def count(self, kind: str | None = None) -> int:
        with self._lock:
            if kind is not None:
                return len(self._subs.get(kind, {}))
            return sum(len(subs) for subs in self._subs.values())

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subs = [s for by_id in self._subs.values() for s in by_id.values()]
            self._subs.clear()
            self._ids.clear()
        for sub in subs:
            sub.close()
        logger.debug(f"Closed {len(subs)} watchers")


class FanOut:
    """Delivers events to subscribers in the order their writes committed.

    A writer calls reserve() while it still holds its write lock and deliver()
    after releasing it, so deliveries happen in commit order without holding
    the write lock during fan-out.
    """

    def __init__(self):
        self._lock = threading.Lock()

    def reserve(self) -> None:
        self._lock.acquire()

    def deliver(self, subscribers: Sequence[Subscription[T]], events: Iterable[Event[T]]) -> None:
        """Non-blocking delivery; releases the reservation."""
        try:
            for event in events:
                for sub in subscribers:
                    if sub.accepts(event.event_type):
                        sub.offer(event)
        finally:
            self._lock.release()


def start_replay(sub: Subscription[T], entries: Sequence[tuple[str, T]]) -> threading.Thread | None:
    """Send existing entries to a new subscription as create events.

    Runs on a daemon thread; stops early once the subscription is closed.
    Returns None when there is nothing to replay or the filter rejects creates.
    """
    if not entries or not sub.accepts(EventType.CREATE):
        return None

    def _run() -> None:
        sent = 0
        for key, value in entries:
            event = Event(kind=sub.kind, key=key, event_type=EventType.CREATE, object=value)
            if not sub.put(event):
                break
            sent += 1
        logger.debug(f"Initial replay on {sub.kind!r} sent {sent}/{len(entries)} events")

    thread = threading.Thread(target=_run, daemon=True, name=f"WatchReplay-{sub.kind}")
    thread.start()
    return thread
