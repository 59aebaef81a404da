"""In-memory store implementation.

Keeps every kind in a Memtable behind one store-wide reader-writer lock and
notifies watchers after the lock is released.
"""

from __future__ import annotations

import copy
import logging
import operator
from collections.abc import Callable, Iterable, Mapping
from typing import Generic, TypeVar

from ..components.memtable import Memtable
from ..components.rwlock import RWLock
from ..components.watch import FanOut, Subscription, WatchRegistry, start_replay
from .config import MemoryStoreOptions, WatchOptions
from .errors import KeyNotFoundError, KindRequiredError, StoreClosedError, ValidationError
from .types import Event, EventType, FilterFunc, KeyValue

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MemoryStore(Generic[T]):
    """Volatile store with change notifications.

    Args:
        options: Comparison and validation hooks

    Public API:
        - get/list/count/keys/values/get_all: reads under the shared lock
        - set/set_fn/set_all/delete: writes under the exclusive lock
        - watch(kind, ...): subscribe to a kind's events
        - close(): close every subscription; the store is unusable afterwards

    Invariants:
        - Values are deep-copied on the way in and on the way out
        - Events are published after the write lock is released, in commit order
        - An overwrite judged equal by compare_fn changes nothing and emits nothing
    """

    def __init__(self, options: MemoryStoreOptions | None = None):
        options = options or MemoryStoreOptions()
        self._compare: Callable[[T, T], bool] = options.compare_fn or operator.eq
        self._validators = dict(options.validate_fns or {})
        self._table: Memtable[T] = Memtable()
        self._lock = RWLock()
        self._watchers: WatchRegistry[T] = WatchRegistry()
        self._fanout = FanOut()
        self._closed = False
        logger.info(f"Initialized MemoryStore ({len(self._validators)} validated kinds)")

    def _check_open(self) -> None:
        """Must hold either side of the lock."""
        if self._closed:
            raise StoreClosedError()

    def _validate(self, kind: str, key: str, value: T) -> None:
        fn = self._validators.get(kind)
        if fn is None:
            return
        try:
            fn(value)
        except ValidationError:
            raise
        except Exception as e:
            raise ValidationError(kind, key, str(e)) from e

    # --- Reads ----------------------------------------------------------------------

    def get(self, kind: str, key: str) -> tuple[T | None, bool]:
        with self._lock.read_locked():
            self._check_open()
            value, found = self._table.get(kind, key)
            return copy.deepcopy(value), found

    def list(self, kind: str, *filters: FilterFunc | None) -> dict[str, T]:
        active = [f for f in filters if f is not None]
        with self._lock.read_locked():
            self._check_open()
            out: dict[str, T] = {}
            for key, value in self._table.items(kind):
                value = copy.deepcopy(value)
                if all(f(key, value) for f in active):
                    out[key] = value
            return out

    def count(self, kind: str) -> int:
        with self._lock.read_locked():
            self._check_open()
            return self._table.count(kind)

    def keys(self, kind: str) -> list[str]:
        with self._lock.read_locked():
            self._check_open()
            return [key for key, _ in self._table.items(kind)]

    def values(self, kind: str) -> list[KeyValue[T]]:
        with self._lock.read_locked():
            self._check_open()
            return [KeyValue(key, copy.deepcopy(value)) for key, value in self._table.items(kind)]

    def get_all(self) -> dict[str, dict[str, T]]:
        with self._lock.read_locked():
            self._check_open()
            return {
                kind: {key: copy.deepcopy(value) for key, value in self._table.items(kind)}
                for kind in self._table.kinds()
            }

    # --- Writes ---------------------------------------------------------------------

    def set(self, kind: str, key: str, value: T) -> bool:
        """Insert or update; return True if the key was created."""
        self._validate(kind, key, value)
        stored = copy.deepcopy(value)

        with self._lock.write_locked():
            self._check_open()
            prev, existed = self._table.get(kind, key)
            if existed and self._compare(prev, stored):
                logger.debug(f"No-op set for {kind}/{key}")
                return False
            self._table.put(kind, key, stored)
            event_type = EventType.UPDATE if existed else EventType.CREATE
            event = Event(kind, key, event_type, copy.deepcopy(stored))
            subscribers = self._watchers.subscribers(kind)
            self._fanout.reserve()

        self._fanout.deliver(subscribers, [event])
        return not existed

    def set_fn(self, kind: str, key: str, fn: Callable[[T], T]) -> bool:
        """Replace the value of an existing key with fn(current).

        fn runs while the exclusive lock is held and must not call back
        into the store.

        Returns:
            True if the value changed

        Raises:
            KeyNotFoundError: if the key does not exist
        """
        with self._lock.write_locked():
            self._check_open()
            current, existed = self._table.get(kind, key)
            if not existed:
                raise KeyNotFoundError(kind, key)
            new_value = fn(copy.deepcopy(current))
            self._validate(kind, key, new_value)
            stored = copy.deepcopy(new_value)
            if self._compare(current, stored):
                logger.debug(f"No-op set_fn for {kind}/{key}")
                return False
            self._table.put(kind, key, stored)
            event = Event(kind, key, EventType.UPDATE, copy.deepcopy(stored))
            subscribers = self._watchers.subscribers(kind)
            self._fanout.reserve()

        self._fanout.deliver(subscribers, [event])
        return True

    def set_all(self, kind: str, values: Mapping[str, T]) -> None:
        """Upsert many entries; each key is classified as create or update.

        All values are validated before any is applied. Keys whose new value
        compares equal to the stored one are left alone and emit nothing.
        """
        for key, value in values.items():
            self._validate(kind, key, value)
        staged = [(key, copy.deepcopy(value)) for key, value in values.items()]

        with self._lock.write_locked():
            self._check_open()
            changes: list[tuple[str, T, EventType]] = []
            for key, value in staged:
                prev, existed = self._table.get(kind, key)
                if existed and self._compare(prev, value):
                    continue
                changes.append((key, value, EventType.UPDATE if existed else EventType.CREATE))
            if not changes:
                return
            for key, value, _ in changes:
                self._table.put(kind, key, value)
            events = [Event(kind, key, et, copy.deepcopy(value)) for key, value, et in changes]
            subscribers = self._watchers.subscribers(kind)
            self._fanout.reserve()

        logger.debug(f"set_all on {kind!r}: {len(events)} of {len(staged)} entries changed")
        self._fanout.deliver(subscribers, events)

    def delete(self, kind: str, key: str) -> tuple[bool, T | None]:
        """Remove a key; return (existed, previous value)."""
        with self._lock.write_locked():
            self._check_open()
            prev, existed = self._table.delete(kind, key)
            if not existed:
                return False, None
            event = Event(kind, key, EventType.DELETE, copy.deepcopy(prev))
            subscribers = self._watchers.subscribers(kind)
            self._fanout.reserve()

        self._fanout.deliver(subscribers, [event])
        return True, prev

    # --- Watch ----------------------------------------------------------------------

    def watch(
        self,
        kind: str,
        options: WatchOptions | None = None,
        *,
        initial_replay: bool | None = None,
        event_types: Iterable[EventType | str] | None = None,
        buffer_size: int | None = None,
    ) -> Subscription[T]:
        """Subscribe to a kind's events.

        Raises:
            KindRequiredError: if kind is empty
            StoreClosedError: if the store is closed
        """
        if not kind:
            raise KindRequiredError()
        opts = WatchOptions.build(
            options, initial_replay=initial_replay, event_types=event_types, buffer_size=buffer_size
        )

        # writers are excluded, so the snapshot matches the registration point
        with self._lock.read_locked():
            self._check_open()
            sub = self._watchers.register(kind, opts)
            snapshot = (
                [(key, copy.deepcopy(value)) for key, value in self._table.items(kind)]
                if opts.initial_replay
                else []
            )

        start_replay(sub, snapshot)
        return sub

    # --- Lifecycle ------------------------------------------------------------------

    def close(self) -> None:
        """Close the store and every subscription. Idempotent."""
        with self._lock.write_locked():
            if self._closed:
                return
            self._closed = True
            self._watchers.close()
            self._table.clear()
        logger.info("Closed MemoryStore")

    def dump(self) -> str:
        with self._lock.read_locked():
            self._check_open()
            lines = []
            for kind in self._table.kinds():
                lines.append(f"{kind}:")
                for key, value in self._table.items(kind):
                    lines.append(f"  {key}: {value!r}")
            return "".join(line + "\n" for line in lines)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
