"""SQLite store implementation.

Persists every kind in one table with a version counter and last-modified
timestamp; each mutation is a transaction and watchers are notified only
after it commits.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable, Mapping
from typing import Generic, TypeVar

from ..components.pool import ConnectionPool
from ..components.rwlock import RWLock
from ..components.watch import FanOut, Subscription, WatchRegistry, start_replay
from ..interfaces.codec import Codec
from .config import SQLiteConfig, WatchOptions
from .errors import KeyNotFoundError, KindRequiredError, SerializationError, StoreClosedError
from .types import EntryMeta, Event, EventType, FilterFunc, KeyValue

logger = logging.getLogger(__name__)

T = TypeVar("T")

NOW = "STRFTIME('%Y-%m-%dT%H:%M:%fZ','now')"

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS kindstore_kv (
  kind       TEXT    NOT NULL,
  key        TEXT    NOT NULL,
  value      BLOB    NOT NULL,
  version    INTEGER NOT NULL DEFAULT 1,
  updated_at TEXT    NOT NULL DEFAULT ({NOW}),
  PRIMARY KEY(kind, key)
);
CREATE INDEX IF NOT EXISTS idx_kindstore_kv_kind ON kindstore_kv(kind);
"""

GET_QUERY = "SELECT value FROM kindstore_kv WHERE kind=? AND key=?"
GET_META_QUERY = "SELECT value, version, updated_at FROM kindstore_kv WHERE kind=? AND key=?"
LIST_QUERY = "SELECT key, value FROM kindstore_kv WHERE kind=? ORDER BY key"
COUNT_QUERY = "SELECT COUNT(*) FROM kindstore_kv WHERE kind=?"
KEYS_QUERY = "SELECT key FROM kindstore_kv WHERE kind=? ORDER BY key"
ALL_QUERY = "SELECT kind, key, value FROM kindstore_kv ORDER BY kind, key"
DUMP_QUERY = "SELECT kind, key, value, version, updated_at FROM kindstore_kv ORDER BY kind, key"
INSERT_QUERY = "INSERT INTO kindstore_kv(kind, key, value) VALUES(?, ?, ?) ON CONFLICT(kind, key) DO NOTHING"
UPDATE_QUERY = (
    f"UPDATE kindstore_kv SET value=?, version=version+1, updated_at={NOW} WHERE kind=? AND key=?"
)
UPSERT_QUERY = f"""
INSERT INTO kindstore_kv(kind, key, value) VALUES(?, ?, ?)
ON CONFLICT(kind, key) DO UPDATE SET
  value      = excluded.value,
  version    = CASE WHEN kindstore_kv.value != excluded.value
                    THEN kindstore_kv.version + 1 ELSE kindstore_kv.version END,
  updated_at = CASE WHEN kindstore_kv.value != excluded.value
                    THEN {NOW} ELSE kindstore_kv.updated_at END
"""
EXISTING_QUERY = (
    "SELECT key, value FROM kindstore_kv "
    "WHERE kind=? AND key IN (SELECT value FROM json_each(?))"
)
DELETE_QUERY = "DELETE FROM kindstore_kv WHERE kind=? AND key=?"


class SQLiteStore(Generic[T]):
    """Durable store with transactional versioning and change notifications.

    Args:
        config: Connection and tuning parameters
        codec: Turns values into bytes and back

    Invariants:
        - version starts at 1 and grows by exactly 1 per byte-changing write
        - A byte-identical write leaves version and updated_at untouched and emits nothing
        - Events are published only after the owning transaction commits
        - Writes are serialized in-process; events reach watchers in commit order
    """

    def __init__(self, config: SQLiteConfig, codec: Codec[T]):
        if not config.dsn:
            raise ValueError("SQLiteConfig.dsn is required")
        if codec is None:
            raise ValueError("codec is required")
        self.config = config
        self._codec = codec
        self._pool = ConnectionPool(
            config.dsn,
            busy_timeout_ms=config.busy_timeout_ms,
            disable_wal=config.disable_wal,
            max_idle=config.pool_size,
        )
        self._lifecycle = RWLock()
        self._write_lock = threading.Lock()
        self._watchers: WatchRegistry[T] = WatchRegistry()
        self._fanout = FanOut()
        self._closed = False

        try:
            with self._pool.connection() as conn:
                conn.executescript(SCHEMA)
        except sqlite3.Error:
            self._pool.close()
            raise

        logger.info(f"Initialized SQLiteStore at {config.dsn}")

    def _check_open(self) -> None:
        """Must hold either side of the lifecycle lock."""
        if self._closed:
            raise StoreClosedError()

    def _encode(self, value: T) -> bytes:
        try:
            data = self._codec.encode(value)
        except SerializationError:
            raise
        except Exception as e:
            raise SerializationError(f"encode failed: {e}") from e
        return bytes(data)

    def _decode(self, data: bytes) -> T:
        try:
            return self._codec.decode(bytes(data))
        except SerializationError:
            raise
        except Exception as e:
            raise SerializationError(f"decode failed: {e}") from e

    # --- Reads ----------------------------------------------------------------------

    def get(self, kind: str, key: str) -> tuple[T | None, bool]:
        with self._lifecycle.read_locked():
            self._check_open()
            with self._pool.connection() as conn:
                row = conn.execute(GET_QUERY, (kind, key)).fetchone()
            if row is None:
                return None, False
            return self._decode(row[0]), True

    def get_with_meta(self, kind: str, key: str) -> EntryMeta[T] | None:
        """Return the value with its version and updated_at, or None if absent."""
        with self._lifecycle.read_locked():
            self._check_open()
            with self._pool.connection() as conn:
                row = conn.execute(GET_META_QUERY, (kind, key)).fetchone()
            if row is None:
                return None
            return EntryMeta(value=self._decode(row[0]), version=row[1], updated_at=row[2])

    def list(self, kind: str, *filters: FilterFunc | None) -> dict[str, T]:
        active = [f for f in filters if f is not None]
        with self._lifecycle.read_locked():
            self._check_open()
            with self._pool.connection() as conn:
                rows = conn.execute(LIST_QUERY, (kind,)).fetchall()
        out: dict[str, T] = {}
        for key, blob in rows:
            value = self._decode(blob)
            if all(f(key, value) for f in active):
                out[key] = value
        return out

    def count(self, kind: str) -> int:
        with self._lifecycle.read_locked():
            self._check_open()
            with self._pool.connection() as conn:
                return conn.execute(COUNT_QUERY, (kind,)).fetchone()[0]

    def keys(self, kind: str) -> list[str]:
        with self._lifecycle.read_locked():
            self._check_open()
            with self._pool.connection() as conn:
                return [row[0] for row in conn.execute(KEYS_QUERY, (kind,))]

    def values(self, kind: str) -> list[KeyValue[T]]:
        with self._lifecycle.read_locked():
            self._check_open()
            with self._pool.connection() as conn:
                rows = conn.execute(LIST_QUERY, (kind,)).fetchall()
        return [KeyValue(key, self._decode(blob)) for key, blob in rows]

    def get_all(self) -> dict[str, dict[str, T]]:
        with self._lifecycle.read_locked():
            self._check_open()
            with self._pool.connection() as conn:
                rows = conn.execute(ALL_QUERY).fetchall()
        out: dict[str, dict[str, T]] = {}
        for kind, key, blob in rows:
            out.setdefault(kind, {})[key] = self._decode(blob)
        return out

    # --- Writes ---------------------------------------------------------------------

    def set(self, kind: str, key: str, value: T) -> bool:
        """Insert or update; return True if the key was created."""
        with self._lifecycle.read_locked():
            self._check_open()
            enc = self._encode(value)
            with self._write_lock:
                changed = True
                with self._pool.transaction() as conn:
                    created = conn.execute(INSERT_QUERY, (kind, key, enc)).rowcount > 0
                    if not created:
                        cur = conn.execute(GET_QUERY, (kind, key)).fetchone()[0]
                        if bytes(cur) == enc:
                            changed = False
                        else:
                            conn.execute(UPDATE_QUERY, (enc, kind, key))
                    # bytes that cannot be read back must not be committed
                    obj = self._decode(enc) if changed else None
                if not changed:
                    logger.debug(f"No-op set for {kind}/{key}")
                    return False
                event = Event(kind, key, EventType.CREATE if created else EventType.UPDATE, obj)
                subscribers = self._watchers.subscribers(kind)
                self._fanout.reserve()

        self._fanout.deliver(subscribers, [event])
        return created

    def set_fn(self, kind: str, key: str, fn: Callable[[T], T]) -> bool:
        """Replace the value of an existing key with fn(current).

        fn runs inside the write transaction and must not call back into
        the store.

        Returns:
            True if the serialized value changed

        Raises:
            KeyNotFoundError: if the key does not exist
        """
        with self._lifecycle.read_locked():
            self._check_open()
            with self._write_lock:
                with self._pool.transaction() as conn:
                    row = conn.execute(GET_QUERY, (kind, key)).fetchone()
                    if row is None:
                        raise KeyNotFoundError(kind, key)
                    cur_bytes = bytes(row[0])
                    new_value = fn(self._decode(cur_bytes))
                    new_bytes = self._encode(new_value)
                    changed = new_bytes != cur_bytes
                    if changed:
                        conn.execute(UPDATE_QUERY, (new_bytes, kind, key))
                        obj = self._decode(new_bytes)
                if not changed:
                    logger.debug(f"No-op set_fn for {kind}/{key}")
                    return False
                event = Event(kind, key, EventType.UPDATE, obj)
                subscribers = self._watchers.subscribers(kind)
                self._fanout.reserve()

        self._fanout.deliver(subscribers, [event])
        return True

    def set_all(self, kind: str, values: Mapping[str, T]) -> None:
        """Upsert many entries in one transaction.

        New keys emit create events, keys whose bytes changed emit update
        events; byte-identical entries are left untouched and emit nothing.
        """
        with self._lifecycle.read_locked():
            self._check_open()
            staged = [(key, value, self._encode(value)) for key, value in values.items()]
            if not staged:
                return
            with self._write_lock:
                with self._pool.transaction() as conn:
                    keys_json = json.dumps([key for key, _, _ in staged])
                    existing = {
                        key: bytes(blob)
                        for key, blob in conn.execute(EXISTING_QUERY, (kind, keys_json))
                    }
                    changes: list[tuple[str, bytes, EventType]] = []
                    for key, _, enc in staged:
                        if key not in existing:
                            changes.append((key, enc, EventType.CREATE))
                        elif existing[key] != enc:
                            changes.append((key, enc, EventType.UPDATE))
                        else:
                            continue
                        conn.execute(UPSERT_QUERY, (kind, key, enc))
                    events = [Event(kind, key, et, self._decode(enc)) for key, enc, et in changes]
                if not events:
                    return
                subscribers = self._watchers.subscribers(kind)
                self._fanout.reserve()

        logger.debug(f"set_all on {kind!r}: {len(events)} of {len(staged)} entries changed")
        self._fanout.deliver(subscribers, events)

    def delete(self, kind: str, key: str) -> tuple[bool, T | None]:
        """Remove a key; return (existed, previous value)."""
        with self._lifecycle.read_locked():
            self._check_open()
            with self._write_lock:
                with self._pool.transaction() as conn:
                    row = conn.execute(GET_QUERY, (kind, key)).fetchone()
                    if row is None:
                        prev = None
                    else:
                        prev = self._decode(row[0])
                        conn.execute(DELETE_QUERY, (kind, key))
                if row is None:
                    return False, None
                event = Event(kind, key, EventType.DELETE, self._decode(row[0]))
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

        with self._lifecycle.read_locked():
            self._check_open()
            if not opts.initial_replay:
                return self._watchers.register(kind, opts)
            # holding the write lock keeps the snapshot aligned with registration
            with self._write_lock:
                sub = self._watchers.register(kind, opts)
                try:
                    with self._pool.connection() as conn:
                        rows = conn.execute(LIST_QUERY, (kind,)).fetchall()
                    snapshot = [(key, self._decode(blob)) for key, blob in rows]
                except BaseException:
                    sub.cancel()
                    raise

        start_replay(sub, snapshot)
        return sub

    # --- Lifecycle ------------------------------------------------------------------

    def close(self) -> None:
        """Close every subscription and the connection pool. Idempotent."""
        with self._lifecycle.write_locked():
            if self._closed:
                return
            self._closed = True
            self._watchers.close()
            self._pool.close()
        logger.info(f"Closed SQLiteStore at {self.config.dsn}")

    def dump(self) -> str:
        with self._lifecycle.read_locked():
            self._check_open()
            with self._pool.connection() as conn:
                rows = conn.execute(DUMP_QUERY).fetchall()
        lines = []
        for kind, key, blob, version, updated_at in rows:
            text = bytes(blob).decode("utf-8", errors="replace")
            lines.append(f"{kind}/{key} v{version} ({len(blob)}B) {updated_at} | value={text}")
        return "".join(line + "\n" for line in lines)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
