"""SQLite connection pool.

Hands out configured sqlite3 connections and wraps explicit transactions.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class ConnectionPool:
    """Small stack of reusable sqlite3 connections for one database.

    Args:
        dsn: Database path or ``file:`` URI
        busy_timeout_ms: PRAGMA busy_timeout applied to every connection
        disable_wal: Skip switching the journal to WAL mode
        max_idle: Maximum number of idle connections kept open

    Invariants:
        - Connections run in autocommit mode; transactions are explicit
        - A connection is used by one thread at a time
        - After close(), returned connections are closed instead of pooled
    """

    def __init__(self, dsn: str, busy_timeout_ms: int = 5000, disable_wal: bool = False, max_idle: int = 4):
        self.dsn = dsn
        self.busy_timeout_ms = busy_timeout_ms
        self.disable_wal = disable_wal
        self.max_idle = max(1, max_idle)
        self._lock = threading.Lock()
        self._idle: list[sqlite3.Connection] = []
        self._closed = False
        self.opened = 0

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.dsn,
            uri=self.dsn.startswith("file:"),
            isolation_level=None,
            check_same_thread=False,
        )
        try:
            self._apply_pragmas(conn)
        except sqlite3.Error:
            conn.close()
            raise
        self.opened += 1
        return conn

    def _apply_pragmas(self, conn: sqlite3.Connection) -> None:
        if self.busy_timeout_ms > 0:
            conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
        if not self.disable_wal:
            mode = conn.execute("PRAGMA journal_mode=WAL").fetchone()[0]
            if mode.lower() not in ("wal", "memory"):
                logger.warning(f"journal_mode is {mode!r}, expected 'wal' for {self.dsn}")

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Borrow a connection for the duration of the block."""
        with self._lock:
            if self._closed:
                raise sqlite3.ProgrammingError("connection pool is closed")
            conn = self._idle.pop() if self._idle else None
        if conn is None:
            conn = self._open()
        try:
            yield conn
        finally:
            self._release(conn)

    def _release(self, conn: sqlite3.Connection) -> None:
        with self._lock:
            if not self._closed and len(self._idle) < self.max_idle and not conn.in_transaction:
                self._idle.append(conn)
                return
        conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block inside BEGIN IMMEDIATE ... COMMIT.

        Any exception, including a failed COMMIT, rolls the transaction back
        and propagates unchanged.
        """
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    try:
                        conn.execute("ROLLBACK")
                    except sqlite3.Error as e:
                        logger.warning(f"Rollback failed on {self.dsn}: {e}")
                raise

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            idle, self._idle = self._idle, []
        for conn in idle:
            conn.close()
        logger.debug(f"Closed connection pool for {self.dsn} ({len(idle)} idle connections)")
