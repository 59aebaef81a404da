"""Configuration for kindstore backends.

Defines the tunable parameters for both storage engines and for subscriptions.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field

from .types import DEFAULT_WATCH_BUFFER_SIZE, CompareFunc, EventType, ValidateFunc

logger = logging.getLogger(__name__)

DEFAULT_BUSY_TIMEOUT_MS = 5000
DEFAULT_POOL_SIZE = 4


@dataclass
class MemoryStoreOptions:
    """Hooks for the in-memory engine.

    Attributes:
        compare_fn: Returns True when an overwrite should count as no change.
            Defaults to structural equality.
        validate_fns: Per-kind validators; a validator raises to reject a value.
    """

    compare_fn: CompareFunc | None = None
    validate_fns: dict[str, ValidateFunc] | None = field(default_factory=dict)


@dataclass
class SQLiteConfig:
    """Configuration for the durable SQLite engine.

    Attributes:
        dsn: Database path or ``file:`` URI
        busy_timeout_ms: Lock-wait ceiling applied as PRAGMA busy_timeout (0 disables)
        disable_wal: Keep the default rollback journal instead of WAL mode
        pool_size: Maximum number of idle connections kept for reuse
    """

    dsn: str
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS
    disable_wal: bool = False
    pool_size: int = DEFAULT_POOL_SIZE

    @classmethod
    def from_env(cls, prefix: str = "KINDSTORE_") -> "SQLiteConfig":
        def _int(name: str, default: int) -> int:
            raw = os.environ.get(prefix + name)
            if raw is None:
                return default
            try:
                return int(raw)
            except ValueError:
                logger.warning(f"Invalid integer for {prefix}{name}={raw!r}, using {default}")
                return default

        return cls(
            dsn=os.environ.get(prefix + "DSN", ""),
            busy_timeout_ms=max(0, _int("BUSY_TIMEOUT_MS", DEFAULT_BUSY_TIMEOUT_MS)),
            disable_wal=os.environ.get(prefix + "DISABLE_WAL", "0").lower() in ("1", "true", "yes"),
            pool_size=max(1, _int("POOL_SIZE", DEFAULT_POOL_SIZE)),
        )


@dataclass
class WatchOptions:
    """Subscription options.

    Attributes:
        initial_replay: Send existing entries as create events on subscribe
        event_types: Only deliver these event types (None means all)
        buffer_size: Delivery buffer capacity; <= 0 uses the default
    """

    initial_replay: bool = False
    event_types: frozenset[EventType] | None = None
    buffer_size: int = DEFAULT_WATCH_BUFFER_SIZE

    def __post_init__(self) -> None:
        if self.event_types is not None:
            self.event_types = frozenset(EventType(t) for t in self.event_types)
        if self.buffer_size <= 0:
            self.buffer_size = DEFAULT_WATCH_BUFFER_SIZE

    @classmethod
    def build(
        cls,
        options: "WatchOptions | None" = None,
        *,
        initial_replay: bool | None = None,
        event_types: Iterable[EventType | str] | None = None,
        buffer_size: int | None = None,
    ) -> "WatchOptions":
        """Merge keyword overrides onto ``options`` (or the defaults)."""
        base = options or cls()
        return cls(
            initial_replay=base.initial_replay if initial_replay is None else initial_replay,
            event_types=base.event_types if event_types is None else frozenset(event_types),
            buffer_size=base.buffer_size if buffer_size is None else buffer_size,
        )

    def accepts(self, event_type: EventType) -> bool:
        return self.event_types is None or event_type in self.event_types
