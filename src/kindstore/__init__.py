"""kindstore - typed key-value store with interchangeable backends and change watching."""

from .components.codec import JSONCodec, YAMLCodec
from .components.watch import Subscription
from .core.config import MemoryStoreOptions, SQLiteConfig, WatchOptions
from .core.errors import (
    StoreError,
    StoreClosedError,
    KeyNotFoundError,
    KindRequiredError,
    ValidationError,
    SerializationError,
)
from .core.memory_store import MemoryStore
from .core.sqlite_store import SQLiteStore
from .core.types import DEFAULT_WATCH_BUFFER_SIZE, EntryMeta, Event, EventType, KeyValue
from .interfaces.codec import Codec
from .interfaces.store import ReadWriter, Reader, Store, Watcher, Writer

__all__ = [
    "MemoryStore",
    "SQLiteStore",
    "MemoryStoreOptions",
    "SQLiteConfig",
    "WatchOptions",
    "Subscription",
    "Codec",
    "JSONCodec",
    "YAMLCodec",
    "Reader",
    "Writer",
    "Watcher",
    "ReadWriter",
    "Store",
    "Event",
    "EventType",
    "KeyValue",
    "EntryMeta",
    "DEFAULT_WATCH_BUFFER_SIZE",
    "StoreError",
    "StoreClosedError",
    "KeyNotFoundError",
    "KindRequiredError",
    "ValidationError",
    "SerializationError",
]
