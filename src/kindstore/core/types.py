"""Common type definitions for kindstore.

Defines the event model and the value-level types shared by every backend.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")

# Default capacity of a subscription's delivery buffer
DEFAULT_WATCH_BUFFER_SIZE = 128

# (key, value) -> keep?
FilterFunc = Callable[[str, Any], bool]
# (prev, new) -> True when the overwrite is a no-op
CompareFunc = Callable[[Any, Any], bool]
# value -> None, raises to reject
ValidateFunc = Callable[[Any], None]


class EventType(str, Enum):
    """Classification of a change notification."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Event(Generic[T]):
    """Immutable change notification.

    For deletes, ``object`` holds the value the key had before removal.
    """

    kind: str
    key: str
    event_type: EventType
    object: T


@dataclass(frozen=True)
class KeyValue(Generic[T]):
    """A single entry of a kind."""

    key: str
    value: T


@dataclass(frozen=True)
class EntryMeta(Generic[T]):
    """Durable entry record with its versioning columns."""

    value: T
    version: int
    updated_at: str
