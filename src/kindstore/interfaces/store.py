"""Protocol definitions for the store contract.

The capability groups are separate so collaborators can be handed only the
access they need; both backends implement all of them.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Protocol, TypeVar

if TYPE_CHECKING:
    from ..components.watch import Subscription
    from ..core.config import WatchOptions
    from ..core.types import EventType, FilterFunc, KeyValue

T = TypeVar("T")


class Reader(Protocol[T]):
    """Read-only access to the store."""

    def get(self, kind: str, key: str) -> tuple[T | None, bool]:
        """Return (value, found). Absence is (None, False), never an error."""
        ...

    def list(self, kind: str, *filters: FilterFunc | None) -> dict[str, T]:
        """Return entries of a kind passing every filter."""
        ...

    def count(self, kind: str) -> int:
        """Return the number of entries in a kind."""
        ...

    def keys(self, kind: str) -> list[str]:
        """Return the keys of a kind in ascending order."""
        ...

    def values(self, kind: str) -> list[KeyValue[T]]:
        """Return (key, value) pairs of a kind in key order."""
        ...

    def get_all(self) -> dict[str, dict[str, T]]:
        """Return the contents of every kind."""
        ...


class Writer(Protocol[T]):
    """Write access to the store."""

    def set(self, kind: str, key: str, value: T) -> bool:
        """Upsert; return True if the key was created."""
        ...

    def set_fn(self, kind: str, key: str, fn: Callable[[T], T]) -> bool:
        """Replace the value with fn(current); return True if it changed.

        Raises:
            KeyNotFoundError: if the key does not exist
        """
        ...

    def set_all(self, kind: str, values: Mapping[str, T]) -> None:
        """Upsert many entries at once."""
        ...

    def delete(self, kind: str, key: str) -> tuple[bool, T | None]:
        """Remove a key; return (existed, previous value)."""
        ...


class Watcher(Protocol[T]):
    """Change notification access."""

    def watch(
        self,
        kind: str,
        options: WatchOptions | None = None,
        *,
        initial_replay: bool | None = None,
        event_types: Iterable[EventType | str] | None = None,
        buffer_size: int | None = None,
    ) -> Subscription[T]:
        """Subscribe to a kind's event stream.

        Raises:
            KindRequiredError: if kind is empty
        """
        ...


class ReadWriter(Reader[T], Writer[T], Protocol[T]):
    """Reader and Writer combined."""


class Store(Reader[T], Writer[T], Watcher[T], Protocol[T]):
    """Full store API."""

    def close(self) -> None:
        """Close the store and every open subscription. Idempotent."""
        ...

    def dump(self) -> str:
        """Human-readable listing of every entry."""
        ...
