"""In-memory kind -> key -> value table.

Uses sortedcontainers.SortedDict per kind so listings come out in key order.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Generic, TypeVar

from sortedcontainers import SortedDict

T = TypeVar("T")


class Memtable(Generic[T]):
    """Nested mapping holding every kind's entries.

    Not thread-safe; the owning store serializes access.

    Invariants:
        - Keys within a kind are kept in sorted order
        - A kind exists only while it holds at least one entry
    """

    def __init__(self):
        self._kinds: dict[str, SortedDict] = {}

    def get(self, kind: str, key: str) -> tuple[T | None, bool]:
        """Return (value, found)."""
        entries = self._kinds.get(kind)
        if entries is None or key not in entries:
            return None, False
        return entries[key], True

    def put(self, kind: str, key: str, value: T) -> tuple[T | None, bool]:
        """Insert or overwrite; return (previous, existed)."""
        entries = self._kinds.get(kind)
        if entries is None:
            entries = self._kinds[kind] = SortedDict()
        existed = key in entries
        prev = entries[key] if existed else None
        entries[key] = value
        return prev, existed

    def delete(self, kind: str, key: str) -> tuple[T | None, bool]:
        """Remove a key; return (previous, existed)."""
        entries = self._kinds.get(kind)
        if entries is None or key not in entries:
            return None, False
        prev = entries.pop(key)
        if not entries:
            del self._kinds[kind]
        return prev, True

    def items(self, kind: str) -> Iterator[tuple[str, T]]:
        """Iterate (key, value) pairs of a kind in key order."""
        entries = self._kinds.get(kind)
        if entries is None:
            return
        yield from entries.items()

    def count(self, kind: str) -> int:
        entries = self._kinds.get(kind)
        return len(entries) if entries is not None else 0

    def kinds(self) -> list[str]:
        return sorted(self._kinds)

    def clear(self) -> None:
        self._kinds.clear()
