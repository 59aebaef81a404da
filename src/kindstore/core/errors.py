"""Exception hierarchy for kindstore.

Absence of a key or kind is never an error; these cover genuine faults only.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base exception for all kindstore errors."""
    pass


class StoreClosedError(StoreError):
    """Raised when an operation is attempted on a closed store."""

    def __init__(self, message: str = "store closed"):
        super().__init__(message)


class KeyNotFoundError(StoreError, KeyError):
    """Raised when set_fn targets a key that does not exist."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"key not found: {kind}/{key}")

    def __str__(self) -> str:
        return self.args[0]


class KindRequiredError(StoreError, ValueError):
    """Raised when watch is called without a kind."""

    def __init__(self, message: str = "kind required"):
        super().__init__(message)


class ValidationError(StoreError, ValueError):
    """Raised when a per-kind validation rule rejects a value."""

    def __init__(self, kind: str, key: str, reason: str):
        self.kind = kind
        self.key = key
        self.reason = reason
        super().__init__(f"validation failed for {kind}/{key}: {reason}")


class SerializationError(StoreError):
    """Raised when the codec fails to encode or decode a value."""
    pass
