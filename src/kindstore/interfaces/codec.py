"""Protocol definition for value codecs."""

from __future__ import annotations

from typing import Protocol, TypeVar

T = TypeVar("T")


class Codec(Protocol[T]):
    """Turns values into bytes and back for the durable backend.

    JSONCodec and YAMLCodec ship with the package. Any other format, such as
    protobuf messages, plugs in as a class with these two methods:

        class ProtoCodec:
            def encode(self, value: Note) -> bytes:
                return value.SerializeToString(deterministic=True)

            def decode(self, data: bytes) -> Note:
                return Note.FromString(data)

    Invariants:
        - decode(encode(v)) is equal to v
        - encode is deterministic: equal values produce identical bytes,
          otherwise no-op detection reports spurious updates
    """

    def encode(self, value: T) -> bytes:
        """Serialize a value."""
        ...

    def decode(self, data: bytes) -> T:
        """Deserialize bytes produced by encode."""
        ...
