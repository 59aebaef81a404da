"""Value codecs for the durable backend.

Both codecs emit deterministic bytes: mapping keys are sorted so logically
equal values always serialize identically.
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Callable
from typing import Any, Generic, TypeVar

import yaml

from ..core.errors import SerializationError

T = TypeVar("T")


def _to_plain(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return value


class JSONCodec(Generic[T]):
    """JSON codec.

    Args:
        factory: Builds the typed value from the decoded object. A dataclass
            type is called with the decoded mapping as keyword arguments.
    """

    def __init__(self, factory: Callable[[Any], T] | type | None = None):
        self._factory = factory

    def encode(self, value: T) -> bytes:
        try:
            return json.dumps(
                _to_plain(value), sort_keys=True, separators=(",", ":"), ensure_ascii=False
            ).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SerializationError(f"json encode failed: {e}") from e

    def decode(self, data: bytes) -> T:
        try:
            obj = json.loads(data)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"json decode failed: {e}") from e
        return _build(self._factory, obj)


class YAMLCodec(Generic[T]):
    """YAML codec using PyYAML's safe dumper and loader.

    Args:
        factory: Same as for JSONCodec
    """

    def __init__(self, factory: Callable[[Any], T] | type | None = None):
        self._factory = factory

    def encode(self, value: T) -> bytes:
        try:
            return yaml.safe_dump(
                _to_plain(value), sort_keys=True, allow_unicode=True, default_flow_style=False
            ).encode("utf-8")
        except yaml.YAMLError as e:
            raise SerializationError(f"yaml encode failed: {e}") from e

    def decode(self, data: bytes) -> T:
        try:
            obj = yaml.safe_load(data)
        except yaml.YAMLError as e:
            raise SerializationError(f"yaml decode failed: {e}") from e
        return _build(self._factory, obj)


def _build(factory: Callable[[Any], T] | type | None, obj: Any) -> T:
    if factory is None:
        return obj
    try:
        if dataclasses.is_dataclass(factory) and isinstance(obj, dict):
            return factory(**obj)
        return factory(obj)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"cannot build {getattr(factory, '__name__', factory)}: {e}") from e
