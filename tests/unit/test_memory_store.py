"""Unit tests for MemoryStore-specific behavior.

Behavior shared with the durable backend lives in
tests/integration/test_store_contract.py.
"""

import queue

import pytest

from kindstore import MemoryStore, MemoryStoreOptions
from kindstore.core.errors import KeyNotFoundError, ValidationError
from kindstore.core.types import EventType


def require_name(value):
    if not value.get("name"):
        raise ValueError("name is required")


@pytest.fixture
def store():
    """Create a memory store with a validator on 'users'."""
    s = MemoryStore(MemoryStoreOptions(validate_fns={"users": require_name}))
    yield s
    s.close()


def test_validation_rejects_set(store):
    """Test a rejected value leaves the store untouched."""
    sub = store.watch("users")

    with pytest.raises(ValidationError) as exc_info:
        store.set("users", "a", {"name": ""})

    assert exc_info.value.kind == "users"
    assert exc_info.value.key == "a"
    assert isinstance(exc_info.value.__cause__, ValueError)
    assert store.get("users", "a") == (None, False)
    assert len(sub) == 0


def test_validation_only_applies_to_its_kind(store):
    """Test kinds without a validator accept anything."""
    assert store.set("groups", "g", {"name": ""}) is True


def test_validation_rejects_whole_set_all(store):
    """Test one invalid value rejects the batch before anything is applied."""
    store.set("users", "a", {"name": "A"})

    with pytest.raises(ValidationError):
        store.set_all("users", {"a": {"name": "A2"}, "b": {"name": ""}})

    assert store.get("users", "a") == ({"name": "A"}, True)
    assert store.count("users") == 1


def test_validation_applies_to_set_fn_result(store):
    """Test set_fn validates the transformed value."""
    store.set("users", "a", {"name": "A"})

    with pytest.raises(ValidationError):
        store.set_fn("users", "a", lambda v: {**v, "name": ""})

    assert store.get("users", "a") == ({"name": "A"}, True)


def test_validator_may_raise_validation_error_directly():
    """Test a ValidationError raised by the validator propagates unchanged."""
    err = ValidationError("users", "a", "custom")

    def reject(value):
        raise err

    s = MemoryStore(MemoryStoreOptions(validate_fns={"users": reject}))
    with pytest.raises(ValidationError) as exc_info:
        s.set("users", "a", 1)
    assert exc_info.value is err
    s.close()


def test_custom_compare_fn_suppresses_updates():
    """Test compare_fn decides what counts as no change."""
    # ignore the "seen" field when comparing
    def same(prev, new):
        return {k: v for k, v in prev.items() if k != "seen"} == {
            k: v for k, v in new.items() if k != "seen"
        }

    s = MemoryStore(MemoryStoreOptions(compare_fn=same))
    sub = s.watch("users")

    assert s.set("users", "a", {"name": "A", "seen": 1}) is True
    assert s.set("users", "a", {"name": "A", "seen": 2}) is False
    assert s.set("users", "a", {"name": "B", "seen": 2}) is False

    assert [sub.get_nowait().event_type for _ in range(2)] == [EventType.CREATE, EventType.UPDATE]
    with pytest.raises(queue.Empty):
        sub.get_nowait()
    s.close()


def test_compare_fn_not_used_for_new_keys():
    """Test a create is never suppressed, even if compare_fn says equal."""
    s = MemoryStore(MemoryStoreOptions(compare_fn=lambda prev, new: True))
    sub = s.watch("k")

    assert s.set("k", "a", None) is True
    assert sub.get_nowait().event_type == EventType.CREATE
    s.close()


def test_set_copies_input(store):
    """Test mutating the caller's object after set does not change the store."""
    value = {"name": "A", "tags": ["x"]}
    store.set("users", "a", value)

    value["tags"].append("y")

    assert store.get("users", "a")[0] == {"name": "A", "tags": ["x"]}


def test_reads_return_copies(store):
    """Test mutating returned values does not change the store."""
    store.set("users", "a", {"name": "A", "tags": ["x"]})

    got, _ = store.get("users", "a")
    got["tags"].append("mutated")
    store.list("users")["a"]["tags"].append("mutated")
    store.values("users")[0].value["tags"].append("mutated")
    store.get_all()["users"]["a"]["tags"].append("mutated")

    assert store.get("users", "a")[0] == {"name": "A", "tags": ["x"]}


def test_set_fn_receives_copy(store):
    """Test set_fn mutating its argument in place still counts as a change."""
    store.set("users", "a", {"name": "A", "n": 1})

    def bump(v):
        v["n"] += 1
        return v

    assert store.set_fn("users", "a", bump) is True
    assert store.get("users", "a")[0]["n"] == 2


def test_set_fn_error_leaves_value(store):
    """Test an exception from the transform propagates and changes nothing."""
    store.set("users", "a", {"name": "A"})

    def fail(v):
        raise RuntimeError("transform failed")

    with pytest.raises(RuntimeError):
        store.set_fn("users", "a", fail)

    assert store.get("users", "a") == ({"name": "A"}, True)
    with pytest.raises(KeyNotFoundError):
        store.set_fn("users", "missing", fail)


def test_dump_lists_kinds_and_keys(store):
    """Test dump output format."""
    store.set("users", "b", {"name": "B"})
    store.set("users", "a", {"name": "A"})
    store.set("groups", "g", 1)

    assert store.dump() == (
        "groups:\n"
        "  g: 1\n"
        "users:\n"
        "  a: {'name': 'A'}\n"
        "  b: {'name': 'B'}\n"
    )


def test_options_accept_no_validators():
    """Test explicit None hooks fall back to defaults."""
    s = MemoryStore(MemoryStoreOptions(compare_fn=None, validate_fns=None))

    assert s.set("users", "a", {"name": ""}) is True
    assert s.set("users", "a", {"name": ""}) is False
    s.close()
