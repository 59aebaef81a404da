"""Unit tests for subscriptions, the watch registry and fan-out."""

import queue
import threading

import pytest

from kindstore.components.watch import FanOut, Subscription, WatchRegistry, start_replay
from kindstore.core.config import WatchOptions
from kindstore.core.errors import KindRequiredError, StoreClosedError
from kindstore.core.types import DEFAULT_WATCH_BUFFER_SIZE, Event, EventType


def make_event(key, event_type=EventType.CREATE, value=None, kind="k"):
    return Event(kind=kind, key=key, event_type=event_type, object=value)


@pytest.fixture
def registry():
    """Create an empty registry."""
    reg = WatchRegistry()
    yield reg
    reg.close()


def test_watch_options_defaults():
    """Test default options and buffer size normalization."""
    opts = WatchOptions()
    assert opts.initial_replay is False
    assert opts.event_types is None
    assert opts.buffer_size == DEFAULT_WATCH_BUFFER_SIZE == 128

    assert WatchOptions(buffer_size=0).buffer_size == DEFAULT_WATCH_BUFFER_SIZE
    assert WatchOptions(buffer_size=-5).buffer_size == DEFAULT_WATCH_BUFFER_SIZE


def test_watch_options_build_merges_overrides():
    """Test that keyword overrides win over the base options."""
    base = WatchOptions(initial_replay=True, buffer_size=4)
    opts = WatchOptions.build(base, event_types=["delete"])

    assert opts.initial_replay is True
    assert opts.buffer_size == 4
    assert opts.event_types == frozenset({EventType.DELETE})
    assert opts.accepts(EventType.DELETE)
    assert not opts.accepts(EventType.CREATE)


def test_subscription_delivers_in_order():
    """Test that events come out in the order they were offered."""
    sub = Subscription("k", WatchOptions())
    for i in range(5):
        assert sub.offer(make_event(f"key{i}"))

    assert [sub.get_nowait().key for _ in range(5)] == [f"key{i}" for i in range(5)]


def test_subscription_full_buffer_drops():
    """Test that offer() drops instead of blocking when the buffer is full."""
    sub = Subscription("k", WatchOptions(buffer_size=2))

    assert sub.offer(make_event("a"))
    assert sub.offer(make_event("b"))
    assert not sub.offer(make_event("c"))  # dropped

    assert sub.dropped == 1
    assert len(sub) == 2
    assert sub.get_nowait().key == "a"
    assert sub.get_nowait().key == "b"


def test_subscription_get_timeout_raises_empty():
    """Test that get() with a timeout raises queue.Empty while open."""
    sub = Subscription("k", WatchOptions())
    with pytest.raises(queue.Empty):
        sub.get(timeout=0.05)


def test_subscription_close_drains_then_ends():
    """Test buffered events stay readable after close, then end-of-stream."""
    sub = Subscription("k", WatchOptions())
    sub.offer(make_event("a"))
    sub.close()

    assert sub.closed
    assert not sub.offer(make_event("b"))
    assert sub.get().key == "a"
    assert sub.get() is None
    assert sub.get(timeout=0.01) is None


def test_subscription_close_wakes_blocked_reader():
    """Test that a reader blocked in get() returns None on close."""
    sub = Subscription("k", WatchOptions())
    result = []

    t = threading.Thread(target=lambda: result.append(sub.get()))
    t.start()
    sub.close()
    t.join(timeout=2.0)

    assert result == [None]


def test_subscription_iteration_stops_on_close():
    """Test iterating a subscription ends once closed and drained."""
    sub = Subscription("k", WatchOptions())
    for key in "abc":
        sub.offer(make_event(key))
    sub.close()

    assert [ev.key for ev in sub] == ["a", "b", "c"]


def test_subscription_put_waits_for_space():
    """Test that put() blocks until a reader frees space."""
    sub = Subscription("k", WatchOptions(buffer_size=1))
    sub.offer(make_event("a"))
    done = threading.Event()

    def producer():
        sub.put(make_event("b"))
        done.set()

    t = threading.Thread(target=producer)
    t.start()
    assert not done.wait(0.1)

    assert sub.get().key == "a"
    assert done.wait(2.0)
    assert sub.get().key == "b"
    t.join(timeout=2.0)


def test_subscription_put_returns_false_when_closed():
    """Test that a blocked put() gives up on close."""
    sub = Subscription("k", WatchOptions(buffer_size=1))
    sub.offer(make_event("a"))
    result = []

    t = threading.Thread(target=lambda: result.append(sub.put(make_event("b"))))
    t.start()
    sub.close()
    t.join(timeout=2.0)

    assert result == [False]


def test_registry_requires_kind(registry):
    """Test that an empty kind is rejected."""
    with pytest.raises(KindRequiredError):
        registry.register("", WatchOptions())
    assert registry.count() == 0


def test_registry_cancel_is_idempotent(registry):
    """Test cancel unregisters and closes, and can be repeated."""
    sub = registry.register("k", WatchOptions())
    assert registry.count("k") == 1

    sub.cancel()
    sub.cancel()

    assert sub.closed
    assert registry.count("k") == 0
    assert registry.subscribers("k") == []


def test_registry_close_closes_everything():
    """Test closing the registry closes every subscription on every kind."""
    reg = WatchRegistry()
    subs = [reg.register(kind, WatchOptions()) for kind in ("a", "a", "b")]

    reg.close()
    reg.close()

    assert all(s.closed for s in subs)
    assert reg.count() == 0
    with pytest.raises(StoreClosedError):
        reg.register("a", WatchOptions())

    # cancel after close must not fault
    subs[0].cancel()


def test_fanout_filters_and_isolates_subscribers(registry):
    """Test per-subscriber filtering and that a full buffer affects only its owner."""
    all_events = registry.register("k", WatchOptions())
    deletes = registry.register("k", WatchOptions(event_types={EventType.DELETE}))
    tiny = registry.register("k", WatchOptions(buffer_size=1))
    fanout = FanOut()

    events = [
        make_event("a", EventType.CREATE),
        make_event("a", EventType.UPDATE),
        make_event("a", EventType.DELETE),
    ]
    fanout.reserve()
    fanout.deliver(registry.subscribers("k"), events)

    assert [all_events.get_nowait().event_type for _ in range(3)] == [
        EventType.CREATE,
        EventType.UPDATE,
        EventType.DELETE,
    ]
    assert deletes.get_nowait().event_type == EventType.DELETE
    assert len(deletes) == 0
    assert len(tiny) == 1
    assert tiny.dropped == 2


def test_fanout_releases_reservation_on_error():
    """Test the reservation is released even when delivery raises."""

    class Broken:
        def accepts(self, event_type):
            raise RuntimeError("boom")

    fanout = FanOut()
    fanout.reserve()
    with pytest.raises(RuntimeError):
        fanout.deliver([Broken()], [make_event("a")])

    # a second reservation would deadlock if the first were still held
    fanout.reserve()
    fanout.deliver([], [])


def test_start_replay_sends_creates():
    """Test that replay sends every entry as a create event."""
    sub = Subscription("k", WatchOptions(buffer_size=2))
    entries = [(f"key{i}", i) for i in range(5)]

    thread = start_replay(sub, entries)
    received = [sub.get(timeout=2.0) for _ in range(5)]
    thread.join(timeout=2.0)

    assert [(e.key, e.object) for e in received] == entries
    assert all(e.event_type == EventType.CREATE for e in received)


def test_start_replay_skipped_when_filter_rejects_creates():
    """Test that replay does nothing when creates are filtered out."""
    sub = Subscription("k", WatchOptions(event_types={EventType.UPDATE}))

    assert start_replay(sub, [("a", 1)]) is None
    assert start_replay(Subscription("k", WatchOptions()), []) is None
    assert len(sub) == 0


def test_start_replay_stops_when_cancelled():
    """Test that the replay thread exits once the subscription is closed."""
    sub = Subscription("k", WatchOptions(buffer_size=1))
    thread = start_replay(sub, [(f"key{i}", i) for i in range(100)])

    sub.close()
    thread.join(timeout=2.0)

    assert not thread.is_alive()
