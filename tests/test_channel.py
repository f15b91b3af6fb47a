"""Tests for the bounded event channel."""

import threading

from repform.engine.utils.channel import EventChannel


def test_drain_delivers_in_order() -> None:
    channel = EventChannel(capacity=8)
    received = []
    channel.subscribe(received.append)

    for item in ("a", "b", "c"):
        channel.publish(item)
    assert received == []

    assert channel.drain() == ["a", "b", "c"]
    assert received == ["a", "b", "c"]
    assert channel.pending == 0


def test_latest_is_replayed_to_late_subscribers() -> None:
    channel = EventChannel()
    channel.publish(1)
    channel.publish(2)

    received = []
    channel.subscribe(received.append)
    assert received == [2]
    assert channel.latest == 2


def test_replay_can_be_disabled() -> None:
    channel = EventChannel()
    channel.publish("profile")
    received = []
    channel.subscribe(received.append, replay=False)
    assert received == []


def test_full_queue_drops_oldest() -> None:
    channel = EventChannel(capacity=2)
    for item in (1, 2, 3):
        channel.publish(item)

    assert channel.dropped == 1
    assert channel.drain() == [2, 3]


def test_unsubscribe() -> None:
    channel = EventChannel()
    received = []
    unsubscribe = channel.subscribe(received.append)
    unsubscribe()
    unsubscribe()

    channel.publish("x")
    channel.drain()
    assert received == []


def test_failing_subscriber_does_not_block_others() -> None:
    channel = EventChannel()
    received = []

    def broken(item) -> None:
        raise RuntimeError("boom")

    channel.subscribe(broken)
    channel.subscribe(received.append)
    channel.publish("event")
    channel.drain()
    assert received == ["event"]


def test_clear_forgets_latest() -> None:
    channel = EventChannel()
    channel.publish("stale")
    channel.clear()

    received = []
    channel.subscribe(received.append)
    assert received == []
    assert channel.latest is None


def test_dispatcher_thread_delivers() -> None:
    channel = EventChannel()
    delivered = threading.Event()
    received = []

    def on_item(item) -> None:
        received.append(item)
        delivered.set()

    channel.subscribe(on_item, replay=False)
    channel.start()
    try:
        channel.publish("async")
        assert delivered.wait(2.0)
    finally:
        channel.stop()
    assert received == ["async"]
