"""Tests for the in-process event hub."""

import asyncio

from pulsecore.core.events import EventHub


def test_publish_fans_out_to_every_subscriber():
    async def run():
        hub = EventHub()
        first = hub.subscribe()
        second = hub.subscribe()
        delivered = hub.publish("telemetry.snapshot", {"cpu": 1})
        return delivered, first.get_nowait(), second.get_nowait()

    delivered, a, b = asyncio.run(run())
    assert delivered == 2
    assert a.name == b.name == "telemetry.snapshot"
    assert a.payload == {"cpu": 1}


def test_slow_subscriber_loses_oldest_events():
    async def run():
        hub = EventHub(max_queue=2)
        queue = hub.subscribe()
        for i in range(5):
            hub.publish("tick", i)
        return hub, [queue.get_nowait().payload for _ in range(queue.qsize())]

    hub, payloads = asyncio.run(run())
    assert payloads == [3, 4]
    assert hub.dropped == 3


def test_unsubscribed_queue_receives_nothing():
    async def run():
        hub = EventHub()
        queue = hub.subscribe()
        hub.unsubscribe(queue)
        hub.publish("tick", 1)
        return hub, queue.empty()

    hub, empty = asyncio.run(run())
    assert empty
    assert hub.subscriber_count == 0


def test_failing_listener_does_not_block_others():
    hub = EventHub()
    seen = []

    def broken(event):
        raise ValueError("nope")

    hub.add_listener(broken)
    hub.add_listener(seen.append)

    assert hub.publish("system.warning", "disk full") == 1
    assert [e.payload for e in seen] == ["disk full"]

    hub.remove_listener(seen.append)
    hub.publish("system.warning", "again")
    assert len(seen) == 1
