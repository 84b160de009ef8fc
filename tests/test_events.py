"""Test event fan-out."""

from aliaslog.core.events import EventType, InMemoryBroadcaster, WatchEvent


def test_publish_reaches_every_subscriber():
    broadcaster = InMemoryBroadcaster()
    seen_a, seen_b = [], []
    broadcaster.subscribe(seen_a.append)
    broadcaster.subscribe(seen_b.append)

    event = WatchEvent(type=EventType.FILE_ADDED, payload={"fileName": "a.log"})
    broadcaster.publish(event)

    assert seen_a == [event]
    assert seen_b == [event]


def test_failing_subscriber_does_not_block_others():
    broadcaster = InMemoryBroadcaster()
    seen = []

    def broken(event):
        raise RuntimeError("socket closed")

    broadcaster.subscribe(broken)
    broadcaster.subscribe(seen.append)
    broadcaster.publish(WatchEvent(type=EventType.CRITICAL_ERROR_ALERT))

    assert len(seen) == 1
    assert broadcaster.subscriber_count == 2


def test_unsubscribe():
    broadcaster = InMemoryBroadcaster()
    seen = []
    unsubscribe = broadcaster.subscribe(seen.append)
    unsubscribe()
    unsubscribe()

    broadcaster.publish(WatchEvent(type=EventType.FILE_REMOVED))
    assert seen == []
    assert broadcaster.subscriber_count == 0


def test_event_to_dict():
    event = WatchEvent(
        type=EventType.PATH_NOT_FOUND,
        context={"userId": "alice"},
        payload={"path": "/missing"},
    )
    data = event.to_dict()

    assert data["type"] == "PATH_NOT_FOUND"
    assert data["context"] == {"userId": "alice"}
    assert data["payload"] == {"path": "/missing"}
