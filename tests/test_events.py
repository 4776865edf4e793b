"""Tests for event fan-out and the push/pull observers."""

from __future__ import annotations

import json

from queue_sender.events import (
    Event,
    EventBroadcaster,
    QueueObserver,
    StatusBoard,
    format_sse,
)


def test_publish_reaches_every_subscriber(broadcaster):
    first, second = [], []
    broadcaster.subscribe(first.append)
    broadcaster.subscribe(second.append)
    event = Event("status", {"message": "hello"})

    broadcaster.publish(event)

    assert first == [event]
    assert second == [event]
    assert broadcaster.subscriber_count == 2


def test_failing_observer_does_not_stop_others(broadcaster):
    received = []

    def broken(event):
        raise ValueError("observer bug")

    broadcaster.subscribe(broken)
    broadcaster.subscribe(received.append)
    broadcaster.publish(Event("log", {"message": "ok"}))
    assert len(received) == 1


def test_unsubscribe(broadcaster):
    received = []
    subscription = broadcaster.subscribe(received.append)
    subscription.unsubscribe()
    subscription.unsubscribe()
    broadcaster.publish(Event("log"))
    assert received == []
    assert broadcaster.subscriber_count == 0


def test_queue_observer_drops_oldest_when_full():
    broadcaster = EventBroadcaster()
    observer = QueueObserver(broadcaster, maxsize=2)
    for i in range(3):
        broadcaster.publish(Event("progress", {"current": i}))

    events = observer.drain()

    assert [e.payload["current"] for e in events] == [1, 2]
    assert observer.dropped == 1
    assert observer.get(timeout=0.01) is None
    observer.close()
    assert broadcaster.subscriber_count == 0


def test_status_board_keeps_latest_state(broadcaster):
    board = StatusBoard(broadcaster, log_tail=2)
    broadcaster.publish(Event("progress", {"current": 1, "total": 4}, job_id="a"))
    broadcaster.publish(Event("progress", {"current": 2, "total": 4}, job_id="a"))
    for message in ("ok", "ok", "error:20"):
        broadcaster.publish(Event("log", {"message": message}))
    broadcaster.publish(Event("error", {"message": "GRBL Error: error:20"}))

    assert board.progress("a") == {"current": 2, "total": 4}
    assert board.progress("b") is None
    snapshot = board.snapshot()
    assert snapshot["log"] == ["ok", "error:20"]
    assert snapshot["lastError"] == "GRBL Error: error:20"
    assert snapshot["last"]["progress"]["jobId"] == "a"


def test_event_to_dict():
    event = Event("complete", {"totalLines": 4}, timestamp_ms=1200, job_id="a")
    assert event.to_dict() == {
        "type": "complete",
        "timestampMs": 1200,
        "payload": {"totalLines": 4},
        "source": "stream",
        "jobId": "a",
    }
    assert "jobId" not in Event("log").to_dict()


def test_format_sse():
    frame = format_sse(Event("progress", {"current": 1, "total": 4}, timestamp_ms=50))
    head, data = frame.rstrip("\n").split("\n")
    assert head == "event: progress"
    assert json.loads(data[len("data: "):]) == {"current": 1, "total": 4, "timestamp": 50}
    assert frame.endswith("\n\n")
