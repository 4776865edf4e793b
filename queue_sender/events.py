#!/usr/bin/env python3
# Queue Sender (GRBL G-code Queue Sender)
# Copyright (C) 2026 Bob Kolbasowski
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Event envelopes and fan-out to observers.

Streaming sessions, the job queue and the connection registry publish
``Event`` objects to an ``EventBroadcaster``. Observers either receive
them as they happen (callbacks, or a ``QueueObserver`` backed by a
``queue.Queue`` for another thread) or read the latest state from a
``StatusBoard``.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Callable

from .utils.constants import EVENT_QUEUE_MAXSIZE, STATUS_LOG_TAIL

logger = logging.getLogger(__name__)

SOURCE_STREAM = "stream"
SOURCE_QUEUE = "queue"
SOURCE_CONNECTION = "connection"


@dataclass(frozen=True)
class Event:
    """One typed envelope.

    ``timestamp_ms`` is relative to the session start for stream events and
    epoch milliseconds for queue and connection events.
    """

    kind: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp_ms: int = 0
    job_id: str | None = None
    source: str = SOURCE_STREAM

    def with_job(self, job_id: str | None) -> "Event":
        return replace(self, job_id=job_id)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.kind,
            "timestampMs": self.timestamp_ms,
            "payload": dict(self.payload),
            "source": self.source,
        }
        if self.job_id is not None:
            data["jobId"] = self.job_id
        return data


EventCallback = Callable[[Event], None]


def now_ms() -> int:
    return int(time.time() * 1000)


def format_sse(event: Event) -> str:
    """Frame an event for a text/event-stream response."""
    data = dict(event.payload)
    data["timestamp"] = event.timestamp_ms
    if event.job_id is not None:
        data["jobId"] = event.job_id
    return f"event: {event.kind}\ndata: {json.dumps(data)}\n\n"


class Subscription:
    def __init__(self, broadcaster: "EventBroadcaster", callback: EventCallback):
        self._broadcaster = broadcaster
        self.callback = callback

    def unsubscribe(self) -> None:
        self._broadcaster.unsubscribe(self.callback)


class EventBroadcaster:
    """Fans events out to every subscribed observer.

    Observers run on the publishing thread. A failing observer is logged and
    skipped; it never interrupts the publisher or the other observers.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: list[EventCallback] = []

    def subscribe(self, callback: EventCallback) -> Subscription:
        with self._lock:
            self._subscribers.append(callback)
        return Subscription(self, callback)

    def unsubscribe(self, callback: EventCallback) -> None:
        with self._lock:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: Event) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Event observer failed on '{event.kind}': {e}", exc_info=True)

    __call__ = publish


class QueueObserver:
    """Push channel: buffers events in a bounded ``queue.Queue``.

    When the buffer is full the oldest event is dropped.
    """

    def __init__(self, broadcaster: EventBroadcaster, maxsize: int = EVENT_QUEUE_MAXSIZE):
        self._q: queue.Queue[Event] = queue.Queue(maxsize=maxsize)
        self.dropped = 0
        self._subscription = broadcaster.subscribe(self._on_event)

    def _on_event(self, event: Event) -> None:
        while True:
            try:
                self._q.put_nowait(event)
                return
            except queue.Full:
                try:
                    self._q.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def get(self, timeout: float | None = None) -> Event | None:
        try:
            return self._q.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[Event]:
        events = []
        while True:
            try:
                events.append(self._q.get_nowait())
            except queue.Empty:
                return events

    def close(self) -> None:
        self._subscription.unsubscribe()


class StatusBoard:
    """Pull observer: keeps the latest state for status polling."""

    def __init__(self, broadcaster: EventBroadcaster, log_tail: int = STATUS_LOG_TAIL):
        self._lock = threading.Lock()
        self._last_by_kind: dict[str, dict[str, Any]] = {}
        self._progress: dict[str, dict[str, Any]] = {}
        self._log: deque[str] = deque(maxlen=log_tail)
        self._last_error: str | None = None
        self._subscription = broadcaster.subscribe(self._on_event)

    def _on_event(self, event: Event) -> None:
        with self._lock:
            self._last_by_kind[event.kind] = event.to_dict()
            if event.kind == "progress":
                key = event.job_id or ""
                self._progress[key] = dict(event.payload)
            elif event.kind == "log":
                message = event.payload.get("message")
                if message:
                    self._log.append(str(message))
            elif event.kind == "error":
                self._last_error = event.payload.get("message")

    def progress(self, job_id: str | None = None) -> dict[str, Any] | None:
        with self._lock:
            value = self._progress.get(job_id or "")
            return dict(value) if value is not None else None

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "last": {kind: dict(data) for kind, data in self._last_by_kind.items()},
                "progress": {key: dict(value) for key, value in self._progress.items()},
                "log": list(self._log),
                "lastError": self._last_error,
            }

    def close(self) -> None:
        self._subscription.unsubscribe()
