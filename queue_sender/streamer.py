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

"""G-code streaming driver.

``GcodeStreamer`` runs one ``StreamSession`` against a transport leased
from the registry's ephemeral slot: it opens the port, waits out the
firmware boot window, then feeds received lines and timer expiries into
the session and carries out the effects it returns (write, arm/cancel the
line timer, publish events, close).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from .connection_registry import ConnectionRegistry
from .events import SOURCE_STREAM, Event
from .protocol import StreamSession, StreamState
from .transport import TransportConfig
from .types import Clock, Effect, EventSink, LineSource, LineTransport, Sleeper
from .utils.config import StreamTimings
from .utils.exceptions import (
    DrainError,
    PortOpenError,
    QueueSenderException,
    TransportBusyError,
    TransportClosedError,
    WriteError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamResult:
    """Outcome of one streaming session."""

    success: bool
    total_lines: int
    lines_sent: int
    elapsed_s: float
    error: str | None = None
    error_responses: int = 0
    corrupted_lines: int = 0
    resets_detected: int = 0
    failure: QueueSenderException | None = field(default=None, compare=False, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "totalLines": self.total_lines,
            "linesSent": self.lines_sent,
            "elapsedSeconds": round(self.elapsed_s, 2),
            "error": self.error,
            "errorResponses": self.error_responses,
            "corruptedLines": self.corrupted_lines,
            "resetsDetected": self.resets_detected,
            "failureType": type(self.failure).__name__ if self.failure is not None else None,
        }


class GcodeStreamer:
    """Streams command sequences one acknowledged line at a time.

    Example:
        registry = ConnectionRegistry()
        streamer = GcodeStreamer(registry)
        result = streamer.stream(
            CommandSequence.from_text(gcode),
            TransportConfig("/dev/ttyUSB0"),
            sink=broadcaster.publish,
        )
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        timings: StreamTimings | None = None,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleeper = time.sleep,
    ):
        self._registry = registry
        self.timings = timings or registry.timings
        self._clock = clock
        self._sleep = sleep

    def stream(
        self,
        lines: LineSource,
        config: TransportConfig,
        sink: EventSink | None = None,
        job_id: str | None = None,
    ) -> StreamResult:
        """Transmit ``lines`` and block until the session terminates."""
        session = StreamSession(
            lines,
            response_timeout=self.timings.response_timeout,
            max_consecutive_timeouts=self.timings.max_consecutive_timeouts,
        )
        run = _SessionRun(self, session, sink, job_id)
        session.start(self._clock())
        logger.info(f"Streaming {session.total} lines to {config.describe()}")

        try:
            with self._registry.ephemeral_session(config) as handle:
                run.drive(handle)
        except (PortOpenError, TransportBusyError) as e:
            run.execute(session.on_transport_error(e, self._clock()), None)

        return StreamResult(
            success=bool(session.success),
            total_lines=session.total,
            lines_sent=session.cursor,
            elapsed_s=session.elapsed(self._clock()),
            error=session.error,
            failure=session.failure,
            error_responses=session.error_responses,
            corrupted_lines=session.corrupted_lines,
            resets_detected=session.resets_detected,
        )


class _SessionRun:
    """Carries out the effects of one session against one handle."""

    def __init__(
        self,
        streamer: GcodeStreamer,
        session: StreamSession,
        sink: EventSink | None,
        job_id: str | None,
    ):
        self.streamer = streamer
        self.session = session
        self.sink = sink
        self.job_id = job_id
        self.deadline: float | None = None

    def now(self) -> float:
        return self.streamer._clock()

    def drive(self, handle: LineTransport) -> None:
        session = self.session
        timings = self.streamer.timings

        self.execute(session.on_connected(self.now(), handle.address), handle)
        self.streamer._sleep(timings.stream_boot_delay)
        self.execute(session.on_firmware_window_elapsed(self.now()), handle)

        while session.state is StreamState.STREAMING:
            # Incoming chatter must not hold off an expired line timer.
            if self.deadline is not None and self.now() >= self.deadline:
                self.deadline = None
                self.execute(session.on_timeout(self.now()), handle)
                continue
            if self.deadline is None:
                remaining = timings.response_timeout
            else:
                remaining = max(0.0, self.deadline - self.now())
            try:
                line = handle.read_line(remaining)
            except TransportClosedError as e:
                lost = TransportClosedError(f"Connection lost: {e}. Check USB cable!")
                effects = session.on_transport_error(lost, self.now())
            else:
                if line is None:
                    effects = session.on_timeout(self.now())
                else:
                    effects = session.on_line(line, self.now())
            self.execute(effects, handle)

    def execute(self, effects: list[Effect], handle: LineTransport | None) -> None:
        for effect in effects:
            kind = effect[0]
            if kind == "emit":
                self.emit(effect[1], effect[2])
            elif kind == "send":
                if not self.send(handle, effect[1], effect[2]):
                    # The failure effects replace whatever was queued after the send.
                    return
            elif kind == "arm_timer":
                self.deadline = self.now() + effect[1]
            elif kind == "cancel_timer":
                self.deadline = None
            elif kind == "close":
                self.close(handle, graceful=effect[1])

    def send(self, handle: LineTransport | None, idx: int, line: str) -> bool:
        total = self.session.total
        logger.debug(f"Sending [{idx + 1}/{total}]: {line}")
        try:
            if handle is None:
                raise WriteError("No open transport")
            handle.write_line(line)
        except WriteError as e:
            logger.error(f"Error writing to serial port: {e}")
            self.execute(self.session.on_transport_error(e, self.now()), handle)
            return False
        try:
            handle.drain()
        except DrainError as e:
            logger.error(f"Error draining port: {e}")
        return True

    def close(self, handle: LineTransport | None, graceful: bool) -> None:
        if graceful:
            self.streamer._sleep(self.streamer.timings.completion_grace_delay)
        if handle is not None:
            handle.close()
        self.execute(self.session.on_closed(self.now()), handle)

    def emit(self, kind: str, payload: dict[str, Any]) -> None:
        if self.sink is None:
            return
        elapsed_ms = int(max(0.0, self.now() - self.session.started_at) * 1000)
        self.sink(Event(kind, payload, timestamp_ms=elapsed_ms, job_id=self.job_id, source=SOURCE_STREAM))
