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

"""Send/acknowledge streaming state machine.

``StreamSession`` holds the state of one transmission and reacts to
discrete inputs (connected, firmware window elapsed, line received,
timer fired, transport failure, closed). Each input returns the effects
the driver must carry out, in order; the session itself never touches
the port or the clock. Exactly one line is in flight at a time.
"""

from __future__ import annotations

import logging
from enum import Enum

from .types import Effect, EventKind, EventPayload, LineSource
from .utils.constants import (
    ACK_TOKENS,
    BANNER_TOKENS,
    CORRUPTION_MIN_LENGTH,
    CORRUPTION_PAT,
    ERROR_PREFIX,
    MAX_CONSECUTIVE_TIMEOUTS,
    RESPONSE_TIMEOUT,
)
from .utils.exceptions import (
    AckTimeout,
    ControllerResetDetected,
    ControllerUnresponsive,
    CorruptionDetected,
    QueueSenderException,
    StreamException,
)
from .utils.grbl_errors import annotate_grbl_error

logger = logging.getLogger(__name__)

CORRUPTION_WARNING = "WARNING: Data corruption detected - Check USB cable!"
RESET_WARNING = "WARNING: GRBL reset detected - Check USB cable! Attempting to continue..."


class StreamState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_FIRMWARE = "awaiting_firmware"
    STREAMING = "streaming"
    DRAINING = "draining"
    TERMINATED = "terminated"


# ============================================================================
# LINE CLASSIFICATION
# ============================================================================

def is_corrupted(line: str) -> bool:
    """Long line containing control characters or a run of '?'."""
    return len(line) > CORRUPTION_MIN_LENGTH and CORRUPTION_PAT.search(line) is not None


def is_banner(line: str) -> bool:
    return all(token in line for token in BANNER_TOKENS)


def is_error(line: str) -> bool:
    return line.lower().startswith(ERROR_PREFIX)


def is_ack(line: str) -> bool:
    lower = line.lower()
    return any(token in lower for token in ACK_TOKENS)


# ============================================================================
# SESSION
# ============================================================================

class StreamSession:
    """State of one transmission of a command sequence.

    ``cursor`` counts the lines already sent, so it is also the 0-based
    index of the next line and the 1-based number of the line in flight.
    It never moves backwards: a line whose acknowledgment was lost (timeout
    or controller reset) is skipped, not resent.
    """

    def __init__(
        self,
        lines: LineSource,
        *,
        response_timeout: float = RESPONSE_TIMEOUT,
        max_consecutive_timeouts: int = MAX_CONSECUTIVE_TIMEOUTS,
    ):
        self.lines = lines
        self.total = len(lines)
        self.response_timeout = response_timeout
        self.max_consecutive_timeouts = max_consecutive_timeouts

        self.state = StreamState.IDLE
        self.cursor = 0
        self.awaiting_ack = False
        self.consecutive_timeouts = 0
        self.firmware_ready = False
        self.transmission_started = False
        self.started_at = 0.0
        self.finished_at: float | None = None

        self.success: bool | None = None
        self.error: str | None = None
        self.failure: QueueSenderException | None = None
        self.last_warning: StreamException | None = None
        self.error_responses = 0
        self.corrupted_lines = 0
        self.resets_detected = 0

    @property
    def terminated(self) -> bool:
        return self.state is StreamState.TERMINATED

    def elapsed(self, now: float) -> float:
        end = self.finished_at if self.finished_at is not None else now
        return max(0.0, end - self.started_at)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def start(self, now: float) -> list[Effect]:
        if self.state is not StreamState.IDLE:
            return []
        self.state = StreamState.CONNECTING
        self.started_at = now
        return []

    def on_connected(self, now: float, address: str) -> list[Effect]:
        if self.state is not StreamState.CONNECTING:
            return []
        self.state = StreamState.AWAITING_FIRMWARE
        return [_emit("status", {"message": f"Connected to controller on {address}"})]

    def on_firmware_window_elapsed(self, now: float) -> list[Effect]:
        if self.state is not StreamState.AWAITING_FIRMWARE:
            return []
        self.state = StreamState.STREAMING
        effects: list[Effect] = [
            _emit("status", {"message": "GRBL ready, starting transmission..."}),
        ]
        effects.extend(self._send_next(now))
        return effects

    def on_line(self, text: str, now: float) -> list[Effect]:
        if self.state not in (StreamState.AWAITING_FIRMWARE, StreamState.STREAMING):
            return []

        if is_corrupted(text):
            self.corrupted_lines += 1
            logger.warning(f"Corrupted data received: {text[:50]!r}")
            return [self._warn(CorruptionDetected(CORRUPTION_WARNING))]

        effects: list[Effect] = [_emit("log", {"message": text, "line": self.cursor})]

        if is_banner(text):
            if not self.firmware_ready:
                # The boot banner after opening the port.
                self.firmware_ready = True
                logger.info("GRBL initialized")
                return effects
            if self.transmission_started:
                return effects + self._recover_from_reset(now)
            return effects

        if is_error(text):
            self.error_responses += 1
            message = f"GRBL Error: {annotate_grbl_error(text)}"
            logger.error(message)
            effects.append(_emit("error", {"message": message}))

        if is_ack(text) and self.awaiting_ack and self.state is StreamState.STREAMING:
            self.awaiting_ack = False
            self.consecutive_timeouts = 0
            effects.append(("cancel_timer",))
            effects.extend(self._send_next(now))

        return effects

    def on_timeout(self, now: float) -> list[Effect]:
        if self.state is not StreamState.STREAMING or not self.awaiting_ack:
            return []
        self.consecutive_timeouts += 1
        logger.warning(
            f"Timeout {self.consecutive_timeouts}/{self.max_consecutive_timeouts} "
            f"waiting for response to line {self.cursor}"
        )
        if self.consecutive_timeouts >= self.max_consecutive_timeouts:
            return self._fail(now, ControllerUnresponsive(
                f"Critical: {self.max_consecutive_timeouts} consecutive timeouts - "
                "controller may be frozen. Check USB cable and power!"
            ))
        self.awaiting_ack = False
        effects = [self._warn(AckTimeout(
            f"WARNING: Timeout on line {self.cursor} - Continuing... (Check USB cable!)",
            line_number=self.cursor,
        ))]
        effects.extend(self._send_next(now))
        return effects

    def on_transport_error(self, error: QueueSenderException, now: float) -> list[Effect]:
        """Fail the session with a transport exception (open, write or lost port)."""
        if self.state in (StreamState.TERMINATED, StreamState.DRAINING):
            return []
        return self._fail(now, error)

    def on_closed(self, now: float) -> list[Effect]:
        if self.state is not StreamState.DRAINING:
            return []
        self.state = StreamState.TERMINATED
        self.success = True
        return []

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _send_next(self, now: float) -> list[Effect]:
        if self.cursor >= self.total:
            return self._finish(now)
        idx = self.cursor
        line = self.lines[idx]
        self.cursor += 1
        self.awaiting_ack = True
        self.transmission_started = True
        return [
            _emit("progress", {"current": idx + 1, "total": self.total, "line": line}),
            ("send", idx, line),
            ("arm_timer", self.response_timeout),
        ]

    def _recover_from_reset(self, now: float) -> list[Effect]:
        self.resets_detected += 1
        self.awaiting_ack = False
        logger.error("GRBL reset detected during transmission - continuing (check USB cable)")
        effects: list[Effect] = [
            self._warn(ControllerResetDetected(RESET_WARNING)),
            ("cancel_timer",),
        ]
        effects.extend(self._send_next(now))
        return effects

    def _finish(self, now: float) -> list[Effect]:
        self.state = StreamState.DRAINING
        self.awaiting_ack = False
        self.finished_at = now
        total_time = round(self.elapsed(now), 2)
        logger.info(f"G-code transmission complete in {total_time} seconds")
        return [
            ("cancel_timer",),
            _emit("complete", {"totalLines": self.total, "totalTimeSeconds": total_time}),
            ("close", True),
        ]

    def _warn(self, warning: StreamException) -> Effect:
        """Record a recoverable condition and surface it as a log event."""
        self.last_warning = warning
        return _emit("log", {"message": str(warning), "line": self.cursor})

    def _fail(self, now: float, error: QueueSenderException) -> list[Effect]:
        self.state = StreamState.TERMINATED
        self.awaiting_ack = False
        self.success = False
        self.failure = error
        self.error = message = str(error)
        self.finished_at = now
        logger.error(f"Transmission failed: {message}")
        return [
            ("cancel_timer",),
            _emit("error", {"message": message}),
            ("close", False),
        ]


def _emit(kind: EventKind, payload: EventPayload) -> Effect:
    return ("emit", kind, payload)
