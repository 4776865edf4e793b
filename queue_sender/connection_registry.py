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

"""Connection management for the streamer and manual commands.

The registry owns two independent slots. The ``ephemeral`` slot belongs
to one streaming run at a time and is closed when the run ends. The
``persistent`` slot is a long-lived connection for manual commands that
survives until ``disconnect()``. Opening a slot that already holds a
handle closes the old one (close observed) and waits the settle delay
before the new port is opened.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

from .events import SOURCE_CONNECTION, Event, EventBroadcaster, now_ms
from .transport import TransportConfig, TransportHandle
from .types import Clock, LineTransport, Sleeper, TransportFactory
from .utils.config import StreamTimings
from .utils.exceptions import (
    DrainError,
    InvalidParameterError,
    TransportBusyError,
    TransportClosedError,
)

logger = logging.getLogger(__name__)

PERSISTENT = "persistent"
EPHEMERAL = "ephemeral"


class TransportLease:
    """Exclusive right to write to the handle of one slot."""

    def __init__(self, name: str):
        self.name = name
        self.owner: str | None = None
        self._lock = threading.Lock()

    @property
    def held(self) -> bool:
        return self._lock.locked()

    def acquire(self, owner: str) -> None:
        """Take the lease without waiting.

        Raises:
            TransportBusyError: If another owner holds it
        """
        if not self._lock.acquire(blocking=False):
            raise TransportBusyError(
                f"The {self.name} connection is in use by {self.owner or 'another owner'}"
            )
        self.owner = owner

    def release(self) -> None:
        self.owner = None
        self._lock.release()

    @contextmanager
    def hold(self, owner: str) -> Iterator["TransportLease"]:
        self.acquire(owner)
        try:
            yield self
        finally:
            self.release()


class ConnectionSlot:
    def __init__(self, name: str):
        self.name = name
        self.handle: LineTransport | None = None
        self.lease = TransportLease(name)
        self.lock = threading.Lock()


@dataclass(frozen=True)
class ConnectionStatus:
    connected: bool
    address: str | None
    is_open: bool

    def to_dict(self) -> dict[str, Any]:
        return {"connected": self.connected, "port": self.address, "isOpen": self.is_open}


@dataclass(frozen=True)
class CommandResponse:
    command: str
    responses: tuple[str, ...]
    persistent: bool

    @property
    def text(self) -> str:
        if self.responses:
            return " ".join(self.responses)
        return "ok" if self.persistent else "No response received"

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": f"Command sent: {self.command}",
            "response": self.text,
            "responses": list(self.responses),
            "persistent": self.persistent,
        }


class ConnectionRegistry:
    """Tracks the persistent and ephemeral transports of the process.

    Example:
        registry = ConnectionRegistry()
        registry.connect(TransportConfig("/dev/ttyUSB0"))
        print(registry.send_one_command("$$").text)
        registry.disconnect()
    """

    def __init__(
        self,
        timings: StreamTimings | None = None,
        *,
        transport_factory: TransportFactory = TransportHandle,
        broadcaster: EventBroadcaster | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleeper = time.sleep,
    ):
        self.timings = timings or StreamTimings()
        self._factory = transport_factory
        self._broadcaster = broadcaster
        self._clock = clock
        self._sleep = sleep
        self._slots = {
            PERSISTENT: ConnectionSlot(PERSISTENT),
            EPHEMERAL: ConnectionSlot(EPHEMERAL),
        }

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close_all()
        return False

    # ========================================================================
    # SLOTS
    # ========================================================================

    def slot(self, name: str) -> ConnectionSlot:
        try:
            return self._slots[name]
        except KeyError:
            raise InvalidParameterError("slot", name, f"must be '{PERSISTENT}' or '{EPHEMERAL}'")

    def handle(self, name: str) -> LineTransport | None:
        return self.slot(name).handle

    def open_slot(self, name: str, config: TransportConfig) -> LineTransport:
        """Replace the handle in a slot with a newly opened one.

        Raises:
            PortOpenError: If the new port cannot be opened
        """
        slot = self.slot(name)
        with slot.lock:
            self._close_slot_locked(slot, settle=True)
            handle = self._factory(config)
            logger.info(f"Opening {name} connection to {config.describe()}")
            handle.open()
            handle.set_control_lines(dtr=False, rts=False)
            slot.handle = handle
        return handle

    def close_slot(self, name: str) -> bool:
        """Close and forget the handle in a slot. Returns True if one was open."""
        slot = self.slot(name)
        with slot.lock:
            return self._close_slot_locked(slot, settle=False)

    def _close_slot_locked(self, slot: ConnectionSlot, *, settle: bool) -> bool:
        handle = slot.handle
        if handle is None:
            return False
        was_open = handle.is_open()
        if was_open:
            logger.info(f"Closing existing {slot.name} connection to {handle.address}...")
        handle.close()
        slot.handle = None
        if settle and was_open:
            self._sleep(self.timings.settle_delay)
        return was_open

    @contextmanager
    def ephemeral_session(self, config: TransportConfig, owner: str = "stream") -> Iterator[LineTransport]:
        """Lease the ephemeral slot, open it, and close it when the block exits.

        Raises:
            TransportBusyError: If another run holds the ephemeral slot
            PortOpenError: If the port cannot be opened
        """
        slot = self.slot(EPHEMERAL)
        slot.lease.acquire(owner)
        try:
            handle = self.open_slot(EPHEMERAL, config)
            yield handle
        finally:
            self.close_slot(EPHEMERAL)
            slot.lease.release()

    # ========================================================================
    # PERSISTENT CONNECTION
    # ========================================================================

    def connect(self, config: TransportConfig) -> LineTransport:
        """Open (or reopen) the persistent connection and wait for the firmware.

        Raises:
            PortOpenError: If the port cannot be opened
            TransportBusyError: If a command is using the persistent connection
        """
        slot = self.slot(PERSISTENT)
        with slot.lease.hold("connect"):
            handle = self.open_slot(PERSISTENT, config)
            self._sleep(self.timings.persistent_boot_delay)
        logger.info(f"Persistent connection established on {config.describe()}")
        self._publish("Persistent connection established", address=config.address)
        return handle

    def disconnect(self) -> bool:
        """Close the persistent connection. Returns False if none was open."""
        slot = self.slot(PERSISTENT)
        with slot.lease.hold("disconnect"):
            closed = self.close_slot(PERSISTENT)
        if closed:
            self._publish("Persistent connection closed")
        else:
            logger.info("No active persistent connection")
        return closed

    def send_one_command(
        self,
        command: str,
        config: TransportConfig | None = None,
        prefer_persistent: bool = True,
    ) -> CommandResponse:
        """Send a single command line and collect what the controller replies.

        Uses the persistent connection when it is open, otherwise opens a
        short-lived connection to ``config`` for this one command.

        Raises:
            InvalidParameterError: If the command is empty, or no config is
                given when a temporary connection is needed
            PortOpenError: If the temporary port cannot be opened
            WriteError: If the command cannot be written
            TransportBusyError: If the persistent connection is in use
        """
        command = (command or "").strip()
        if not command:
            raise InvalidParameterError("command", command, "must be non-empty")

        slot = self.slot(PERSISTENT)
        handle = slot.handle
        if prefer_persistent and handle is not None and handle.is_open():
            logger.info(f"Sending command via persistent connection: {command}")
            with slot.lease.hold("command"):
                self._write_and_drain(handle, command)
                responses = self._collect(handle, self.timings.persistent_response_window)
            return CommandResponse(command, tuple(responses), persistent=True)

        if config is None:
            raise InvalidParameterError(
                "config", None, "required when no persistent connection is open"
            )
        logger.info(f"Sending command to {config.describe()}: {command}")
        temp = self._factory(config)
        temp.open()
        try:
            temp.set_control_lines(dtr=False, rts=False)
            self._sleep(self.timings.command_boot_delay)
            self._write_and_drain(temp, command)
            responses = self._collect(temp, self.timings.command_response_window)
        finally:
            temp.close()
        logger.info(f"Total responses received: {len(responses)}")
        return CommandResponse(command, tuple(responses), persistent=False)

    def get_status(self) -> ConnectionStatus:
        handle = self.handle(PERSISTENT) or self.handle(EPHEMERAL)
        if handle is None:
            return ConnectionStatus(connected=False, address=None, is_open=False)
        is_open = handle.is_open()
        return ConnectionStatus(connected=is_open, address=handle.address, is_open=is_open)

    def close_all(self) -> None:
        for name in (EPHEMERAL, PERSISTENT):
            self.close_slot(name)

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _write_and_drain(self, handle: LineTransport, command: str) -> None:
        handle.write_line(command)
        try:
            handle.drain()
        except DrainError as e:
            logger.error(f"Drain error: {e}")

    def _collect(self, handle: LineTransport, window: float) -> list[str]:
        responses: list[str] = []
        deadline = self._clock() + window
        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                return responses
            try:
                line = handle.read_line(remaining)
            except TransportClosedError as e:
                logger.warning(f"Connection closed while waiting for a response: {e}")
                return responses
            if line:
                logger.info(f"Controller response: {line}")
                responses.append(line)

    def _publish(self, message: str, **extra: Any) -> None:
        if self._broadcaster is None:
            return
        payload = {"message": message}
        payload.update(extra)
        self._broadcaster.publish(
            Event("status", payload, timestamp_ms=now_ms(), source=SOURCE_CONNECTION)
        )
