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

"""Serial transport handle.

Wraps a single pyserial port: explicit open (never on construction),
8-N-1 framing without flow control, line writes with a drain step, and a
line reader that splits incoming bytes on newlines.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator

import serial
from serial.tools import list_ports

from .utils.constants import (
    BAUD_DEFAULT,
    LINE_TERMINATOR,
    RX_BUFFER_LIMIT,
    RX_DELIMITER,
    SERIAL_TIMEOUT,
    SERIAL_WRITE_TIMEOUT,
)
from .utils.exceptions import (
    DrainError,
    PortOpenError,
    TransportClosedError,
    WriteError,
)
from .utils.validation import validate_baud_rate, validate_port_name

logger = logging.getLogger(__name__)
serial_log = logging.getLogger("queue_sender.serial")

_SERIAL_ERRORS = (serial.SerialException, OSError)


def list_serial_ports() -> list[dict[str, Any]]:
    """Describe the serial ports visible to the host.

    Returns:
        One dict per port with device, description and USB identifiers
    """
    ports = []
    for info in list_ports.comports():
        ports.append({
            "device": info.device,
            "description": info.description,
            "manufacturer": info.manufacturer,
            "serial_number": info.serial_number,
            "vid": info.vid,
            "pid": info.pid,
        })
    return ports


@dataclass(frozen=True)
class TransportConfig:
    """Where to connect: device path and baud rate (always 8-N-1)."""

    address: str
    baud_rate: int = BAUD_DEFAULT

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", validate_port_name(self.address))
        object.__setattr__(self, "baud_rate", validate_baud_rate(self.baud_rate))

    def describe(self) -> str:
        return f"{self.address} @ {self.baud_rate} baud"


class TransportState(Enum):
    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"


class TransportHandle:
    """One serial connection to a GRBL controller.

    The handle is created closed so callers can prepare before ``open()``.
    Only one owner may write at a time; see ``TransportLease``.

    Example:
        handle = TransportHandle(TransportConfig("/dev/ttyUSB0"))
        handle.open()
        handle.write_line("G21")
        handle.drain()
        reply = handle.read_line(timeout=3.0)
        handle.close()
    """

    def __init__(
        self,
        config: TransportConfig,
        *,
        read_timeout: float = SERIAL_TIMEOUT,
        write_timeout: float = SERIAL_WRITE_TIMEOUT,
    ):
        self.config = config
        self.state = TransportState.CLOSED
        self._read_timeout = read_timeout
        self._write_timeout = write_timeout
        self._ser: serial.Serial | None = None
        self._rx_buf = bytearray()
        self._state_lock = threading.Lock()

    @property
    def address(self) -> str:
        return self.config.address

    def __repr__(self) -> str:
        return f"TransportHandle({self.config.describe()}, {self.state.value})"

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def open(self) -> None:
        """Open the port.

        Raises:
            PortOpenError: If the device is missing, busy or rejects the settings
        """
        with self._state_lock:
            if self.state is TransportState.OPEN:
                return
            self.state = TransportState.OPENING

        ser = serial.Serial()
        ser.port = self.config.address
        ser.baudrate = self.config.baud_rate
        ser.bytesize = serial.EIGHTBITS
        ser.parity = serial.PARITY_NONE
        ser.stopbits = serial.STOPBITS_ONE
        ser.xonxoff = False
        ser.rtscts = False
        ser.dsrdtr = False
        ser.timeout = self._read_timeout
        ser.write_timeout = self._write_timeout

        try:
            ser.open()
        except (serial.SerialException, OSError, ValueError) as e:
            with self._state_lock:
                self.state = TransportState.CLOSED
            logger.error(f"Error opening {self.config.describe()}: {e}")
            raise PortOpenError(
                f"Could not open {self.config.describe()}: {e}. "
                "Check the port name and baud rate, and that no other program is using the port.",
                self.config.address,
            ) from e

        with self._state_lock:
            self._ser = ser
            self._rx_buf.clear()
            self.state = TransportState.OPEN
        logger.info(f"Serial port {self.config.describe()} opened")

    def close(self) -> None:
        """Close the port. Idempotent and safe when never opened."""
        with self._state_lock:
            ser = self._ser
            if ser is None and self.state is TransportState.CLOSED:
                return
            self.state = TransportState.CLOSING
            self._ser = None
        try:
            if ser is not None:
                ser.close()
            logger.info(f"Serial port {self.config.address} closed")
        except _SERIAL_ERRORS as e:
            logger.error(f"Error closing serial port {self.config.address}: {e}")
        finally:
            with self._state_lock:
                self._rx_buf.clear()
                self.state = TransportState.CLOSED

    def is_open(self) -> bool:
        ser = self._ser
        return self.state is TransportState.OPEN and ser is not None and ser.is_open

    def set_control_lines(self, dtr: bool = False, rts: bool = False) -> None:
        """Set DTR/RTS. Best effort: support depends on the USB adapter and driver."""
        ser = self._ser
        if ser is None:
            logger.warning("Cannot set DTR/RTS - port not open")
            return
        try:
            ser.dtr = dtr
            ser.rts = rts
        except (serial.SerialException, OSError, ValueError) as e:
            logger.warning(f"Could not set DTR/RTS on {self.config.address}: {e}")
        else:
            logger.debug(f"DTR={dtr} RTS={rts} on {self.config.address}")

    # ========================================================================
    # I/O
    # ========================================================================

    def write_line(self, line: str) -> None:
        """Write one command line plus terminator.

        Follow with ``drain()`` before assuming the bytes left the host.

        Raises:
            WriteError: If the port is closed or the write fails
        """
        ser = self._ser
        if ser is None or self.state is not TransportState.OPEN:
            raise WriteError(f"Cannot write to {self.config.address} - port not open")
        payload = (line + LINE_TERMINATOR).encode("ascii", errors="replace")
        try:
            ser.write(payload)
        except _SERIAL_ERRORS as e:
            raise WriteError(f"Write to {self.config.address} failed: {e}") from e
        serial_log.debug(f">> {line}")

    def drain(self) -> None:
        """Block until the host-side output buffer is flushed.

        Raises:
            DrainError: If the flush fails
        """
        ser = self._ser
        if ser is None:
            raise DrainError(f"Cannot drain {self.config.address} - port not open")
        try:
            ser.flush()
        except _SERIAL_ERRORS as e:
            raise DrainError(f"Drain on {self.config.address} failed: {e}") from e

    def read_line(self, timeout: float) -> str | None:
        """Return the next received line, or None if none completed in time.

        Raises:
            TransportClosedError: If the port is closed before or while waiting
        """
        deadline = time.monotonic() + max(0.0, timeout)
        while True:
            line = self._pop_line()
            if line is not None:
                if line:
                    serial_log.debug(f"<< {line}")
                    return line
                continue
            ser = self._ser
            if ser is None or self.state is not TransportState.OPEN:
                raise TransportClosedError(f"Port {self.config.address} is closed")
            try:
                chunk = ser.read(ser.in_waiting or 1)
            except _SERIAL_ERRORS as e:
                raise TransportClosedError(f"Read from {self.config.address} failed: {e}") from e
            if chunk:
                self._rx_buf.extend(chunk)
                continue
            if time.monotonic() >= deadline:
                return None

    def iter_lines(self, poll_interval: float = SERIAL_TIMEOUT) -> Iterator[str]:
        """Yield received lines as they arrive until the port is closed."""
        while True:
            try:
                line = self.read_line(poll_interval)
            except TransportClosedError:
                return
            if line is not None:
                yield line

    def _pop_line(self) -> str | None:
        idx = self._rx_buf.find(RX_DELIMITER)
        if idx < 0:
            if len(self._rx_buf) <= RX_BUFFER_LIMIT:
                return None
            raw = bytes(self._rx_buf)
            self._rx_buf.clear()
        else:
            raw = bytes(self._rx_buf[:idx])
            del self._rx_buf[:idx + len(RX_DELIMITER)]
        return raw.decode("ascii", errors="replace").strip(" \r\n")
