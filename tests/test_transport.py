"""Tests for the pyserial transport handle, with ``serial.Serial`` replaced."""

from __future__ import annotations

from types import SimpleNamespace

import pytest
import serial

from queue_sender import transport as transport_mod
from queue_sender.transport import TransportConfig, TransportHandle, TransportState, list_serial_ports
from queue_sender.utils.exceptions import (
    InvalidParameterError,
    PortOpenError,
    TransportClosedError,
    WriteError,
)


class FakeSerial:
    def __init__(self) -> None:
        self.port = None
        self.is_open = False
        self.written = bytearray()
        self.incoming = bytearray()
        self.dtr = True
        self.rts = True

    def open(self) -> None:
        if self.port == "/dev/missing":
            raise serial.SerialException("could not open port /dev/missing")
        self.is_open = True

    def close(self) -> None:
        self.is_open = False

    @property
    def in_waiting(self) -> int:
        return len(self.incoming)

    def read(self, size: int = 1) -> bytes:
        chunk = bytes(self.incoming[:size])
        del self.incoming[:size]
        return chunk

    def write(self, data: bytes) -> int:
        self.written.extend(data)
        return len(data)

    def flush(self) -> None:
        pass


@pytest.fixture
def ports(monkeypatch):
    created: list[FakeSerial] = []

    def make():
        ser = FakeSerial()
        created.append(ser)
        return ser

    monkeypatch.setattr(transport_mod.serial, "Serial", make)
    return created


@pytest.fixture
def handle(ports, config):
    h = TransportHandle(config)
    h.open()
    return h


def test_config_validation():
    assert TransportConfig("/dev/ttyUSB0").baud_rate == 115200
    assert TransportConfig("COM3", 9600).describe() == "COM3 @ 9600 baud"
    with pytest.raises(InvalidParameterError):
        TransportConfig("", 115200)
    with pytest.raises(InvalidParameterError):
        TransportConfig("/dev/ttyUSB0", 1234)


def test_construction_does_not_open(ports, config):
    h = TransportHandle(config)
    assert ports == []
    assert h.state is TransportState.CLOSED
    assert not h.is_open()


def test_open_configures_8n1_without_flow_control(handle, ports):
    ser = ports[0]
    assert handle.is_open()
    assert handle.state is TransportState.OPEN
    assert ser.port == "/dev/ttyUSB0"
    assert ser.baudrate == 115200
    assert ser.bytesize == serial.EIGHTBITS
    assert ser.parity == serial.PARITY_NONE
    assert ser.stopbits == serial.STOPBITS_ONE
    assert (ser.xonxoff, ser.rtscts, ser.dsrdtr) == (False, False, False)


def test_open_failure_points_at_configuration(ports):
    h = TransportHandle(TransportConfig("/dev/missing"))
    with pytest.raises(PortOpenError) as exc:
        h.open()
    assert "Check the port name and baud rate" in str(exc.value)
    assert exc.value.address == "/dev/missing"
    assert h.state is TransportState.CLOSED


def test_set_control_lines(handle, ports):
    handle.set_control_lines(dtr=False, rts=False)
    assert (ports[0].dtr, ports[0].rts) == (False, False)


def test_write_line_appends_terminator(handle, ports):
    handle.write_line("G1 X10 Y10")
    handle.drain()
    assert bytes(ports[0].written) == b"G1 X10 Y10\n"


def test_write_on_closed_handle(config, ports):
    with pytest.raises(WriteError):
        TransportHandle(config).write_line("G21")


def test_read_line_splits_and_skips_blank_lines(handle, ports):
    ports[0].incoming.extend(b"ok\r\n\r\nerror:20\n<Idle")
    assert handle.read_line(0.0) == "ok"
    assert handle.read_line(0.0) == "error:20"
    assert handle.read_line(0.0) is None
    ports[0].incoming.extend(b"|MPos:0.000,0.000,0.000>\n")
    assert handle.read_line(0.0) == "<Idle|MPos:0.000,0.000,0.000>"


def test_close_is_idempotent(handle, ports):
    handle.close()
    handle.close()
    assert not ports[0].is_open
    assert handle.state is TransportState.CLOSED
    with pytest.raises(TransportClosedError):
        handle.read_line(0.0)


def test_iter_lines_stops_when_closed(handle, ports):
    ports[0].incoming.extend(b"ok\nok\n")
    lines = handle.iter_lines(poll_interval=0.0)
    assert next(lines) == "ok"
    assert next(lines) == "ok"
    handle.close()
    assert list(lines) == []


def test_list_serial_ports(monkeypatch):
    info = SimpleNamespace(
        device="/dev/ttyUSB0",
        description="USB Serial",
        manufacturer="FTDI",
        serial_number="A1",
        vid=0x0403,
        pid=0x6001,
    )
    monkeypatch.setattr(transport_mod.list_ports, "comports", lambda: [info])
    assert list_serial_ports() == [{
        "device": "/dev/ttyUSB0",
        "description": "USB Serial",
        "manufacturer": "FTDI",
        "serial_number": "A1",
        "vid": 0x0403,
        "pid": 0x6001,
    }]
