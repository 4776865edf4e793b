"""Shared fakes for the transport, the clock and the streamer.

The fakes never sleep: ``FakeClock.sleep`` advances simulated time and a
``FakeTransport`` with nothing to read advances the clock by the full read
timeout before reporting no line.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Callable

import pytest

from queue_sender.connection_registry import ConnectionRegistry
from queue_sender.events import Event, EventBroadcaster
from queue_sender.streamer import GcodeStreamer, StreamResult
from queue_sender.transport import TransportConfig
from queue_sender.utils.config import StreamTimings
from queue_sender.utils.exceptions import (
    DrainError,
    PortOpenError,
    TransportClosedError,
    WriteError,
)

BANNER = "Grbl 1.1h ['$' for help]"
EXAMPLE_LINES = ["G21", "G90", "G1 Z5", "G1 X10 Y10"]


def ack_all(line: str) -> list[str]:
    return ["ok"]


def silent(line: str) -> list[str]:
    return []


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += max(0.0, seconds)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


class FakeTransport:
    """Scripted stand-in for ``TransportHandle``."""

    def __init__(
        self,
        config: TransportConfig,
        clock: FakeClock,
        log: list[tuple[str, str]],
        responder: Callable[[str], list[str]] = ack_all,
        boot_lines: tuple[str, ...] = (),
        fail_open: str | None = None,
        fail_write_after: int | None = None,
        fail_drain: bool = False,
        noise: str | None = None,
        noise_reads: int = 0,
        noise_interval: float = 0.5,
    ) -> None:
        self.config = config
        self.clock = clock
        self.log = log
        self.responder = responder
        self.boot_lines = boot_lines
        self.fail_open = fail_open
        self.fail_write_after = fail_write_after
        self.fail_drain = fail_drain
        self.noise = noise
        self.noise_reads = noise_reads
        self.noise_interval = noise_interval
        self.rx: deque[str] = deque()
        self.written: list[str] = []
        self.opened = False
        self.control_lines: tuple[bool, bool] | None = None

    @property
    def address(self) -> str:
        return self.config.address

    def open(self) -> None:
        if self.fail_open:
            raise PortOpenError(self.fail_open, self.address)
        self.opened = True
        self.rx.extend(self.boot_lines)
        self.log.append(("open", self.address))

    def is_open(self) -> bool:
        return self.opened

    def set_control_lines(self, dtr: bool = False, rts: bool = False) -> None:
        self.control_lines = (dtr, rts)

    def write_line(self, line: str) -> None:
        if not self.opened:
            raise WriteError("port not open")
        if self.fail_write_after is not None and len(self.written) >= self.fail_write_after:
            raise WriteError("write failed")
        self.written.append(line)
        self.rx.extend(self.responder(line))

    def drain(self) -> None:
        if self.fail_drain:
            raise DrainError("drain failed")

    def read_line(self, timeout: float) -> str | None:
        if not self.opened:
            raise TransportClosedError("closed")
        if self.rx:
            return self.rx.popleft()
        if self.noise is not None and self.noise_reads > 0:
            # Line noise keeps arriving no matter how short the read timeout is.
            self.noise_reads -= 1
            self.clock.advance(min(self.noise_interval, timeout))
            return self.noise
        self.clock.advance(timeout)
        return None

    def close(self) -> None:
        if self.opened:
            self.log.append(("close", self.address))
        self.opened = False


class FakeTransportFactory:
    """Builds ``FakeTransport`` objects; options apply to transports created afterwards."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.log: list[tuple[str, str]] = []
        self.created: list[FakeTransport] = []
        self.options: dict[str, Any] = {}

    def __call__(self, config: TransportConfig) -> FakeTransport:
        transport = FakeTransport(config, self.clock, self.log, **self.options)
        self.created.append(transport)
        return transport


class ScriptedStreamer:
    """Streamer double that runs a hook while the job is in flight."""

    def __init__(self, hook: Callable[[str], None] | None = None, success: bool = True) -> None:
        self.hook = hook
        self.success = success
        self.calls: list[str | None] = []

    def stream(self, lines, config, sink=None, job_id=None) -> StreamResult:
        self.calls.append(job_id)
        if self.hook is not None:
            self.hook(job_id)
        if sink is not None:
            sink(Event("progress", {"current": len(lines), "total": len(lines), "line": lines[-1]}))
        return StreamResult(
            success=self.success,
            total_lines=len(lines),
            lines_sent=len(lines),
            elapsed_s=0.0,
            error=None if self.success else "Critical: controller unresponsive",
        )


class EventRecorder:
    def __init__(self) -> None:
        self.events: list[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def kinds(self, source: str | None = None) -> list[str]:
        return [e.kind for e in self.events if source is None or e.source == source]

    def of_kind(self, kind: str) -> list[Event]:
        return [e for e in self.events if e.kind == kind]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def factory(clock: FakeClock) -> FakeTransportFactory:
    return FakeTransportFactory(clock)


@pytest.fixture
def timings() -> StreamTimings:
    return StreamTimings()


@pytest.fixture
def broadcaster() -> EventBroadcaster:
    return EventBroadcaster()


@pytest.fixture
def recorder(broadcaster: EventBroadcaster) -> EventRecorder:
    rec = EventRecorder()
    broadcaster.subscribe(rec)
    return rec


@pytest.fixture
def registry(factory, clock, timings, broadcaster) -> ConnectionRegistry:
    return ConnectionRegistry(
        timings,
        transport_factory=factory,
        broadcaster=broadcaster,
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def streamer(registry, clock) -> GcodeStreamer:
    return GcodeStreamer(registry, clock=clock, sleep=clock.sleep)


@pytest.fixture
def config() -> TransportConfig:
    return TransportConfig("/dev/ttyUSB0", 115200)


@pytest.fixture
def sink() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def scripted_streamer() -> ScriptedStreamer:
    return ScriptedStreamer()
