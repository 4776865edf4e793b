"""End-to-end streaming against a scripted transport and a simulated clock."""

from __future__ import annotations

from queue_sender.connection_registry import EPHEMERAL
from queue_sender.utils.exceptions import (
    ControllerUnresponsive,
    PortOpenError,
    TransportBusyError,
    WriteError,
)

EXAMPLE = ["G21", "G90", "G1 Z5", "G1 X10 Y10"]
BANNER = "Grbl 1.1h ['$' for help]"
NOISE = "\x00\x01??? noise on the serial line"


def test_example_sequence_streams_to_completion(streamer, factory, clock, config, sink):
    result = streamer.stream(EXAMPLE, config, sink=sink, job_id="job-1")

    assert result.success is True
    assert result.lines_sent == 4
    assert factory.created[0].written == EXAMPLE
    assert sink.kinds() == [
        "status", "status",
        "progress", "log", "progress", "log", "progress", "log", "progress", "log",
        "complete",
    ]
    complete = sink.of_kind("complete")[0]
    assert complete.payload == {"totalLines": 4, "totalTimeSeconds": 3.0}
    assert complete.timestamp_ms == 3000
    assert all(e.job_id == "job-1" for e in sink.events)
    assert sink.events[0].payload["message"] == "Connected to controller on /dev/ttyUSB0"


def test_boot_delay_then_grace_delay(streamer, clock, config):
    streamer.stream(EXAMPLE, config)
    assert clock.sleeps == [3.0, 1.0]


def test_control_lines_cleared_and_port_closed(streamer, factory, registry, config):
    streamer.stream(EXAMPLE, config)
    transport = factory.created[0]
    assert transport.control_lines == (False, False)
    assert factory.log == [("open", "/dev/ttyUSB0"), ("close", "/dev/ttyUSB0")]
    assert registry.handle(EPHEMERAL) is None
    assert not registry.slot(EPHEMERAL).lease.held


def test_boot_banner_does_not_disturb_stream(streamer, factory, config, sink):
    factory.options["boot_lines"] = (BANNER,)
    result = streamer.stream(EXAMPLE, config, sink=sink)
    assert result.success is True
    assert result.resets_detected == 0
    assert factory.created[0].written == EXAMPLE


def test_silent_controller_fails_after_five_timeouts(streamer, factory, clock, config, sink):
    factory.options["responder"] = lambda line: []
    lines = [f"G1 X{i}" for i in range(10)]

    result = streamer.stream(lines, config, sink=sink)

    assert result.success is False
    assert "5 consecutive timeouts" in result.error
    assert isinstance(result.failure, ControllerUnresponsive)
    assert len(sink.of_kind("error")) == 1
    assert factory.created[0].written == lines[:5]
    assert clock.sleeps == [3.0]
    assert clock.now == 3.0 + 5 * 3.0
    assert not factory.created[0].opened


def test_missed_acks_skip_ahead(streamer, factory, config):
    factory.options["responder"] = lambda line: [] if line == "G90" else ["ok"]
    result = streamer.stream(EXAMPLE, config)
    assert result.success is True
    assert factory.created[0].written == EXAMPLE


def test_corrupted_reply_does_not_extend_deadline(streamer, factory, clock, config):
    factory.options["responder"] = lambda line: ["ok\x00\x01 garbage on the wire here"]
    result = streamer.stream(["G21", "G90"], config)
    assert result.corrupted_lines == 2
    assert result.success is True
    assert factory.created[0].written == ["G21", "G90"]
    # boot, two full timeouts, grace
    assert clock.now == 3.0 + 3.0 + 3.0 + 1.0


def test_error_reply_is_reported_but_not_fatal(streamer, factory, config, sink):
    factory.options["responder"] = lambda line: ["error:20", "ok"] if line == "G90" else ["ok"]
    result = streamer.stream(EXAMPLE, config, sink=sink)
    assert result.success is True
    assert result.error_responses == 1
    assert len(sink.of_kind("error")) == 1


def test_first_banner_is_taken_as_boot_banner(streamer, factory, config):
    factory.options["responder"] = lambda line: [BANNER] if line == "G90" else ["ok"]
    result = streamer.stream(EXAMPLE, config)
    assert result.success is True
    assert result.resets_detected == 0
    assert factory.created[0].written == EXAMPLE


def test_reset_after_boot_banner_is_counted(streamer, factory, config):
    factory.options["boot_lines"] = (BANNER,)
    factory.options["responder"] = lambda line: [BANNER] if line == "G90" else ["ok"]
    result = streamer.stream(EXAMPLE, config)
    assert result.success is True
    assert result.resets_detected == 1
    assert factory.created[0].written == EXAMPLE


def test_open_failure_reports_single_error(streamer, registry, factory, clock, config, sink):
    factory.options["fail_open"] = "Could not open /dev/ttyUSB0. Check the port name and baud rate."
    result = streamer.stream(EXAMPLE, config, sink=sink)
    assert result.success is False
    assert "Check the port name" in result.error
    assert isinstance(result.failure, PortOpenError)
    assert sink.kinds() == ["error"]
    assert clock.sleeps == []
    assert not registry.slot(EPHEMERAL).lease.held


def test_line_noise_does_not_hold_off_timeouts(streamer, factory, clock, config, sink):
    factory.options.update(responder=lambda line: [], noise=NOISE, noise_reads=60)
    lines = [f"G1 X{i}" for i in range(10)]

    result = streamer.stream(lines, config, sink=sink)

    assert isinstance(result.failure, ControllerUnresponsive)
    assert factory.created[0].written == lines[:5]
    timeouts = [e for e in sink.of_kind("log") if e.payload["message"].startswith("WARNING: Timeout")]
    assert [e.timestamp_ms for e in timeouts] == [6000, 9000, 12000, 15000]
    assert clock.now == 3.0 + 5 * 3.0
    assert result.corrupted_lines == 30


def test_drain_failure_is_not_fatal(streamer, factory, config):
    factory.options["fail_drain"] = True
    result = streamer.stream(EXAMPLE, config)
    assert result.success is True
    assert factory.created[0].written == EXAMPLE


def test_write_failure_terminates(streamer, factory, config, sink):
    factory.options["fail_write_after"] = 2
    result = streamer.stream(EXAMPLE, config, sink=sink)
    assert result.success is False
    assert result.error == "write failed"
    assert isinstance(result.failure, WriteError)
    assert len(sink.of_kind("error")) == 1
    assert factory.created[0].written == ["G21", "G90"]
    assert not factory.created[0].opened


def test_busy_ephemeral_slot(streamer, registry, config, sink):
    lease = registry.slot(EPHEMERAL).lease
    with lease.hold("other"):
        result = streamer.stream(EXAMPLE, config, sink=sink)
    assert result.success is False
    assert "in use" in result.error
    assert isinstance(result.failure, TransportBusyError)
    assert sink.kinds() == ["error"]


def test_result_to_dict(streamer, config):
    data = streamer.stream(EXAMPLE, config).to_dict()
    assert data["success"] is True
    assert data["totalLines"] == 4
    assert data["linesSent"] == 4
    assert data["failureType"] is None
