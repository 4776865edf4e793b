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
"""
    Queue Sender - command line front end

    queue-sender ports
    queue-sender send part1.nc part2.nc --port /dev/ttyUSB0
    queue-sender command '$$' --port /dev/ttyUSB0
    queue-sender queue list
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from . import __version__
from .connection_registry import ConnectionRegistry
from .events import Event, EventBroadcaster
from .gcode_source import CommandSequence, JobMetadata
from .job_queue import Job, JobQueue, JobStatus
from .job_store import JobStore
from .streamer import GcodeStreamer
from .transport import TransportConfig, list_serial_ports
from .utils.config import Settings
from .utils.constants import QUEUE_FILENAME
from .utils.exceptions import JobNotFoundError, QueueSenderException
from .utils.grbl_errors import annotate_grbl_error
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="queue-sender",
        description="Stream G-code jobs to a GRBL controller",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--settings",
        type=str,
        help="Settings file path (default: platform config directory)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log debug output to the console",
    )

    sub = parser.add_subparsers(dest="command_name", required=True)

    sub.add_parser("ports", help="List available serial ports")

    send = sub.add_parser("send", help="Queue G-code files and stream them in order")
    send.add_argument("files", nargs="+", help="G-code files to stream")
    _add_port_arguments(send)
    send.add_argument(
        "--no-persist",
        action="store_true",
        help="Do not save the queue to disk",
    )
    send.add_argument(
        "--include-pending",
        action="store_true",
        help="Stream jobs left pending by earlier runs first",
    )

    command = sub.add_parser("command", help="Send a single command and print the response")
    command.add_argument("text", help="Command line to send, e.g. '$$' or '$H'")
    _add_port_arguments(command)

    queue = sub.add_parser("queue", help="Inspect or edit the saved job queue")
    queue_sub = queue.add_subparsers(dest="queue_action", required=True)
    queue_sub.add_parser("list", help="List saved jobs")
    remove = queue_sub.add_parser("remove", help="Remove jobs that are not processing")
    remove.add_argument("job_ids", nargs="+", help="Job ids (a unique prefix is enough)")
    reorder = queue_sub.add_parser("reorder", help="Set the order of the pending jobs")
    reorder.add_argument("job_ids", nargs="+", help="Every pending job id, in the new order")
    queue_sub.add_parser("clear", help="Remove every saved job")
    queue_sub.add_parser("clear-finished", help="Remove completed and failed jobs")

    return parser


def _add_port_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--port", "-p", type=str, help="Serial port (default: from settings)")
    parser.add_argument("--baud", "-b", type=int, help="Baud rate (default: from settings)")


def _transport_config(args: argparse.Namespace, settings: Settings) -> TransportConfig:
    port = args.port or settings.get("port")
    baud = args.baud or settings.get("baud_rate")
    return TransportConfig(port, baud)


def _print_event(event: Event) -> None:
    payload = event.payload
    prefix = f"[{event.job_id[:8]}] " if event.job_id else ""
    if event.kind == "progress":
        print(f"{prefix}[{payload.get('current')}/{payload.get('total')}] {payload.get('line', '')}")
    elif event.kind == "log":
        print(f"{prefix}{annotate_grbl_error(str(payload.get('message', '')))}")
    elif event.kind in ("status", "error"):
        print(f"{prefix}{event.kind.upper()}: {payload.get('message', '')}")
    elif event.kind == "complete":
        print(
            f"{prefix}Complete: {payload.get('totalLines')} lines "
            f"in {payload.get('totalTimeSeconds')}s"
        )
    elif event.kind in ("job_completed", "job_failed"):
        error = payload.get("error")
        print(f"{prefix}Job {payload.get('status')}" + (f": {error}" if error else ""))


def cmd_ports(args: argparse.Namespace, settings: Settings) -> int:
    ports = list_serial_ports()
    if not ports:
        print("No serial ports found")
        return 0
    for info in ports:
        details = info.get("description") or ""
        if info.get("manufacturer"):
            details = f"{details} ({info['manufacturer']})"
        print(f"{info['device']}\t{details}")
    return 0


def cmd_send(args: argparse.Namespace, settings: Settings) -> int:
    config = _transport_config(args, settings)
    broadcaster = EventBroadcaster()
    broadcaster.subscribe(_print_event)

    store = None
    if settings.get("persist_queue") and not args.no_persist:
        store = JobStore(settings.queue_path(QUEUE_FILENAME))

    registry = ConnectionRegistry(settings.timings(), broadcaster=broadcaster)
    streamer = GcodeStreamer(registry)
    jobs = JobQueue(streamer, config, broadcaster, store=store)
    leftovers = jobs.get_snapshot().pending

    added = []
    for path in args.files:
        sequence = CommandSequence.from_file(path)
        metadata = JobMetadata(job_type="file", extra={"filename": os.path.basename(path)})
        added.append(jobs.enqueue(sequence, metadata).id)

    if leftovers and not args.include_pending:
        print(f"Skipping {leftovers} pending job(s) from earlier runs (use --include-pending to stream them)")

    try:
        with registry:
            jobs.process_all(None if args.include_pending else added)
    except KeyboardInterrupt:
        jobs.stop()
        print("Interrupted")
        return 1

    results = {job.id: job.status for job in jobs.get_jobs()}
    ok = all(results.get(job_id) is JobStatus.COMPLETED for job_id in added)
    snapshot = jobs.get_snapshot()
    print(f"Queue: {snapshot.completed} completed, {snapshot.failed} failed, {snapshot.pending} pending")
    if store is not None:
        jobs.clear_finished()
    return 0 if ok else 1


def cmd_command(args: argparse.Namespace, settings: Settings) -> int:
    config = _transport_config(args, settings)
    with ConnectionRegistry(settings.timings()) as registry:
        response = registry.send_one_command(args.text, config)
    for line in response.responses or (response.text,):
        print(annotate_grbl_error(line))
    return 0


def _saved_queue(settings: Settings) -> JobQueue:
    # No transport target: the saved queue is edited here, never processed.
    streamer = GcodeStreamer(ConnectionRegistry(settings.timings()))
    return JobQueue(streamer, None, store=JobStore(settings.queue_path(QUEUE_FILENAME)))


def _resolve_job_id(jobs: JobQueue, prefix: str) -> str:
    matches = [job.id for job in jobs.get_jobs() if job.id.startswith(prefix)]
    if len(matches) != 1:
        raise JobNotFoundError(prefix)
    return matches[0]


def _describe_job(job: Job) -> str:
    name = job.metadata.extra.get("filename") or job.metadata.job_type
    text = f"{job.id}\t{job.status.value}\t{job.metadata.total_lines} lines\t{name}"
    if job.error:
        text += f"\t{job.error}"
    return text


def cmd_queue(args: argparse.Namespace, settings: Settings) -> int:
    jobs = _saved_queue(settings)
    action = args.queue_action

    if action == "list":
        listed = jobs.get_jobs()
        if not listed:
            print("Queue is empty")
        for job in listed:
            print(_describe_job(job))
    elif action == "remove":
        for prefix in args.job_ids:
            removed = jobs.remove(_resolve_job_id(jobs, prefix))
            print(f"Removed {removed.id}")
    elif action == "reorder":
        jobs.reorder([_resolve_job_id(jobs, prefix) for prefix in args.job_ids])
        print("Queue reordered")
    elif action == "clear":
        print(f"Removed {jobs.clear()} jobs")
    elif action == "clear-finished":
        print(f"Removed {jobs.clear_finished()} finished jobs")
    return 0


COMMANDS = {
    "ports": cmd_ports,
    "send": cmd_send,
    "command": cmd_command,
    "queue": cmd_queue,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    settings = Settings(args.settings)
    setup_logging(verbose=args.verbose, base_dir=Path(settings.filepath).parent)

    try:
        settings.load()
        settings.validate()
        return COMMANDS[args.command_name](args, settings)
    except QueueSenderException as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        logger.error(f"File error: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
