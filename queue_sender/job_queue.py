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

"""Job queue and scheduler.

Jobs wait in an ordered list and are streamed strictly one at a time.
The scheduler owns every job's status: the streamer only reports the
outcome of a session. A run lock held by the scheduler guarantees that at
most one job is ``processing`` at any time.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Collection, Iterable, Protocol

from .events import SOURCE_QUEUE, Event, EventBroadcaster, now_ms
from .gcode_source import CommandSequence, JobMetadata
from .transport import TransportConfig
from .types import EventSink
from .utils.constants import THREAD_JOIN_TIMEOUT, WORKER_THREAD_NAME
from .utils.exceptions import JobNotFoundError, JobStoreError, QueueStateError

if TYPE_CHECKING:
    from .job_store import JobStore
    from .streamer import StreamResult

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class Job:
    """One queued transmission.

    ``error`` is set only when the job failed; ``current_line`` only while it
    is processing.
    """

    id: str
    sequence: CommandSequence
    metadata: JobMetadata
    status: JobStatus = JobStatus.PENDING
    error: str | None = None
    current_line: int | None = None
    started_at: float | None = None
    finished_at: float | None = None

    def copy(self) -> "Job":
        return replace(self, metadata=replace(self.metadata, extra=dict(self.metadata.extra)))

    def to_dict(self, include_lines: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "status": self.status.value,
            "metadata": self.metadata.to_dict(),
            "error": self.error,
            "currentLine": self.current_line,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
        }
        if include_lines:
            data["lines"] = list(self.sequence.lines)
        return data


@dataclass(frozen=True)
class QueueSnapshot:
    total: int
    pending: int
    processing: int
    completed: int
    failed: int
    is_processing: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "pending": self.pending,
            "processing": self.processing,
            "completed": self.completed,
            "failed": self.failed,
            "isProcessing": self.is_processing,
        }


class Streamer(Protocol):
    def stream(
        self,
        lines: CommandSequence,
        config: TransportConfig,
        sink: EventSink | None = None,
        job_id: str | None = None,
    ) -> "StreamResult": ...


class JobQueue:
    """Ordered queue of jobs streamed through a single worker.

    Example:
        jobs = JobQueue(streamer, TransportConfig("/dev/ttyUSB0"), broadcaster)
        jobs.enqueue(CommandSequence.from_text(gcode), JobMetadata(job_type="text"))
        jobs.start_processing()
    """

    def __init__(
        self,
        streamer: Streamer,
        transport_config: TransportConfig | None,
        broadcaster: EventBroadcaster | None = None,
        store: "JobStore | None" = None,
    ):
        self._streamer = streamer
        self._transport_config = transport_config
        self._broadcaster = broadcaster
        self._store = store

        self._lock = threading.RLock()
        self._run_lock = threading.Lock()
        self._stop_evt = threading.Event()
        self._worker: threading.Thread | None = None
        self._jobs: list[Job] = []

        if store is not None:
            self._jobs = store.load()
            if self._jobs:
                logger.info(f"Restored {len(self._jobs)} queued jobs")

    # ========================================================================
    # CONFIGURATION
    # ========================================================================

    @property
    def transport_config(self) -> TransportConfig | None:
        with self._lock:
            return self._transport_config

    def set_transport_config(self, config: TransportConfig) -> None:
        """Target used for jobs started after this call."""
        with self._lock:
            self._transport_config = config

    # ========================================================================
    # QUEUE STRUCTURE
    # ========================================================================

    def enqueue(
        self,
        sequence: CommandSequence | Iterable[str],
        metadata: JobMetadata | None = None,
    ) -> Job:
        """Append a pending job to the tail of the queue."""
        if not isinstance(sequence, CommandSequence):
            sequence = CommandSequence(sequence)
        # Each job owns its metadata; the caller may reuse theirs.
        metadata = metadata or JobMetadata()
        metadata = replace(
            metadata,
            total_lines=metadata.total_lines or len(sequence),
            extra=dict(metadata.extra),
        )
        job = Job(id=uuid.uuid4().hex, sequence=sequence, metadata=metadata)
        with self._lock:
            self._jobs.append(job)
            self._save_locked()
            added = job.copy()
        logger.info(f"Job {job.id} added ({len(sequence)} lines, type {metadata.job_type})")
        self._publish("job_added", job.id, {"job": added.to_dict()})
        return added

    def remove(self, job_id: str) -> Job:
        """Remove a job that is not processing.

        Raises:
            JobNotFoundError: If no job has this id
            QueueStateError: If the job is processing
        """
        with self._lock:
            job = self._find_locked(job_id)
            if job.status is JobStatus.PROCESSING:
                raise QueueStateError("Cannot remove a job while it is processing")
            self._jobs.remove(job)
            self._save_locked()
        logger.info(f"Job {job_id} removed")
        self._publish("job_removed", job_id, {"id": job_id})
        return job.copy()

    def reorder(self, job_ids: Iterable[str]) -> None:
        """Reorder the pending jobs.

        ``job_ids`` must list every pending job exactly once. Pending jobs
        take the positions pending jobs held before, in the new order;
        finished jobs keep their positions.

        Raises:
            QueueStateError: If a job is processing or the list is not a
                permutation of the pending jobs
        """
        order = list(job_ids)
        with self._lock:
            if self._processing_locked() is not None:
                raise QueueStateError("Cannot reorder the queue while a job is processing")
            positions = [i for i, job in enumerate(self._jobs) if job.status is JobStatus.PENDING]
            pending = {self._jobs[i].id: self._jobs[i] for i in positions}
            if len(order) != len(pending) or set(order) != set(pending):
                raise QueueStateError("Reorder list must contain each pending job exactly once")
            jobs = list(self._jobs)
            for pos, job_id in zip(positions, order):
                jobs[pos] = pending[job_id]
            self._jobs = jobs
            self._save_locked()
        logger.info("Queue reordered")
        self._publish("queue_reordered", None, {"order": order})

    def clear(self) -> int:
        """Remove every job.

        Raises:
            QueueStateError: If a job is processing
        """
        with self._lock:
            if self._processing_locked() is not None or self._run_lock.locked():
                raise QueueStateError("Cannot clear the queue while processing")
            removed = len(self._jobs)
            self._jobs = []
            self._save_locked()
        logger.info(f"Queue cleared ({removed} jobs)")
        self._publish("queue_cleared", None, {"removed": removed})
        return removed

    def clear_finished(self) -> int:
        """Remove completed and failed jobs."""
        with self._lock:
            kept = [job for job in self._jobs if not job.status.is_terminal]
            removed = len(self._jobs) - len(kept)
            if removed:
                self._jobs = kept
                self._save_locked()
        if removed:
            logger.info(f"Removed {removed} finished jobs")
            self._publish("queue_cleared", None, {"removed": removed, "finishedOnly": True})
        return removed

    # ========================================================================
    # INSPECTION
    # ========================================================================

    def get_jobs(self) -> list[Job]:
        with self._lock:
            return [job.copy() for job in self._jobs]

    def get_job(self, job_id: str) -> Job:
        with self._lock:
            return self._find_locked(job_id).copy()

    def get_snapshot(self) -> QueueSnapshot:
        with self._lock:
            counts = {status: 0 for status in JobStatus}
            for job in self._jobs:
                counts[job.status] += 1
            return QueueSnapshot(
                total=len(self._jobs),
                pending=counts[JobStatus.PENDING],
                processing=counts[JobStatus.PROCESSING],
                completed=counts[JobStatus.COMPLETED],
                failed=counts[JobStatus.FAILED],
                is_processing=self._run_lock.locked(),
            )

    def is_processing(self) -> bool:
        return self._run_lock.locked()

    # ========================================================================
    # PROCESSING
    # ========================================================================

    def process_next(self) -> Job | None:
        """Stream the head pending job, if any, and return it in its final state.

        Raises:
            QueueStateError: If the queue is already processing
        """
        self._acquire_run_lock()
        try:
            return self._run_one()
        finally:
            self._run_lock.release()

    def process_all(self, job_ids: Collection[str] | None = None) -> list[Job]:
        """Stream pending jobs in order until none remain or ``stop()`` is called.

        With ``job_ids``, only those pending jobs are streamed; other pending
        jobs are left in the queue untouched.

        Raises:
            QueueStateError: If the queue is already processing
        """
        self._acquire_run_lock()
        try:
            return self._process_loop(job_ids)
        finally:
            self._run_lock.release()

    def start_processing(self) -> threading.Thread:
        """Run ``process_all`` on a background worker thread.

        Raises:
            QueueStateError: If the queue is already processing
        """
        self._acquire_run_lock()
        try:
            worker = threading.Thread(
                target=self._worker_main,
                daemon=True,
                name=WORKER_THREAD_NAME,
            )
            worker.start()
        except RuntimeError:
            self._run_lock.release()
            raise
        self._worker = worker
        return worker

    def stop(self) -> None:
        """Stop after the job in flight; it is never interrupted."""
        if self._run_lock.locked():
            logger.info("Queue stop requested")
        self._stop_evt.set()

    def join(self, timeout: float | None = THREAD_JOIN_TIMEOUT) -> bool:
        """Wait for the background worker. Returns True once it has finished."""
        worker = self._worker
        if worker is None:
            return True
        worker.join(timeout=timeout)
        if worker.is_alive():
            return False
        self._worker = None
        return True

    def _acquire_run_lock(self) -> None:
        if self.transport_config is None:
            raise QueueStateError("No transport configured for the queue")
        if not self._run_lock.acquire(blocking=False):
            raise QueueStateError("Queue is already processing")
        self._stop_evt.clear()

    def _worker_main(self) -> None:
        logger.debug("Queue worker started")
        try:
            self._process_loop()
        except Exception as e:
            logger.error(f"Queue worker error: {e}", exc_info=True)
        finally:
            self._run_lock.release()
            logger.debug("Queue worker stopped")

    def _process_loop(self, job_ids: Collection[str] | None = None) -> list[Job]:
        processed: list[Job] = []
        while not self._stop_evt.is_set():
            job = self._run_one(job_ids)
            if job is None:
                break
            processed.append(job)
        stopped = self._stop_evt.is_set()
        self._publish("queue_idle", None, {"processed": len(processed), "stopped": stopped})
        logger.info(f"Queue processing finished ({len(processed)} jobs{', stopped' if stopped else ''})")
        return processed

    def _run_one(self, job_ids: Collection[str] | None = None) -> Job | None:
        with self._lock:
            job = next(
                (
                    j for j in self._jobs
                    if j.status is JobStatus.PENDING and (job_ids is None or j.id in job_ids)
                ),
                None,
            )
            if job is None:
                return None
            job.status = JobStatus.PROCESSING
            job.current_line = 0
            job.error = None
            job.started_at = time.time()
            job.finished_at = None
            config = self._transport_config
            self._save_locked()
        total = len(job.sequence)
        logger.info(f"Processing job {job.id} ({total} lines)")
        self._publish("job_started", job.id, {"status": "started", "current": 0, "total": total})

        result: StreamResult | None = None
        error: str | None = None
        try:
            result = self._streamer.stream(
                job.sequence,
                config,
                sink=self._stream_sink(job.id),
                job_id=job.id,
            )
        except Exception as e:
            logger.error(f"Unexpected error streaming job {job.id}: {e}", exc_info=True)
            error = f"Unexpected error: {e}"

        with self._lock:
            job.current_line = None
            job.finished_at = time.time()
            if result is not None and result.success:
                job.status = JobStatus.COMPLETED
                job.error = None
            else:
                job.status = JobStatus.FAILED
                if result is not None:
                    error = result.error or "Transmission failed"
                job.error = error
            self._save_locked()
            finished = job.copy()

        if finished.status is JobStatus.COMPLETED:
            logger.info(f"Job {job.id} completed")
            payload: dict[str, Any] = {"status": "completed"}
        else:
            logger.error(f"Job {job.id} failed: {finished.error}")
            payload = {"status": "failed", "error": finished.error}
        if result is not None:
            payload["result"] = result.to_dict()
        self._publish(f"job_{finished.status.value}", job.id, payload)
        return finished

    def _stream_sink(self, job_id: str) -> EventSink:
        def sink(event: Event) -> None:
            if self._broadcaster is not None:
                self._broadcaster.publish(event.with_job(job_id))
            if event.kind == "progress":
                current = event.payload.get("current")
                with self._lock:
                    for job in self._jobs:
                        if job.id == job_id and job.status is JobStatus.PROCESSING:
                            job.current_line = current
                            break
                self._publish("job_progress", job_id, {
                    "status": "processing",
                    "current": current,
                    "total": event.payload.get("total"),
                })
        return sink

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _find_locked(self, job_id: str) -> Job:
        for job in self._jobs:
            if job.id == job_id:
                return job
        raise JobNotFoundError(job_id)

    def _processing_locked(self) -> Job | None:
        return next((j for j in self._jobs if j.status is JobStatus.PROCESSING), None)

    def _save_locked(self) -> None:
        if self._store is None:
            return
        try:
            self._store.save(self._jobs)
        except JobStoreError as e:
            logger.error(f"Failed to persist queue: {e}")

    def _publish(self, kind: str, job_id: str | None, payload: dict[str, Any]) -> None:
        if self._broadcaster is None:
            return
        self._broadcaster.publish(
            Event(kind, payload, timestamp_ms=now_ms(), job_id=job_id, source=SOURCE_QUEUE)
        )
