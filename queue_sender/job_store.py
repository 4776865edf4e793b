"""JSON persistence for the job queue.

The queue is written as a whole after every change, using the same
temp-file, backup and replace sequence as the settings file.
"""

import json
import logging
import shutil
from pathlib import Path
from typing import Any

from .gcode_source import CommandSequence, JobMetadata
from .job_queue import Job, JobStatus
from .utils.constants import SETTINGS_BACKUP_SUFFIX, SETTINGS_TEMP_SUFFIX
from .utils.exceptions import JobStoreError

logger = logging.getLogger(__name__)

STORE_VERSION = 1
INTERRUPTED_ERROR = "Interrupted before completion"


def job_from_dict(data: dict[str, Any]) -> Job:
    """Rebuild a job from its stored form.

    Raises:
        JobStoreError: If a required field is missing or invalid
    """
    try:
        job_id = str(data["id"])
        status = JobStatus(data.get("status", JobStatus.PENDING.value))
        lines = data.get("lines") or []
    except (KeyError, ValueError, TypeError) as e:
        raise JobStoreError(f"Invalid job entry: {e}")

    job = Job(
        id=job_id,
        sequence=CommandSequence(lines),
        metadata=JobMetadata.from_dict(data.get("metadata") or {}),
        status=status,
        error=data.get("error"),
        started_at=data.get("startedAt"),
        finished_at=data.get("finishedAt"),
    )
    if job.status is JobStatus.PROCESSING:
        job.status = JobStatus.FAILED
        job.error = INTERRUPTED_ERROR
    return job


class JobStore:
    """Stores queued jobs in a JSON file.

    Example:
        store = JobStore(settings.queue_path(QUEUE_FILENAME))
        jobs = JobQueue(streamer, config, broadcaster, store=store)
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> list[Job]:
        """Read the stored jobs.

        Jobs stored as processing were cut off by a shutdown and come back
        as failed.

        Returns:
            Jobs in queue order, empty if no file exists

        Raises:
            JobStoreError: If the file exists but cannot be read
        """
        if not self.path.exists():
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in queue file: {e}")
            raise JobStoreError(f"Invalid JSON: {e}")
        except OSError as e:
            logger.error(f"Failed to read queue file: {e}")
            raise JobStoreError(f"Failed to read file: {e}")

        if not isinstance(data, dict) or not isinstance(data.get("jobs"), list):
            raise JobStoreError("Queue file must contain a 'jobs' list")

        jobs = [job_from_dict(entry) for entry in data["jobs"]]
        interrupted = sum(1 for job in jobs if job.error == INTERRUPTED_ERROR)
        if interrupted:
            logger.warning(f"{interrupted} job(s) were interrupted and marked failed")
        return jobs

    def save(self, jobs: list[Job]) -> None:
        """Write all jobs atomically.

        Raises:
            JobStoreError: If the file cannot be written
        """
        temp_path = Path(str(self.path) + SETTINGS_TEMP_SUFFIX)
        backup_path = Path(str(self.path) + SETTINGS_BACKUP_SUFFIX)
        data = {
            "version": STORE_VERSION,
            "jobs": [job.to_dict(include_lines=True) for job in jobs],
        }

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)

            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)

            if self.path.exists():
                try:
                    shutil.copy2(self.path, backup_path)
                except OSError as e:
                    logger.warning(f"Failed to back up queue file: {e}")

            temp_path.replace(self.path)
            logger.debug(f"Queue saved ({len(jobs)} jobs)")

        except OSError as e:
            logger.error(f"Failed to write queue file: {e}")
            raise JobStoreError(f"Failed to save: {e}")

        finally:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
