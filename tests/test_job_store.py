"""Tests for queue persistence."""

from __future__ import annotations

import json

import pytest

from queue_sender.gcode_source import JobMetadata
from queue_sender.job_queue import JobQueue, JobStatus
from queue_sender.job_store import INTERRUPTED_ERROR, JobStore
from queue_sender.utils.exceptions import JobStoreError

EXAMPLE = ["G21", "G90", "G1 Z5", "G1 X10 Y10"]


def test_missing_file_loads_empty(tmp_path):
    assert JobStore(str(tmp_path / "queue.json")).load() == []


def test_queue_survives_restart(tmp_path, scripted_streamer, config):
    path = str(tmp_path / "queue.json")
    jobs = JobQueue(scripted_streamer, config, store=JobStore(path))
    a = jobs.enqueue(EXAMPLE, JobMetadata(job_type="file", extra={"filename": "part.nc"}))
    b = jobs.enqueue(EXAMPLE)
    jobs.process_next()

    restored = JobQueue(scripted_streamer, config, store=JobStore(path))

    loaded = restored.get_jobs()
    assert [j.id for j in loaded] == [a.id, b.id]
    assert loaded[0].status is JobStatus.COMPLETED
    assert loaded[1].status is JobStatus.PENDING
    assert list(loaded[1].sequence) == EXAMPLE
    assert loaded[0].metadata.extra == {"filename": "part.nc"}


def test_processing_job_restored_as_failed(tmp_path):
    path = tmp_path / "queue.json"
    path.write_text(json.dumps({
        "version": 1,
        "jobs": [
            {"id": "a", "status": "processing", "lines": EXAMPLE, "metadata": {"type": "text"}},
            {"id": "b", "status": "pending", "lines": EXAMPLE},
        ],
    }))

    jobs = JobStore(str(path)).load()

    assert jobs[0].status is JobStatus.FAILED
    assert jobs[0].error == INTERRUPTED_ERROR
    assert jobs[1].status is JobStatus.PENDING
    assert jobs[1].error is None


def test_save_keeps_backup(tmp_path, scripted_streamer, config):
    path = tmp_path / "queue.json"
    jobs = JobQueue(scripted_streamer, config, store=JobStore(str(path)))
    jobs.enqueue(EXAMPLE)
    jobs.enqueue(EXAMPLE)
    assert (tmp_path / "queue.json.bak").exists()
    assert not (tmp_path / "queue.json.tmp").exists()
    assert len(json.loads(path.read_text())["jobs"]) == 2


@pytest.mark.parametrize("content", ["{not json", "[]", '{"jobs": 3}', '{"jobs": [{"status": "pending"}]}'])
def test_invalid_file_rejected(tmp_path, content):
    path = tmp_path / "queue.json"
    path.write_text(content)
    with pytest.raises(JobStoreError):
        JobStore(str(path)).load()
