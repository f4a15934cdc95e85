from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from datetime import datetime, timedelta
from pathlib import Path

from batchwatch.consumer import ConsumerGone
from batchwatch.models import DownloadOptions, JobRecord, JobState, RemoteJobInfo, TaskCounts
from batchwatch.remote import RemoteError

JOB_A = "6f1c2a9e-3b7d-4c1e-9a55-0d2b8e4f7a10"
JOB_B = "a3e4b5c6-d7e8-4f90-8a1b-2c3d4e5f6a7b"
JOB_C = "0b1c2d3e-4f50-4617-8293-a4b5c6d7e8f9"


def quiet_logger(name: str = "test_batchwatch") -> logging.Logger:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    logger.addHandler(logging.NullHandler())
    logger.propagate = False
    return logger


def remote_job(job_id: str, state: str = "active", name: str | None = None, **kwargs: object) -> RemoteJobInfo:
    return RemoteJobInfo(job_id=job_id, display_name=name or f"job {job_id[:4]}", state=state, **kwargs)


def job_record(job_id: str, state: JobState = JobState.ACTIVE, progress: float = 0.0, name: str = "") -> JobRecord:
    return JobRecord(
        job_id=job_id,
        display_name=name or f"job {job_id[:4]}",
        owner="alice",
        state=state,
        task_counts=None,
        num_tasks=0,
        progress=progress,
        cpu_time=timedelta(0),
    )


class FakeRemote:
    def __init__(self) -> None:
        self.jobs: list[RemoteJobInfo] = []
        self.task_counts: dict[str, TaskCounts] = {}
        self.metadata: dict[str, dict[str, str]] = {}
        self.containers: set[str] = set()
        self.blobs: dict[str, dict[str, bytes]] = {}
        self.list_failures = 0
        self.failing_containers: set[str] = set()
        self.failing_deletions: set[str] = set()
        self.failing_terminations: set[str] = set()
        self.list_calls = 0
        self.terminated: list[str] = []
        self.deleted_jobs: list[str] = []
        self.deleted_containers: list[str] = []
        self._lock = threading.Lock()

    def list_jobs(self) -> list[RemoteJobInfo]:
        with self._lock:
            self.list_calls += 1
            if self.list_failures > 0:
                self.list_failures -= 1
                raise RemoteError("list jobs failed: service unavailable")
            return list(self.jobs)

    def get_task_counts(self, job_id: str) -> TaskCounts:
        counts = self.task_counts.get(job_id)
        if counts is None:
            raise RemoteError(f"task counts for {job_id} failed: not found")
        return counts

    def get_metadata(self, container_name: str, key: str) -> str:
        return self.metadata.get(container_name, {}).get(key, "")

    def terminate_job(self, job_id: str) -> None:
        if job_id in self.failing_terminations:
            raise RemoteError(f"terminate job {job_id} failed: conflict")
        self.terminated.append(job_id)

    def delete_job(self, job_id: str) -> None:
        self.deleted_jobs.append(job_id)

    def container_exists(self, container_name: str) -> bool:
        if container_name in self.failing_containers:
            raise RemoteError(f"check container {container_name} failed: forbidden")
        return container_name in self.containers

    def delete_container(self, container_name: str) -> None:
        if container_name in self.failing_deletions:
            raise RemoteError(f"delete container {container_name} failed: lease held")
        self.containers.discard(container_name)
        self.deleted_containers.append(container_name)

    def list_blob_names(self, container_name: str) -> list[str]:
        if container_name not in self.blobs:
            raise RemoteError(f"list blobs in {container_name} failed: not found")
        return list(self.blobs[container_name])

    def download_blob(self, container_name: str, blob_name: str, destination: Path) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(self.blobs[container_name][blob_name])
        return destination


class FakeConsumer:
    def __init__(self, answer: bool = True) -> None:
        self.answer = answer
        self.snapshots: list[tuple[JobRecord, ...]] = []
        self.messages: list[str] = []
        self.errors: list[str] = []
        self.questions: list[str] = []
        self.statuses: list[str] = []
        self.progress: list[float] = []
        self.notify_error: Exception | None = None
        self.notified = threading.Event()

    def on_snapshot_changed(self, jobs: Sequence[JobRecord]) -> None:
        if self.notify_error is not None:
            raise self.notify_error
        self.snapshots.append(tuple(jobs))
        self.notified.set()

    def on_load_progress(self, percent: float) -> None:
        self.progress.append(percent)

    def show_message(self, message: str) -> None:
        self.messages.append(message)

    def show_error(self, message: str) -> None:
        self.errors.append(message)

    def ask_question(self, message: str) -> bool:
        self.questions.append(message)
        return self.answer

    def set_download_status(self, message: str) -> None:
        self.statuses.append(message)


class GoneConsumer(FakeConsumer):
    def __init__(self) -> None:
        super().__init__()
        self.notify_error = ConsumerGone("view detached")


class FakeDownloader:
    """Records downloads; completes them only when told to."""

    def __init__(self) -> None:
        self.started: list[tuple[str, str, Path, DownloadOptions]] = []
        self.callbacks: dict[str, object] = {}

    def start_download(self, job_id, display_name, destination, options, on_complete) -> None:
        self.started.append((job_id, display_name, destination, options))
        self.callbacks[job_id] = (on_complete, destination)

    def finish(self, job_id: str, code: int = 0, timestamp: datetime | None = None) -> None:
        on_complete, destination = self.callbacks.pop(job_id)
        on_complete(job_id, code, str(destination), timestamp or datetime(2024, 5, 1, 14, 3, 9))


class FakeLoop:
    """Stands in for PollingLoop where only pause/resume bookkeeping matters."""

    def __init__(self, running: bool = True) -> None:
        self.running = running
        self.pauses = 0
        self.starts = 0

    def pause(self, timeout: float | None = None) -> bool:
        self.pauses += 1
        was_running = self.running
        self.running = False
        return was_running

    def start(self) -> bool:
        self.starts += 1
        if self.running:
            return False
        self.running = True
        return True
