from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from datetime import timedelta

from .app_logging import log_with_fields
from .consumer import Consumer, notify_consumer
from .models import UNAVAILABLE_TASK_COUNT, JobRecord, JobState, RemoteJobInfo, TaskCounts
from .remote import RemoteError
from .utils import job_container_name

OWNER_METADATA_KEY = "Owner"


def compute_progress(counts: TaskCounts | None) -> float:
    # Jobs without tasks (or whose counts are unknown) have nothing left to wait for.
    if counts is None or counts.total == 0:
        return 100.0
    return 100.0 * counts.completed / counts.total


def compute_cpu_time(info: RemoteJobInfo) -> timedelta:
    if not info.has_statistics:
        return timedelta(0)
    return info.kernel_cpu_time + info.user_cpu_time


def job_key(job: JobRecord) -> tuple[str, JobState, float]:
    return (job.job_id, job.state, job.progress)


def snapshot_changed(old: Sequence[JobRecord], new: Sequence[JobRecord]) -> bool:
    """Positional comparison of two snapshots on (id, state, progress).

    Reordering without a content change counts as a change.
    """
    if len(old) != len(new):
        return True
    return any(job_key(before) != job_key(after) for before, after in zip(old, new))


class JobSnapshotBuilder:
    def __init__(self, remote, logger: logging.Logger, consumer: Consumer | None = None) -> None:
        self.remote = remote
        self.logger = logger
        self.consumer = consumer

    def build(
        self,
        remote_jobs: Sequence[RemoteJobInfo],
        cancel_event: threading.Event,
        on_progress: Callable[[float], None] | None = None,
    ) -> list[JobRecord] | None:
        """Return the new snapshot, or None when cancelled part way through."""
        jobs: list[JobRecord] = []
        length = len(remote_jobs)
        for index, info in enumerate(remote_jobs):
            if cancel_event.is_set():
                return None
            if on_progress is not None:
                notify_consumer(self.logger, on_progress, 100.0 * index / length)
            jobs.append(self.build_record(info))
        if on_progress is not None and length:
            notify_consumer(self.logger, on_progress, 100.0)
        return jobs

    def build_record(self, info: RemoteJobInfo) -> JobRecord:
        owner = self.remote.get_metadata(job_container_name(info.job_id), OWNER_METADATA_KEY)
        counts: TaskCounts | None
        try:
            counts = self.remote.get_task_counts(info.job_id)
            num_tasks = counts.total
        except RemoteError as exc:
            # Seen when a job was never submitted correctly.
            counts = None
            num_tasks = UNAVAILABLE_TASK_COUNT
            log_with_fields(
                self.logger,
                logging.WARNING,
                "task_counts_unavailable",
                job_id=info.job_id,
                error=str(exc),
            )
            if self.consumer is not None:
                notify_consumer(self.logger, self.consumer.show_error, str(exc))

        return JobRecord(
            job_id=info.job_id,
            display_name=info.display_name,
            owner=owner,
            state=JobState.from_remote(info.state),
            task_counts=counts,
            num_tasks=num_tasks,
            progress=compute_progress(counts),
            cpu_time=compute_cpu_time(info),
            start_time=info.start_time,
            end_time=info.end_time,
        )
