from __future__ import annotations

import logging
from collections.abc import Sequence

from .app_logging import log_with_fields
from .consumer import Consumer, call_consumer
from .models import JobState
from .poller import PollingLoop
from .registry import JobRegistry
from .utils import job_container_names, parse_job_id

OWNER_NAME = "lifecycle"


def _plural(job_ids: Sequence[str], single: str, multiple: str) -> str:
    return multiple.format(count=len(job_ids)) if len(job_ids) > 1 else single


class LifecycleOps:
    """Best-effort stop and delete of remote jobs.

    A failure for one id is reported and the rest of the batch carries on;
    nothing is rolled back.
    """

    def __init__(
        self,
        remote,
        registry: JobRegistry,
        loop: PollingLoop,
        consumer: Consumer,
        logger: logging.Logger,
    ) -> None:
        self.remote = remote
        self.registry = registry
        self.loop = loop
        self.consumer = consumer
        self.logger = logger

    def stop_jobs(self, job_ids: Sequence[str], *, confirm: bool = True) -> list[str]:
        if not job_ids:
            call_consumer(self.logger, self.consumer.show_message, "Unable to stop jobs: no jobs are selected")
            return []
        question = "Are you sure you want to stop {}? There is no way to resume their execution!".format(
            _plural(job_ids, "this job", "these {count} jobs")
        )
        if confirm and not self.consumer.ask_question(question):
            return []

        stopped: list[str] = []
        for job_id in job_ids:
            job = self.registry.get(job_id)
            if job is None:
                call_consumer(self.logger, self.consumer.show_error, f"Unable to stop {job_id}: job not found")
                continue
            if job.state == JobState.COMPLETED:
                continue
            try:
                self.remote.terminate_job(job_id)
            except Exception as exc:
                log_with_fields(self.logger, logging.ERROR, "job_stop_failed", job_id=job_id, error=str(exc))
                call_consumer(self.logger, self.consumer.show_error, str(exc))
                continue
            stopped.append(job_id)
            log_with_fields(self.logger, logging.INFO, "job_stopped", job_id=job_id)
        return stopped

    def delete_jobs(self, job_ids: Sequence[str], *, confirm: bool = True) -> list[str]:
        if not job_ids:
            call_consumer(self.logger, self.consumer.show_message, "Unable to delete jobs: no jobs are selected.")
            return []

        was_running = self.loop.pause()
        deleted: list[str] = []
        try:
            question = "Are you sure you want to delete {}?".format(
                _plural(job_ids, "this job", "these {count} jobs")
            )
            if confirm and not self.consumer.ask_question(question):
                return []

            with self.registry.claim(OWNER_NAME):
                for job_id in job_ids:
                    container_id = parse_job_id(job_id)
                    if container_id is None:
                        log_with_fields(self.logger, logging.INFO, "job_delete_skipped_invalid_id", job_id=job_id)
                        continue
                    try:
                        self._delete_one(job_id, container_id)
                    except Exception as exc:
                        log_with_fields(
                            self.logger,
                            logging.ERROR,
                            "job_delete_failed",
                            job_id=job_id,
                            error=str(exc),
                        )
                        call_consumer(self.logger, self.consumer.show_error, str(exc))
                        continue
                    deleted.append(job_id)
                snapshot = self.registry.snapshot()
            call_consumer(self.logger, self.consumer.on_snapshot_changed, snapshot)
            return deleted
        finally:
            if was_running:
                self.loop.start()

    def _delete_one(self, job_id: str, container_id: str) -> None:
        for container_name in job_container_names(container_id):
            if self.remote.container_exists(container_name):
                self.remote.delete_container(container_name)
        if self.registry.get(job_id) is not None:
            self.remote.delete_job(job_id)
        self.registry.remove(job_id)
        log_with_fields(self.logger, logging.INFO, "job_deleted", job_id=job_id)
