from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from datetime import datetime
from pathlib import Path

from .app_logging import log_with_fields
from .consumer import Consumer, call_consumer
from .logsink import DOWNLOAD_LOG_NAME, RESULT_FAILED, RESULT_SUCCESS, LogSink, describe_result, format_outcome_line
from .models import DownloadBatch, DownloadOptions, DownloadResult, DownloadTicket, JobState
from .poller import PollingLoop
from .registry import JobRegistry
from .utils import parse_job_id, utc_now_iso

OWNER_NAME = "download-coordinator"


class DownloadRejected(RuntimeError):
    pass


class DownloadsInProgressError(DownloadRejected):
    def __init__(self) -> None:
        super().__init__(
            "Unable to start a new batch of downloads - one or more downloads are already in progress."
        )


class NothingSelectedError(DownloadRejected):
    def __init__(self) -> None:
        super().__init__("Unable to download jobs - nothing selected.")


class TicketExistsError(DownloadRejected):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"A download for job {job_id} is already in progress.")
        self.job_id = job_id


class TicketBook:
    """In-flight downloads keyed by job id, at most one per job."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tickets: dict[str, DownloadTicket] = {}

    def acquire(self, job_id: str, display_name: str) -> DownloadTicket:
        with self._lock:
            if job_id in self._tickets:
                raise TicketExistsError(job_id)
            ticket = DownloadTicket(job_id=job_id, display_name=display_name, requested_at=utc_now_iso())
            self._tickets[job_id] = ticket
            return ticket

    def release(self, job_id: str) -> DownloadTicket | None:
        with self._lock:
            return self._tickets.pop(job_id, None)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._tickets

    def __len__(self) -> int:
        with self._lock:
            return len(self._tickets)


class DownloadCoordinator:
    """Runs one batch of result downloads at a time with the polling loop paused.

    The loop is paused before the batch is planned and restarted once the
    batch has been dispatched and every ticket has been released.
    """

    def __init__(
        self,
        registry: JobRegistry,
        loop: PollingLoop,
        downloader,
        consumer: Consumer,
        log_sink: LogSink,
        logger: logging.Logger,
        output_dir: Path,
        *,
        always_resume: bool = True,
    ) -> None:
        self.registry = registry
        self.loop = loop
        self.downloader = downloader
        self.consumer = consumer
        self.log_sink = log_sink
        self.logger = logger
        self.output_dir = output_dir
        self.always_resume = always_resume
        self.tickets = TicketBook()
        self.results: list[DownloadResult] = []
        self._condition = threading.Condition()
        self._resume_lock = threading.Lock()
        self._dispatching = False
        self._loop_paused = False
        self._resume_loop = False

    @property
    def busy(self) -> bool:
        with self._condition:
            return self._dispatching or len(self.tickets) > 0

    def begin_download(
        self,
        job_ids: Sequence[str],
        options: DownloadOptions | None = None,
        output_dir: Path | None = None,
    ) -> DownloadBatch:
        options = options or DownloadOptions()
        with self._condition:
            if self._dispatching or len(self.tickets) > 0:
                raise DownloadsInProgressError()
            if not job_ids:
                raise NothingSelectedError()
            self._dispatching = True
            self.results = []

        destination_root = output_dir or self.output_dir
        batch = DownloadBatch(started=[], skipped=[])
        planned: list[DownloadTicket] = []
        try:
            self._pause_loop()
            call_consumer(self.logger, self.consumer.set_download_status, "")
            with self.registry.claim(OWNER_NAME):
                planned = self._plan(job_ids, batch)

            existing = [
                destination_root / ticket.display_name
                for ticket in planned
                if options.save_to_csv and _has_prior_output(destination_root / ticket.display_name)
            ]
            if existing and not self._confirm_overwrite(existing[0]):
                for ticket in planned:
                    self.tickets.release(ticket.job_id)
                batch.cancelled = True
                log_with_fields(
                    self.logger,
                    logging.INFO,
                    "download_batch_cancelled",
                    released=[ticket.job_id for ticket in planned],
                )
                return batch

            for ticket in planned:
                self._start(ticket, destination_root, options)
                batch.started.append(ticket.job_id)
            return batch
        except BaseException:
            for ticket in planned:
                if ticket.job_id not in batch.started:
                    self.tickets.release(ticket.job_id)
            raise
        finally:
            with self._condition:
                self._dispatching = False
            self._resume_if_idle()

    def download_complete(self, job_id: str, code: int, path: str, timestamp: datetime) -> None:
        self.results.append(DownloadResult(job_id=job_id, code=code, path=path, timestamp=timestamp))
        ticket = self.tickets.release(job_id)
        name = ticket.display_name if ticket is not None else self.registry.job_name(job_id)
        log_with_fields(
            self.logger,
            logging.INFO if code == RESULT_SUCCESS else logging.WARNING,
            "download_finished",
            job_id=job_id,
            code=code,
            result=describe_result(code),
            path=path,
        )
        try:
            self.report_outcome(name, code, Path(path), timestamp)
        finally:
            self._resume_if_idle()

    def report_outcome(self, name: str, code: int, path: Path, timestamp: datetime) -> None:
        if code == RESULT_SUCCESS:
            call_consumer(self.logger, self.consumer.show_message, describe_result(code))
            return
        log_file = path / DOWNLOAD_LOG_NAME
        call_consumer(
            self.logger,
            self.consumer.set_download_status,
            f"One or more downloads encountered an error. See {log_file} for more details.",
        )
        self.log_sink.append(format_outcome_line(name, code, timestamp), log_file)

    def wait_idle(self, timeout: float | None = None) -> bool:
        with self._condition:
            return self._condition.wait_for(
                lambda: not self._dispatching and len(self.tickets) == 0,
                timeout,
            )

    def _plan(self, job_ids: Sequence[str], batch: DownloadBatch) -> list[DownloadTicket]:
        planned: list[DownloadTicket] = []
        for raw_id in job_ids:
            job_id = parse_job_id(raw_id)
            if job_id is None:
                batch.skipped.append(raw_id)
                log_with_fields(self.logger, logging.INFO, "download_skipped_invalid_id", job_id=raw_id)
                continue
            job = self.registry.get(job_id) or self.registry.get(raw_id.strip())
            if job is None:
                batch.skipped.append(raw_id)
                call_consumer(
                    self.logger, self.consumer.show_error, f"Unable to download {raw_id}: job not found"
                )
                continue
            if job.state != JobState.COMPLETED:
                batch.skipped.append(job.job_id)
                call_consumer(
                    self.logger,
                    self.consumer.show_error,
                    f"Unable to download {job.display_name}: Job has not finished running",
                )
                continue
            if job.job_id in self.tickets:
                batch.skipped.append(job.job_id)
                continue
            planned.append(self.tickets.acquire(job.job_id, job.display_name))
        return planned

    def _confirm_overwrite(self, directory: Path) -> bool:
        return self.consumer.ask_question(
            f"Files detected in output directory ({directory}). Results will be collated from ALL "
            "files in this directory. Are you certain you wish to continue?"
        )

    def _start(self, ticket: DownloadTicket, destination_root: Path, options: DownloadOptions) -> None:
        log_with_fields(
            self.logger,
            logging.INFO,
            "download_started",
            job_id=ticket.job_id,
            name=ticket.display_name,
            destination=str(destination_root),
        )
        try:
            self.downloader.start_download(
                ticket.job_id,
                ticket.display_name,
                destination_root,
                options,
                self.download_complete,
            )
        except Exception as exc:
            log_with_fields(
                self.logger,
                logging.ERROR,
                "download_start_failed",
                job_id=ticket.job_id,
                error=str(exc),
            )
            self.download_complete(ticket.job_id, RESULT_FAILED, str(destination_root), datetime.now())

    def _pause_loop(self) -> None:
        # Serialised with _resume_if_idle so a restart cannot land inside a new batch.
        with self._resume_lock:
            was_running = self.loop.pause()
            with self._condition:
                self._loop_paused = True
                self._resume_loop = was_running or self.always_resume

    def _resume_if_idle(self) -> None:
        with self._resume_lock:
            with self._condition:
                self._condition.notify_all()
                if self._dispatching or len(self.tickets) > 0 or not self._loop_paused:
                    return
                self._loop_paused = False
                resume = self._resume_loop
            if resume:
                self.loop.start()


def _has_prior_output(directory: Path) -> bool:
    return directory.is_dir() and any(directory.iterdir())
