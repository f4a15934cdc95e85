from __future__ import annotations

import logging

from .app_logging import log_with_fields
from .consumer import Consumer, notify_consumer
from .models import RemoteJobInfo
from .remote import RemoteError

DEFAULT_FETCH_ATTEMPTS = 4


class RetryingFetcher:
    """Lists remote jobs, retrying back-to-back a bounded number of times.

    Only the final failure is surfaced: it is logged, shown to the consumer
    and stored in ``last_error``, and the cycle carries on with zero jobs.
    """

    def __init__(
        self,
        remote,
        logger: logging.Logger,
        consumer: Consumer | None = None,
        attempts: int = DEFAULT_FETCH_ATTEMPTS,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.remote = remote
        self.logger = logger
        self.consumer = consumer
        self.attempts = attempts
        self.last_error: str | None = None

    def fetch_all(self) -> list[RemoteJobInfo]:
        for attempt in range(1, self.attempts + 1):
            try:
                jobs = self.remote.list_jobs()
            except RemoteError as exc:
                if attempt < self.attempts:
                    log_with_fields(
                        self.logger,
                        logging.WARNING,
                        "list_jobs_retry",
                        attempt=attempt,
                        error=str(exc),
                    )
                    continue
                self.last_error = str(exc)
                log_with_fields(
                    self.logger,
                    logging.ERROR,
                    "list_jobs_failed",
                    attempts=attempt,
                    error=str(exc),
                )
                if self.consumer is not None:
                    notify_consumer(
                        self.logger, self.consumer.show_error, f"Unable to retrieve job list: {exc}"
                    )
                return []
            self.last_error = None
            log_with_fields(self.logger, logging.DEBUG, "jobs_fetched", attempt=attempt, count=len(jobs))
            return list(jobs)
        return []
