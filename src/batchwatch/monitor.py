from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from .config import AppConfig
from .consumer import Consumer
from .downloader import BlobResultsDownloader
from .downloads import DownloadCoordinator
from .fetcher import RetryingFetcher
from .lifecycle import LifecycleOps
from .logsink import LogSink
from .models import DownloadBatch, DownloadOptions, JobRecord
from .poller import CycleOutcome, PollingLoop
from .registry import JobRegistry
from .snapshot import JobSnapshotBuilder


class JobMonitor:
    """Wires the polling loop, download coordination and lifecycle operations
    around a single job registry."""

    def __init__(
        self,
        config: AppConfig,
        remote,
        consumer: Consumer,
        logger: logging.Logger,
        *,
        downloader=None,
        always_resume: bool = True,
    ) -> None:
        self.config = config
        self.remote = remote
        self.consumer = consumer
        self.logger = logger
        self.registry = JobRegistry()
        self.fetcher = RetryingFetcher(remote, logger, consumer, attempts=config.poll.fetch_attempts)
        self.builder = JobSnapshotBuilder(remote, logger, consumer)
        self.loop = PollingLoop(
            self.fetcher,
            self.builder,
            self.registry,
            consumer,
            logger,
            interval_seconds=config.poll.interval_seconds,
        )
        self.log_sink = LogSink.for_directory(config.paths.output, logger)
        self.downloads = DownloadCoordinator(
            self.registry,
            self.loop,
            downloader or BlobResultsDownloader(remote, logger),
            consumer,
            self.log_sink,
            logger,
            config.paths.output,
            always_resume=always_resume,
        )
        self.lifecycle = LifecycleOps(remote, self.registry, self.loop, consumer, logger)

    def start(self) -> bool:
        return self.loop.start()

    def stop(self, timeout: float | None = None) -> None:
        self.loop.request_stop()
        self.loop.wait_stopped(timeout)

    def refresh(self) -> CycleOutcome:
        return self.loop.run_once()

    def jobs(self) -> tuple[JobRecord, ...]:
        return self.registry.snapshot()

    def download(
        self,
        job_ids: Sequence[str],
        options: DownloadOptions | None = None,
        output_dir: Path | None = None,
    ) -> DownloadBatch:
        if options is None:
            options = DownloadOptions(
                save_to_csv=self.config.download.save_to_csv,
                include_debug_files=self.config.download.include_debug_files,
            )
        return self.downloads.begin_download(job_ids, options, output_dir)

    def stop_jobs(self, job_ids: Sequence[str], *, confirm: bool = True) -> list[str]:
        return self.lifecycle.stop_jobs(job_ids, confirm=confirm)

    def delete_jobs(self, job_ids: Sequence[str], *, confirm: bool = True) -> list[str]:
        return self.lifecycle.delete_jobs(job_ids, confirm=confirm)
