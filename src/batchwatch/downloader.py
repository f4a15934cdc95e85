from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path, PurePosixPath

from .app_logging import log_with_fields
from .logsink import RESULT_EMPTY_FILE, RESULT_FAILED, RESULT_NO_FILES, RESULT_SUCCESS, RESULT_TEMP_DIR_FAILED
from .models import DownloadOptions
from .remote import RemoteError
from .utils import output_container_name

CompletionCallback = Callable[[str, int, str, datetime], None]

DEBUG_FILE_SUFFIXES = (".stdout", ".stderr", ".log")


def is_debug_file(blob_name: str) -> bool:
    return blob_name.lower().endswith(DEBUG_FILE_SUFFIXES)


def _safe_relative(blob_name: str) -> Path | None:
    parts = PurePosixPath(blob_name).parts
    if not parts or any(part in {"..", "/"} for part in parts):
        return None
    return Path(*parts)


class BlobResultsDownloader:
    """Copies a job's output container into ``<destination>/<display name>``."""

    def __init__(self, remote, logger: logging.Logger, *, run_async: bool = True) -> None:
        self.remote = remote
        self.logger = logger
        self.run_async = run_async

    def start_download(
        self,
        job_id: str,
        display_name: str,
        destination: Path,
        options: DownloadOptions,
        on_complete: CompletionCallback,
    ) -> None:
        if not self.run_async:
            self._download_and_report(job_id, display_name, destination, options, on_complete)
            return
        worker = threading.Thread(
            target=self._download_and_report,
            args=(job_id, display_name, destination, options, on_complete),
            name=f"download-{job_id}",
            daemon=True,
        )
        worker.start()

    def _download_and_report(
        self,
        job_id: str,
        display_name: str,
        destination: Path,
        options: DownloadOptions,
        on_complete: CompletionCallback,
    ) -> None:
        code = self.download(job_id, display_name, destination, options)
        on_complete(job_id, code, str(destination), datetime.now())

    def download(self, job_id: str, display_name: str, destination: Path, options: DownloadOptions) -> int:
        target = destination / display_name
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            log_with_fields(self.logger, logging.ERROR, "download_dir_failed", path=str(target), error=str(exc))
            return RESULT_TEMP_DIR_FAILED

        container = output_container_name(job_id)
        found_empty = False
        try:
            names = [
                name
                for name in self.remote.list_blob_names(container)
                if options.include_debug_files or not is_debug_file(name)
            ]
            if not names:
                return RESULT_NO_FILES
            for name in names:
                relative = _safe_relative(name)
                if relative is None:
                    continue
                path = self.remote.download_blob(container, name, target / relative)
                if path.stat().st_size == 0:
                    found_empty = True
        except (RemoteError, OSError) as exc:
            log_with_fields(self.logger, logging.ERROR, "download_failed", job_id=job_id, error=str(exc))
            return RESULT_FAILED

        log_with_fields(self.logger, logging.INFO, "download_copied", job_id=job_id, files=len(names))
        if found_empty and options.save_to_csv:
            return RESULT_EMPTY_FILE
        return RESULT_SUCCESS
