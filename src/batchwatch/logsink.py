from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path

from .app_logging import log_with_fields

DOWNLOAD_LOG_NAME = "download.log"

RESULT_SUCCESS = 0
RESULT_NO_FILES = 1
RESULT_EMPTY_FILE = 2
RESULT_TEMP_DIR_FAILED = 3
RESULT_REPORT_ERROR = 4
RESULT_FAILED = 5

_RESULT_MESSAGES = {
    RESULT_NO_FILES: "Unable to generate a .csv file: no result files were found.",
    RESULT_EMPTY_FILE: "Unable to generate a .csv file: one or more result files may be empty",
    RESULT_TEMP_DIR_FAILED: "Unable to generate a temporary directory.",
    RESULT_REPORT_ERROR: "Error getting report.",
}


def describe_result(code: int) -> str:
    if code == RESULT_SUCCESS:
        return "Download successful."
    return _RESULT_MESSAGES.get(code, "Download unsuccessful.")


def format_outcome_line(name: str, code: int, timestamp: datetime) -> str:
    return f"{timestamp.strftime('%H:%M:%S')}: {name}: {describe_result(code)}"


class LogSink:
    """Append-only text log shared by every download completion callback."""

    def __init__(self, path: Path, logger: logging.Logger) -> None:
        self.path = path
        self.logger = logger
        self._lock = threading.Lock()

    @classmethod
    def for_directory(cls, directory: Path, logger: logging.Logger) -> LogSink:
        return cls(directory / DOWNLOAD_LOG_NAME, logger)

    def append(self, line: str, path: Path | None = None) -> bool:
        """Write one line; never raises, returns False if the log is unwritable."""
        target = path or self.path
        with self._lock:
            try:
                with target.open("a", encoding="utf-8") as handle:
                    handle.write(line.rstrip("\n") + "\n")
            except OSError as exc:
                log_with_fields(
                    self.logger,
                    logging.WARNING,
                    "download_log_write_failed",
                    path=str(target),
                    error=str(exc),
                )
                return False
        return True
