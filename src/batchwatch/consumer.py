from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Sequence
from typing import Protocol, TextIO

from .models import JobRecord


class ConsumerGone(RuntimeError):
    """The consumer of snapshot notifications has gone away."""


class Consumer(Protocol):
    def on_snapshot_changed(self, jobs: Sequence[JobRecord]) -> None: ...

    def on_load_progress(self, percent: float) -> None: ...

    def show_message(self, message: str) -> None: ...

    def show_error(self, message: str) -> None: ...

    def ask_question(self, message: str) -> bool: ...

    def set_download_status(self, message: str) -> None: ...


def format_cpu_time(job: JobRecord) -> str:
    total = int(job.cpu_time.total_seconds())
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours}:{minutes:02}:{seconds:02}"


def format_job_table(jobs: Sequence[JobRecord]) -> list[str]:
    if not jobs:
        return ["  (no jobs)"]
    lines = []
    for job in jobs:
        tasks = "?" if job.num_tasks < 0 else str(job.num_tasks)
        owner = f" ({job.owner})" if job.owner else ""
        lines.append(
            "  "
            f"{job.job_id} {job.display_name}{owner}: state={job.state.value} "
            f"progress={job.progress:.1f}% tasks={tasks} cpu={format_cpu_time(job)}"
        )
    return lines


class ConsoleConsumer:
    def __init__(
        self,
        *,
        assume_yes: bool = False,
        quiet: bool = False,
        stream: TextIO | None = None,
        error_stream: TextIO | None = None,
    ) -> None:
        self.assume_yes = assume_yes
        self.quiet = quiet
        self.stream = stream or sys.stdout
        self.error_stream = error_stream or sys.stderr

    def on_snapshot_changed(self, jobs: Sequence[JobRecord]) -> None:
        if self.quiet:
            return
        print(f"Jobs ({len(jobs)}):", file=self.stream)
        for line in format_job_table(jobs):
            print(line, file=self.stream)
        self.stream.flush()

    def on_load_progress(self, percent: float) -> None:
        _ = percent

    def show_message(self, message: str) -> None:
        if message:
            print(message, file=self.stream)

    def show_error(self, message: str) -> None:
        print(message, file=self.error_stream)

    def ask_question(self, message: str) -> bool:
        if self.assume_yes:
            return True
        try:
            answer = input(f"{message} [y/N] ")
        except EOFError:
            return False
        return answer.strip().lower() in {"y", "yes"}

    def set_download_status(self, message: str) -> None:
        if message:
            print(message, file=self.stream)


def call_consumer(logger: logging.Logger, method: Callable[..., object], *args: object) -> bool:
    """Invoke a consumer callback, logging instead of raising if it fails."""
    try:
        method(*args)
    except ConsumerGone:
        logger.info("consumer_gone")
        return False
    except Exception:
        logger.exception("consumer_callback_failed")
        return False
    return True


def notify_consumer(logger: logging.Logger, method: Callable[..., object], *args: object) -> bool:
    """Like ``call_consumer`` but lets ``ConsumerGone`` end the caller's cycle."""
    try:
        method(*args)
    except ConsumerGone:
        raise
    except Exception:
        logger.exception("consumer_callback_failed")
        return False
    return True
