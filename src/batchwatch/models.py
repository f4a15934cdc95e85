from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum


class JobState(str, Enum):
    ACTIVE = "active"
    RUNNING = "running"
    COMPLETED = "completed"
    DISABLED = "disabled"
    UNKNOWN = "unknown"

    @classmethod
    def from_remote(cls, raw: str | None) -> JobState:
        if not raw:
            return cls.UNKNOWN
        return _REMOTE_STATES.get(raw.strip().lower(), cls.UNKNOWN)


_REMOTE_STATES = {
    "active": JobState.ACTIVE,
    "running": JobState.RUNNING,
    "enabling": JobState.RUNNING,
    "terminating": JobState.RUNNING,
    "completed": JobState.COMPLETED,
    "disabling": JobState.DISABLED,
    "disabled": JobState.DISABLED,
}

UNAVAILABLE_TASK_COUNT = -1


@dataclass(slots=True, frozen=True)
class TaskCounts:
    active: int
    running: int
    completed: int

    @property
    def total(self) -> int:
        return self.active + self.running + self.completed


@dataclass(slots=True, frozen=True)
class RemoteJobInfo:
    job_id: str
    display_name: str
    state: str
    kernel_cpu_time: timedelta | None = None
    user_cpu_time: timedelta | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None

    @property
    def has_statistics(self) -> bool:
        return self.kernel_cpu_time is not None and self.user_cpu_time is not None


@dataclass(slots=True, frozen=True)
class JobRecord:
    job_id: str
    display_name: str
    owner: str
    state: JobState
    task_counts: TaskCounts | None
    num_tasks: int
    progress: float
    cpu_time: timedelta = timedelta(0)
    start_time: datetime | None = None
    end_time: datetime | None = None


@dataclass(slots=True, frozen=True)
class DownloadTicket:
    job_id: str
    display_name: str
    requested_at: str


@dataclass(slots=True, frozen=True)
class DownloadOptions:
    save_to_csv: bool = False
    include_debug_files: bool = False


@dataclass(slots=True, frozen=True)
class DownloadResult:
    job_id: str
    code: int
    path: str
    timestamp: datetime


@dataclass(slots=True)
class DownloadBatch:
    started: list[str]
    skipped: list[str]
    cancelled: bool = False
