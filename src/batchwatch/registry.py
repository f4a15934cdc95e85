from __future__ import annotations

import getpass
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from .models import JobRecord


class RegistryBusyError(RuntimeError):
    pass


class JobRegistry:
    """Ordered, id-unique table of jobs with a single current owner.

    Readers always get an immutable tuple. Mutation goes through whichever
    component holds the ownership token (the polling loop or a bulk
    operation); the token is handed over explicitly via ``claim``.
    """

    def __init__(self, jobs: Iterable[JobRecord] = ()) -> None:
        self._jobs: tuple[JobRecord, ...] = ()
        self._owner_lock = threading.Lock()
        self._owner: str | None = None
        self.replace(jobs)

    @contextmanager
    def claim(self, owner: str, timeout: float = -1) -> Iterator[JobRegistry]:
        if not self._owner_lock.acquire(timeout=timeout):
            raise RegistryBusyError(f"registry is owned by {self._owner}")
        self._owner = owner
        try:
            yield self
        finally:
            self._owner = None
            self._owner_lock.release()

    @property
    def owner(self) -> str | None:
        return self._owner

    def snapshot(self) -> tuple[JobRecord, ...]:
        return self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    def replace(self, jobs: Iterable[JobRecord]) -> None:
        new_jobs = tuple(jobs)
        seen: set[str] = set()
        for job in new_jobs:
            if job.job_id in seen:
                raise ValueError(f"Duplicate job id in snapshot: {job.job_id}")
            seen.add(job.job_id)
        self._jobs = new_jobs

    def get(self, job_id: str) -> JobRecord | None:
        for job in self._jobs:
            if job.job_id == job_id:
                return job
        return None

    def remove(self, job_id: str) -> bool:
        remaining = tuple(job for job in self._jobs if job.job_id != job_id)
        removed = len(remaining) != len(self._jobs)
        self._jobs = remaining
        return removed

    def job_name(self, job_id: str, with_owner: bool = False) -> str:
        job = self.get(job_id)
        if job is None:
            return job_id
        if with_owner:
            return f"{job.display_name} ({job.owner})"
        return job.display_name

    def user_owns_job(self, job_id: str, user: str | None = None) -> bool:
        job = self.get(job_id)
        if job is None:
            return False
        current_user = user if user is not None else getpass.getuser()
        return job.owner.lower() == current_user.lower()
