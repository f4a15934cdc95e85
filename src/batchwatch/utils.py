from __future__ import annotations

import uuid
from datetime import UTC, datetime


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def parse_job_id(value: str) -> str | None:
    try:
        return str(uuid.UUID(value.strip()))
    except (AttributeError, ValueError):
        return None


def output_container_name(job_id: str) -> str:
    return f"job-output-{job_id}"


def job_container_name(job_id: str) -> str:
    return f"job-{job_id}"


def job_container_names(job_id: str) -> list[str]:
    return [output_container_name(job_id), job_container_name(job_id), job_id]


def compare_end_times(first: datetime | None, second: datetime | None) -> int:
    """Order finished jobs before unfinished ones, then by end time."""
    if first is None:
        return 0 if second is None else 1
    if second is None:
        return -1
    if first < second:
        return -1
    if first > second:
        return 1
    return 0
