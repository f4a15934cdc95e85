from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from azure.batch import BatchServiceClient
from azure.batch.batch_auth import SharedKeyCredentials
from azure.batch.models import JobListOptions
from azure.core.exceptions import AzureError
from azure.storage.blob import BlobServiceClient
from msrest.exceptions import ClientException

from .app_logging import log_with_fields
from .config import AzureConfig
from .models import RemoteJobInfo, TaskCounts

T = TypeVar("T")

JOB_SELECT_CLAUSE = "id,displayName,state,executionInfo,stats"


class RemoteError(RuntimeError):
    pass


def _state_value(state: object) -> str:
    return str(getattr(state, "value", state) or "")


def job_info_from_cloud_job(cloud_job: object) -> RemoteJobInfo:
    stats = getattr(cloud_job, "stats", None)
    execution_info = getattr(cloud_job, "execution_info", None)
    return RemoteJobInfo(
        job_id=cloud_job.id,
        display_name=cloud_job.display_name or cloud_job.id,
        state=_state_value(cloud_job.state),
        kernel_cpu_time=stats.kernel_cpu_time if stats is not None else None,
        user_cpu_time=stats.user_cpu_time if stats is not None else None,
        start_time=execution_info.start_time if execution_info is not None else None,
        end_time=execution_info.end_time if execution_info is not None else None,
    )


class AzureBatchRemote:
    """Azure Batch jobs plus the blob containers that hold their inputs and outputs."""

    def __init__(
        self,
        azure_config: AzureConfig,
        logger: logging.Logger,
        *,
        batch_client: BatchServiceClient | None = None,
        blob_service: BlobServiceClient | None = None,
    ) -> None:
        self.azure_config = azure_config
        self.logger = logger
        if batch_client is None:
            credentials = SharedKeyCredentials(azure_config.batch_account, azure_config.batch_key)
            batch_client = BatchServiceClient(credentials, batch_url=azure_config.batch_url)
        if blob_service is None:
            account_url = f"https://{azure_config.storage_account}.blob.core.windows.net"
            blob_service = BlobServiceClient(account_url=account_url, credential=azure_config.storage_key)
        self.batch_client = batch_client
        self.blob_service = blob_service

    def _call(self, context: str, func: Callable[[], T]) -> T:
        try:
            return func()
        except (ClientException, AzureError) as exc:
            raise RemoteError(f"{context} failed: {exc}") from exc

    def list_jobs(self) -> list[RemoteJobInfo]:
        options = JobListOptions(select=JOB_SELECT_CLAUSE, expand="stats")
        # Paging happens during iteration, so materialise inside the guard.
        cloud_jobs = self._call("list jobs", lambda: list(self.batch_client.job.list(job_list_options=options)))
        return [job_info_from_cloud_job(job) for job in cloud_jobs]

    def get_task_counts(self, job_id: str) -> TaskCounts:
        result = self._call(f"task counts for {job_id}", lambda: self.batch_client.job.get_task_counts(job_id))
        counts = getattr(result, "task_counts", result)
        return TaskCounts(active=counts.active, running=counts.running, completed=counts.completed)

    def terminate_job(self, job_id: str) -> None:
        self._call(f"terminate job {job_id}", lambda: self.batch_client.job.terminate(job_id))

    def delete_job(self, job_id: str) -> None:
        self._call(f"delete job {job_id}", lambda: self.batch_client.job.delete(job_id))

    def container_exists(self, container_name: str) -> bool:
        container = self.blob_service.get_container_client(container_name)
        return self._call(f"check container {container_name}", container.exists)

    def delete_container(self, container_name: str) -> None:
        container = self.blob_service.get_container_client(container_name)
        self._call(f"delete container {container_name}", container.delete_container)

    def get_metadata(self, container_name: str, key: str) -> str:
        try:
            container = self.blob_service.get_container_client(container_name)
            if not container.exists():
                return ""
            metadata = container.get_container_properties().metadata or {}
        except AzureError as exc:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "metadata_lookup_failed",
                container=container_name,
                key=key,
                error=str(exc),
            )
            return ""
        wanted = key.lower()
        for name, value in metadata.items():
            if name.lower() == wanted:
                return str(value)
        return ""

    def list_blob_names(self, container_name: str) -> list[str]:
        container = self.blob_service.get_container_client(container_name)
        return self._call(
            f"list blobs in {container_name}",
            lambda: [blob.name for blob in container.list_blobs()],
        )

    def download_blob(self, container_name: str, blob_name: str, destination: Path) -> Path:
        container = self.blob_service.get_container_client(container_name)
        destination.parent.mkdir(parents=True, exist_ok=True)

        def fetch() -> Path:
            with destination.open("wb") as handle:
                container.download_blob(blob_name).readinto(handle)
            return destination

        return self._call(f"download {container_name}/{blob_name}", fetch)
