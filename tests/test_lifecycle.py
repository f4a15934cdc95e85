from __future__ import annotations

import unittest

from batchwatch.lifecycle import LifecycleOps
from batchwatch.models import JobState
from batchwatch.registry import JobRegistry

from fakes import JOB_A, JOB_B, JOB_C, FakeConsumer, FakeLoop, FakeRemote, job_record, quiet_logger


class BrokenRemote(FakeRemote):
    """Raises non-remote errors for chosen jobs, recording every container check."""

    def __init__(self, broken_job: str) -> None:
        super().__init__()
        self.broken_job = broken_job
        self.checked_containers: list[str] = []

    def container_exists(self, container_name: str) -> bool:
        self.checked_containers.append(container_name)
        if self.broken_job in container_name:
            raise ValueError("bad container name")
        return super().container_exists(container_name)

    def terminate_job(self, job_id: str) -> None:
        if job_id == self.broken_job:
            raise KeyError(job_id)
        super().terminate_job(job_id)


class LifecycleOpsTest(unittest.TestCase):
    def setUp(self) -> None:
        self.remote = FakeRemote()
        self.registry = JobRegistry(
            [
                job_record(JOB_A, JobState.RUNNING, 20, name="alpha"),
                job_record(JOB_B, JobState.COMPLETED, 100, name="beta"),
                job_record(JOB_C, JobState.ACTIVE, 0, name="gamma"),
            ]
        )
        self.loop = FakeLoop(running=True)
        self.consumer = FakeConsumer()
        self.ops = LifecycleOps(self.remote, self.registry, self.loop, self.consumer, quiet_logger())

    def test_stop_with_nothing_selected(self) -> None:
        self.assertEqual(self.ops.stop_jobs([]), [])
        self.assertEqual(self.consumer.messages, ["Unable to stop jobs: no jobs are selected"])
        self.assertEqual(self.consumer.questions, [])
        self.assertEqual(self.remote.terminated, [])

    def test_stop_skips_completed_and_continues_after_error(self) -> None:
        self.remote.failing_terminations.add(JOB_A)
        stopped = self.ops.stop_jobs([JOB_A, JOB_B, JOB_C])
        self.assertEqual(stopped, [JOB_C])
        self.assertEqual(self.remote.terminated, [JOB_C])
        self.assertEqual(len(self.consumer.errors), 1)
        self.assertIn("these 3 jobs", self.consumer.questions[0])

    def test_stop_refused(self) -> None:
        self.consumer.answer = False
        self.assertEqual(self.ops.stop_jobs([JOB_A]), [])
        self.assertIn("this job", self.consumer.questions[0])
        self.assertEqual(self.remote.terminated, [])

    def test_stop_unknown_job_reports_error(self) -> None:
        self.assertEqual(self.ops.stop_jobs(["missing"], confirm=False), [])
        self.assertEqual(self.consumer.errors, ["Unable to stop missing: job not found"])

    def test_delete_with_nothing_selected(self) -> None:
        self.assertEqual(self.ops.delete_jobs([]), [])
        self.assertEqual(self.consumer.messages, ["Unable to delete jobs: no jobs are selected."])
        self.assertEqual(self.loop.pauses, 0)

    def test_delete_removes_containers_job_and_record(self) -> None:
        self.remote.containers.update({f"job-{JOB_B}", f"job-output-{JOB_B}"})

        deleted = self.ops.delete_jobs([JOB_B])

        self.assertEqual(deleted, [JOB_B])
        self.assertEqual(sorted(self.remote.deleted_containers), sorted([f"job-{JOB_B}", f"job-output-{JOB_B}"]))
        self.assertEqual(self.remote.deleted_jobs, [JOB_B])
        self.assertIsNone(self.registry.get(JOB_B))
        self.assertEqual(len(self.consumer.snapshots[-1]), 2)
        self.assertEqual(self.loop.pauses, 1)
        self.assertTrue(self.loop.running)

    def test_delete_failure_keeps_record_and_resumes_loop(self) -> None:
        self.remote.failing_containers.add(f"job-{JOB_A}")

        deleted = self.ops.delete_jobs([JOB_A, JOB_C])

        self.assertEqual(deleted, [JOB_C])
        self.assertIsNotNone(self.registry.get(JOB_A))
        self.assertIsNone(self.registry.get(JOB_C))
        self.assertEqual(len(self.consumer.errors), 1)
        self.assertEqual(self.loop.starts, 1)
        self.assertTrue(self.loop.running)
        self.assertIsNone(self.registry.owner)

    def test_container_delete_failure_keeps_record(self) -> None:
        self.remote.containers.add(f"job-output-{JOB_A}")
        self.remote.failing_deletions.add(f"job-output-{JOB_A}")

        self.assertEqual(self.ops.delete_jobs([JOB_A]), [])

        self.assertIsNotNone(self.registry.get(JOB_A))
        self.assertEqual(self.remote.deleted_jobs, [])
        self.assertTrue(self.loop.running)

    def test_unexpected_delete_error_does_not_abort_batch(self) -> None:
        remote = BrokenRemote(JOB_A)
        ops = LifecycleOps(remote, self.registry, self.loop, self.consumer, quiet_logger())

        self.assertEqual(ops.delete_jobs([JOB_A, JOB_C]), [JOB_C])

        self.assertEqual(remote.deleted_jobs, [JOB_C])
        self.assertIsNotNone(self.registry.get(JOB_A))
        self.assertEqual(self.consumer.errors, ["bad container name"])
        self.assertEqual(len(self.consumer.snapshots), 1)
        self.assertTrue(self.loop.running)

    def test_unexpected_stop_error_does_not_abort_batch(self) -> None:
        remote = BrokenRemote(JOB_A)
        ops = LifecycleOps(remote, self.registry, self.loop, self.consumer, quiet_logger())

        self.assertEqual(ops.stop_jobs([JOB_A, JOB_C], confirm=False), [JOB_C])
        self.assertEqual(remote.terminated, [JOB_C])
        self.assertEqual(len(self.consumer.errors), 1)

    def test_delete_skips_ids_that_are_not_guids(self) -> None:
        remote = BrokenRemote("unused")
        ops = LifecycleOps(remote, self.registry, self.loop, self.consumer, quiet_logger())

        self.assertEqual(ops.delete_jobs(["Not_A_Guid", JOB_C]), [JOB_C])

        self.assertTrue(all(JOB_C in name for name in remote.checked_containers))
        self.assertEqual(remote.deleted_jobs, [JOB_C])
        self.assertEqual(self.consumer.errors, [])

    def test_delete_refused_restarts_loop(self) -> None:
        self.consumer.answer = False
        self.assertEqual(self.ops.delete_jobs([JOB_A]), [])
        self.assertEqual(self.remote.deleted_jobs, [])
        self.assertTrue(self.loop.running)

    def test_delete_leaves_idle_loop_stopped(self) -> None:
        self.loop.running = False
        self.ops.delete_jobs([JOB_C])
        self.assertEqual(self.loop.starts, 0)


if __name__ == "__main__":
    unittest.main()
