from __future__ import annotations

import logging
import threading
from enum import Enum

from .app_logging import log_with_fields
from .consumer import Consumer, ConsumerGone
from .fetcher import RetryingFetcher
from .registry import JobRegistry, RegistryBusyError
from .snapshot import JobSnapshotBuilder, snapshot_changed

DEFAULT_INTERVAL_SECONDS = 10.0
OWNER_NAME = "polling-loop"
_CLAIM_RETRY_SECONDS = 0.5


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    CANCEL_REQUESTED = "cancel_requested"
    STOPPED = "stopped"


class CycleOutcome(str, Enum):
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    STALE = "stale"
    CANCELLED = "cancelled"
    CONSUMER_GONE = "consumer_gone"
    CONSUMER_FAULT = "consumer_fault"


class PollingLoop:
    """Background reconciliation of the registry against the remote job list.

    One worker thread at most. Cancellation is cooperative: ``request_stop``
    sets a flag that is checked before each cycle, once per job while the
    snapshot is built, after the build and around the interval sleep. A
    cancelled cycle neither replaces the registry nor notifies the consumer.
    """

    def __init__(
        self,
        fetcher: RetryingFetcher,
        builder: JobSnapshotBuilder,
        registry: JobRegistry,
        consumer: Consumer,
        logger: logging.Logger,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        self.fetcher = fetcher
        self.builder = builder
        self.registry = registry
        self.consumer = consumer
        self.logger = logger
        self.interval_seconds = interval_seconds
        self.cycles = 0
        self._cancel = threading.Event()
        self._condition = threading.Condition()
        self._state = LoopState.IDLE
        self._thread: threading.Thread | None = None
        self._pending_notify = False

    @property
    def state(self) -> LoopState:
        with self._condition:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state == LoopState.RUNNING

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def start(self) -> bool:
        """Start the worker thread; returns False if it is already running."""
        self._ensure_not_worker("start")
        with self._condition:
            # A previous run that is still quiescing must exit first.
            self._condition.wait_for(lambda: self._state != LoopState.CANCEL_REQUESTED)
            if self._state == LoopState.RUNNING:
                return False
            self._cancel.clear()
            self._state = LoopState.RUNNING
            self._thread = threading.Thread(target=self._run, name="batchwatch-poller", daemon=True)
            self._thread.start()
        log_with_fields(self.logger, logging.INFO, "polling_started", interval_seconds=self.interval_seconds)
        return True

    def request_stop(self) -> None:
        with self._condition:
            self._cancel.set()
            if self._state == LoopState.RUNNING:
                self._state = LoopState.CANCEL_REQUESTED

    def wait_stopped(self, timeout: float | None = None) -> bool:
        self._ensure_not_worker("wait for")
        with self._condition:
            return self._condition.wait_for(
                lambda: self._state not in (LoopState.RUNNING, LoopState.CANCEL_REQUESTED),
                timeout,
            )

    def pause(self, timeout: float | None = None) -> bool:
        """Stop the loop and wait for it to quiesce; returns whether it was running."""
        self._ensure_not_worker("pause")
        with self._condition:
            was_running = self._state == LoopState.RUNNING
        self.request_stop()
        if not self.wait_stopped(timeout):
            raise TimeoutError("polling loop did not stop in time")
        if was_running:
            log_with_fields(self.logger, logging.INFO, "polling_paused")
        return was_running

    def run_once(self) -> CycleOutcome:
        """Run a single cycle on the calling thread while the loop is not running."""
        with self._condition:
            if self._state in (LoopState.RUNNING, LoopState.CANCEL_REQUESTED):
                raise RuntimeError("polling loop is running")
            self._cancel.clear()
        with self.registry.claim(OWNER_NAME):
            return self.run_cycle()

    def run_cycle(self) -> CycleOutcome:
        if self._cancel.is_set():
            return CycleOutcome.CANCELLED
        try:
            remote_jobs = self.fetcher.fetch_all()
        except ConsumerGone:
            log_with_fields(self.logger, logging.INFO, "consumer_gone", phase="fetch")
            return CycleOutcome.CONSUMER_GONE
        if self._cancel.is_set():
            return CycleOutcome.CANCELLED
        if self.fetcher.last_error is not None:
            # Keep showing the previous snapshot rather than an empty one.
            return CycleOutcome.STALE

        try:
            jobs = self.builder.build(remote_jobs, self._cancel, self.consumer.on_load_progress)
        except ConsumerGone:
            log_with_fields(self.logger, logging.INFO, "consumer_gone", phase="build")
            return CycleOutcome.CONSUMER_GONE
        if jobs is None or self._cancel.is_set():
            return CycleOutcome.CANCELLED

        self.cycles += 1
        if not snapshot_changed(self.registry.snapshot(), jobs) and not self._pending_notify:
            return CycleOutcome.UNCHANGED

        self.registry.replace(jobs)
        log_with_fields(self.logger, logging.INFO, "snapshot_changed", jobs=len(jobs))
        return self._notify()

    def _notify(self) -> CycleOutcome:
        try:
            self.consumer.on_snapshot_changed(self.registry.snapshot())
        except ConsumerGone:
            self._pending_notify = True
            log_with_fields(self.logger, logging.INFO, "consumer_gone", phase="notify")
            return CycleOutcome.CONSUMER_GONE
        except Exception:
            self._pending_notify = False
            self.logger.exception("consumer_fault")
            return CycleOutcome.CONSUMER_FAULT
        self._pending_notify = False
        return CycleOutcome.CHANGED

    def _run(self) -> None:
        try:
            while not self._cancel.is_set():
                try:
                    with self.registry.claim(OWNER_NAME, timeout=_CLAIM_RETRY_SECONDS):
                        self._loop()
                    break
                except RegistryBusyError:
                    continue
        finally:
            with self._condition:
                self._state = LoopState.STOPPED
                self._condition.notify_all()
            log_with_fields(self.logger, logging.INFO, "polling_stopped", cycles=self.cycles)

    def _loop(self) -> None:
        while not self._cancel.is_set():
            try:
                outcome = self.run_cycle()
            except Exception:
                self.logger.exception("polling_cycle_failed")
                outcome = CycleOutcome.UNCHANGED
            if outcome is CycleOutcome.CANCELLED:
                return
            if self._cancel.wait(self.interval_seconds):
                return

    def _ensure_not_worker(self, action: str) -> None:
        if self._thread is not None and threading.current_thread() is self._thread:
            raise RuntimeError(f"cannot {action} the polling loop from its own thread")
