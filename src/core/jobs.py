"""Job progress tracking for long-running synchronization stages."""

import math
import threading
import time
from collections.abc import Callable
from datetime import datetime
from enum import StrEnum
from functools import lru_cache
from typing import Any

from cachetools import TLRUCache
from pydantic import BaseModel, Field

from src import log
from src.exceptions import JobAlreadyExistsError, JobNotFoundError
from src.models.db.base import utcnow
from src.utils.logging import format_context

__all__ = [
    "JobLogEntry",
    "JobProgress",
    "JobProgressStore",
    "JobStatus",
    "get_job_store",
]

MAX_LOG_ENTRIES = 500
COMPLETED_TTL = 5 * 60
FAILED_TTL = 10 * 60

ProgressCallback = Callable[["JobProgress"], None]


class JobStatus(StrEnum):
    """Lifecycle state of a tracked job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether the job has finished one way or another."""
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobLogEntry(BaseModel):
    """A single line in a job's log buffer."""

    timestamp: datetime = Field(default_factory=utcnow)
    level: str = "info"
    message: str
    data: dict[str, Any] | None = None


class JobProgress(BaseModel):
    """Observable state of one job."""

    job_id: str
    kind: str
    status: JobStatus = JobStatus.RUNNING
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    current_step: str = "Initializing"
    current_step_index: int = 0
    total_steps: int = 1
    step_progress: int = 0
    overall_progress: int = 0
    items_processed: int = 0
    items_total: int = 0
    current_item: str | None = None
    cancel_requested: bool = False
    logs: list[JobLogEntry] = Field(default_factory=list)
    error: str | None = None
    result: dict[str, Any] | None = None


def _time_to_live(_key: str, job: JobProgress, now: float) -> float:
    """Expiry time for a job entry; running jobs never expire."""
    if job.status == JobStatus.FAILED:
        return now + FAILED_TTL
    if job.status.is_terminal:
        return now + COMPLETED_TTL
    return math.inf


class JobProgressStore:
    """In-memory store of job progress.

    The store is purely observational: it records what the stages report and
    never drives them. Cancellation is cooperative, `request_cancel` only flags
    the job and the stages poll `is_cancelled` between batches.

    Finished jobs are evicted automatically: completed and cancelled jobs after
    five minutes, failed jobs after ten.

    Mutations on a job that is unknown (or already evicted) are ignored, so a
    stage keeps running even if its progress entry vanished.
    """

    def __init__(self, maxsize: int = 1024) -> None:
        self._jobs: TLRUCache[str, JobProgress] = TLRUCache(
            maxsize=maxsize, ttu=_time_to_live, timer=time.monotonic
        )
        self._lock = threading.Lock()
        self._subscribers: list[ProgressCallback] = []

    def subscribe(self, callback: ProgressCallback) -> None:
        """Register a callback receiving a copy of every progress change."""
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: ProgressCallback) -> None:
        """Remove a previously registered callback."""
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def _emit(self, snapshot: JobProgress | None) -> None:
        if snapshot is None:
            return
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception:
                log.error(
                    f"Progress subscriber failed for job $$'{snapshot.job_id}'$$",
                    exc_info=True,
                )

    def _mutate(
        self, job_id: str, fn: Callable[[JobProgress], None]
    ) -> JobProgress | None:
        """Apply `fn` to a job under the lock and return a snapshot of it."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            fn(job)
            # Re-insert so the entry's expiry follows its new status
            self._jobs[job_id] = job
            return job.model_copy(deep=True)

    def create(self, job_id: str, kind: str, total_steps: int) -> JobProgress:
        """Start tracking a new job.

        Raises:
            JobAlreadyExistsError: If a job with the same id is still running
        """
        job = JobProgress(job_id=job_id, kind=kind, total_steps=max(total_steps, 1))
        with self._lock:
            existing = self._jobs.get(job_id)
            if existing is not None and not existing.status.is_terminal:
                raise JobAlreadyExistsError(f"Job '{job_id}' is already running")
            self._jobs[job_id] = job
            snapshot = job.model_copy(deep=True)

        log.info(f"Job started: $$'{kind}'$$ {format_context({'job_id': job_id})}")
        self.add_log(job_id, "info", f"Starting job: {kind}")
        self._emit(snapshot)
        return snapshot

    def set_step(
        self, job_id: str, index: int, label: str, total_units: int = 0
    ) -> None:
        """Move a job to step `index` and reset the step counters."""

        def apply(job: JobProgress) -> None:
            job.current_step_index = index
            job.current_step = label
            job.step_progress = 0
            job.items_processed = 0
            job.items_total = total_units
            job.current_item = None
            job.overall_progress = round(index / job.total_steps * 100)

        snapshot = self._mutate(job_id, apply)
        if snapshot is None:
            return
        self._emit(snapshot)
        self.add_log(
            job_id, "info", f"Step {index + 1}/{snapshot.total_steps}: {label}"
        )

    def update_progress(
        self,
        job_id: str,
        done: int,
        total: int | None = None,
        current_item: str | None = None,
    ) -> None:
        """Record item progress within the current step."""

        def apply(job: JobProgress) -> None:
            job.items_processed = done
            if total is not None:
                job.items_total = total
            if current_item is not None:
                job.current_item = current_item
            if job.items_total > 0:
                job.step_progress = min(round(done / job.items_total * 100), 100)
            step_share = 100 / job.total_steps
            job.overall_progress = min(
                round(
                    job.current_step_index / job.total_steps * 100
                    + job.step_progress / 100 * step_share
                ),
                100,
            )

        self._emit(self._mutate(job_id, apply))

    def add_log(
        self,
        job_id: str,
        level: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Append a line to the job's log buffer and mirror it to the logger."""
        entry = JobLogEntry(level=level, message=message, data=data)

        def apply(job: JobProgress) -> None:
            job.logs.append(entry)
            if len(job.logs) > MAX_LOG_ENTRIES:
                del job.logs[:-MAX_LOG_ENTRIES]

        snapshot = self._mutate(job_id, apply)
        if snapshot is None:
            return

        context = format_context({"job_id": job_id, **(data or {})})
        match level:
            case "error":
                log.error(f"{message} {context}")
            case "warn" | "warning":
                log.warning(f"{message} {context}")
            case "debug":
                log.debug(f"{message} {context}")
            case _:
                log.info(f"{message} {context}")
        self._emit(snapshot)

    def request_cancel(self, job_id: str) -> bool:
        """Flag a running job for cancellation.

        Returns:
            bool: True if the job exists and is still running

        Raises:
            JobNotFoundError: If the job is unknown
        """
        accepted = False

        def apply(job: JobProgress) -> None:
            nonlocal accepted
            if not job.status.is_terminal:
                job.cancel_requested = True
                accepted = True

        snapshot = self._mutate(job_id, apply)
        if snapshot is None:
            raise JobNotFoundError(f"Job '{job_id}' not found")
        if accepted:
            self.add_log(job_id, "warn", "Cancellation requested")
        return accepted

    def is_cancelled(self, job_id: str) -> bool:
        """Whether cancellation was requested for the job."""
        with self._lock:
            job = self._jobs.get(job_id)
            return job is not None and job.cancel_requested

    def _finish(
        self,
        job_id: str,
        status: JobStatus,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> JobProgress | None:
        def apply(job: JobProgress) -> None:
            job.status = status
            job.completed_at = utcnow()
            job.result = result
            job.error = error
            if status == JobStatus.COMPLETED:
                job.overall_progress = 100
                job.step_progress = 100

        return self._mutate(job_id, apply)

    def complete(self, job_id: str, result: dict[str, Any] | None = None) -> None:
        """Mark a job as completed with an optional result payload."""
        snapshot = self._finish(job_id, JobStatus.COMPLETED, result=result)
        if snapshot is None:
            return
        duration = (snapshot.completed_at - snapshot.started_at).total_seconds()
        self.add_log(job_id, "info", f"Job completed in {duration:.1f}s", result)

    def fail(self, job_id: str, error: str) -> None:
        """Mark a job as failed with an error message."""
        if self._finish(job_id, JobStatus.FAILED, error=error) is None:
            return
        self.add_log(job_id, "error", f"Job failed: {error}")

    def cancelled(self, job_id: str, result: dict[str, Any] | None = None) -> None:
        """Mark a job as cancelled, keeping the partial result."""
        snapshot = self._finish(job_id, JobStatus.CANCELLED, result=result)
        if snapshot is None:
            return
        self.add_log(
            job_id,
            "warn",
            f"Job cancelled at step {snapshot.current_step_index + 1}/"
            f"{snapshot.total_steps}",
            result,
        )

    def get(self, job_id: str) -> JobProgress:
        """Return a copy of a job's progress.

        Raises:
            JobNotFoundError: If the job is unknown or was evicted
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Job '{job_id}' not found")
            return job.model_copy(deep=True)

    def all(self) -> list[JobProgress]:
        """Return copies of all tracked jobs, most recent first."""
        with self._lock:
            jobs = [job.model_copy(deep=True) for job in self._jobs.values()]
        return sorted(jobs, key=lambda j: j.started_at, reverse=True)


@lru_cache(maxsize=1)
def get_job_store() -> JobProgressStore:
    """Return the process-wide job progress store."""
    return JobProgressStore()
