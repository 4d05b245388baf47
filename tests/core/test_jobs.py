"""Tests for the job progress store."""

import pytest

from src.core.jobs import MAX_LOG_ENTRIES, JobProgress, JobProgressStore, JobStatus
from src.exceptions import JobAlreadyExistsError, JobNotFoundError


def test_step_and_progress_percentages(job_store: JobProgressStore) -> None:
    """Overall progress combines the step index with progress inside the step."""
    job_store.create("job", "sync-series", 4)

    job_store.set_step("job", 1, "Fetching counts")
    assert job_store.get("job").overall_progress == 25

    job_store.set_step("job", 2, "Processing series", 200)
    job_store.update_progress("job", 100, current_item="100/200 series")

    job = job_store.get("job")
    assert job.step_progress == 50
    assert job.overall_progress == round(50 + 0.5 * 25)
    assert job.items_total == 200
    assert job.current_item == "100/200 series"


def test_progress_is_capped(job_store: JobProgressStore) -> None:
    """Reporting more items than expected never exceeds 100 percent."""
    job_store.create("job", "enrich-mdblist", 2)
    job_store.set_step("job", 1, "Enriching series", 10)

    job_store.update_progress("job", 25)

    job = job_store.get("job")
    assert job.step_progress == 100
    assert job.overall_progress == 100


def test_terminal_states(job_store: JobProgressStore) -> None:
    """Completed, failed and cancelled are distinct terminal states."""
    job_store.create("a", "sync-movies", 1)
    job_store.create("b", "sync-movies", 1)
    job_store.create("c", "sync-movies", 1)

    job_store.complete("a", {"added": 1})
    job_store.fail("b", "boom")
    job_store.cancelled("c", {"added": 0})

    a, b, c = job_store.get("a"), job_store.get("b"), job_store.get("c")
    assert a.status == JobStatus.COMPLETED
    assert a.overall_progress == 100
    assert a.result == {"added": 1}
    assert b.status == JobStatus.FAILED
    assert b.error == "boom"
    assert c.status == JobStatus.CANCELLED
    assert all(j.status.is_terminal for j in (a, b, c))


def test_cancellation_is_only_recorded(job_store: JobProgressStore) -> None:
    """request_cancel flags a running job and leaves its status alone."""
    job_store.create("job", "sync-series", 4)
    assert not job_store.is_cancelled("job")

    assert job_store.request_cancel("job") is True

    assert job_store.is_cancelled("job")
    assert job_store.get("job").status == JobStatus.RUNNING


def test_cancelling_a_finished_job_is_refused(job_store: JobProgressStore) -> None:
    """A terminal job cannot be flagged for cancellation anymore."""
    job_store.create("job", "sync-series", 1)
    job_store.complete("job")

    assert job_store.request_cancel("job") is False
    assert not job_store.is_cancelled("job")


def test_unknown_jobs(job_store: JobProgressStore) -> None:
    """Reads of unknown jobs raise while mutations are ignored."""
    with pytest.raises(JobNotFoundError):
        job_store.get("missing")
    with pytest.raises(JobNotFoundError):
        job_store.request_cancel("missing")

    job_store.set_step("missing", 0, "ignored")
    job_store.update_progress("missing", 1, 2)
    job_store.add_log("missing", "info", "ignored")
    assert not job_store.is_cancelled("missing")
    assert job_store.all() == []


def test_create_refuses_running_duplicate(job_store: JobProgressStore) -> None:
    """A job id can only be reused once the previous job finished."""
    job_store.create("job", "sync-users", 2)
    with pytest.raises(JobAlreadyExistsError):
        job_store.create("job", "sync-users", 2)

    job_store.complete("job")
    job = job_store.create("job", "sync-users", 2)
    assert job.status == JobStatus.RUNNING


def test_readers_get_copies(job_store: JobProgressStore) -> None:
    """Mutating a snapshot does not leak back into the store."""
    job_store.create("job", "sync-users", 2)

    snapshot = job_store.get("job")
    snapshot.logs.clear()
    snapshot.current_step = "tampered"

    job = job_store.get("job")
    assert job.logs
    assert job.current_step != "tampered"


def test_log_buffer_is_bounded(job_store: JobProgressStore) -> None:
    """Only the most recent log lines are kept."""
    job_store.create("job", "enrich-mdblist", 1)
    for i in range(MAX_LOG_ENTRIES + 20):
        job_store.add_log("job", "debug", f"line {i}")

    logs = job_store.get("job").logs
    assert len(logs) == MAX_LOG_ENTRIES
    assert logs[-1].message == f"line {MAX_LOG_ENTRIES + 19}"


def test_subscribers_receive_updates(job_store: JobProgressStore) -> None:
    """Subscribers see every change until they unsubscribe."""
    events: list[JobProgress] = []
    job_store.subscribe(events.append)

    job_store.create("job", "sync-movies", 2)
    job_store.set_step("job", 1, "Processing movies", 10)
    seen = len(events)
    assert seen > 0
    assert events[-1].current_step_index == 1

    job_store.unsubscribe(events.append)
    job_store.update_progress("job", 5)
    assert len(events) == seen


def test_failing_subscriber_does_not_break_the_job(
    job_store: JobProgressStore,
) -> None:
    """An exception raised by a subscriber is logged and swallowed."""

    def broken(_: JobProgress) -> None:
        raise RuntimeError("subscriber bug")

    job_store.subscribe(broken)
    job_store.create("job", "sync-movies", 1)
    job_store.complete("job")

    assert job_store.get("job").status == JobStatus.COMPLETED

