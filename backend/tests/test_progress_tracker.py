"""
Tests for ProgressTracker snapshots.
"""

import pytest

from narrator.errors import ErrorCode, ErrorInfo, JobNotFoundError
from narrator.models.schemas import JobStatus
from narrator.services.progress_tracker import ProgressTracker


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tracker(clock) -> ProgressTracker:
    tracker = ProgressTracker(clock=clock)
    tracker.start("job1", "windows", [("segment", 1), ("analyze", 9)])
    return tracker


def test_start_publishes_queued_snapshot(tracker):
    snapshot = tracker.snapshot("job1")
    assert snapshot.status == JobStatus.QUEUED
    assert snapshot.progress == 0.0
    assert snapshot.total_stages == 2
    assert snapshot.step is None
    assert snapshot.eta_seconds is None


def test_repeated_reads_return_identical_snapshot(tracker):
    tracker.set_stage("job1", 1)
    first = tracker.snapshot("job1")
    second = tracker.snapshot("job1")
    assert first is second
    assert first.model_dump_json() == second.model_dump_json()


def test_percent_counts_units_across_stages(tracker):
    tracker.set_stage("job1", 1)
    tracker.update("job1", 1)
    assert tracker.snapshot("job1").progress == 10.0

    tracker.set_stage("job1", 2)
    tracker.update("job1", 2, 4)
    snapshot = tracker.snapshot("job1")
    assert snapshot.progress == 50.0
    assert snapshot.step == "analyze"
    assert snapshot.stage_index == 2
    assert snapshot.message == "analyze: 4/9 units"


def test_percent_is_monotonic_when_totals_resolve(tracker):
    tracker.set_stage("job1", 1)
    tracker.finish_stage("job1", 1)
    tracker.set_stage("job1", 2)
    tracker.update("job1", 2, 4)
    before = tracker.snapshot("job1").progress

    # Analyze planned more units than estimated
    tracker.set_stage_total("job1", 2, 30)
    assert tracker.snapshot("job1").progress == before

    tracker.update("job1", 2, 26)
    assert tracker.snapshot("job1").progress == 99.9


def test_completed_reports_100(tracker):
    tracker.set_stage("job1", 1)
    tracker.set_status("job1", JobStatus.COMPLETED, "Completed")
    snapshot = tracker.snapshot("job1")
    assert snapshot.progress == 100.0
    assert snapshot.eta_seconds is None


def test_failed_keeps_progress_and_error(tracker):
    tracker.set_stage("job1", 1)
    tracker.update("job1", 1)
    error = ErrorInfo.from_code(ErrorCode.STAGE_FAILED)
    tracker.set_status("job1", JobStatus.FAILED, "Failed at segment", error)
    snapshot = tracker.snapshot("job1")
    assert snapshot.progress == 10.0
    assert snapshot.error.code == ErrorCode.STAGE_FAILED


def test_eta_extrapolates_elapsed_time(tracker, clock):
    tracker.set_stage("job1", 1)
    clock.now += 10
    tracker.update("job1", 1)
    tracker.set_stage("job1", 2)
    clock.now += 10
    tracker.update("job1", 2, 4)
    # 50% done after 20s
    assert tracker.snapshot("job1").eta_seconds == 20.0


def test_restart_resets_attempt_but_keeps_subscribers(tracker):
    queue = tracker.subscribe("job1")
    tracker.set_stage("job1", 1)
    tracker.start(
        "job1", "scenes", [("segment", 1)],
        message="Retrying with 'scenes' pipeline...",
        status=JobStatus.PROCESSING,
    )
    snapshot = tracker.snapshot("job1")
    assert snapshot.variant == "scenes"
    assert snapshot.progress == 0.0
    assert queue.qsize() == 2


def test_subscribers_receive_every_snapshot(tracker):
    queue = tracker.subscribe("job1")
    tracker.set_stage("job1", 1)
    tracker.update("job1", 1)
    assert queue.qsize() == 2
    assert queue.get_nowait().stage_index == 1

    tracker.unsubscribe("job1", queue)
    tracker.update("job1", 2)
    assert queue.qsize() == 1


def test_unknown_job_raises(tracker):
    with pytest.raises(JobNotFoundError):
        tracker.snapshot("missing")
    assert "missing" not in tracker
    assert "job1" in tracker


def test_job_is_tracked_only_once_published(clock, monkeypatch):
    tracker = ProgressTracker(clock=clock)
    published = tracker.start("job2", "scenes", [("segment", 1)])
    assert tracker.snapshot("job2") is published

    def broken_publish(state):
        raise RuntimeError("publish failed")

    monkeypatch.setattr(tracker, "_publish", broken_publish)
    with pytest.raises(RuntimeError):
        tracker.start("job3", "scenes", [("segment", 1)])
    assert "job3" not in tracker
    with pytest.raises(JobNotFoundError):
        tracker.snapshot("job3")
