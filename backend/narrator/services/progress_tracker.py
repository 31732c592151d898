"""
Progress tracking for narration jobs.

Single writer of the published job status. Every write rebuilds an
immutable ProgressSnapshot, caches it, and pushes it to subscribers
(WebSocket clients). Reads return the cached object, so repeated polls
between writes are identical.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from narrator.errors import ErrorInfo, JobNotFoundError
from narrator.models.schemas import JobStatus, ProgressSnapshot

logger = logging.getLogger(__name__)

# Minimum fraction done before an ETA is published
ETA_MIN_FRACTION = 0.05


@dataclass
class _StageProgress:
    """Unit accounting for one stage."""

    name: str
    total: int
    known: bool = False
    resolved: int = 0


@dataclass
class _JobProgress:
    """Mutable per-job state behind the published snapshot."""

    job_id: str
    variant: str
    stages: list[_StageProgress]
    status: JobStatus = JobStatus.QUEUED
    stage_index: int = 0
    message: str = ""
    error: ErrorInfo | None = None
    started_at: float | None = None
    percent: float = 0.0
    snapshot: ProgressSnapshot | None = None
    subscribers: list[asyncio.Queue] = field(default_factory=list)

    @property
    def current_stage(self) -> _StageProgress | None:
        if 1 <= self.stage_index <= len(self.stages):
            return self.stages[self.stage_index - 1]
        return None


class ProgressTracker:
    """
    Per-job progress state and published snapshots.

    Percent is resolved units across all stages divided by the estimated
    total. Stage totals start as estimates and are replaced by true
    counts when a stage plans its units. Within an attempt the published
    percent never decreases.

    Example:
        tracker = ProgressTracker()
        tracker.start("job1", "primary", [("segment", 1), ("analyze", 12)])
        tracker.set_stage("job1", 1)
        tracker.update("job1", 1)              # one unit resolved
        tracker.set_stage_total("job1", 2, 10) # analyze planned 10 units
        snapshot = tracker.snapshot("job1")
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """
        Initialize tracker.

        Args:
            clock: Monotonic clock used for ETA (injectable for tests)
        """
        self._clock = clock
        self._jobs: dict[str, _JobProgress] = {}

    # ═══════════════════════════════════════════════════════════════════════
    # Writes
    # ═══════════════════════════════════════════════════════════════════════

    def start(
        self,
        job_id: str,
        variant: str,
        stage_estimates: list[tuple[str, int]],
        message: str = "Queued",
        status: JobStatus = JobStatus.QUEUED,
    ) -> ProgressSnapshot:
        """
        Start (or restart, after a fallback hop) tracking a job attempt.

        Args:
            job_id: Job identifier
            variant: Variant of this attempt
            stage_estimates: (stage name, estimated unit count) in order
            message: Initial message
            status: Initial status

        Returns:
            Published snapshot
        """
        existing = self._jobs.get(job_id)
        state = _JobProgress(
            job_id=job_id,
            variant=variant,
            stages=[
                _StageProgress(name=name, total=max(estimate, 1))
                for name, estimate in stage_estimates
            ],
            status=status,
            message=message,
            started_at=self._clock() if status == JobStatus.PROCESSING else None,
            subscribers=existing.subscribers if existing else [],
        )
        # Published before it is registered, so every tracked job has a snapshot
        snapshot = self._publish(state)
        self._jobs[job_id] = state
        return snapshot

    def set_stage(
        self,
        job_id: str,
        stage_index: int,
        message: str | None = None,
    ) -> ProgressSnapshot:
        """
        Mark a stage (1-based) as the current one.

        Also moves a queued job to processing.
        """
        state = self._get(job_id)
        state.stage_index = stage_index
        if state.status == JobStatus.QUEUED:
            state.status = JobStatus.PROCESSING
        if state.started_at is None:
            state.started_at = self._clock()
        stage = state.current_stage
        state.message = message or (
            f"Running {stage.name} (stage {stage_index}/{len(state.stages)})"
            if stage else ""
        )
        return self._publish(state)

    def set_stage_total(self, job_id: str, stage_index: int, total: int) -> ProgressSnapshot:
        """Replace a stage's estimated unit count with the true count."""
        state = self._get(job_id)
        stage = state.stages[stage_index - 1]
        stage.total = total
        stage.known = True
        stage.resolved = min(stage.resolved, total)
        return self._publish(state)

    def update(
        self,
        job_id: str,
        stage_index: int,
        unit_delta: int = 1,
        message: str | None = None,
    ) -> ProgressSnapshot:
        """Record resolved units (succeeded, failed or skipped) for a stage."""
        state = self._get(job_id)
        stage = state.stages[stage_index - 1]
        stage.resolved = min(stage.resolved + unit_delta, stage.total)
        state.message = message or f"{stage.name}: {stage.resolved}/{stage.total} units"
        return self._publish(state)

    def finish_stage(
        self,
        job_id: str,
        stage_index: int,
        message: str | None = None,
    ) -> ProgressSnapshot:
        """Count every unit of a stage as resolved (stage done or skipped)."""
        state = self._get(job_id)
        stage = state.stages[stage_index - 1]
        stage.known = True
        stage.resolved = stage.total
        if message is not None:
            state.message = message
        return self._publish(state)

    def set_message(self, job_id: str, message: str) -> ProgressSnapshot:
        """Replace the latest message."""
        state = self._get(job_id)
        state.message = message
        return self._publish(state)

    def set_status(
        self,
        job_id: str,
        status: JobStatus,
        message: str,
        error: ErrorInfo | None = None,
    ) -> ProgressSnapshot:
        """
        Publish a status change. Completed statuses report 100%.
        """
        state = self._get(job_id)
        state.status = status
        state.message = message
        state.error = error
        if status == JobStatus.PROCESSING and state.started_at is None:
            state.started_at = self._clock()
        if status.is_completed:
            for stage in state.stages:
                stage.known = True
                stage.resolved = stage.total
        return self._publish(state)

    # ═══════════════════════════════════════════════════════════════════════
    # Reads and subscriptions
    # ═══════════════════════════════════════════════════════════════════════

    def snapshot(self, job_id: str) -> ProgressSnapshot:
        """
        Get the last published snapshot.

        Raises:
            JobNotFoundError: If the job is not tracked
        """
        state = self._get(job_id)
        if state.snapshot is None:
            raise JobNotFoundError(f"job {job_id} has no published progress")
        return state.snapshot

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs

    def subscribe(self, job_id: str) -> asyncio.Queue:
        """
        Subscribe to snapshots of a job.

        Returns:
            Queue that receives every published ProgressSnapshot
        """
        state = self._get(job_id)
        queue: asyncio.Queue = asyncio.Queue()
        state.subscribers.append(queue)
        logger.debug(f"Client subscribed to job {job_id}")
        return queue

    def unsubscribe(self, job_id: str, queue: asyncio.Queue) -> None:
        """Remove a subscriber queue."""
        state = self._jobs.get(job_id)
        if state and queue in state.subscribers:
            state.subscribers.remove(queue)
            logger.debug(f"Client unsubscribed from job {job_id}")

    # ═══════════════════════════════════════════════════════════════════════
    # Internals
    # ═══════════════════════════════════════════════════════════════════════

    def _get(self, job_id: str) -> _JobProgress:
        state = self._jobs.get(job_id)
        if state is None:
            raise JobNotFoundError(f"job {job_id} is not tracked")
        return state

    def _publish(self, state: _JobProgress) -> ProgressSnapshot:
        total = sum(stage.total for stage in state.stages)
        resolved = sum(stage.resolved for stage in state.stages)
        computed = 100.0 * resolved / total if total else 0.0
        if not state.status.is_completed:
            computed = min(computed, 99.9)
        state.percent = max(state.percent, round(computed, 1))

        snapshot = ProgressSnapshot(
            job_id=state.job_id,
            status=state.status,
            variant=state.variant,
            step=state.current_stage.name if state.current_stage else None,
            stage_index=state.stage_index,
            total_stages=len(state.stages),
            progress=state.percent,
            message=state.message,
            eta_seconds=self._estimate_eta(state),
            error=state.error,
            updated_at=datetime.now(),
        )
        state.snapshot = snapshot

        for queue in state.subscribers:
            queue.put_nowait(snapshot)
        return snapshot

    def _estimate_eta(self, state: _JobProgress) -> float | None:
        """Linear extrapolation from elapsed time and fraction done."""
        if state.status != JobStatus.PROCESSING or state.started_at is None:
            return None
        fraction = state.percent / 100
        if fraction < ETA_MIN_FRACTION:
            return None
        elapsed = self._clock() - state.started_at
        return round(elapsed / fraction - elapsed, 1)
