"""
Unit scheduler for one pipeline stage.

Plans the stage's units, runs up to K of them at once, wraps every unit
call in the retry executor and a concurrency permit (held per attempt),
enforces the stage timeout, observes cancellation, and recombines the
results in unit-index order.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from narrator.errors import ErrorCode, ErrorInfo, JobCancelledError
from narrator.models.pipelines import StageConfig
from narrator.models.schemas import StageResult, StageStatus, UnitResult
from narrator.services.cancellation import CancellationToken
from narrator.services.concurrency import ConcurrencyLimiter
from narrator.services.progress_tracker import ProgressTracker
from narrator.services.retry import RetryEvent, RetryExecutor, RetryPolicy, error_code_for
from narrator.services.stages.base import BaseStage, StageContext

logger = logging.getLogger(__name__)


@dataclass
class StageRun:
    """
    Outcome of scheduling one stage.

    Attributes:
        result: The finalized StageResult (same object that was passed in)
        outputs: (index, output) of succeeded units, in index order
        cancelled: True if the job was cancelled while the stage ran
    """

    result: StageResult
    outputs: list[tuple[int, Any]] = field(default_factory=list)
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.result.status == StageStatus.SUCCEEDED


@dataclass
class _UnitOutcome:
    index: int
    output: Any = None
    error: Exception | None = None
    attempts: int = 1


class StageScheduler:
    """
    Runs the units of a stage with bounded concurrency.

    Unit failures are absorbed and recorded on the StageResult; the
    aggregate status is succeeded if at least one unit succeeded and the
    stage allows partial completion (or nothing failed), else failed.

    Example:
        scheduler = StageScheduler(limiter, executor, tracker)
        run = await scheduler.run(
            stage, stage_config, context, stage_result,
            stage_index=3, cancel_token=token,
        )
        if run.succeeded:
            context = context.with_result(stage.name, stage.collect(run.outputs, context))
    """

    def __init__(
        self,
        limiter: ConcurrencyLimiter,
        executor: RetryExecutor,
        tracker: ProgressTracker,
    ):
        self.limiter = limiter
        self.executor = executor
        self.tracker = tracker

    async def run(
        self,
        stage: BaseStage,
        config: StageConfig,
        context: StageContext,
        stage_result: StageResult,
        stage_index: int,
        cancel_token: CancellationToken,
    ) -> StageRun:
        """
        Plan and run all units of a stage.

        Args:
            stage: Stage adapter
            config: Stage configuration of the running variant
            context: Context with earlier stage results
            stage_result: StageResult to fill (already attached to the job)
            stage_index: 1-based position in the variant, for progress
            cancel_token: Job cancellation token

        Returns:
            StageRun with the finalized result and succeeded outputs
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + config.timeout_seconds
        job_id = context.job_id
        run = StageRun(result=stage_result)

        stage_result.status = StageStatus.RUNNING
        stage_result.started_at = stage_result.started_at or datetime.now()

        try:
            inputs = await asyncio.wait_for(
                stage.plan_units(context, config),
                timeout=config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return self._finish(run, StageStatus.FAILED, ErrorInfo.from_code(
                ErrorCode.STAGE_TIMEOUT, f"{stage.name}: planning timed out",
            ))
        except Exception as e:
            logger.exception(f"[{job_id}] {stage.name}: planning failed")
            code = error_code_for(e)
            if code == ErrorCode.INTERNAL_ERROR:
                code = ErrorCode.STAGE_FAILED
            return self._finish(run, StageStatus.FAILED, ErrorInfo.from_code(
                code, f"{stage.name}: planning failed: {e}",
            ))

        if not inputs:
            return self._finish(run, StageStatus.FAILED, ErrorInfo.from_code(
                ErrorCode.STAGE_FAILED, f"{stage.name}: no units to process",
            ))

        total = len(inputs)
        stage_result.units = [
            UnitResult(index=i, status=StageStatus.PENDING) for i in range(1, total + 1)
        ]
        self.tracker.set_stage_total(job_id, stage_index, total)
        logger.info(
            f"[{job_id}] {stage.name}: {total} units, concurrency {config.concurrency}"
        )

        policy = RetryPolicy.from_config(config.retry)
        resource_class = config.resource_class or stage.resource_class
        queue = deque(enumerate(inputs, start=1))
        running: dict[asyncio.Task, int] = {}
        outputs: dict[int, Any] = {}
        timed_out = False

        cancel_wait = asyncio.ensure_future(cancel_token.wait())
        try:
            while queue or running:
                while queue and len(running) < config.concurrency and not cancel_token.is_cancelled:
                    index, unit = queue.popleft()
                    self._set_unit(stage_result, UnitResult(index=index, status=StageStatus.RUNNING))
                    task = asyncio.create_task(self._run_unit(
                        stage, unit, index, context, config, policy, resource_class, cancel_token,
                    ))
                    running[task] = index

                if cancel_token.is_cancelled:
                    break

                remaining = deadline - loop.time()
                if remaining <= 0:
                    timed_out = True
                    break

                done, _ = await asyncio.wait(
                    {*running, cancel_wait},
                    timeout=remaining,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if not done:
                    timed_out = True
                    break

                for task in done:
                    if task is cancel_wait:
                        continue
                    index = running.pop(task)
                    if task.exception() is not None:
                        # JobCancelledError raised inside the unit; handled below
                        queue.appendleft((index, None))
                        continue
                    outcome = task.result()
                    self._record(stage, stage_result, outcome, outputs, job_id)
                    self.tracker.update(job_id, stage_index, 1)
        finally:
            cancel_wait.cancel()

        leftover = [index for index, _ in queue] + list(running.values())
        if running:
            for task in running:
                task.cancel()
            await asyncio.gather(*running, return_exceptions=True)

        run.outputs = sorted(outputs.items())

        if cancel_token.is_cancelled:
            for index in leftover:
                self._set_unit(stage_result, UnitResult(
                    index=index,
                    status=StageStatus.SKIPPED,
                    error=ErrorInfo.from_code(ErrorCode.JOB_CANCELLED),
                ))
            run.cancelled = True
            logger.info(
                f"[{job_id}] {stage.name}: cancelled with {len(outputs)}/{total} units done"
            )
            return self._finish(run, StageStatus.SKIPPED, ErrorInfo.from_code(ErrorCode.JOB_CANCELLED))

        if timed_out:
            for index in leftover:
                self._set_unit(stage_result, UnitResult(
                    index=index,
                    status=StageStatus.FAILED,
                    error=ErrorInfo.from_code(ErrorCode.STAGE_TIMEOUT),
                ))
            logger.warning(
                f"[{job_id}] {stage.name}: timed out after {config.timeout_seconds}s "
                f"with {len(leftover)} units unresolved"
            )
            return self._finish(run, StageStatus.FAILED, ErrorInfo.from_code(
                ErrorCode.STAGE_TIMEOUT,
                f"{stage.name}: {len(leftover)} units unresolved after {config.timeout_seconds}s",
            ))

        failed = stage_result.failed_units
        if not outputs:
            return self._finish(run, StageStatus.FAILED, ErrorInfo.from_code(
                ErrorCode.STAGE_FAILED, f"{stage.name}: all {total} units failed",
            ))
        if failed and not config.allow_partial:
            return self._finish(run, StageStatus.FAILED, ErrorInfo.from_code(
                ErrorCode.STAGE_FAILED,
                f"{stage.name}: {len(failed)} units failed and partial results are not allowed",
            ))
        return self._finish(run, StageStatus.SUCCEEDED, None)

    async def _run_unit(
        self,
        stage: BaseStage,
        unit: Any,
        index: int,
        context: StageContext,
        config: StageConfig,
        policy: RetryPolicy,
        resource_class: str | None,
        cancel_token: CancellationToken,
    ) -> _UnitOutcome:
        """Run one unit through the retry executor; failures become outcomes."""
        events: list[RetryEvent] = []

        async def attempt() -> Any:
            if resource_class is None:
                return await stage.run_unit(unit, context, config)
            async with self.limiter.slot(resource_class, cancel_token):
                return await stage.run_unit(unit, context, config)

        try:
            output = await self.executor.execute(
                attempt,
                policy,
                cancel_token=cancel_token,
                label=f"{context.job_id}/{stage.name}#{index}",
                on_event=events.append,
            )
        except JobCancelledError:
            raise
        except Exception as e:
            return _UnitOutcome(index=index, error=e, attempts=max(len(events), 1))
        return _UnitOutcome(index=index, output=output, attempts=max(len(events), 1))

    def _record(
        self,
        stage: BaseStage,
        stage_result: StageResult,
        outcome: _UnitOutcome,
        outputs: dict[int, Any],
        job_id: str,
    ) -> None:
        retry_count = outcome.attempts - 1
        if outcome.error is None:
            outputs[outcome.index] = outcome.output
            self._set_unit(stage_result, UnitResult(
                index=outcome.index,
                status=StageStatus.SUCCEEDED,
                payload=stage.describe_output(outcome.output),
                retry_count=retry_count,
            ))
            return

        code = error_code_for(outcome.error)
        logger.warning(
            f"[{job_id}] {stage.name} unit {outcome.index} failed after "
            f"{outcome.attempts} attempt(s): {code.value}: {outcome.error}"
        )
        self._set_unit(stage_result, UnitResult(
            index=outcome.index,
            status=StageStatus.FAILED,
            error=ErrorInfo.from_code(code, str(outcome.error)),
            retry_count=retry_count,
        ))

    @staticmethod
    def _set_unit(stage_result: StageResult, unit: UnitResult) -> None:
        stage_result.units[unit.index - 1] = unit

    @staticmethod
    def _finish(run: StageRun, status: StageStatus, error: ErrorInfo | None) -> StageRun:
        run.result.status = status
        run.result.error = error
        run.result.finished_at = datetime.now()
        return run
