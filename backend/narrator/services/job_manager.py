"""
Job manager for narration pipelines.

Owns the job lifecycle: validates submissions, selects a pipeline
variant, runs its stages through the StageScheduler, aggregates partial
failures, falls back to another variant once after a stage-fatal
failure, and publishes every state change through the ProgressTracker.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from narrator.config import Settings, get_settings, load_pipelines_config
from narrator.errors import (
    AlreadyTerminalError,
    BatchNotFoundError,
    ErrorCode,
    ErrorInfo,
    InvalidInputError,
    JobNotFoundError,
    ResultNotReadyError,
)
from narrator.models.pipelines import PipelinesConfig, StageName, VariantConfig
from narrator.models.schemas import (
    AttemptRecord,
    BatchItem,
    BatchItemResult,
    BatchResponse,
    BatchStatus,
    CancelAck,
    CompiledOutput,
    InputDescriptor,
    Job,
    JobStatus,
    JobSummary,
    MediaKind,
    ProgressSnapshot,
    SkippedUnit,
    StageResult,
    StageStatus,
    SubmitOptions,
    SystemHealth,
)
from narrator.services.cancellation import CancellationToken
from narrator.services.concurrency import ConcurrencyLimiter
from narrator.services.pipeline import (
    REASON_OVERRIDE,
    PipelineSelector,
    Selection,
    StageScheduler,
)
from narrator.services.progress_tracker import ProgressTracker
from narrator.services.providers import (
    ClaudeVisionClient,
    HttpMediaClient,
    HttpSegmentationClient,
    HttpSpeechClient,
    LocalStorage,
)
from narrator.services.retry import RetryExecutor
from narrator.services.stages import (
    StageContext,
    StageRegistry,
    compile_narration,
    create_default_stages,
)
from narrator.utils.media_utils import is_image_location, is_video_location

logger = logging.getLogger(__name__)


@dataclass
class _BatchEntry:
    item_id: str
    job_id: str | None = None
    error: ErrorInfo | None = None


@dataclass
class _Batch:
    batch_id: str
    created_at: datetime
    entries: list[_BatchEntry] = field(default_factory=list)


def _new_id(taken: dict[str, Any]) -> str:
    new_id = str(uuid.uuid4())[:8]
    while new_id in taken:
        new_id = str(uuid.uuid4())[:8]
    return new_id


def aggregate_batch_status(statuses: list[JobStatus]) -> BatchStatus:
    """
    Reduce item statuses to one batch status.

    processing while any item is still running; then completed when every
    item completed (warnings included), failed when none did, and partial
    otherwise. Cancelled items count as not completed.
    """
    if any(not status.is_terminal for status in statuses):
        return BatchStatus.PROCESSING
    completed = sum(1 for status in statuses if status.is_completed)
    if completed == len(statuses):
        return BatchStatus.COMPLETED
    if completed == 0:
        return BatchStatus.FAILED
    return BatchStatus.PARTIAL


class JobManager:
    """
    Manager for narration jobs.

    Stores jobs in-memory and never deletes them. Each job runs as one
    asyncio task; all job mutation happens on the event loop.

    Example:
        manager = JobManager(config, registry, settings)
        job_id = manager.submit(
            {"location": "uploads/talk.mp4", "media_kind": "video",
             "size_bytes": 52_428_800, "duration_seconds": 420},
            {"generate_audio": True},
        )

        snapshot = manager.get_status(job_id)   # poll
        await manager.wait(job_id)
        output = manager.get_result(job_id)
    """

    def __init__(
        self,
        config: PipelinesConfig,
        registry: StageRegistry,
        settings: Settings | None = None,
        limiter: ConcurrencyLimiter | None = None,
        executor: RetryExecutor | None = None,
        tracker: ProgressTracker | None = None,
    ):
        """
        Initialize job manager.

        Args:
            config: Validated pipeline configuration
            registry: Stages for every name the variants use
            settings: Application settings
            limiter: Shared concurrency limiter (default: from config)
            executor: Retry executor
            tracker: Progress tracker

        Raises:
            KeyError: If a variant uses an unregistered stage
            ValueError: If a variant's stages violate dependencies or use
                a resource class the limiter does not know
        """
        self.config = config
        self.registry = registry
        self.settings = settings or get_settings()
        self.limiter = limiter or ConcurrencyLimiter.from_config(config)
        self.executor = executor or RetryExecutor()
        self.tracker = tracker or ProgressTracker()
        self.selector = PipelineSelector(config)
        self.scheduler = StageScheduler(self.limiter, self.executor, self.tracker)

        for name, variant in config.variants.items():
            for stage in registry.build_sequence(variant.stage_names):
                resource_class = variant.get_stage(stage.name).resource_class or stage.resource_class
                if resource_class is not None and resource_class not in self.limiter:
                    raise ValueError(
                        f"Variant '{name}' stage '{stage.name}' uses unknown "
                        f"resource class '{resource_class}'"
                    )

        self._jobs: dict[str, Job] = {}
        self._tokens: dict[str, CancellationToken] = {}
        self._done: dict[str, asyncio.Event] = {}
        self._tasks: set[asyncio.Task] = set()
        self._batches: dict[str, _Batch] = {}
        self._closeables: list[Any] = []

    @classmethod
    def from_settings(cls, settings: Settings) -> "JobManager":
        """
        Create a manager wired to the reference collaborator clients.

        Raises:
            ValueError: If ANTHROPIC_API_KEY not set
        """
        storage = LocalStorage.from_settings(settings)
        segmentation = HttpSegmentationClient.from_settings(settings)
        media = HttpMediaClient.from_settings(settings)
        speech = HttpSpeechClient.from_settings(settings)
        vision = ClaudeVisionClient.from_settings(settings, storage)

        registry = create_default_stages(
            segmentation=segmentation,
            media=media,
            vision=vision,
            speech=speech,
            storage=storage,
            settings=settings,
        )
        manager = cls(load_pipelines_config(settings), registry, settings)
        manager._closeables = [segmentation, media, speech, vision]
        return manager

    # ═══════════════════════════════════════════════════════════════════════
    # Boundary operations
    # ═══════════════════════════════════════════════════════════════════════

    def submit(
        self,
        descriptor: InputDescriptor | dict,
        options: SubmitOptions | dict | None = None,
    ) -> str:
        """
        Validate an input, select its variant and schedule the job.

        Must be called from a running event loop.

        Args:
            descriptor: Input descriptor (model or raw dict)
            options: Submit options (model or raw dict)

        Returns:
            New job id

        Raises:
            InvalidInputError: Malformed, oversized or unsupported input,
                or an unknown / mismatched pipeline override
        """
        try:
            if not isinstance(descriptor, InputDescriptor):
                descriptor = InputDescriptor.model_validate(descriptor)
            if options is None:
                options = SubmitOptions()
            elif not isinstance(options, SubmitOptions):
                options = SubmitOptions.model_validate(options)
        except ValidationError as e:
            raise InvalidInputError(f"invalid submission: {e}") from e

        self._validate_input(descriptor)
        selection = self.selector.select(descriptor, override=options.pipeline)
        variant = self.selector.variant(selection.variant)

        if selection.is_override:
            if variant.rule is not None and descriptor.media_kind not in variant.rule.media_kinds:
                raise InvalidInputError(
                    f"pipeline '{selection.variant}' cannot process "
                    f"{descriptor.media_kind.value} input"
                )
            for warning in self.selector.validate(selection.variant, descriptor):
                logger.warning(f"Override '{selection.variant}': {warning}")

        job_id = _new_id(self._jobs)

        now = datetime.now()
        job = Job(
            job_id=job_id,
            input=descriptor,
            options=options,
            variant=selection.variant,
            selection_reason=selection.reason,
            created_at=now,
            updated_at=now,
        )
        self._jobs[job_id] = job
        self._tokens[job_id] = CancellationToken()
        self._done[job_id] = asyncio.Event()

        self.tracker.start(
            job_id,
            selection.variant,
            self._estimate_stages(descriptor, variant),
            message=f"Queued ({selection.variant} pipeline)",
        )
        logger.info(
            f"Created job {job_id}: {descriptor.media_kind.value} "
            f"{descriptor.size_bytes / 1024 / 1024:.1f} MB -> "
            f"'{selection.variant}' ({selection.reason})"
        )

        task = asyncio.create_task(self._run_job(job_id), name=f"job-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job_id

    def submit_batch(
        self,
        items: list[BatchItem | dict],
        options: SubmitOptions | dict | None = None,
    ) -> BatchResponse:
        """
        Submit still images as a batch, one job per image.

        Items are validated one at a time: an item that cannot become a
        job is recorded with its error and the rest of the batch still
        runs. The jobs are ordinary jobs; they share the resource pools
        with everything else and are polled, cancelled and fetched by
        their own ids.

        Args:
            items: BatchItem models or raw {"id": ..., "input": {...}} dicts
            options: Options applied to every image

        Returns:
            BatchResponse as of submission

        Raises:
            InvalidInputError: Empty or oversized batch, malformed item
                list or options
        """
        if not items:
            raise InvalidInputError("batch has no items")
        if len(items) > self.settings.max_batch_items:
            raise InvalidInputError(
                f"batch of {len(items)} items exceeds {self.settings.max_batch_items}"
            )
        try:
            items = [
                item if isinstance(item, BatchItem) else BatchItem.model_validate(item)
                for item in items
            ]
            if options is None:
                options = SubmitOptions()
            elif not isinstance(options, SubmitOptions):
                options = SubmitOptions.model_validate(options)
        except ValidationError as e:
            raise InvalidInputError(f"invalid batch: {e}") from e

        batch = _Batch(batch_id=_new_id(self._batches), created_at=datetime.now())
        for position, item in enumerate(items, start=1):
            entry = _BatchEntry(item_id=item.id or f"item-{position}")
            try:
                if item.input.get("media_kind") != MediaKind.IMAGE:
                    raise InvalidInputError(f"batch item {entry.item_id} is not an image")
                entry.job_id = self.submit(item.input, options)
            except InvalidInputError as e:
                logger.info(
                    f"Batch {batch.batch_id}: rejected {entry.item_id} ({e.code.value}): {e}"
                )
                entry.error = e.to_info()
            batch.entries.append(entry)
        self._batches[batch.batch_id] = batch

        accepted = sum(1 for entry in batch.entries if entry.job_id is not None)
        logger.info(
            f"Created batch {batch.batch_id}: {accepted}/{len(batch.entries)} images accepted"
        )
        return self._batch_view(batch)

    def get_batch(self, batch_id: str) -> BatchResponse:
        """
        Get the current view of a batch.

        Raises:
            BatchNotFoundError: If the batch id is unknown
        """
        batch = self._batches.get(batch_id)
        if batch is None:
            raise BatchNotFoundError(f"batch {batch_id} not found")
        return self._batch_view(batch)

    def get_status(self, job_id: str) -> ProgressSnapshot:
        """
        Get the last published snapshot of a job.

        Returns the cached object: repeated calls between two state
        changes return identical snapshots.

        Raises:
            JobNotFoundError: If the job id is unknown
        """
        self._get(job_id)
        return self.tracker.snapshot(job_id)

    def cancel(self, job_id: str) -> CancelAck:
        """
        Request cancellation of a job.

        A queued job is cancelled immediately. A processing job starts no
        new stage or unit after this returns; in-flight units are aborted
        at their next suspension point.

        Raises:
            JobNotFoundError: If the job id is unknown
            AlreadyTerminalError: If the job already finished
        """
        job = self._get(job_id)
        if job.status.is_terminal:
            raise AlreadyTerminalError(f"job {job_id} is {job.status.value}")

        job.cancel_requested = True
        job.updated_at = datetime.now()
        self._tokens[job_id].cancel()

        if job.status == JobStatus.QUEUED:
            context = StageContext(job_id=job_id, descriptor=job.input, options=job.options)
            self._finalize(job, JobStatus.CANCELLED, context)
            message = "Job cancelled before processing started"
        else:
            self.tracker.set_message(job_id, "Cancellation requested")
            message = "Cancellation requested"

        logger.info(f"[{job_id}] {message}")
        return CancelAck(job_id=job_id, status=job.status, message=message)

    def get_result(self, job_id: str, include_partial: bool = False) -> CompiledOutput:
        """
        Get the compiled output of a job.

        Args:
            job_id: Job identifier
            include_partial: Also return the partial output of a failed or
                cancelled job

        Raises:
            JobNotFoundError: If the job id is unknown
            ResultNotReadyError: If no (allowed) output exists yet
        """
        job = self._get(job_id)
        if job.status.is_completed and job.output is not None:
            return job.output
        if (
            include_partial
            and job.status in (JobStatus.FAILED, JobStatus.CANCELLED)
            and job.output is not None
        ):
            return job.output
        raise ResultNotReadyError(f"job {job_id} is {job.status.value}")

    def get_job(self, job_id: str) -> Job:
        """
        Get the full job record.

        Raises:
            JobNotFoundError: If the job id is unknown
        """
        return self._get(job_id)

    def list_jobs(self) -> list[JobSummary]:
        """List all jobs, newest first."""
        jobs = sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)
        return [
            JobSummary(
                job_id=job.job_id,
                status=job.status,
                variant=job.variant,
                media_kind=job.input.media_kind,
                created_at=job.created_at,
                updated_at=job.updated_at,
            )
            for job in jobs
        ]

    async def wait(self, job_id: str, timeout: float | None = None) -> Job:
        """
        Wait until a job reaches a terminal state.

        Raises:
            JobNotFoundError: If the job id is unknown
            asyncio.TimeoutError: If the timeout elapses first
        """
        job = self._get(job_id)
        await asyncio.wait_for(self._done[job_id].wait(), timeout=timeout)
        return job

    def health(self) -> SystemHealth:
        """Aggregate job counts and resource pool usage."""
        statuses = [job.status for job in self._jobs.values()]
        return SystemHealth(
            status="healthy",
            active_jobs=sum(1 for s in statuses if not s.is_terminal),
            completed_jobs=sum(1 for s in statuses if s.is_completed),
            failed_jobs=statuses.count(JobStatus.FAILED),
            cancelled_jobs=statuses.count(JobStatus.CANCELLED),
            resources=self.limiter.stats(),
        )

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Cancel active jobs, wait for their tasks, close clients."""
        active = [job for job in self._jobs.values() if not job.status.is_terminal]
        for job in active:
            self._tokens[job.job_id].cancel()
        if self._tasks:
            logger.info(f"Shutting down: waiting for {len(self._tasks)} job task(s)")
            _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        for client in self._closeables:
            await client.close()
        self._closeables = []

    # ═══════════════════════════════════════════════════════════════════════
    # Job execution
    # ═══════════════════════════════════════════════════════════════════════

    async def _run_job(self, job_id: str) -> None:
        job = self._jobs[job_id]
        token = self._tokens[job_id]
        try:
            status, context = await self._run_attempt(job, token)

            if status == JobStatus.FAILED:
                selection = self._fallback_for(job, token)
                if selection is not None:
                    self._start_fallback(job, selection)
                    status, context = await self._run_attempt(job, token)

            self._finalize(job, status, context)

        except Exception as e:
            logger.exception(f"[{job_id}] Unexpected error")
            job.error = ErrorInfo.from_code(ErrorCode.INTERNAL_ERROR, f"{type(e).__name__}: {e}")
            if self._transition(job, JobStatus.FAILED):
                self.tracker.set_status(job_id, JobStatus.FAILED, "Internal error", job.error)

    async def _run_attempt(
        self,
        job: Job,
        token: CancellationToken,
    ) -> tuple[JobStatus, StageContext]:
        """
        Run the stages of the job's current variant in order.

        Returns:
            (outcome status, context with every collected stage result)
        """
        variant = self.selector.variant(job.variant)
        stages = self.registry.build_sequence(variant.stage_names)
        context = StageContext(job_id=job.job_id, descriptor=job.input, options=job.options)

        for index, stage in enumerate(stages, start=1):
            if token.is_cancelled or job.status.is_terminal:
                return JobStatus.CANCELLED, context

            config = variant.get_stage(stage.name)
            stage_result = StageResult(name=stage.name, started_at=datetime.now())
            job.stages.append(stage_result)
            if job.status == JobStatus.QUEUED:
                self._transition(job, JobStatus.PROCESSING)
            job.updated_at = datetime.now()
            self.tracker.set_stage(job.job_id, index)

            if stage.should_skip(context):
                stage_result.status = StageStatus.SKIPPED
                stage_result.finished_at = datetime.now()
                self.tracker.finish_stage(job.job_id, index, f"Skipped {stage.name}")
                logger.info(f"[{job.job_id}] Stage {index}/{len(stages)} {stage.name}: skipped")
                continue

            logger.info(f"[{job.job_id}] Stage {index}/{len(stages)} {stage.name}: started")
            run = await self.scheduler.run(stage, config, context, stage_result, index, token)
            job.updated_at = datetime.now()

            if run.outputs:
                context = context.with_result(stage.name, stage.collect(run.outputs, context))

            if run.cancelled:
                return JobStatus.CANCELLED, context
            if not run.succeeded:
                job.error = stage_result.error
                logger.warning(
                    f"[{job.job_id}] Stage {stage.name} failed: "
                    f"{stage_result.error.code.value if stage_result.error else 'unknown'}"
                )
                return JobStatus.FAILED, context

            self.tracker.finish_stage(job.job_id, index)
            logger.info(
                f"[{job.job_id}] Stage {stage.name}: {len(stage_result.succeeded_units)}/"
                f"{len(stage_result.units)} units succeeded"
            )

        if any(stage.failed_units for stage in job.stages):
            return JobStatus.COMPLETED_WITH_WARNINGS, context
        return JobStatus.COMPLETED, context

    def _fallback_for(self, job: Job, token: CancellationToken) -> Selection | None:
        """Fallback selection after a stage-fatal failure, or None."""
        if (
            not self.settings.pipeline_fallback_enabled
            or token.is_cancelled
            or job.previous_attempts
            or job.selection_reason == REASON_OVERRIDE
        ):
            return None
        return self.selector.select_fallback(job.variant)

    def _start_fallback(self, job: Job, selection: Selection) -> None:
        """Archive the failed attempt and reset the job for a new variant."""
        logger.warning(
            f"[{job.job_id}] Variant '{job.variant}' failed, "
            f"falling back to '{selection.variant}'"
        )
        job.previous_attempts.append(AttemptRecord(
            variant=job.variant,
            selection_reason=job.selection_reason,
            stages=job.stages,
            error=job.error,
        ))
        job.variant = selection.variant
        job.selection_reason = selection.reason
        job.stages = []
        job.error = None
        job.updated_at = datetime.now()

        variant = self.selector.variant(selection.variant)
        self.tracker.start(
            job.job_id,
            selection.variant,
            self._estimate_stages(job.input, variant),
            message=f"Retrying with '{selection.variant}' pipeline...",
            status=JobStatus.PROCESSING,
        )

    def _finalize(self, job: Job, status: JobStatus, context: StageContext) -> None:
        """Compile the output and publish the terminal state."""
        if job.status.is_terminal:
            return

        job.output = self._compile_output(job, context, status)
        if status == JobStatus.FAILED:
            job.error = job.error or ErrorInfo.from_code(ErrorCode.STAGE_FAILED)
        elif status == JobStatus.CANCELLED:
            job.error = ErrorInfo.from_code(ErrorCode.JOB_CANCELLED)
        else:
            job.error = None

        message = self._terminal_message(job, status)
        if self._transition(job, status):
            self.tracker.set_status(job.job_id, status, message, job.error)
            logger.info(f"[{job.job_id}] {message}")

    def _transition(self, job: Job, status: JobStatus) -> bool:
        """Apply a status change; terminal states never change again."""
        if job.status.is_terminal:
            logger.warning(
                f"[{job.job_id}] Ignoring transition to {status.value}: "
                f"job is already {job.status.value}"
            )
            return False
        job.status = status
        job.updated_at = datetime.now()
        if status.is_terminal:
            self._done[job.job_id].set()
        return True

    # ═══════════════════════════════════════════════════════════════════════
    # Helpers
    # ═══════════════════════════════════════════════════════════════════════

    def _batch_view(self, batch: _Batch) -> BatchResponse:
        results = []
        for entry in batch.entries:
            if entry.job_id is None:
                results.append(BatchItemResult(
                    id=entry.item_id, status=JobStatus.FAILED, error=entry.error,
                ))
                continue
            job = self._jobs[entry.job_id]
            results.append(BatchItemResult(
                id=entry.item_id, job_id=job.job_id, status=job.status, error=job.error,
            ))
        return BatchResponse(
            batch_id=batch.batch_id,
            total=len(results),
            status=aggregate_batch_status([result.status for result in results]),
            results=results,
            created_at=batch.created_at,
        )

    def _get(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"job {job_id} not found")
        return job

    def _validate_input(self, descriptor: InputDescriptor) -> None:
        """
        Submit-time checks against the configured limits.

        Raises:
            InvalidInputError: With INVALID_INPUT, INPUT_TOO_LARGE or
                UNSUPPORTED_FORMAT
        """
        if descriptor.size_bytes == 0:
            raise InvalidInputError(f"{descriptor.location} is empty")

        if descriptor.size_bytes > self.settings.max_input_size_bytes:
            raise InvalidInputError(
                f"{descriptor.size_bytes / 1024 / 1024:.1f} MB exceeds "
                f"{self.settings.max_input_size_mb} MB",
                code=ErrorCode.INPUT_TOO_LARGE,
            )
        if (
            descriptor.duration_seconds is not None
            and descriptor.duration_seconds > self.settings.max_input_duration_seconds
        ):
            raise InvalidInputError(
                f"{descriptor.duration_seconds:.0f}s exceeds "
                f"{self.settings.max_input_duration_seconds}s",
                code=ErrorCode.INPUT_TOO_LARGE,
            )

        if descriptor.media_kind == MediaKind.VIDEO:
            supported = is_video_location(descriptor.location, descriptor.content_type)
        else:
            supported = is_image_location(descriptor.location, descriptor.content_type)
        if not supported:
            raise InvalidInputError(
                f"{descriptor.location} ({descriptor.content_type or 'no content type'}) "
                f"is not a supported {descriptor.media_kind.value}",
                code=ErrorCode.UNSUPPORTED_FORMAT,
            )

    def _estimate_stages(
        self,
        descriptor: InputDescriptor,
        variant: VariantConfig,
    ) -> list[tuple[str, int]]:
        return [
            (name, self.registry.get(name).estimate_units(descriptor, variant))
            for name in variant.stage_names
        ]

    def _compile_output(
        self,
        job: Job,
        context: StageContext,
        status: JobStatus,
    ) -> CompiledOutput:
        """Build the (possibly partial) output from collected stage results."""
        narration = None
        if context.has_result(StageName.SYNTHESIZE_TEXT.value):
            narration = context.get_result(StageName.SYNTHESIZE_TEXT.value)
        elif context.has_result(StageName.ANALYZE.value):
            narration = compile_narration(
                context.get_result(StageName.ANALYZE.value),
                self.settings.speech_chunk_chars,
            )

        audio = []
        if context.has_result(StageName.SYNTHESIZE_AUDIO.value):
            audio = context.get_result(StageName.SYNTHESIZE_AUDIO.value)

        skipped = [
            SkippedUnit(
                stage=stage.name,
                index=unit.index,
                code=(unit.error.code if unit.error else ErrorCode.STAGE_FAILED).value,
            )
            for stage in job.stages
            for unit in stage.units
            if unit.status in (StageStatus.FAILED, StageStatus.SKIPPED)
        ]

        return CompiledOutput(
            job_id=job.job_id,
            status=status,
            variant=job.variant,
            partial=not status.is_completed,
            fragments=narration.fragments if narration else [],
            timestamped_text=narration.timestamped_text if narration else "",
            clean_text=narration.clean_text if narration else "",
            audio=audio,
            skipped_units=skipped,
        )

    @staticmethod
    def _terminal_message(job: Job, status: JobStatus) -> str:
        if status == JobStatus.COMPLETED:
            return "Completed"
        if status == JobStatus.CANCELLED:
            return "Cancelled"
        if status == JobStatus.FAILED:
            failed = [stage.name for stage in job.stages if stage.status == StageStatus.FAILED]
            where = f" at {failed[-1]}" if failed else ""
            return f"Failed{where}: {job.error.message if job.error else 'unknown error'}"

        parts = []
        for stage in job.stages:
            indices = [str(unit.index) for unit in stage.failed_units]
            if indices:
                noun = "unit" if len(indices) == 1 else "units"
                parts.append(f"{stage.name} {noun} {', '.join(indices)}")
        return f"Completed with warnings: skipped {'; '.join(parts)}"


# Global job manager instance
_job_manager: JobManager | None = None


def get_job_manager() -> JobManager:
    """Get global job manager instance."""
    global _job_manager
    if _job_manager is None:
        _job_manager = JobManager.from_settings(get_settings())
    return _job_manager


def set_job_manager(manager: JobManager | None) -> None:
    """Replace the global job manager (tests, custom wiring)."""
    global _job_manager
    _job_manager = manager
