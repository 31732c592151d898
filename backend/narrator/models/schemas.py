"""
Pydantic models for the narration orchestrator.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from narrator.errors import ErrorInfo
from narrator.utils.media_utils import format_timestamp


class JobStatus(str, Enum):
    """Overall status of a narration job."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    COMPLETED_WITH_WARNINGS = "completed_with_warnings"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """True for sink states; a terminal job never changes again."""
        return self in TERMINAL_STATUSES

    @property
    def is_completed(self) -> bool:
        """True if the job produced a full (non-partial) result."""
        return self in (JobStatus.COMPLETED, JobStatus.COMPLETED_WITH_WARNINGS)


TERMINAL_STATUSES = frozenset({
    JobStatus.COMPLETED,
    JobStatus.COMPLETED_WITH_WARNINGS,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
})


class StageStatus(str, Enum):
    """Status of a stage or of a single unit within a stage."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class MediaKind(str, Enum):
    """Kind of submitted media."""
    VIDEO = "video"
    IMAGE = "image"


# ═══════════════════════════════════════════════════════════════════════════
# Submission
# ═══════════════════════════════════════════════════════════════════════════


class InputDescriptor(BaseModel):
    """Where the media lives and what is known about it."""

    location: str = Field(min_length=1)
    media_kind: MediaKind
    size_bytes: int = Field(ge=0)
    duration_seconds: float | None = Field(default=None, ge=0)
    content_type: str | None = None  # MIME type, e.g. "video/mp4"

    model_config = ConfigDict(frozen=True)


class DetailLevel(str, Enum):
    """How much detail the vision provider is asked for."""
    BASIC = "basic"
    DETAILED = "detailed"
    TECHNICAL = "technical"


class SubmitOptions(BaseModel):
    """Caller options for a submission."""

    pipeline: str | None = None  # Variant override
    generate_audio: bool = True
    detail_level: DetailLevel = DetailLevel.DETAILED
    voice_id: str | None = None

    model_config = ConfigDict(frozen=True)


class SubmitRequest(BaseModel):
    """Body of POST /api/jobs."""

    input: InputDescriptor
    options: SubmitOptions = Field(default_factory=SubmitOptions)


class SubmitResponse(BaseModel):
    """Response of POST /api/jobs."""

    job_id: str
    status: JobStatus
    variant: str
    selection_reason: str

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ═══════════════════════════════════════════════════════════════════════════
# Image batches
# ═══════════════════════════════════════════════════════════════════════════


class BatchStatus(str, Enum):
    """Aggregate status of an image batch, derived from its jobs."""
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class BatchItem(BaseModel):
    """
    One image of a batch.

    `input` stays a raw mapping so a malformed item is reported in its
    own result instead of rejecting the whole request.
    """

    id: str | None = None
    input: dict[str, Any]


class BatchRequest(BaseModel):
    """Body of POST /api/jobs/batch."""

    items: list[BatchItem]
    options: SubmitOptions = Field(default_factory=SubmitOptions)


class BatchItemResult(BaseModel):
    """Per-item outcome: a job id, or the error that kept it from being created."""

    id: str
    job_id: str | None = None
    status: JobStatus
    error: ErrorInfo | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BatchResponse(BaseModel):
    """Current view of an image batch."""

    batch_id: str
    total: int
    status: BatchStatus
    results: list[BatchItemResult]
    created_at: datetime

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ═══════════════════════════════════════════════════════════════════════════
# Stage and unit results
# ═══════════════════════════════════════════════════════════════════════════


class UnitResult(BaseModel):
    """Outcome of one unit of work within a stage."""

    index: int = Field(ge=1)
    status: StageStatus
    payload: str | None = None  # Text fragment or storage locator
    error: ErrorInfo | None = None
    retry_count: int = Field(default=0, ge=0)


class StageResult(BaseModel):
    """Outcome of one stage of an attempt."""

    name: str
    status: StageStatus = StageStatus.PENDING
    units: list[UnitResult] = Field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: ErrorInfo | None = None

    @property
    def failed_units(self) -> list[UnitResult]:
        """Units that exhausted retries or failed permanently."""
        return [u for u in self.units if u.status == StageStatus.FAILED]

    @property
    def succeeded_units(self) -> list[UnitResult]:
        """Units that produced a payload."""
        return [u for u in self.units if u.status == StageStatus.SUCCEEDED]


class AttemptRecord(BaseModel):
    """A superseded attempt kept in job history after a fallback hop."""

    variant: str
    selection_reason: str
    stages: list[StageResult]
    error: ErrorInfo | None = None


# ═══════════════════════════════════════════════════════════════════════════
# Output
# ═══════════════════════════════════════════════════════════════════════════


class NarrationFragment(BaseModel):
    """Description of one analyzed unit, placed on the media timeline."""

    index: int
    start: float | None = None
    end: float | None = None
    text: str

    @computed_field
    @property
    def timestamp(self) -> str | None:
        """Formatted range "MM:SS.cc - MM:SS.cc", None for still images."""
        if self.start is None or self.end is None:
            return None
        return f"{format_timestamp(self.start)} - {format_timestamp(self.end)}"


class AudioSegment(BaseModel):
    """One synthesized speech chunk in storage."""

    index: int
    locator: str
    characters: int


class SkippedUnit(BaseModel):
    """A unit left out of the output and why."""

    stage: str
    index: int
    code: str


class CompiledOutput(BaseModel):
    """Final (or partial) narration of a job."""

    job_id: str
    status: JobStatus
    variant: str
    partial: bool = False
    fragments: list[NarrationFragment] = Field(default_factory=list)
    timestamped_text: str = ""
    clean_text: str = ""
    audio: list[AudioSegment] = Field(default_factory=list)
    skipped_units: list[SkippedUnit] = Field(default_factory=list)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ═══════════════════════════════════════════════════════════════════════════
# Job and status
# ═══════════════════════════════════════════════════════════════════════════


class Job(BaseModel):
    """
    One submitted media item and its processing state.

    Owned by JobManager. Stage results appear in variant order.
    """

    job_id: str
    input: InputDescriptor
    options: SubmitOptions
    variant: str
    selection_reason: str
    status: JobStatus = JobStatus.QUEUED
    stages: list[StageResult] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    cancel_requested: bool = False
    error: ErrorInfo | None = None
    output: CompiledOutput | None = None
    previous_attempts: list[AttemptRecord] = Field(default_factory=list)

    def get_stage(self, name: str) -> StageResult | None:
        """Get the stage result of the current attempt by name."""
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None


class ProgressSnapshot(BaseModel):
    """
    Immutable published view of a job's progress.

    Rebuilt on every write; reads between writes return the same object.
    Serialized with camelCase keys: {jobId, status, step, progress, ...}.
    """

    job_id: str
    status: JobStatus
    variant: str
    step: str | None = None
    stage_index: int = 0
    total_stages: int = 0
    progress: float = 0.0
    message: str = ""
    eta_seconds: float | None = None
    error: ErrorInfo | None = None
    updated_at: datetime

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class CancelAck(BaseModel):
    """Acknowledgment of a cancellation request."""

    job_id: str
    status: JobStatus
    message: str

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobSummary(BaseModel):
    """Compact listing entry for GET /api/jobs."""

    job_id: str
    status: JobStatus
    variant: str
    media_kind: MediaKind
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SystemHealth(BaseModel):
    """Aggregate job counts and resource pool usage."""

    status: str
    active_jobs: int
    completed_jobs: int
    failed_jobs: int
    cancelled_jobs: int
    resources: dict[str, dict[str, Any]] = Field(default_factory=dict)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

