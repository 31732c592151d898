"""
HTTP API routes for narration jobs.

Provides endpoints for:
- Submitting media for narration, singly or as an image batch
- Polling job status
- Cancelling jobs
- Fetching compiled (or partial) results
- Listing jobs and pipeline variants

Errors are raised as NarratorError and rendered by the application's
exception handler as {code, message, suggestion}.
"""

import logging

from fastapi import APIRouter, Query

from narrator.models.schemas import (
    BatchRequest,
    BatchResponse,
    CancelAck,
    CompiledOutput,
    JobSummary,
    ProgressSnapshot,
    SubmitRequest,
    SubmitResponse,
)
from narrator.services.job_manager import get_job_manager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["jobs"])


@router.post("/jobs", response_model=SubmitResponse, status_code=202)
async def submit_job(request: SubmitRequest) -> SubmitResponse:
    """
    Submit media for narration.

    Selects a pipeline variant and starts processing in the background.
    Poll GET /api/jobs/{job_id} or connect to WebSocket /ws/{job_id}
    for progress.

    Returns:
        SubmitResponse with jobId, status, variant and selection reason

    Raises:
        InvalidInputError: 422 for malformed, oversized or unsupported input
    """
    manager = get_job_manager()
    job_id = manager.submit(request.input, request.options)
    job = manager.get_job(job_id)

    logger.info(f"Accepted job {job_id} ({job.variant}, {job.selection_reason})")
    return SubmitResponse(
        job_id=job_id,
        status=job.status,
        variant=job.variant,
        selection_reason=job.selection_reason,
    )


@router.post("/jobs/batch", response_model=BatchResponse, status_code=202)
async def submit_batch(request: BatchRequest) -> BatchResponse:
    """
    Submit still images as a batch, one job per image.

    Items that fail validation come back with an error in their result;
    the others start processing. Poll GET /api/jobs/batch/{batch_id} for
    the aggregate status.

    Raises:
        InvalidInputError: 422 for an empty or oversized batch
    """
    return get_job_manager().submit_batch(request.items, request.options)


@router.get("/jobs/batch/{batch_id}", response_model=BatchResponse)
async def get_batch(batch_id: str) -> BatchResponse:
    """
    Get a batch with per-item job statuses.

    Raises:
        BatchNotFoundError: 404 if batch not found
    """
    return get_job_manager().get_batch(batch_id)


@router.get("/jobs", response_model=list[JobSummary])
async def list_jobs() -> list[JobSummary]:
    """List all jobs, newest first."""
    return get_job_manager().list_jobs()


@router.get("/jobs/{job_id}", response_model=ProgressSnapshot)
async def get_job_status(job_id: str) -> ProgressSnapshot:
    """
    Get current job status.

    Read-only and non-blocking: returns the last published snapshot.

    Raises:
        JobNotFoundError: 404 if job not found
    """
    return get_job_manager().get_status(job_id)


@router.post("/jobs/{job_id}/cancel", response_model=CancelAck)
async def cancel_job(job_id: str) -> CancelAck:
    """
    Cancel a job.

    No new stage starts after the acknowledgment.

    Raises:
        JobNotFoundError: 404 if job not found
        AlreadyTerminalError: 409 if the job already finished
    """
    return get_job_manager().cancel(job_id)


@router.get("/jobs/{job_id}/result", response_model=CompiledOutput)
async def get_job_result(
    job_id: str,
    partial: bool = Query(default=False, description="Return partial output of failed or cancelled jobs"),
) -> CompiledOutput:
    """
    Get the compiled narration of a job.

    Raises:
        JobNotFoundError: 404 if job not found
        ResultNotReadyError: 409 if the job has no (allowed) output yet
    """
    return get_job_manager().get_result(job_id, include_partial=partial)


@router.get("/pipelines")
async def list_pipelines() -> list[dict]:
    """
    List pipeline variants.

    Returns:
        Variants with stage sequences, selection rules and fallbacks
    """
    return get_job_manager().selector.describe()
