"""
Error taxonomy for the narration orchestrator.

Every error surfaced to a caller carries a stable ErrorCode. The
user-visible message and suggestion are looked up from ERROR_CATALOG by
code; raw provider text stays in `detail` and is only ever logged.
"""

from enum import Enum

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Stable error codes exposed to callers."""

    INVALID_INPUT = "INVALID_INPUT"
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    INPUT_TOO_LARGE = "INPUT_TOO_LARGE"
    PROVIDER_THROTTLED = "PROVIDER_THROTTLED"
    PROVIDER_TIMEOUT = "PROVIDER_TIMEOUT"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    CONTENT_REJECTED = "CONTENT_REJECTED"
    TEXT_TOO_LONG = "TEXT_TOO_LONG"
    STAGE_FAILED = "STAGE_FAILED"
    STAGE_TIMEOUT = "STAGE_TIMEOUT"
    JOB_CANCELLED = "JOB_CANCELLED"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    BATCH_NOT_FOUND = "BATCH_NOT_FOUND"
    RESULT_NOT_READY = "RESULT_NOT_READY"
    ALREADY_TERMINAL = "ALREADY_TERMINAL"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# code -> (message, suggestion)
ERROR_CATALOG: dict[ErrorCode, tuple[str, str]] = {
    ErrorCode.INVALID_INPUT: (
        "The submitted media descriptor is invalid.",
        "Check the location, media kind, size and duration fields and resubmit.",
    ),
    ErrorCode.UNSUPPORTED_FORMAT: (
        "The media format is not supported.",
        "Convert the file to MP4, MOV, WEBM or AVI (video) or JPG, PNG, GIF or WEBP (image).",
    ),
    ErrorCode.INPUT_TOO_LARGE: (
        "The media exceeds the maximum accepted size or duration.",
        "Trim or compress the media and submit it again.",
    ),
    ErrorCode.PROVIDER_THROTTLED: (
        "A processing provider is rate limiting requests.",
        "Retry the job in a few minutes.",
    ),
    ErrorCode.PROVIDER_TIMEOUT: (
        "A processing provider did not respond in time.",
        "Retry the job; shorter media processes faster.",
    ),
    ErrorCode.PROVIDER_UNAVAILABLE: (
        "A processing provider is currently unavailable.",
        "Retry the job later.",
    ),
    ErrorCode.CONTENT_REJECTED: (
        "A processing provider declined to describe part of the content.",
        "Review the media for content that cannot be processed.",
    ),
    ErrorCode.TEXT_TOO_LONG: (
        "A narration segment was too long for speech synthesis.",
        "Lower the speech chunk size setting and retry.",
    ),
    ErrorCode.STAGE_FAILED: (
        "A processing stage could not produce any usable output.",
        "Retry the job or choose a different pipeline variant.",
    ),
    ErrorCode.STAGE_TIMEOUT: (
        "A processing stage did not finish within its time limit.",
        "Retry the job or submit shorter media.",
    ),
    ErrorCode.JOB_CANCELLED: (
        "The job was cancelled.",
        "Request partial results explicitly or submit the media again.",
    ),
    ErrorCode.JOB_NOT_FOUND: (
        "No job exists with this identifier.",
        "Check the job identifier returned at submission.",
    ),
    ErrorCode.BATCH_NOT_FOUND: (
        "No batch exists with this identifier.",
        "Check the batch identifier returned at submission.",
    ),
    ErrorCode.RESULT_NOT_READY: (
        "The job has not completed yet.",
        "Poll the job status until it reports a completed state.",
    ),
    ErrorCode.ALREADY_TERMINAL: (
        "The job has already finished.",
        "Fetch the job result instead of cancelling it.",
    ),
    ErrorCode.INTERNAL_ERROR: (
        "An unexpected internal error occurred.",
        "Retry the job; contact support if it keeps failing.",
    ),
}


class ErrorInfo(BaseModel):
    """Caller-facing error body: {code, message, suggestion}."""

    code: ErrorCode
    message: str
    suggestion: str
    detail: str | None = Field(default=None, exclude=True)

    @classmethod
    def from_code(cls, code: ErrorCode, detail: str | None = None) -> "ErrorInfo":
        """Build an ErrorInfo with the catalog message for a code."""
        message, suggestion = ERROR_CATALOG[code]
        return cls(code=code, message=message, suggestion=suggestion, detail=detail)


class NarratorError(Exception):
    """
    Base exception for orchestrator errors surfaced to callers.

    Attributes:
        code: Taxonomy code
        detail: Internal detail (logged, never shown to callers)
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, detail: str | None = None, code: ErrorCode | None = None):
        if code is not None:
            self.code = code
        self.detail = detail
        super().__init__(detail or ERROR_CATALOG[self.code][0])

    def to_info(self) -> ErrorInfo:
        """Convert to caller-facing error body."""
        return ErrorInfo.from_code(self.code, self.detail)


class InvalidInputError(NarratorError):
    """Raised at submit time for malformed, oversized or unsupported input."""

    code = ErrorCode.INVALID_INPUT


class JobNotFoundError(NarratorError):
    """Raised when a job id is unknown."""

    code = ErrorCode.JOB_NOT_FOUND


class BatchNotFoundError(NarratorError):
    """Raised when a batch id is unknown."""

    code = ErrorCode.BATCH_NOT_FOUND


class ResultNotReadyError(NarratorError):
    """Raised when a result is requested before the job completed."""

    code = ErrorCode.RESULT_NOT_READY


class AlreadyTerminalError(NarratorError):
    """Raised when cancelling a job that already finished."""

    code = ErrorCode.ALREADY_TERMINAL


class JobCancelledError(NarratorError):
    """Raised at a suspension point when the owning job was cancelled."""

    code = ErrorCode.JOB_CANCELLED


class StageError(NarratorError):
    """
    Stage-level failure that makes the whole stage fatal.

    Attributes:
        stage_name: Name of the stage that failed
    """

    code = ErrorCode.STAGE_FAILED

    def __init__(
        self,
        stage_name: str,
        detail: str,
        code: ErrorCode | None = None,
    ):
        self.stage_name = stage_name
        super().__init__(f"[{stage_name}] {detail}", code=code)
