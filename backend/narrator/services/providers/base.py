"""
Capability interfaces for external collaborators.

Defines the contracts the orchestrator calls (storage, segmentation,
media processing, vision analysis, speech synthesis) and the provider
error hierarchy whose `retryable` flag drives the retry executor.
"""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from narrator.errors import ErrorCode


@dataclass(frozen=True)
class Span:
    """
    Time range of the media, in seconds.

    Attributes:
        start: Start offset
        end: End offset (exclusive)
    """

    start: float
    end: float

    @property
    def duration(self) -> float:
        """Span length in seconds."""
        return self.end - self.start


@dataclass(frozen=True)
class MediaUnit:
    """
    A piece of media ready for vision analysis.

    Attributes:
        locator: Storage locator of the clip or keyframe
        content_type: MIME type of the stored object
        span: Time range it covers (None for a still image)
        segment_index: 1-based index of the span it was cut from, set by
            the extract stage
    """

    locator: str
    content_type: str
    span: Span | None = None
    segment_index: int | None = None


@dataclass(frozen=True)
class PromptConfig:
    """
    Options passed to the vision provider.

    Attributes:
        detail_level: basic, detailed or technical
        language: Output language
        context: Optional free-form context about the media
    """

    detail_level: str = "detailed"
    language: str = "en-US"
    context: str | None = None


@dataclass(frozen=True)
class VoiceConfig:
    """
    Options passed to the speech provider.

    Attributes:
        voice_id: Provider voice identifier
        language: Voice language code
        output_format: Audio container format
    """

    voice_id: str
    language: str = "en-US"
    output_format: str = "mp3"


# ═══════════════════════════════════════════════════════════════════════════
# Protocols
# ═══════════════════════════════════════════════════════════════════════════


@runtime_checkable
class Storage(Protocol):
    """Object storage for input media and produced artifacts."""

    async def put(self, data: bytes, name: str, content_type: str | None = None) -> str:
        """Store bytes and return a locator."""
        ...

    async def get(self, locator: str) -> bytes:
        """Fetch bytes by locator."""
        ...


@runtime_checkable
class Segmentation(Protocol):
    """Scene segmentation provider."""

    async def segment(self, locator: str) -> list[Span]:
        """
        Detect scenes in a video.

        Raises:
            ThrottledError: Provider is rate limiting (retryable)
            UnsupportedFormatError: Media cannot be decoded (non-retryable)
        """
        ...


@runtime_checkable
class MediaProcessor(Protocol):
    """Demux/clip service producing analyzable media units."""

    async def extract(self, locator: str, span: Span) -> MediaUnit:
        """Cut a span of the media into a stored clip or keyframe."""
        ...


@runtime_checkable
class VisionAnalysis(Protocol):
    """Vision model producing a textual description."""

    async def analyze(self, unit: MediaUnit, prompt: PromptConfig) -> str:
        """
        Describe a media unit.

        Raises:
            RateLimitedError: Provider is rate limiting (retryable)
            ContentRejectedError: Provider refused the content (non-retryable)
        """
        ...


@runtime_checkable
class SpeechSynthesis(Protocol):
    """Text-to-speech provider."""

    async def synthesize(self, text: str, voice: VoiceConfig) -> bytes:
        """
        Render text to audio.

        Raises:
            ThrottledError: Provider is rate limiting (retryable)
            TextTooLongError: Text exceeds provider limit (non-retryable)
        """
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════


class ProviderError(Exception):
    """
    Base exception for collaborator failures.

    Attributes:
        message: Error description (logged only, never shown to callers)
        provider: Provider name (segmentation, vision, speech, ...)
        original_error: Underlying exception if available
        code: Taxonomy code used when the failure is recorded on a unit
        retryable: Whether the retry executor may try again
    """

    code: ErrorCode = ErrorCode.PROVIDER_UNAVAILABLE
    retryable: bool = False

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        original_error: Exception | None = None,
    ):
        self.message = message
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)

    def __str__(self) -> str:
        if self.provider:
            return f"{self.message} | provider={self.provider}"
        return self.message


class ThrottledError(ProviderError):
    """Provider is throttling requests."""

    code = ErrorCode.PROVIDER_THROTTLED
    retryable = True


class RateLimitedError(ThrottledError):
    """Provider rate limit exceeded (HTTP 429)."""


class ProviderTimeoutError(ProviderError):
    """Request to a provider timed out."""

    code = ErrorCode.PROVIDER_TIMEOUT
    retryable = True


class ProviderUnavailableError(ProviderError):
    """Provider unreachable or returned a server error."""

    code = ErrorCode.PROVIDER_UNAVAILABLE
    retryable = True


class InvalidResponseError(ProviderError):
    """Provider answered with a body that cannot be used."""

    code = ErrorCode.PROVIDER_UNAVAILABLE


class ContentRejectedError(ProviderError):
    """Provider declined to process the content."""

    code = ErrorCode.CONTENT_REJECTED


class UnsupportedFormatError(ProviderError):
    """Provider cannot decode the media format."""

    code = ErrorCode.UNSUPPORTED_FORMAT


class TextTooLongError(ProviderError):
    """Text exceeds the speech provider's input limit."""

    code = ErrorCode.TEXT_TOO_LONG
