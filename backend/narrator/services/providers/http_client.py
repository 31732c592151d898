"""
HTTP collaborator clients.

Async httpx clients for the segmentation, media processing and speech
synthesis services. HTTP failures are mapped onto the provider error
hierarchy; retries are left to the RetryExecutor, so these clients
make exactly one request per call.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from narrator.config import Settings
from narrator.services.providers.base import (
    ContentRejectedError,
    InvalidResponseError,
    MediaUnit,
    ProviderError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitedError,
    Span,
    TextTooLongError,
    ThrottledError,
    UnsupportedFormatError,
    VoiceConfig,
)

logger = logging.getLogger(__name__)


@dataclass
class ProviderConfig:
    """
    Configuration for HTTP provider clients.

    Attributes:
        base_url: Service endpoint URL
        timeout: Request timeout in seconds
        api_key: Optional bearer token
    """

    base_url: str
    timeout: float = 120.0
    api_key: str | None = None


class HttpProviderClient:
    """
    Base class for HTTP collaborators.

    Subclasses set `provider` and override `_map_status()` for
    service-specific status codes.

    Example:
        async with HttpSegmentationClient.from_settings(settings) as client:
            spans = await client.segment("uploads/video.mp4")
    """

    provider = "http"

    def __init__(
        self,
        config: ProviderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize client.

        Args:
            config: Provider configuration
            transport: Optional httpx transport (for tests)
        """
        self.config = config
        headers = {}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        self.http_client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout,
            headers=headers,
            transport=transport,
        )

    async def __aenter__(self) -> "HttpProviderClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.http_client.aclose()

    async def check_health(self) -> bool:
        """
        Check availability of the service.

        Returns:
            True if GET /health answers 200, False otherwise
        """
        try:
            response = await self.http_client.get("/health", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"{self.provider} not available: {e}")
            return False

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """
        Send one request and map failures to provider errors.

        Raises:
            ProviderError: On transport failure or non-2xx status
        """
        try:
            response = await self.http_client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"{method} {path} timed out", provider=self.provider, original_error=e
            ) from e
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(
                f"{method} {path} failed: {type(e).__name__}: {e}",
                provider=self.provider,
                original_error=e,
            ) from e

        if response.is_success:
            return response

        body = response.text[:200]
        logger.debug(f"{self.provider} {method} {path} -> {response.status_code}: {body}")
        raise self._map_status(response.status_code, f"{method} {path}: HTTP {response.status_code} {body}")

    def _map_status(self, status_code: int, message: str) -> ProviderError:
        """Map a non-2xx status code to a provider error."""
        if status_code == 429:
            return RateLimitedError(message, provider=self.provider)
        if status_code in (408, 504):
            return ProviderTimeoutError(message, provider=self.provider)
        if status_code >= 500:
            return ProviderUnavailableError(message, provider=self.provider)
        if status_code == 415:
            return UnsupportedFormatError(message, provider=self.provider)
        return InvalidResponseError(message, provider=self.provider)

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise InvalidResponseError(
                f"invalid JSON from {self.provider}", provider=self.provider, original_error=e
            ) from e


class HttpSegmentationClient(HttpProviderClient):
    """
    Scene segmentation service.

    POST /segment {"location"} -> {"scenes": [{"start", "end"}, ...]}
    """

    provider = "segmentation"

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpSegmentationClient":
        """Create client from application settings."""
        return cls(ProviderConfig(base_url=settings.segmentation_url, timeout=settings.provider_timeout))

    def _map_status(self, status_code: int, message: str) -> ProviderError:
        if status_code == 503:
            return ThrottledError(message, provider=self.provider)
        if status_code == 422:
            return UnsupportedFormatError(message, provider=self.provider)
        return super()._map_status(status_code, message)

    async def segment(self, locator: str) -> list[Span]:
        """
        Detect scenes of a video.

        Args:
            locator: Storage locator of the video

        Returns:
            Scenes as spans, in the order the service returned them

        Raises:
            ThrottledError: Service is throttling (retryable)
            UnsupportedFormatError: Video cannot be decoded
        """
        response = await self._request("POST", "/segment", json={"location": locator})
        data = self._json(response)
        try:
            spans = [Span(float(s["start"]), float(s["end"])) for s in data["scenes"]]
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidResponseError(
                f"malformed scenes payload: {e}", provider=self.provider, original_error=e
            ) from e
        logger.info(f"Segmentation: {len(spans)} scenes for {locator}")
        return spans


class HttpMediaClient(HttpProviderClient):
    """
    Media demux/clip service.

    POST /extract {"location", "start", "end"} -> {"locator", "content_type"}
    """

    provider = "media"

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpMediaClient":
        """Create client from application settings."""
        return cls(ProviderConfig(base_url=settings.media_url, timeout=settings.provider_timeout))

    async def extract(self, locator: str, span: Span) -> MediaUnit:
        """
        Extract a keyframe or clip for a span.

        Args:
            locator: Storage locator of the source video
            span: Time range to extract

        Returns:
            MediaUnit pointing at the stored extract
        """
        response = await self._request(
            "POST",
            "/extract",
            json={"location": locator, "start": span.start, "end": span.end},
        )
        data = self._json(response)
        try:
            return MediaUnit(
                locator=data["locator"],
                content_type=data.get("content_type", "image/jpeg"),
                span=span,
            )
        except (KeyError, TypeError) as e:
            raise InvalidResponseError(
                f"malformed extract payload: {e}", provider=self.provider, original_error=e
            ) from e


class HttpSpeechClient(HttpProviderClient):
    """
    Text-to-speech service.

    POST /synthesize {"text", "voice_id", "language", "format"} -> audio bytes
    """

    provider = "speech"

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpSpeechClient":
        """Create client from application settings."""
        return cls(ProviderConfig(base_url=settings.speech_url, timeout=settings.provider_timeout))

    def _map_status(self, status_code: int, message: str) -> ProviderError:
        if status_code == 413:
            return TextTooLongError(message, provider=self.provider)
        if status_code == 422:
            return ContentRejectedError(message, provider=self.provider)
        return super()._map_status(status_code, message)

    async def synthesize(self, text: str, voice: VoiceConfig) -> bytes:
        """
        Render text to audio.

        Args:
            text: Text to speak (pre-chunked below the provider limit)
            voice: Voice configuration

        Returns:
            Encoded audio bytes

        Raises:
            ThrottledError: Service is throttling (retryable)
            TextTooLongError: Text exceeds the service limit
        """
        response = await self._request(
            "POST",
            "/synthesize",
            json={
                "text": text,
                "voice_id": voice.voice_id,
                "language": voice.language,
                "format": voice.output_format,
            },
        )
        if not response.content:
            raise InvalidResponseError("empty audio response", provider=self.provider)
        return response.content
