"""
External collaborators.

Protocols the stages depend on, the provider error hierarchy, and the
reference implementations used by the service.

Usage:
    from narrator.services.providers import HttpSpeechClient, LocalStorage

    storage = LocalStorage.from_settings(settings)
    async with HttpSpeechClient.from_settings(settings) as speech:
        audio = await speech.synthesize("Hello", VoiceConfig(voice_id="Joanna"))
"""

from narrator.services.providers.base import (
    ContentRejectedError,
    InvalidResponseError,
    MediaProcessor,
    MediaUnit,
    PromptConfig,
    ProviderError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitedError,
    Segmentation,
    Span,
    SpeechSynthesis,
    Storage,
    TextTooLongError,
    ThrottledError,
    UnsupportedFormatError,
    VisionAnalysis,
    VoiceConfig,
)
from narrator.services.providers.claude_vision import ClaudeVisionClient
from narrator.services.providers.http_client import (
    HttpMediaClient,
    HttpProviderClient,
    HttpSegmentationClient,
    HttpSpeechClient,
    ProviderConfig,
)
from narrator.services.providers.storage import LocalStorage

__all__ = [
    # Value types
    "Span",
    "MediaUnit",
    "PromptConfig",
    "VoiceConfig",
    # Protocols
    "Storage",
    "Segmentation",
    "MediaProcessor",
    "VisionAnalysis",
    "SpeechSynthesis",
    # Errors
    "ProviderError",
    "ThrottledError",
    "RateLimitedError",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
    "InvalidResponseError",
    "ContentRejectedError",
    "UnsupportedFormatError",
    "TextTooLongError",
    # Implementations
    "ProviderConfig",
    "HttpProviderClient",
    "HttpSegmentationClient",
    "HttpMediaClient",
    "HttpSpeechClient",
    "ClaudeVisionClient",
    "LocalStorage",
]
