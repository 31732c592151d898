"""
Claude vision client.

Describes keyframes and still images with Anthropic's Messages API.
Implements the VisionAnalysis protocol. The SDK's own retries are
disabled; retrying is the RetryExecutor's job.
"""

import base64
import logging
import os

from anthropic import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncAnthropic,
    BadRequestError,
    RateLimitError,
)

from narrator.config import Settings
from narrator.services.providers.base import (
    ContentRejectedError,
    InvalidResponseError,
    MediaUnit,
    PromptConfig,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitedError,
    Storage,
    UnsupportedFormatError,
)

logger = logging.getLogger(__name__)

# Default Claude model (using alias for auto-updates)
DEFAULT_VISION_MODEL = "claude-sonnet-4-5"

SUPPORTED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}

DETAIL_PROMPTS = {
    "basic": (
        "Describe what is visible in this image in one or two short sentences "
        "for a blind or low-vision listener."
    ),
    "detailed": (
        "Describe this image for a blind or low-vision listener. Cover the "
        "setting, the people and their actions, and any visible text. Use "
        "plain present-tense sentences, no more than five."
    ),
    "technical": (
        "Describe this image for a blind or low-vision listener with precise "
        "detail: layout, colours, on-screen text, diagrams and any data shown. "
        "Use plain present-tense sentences."
    ),
}


def build_prompt(prompt: PromptConfig) -> str:
    """
    Build the instruction text for a detail level.

    Args:
        prompt: Prompt options

    Returns:
        Instruction text sent alongside the image
    """
    text = DETAIL_PROMPTS.get(prompt.detail_level, DETAIL_PROMPTS["detailed"])
    text += f" Answer in {prompt.language}. Do not start with 'This image shows'."
    if prompt.context:
        text += f"\n\nContext: {prompt.context}"
    return text


class ClaudeVisionClient:
    """
    Vision analysis through Claude.

    Reads the unit's bytes from storage and sends them as a base64
    image block with a detail-level prompt.

    Example:
        async with ClaudeVisionClient.from_settings(settings, storage) as client:
            text = await client.analyze(unit, PromptConfig(detail_level="basic"))
    """

    def __init__(
        self,
        api_key: str,
        storage: Storage,
        model: str = DEFAULT_VISION_MODEL,
        max_tokens: int = 1024,
        timeout: float = 120.0,
        client: AsyncAnthropic | None = None,
    ):
        """
        Initialize vision client.

        Args:
            api_key: Anthropic API key
            storage: Storage to read unit bytes from
            model: Claude model name
            max_tokens: Max tokens per description
            timeout: Request timeout in seconds
            client: Optional pre-built AsyncAnthropic (for tests)

        Raises:
            ValueError: If API key is not provided
        """
        if not api_key and client is None:
            raise ValueError(
                "ClaudeVisionClient requires API key. "
                "Set ANTHROPIC_API_KEY environment variable."
            )
        self.storage = storage
        self.model = model
        self.max_tokens = max_tokens
        self.client = client or AsyncAnthropic(
            api_key=api_key,
            timeout=timeout,
            max_retries=0,
        )
        logger.info(f"ClaudeVisionClient initialized, model: {model}")

    @classmethod
    def from_settings(cls, settings: Settings, storage: Storage) -> "ClaudeVisionClient":
        """
        Create client from application settings.

        Raises:
            ValueError: If ANTHROPIC_API_KEY not set
        """
        api_key = os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise ValueError(
                "ANTHROPIC_API_KEY environment variable not set. "
                "Claude API requires authentication."
            )
        return cls(
            api_key=api_key,
            storage=storage,
            model=settings.vision_model,
            max_tokens=settings.vision_max_tokens,
            timeout=settings.provider_timeout,
        )

    async def __aenter__(self) -> "ClaudeVisionClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the client and release resources."""
        await self.client.close()
        logger.debug("ClaudeVisionClient closed")

    async def analyze(self, unit: MediaUnit, prompt: PromptConfig) -> str:
        """
        Describe a media unit.

        Args:
            unit: Keyframe or still image in storage
            prompt: Prompt options

        Returns:
            Description text

        Raises:
            UnsupportedFormatError: Unit is not a supported image type
            RateLimitedError: Claude returned 429 (retryable)
            ContentRejectedError: Claude refused or rejected the request
        """
        if unit.content_type not in SUPPORTED_IMAGE_TYPES:
            raise UnsupportedFormatError(
                f"cannot analyze {unit.content_type}", provider="claude"
            )

        data = await self.storage.get(unit.locator)
        messages = [{
            "role": "user",
            "content": [
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": unit.content_type,
                        "data": base64.standard_b64encode(data).decode("ascii"),
                    },
                },
                {"type": "text", "text": build_prompt(prompt)},
            ],
        }]

        logger.debug(
            f"Claude vision: model={self.model}, image={len(data)} bytes, "
            f"detail={prompt.detail_level}"
        )

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=messages,
            )

        except RateLimitError as e:
            raise RateLimitedError(
                f"Claude rate limit: {e.message}", provider="claude", original_error=e
            ) from e

        except APITimeoutError as e:
            raise ProviderTimeoutError(
                "Claude request timeout", provider="claude", original_error=e
            ) from e

        except APIConnectionError as e:
            raise ProviderUnavailableError(
                f"Cannot connect to Claude API: {e}", provider="claude", original_error=e
            ) from e

        except BadRequestError as e:
            raise ContentRejectedError(
                f"Claude rejected request: {e.message}", provider="claude", original_error=e
            ) from e

        except APIStatusError as e:
            logger.error(f"Claude API error: {e.status_code} - {e.message}")
            if e.status_code >= 500:
                raise ProviderUnavailableError(
                    f"Claude API error: {e.message}", provider="claude", original_error=e
                ) from e
            raise InvalidResponseError(
                f"Claude API error: {e.message}", provider="claude", original_error=e
            ) from e

        if response.stop_reason == "refusal":
            raise ContentRejectedError("Claude declined to describe the image", provider="claude")

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        ).strip()
        if not text:
            raise InvalidResponseError("empty description", provider="claude")

        logger.info(
            f"Claude description: {len(text)} chars, "
            f"tokens: {response.usage.input_tokens} in / {response.usage.output_tokens} out"
        )
        return text
