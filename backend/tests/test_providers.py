"""
Tests for collaborator clients against mocked HTTP transports.
"""

import json

import httpx
import pytest
from anthropic import AsyncAnthropic

from narrator.services.providers import (
    ClaudeVisionClient,
    HttpMediaClient,
    HttpSegmentationClient,
    HttpSpeechClient,
    LocalStorage,
    ProviderConfig,
)
from narrator.services.providers.base import (
    ContentRejectedError,
    InvalidResponseError,
    MediaUnit,
    PromptConfig,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitedError,
    Span,
    SpeechSynthesis,
    TextTooLongError,
    ThrottledError,
    UnsupportedFormatError,
    VoiceConfig,
)


def _client(cls, handler, api_key=None):
    config = ProviderConfig(base_url=f"http://{cls.provider}", api_key=api_key)
    return cls(config, transport=httpx.MockTransport(handler))


def _status(code: int):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(code, text="nope")
    return handler


# ═══════════════════════════════════════════════════════════════════════════
# Segmentation
# ═══════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_segment_parses_scenes():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"scenes": [{"start": 0, "end": 4.5}, {"start": 4.5, "end": 9}]})

    async with _client(HttpSegmentationClient, handler, api_key="secret") as client:
        spans = await client.segment("uploads/talk.mp4")

    assert spans == [Span(0.0, 4.5), Span(4.5, 9.0)]
    assert seen == {
        "path": "/segment",
        "body": {"location": "uploads/talk.mp4"},
        "auth": "Bearer secret",
    }


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error",
    [
        (429, RateLimitedError),
        (503, ThrottledError),
        (500, ProviderUnavailableError),
        (504, ProviderTimeoutError),
        (422, UnsupportedFormatError),
        (404, InvalidResponseError),
    ],
)
async def test_segment_status_mapping(status, error):
    async with _client(HttpSegmentationClient, _status(status)) as client:
        with pytest.raises(error) as exc_info:
            await client.segment("uploads/talk.mp4")
    assert exc_info.value.provider == "segmentation"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"frames": []}),
        httpx.Response(200, json={"scenes": [{"start": "soon"}]}),
        httpx.Response(200, text="<html>"),
    ],
)
async def test_segment_malformed_payload(response):
    async with _client(HttpSegmentationClient, lambda request: response) as client:
        with pytest.raises(InvalidResponseError):
            await client.segment("uploads/talk.mp4")


@pytest.mark.asyncio
async def test_transport_failures():
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    def stall(request):
        raise httpx.ReadTimeout("slow", request=request)

    async with _client(HttpSegmentationClient, refuse) as client:
        with pytest.raises(ProviderUnavailableError) as exc_info:
            await client.segment("uploads/talk.mp4")
        assert isinstance(exc_info.value.original_error, httpx.ConnectError)
        assert not await client.check_health()

    async with _client(HttpSegmentationClient, stall) as client:
        with pytest.raises(ProviderTimeoutError):
            await client.segment("uploads/talk.mp4")


@pytest.mark.asyncio
async def test_check_health():
    async with _client(HttpMediaClient, lambda request: httpx.Response(200)) as client:
        assert await client.check_health()


# ═══════════════════════════════════════════════════════════════════════════
# Media and speech
# ═══════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_extract_returns_media_unit():
    def handler(request):
        body = json.loads(request.content)
        assert body == {"location": "uploads/talk.mp4", "start": 10.0, "end": 20.0}
        return httpx.Response(200, json={"locator": "frames/0010.jpg"})

    async with _client(HttpMediaClient, handler) as client:
        unit = await client.extract("uploads/talk.mp4", Span(10.0, 20.0))

    assert unit == MediaUnit("frames/0010.jpg", "image/jpeg", Span(10.0, 20.0))


@pytest.mark.asyncio
async def test_synthesize_returns_audio():
    def handler(request):
        body = json.loads(request.content)
        assert body == {"text": "Hello.", "voice_id": "Joanna", "language": "en-US", "format": "mp3"}
        return httpx.Response(200, content=b"ID3audio")

    async with _client(HttpSpeechClient, handler) as client:
        assert isinstance(client, SpeechSynthesis)
        assert await client.synthesize("Hello.", VoiceConfig("Joanna")) == b"ID3audio"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error",
    [(413, TextTooLongError), (422, ContentRejectedError), (429, RateLimitedError)],
)
async def test_speech_status_mapping(status, error):
    async with _client(HttpSpeechClient, _status(status)) as client:
        with pytest.raises(error):
            await client.synthesize("Hello.", VoiceConfig("Joanna"))


@pytest.mark.asyncio
async def test_speech_empty_audio_is_invalid():
    async with _client(HttpSpeechClient, lambda request: httpx.Response(200)) as client:
        with pytest.raises(InvalidResponseError):
            await client.synthesize("Hello.", VoiceConfig("Joanna"))


# ═══════════════════════════════════════════════════════════════════════════
# Claude vision
# ═══════════════════════════════════════════════════════════════════════════


def _message(text: str, stop_reason: str = "end_turn") -> dict:
    return {
        "id": "msg_01",
        "type": "message",
        "role": "assistant",
        "model": "claude-sonnet-4-5",
        "content": [{"type": "text", "text": text}] if text else [],
        "stop_reason": stop_reason,
        "stop_sequence": None,
        "usage": {"input_tokens": 1200, "output_tokens": 40},
    }


def _anthropic(handler) -> AsyncAnthropic:
    return AsyncAnthropic(
        api_key="test-key",
        max_retries=0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.fixture
def frame_storage(tmp_path) -> LocalStorage:
    storage = LocalStorage(tmp_path)
    (tmp_path / "frames").mkdir()
    (tmp_path / "frames" / "0000.jpg").write_bytes(b"\xff\xd8\xff\xe0jpeg")
    return storage


FRAME = MediaUnit("frames/0000.jpg", "image/jpeg", Span(0, 10))


@pytest.mark.asyncio
async def test_vision_sends_image_and_prompt(frame_storage):
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_message("  A dog runs across a park. "))

    async with ClaudeVisionClient("test-key", frame_storage, client=_anthropic(handler)) as client:
        text = await client.analyze(FRAME, PromptConfig(detail_level="basic"))

    assert text == "A dog runs across a park."
    image, prompt = seen["body"]["messages"][0]["content"]
    assert image["source"]["media_type"] == "image/jpeg"
    assert image["source"]["type"] == "base64"
    assert prompt["text"].startswith("Describe what is visible")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error",
    [
        (429, RateLimitedError),
        (400, ContentRejectedError),
        (500, ProviderUnavailableError),
        (404, InvalidResponseError),
    ],
)
async def test_vision_error_mapping(frame_storage, status, error):
    def handler(request):
        return httpx.Response(
            status, json={"type": "error", "error": {"type": "api_error", "message": "nope"}}
        )

    async with ClaudeVisionClient("test-key", frame_storage, client=_anthropic(handler)) as client:
        with pytest.raises(error):
            await client.analyze(FRAME, PromptConfig())


@pytest.mark.asyncio
async def test_vision_refusal_and_empty_text(frame_storage):
    responses = [_message("", stop_reason="refusal"), _message("   ")]

    def handler(request):
        return httpx.Response(200, json=responses.pop(0))

    async with ClaudeVisionClient("test-key", frame_storage, client=_anthropic(handler)) as client:
        with pytest.raises(ContentRejectedError):
            await client.analyze(FRAME, PromptConfig())
        with pytest.raises(InvalidResponseError):
            await client.analyze(FRAME, PromptConfig())


@pytest.mark.asyncio
async def test_vision_rejects_non_image_units(frame_storage):
    client = ClaudeVisionClient("test-key", frame_storage, client=_anthropic(_status(200)))
    clip = MediaUnit("clips/0000.mp4", "video/mp4", Span(0, 10))
    with pytest.raises(UnsupportedFormatError):
        await client.analyze(clip, PromptConfig())
    await client.close()


def test_vision_requires_api_key(frame_storage, settings, monkeypatch):
    with pytest.raises(ValueError):
        ClaudeVisionClient("", frame_storage)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    with pytest.raises(ValueError):
        ClaudeVisionClient.from_settings(settings, frame_storage)


# ═══════════════════════════════════════════════════════════════════════════
# Storage
# ═══════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_local_storage_round_trip(tmp_path):
    storage = LocalStorage(tmp_path)
    locator = await storage.put(b"audio", "job1/audio/001.mp3", content_type="audio/mp3")
    assert locator == "job1/audio/001.mp3"
    assert (tmp_path / "job1" / "audio" / "001.mp3").read_bytes() == b"audio"
    assert await storage.get(locator) == b"audio"


@pytest.mark.parametrize("locator", ["../escape.mp3", "/etc/passwd", "job1/../../x"])
def test_local_storage_rejects_escaping_locators(tmp_path, locator):
    with pytest.raises(ValueError):
        LocalStorage(tmp_path).path_for(locator)
