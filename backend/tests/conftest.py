"""
Shared fixtures and in-memory collaborators for tests.

The fakes implement the provider protocols without network access.
Failures are scripted per locator; blocking is driven by asyncio events.
"""

import asyncio
from collections import Counter
from dataclasses import dataclass, field

import pytest

from narrator.config import Settings, load_pipelines_config
from narrator.models.pipelines import PipelinesConfig
from narrator.models.schemas import InputDescriptor, MediaKind, SubmitOptions
from narrator.services.job_manager import JobManager
from narrator.services.progress_tracker import ProgressTracker
from narrator.services.providers.base import MediaUnit, PromptConfig, Span, VoiceConfig
from narrator.services.stages import StageContext, create_default_stages


FAST_RETRY = {"max_attempts": 3, "base_delay": 0.001, "max_delay": 0.01}

# Small closed configuration: fixed windows for short videos (falls back
# to provider scenes), provider scenes by default, single-image variant.
TEST_PIPELINES = {
    "default_variant": "scenes",
    "resource_limits": {"segmentation": 1, "media": 2, "vision": 2, "speech": 1},
    "variants": {
        "windows": {
            "description": "Short videos in fixed 10s windows",
            "rule": {"name": "short-content", "media_kinds": ["video"], "max_duration_seconds": 60},
            "fallback": "scenes",
            "stages": [
                {
                    "name": "segment",
                    "segment_method": "fixed",
                    "chunk": {"min_seconds": 5, "max_seconds": 10},
                    "allow_partial": False,
                },
                {"name": "extract", "resource_class": "media", "concurrency": 2, "retry": FAST_RETRY},
                {"name": "analyze", "resource_class": "vision", "concurrency": 2, "retry": FAST_RETRY},
                {"name": "synthesize_text", "allow_partial": False},
                {"name": "synthesize_audio", "resource_class": "speech", "retry": FAST_RETRY},
            ],
        },
        "scenes": {
            "description": "Provider scenes",
            "stages": [
                {
                    "name": "segment",
                    "resource_class": "segmentation",
                    "segment_method": "scene",
                    "allow_partial": False,
                    "retry": FAST_RETRY,
                },
                {"name": "extract", "resource_class": "media", "concurrency": 2, "retry": FAST_RETRY},
                {"name": "analyze", "resource_class": "vision", "concurrency": 2, "retry": FAST_RETRY},
                {"name": "synthesize_text", "allow_partial": False},
                {"name": "synthesize_audio", "resource_class": "speech", "retry": FAST_RETRY},
            ],
        },
        "still": {
            "description": "Single images",
            "rule": {"name": "image-content", "media_kinds": ["image"]},
            "stages": [
                {"name": "analyze", "resource_class": "vision", "allow_partial": False, "retry": FAST_RETRY},
                {"name": "synthesize_text", "allow_partial": False},
                {"name": "synthesize_audio", "resource_class": "speech", "retry": FAST_RETRY},
            ],
        },
    },
}


# ═══════════════════════════════════════════════════════════════════════════
# Fake collaborators
# ═══════════════════════════════════════════════════════════════════════════


class _Scripted:
    """Per-key scripted failures: queued errors first, then `always`."""

    def __init__(self) -> None:
        self.errors: dict[str, list[BaseException]] = {}
        self.always: dict[str, BaseException] = {}
        self.calls: Counter = Counter()

    def fail_next(self, key: str, *errors: BaseException) -> None:
        self.errors.setdefault(key, []).extend(errors)

    def fail_always(self, key: str, error: BaseException) -> None:
        self.always[key] = error

    def _maybe_raise(self, key: str) -> None:
        self.calls[key] += 1
        queued = self.errors.get(key)
        if queued:
            raise queued.pop(0)
        if key in self.always:
            raise self.always[key]


class FakeStorage:
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}

    async def put(self, data: bytes, name: str, content_type: str | None = None) -> str:
        self.objects[name] = data
        return name

    async def get(self, locator: str) -> bytes:
        return self.objects[locator]


class FakeSegmentation(_Scripted):
    def __init__(self, scenes: list[Span] | None = None) -> None:
        super().__init__()
        self.scenes = scenes or [Span(0.0, 12.0), Span(12.0, 30.0), Span(30.0, 50.0)]

    async def segment(self, locator: str) -> list[Span]:
        self._maybe_raise(locator)
        return list(self.scenes)


class FakeMedia(_Scripted):
    """Extracts one keyframe per span; spans starting at or after `block_from` wait on `gate`."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()
        self.gate.set()
        self.block_from: float | None = None
        self.blocked = 0
        self.any_blocked = asyncio.Event()

    @staticmethod
    def locator_for(span: Span) -> str:
        return f"frames/{int(span.start):04d}.jpg"

    async def extract(self, locator: str, span: Span) -> MediaUnit:
        key = self.locator_for(span)
        self._maybe_raise(key)
        if self.block_from is not None and span.start >= self.block_from:
            self.blocked += 1
            self.any_blocked.set()
            await self.gate.wait()
        return MediaUnit(locator=key, content_type="image/jpeg", span=span)


class FakeVision(_Scripted):
    def __init__(self) -> None:
        super().__init__()
        self.in_flight = 0
        self.peak = 0
        self.delay = 0.0

    async def analyze(self, unit: MediaUnit, prompt: PromptConfig) -> str:
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            self._maybe_raise(unit.locator)
        finally:
            self.in_flight -= 1
        if unit.span is None:
            return "a red bicycle leans against a brick wall"
        return f"a person walks past marker {int(unit.span.start)}"


class FakeSpeech(_Scripted):
    async def synthesize(self, text: str, voice: VoiceConfig) -> bytes:
        self._maybe_raise(voice.voice_id)
        return f"audio:{voice.voice_id}:{text}".encode()


@dataclass
class FakeProviders:
    storage: FakeStorage = field(default_factory=FakeStorage)
    segmentation: FakeSegmentation = field(default_factory=FakeSegmentation)
    media: FakeMedia = field(default_factory=FakeMedia)
    vision: FakeVision = field(default_factory=FakeVision)
    speech: FakeSpeech = field(default_factory=FakeSpeech)


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(storage_dir=tmp_path / "storage", speech_chunk_chars=2500)


@pytest.fixture
def pipelines_config() -> PipelinesConfig:
    return PipelinesConfig.model_validate(TEST_PIPELINES)


@pytest.fixture
def shipped_config(settings) -> PipelinesConfig:
    """The pipelines.yaml shipped with the service."""
    return load_pipelines_config(settings)


@pytest.fixture
def providers() -> FakeProviders:
    return FakeProviders()


@pytest.fixture
def registry(providers, settings):
    return create_default_stages(
        segmentation=providers.segmentation,
        media=providers.media,
        vision=providers.vision,
        speech=providers.speech,
        storage=providers.storage,
        settings=settings,
    )


@pytest.fixture
def manager(pipelines_config, registry, settings) -> JobManager:
    return JobManager(pipelines_config, registry, settings, tracker=ProgressTracker())


@pytest.fixture
def short_video() -> dict:
    """50s video: five 10s windows on the 'windows' variant."""
    return {
        "location": "uploads/clip.mp4",
        "media_kind": "video",
        "size_bytes": 5_000_000,
        "duration_seconds": 50,
        "content_type": "video/mp4",
    }


def make_descriptor(**overrides) -> InputDescriptor:
    values = {
        "location": "uploads/talk.mp4",
        "media_kind": MediaKind.VIDEO,
        "size_bytes": 10_000_000,
        "duration_seconds": 120.0,
        "content_type": "video/mp4",
    }
    values.update(overrides)
    return InputDescriptor(**values)


def make_context(job_id: str = "job1", **overrides) -> StageContext:
    return StageContext(
        job_id=job_id,
        descriptor=make_descriptor(**overrides),
        options=SubmitOptions(),
    )
