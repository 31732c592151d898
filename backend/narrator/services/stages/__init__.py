"""
Pipeline stages for narration jobs.

Each stage is a thin adapter over one external collaborator. Stages plan
units and run one unit at a time; the StageScheduler wraps every unit in
retries, concurrency permits and the stage timeout.

Usage:
    from narrator.services.stages import create_default_stages

    registry = create_default_stages(
        segmentation=seg, media=media, vision=vision,
        speech=speech, storage=storage, settings=settings,
    )
    stages = registry.build_sequence(variant.stage_names)

Adding new stages:
    1. Create a new file: stages/my_stage.py
    2. Subclass BaseStage, implement plan_units() and run_unit()
    3. Add the name to StageName and register it in create_default_stages()
"""

from narrator.config import Settings
from narrator.services.providers.base import (
    MediaProcessor,
    Segmentation,
    SpeechSynthesis,
    Storage,
    VisionAnalysis,
    VoiceConfig,
)
from narrator.services.stages.analyze_stage import AnalyzeStage, Description
from narrator.services.stages.base import (
    BaseStage,
    StageContext,
    StageRegistry,
    estimate_video_units,
)
from narrator.services.stages.compose_stage import (
    ComposeStage,
    NarrationText,
    SpeechChunk,
    compile_narration,
)
from narrator.services.stages.extract_stage import ExtractStage
from narrator.services.stages.narrate_stage import NarrateStage
from narrator.services.stages.segment_stage import SegmentStage, fixed_windows, merge_scenes


__all__ = [
    # Base classes
    "BaseStage",
    "StageContext",
    "StageRegistry",
    "estimate_video_units",
    # Stage implementations
    "SegmentStage",
    "ExtractStage",
    "AnalyzeStage",
    "ComposeStage",
    "NarrateStage",
    # Stage outputs
    "Description",
    "NarrationText",
    "SpeechChunk",
    "compile_narration",
    "fixed_windows",
    "merge_scenes",
    # Factory function
    "create_default_stages",
]


def create_default_stages(
    segmentation: Segmentation,
    media: MediaProcessor,
    vision: VisionAnalysis,
    speech: SpeechSynthesis,
    storage: Storage,
    settings: Settings,
    registry: StageRegistry | None = None,
) -> StageRegistry:
    """Create and register all default pipeline stages.

    Args:
        segmentation: Scene segmentation provider
        media: Media processor (clip/keyframe extraction)
        vision: Vision analysis provider
        speech: Speech synthesis provider
        storage: Storage for produced audio
        settings: Application settings
        registry: Optional registry to use (creates new if None)

    Returns:
        Registry with all stages registered
    """
    if registry is None:
        registry = StageRegistry()

    voice = VoiceConfig(voice_id=settings.voice_id, language=settings.voice_language)

    registry.register(SegmentStage(segmentation))
    registry.register(ExtractStage(media))
    registry.register(AnalyzeStage(vision, language=settings.voice_language))
    registry.register(ComposeStage(max_chunk_chars=settings.speech_chunk_chars))
    registry.register(NarrateStage(speech, storage, voice))

    return registry
