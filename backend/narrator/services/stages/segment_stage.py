"""
Segment stage: split a video into time spans.

Three methods, chosen per variant:
- fixed: windows computed from the duration, no provider call
- scene: provider scene detection, one span per scene
- scene_merged: provider scenes merged into chunks within bounds
"""

import logging
import math

from narrator.models.pipelines import ChunkBounds, SegmentMethod, StageConfig, VariantConfig
from narrator.models.schemas import InputDescriptor
from narrator.services.providers.base import InvalidResponseError, Segmentation, Span
from narrator.services.stages.base import BaseStage, StageContext
from narrator.utils.media_utils import estimate_duration_from_size

logger = logging.getLogger(__name__)


class SegmentStage(BaseStage):
    """Produce the spans later stages extract and analyze.

    The whole segmentation is one unit, so a throttled provider call is
    retried as a unit.

    Output:
        list[Span] in timeline order
    """

    name = "segment"

    def __init__(self, segmentation: Segmentation):
        """Initialize segment stage.

        Args:
            segmentation: Scene segmentation provider
        """
        self.segmentation = segmentation

    async def plan_units(self, context: StageContext, config: StageConfig) -> list[str]:
        return [context.descriptor.location]

    async def run_unit(self, unit: str, context: StageContext, config: StageConfig) -> list[Span]:
        method = config.segment_method
        duration = _duration_of(context.descriptor)

        if method == SegmentMethod.FIXED:
            spans = fixed_windows(duration, config.chunk)
        else:
            scenes = await self.segmentation.segment(unit)
            if not scenes:
                if context.descriptor.duration_seconds is None:
                    raise InvalidResponseError(
                        "segmentation returned no scenes", provider="segmentation"
                    )
                scenes = [Span(0.0, context.descriptor.duration_seconds)]
            scenes = sorted(scenes, key=lambda span: span.start)
            if method == SegmentMethod.SCENE_MERGED:
                spans = merge_scenes(scenes, config.chunk)
            else:
                spans = scenes

        logger.info(
            f"[{context.job_id}] Segmented into {len(spans)} spans ({method.value})"
        )
        return spans

    def collect(self, outputs, context: StageContext) -> list[Span]:
        _, spans = outputs[0]
        return spans

    def describe_output(self, output: list[Span]) -> str:
        return f"{len(output)} spans"

    def estimate_units(self, descriptor: InputDescriptor, variant: VariantConfig) -> int:
        return 1


def fixed_windows(duration: float, bounds: ChunkBounds) -> list[Span]:
    """Cut [0, duration) into windows of max_seconds with the given overlap.

    A trailing window shorter than min_seconds is folded into the
    previous one.

    Args:
        duration: Media duration in seconds
        bounds: Chunk bounds

    Returns:
        Spans covering the whole duration
    """
    if duration <= 0:
        return [Span(0.0, bounds.min_seconds)]

    step = bounds.max_seconds - bounds.overlap_seconds
    spans: list[Span] = []
    start = 0.0
    while start < duration:
        end = min(start + bounds.max_seconds, duration)
        if spans and end - start < bounds.min_seconds:
            spans[-1] = Span(spans[-1].start, end)
            break
        spans.append(Span(start, end))
        if end >= duration:
            break
        start += step
    return spans


def merge_scenes(scenes: list[Span], bounds: ChunkBounds) -> list[Span]:
    """Merge consecutive scenes into chunks between min and max seconds.

    Scenes longer than max_seconds are first cut into equal windows no
    longer than max_seconds. Short scenes are then joined forward. A
    short chunk that cannot absorb the next piece is folded into the
    previous chunk, or, when that would exceed max_seconds, the pair is
    re-cut into two equal halves. Both limits hold whenever
    min_seconds <= max_seconds / 2; only media shorter than min_seconds
    yields a chunk under the minimum.

    Args:
        scenes: Provider scenes in timeline order
        bounds: Chunk bounds

    Returns:
        Merged spans in timeline order
    """
    pieces: list[Span] = []
    for scene in scenes:
        pieces.extend(even_windows(scene, bounds.max_seconds))

    merged: list[Span] = []
    current: Span | None = None
    for piece in pieces:
        if current is None:
            current = piece
        elif current.duration >= bounds.min_seconds:
            merged.append(current)
            current = piece
        elif piece.end - current.start <= bounds.max_seconds:
            current = Span(current.start, piece.end)
        elif merged and current.end - merged[-1].start <= bounds.max_seconds:
            merged[-1] = Span(merged[-1].start, current.end)
            current = piece
        else:
            first, current = even_windows(Span(current.start, piece.end), bounds.max_seconds)
            merged.append(first)

    if current is None:
        return merged
    if not merged or current.duration >= bounds.min_seconds:
        merged.append(current)
    elif current.end - merged[-1].start <= bounds.max_seconds:
        merged[-1] = Span(merged[-1].start, current.end)
    else:
        merged[-1:] = even_windows(Span(merged[-1].start, current.end), bounds.max_seconds)
    return merged


def even_windows(span: Span, max_seconds: float) -> list[Span]:
    """Cut a span into the fewest equal windows no longer than max_seconds."""
    count = max(1, math.ceil(span.duration / max_seconds))
    width = span.duration / count
    edges = [span.start + i * width for i in range(count)] + [span.end]
    return [Span(start, end) for start, end in zip(edges, edges[1:])]


def _duration_of(descriptor: InputDescriptor) -> float:
    if descriptor.duration_seconds is not None:
        return descriptor.duration_seconds
    return estimate_duration_from_size(descriptor.size_bytes)
