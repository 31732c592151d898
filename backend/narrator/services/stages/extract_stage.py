"""
Extract stage: cut each span into an analyzable media unit.
"""

from dataclasses import replace

from narrator.models.pipelines import StageConfig, VariantConfig
from narrator.models.schemas import InputDescriptor
from narrator.services.providers.base import MediaProcessor, MediaUnit, Span
from narrator.services.stages.base import (
    BaseStage,
    StageContext,
    estimate_video_units,
)


class ExtractStage(BaseStage):
    """Extract one clip or keyframe per span via the media processor.

    Input (from context):
        - segment: list[Span]

    Output:
        list[MediaUnit] for the spans that were extracted, each tagged
        with the index of its span
    """

    name = "extract"
    depends_on = ["segment"]
    resource_class = "media"

    def __init__(self, media: MediaProcessor):
        self.media = media

    async def plan_units(self, context: StageContext, config: StageConfig) -> list[Span]:
        self.validate_context(context)
        return list(context.get_result("segment"))

    async def run_unit(self, unit: Span, context: StageContext, config: StageConfig) -> MediaUnit:
        return await self.media.extract(context.descriptor.location, unit)

    def collect(self, outputs, context: StageContext) -> list[MediaUnit]:
        return [replace(unit, segment_index=index) for index, unit in outputs]

    def describe_output(self, output: MediaUnit) -> str:
        return output.locator

    def estimate_units(self, descriptor: InputDescriptor, variant: VariantConfig) -> int:
        return estimate_video_units(descriptor, variant)
