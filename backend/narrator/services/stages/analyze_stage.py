"""
Analyze stage: describe each media unit with the vision provider.

For video variants the units are the extracted clips; for still images
the whole input is a single unit.
"""

from dataclasses import dataclass

from narrator.models.pipelines import StageConfig, StageName, VariantConfig
from narrator.models.schemas import InputDescriptor
from narrator.services.providers.base import (
    InvalidResponseError,
    MediaUnit,
    PromptConfig,
    VisionAnalysis,
)
from narrator.services.stages.base import (
    BaseStage,
    StageContext,
    estimate_video_units,
)
from narrator.utils.media_utils import guess_content_type
from narrator.utils.text_utils import clean_description


@dataclass(frozen=True)
class Description:
    """Cleaned description of one media unit."""

    unit: MediaUnit
    text: str


class AnalyzeStage(BaseStage):
    """Run vision analysis per media unit.

    Input (from context):
        - extract: list[MediaUnit] (video variants)
        - none for still images: the input itself is the unit

    Output:
        list[tuple[int, Description]] keyed by analyze unit index
    """

    name = "analyze"
    resource_class = "vision"

    def __init__(self, vision: VisionAnalysis, language: str = "en-US"):
        """Initialize analyze stage.

        Args:
            vision: Vision analysis provider
            language: Language the descriptions are requested in
        """
        self.vision = vision
        self.language = language

    async def plan_units(self, context: StageContext, config: StageConfig) -> list[MediaUnit]:
        if context.has_result(StageName.EXTRACT.value):
            return list(context.get_result(StageName.EXTRACT.value))

        descriptor = context.descriptor
        return [
            MediaUnit(
                locator=descriptor.location,
                content_type=descriptor.content_type or guess_content_type(descriptor.location),
            )
        ]

    async def run_unit(self, unit: MediaUnit, context: StageContext, config: StageConfig) -> Description:
        prompt = PromptConfig(
            detail_level=context.options.detail_level.value,
            language=self.language,
        )
        text = clean_description(await self.vision.analyze(unit, prompt))
        if not text:
            raise InvalidResponseError("vision returned an empty description", provider="vision")
        return Description(unit=unit, text=text)

    def collect(self, outputs, context: StageContext) -> list[tuple[int, Description]]:
        return list(outputs)

    def describe_output(self, output: Description) -> str:
        return output.text

    def estimate_units(self, descriptor: InputDescriptor, variant: VariantConfig) -> int:
        if variant.get_stage(StageName.SEGMENT) is None:
            return 1
        return estimate_video_units(descriptor, variant)
