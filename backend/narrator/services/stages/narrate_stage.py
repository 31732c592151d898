"""
Synthesize-audio stage: render speech chunks and store the audio.
"""

import logging
import math

from narrator.models.pipelines import StageConfig, VariantConfig
from narrator.models.schemas import AudioSegment, InputDescriptor
from narrator.services.providers.base import SpeechSynthesis, Storage, VoiceConfig
from narrator.services.stages.base import BaseStage, StageContext, estimate_video_units
from narrator.services.stages.compose_stage import SpeechChunk
from narrator.utils.text_utils import SPEECH_CHUNK_CHARS

logger = logging.getLogger(__name__)

# Rough length of one cleaned description, for unit estimates
AVERAGE_DESCRIPTION_CHARS = 300


class NarrateStage(BaseStage):
    """Synthesize each speech chunk and put the audio in storage.

    Skipped when the caller submitted with generate_audio=false.

    Input (from context):
        - synthesize_text: NarrationText

    Output:
        list[AudioSegment] in chunk order
    """

    name = "synthesize_audio"
    depends_on = ["synthesize_text"]
    resource_class = "speech"

    def __init__(self, speech: SpeechSynthesis, storage: Storage, voice: VoiceConfig):
        """Initialize narrate stage.

        Args:
            speech: Speech synthesis provider
            storage: Storage for produced audio
            voice: Default voice (submit options may override voice_id)
        """
        self.speech = speech
        self.storage = storage
        self.voice = voice

    def should_skip(self, context: StageContext) -> bool:
        return not context.options.generate_audio

    async def plan_units(self, context: StageContext, config: StageConfig) -> list[SpeechChunk]:
        self.validate_context(context)
        return list(context.get_result("synthesize_text").speech_chunks)

    async def run_unit(self, unit: SpeechChunk, context: StageContext, config: StageConfig) -> AudioSegment:
        voice = self.voice
        if context.options.voice_id:
            voice = VoiceConfig(
                voice_id=context.options.voice_id,
                language=voice.language,
                output_format=voice.output_format,
            )

        audio = await self.speech.synthesize(unit.text, voice)
        locator = await self.storage.put(
            audio,
            f"{context.job_id}/audio/{unit.index:03d}.{voice.output_format}",
            content_type=f"audio/{voice.output_format}",
        )
        logger.debug(
            f"[{context.job_id}] Chunk {unit.index}: {len(unit.text)} chars -> "
            f"{len(audio)} bytes"
        )
        return AudioSegment(index=unit.index, locator=locator, characters=len(unit.text))

    def describe_output(self, output: AudioSegment) -> str:
        return output.locator

    def estimate_units(self, descriptor: InputDescriptor, variant: VariantConfig) -> int:
        descriptions = estimate_video_units(descriptor, variant)
        return max(1, math.ceil(descriptions * AVERAGE_DESCRIPTION_CHARS / SPEECH_CHUNK_CHARS))
