"""
Synthesize-text stage: compile descriptions into narration text.

Builds the timestamped and flowing texts from the analyzed units and
pre-chunks the speech text below the speech provider's input limit.
"""

from dataclasses import dataclass, field

from narrator.models.pipelines import StageConfig
from narrator.models.schemas import NarrationFragment
from narrator.services.stages.analyze_stage import Description
from narrator.services.stages.base import BaseStage, StageContext
from narrator.utils.text_utils import (
    SPEECH_CHUNK_CHARS,
    compile_clean_text,
    prepare_for_speech,
    split_for_speech,
)


@dataclass(frozen=True)
class SpeechChunk:
    """One pre-chunked piece of speech text."""

    index: int
    text: str


@dataclass
class NarrationText:
    """Compiled narration of one attempt."""

    fragments: list[NarrationFragment]
    timestamped_text: str
    clean_text: str
    speech_chunks: list[SpeechChunk] = field(default_factory=list)


def compile_narration(
    descriptions: list[tuple[int, Description]],
    max_chunk_chars: int = SPEECH_CHUNK_CHARS,
) -> NarrationText:
    """Compile analyzed units into narration text.

    Args:
        descriptions: (analyze unit index, Description) in index order;
            a fragment takes the span index of its unit when it has one
        max_chunk_chars: Speech chunk limit

    Returns:
        NarrationText with one fragment per description
    """
    fragments = []
    for index, description in descriptions:
        span = description.unit.span
        fragments.append(NarrationFragment(
            index=description.unit.segment_index or index,
            start=span.start if span else None,
            end=span.end if span else None,
            text=description.text,
        ))

    timestamped_text = "\n\n".join(
        f"[{fragment.timestamp}] {fragment.text}" if fragment.timestamp else fragment.text
        for fragment in fragments
    )
    clean_text = compile_clean_text([fragment.text for fragment in fragments])
    chunks = split_for_speech(prepare_for_speech(clean_text), max_chunk_chars)

    return NarrationText(
        fragments=fragments,
        timestamped_text=timestamped_text,
        clean_text=clean_text,
        speech_chunks=[SpeechChunk(index=i, text=text) for i, text in enumerate(chunks, start=1)],
    )


class ComposeStage(BaseStage):
    """Compile narration text (pure, one unit).

    Input (from context):
        - analyze: list[tuple[int, Description]]

    Output:
        NarrationText
    """

    name = "synthesize_text"
    depends_on = ["analyze"]

    def __init__(self, max_chunk_chars: int = SPEECH_CHUNK_CHARS):
        self.max_chunk_chars = max_chunk_chars

    async def plan_units(self, context: StageContext, config: StageConfig) -> list:
        self.validate_context(context)
        return [context.get_result("analyze")]

    async def run_unit(self, unit, context: StageContext, config: StageConfig) -> NarrationText:
        return compile_narration(unit, self.max_chunk_chars)

    def collect(self, outputs, context: StageContext) -> NarrationText:
        _, narration = outputs[0]
        return narration

    def describe_output(self, output: NarrationText) -> str:
        return f"{len(output.fragments)} fragments, {len(output.clean_text)} chars"
