"""
Stage abstraction for narration pipelines.

Each stage is a thin adapter over one external capability. A stage:
- Has a unique name matching a StageName in the pipeline configuration
- Declares the stages it depends on (depends_on)
- Plans its units from earlier stage results (plan_units)
- Runs one unit at a time (run_unit); the StageScheduler supplies
  retries, permits, concurrency and timeouts around each call
- Folds the succeeded unit outputs into the stage result (collect)

Example:
    class AnalyzeStage(BaseStage):
        name = "analyze"
        resource_class = "vision"

        async def plan_units(self, context, config):
            return context.get_result("extract")

        async def run_unit(self, unit, context, config):
            return await self.vision.analyze(unit, PromptConfig())
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from narrator.errors import StageError
from narrator.models.pipelines import SegmentMethod, StageConfig, StageName, VariantConfig
from narrator.models.schemas import InputDescriptor, SubmitOptions
from narrator.utils.media_utils import estimate_duration_from_size

# Typical scene length used to estimate unit counts before segmentation
AVERAGE_SCENE_SECONDS = 10.0


@dataclass(frozen=True)
class StageContext:
    """Job input plus the collected results of stages that already ran.

    Frozen: the scheduler threads a new context through the sequence with
    with_result() after each stage finishes.

    Attributes:
        job_id: Owning job
        descriptor: Submitted input metadata
        options: Submit options
        results: Stage name -> collected result
    """

    job_id: str
    descriptor: InputDescriptor
    options: SubmitOptions
    results: Mapping[str, Any] = field(default_factory=dict)

    def get_result(self, stage_name: str) -> Any:
        try:
            return self.results[stage_name]
        except KeyError:
            raise KeyError(
                f"No result for stage '{stage_name}' (have: {sorted(self.results)})"
            ) from None

    def has_result(self, stage_name: str) -> bool:
        return stage_name in self.results

    def with_result(self, stage_name: str, result: Any) -> "StageContext":
        return replace(self, results={**self.results, stage_name: result})


class BaseStage(ABC):
    """Adapter between the scheduler and one collaborator.

    A concrete stage sets `name` and implements plan_units() and
    run_unit(). `depends_on` lists the stages whose results it reads and
    `resource_class` names the permit pool used when the variant's stage
    config does not. The remaining hooks have workable defaults.
    """

    name: str
    depends_on: list[str] = []
    resource_class: str | None = None

    @abstractmethod
    async def plan_units(self, context: StageContext, config: StageConfig) -> list[Any]:
        """Plan the units of this stage.

        Args:
            context: Context with results from previous stages
            config: Stage configuration of the running variant

        Returns:
            One input per unit; unit indices are 1-based positions
        """

    @abstractmethod
    async def run_unit(self, unit: Any, context: StageContext, config: StageConfig) -> Any:
        """Process one unit.

        Called once per attempt; must not hold state across attempts.

        Raises:
            ProviderError: On collaborator failure (retryable or not)
        """

    def should_skip(self, context: StageContext) -> bool:
        """Check if the stage should be skipped for this job."""
        return False

    def estimate_units(self, descriptor: InputDescriptor, variant: VariantConfig) -> int:
        """Estimate the unit count before the stage plans its units."""
        return 1

    def collect(self, outputs: list[tuple[int, Any]], context: StageContext) -> Any:
        """Fold succeeded unit outputs (index, output) into the stage result.

        Default: the outputs in index order, without indices.
        """
        return [output for _, output in outputs]

    def describe_output(self, output: Any) -> str | None:
        """Payload reference recorded on the unit result."""
        return None

    def validate_context(self, context: StageContext) -> None:
        """Raise StageError unless every stage in depends_on has a result."""
        absent = [dep for dep in self.depends_on if not context.has_result(dep)]
        if absent:
            raise StageError(self.name, f"no result from {absent}")


def estimate_video_units(descriptor: InputDescriptor, variant: VariantConfig) -> int:
    """Estimate how many spans segmentation will produce.

    Uses the known duration (or a size-based estimate) divided by the
    expected chunk length of the variant's segment method.
    """
    duration = descriptor.duration_seconds
    if duration is None:
        duration = estimate_duration_from_size(descriptor.size_bytes)

    segment = variant.get_stage(StageName.SEGMENT)
    if segment is None:
        return 1
    if segment.segment_method == SegmentMethod.SCENE or segment.chunk is None:
        chunk_seconds = AVERAGE_SCENE_SECONDS
    elif segment.segment_method == SegmentMethod.FIXED:
        chunk_seconds = segment.chunk.max_seconds - segment.chunk.overlap_seconds
    else:
        chunk_seconds = (segment.chunk.min_seconds + segment.chunk.max_seconds) / 2
    return max(1, round(duration / chunk_seconds))


class StageRegistry:
    """Stage instances by name.

    build_sequence() turns a variant's stage list into stage objects and
    rejects orders where a stage would read a result nobody produced yet.
    """

    def __init__(self) -> None:
        self._stages: dict[str, BaseStage] = {}

    def register(self, stage: BaseStage) -> None:
        """Add a stage.

        Raises:
            ValueError: If the name is taken
        """
        if stage.name in self._stages:
            raise ValueError(f"Stage '{stage.name}' already registered")
        self._stages[stage.name] = stage

    def get(self, name: str) -> BaseStage:
        stage = self._stages.get(name)
        if stage is None:
            raise KeyError(f"Unknown stage '{name}' (registered: {sorted(self._stages)})")
        return stage

    def build_sequence(self, stage_names: list[str]) -> list[BaseStage]:
        """Resolve stages for a variant, in the given order.

        Raises:
            KeyError: If any stage is not registered
            ValueError: If a stage runs before one of its dependencies
        """
        stages = [self.get(name) for name in stage_names]
        seen: set[str] = set()
        for stage in stages:
            missing = [dep for dep in stage.depends_on if dep not in seen]
            if missing:
                raise ValueError(
                    f"Stage '{stage.name}' requires {missing} to run before it"
                )
            seen.add(stage.name)
        return stages

    def __contains__(self, name: str) -> bool:
        return name in self._stages

    def __len__(self) -> int:
        return len(self._stages)
