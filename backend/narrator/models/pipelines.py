"""
Pipeline variant configuration models.

The whole pipeline configuration is a closed structure: every model
forbids unknown keys, and cross-field rules (stage order, resource
classes, rule exclusivity, fallback targets) are checked when the
configuration is loaded, not when a job runs.
"""

import math
import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from narrator.models.schemas import InputDescriptor, MediaKind


class StageName(str, Enum):
    """Pipeline stages in canonical order."""

    SEGMENT = "segment"
    EXTRACT = "extract"
    ANALYZE = "analyze"
    SYNTHESIZE_TEXT = "synthesize_text"
    SYNTHESIZE_AUDIO = "synthesize_audio"


# Canonical order; a variant's stage list must be a subsequence of this
STAGE_ORDER = list(StageName)

# Stages that must appear earlier in the same variant
STAGE_DEPENDENCIES: dict[StageName, list[StageName]] = {
    StageName.SEGMENT: [],
    StageName.EXTRACT: [StageName.SEGMENT],
    StageName.ANALYZE: [],
    StageName.SYNTHESIZE_TEXT: [StageName.ANALYZE],
    StageName.SYNTHESIZE_AUDIO: [StageName.SYNTHESIZE_TEXT],
}


class SegmentMethod(str, Enum):
    """How the segment stage produces spans.

    - scene: provider scene detection, one unit per detected scene
    - fixed: fixed windows computed from duration and chunk bounds
    - scene_merged: provider scenes merged into chunks within bounds
    """

    SCENE = "scene"
    FIXED = "fixed"
    SCENE_MERGED = "scene_merged"


class _Closed(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class RetryPolicyConfig(_Closed):
    """Retry policy for calls made by one stage."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=10.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)
    jitter: float = Field(default=0.2, ge=0, le=1)

    @model_validator(mode="after")
    def _check_delays(self) -> "RetryPolicyConfig":
        if self.max_delay < self.base_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})"
            )
        return self


class ChunkBounds(_Closed):
    """Bounds for time-based chunks, in seconds."""

    min_seconds: float = Field(gt=0)
    max_seconds: float = Field(gt=0)
    overlap_seconds: float = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "ChunkBounds":
        if self.min_seconds > self.max_seconds:
            raise ValueError("chunk min_seconds must be <= max_seconds")
        if self.overlap_seconds >= self.min_seconds:
            raise ValueError("chunk overlap_seconds must be < min_seconds")
        return self


class StageConfig(_Closed):
    """Configuration for one stage of a variant."""

    name: StageName
    concurrency: int = Field(default=1, ge=1, le=64)
    resource_class: str | None = None
    timeout_seconds: float = Field(default=600, gt=0)
    allow_partial: bool = True
    retry: RetryPolicyConfig = Field(default_factory=RetryPolicyConfig)
    segment_method: SegmentMethod | None = None
    chunk: ChunkBounds | None = None

    @model_validator(mode="after")
    def _check_segment_options(self) -> "StageConfig":
        if self.name == StageName.SEGMENT:
            if self.segment_method is None:
                raise ValueError("segment stage requires segment_method")
            if self.segment_method != SegmentMethod.SCENE and self.chunk is None:
                raise ValueError(
                    f"segment_method '{self.segment_method.value}' requires chunk bounds"
                )
        elif self.segment_method is not None or self.chunk is not None:
            raise ValueError(
                f"segment_method/chunk are only valid on the segment stage, not '{self.name.value}'"
            )
        return self


class SelectionRule(_Closed):
    """
    Threshold rule that auto-selects a variant.

    All bounds are inclusive. A bound on an attribute whose value is
    unknown (duration not probed) never matches.
    """

    name: str = Field(min_length=1)
    media_kinds: list[MediaKind] = Field(default_factory=lambda: [MediaKind.VIDEO])
    min_size_bytes: int | None = Field(default=None, ge=0)
    max_size_bytes: int | None = Field(default=None, ge=0)
    min_duration_seconds: float | None = Field(default=None, ge=0)
    max_duration_seconds: float | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_ranges(self) -> "SelectionRule":
        if not self.media_kinds:
            raise ValueError(f"rule '{self.name}' must list at least one media kind")
        for low, high, label in (
            (self.min_size_bytes, self.max_size_bytes, "size"),
            (self.min_duration_seconds, self.max_duration_seconds, "duration"),
        ):
            if low is not None and high is not None and low > high:
                raise ValueError(f"rule '{self.name}': min {label} > max {label}")
        return self

    def matches(self, descriptor: InputDescriptor) -> bool:
        """Check whether a descriptor falls inside this rule's bounds."""
        if descriptor.media_kind not in self.media_kinds:
            return False
        if not _in_range(descriptor.size_bytes, self.min_size_bytes, self.max_size_bytes):
            return False
        return _in_range(
            descriptor.duration_seconds,
            self.min_duration_seconds,
            self.max_duration_seconds,
        )

    def overlaps(self, other: "SelectionRule") -> bool:
        """Check whether some descriptor could match both rules."""
        if not set(self.media_kinds) & set(other.media_kinds):
            return False
        return _ranges_overlap(
            (self.min_size_bytes, self.max_size_bytes),
            (other.min_size_bytes, other.max_size_bytes),
        ) and _ranges_overlap(
            (self.min_duration_seconds, self.max_duration_seconds),
            (other.min_duration_seconds, other.max_duration_seconds),
        )


class VariantConfig(_Closed):
    """One pipeline variant: stage sequence, selection rule, fallback."""

    description: str = ""
    stages: list[StageConfig] = Field(min_length=1)
    rule: SelectionRule | None = None
    fallback: str | None = None

    @model_validator(mode="after")
    def _check_stage_order(self) -> "VariantConfig":
        names = [stage.name for stage in self.stages]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate stages in variant: {[n.value for n in names]}")

        positions = [STAGE_ORDER.index(name) for name in names]
        if positions != sorted(positions):
            raise ValueError(
                f"stages out of order: {[n.value for n in names]}, "
                f"expected order {[n.value for n in STAGE_ORDER]}"
            )

        for name in names:
            missing = [dep for dep in STAGE_DEPENDENCIES[name] if dep not in names]
            if missing:
                raise ValueError(
                    f"stage '{name.value}' requires {[m.value for m in missing]}"
                )
        return self

    @property
    def stage_names(self) -> list[str]:
        """Stage names in execution order."""
        return [stage.name.value for stage in self.stages]

    def get_stage(self, name: StageName | str) -> StageConfig | None:
        """Get stage config by name."""
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None


class PipelinesConfig(_Closed):
    """Closed set of pipeline variants plus shared resource pools."""

    default_variant: str
    resource_limits: dict[str, int] = Field(default_factory=dict)
    variants: dict[str, VariantConfig] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_consistency(self) -> "PipelinesConfig":
        for name in self.variants:
            if not re.fullmatch(r"[a-z][a-z0-9_-]*", name):
                raise ValueError(f"invalid variant name: '{name}'")

        if self.default_variant not in self.variants:
            raise ValueError(
                f"default_variant '{self.default_variant}' is not a defined variant"
            )

        for resource, limit in self.resource_limits.items():
            if limit < 1:
                raise ValueError(f"resource '{resource}' limit must be >= 1")

        for name, variant in self.variants.items():
            for stage in variant.stages:
                if stage.resource_class and stage.resource_class not in self.resource_limits:
                    raise ValueError(
                        f"variant '{name}' stage '{stage.name.value}' uses unknown "
                        f"resource class '{stage.resource_class}'"
                    )
            if variant.fallback is not None:
                if variant.fallback not in self.variants:
                    raise ValueError(
                        f"variant '{name}' falls back to unknown variant '{variant.fallback}'"
                    )
                if variant.fallback == name:
                    raise ValueError(f"variant '{name}' cannot fall back to itself")
                if self.variants[variant.fallback].fallback == name:
                    raise ValueError(
                        f"fallback cycle between '{name}' and '{variant.fallback}'"
                    )

        ruled = self.rules()
        for i, (name_a, rule_a) in enumerate(ruled):
            for name_b, rule_b in ruled[i + 1:]:
                if rule_a.overlaps(rule_b):
                    raise ValueError(
                        f"selection rules overlap: '{rule_a.name}' ({name_a}) "
                        f"and '{rule_b.name}' ({name_b})"
                    )
        return self

    def rules(self) -> list[tuple[str, SelectionRule]]:
        """Selection rules in declaration order as (variant, rule) pairs."""
        return [
            (name, variant.rule)
            for name, variant in self.variants.items()
            if variant.rule is not None
        ]


def _in_range(value: float | None, low: float | None, high: float | None) -> bool:
    if low is None and high is None:
        return True
    if value is None:
        return False
    if low is not None and value < low:
        return False
    if high is not None and value > high:
        return False
    return True


def _ranges_overlap(
    a: tuple[float | None, float | None],
    b: tuple[float | None, float | None],
) -> bool:
    a_low = -math.inf if a[0] is None else a[0]
    a_high = math.inf if a[1] is None else a[1]
    b_low = -math.inf if b[0] is None else b[0]
    b_high = math.inf if b[1] is None else b[1]
    return a_low <= b_high and b_low <= a_high
