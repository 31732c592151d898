"""
Pydantic models for the narration orchestrator.

Exports:
    - Pipeline configuration models (PipelinesConfig, VariantConfig, etc.)
"""

from narrator.models.pipelines import (
    ChunkBounds,
    PipelinesConfig,
    RetryPolicyConfig,
    SegmentMethod,
    SelectionRule,
    StageConfig,
    StageName,
    VariantConfig,
)

__all__ = [
    # Pipeline configuration
    "ChunkBounds",
    "PipelinesConfig",
    "RetryPolicyConfig",
    "SegmentMethod",
    "SelectionRule",
    "StageConfig",
    "StageName",
    "VariantConfig",
]
