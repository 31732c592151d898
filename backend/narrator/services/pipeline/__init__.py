"""
Pipeline module for narration jobs.

This package contains the per-attempt pipeline components:
- selector: Variant selection from input metadata and overrides
- scheduler: Bounded-concurrency unit scheduling within a stage

Example:
    from narrator.services.pipeline import PipelineSelector, StageScheduler

    selector = PipelineSelector(load_pipelines_config())
    selection = selector.select(descriptor)
"""

from .scheduler import StageRun, StageScheduler
from .selector import (
    REASON_AFTER_FAILURE,
    REASON_DEFAULT,
    REASON_OVERRIDE,
    PipelineSelector,
    Selection,
)

__all__ = [
    # Selection
    "PipelineSelector",
    "Selection",
    "REASON_OVERRIDE",
    "REASON_DEFAULT",
    "REASON_AFTER_FAILURE",
    # Scheduling
    "StageScheduler",
    "StageRun",
]
