"""
Pipeline variant selection.

Maps input metadata (size, duration, media kind) and an optional caller
override to one variant of the closed pipeline configuration.
"""

import logging
from dataclasses import dataclass

from narrator.errors import ErrorCode, InvalidInputError
from narrator.models.pipelines import PipelinesConfig, VariantConfig
from narrator.models.schemas import InputDescriptor

logger = logging.getLogger(__name__)

REASON_OVERRIDE = "override"
REASON_DEFAULT = "fallback-default"
REASON_AFTER_FAILURE = "fallback-after-failure"


@dataclass(frozen=True)
class Selection:
    """
    Result of a selection.

    Attributes:
        variant: Selected variant name
        reason: "override", a rule name, "fallback-default" or
            "fallback-after-failure"
    """

    variant: str
    reason: str

    @property
    def is_override(self) -> bool:
        return self.reason == REASON_OVERRIDE


class PipelineSelector:
    """
    Pure, deterministic variant selection.

    Rules are checked in declaration order; the first match wins. Rules
    are validated mutually exclusive when the configuration loads, so
    order never changes the outcome.

    Example:
        selector = PipelineSelector(load_pipelines_config())
        selection = selector.select(descriptor)
        # Selection(variant="bulk", reason="large-content")

        selection = selector.select(descriptor, override="primary")
        # Selection(variant="primary", reason="override")
    """

    def __init__(self, config: PipelinesConfig):
        """
        Initialize selector.

        Args:
            config: Validated pipeline configuration
        """
        self.config = config

    def variant(self, name: str) -> VariantConfig:
        """
        Get a variant's configuration.

        Raises:
            KeyError: If the variant does not exist
        """
        if name not in self.config.variants:
            raise KeyError(
                f"Variant '{name}' not found. "
                f"Available: {list(self.config.variants.keys())}"
            )
        return self.config.variants[name]

    def select(self, descriptor: InputDescriptor, override: str | None = None) -> Selection:
        """
        Select a variant for an input.

        Args:
            descriptor: Input metadata
            override: Caller-requested variant name

        Returns:
            Selection with variant and reason

        Raises:
            InvalidInputError: If the override names an unknown variant
        """
        if override is not None:
            if override not in self.config.variants:
                raise InvalidInputError(
                    f"unknown pipeline override '{override}'",
                    code=ErrorCode.INVALID_INPUT,
                )
            return Selection(variant=override, reason=REASON_OVERRIDE)

        for name, rule in self.config.rules():
            if rule.matches(descriptor):
                return Selection(variant=name, reason=rule.name)

        return Selection(variant=self.config.default_variant, reason=REASON_DEFAULT)

    def select_fallback(self, failed_variant: str) -> Selection | None:
        """
        Variant to retry with after a stage-fatal failure.

        Args:
            failed_variant: Variant of the failed attempt

        Returns:
            Selection for the configured fallback, or None if there is none
        """
        fallback = self.variant(failed_variant).fallback
        if fallback is None:
            return None
        return Selection(variant=fallback, reason=REASON_AFTER_FAILURE)

    def validate(self, variant: str, descriptor: InputDescriptor) -> list[str]:
        """
        Warnings for running an input on a variant whose rule it falls outside.

        Used for override diagnostics; never blocks a submission.

        Args:
            variant: Variant name
            descriptor: Input metadata

        Returns:
            Human-readable warnings (empty if the input fits)
        """
        rule = self.variant(variant).rule
        if rule is None:
            return []

        warnings = []
        if descriptor.media_kind not in rule.media_kinds:
            warnings.append(
                f"Variant '{variant}' is intended for "
                f"{[kind.value for kind in rule.media_kinds]} media, "
                f"got {descriptor.media_kind.value}"
            )
        if rule.max_size_bytes is not None and descriptor.size_bytes > rule.max_size_bytes:
            warnings.append(
                f"Input size {descriptor.size_bytes / 1024 / 1024:.1f} MB exceeds "
                f"variant '{variant}' limit of {rule.max_size_bytes / 1024 / 1024:.1f} MB"
            )
        if (
            rule.max_duration_seconds is not None
            and descriptor.duration_seconds is not None
            and descriptor.duration_seconds > rule.max_duration_seconds
        ):
            warnings.append(
                f"Input duration {descriptor.duration_seconds:.0f}s exceeds "
                f"variant '{variant}' limit of {rule.max_duration_seconds:.0f}s"
            )
        return warnings

    def describe(self) -> list[dict]:
        """
        Summary of all variants for GET /api/pipelines.

        Returns:
            One dict per variant: name, description, stages, rule, fallback,
            is_default
        """
        result = []
        for name, variant in self.config.variants.items():
            rule = variant.rule
            result.append({
                "name": name,
                "description": variant.description,
                "stages": variant.stage_names,
                "rule": rule.model_dump(mode="json", exclude_none=True) if rule else None,
                "fallback": variant.fallback,
                "is_default": name == self.config.default_variant,
            })
        return result
