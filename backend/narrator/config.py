"""
Application configuration and settings.
"""

from functools import lru_cache
from pathlib import Path

import yaml
from pydantic_settings import BaseSettings

from narrator.models.pipelines import PipelinesConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Collaborator services
    segmentation_url: str = "http://localhost:8810"
    media_url: str = "http://localhost:8811"
    speech_url: str = "http://localhost:8812"
    vision_model: str = "claude-sonnet-4-5"
    vision_max_tokens: int = 1024
    provider_timeout: int = 120
    voice_id: str = "Joanna"
    voice_language: str = "en-US"

    # Paths
    storage_dir: Path = Path("/data/storage")
    config_dir: Path = Path(__file__).resolve().parents[1] / "config"
    pipelines_file: str = "pipelines.yaml"

    # Input limits
    max_input_size_mb: int = 500
    max_input_duration_seconds: int = 3600
    max_batch_items: int = 100

    # Pipeline behaviour
    speech_chunk_chars: int = 2500  # Speech providers reject ~3000+ chars
    pipeline_fallback_enabled: bool = True

    # Logging
    log_level: str = "INFO"
    log_format: str = "structured"  # "simple" or "structured"
    log_file: Path | None = None

    # Per-module log levels (optional overrides)
    log_level_job_manager: str | None = None
    log_level_retry: str | None = None
    log_level_scheduler: str | None = None
    log_level_providers: str | None = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def max_input_size_bytes(self) -> int:
        """Maximum accepted input size in bytes."""
        return self.max_input_size_mb * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_pipelines_config(settings: Settings | None = None) -> PipelinesConfig:
    """
    Load and validate pipeline variants from config/pipelines.yaml.

    Validation happens here, at startup: unknown options, overlapping
    selection rules, bad stage order or fallback cycles raise
    pydantic.ValidationError before any job is accepted.

    Args:
        settings: Optional settings instance

    Returns:
        Validated PipelinesConfig
    """
    if settings is None:
        settings = get_settings()

    pipelines_path = settings.config_dir / settings.pipelines_file
    with open(pipelines_path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    return PipelinesConfig.model_validate(raw)
