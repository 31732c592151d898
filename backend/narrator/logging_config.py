"""
Logging configuration for the orchestrator.

Driven by Settings (environment variables):
- LOG_LEVEL: Root level (default: INFO)
- LOG_FORMAT: simple or structured (default: structured)
- LOG_FILE: Optional rotating log file in addition to stdout
- LOG_LEVEL_<MODULE>: Per-module override (e.g., LOG_LEVEL_SCHEDULER=DEBUG)
"""

import logging
import sys
from logging.handlers import RotatingFileHandler

if sys.version_info >= (3, 11):
    from typing import TYPE_CHECKING
else:
    TYPE_CHECKING = False

if TYPE_CHECKING:
    from narrator.config import Settings


# Settings suffix -> logger name
MODULE_LOGGERS = {
    "job_manager": "narrator.services.job_manager",
    "retry": "narrator.services.retry",
    "scheduler": "narrator.services.pipeline.scheduler",
    "providers": "narrator.services.providers",
}

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "anthropic", "uvicorn.access")

LOG_FILE_MAX_BYTES = 20 * 1024 * 1024
LOG_FILE_BACKUPS = 5


class StructuredFormatter(logging.Formatter):
    """
    One record per line, pipe-separated for grep/awk.

    Format: timestamp | level | component | message

    The component drops the "narrator." prefix, so records from
    narrator.services.pipeline.scheduler show as "pipeline.scheduler".
    """

    def format(self, record: logging.LogRecord) -> str:
        component = record.name
        for prefix, short in (
            ("narrator.services.", ""),
            ("narrator.api.", "api."),
            ("narrator.", ""),
        ):
            if component.startswith(prefix):
                component = short + component[len(prefix):]
                break

        line = (
            f"{self.formatTime(record, '%Y-%m-%d %H:%M:%S')} | "
            f"{record.levelname:8} | "
            f"{component:20} | "
            f"{record.getMessage()}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(settings: "Settings") -> None:
    """
    Configure root, per-module and third-party loggers.

    Replaces existing root handlers, so calling it twice does not
    duplicate output.

    Args:
        settings: Application settings with log configuration
    """
    root_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "structured":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file is not None:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            settings.log_file,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(root_level)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    for module_key, logger_name in MODULE_LOGGERS.items():
        override = getattr(settings, f"log_level_{module_key}", None)
        if override:
            logging.getLogger(logger_name).setLevel(
                getattr(logging, override.upper(), root_level)
            )
