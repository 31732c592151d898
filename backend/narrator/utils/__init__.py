"""
Shared utilities.

Modules:
    media_utils: Format detection, duration estimation, timestamps
    text_utils: Description cleanup, narration compilation, speech chunking
"""

from narrator.utils.media_utils import (
    estimate_duration_from_size,
    format_timestamp,
    get_extension,
    is_image_location,
    is_video_location,
)
from narrator.utils.text_utils import (
    clean_description,
    compile_clean_text,
    prepare_for_speech,
    split_for_speech,
)

__all__ = [
    # Media
    "estimate_duration_from_size",
    "format_timestamp",
    "get_extension",
    "is_image_location",
    "is_video_location",
    # Text
    "clean_description",
    "compile_clean_text",
    "prepare_for_speech",
    "split_for_speech",
]
