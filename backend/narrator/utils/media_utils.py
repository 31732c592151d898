"""
Media utilities for submitted media.

Provides common functions for media descriptor handling:
- Format detection by extension and MIME type
- Size-based duration estimation when the duration is unknown
- Timestamp formatting for narration text
"""

import logging
import mimetypes
from pathlib import PurePosixPath
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

# Supported media extensions
VIDEO_EXTENSIONS = frozenset({".mp4", ".mov", ".webm", ".avi", ".mkv"})
IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp"})

# ~5 MB/min for typical compressed video
VIDEO_BYTES_PER_SECOND = 83333


def get_extension(location: str) -> str:
    """Get the lowercased file extension of a location (path or URL).

    Args:
        location: Filesystem path, storage key or URL

    Returns:
        Extension including the dot, or "" if none
    """
    path = urlparse(location).path or location
    return PurePosixPath(path).suffix.lower()


def is_video_location(location: str, content_type: str | None = None) -> bool:
    """Check if a location (or its MIME type) denotes a supported video.

    Args:
        location: Media location
        content_type: Optional MIME type, preferred over the extension

    Returns:
        True if the media is a supported video
    """
    if content_type:
        return content_type.lower().startswith("video/") and (
            _extension_for_type(content_type) in VIDEO_EXTENSIONS
            or get_extension(location) in VIDEO_EXTENSIONS
        )
    return get_extension(location) in VIDEO_EXTENSIONS


def is_image_location(location: str, content_type: str | None = None) -> bool:
    """Check if a location (or its MIME type) denotes a supported image.

    Args:
        location: Media location
        content_type: Optional MIME type, preferred over the extension

    Returns:
        True if the media is a supported image
    """
    if content_type:
        return content_type.lower().startswith("image/") and (
            _extension_for_type(content_type) in IMAGE_EXTENSIONS
            or get_extension(location) in IMAGE_EXTENSIONS
        )
    return get_extension(location) in IMAGE_EXTENSIONS


def guess_content_type(location: str) -> str:
    """Guess a MIME type from the location's extension."""
    content_type, _ = mimetypes.guess_type(location)
    return content_type or "application/octet-stream"


def estimate_duration_from_size(size_bytes: int) -> float:
    """Estimate video duration from file size.

    Fallback when the submitter does not know the duration.
    Uses ~5 MB/min (83333 bytes/sec).

    Args:
        size_bytes: Media size in bytes

    Returns:
        Estimated duration in seconds
    """
    return size_bytes / VIDEO_BYTES_PER_SECOND


def format_timestamp(seconds: float) -> str:
    """Format seconds as MM:SS.cc (minutes may exceed 59)."""
    minutes = int(seconds // 60)
    remaining = int(seconds % 60)
    centis = int(round((seconds % 1) * 100)) % 100
    return f"{minutes:02d}:{remaining:02d}.{centis:02d}"


def _extension_for_type(content_type: str) -> str:
    extension = mimetypes.guess_extension(content_type.split(";")[0].strip())
    return extension or ""
