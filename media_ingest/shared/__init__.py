"""
Shared utilities for media-ingest.
"""

from .media_utils import (
    ARCHIVE_EXTENSIONS,
    ARCHIVE_KINDS,
    IMAGE_EXTENSIONS,
    archive_extension,
    archive_kind,
    is_content_entry,
    is_image_file,
    is_image_name,
    is_macosx_path,
    strip_archive_extension,
)

__all__ = [
    # Constants
    "IMAGE_EXTENSIONS",
    "ARCHIVE_EXTENSIONS",
    "ARCHIVE_KINDS",
    # File type detection
    "is_image_name",
    "is_image_file",
    "archive_extension",
    "archive_kind",
    "strip_archive_extension",
    # Archive entry filtering
    "is_macosx_path",
    "is_content_entry",
]
