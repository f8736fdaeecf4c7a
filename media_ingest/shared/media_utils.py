"""
Media file utilities for media-ingest.

Single source of truth for image/archive extension detection and for
filtering platform metadata entries out of archive listings.
"""

import logging
from pathlib import Path, PurePosixPath
from typing import Dict, Optional, Set, Union

from ..core.types import CollectionKind

logger = logging.getLogger(__name__)

# Extensions that make a folder or archive a collection candidate
IMAGE_EXTENSIONS: Set[str] = {
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".bmp",
    ".webp",
    ".tiff",
    ".tif",
    ".svg",
}

# Archive extension -> collection kind. Compound suffixes are matched first.
ARCHIVE_KINDS: Dict[str, CollectionKind] = {
    ".tar.gz": CollectionKind.TAR,
    ".tar.bz2": CollectionKind.TAR,
    ".tgz": CollectionKind.TAR,
    ".tar": CollectionKind.TAR,
    ".zip": CollectionKind.ZIP,
    ".cbz": CollectionKind.ZIP,
    ".7z": CollectionKind.SEVEN_ZIP,
    ".rar": CollectionKind.RAR,
    ".cbr": CollectionKind.RAR,
}

ARCHIVE_EXTENSIONS: Set[str] = set(ARCHIVE_KINDS)

# Resource-fork folder written by macOS archivers
MACOSX_METADATA_DIR = "__macosx"


def is_image_name(name: str) -> bool:
    """
    Check if a file or archive entry name has an image extension.

    Args:
        name: File name or archive entry path (either separator)

    Returns:
        True if image, False otherwise
    """
    suffix = PurePosixPath(name.replace("\\", "/")).suffix
    return suffix.lower() in IMAGE_EXTENSIONS


def is_image_file(file_path: Path) -> bool:
    """Check if a file is an image based on extension."""
    return file_path.suffix.lower() in IMAGE_EXTENSIONS


def archive_extension(file_name: Union[str, Path]) -> Optional[str]:
    """
    Return the archive extension of a file name, or None.

    Compound extensions such as ``.tar.gz`` win over their last component.
    """
    lowered = str(file_name).lower()
    for ext in sorted(ARCHIVE_KINDS, key=len, reverse=True):
        if lowered.endswith(ext):
            return ext
    return None


def archive_kind(file_name: Union[str, Path]) -> Optional[CollectionKind]:
    """Map an archive file name to its collection kind (None if not an archive)."""
    ext = archive_extension(file_name)
    return ARCHIVE_KINDS[ext] if ext else None


def strip_archive_extension(file_name: str) -> str:
    """Return the file name without its (possibly compound) archive extension."""
    ext = archive_extension(file_name)
    if ext is None:
        return Path(file_name).stem
    return file_name[: -len(ext)]


def is_macosx_path(path: Optional[str]) -> bool:
    """
    Check if a path points into ``__MACOSX`` resource-fork metadata.

    Matches the folder at the root or nested anywhere, in any case and with
    either separator.
    """
    if not path:
        return False

    normalized = path.replace("\\", "/").lower()
    return (
        normalized.startswith(f"{MACOSX_METADATA_DIR}/")
        or f"/{MACOSX_METADATA_DIR}/" in normalized
    )


def is_content_entry(entry_name: str) -> bool:
    """True when an archive entry is a real content file (not a directory or metadata)."""
    if not entry_name or entry_name.endswith(("/", "\\")):
        return False
    if is_macosx_path(entry_name):
        logger.debug(f"Filtered out __MACOSX entry: {entry_name}")
        return False
    # AppleDouble files ("._name") live next to the real file in some archives
    if PurePosixPath(entry_name.replace("\\", "/")).name.startswith("._"):
        return False
    return True
