"""
Candidate discovery for bulk ingestion.

Finds folders and archives under a parent path that directly contain
images. Only leaf content folders qualify: a folder whose images live in
subfolders is not itself a candidate.
"""

import logging
import os
from pathlib import Path
from typing import Iterator, List, Optional

from ..core.errors import NotFoundError, TransientIOError, ValidationError
from ..core.types import CandidateCollection, CollectionKind
from ..shared.media_utils import (
    archive_kind,
    is_content_entry,
    is_image_file,
    is_image_name,
    strip_archive_extension,
)
from .archive_reader import ArchiveReader

logger = logging.getLogger(__name__)


def _walk_error(error: OSError) -> None:
    logger.warning(f"Cannot list directory {error.filename}: {error}")


class CandidateScanner:
    """Enumerates candidate collections under a parent directory."""

    def __init__(self, reader: Optional[ArchiveReader] = None):
        self.reader = reader or ArchiveReader()

    def scan_candidates(
        self,
        parent_path: str,
        include_subfolders: bool = False,
        prefix: Optional[str] = None,
    ) -> Iterator[CandidateCollection]:
        """
        Yield folder candidates first, then archive candidates.

        Args:
            parent_path: Directory to scan (not itself a candidate)
            include_subfolders: Descend into all subdirectories
            prefix: Case-insensitive substring an archive file name must
                contain; applied before the archive is opened

        Raises:
            NotFoundError: parent_path does not exist
            ValidationError: parent_path is not a directory
        """
        parent = Path(parent_path)
        if not parent.exists():
            raise NotFoundError(f"Parent path does not exist: {parent_path}")
        if not parent.is_dir():
            raise ValidationError(f"Parent path is not a directory: {parent_path}")

        return self._iter_candidates(parent, include_subfolders, prefix)

    def _iter_candidates(
        self, parent: Path, include_subfolders: bool, prefix: Optional[str]
    ) -> Iterator[CandidateCollection]:
        directories, files = self._list_tree(parent, include_subfolders)

        folder_count = 0
        for directory in directories:
            if self._has_direct_images(directory):
                folder_count += 1
                yield CandidateCollection(
                    name=directory.name, path=str(directory), kind=CollectionKind.FOLDER
                )

        archive_count = 0
        needle = prefix.lower() if prefix else None
        for file_path in files:
            kind = archive_kind(file_path.name)
            if kind is None:
                continue
            if needle and needle not in file_path.name.lower():
                logger.debug(f"Skipping {file_path.name}: does not contain prefix '{prefix}'")
                continue
            if self._archive_has_images(file_path):
                archive_count += 1
                yield CandidateCollection(
                    name=strip_archive_extension(file_path.name),
                    path=str(file_path),
                    kind=kind,
                )

        logger.info(
            f"Found {folder_count} folder and {archive_count} archive candidates under {parent}"
        )

    @staticmethod
    def _list_tree(parent: Path, include_subfolders: bool):
        directories: List[Path] = []
        files: List[Path] = []

        if include_subfolders:
            for root, dirnames, filenames in os.walk(parent, onerror=_walk_error):
                dirnames.sort()
                root_path = Path(root)
                directories.extend(root_path / name for name in dirnames)
                files.extend(root_path / name for name in sorted(filenames))
        else:
            for child in sorted(parent.iterdir()):
                if child.is_dir():
                    directories.append(child)
                elif child.is_file():
                    files.append(child)

        return directories, files

    @staticmethod
    def _has_direct_images(directory: Path) -> bool:
        try:
            return any(
                child.is_file() and is_image_file(child) for child in directory.iterdir()
            )
        except OSError as e:
            logger.warning(f"Cannot list directory {directory}: {e}")
            return False

    def _archive_has_images(self, archive_path: Path) -> bool:
        try:
            names = self.reader.list_entries(archive_path)
        except TransientIOError as e:
            logger.warning(f"Skipping unreadable archive {archive_path.name}: {e}")
            return False

        has_images = any(is_content_entry(name) and is_image_name(name) for name in names)
        if not has_images:
            logger.debug(f"Skipping {archive_path.name}: no images found")
        return has_images


def scan_candidates(
    parent_path: str,
    include_subfolders: bool = False,
    prefix: Optional[str] = None,
) -> Iterator[CandidateCollection]:
    """Module-level convenience wrapper around CandidateScanner."""
    return CandidateScanner().scan_candidates(parent_path, include_subfolders, prefix)
