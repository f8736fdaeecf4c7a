"""
Archive listing and entry extraction.

zip and tar archives are read with the standard library; 7z and rar go
through libarchive. Every failure to open or read an archive surfaces as
TransientIOError so callers can skip the archive and move on.
"""

import logging
import tarfile
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Union

from ..core.errors import NotFoundError, TransientIOError
from ..core.types import CollectionKind
from ..shared.media_utils import archive_kind

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class ArchiveEntry:
    """One member of an archive."""

    name: str
    size: int
    is_dir: bool = False


class ArchiveReader:
    """Lists and reads archive members without extracting to disk."""

    def entries(self, path: PathLike) -> List[ArchiveEntry]:
        """
        List all members of an archive (directories included).

        Raises:
            TransientIOError: archive missing, corrupt or unreadable
        """
        path = Path(path)
        kind = archive_kind(path.name)
        if kind is None:
            raise TransientIOError(f"Not an archive: {path}")

        try:
            if kind == CollectionKind.ZIP:
                return self._zip_entries(path)
            if kind == CollectionKind.TAR:
                return self._tar_entries(path)
            return self._libarchive_entries(path)
        except TransientIOError:
            raise
        except (OSError, zipfile.BadZipFile, tarfile.TarError, EOFError, RuntimeError) as e:
            raise TransientIOError(f"Cannot read archive {path}: {e}") from e

    def list_entries(self, path: PathLike) -> List[str]:
        """Names of the non-directory members of an archive."""
        return [entry.name for entry in self.entries(path) if not entry.is_dir]

    def read_entry(self, path: PathLike, entry_name: str) -> bytes:
        """
        Read one member's bytes.

        Raises:
            NotFoundError: no member named ``entry_name``
            TransientIOError: archive unreadable
        """
        path = Path(path)
        kind = archive_kind(path.name)
        if kind is None:
            raise TransientIOError(f"Not an archive: {path}")

        try:
            if kind == CollectionKind.ZIP:
                with zipfile.ZipFile(path) as zf:
                    try:
                        return zf.read(entry_name)
                    except KeyError:
                        raise NotFoundError(f"{entry_name} not in {path}") from None
            if kind == CollectionKind.TAR:
                with tarfile.open(path) as tf:
                    try:
                        member = tf.getmember(entry_name)
                    except KeyError:
                        raise NotFoundError(f"{entry_name} not in {path}") from None
                    extracted = tf.extractfile(member)
                    if extracted is None:
                        raise NotFoundError(f"{entry_name} in {path} is not a regular file")
                    return extracted.read()
            return self._libarchive_read(path, entry_name)
        except (NotFoundError, TransientIOError):
            raise
        except (OSError, zipfile.BadZipFile, tarfile.TarError, EOFError, RuntimeError) as e:
            raise TransientIOError(f"Cannot read {entry_name} from {path}: {e}") from e

    @staticmethod
    def _zip_entries(path: Path) -> List[ArchiveEntry]:
        with zipfile.ZipFile(path) as zf:
            return [
                ArchiveEntry(name=info.filename, size=info.file_size, is_dir=info.is_dir())
                for info in zf.infolist()
            ]

    @staticmethod
    def _tar_entries(path: Path) -> List[ArchiveEntry]:
        with tarfile.open(path) as tf:
            return [
                ArchiveEntry(name=member.name, size=member.size, is_dir=not member.isfile())
                for member in tf.getmembers()
            ]

    @staticmethod
    def _libarchive_entries(path: Path) -> List[ArchiveEntry]:
        import libarchive

        try:
            with libarchive.file_reader(str(path)) as archive:
                return [
                    ArchiveEntry(
                        name=entry.pathname,
                        size=entry.size or 0,
                        is_dir=entry.isdir,
                    )
                    for entry in archive
                ]
        except libarchive.ArchiveError as e:
            raise TransientIOError(f"Cannot read archive {path}: {e}") from e

    @staticmethod
    def _libarchive_read(path: Path, entry_name: str) -> bytes:
        import libarchive

        try:
            with libarchive.file_reader(str(path)) as archive:
                for entry in archive:
                    if entry.pathname == entry_name:
                        return b"".join(entry.get_blocks())
        except libarchive.ArchiveError as e:
            raise TransientIOError(f"Cannot read {entry_name} from {path}: {e}") from e
        raise NotFoundError(f"{entry_name} not in {path}")
