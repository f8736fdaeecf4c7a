"""
Tests for ArchiveReader (zip and tar via the standard library).
"""

import pytest

from media_ingest.core.errors import NotFoundError, TransientIOError
from media_ingest.ingest.archive_reader import ArchiveEntry, ArchiveReader


@pytest.fixture
def reader():
    return ArchiveReader()


class TestZip:
    """Zip archives."""

    def test_entries_include_directories(self, reader, tmp_path, make_zip):
        archive = make_zip(tmp_path / "a.zip", {"dir/": b"", "dir/p.png": b"1234"})

        assert reader.entries(archive) == [
            ArchiveEntry(name="dir/", size=0, is_dir=True),
            ArchiveEntry(name="dir/p.png", size=4, is_dir=False),
        ]
        assert reader.list_entries(archive) == ["dir/p.png"]

    def test_read_entry(self, reader, tmp_path, make_zip):
        archive = make_zip(tmp_path / "a.cbz", {"p.png": b"data"})
        assert reader.read_entry(archive, "p.png") == b"data"

    def test_missing_entry(self, reader, tmp_path, make_zip):
        archive = make_zip(tmp_path / "a.zip", {"p.png": b"data"})
        with pytest.raises(NotFoundError):
            reader.read_entry(archive, "q.png")

    def test_corrupt_archive(self, reader, tmp_path):
        broken = tmp_path / "broken.zip"
        broken.write_bytes(b"PK not really")
        with pytest.raises(TransientIOError):
            reader.list_entries(broken)

    def test_missing_archive(self, reader, tmp_path):
        with pytest.raises(TransientIOError):
            reader.list_entries(tmp_path / "absent.zip")


class TestTar:
    """Tar archives."""

    def test_gzip_tar(self, reader, tmp_path, make_tar):
        archive = make_tar(tmp_path / "p.tar.gz", {"photos/x.jpg": b"abc"})

        assert reader.list_entries(archive) == ["photos/x.jpg"]
        assert reader.read_entry(archive, "photos/x.jpg") == b"abc"

    def test_plain_tar_missing_member(self, reader, tmp_path, make_tar):
        archive = make_tar(tmp_path / "p.tar", {"x.jpg": b"abc"}, mode="w")
        with pytest.raises(NotFoundError):
            reader.read_entry(archive, "y.jpg")


class TestUnsupported:
    """Non-archive paths."""

    def test_not_an_archive(self, reader, tmp_path):
        path = tmp_path / "photo.jpg"
        path.write_bytes(b"x")
        with pytest.raises(TransientIOError, match="Not an archive"):
            reader.entries(path)
