"""
Pytest configuration and fixtures for media_ingest tests.

Every test gets its own SQLite database file, so the real SQL (atomic
increments, version guards) runs without a PostgreSQL server.
"""

# ==============================================================================
# Test environment - MUST RUN BEFORE ANY IMPORTS
# ==============================================================================
import os
import sys
import tempfile

_test_root = tempfile.mkdtemp(prefix="media-ingest-test-")

os.environ["SQLALCHEMY_URL"] = f"sqlite:///{os.path.join(_test_root, 'default.db')}"
os.environ["PUBLISH_PROGRESS"] = "false"
os.environ["ARTIFACT_DIR"] = os.path.join(_test_root, "artifacts")
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"

# Remove any already-imported media_ingest modules to force reload with test settings
modules_to_remove = [name for name in sys.modules if name.startswith("media_ingest")]
for module_name in modules_to_remove:
    del sys.modules[module_name]

import io  # noqa: E402
import tarfile  # noqa: E402
import zipfile  # noqa: E402
from pathlib import Path  # noqa: E402
from typing import Dict, List, Tuple  # noqa: E402

import pytest  # noqa: E402
from PIL import Image  # noqa: E402

from media_ingest.db.collection_repository import CollectionRepository  # noqa: E402
from media_ingest.db.config import Settings  # noqa: E402
from media_ingest.db.connection import make_engine, make_session_factory  # noqa: E402
from media_ingest.db.job_repository import JobRepository  # noqa: E402
from media_ingest.db.models import Base  # noqa: E402
from media_ingest.ingest.bulk_ingestion import BulkIngestionService  # noqa: E402
from media_ingest.jobs.dispatch import RecordingDispatcher  # noqa: E402
from media_ingest.jobs.item_processors import WorkerContext  # noqa: E402
from media_ingest.jobs.job_service import JobService  # noqa: E402
from media_ingest.jobs.stage_counter import StageCounter  # noqa: E402

test_settings = Settings()
assert test_settings.database_url.startswith("sqlite"), (
    f"CRITICAL: Expected a SQLite test database, got '{test_settings.database_url}'"
)
assert test_settings.publish_progress is False


# ==============================================================================
# Database fixtures
# ==============================================================================


@pytest.fixture
def engine(tmp_path):
    """Fresh SQLite file database with all tables."""
    db_engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def job_repo(session_factory) -> JobRepository:
    return JobRepository(session_factory)


@pytest.fixture
def collection_repo(session_factory) -> CollectionRepository:
    return CollectionRepository(session_factory)


# ==============================================================================
# Service fixtures
# ==============================================================================


@pytest.fixture
def config(tmp_path) -> Settings:
    """Settings with artifacts written under the test's tmp_path."""
    return Settings(artifact_dir=str(tmp_path / "artifacts"))


@pytest.fixture
def published() -> List:
    """Jobs passed to the progress publisher, in order."""
    return []


@pytest.fixture
def job_service(job_repo, published, config) -> JobService:
    return JobService(jobs=job_repo, publisher=published.append, config=config)


@pytest.fixture
def counter(job_repo) -> StageCounter:
    return StageCounter(job_repo)


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def bulk_service(dispatcher, job_service, collection_repo, config) -> BulkIngestionService:
    return BulkIngestionService(
        dispatcher, jobs=job_service, collections=collection_repo, config=config
    )


@pytest.fixture
def worker_context(collection_repo, config) -> WorkerContext:
    return WorkerContext(collections=collection_repo, config=config)


# ==============================================================================
# Media fixtures
# ==============================================================================


def image_bytes(size: Tuple[int, int] = (64, 48), color: str = "red", fmt: str = "PNG") -> bytes:
    """Encoded bytes of a solid-color test image."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color=color).save(buffer, format=fmt)
    return buffer.getvalue()


def write_image(path: Path, size: Tuple[int, int] = (64, 48), color: str = "red") -> Path:
    """Write a JPEG test image (parent directories are created)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color=color).save(path, format="JPEG")
    return path


def write_zip(path: Path, entries: Dict[str, bytes]) -> Path:
    """Write a zip archive; names ending in '/' become directory entries."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in entries.items():
            if name.endswith("/"):
                zf.writestr(zipfile.ZipInfo(name), b"")
            else:
                zf.writestr(name, data)
    return path


def write_tar(path: Path, entries: Dict[str, bytes], mode: str = "w:gz") -> Path:
    """Write a tar archive (gzip-compressed by default)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(path, mode) as tf:
        for name, data in entries.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return path


@pytest.fixture
def png_bytes() -> bytes:
    return image_bytes()


@pytest.fixture
def media_tree(tmp_path, png_bytes) -> Path:
    """
    Parent directory with a mix of candidates::

        library/
            Alpha/a1.jpg, a2.jpg            folder candidate
            Nested/                         no direct images
                Inner/i1.jpg                leaf folder (recursive only)
            Empty/readme.txt                not a candidate
            comics_one.zip                  archive with images
            comics_two.cbz                  archive with images
            notes.zip                       archive without images
            broken.zip                      corrupt archive
            photos.tar.gz                   tar archive with images
    """
    root = tmp_path / "library"
    write_image(root / "Alpha" / "a1.jpg")
    write_image(root / "Alpha" / "a2.jpg", color="blue")
    write_image(root / "Nested" / "Inner" / "i1.jpg")
    (root / "Empty").mkdir(parents=True)
    (root / "Empty" / "readme.txt").write_text("nothing here")

    write_zip(root / "comics_one.zip", {"p1.png": png_bytes, "p2.png": png_bytes})
    write_zip(root / "comics_two.cbz", {"pages/": b"", "pages/p1.png": png_bytes})
    write_zip(root / "notes.zip", {"notes.txt": b"hello"})
    (root / "broken.zip").write_bytes(b"PK\x03\x04 definitely not a zip")
    write_tar(root / "photos.tar.gz", {"photos/x.jpg": image_bytes(fmt="JPEG")})
    return root


@pytest.fixture
def seeded_collection(collection_repo, tmp_path):
    """
    Registered folder collection with 4 images (1 deleted).

    Thumbnails exist for img-1 and img-2, cache images for img-1 only.
    """
    folder = tmp_path / "seeded"
    for name in ("one.jpg", "two.jpg", "three.jpg", "gone.jpg"):
        write_image(folder / name)

    collection = collection_repo.create("seeded", str(folder), "folder")
    return collection_repo.set_contents(
        collection.id,
        images=[
            {"id": "img-1", "filename": "one.jpg", "file_size": 10, "is_deleted": False},
            {"id": "img-2", "filename": "two.jpg", "file_size": 10, "is_deleted": False},
            {"id": "img-3", "filename": "three.jpg", "file_size": 10, "is_deleted": False},
            {"id": "img-4", "filename": "gone.jpg", "file_size": 10, "is_deleted": True},
        ],
        thumbnails=[{"image_id": "img-1"}, {"image_id": "img-2"}],
        cache_images=[{"image_id": "img-1"}],
    )


@pytest.fixture
def make_image():
    return write_image


@pytest.fixture
def make_zip():
    return write_zip


@pytest.fixture
def make_tar():
    return write_tar
