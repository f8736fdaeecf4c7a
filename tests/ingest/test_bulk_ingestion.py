"""
Tests for BulkIngestionService.
"""

from unittest.mock import patch

import pytest

from media_ingest.core.errors import NotFoundError, ValidationError
from media_ingest.core.types import (
    BulkAddCollectionsRequest,
    BulkItemStatus,
    JobStatus,
    ResumeAction,
    StageStatus,
)
from media_ingest.ingest.bulk_ingestion import (
    BulkIngestionService,
    normalize_path,
    parse_request,
    validate_parent_path,
)
from media_ingest.jobs.dispatch import RecordingDispatcher


def _request(parent, **kwargs) -> BulkAddCollectionsRequest:
    return BulkAddCollectionsRequest(parent_path=str(parent), **kwargs)


class BrokenBrokerDispatcher(RecordingDispatcher):
    """Raises on the n-th publish, like send_task with the broker down."""

    def __init__(self, fail_on: int):
        super().__init__()
        self.fail_on = fail_on
        self.calls = 0
        self.failed_job_ids = []

    def publish(self, message):
        self.calls += 1
        if self.calls == self.fail_on:
            self.failed_job_ids.append(message.job_id)
            raise RuntimeError("broker unreachable")
        super().publish(message)


@pytest.fixture
def fresh_parent(tmp_path, make_image):
    """Parent with three folder collections and nothing registered."""
    parent = tmp_path / "incoming"
    for folder in ("one", "two", "three"):
        make_image(parent / folder / "img.jpg")
    return parent


@pytest.fixture
def partial_parent(tmp_path, make_image, collection_repo):
    """
    One registered folder with 5 images: thumbnails for 2, no cache images.
    """
    parent = tmp_path / "library"
    folder = parent / "Partial"
    images = []
    for i in range(5):
        make_image(folder / f"p{i}.jpg")
        images.append({"id": f"p{i}", "filename": f"p{i}.jpg", "file_size": 1, "is_deleted": False})

    collection = collection_repo.create("Partial", normalize_path(str(folder)), "folder")
    collection_repo.set_contents(
        collection.id,
        images=images,
        thumbnails=[{"image_id": "p0"}, {"image_id": "p1"}],
    )
    return parent


class TestFreshIngestion:
    """Nothing registered yet: every candidate becomes a new collection."""

    def test_creates_collections_and_scan_jobs(
        self, bulk_service, fresh_parent, dispatcher, collection_repo, job_repo
    ):
        result = bulk_service.bulk_add_collections(_request(fresh_parent))

        assert result.total_processed == 3
        assert result.success_count == 3
        assert result.errors == []
        assert {r.message for r in result.results} == {"Collection created and queued for scan"}

        assert len(dispatcher.scan_requests) == 3
        assert dispatcher.item_messages == []

        for row in result.results:
            collection = collection_repo.get(row.collection_id)
            assert collection.path == normalize_path(row.path)

            job = job_repo.get(row.job_id)
            assert job.job_type == "collection-scan"
            assert [s.name for s in job.stages] == ["scan", "thumbnail", "cache"]
            assert job.status == JobStatus.PENDING
            assert job.parameters["force_rescan"] is False
            assert job.parameters["thumbnail_width"] == 300

    def test_request_overrides_artifact_options(self, bulk_service, fresh_parent, job_repo):
        result = bulk_service.bulk_add_collections(
            _request(fresh_parent, thumbnail_width=64, thumbnail_height=64)
        )
        params = job_repo.get(result.results[0].job_id).parameters
        assert params["thumbnail_width"] == 64
        assert params["cache_width"] == 1920

    def test_library_id_attached(self, bulk_service, fresh_parent, collection_repo):
        result = bulk_service.bulk_add_collections(_request(fresh_parent, library_id="lib-9"))
        assert collection_repo.get(result.results[0].collection_id).library_id == "lib-9"

    def test_second_run_skips(self, bulk_service, fresh_parent, dispatcher):
        bulk_service.bulk_add_collections(_request(fresh_parent))
        dispatcher.messages.clear()

        # Collections exist but the scans never ran, so they are still empty
        result = bulk_service.bulk_add_collections(_request(fresh_parent))

        assert {r.action for r in result.results} == {ResumeAction.SCAN_FRESH}
        assert len(dispatcher.scan_requests) == 3


class TestResume:
    """Existing collections with missing artifacts."""

    def test_resume_dispatches_only_the_gap(self, bulk_service, partial_parent, dispatcher, job_repo):
        result = bulk_service.bulk_add_collections(
            _request(partial_parent, resume_incomplete=True)
        )

        (row,) = result.results
        assert row.status == BulkItemStatus.RESUMED
        assert row.message == "Resumed: 3 thumbnails, 5 cache (no re-scan)"
        assert dispatcher.scan_requests == []

        thumbs = [m.image_id for m in dispatcher.item_messages if m.stage == "thumbnail"]
        cache = [m.image_id for m in dispatcher.item_messages if m.stage == "cache"]
        assert thumbs == ["p2", "p3", "p4"]
        assert cache == ["p0", "p1", "p2", "p3", "p4"]

        job = job_repo.get(row.job_id)
        assert job.job_type == "resume-collection"
        assert [s.name for s in job.stages] == ["thumbnail", "cache"]
        assert job.get_stage("thumbnail").total == 3
        assert job.get_stage("cache").total == 5
        assert job.status == JobStatus.IN_PROGRESS

    def test_resume_with_nothing_missing_in_one_stage(
        self, bulk_service, partial_parent, collection_repo, dispatcher, job_repo
    ):
        collection = collection_repo.get_by_path(normalize_path(str(partial_parent / "Partial")))
        collection_repo.set_contents(
            collection.id, cache_images=[{"image_id": f"p{i}"} for i in range(5)]
        )

        result = bulk_service.bulk_add_collections(
            _request(partial_parent, resume_incomplete=True)
        )

        job = job_repo.get(result.results[0].job_id)
        assert job.get_stage("cache").status == StageStatus.COMPLETED
        assert job.get_stage("thumbnail").total == 3
        assert len(dispatcher.item_messages) == 3

    def test_complete_collection_skipped(self, bulk_service, partial_parent, collection_repo, dispatcher):
        collection = collection_repo.get_by_path(normalize_path(str(partial_parent / "Partial")))
        done = [{"image_id": f"p{i}"} for i in range(5)]
        collection_repo.set_contents(collection.id, thumbnails=done, cache_images=done)

        result = bulk_service.bulk_add_collections(
            _request(partial_parent, resume_incomplete=True)
        )

        (row,) = result.results
        assert row.status == BulkItemStatus.SKIPPED
        assert row.action == ResumeAction.SKIP_COMPLETE
        assert row.job_id is None
        assert dispatcher.messages == []

    def test_without_flags_already_scanned(self, bulk_service, partial_parent, dispatcher):
        result = bulk_service.bulk_add_collections(_request(partial_parent))

        (row,) = result.results
        assert row.action == ResumeAction.SKIP_ALREADY_SCANNED
        assert row.message.startswith("Already scanned: 5 images")
        assert dispatcher.messages == []

    def test_overwrite_clears_and_rescans(self, bulk_service, partial_parent, dispatcher, collection_repo):
        result = bulk_service.bulk_add_collections(
            _request(partial_parent, overwrite_existing=True, resume_incomplete=True)
        )

        (row,) = result.results
        assert row.action == ResumeAction.FORCE_RESCAN
        assert "5 images cleared" in row.message
        assert dispatcher.scan_requests[0].force_rescan is True

        collection = collection_repo.get(row.collection_id)
        assert collection.images == []
        assert collection.thumbnails == []


class TestPartialFailure:
    """One bad candidate becomes an Error row; the rest proceed."""

    def test_error_row(self, bulk_service, fresh_parent, collection_repo):
        real_create = collection_repo.create

        def create(name, *args, **kwargs):
            if name == "two":
                raise OSError("disk full")
            return real_create(name, *args, **kwargs)

        with patch.object(collection_repo, "create", side_effect=create):
            result = bulk_service.bulk_add_collections(_request(fresh_parent))

        statuses = {r.name: r.status for r in result.results}
        assert statuses == {
            "one": BulkItemStatus.SUCCESS,
            "three": BulkItemStatus.SUCCESS,
            "two": BulkItemStatus.ERROR,
        }
        assert result.errors == ["Failed to process collection 'two': disk full"]
        assert result.summary()["errors"] == 1

    def test_scan_dispatch_failure_is_an_error_row(
        self, fresh_parent, job_service, collection_repo, config, job_repo
    ):
        broken = BrokenBrokerDispatcher(fail_on=2)
        service = BulkIngestionService(
            broken, jobs=job_service, collections=collection_repo, config=config
        )

        result = service.bulk_add_collections(_request(fresh_parent))

        assert result.total_processed == 3
        assert result.success_count == 2
        assert result.error_count == 1
        (error_row,) = [r for r in result.results if r.status == BulkItemStatus.ERROR]
        assert error_row.message == "broker unreachable"
        assert len(broken.scan_requests) == 2

        (orphan_id,) = broken.failed_job_ids
        orphan = job_repo.get(orphan_id)
        assert orphan.status == JobStatus.FAILED
        assert orphan.get_stage("scan").status == StageStatus.FAILED
        assert orphan.errors == ["Stage 'scan' failed: Dispatch failed: broker unreachable"]
        assert len(job_repo.list_active(10)) == 2

    def test_resume_dispatch_failure_fails_the_job(
        self, partial_parent, job_service, collection_repo, config, job_repo
    ):
        broken = BrokenBrokerDispatcher(fail_on=2)
        service = BulkIngestionService(
            broken, jobs=job_service, collections=collection_repo, config=config
        )

        result = service.bulk_add_collections(_request(partial_parent, resume_incomplete=True))

        (row,) = result.results
        assert row.status == BulkItemStatus.ERROR
        job = job_repo.get(broken.failed_job_ids[0])
        assert job.status == JobStatus.FAILED
        assert job.get_stage("thumbnail").status == StageStatus.FAILED


class TestDryRun:
    """plan() has no side effects."""

    def test_plan(self, bulk_service, fresh_parent, dispatcher, collection_repo):
        planned = bulk_service.plan(_request(fresh_parent))

        assert [decision.action for _, decision in planned] == [ResumeAction.CREATE_NEW] * 3
        assert dispatcher.messages == []
        assert collection_repo.get_by_path(normalize_path(str(fresh_parent / "one"))) is None


class TestValidation:
    """Parent path and request validation."""

    @pytest.mark.parametrize("path", ["", "   ", None])
    def test_empty_path(self, path):
        with pytest.raises(ValidationError, match="required"):
            validate_parent_path(path)

    @pytest.mark.parametrize("path", ["/etc", "/usr/share/pixmaps", "C:\\Windows\\Web"])
    def test_protected_paths(self, path):
        with pytest.raises(ValidationError, match="system directories"):
            validate_parent_path(path)

    def test_filesystem_root(self):
        with pytest.raises(ValidationError, match="root"):
            validate_parent_path("/")

    def test_similar_names_allowed(self, tmp_path):
        user_dir = tmp_path / "etcetera"
        assert validate_parent_path(str(user_dir)) == normalize_path(str(user_dir))

    def test_protected_path_rejected_before_side_effects(self, bulk_service, dispatcher):
        with pytest.raises(ValidationError):
            bulk_service.bulk_add_collections(BulkAddCollectionsRequest(parent_path="/proc"))
        assert dispatcher.messages == []

    def test_missing_parent(self, bulk_service, tmp_path):
        with pytest.raises(NotFoundError):
            bulk_service.bulk_add_collections(_request(tmp_path / "absent"))

    def test_parse_request(self):
        request = parse_request({"parent_path": "/data", "resume_incomplete": True})
        assert request.flags.resume_incomplete is True

    def test_parse_request_rejects_non_bool_flags(self):
        with pytest.raises(ValidationError, match="Invalid bulk request"):
            parse_request({"parent_path": "/data", "overwrite_existing": "yes"})

    def test_normalize_path(self, tmp_path):
        assert normalize_path(f"{tmp_path}/a/../b/") == str(tmp_path / "b")
