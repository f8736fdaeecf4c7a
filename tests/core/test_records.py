"""Tests for JobRecord / StageState / CollectionRecord snapshots."""

from media_ingest.core.records import CollectionRecord, JobRecord, StageState
from media_ingest.core.types import JobStatus, StageStatus


def _job(**kwargs) -> JobRecord:
    defaults = dict(id="job-1", job_type="collection-scan", is_multi_stage=True)
    defaults.update(kwargs)
    return JobRecord(**defaults)


class TestStageState:
    """Tests for StageState derived values."""

    def test_processed_and_sealed(self):
        stage = StageState(name="cache", total=10, completed=3, failed=2)
        assert stage.processed == 5
        assert stage.is_sealed
        assert stage.percent_complete == 50

    def test_unsealed_percent(self):
        assert StageState(name="scan").percent_complete == 0
        assert StageState(name="scan", status=StageStatus.COMPLETED).percent_complete == 100


class TestJobRecord:
    """Tests for JobRecord derived values."""

    def test_current_stage_is_first_not_completed(self):
        job = _job(
            stages=[
                StageState(name="scan", status=StageStatus.COMPLETED),
                StageState(name="thumbnail", status=StageStatus.IN_PROGRESS),
                StageState(name="cache"),
            ]
        )
        assert job.current_stage.name == "thumbnail"

    def test_current_stage_none_when_all_done(self):
        job = _job(stages=[StageState(name="scan", status=StageStatus.COMPLETED)])
        assert job.current_stage is None

    def test_progress_across_stages(self):
        job = _job(
            stages=[
                StageState(name="thumbnail", total=10, completed=10),
                StageState(name="cache", total=10, completed=4, failed=1),
            ]
        )
        assert job.total_work == 20
        assert job.processed_work == 15
        assert job.progress_percent == 75
        assert job.failed_work == 1

    def test_progress_non_staged(self):
        job = _job(is_multi_stage=False, total_items=4, completed_items=1)
        assert job.progress_percent == 25

    def test_completed_job_is_100_percent(self):
        assert _job(status=JobStatus.COMPLETED).progress_percent == 100

    def test_failure_rate(self):
        job = _job(stages=[StageState(name="cache", total=20, completed=8, failed=2)])
        assert job.failure_rate == 0.2
        assert _job().failure_rate == 0.0

    def test_failure_rate_non_staged_stays_within_one(self):
        job = _job(is_multi_stage=False, total_items=10, completed_items=1, errors=["a", "b", "c"])
        assert job.failure_rate == 0.75

        only_errors = _job(is_multi_stage=False, errors=["a", "b"])
        assert only_errors.failure_rate == 1.0

    def test_error_count(self):
        assert _job(errors=["a", "b"]).error_count == 2


class TestCollectionRecord:
    """Tests for CollectionRecord."""

    def test_active_images_ignore_deleted(self):
        collection = CollectionRecord(
            id="c",
            name="c",
            path="/c",
            kind="folder",
            images=[{"id": "1"}, {"id": "2", "is_deleted": True}],
        )
        assert [img["id"] for img in collection.active_images] == ["1"]
        assert collection.has_images

    def test_has_images_false_when_all_deleted(self):
        collection = CollectionRecord(
            id="c", name="c", path="/c", kind="folder", images=[{"id": "1", "is_deleted": True}]
        )
        assert not collection.has_images
