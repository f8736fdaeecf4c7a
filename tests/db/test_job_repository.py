"""
Tests for JobRepository: atomic counters, version-guarded status writes
and once-only sweep flags. Runs against a real SQLite file database.
"""

from datetime import datetime

import pytest

from media_ingest.core.types import JobStatus, StageStatus


@pytest.fixture
def staged_job(job_repo):
    """A job with one stage whose total is sealed at 5."""
    job = job_repo.create("collection-scan", stage_names=["thumbnail"])
    job.stages[0].total = 5
    job.stages[0].status = StageStatus.IN_PROGRESS
    assert job_repo.save_status(job)
    return job


class TestCreateAndGet:
    """Test job creation and loading."""

    def test_create_pending_job_with_ordered_stages(self, job_repo):
        job = job_repo.create(
            "collection-scan",
            stage_names=["scan", "thumbnail", "cache"],
            collection_id="col-1",
            parameters={"force_rescan": False},
        )

        loaded = job_repo.get(job.id)
        assert loaded.status == JobStatus.PENDING
        assert loaded.is_multi_stage
        assert [s.name for s in loaded.stages] == ["scan", "thumbnail", "cache"]
        assert all(s.status == StageStatus.PENDING for s in loaded.stages)
        assert loaded.collection_id == "col-1"
        assert loaded.parameters == {"force_rescan": False}
        assert loaded.version == 1

    def test_create_non_staged_job(self, job_repo):
        job = job_repo.create("export", total_items=10)
        assert not job.is_multi_stage
        assert job.stages == []
        assert job.total_items == 10

    def test_duplicate_stage_names_rejected(self, job_repo):
        with pytest.raises(ValueError, match="Duplicate"):
            job_repo.create("collection-scan", stage_names=["scan", "scan"])

    def test_get_missing_returns_none(self, job_repo):
        assert job_repo.get("nope") is None

    def test_list_active_excludes_terminal(self, job_repo):
        running = job_repo.create("a")
        done = job_repo.create("b")
        done.status = JobStatus.COMPLETED
        assert job_repo.save_status(done)

        active_ids = [job.id for job in job_repo.list_active(limit=10)]
        assert running.id in active_ids
        assert done.id not in active_ids

    def test_list_active_respects_limit(self, job_repo):
        for _ in range(3):
            job_repo.create("a")
        assert len(job_repo.list_active(limit=2)) == 2


class TestStageCounterSql:
    """Test the single-statement counter increment."""

    def test_increment_applies(self, job_repo, staged_job):
        assert job_repo.increment_stage_counter(staged_job.id, "thumbnail", 2) == 1
        assert job_repo.get(staged_job.id).stages[0].completed == 2

    def test_increment_clamped_to_total(self, job_repo, staged_job):
        job_repo.increment_stage_counter(staged_job.id, "thumbnail", 4)
        job_repo.increment_stage_counter(staged_job.id, "thumbnail", 3)

        stage = job_repo.get(staged_job.id).stages[0]
        assert stage.completed == 5

    def test_clamp_accounts_for_failed(self, job_repo, staged_job):
        job_repo.increment_stage_counter(staged_job.id, "thumbnail", 2, column="failed")
        job_repo.increment_stage_counter(staged_job.id, "thumbnail", 10)

        stage = job_repo.get(staged_job.id).stages[0]
        assert stage.failed == 2
        assert stage.completed == 3

    def test_unsealed_stage_not_clamped(self, job_repo):
        job = job_repo.create("collection-scan", stage_names=["scan"])
        job_repo.increment_stage_counter(job.id, "scan", 7)
        assert job_repo.get(job.id).stages[0].completed == 7

    def test_terminal_job_not_updated(self, job_repo, staged_job):
        staged_job.status = JobStatus.CANCELLED
        assert job_repo.save_status(staged_job)

        assert job_repo.increment_stage_counter(staged_job.id, "thumbnail", 1) == 0
        assert job_repo.get(staged_job.id).stages[0].completed == 0

    def test_unknown_stage_updates_nothing(self, job_repo, staged_job):
        assert job_repo.increment_stage_counter(staged_job.id, "cache", 1) == 0

    def test_failed_increment_appends_error(self, job_repo, staged_job):
        job_repo.increment_stage_counter(
            staged_job.id, "thumbnail", 1, column="failed", error="bad pixel"
        )
        assert job_repo.get(staged_job.id).errors == ["bad pixel"]

    def test_unknown_column_rejected(self, job_repo, staged_job):
        with pytest.raises(ValueError):
            job_repo.increment_stage_counter(staged_job.id, "thumbnail", 1, column="total")

    def test_increment_items_clamped(self, job_repo):
        job = job_repo.create("export", total_items=3)
        job_repo.increment_items(job.id, 2)
        job_repo.increment_items(job.id, 2)
        assert job_repo.get(job.id).completed_items == 3


class TestSaveStatus:
    """Test the version-guarded status write."""

    def test_save_bumps_version(self, job_repo):
        job = job_repo.create("a", stage_names=["scan"])
        job.status = JobStatus.IN_PROGRESS
        job.message = "working"

        assert job_repo.save_status(job, [("scan", "first error")])
        assert job.version == 2

        loaded = job_repo.get(job.id)
        assert loaded.status == JobStatus.IN_PROGRESS
        assert loaded.message == "working"
        assert loaded.version == 2
        assert loaded.errors == ["first error"]

    def test_stale_snapshot_conflicts(self, job_repo):
        job = job_repo.create("a")
        first = job_repo.get(job.id)
        second = job_repo.get(job.id)

        first.status = JobStatus.IN_PROGRESS
        assert job_repo.save_status(first)

        second.status = JobStatus.CANCELLED
        assert not job_repo.save_status(second, [(None, "lost")])

        loaded = job_repo.get(job.id)
        assert loaded.status == JobStatus.IN_PROGRESS
        assert loaded.errors == []

    def test_save_never_writes_counters(self, job_repo, staged_job):
        snapshot = job_repo.get(staged_job.id)
        job_repo.increment_stage_counter(staged_job.id, "thumbnail", 3)

        snapshot.message = "still running"
        assert job_repo.save_status(snapshot)
        assert job_repo.get(staged_job.id).stages[0].completed == 3


class TestSetFlagOnce:
    """Test once-only sweep flags."""

    def test_only_first_caller_sets_flag(self, job_repo):
        job = job_repo.create("a")
        first = datetime(2024, 1, 1, 12, 0)

        assert job_repo.set_flag_once(job.id, "stale_flagged_at", first)
        assert not job_repo.set_flag_once(job.id, "stale_flagged_at", datetime(2024, 1, 2))
        assert job_repo.get(job.id).stale_flagged_at == first

    def test_unknown_flag_rejected(self, job_repo):
        job = job_repo.create("a")
        with pytest.raises(ValueError):
            job_repo.set_flag_once(job.id, "status", datetime.utcnow())
