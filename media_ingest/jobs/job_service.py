"""
Job lifecycle operations.

Counters are written only by StageCounter. This service owns everything
else: creating jobs, explicit stage transitions, cancellation, lazy
reconciliation on read and health checks. Every status write is guarded by
the job's ``version`` column and retried on conflict.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..core.errors import AtomicUpdateFailure, NotFoundError, StageSealedError
from ..core.records import JobRecord, StageState
from ..core.types import JobHealth, JobStatus, StageStatus
from ..db.config import Settings, settings
from ..db.job_repository import JobRepository
from .progress_publisher import RedisProgressPublisher
from .reconciler import advance, apply_reconciliation

logger = logging.getLogger(__name__)

# (stage_name, message) rows appended together with a status write
NewErrors = List[Tuple[Optional[str], str]]
Change = Callable[[JobRecord, datetime], Optional[NewErrors]]

MAX_WRITE_ATTEMPTS = 5


class JobService:
    """Stage transitions, cancellation and health for tracked jobs."""

    def __init__(
        self,
        jobs: Optional[JobRepository] = None,
        publisher: Optional[Callable[[JobRecord], Any]] = None,
        config: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            jobs: Job repository (defaults to one bound to SessionLocal)
            publisher: Called with the job after every status transition
            config: Settings (defaults to the module-level instance)
            clock: Returns "now" as a naive UTC datetime
        """
        self.jobs = jobs or JobRepository()
        self.publisher = publisher if publisher is not None else RedisProgressPublisher()
        self.config = config or settings
        self.clock = clock or datetime.utcnow

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, job_id: str) -> JobRecord:
        job = self.jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    @staticmethod
    def _stage(job: JobRecord, stage_name: str) -> StageState:
        stage = job.get_stage(stage_name)
        if stage is None:
            raise NotFoundError(f"Job {job.id} has no stage '{stage_name}'")
        return stage

    def _mutate(self, job_id: str, change: Change) -> JobRecord:
        """
        Load, apply ``change`` and write back under the version guard.

        ``change`` edits the record in place and returns the error rows to
        append, or None when there is nothing to write.
        """
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            job = self._load(job_id)
            previous_status = job.status
            new_errors = change(job, self.clock())
            if new_errors is None:
                return job

            if self.jobs.save_status(job, new_errors):
                job.errors.extend(message for _, message in new_errors)
                if job.status != previous_status:
                    logger.info(
                        f"Job {job_id} status: {previous_status.value} -> {job.status.value}"
                    )
                    self.publisher(job)
                return job

            logger.debug(f"Version conflict writing job {job_id} (attempt {attempt})")

        raise AtomicUpdateFailure(
            f"Could not write job {job_id} after {MAX_WRITE_ATTEMPTS} attempts"
        )

    @staticmethod
    def _seal(job: JobRecord, stage: StageState, total: Optional[int]) -> bool:
        """Seal an unsealed stage total. Returns True if it changed."""
        if total is None or total <= 0:
            return False
        if stage.total == 0:
            stage.total = total
            return True
        if stage.total != total:
            raise StageSealedError(job.id, stage.name, stage.total, total)
        return False

    def _refuse_terminal(self, job: JobRecord, operation: str) -> bool:
        if job.is_terminal:
            logger.warning(
                f"Ignoring {operation} on job {job.id}: already {job.status.value}"
            )
            return True
        return False

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------

    def create_job(
        self,
        job_type: str,
        stages: Sequence[str] = (),
        collection_id: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
        total_items: int = 0,
        message: Optional[str] = None,
    ) -> JobRecord:
        """Create a Pending job; ``stages`` fixes the ordered stage list."""
        job = self.jobs.create(
            job_type,
            stage_names=list(stages),
            collection_id=collection_id,
            parameters=parameters,
            total_items=total_items,
            message=message,
        )
        logger.info(f"Created {job_type} job {job.id} (collection={collection_id})")
        return job

    def get_job(self, job_id: str) -> JobRecord:
        """Load a job, reconciling (and persisting) its status first."""

        def change(job: JobRecord, now: datetime) -> Optional[NewErrors]:
            return [] if apply_reconciliation(job, now) else None

        return self._mutate(job_id, change)

    def reconcile(self, job_id: str) -> JobRecord:
        """Reconcile and refresh the completion estimate (used by the sweep)."""

        def change(job: JobRecord, now: datetime) -> Optional[NewErrors]:
            return [] if apply_reconciliation(job, now, refresh_estimate=True) else None

        return self._mutate(job_id, change)

    def is_cancelled(self, job_id: str) -> bool:
        job = self.jobs.get(job_id)
        return job is not None and job.status == JobStatus.CANCELLED

    # ------------------------------------------------------------------
    # Explicit stage operations
    # ------------------------------------------------------------------

    def start_stage(
        self,
        job_id: str,
        stage_name: str,
        total: int = 0,
        message: Optional[str] = None,
    ) -> JobRecord:
        """
        Mark a stage InProgress and seal its total.

        Idempotent for the same total. A different total on a sealed stage
        raises StageSealedError. Starting a stage also starts the job.
        """

        def change(job: JobRecord, now: datetime) -> Optional[NewErrors]:
            stage = self._stage(job, stage_name)
            if self._refuse_terminal(job, f"start_stage('{stage_name}')"):
                return None
            self._seal(job, stage, total)
            if stage.status.is_terminal:
                logger.warning(
                    f"Stage '{stage_name}' of job {job_id} already {stage.status.value}"
                )
                return None

            stage.status = StageStatus.IN_PROGRESS
            stage.started_at = stage.started_at or now
            if message is not None:
                stage.message = message
                job.message = message
            job.status = advance(job.status, JobStatus.IN_PROGRESS)
            job.started_at = job.started_at or now
            apply_reconciliation(job, now)
            return []

        return self._mutate(job_id, change)

    def update_stage_progress(
        self,
        job_id: str,
        stage_name: str,
        total: Optional[int] = None,
        message: Optional[str] = None,
    ) -> JobRecord:
        """Update a stage message and seal an unsealed total. Never writes counters."""

        def change(job: JobRecord, now: datetime) -> Optional[NewErrors]:
            stage = self._stage(job, stage_name)
            if self._refuse_terminal(job, f"update_stage_progress('{stage_name}')"):
                return None
            changed = self._seal(job, stage, total)
            if message is not None and message != stage.message:
                stage.message = message
                job.message = message
                changed = True
            changed = apply_reconciliation(job, now) or changed
            return [] if changed else None

        return self._mutate(job_id, change)

    def complete_stage(
        self, job_id: str, stage_name: str, message: Optional[str] = None
    ) -> JobRecord:
        """Force a stage to Completed regardless of its counters."""

        def change(job: JobRecord, now: datetime) -> Optional[NewErrors]:
            stage = self._stage(job, stage_name)
            if self._refuse_terminal(job, f"complete_stage('{stage_name}')"):
                return None
            if stage.status == StageStatus.COMPLETED:
                return None
            if stage.status == StageStatus.FAILED:
                logger.warning(f"Stage '{stage_name}' of job {job_id} already failed")
                return None

            stage.status = StageStatus.COMPLETED
            stage.started_at = stage.started_at or now
            stage.completed_at = now
            if message is not None:
                stage.message = message
                job.message = message
            job.status = advance(job.status, JobStatus.IN_PROGRESS)
            job.started_at = job.started_at or now
            apply_reconciliation(job, now)
            return []

        return self._mutate(job_id, change)

    def fail_stage(self, job_id: str, stage_name: str, message: str) -> JobRecord:
        """Mark a stage Failed; the job fails with it."""

        def change(job: JobRecord, now: datetime) -> Optional[NewErrors]:
            stage = self._stage(job, stage_name)
            if self._refuse_terminal(job, f"fail_stage('{stage_name}')"):
                return None
            if stage.status == StageStatus.COMPLETED:
                logger.warning(
                    f"Stage '{stage_name}' of job {job_id} already completed, ignoring failure: "
                    f"{message}"
                )
                return None

            stage.status = StageStatus.FAILED
            stage.completed_at = now
            stage.message = message
            job.status = JobStatus.FAILED
            job.started_at = job.started_at or now
            job.completed_at = now
            job.estimated_completion = None
            job.message = message
            return [(stage_name, f"Stage '{stage_name}' failed: {message}")]

        return self._mutate(job_id, change)

    def cancel_job(self, job_id: str) -> bool:
        """
        Cancel a non-terminal job.

        Returns:
            False (and logs a warning) if the job was already terminal
        """
        outcome = {"cancelled": False}

        def change(job: JobRecord, now: datetime) -> Optional[NewErrors]:
            if self._refuse_terminal(job, "cancel"):
                outcome["cancelled"] = False
                return None
            job.status = JobStatus.CANCELLED
            job.completed_at = now
            job.estimated_completion = None
            job.message = "Cancelled"
            outcome["cancelled"] = True
            return []

        self._mutate(job_id, change)
        return outcome["cancelled"]

    def record_error(
        self, job_id: str, message: str, stage_name: Optional[str] = None
    ) -> None:
        """Append an error row without touching counters or status."""
        self.jobs.append_error(job_id, message, stage_name=stage_name)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def get_job_health(self, job_id: str, now: Optional[datetime] = None) -> JobHealth:
        """
        Assess whether a job looks stuck or timed out.

        Staleness is purely read-side: elapsed time since ``started_at``.
        """
        now = now or self.clock()
        job = self.get_job(job_id)

        is_stuck = False
        is_timed_out = False
        issues: List[str] = []

        if job.error_count:
            issues.append(f"{job.error_count} errors recorded")

        if not job.is_terminal and job.started_at is not None:
            elapsed = now - job.started_at
            if elapsed > timedelta(minutes=self.config.stuck_threshold_minutes):
                is_stuck = True
                issues.append(
                    f"No completion after {int(elapsed.total_seconds() // 60)} minutes "
                    f"(stuck threshold {self.config.stuck_threshold_minutes})"
                )
            if elapsed > timedelta(minutes=self.config.timeout_minutes):
                is_timed_out = True
                issues.append(
                    f"Exceeded timeout of {self.config.timeout_minutes} minutes"
                )

        return JobHealth(
            job_id=job.id,
            status=job.status,
            is_stuck=is_stuck,
            is_timed_out=is_timed_out,
            issues=issues,
            checked_at=now,
        )
