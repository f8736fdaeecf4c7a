"""
Atomic stage counters.

Workers report finished items here. Each call is one conditional UPDATE at
the storage layer; no read-modify-write happens in Python, so N concurrent
callers adding k_i always produce a sum of exactly k_1 + ... + k_N.
Status is never touched here; see reconciler.py.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ..core.errors import ValidationError
from ..db.job_repository import JobRepository

logger = logging.getLogger(__name__)


class StageCounter:
    """Increment-only access to job and stage counters."""

    def __init__(self, jobs: Optional[JobRepository] = None):
        self.jobs = jobs or JobRepository()

    @staticmethod
    def _check_increment(increment_by: int) -> None:
        if isinstance(increment_by, bool) or not isinstance(increment_by, int):
            raise ValidationError(f"increment_by must be an int, got {increment_by!r}")
        if increment_by <= 0:
            raise ValidationError(f"increment_by must be positive, got {increment_by}")

    def _explain_miss(self, job_id: str, stage_name: str) -> str:
        try:
            job = self.jobs.get(job_id)
        except SQLAlchemyError as e:
            return f"lookup failed: {e}"
        if job is None:
            return "job not found"
        if job.is_terminal:
            return f"job is {job.status.value}"
        if job.get_stage(stage_name) is None:
            return "stage not found"
        return "no row updated"

    def increment_stage(self, job_id: str, stage_name: str, increment_by: int = 1) -> bool:
        """
        Add ``increment_by`` completed items to a stage.

        Returns:
            True if applied; False (with a warning) if the job or stage does
            not exist, the job is terminal, or the storage layer failed.
        """
        self._check_increment(increment_by)
        return self._increment(job_id, stage_name, increment_by, "completed")

    def increment_failed(
        self,
        job_id: str,
        stage_name: str,
        increment_by: int = 1,
        error: Optional[str] = None,
    ) -> bool:
        """Add failed items to a stage and append ``error`` to the job's error log."""
        self._check_increment(increment_by)
        return self._increment(job_id, stage_name, increment_by, "failed", error)

    def _increment(
        self,
        job_id: str,
        stage_name: str,
        increment_by: int,
        column: str,
        error: Optional[str] = None,
    ) -> bool:
        try:
            updated = self.jobs.increment_stage_counter(
                job_id, stage_name, increment_by, column=column, error=error
            )
        except SQLAlchemyError as e:
            logger.warning(
                f"Atomic {column} increment failed for job {job_id} stage '{stage_name}': {e}"
            )
            return False

        if not updated:
            reason = self._explain_miss(job_id, stage_name)
            logger.warning(
                f"Ignored {column} increment of {increment_by} for job {job_id} "
                f"stage '{stage_name}': {reason}"
            )
            return False

        logger.debug(f"Job {job_id} stage '{stage_name}': {column} += {increment_by}")
        return True

    def increment_items(self, job_id: str, increment_by: int = 1) -> bool:
        """Add completed items to a non-staged job."""
        self._check_increment(increment_by)
        try:
            updated = self.jobs.increment_items(job_id, increment_by)
        except SQLAlchemyError as e:
            logger.warning(f"Atomic item increment failed for job {job_id}: {e}")
            return False

        if not updated:
            job = self.jobs.get(job_id)
            reason = "job not found" if job is None else f"job is {job.status.value}"
            logger.warning(f"Ignored item increment for job {job_id}: {reason}")
            return False
        return True
