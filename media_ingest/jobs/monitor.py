"""
Periodic job sweep.

Fallback for jobs whose workers finished (or died) without anyone reading
the job afterwards: reconciles non-terminal jobs, flags stale ones and
raises a one-off alert when a job's failure rate is too high. The sweep
only reads and reconciles; it never kills or re-dispatches work.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..core.errors import IngestError
from ..core.records import JobRecord
from ..db.config import Settings
from .job_service import JobService

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Counts from one sweep pass."""

    checked: int = 0
    transitioned: int = 0
    stale_flagged: List[str] = field(default_factory=list)
    failure_alerts: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "transitioned": self.transitioned,
            "stale_flagged": list(self.stale_flagged),
            "failure_alerts": list(self.failure_alerts),
            "errors": list(self.errors),
        }


class JobMonitor:
    """Runs reconciliation sweeps over active jobs."""

    def __init__(self, service: Optional[JobService] = None, config: Optional[Settings] = None):
        self.service = service or JobService()
        self.config = config or self.service.config

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        One pass over up to ``sweep_batch_size`` non-terminal jobs, oldest first.

        A failure on one job is logged and the sweep moves on.
        """
        now = now or self.service.clock()
        result = SweepResult()

        try:
            active = self.service.jobs.list_active(self.config.sweep_batch_size)
        except SQLAlchemyError as e:
            logger.error(f"Sweep could not list active jobs: {e}")
            result.errors.append(str(e))
            return result

        for job in active:
            result.checked += 1
            try:
                self._check_job(job, now, result)
            except (IngestError, SQLAlchemyError) as e:
                logger.warning(f"Sweep failed for job {job.id}: {e}")
                result.errors.append(f"{job.id}: {e}")

        if result.transitioned or result.stale_flagged or result.failure_alerts:
            logger.info(
                f"Sweep checked {result.checked} jobs: {result.transitioned} transitioned, "
                f"{len(result.stale_flagged)} stale, {len(result.failure_alerts)} alerts"
            )
        return result

    def _check_job(self, job: JobRecord, now: datetime, result: SweepResult) -> None:
        reconciled = self.service.reconcile(job.id)
        if reconciled.status != job.status:
            result.transitioned += 1

        if reconciled.is_terminal:
            return

        if self._is_stale(reconciled, now) and self.service.jobs.set_flag_once(
            job.id, "stale_flagged_at", now
        ):
            elapsed = int((now - reconciled.started_at).total_seconds() // 60)
            logger.warning(
                f"Job {job.id} ({reconciled.job_type}) appears stuck: "
                f"running {elapsed} minutes at {reconciled.progress_percent}%"
            )
            result.stale_flagged.append(job.id)

        if self._failure_rate_exceeded(reconciled) and self.service.jobs.set_flag_once(
            job.id, "failure_alerted_at", now
        ):
            logger.warning(
                f"High failure rate for job {job.id} ({reconciled.job_type}): "
                f"{reconciled.failed_work}/{reconciled.processed_work} items failed "
                f"({reconciled.failure_rate:.0%})"
            )
            result.failure_alerts.append(job.id)

    def _is_stale(self, job: JobRecord, now: datetime) -> bool:
        if job.started_at is None or job.stale_flagged_at is not None:
            return False
        return now - job.started_at > timedelta(minutes=self.config.stuck_threshold_minutes)

    def _failure_rate_exceeded(self, job: JobRecord) -> bool:
        if job.failure_alerted_at is not None:
            return False
        if job.processed_work < self.config.failure_alert_min_samples:
            return False
        return job.failure_rate > self.config.failure_alert_threshold
