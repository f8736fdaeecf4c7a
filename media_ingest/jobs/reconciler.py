"""
Status reconciliation.

Derives stage and job status from the counters. Everything here is a pure
function of a JobRecord snapshot: running it twice, or from two processes
at once, yields the same answer, and results only ever move forward.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from ..core.records import JobRecord, StageState
from ..core.types import JobStatus, StageStatus

logger = logging.getLogger(__name__)


def _stage_rank(status: StageStatus) -> int:
    if status == StageStatus.PENDING:
        return 0
    if status == StageStatus.IN_PROGRESS:
        return 1
    return 2


def reconcile_stage(stage: StageState) -> StageStatus:
    """
    Status a stage should have given its counters.

    Terminal stages keep their status. Counters never produce Failed.
    """
    if stage.status.is_terminal:
        return stage.status
    if stage.total > 0 and stage.processed >= stage.total:
        return StageStatus.COMPLETED
    if stage.completed > 0:
        return StageStatus.IN_PROGRESS
    return stage.status


def reconcile_job(job: JobRecord) -> JobStatus:
    """
    Overall status a job should have given its stages (or item counters).

    Stage statuses are taken after their own reconciliation.
    """
    if job.status.is_terminal:
        return job.status

    if job.is_multi_stage:
        statuses = [reconcile_stage(stage) for stage in job.stages]
        if statuses and all(s == StageStatus.COMPLETED for s in statuses):
            proposed = JobStatus.COMPLETED
        elif any(s == StageStatus.FAILED for s in statuses):
            proposed = JobStatus.FAILED
        elif any(s in (StageStatus.IN_PROGRESS, StageStatus.COMPLETED) for s in statuses):
            proposed = JobStatus.IN_PROGRESS
        else:
            proposed = JobStatus.PENDING
    else:
        if job.total_items > 0 and job.completed_items >= job.total_items:
            proposed = JobStatus.COMPLETED
        elif job.completed_items > 0:
            proposed = JobStatus.IN_PROGRESS
        else:
            proposed = job.status

    return advance(job.status, proposed)


def advance(current: JobStatus, proposed: JobStatus) -> JobStatus:
    """Forward-only transition: keep ``current`` unless ``proposed`` ranks higher."""
    if current.is_terminal:
        return current
    return proposed if proposed.rank > current.rank else current


def estimate_completion(job: JobRecord, now: datetime) -> Optional[datetime]:
    """Extrapolate finish time from throughput since ``started_at``."""
    if job.status.is_terminal or job.started_at is None:
        return None

    processed = job.processed_work
    total = job.total_work
    if processed <= 0 or total <= processed:
        return None

    elapsed = (now - job.started_at).total_seconds()
    if elapsed <= 0:
        return None

    rate = processed / elapsed
    return now + timedelta(seconds=(total - processed) / rate)


def apply_reconciliation(
    job: JobRecord, now: datetime, refresh_estimate: bool = False
) -> bool:
    """
    Reconcile ``job`` in place.

    Moves stage and job statuses forward and stamps the matching timestamps.

    Returns:
        True if anything that should be persisted changed
    """
    changed = False

    for stage in job.stages:
        new_status = reconcile_stage(stage)
        if _stage_rank(new_status) <= _stage_rank(stage.status):
            continue
        stage.status = new_status
        if stage.started_at is None:
            stage.started_at = now
        if new_status.is_terminal and stage.completed_at is None:
            stage.completed_at = now
        changed = True

    new_status = reconcile_job(job)
    if new_status != job.status:
        logger.debug(f"Job {job.id}: {job.status.value} -> {new_status.value}")
        job.status = new_status
        if new_status != JobStatus.PENDING and job.started_at is None:
            job.started_at = now
        if new_status.is_terminal:
            job.completed_at = job.completed_at or now
        changed = True

    if changed or refresh_estimate:
        estimate = estimate_completion(job, now)
        if estimate != job.estimated_completion:
            job.estimated_completion = estimate
            changed = True

    return changed
