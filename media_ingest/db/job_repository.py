"""
Job persistence.

All counter writes are single ``UPDATE`` statements evaluated by the
database, so concurrent workers never lose increments. Status writes go
through an optimistic ``version`` check instead.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select, text, update
from sqlalchemy.orm import Session, selectinload

from ..core.records import JobRecord, StageState
from ..core.types import TERMINAL_JOB_STATUSES, JobStatus, StageStatus
from .models import Job, JobError, JobStage

logger = logging.getLogger(__name__)

_TERMINAL_VALUES = tuple(s.value for s in TERMINAL_JOB_STATUSES)

# counter column -> the other counter sharing the same total
_COUNTER_COLUMNS = {"completed": "failed", "failed": "completed"}

_FLAG_COLUMNS = ("stale_flagged_at", "failure_alerted_at")

# Clamp so that completed + failed never exceeds a sealed total
_INCREMENT_STAGE_SQL = """
    UPDATE job_stages
    SET {column} = CASE
        WHEN total > 0 AND completed + failed + :n > total
            THEN CASE WHEN total - {other} > {column} THEN total - {other} ELSE {column} END
        ELSE {column} + :n
    END
    WHERE job_id = :job_id
    AND name = :stage_name
    AND job_id IN (
        SELECT id FROM jobs
        WHERE id = :job_id
        AND status NOT IN ({terminal})
    )
"""

_INCREMENT_ITEMS_SQL = """
    UPDATE jobs
    SET completed_items = CASE
        WHEN total_items > 0 AND completed_items + :n > total_items
            THEN CASE WHEN total_items > completed_items THEN total_items ELSE completed_items END
        ELSE completed_items + :n
    END
    WHERE id = :job_id
    AND status NOT IN ({terminal})
"""


def _terminal_placeholders() -> Tuple[str, Dict[str, str]]:
    names = [f"terminal_{i}" for i in range(len(_TERMINAL_VALUES))]
    return (
        ", ".join(f":{name}" for name in names),
        dict(zip(names, _TERMINAL_VALUES)),
    )


class JobRepository:
    """Reads and writes jobs, stages and error rows."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        """
        Args:
            session_factory: Callable returning a new Session. Defaults to the
                process-wide ``SessionLocal``.
        """
        self._session_factory = session_factory

    @property
    def session_factory(self) -> Callable[[], Session]:
        if self._session_factory is None:
            from .connection import SessionLocal

            self._session_factory = SessionLocal
        return self._session_factory

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        session = self.session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def _to_record(job: Job) -> JobRecord:
        return JobRecord(
            id=job.id,
            job_type=job.job_type,
            status=JobStatus(job.status),
            is_multi_stage=job.is_multi_stage,
            stages=[
                StageState(
                    name=stage.name,
                    status=StageStatus(stage.status),
                    total=stage.total,
                    completed=stage.completed,
                    failed=stage.failed,
                    message=stage.message,
                    started_at=stage.started_at,
                    completed_at=stage.completed_at,
                )
                for stage in job.stages
            ],
            total_items=job.total_items,
            completed_items=job.completed_items,
            errors=[err.message for err in job.errors],
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            estimated_completion=job.estimated_completion,
            message=job.message,
            collection_id=job.collection_id,
            parameters=dict(job.parameters or {}),
            version=job.version,
            stale_flagged_at=job.stale_flagged_at,
            failure_alerted_at=job.failure_alerted_at,
        )

    def get(self, job_id: str) -> Optional[JobRecord]:
        """Load a job snapshot, or None if it does not exist."""
        with self._session() as session:
            job = session.execute(
                select(Job)
                .options(selectinload(Job.stages), selectinload(Job.errors))
                .where(Job.id == job_id)
            ).scalar_one_or_none()
            if job is None:
                return None
            return self._to_record(job)

    def list_active(self, limit: int) -> List[JobRecord]:
        """Non-terminal jobs, oldest first."""
        with self._session() as session:
            jobs = (
                session.execute(
                    select(Job)
                    .options(selectinload(Job.stages), selectinload(Job.errors))
                    .where(Job.status.not_in(_TERMINAL_VALUES))
                    .order_by(Job.created_at, Job.id)
                    .limit(limit)
                )
                .scalars()
                .all()
            )
            return [self._to_record(job) for job in jobs]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        job_type: str,
        stage_names: Sequence[str] = (),
        collection_id: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
        total_items: int = 0,
        message: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> JobRecord:
        """Insert a Pending job with its (fixed, ordered) stages."""
        if len(set(stage_names)) != len(stage_names):
            raise ValueError(f"Duplicate stage names: {list(stage_names)}")

        with self._session() as session:
            job = Job(
                job_type=job_type,
                is_multi_stage=bool(stage_names),
                status=JobStatus.PENDING.value,
                collection_id=collection_id,
                parameters=parameters or {},
                total_items=total_items,
                completed_items=0,
                message=message,
                version=1,
            )
            if job_id:
                job.id = job_id
            job.stages = [
                JobStage(name=name, position=i, status=StageStatus.PENDING.value)
                for i, name in enumerate(stage_names)
            ]
            session.add(job)
            session.commit()
            session.refresh(job)
            logger.debug(f"Created job {job.id} ({job_type}) with stages {list(stage_names)}")
            return self._to_record(job)

    def increment_stage_counter(
        self,
        job_id: str,
        stage_name: str,
        n: int,
        column: str = "completed",
        error: Optional[str] = None,
    ) -> int:
        """
        Atomically add ``n`` to a stage counter.

        Terminal jobs are excluded by the statement itself. When ``error`` is
        given and the increment applied, an error row is appended in the same
        transaction.

        Returns:
            Number of stage rows updated (0 or 1)
        """
        if column not in _COUNTER_COLUMNS:
            raise ValueError(f"Unknown counter column: {column}")

        terminal, terminal_params = _terminal_placeholders()
        sql = _INCREMENT_STAGE_SQL.format(
            column=column, other=_COUNTER_COLUMNS[column], terminal=terminal
        )

        with self._session() as session:
            result = session.execute(
                text(sql),
                {"n": n, "job_id": job_id, "stage_name": stage_name, **terminal_params},
            )
            updated = result.rowcount
            if updated and error is not None:
                session.add(JobError(job_id=job_id, stage_name=stage_name, message=error))
            session.commit()
            return updated

    def increment_items(self, job_id: str, n: int) -> int:
        """Atomically add ``n`` to ``completed_items`` of a non-terminal job."""
        terminal, terminal_params = _terminal_placeholders()
        with self._session() as session:
            result = session.execute(
                text(_INCREMENT_ITEMS_SQL.format(terminal=terminal)),
                {"n": n, "job_id": job_id, **terminal_params},
            )
            session.commit()
            return result.rowcount

    def append_error(self, job_id: str, message: str, stage_name: Optional[str] = None) -> None:
        with self._session() as session:
            session.add(JobError(job_id=job_id, stage_name=stage_name, message=message))
            session.commit()

    def save_status(
        self,
        record: JobRecord,
        new_errors: Iterable[Tuple[Optional[str], str]] = (),
    ) -> bool:
        """
        Persist status-side fields of ``record`` if nobody else wrote first.

        Writes job status, message, timestamps and each stage's status,
        total, message and timestamps. Stage counters are never written here.

        Args:
            record: Snapshot previously loaded (its ``version`` is the guard)
            new_errors: (stage_name, message) rows to append on success

        Returns:
            True if written (``record.version`` is bumped), False on conflict
        """
        with self._session() as session:
            result = session.execute(
                update(Job)
                .where(Job.id == record.id, Job.version == record.version)
                .values(
                    status=record.status.value,
                    message=record.message,
                    started_at=record.started_at,
                    completed_at=record.completed_at,
                    estimated_completion=record.estimated_completion,
                    total_items=record.total_items,
                    version=Job.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                session.rollback()
                return False

            for stage in record.stages:
                session.execute(
                    update(JobStage)
                    .where(JobStage.job_id == record.id, JobStage.name == stage.name)
                    .values(
                        status=stage.status.value,
                        total=stage.total,
                        message=stage.message,
                        started_at=stage.started_at,
                        completed_at=stage.completed_at,
                    )
                    .execution_options(synchronize_session=False)
                )

            for stage_name, message in new_errors:
                session.add(JobError(job_id=record.id, stage_name=stage_name, message=message))

            session.commit()

        record.version += 1
        return True

    def set_flag_once(self, job_id: str, column: str, when: datetime) -> bool:
        """
        Set a sweep bookkeeping timestamp if it is still empty.

        Returns:
            True only for the caller that set it
        """
        if column not in _FLAG_COLUMNS:
            raise ValueError(f"Unknown flag column: {column}")

        with self._session() as session:
            result = session.execute(
                update(Job)
                .where(Job.id == job_id, getattr(Job, column).is_(None))
                .values({column: when})
                .execution_options(synchronize_session=False)
            )
            session.commit()
            return result.rowcount == 1
