"""
Celery tasks for collection scans, artifact items and the reconciliation sweep.

Item tasks never raise for an item failure: the failure is counted on the
stage, recorded in the job's error log and returned in the result dict.
"""

import logging
from typing import Any, Dict, Optional

from celery import Task
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from ..core.errors import IngestError
from .celery_app import app
from .config import (
    TASK_CACHE_ITEM,
    TASK_COLLECTION_SCAN,
    TASK_RECONCILE_JOBS,
    TASK_THUMBNAIL_ITEM,
)
from .dispatch import CeleryDispatcher, Dispatcher, ItemWorkMessage, ScanRequestMessage
from .item_processors import WorkerContext, get_item_processor
from .job_service import JobService
from .monitor import JobMonitor
from .scan_runner import CollectionScanRunner
from .stage_counter import StageCounter

logger = logging.getLogger(__name__)


class IngestTask(Task):
    """
    Base task holding per-worker collaborators.

    Created lazily on first use and reused for every task the worker runs.
    """

    _service: Optional[JobService] = None
    _counter: Optional[StageCounter] = None
    _context: Optional[WorkerContext] = None
    _dispatcher: Optional[Dispatcher] = None

    @property
    def service(self) -> JobService:
        if self._service is None:
            self._service = JobService()
        return self._service

    @property
    def counter(self) -> StageCounter:
        if self._counter is None:
            self._counter = StageCounter(self.service.jobs)
        return self._counter

    @property
    def context(self) -> WorkerContext:
        if self._context is None:
            self._context = WorkerContext()
        return self._context

    @property
    def dispatcher(self) -> Dispatcher:
        if self._dispatcher is None:
            self._dispatcher = CeleryDispatcher(self.app)
        return self._dispatcher


def process_item(
    message: ItemWorkMessage,
    service: JobService,
    counter: StageCounter,
    context: WorkerContext,
) -> Dict[str, Any]:
    """
    Run the registered processor for one item and report it on the stage.

    Cancelled jobs are skipped without touching any counter.
    """
    job_id = message.job_id
    if service.is_cancelled(job_id):
        logger.debug(f"[{job_id}] Job cancelled, skipping item {message.image_id}")
        return {"status": "cancelled", "job_id": job_id, "image_id": message.image_id}

    try:
        processor = get_item_processor(message.stage)
        outcome = processor(message, context)
    except (IngestError, SQLAlchemyError, OSError, ValueError) as e:
        outcome = {"success": False, "error": str(e)}

    if outcome.get("success"):
        applied = counter.increment_stage(job_id, message.stage)
        status = "success"
    else:
        label = message.filename or message.image_id
        error = f"{message.stage} failed for {label}: {outcome.get('error', 'unknown error')}"
        logger.warning(f"[{job_id}] {error}")
        applied = counter.increment_failed(job_id, message.stage, 1, error=error)
        status = "failed"

    # Reading the job reconciles it, so the last item completes the stage
    if applied:
        try:
            service.get_job(job_id)
        except IngestError as e:
            logger.warning(f"[{job_id}] Reconcile after item failed: {e}")

    return {
        "status": status,
        "job_id": job_id,
        "image_id": message.image_id,
        "stage": message.stage,
        "applied": applied,
    }


def _run_item_task(task: IngestTask, fields: Dict[str, Any]) -> Dict[str, Any]:
    try:
        message = ItemWorkMessage(**fields)
    except PydanticValidationError as e:
        logger.error(f"Dropping malformed item message {fields}: {e}")
        return {"status": "invalid", "error": str(e)}
    return process_item(message, task.service, task.counter, task.context)


@app.task(bind=True, base=IngestTask, name=TASK_COLLECTION_SCAN)
def collection_scan(
    self: IngestTask, collection_id: str, job_id: str, force_rescan: bool = False
) -> Dict[str, Any]:
    """Index a collection and fan out its thumbnail and cache items."""
    message = ScanRequestMessage(
        collection_id=collection_id, job_id=job_id, force_rescan=force_rescan
    )
    runner = CollectionScanRunner(self.service, self.counter, self.dispatcher, self.context)
    return runner.run(message)


@app.task(bind=True, base=IngestTask, name=TASK_THUMBNAIL_ITEM)
def thumbnail_item(self: IngestTask, **fields: Any) -> Dict[str, Any]:
    """Render one thumbnail."""
    return _run_item_task(self, fields)


@app.task(bind=True, base=IngestTask, name=TASK_CACHE_ITEM)
def cache_item(self: IngestTask, **fields: Any) -> Dict[str, Any]:
    """Render one cache image."""
    return _run_item_task(self, fields)


@app.task(bind=True, base=IngestTask, name=TASK_RECONCILE_JOBS)
def reconcile_jobs(self: IngestTask) -> Dict[str, Any]:
    """Periodic sweep: reconcile active jobs, flag stale ones, alert on failures."""
    return JobMonitor(self.service).sweep().to_dict()
