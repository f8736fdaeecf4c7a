"""
Job progress engine.

Tracks multi-stage background jobs: atomic stage counters, status
reconciliation, explicit stage transitions, cancellation, health and the
periodic sweep. Work is distributed as Celery tasks over Redis.
"""

from .celery_app import app as celery_app
from .dispatch import (
    CeleryDispatcher,
    Dispatcher,
    ItemWorkMessage,
    RecordingDispatcher,
    ScanRequestMessage,
)
from .item_processors import get_item_processor, register_item_processor
from .job_service import JobService
from .monitor import JobMonitor, SweepResult
from .reconciler import apply_reconciliation, reconcile_job, reconcile_stage
from .stage_counter import StageCounter
from .tasks import cache_item, collection_scan, reconcile_jobs, thumbnail_item

__all__ = [
    "celery_app",
    # Services
    "JobService",
    "StageCounter",
    "JobMonitor",
    "SweepResult",
    # Reconciliation
    "reconcile_stage",
    "reconcile_job",
    "apply_reconciliation",
    # Dispatch
    "Dispatcher",
    "CeleryDispatcher",
    "RecordingDispatcher",
    "ScanRequestMessage",
    "ItemWorkMessage",
    "register_item_processor",
    "get_item_processor",
    # Tasks
    "collection_scan",
    "thumbnail_item",
    "cache_item",
    "reconcile_jobs",
]
