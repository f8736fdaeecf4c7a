"""
Celery configuration settings.
"""

import os
from typing import Any, Dict, Optional

from ..db.config import settings

# Fully qualified task names (also used by the dispatcher)
TASK_COLLECTION_SCAN = "media_ingest.jobs.tasks.collection_scan"
TASK_THUMBNAIL_ITEM = "media_ingest.jobs.tasks.thumbnail_item"
TASK_CACHE_ITEM = "media_ingest.jobs.tasks.cache_item"
TASK_RECONCILE_JOBS = "media_ingest.jobs.tasks.reconcile_jobs"


class CeleryConfig:
    """Celery configuration."""

    # Broker settings
    broker_url: str = os.getenv("CELERY_BROKER_URL", settings.redis_url)

    # Result backend settings
    result_backend: str = os.getenv("CELERY_RESULT_BACKEND", settings.redis_url)

    # Task settings
    task_serializer: str = "json"
    accept_content: list = ["json"]
    result_serializer: str = "json"
    timezone: str = "UTC"
    enable_utc: bool = True

    # Task execution settings
    task_track_started: bool = True  # Track when tasks start
    task_time_limit: int = 3600 * 6  # 6 hours max per task
    task_soft_time_limit: int = 3600 * 5  # 5 hours soft limit
    task_acks_late: bool = True  # Acknowledge after task completion
    worker_prefetch_multiplier: int = 1  # One task at a time per worker

    # Result backend settings
    result_expires: int = 3600 * 24  # Results expire after 24 hours

    # Worker settings
    worker_max_tasks_per_child: Optional[int] = 1000  # Restart worker after N tasks

    # Performance settings
    broker_connection_retry_on_startup: bool = True

    # Task routing
    task_routes = {
        TASK_COLLECTION_SCAN: {"queue": "scan"},
        TASK_THUMBNAIL_ITEM: {"queue": "thumbnails"},
        TASK_CACHE_ITEM: {"queue": "cache"},
        TASK_RECONCILE_JOBS: {"queue": "maintenance"},
    }

    # Periodic reconciliation sweep
    beat_schedule: Dict[str, Dict[str, Any]] = {
        "reconcile-jobs": {
            "task": TASK_RECONCILE_JOBS,
            "schedule": settings.sweep_interval_seconds,
        },
    }

    # Monitoring
    worker_send_task_events: bool = True
    task_send_sent_event: bool = True


def get_celery_config() -> CeleryConfig:
    """Get Celery configuration."""
    return CeleryConfig()
