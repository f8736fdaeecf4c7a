"""
Redis-based progress publisher for job status transitions.

Subscribers listen on ``job:{id}:progress``; pollers read
``job:{id}:last_progress``. Publishing never blocks for long (1 s socket
timeouts) and never raises: if Redis is unavailable the event is dropped
with a warning.
"""

import json
import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional

import redis

from ..core.records import JobRecord

logger = logging.getLogger(__name__)

# Redis connection pool (shared across all publishers)
_redis_pool: Optional[redis.ConnectionPool] = None

LAST_PROGRESS_TTL_SECONDS = 3600


def _get_redis_url() -> str:
    """Get Redis URL from environment or config."""
    url = os.getenv("CELERY_BROKER_URL")
    if url:
        return url

    from ..db.config import settings

    return settings.redis_url


def _get_redis_pool() -> redis.ConnectionPool:
    """Get or create the Redis connection pool."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.ConnectionPool.from_url(
            _get_redis_url(),
            max_connections=10,
            socket_connect_timeout=1.0,
            socket_timeout=1.0,
        )
    return _redis_pool


def _get_redis_client() -> redis.Redis:
    """Get a Redis client from the pool."""
    return redis.Redis(connection_pool=_get_redis_pool())


def get_progress_channel(job_id: str) -> str:
    """Get the Redis pub/sub channel name for a job."""
    return f"job:{job_id}:progress"


def get_progress_key(job_id: str) -> str:
    """Get the Redis key for storing last progress (for polling)."""
    return f"job:{job_id}:last_progress"


def build_progress_payload(job: JobRecord) -> Dict[str, Any]:
    """JSON-serializable snapshot of a job for subscribers."""
    return {
        "job_id": job.id,
        "job_type": job.job_type,
        "status": job.status.value,
        "progress": {
            "current": job.processed_work,
            "total": job.total_work,
            "percent": job.progress_percent,
            "message": job.message or "",
            "error_count": job.error_count,
        },
        "stages": [
            {
                "name": stage.name,
                "status": stage.status.value,
                "total": stage.total,
                "completed": stage.completed,
                "failed": stage.failed,
            }
            for stage in job.stages
        ],
        "timestamp": datetime.utcnow().isoformat(),
    }


def publish_job_progress(job: JobRecord) -> bool:
    """
    Publish a job snapshot to Redis.

    Returns:
        True if published successfully, False otherwise
    """
    try:
        payload = json.dumps(build_progress_payload(job))
        client = _get_redis_client()

        pipe = client.pipeline(transaction=False)
        pipe.publish(get_progress_channel(job.id), payload)
        pipe.setex(get_progress_key(job.id), LAST_PROGRESS_TTL_SECONDS, payload)
        pipe.execute()

        logger.debug(f"Published progress for job {job.id}: {job.status.value}")
        return True

    except redis.RedisError as e:
        logger.warning(f"Failed to publish progress for job {job.id}: {e}")
        return False
    except (TypeError, ValueError) as e:
        logger.warning(f"Failed to encode progress for job {job.id}: {e}")
        return False


def get_last_progress(job_id: str) -> Optional[Dict[str, Any]]:
    """
    Get the last published progress for a job (for polling).

    Returns:
        Progress dict if available, None otherwise
    """
    try:
        data = _get_redis_client().get(get_progress_key(job_id))
        if not data:
            return None
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        return json.loads(data)

    except redis.RedisError as e:
        logger.warning(f"Failed to get progress for job {job_id}: {e}")
        return None
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to decode progress for job {job_id}: {e}")
        return None


class RedisProgressPublisher:
    """Callable publisher used by JobService; honours ``settings.publish_progress``."""

    def __init__(self, enabled: Optional[bool] = None):
        if enabled is None:
            from ..db.config import settings

            enabled = settings.publish_progress
        self.enabled = enabled

    def __call__(self, job: JobRecord) -> bool:
        if not self.enabled:
            return False
        return publish_job_progress(job)
