"""Database module for media-ingest (jobs and collections)."""

from .collection_repository import CollectionRepository
from .config import Settings, settings
from .job_repository import JobRepository
from .models import Base, Collection, Job, JobError, JobStage

__all__ = [
    "Settings",
    "settings",
    "Base",
    "Job",
    "JobStage",
    "JobError",
    "Collection",
    "JobRepository",
    "CollectionRepository",
]
