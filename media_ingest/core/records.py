"""
Plain records passed between the repositories and the services.

Repositories convert ORM rows into these dataclasses so callers never hold
a live session. Counters on these records are snapshots: the database is
the only place they are incremented.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .types import JobStatus, StageStatus


@dataclass
class StageState:
    """Snapshot of one stage of a multi-stage job."""

    name: str
    status: StageStatus = StageStatus.PENDING
    total: int = 0
    completed: int = 0
    failed: int = 0
    message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def processed(self) -> int:
        return self.completed + self.failed

    @property
    def is_sealed(self) -> bool:
        """A stage total is sealed once it is non-zero."""
        return self.total > 0

    @property
    def percent_complete(self) -> int:
        if self.total == 0:
            return 100 if self.status == StageStatus.COMPLETED else 0
        return int((self.processed / self.total) * 100)


@dataclass
class JobRecord:
    """Snapshot of a tracked job and its stages."""

    id: str
    job_type: str
    status: JobStatus = JobStatus.PENDING
    is_multi_stage: bool = False
    stages: List[StageState] = field(default_factory=list)
    total_items: int = 0
    completed_items: int = 0
    errors: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    estimated_completion: Optional[datetime] = None
    message: Optional[str] = None
    collection_id: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    version: int = 1
    stale_flagged_at: Optional[datetime] = None
    failure_alerted_at: Optional[datetime] = None

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def get_stage(self, name: str) -> Optional[StageState]:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    @property
    def current_stage(self) -> Optional[StageState]:
        """First stage that has not completed, or None."""
        for stage in self.stages:
            if stage.status != StageStatus.COMPLETED:
                return stage
        return None

    @property
    def total_work(self) -> int:
        if self.is_multi_stage:
            return sum(s.total for s in self.stages)
        return self.total_items

    @property
    def processed_work(self) -> int:
        if self.is_multi_stage:
            return sum(s.processed for s in self.stages)
        return self.completed_items

    @property
    def failed_work(self) -> int:
        if self.is_multi_stage:
            return sum(s.failed for s in self.stages)
        return self.error_count

    @property
    def failure_rate(self) -> float:
        """Failed share of attempted work, within [0, 1]."""
        failed = self.failed_work
        if self.is_multi_stage:
            attempted = self.processed_work
        else:
            # completed_items never includes the error rows
            attempted = self.completed_items + failed
        if attempted == 0:
            return 0.0
        return failed / attempted

    @property
    def progress_percent(self) -> int:
        if self.status == JobStatus.COMPLETED:
            return 100
        total = self.total_work
        if total == 0:
            return 0
        return min(100, int((self.processed_work / total) * 100))


@dataclass
class CollectionRecord:
    """Snapshot of a registered collection and its embedded lists."""

    id: str
    name: str
    path: str
    kind: str
    library_id: Optional[str] = None
    images: List[Dict[str, Any]] = field(default_factory=list)
    thumbnails: List[Dict[str, Any]] = field(default_factory=list)
    cache_images: List[Dict[str, Any]] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def active_images(self) -> List[Dict[str, Any]]:
        return [img for img in self.images if not img.get("is_deleted", False)]

    @property
    def has_images(self) -> bool:
        return any(not img.get("is_deleted", False) for img in self.images)
