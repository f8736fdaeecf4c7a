"""
Type definitions for jobs, candidates and bulk ingestion results.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool


class JobStatus(str, Enum):
    """Overall status of a tracked job."""

    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_JOB_STATUSES

    @property
    def rank(self) -> int:
        """Position in the forward-only lifecycle (terminal states share a rank)."""
        if self is JobStatus.PENDING:
            return 0
        if self is JobStatus.IN_PROGRESS:
            return 1
        return 2


TERMINAL_JOB_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


class StageStatus(str, Enum):
    """Status of a single stage of a multi-stage job."""

    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (StageStatus.COMPLETED, StageStatus.FAILED)


class CollectionKind(str, Enum):
    """Physical layout of a collection on disk."""

    FOLDER = "folder"
    ZIP = "zip"
    SEVEN_ZIP = "7z"
    RAR = "rar"
    TAR = "tar"


class ResumeAction(str, Enum):
    """Outcome of planning a candidate against existing state."""

    CREATE_NEW = "create_new"
    FORCE_RESCAN = "force_rescan"
    RESUME = "resume"
    SKIP_COMPLETE = "skip_complete"
    SCAN_FRESH = "scan_fresh"
    SKIP_ALREADY_SCANNED = "skip_already_scanned"

    @property
    def is_skip(self) -> bool:
        return self in (ResumeAction.SKIP_COMPLETE, ResumeAction.SKIP_ALREADY_SCANNED)

    @property
    def queues_scan(self) -> bool:
        return self in (
            ResumeAction.CREATE_NEW,
            ResumeAction.FORCE_RESCAN,
            ResumeAction.SCAN_FRESH,
        )


class BulkItemStatus(str, Enum):
    """Per-candidate outcome reported by a bulk operation."""

    SUCCESS = "Success"
    RESUMED = "Resumed"
    SKIPPED = "Skipped"
    ERROR = "Error"


# Well-known job types and stage names
JOB_TYPE_COLLECTION_SCAN = "collection-scan"
JOB_TYPE_RESUME_COLLECTION = "resume-collection"

STAGE_SCAN = "scan"
STAGE_THUMBNAIL = "thumbnail"
STAGE_CACHE = "cache"

SCAN_STAGES = (STAGE_SCAN, STAGE_THUMBNAIL, STAGE_CACHE)
RESUME_STAGES = (STAGE_THUMBNAIL, STAGE_CACHE)


class CandidateCollection(BaseModel):
    """A folder or archive discovered by a bulk scan. Transient, never persisted."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: str
    kind: CollectionKind


class GapReport(BaseModel):
    """Items of an existing collection that still lack derived artifacts."""

    model_config = ConfigDict(frozen=True)

    missing_thumbnails: List[str] = Field(default_factory=list)
    missing_cache: List[str] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.missing_thumbnails) + len(self.missing_cache)

    @property
    def is_empty(self) -> bool:
        return self.total == 0


class ResumeFlags(BaseModel):
    """Caller flags controlling how existing collections are treated."""

    model_config = ConfigDict(frozen=True)

    overwrite_existing: StrictBool = False
    resume_incomplete: StrictBool = False


class ResumeDecision(BaseModel):
    """Deterministic plan for a single candidate."""

    model_config = ConfigDict(frozen=True)

    action: ResumeAction
    collection_id: Optional[str] = None
    gap: Optional[GapReport] = None
    image_count: int = 0
    reason: str = ""


class JobHealth(BaseModel):
    """Read-side health assessment of a job."""

    job_id: str
    status: JobStatus
    is_stuck: bool = False
    is_timed_out: bool = False
    issues: List[str] = Field(default_factory=list)
    checked_at: datetime

    @property
    def is_healthy(self) -> bool:
        return not self.issues


class BulkAddCollectionsRequest(BaseModel):
    """Parameters for a bulk ingestion run."""

    parent_path: str
    include_subfolders: StrictBool = False
    collection_prefix: Optional[str] = None
    overwrite_existing: StrictBool = False
    resume_incomplete: StrictBool = False
    library_id: Optional[str] = None

    # Artifact options forwarded to item workers (None -> settings defaults)
    thumbnail_width: Optional[int] = Field(default=None, gt=0)
    thumbnail_height: Optional[int] = Field(default=None, gt=0)
    cache_width: Optional[int] = Field(default=None, gt=0)
    cache_height: Optional[int] = Field(default=None, gt=0)

    @property
    def flags(self) -> ResumeFlags:
        return ResumeFlags(
            overwrite_existing=self.overwrite_existing,
            resume_incomplete=self.resume_incomplete,
        )


class BulkCollectionResult(BaseModel):
    """Outcome for one candidate of a bulk run."""

    name: str
    path: str
    kind: CollectionKind
    status: BulkItemStatus
    message: str
    action: Optional[ResumeAction] = None
    collection_id: Optional[str] = None
    job_id: Optional[str] = None


class BulkOperationResult(BaseModel):
    """Structured result of a bulk run. Partial success is the norm."""

    results: List[BulkCollectionResult] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @property
    def total_processed(self) -> int:
        return len(self.results)

    def count(self, status: BulkItemStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def success_count(self) -> int:
        return self.count(BulkItemStatus.SUCCESS)

    @property
    def resumed_count(self) -> int:
        return self.count(BulkItemStatus.RESUMED)

    @property
    def skipped_count(self) -> int:
        return self.count(BulkItemStatus.SKIPPED)

    @property
    def error_count(self) -> int:
        return self.count(BulkItemStatus.ERROR)

    def summary(self) -> dict:
        return {
            "total_processed": self.total_processed,
            "success": self.success_count,
            "resumed": self.resumed_count,
            "skipped": self.skipped_count,
            "errors": self.error_count,
        }
