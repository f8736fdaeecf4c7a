"""Core types and errors shared by the job engine and the ingestion planner."""

from .errors import (
    AtomicUpdateFailure,
    IngestError,
    InvalidTransitionError,
    NotFoundError,
    StageSealedError,
    TransientIOError,
    ValidationError,
)
from .records import CollectionRecord, JobRecord, StageState
from .types import (
    BulkAddCollectionsRequest,
    BulkCollectionResult,
    BulkItemStatus,
    BulkOperationResult,
    CandidateCollection,
    CollectionKind,
    GapReport,
    JobHealth,
    JobStatus,
    ResumeAction,
    ResumeDecision,
    ResumeFlags,
    StageStatus,
)

__all__ = [
    # Errors
    "IngestError",
    "NotFoundError",
    "ValidationError",
    "StageSealedError",
    "InvalidTransitionError",
    "TransientIOError",
    "AtomicUpdateFailure",
    # Records
    "JobRecord",
    "StageState",
    "CollectionRecord",
    # Types
    "JobStatus",
    "StageStatus",
    "CollectionKind",
    "ResumeAction",
    "BulkItemStatus",
    "CandidateCollection",
    "GapReport",
    "ResumeFlags",
    "ResumeDecision",
    "JobHealth",
    "BulkAddCollectionsRequest",
    "BulkCollectionResult",
    "BulkOperationResult",
]
