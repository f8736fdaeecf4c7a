"""
Bulk ingestion of collections under a parent directory.

Scans for candidates, plans each one against what is already registered and
applies the plan: register/refresh collections, create jobs and dispatch
work. One bad candidate never aborts the run; it becomes an ``Error`` row.
"""

import logging
import os
from pathlib import PurePath
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from ..core.errors import IngestError, ValidationError
from ..core.records import CollectionRecord
from ..core.types import (
    JOB_TYPE_COLLECTION_SCAN,
    JOB_TYPE_RESUME_COLLECTION,
    RESUME_STAGES,
    SCAN_STAGES,
    STAGE_CACHE,
    STAGE_SCAN,
    STAGE_THUMBNAIL,
    BulkAddCollectionsRequest,
    BulkCollectionResult,
    BulkItemStatus,
    BulkOperationResult,
    CandidateCollection,
    ResumeAction,
    ResumeDecision,
)
from ..db.collection_repository import CollectionRepository
from ..db.config import Settings, settings
from ..jobs.dispatch import Dispatcher, Message, ScanRequestMessage
from ..jobs.fan_out import artifact_options, item_messages, seed_artifact_stages
from ..jobs.job_service import JobService
from .candidate_scanner import CandidateScanner
from .resume_planner import plan_resume

logger = logging.getLogger(__name__)

# Parent paths a bulk scan must never start from. The path itself and anything
# below it is refused (case-insensitive, either separator).
PROTECTED_PATHS = (
    "/bin",
    "/boot",
    "/dev",
    "/etc",
    "/lib",
    "/proc",
    "/sbin",
    "/sys",
    "/usr",
    "/System",
    "C:\\Windows",
    "C:\\Program Files",
    "C:\\Program Files (x86)",
    "C:\\ProgramData",
    "C:\\System Volume Information",
    "C:\\$Recycle.Bin",
)


def normalize_path(path: str) -> str:
    """Absolute path without trailing separators; the collection lookup key."""
    return os.path.normpath(os.path.abspath(os.path.expanduser(path)))


def _is_within(path: str, root: str) -> bool:
    path_lower = path.replace("\\", "/").rstrip("/").lower()
    root_lower = root.replace("\\", "/").rstrip("/").lower()
    return path_lower == root_lower or path_lower.startswith(root_lower + "/")


def validate_parent_path(parent_path: Optional[str]) -> str:
    """
    Reject empty and protected parent paths.

    Returns:
        The normalized parent path
    """
    if parent_path is None or not str(parent_path).strip():
        raise ValidationError("Parent path is required")

    raw = str(parent_path).strip()
    normalized = normalize_path(raw)
    if PurePath(normalized) == PurePath(normalized).parent:
        raise ValidationError("Cannot bulk scan a filesystem root")

    for protected in PROTECTED_PATHS:
        if _is_within(raw, protected) or _is_within(normalized, protected):
            raise ValidationError(
                "Cannot scan system directories. Please choose a user directory "
                "or create a dedicated folder for your collections."
            )
    return normalized


def parse_request(data: Dict[str, Any]) -> BulkAddCollectionsRequest:
    """Build a request from loose input, raising our ValidationError on bad fields."""
    try:
        return BulkAddCollectionsRequest.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid bulk request: {e}") from e


class BulkIngestionService:
    """Plans and applies bulk collection ingestion."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        jobs: Optional[JobService] = None,
        collections: Optional[CollectionRepository] = None,
        scanner: Optional[CandidateScanner] = None,
        config: Optional[Settings] = None,
    ):
        self.dispatcher = dispatcher
        self.jobs = jobs or JobService()
        self.collections = collections or CollectionRepository()
        self.scanner = scanner or CandidateScanner()
        self.config = config or settings

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def bulk_add_collections(self, request: BulkAddCollectionsRequest) -> BulkOperationResult:
        """
        Scan ``request.parent_path`` and ingest every candidate found.

        Raises:
            ValidationError: empty or protected parent path
            NotFoundError: parent path does not exist
        """
        parent = validate_parent_path(request.parent_path)
        logger.info(
            f"Starting bulk add from {parent} (subfolders={request.include_subfolders}, "
            f"overwrite={request.overwrite_existing}, resume={request.resume_incomplete})"
        )

        flags = request.flags
        result = BulkOperationResult()

        for candidate in self.scanner.scan_candidates(
            parent, request.include_subfolders, request.collection_prefix
        ):
            try:
                existing = self.collections.get_by_path(normalize_path(candidate.path))
                decision = plan_resume(candidate, existing, flags)
                logger.debug(f"{candidate.name}: {decision.action.value} ({decision.reason})")
                result.results.append(self.apply(candidate, decision, request))
            except Exception as e:
                # Broker errors (kombu) and anything else stay with this candidate
                logger.error(f"Error processing collection {candidate.name} at {candidate.path}: {e}")
                result.results.append(
                    BulkCollectionResult(
                        name=candidate.name,
                        path=candidate.path,
                        kind=candidate.kind,
                        status=BulkItemStatus.ERROR,
                        message=str(e),
                    )
                )
                result.errors.append(f"Failed to process collection '{candidate.name}': {e}")

        logger.info(f"Bulk add finished: {result.summary()}")
        return result

    def plan(
        self, request: BulkAddCollectionsRequest
    ) -> List[Tuple[CandidateCollection, ResumeDecision]]:
        """Scan and plan without side effects (dry run)."""
        parent = validate_parent_path(request.parent_path)
        flags = request.flags
        planned = []
        for candidate in self.scanner.scan_candidates(
            parent, request.include_subfolders, request.collection_prefix
        ):
            existing = self.collections.get_by_path(normalize_path(candidate.path))
            planned.append((candidate, plan_resume(candidate, existing, flags)))
        return planned

    # ------------------------------------------------------------------
    # Applying decisions
    # ------------------------------------------------------------------

    def apply(
        self,
        candidate: CandidateCollection,
        decision: ResumeDecision,
        request: BulkAddCollectionsRequest,
    ) -> BulkCollectionResult:
        """Perform the side effects of one decision and describe the outcome."""
        action = decision.action
        path = normalize_path(candidate.path)

        def outcome(status: BulkItemStatus, message: str, collection_id=None, job_id=None):
            return BulkCollectionResult(
                name=candidate.name,
                path=candidate.path,
                kind=candidate.kind,
                status=status,
                message=message,
                action=action,
                collection_id=collection_id or decision.collection_id,
                job_id=job_id,
            )

        if action == ResumeAction.CREATE_NEW:
            collection = self.collections.create(
                candidate.name, path, candidate.kind, library_id=request.library_id
            )
            job_id = self._queue_scan(collection, request, force_rescan=False)
            return outcome(
                BulkItemStatus.SUCCESS,
                "Collection created and queued for scan",
                collection.id,
                job_id,
            )

        if action == ResumeAction.FORCE_RESCAN:
            collection = self.collections.update_metadata(
                decision.collection_id,
                candidate.name,
                candidate.kind,
                library_id=request.library_id,
                clear_contents=True,
            )
            job_id = self._queue_scan(collection, request, force_rescan=True)
            return outcome(
                BulkItemStatus.SUCCESS,
                f"Collection updated and queued for full rescan "
                f"({decision.image_count} images cleared)",
                collection.id,
                job_id,
            )

        if action == ResumeAction.SCAN_FRESH:
            collection = self.collections.update_metadata(
                decision.collection_id,
                candidate.name,
                candidate.kind,
                library_id=request.library_id,
            )
            job_id = self._queue_scan(collection, request, force_rescan=False)
            return outcome(
                BulkItemStatus.SUCCESS,
                "Collection has no images; queued for scan",
                collection.id,
                job_id,
            )

        if action == ResumeAction.RESUME:
            collection = self.collections.get(decision.collection_id)
            if collection is None:
                raise IngestError(f"Collection {decision.collection_id} disappeared")
            job_id = self._queue_resume(collection, decision, request)
            return outcome(
                BulkItemStatus.RESUMED,
                f"Resumed: {len(decision.gap.missing_thumbnails)} thumbnails, "
                f"{len(decision.gap.missing_cache)} cache (no re-scan)",
                job_id=job_id,
            )

        if action == ResumeAction.SKIP_COMPLETE:
            return outcome(
                BulkItemStatus.SKIPPED,
                f"Already complete: {decision.image_count} images with thumbnails and cache",
            )

        return outcome(
            BulkItemStatus.SKIPPED,
            f"Already scanned: {decision.image_count} images "
            f"(use resume_incomplete to resume)",
        )

    def artifact_options(self, request: BulkAddCollectionsRequest) -> Dict[str, Any]:
        """Thumbnail/cache options for item workers, request first, settings second."""
        return artifact_options(request.model_dump(), self.config)

    def _queue_scan(
        self,
        collection: CollectionRecord,
        request: BulkAddCollectionsRequest,
        force_rescan: bool,
    ) -> str:
        job = self.jobs.create_job(
            JOB_TYPE_COLLECTION_SCAN,
            stages=SCAN_STAGES,
            collection_id=collection.id,
            parameters={
                "collection_path": collection.path,
                "force_rescan": force_rescan,
                **self.artifact_options(request),
            },
            message=f"Queued scan of {collection.name}",
        )
        self._dispatch(
            job.id,
            STAGE_SCAN,
            [
                ScanRequestMessage(
                    collection_id=collection.id, job_id=job.id, force_rescan=force_rescan
                )
            ],
        )
        return job.id

    def _queue_resume(
        self,
        collection: CollectionRecord,
        decision: ResumeDecision,
        request: BulkAddCollectionsRequest,
    ) -> str:
        gap = decision.gap
        options = self.artifact_options(request)
        job = self.jobs.create_job(
            JOB_TYPE_RESUME_COLLECTION,
            stages=RESUME_STAGES,
            collection_id=collection.id,
            parameters={"collection_path": collection.path, **options},
            message=f"Resuming {collection.name}",
        )

        seed_artifact_stages(self.jobs, job.id, gap)

        stage_name = STAGE_THUMBNAIL if gap.missing_thumbnails else STAGE_CACHE
        self._dispatch(job.id, stage_name, item_messages(job.id, collection, gap, options))

        logger.info(
            f"Resume job {job.id} for {collection.name}: {gap.total} item messages dispatched"
        )
        return job.id

    def _dispatch(self, job_id: str, stage_name: str, messages: Iterable[Message]) -> None:
        """
        Publish messages for a freshly created job.

        If publishing fails the job is failed on ``stage_name`` so it is not
        left Pending with no work queued, then the error propagates.
        """
        try:
            for message in messages:
                self.dispatcher.publish(message)
        except Exception as e:
            logger.error(f"Dispatch failed for job {job_id}: {e}")
            self.jobs.fail_stage(job_id, stage_name, f"Dispatch failed: {e}")
            raise
