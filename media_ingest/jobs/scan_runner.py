"""
Scan stage worker logic.

Indexes a collection's images, then seeds the thumbnail and cache stages
with whatever is still missing and fans out one item message per gap.
"""

import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Tuple

from ..core.errors import IngestError
from ..core.records import CollectionRecord, JobRecord
from ..core.types import STAGE_CACHE, STAGE_SCAN, STAGE_THUMBNAIL, CollectionKind, StageStatus
from ..db.config import Settings
from ..ingest.archive_reader import ArchiveReader
from ..ingest.gap_analyzer import compute_gaps
from ..shared.media_utils import is_content_entry, is_image_file, is_image_name
from .dispatch import Dispatcher, ScanRequestMessage
from .fan_out import artifact_options, item_messages, seed_artifact_stages
from .item_processors import WorkerContext
from .job_service import JobService
from .stage_counter import StageCounter

logger = logging.getLogger(__name__)

ARTIFACT_STAGES = (STAGE_THUMBNAIL, STAGE_CACHE)


def list_collection_images(
    collection: CollectionRecord, reader: ArchiveReader
) -> List[Tuple[str, int]]:
    """(filename, file_size) of every image directly in a folder or inside an archive."""
    if collection.kind == CollectionKind.FOLDER.value:
        folder = Path(collection.path)
        return [
            (child.name, child.stat().st_size)
            for child in sorted(folder.iterdir())
            if child.is_file() and is_image_file(child)
        ]

    return [
        (entry.name, entry.size)
        for entry in reader.entries(collection.path)
        if not entry.is_dir and is_content_entry(entry.name) and is_image_name(entry.name)
    ]


def merge_images(
    existing: List[Dict[str, Any]], found: List[Tuple[str, int]]
) -> Tuple[List[Dict[str, Any]], int]:
    """
    Merge a fresh listing into the stored image list.

    Known filenames keep their id; vanished ones are marked deleted.

    Returns:
        (images, number of newly added images)
    """
    by_name = {img.get("filename"): img for img in existing}
    seen = set()
    images: List[Dict[str, Any]] = []
    added = 0

    for filename, file_size in found:
        seen.add(filename)
        previous = by_name.get(filename)
        if previous is None:
            added += 1
            images.append(
                {
                    "id": str(uuid.uuid4()),
                    "filename": filename,
                    "file_size": file_size,
                    "is_deleted": False,
                }
            )
        else:
            images.append({**previous, "file_size": file_size, "is_deleted": False})

    for img in existing:
        if img.get("filename") not in seen:
            images.append({**img, "is_deleted": True})

    return images, added


class CollectionScanRunner:
    """Runs the scan stage of a collection-scan job."""

    def __init__(
        self,
        service: JobService,
        counter: StageCounter,
        dispatcher: Dispatcher,
        context: WorkerContext,
    ):
        self.service = service
        self.counter = counter
        self.dispatcher = dispatcher
        self.context = context

    @property
    def config(self) -> Settings:
        return self.context.config

    def run(self, message: ScanRequestMessage) -> Dict[str, Any]:
        job_id = message.job_id
        if self.service.is_cancelled(job_id):
            logger.info(f"[{job_id}] Job cancelled, skipping scan")
            return {"status": "cancelled", "job_id": job_id}

        job = self.service.get_job(job_id)
        if job.is_terminal:
            logger.info(f"[{job_id}] Job already {job.status.value}, skipping scan")
            return {"status": "skipped", "job_id": job_id}

        collection = self.context.collections.get(message.collection_id)
        if collection is None:
            self.service.fail_stage(
                job_id, STAGE_SCAN, f"Collection {message.collection_id} not found"
            )
            return {"status": "failed", "job_id": job_id}

        # Redelivered (acks late): never index twice or re-seed sealed stages
        scan_stage = job.get_stage(STAGE_SCAN)
        if scan_stage is not None and scan_stage.status == StageStatus.COMPLETED:
            return self._resume_fan_out(job, collection)

        try:
            found = list_collection_images(collection, self.context.reader)
        except (IngestError, OSError) as e:
            self.service.fail_stage(job_id, STAGE_SCAN, f"Cannot list {collection.path}: {e}")
            return {"status": "failed", "job_id": job_id, "error": str(e)}

        scan_total = len(found)
        if scan_stage is not None and scan_stage.is_sealed and scan_stage.total != scan_total:
            logger.warning(
                f"[{job_id}] Listing changed since the scan started "
                f"({scan_stage.total} -> {scan_total} images)"
            )
            scan_total = scan_stage.total
        self.service.start_stage(
            job_id, STAGE_SCAN, total=scan_total, message=f"Indexing {len(found)} images"
        )

        existing = [] if message.force_rescan else collection.images
        images, added = merge_images(existing, found)
        collection = self.context.collections.set_contents(collection.id, images=images)
        if found:
            self.counter.increment_stage(job_id, STAGE_SCAN, len(found))
        self.service.complete_stage(
            job_id, STAGE_SCAN, message=f"Indexed {len(found)} images ({added} new)"
        )
        logger.info(f"[{job_id}] Indexed {collection.name}: {len(found)} images, {added} new")

        dispatched = self._fan_out(job_id, job.parameters, collection)
        self.service.get_job(job_id)
        return {
            "status": "success",
            "job_id": job_id,
            "images": len(found),
            "added": added,
            "dispatched": dispatched,
        }

    def _resume_fan_out(self, job: JobRecord, collection: CollectionRecord) -> Dict[str, Any]:
        """Scan already indexed: fan out only if no artifact stage has been seeded."""
        seeded = [
            stage.name
            for stage in job.stages
            if stage.name in ARTIFACT_STAGES
            and (stage.status != StageStatus.PENDING or stage.is_sealed)
        ]
        if seeded:
            logger.info(
                f"[{job.id}] Scan already ran and seeded {', '.join(seeded)}, skipping redelivery"
            )
            return {"status": "skipped", "job_id": job.id}

        logger.info(f"[{job.id}] Scan already ran, fanning out stored images")
        dispatched = self._fan_out(job.id, job.parameters, collection)
        self.service.get_job(job.id)
        return {"status": "success", "job_id": job.id, "dispatched": dispatched}

    def _fan_out(
        self, job_id: str, parameters: Dict[str, Any], collection: CollectionRecord
    ) -> int:
        gap = compute_gaps(collection)
        seed_artifact_stages(self.service, job_id, gap)

        dispatched = 0
        options = artifact_options(parameters, self.config)
        for message in item_messages(job_id, collection, gap, options):
            self.dispatcher.publish(message)
            dispatched += 1
        return dispatched
