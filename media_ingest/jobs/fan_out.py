"""Seeding artifact stages and building their item messages."""

import logging
from typing import Any, Dict, Iterator, Mapping

from ..core.records import CollectionRecord
from ..core.types import STAGE_CACHE, STAGE_THUMBNAIL, GapReport
from ..db.config import Settings
from .dispatch import ItemWorkMessage
from .job_service import JobService

logger = logging.getLogger(__name__)

OPTION_KEYS = (
    "thumbnail_width",
    "thumbnail_height",
    "cache_width",
    "cache_height",
    "cache_quality",
    "cache_format",
)


def artifact_options(overrides: Mapping[str, Any], config: Settings) -> Dict[str, Any]:
    """Artifact options with falsy/missing overrides filled from settings."""
    return {key: overrides.get(key) or getattr(config, key) for key in OPTION_KEYS}


def seed_artifact_stages(service: JobService, job_id: str, gap: GapReport) -> None:
    """
    Start the thumbnail and cache stages with their gap sizes.

    A stage with nothing missing is completed immediately. Call this before
    dispatching any item so that every total is sealed first.
    """
    for stage_name, missing in (
        (STAGE_THUMBNAIL, gap.missing_thumbnails),
        (STAGE_CACHE, gap.missing_cache),
    ):
        if missing:
            service.start_stage(
                job_id,
                stage_name,
                total=len(missing),
                message=f"Generating {len(missing)} {stage_name} items",
            )
        else:
            service.complete_stage(job_id, stage_name, message="Nothing to generate")


def item_messages(
    job_id: str,
    collection: CollectionRecord,
    gap: GapReport,
    options: Mapping[str, Any],
) -> Iterator[ItemWorkMessage]:
    """One message per missing thumbnail, then one per missing cache image."""
    filenames = {img["id"]: img.get("filename") for img in collection.images}

    for stage_name, missing, width, height in (
        (
            STAGE_THUMBNAIL,
            gap.missing_thumbnails,
            options["thumbnail_width"],
            options["thumbnail_height"],
        ),
        (STAGE_CACHE, gap.missing_cache, options["cache_width"], options["cache_height"]),
    ):
        for image_id in missing:
            yield ItemWorkMessage(
                job_id=job_id,
                stage=stage_name,
                collection_id=collection.id,
                image_id=image_id,
                filename=filenames.get(image_id),
                width=width,
                height=height,
                quality=options["cache_quality"],
                format=options["cache_format"],
            )
