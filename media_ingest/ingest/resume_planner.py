"""
Resume planning.

Maps a candidate, the collection already registered at its path (if any)
and the caller's flags to exactly one ResumeAction. Pure: no I/O, same
inputs always give the same decision.
"""

from typing import Optional

from ..core.records import CollectionRecord
from ..core.types import CandidateCollection, ResumeAction, ResumeDecision, ResumeFlags
from .gap_analyzer import compute_gaps


def plan_resume(
    candidate: CandidateCollection,
    existing: Optional[CollectionRecord],
    flags: ResumeFlags,
) -> ResumeDecision:
    """
    Decide what to do with one candidate. First matching rule wins:

    ========  =========  ======  ==========  =======  ====================
    existing  overwrite  resume  has_images  missing  action
    ========  =========  ======  ==========  =======  ====================
    no        -          -       -           -        CREATE_NEW
    yes       true       -       -           -        FORCE_RESCAN
    yes       false      true    true        > 0      RESUME
    yes       false      true    true        0        SKIP_COMPLETE
    yes       false      -       false       -        SCAN_FRESH
    yes       false      false   true        -        SKIP_ALREADY_SCANNED
    ========  =========  ======  ==========  =======  ====================
    """
    if existing is None:
        return ResumeDecision(
            action=ResumeAction.CREATE_NEW,
            reason=f"No collection registered at {candidate.path}",
        )

    image_count = len(existing.active_images)

    if flags.overwrite_existing:
        return ResumeDecision(
            action=ResumeAction.FORCE_RESCAN,
            collection_id=existing.id,
            image_count=image_count,
            reason="Overwrite requested: clearing images and rescanning",
        )

    if not existing.has_images:
        return ResumeDecision(
            action=ResumeAction.SCAN_FRESH,
            collection_id=existing.id,
            reason="Collection has no images yet",
        )

    if flags.resume_incomplete:
        gap = compute_gaps(existing)
        if gap.is_empty:
            return ResumeDecision(
                action=ResumeAction.SKIP_COMPLETE,
                collection_id=existing.id,
                gap=gap,
                image_count=image_count,
                reason=f"All {image_count} images have thumbnails and cache",
            )
        return ResumeDecision(
            action=ResumeAction.RESUME,
            collection_id=existing.id,
            gap=gap,
            image_count=image_count,
            reason=(
                f"{len(gap.missing_thumbnails)} thumbnails and "
                f"{len(gap.missing_cache)} cache images missing"
            ),
        )

    return ResumeDecision(
        action=ResumeAction.SKIP_ALREADY_SCANNED,
        collection_id=existing.id,
        image_count=image_count,
        reason=f"Already scanned ({image_count} images)",
    )
