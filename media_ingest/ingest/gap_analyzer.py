"""Which images of a collection still lack thumbnails or cache images."""

from typing import Any, Dict, Iterable, List, Set

from ..core.records import CollectionRecord
from ..core.types import GapReport


def _artifact_ids(artifacts: Iterable[Dict[str, Any]]) -> Set[str]:
    return {entry["image_id"] for entry in artifacts if entry.get("image_id")}


def compute_gaps(collection: CollectionRecord) -> GapReport:
    """
    Active image ids with no thumbnail / no cache image, in collection order.

    Deleted images are ignored. Each artifact list is indexed once, so this
    is linear in the size of the collection.
    """
    thumbnail_ids = _artifact_ids(collection.thumbnails)
    cache_ids = _artifact_ids(collection.cache_images)

    missing_thumbnails: List[str] = []
    missing_cache: List[str] = []
    for image in collection.active_images:
        image_id = image["id"]
        if image_id not in thumbnail_ids:
            missing_thumbnails.append(image_id)
        if image_id not in cache_ids:
            missing_cache.append(image_id)

    return GapReport(missing_thumbnails=missing_thumbnails, missing_cache=missing_cache)
