"""
Per-item processors for derived-artifact stages.

Each processor renders one artifact for one image and records it on the
collection. Processors return the worker result convention:
``{"success": True, "result": {...}}`` or ``{"success": False, "error": "..."}``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from ..core.errors import IngestError
from ..core.records import CollectionRecord
from ..core.types import STAGE_CACHE, STAGE_THUMBNAIL, CollectionKind
from ..db.collection_repository import CollectionRepository
from ..db.config import Settings, settings
from ..ingest.archive_reader import ArchiveReader
from ..shared.artifact_utils import artifact_path, render_artifact
from .dispatch import ItemWorkMessage

logger = logging.getLogger(__name__)


@dataclass
class WorkerContext:
    """Collaborators handed to item processors."""

    collections: CollectionRepository = field(default_factory=CollectionRepository)
    reader: ArchiveReader = field(default_factory=ArchiveReader)
    config: Settings = field(default_factory=lambda: settings)


ItemProcessor = Callable[[ItemWorkMessage, WorkerContext], Dict[str, Any]]

# Registry of item processors by stage name
ITEM_PROCESSORS: Dict[str, ItemProcessor] = {}


def register_item_processor(stage: str) -> Callable[[ItemProcessor], ItemProcessor]:
    """
    Decorator to register an item processor for a stage.

    Usage:
        @register_item_processor("thumbnail")
        def process_thumbnail(message, context) -> Dict[str, Any]:
            return {"success": True, "result": {...}}
    """

    def decorator(func: ItemProcessor) -> ItemProcessor:
        ITEM_PROCESSORS[stage] = func
        return func

    return decorator


def get_item_processor(stage: str) -> ItemProcessor:
    """Get the item processor for a stage."""
    if stage not in ITEM_PROCESSORS:
        raise ValueError(f"No item processor registered for stage: {stage}")
    return ITEM_PROCESSORS[stage]


def read_image_bytes(
    collection: CollectionRecord, filename: str, reader: ArchiveReader
) -> bytes:
    """Source bytes of an image, from the folder or from inside the archive."""
    if collection.kind == CollectionKind.FOLDER.value:
        return (Path(collection.path) / filename).read_bytes()
    return reader.read_entry(collection.path, filename)


def _render_for_collection(
    message: ItemWorkMessage, context: WorkerContext, list_name: str
) -> Dict[str, Any]:
    collection = context.collections.get(message.collection_id)
    if collection is None:
        return {"success": False, "error": f"Collection {message.collection_id} not found"}

    image: Optional[Dict[str, Any]] = next(
        (img for img in collection.images if img.get("id") == message.image_id), None
    )
    if image is None or image.get("is_deleted"):
        return {"success": False, "error": f"Image {message.image_id} not in collection"}

    filename = image.get("filename") or message.filename
    try:
        source = read_image_bytes(collection, filename, context.reader)
    except (IngestError, OSError) as e:
        return {"success": False, "error": f"Cannot read {filename}: {e}"}

    output = artifact_path(
        Path(context.config.artifact_dir),
        collection.id,
        message.stage,
        message.image_id,
        message.format,
    )
    dimensions = render_artifact(
        source,
        output,
        size=(message.width, message.height),
        quality=message.quality,
        fmt=message.format,
    )
    if dimensions is None:
        return {"success": False, "error": f"Failed to render {message.stage} for {filename}"}

    entry = {
        "image_id": message.image_id,
        "path": str(output),
        "width": dimensions[0],
        "height": dimensions[1],
        "format": message.format,
        "file_size": output.stat().st_size,
        "created_at": datetime.utcnow().isoformat(),
    }
    context.collections.append_artifact(collection.id, list_name, entry)
    return {"success": True, "result": entry}


@register_item_processor(STAGE_THUMBNAIL)
def process_thumbnail(message: ItemWorkMessage, context: WorkerContext) -> Dict[str, Any]:
    """Render and record a thumbnail."""
    return _render_for_collection(message, context, "thumbnails")


@register_item_processor(STAGE_CACHE)
def process_cache_image(message: ItemWorkMessage, context: WorkerContext) -> Dict[str, Any]:
    """Render and record a display-size cache image."""
    return _render_for_collection(message, context, "cache_images")
