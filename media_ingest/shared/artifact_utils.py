"""
Rendering of derived artifacts (thumbnails and cache images).

Images are decoded from bytes so the same code path serves plain folders
and archive members.
"""

import io
import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

# Output format -> (Pillow format name, file extension)
OUTPUT_FORMATS: Dict[str, Tuple[str, str]] = {
    "jpeg": ("JPEG", ".jpg"),
    "jpg": ("JPEG", ".jpg"),
    "png": ("PNG", ".png"),
    "webp": ("WEBP", ".webp"),
}


def artifact_extension(fmt: str) -> str:
    """File extension for an output format name."""
    try:
        return OUTPUT_FORMATS[fmt.lower()][1]
    except KeyError:
        raise ValueError(f"Unsupported artifact format: {fmt}") from None


def artifact_path(
    root: Path, collection_id: str, kind: str, image_id: str, fmt: str
) -> Path:
    """Location of a rendered artifact: ``root/<collection>/<kind>/<image><ext>``."""
    return Path(root) / collection_id / kind / f"{image_id}{artifact_extension(fmt)}"


def render_artifact(
    source: bytes,
    output_path: Path,
    size: Tuple[int, int],
    quality: int = 85,
    fmt: str = "jpeg",
) -> Optional[Tuple[int, int]]:
    """
    Downscale an image to fit within ``size`` and save it.

    Args:
        source: Encoded image bytes
        output_path: Destination file (parent directories are created)
        size: Bounding box as (width, height); aspect ratio is kept
        quality: Encoder quality (1-100) for lossy formats
        fmt: Output format name (jpeg, png, webp)

    Returns:
        (width, height) of the written image, or None on failure
    """
    pil_format = OUTPUT_FORMATS.get(fmt.lower(), (None, None))[0]
    if pil_format is None:
        logger.error(f"Unsupported artifact format '{fmt}' for {output_path}")
        return None

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with Image.open(io.BytesIO(source)) as opened:
            # Apply EXIF orientation before resizing
            img = ImageOps.exif_transpose(opened)

            if pil_format == "JPEG" and img.mode not in ("RGB", "L"):
                img = img.convert("RGB")

            img.thumbnail(size, Image.Resampling.LANCZOS)

            save_kwargs = {"quality": quality} if pil_format in ("JPEG", "WEBP") else {}
            img.save(output_path, pil_format, **save_kwargs)

            logger.debug(f"Rendered {img.size[0]}x{img.size[1]} {pil_format}: {output_path}")
            return img.size

    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.error(f"Error rendering {output_path}: {e}")
        return None
