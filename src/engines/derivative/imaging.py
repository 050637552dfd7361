"""
Image decode/resize helpers (Pillow).

Both functions are CPU-bound and synchronous; callers on the event loop run
them with asyncio.to_thread.
"""

import io
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from src.core.exceptions import MalformedInputError
from src.engines.derivative.schemas import ImageMetadata


def _open(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise MalformedInputError(f"Cannot decode image: {e}", stage="decode")
    if not image.format:
        raise MalformedInputError("Image has no recognisable format", stage="decode")
    return image


def probe(data: bytes) -> ImageMetadata:
    """Read (width, height, format) of an encoded image."""
    image = _open(data)
    return ImageMetadata(width=image.width, height=image.height, format=image.format.lower())


def content_type_for(format_name: Optional[str]) -> Optional[str]:
    """MIME type for a Pillow format name ('jpeg' -> 'image/jpeg')."""
    if not format_name:
        return None
    return Image.MIME.get(format_name.upper())


def resize(data: bytes, width: int, height: int) -> Tuple[bytes, ImageMetadata]:
    """
    Resize to exactly (width, height) with Lanczos resampling.

    The output keeps the source format, and the EXIF block and ICC profile
    when the source has them.
    """
    image = _open(data)
    source_format = image.format

    save_kwargs = {}
    exif = image.info.get("exif")
    if exif:
        save_kwargs["exif"] = exif
    icc_profile = image.info.get("icc_profile")
    if icc_profile:
        save_kwargs["icc_profile"] = icc_profile
    if source_format == "JPEG":
        save_kwargs["quality"] = 95

    resized = image.resize((width, height), Image.LANCZOS)
    if source_format == "JPEG" and resized.mode not in ("RGB", "L", "CMYK"):
        resized = resized.convert("RGB")

    buffer = io.BytesIO()
    resized.save(buffer, format=source_format, **save_kwargs)
    return buffer.getvalue(), ImageMetadata(width=width, height=height, format=source_format.lower())
