import io
import logging
import mimetypes
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from .exceptions import InvalidImage

logger = logging.getLogger(__name__)

# Pillow format name -> (extension, media type)
SUPPORTED_FORMATS = {
    "JPEG": (".jpg", "image/jpeg"),
    "PNG": (".png", "image/png"),
    "WEBP": (".webp", "image/webp"),
    "GIF": (".gif", "image/gif"),
}


def sniff_image(image_data: bytes, allowed_types=None) -> Tuple[str, str, str]:
    """
    Identify a raster image from its bytes.

    Returns ``(pillow_format, extension, media_type)``. The client supplied name
    and content type are never consulted.
    """
    if not image_data:
        raise InvalidImage("empty image payload")
    try:
        with Image.open(io.BytesIO(image_data)) as img:
            img.verify()
            fmt = img.format
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise InvalidImage(f"not a readable image: {e}")

    if fmt not in SUPPORTED_FORMATS:
        raise InvalidImage(f"unsupported image format: {fmt}")
    extension, media_type = SUPPORTED_FORMATS[fmt]
    if allowed_types is not None and media_type not in allowed_types:
        raise InvalidImage(f"image type {media_type} not allowed")
    return fmt, extension, media_type


def create_thumbnail_from_bytes(image_data: bytes, size: Tuple[int, int], quality: int = 70) -> Optional[bytes]:
    """
    Create a thumbnail encoded in the same format as the source image.
    """
    try:
        with Image.open(io.BytesIO(image_data)) as img:
            fmt = img.format or "JPEG"
            if fmt == "JPEG" and img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            img.thumbnail(tuple(size), Image.Resampling.LANCZOS)

            output = io.BytesIO()
            if fmt in ("JPEG", "WEBP"):
                img.save(output, format=fmt, quality=quality)
            else:
                img.save(output, format=fmt)
            return output.getvalue()
    except Exception as e:
        logger.error(f"Error creating thumbnail: {e}")
        return None


def guess_media_type(filename: str) -> str:
    media_type, _ = mimetypes.guess_type(filename)
    return media_type or "image/jpeg"
