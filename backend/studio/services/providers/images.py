"""Source image normalization for image-to-image / image-to-video requests."""

from __future__ import annotations

import base64
import io

from PIL import Image, ImageOps, UnidentifiedImageError

from studio.core.errors import EncodingError

JPEG_DATA_URI_PREFIX = "data:image/jpeg;base64,"


def normalize_jpeg(image_bytes: bytes, *, quality: int = 90) -> bytes:
    """Re-encode as JPEG with the EXIF orientation applied to the pixels."""
    if not image_bytes:
        raise EncodingError("Source image is empty")
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            oriented = ImageOps.exif_transpose(img)
            if oriented.mode != "RGB":
                oriented = oriented.convert("RGB")
            buffer = io.BytesIO()
            oriented.save(buffer, format="JPEG", quality=quality)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise EncodingError(f"Failed to encode source image: {exc}") from exc
    return buffer.getvalue()


def to_base64(image_bytes: bytes, *, quality: int = 90) -> str:
    return base64.b64encode(normalize_jpeg(image_bytes, quality=quality)).decode("ascii")


def to_data_uri(image_bytes: bytes, *, quality: int = 90) -> str:
    return JPEG_DATA_URI_PREFIX + to_base64(image_bytes, quality=quality)
