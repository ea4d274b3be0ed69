"""
Image handling utilities for selfie uploads.

This module provides functions for:
- Validating selfie uploads (mime type and size)
- Downscaling and re-encoding selfies as JPEG before upload
- Encoding uploads as base64 data URLs and decoding them back
- Rewriting object-storage paths to absolute URLs
"""

import base64
import binascii
import io
import re
from typing import Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from instasnap.models.internal_models import UploadFile

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
MAX_IMAGE_EDGE = 1920
JPEG_QUALITY = 85

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[^;,]*);base64,(?P<payload>.*)$", re.DOTALL)


class ImageProcessingError(Exception):
    """Raised when an image payload cannot be encoded or decoded."""
    pass


def validate_image_upload(file: UploadFile, max_bytes: int = MAX_UPLOAD_BYTES) -> Tuple[bool, str]:
    """
    Check that an upload is an image within the size limit.

    Args:
        file: Upload to validate
        max_bytes: Maximum accepted size in bytes (default: 10MB)

    Returns:
        Tuple of (is_valid, error_or_description)
    """
    if not file.content_type.startswith("image/"):
        return False, "Please upload an image file"

    if file.size == 0:
        return False, "The selected file is empty"

    if file.size > max_bytes:
        return False, f"File size must be less than {max_bytes // (1024 * 1024)}MB"

    return True, f"Valid {file.content_type} image ({file.size} bytes)"


def compress_image(file: UploadFile, max_edge: int = MAX_IMAGE_EDGE, quality: int = JPEG_QUALITY) -> UploadFile:
    """
    Shrink an image for upload.

    The image is rotated according to its EXIF orientation, downscaled so
    its longest side is at most ``max_edge`` and re-encoded as JPEG. The
    file name is kept.

    Args:
        file: Image upload to compress
        max_edge: Maximum size of the longest side in pixels
        quality: JPEG quality (1-95)

    Returns:
        New UploadFile with JPEG content

    Raises:
        ImageProcessingError: If the content cannot be decoded as an image
    """
    try:
        image = Image.open(io.BytesIO(file.content))
        image = ImageOps.exif_transpose(image)
        if image.mode != "RGB":
            image = image.convert("RGB")

        image.thumbnail((max_edge, max_edge), Image.Resampling.LANCZOS)

        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=quality, optimize=True)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise ImageProcessingError(f"Could not process image {file.name}: {e}")

    return UploadFile(name=file.name, content=buffer.getvalue(), content_type="image/jpeg")


def encode_data_url(content: bytes, content_type: Optional[str]) -> str:
    """
    Encode raw bytes as a base64 data URL.

    Args:
        content: Raw file bytes
        content_type: Mime type; an empty value becomes application/octet-stream

    Returns:
        ``data:<mime>;base64,<payload>`` string
    """
    mime = content_type or "application/octet-stream"
    payload = base64.b64encode(content).decode("ascii")
    return f"data:{mime};base64,{payload}"


def decode_data_url(data_url: str) -> Tuple[str, bytes]:
    """
    Decode a base64 data URL.

    Args:
        data_url: String produced by encode_data_url()

    Returns:
        Tuple of (mime_type, raw_bytes)

    Raises:
        ImageProcessingError: If the string is not a base64 data URL
    """
    if not isinstance(data_url, str):
        raise ImageProcessingError("Data URL must be a string")

    match = _DATA_URL_RE.match(data_url)
    if match is None:
        raise ImageProcessingError("Not a base64 data URL")

    try:
        content = base64.b64decode(match.group("payload"), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageProcessingError(f"Invalid base64 payload: {e}")

    return match.group("mime") or "application/octet-stream", content


def to_absolute_url(path: Optional[str], base_url: str) -> Optional[str]:
    """
    Prefix a relative object-storage path with the storage base URL.

    Paths that are already absolute (or empty) are returned unchanged, so
    applying this twice yields the same result as applying it once.
    """
    if not path or path.startswith("http"):
        return path
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"
