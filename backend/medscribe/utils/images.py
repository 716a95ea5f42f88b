"""Image type detection and upload validation."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from medscribe.config import settings
from medscribe.errors import InvalidImage

# Canonical MIME types accepted for transcription.
ALLOWED_IMAGE_TYPES = frozenset({
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/heic",
    "image/heif",
})

_EXTENSION_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}

_HEIC_BRANDS = {b"heic", b"heix", b"heim", b"heis", b"hevc", b"hevx"}
_HEIF_BRANDS = {b"mif1", b"msf1", b"heif"}


def sniff_mime_type(data: bytes) -> Optional[str]:
    """Identify an image from its leading bytes, or return ``None``."""
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if len(data) >= 12 and data[4:8] == b"ftyp":
        brand = data[8:12]
        if brand in _HEIC_BRANDS:
            return "image/heic"
        if brand in _HEIF_BRANDS:
            return "image/heif"
    if data.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if data.startswith(b"BM"):
        return "image/bmp"
    if data.startswith((b"II*\x00", b"MM\x00*")):
        return "image/tiff"
    return None


def detect_mime_type(data: bytes, filename: Optional[str] = None) -> Optional[str]:
    """Content sniffing first, file extension as a fallback."""
    sniffed = sniff_mime_type(data)
    if sniffed:
        return sniffed
    if filename:
        return _EXTENSION_TYPES.get(Path(filename).suffix.lower())
    return None


def normalize_mime_type(mime_type: Optional[str]) -> Optional[str]:
    if not mime_type:
        return None
    value = mime_type.split(";")[0].strip().lower()
    return "image/jpeg" if value == "image/jpg" else value


def is_allowed_type(mime_type: Optional[str]) -> bool:
    return normalize_mime_type(mime_type) in ALLOWED_IMAGE_TYPES


def validate_upload(data: bytes, declared_type: Optional[str] = None, filename: Optional[str] = None) -> str:
    """
    Check an uploaded image and return its canonical MIME type.

    Raises:
        InvalidImage: empty payload, payload over ``MAX_UPLOAD_SIZE_MB`` or a
            type outside ``ALLOWED_IMAGE_TYPES`` (declared or detected).
    """
    if not data:
        raise InvalidImage("An image file is required for transcription.")
    if len(data) > settings.max_upload_size_bytes:
        raise InvalidImage(
            f"The image size cannot exceed {settings.MAX_UPLOAD_SIZE_MB}MB.",
            status_code=413,
        )

    declared = normalize_mime_type(declared_type)
    if declared and declared != "application/octet-stream" and declared not in ALLOWED_IMAGE_TYPES:
        raise InvalidImage("The image must be a file of type: jpg, jpeg, png, webp, heic, heif.")

    detected = detect_mime_type(data, filename)
    if detected not in ALLOWED_IMAGE_TYPES:
        raise InvalidImage("The image must be a file of type: jpg, jpeg, png, webp, heic, heif.")
    return detected
