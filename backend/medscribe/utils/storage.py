"""Filesystem blob store for uploaded document images."""

import logging
import os
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)

# Determine base data directory:
# 1. Use DATA_ROOT env var if set.
# 2. Else, if /data exists, assume Docker environment and use /data.
# 3. Otherwise, use project_root/data (development environment).
_PROJECT_ROOT = Path(__file__).resolve().parents[3]
_ENV_DATA_ROOT = os.getenv("DATA_ROOT")
if _ENV_DATA_ROOT:
    DATA_ROOT = Path(_ENV_DATA_ROOT)
elif Path("/data").exists():
    DATA_ROOT = Path("/data")
else:
    DATA_ROOT = _PROJECT_ROOT / "data"

IMAGE_DIR = DATA_ROOT / "images"

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/heic": ".heic",
    "image/heif": ".heif",
}


def ensure_dir_exists(path: Path) -> Path:
    """Ensure that the given directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def image_path(key: str) -> Path:
    """Resolve a blob key to its file, refusing keys outside ``IMAGE_DIR``."""
    base = IMAGE_DIR.resolve()
    path = (IMAGE_DIR / key).resolve()
    if path.parent != base:
        raise ValueError(f"Invalid image key: {key!r}")
    return path


def store_image(data: bytes, mime_type: str) -> str:
    """
    Write *data* under a fresh, unique key and return that key.

    The file is written to a temporary name first and renamed into place, so
    a key handed out by this function always refers to a complete file.
    """
    ensure_dir_exists(IMAGE_DIR)
    key = f"{uuid.uuid4().hex}{_EXTENSIONS.get(mime_type, '.bin')}"
    path = IMAGE_DIR / key
    tmp_path = path.with_name(path.name + ".part")
    with open(tmp_path, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)
    logger.info("Stored image %s (%d bytes)", key, len(data))
    return key


def read_image(key: str) -> bytes:
    """Return the bytes stored under *key*. Raises ``FileNotFoundError``."""
    return image_path(key).read_bytes()


def delete_image(key: str) -> None:
    """Release the blob stored under *key*; missing blobs are ignored."""
    try:
        image_path(key).unlink(missing_ok=True)
        logger.info("Deleted image %s", key)
    except OSError as exc:
        logger.error("Failed to delete image %s: %s", key, exc)
