"""Image upload validation and storage.

The chat core only ever sees the returned URL; nothing here is consulted
when an image message is broadcast.
"""

import logging
from pathlib import Path
from uuid import uuid4

logger = logging.getLogger(__name__)

MAX_IMAGE_SIZE = 5 * 1024 * 1024  # 5 MB
ALLOWED_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif", ".webp"}
ALLOWED_MIME_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
UPLOADS_URL_PREFIX = "/uploads"


class ImageRejected(ValueError):
    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


def validate_image(filename: str | None, content_type: str | None, size: int) -> str:
    """Return the normalized extension, or raise ImageRejected."""
    ext = Path(filename or "").suffix.lower()
    mime = (content_type or "").split(";")[0].strip().lower()
    if ext not in ALLOWED_EXTENSIONS or mime not in ALLOWED_MIME_TYPES:
        raise ImageRejected(400, "Only image files (jpeg, jpg, png, gif, webp) are allowed")
    if size > MAX_IMAGE_SIZE:
        raise ImageRejected(413, "Image too large (max 5MB)")
    return ext


def store_image(uploads_dir: Path, filename: str | None, content_type: str | None, data: bytes) -> str:
    """Validate and write an uploaded image. Returns the stored file name."""
    ext = validate_image(filename, content_type, len(data))
    uploads_dir.mkdir(parents=True, exist_ok=True)
    stored_name = f"{uuid4().hex}{ext}"
    (uploads_dir / stored_name).write_bytes(data)
    logger.info("Stored upload %s (%d bytes)", stored_name, len(data))
    return stored_name


def public_url(stored_name: str) -> str:
    return f"{UPLOADS_URL_PREFIX}/{stored_name}"
