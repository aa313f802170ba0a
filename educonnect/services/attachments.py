from __future__ import annotations

import io
import uuid
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from ..app_logger import get_logger
from ..config import settings
from ..errors import ValidationFailed

logger = get_logger("attachments")

ALLOWED_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "application/pdf": "pdf",
}

IMAGE_FORMATS = {
    "image/jpeg": ("JPEG", "MPO"),
    "image/png": ("PNG",),
    "image/webp": ("WEBP",),
    "image/gif": ("GIF",),
}

PDF_MAGIC = b"%PDF-"

LEAVE_DIR = "leave-applications"


def check_content(content: bytes, content_type: str) -> None:
    """Raises ValidationFailed unless the bytes really are the declared image or PDF."""
    if content_type == "application/pdf":
        if not content.startswith(PDF_MAGIC):
            raise ValidationFailed("Nội dung file không phải PDF hợp lệ")
        return
    try:
        img = Image.open(io.BytesIO(content))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise ValidationFailed("Nội dung file không phải ảnh hợp lệ") from exc
    if img.format not in IMAGE_FORMATS[content_type]:
        raise ValidationFailed(f"Định dạng ảnh {img.format} không khớp với {content_type}")


def save_leave_attachment(content: bytes, content_type: str | None, user_id: int) -> dict:
    """Stores an attachment under MEDIA_ROOT/leave-applications and returns its url and path."""
    ext = ALLOWED_TYPES.get((content_type or "").lower())
    if not ext:
        raise ValidationFailed("Chỉ chấp nhận file ảnh (JPEG, PNG, WebP, GIF) hoặc PDF")
    if not content:
        raise ValidationFailed("File rỗng")
    if len(content) > settings.MAX_ATTACHMENT_BYTES:
        limit_mb = settings.MAX_ATTACHMENT_BYTES // (1024 * 1024)
        raise ValidationFailed(f"File vượt quá dung lượng cho phép ({limit_mb}MB)")
    check_content(content, content_type.lower())

    folder = Path(settings.MEDIA_ROOT) / LEAVE_DIR
    folder.mkdir(parents=True, exist_ok=True)
    filename = f"{user_id}-{uuid.uuid4().hex}.{ext}"
    path = folder / filename
    path.write_bytes(content)
    logger.info("Saved leave attachment %s (%d bytes)", path, len(content))

    relative = f"{LEAVE_DIR}/{filename}"
    return {"url": f"/media/{relative}", "path": relative}
