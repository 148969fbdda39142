import logging
from pathlib import Path
from uuid import uuid4

from fastapi import UploadFile

from config import get_settings
from db import AsyncClient
from errors import ValidationError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}
DOCUMENT_EXTENSIONS = IMAGE_EXTENSIONS | {".pdf"}
MAX_UPLOAD_BYTES = 5 * 1024 * 1024


async def upload_file(
    sbase: AsyncClient,
    folder: str,
    upload: UploadFile,
    field: str,
    allowed_extensions: set[str] = IMAGE_EXTENSIONS,
) -> str:
    """Store an uploaded file in the configured bucket and return its storage path."""
    ext = Path(upload.filename or "").suffix.lower()
    if ext not in allowed_extensions:
        raise ValidationError(f"Unsupported file type '{ext or 'none'}'", field=field)

    content = await upload.read()
    if not content:
        raise ValidationError("Uploaded file is empty", field=field)
    if len(content) > MAX_UPLOAD_BYTES:
        raise ValidationError("Uploaded file is larger than 5 MB", field=field)

    path = f"{folder}/{uuid4().hex}{ext}"
    await sbase.storage.from_(get_settings().storage_bucket).upload(
        path,
        content,
        {"content-type": upload.content_type or "application/octet-stream"},
    )
    logger.info("Stored upload %s (%d bytes)", path, len(content))
    return path
