"""
Image processing for menu item pictures.

Uploaded images are validated, downscaled and re-encoded as progressive JPEG,
then stored on local disk under UPLOAD_DIR/<tenant_id>/.
"""
from fastapi import UploadFile
from PIL import Image, UnidentifiedImageError
import asyncio
import io
import logging
import time
from pathlib import Path
from typing import Optional

from config import settings
from errors import ValidationFailed

logger = logging.getLogger(__name__)

# Configuration
ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp"}
ALLOWED_MIME_TYPES = {"image/png", "image/jpeg", "image/jpg", "image/gif", "image/webp"}
MAX_FILE_SIZE = 5 * 1024 * 1024  # 5MB
MAX_DIMENSION = (1200, 1200)


def upload_root() -> Path:
    return Path(settings.UPLOAD_DIR)


def validate_image_file(file: UploadFile) -> None:
    """
    Validate uploaded file is an image by extension and MIME type.

    Raises:
        ValidationFailed: INVALID_FILE
    """
    if not file.filename:
        raise ValidationFailed("No filename provided", code="INVALID_FILE")

    file_ext = Path(file.filename).suffix.lower()
    if file_ext not in ALLOWED_EXTENSIONS:
        raise ValidationFailed(
            f"Invalid file type. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
            code="INVALID_FILE"
        )

    if file.content_type not in ALLOWED_MIME_TYPES:
        raise ValidationFailed("Invalid content type. Must be an image.", code="INVALID_FILE")


def optimize_image(image: Image.Image, quality: int = 85) -> bytes:
    """Flatten transparency onto white, shrink to MAX_DIMENSION and encode as JPEG"""
    if image.mode == 'RGBA':
        background = Image.new('RGB', image.size, (255, 255, 255))
        background.paste(image, mask=image.split()[3])
        image = background
    elif image.mode != 'RGB':
        image = image.convert('RGB')

    image.thumbnail(MAX_DIMENSION, Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    image.save(buffer, format='JPEG', quality=quality, optimize=True, progressive=True)
    return buffer.getvalue()


def _process(content: bytes) -> bytes:
    try:
        image = Image.open(io.BytesIO(content))
        image.load()
    except (UnidentifiedImageError, OSError):
        raise ValidationFailed("File is not a readable image", code="INVALID_FILE")
    return optimize_image(image)


async def save_menu_image(
    file: UploadFile,
    tenant_id: int,
    menu_item_id: int,
    old_image_url: Optional[str] = None
) -> str:
    """
    Store a menu item image and return its URL path (e.g. "/uploads/3/menu_12_1700000000.jpg").

    The previous image, if any, is removed after the new one is written.
    """
    validate_image_file(file)

    content = await file.read()
    if len(content) > MAX_FILE_SIZE:
        raise ValidationFailed(
            f"File too large. Maximum size: {MAX_FILE_SIZE / (1024 * 1024):.1f}MB",
            code="FILE_TOO_LARGE"
        )

    # Pillow work is CPU bound
    data = await asyncio.to_thread(_process, content)

    tenant_dir = upload_root() / str(tenant_id)
    tenant_dir.mkdir(parents=True, exist_ok=True)
    filename = f"menu_{menu_item_id}_{int(time.time())}.jpg"
    (tenant_dir / filename).write_bytes(data)

    if old_image_url:
        delete_image(old_image_url)

    logger.info(f"Saved menu image {filename} for cafe {tenant_id} ({len(data)} bytes)")
    return f"/uploads/{tenant_id}/{filename}"


def delete_image(image_url: str) -> None:
    """Remove a stored image; missing files are ignored"""
    relative = image_url.removeprefix("/uploads/")
    file_path = upload_root() / relative
    try:
        if file_path.is_file():
            file_path.unlink()
    except OSError as e:
        logger.warning(f"Failed to delete old image {image_url}: {e}")
