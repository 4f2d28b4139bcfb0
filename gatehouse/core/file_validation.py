"""File validation utilities for image uploads.

Security: Validates file content (magic bytes) and enforces the ingress size
limit while reading, so oversized uploads are rejected without buffering
them whole.
"""

from typing import TYPE_CHECKING

import magic
import structlog

if TYPE_CHECKING:
    from fastapi import UploadFile

from gatehouse.core.errors import ValidationError

logger = structlog.get_logger()

# Maximum upload size (10 MB)
MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024

# Chunk size for reading files (64 KB)
CHUNK_SIZE_BYTES = 64 * 1024

# Image MIME types the avatar pipeline can decode
ALLOWED_IMAGE_MIMES: frozenset[str] = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/webp",
        "image/gif",
        "image/bmp",
        "image/tiff",
    }
)


async def read_file_with_size_limit(
    file: "UploadFile",
    max_size: int = MAX_FILE_SIZE_BYTES,
    field: str = "image",
) -> bytes:
    """Read file content with size limit to prevent DoS.

    Args:
        file: UploadFile from FastAPI.
        max_size: Maximum allowed file size in bytes.
        field: Form field name reported in error details.

    Returns:
        File content as bytes.

    Raises:
        ValidationError: If file exceeds size limit.
    """
    chunks: list[bytes] = []
    total_size = 0

    while True:
        chunk = await file.read(CHUNK_SIZE_BYTES)
        if not chunk:
            break
        total_size += len(chunk)
        if total_size > max_size:
            raise ValidationError(
                message=f"File too large. Maximum size: {max_size // (1024 * 1024)}MB",
                details=[{"field": field, "error": "FILE_TOO_LARGE"}],
            )
        chunks.append(chunk)

    return b"".join(chunks)


def validate_image_content(content: bytes, filename: str | None = None) -> str:
    """Validate file content using magic bytes (not the declared type).

    Args:
        content: File binary content.
        filename: Original filename (for server-side logs only).

    Returns:
        Detected MIME type.

    Raises:
        ValidationError: If the content is empty or not an allowed image type.
    """
    if not content:
        raise ValidationError(
            message="No file uploaded",
            details=[{"field": "image", "error": "MISSING_FILE"}],
        )

    detected_mime = magic.from_buffer(content, mime=True)
    if detected_mime not in ALLOWED_IMAGE_MIMES:
        # Log detected MIME for server-side debugging; do NOT expose to client
        logger.warning(
            "Image content validation failed",
            detected_mime=detected_mime,
            filename=filename,
        )
        raise ValidationError(
            message="Invalid file type. Allowed: JPEG, PNG, WebP, GIF, BMP, TIFF.",
            details=[{"field": "image", "error": "INVALID_FILE_CONTENT"}],
        )

    return detected_mime
