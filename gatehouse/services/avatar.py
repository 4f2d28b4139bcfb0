"""Avatar service.

Sets a user's avatar from one of three sources:
- an uploaded image (validated, resized to 512x512, re-encoded as WebP
  under a 2 MB budget, stored in blob storage)
- the profile picture URL of a linked account (stored as-is)
- two initials (stored uppercased; shorter than any URL)

Each change is a single write to ``users.image``. If the previous avatar was
an uploaded blob, its deletion is scheduled on the request's background
tasks: it runs after the response is sent, at most once, and a failure is
only logged. The new avatar stays in place either way.

Public API:
- store_avatar_image              — validate + compress + store (no user)
- set_avatar_from_upload          — store_avatar_image, then set the avatar
- set_avatar_from_linked_account  — copy a provider image URL
- set_avatar_from_initials        — two-letter initials
- cleanup_old_avatar              — deferred blob deletion
"""

import asyncio
import uuid

import structlog
from fastapi import BackgroundTasks
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.core.blob_storage import BlobStore, get_blob_store, is_managed_blob_url
from gatehouse.core.errors import NotFoundError, ValidationError
from gatehouse.core.file_validation import MAX_FILE_SIZE_BYTES, validate_image_content
from gatehouse.core.image_compression import CompressionOptions, compress_image
from gatehouse.core.responses import AvatarResult
from gatehouse.repositories.user_repository import UserRepository

logger = structlog.get_logger()

# Compressed avatar budget (2 MB)
MAX_AVATAR_BYTES = 2 * 1024 * 1024
AVATAR_DIMENSIONS = 512
AVATAR_FILE_NAME = "avatar.webp"
INITIALS_LENGTH = 2

AVATAR_COMPRESSION = CompressionOptions(
    width=AVATAR_DIMENSIONS,
    height=AVATAR_DIMENSIONS,
    format="webp",
)

# =============================================================================
# Helpers
# =============================================================================


async def _apply(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    old_image: str | None,
    new_image: str,
    background_tasks: BackgroundTasks,
    blob_store: BlobStore | None,
) -> AvatarResult:
    user = await UserRepository.update(db, user_id, image=new_image)
    if user is None:
        raise NotFoundError("User", str(user_id))

    if old_image and old_image != new_image and is_managed_blob_url(old_image):
        background_tasks.add_task(cleanup_old_avatar, old_image, blob_store)

    return AvatarResult(url=new_image)


def normalize_initials(initials: object) -> str:
    """Validate and uppercase two-character initials.

    Raises:
        ValidationError: If the value is not a string of exactly two characters.
    """
    if not isinstance(initials, str) or len(initials) != INITIALS_LENGTH:
        raise ValidationError(
            message="Invalid initials",
            details=[{"field": "initials", "error": "MUST_BE_TWO_CHARACTERS"}],
        )
    return initials.upper()


# =============================================================================
# Public API
# =============================================================================


async def store_avatar_image(
    data: bytes,
    *,
    filename: str | None = None,
    user_id: uuid.UUID | None = None,
    blob_store: BlobStore | None = None,
) -> str:
    """Validate, compress and store an avatar image without assigning it.

    Inputs already under the budget are still re-encoded once at quality
    100, so every stored avatar has the same format and dimensions.

    Args:
        data: Uploaded bytes.
        filename: Client filename (logs only).
        user_id: Owner, when the account already exists (logs only).
        blob_store: Blob client; defaults to the shared one.

    Returns:
        Public URL of the stored WebP blob.

    Raises:
        ValidationError: Missing, oversized, or undecodable image.
        BlobStorageError: Blob upload failed.
    """
    if len(data) > MAX_FILE_SIZE_BYTES:
        max_mb = MAX_FILE_SIZE_BYTES // (1024 * 1024)
        raise ValidationError(
            message=f"File too large. Maximum size: {max_mb}MB",
            details=[{"field": "image", "error": "FILE_TOO_LARGE"}],
        )
    validate_image_content(data, filename)

    options = AVATAR_COMPRESSION
    if len(data) <= MAX_AVATAR_BYTES:
        options = CompressionOptions(
            width=options.width,
            height=options.height,
            format=options.format,
            initial_quality=100,
        )
    # Pillow work is CPU-bound; keep it off the event loop
    compressed = await asyncio.to_thread(
        compress_image, data, MAX_AVATAR_BYTES, options
    )
    logger.info(
        "Avatar compressed",
        user_id=str(user_id) if user_id else None,
        input_bytes=len(data),
        output_bytes=len(compressed),
    )

    store = blob_store or get_blob_store()
    return await store.put(
        AVATAR_FILE_NAME, compressed, content_type=options.content_type
    )


async def set_avatar_from_upload(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    old_image: str | None,
    data: bytes,
    background_tasks: BackgroundTasks,
    filename: str | None = None,
    blob_store: BlobStore | None = None,
) -> AvatarResult:
    """Compress an uploaded image, store it, and make it the user's avatar.

    Args:
        db: Database session.
        user_id: Current user.
        old_image: The user's avatar before this change.
        data: Uploaded bytes.
        background_tasks: Request background tasks (old blob cleanup).
        filename: Client filename (logs only).
        blob_store: Blob client; defaults to the shared one.

    Returns:
        AvatarResult with the new blob URL.

    Raises:
        ValidationError: Missing, oversized, or undecodable image.
        BlobStorageError: Blob upload failed.
    """
    url = await store_avatar_image(
        data, filename=filename, user_id=user_id, blob_store=blob_store
    )

    return await _apply(
        db,
        user_id=user_id,
        old_image=old_image,
        new_image=url,
        background_tasks=background_tasks,
        blob_store=blob_store,
    )


async def set_avatar_from_linked_account(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    old_image: str | None,
    image_url: object,
    background_tasks: BackgroundTasks,
    blob_store: BlobStore | None = None,
) -> AvatarResult:
    """Use a linked account's profile picture URL as the avatar (no re-encode).

    Raises:
        ValidationError: If ``image_url`` is not a non-empty string.
    """
    if not isinstance(image_url, str) or not image_url.strip():
        raise ValidationError(
            message="Invalid image URL",
            details=[{"field": "imageUrl", "error": "REQUIRED"}],
        )

    return await _apply(
        db,
        user_id=user_id,
        old_image=old_image,
        new_image=image_url.strip(),
        background_tasks=background_tasks,
        blob_store=blob_store,
    )


async def set_avatar_from_initials(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    old_image: str | None,
    initials: object,
    background_tasks: BackgroundTasks,
    blob_store: BlobStore | None = None,
) -> AvatarResult:
    """Use two uppercase initials as the avatar.

    Validation happens before any write.

    Raises:
        ValidationError: If ``initials`` is not exactly two characters.
    """
    value = normalize_initials(initials)
    return await _apply(
        db,
        user_id=user_id,
        old_image=old_image,
        new_image=value,
        background_tasks=background_tasks,
        blob_store=blob_store,
    )


async def cleanup_old_avatar(url: str, blob_store: BlobStore | None = None) -> None:
    """Delete a replaced avatar blob. Best-effort: failures are only logged."""
    if not is_managed_blob_url(url):
        return
    store = blob_store or get_blob_store()
    try:
        await store.delete(url)
    except Exception:
        logger.warning("Failed to delete old avatar", url=url, exc_info=True)
        return
    logger.info("Deleted old avatar", url=url)
