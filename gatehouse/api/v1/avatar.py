"""Avatar API router.

Endpoints (mounted at /api/avatar):
- POST /upload — multipart ``image`` (or ``file``) field, compressed to
  WebP and stored
- POST /linked-account — use a linked provider's picture URL
- POST /initials — use two initials

Every endpoint requires a session and returns ``{"url": ...}``.
Replaced blob avatars are deleted after the response is sent.

sign_up_router holds the one anonymous upload, POST {auth base}/sign-up/avatar:
the image is stored before the account exists and its URL is passed as
``image`` to sign-up.
"""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, File, Request, UploadFile
from pydantic import BaseModel, ConfigDict, Field

from gatehouse.api.deps import CurrentSession, DbSession
from gatehouse.core.config import settings
from gatehouse.core.errors import ValidationError
from gatehouse.core.file_validation import read_file_with_size_limit
from gatehouse.core.rate_limiting import limiter
from gatehouse.core.responses import AvatarResult
from gatehouse.services.avatar import (
    set_avatar_from_initials,
    set_avatar_from_linked_account,
    set_avatar_from_upload,
    store_avatar_image,
)

router = APIRouter()
sign_up_router = APIRouter()


class LinkedAccountAvatarRequest(BaseModel):
    """Request body for POST /linked-account."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    image_url: str = Field(alias="imageUrl", min_length=1, max_length=2048)


class InitialsAvatarRequest(BaseModel):
    """Request body for POST /initials.

    Length is checked by the avatar service so every source reports the
    same error.
    """

    model_config = ConfigDict(extra="forbid")

    initials: str = Field(max_length=16)


def _require_upload(
    image: UploadFile | None, file: UploadFile | None
) -> UploadFile:
    upload = image or file
    if upload is None:
        raise ValidationError(
            message="No file provided",
            details=[{"field": "image", "error": "MISSING_FILE"}],
        )
    return upload


@router.post("/upload")
@limiter.limit(lambda: settings.rate_limit_upload)
async def upload_avatar(
    request: Request,  # noqa: ARG001
    current: CurrentSession,
    background_tasks: BackgroundTasks,
    db: DbSession,
    image: Annotated[UploadFile | None, File()] = None,
    file: Annotated[UploadFile | None, File()] = None,
) -> AvatarResult:
    """Upload, compress and store a new avatar image.

    Raises:
        ValidationError: Missing, oversized, or non-image upload.
        BlobStorageError: Blob storage rejected the upload.
    """
    upload = _require_upload(image, file)

    content = await read_file_with_size_limit(upload)
    result = await set_avatar_from_upload(
        db,
        user_id=current.user.id,
        old_image=current.user.image,
        data=content,
        background_tasks=background_tasks,
        filename=upload.filename,
    )
    await db.commit()
    return result


@router.post("/linked-account")
async def avatar_from_linked_account(
    body: LinkedAccountAvatarRequest,
    current: CurrentSession,
    background_tasks: BackgroundTasks,
    db: DbSession,
) -> AvatarResult:
    """Use a linked account's profile picture as the avatar."""
    result = await set_avatar_from_linked_account(
        db,
        user_id=current.user.id,
        old_image=current.user.image,
        image_url=body.image_url,
        background_tasks=background_tasks,
    )
    await db.commit()
    return result


@router.post("/initials")
async def avatar_from_initials(
    body: InitialsAvatarRequest,
    current: CurrentSession,
    background_tasks: BackgroundTasks,
    db: DbSession,
) -> AvatarResult:
    """Use two initials as the avatar."""
    result = await set_avatar_from_initials(
        db,
        user_id=current.user.id,
        old_image=current.user.image,
        initials=body.initials,
        background_tasks=background_tasks,
    )
    await db.commit()
    return result


@sign_up_router.post("/sign-up/avatar")
@limiter.limit(lambda: settings.rate_limit_upload)
async def upload_sign_up_avatar(
    request: Request,  # noqa: ARG001
    image: Annotated[UploadFile | None, File()] = None,
    file: Annotated[UploadFile | None, File()] = None,
) -> AvatarResult:
    """Store an avatar for an account that is being created.

    No session and no database write: the returned URL is only used once
    it is sent to sign-up.
    """
    upload = _require_upload(image, file)
    content = await read_file_with_size_limit(upload)
    url = await store_avatar_image(content, filename=upload.filename)
    return AvatarResult(url=url)
