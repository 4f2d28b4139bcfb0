"""Email verification endpoints.

Endpoints (mounted under the auth base path, default /api/auth):
- POST /send-verification-email — email a single-use verification link
- GET /verify-email — consume the link, set email_verified, redirect

Only the SHA-256 hash of each token is stored. A successful verification
signs the user in when the browser has no session yet. Sign-up reuses
queue_verification_email to send the first link.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Annotated
from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.api.deps import CurrentSession, DbSession, OptionalSession
from gatehouse.core.config import settings
from gatehouse.core.email import send_verification_email
from gatehouse.core.errors import ValidationError
from gatehouse.core.guards import safe_callback_url
from gatehouse.core.rate_limiting import limiter
from gatehouse.core.responses import DataResponse
from gatehouse.core.sessions import create_session, set_session_cookie
from gatehouse.core.verification_tokens import (
    generate_token,
    hash_token,
    is_reset_password_identifier,
)
from gatehouse.repositories.user_repository import UserRepository
from gatehouse.repositories.verification_repository import VerificationRepository

logger = logging.getLogger(__name__)

router = APIRouter()

_INVALID_TOKEN_MSG = "Invalid or expired verification link"


# ===================================================================
# Token helpers
# ===================================================================


def _verification_url(request: Request, token: str, callback_url: str) -> str:
    base = str(request.base_url).rstrip("/")
    params = urlencode({"token": token, "callbackURL": callback_url})
    return f"{base}{settings.auth_base_path.rstrip('/')}/verify-email?{params}"


async def queue_verification_email(
    db: AsyncSession,
    request: Request,
    background_tasks: BackgroundTasks,
    *,
    email: str,
    name: str | None,
    callback_url: str,
) -> None:
    """Store a fresh verification token and queue the email.

    Earlier unused links for the address are invalidated and expired tokens
    of any address are purged. The caller commits; the email goes out after
    the response.
    """
    plain_token, token_hash = generate_token()
    await VerificationRepository.delete_expired(db)
    await VerificationRepository.delete_all_for_identifier(db, identifier=email)
    await VerificationRepository.create(
        db,
        identifier=email,
        value_hash=token_hash,
        expires_at=datetime.now(UTC)
        + timedelta(minutes=settings.verification_token_ttl_minutes),
    )
    background_tasks.add_task(
        send_verification_email,
        email=email,
        name=name,
        verification_url=_verification_url(request, plain_token, callback_url),
    )


# ===================================================================
# POST /send-verification-email
# ===================================================================


@router.post("/send-verification-email")
@limiter.limit(lambda: settings.rate_limit_email)
async def send_verification(
    request: Request,
    current: CurrentSession,
    background_tasks: BackgroundTasks,
    db: DbSession,
    callback_url: Annotated[str | None, Query(alias="callbackURL")] = None,
) -> DataResponse[dict]:
    """Email a fresh verification link to the signed-in user.

    Earlier unused links for the same address are invalidated.
    """
    user = current.user
    if user.email_verified:
        return DataResponse(data={"status": "already_verified"})

    await queue_verification_email(
        db,
        request,
        background_tasks,
        email=user.email,
        name=user.name,
        callback_url=safe_callback_url(callback_url),
    )
    await db.commit()
    return DataResponse(data={"status": "sent"})


# ===================================================================
# GET /verify-email
# ===================================================================


@router.get("/verify-email")
@limiter.limit("10/minute")
async def verify_email(
    request: Request,
    token: Annotated[str, Query(min_length=1, max_length=256)],
    db: DbSession,
    session: OptionalSession,
    callback_url: Annotated[str | None, Query(alias="callbackURL")] = None,
) -> RedirectResponse:
    """Consume a verification link.

    Validates the token hash and expiry, deletes every token for the address
    (single-use), sets email_verified, and redirects to the callback URL.
    """
    vt = await VerificationRepository.get_by_value(db, hash_token(token))
    if vt is None or is_reset_password_identifier(vt.identifier):
        raise ValidationError(_INVALID_TOKEN_MSG)

    if vt.expires_at < datetime.now(UTC):
        await VerificationRepository.delete(db, vt.id)
        await db.commit()
        raise ValidationError(_INVALID_TOKEN_MSG)

    await VerificationRepository.delete_all_for_identifier(
        db, identifier=vt.identifier
    )
    user = await UserRepository.get_by_email(db, vt.identifier)
    if user is None:
        await db.commit()
        raise ValidationError(_INVALID_TOKEN_MSG)

    await UserRepository.mark_email_verified(db, user.id)

    redirect = RedirectResponse(url=safe_callback_url(callback_url), status_code=302)
    if session is None or session.user.id != user.id:
        new_session = await create_session(db, user_id=user.id, request=request)
        set_session_cookie(redirect, new_session.token)
    await db.commit()

    logger.info("Email verified by link", extra={"user_id": str(user.id)})
    return redirect
