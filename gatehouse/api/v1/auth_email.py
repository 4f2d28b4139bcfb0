"""Email/password authentication endpoints.

Endpoints (mounted under the auth base path, default /api/auth):
- POST /sign-up/email — create a user with a credential account, sign in
- POST /sign-in/email — check email + password, sign in
- POST /forget-password — email a single-use reset link
- GET /reset-password/{token} — land from the emailed link, redirect to the
  reset form with the token (or an error)
- POST /reset-password — set a new password with a reset token

Security considerations:
- sign-in: constant-time comparison via DUMMY_HASH prevents user enumeration
- sign-up: bcrypt cost 12, email uniqueness, verification email
- forget-password: same answer whether or not the address is registered
- reset-password: token is single-use and every session of the user ends

Disabled as a whole (400) when EMAIL_PASSWORD_ENABLED is false.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Annotated
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy.exc import IntegrityError

from gatehouse.api.deps import DbSession
from gatehouse.api.v1.auth_verification import queue_verification_email
from gatehouse.core.config import settings
from gatehouse.core.email import send_password_reset_email, send_welcome_email
from gatehouse.core.errors import (
    APIError,
    ConflictError,
    UnauthorizedError,
    ValidationError,
)
from gatehouse.core.guards import safe_callback_url
from gatehouse.core.passwords import (
    CREDENTIAL_PROVIDER_ID,
    hash_password,
    validate_password_strength,
    verify_password,
)
from gatehouse.core.rate_limiting import limiter
from gatehouse.core.responses import DataResponse
from gatehouse.core.sessions import (
    clear_session_cookie,
    create_session,
    set_session_cookie,
)
from gatehouse.core.verification_tokens import (
    generate_token,
    hash_token,
    reset_password_identifier,
    user_id_from_reset_identifier,
)
from gatehouse.models.user import User
from gatehouse.repositories.account_repository import AccountRepository
from gatehouse.repositories.session_repository import SessionRepository
from gatehouse.repositories.user_repository import UserRepository
from gatehouse.repositories.verification_repository import VerificationRepository
from gatehouse.services.avatar import normalize_initials

logger = logging.getLogger(__name__)

_INVALID_CREDENTIALS_MSG = "Invalid email or password"
_INVALID_RESET_TOKEN_MSG = "Invalid or expired reset link"
_DEFAULT_RESET_PAGE = "/reset-password"


def _require_email_password() -> None:
    if not settings.email_password_enabled:
        raise APIError(
            code="EMAIL_PASSWORD_DISABLED",
            message="Email and password sign-in is not enabled",
            status_code=400,
        )


router = APIRouter(dependencies=[Depends(_require_email_password)])


# ===================================================================
# Request models
# ===================================================================


class SignUpRequest(BaseModel):
    """Request body for POST /sign-up/email.

    ``image`` is either a URL (typically from POST /sign-up/avatar) or two
    initials.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    image: str | None = Field(default=None, max_length=2048)
    callback_url: str | None = Field(
        default=None, alias="callbackURL", max_length=2048
    )


class SignInRequest(BaseModel):
    """Request body for POST /sign-in/email."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class ForgetPasswordRequest(BaseModel):
    """Request body for POST /forget-password."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    email: EmailStr
    redirect_to: str | None = Field(default=None, alias="redirectTo", max_length=2048)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /reset-password."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    new_password: str = Field(alias="newPassword", min_length=1, max_length=128)
    token: str = Field(min_length=1, max_length=256)


# ===================================================================
# Helpers
# ===================================================================


def _user_payload(user: User) -> dict:
    return {
        "id": str(user.id),
        "name": user.name,
        "email": user.email,
        "email_verified": user.email_verified,
        "image": user.image,
    }


def _sign_up_image(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    value = value.strip()
    if value.startswith(("https://", "http://")):
        return value
    return normalize_initials(value)


def _with_query(url: str, **params: str) -> str:
    parts = urlsplit(url)
    query = parse_qsl(parts.query) + list(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def _reset_url(request: Request, token: str, callback_url: str) -> str:
    base = str(request.base_url).rstrip("/")
    params = urlencode({"callbackURL": callback_url})
    return f"{base}{settings.auth_base_path.rstrip('/')}/reset-password/{token}?{params}"


# ===================================================================
# POST /sign-up/email
# ===================================================================


@router.post("/sign-up/email", status_code=201)
@limiter.limit(lambda: settings.rate_limit_credentials)
async def sign_up_email(
    request: Request,
    body: SignUpRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    db: DbSession,
) -> DataResponse[dict]:
    """Register a user with email + password and sign them in.

    Creates the user (email unverified) with a credential account holding
    the bcrypt hash, opens a session, and queues the verification and
    welcome emails.
    """
    validate_password_strength(body.password)
    image = _sign_up_image(body.image)

    if await UserRepository.get_by_email(db, body.email) is not None:
        raise ConflictError(
            code="EMAIL_ALREADY_EXISTS",
            message="Email already registered",
        )

    # bcrypt is CPU-bound; keep it off the event loop
    password_hash = await asyncio.to_thread(hash_password, body.password)

    try:
        user = await UserRepository.create(
            db, email=body.email, name=body.name.strip(), image=image
        )
        await AccountRepository.create(
            db,
            user_id=user.id,
            provider_id=CREDENTIAL_PROVIDER_ID,
            account_id=str(user.id),
            password=password_hash,
        )
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(
            code="EMAIL_ALREADY_EXISTS",
            message="Email already registered",
        ) from exc

    session = await create_session(db, user_id=user.id, request=request)
    await queue_verification_email(
        db,
        request,
        background_tasks,
        email=user.email,
        name=user.name,
        callback_url=safe_callback_url(body.callback_url),
    )
    await db.commit()

    background_tasks.add_task(send_welcome_email, email=user.email, name=user.name)
    set_session_cookie(response, session.token)
    logger.info("User signed up with email", extra={"user_id": str(user.id)})
    return DataResponse(data={"user": _user_payload(user)})


# ===================================================================
# POST /sign-in/email
# ===================================================================


@router.post("/sign-in/email")
@limiter.limit(lambda: settings.rate_limit_credentials)
async def sign_in_email(
    request: Request,
    body: SignInRequest,
    response: Response,
    db: DbSession,
) -> DataResponse[dict]:
    """Verify email + password and open a session.

    Unknown addresses, OAuth-only users and wrong passwords all get the same
    401 after the same amount of bcrypt work.
    """
    user = await UserRepository.get_by_email(db, body.email)
    account = (
        await AccountRepository.get_for_user(db, user.id, CREDENTIAL_PROVIDER_ID)
        if user is not None
        else None
    )
    stored_hash = account.password if account is not None else None

    matches = await asyncio.to_thread(verify_password, body.password, stored_hash)
    if user is None or not matches:
        raise UnauthorizedError(_INVALID_CREDENTIALS_MSG)

    session = await create_session(db, user_id=user.id, request=request)
    await db.commit()

    set_session_cookie(response, session.token)
    logger.info("User signed in with email", extra={"user_id": str(user.id)})
    return DataResponse(data={"user": _user_payload(user)})


# ===================================================================
# POST /forget-password
# ===================================================================


@router.post("/forget-password")
@limiter.limit(lambda: settings.rate_limit_email)
async def forget_password(
    request: Request,
    body: ForgetPasswordRequest,
    background_tasks: BackgroundTasks,
    db: DbSession,
) -> DataResponse[dict]:
    """Email a password reset link.

    Security: the answer is identical for unknown addresses.
    """
    user = await UserRepository.get_by_email(db, body.email)
    if user is None:
        return DataResponse(data={"status": True})

    identifier = reset_password_identifier(user.id)
    plain_token, token_hash = generate_token()
    await VerificationRepository.delete_expired(db)
    await VerificationRepository.delete_all_for_identifier(db, identifier=identifier)
    await VerificationRepository.create(
        db,
        identifier=identifier,
        value_hash=token_hash,
        expires_at=datetime.now(UTC)
        + timedelta(minutes=settings.reset_password_token_ttl_minutes),
    )
    await db.commit()

    callback_url = (
        safe_callback_url(body.redirect_to) if body.redirect_to else _DEFAULT_RESET_PAGE
    )
    background_tasks.add_task(
        send_password_reset_email,
        email=user.email,
        name=user.name,
        reset_url=_reset_url(request, plain_token, callback_url),
    )
    return DataResponse(data={"status": True})


# ===================================================================
# GET /reset-password/{token}
# ===================================================================


@router.get("/reset-password/{token}")
@limiter.limit("10/minute")
async def reset_password_link(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    token: str,
    db: DbSession,
    callback_url: Annotated[str | None, Query(alias="callbackURL")] = None,
) -> RedirectResponse:
    """Forward an emailed reset link to the reset form.

    The token is only checked here, not consumed; POST /reset-password
    consumes it.
    """
    target = safe_callback_url(callback_url) if callback_url else _DEFAULT_RESET_PAGE
    vt = await VerificationRepository.get_by_value(db, hash_token(token))
    if (
        vt is None
        or user_id_from_reset_identifier(vt.identifier) is None
        or vt.expires_at < datetime.now(UTC)
    ):
        return RedirectResponse(
            url=_with_query(target, error="INVALID_TOKEN"), status_code=302
        )
    return RedirectResponse(url=_with_query(target, token=token), status_code=302)


# ===================================================================
# POST /reset-password
# ===================================================================


@router.post("/reset-password")
@limiter.limit(lambda: settings.rate_limit_credentials)
async def reset_password(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: ResetPasswordRequest,
    response: Response,
    db: DbSession,
) -> DataResponse[dict]:
    """Set a new password with a reset token.

    Users without a credential account (OAuth-only) get one. All of the
    user's sessions are revoked and the caller's cookie is cleared.
    """
    vt = await VerificationRepository.get_by_value(db, hash_token(body.token))
    user_id = user_id_from_reset_identifier(vt.identifier) if vt else None
    if vt is None or user_id is None:
        raise ValidationError(
            _INVALID_RESET_TOKEN_MSG,
            details=[{"field": "token", "error": "INVALID_TOKEN"}],
        )
    if vt.expires_at < datetime.now(UTC):
        await VerificationRepository.delete(db, vt.id)
        await db.commit()
        raise ValidationError(
            _INVALID_RESET_TOKEN_MSG,
            details=[{"field": "token", "error": "INVALID_TOKEN"}],
        )

    validate_password_strength(body.new_password)

    user = await UserRepository.get_by_id(db, user_id)
    if user is None:
        await VerificationRepository.delete_all_for_identifier(
            db, identifier=vt.identifier
        )
        await db.commit()
        raise ValidationError(
            _INVALID_RESET_TOKEN_MSG,
            details=[{"field": "token", "error": "INVALID_TOKEN"}],
        )

    password_hash = await asyncio.to_thread(hash_password, body.new_password)
    account = await AccountRepository.get_for_user(db, user.id, CREDENTIAL_PROVIDER_ID)
    if account is None:
        await AccountRepository.create(
            db,
            user_id=user.id,
            provider_id=CREDENTIAL_PROVIDER_ID,
            account_id=str(user.id),
            password=password_hash,
        )
    else:
        await AccountRepository.set_password(db, account, password_hash)

    await VerificationRepository.delete_all_for_identifier(db, identifier=vt.identifier)
    revoked = await SessionRepository.delete_all_for_user(db, user.id)
    await db.commit()

    clear_session_cookie(response)
    logger.info(
        "Password reset",
        extra={"user_id": str(user.id), "revoked_sessions": revoked},
    )
    return DataResponse(data={"status": True})
