"""Session and account management endpoints.

Endpoints (mounted under the auth base path, default /api/auth):
- GET /get-session — current session + user, or null
- POST /sign-out — delete the current session, clear the cookie
- GET /list-sessions — the user's active sessions
- POST /revoke-session — sign out one session
- POST /revoke-other-sessions — sign out every other device
- GET /list-accounts — linked provider accounts
- POST /unlink-account — remove a linked account (never the last one)
- POST /update-user — change the display name
- POST /delete-user — delete the account (password required when one is set)
"""

import asyncio
import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, Field
from starlette.responses import JSONResponse, Response

from gatehouse.api.deps import CurrentSession, DbSession, OptionalSession, SessionToken
from gatehouse.core.blob_storage import is_managed_blob_url
from gatehouse.core.errors import ConflictError, NotFoundError, UnauthorizedError
from gatehouse.core.passwords import CREDENTIAL_PROVIDER_ID, verify_password
from gatehouse.core.responses import DataResponse
from gatehouse.core.sessions import clear_session_cookie
from gatehouse.core.verification_tokens import reset_password_identifier
from gatehouse.repositories.account_repository import AccountRepository
from gatehouse.repositories.session_repository import SessionRepository
from gatehouse.repositories.user_repository import UserRepository
from gatehouse.repositories.verification_repository import VerificationRepository
from gatehouse.services.avatar import cleanup_old_avatar

logger = logging.getLogger(__name__)

router = APIRouter()


# ===================================================================
# Request / response models
# ===================================================================


class SessionSummary(BaseModel):
    """One active session as shown in session management."""

    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    ip_address: str | None
    user_agent: str | None
    current: bool


class AccountSummary(BaseModel):
    """One linked provider account (tokens never leave the server)."""

    id: uuid.UUID
    provider_id: str
    account_id: str
    created_at: datetime
    scopes: list[str]


class RevokeSessionRequest(BaseModel):
    """Request body for POST /revoke-session."""

    model_config = ConfigDict(extra="forbid")

    id: uuid.UUID


class UnlinkAccountRequest(BaseModel):
    """Request body for POST /unlink-account."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    provider_id: str = Field(alias="providerId", min_length=1, max_length=64)
    account_id: str | None = Field(default=None, alias="accountId", max_length=255)


class UpdateUserRequest(BaseModel):
    """Request body for POST /update-user."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=100)


class DeleteUserRequest(BaseModel):
    """Request body for POST /delete-user."""

    model_config = ConfigDict(extra="forbid")

    password: str | None = Field(default=None, max_length=128)


# ===================================================================
# GET /get-session
# ===================================================================


@router.get("/get-session")
async def get_session(session: OptionalSession) -> Response:
    """Return the caller's session and user, or ``null`` when anonymous."""
    if session is None:
        return JSONResponse(content=None)
    return JSONResponse(content=jsonable_encoder(session.to_public_dict()))


# ===================================================================
# POST /sign-out
# ===================================================================


@router.post("/sign-out")
async def sign_out(db: DbSession, token: SessionToken) -> Response:
    """Delete the current session and clear the cookie.

    Idempotent: succeeds without a session.
    """
    if token:
        await SessionRepository.delete_by_token(db, token)
        await db.commit()
    response = JSONResponse(content={"data": {"success": True}})
    clear_session_cookie(response)
    return response


# ===================================================================
# Session management
# ===================================================================


@router.get("/list-sessions")
async def list_sessions(
    current: CurrentSession, db: DbSession
) -> DataResponse[list[SessionSummary]]:
    """List the user's active sessions, flagging the one making this call."""
    rows = await SessionRepository.list_for_user(db, current.user.id)
    return DataResponse(
        data=[
            SessionSummary(
                id=row.id,
                created_at=row.created_at,
                updated_at=row.updated_at,
                expires_at=row.expires_at,
                ip_address=row.ip_address,
                user_agent=row.user_agent,
                current=row.id == current.session.id,
            )
            for row in rows
        ]
    )


@router.post("/revoke-session")
async def revoke_session(
    body: RevokeSessionRequest, current: CurrentSession, db: DbSession
) -> DataResponse[dict]:
    """Sign out one of the user's sessions.

    Security: scoped to the caller's own sessions; other users' session ids
    are reported as not found.
    """
    deleted = await SessionRepository.delete_by_id(
        db, body.id, user_id=current.user.id
    )
    if not deleted:
        raise NotFoundError("Session", str(body.id))
    await db.commit()
    return DataResponse(data={"success": True})


@router.post("/revoke-other-sessions")
async def revoke_other_sessions(
    current: CurrentSession, db: DbSession
) -> DataResponse[dict]:
    """Sign out every session except the current one."""
    revoked = await SessionRepository.delete_others(
        db, current.user.id, keep_token=current.session.token
    )
    await db.commit()
    logger.info(
        "Revoked other sessions",
        extra={"user_id": str(current.user.id), "count": revoked},
    )
    return DataResponse(data={"success": True, "revoked": revoked})


# ===================================================================
# Linked accounts
# ===================================================================


@router.get("/list-accounts")
async def list_accounts(
    current: CurrentSession, db: DbSession
) -> DataResponse[list[AccountSummary]]:
    """List the user's linked provider accounts."""
    accounts = await AccountRepository.get_accounts_by_user_id(db, current.user.id)
    return DataResponse(
        data=[
            AccountSummary(
                id=a.id,
                provider_id=a.provider_id,
                account_id=a.account_id,
                created_at=a.created_at,
                scopes=(a.scope or "").replace(",", " ").split(),
            )
            for a in accounts
        ]
    )


@router.post("/unlink-account")
async def unlink_account(
    body: UnlinkAccountRequest, current: CurrentSession, db: DbSession
) -> DataResponse[dict]:
    """Unlink a provider account.

    Refuses to remove the last linked account, which would leave the user
    with no way to sign in.
    """
    accounts = await AccountRepository.get_accounts_by_user_id(db, current.user.id)
    matching = [
        a
        for a in accounts
        if a.provider_id == body.provider_id
        and (body.account_id is None or a.account_id == body.account_id)
    ]
    if not matching:
        raise NotFoundError("Account")
    if len(accounts) - len(matching) < 1:
        raise ConflictError("LAST_ACCOUNT", "You can't unlink your last account")

    await AccountRepository.delete_for_user(
        db,
        user_id=current.user.id,
        provider_id=body.provider_id,
        account_id=body.account_id,
    )
    await db.commit()
    return DataResponse(data={"success": True})


# ===================================================================
# POST /update-user
# ===================================================================


@router.post("/update-user")
async def update_user(
    body: UpdateUserRequest, current: CurrentSession, db: DbSession
) -> DataResponse[dict]:
    """Update the display name."""
    user = await UserRepository.update(db, current.user.id, name=body.name.strip())
    if user is None:
        raise NotFoundError("User")
    await db.commit()
    return DataResponse(data={"name": user.name})


# ===================================================================
# POST /delete-user
# ===================================================================


@router.post("/delete-user")
async def delete_user(
    current: CurrentSession,
    background_tasks: BackgroundTasks,
    db: DbSession,
    body: DeleteUserRequest | None = None,
) -> Response:
    """Delete the signed-in user.

    Users with a password must confirm it. Sessions and accounts go with
    the user row; pending verification and reset tokens are removed, and an
    uploaded avatar blob is deleted after the response.
    """
    user = current.user
    account = await AccountRepository.get_for_user(db, user.id, CREDENTIAL_PROVIDER_ID)
    if account is not None and account.password:
        password = body.password if body is not None else None
        if not password or not await asyncio.to_thread(
            verify_password, password, account.password
        ):
            raise UnauthorizedError("Invalid password")

    await VerificationRepository.delete_all_for_identifier(db, identifier=user.email)
    await VerificationRepository.delete_all_for_identifier(
        db, identifier=reset_password_identifier(user.id)
    )
    if not await UserRepository.delete(db, user.id):
        raise NotFoundError("User")
    await db.commit()

    if is_managed_blob_url(user.image):
        background_tasks.add_task(cleanup_old_avatar, user.image)

    logger.info("User deleted", extra={"user_id": str(user.id)})
    response = JSONResponse(content={"data": {"success": True}})
    clear_session_cookie(response)
    return response
