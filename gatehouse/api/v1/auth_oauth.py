"""OAuth authentication endpoints.

Social sign-in, manual account linking, and the shared callback for
Google, Microsoft and GitHub. Authlib performs the handshake (state, PKCE,
token exchange, ID token validation); state is kept in the signed Starlette
session cookie between the redirect and the callback.

Endpoints (mounted under the auth base path, default /api/auth):
- GET /sign-in/social/{provider} — redirect to provider (sign-in)
- GET /link-social/{provider} — redirect to provider (link to current user)
- GET /callback/{provider} — finish OAuth, sign in or link, run after-hooks
"""

import logging
from typing import Annotated, Any

import httpx
from authlib.integrations.base_client.errors import MismatchingStateError, OAuthError
from fastapi import APIRouter, BackgroundTasks, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import Response

from gatehouse.api.deps import CurrentSession, DbSession, SessionToken
from gatehouse.core.account_linking import (
    AccountAlreadyLinkedError,
    AccountLinkingBlockedError,
    OAuthProfile,
    find_or_create_user_for_oauth,
    link_account_to_user,
)
from gatehouse.core.auth_hooks import AuthHookContext, run_after_hooks
from gatehouse.core.config import settings
from gatehouse.core.email import send_welcome_email
from gatehouse.core.errors import (
    ConflictError,
    UnauthorizedError,
    UpstreamError,
    ValidationError,
)
from gatehouse.core.guards import safe_callback_url
from gatehouse.core.oauth import (
    authorize_claims_options,
    fetch_profile,
    get_oauth_client,
)
from gatehouse.core.rate_limiting import limiter
from gatehouse.core.sessions import create_session, set_session_cookie
from gatehouse.models.user import User
from gatehouse.repositories.session_repository import SessionRepository
from gatehouse.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

router = APIRouter()

# Keys stored in the Starlette session between redirect and callback
_FLOW_KEY = "gatehouse.oauth_flow"


async def _start_flow(
    request: Request,
    provider: str,
    *,
    callback_url: str | None,
    link_user_id: str | None = None,
) -> Response:
    client = get_oauth_client(provider)
    request.session[_FLOW_KEY] = {
        "provider": provider,
        "callback_url": safe_callback_url(callback_url),
        "link_user_id": link_user_id,
    }
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    try:
        return await client.authorize_redirect(request, redirect_uri)
    except (OAuthError, httpx.HTTPError) as exc:
        logger.exception("OAuth initiation failed", extra={"provider": provider})
        raise UpstreamError("Could not reach the OAuth provider") from exc


# ===================================================================
# GET /sign-in/social/{provider}
# ===================================================================


@router.get("/sign-in/social/{provider}")
@limiter.limit(lambda: settings.rate_limit_oauth)
async def social_sign_in(
    provider: str,
    request: Request,
    callback_url: Annotated[str | None, Query(alias="callbackURL")] = None,
) -> Response:
    """Redirect to the provider's authorization page to sign in."""
    return await _start_flow(request, provider, callback_url=callback_url)


# ===================================================================
# GET /link-social/{provider}
# ===================================================================


@router.get("/link-social/{provider}")
@limiter.limit(lambda: settings.rate_limit_oauth)
async def link_social(
    provider: str,
    request: Request,
    current: CurrentSession,
    callback_url: Annotated[str | None, Query(alias="callbackURL")] = None,
) -> Response:
    """Redirect to the provider to link another account to the current user."""
    return await _start_flow(
        request,
        provider,
        callback_url=callback_url,
        link_user_id=str(current.user.id),
    )


# ===================================================================
# GET /callback/{provider}
# ===================================================================


async def _current_user_for_link(
    db: AsyncSession, session_token: str | None, link_user_id: str
) -> User:
    """Re-check that the user who started linking is still signed in."""
    if not session_token:
        raise UnauthorizedError()
    user_id = await SessionRepository.get_user_id_by_token(db, session_token)
    if user_id is None or str(user_id) != link_user_id:
        raise UnauthorizedError()
    user = await UserRepository.get_by_id(db, user_id)
    if user is None:
        raise UnauthorizedError()
    return user


async def _exchange(request: Request, provider: str) -> OAuthProfile:
    client = get_oauth_client(provider)
    try:
        token: dict[str, Any] = await client.authorize_access_token(
            request, claims_options=authorize_claims_options(provider)
        )
    except MismatchingStateError as exc:
        raise ValidationError("Invalid or expired OAuth state") from exc
    except (OAuthError, httpx.HTTPError) as exc:
        logger.exception("OAuth token exchange failed", extra={"provider": provider})
        raise UpstreamError("OAuth authentication failed") from exc

    try:
        return await fetch_profile(provider, client, token)
    except httpx.HTTPError as exc:
        logger.exception("OAuth userinfo fetch failed", extra={"provider": provider})
        raise UpstreamError("Could not retrieve user information") from exc


@router.get("/callback/{provider}", name="oauth_callback")
@limiter.limit(lambda: settings.rate_limit_oauth)
async def oauth_callback(
    provider: str,
    request: Request,
    db: DbSession,
    background_tasks: BackgroundTasks,
    session_token: SessionToken,
) -> Response:
    """Handle the provider callback after user consent.

    Sign-in mode: find/link/create the user and start a session.
    Link mode: attach the account to the signed-in user.
    Either way the after-hooks run before redirecting to the stored
    callback URL.
    """
    flow: dict[str, Any] = request.session.pop(_FLOW_KEY, None) or {}
    if flow.get("provider") != provider:
        raise ValidationError("Invalid or expired OAuth state")

    profile = await _exchange(request, provider)
    redirect = RedirectResponse(url=flow.get("callback_url") or "/", status_code=302)
    hook_ctx = AuthHookContext(
        path=f"/callback/{provider}", db=db, session_token=session_token
    )

    link_user_id = flow.get("link_user_id")
    if link_user_id:
        user = await _current_user_for_link(db, session_token, link_user_id)
        try:
            await link_account_to_user(db=db, user=user, profile=profile)
        except AccountLinkingBlockedError as exc:
            raise ValidationError(str(exc)) from None
        except AccountAlreadyLinkedError as exc:
            raise ConflictError("ACCOUNT_ALREADY_LINKED", str(exc)) from None
    else:
        try:
            user, created = await find_or_create_user_for_oauth(db=db, profile=profile)
        except AccountLinkingBlockedError:
            logger.warning("Account linking blocked", extra={"provider": provider})
            raise ValidationError(
                "An account with this email already exists. "
                "Please sign in with your original method first."
            ) from None

        session = await create_session(db, user_id=user.id, request=request)
        hook_ctx.new_session_user_id = user.id
        set_session_cookie(redirect, session.token)
        if created:
            background_tasks.add_task(
                send_welcome_email, email=user.email, name=user.name
            )

    await db.flush()
    await run_after_hooks(hook_ctx)
    await db.commit()
    return redirect

