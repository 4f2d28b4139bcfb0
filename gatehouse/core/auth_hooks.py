"""Hooks that run after an auth route has produced its response.

After-hooks repair derived state. They are best-effort: every exception is
caught and logged, and a hook can never fail the response it follows.

Email auto-verification after OAuth sign-in or link
---------------------------------------------------
A user who signed up with an unverified email and later signs in with (or
links) an OpenID Connect provider such as Google or Microsoft has had the
address asserted by that provider. After any OAuth callback, if the user
has at least one linked account holding an ID token, ``email_verified`` is
set to true. Providers without ID tokens (GitHub) never trigger this path;
those users verify through the emailed link instead.

Email equality is not re-checked here: account linking already refuses to
link an account whose email differs from the user's.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.repositories.account_repository import AccountRepository
from gatehouse.repositories.session_repository import SessionRepository
from gatehouse.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

_CALLBACK_PREFIX = "/callback/"


@dataclass
class AuthHookContext:
    """What an after-hook can see about the completed auth request.

    Attributes:
        path: Route path relative to the auth base path
            (e.g. "/callback/google").
        db: Database session of the request.
        new_session_user_id: Owner of a session created by this request
            (sign-in / sign-up), if any.
        session_token: Session cookie sent with the request (manual
            linking happens while signed in), if any.
    """

    path: str
    db: AsyncSession
    new_session_user_id: uuid.UUID | None = None
    session_token: str | None = None


AfterHook = Callable[[AuthHookContext], Awaitable[None]]


async def _resolve_user_id(ctx: AuthHookContext) -> uuid.UUID | None:
    if ctx.new_session_user_id is not None:
        return ctx.new_session_user_id
    if ctx.session_token:
        return await SessionRepository.get_user_id_by_token(ctx.db, ctx.session_token)
    return None


async def verify_email_from_oidc_account(ctx: AuthHookContext) -> None:
    """Mark the user's email verified once an ID-token account is linked.

    No-op for non-callback paths, for unresolvable users, and when no linked
    account carries an ID token. Never sets the flag back to false.
    """
    if not ctx.path.startswith(_CALLBACK_PREFIX):
        return

    user_id = await _resolve_user_id(ctx)
    if user_id is None:
        return

    if not await AccountRepository.has_id_token_account(ctx.db, user_id):
        return

    await UserRepository.mark_email_verified(ctx.db, user_id)
    logger.info(
        "Email verified from OIDC account",
        extra={"user_id": str(user_id), "path": ctx.path},
    )


AFTER_HOOKS: tuple[AfterHook, ...] = (verify_email_from_oidc_account,)


async def run_after_hooks(
    ctx: AuthHookContext,
    hooks: Sequence[AfterHook] = AFTER_HOOKS,
) -> None:
    """Run after-hooks in order, swallowing and logging their failures.

    Each hook runs inside a SAVEPOINT so a failed statement does not poison
    the surrounding transaction.
    """
    for hook in hooks:
        try:
            async with ctx.db.begin_nested():
                await hook(ctx)
        except Exception:
            logger.exception(
                "After-hook failed; ignoring",
                extra={"hook": getattr(hook, "__name__", repr(hook)), "path": ctx.path},
            )
