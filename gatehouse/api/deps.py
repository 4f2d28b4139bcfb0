"""Shared dependencies for API endpoints.

Auth server routes are let through by the guard pipeline and authenticate
here instead. The session the guard already resolved is reused; otherwise
the cookie is validated against the ``sessions`` table.
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.core.database import get_db
from gatehouse.core.errors import SessionRequiredError
from gatehouse.core.sessions import SessionData, SessionValidator, read_session_token

_validator = SessionValidator()


def get_session_validator() -> SessionValidator:
    return _validator


async def get_optional_session(
    request: Request,
    validator: Annotated[SessionValidator, Depends(get_session_validator)],
) -> SessionData | None:
    """Resolve the caller's session, or None when anonymous.

    Reuses the session the page guard already resolved for this request.
    """
    cached = getattr(request.state, "session", None)
    if isinstance(cached, SessionData):
        return cached
    session = await validator.validate(request.headers)
    request.state.session = session
    return session


async def get_current_session(
    session: Annotated[SessionData | None, Depends(get_optional_session)],
) -> SessionData:
    """Require an authenticated session.

    Raises:
        SessionRequiredError: missing, unknown, or expired session.
            Answered like the guard pipeline: flat 401 body, or a
            sign-in redirect for HTML navigations. Security: the message
            never says WHY auth failed.
    """
    if session is None:
        raise SessionRequiredError()
    return session


def get_session_token(request: Request) -> str | None:
    return read_session_token(request.headers)


# Reusable type aliases for dependency injection
OptionalSession = Annotated[SessionData | None, Depends(get_optional_session)]
CurrentSession = Annotated[SessionData, Depends(get_current_session)]
SessionToken = Annotated[str | None, Depends(get_session_token)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
