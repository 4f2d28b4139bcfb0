"""Session cookies and session validation.

Sessions are rows in the ``sessions`` table addressed by an opaque random
token carried in an httpOnly cookie. Validation is a table lookup; there is
no signed token to verify.

SessionValidator runs outside FastAPI dependency injection (the page guard
middleware uses it), so it opens its own database session from the shared
session factory.
"""

import logging
import secrets
import uuid
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.requests import Request, cookie_parser
from starlette.responses import Response

from gatehouse.core.config import settings
from gatehouse.core.database import get_session_factory
from gatehouse.models.session import Session
from gatehouse.repositories.session_repository import SessionRepository

logger = logging.getLogger(__name__)

# 32 bytes of entropy, URL-safe (43 chars)
_TOKEN_BYTES = 32


@dataclass(frozen=True)
class UserInfo:
    """Plain snapshot of the authenticated user."""

    id: uuid.UUID
    name: str
    email: str
    email_verified: bool
    image: str | None


@dataclass(frozen=True)
class SessionInfo:
    """Plain snapshot of the session row."""

    id: uuid.UUID
    user_id: uuid.UUID
    token: str
    expires_at: datetime
    created_at: datetime
    updated_at: datetime
    ip_address: str | None
    user_agent: str | None


@dataclass(frozen=True)
class SessionData:
    """Outcome of a successful validation.

    Holds values only (no ORM objects), so it stays usable after the
    database session that produced it is closed.
    """

    session: SessionInfo
    user: UserInfo

    @classmethod
    def from_model(cls, row: Session) -> "SessionData":
        user = row.user
        return cls(
            session=SessionInfo(
                id=row.id,
                user_id=row.user_id,
                token=row.token,
                expires_at=row.expires_at,
                created_at=row.created_at,
                updated_at=row.updated_at,
                ip_address=row.ip_address,
                user_agent=row.user_agent,
            ),
            user=UserInfo(
                id=user.id,
                name=user.name,
                email=user.email,
                email_verified=user.email_verified,
                image=user.image,
            ),
        )

    def to_public_dict(self) -> dict[str, Any]:
        """Serialisable form for API responses (token omitted)."""
        session = asdict(self.session)
        session.pop("token")
        return {"session": session, "user": asdict(self.user)}


def read_session_token(headers: Mapping[str, str]) -> str | None:
    """Extract the session token from a Cookie header.

    Args:
        headers: Request headers (case-insensitive mapping, e.g. Starlette
            ``Headers``).

    Returns:
        Token string, or None if the cookie is absent or empty.
    """
    raw = headers.get("cookie")
    if not raw:
        return None
    token = cookie_parser(raw).get(settings.session_cookie_name)
    return token or None


class SessionValidator:
    """Validate the session cookie carried by a request.

    ``validate`` never raises: a missing cookie, an unknown or expired
    token, and a failing database all come back as None.
    """

    def __init__(
        self,
        session_factory: Callable[[], async_sessionmaker[AsyncSession]] = (
            get_session_factory
        ),
    ) -> None:
        self._session_factory = session_factory

    async def validate(self, headers: Mapping[str, str]) -> SessionData | None:
        """Resolve the request's session.

        Args:
            headers: Request headers.

        Returns:
            SessionData for an active session, None otherwise.
        """
        token = read_session_token(headers)
        if token is None:
            return None

        try:
            async with self._session_factory()() as db:
                row = await SessionRepository.get_active_by_token(db, token)
                if row is None:
                    return None
                return SessionData.from_model(row)
        except Exception:
            # Security: never log the token itself.
            logger.exception("Session validation failed; treating as anonymous")
            return None


def generate_session_token() -> str:
    return secrets.token_urlsafe(_TOKEN_BYTES)


async def create_session(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    request: Request | None = None,
) -> Session:
    """Create a session row for a freshly authenticated user.

    The user's expired sessions are pruned first.

    Args:
        db: Async database session.
        user_id: Authenticated user.
        request: Incoming request (client address and user agent are
            recorded when given).

    Returns:
        The new Session. Its ``token`` goes into the session cookie.
    """
    ip_address = None
    user_agent = None
    if request is not None:
        ip_address = request.client.host if request.client else None
        user_agent = request.headers.get("user-agent")

    await SessionRepository.delete_expired(db, user_id=user_id)
    return await SessionRepository.create(
        db,
        user_id=user_id,
        token=generate_session_token(),
        expires_at=datetime.now(UTC) + timedelta(days=settings.session_expires_days),
        ip_address=ip_address,
        user_agent=user_agent,
    )


def set_session_cookie(response: Response, token: str) -> None:
    """Set the httpOnly session cookie on a response.

    Security: httpOnly prevents XSS cookie theft. Secure flag and SameSite
    are configured via settings for environment-appropriate security.

    Args:
        response: Response to decorate.
        token: Opaque session token.
    """
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        path="/",
        max_age=int(timedelta(days=settings.session_expires_days).total_seconds()),
        domain=settings.session_cookie_domain or None,
    )


def clear_session_cookie(response: Response) -> None:
    """Expire the session cookie (same attributes it was set with)."""
    response.delete_cookie(
        key=settings.session_cookie_name,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        path="/",
        domain=settings.session_cookie_domain or None,
    )
