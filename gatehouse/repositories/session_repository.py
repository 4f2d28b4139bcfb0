"""Repository for Session CRUD operations.

Provides database access for the sessions table. Follows the repository
pattern established by UserRepository.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from gatehouse.models.session import Session


class SessionRepository:
    """Stateless repository for Session table operations.

    All methods are static — no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        token: str,
        expires_at: datetime,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Session:
        """Create a session row.

        Args:
            db: Async database session.
            user_id: Owner of the session.
            token: Opaque cookie value.
            expires_at: Expiry instant.
            ip_address: Client address.
            user_agent: Client user agent.

        Returns:
            Created Session with database-generated fields populated.
        """
        session = Session(
            user_id=user_id,
            token=token,
            expires_at=expires_at,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.add(session)
        await db.flush()
        await db.refresh(session)
        return session

    @staticmethod
    async def get_active_by_token(db: AsyncSession, token: str) -> Session | None:
        """Fetch an unexpired session (with its user) by cookie token.

        Args:
            db: Async database session.
            token: Opaque cookie value.

        Returns:
            Session with ``user`` loaded, or None if missing or expired.
        """
        stmt = (
            select(Session)
            .options(joinedload(Session.user))
            .where(
                Session.token == token,
                Session.expires_at > datetime.now(UTC),
            )
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_user_id_by_token(db: AsyncSession, token: str) -> uuid.UUID | None:
        """Resolve the owner of an unexpired session token.

        Args:
            db: Async database session.
            token: Opaque cookie value.

        Returns:
            User UUID, or None if no active session has this token.
        """
        stmt = (
            select(Session.user_id)
            .where(
                Session.token == token,
                Session.expires_at > datetime.now(UTC),
            )
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_for_user(db: AsyncSession, user_id: uuid.UUID) -> list[Session]:
        """List a user's unexpired sessions, newest first."""
        stmt = (
            select(Session)
            .where(
                Session.user_id == user_id,
                Session.expires_at > datetime.now(UTC),
            )
            .order_by(Session.created_at.desc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def delete_by_token(
        db: AsyncSession, token: str, *, user_id: uuid.UUID | None = None
    ) -> int:
        """Delete a session by token.

        Args:
            db: Async database session.
            token: Opaque cookie value.
            user_id: When given, only delete if the session belongs to
                this user (prevents revoking other users' sessions).

        Returns:
            Number of deleted rows.
        """
        stmt = delete(Session).where(Session.token == token)
        if user_id is not None:
            stmt = stmt.where(Session.user_id == user_id)
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count

    @staticmethod
    async def delete_by_id(
        db: AsyncSession, session_id: uuid.UUID, *, user_id: uuid.UUID
    ) -> int:
        """Delete one of a user's sessions by primary key.

        Returns:
            Number of deleted rows (0 if the session is not the user's).
        """
        stmt = delete(Session).where(
            Session.id == session_id,
            Session.user_id == user_id,
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count

    @staticmethod
    async def delete_others(
        db: AsyncSession, user_id: uuid.UUID, *, keep_token: str
    ) -> int:
        """Delete every session of a user except the one being used.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(Session).where(
            Session.user_id == user_id,
            Session.token != keep_token,
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count

    @staticmethod
    async def delete_all_for_user(db: AsyncSession, user_id: uuid.UUID) -> int:
        """Delete every session of a user (credential change).

        Returns:
            Number of deleted rows.
        """
        stmt = delete(Session).where(Session.user_id == user_id)
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count

    @staticmethod
    async def delete_expired(
        db: AsyncSession, *, user_id: uuid.UUID | None = None
    ) -> int:
        """Delete expired sessions.

        Args:
            db: Async database session.
            user_id: When given, only this user's expired sessions are
                removed (pruned on every new sign-in).

        Returns:
            Number of deleted rows.
        """
        stmt = delete(Session).where(Session.expires_at <= datetime.now(UTC))
        if user_id is not None:
            stmt = stmt.where(Session.user_id == user_id)
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
