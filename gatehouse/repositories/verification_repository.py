"""Repository for Verification CRUD operations.

Single-use email verification tokens stored as hashed values with a
time-limited expiry.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.models.verification import Verification


class VerificationRepository:
    """Stateless repository for Verification table operations.

    All methods are static — no instance state.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        identifier: str,
        value_hash: str,
        expires_at: datetime,
    ) -> Verification:
        """Store a new verification token.

        Args:
            db: Async database session.
            identifier: Email address.
            value_hash: SHA-256 hash of the plain token.
            expires_at: Token expiry timestamp.

        Returns:
            Created Verification.
        """
        verification = Verification(
            identifier=identifier,
            value=value_hash,
            expires_at=expires_at,
        )
        db.add(verification)
        await db.flush()
        return verification

    @staticmethod
    async def get_by_value(
        db: AsyncSession,
        value_hash: str,
    ) -> Verification | None:
        """Look up a token by its hash.

        Args:
            db: Async database session.
            value_hash: SHA-256 hash of the plain token.

        Returns:
            Verification if found, None otherwise.
        """
        stmt = select(Verification).where(Verification.value == value_hash)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def delete(db: AsyncSession, verification_id: uuid.UUID) -> None:
        """Delete a token (single-use cleanup)."""
        stmt = delete(Verification).where(Verification.id == verification_id)
        await db.execute(stmt)

    @staticmethod
    async def delete_all_for_identifier(
        db: AsyncSession,
        *,
        identifier: str,
    ) -> None:
        """Delete all tokens for an identifier (cleanup on successful verify).

        Args:
            db: Async database session.
            identifier: Email address.
        """
        stmt = delete(Verification).where(
            Verification.identifier == identifier,
        )
        await db.execute(stmt)

    @staticmethod
    async def delete_expired(db: AsyncSession) -> int:
        """Delete all expired tokens (periodic cleanup).

        Args:
            db: Async database session.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(Verification).where(
            Verification.expires_at < datetime.now(UTC),
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
