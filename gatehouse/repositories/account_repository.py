"""Repository for Account CRUD operations.

Provides database access for the accounts table.
Follows the repository pattern established by UserRepository.
"""

import uuid
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.models.account import Account

# Token fields refreshed on every sign-in with an existing account.
_TOKEN_FIELDS: frozenset[str] = frozenset(
    {
        "access_token",
        "refresh_token",
        "id_token",
        "access_token_expires_at",
        "refresh_token_expires_at",
        "scope",
    }
)


class AccountRepository:
    """Stateless repository for Account table operations.

    All methods are static — no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        provider_id: str,
        account_id: str,
        access_token: str | None = None,
        refresh_token: str | None = None,
        id_token: str | None = None,
        access_token_expires_at: datetime | None = None,
        refresh_token_expires_at: datetime | None = None,
        scope: str | None = None,
        password: str | None = None,
    ) -> Account:
        """Create a new account record linking a provider to a user.

        Args:
            db: Async database session.
            user_id: FK to users table.
            provider_id: Provider name ("google", "github", etc.).
            account_id: Provider's unique user identifier.
            access_token: OAuth access token.
            refresh_token: OAuth refresh token.
            id_token: OIDC ID token.
            access_token_expires_at: Access token expiry.
            refresh_token_expires_at: Refresh token expiry.
            scope: OAuth scopes granted.
            password: bcrypt hash (credential accounts only).

        Returns:
            Created Account with database-generated fields populated.

        Raises:
            sqlalchemy.exc.IntegrityError: If provider+account_id already exists.
        """
        account = Account(
            user_id=user_id,
            provider_id=provider_id,
            account_id=account_id,
            access_token=access_token,
            refresh_token=refresh_token,
            id_token=id_token,
            access_token_expires_at=access_token_expires_at,
            refresh_token_expires_at=refresh_token_expires_at,
            scope=scope,
            password=password,
        )
        db.add(account)
        await db.flush()
        await db.refresh(account)
        return account

    @staticmethod
    async def get_by_provider_and_account_id(
        db: AsyncSession,
        provider_id: str,
        account_id: str,
    ) -> Account | None:
        """Find an account by provider name and provider's user ID.

        Used to identify returning users: if the provider + account ID
        already exists, we know which user this is (regardless of email).

        Args:
            db: Async database session.
            provider_id: Provider name (e.g., "google").
            account_id: Provider's unique user identifier.

        Returns:
            Account if found, None otherwise.
        """
        stmt = select(Account).where(
            Account.provider_id == provider_id,
            Account.account_id == account_id,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_for_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        provider_id: str,
    ) -> Account | None:
        """Find a user's account for one provider.

        Used for the credential account, which a user holds at most once.

        Args:
            db: Async database session.
            user_id: UUID of the user.
            provider_id: Provider name (e.g., "credential").

        Returns:
            The oldest matching Account, or None.
        """
        stmt = (
            select(Account)
            .where(Account.user_id == user_id, Account.provider_id == provider_id)
            .order_by(Account.created_at)
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def set_password(
        db: AsyncSession,
        account: Account,
        password_hash: str | None,
    ) -> Account:
        """Replace (or clear, with None) the stored password hash."""
        account.password = password_hash
        await db.flush()
        return account

    @staticmethod
    async def get_accounts_by_user_id(
        db: AsyncSession,
        user_id: uuid.UUID,
    ) -> list[Account]:
        """List all accounts linked to a user.

        Args:
            db: Async database session.
            user_id: UUID of the user.

        Returns:
            List of Account records (may be empty).
        """
        stmt = (
            select(Account)
            .where(Account.user_id == user_id)
            .order_by(Account.created_at)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def has_id_token_account(db: AsyncSession, user_id: uuid.UUID) -> bool:
        """Check whether any linked account carries an OIDC ID token.

        Args:
            db: Async database session.
            user_id: UUID of the user.

        Returns:
            True if at least one account has a non-NULL id_token.
        """
        stmt = (
            select(Account.id)
            .where(Account.user_id == user_id, Account.id_token.is_not(None))
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.first() is not None

    @staticmethod
    async def update_tokens(
        db: AsyncSession,
        account: Account,
        **kwargs: str | datetime | None,
    ) -> Account:
        """Overwrite token columns after a fresh sign-in.

        Args:
            db: Async database session.
            account: Account to update.
            **kwargs: Token field names and values.

        Returns:
            The updated Account.

        Raises:
            ValueError: If a non-token field name is passed.
        """
        unknown = set(kwargs) - _TOKEN_FIELDS
        if unknown:
            msg = f"Unknown fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        for field, value in kwargs.items():
            setattr(account, field, value)
        await db.flush()
        return account

    @staticmethod
    async def delete_for_user(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        provider_id: str,
        account_id: str | None = None,
    ) -> int:
        """Unlink provider account(s) owned by a user.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(Account).where(
            Account.user_id == user_id,
            Account.provider_id == provider_id,
        )
        if account_id is not None:
            stmt = stmt.where(Account.account_id == account_id)
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
