"""Account linking logic for OAuth sign-in and manual linking.

Shared by the OAuth callback in both of its modes.

Sign-in rules:
1. If provider+account_id already exists → returning user (tokens refreshed)
2. If email exists AND the provider is trusted or verified the email →
   link the account to that user
3. If email exists otherwise → REJECT (pre-hijack defense)
4. If no matching email → create new user + account

When rule 2 links onto a user whose email is still unverified, that user's
password is cleared and its sessions end (pre-registration defense).

Manual linking rules (user already signed in):
1. The provider email must equal the user's email (no different emails)
2. The provider account must not belong to another user
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.core.passwords import CREDENTIAL_PROVIDER_ID
from gatehouse.models.account import Account
from gatehouse.models.user import User
from gatehouse.repositories.account_repository import AccountRepository
from gatehouse.repositories.session_repository import SessionRepository
from gatehouse.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

# Providers whose email assertion is trusted for automatic linking even when
# the profile carries no explicit email_verified claim.
TRUSTED_PROVIDERS: frozenset[str] = frozenset({"google", "microsoft", "github"})


class AccountLinkingBlockedError(Exception):
    """Raised when account linking is blocked by email verification rules.

    Pre-hijack defense: an account with the same email exists but the
    provider neither is trusted nor verified the email, so linking is unsafe.
    """


class EmailMismatchError(AccountLinkingBlockedError):
    """Raised when a manually linked account has a different email."""


class AccountAlreadyLinkedError(Exception):
    """Raised when the provider account already belongs to another user."""


@dataclass(frozen=True)
class OAuthProfile:
    """Normalised identity returned by an OAuth provider.

    Attributes:
        provider: Provider name ("google", "microsoft", "github").
        account_id: Provider's unique user identifier.
        email: Email address asserted by the provider.
        email_verified: Whether the provider verified the email.
        name: Display name.
        image: Profile picture URL.
        access_token: OAuth access token.
        refresh_token: OAuth refresh token.
        id_token: OIDC ID token (None for plain OAuth providers).
        access_token_expires_at: Access token expiry.
        scope: Granted scopes.
    """

    provider: str
    account_id: str
    email: str
    email_verified: bool = False
    name: str | None = None
    image: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    access_token_expires_at: datetime | None = None
    scope: str | None = None

    def token_fields(self) -> dict[str, str | datetime | None]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "id_token": self.id_token,
            "access_token_expires_at": self.access_token_expires_at,
            "scope": self.scope,
        }


def _display_name(profile: OAuthProfile) -> str:
    if profile.name and profile.name.strip():
        return profile.name.strip()
    return profile.email.split("@", 1)[0]


async def _create_account(
    db: AsyncSession, user: User, profile: OAuthProfile
) -> Account:
    return await AccountRepository.create(
        db,
        user_id=user.id,
        provider_id=profile.provider,
        account_id=profile.account_id,
        **profile.token_fields(),  # type: ignore[arg-type]
    )


async def _revoke_unverified_password(db: AsyncSession, user: User) -> None:
    account = await AccountRepository.get_for_user(db, user.id, CREDENTIAL_PROVIDER_ID)
    if account is None or not account.password:
        return
    await AccountRepository.set_password(db, account, None)
    revoked = await SessionRepository.delete_all_for_user(db, user.id)
    logger.warning(
        "Cleared password of unverified account on OAuth link",
        extra={"user_id": str(user.id), "revoked_sessions": revoked},
    )


async def find_or_create_user_for_oauth(
    *,
    db: AsyncSession,
    profile: OAuthProfile,
) -> tuple[User, bool]:
    """Find or create a user for an OAuth sign-in.

    - Returning users: matched by provider + account_id; tokens are refreshed
    - Account linking: matched by email when the provider is trusted or
      verified the email
    - Pre-hijack defense: otherwise an existing email blocks the sign-in

    Args:
        db: Async database session.
        profile: Normalised provider identity.

    Returns:
        Tuple of (User, created) where created is True if a new user was made.

    Raises:
        AccountLinkingBlockedError: If the email belongs to an existing user
            and linking is not allowed.
    """
    email = profile.email.strip().lower()
    provider = profile.provider

    # Step 1: returning user
    existing_account = await AccountRepository.get_by_provider_and_account_id(
        db, provider, profile.account_id
    )
    if existing_account:
        user = await UserRepository.get_by_id(db, existing_account.user_id)
        if user:
            await AccountRepository.update_tokens(
                db, existing_account, **profile.token_fields()
            )
            logger.info(
                "Returning OAuth user",
                extra={"user_id": str(user.id), "provider": provider},
            )
            return user, False

    # Step 2: existing email → link or reject
    existing_user = await UserRepository.get_by_email(db, email)
    if existing_user:
        can_link = provider in TRUSTED_PROVIDERS or profile.email_verified
        if can_link:
            if not existing_user.email_verified:
                await _revoke_unverified_password(db, existing_user)
            await _create_account(db, existing_user, profile)
            logger.info(
                "Linked OAuth account to existing user",
                extra={"user_id": str(existing_user.id), "provider": provider},
            )
            return existing_user, False

        logger.warning(
            "OAuth account linking blocked by email verification",
            extra={
                "provider": provider,
                "provider_verified": profile.email_verified,
            },
        )
        msg = (
            "Account linking blocked by email verification. "
            "Please sign in with your original method first."
        )
        raise AccountLinkingBlockedError(msg)

    # Step 3: new user + account
    new_user = await UserRepository.create(
        db,
        email=email,
        name=_display_name(profile),
        email_verified=profile.email_verified,
        image=profile.image,
    )
    await _create_account(db, new_user, profile)

    logger.info(
        "Created new OAuth user",
        extra={"user_id": str(new_user.id), "provider": provider},
    )
    return new_user, True


async def link_account_to_user(
    *,
    db: AsyncSession,
    user: User,
    profile: OAuthProfile,
) -> Account:
    """Link a provider account to an already signed-in user.

    Args:
        db: Async database session.
        user: Signed-in user.
        profile: Normalised provider identity.

    Returns:
        The linked (new or refreshed) Account.

    Raises:
        EmailMismatchError: If the provider email differs from the user's.
        AccountAlreadyLinkedError: If the provider account belongs to
            another user.
    """
    if profile.email.strip().lower() != user.email.lower():
        logger.warning(
            "Manual account link refused: email mismatch",
            extra={"user_id": str(user.id), "provider": profile.provider},
        )
        raise EmailMismatchError("The account's email does not match your email.")

    existing = await AccountRepository.get_by_provider_and_account_id(
        db, profile.provider, profile.account_id
    )
    if existing is not None:
        if existing.user_id != user.id:
            raise AccountAlreadyLinkedError(
                "This account is already linked to another user."
            )
        return await AccountRepository.update_tokens(
            db, existing, **profile.token_fields()
        )

    account = await _create_account(db, user, profile)
    logger.info(
        "Linked OAuth account manually",
        extra={"user_id": str(user.id), "provider": profile.provider},
    )
    return account
