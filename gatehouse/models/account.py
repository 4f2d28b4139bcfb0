"""Account model - linked identity provider connections.

Multiple rows per user (one per provider). All linked accounts share the
user's email: linking with a different email is refused upstream.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gatehouse.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from gatehouse.models.user import User

_DEFAULT_UUID = text("gen_random_uuid()")


class Account(Base, TimestampMixin):
    """OAuth/credential provider connection for a user.

    Attributes:
        id: UUID primary key.
        user_id: FK to users table.
        provider_id: Provider name ("google", "microsoft", "github").
        account_id: Provider's unique user ID.
        access_token: OAuth access token.
        refresh_token: OAuth refresh token.
        id_token: OIDC ID token. Non-NULL only for OpenID Connect providers.
        access_token_expires_at: Access token expiry.
        refresh_token_expires_at: Refresh token expiry.
        scope: OAuth scopes granted.
        password: bcrypt hash for the email/password ("credential") account.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint(
            "provider_id", "account_id", name="uq_accounts_provider_account"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider_id: Mapped[str] = mapped_column(Text(), nullable=False)
    account_id: Mapped[str] = mapped_column(Text(), nullable=False)
    access_token: Mapped[str | None] = mapped_column(Text(), nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text(), nullable=True)
    id_token: Mapped[str | None] = mapped_column(Text(), nullable=True)
    access_token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    refresh_token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    scope: Mapped[str | None] = mapped_column(Text(), nullable=True)
    password: Mapped[str | None] = mapped_column(Text(), nullable=True)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="accounts")
