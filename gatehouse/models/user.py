"""User model - identity root.

Sessions and accounts reference users with ON DELETE CASCADE.
"""

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gatehouse.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from gatehouse.models.account import Account
    from gatehouse.models.session import Session

_DEFAULT_UUID = text("gen_random_uuid()")
_CASCADE_ALL_DELETE_ORPHAN = "all, delete-orphan"


class User(Base, TimestampMixin):
    """Application user.

    Attributes:
        id: UUID primary key.
        name: Display name.
        email: Unique email address (stored lowercase).
        email_verified: Whether the email address has been verified.
            Only ever flipped to True by verification flows.
        image: Avatar. A URL, a two-character initials string, or NULL.
        created_at: Account creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    name: Mapped[str] = mapped_column(
        Text(),
        nullable=False,
    )
    email: Mapped[str] = mapped_column(
        Text(),
        unique=True,
        nullable=False,
    )
    email_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
        default=False,
    )
    image: Mapped[str | None] = mapped_column(
        Text(),
        nullable=True,
    )

    # Relationships
    accounts: Mapped[list["Account"]] = relationship(
        "Account",
        back_populates="user",
        cascade=_CASCADE_ALL_DELETE_ORPHAN,
        passive_deletes=True,
    )
    sessions: Mapped[list["Session"]] = relationship(
        "Session",
        back_populates="user",
        cascade=_CASCADE_ALL_DELETE_ORPHAN,
        passive_deletes=True,
    )
