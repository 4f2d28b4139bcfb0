"""Session model - one row per signed-in browser/device.

A user may hold several concurrent sessions. Rows are looked up by the
opaque token stored in the session cookie.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gatehouse.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from gatehouse.models.user import User

_DEFAULT_UUID = text("gen_random_uuid()")


class Session(Base, TimestampMixin):
    """Server-tracked proof of authentication.

    Attributes:
        id: UUID primary key.
        user_id: FK to users table.
        token: Opaque cookie value (unique).
        expires_at: Session is invalid after this instant.
        ip_address: Client address at creation (informational).
        user_agent: Client user agent at creation (informational).
    """

    __tablename__ = "sessions"

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
    token: Mapped[str] = mapped_column(Text(), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    ip_address: Mapped[str | None] = mapped_column(Text(), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text(), nullable=True)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="sessions")
