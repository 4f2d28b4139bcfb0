"""Verification model - email verification tokens.

Single-use and time-limited. Only the SHA-256 hash of the token is stored;
the plain token travels in the emailed link.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from gatehouse.models.base import Base, TimestampMixin

_DEFAULT_UUID = text("gen_random_uuid()")


class Verification(Base, TimestampMixin):
    """Pending email verification.

    Attributes:
        id: UUID primary key.
        identifier: Email address being verified.
        value: SHA-256 hex digest of the plain token.
        expires_at: Token expiry timestamp.
    """

    __tablename__ = "verifications"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    identifier: Mapped[str] = mapped_column(Text(), nullable=False, index=True)
    value: Mapped[str] = mapped_column(Text(), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
