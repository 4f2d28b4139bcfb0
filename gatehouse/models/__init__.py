"""SQLAlchemy ORM models for Gatehouse.

All models are exported from this module for convenient imports:
    from gatehouse.models import User, Session, Account, Verification

- user.py: User (identity root)
- session.py: Session (FK users)
- account.py: Account (FK users, linked identity providers)
- verification.py: Verification (email verification tokens)
"""

from gatehouse.models.account import Account
from gatehouse.models.base import Base, TimestampMixin
from gatehouse.models.session import Session
from gatehouse.models.user import User
from gatehouse.models.verification import Verification

__all__ = [
    "Account",
    "Base",
    "Session",
    "TimestampMixin",
    "User",
    "Verification",
]
