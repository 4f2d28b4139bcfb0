"""Single-use email link tokens.

The plain token only travels in the emailed link; the verifications table
stores its SHA-256 hash. Password reset tokens live in the same table under
a prefixed identifier, so a reset link can never verify an email address and
a verification link can never reset a password.
"""

import hashlib
import secrets
import uuid

# 32 bytes of entropy, URL-safe (43 chars)
_TOKEN_BYTES = 32

RESET_PASSWORD_PREFIX = "reset-password:"


def generate_token() -> tuple[str, str]:
    """Generate a link token and its SHA-256 hash.

    Returns:
        (plain_token, token_hash): plain for email, hash for DB storage.
    """
    plain = secrets.token_urlsafe(_TOKEN_BYTES)
    return plain, hash_token(plain)


def hash_token(plain: str) -> str:
    return hashlib.sha256(plain.encode()).hexdigest()


def reset_password_identifier(user_id: uuid.UUID) -> str:
    return f"{RESET_PASSWORD_PREFIX}{user_id}"


def is_reset_password_identifier(identifier: str) -> bool:
    return identifier.startswith(RESET_PASSWORD_PREFIX)


def user_id_from_reset_identifier(identifier: str) -> uuid.UUID | None:
    """Recover the user UUID from a reset identifier (None if malformed)."""
    if not is_reset_password_identifier(identifier):
        return None
    try:
        return uuid.UUID(identifier[len(RESET_PASSWORD_PREFIX) :])
    except ValueError:
        return None
