"""Password hashing and validation for email/password accounts.

Pipeline:
- validate_password_strength: length rules (sync, no network)
- hash_password: bcrypt, cost factor 12
- verify_password: always one bcrypt comparison (DUMMY_HASH when there is
  no stored hash), so response time does not reveal whether an account exists

The hash lives on the user's "credential" account row; OAuth-only users have
no such row.
"""

import bcrypt

from gatehouse.core.errors import ValidationError

# Provider id of the email/password account row
CREDENTIAL_PROVIDER_ID = "credential"

# bcrypt cost factor for password hashing
_BCRYPT_ROUNDS = 12

MIN_PASSWORD_LENGTH = 8
# bcrypt refuses input longer than 72 bytes
MAX_PASSWORD_BYTES = 72

# Pre-computed bcrypt hash for timing-safe comparison on user-not-found.
# Security: prevents user enumeration via response time differences.
# Pre-generated to avoid ~300ms bcrypt computation on every app startup.
DUMMY_HASH = b"$2b$12$ZP2PVB8yI35X.mkRqcUPUuSzJA1CNRt4dZ7X3cyrfJu.2S3w.Qen2"


def validate_password_strength(password: str) -> None:
    """Validate a new password.

    Args:
        password: Plain-text password to validate.

    Raises:
        ValidationError: If the password is shorter than 8 characters or
            longer than 72 bytes once UTF-8 encoded.
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            details=[{"field": "password", "error": "PASSWORD_TOO_SHORT"}],
        )
    if len(password.encode()) > MAX_PASSWORD_BYTES:
        raise ValidationError(
            f"Password must be at most {MAX_PASSWORD_BYTES} bytes",
            details=[{"field": "password", "error": "PASSWORD_TOO_LONG"}],
        )


def hash_password(password: str) -> str:
    return bcrypt.hashpw(
        password.encode(), bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)
    ).decode()


def verify_password(password: str, password_hash: str | None) -> bool:
    """Compare a password with a stored bcrypt hash.

    Args:
        password: Plain-text candidate.
        password_hash: Stored hash, or None when the user has no password.

    Returns:
        True only when a hash is stored and the password matches it.
    """
    candidate = password.encode()
    if password_hash is None or len(candidate) > MAX_PASSWORD_BYTES:
        # Security: always perform bcrypt comparison to prevent timing attacks.
        bcrypt.checkpw(candidate[:MAX_PASSWORD_BYTES], DUMMY_HASH)
        return False
    return bcrypt.checkpw(candidate, password_hash.encode())
