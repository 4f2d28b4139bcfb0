"""Rate limiting configuration using slowapi.

Security: Limits request frequency on endpoints that reach third parties
(OAuth providers, Resend, blob storage).

Requests carrying a session cookie are keyed on a hash of the token
(per-session), so users behind a shared IP don't throttle each other.
Anonymous requests fall back to IP-based keying.

Usage in routers:
    from gatehouse.core.rate_limiting import limiter

    @router.post("/upload")
    @limiter.limit(lambda: settings.rate_limit_upload)
    async def upload_avatar(request: Request, ...):
        ...
"""

import hashlib

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from gatehouse.core.config import settings

# Length of the hashed-token prefix used as key (64 bits)
_KEY_HASH_CHARS = 16


def _rate_limit_key_func(request: Request) -> str:
    """Get rate limit key from request.

    Key format:
    - Session cookie present: "session:{sha256(token)[:16]}"
    - Otherwise: "unauth:{ip}"

    The raw token is never used as a key, so it never reaches limiter
    storage or logs. Cookie-stripping is not a bypass concern: protected
    endpoints reject requests without a valid session before doing work.

    Args:
        request: The incoming request.

    Returns:
        Rate limit key string.
    """
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        digest = hashlib.sha256(token.encode()).hexdigest()[:_KEY_HASH_CHARS]
        return f"session:{digest}"
    return f"unauth:{get_remote_address(request)}"


# Global limiter instance
# Configured with in-memory storage (suitable for single-instance deployment)
# For multi-instance, configure Redis storage via RATELIMIT_STORAGE_URL
limiter = Limiter(
    key_func=_rate_limit_key_func,
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Handle rate limit exceeded errors.

    Security: Returns 429 Too Many Requests with standard error envelope.

    Args:
        request: The incoming request.
        exc: The rate limit exception.

    Returns:
        JSONResponse with 429 status and retry-after header.
    """
    # Parse retry-after from exception detail (e.g., "10 per 1 minute")
    # Fallback to 60 seconds if parsing fails
    try:
        retry_after = str(exc.detail.split()[-1])
        int(retry_after.rstrip("s"))
    except (ValueError, AttributeError, IndexError):
        retry_after = "60"

    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMITED",
                "message": f"Rate limit exceeded: {exc.detail}",
            }
        },
        headers={"Retry-After": retry_after},
    )
