"""API router aggregator.

Auth endpoints are mounted at the configured auth base path (default
/api/auth); everything else lives under /api.
"""

from fastapi import APIRouter

from gatehouse.api.v1 import (
    auth_email,
    auth_oauth,
    auth_session,
    auth_verification,
    avatar,
)
from gatehouse.core.config import settings

router = APIRouter()

# =============================================================================
# Authentication
# =============================================================================

_AUTH_PREFIX = settings.auth_base_path.rstrip("/")

router.include_router(auth_email.router, prefix=_AUTH_PREFIX, tags=["auth"])
router.include_router(auth_oauth.router, prefix=_AUTH_PREFIX, tags=["auth"])
router.include_router(auth_session.router, prefix=_AUTH_PREFIX, tags=["auth"])
router.include_router(auth_verification.router, prefix=_AUTH_PREFIX, tags=["auth"])

# =============================================================================
# Avatar
# =============================================================================

router.include_router(avatar.router, prefix="/api/avatar", tags=["avatar"])
# Anonymous upload during sign-up lives under the auth base path
router.include_router(avatar.sign_up_router, prefix=_AUTH_PREFIX, tags=["avatar"])
