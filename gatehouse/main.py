"""FastAPI application entry point.

Creates and configures the application:
- Guard pipeline middleware (session check in front of pages and API routes)
- Signed session cookie for the OAuth handshake state
- Security headers and CORS
- Exception handlers producing the error envelope
- Auth and avatar routers, health check
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.middleware.sessions import SessionMiddleware

from gatehouse.api.v1.router import router as api_router
from gatehouse.core.blob_storage import close_blob_store
from gatehouse.core.config import settings
from gatehouse.core.database import dispose_engine
from gatehouse.core.errors import APIError, SessionRequiredError
from gatehouse.core.guards import (
    GuardMiddleware,
    GuardPipeline,
    build_default_pipeline,
    sign_in_response,
)
from gatehouse.core.rate_limiting import limiter, rate_limit_exceeded_handler
from gatehouse.core.responses import ErrorDetail, ErrorResponse
from gatehouse.core.sessions import SessionValidator

logger = structlog.get_logger()

# Cookie holding Authlib's state/PKCE verifier between redirect and callback
_OAUTH_STATE_COOKIE = "gatehouse.oauth_state"
_OAUTH_STATE_MAX_AGE_SECONDS = 600


def configure_logging() -> None:
    """Configure the root logger at LOG_LEVEL unless the host already did."""
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=getattr(logging, settings.log_level.upper(), logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses.

    Headers added:
    - X-Frame-Options: Prevents clickjacking attacks
    - X-Content-Type-Options: Prevents MIME sniffing
    - Referrer-Policy: Controls referrer information leakage
    - Cache-Control: Prevents caching of API responses (sessions, accounts)
    - Content-Security-Policy: API responses load nothing
    - Cross-Origin-Opener-Policy: Isolates the browsing context
    - Strict-Transport-Security: Forces HTTPS (production only)
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cross-Origin-Opener-Policy"] = "same-origin"

        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store, max-age=0"
            response.headers["Content-Security-Policy"] = (
                "default-src 'none'; frame-ancestors 'none'"
            )

        # HSTS only in production (assumes HTTPS via reverse proxy)
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response


def api_error_handler(_request: Request, exc: APIError) -> JSONResponse:
    """Render an APIError in the error envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=exc.code,
                message=exc.message,
                details=exc.details,
            )
        ).model_dump(),
    )


def session_required_handler(
    request: Request, _exc: SessionRequiredError
) -> Response:
    """Answer a missing session the same way the guard pipeline does."""
    return sign_in_response(request)


def validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Convert FastAPI's request validation errors to a 400 VALIDATION_ERROR.

    Args:
        request: The incoming request.
        exc: The RequestValidationError from Pydantic.

    Returns:
        JSONResponse with field-level details.
    """
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="VALIDATION_ERROR",
                message="Request validation failed",
                details=[
                    {"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]}
                    for e in exc.errors()
                ],
            )
        ).model_dump(),
    )


def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions.

    Returns 500 INTERNAL_ERROR without exposing details. The exception is
    logged with its traceback.
    """
    logger.exception("Unhandled exception", exc_info=exc, path=str(request.url.path))

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="INTERNAL_ERROR",
                message="An unexpected error occurred",
            )
        ).model_dump(),
    )


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    yield
    await close_blob_store()
    await dispose_engine()


def create_app(pipeline: GuardPipeline | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        pipeline: Page guard pipeline. Defaults to the built-in guards
            (public and system routes, then authentication). Pass an
            extended pipeline to add role or feature-flag guards.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        description="Authentication, session and avatar service",
        lifespan=lifespan,
    )

    configure_logging()

    if pipeline is None:
        pipeline = build_default_pipeline(SessionValidator())

    # Middleware order: Starlette uses LIFO, so the LAST added runs FIRST.
    # CORS must run first to handle preflight requests, so add it last.
    app.add_middleware(GuardMiddleware, pipeline=pipeline)
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.auth_secret.get_secret_value(),
        session_cookie=_OAUTH_STATE_COOKIE,
        max_age=_OAUTH_STATE_MAX_AGE_SECONDS,
        same_site="lax",
        https_only=settings.session_cookie_secure,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "X-Request-ID"],
    )

    # Order matters: specific handlers first, then catch-all
    app.add_exception_handler(SessionRequiredError, session_required_handler)
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    app.state.limiter = limiter

    app.include_router(api_router)

    @app.get("/health")
    def health_check() -> dict:
        """Health check endpoint for monitoring."""
        return {"status": "healthy"}

    return app


# Used by uvicorn: uvicorn gatehouse.main:app
app = create_app()
