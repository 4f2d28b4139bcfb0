"""Request guard pipeline.

Every request that is not excluded up front (static assets, framework
docs, health) passes through an ordered list of guards. Each guard
either returns a response, which ends the pipeline, or None to pass the
request on. When every guard passes, the request is allowed.

Order matters:
1. Cheap exclusions (prefetches, auth server routes, public pages).
2. Authentication (session cookie lookup).
3. Anything appended later (roles, feature flags, ...).

Unauthenticated requests are not errors. HTML navigations get a 302 to the
sign-in page with a ``callbackURL`` back to the original URL; everything
else gets a 401 JSON body.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable
from urllib.parse import urlencode, urlsplit

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.types import ASGIApp

from gatehouse.core.config import settings
from gatehouse.core.responses import GuardRejection
from gatehouse.core.route_matcher import PathPredicate, create_route_matcher
from gatehouse.core.sessions import SessionData

logger = logging.getLogger(__name__)

# Public UI routes (each also covers everything below it)
PUBLIC_ROUTES: tuple[str, ...] = (
    "/sign-in",
    "/sign-up",
    "/forgot-password",
    "/verify-email",
    "/reset-password",
)

# Paths the guard middleware runs on: everything EXCEPT static build output,
# metadata files, asset folders, files with static-asset extensions, and the
# service's own health/docs endpoints. API routes are guarded too; the auth
# server routes below the auth base path are let through by the first guard.
GUARDED_PATHS: PathPredicate = create_route_matcher(
    [
        "/((?!_next/static|_next/image|favicon.ico|sitemap.xml|robots.txt"
        "|manifest.webmanifest|assets|fonts|health$|docs|redoc|openapi.json"
        r"|.*\.(?:css|js|mjs|map|png|jpg|jpeg|gif|svg|webp|avif|ico|bmp|tiff"
        r"|woff|woff2|ttf|eot|otf|mp4|webm|mp3|wav)$).*)",
    ]
)

_MAX_CALLBACK_URL_LENGTH = 2048


class Allow(Response):
    """Pipeline outcome meaning "forward the request unchanged".

    Never sent to a client: GuardMiddleware calls the application instead.
    """

    def __init__(self) -> None:
        super().__init__(status_code=200)

    def __repr__(self) -> str:
        return "ALLOW"


ALLOW = Allow()


@runtime_checkable
class Guard(Protocol):
    """One step of the pipeline.

    Return a Response to short-circuit, or None to pass through.
    """

    async def evaluate(self, request: Request) -> Response | None: ...


async def run_guards(request: Request, guards: Iterable[Guard]) -> Response:
    """Evaluate guards strictly in order.

    Args:
        request: Incoming request.
        guards: Ordered guards.

    Returns:
        The first concrete response a guard produces, or ALLOW.
    """
    for guard in guards:
        response = await guard.evaluate(request)
        if response is not None:
            return response
    return ALLOW


@dataclass(frozen=True)
class GuardPipeline:
    """Ordered, immutable guard composition built at startup."""

    guards: tuple[Guard, ...] = ()

    def append(self, guard: Guard) -> "GuardPipeline":
        """Return a new pipeline with ``guard`` evaluated last."""
        return GuardPipeline(guards=(*self.guards, guard))

    async def run(self, request: Request) -> Response:
        return await run_guards(request, self.guards)


# =============================================================================
# Helpers
# =============================================================================


def _under(pathname: str, base: str) -> bool:
    return pathname == base or pathname.startswith(f"{base}/")


def is_public_route(
    pathname: str, public_routes: Sequence[str] = PUBLIC_ROUTES
) -> bool:
    """Exact-or-prefix match against the public route list."""
    return any(_under(pathname, route) for route in public_routes)


def is_auth_server_route(pathname: str) -> bool:
    """Is this path served by the auth router (the base path or below)?"""
    return _under(pathname, settings.auth_base_path.rstrip("/"))


def is_prefetch(request: Request) -> bool:
    """Is this a client-side router prefetch?"""
    headers = request.headers
    if headers.get("next-router-prefetch") is not None:
        return True
    return "prefetch" in (headers.get("purpose"), headers.get("sec-purpose"))


def wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "")


def sign_in_response(request: Request) -> Response:
    """Build the response for an unauthenticated request.

    HTML navigations are redirected (302) to the sign-in page carrying the
    original path and query as ``callbackURL``. Other clients get a 401
    JSON body.
    """
    if not wants_html(request):
        return JSONResponse(status_code=401, content=GuardRejection().model_dump())

    original = request.url.path
    if request.url.query:
        original = f"{original}?{request.url.query}"
    location = f"{settings.sign_in_path}?{urlencode({'callbackURL': original})}"
    return RedirectResponse(url=location, status_code=302)


def safe_callback_url(value: str | None) -> str:
    """Restrict post-auth redirects to this site.

    Accepts a local absolute path ("/dashboard?tab=1") or a URL on the
    frontend origin. Other hosts, scheme-relative "//host" and backslash
    variants fall back to "/".
    """
    if not value or len(value) > _MAX_CALLBACK_URL_LENGTH:
        return "/"
    if value.startswith("/") and not value.startswith(("//", "/\\")):
        return value
    target = urlsplit(value)
    frontend = urlsplit(settings.frontend_url)
    if target.scheme and (target.scheme, target.netloc) == (
        frontend.scheme,
        frontend.netloc,
    ):
        return value
    return "/"


# =============================================================================
# Guards
# =============================================================================


class PublicAndSystemGuard:
    """Allow prefetches, auth server routes and public pages without a session.

    Runs first so those requests never hit the database.
    """

    def __init__(self, public_routes: Sequence[str] = PUBLIC_ROUTES) -> None:
        self.public_routes = tuple(public_routes)

    async def evaluate(self, request: Request) -> Response | None:
        pathname = request.url.path
        if is_prefetch(request):
            return ALLOW
        if is_auth_server_route(pathname):
            return ALLOW
        if is_public_route(pathname, self.public_routes):
            return ALLOW
        return None


class SessionValidatorProtocol(Protocol):
    async def validate(self, headers: Mapping[str, str]) -> SessionData | None: ...


class AuthenticationGuard:
    """Require a valid session.

    On success the session is stored on ``request.state.session`` and the
    request passes through. Otherwise the sign-in response is returned.
    """

    def __init__(self, validator: SessionValidatorProtocol) -> None:
        self.validator = validator

    async def evaluate(self, request: Request) -> Response | None:
        session = await self.validator.validate(request.headers)
        if session is None:
            logger.debug(
                "Unauthenticated request",
                extra={"path": request.url.path, "wants_html": wants_html(request)},
            )
            return sign_in_response(request)
        request.state.session = session
        return None


def build_default_pipeline(validator: SessionValidatorProtocol) -> GuardPipeline:
    """Compose the built-in guards in their required order."""
    return GuardPipeline(
        guards=(
            PublicAndSystemGuard(),
            AuthenticationGuard(validator),
        )
    )


# =============================================================================
# Middleware
# =============================================================================


class GuardMiddleware(BaseHTTPMiddleware):
    """Run the guard pipeline in front of every guarded request.

    Requests rejected by the path predicate (assets, docs, health) are
    passed straight to the application. Auth server routes pass the first
    guard and authenticate per endpoint through ``CurrentSession``.
    """

    def __init__(
        self,
        app: ASGIApp,
        pipeline: GuardPipeline,
        guarded_paths: PathPredicate = GUARDED_PATHS,
    ) -> None:
        super().__init__(app)
        self.pipeline = pipeline
        self.guarded_paths = guarded_paths

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not self.guarded_paths(request.url.path):
            return await call_next(request)

        outcome = await self.pipeline.run(request)
        if outcome is ALLOW:
            return await call_next(request)
        return outcome
