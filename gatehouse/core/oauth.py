"""OAuth provider registry and profile normalisation.

The handshake itself (state, PKCE, token exchange, ID token validation) is
Authlib's Starlette integration; state lives in the signed Starlette session
cookie between the redirect and the callback. This module registers the
configured providers and turns each provider's token + userinfo into an
OAuthProfile.

Google and Microsoft are OpenID Connect providers and return an ID token.
GitHub is plain OAuth 2.0: no ID token, and the email comes from the REST
API (primary + verified address).
"""

from datetime import UTC, datetime
from typing import Any

from authlib.integrations.starlette_client import OAuth, StarletteOAuth2App

from gatehouse.core.account_linking import OAuthProfile
from gatehouse.core.config import Settings, settings
from gatehouse.core.errors import UpstreamError, ValidationError

_OIDC_SCOPE = "openid email profile"
_GITHUB_SCOPE = "read:user user:email"
_OAUTH_HTTP_TIMEOUT = 10.0


def _register_providers(registry: OAuth, config: Settings) -> None:
    google = config.provider_credentials("google")
    if google:
        registry.register(
            name="google",
            client_id=google[0],
            client_secret=google[1],
            server_metadata_url=(
                "https://accounts.google.com/.well-known/openid-configuration"
            ),
            client_kwargs={
                "scope": _OIDC_SCOPE,
                "code_challenge_method": "S256",
                "timeout": _OAUTH_HTTP_TIMEOUT,
            },
        )

    microsoft = config.provider_credentials("microsoft")
    if microsoft:
        registry.register(
            name="microsoft",
            client_id=microsoft[0],
            client_secret=microsoft[1],
            server_metadata_url=(
                f"https://login.microsoftonline.com/{config.microsoft_tenant_id}"
                "/v2.0/.well-known/openid-configuration"
            ),
            client_kwargs={
                "scope": _OIDC_SCOPE,
                "code_challenge_method": "S256",
                "timeout": _OAUTH_HTTP_TIMEOUT,
            },
        )

    github = config.provider_credentials("github")
    if github:
        registry.register(
            name="github",
            client_id=github[0],
            client_secret=github[1],
            authorize_url="https://github.com/login/oauth/authorize",
            access_token_url="https://github.com/login/oauth/access_token",  # nosec B106
            api_base_url="https://api.github.com/",
            client_kwargs={"scope": _GITHUB_SCOPE, "timeout": _OAUTH_HTTP_TIMEOUT},
        )


def build_oauth_registry(config: Settings = settings) -> OAuth:
    """Create an Authlib registry with every configured provider."""
    registry = OAuth()
    _register_providers(registry, config)
    return registry


oauth = build_oauth_registry()


def get_oauth_client(provider: str) -> StarletteOAuth2App:
    """Look up a registered provider client.

    Raises:
        ValidationError: If the provider is unknown or not configured.
    """
    client = oauth.create_client(provider)
    if client is None:
        raise ValidationError(f"OAuth provider {provider} is not configured")
    return client


def authorize_claims_options(provider: str) -> dict[str, Any] | None:
    """ID token claim checks passed to ``authorize_access_token``.

    The multi-tenant Microsoft metadata advertises a templated issuer
    ("{tenantid}"), so only presence of ``iss`` is required there.
    """
    if provider == "microsoft" and settings.microsoft_tenant_id in (
        "common",
        "organizations",
        "consumers",
    ):
        return {"iss": {"essential": True}}
    return None


def _expires_at(token: dict[str, Any]) -> datetime | None:
    expires_at = token.get("expires_at")
    if expires_at is None:
        return None
    return datetime.fromtimestamp(int(expires_at), tz=UTC)


async def _oidc_claims(
    client: StarletteOAuth2App, token: dict[str, Any]
) -> dict[str, Any]:
    claims = token.get("userinfo")
    if claims:
        return dict(claims)
    return dict(await client.userinfo(token=token))


async def _github_identity(
    client: StarletteOAuth2App, token: dict[str, Any]
) -> dict[str, Any]:
    user_resp = await client.get("user", token=token)
    user_resp.raise_for_status()
    user: dict[str, Any] = user_resp.json()

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()
    emails: list[dict[str, Any]] = emails_resp.json()

    primary = next((e for e in emails if e.get("primary")), None)
    if primary is None and user.get("email"):
        primary = {"email": user["email"], "verified": False}

    return {
        "sub": str(user.get("id", "")),
        "email": primary.get("email", "") if primary else "",
        "email_verified": bool(primary and primary.get("verified")),
        "name": user.get("name") or user.get("login"),
        "picture": user.get("avatar_url"),
    }


async def fetch_profile(
    provider: str,
    client: StarletteOAuth2App,
    token: dict[str, Any],
) -> OAuthProfile:
    """Normalise a completed token exchange into an OAuthProfile.

    Args:
        provider: Provider name.
        client: Authlib client that performed the exchange.
        token: Token response (with parsed ``userinfo`` for OIDC providers).

    Returns:
        OAuthProfile with the provider's tokens attached.

    Raises:
        UpstreamError: If the provider did not return an account id or email.
    """
    if provider == "github":
        info = await _github_identity(client, token)
    else:
        info = await _oidc_claims(client, token)

    account_id = str(info.get("sub") or info.get("oid") or "")
    email = info.get("email") or info.get("preferred_username") or ""
    if not account_id or not email or "@" not in email:
        raise UpstreamError("OAuth provider did not return required user info")

    return OAuthProfile(
        provider=provider,
        account_id=account_id,
        email=email,
        email_verified=bool(info.get("email_verified", False)),
        name=info.get("name"),
        image=info.get("picture"),
        access_token=token.get("access_token"),
        refresh_token=token.get("refresh_token"),
        id_token=token.get("id_token"),
        access_token_expires_at=_expires_at(token),
        scope=token.get("scope"),
    )
