"""Application configuration loaded from environment variables.

Settings for the database pool, session cookies, OAuth providers, blob
storage and outbound email. Uses pydantic-settings for validation and .env
file support. Required values have no default: importing this module
without them fails fast with a pydantic ValidationError.
"""

from typing import Literal

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Minimum length for AUTH_SECRET in production (256 bits = 32 bytes)
_MIN_AUTH_SECRET_LENGTH = 32

# Default pool size per environment (prod reuses warm workers, tests stay tiny)
_DEFAULT_MAX_CONNECTIONS = {"production": 10, "test": 1}
_FALLBACK_MAX_CONNECTIONS = 5

_SUPPORTED_PROVIDERS = ("google", "microsoft", "github")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Web App Template"
    environment: str = "development"
    log_level: str = "INFO"
    frontend_url: str = "http://localhost:3000"

    # CORS (credentials are used, so never "*")
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Database
    database_url: str
    db_max_connections: int | None = None
    db_pool_recycle_seconds: int = 300

    # Sessions & routing
    auth_secret: SecretStr
    auth_base_path: str = "/api/auth"
    sign_in_path: str = "/sign-in"
    session_cookie_name: str = "gatehouse.session_token"
    session_cookie_secure: bool = True
    session_cookie_samesite: Literal["lax", "strict", "none"] = "lax"
    session_cookie_domain: str = ""
    session_expires_days: int = 7
    verification_token_ttl_minutes: int = 60
    reset_password_token_ttl_minutes: int = 60

    # Email/password sign-in (disable to run OAuth-only)
    email_password_enabled: bool = True

    # OAuth providers (a provider is enabled when both values are set)
    google_client_id: str = ""
    google_client_secret: SecretStr = SecretStr("")
    microsoft_client_id: str = ""
    microsoft_client_secret: SecretStr = SecretStr("")
    microsoft_tenant_id: str = "common"
    github_client_id: str = ""
    github_client_secret: SecretStr = SecretStr("")

    # Blob storage
    blob_read_write_token: SecretStr
    blob_domain: str
    blob_api_url: str = "https://blob.vercel-storage.com"

    # Email (Resend)
    resend_api_key: SecretStr
    resend_default_from: str

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_oauth: str = "20/minute"
    rate_limit_upload: str = "10/minute"
    rate_limit_email: str = "5/hour"
    rate_limit_credentials: str = "10/minute"

    @field_validator("database_url")
    @classmethod
    def use_async_driver(cls, value: str) -> str:
        """Normalise postgres URLs onto the asyncpg driver."""
        for prefix in ("postgres://", "postgresql://"):
            if value.startswith(prefix):
                return "postgresql+asyncpg://" + value[len(prefix) :]
        return value

    @property
    def pool_size(self) -> int:
        """Connection pool size for the current environment."""
        if self.db_max_connections is not None:
            return self.db_max_connections
        return _DEFAULT_MAX_CONNECTIONS.get(
            self.environment, _FALLBACK_MAX_CONNECTIONS
        )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def provider_credentials(self, provider: str) -> tuple[str, str] | None:
        """Return (client_id, client_secret) for an enabled provider.

        Args:
            provider: Provider name (e.g., "google").

        Returns:
            Credential pair, or None if the provider is not configured.
        """
        if provider not in _SUPPORTED_PROVIDERS:
            return None
        client_id: str = getattr(self, f"{provider}_client_id")
        secret: SecretStr = getattr(self, f"{provider}_client_secret")
        if not client_id or not secret.get_secret_value():
            return None
        return client_id, secret.get_secret_value()

    @property
    def enabled_providers(self) -> tuple[str, ...]:
        return tuple(
            p for p in _SUPPORTED_PROVIDERS if self.provider_credentials(p) is not None
        )

    @model_validator(mode="after")
    def check_security_invariants(self) -> "Settings":
        """Validate cross-field requirements.

        Checks:
        - SameSite=None requires the Secure flag (browser requirement)
        - CORS must not use a wildcard origin (incompatible with credentials)
        - OAuth credentials come in complete pairs
        - At least one sign-in method: email/password, or a complete OAuth pair
        - Production: AUTH_SECRET >= 32 chars, and DATABASE_URL must be a
          direct Neon endpoint (client-side pooling over a "-pooler" URL
          would pool twice)
        """
        if self.session_cookie_samesite == "none" and not self.session_cookie_secure:
            msg = (
                "SESSION_COOKIE_SECURE must be true when SESSION_COOKIE_SAMESITE=none. "
                "Browsers reject SameSite=None cookies without the Secure flag."
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "Session cookies are incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        for provider in _SUPPORTED_PROVIDERS:
            has_id = bool(getattr(self, f"{provider}_client_id"))
            has_secret = bool(
                getattr(self, f"{provider}_client_secret").get_secret_value()
            )
            if has_id != has_secret:
                msg = (
                    f"{provider.upper()}_CLIENT_ID and {provider.upper()}_CLIENT_SECRET "
                    "must be set together."
                )
                raise ValueError(msg)

        if not self.email_password_enabled and not self.enabled_providers:
            msg = (
                "No sign-in method configured: set EMAIL_PASSWORD_ENABLED=true "
                "or a complete CLIENT_ID/CLIENT_SECRET pair for at least one of "
                f"{', '.join(_SUPPORTED_PROVIDERS)}."
            )
            raise ValueError(msg)

        if self.is_production:
            if len(self.auth_secret.get_secret_value()) < _MIN_AUTH_SECRET_LENGTH:
                msg = (
                    f"AUTH_SECRET must be at least {_MIN_AUTH_SECRET_LENGTH} "
                    "characters in production."
                )
                raise ValueError(msg)
            if "-pooler." in self.database_url:
                msg = (
                    'DATABASE_URL must be a direct Neon endpoint (no "-pooler") '
                    "when using client-side pooling."
                )
                raise ValueError(msg)

        return self


settings = Settings()  # type: ignore[call-arg]
