"""Tests for application configuration.

Required values come from the environment set up in tests/conftest.py;
each test overrides only what it checks.
"""

import pytest
from pydantic import SecretStr, ValidationError

from gatehouse.core.config import Settings

_PRODUCTION = "production"
_LONG_SECRET = "a" * 64


class TestDatabaseUrl:
    """DATABASE_URL is normalised onto the asyncpg driver."""

    @pytest.mark.parametrize(
        "url",
        [
            "postgres://u:p@db.example.com/app",
            "postgresql://u:p@db.example.com/app",
            "postgresql+asyncpg://u:p@db.example.com/app",
        ],
    )
    def test_uses_asyncpg(self, url: str) -> None:
        s = Settings(database_url=url)
        assert s.database_url == "postgresql+asyncpg://u:p@db.example.com/app"


class TestPoolSize:
    """Connection pool sizing per environment."""

    def test_explicit_value_wins(self) -> None:
        assert Settings(db_max_connections=3).pool_size == 3

    def test_production_default(self) -> None:
        s = Settings(environment=_PRODUCTION, auth_secret=SecretStr(_LONG_SECRET))
        assert s.pool_size == 10

    def test_test_default(self) -> None:
        assert Settings(environment="test").pool_size == 1

    def test_other_environments_fall_back(self) -> None:
        assert Settings(environment="development").pool_size == 5


class TestDefaults:
    """Session and routing defaults."""

    def test_auth_base_path(self) -> None:
        assert Settings().auth_base_path == "/api/auth"

    def test_session_lifetime_is_seven_days(self) -> None:
        assert Settings().session_expires_days == 7

    def test_samesite_defaults_to_lax(self) -> None:
        assert Settings().session_cookie_samesite == "lax"


class TestSecurityValidation:
    """Cross-field security checks."""

    def test_rejects_wildcard_cors(self) -> None:
        with pytest.raises(ValidationError, match="wildcard"):
            Settings(allowed_origins=["*"])

    def test_samesite_none_requires_secure(self) -> None:
        with pytest.raises(ValidationError, match="SESSION_COOKIE_SECURE"):
            Settings(session_cookie_samesite="none", session_cookie_secure=False)

    def test_samesite_none_with_secure_is_allowed(self) -> None:
        s = Settings(session_cookie_samesite="none", session_cookie_secure=True)
        assert s.session_cookie_samesite == "none"

    def test_rejects_short_secret_in_production(self) -> None:
        with pytest.raises(ValidationError, match="AUTH_SECRET"):
            Settings(environment=_PRODUCTION, auth_secret=SecretStr("short"))

    def test_short_secret_allowed_in_development(self) -> None:
        s = Settings(environment="development", auth_secret=SecretStr("short"))
        assert s.auth_secret.get_secret_value() == "short"

    def test_rejects_pooler_url_in_production(self) -> None:
        with pytest.raises(ValidationError, match="pooler"):
            Settings(
                environment=_PRODUCTION,
                auth_secret=SecretStr(_LONG_SECRET),
                database_url="postgresql://u:p@ep-x-pooler.neon.tech/app",
            )


class TestProviderCredentials:
    """OAuth provider enablement."""

    def test_incomplete_pair_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="GOOGLE_CLIENT_ID"):
            Settings(google_client_id="id-only")

    def test_complete_pair_enables_provider(self) -> None:
        s = Settings(
            github_client_id="gh-id", github_client_secret=SecretStr("gh-secret")
        )
        assert s.provider_credentials("github") == ("gh-id", "gh-secret")
        assert "github" in s.enabled_providers

    def test_unconfigured_provider_returns_none(self) -> None:
        assert Settings().provider_credentials("microsoft") is None

    def test_unknown_provider_returns_none(self) -> None:
        assert Settings().provider_credentials("myspace") is None


class TestSignInMethods:
    """At least one way to sign in must be configured."""

    def test_email_password_alone_is_enough(self) -> None:
        s = Settings()
        assert s.email_password_enabled is True
        assert s.enabled_providers == ()

    def test_oauth_only_without_provider_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="No sign-in method configured"):
            Settings(email_password_enabled=False)

    def test_oauth_only_with_complete_pair(self) -> None:
        s = Settings(
            email_password_enabled=False,
            google_client_id="g-id",
            google_client_secret=SecretStr("g-secret"),
        )
        assert s.enabled_providers == ("google",)
