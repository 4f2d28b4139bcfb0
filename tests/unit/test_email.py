"""Tests for Resend email sending."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from gatehouse.core.config import settings
from gatehouse.core.email import (
    get_test_email_recipient,
    send_email,
    send_password_reset_email,
    send_verification_email,
    send_welcome_email,
)

_PATCH_CLIENT = "gatehouse.core.email.httpx.AsyncClient"
_RESEND_URL = "https://api.resend.com/emails"


def _mock_client(response: httpx.Response | None = None, error=None) -> MagicMock:
    client = MagicMock()
    client.post = AsyncMock(return_value=response, side_effect=error)
    client_cls = MagicMock()
    client_cls.return_value.__aenter__.return_value = client
    return client_cls


def _ok() -> httpx.Response:
    return httpx.Response(
        200, json={"id": "email-1"}, request=httpx.Request("POST", _RESEND_URL)
    )


class TestTestRecipient:
    """Development inbox rewriting."""

    def test_rewrites_outside_production(self) -> None:
        assert (
            get_test_email_recipient("jane.doe@example.com")
            == "delivered+jane-doe-example-com@resend.dev"
        )

    def test_custom_test_type(self) -> None:
        assert get_test_email_recipient("a@b.co", "bounced").startswith("bounced+")

    def test_production_keeps_real_address(self) -> None:
        with patch.object(settings, "environment", "production"):
            assert get_test_email_recipient("a@b.co") == "a@b.co"


class TestSendEmail:
    """Tests for send_email."""

    @pytest.mark.asyncio
    async def test_posts_to_resend_with_dev_rewrites(self) -> None:
        client_cls = _mock_client(_ok())

        with patch(_PATCH_CLIENT, client_cls):
            sent = await send_email(to="user@example.com", subject="Hi", text="Body")

        assert sent is True
        client = client_cls.return_value.__aenter__.return_value
        url = client.post.await_args.args[0]
        payload = client.post.await_args.kwargs["json"]
        headers = client.post.await_args.kwargs["headers"]
        assert url == _RESEND_URL
        assert payload["to"] == ["delivered+user-example-com@resend.dev"]
        assert payload["subject"] == "[DEV] Hi"
        assert payload["from"] == settings.resend_default_from
        assert headers["Authorization"].startswith("Bearer ")

    @pytest.mark.asyncio
    async def test_html_body_includes_text_fallback(self) -> None:
        client_cls = _mock_client(_ok())

        with patch(_PATCH_CLIENT, client_cls):
            await send_email(to="u@example.com", subject="S", html="<p>x</p>")

        client = client_cls.return_value.__aenter__.return_value
        payload = client.post.await_args.kwargs["json"]
        assert payload["html"] == "<p>x</p>"
        assert payload["text"] == ""

    @pytest.mark.asyncio
    async def test_http_error_returns_false(self) -> None:
        failed = httpx.Response(
            422, json={"message": "bad"}, request=httpx.Request("POST", _RESEND_URL)
        )

        with patch(_PATCH_CLIENT, _mock_client(failed)):
            assert await send_email(to="u@example.com", subject="S") is False

    @pytest.mark.asyncio
    async def test_network_error_returns_false(self) -> None:
        with patch(_PATCH_CLIENT, _mock_client(error=httpx.ConnectError("down"))):
            assert await send_email(to="u@example.com", subject="S") is False


class TestTemplates:
    """Welcome, verification and password reset emails."""

    @pytest.mark.asyncio
    async def test_welcome_email_greets_first_name(self) -> None:
        with patch(
            "gatehouse.core.email.send_email", new_callable=AsyncMock
        ) as send:
            await send_welcome_email(email="jane@example.com", name="Jane Doe")

        kwargs = send.await_args.kwargs
        assert kwargs["to"] == "jane@example.com"
        assert kwargs["text"].startswith("Hi Jane,")

    @pytest.mark.asyncio
    async def test_verification_email_contains_link(self) -> None:
        url = "https://app.example.com/api/auth/verify-email?token=abc"

        with patch(
            "gatehouse.core.email.send_email", new_callable=AsyncMock
        ) as send:
            await send_verification_email(
                email="jane@example.com", name=None, verification_url=url
            )

        kwargs = send.await_args.kwargs
        assert url in kwargs["text"]
        assert kwargs["text"].startswith("Hi there,")

    @pytest.mark.asyncio
    async def test_password_reset_email_contains_link(self) -> None:
        url = "https://app.example.com/api/auth/reset-password/abc"

        with patch(
            "gatehouse.core.email.send_email", new_callable=AsyncMock
        ) as send:
            await send_password_reset_email(
                email="jane@example.com", name="Jane", reset_url=url
            )

        kwargs = send.await_args.kwargs
        assert kwargs["subject"] == "Reset your password"
        assert url in kwargs["text"]
