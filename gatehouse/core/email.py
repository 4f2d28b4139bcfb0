"""Email sending via Resend API.

Simple HTTP POST to Resend. Outside production every recipient is rewritten
to a Resend test inbox (``delivered+<label>@resend.dev``, where the label is
the original address with non-alphanumerics replaced) and the subject is
prefixed with ``[DEV]``, so development never mails real users.

Sending is best-effort: failures are logged and reported through the return
value, never raised.
"""

import logging
import re
from typing import Literal

import httpx

from gatehouse.core.config import settings

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"
_RESEND_TIMEOUT = 10.0
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")

TestInbox = Literal["delivered", "bounced", "complained"]


def get_test_email_recipient(email: str, test_type: TestInbox = "delivered") -> str:
    """Map a real address onto a labelled Resend test inbox outside production."""
    if settings.is_production:
        return email
    label = _NON_ALNUM.sub("-", email)
    return f"{test_type}+{label}@resend.dev"


async def send_email(
    *,
    to: str | list[str],
    subject: str,
    text: str | None = None,
    html: str | None = None,
    from_: str | None = None,
    test_type: TestInbox = "delivered",
) -> bool:
    """Send an email through Resend.

    Args:
        to: Recipient address or addresses.
        subject: Subject line.
        text: Plain-text body.
        html: HTML body (``text`` is sent alongside as fallback).
        from_: Sender; defaults to ``RESEND_DEFAULT_FROM``.
        test_type: Resend test inbox used outside production.

    Returns:
        True if Resend accepted the message, False otherwise.
    """
    recipients = [to] if isinstance(to, str) else list(to)
    if not settings.is_production:
        recipients = [get_test_email_recipient(r, test_type) for r in recipients]
        subject = f"[DEV] {subject}"

    payload: dict[str, object] = {
        "from": from_ or settings.resend_default_from,
        "to": recipients,
        "subject": subject,
    }
    if html:
        payload["html"] = html
        payload["text"] = text or ""
    else:
        payload["text"] = text or "This email was sent without content."

    try:
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                _RESEND_API_URL,
                headers={
                    "Authorization": f"Bearer {settings.resend_api_key.get_secret_value()}",
                },
                json=payload,
                timeout=_RESEND_TIMEOUT,
            )
            resp.raise_for_status()
    except Exception:
        logger.warning("Failed to send email", exc_info=True)
        return False

    logger.info(
        "Email sent",
        extra={"email_id": resp.json().get("id"), "subject": subject},
    )
    return True


def _first_name(name: str | None) -> str:
    return name.split()[0] if name and name.strip() else "there"


async def send_welcome_email(*, email: str, name: str | None) -> bool:
    """Send the welcome email to a newly created user."""
    first_name = _first_name(name)
    return await send_email(
        to=email,
        subject=f"Welcome to {settings.app_name}!",
        text=(
            f"Hi {first_name},\n\n"
            f"Thanks for signing up for {settings.app_name}. "
            f"Your account ({email}) is ready.\n\n"
            f"Get started: {settings.frontend_url}\n"
        ),
    )


async def send_verification_email(
    *, email: str, name: str | None, verification_url: str
) -> bool:
    """Send an email address verification link."""
    first_name = _first_name(name)
    ttl = settings.verification_token_ttl_minutes
    return await send_email(
        to=email,
        subject="Verify your email address",
        text=(
            f"Hi {first_name},\n\n"
            f"Confirm your email address by opening this link:\n\n"
            f"{verification_url}\n\n"
            f"This link expires in {ttl} minutes. "
            "If you didn't request this, you can safely ignore this email."
        ),
    )


async def send_password_reset_email(
    *, email: str, name: str | None, reset_url: str
) -> bool:
    """Send a password reset link."""
    first_name = _first_name(name)
    ttl = settings.reset_password_token_ttl_minutes
    return await send_email(
        to=email,
        subject="Reset your password",
        text=(
            f"Hi {first_name},\n\n"
            f"Someone asked to reset the password for {email}. "
            f"Choose a new one here:\n\n"
            f"{reset_url}\n\n"
            f"This link expires in {ttl} minutes. "
            "If you didn't request this, your password is unchanged."
        ),
    )
