"""Tests for session and account management endpoints.

Repositories are patched; these tests cover request handling, ownership
scoping and the response shapes.
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from gatehouse.core.config import settings
from tests.conftest import (
    TEST_SESSION_ID,
    TEST_SESSION_TOKEN,
    TEST_USER_ID,
    make_session_data,
    make_test_app,
)

# ===================================================================
# Constants
# ===================================================================

_BASE = settings.auth_base_path.rstrip("/")
_MODULE = "gatehouse.api.v1.auth_session"
_PATCH_LIST_ACCOUNTS = f"{_MODULE}.AccountRepository.get_accounts_by_user_id"
_PATCH_DELETE_ACCOUNT = f"{_MODULE}.AccountRepository.delete_for_user"


def _account(provider_id: str, account_id: str = "acct-1") -> SimpleNamespace:
    return SimpleNamespace(
        id=uuid.uuid4(),
        provider_id=provider_id,
        account_id=account_id,
        created_at=datetime.now(UTC),
        scope="openid,email profile",
    )


def _session_row(session_id: uuid.UUID) -> SimpleNamespace:
    now = datetime.now(UTC)
    return SimpleNamespace(
        id=session_id,
        created_at=now,
        updated_at=now,
        expires_at=now + timedelta(days=7),
        ip_address="127.0.0.1",
        user_agent="pytest",
    )


# ===================================================================
# Fixtures
# ===================================================================


@pytest_asyncio.fixture
async def client(mock_db) -> AsyncGenerator[AsyncClient, None]:
    app = make_test_app(db=mock_db, session=make_session_data())
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={settings.session_cookie_name: TEST_SESSION_TOKEN},
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def anon_client(mock_db) -> AsyncGenerator[AsyncClient, None]:
    app = make_test_app(db=mock_db, session=None)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


# ===================================================================
# GET /get-session
# ===================================================================


class TestGetSession:
    """Tests for GET /get-session."""

    @pytest.mark.asyncio
    async def test_anonymous_gets_null(self, anon_client) -> None:
        response = await anon_client.get(f"{_BASE}/get-session")

        assert response.status_code == 200
        assert response.json() is None

    @pytest.mark.asyncio
    async def test_returns_session_and_user(self, client) -> None:
        response = await client.get(f"{_BASE}/get-session")

        body = response.json()
        assert body["user"]["id"] == str(TEST_USER_ID)
        assert body["user"]["email"] == "test@example.com"
        assert body["session"]["id"] == str(TEST_SESSION_ID)
        assert "token" not in body["session"]


# ===================================================================
# POST /sign-out
# ===================================================================


class TestSignOut:
    """Tests for POST /sign-out."""

    @pytest.mark.asyncio
    async def test_deletes_session_and_clears_cookie(self, client, mock_db) -> None:
        with patch(
            f"{_MODULE}.SessionRepository.delete_by_token", new_callable=AsyncMock
        ) as delete:
            response = await client.post(f"{_BASE}/sign-out")

        assert response.status_code == 200
        assert response.json() == {"data": {"success": True}}
        delete.assert_awaited_once_with(mock_db, TEST_SESSION_TOKEN)
        mock_db.commit.assert_awaited_once()
        set_cookie = response.headers["set-cookie"]
        assert set_cookie.startswith(f"{settings.session_cookie_name}=")
        assert "Max-Age=0" in set_cookie

    @pytest.mark.asyncio
    async def test_without_cookie_is_idempotent(self, anon_client, mock_db) -> None:
        with patch(
            f"{_MODULE}.SessionRepository.delete_by_token", new_callable=AsyncMock
        ) as delete:
            response = await anon_client.post(f"{_BASE}/sign-out")

        assert response.status_code == 200
        delete.assert_not_awaited()
        mock_db.commit.assert_not_awaited()


# ===================================================================
# Session management
# ===================================================================


class TestSessionManagement:
    """Tests for list/revoke session endpoints."""

    @pytest.mark.asyncio
    async def test_list_flags_current_session(self, client) -> None:
        other_id = uuid.uuid4()
        rows = [_session_row(TEST_SESSION_ID), _session_row(other_id)]

        with patch(
            f"{_MODULE}.SessionRepository.list_for_user",
            new_callable=AsyncMock,
            return_value=rows,
        ):
            response = await client.get(f"{_BASE}/list-sessions")

        data = response.json()["data"]
        flags = {item["id"]: item["current"] for item in data}
        assert flags == {str(TEST_SESSION_ID): True, str(other_id): False}

    @pytest.mark.asyncio
    async def test_list_requires_session(self, anon_client) -> None:
        response = await anon_client.get(f"{_BASE}/list-sessions")
        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_revoke_is_scoped_to_caller(self, client, mock_db) -> None:
        target = uuid.uuid4()

        with patch(
            f"{_MODULE}.SessionRepository.delete_by_id",
            new_callable=AsyncMock,
            return_value=True,
        ) as delete:
            response = await client.post(
                f"{_BASE}/revoke-session", json={"id": str(target)}
            )

        assert response.status_code == 200
        delete.assert_awaited_once_with(mock_db, target, user_id=TEST_USER_ID)
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_revoke_unknown_session_is_404(self, client) -> None:
        with patch(
            f"{_MODULE}.SessionRepository.delete_by_id",
            new_callable=AsyncMock,
            return_value=False,
        ):
            response = await client.post(
                f"{_BASE}/revoke-session", json={"id": str(uuid.uuid4())}
            )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_revoke_others_keeps_current(self, client) -> None:
        with patch(
            f"{_MODULE}.SessionRepository.delete_others",
            new_callable=AsyncMock,
            return_value=2,
        ) as delete:
            response = await client.post(f"{_BASE}/revoke-other-sessions")

        assert response.json() == {"data": {"success": True, "revoked": 2}}
        assert delete.await_args.kwargs == {"keep_token": TEST_SESSION_TOKEN}


# ===================================================================
# Linked accounts
# ===================================================================


class TestLinkedAccounts:
    """Tests for list/unlink account endpoints."""

    @pytest.mark.asyncio
    async def test_list_accounts_splits_scopes(self, client) -> None:
        with patch(
            _PATCH_LIST_ACCOUNTS,
            new_callable=AsyncMock,
            return_value=[_account("google")],
        ):
            response = await client.get(f"{_BASE}/list-accounts")

        (account,) = response.json()["data"]
        assert account["provider_id"] == "google"
        assert account["scopes"] == ["openid", "email", "profile"]
        assert "access_token" not in account

    @pytest.mark.asyncio
    async def test_unlink_last_account_is_409(self, client, mock_db) -> None:
        with (
            patch(
                _PATCH_LIST_ACCOUNTS,
                new_callable=AsyncMock,
                return_value=[_account("google")],
            ),
            patch(_PATCH_DELETE_ACCOUNT, new_callable=AsyncMock) as delete,
        ):
            response = await client.post(
                f"{_BASE}/unlink-account", json={"providerId": "google"}
            )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "LAST_ACCOUNT"
        delete.assert_not_awaited()
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unlink_with_another_account_left(self, client, mock_db) -> None:
        accounts = [_account("google"), _account("github", "gh-1")]

        with (
            patch(_PATCH_LIST_ACCOUNTS, new_callable=AsyncMock, return_value=accounts),
            patch(_PATCH_DELETE_ACCOUNT, new_callable=AsyncMock) as delete,
        ):
            response = await client.post(
                f"{_BASE}/unlink-account", json={"providerId": "github"}
            )

        assert response.status_code == 200
        assert delete.await_args.kwargs == {
            "user_id": TEST_USER_ID,
            "provider_id": "github",
            "account_id": None,
        }
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unlink_unknown_provider_is_404(self, client) -> None:
        with patch(
            _PATCH_LIST_ACCOUNTS,
            new_callable=AsyncMock,
            return_value=[_account("google"), _account("github")],
        ):
            response = await client.post(
                f"{_BASE}/unlink-account", json={"providerId": "microsoft"}
            )

        assert response.status_code == 404


# ===================================================================
# POST /update-user
# ===================================================================


class TestUpdateUser:
    """Tests for POST /update-user."""

    @pytest.mark.asyncio
    async def test_updates_trimmed_name(self, client, mock_db) -> None:
        updated = SimpleNamespace(id=TEST_USER_ID, name="Jane")

        with patch(
            f"{_MODULE}.UserRepository.update",
            new_callable=AsyncMock,
            return_value=updated,
        ) as update:
            response = await client.post(
                f"{_BASE}/update-user", json={"name": "  Jane  "}
            )

        assert response.json() == {"data": {"name": "Jane"}}
        assert update.await_args.kwargs == {"name": "Jane"}
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_name_is_400(self, client) -> None:
        response = await client.post(f"{_BASE}/update-user", json={"name": ""})
        assert response.status_code == 400


# ===================================================================
# POST /delete-user
# ===================================================================


class TestDeleteUser:
    """Tests for POST /delete-user."""

    _PASSWORD = "correct horse battery"  # nosec B105  # gitleaks:allow

    @pytest.fixture
    def repos(self):
        import bcrypt

        credential = SimpleNamespace(
            password=bcrypt.hashpw(
                self._PASSWORD.encode(), bcrypt.gensalt(rounds=4)
            ).decode()
        )
        with (
            patch(
                f"{_MODULE}.AccountRepository.get_for_user",
                new_callable=AsyncMock,
                return_value=credential,
            ) as get_credential,
            patch(
                f"{_MODULE}.VerificationRepository.delete_all_for_identifier",
                new_callable=AsyncMock,
            ) as delete_tokens,
            patch(
                f"{_MODULE}.UserRepository.delete",
                new_callable=AsyncMock,
                return_value=True,
            ) as delete_user,
            patch(f"{_MODULE}.cleanup_old_avatar", new_callable=AsyncMock) as cleanup,
        ):
            yield SimpleNamespace(
                get_credential=get_credential,
                delete_tokens=delete_tokens,
                delete_user=delete_user,
                cleanup=cleanup,
            )

    @pytest.mark.asyncio
    async def test_deletes_with_correct_password(
        self, client, repos, mock_db
    ) -> None:
        response = await client.post(
            f"{_BASE}/delete-user", json={"password": self._PASSWORD}
        )

        assert response.status_code == 200
        assert response.json() == {"data": {"success": True}}
        repos.delete_user.assert_awaited_once_with(mock_db, TEST_USER_ID)
        identifiers = {
            c.kwargs["identifier"] for c in repos.delete_tokens.await_args_list
        }
        assert identifiers == {"test@example.com", f"reset-password:{TEST_USER_ID}"}
        mock_db.commit.assert_awaited_once()
        assert "max-age=0" in response.headers["set-cookie"].lower()

    @pytest.mark.asyncio
    async def test_wrong_password_is_401(self, client, repos) -> None:
        response = await client.post(
            f"{_BASE}/delete-user", json={"password": "not the password"}
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"
        repos.delete_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_password_is_401(self, client, repos) -> None:
        response = await client.post(f"{_BASE}/delete-user")

        assert response.status_code == 401
        repos.delete_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_oauth_only_user_needs_no_password(self, mock_db, repos) -> None:
        repos.get_credential.return_value = None
        blob = f"https://{settings.blob_domain}/avatar-abc.webp"
        app = make_test_app(db=mock_db, session=make_session_data(image=blob))

        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as ac:
            response = await ac.post(f"{_BASE}/delete-user")

        assert response.status_code == 200
        repos.delete_user.assert_awaited_once()
        repos.cleanup.assert_awaited_once_with(blob)

    @pytest.mark.asyncio
    async def test_requires_session(self, anon_client, repos) -> None:
        response = await anon_client.post(
            f"{_BASE}/delete-user", headers={"accept": "application/json"}
        )

        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHORIZED"
        repos.delete_user.assert_not_awaited()
