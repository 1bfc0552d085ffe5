"""
Unit tests for session tokens, login rules and the chat access predicate.
"""

import os
import time
from unittest.mock import patch

import jwt as pyjwt
import pytest

from chat_relay.auth import (
    API_KEY_PRINCIPAL,
    authenticate_credentials,
    create_session_token,
    get_current_session,
    is_sign_in_allowed,
    require_chat_access,
    verify_session_token,
)
from chat_relay.config import get_settings
from chat_relay.errors import AuthorizationError
from chat_relay.models.auth import SessionUser

TEST_SECRET = "test-session-secret"

LOGIN_ENV = {
    "SESSION_SECRET": TEST_SECRET,
    "ADMIN_EMAIL": "admin@example.com",
    "ADMIN_PASSWORD": "s3cret",
}


def _make_token(payload: dict, secret: str = TEST_SECRET) -> str:
    """Sign a JWT independently of the code under test."""
    return pyjwt.encode(payload, secret, algorithm="HS256")


class TestSignInAllowList:
    def test_no_restrictions_allows_everyone(self):
        with patch.dict(os.environ, {"ALLOWED_EMAILS": "", "ALLOWED_DOMAINS": ""}):
            assert is_sign_in_allowed("anyone@anywhere.io", get_settings()) is True

    def test_allowed_email(self):
        with patch.dict(os.environ, {"ALLOWED_EMAILS": "a@x.com, b@y.com"}):
            settings = get_settings()
            assert is_sign_in_allowed("b@y.com", settings) is True
            assert is_sign_in_allowed("c@y.com", settings) is False

    def test_allowed_domain(self):
        with patch.dict(os.environ, {"ALLOWED_DOMAINS": "example.com"}):
            settings = get_settings()
            assert is_sign_in_allowed("someone@example.com", settings) is True
            assert is_sign_in_allowed("someone@other.com", settings) is False
            assert is_sign_in_allowed("no-at-sign", settings) is False


class TestAuthenticateCredentials:
    def test_admin_pair(self):
        with patch.dict(os.environ, LOGIN_ENV):
            user = authenticate_credentials("admin@example.com", "s3cret", get_settings())

        assert user == SessionUser(id="1", email="admin@example.com", name="Admin User")

    def test_wrong_password(self):
        with patch.dict(os.environ, LOGIN_ENV):
            assert authenticate_credentials("admin@example.com", "nope", get_settings()) is None

    def test_authorized_email_with_admin_password(self):
        env = {**LOGIN_ENV, "AUTHORIZED_EMAILS": "jo@example.com"}
        with patch.dict(os.environ, env):
            user = authenticate_credentials("jo@example.com", "s3cret", get_settings())

        assert user.id == "jo@example.com"
        assert user.name == "jo"

    def test_unknown_email(self):
        with patch.dict(os.environ, LOGIN_ENV):
            assert authenticate_credentials("stranger@example.com", "s3cret", get_settings()) is None

    def test_login_disabled_without_admin_password(self):
        with patch.dict(os.environ, {**LOGIN_ENV, "ADMIN_PASSWORD": ""}):
            assert authenticate_credentials("admin@example.com", "", get_settings()) is None

    def test_allow_list_rejects_admin_outside_domain(self):
        with patch.dict(os.environ, {**LOGIN_ENV, "ALLOWED_DOMAINS": "corp.com"}):
            assert authenticate_credentials("admin@example.com", "s3cret", get_settings()) is None


class TestSessionTokens:
    def test_round_trip(self):
        with patch.dict(os.environ, LOGIN_ENV):
            settings = get_settings()
            user = SessionUser(id="1", email="admin@example.com", name="Admin User")
            token, expires_in = create_session_token(user, settings)

            assert verify_session_token(token, settings) == user
            assert expires_in == 30 * 24 * 60 * 60

    def test_expired_token_raises_401(self):
        token = _make_token({"sub": "1", "email": "a@x.com", "exp": int(time.time()) - 10})
        with patch.dict(os.environ, LOGIN_ENV):
            with pytest.raises(AuthorizationError) as exc_info:
                verify_session_token(token, get_settings())

        assert exc_info.value.status_code == 401
        assert "expired" in exc_info.value.message.lower()

    def test_wrong_signature_raises_401(self):
        token = _make_token({"sub": "1", "email": "a@x.com", "exp": int(time.time()) + 60}, "other")
        with patch.dict(os.environ, LOGIN_ENV):
            with pytest.raises(AuthorizationError) as exc_info:
                verify_session_token(token, get_settings())

        assert exc_info.value.message == "Invalid session"

    def test_missing_claims_raise_401(self):
        token = _make_token({"sub": "1", "exp": int(time.time()) + 60})
        with patch.dict(os.environ, LOGIN_ENV):
            with pytest.raises(AuthorizationError):
                verify_session_token(token, get_settings())

    def test_garbage_token_raises_401(self):
        with patch.dict(os.environ, LOGIN_ENV):
            with pytest.raises(AuthorizationError):
                verify_session_token("not.a.real.jwt.at.all", get_settings())


class TestGetCurrentSession:
    @pytest.mark.asyncio
    async def test_missing_header(self):
        with pytest.raises(AuthorizationError) as exc_info:
            await get_current_session(None)
        assert exc_info.value.message == "Not authenticated"

    @pytest.mark.asyncio
    async def test_missing_bearer_prefix(self):
        with pytest.raises(AuthorizationError):
            await get_current_session("some.jwt.token")

    @pytest.mark.asyncio
    async def test_valid_token(self):
        token = _make_token({"sub": "7", "email": "a@x.com", "exp": int(time.time()) + 60})
        with patch.dict(os.environ, LOGIN_ENV):
            user = await get_current_session(f"Bearer {token}")
        assert user.id == "7"


class TestRequireChatAccess:
    @pytest.mark.asyncio
    async def test_disabled_lets_everyone_through(self):
        with patch.dict(os.environ, {"CHAT_AUTH_REQUIRED": "false"}):
            assert await require_chat_access(None, None) is None

    @pytest.mark.asyncio
    async def test_api_key_is_accepted(self):
        env = {**LOGIN_ENV, "CHAT_AUTH_REQUIRED": "true", "CHAT_API_KEY": "shared"}
        with patch.dict(os.environ, env):
            assert await require_chat_access(None, "shared") is API_KEY_PRINCIPAL

    @pytest.mark.asyncio
    async def test_session_is_accepted(self):
        token = _make_token({"sub": "7", "email": "a@x.com", "exp": int(time.time()) + 60})
        env = {**LOGIN_ENV, "CHAT_AUTH_REQUIRED": "true", "CHAT_API_KEY": "shared"}
        with patch.dict(os.environ, env):
            user = await require_chat_access(f"Bearer {token}", None)
        assert user.email == "a@x.com"

    @pytest.mark.asyncio
    async def test_wrong_api_key_and_no_session_is_rejected(self):
        env = {**LOGIN_ENV, "CHAT_AUTH_REQUIRED": "true", "CHAT_API_KEY": "shared"}
        with patch.dict(os.environ, env):
            with pytest.raises(AuthorizationError) as exc_info:
                await require_chat_access(None, "wrong")
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_api_key_unset_never_matches(self):
        env = {**LOGIN_ENV, "CHAT_AUTH_REQUIRED": "true", "CHAT_API_KEY": ""}
        with patch.dict(os.environ, env):
            with pytest.raises(AuthorizationError):
                await require_chat_access(None, "")
