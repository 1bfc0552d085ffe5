"""
Session and API-key access control.

Sessions are HS256 JWTs signed with SESSION_SECRET (python-jose), issued by
POST /api/auth/login against the admin credential pair.

The chat endpoint is public unless CHAT_AUTH_REQUIRED is set. When it is,
``require_chat_access`` lets a request through if it carries EITHER a valid
session token (Authorization: Bearer <token>) OR the shared secret
(X-API-Key: <CHAT_API_KEY>).
"""

import hmac
import logging
import time
from typing import Optional, Tuple

from fastapi import Header
from jose import ExpiredSignatureError, JWTError, jwt

from chat_relay.config import Settings, get_settings
from chat_relay.errors import AuthorizationError
from chat_relay.models.auth import SessionUser

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# Principal recorded for requests admitted by the shared secret
API_KEY_PRINCIPAL = SessionUser(id="api-key", email="api-key", name="API key")


def _secrets_match(provided: Optional[str], expected: Optional[str]) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


# ---------------------------------------------------------------------------
# Sign-in rules
# ---------------------------------------------------------------------------

def is_sign_in_allowed(email: str, settings: Settings) -> bool:
    """
    Apply the ALLOWED_EMAILS / ALLOWED_DOMAINS allow-list.

    Both lists empty means everyone who authenticates may sign in.
    """
    if not settings.allowed_emails and not settings.allowed_domains:
        return True

    if email in settings.allowed_emails:
        return True

    domain = email.split("@", 1)[1] if "@" in email else ""
    return bool(domain) and domain in settings.allowed_domains


def authenticate_credentials(email: str, password: str, settings: Settings) -> Optional[SessionUser]:
    """
    Check an email/password pair.

    Accepts the ADMIN_EMAIL/ADMIN_PASSWORD pair, or any email listed in
    AUTHORIZED_EMAILS together with ADMIN_PASSWORD. Returns None when the
    credentials are wrong, login is not configured, or the allow-list
    rejects the email.
    """
    if not settings.admin_password:
        logger.warning("Login attempted but ADMIN_PASSWORD is not configured")
        return None

    if not _secrets_match(password, settings.admin_password):
        logger.info("Login failed: bad password")
        return None

    if settings.admin_email and email == settings.admin_email:
        user = SessionUser(id="1", email=email, name="Admin User")
    elif email in settings.authorized_emails:
        user = SessionUser(id=email, email=email, name=email.split("@")[0])
    else:
        logger.info("Login failed: email not authorized")
        return None

    if not is_sign_in_allowed(email, settings):
        logger.info("Login rejected by sign-in allow-list")
        return None

    return user


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------

def create_session_token(user: SessionUser, settings: Settings) -> Tuple[str, int]:
    """Return (token, expires_in_seconds)."""
    now = int(time.time())
    claims = {
        "sub": user.id,
        "email": user.email,
        "name": user.name,
        "iat": now,
        "exp": now + settings.session_max_age,
    }
    token = jwt.encode(claims, settings.session_secret, algorithm=ALGORITHM)
    return token, settings.session_max_age


def verify_session_token(token: str, settings: Settings) -> SessionUser:
    """
    Verify a session JWT and return its user.

    Raises:
        AuthorizationError: 401 on expiry, bad signature, or missing claims.
    """
    try:
        payload = jwt.decode(token, settings.session_secret, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise AuthorizationError("Session expired")
    except JWTError:
        raise AuthorizationError("Invalid session")

    user_id = payload.get("sub")
    email = payload.get("email")
    if not user_id or not email:
        raise AuthorizationError("Invalid session")

    return SessionUser(id=str(user_id), email=email, name=payload.get("name"))


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        return None
    return parts[1]


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

async def get_current_session(authorization: Optional[str] = Header(None)) -> SessionUser:
    """Require a valid session token. Raises AuthorizationError (401)."""
    token = _bearer_token(authorization)
    if not token:
        raise AuthorizationError("Not authenticated")
    return verify_session_token(token, get_settings())


async def require_chat_access(
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None),
) -> Optional[SessionUser]:
    """
    Authorization predicate evaluated before the chat turn runs.

    Returns the session user, API_KEY_PRINCIPAL, or None when access control
    is disabled.
    """
    settings = get_settings()
    if not settings.chat_auth_required:
        return None

    if _secrets_match(x_api_key, settings.chat_api_key):
        return API_KEY_PRINCIPAL

    token = _bearer_token(authorization)
    if token:
        return verify_session_token(token, settings)

    raise AuthorizationError(
        "Not authenticated",
        details="Sign in or provide a valid X-API-Key header",
    )
