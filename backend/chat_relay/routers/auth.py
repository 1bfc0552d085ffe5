"""
Session login router.

Endpoints:
  POST /login    - exchange admin credentials for a session token
  GET  /session  - return the user behind a session token (auth: Bearer)
"""

import logging

from fastapi import APIRouter, Depends

from chat_relay.auth import authenticate_credentials, create_session_token, get_current_session
from chat_relay.config import get_settings
from chat_relay.errors import AuthorizationError
from chat_relay.models.auth import LoginRequest, LoginResponse, SessionUser

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/login", response_model=LoginResponse)
async def login(body: LoginRequest) -> LoginResponse:
    settings = get_settings()
    user = authenticate_credentials(body.email, body.password, settings)
    if user is None:
        raise AuthorizationError("Invalid email or password")

    token, expires_in = create_session_token(user, settings)
    logger.info(f"Session issued for user {user.id}")
    return LoginResponse(access_token=token, expires_in=expires_in, user=user)


@router.get("/session", response_model=SessionUser)
async def session(user: SessionUser = Depends(get_current_session)) -> SessionUser:
    return user
