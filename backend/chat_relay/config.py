"""
Runtime configuration.

All settings come from environment variables (optionally loaded from a
``.env`` file). ``get_settings()`` re-reads the environment on every call,
so tests can use ``patch.dict(os.environ, ...)`` without reloading modules.
"""

import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

DEFAULT_MCE_SERVER_URL = "https://salesforce-mce-api.fly.dev"

# Tried in order after the cached model and any ANTHROPIC_MODEL override
DEFAULT_MODELS = [
    "claude-sonnet-4-5-20250929",
    "claude-sonnet-4-20250514",
    "claude-haiku-4-5",
]

DEV_SESSION_SECRET = "development-secret-change-in-production"
THIRTY_DAYS = 30 * 24 * 60 * 60


def _split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _as_bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


def _as_float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value else default
    except ValueError:
        return default


def _as_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value else default
    except ValueError:
        return default


class Settings(BaseModel):
    # Language model
    anthropic_api_key: Optional[str] = None
    model_override: Optional[str] = None
    fallback_models: List[str] = DEFAULT_MODELS
    max_tokens: int = 4096
    model_timeout: float = 60.0
    model_cache_ttl: float = 300.0
    system_prompt: Optional[str] = None

    # Marketing Cloud Engagement (MCE) API
    mce_server_url: str = DEFAULT_MCE_SERVER_URL
    mce_api_key: Optional[str] = None
    mce_timeout: float = 30.0

    # Access control
    chat_auth_required: bool = False
    chat_api_key: Optional[str] = None
    session_secret: str = DEV_SESSION_SECRET
    session_max_age: int = THIRTY_DAYS
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    authorized_emails: List[str] = []
    allowed_emails: List[str] = []
    allowed_domains: List[str] = []

    cors_origins: List[str] = ["*"]

    @property
    def model_candidates(self) -> List[str]:
        """Override first, then the fallback list, without duplicates."""
        ordered: List[str] = []
        for model in [self.model_override, *self.fallback_models]:
            if model and model not in ordered:
                ordered.append(model)
        return ordered

    @property
    def using_dev_session_secret(self) -> bool:
        return self.session_secret == DEV_SESSION_SECRET


def get_settings() -> Settings:
    """Build Settings from the current environment."""
    env = os.environ
    return Settings(
        anthropic_api_key=env.get("ANTHROPIC_API_KEY") or None,
        model_override=env.get("ANTHROPIC_MODEL") or None,
        fallback_models=_split_csv(env.get("ANTHROPIC_FALLBACK_MODELS")) or list(DEFAULT_MODELS),
        max_tokens=_as_int(env.get("ANTHROPIC_MAX_TOKENS"), 4096),
        model_timeout=_as_float(env.get("MODEL_TIMEOUT_SECONDS"), 60.0),
        model_cache_ttl=_as_float(env.get("MODEL_CACHE_TTL_SECONDS"), 300.0),
        system_prompt=env.get("CHAT_SYSTEM_PROMPT") or None,
        mce_server_url=(env.get("MCE_SERVER_URL") or DEFAULT_MCE_SERVER_URL).rstrip("/"),
        mce_api_key=env.get("MCE_API_KEY") or None,
        mce_timeout=_as_float(env.get("MCE_TIMEOUT_SECONDS"), 30.0),
        chat_auth_required=_as_bool(env.get("CHAT_AUTH_REQUIRED")),
        chat_api_key=env.get("CHAT_API_KEY") or None,
        # NEXTAUTH_SECRET is the legacy name from the previous front-end
        session_secret=(
            env.get("SESSION_SECRET")
            or env.get("NEXTAUTH_SECRET")
            or DEV_SESSION_SECRET
        ),
        session_max_age=_as_int(env.get("SESSION_MAX_AGE_SECONDS"), THIRTY_DAYS),
        admin_email=env.get("ADMIN_EMAIL") or None,
        admin_password=env.get("ADMIN_PASSWORD") or None,
        authorized_emails=_split_csv(env.get("AUTHORIZED_EMAILS")),
        allowed_emails=_split_csv(env.get("ALLOWED_EMAILS")),
        allowed_domains=_split_csv(env.get("ALLOWED_DOMAINS")),
        cors_origins=_split_csv(env.get("CORS_ORIGINS")) or ["*"],
    )
