"""
MCE Chat Relay API
FastAPI application that relays chat turns to the model API and creates
Marketing Cloud emails when the model asks for one.
"""

import logging
from typing import List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chat_relay.config import get_settings
from chat_relay.errors import RelayError
from chat_relay.routers import auth, chat
from chat_relay.services.model_cache import ModelCache

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

VERSION = "0.1.0"

app = FastAPI(
    title="MCE Chat Relay API",
    description="Chat relay between the model API and Marketing Cloud Engagement",
    version=VERSION,
)


def get_cors_origins() -> List[str]:
    """
    Build the list of allowed CORS origins.

    Read from the CORS_ORIGINS environment variable as a comma-separated
    list, e.g.:
        CORS_ORIGINS=https://chat.example.com,http://localhost:3000

    Defaults to ["*"] (any origin). Duplicates are removed while
    preserving order.
    """
    seen: set = set()
    origins: List[str] = []
    for origin in get_settings().cors_origins:
        if origin not in seen:
            seen.add(origin)
            origins.append(origin)
    return origins


# CORS configuration - origins are resolved at startup from environment
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One advisory last-good-model cache per process, handed to each relay
app.state.model_cache = ModelCache(ttl_seconds=get_settings().model_cache_ttl)

# Include routers
app.include_router(chat.router, tags=["chat"])
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    """Render every relay error as {"error", "details"} with its status."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(f"{request.method} {request.url.path} -> {exc.status_code} {type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.on_event("startup")
async def log_startup_config() -> None:
    """
    Log which integrations are configured so misconfiguration is visible at
    boot. Only presence is logged, never the values.
    """
    settings = get_settings()
    logger.info(
        "MCE Chat Relay starting:\n"
        "  Model API key: %s\n"
        "  Models:        %s\n"
        "  MCE server:    %s (API key %s)\n"
        "  Chat auth:     %s",
        "set" if settings.anthropic_api_key else "MISSING",
        ", ".join(settings.model_candidates),
        settings.mce_server_url,
        "set" if settings.mce_api_key else "MISSING",
        "required" if settings.chat_auth_required else "disabled",
    )
    if settings.using_dev_session_secret:
        logger.warning("SESSION_SECRET is not set; using the development secret")


@app.get("/")
async def root():
    return {"message": "MCE Chat Relay API", "version": VERSION}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/config")
async def health_config():
    """Report which integrations are configured, without revealing secrets."""
    settings = get_settings()
    return {
        "status": "ok",
        "model_configured": bool(settings.anthropic_api_key),
        "mce_configured": bool(settings.mce_api_key),
        "auth_required": settings.chat_auth_required,
    }
