"""
Chat router.

One request = one turn, handled strictly in order:

  1. Validate  - body must carry a non-empty ``messages`` array (400)
  2. Relay     - one model call, with fallback over candidate models (500/429)
  3. Extract   - look for an email-creation intent in the completed reply
  4. Create    - if found, build the email in MCE; failures are attached as
                 ``mceResult`` and never fail the turn
  5. Respond   - {"content", "mceResult", "model"}

With ``"stream": true`` the response is text/event-stream. Events, each
``data: <json>\\n\\n``:

  {"model": "..."}              first
  {"text": "..."}               one per fragment, in arrival order
  {"mceResult": {...} | null}   after the model finished
  {"error": "...", ...}         instead of mceResult if the stream broke
  [DONE]                        last

Endpoints:
  POST    /chat
  OPTIONS /chat   - CORS preflight for clients outside the middleware path
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import StreamingResponse

from chat_relay.auth import require_chat_access
from chat_relay.config import get_settings
from chat_relay.errors import ChatValidationError
from chat_relay.models.auth import SessionUser
from chat_relay.models.chat import ChatRequest, ChatResponse
from chat_relay.services.formatter import format_conversation
from chat_relay.services.intent_extractor import extract_email_intent
from chat_relay.services.mce_client import MarketingAssetCreator, create_email_asset
from chat_relay.services.model_cache import ModelCache
from chat_relay.services.model_relay import ModelRelay, ModelStream

logger = logging.getLogger(__name__)

router = APIRouter()

CORS_HEADERS = {
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-API-Key",
    "Access-Control-Max-Age": "86400",
}

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

DONE_EVENT = "data: [DONE]\n\n"

# MCE calls still running after their client went away
_pending_creations: Set[asyncio.Task] = set()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_model_cache(request: Request) -> Optional[ModelCache]:
    return getattr(request.app.state, "model_cache", None)


def get_asset_creator() -> MarketingAssetCreator:
    return MarketingAssetCreator.from_settings(get_settings())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def _parse_chat_request(request: Request) -> ChatRequest:
    try:
        body = await request.json()
    except ValueError:
        raise ChatValidationError("Invalid JSON body")

    raw_messages = body.get("messages") if isinstance(body, dict) else None
    if not isinstance(raw_messages, list) or not raw_messages:
        raise ChatValidationError("Messages array is required")

    return ChatRequest(
        messages=format_conversation(raw_messages),
        stream=body.get("stream") is True,
    )


def _cors_headers(origin: Optional[str]) -> Dict[str, str]:
    """Preflight headers that agree with the CORS_ORIGINS the middleware uses."""
    allowed: List[str] = get_settings().cors_origins
    headers = dict(CORS_HEADERS)
    if "*" in allowed:
        headers["Access-Control-Allow-Origin"] = "*"
    elif origin and origin in allowed:
        headers["Access-Control-Allow-Origin"] = origin
        headers["Vary"] = "Origin"
    return headers


def _creation_done(task: asyncio.Task) -> None:
    _pending_creations.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("MCE asset creation failed", exc_info=exc)


async def _maybe_create_asset(text: str, creator: MarketingAssetCreator) -> Optional[Dict[str, Any]]:
    """Steps 3-4: extract the intent and, if present, create the asset."""
    intent = extract_email_intent(text)
    if intent is None:
        return None
    # Shielded: once issued, the MCE call finishes even if the client leaves
    task = asyncio.ensure_future(create_email_asset(creator, intent))
    _pending_creations.add(task)
    task.add_done_callback(_creation_done)
    return await asyncio.shield(task)


async def _stream_events(stream: ModelStream, creator: MarketingAssetCreator) -> AsyncIterator[str]:
    chunks = []
    try:
        yield _sse({"model": stream.model})

        async for fragment in stream.fragments():
            chunks.append(fragment)
            yield _sse({"text": fragment})

        if stream.error is not None:
            # Partial text stays with the client; no asset from a partial reply
            yield _sse(stream.error.to_payload())
        else:
            mce_result = await _maybe_create_asset("".join(chunks), creator)
            yield _sse({"mceResult": mce_result})

        yield DONE_EVENT
    finally:
        await stream.close()


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.options("/chat")
async def chat_options(request: Request) -> Response:
    return Response(status_code=204, headers=_cors_headers(request.headers.get("origin")))


@router.post("/chat", response_model=ChatResponse)
async def chat(
    request: Request,
    principal: Optional[SessionUser] = Depends(require_chat_access),
    cache: Optional[ModelCache] = Depends(get_model_cache),
    creator: MarketingAssetCreator = Depends(get_asset_creator),
):
    """
    Relay one chat turn to the model and create an MCE email when the reply
    asks for one.

    Raises:
        400 if ``messages`` is missing, not an array, or empty.
        401 if access control is enabled and the request has no valid
            session or API key.
        500 if ANTHROPIC_API_KEY is missing or the model call fails.
        429 if the model API is rate limiting.
    """
    chat_request = await _parse_chat_request(request)

    relay = ModelRelay.from_settings(get_settings(), cache)

    if chat_request.stream:
        # Errors opening the stream still surface as a normal HTTP error
        stream = await relay.open_stream(chat_request.messages)
        return StreamingResponse(
            _stream_events(stream, creator),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    reply = await relay.complete(chat_request.messages)
    mce_result = await _maybe_create_asset(reply.text, creator)

    return ChatResponse(content=reply.text, mceResult=mce_result, model=reply.model)
