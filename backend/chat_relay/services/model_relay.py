"""
Model relay: one completion call against the Anthropic Messages API.

Non-streaming calls return a ModelReply. Streaming calls return a
ModelStream whose ``fragments()`` async generator yields text deltas in
arrival order; concatenating them gives the same text a non-streaming call
would have returned.

Model selection walks a fixed ordered candidate list (cached last-good
model first). A 404 invalidates the cache entry; an auth failure stops the
walk because every other model would fail the same way. Nothing is retried
by the SDK itself (max_retries=0), and each call is bounded by
MODEL_TIMEOUT_SECONDS.
"""

import logging
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import anthropic
import httpx

from chat_relay.config import Settings
from chat_relay.errors import (
    ChatValidationError,
    ConfigurationError,
    StreamTransportError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamModelError,
    UpstreamNotFound,
    UpstreamRateLimited,
)
from chat_relay.models.chat import Message, ModelReply, Role
from chat_relay.services.model_cache import ModelCache

logger = logging.getLogger(__name__)

MAX_TOKENS = 4096

SYSTEM_PROMPT = """\
You are an email marketing assistant for Salesforce Marketing Cloud Engagement.
Help the user plan, write and refine marketing emails.

When the user asks you to create or build an email and you have enough
information to do it, confirm with "I'll create this email for you" and then
give the details on separate lines in exactly this format:

Name: <short internal name for the email asset>
Subject: <the subject line recipients will see>
Content: <a description of the email body: sections, tone, key copy and call to action>

Only use this format when you are actually creating an email. For questions,
brainstorming or drafts the user has not asked you to create, answer normally
without the Name:/Subject: labels.
"""

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

def map_api_error(exc: Exception, model: Optional[str] = None) -> UpstreamModelError:
    """Translate an Anthropic SDK exception into the relay's error taxonomy."""
    detail = getattr(exc, "message", None) or str(exc)

    if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return UpstreamAuthError(
            "Model API rejected the credential. Check ANTHROPIC_API_KEY.",
            details=detail,
            model=model,
        )
    if isinstance(exc, anthropic.RateLimitError):
        return UpstreamRateLimited(
            "Model API rate limit reached. Please try again shortly.",
            details=detail,
            model=model,
        )
    if isinstance(exc, anthropic.NotFoundError):
        return UpstreamNotFound(
            f"Model {model!r} was not found",
            details=detail,
            model=model,
        )
    if isinstance(exc, anthropic.APITimeoutError):
        return UpstreamError("Model API timed out", details=detail, model=model)
    if isinstance(exc, anthropic.APIConnectionError):
        return UpstreamError("Could not reach the model API", details=detail, model=model)
    if isinstance(exc, anthropic.APIStatusError):
        return UpstreamError(
            f"Model API error: {exc.status_code}",
            details=detail,
            model=model,
        )
    return UpstreamError("Model API call failed", details=detail, model=model)


# ---------------------------------------------------------------------------
# Message shaping
# ---------------------------------------------------------------------------

def split_system_messages(
    messages: Sequence[Message],
    system_prompt: str,
) -> Tuple[str, List[Dict[str, str]]]:
    """
    Separate system-role messages from conversation turns.

    The Messages API takes the system instruction as its own parameter, so
    system messages from the client are appended to it (in order) and the
    remaining user/assistant turns keep their order.
    """
    system_parts = [system_prompt] if system_prompt else []
    turns: List[Dict[str, str]] = []

    for message in messages:
        if message.role == Role.SYSTEM:
            if message.content:
                system_parts.append(message.content)
            continue
        turns.append({"role": message.role.value, "content": message.content})

    if not turns:
        raise ChatValidationError(
            "At least one user or assistant message is required",
        )

    return "\n\n".join(system_parts), turns


def _usage_dict(usage) -> Dict[str, int]:
    if usage is None:
        return {}
    input_tokens = getattr(usage, "input_tokens", 0) or 0
    output_tokens = getattr(usage, "output_tokens", 0) or 0
    return {
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "total_tokens": input_tokens + output_tokens,
    }


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

class ModelStream:
    """
    An opened upstream stream. Lazy, finite, and consumable once.

    A transport failure while reading does not raise: ``fragments()`` stops
    and ``error`` holds a StreamTransportError. Fragments already yielded
    remain valid.
    """

    def __init__(self, raw_stream, model: str):
        self.model = model
        self.error: Optional[StreamTransportError] = None
        self.usage: Dict[str, int] = {}
        self.stop_reason: Optional[str] = None
        self._raw = raw_stream
        self._consumed = False
        self._closed = False

    async def fragments(self) -> AsyncIterator[str]:
        if self._consumed:
            raise RuntimeError("Model stream has already been consumed")
        self._consumed = True

        input_tokens = 0
        output_tokens = 0
        try:
            async for event in self._raw:
                event_type = getattr(event, "type", None)
                if event_type == "content_block_delta":
                    delta = event.delta
                    if getattr(delta, "type", None) == "text_delta" and delta.text:
                        yield delta.text
                elif event_type == "message_start":
                    usage = getattr(event.message, "usage", None)
                    input_tokens = getattr(usage, "input_tokens", 0) or 0
                elif event_type == "message_delta":
                    output_tokens = getattr(event.usage, "output_tokens", 0) or 0
                    self.stop_reason = getattr(event.delta, "stop_reason", None)
        except (anthropic.APIError, httpx.HTTPError) as exc:
            detail = getattr(exc, "message", None) or str(exc)
            logger.error(f"Model stream for {self.model} interrupted: {detail}")
            self.error = StreamTransportError(
                "The model stream was interrupted",
                details=detail,
                model=self.model,
            )
        finally:
            self.usage = {
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "total_tokens": input_tokens + output_tokens,
            }
            await self.close()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._raw.close()


# ---------------------------------------------------------------------------
# Relay
# ---------------------------------------------------------------------------

class ModelRelay:
    def __init__(
        self,
        client,
        candidates: Sequence[str],
        cache: Optional[ModelCache] = None,
        system_prompt: str = SYSTEM_PROMPT,
        max_tokens: int = MAX_TOKENS,
    ):
        self.client = client
        self.candidates = list(candidates)
        self.cache = cache
        self.system_prompt = system_prompt
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings: Settings, cache: Optional[ModelCache] = None) -> "ModelRelay":
        """
        Build a relay for one request.

        Raises ConfigurationError (500) before any network call when
        ANTHROPIC_API_KEY is not set.
        """
        if not settings.anthropic_api_key:
            raise ConfigurationError(
                "Model API is not configured",
                details="ANTHROPIC_API_KEY is not set on the server",
            )

        client = anthropic.AsyncAnthropic(
            api_key=settings.anthropic_api_key,
            timeout=settings.model_timeout,
            max_retries=0,
        )
        return cls(
            client,
            settings.model_candidates,
            cache=cache,
            system_prompt=settings.system_prompt or SYSTEM_PROMPT,
            max_tokens=settings.max_tokens,
        )

    def candidate_models(self) -> List[str]:
        """Cached last-good model first, then the configured order."""
        ordered: List[str] = []
        cached = self.cache.get() if self.cache else None
        for model in [cached, *self.candidates]:
            if model and model not in ordered:
                ordered.append(model)
        return ordered

    async def _with_fallback(self, call: Callable[[str], Awaitable[T]]) -> Tuple[T, str]:
        last_error: Optional[UpstreamModelError] = None

        for model in self.candidate_models():
            try:
                result = await call(model)
            except anthropic.APIError as exc:
                error = map_api_error(exc, model)
                if isinstance(error, UpstreamNotFound) and self.cache is not None:
                    self.cache.invalidate(model)
                    logger.info(f"Invalidated cached model {model} after 404")
                if isinstance(error, UpstreamAuthError):
                    logger.error("Model API rejected the credential; not trying other models")
                    raise error from exc
                logger.warning(
                    f"Model {model} failed ({type(error).__name__}: {error.details}); "
                    "trying next candidate"
                )
                last_error = error
                continue

            if self.cache is not None:
                self.cache.set(model)
            return result, model

        if last_error is None:
            raise UpstreamError("No model identifiers are configured")
        raise last_error

    async def complete(self, messages: Sequence[Message]) -> ModelReply:
        system, turns = split_system_messages(messages, self.system_prompt)

        async def call(model: str):
            return await self.client.messages.create(
                model=model,
                max_tokens=self.max_tokens,
                system=system,
                messages=turns,
            )

        response, model = await self._with_fallback(call)

        text = "".join(
            block.text
            for block in response.content
            if getattr(block, "type", "text") == "text"
        )
        logger.info(f"Model {model} replied ({len(text)} chars)")

        return ModelReply(
            text=text,
            model=model,
            usage=_usage_dict(getattr(response, "usage", None)),
            stop_reason=getattr(response, "stop_reason", None),
        )

    async def open_stream(self, messages: Sequence[Message]) -> ModelStream:
        """
        Open a streaming completion. Fallback applies only here, before any
        fragment has been delivered.
        """
        system, turns = split_system_messages(messages, self.system_prompt)

        async def call(model: str):
            return await self.client.messages.create(
                model=model,
                max_tokens=self.max_tokens,
                system=system,
                messages=turns,
                stream=True,
            )

        raw_stream, model = await self._with_fallback(call)
        logger.info(f"Streaming reply from model {model}")
        return ModelStream(raw_stream, model)
