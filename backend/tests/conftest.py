"""
Shared fixtures and fakes for the chat relay tests.

No test talks to the real model API or MCE: the Anthropic client is
replaced by FakeAnthropic and the MCE API by an httpx.MockTransport.
"""

import os
from types import SimpleNamespace

import anthropic
import httpx
import pytest

# Environment must be in place before app modules are imported
os.environ["ANTHROPIC_API_KEY"] = "test-anthropic-key"
os.environ["MCE_API_KEY"] = "test-mce-key"
os.environ["MCE_SERVER_URL"] = "https://mce.test"
for _name in (
    "ANTHROPIC_MODEL",
    "ANTHROPIC_FALLBACK_MODELS",
    "CHAT_AUTH_REQUIRED",
    "CHAT_API_KEY",
    "CHAT_SYSTEM_PROMPT",
    "ALLOWED_EMAILS",
    "ALLOWED_DOMAINS",
    "AUTHORIZED_EMAILS",
):
    os.environ.pop(_name, None)

from fastapi.testclient import TestClient

from chat_relay.services.mce_client import MarketingAssetCreator
from chat_relay.services.model_cache import ModelCache


ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"

EMAIL_REPLY = (
    "Great idea! I'll create this email for you.\n"
    "\n"
    "Name: Spring Sale 2026\n"
    "Subject: 20% off everything this weekend\n"
    "Content: Friendly announcement of the spring sale.\n"
    "Highlight free shipping and end with a Shop Now button.\n"
)

PLAIN_REPLY = "Sure, here are three ideas for your newsletter headline."


# ---------------------------------------------------------------------------
# Anthropic SDK fakes
# ---------------------------------------------------------------------------

def status_error(cls, status: int, message: str = "upstream error"):
    """Build an anthropic.APIStatusError subclass the way the SDK does."""
    request = httpx.Request("POST", ANTHROPIC_URL)
    response = httpx.Response(status, request=request, json={"error": {"message": message}})
    return cls(message, response=response, body={"error": {"message": message}})


def connection_error():
    return anthropic.APIConnectionError(request=httpx.Request("POST", ANTHROPIC_URL))


def split_fragments(text: str, size: int = 7) -> list:
    return [text[i:i + size] for i in range(0, len(text), size)]


def text_response(text: str, input_tokens: int = 12, output_tokens: int = 34):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
        stop_reason="end_turn",
    )


class FakeRawStream:
    """Mimics anthropic.AsyncStream of raw message events."""

    def __init__(self, fragments, fail_after=None, error=None):
        self.fragments = list(fragments)
        self.fail_after = fail_after
        self.error = error
        self.closed = False

    def __aiter__(self):
        return self._events()

    async def _events(self):
        yield SimpleNamespace(
            type="message_start",
            message=SimpleNamespace(usage=SimpleNamespace(input_tokens=12, output_tokens=1)),
        )
        for index, fragment in enumerate(self.fragments):
            if self.fail_after is not None and index >= self.fail_after:
                raise self.error
            yield SimpleNamespace(
                type="content_block_delta",
                index=0,
                delta=SimpleNamespace(type="text_delta", text=fragment),
            )
        yield SimpleNamespace(
            type="message_delta",
            delta=SimpleNamespace(stop_reason="end_turn"),
            usage=SimpleNamespace(output_tokens=len(self.fragments)),
        )
        yield SimpleNamespace(type="message_stop")

    async def close(self):
        self.closed = True


class FakeMessages:
    """
    Stand-in for ``client.messages``.

    errors: {model_id: exception} raised when that model is requested.
    fail_after / stream_error: break the stream after N fragments.
    """

    def __init__(self, text=PLAIN_REPLY, errors=None, fail_after=None, stream_error=None):
        self.text = text
        self.errors = errors or {}
        self.fail_after = fail_after
        self.stream_error = stream_error
        self.calls = []
        self.streams = []

    @property
    def models_called(self):
        return [call["model"] for call in self.calls]

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        error = self.errors.get(kwargs["model"])
        if error is not None:
            raise error
        if kwargs.get("stream"):
            stream = FakeRawStream(
                split_fragments(self.text),
                fail_after=self.fail_after,
                error=self.stream_error,
            )
            self.streams.append(stream)
            return stream
        return text_response(self.text)


class FakeAnthropic:
    def __init__(self, messages: FakeMessages):
        self.messages = messages


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def fake_messages():
    return FakeMessages()


@pytest.fixture()
def patch_anthropic(mocker, fake_messages):
    """Patch anthropic.AsyncAnthropic so relays get the fake client."""
    return mocker.patch(
        "anthropic.AsyncAnthropic",
        return_value=FakeAnthropic(fake_messages),
    )


@pytest.fixture()
def mce_requests():
    return []


@pytest.fixture()
def mce_handler(mce_requests):
    """Default MCE behaviour: 200 with an asset id. Tests may replace it."""
    state = {
        "respond": lambda request: httpx.Response(
            200, json={"success": True, "assetId": 4242}
        )
    }

    def handler(request: httpx.Request) -> httpx.Response:
        mce_requests.append(request)
        return state["respond"](request)

    handler.state = state
    return handler


@pytest.fixture()
def mce_creator(mce_handler):
    return MarketingAssetCreator(
        "https://mce.test",
        "test-mce-key",
        transport=httpx.MockTransport(mce_handler),
    )


@pytest.fixture()
def client(mce_creator):
    """TestClient with a fresh model cache and the MCE API mocked."""
    from chat_relay.main import app
    from chat_relay.routers.chat import get_asset_creator

    app.state.model_cache = ModelCache(ttl_seconds=300)
    app.dependency_overrides[get_asset_creator] = lambda: mce_creator
    yield TestClient(app)
    app.dependency_overrides.clear()
