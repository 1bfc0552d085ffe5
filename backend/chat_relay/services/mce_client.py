"""
Marketing Cloud Engagement (MCE) asset creation.

Translates an EmailIntent into the MCE API's build-email call:

  POST {MCE_SERVER_URL}/api/tool/build_email
  X-API-Key: {MCE_API_KEY}
  {"name": ..., "subject": ..., "nlpCommand": ..., "template": "custom"}

The MCE API builds the email body from ``nlpCommand``, a natural-language
description, which is why the extracted Content goes there.

Asset creation is NOT idempotent: every call creates a new asset on the
remote side. No idempotency key is sent and nothing is retried.

Failures are never fatal to the chat turn. ``create_email_asset`` turns
them into an ``{"error", "details"}`` dict that the router attaches to the
response as ``mceResult``.
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx

from chat_relay.config import Settings
from chat_relay.errors import (
    DownstreamAssetError,
    DownstreamConnectionError,
    DownstreamHTTPError,
    DownstreamUnconfigured,
)
from chat_relay.models.chat import EmailIntent

logger = logging.getLogger(__name__)

BUILD_EMAIL_ACTION = "tool/build_email"
DEFAULT_TEMPLATE = "custom"


def build_email_payload(intent: EmailIntent, template: str = DEFAULT_TEMPLATE) -> Dict[str, str]:
    return {
        "name": intent.name,
        "subject": intent.subject,
        "nlpCommand": intent.body_description,
        "template": template,
    }


def _unwrap_result(data: Any) -> Any:
    """
    The MCE API sometimes wraps its answer as a JSON string under ``result``.
    Unwrap it when it parses; otherwise return the body unchanged.
    """
    if isinstance(data, dict) and isinstance(data.get("result"), str):
        try:
            return json.loads(data["result"])
        except ValueError:
            return data
    return data


class MarketingAssetCreator:
    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "MarketingAssetCreator":
        return cls(settings.mce_server_url, settings.mce_api_key, timeout=settings.mce_timeout)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def call(self, action: str, params: Dict[str, Any]) -> Any:
        """
        POST ``params`` to ``/api/{action}``.

        Raises:
            DownstreamUnconfigured: MCE_API_KEY not set (no request is made).
            DownstreamHTTPError: non-2xx; the response text is the detail.
            DownstreamConnectionError: transport failure or timeout.
        """
        if not self.api_key:
            logger.error("MCE_API_KEY is not set; skipping MCE call")
            raise DownstreamUnconfigured(
                "MCE configuration missing",
                details="MCE_API_KEY not configured",
            )

        url = f"{self.base_url}/api/{action}"
        logger.info(f"MCE API call: POST {url}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    url,
                    json=params,
                    headers={"X-API-Key": self.api_key},
                )
        except httpx.HTTPError as exc:
            logger.error(f"MCE call failed: {exc!r}")
            raise DownstreamConnectionError(
                "MCE connection failed",
                details=str(exc) or type(exc).__name__,
            ) from exc

        logger.info(f"MCE response status: {response.status_code}")

        if not response.is_success:
            logger.error(f"MCE error {response.status_code} ({len(response.content)} byte body)")
            raise DownstreamHTTPError(
                f"MCE Server error: {response.status_code}",
                details=response.text,
                upstream_status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            return {"raw": response.text}

        return _unwrap_result(data)

    async def build_email(self, intent: EmailIntent) -> Any:
        return await self.call(BUILD_EMAIL_ACTION, build_email_payload(intent))


async def create_email_asset(creator: MarketingAssetCreator, intent: EmailIntent) -> Dict[str, Any]:
    """Run the build-email call and fold any failure into an error dict."""
    try:
        result = await creator.build_email(intent)
    except DownstreamAssetError as exc:
        return exc.to_payload()

    if isinstance(result, dict):
        logger.info(f"MCE email asset created (assetId={result.get('assetId', 'unknown')})")
        return result
    logger.info("MCE email asset created")
    return {"result": result}
