"""
Error taxonomy for the chat relay.

Every error the relay can report to a client derives from RelayError and
renders as JSON ``{"error": ..., "details": ...}`` with its status code.

  ChatValidationError    400  malformed client input, never retried
  AuthorizationError     401  access control rejected the request
  ConfigurationError     500  language-model credential missing
  UpstreamModelError     500  language-model call failed
    UpstreamAuthError           upstream 401 (bad/absent credential)
    UpstreamRateLimited  429    upstream throttling
    UpstreamNotFound            upstream 404 (unknown model identifier)
    UpstreamError               anything else upstream
  StreamTransportError         mid-stream failure, sent as a terminal event
  DownstreamAssetError         marketing API failure, attached as mceResult
    DownstreamUnconfigured      MCE_API_KEY not set (no network call)
    DownstreamHTTPError         non-2xx response
    DownstreamConnectionError   transport failure
"""

from typing import Any, Optional


class RelayError(Exception):
    """Base class for errors that are reported to the client as JSON."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[Any] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_payload(self) -> dict:
        payload: dict = {"error": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ChatValidationError(RelayError):
    status_code = 400


class AuthorizationError(RelayError):
    status_code = 401


class ConfigurationError(RelayError):
    status_code = 500


# ---------------------------------------------------------------------------
# Language-model (upstream) errors
# ---------------------------------------------------------------------------

class UpstreamModelError(RelayError):
    """A language-model call failed. ``model`` is the identifier tried."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None, model: Optional[str] = None):
        super().__init__(message, details)
        self.model = model


class UpstreamAuthError(UpstreamModelError):
    pass


class UpstreamRateLimited(UpstreamModelError):
    status_code = 429


class UpstreamNotFound(UpstreamModelError):
    pass


class UpstreamError(UpstreamModelError):
    pass


class StreamTransportError(UpstreamModelError):
    """
    The stream broke after it was opened.

    Never raised to the HTTP layer: the relay records it on the stream and
    the router emits it as the terminal error event.
    """


# ---------------------------------------------------------------------------
# Marketing API (downstream) errors
# ---------------------------------------------------------------------------

class DownstreamAssetError(RelayError):
    """Asset creation failed. Always non-fatal to the chat turn."""


class DownstreamUnconfigured(DownstreamAssetError):
    pass


class DownstreamHTTPError(DownstreamAssetError):
    def __init__(self, message: str, details: Optional[Any] = None, upstream_status: Optional[int] = None):
        super().__init__(message, details)
        self.upstream_status = upstream_status


class DownstreamConnectionError(DownstreamAssetError):
    pass
