"""I/O layer: HTTP client and WebSocket transport."""

from .http import HTTPClient, RawResponse, error_for_response
from .ws_transport import TransportConfig, WebSocketTransport

__all__ = [
    "HTTPClient",
    "RawResponse",
    "error_for_response",
    "TransportConfig",
    "WebSocketTransport",
]
