"""Network subsystem: HTTP client factory, instrumentation, and the resilient transport.

This package provides the HTTP stack every API call goes through:
- HTTPX: HTTP/1.1 and HTTP/2 client with connection pooling
- Tenacity: bounded 503 retry with growing backoff

Modules:
- client: HTTPX client factory and the injectable sender seam
- policy: HTTP policy constants (timeouts, pooling, header names)
- instrumentation: Request/response hooks for structured logging
- retry: ResilientTransport (503 backoff + error classification)

Example:
    >>> from BlazeKit.network import HttpxSender, ResilientTransport, create_http_client
    >>> transport = ResilientTransport(HttpxSender(create_http_client()))
"""

from BlazeKit.network.client import HttpSender, HttpxSender, create_http_client
from BlazeKit.network.instrumentation import create_http_event_hooks, redact_url
from BlazeKit.network.retry import ResilientTransport, TokenProvider

__all__ = [
    "HttpSender",
    "HttpxSender",
    "create_http_client",
    "create_http_event_hooks",
    "redact_url",
    "ResilientTransport",
    "TokenProvider",
]
