"""HTTPX client factory and the sender seam used by the resilient transport.

Key design:
- **Injectable sender**: everything above this module talks to an
  :class:`HttpSender`; :class:`HttpxSender` adapts any ``httpx.Client`` to it,
  so tests hand in a client built on ``httpx.MockTransport``.
- **Owned vs. borrowed clients**: a sender built by :func:`create_http_client`
  owns its client and closes it; a sender wrapping a caller's client leaves it
  open.
- **Streaming**: ``stream=True`` returns an unread response so downloads can
  be written to a sink chunk by chunk.

Example:
    >>> from BlazeKit.network.client import HttpxSender, create_http_client
    >>> sender = HttpxSender(create_http_client())
    >>> response = sender.send("GET", "https://example.com/")
    >>> sender.close()
"""

from __future__ import annotations

import logging
import ssl
from typing import TYPE_CHECKING, Any, Optional, Protocol

import certifi
import httpx

from BlazeKit.network.instrumentation import create_http_event_hooks
from BlazeKit.network.policy import (
    FOLLOW_REDIRECTS,
    HTTP2_ENABLED,
    HTTP_CONNECT_TIMEOUT,
    HTTP_POOL_TIMEOUT,
    HTTP_READ_TIMEOUT,
    HTTP_WRITE_TIMEOUT,
    KEEPALIVE_EXPIRY,
    MAX_CONNECTIONS,
    MAX_KEEPALIVE_CONNECTIONS,
    TLS_VERIFY_ENABLED,
    USER_AGENT_TEMPLATE,
)

if TYPE_CHECKING:  # pragma: no cover - import cycle guard for type checkers only
    from BlazeKit.settings import ClientSettings

logger = logging.getLogger(__name__)


class HttpSender(Protocol):
    """Send one request and return the raw response (no status handling)."""

    def send(self, method: str, url: str, **kwargs: Any) -> httpx.Response: ...

    def close(self) -> None: ...


class HttpxSender:
    """:class:`HttpSender` adapter over an ``httpx.Client``."""

    def __init__(self, client: httpx.Client, *, owns_client: bool = True) -> None:
        self.client = client
        self._owns_client = owns_client

    def send(self, method: str, url: str, *, stream: bool = False, **kwargs: Any) -> httpx.Response:
        auth = kwargs.pop("auth", None)
        request = self.client.build_request(method, url, **kwargs)
        return self.client.send(request, stream=stream, auth=auth)

    def close(self) -> None:
        if self._owns_client:
            self.client.close()


def _create_ssl_context() -> ssl.SSLContext:
    """Create SSL context with secure defaults.

    Uses the certifi bundle and refuses self-signed or weak certificates
    unless TLS verification is disabled in policy.
    """
    if not TLS_VERIFY_ENABLED:
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        logger.warning("TLS verification DISABLED (development only!)")
        return ctx

    ctx = ssl.create_default_context(cafile=certifi.where())
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED
    return ctx


def _user_agent() -> str:
    from BlazeKit import __version__

    return USER_AGENT_TEMPLATE.format(version=__version__, httpx_version=httpx.__version__)


def create_http_client(
    settings: Optional["ClientSettings"] = None,
    *,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """Create the HTTPX client used for API calls, uploads, and downloads.

    Args:
        settings: Optional settings supplying per-phase timeouts.
        transport: Optional transport override (for example ``httpx.MockTransport``).

    Returns:
        Configured ``httpx.Client`` with logging event hooks installed.
    """
    timeout = httpx.Timeout(
        connect=settings.connect_timeout_sec if settings else HTTP_CONNECT_TIMEOUT,
        read=settings.read_timeout_sec if settings else HTTP_READ_TIMEOUT,
        write=settings.write_timeout_sec if settings else HTTP_WRITE_TIMEOUT,
        pool=HTTP_POOL_TIMEOUT,
    )
    ssl_ctx = _create_ssl_context()
    if transport is None:
        transport = httpx.HTTPTransport(
            retries=2,  # connect errors only
            verify=ssl_ctx,
            http2=HTTP2_ENABLED,
            limits=httpx.Limits(
                max_connections=MAX_CONNECTIONS,
                max_keepalive_connections=MAX_KEEPALIVE_CONNECTIONS,
                keepalive_expiry=KEEPALIVE_EXPIRY,
            ),
        )

    client = httpx.Client(
        transport=transport,
        timeout=timeout,
        follow_redirects=FOLLOW_REDIRECTS,
        headers={"User-Agent": _user_agent()},
        event_hooks=create_http_event_hooks(),
    )

    logger.debug(
        "HTTPX client created",
        extra={
            "http2": HTTP2_ENABLED,
            "max_connections": MAX_CONNECTIONS,
            "connect_timeout": timeout.connect,
        },
    )
    return client


__all__ = ["HttpSender", "HttpxSender", "create_http_client"]
