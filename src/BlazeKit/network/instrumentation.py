"""HTTP network layer instrumentation.

Emits one ``net.request`` log record per response returned by the HTTPX
client, capturing method, redacted URL, status, and elapsed time.
"""

import logging
import time
from urllib.parse import urlparse, urlunparse

import httpx

logger = logging.getLogger(__name__)


def create_http_event_hooks() -> dict:
    """Create HTTPX event hooks for request logging.

    Returns:
        Dict with 'request' and 'response' hooks for HTTPX client

    Usage:
        >>> import httpx
        >>> hooks = create_http_event_hooks()
        >>> client = httpx.Client(event_hooks=hooks)
    """

    def on_request(request: httpx.Request) -> None:
        request.extensions["blazekit_started"] = time.perf_counter()

    def on_response(response: httpx.Response) -> None:
        request = response.request
        started = request.extensions.get("blazekit_started")
        elapsed_ms = None
        if started is not None:
            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)

        logger.debug(
            "net.request",
            extra={
                "method": request.method,
                "url_redacted": redact_url(str(request.url)),
                "host": request.url.host or "unknown",
                "status": response.status_code,
                "elapsed_ms": elapsed_ms,
            },
        )

    return {
        "request": [on_request],
        "response": [on_response],
    }


def redact_url(url: str) -> str:
    """Strip query strings and fragments, keeping scheme + host + path.

    Download URLs may carry an ``Authorization`` query parameter.
    """
    parsed = urlparse(url)
    return urlunparse((parsed.scheme, parsed.netloc, parsed.path, "", "", ""))


def describe_request(method: str, url: str) -> str:
    return f"{method} {redact_url(url)}"
