"""Resilient transport: Tenacity-based 503 backoff and error classification.

Wraps an :class:`~BlazeKit.network.client.HttpSender` and applies the
service's overload policy to every request:

- **503 only**: "service too busy" answers are retried; nothing else is.
- **Growing backoff**: the first retry waits ``wait_sec`` and each further
  retry waits ``multiplier`` times longer (``wait_sec * multiplier ** n``),
  clipped at ``max_wait_sec``.
- **Bounded budget**: at most ``retry_limit`` retries (``retry_limit + 1``
  attempts); when the budget runs out the final 503 is raised as
  :class:`~BlazeKit.errors.ServiceUnavailableError`.
- **Classification**: every other non-2xx status is raised immediately as a
  :class:`~BlazeKit.errors.RemoteRequestError` subclass.

The transport never obtains tokens itself.  An optional ``token_provider``
supplies the current bearer token, which is attached when the caller did not
set an ``Authorization`` header or explicit ``auth``.

Example:
    >>> transport = ResilientTransport(sender, retry_limit=3, wait_sec=1.0)
    >>> response = transport.send("POST", url, json={"accountId": "abc"})
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

import httpx
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from BlazeKit.errors import classify_response
from BlazeKit.network.client import HttpSender
from BlazeKit.network.instrumentation import describe_request
from BlazeKit.network.policy import HEADER_AUTHORIZATION, RETRYABLE_STATUS

if TYPE_CHECKING:  # pragma: no cover
    from BlazeKit.settings import ClientSettings

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]


def _is_overloaded(response: Any) -> bool:
    return getattr(response, "status_code", None) == RETRYABLE_STATUS


def _return_last_response(retry_state: RetryCallState) -> Any:
    """Hand the final 503 back to :meth:`ResilientTransport.send` for classification."""

    return retry_state.outcome.result()  # type: ignore[union-attr]


def _has_authorization(headers: Mapping[str, str]) -> bool:
    return any(key.lower() == HEADER_AUTHORIZATION.lower() for key in headers)


class ResilientTransport:
    """Retry/backoff decorator around an HTTP sender.

    Args:
        sender: Low-level sender issuing the actual requests.
        retry_limit: Maximum number of retries after the first attempt.
        wait_sec: Sleep before the first retry.
        multiplier: Growth factor applied to the sleep after each failed retry.
        max_wait_sec: Upper bound on any single sleep.
        token_provider: Callable returning the current bearer token, if any.
        sleep: Sleep function (tests inject a recorder).
    """

    def __init__(
        self,
        sender: HttpSender,
        *,
        retry_limit: int = 10,
        wait_sec: float = 10.0,
        multiplier: float = 1.2,
        max_wait_sec: float = 300.0,
        token_provider: Optional[TokenProvider] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if retry_limit < 0:
            raise ValueError("retry_limit must be >= 0")
        self.sender = sender
        self.retry_limit = retry_limit
        self.wait_sec = wait_sec
        self.multiplier = multiplier
        self.max_wait_sec = max_wait_sec
        self.token_provider = token_provider
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        sender: HttpSender,
        settings: "ClientSettings",
        **kwargs: Any,
    ) -> "ResilientTransport":
        return cls(
            sender,
            retry_limit=settings.retry_limit,
            wait_sec=settings.retry_wait_sec,
            multiplier=settings.retry_backoff_multiplier,
            max_wait_sec=settings.retry_max_wait_sec,
            **kwargs,
        )

    def _build_policy(self, description: str, *, stream: bool) -> Retrying:
        def before_sleep(retry_state: RetryCallState) -> None:
            if stream:
                retry_state.outcome.result().close()  # type: ignore[union-attr]
            next_action = retry_state.next_action
            logger.warning(
                "Service overloaded; retrying",
                extra={
                    "request": description,
                    "attempt": retry_state.attempt_number,
                    "retry_limit": self.retry_limit,
                    "sleep_sec": next_action.sleep if next_action else None,
                },
            )

        return Retrying(
            stop=stop_after_attempt(self.retry_limit + 1),
            wait=wait_exponential(
                multiplier=self.wait_sec,
                exp_base=self.multiplier,
                min=0,
                max=self.max_wait_sec,
            ),
            retry=retry_if_result(_is_overloaded),
            before_sleep=before_sleep,
            retry_error_callback=_return_last_response,
            sleep=self._sleep,
            reraise=True,
        )

    def send(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        stream: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue ``method url`` and return the first 2xx response.

        Extra keyword arguments (``json``, ``content``, ``params``, ``auth``)
        are forwarded to the sender unchanged; ``content`` must be bytes so
        it can be replayed on retry.

        Raises:
            ServiceUnavailableError: 503 persisted past ``retry_limit`` retries.
            RemoteRequestError: Any other non-2xx status.
            httpx.TransportError: Connection-level failures, not retried here.
        """
        request_headers = dict(headers or {})
        if (
            self.token_provider is not None
            and kwargs.get("auth") is None
            and not _has_authorization(request_headers)
        ):
            token = self.token_provider()
            if token:
                request_headers[HEADER_AUTHORIZATION] = token

        description = describe_request(method, url)
        policy = self._build_policy(description, stream=stream)
        response = policy(
            self.sender.send,
            method,
            url,
            headers=request_headers,
            stream=stream,
            **kwargs,
        )

        if 200 <= response.status_code < 300:
            return response

        if stream:
            response.read()
            response.close()
        error = classify_response(response)
        logger.info(
            "Request failed",
            extra={
                "request": description,
                "status": error.status_code,
                "code": error.code,
            },
        )
        raise error


__all__ = ["ResilientTransport", "TokenProvider"]
