"""Account-authorized requests: JSON API calls and downloads with one token replay."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional

import httpx

from .auth import AuthSession
from .errors import UnauthorizedError
from .models import AuthSessionState
from .network.instrumentation import describe_request
from .network.policy import HEADER_AUTHORIZATION
from .network.retry import ResilientTransport
from .settings import ClientSettings

__all__ = ["ApiSession"]

logger = logging.getLogger(__name__)


class ApiSession:
    """Account-authorized requests: JSON calls to ``{apiUrl}/b2api/v{n}/{endpoint}``
    and downloads from the account download host.

    A 401 carrying an expired or bad token code triggers exactly one forced
    re-authorization followed by one replay of the request.
    """

    def __init__(
        self,
        transport: ResilientTransport,
        auth: AuthSession,
        settings: ClientSettings,
    ) -> None:
        self.transport = transport
        self.auth = auth
        self.settings = settings

    @property
    def account_id(self) -> str:
        return self.auth.get().account_id or self.settings.resolved_account_id

    def send(
        self,
        method: str,
        url_for: Callable[[AuthSessionState], str],
        *,
        headers: Optional[Mapping[str, str]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send an account-authorized request and return the 2xx response.

        ``url_for`` builds the target from the current authorization state, so
        a replay after re-authorization picks up refreshed API or download
        hosts.

        Raises:
            RemoteRequestError: The service rejected the request.
        """
        refreshed = False
        while True:
            state = self.auth.get()
            request_headers = dict(headers or {})
            request_headers[HEADER_AUTHORIZATION] = state.authorization_token
            url = url_for(state)
            try:
                return self.transport.send(method, url, headers=request_headers, **kwargs)
            except UnauthorizedError as exc:
                if refreshed or not exc.is_expired_token:
                    raise
                logger.info(
                    "Authorization token rejected; re-authorizing once",
                    extra={"request": describe_request(method, url), "code": exc.code},
                )
                self.auth.invalidate()
                refreshed = True

    def call(self, endpoint: str, payload: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Invoke ``endpoint`` and return the decoded JSON body.

        Raises:
            RemoteRequestError: The service rejected the call.
        """
        response = self.send(
            "POST",
            lambda state: f"{state.api_url}/{endpoint}",
            json=dict(payload or {}),
        )
        return response.json()
