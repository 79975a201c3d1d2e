"""Authorization session: a TTL-bound, single-flight cache of account credentials.

Every API call needs a bearer token plus the account's API and download base
URLs.  :class:`AuthSession` performs the authorization exchange on demand,
publishes the complete result to the cache in one write, and serves it until
the TTL expires or :meth:`AuthSession.invalidate` is called.  Concurrent
callers that find the cache empty wait on one lock, so only the first of them
talks to the service.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

import httpx

from .cache import CacheStore, MemoryCache
from .models import AuthSessionState
from .network.retry import ResilientTransport
from .settings import ClientSettings

__all__ = ["AuthSession", "AUTHORIZATION_CACHE_KEY"]

logger = logging.getLogger(__name__)

AUTHORIZATION_CACHE_KEY = "blazekit:authorization"


class AuthSession:
    """Holds the current :class:`AuthSessionState`.

    Args:
        transport: Transport used for the authorization exchange.
        settings: Supplies credentials, API origin/version, and the TTL.
        cache: Store for the serialised state; defaults to a private
            :class:`MemoryCache`.
        clock: Wall clock used to stamp ``cached_at``.
    """

    def __init__(
        self,
        transport: ResilientTransport,
        settings: ClientSettings,
        cache: Optional[CacheStore] = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._transport = transport
        self._settings = settings
        self._cache = cache if cache is not None else MemoryCache()
        self._clock = clock
        self._lock = threading.Lock()
        self.cache_key = f"{AUTHORIZATION_CACHE_KEY}:{settings.key_id}"

    @property
    def ttl_sec(self) -> float:
        return self._settings.authorization_ttl_sec

    def _cached(self) -> Optional[AuthSessionState]:
        data = self._cache.get(self.cache_key)
        if data is None:
            return None
        return AuthSessionState.from_mapping(data)

    def get(self) -> AuthSessionState:
        """Return the cached state, authorizing first if it is absent or expired."""

        state = self._cached()
        if state is not None:
            return state
        with self._lock:
            # Another caller may have refreshed while we waited for the lock.
            state = self._cached()
            if state is not None:
                return state
            return self._authorize()

    def invalidate(self) -> None:
        """Force the next :meth:`get` to re-authorize regardless of TTL."""

        with self._lock:
            self._cache.forget(self.cache_key)
        logger.info("Authorization invalidated", extra={"key_id": self._settings.key_id})

    def peek_token(self) -> Optional[str]:
        """Return the cached bearer token without triggering a refresh."""

        state = self._cached()
        return state.authorization_token if state is not None else None

    def _authorize(self) -> AuthSessionState:
        settings = self._settings
        url = f"{settings.api_base_url}{settings.version_path}/b2_authorize_account"
        response = self._transport.send(
            "GET",
            url,
            auth=httpx.BasicAuth(settings.key_id, settings.application_key.get_secret_value()),
        )
        state = AuthSessionState.from_payload(
            response.json(),
            version_path=settings.version_path,
            cached_at=self._clock(),
        )
        self._cache.set(self.cache_key, state.to_mapping(), self.ttl_sec)
        logger.info(
            "Account authorized",
            extra={
                "account_id": state.account_id,
                "api_url": state.api_url,
                "recommended_part_size": state.recommended_part_size,
                "ttl_sec": self.ttl_sec,
            },
        )
        return state
