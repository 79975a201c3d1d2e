"""Exception hierarchy shared across authorization, transport, and uploads.

The client spans configuration parsing, cache provisioning, HTTP retrieval,
and the multipart upload protocol.  This module groups those failure modes
into a small hierarchy so callers can react to high-level categories (for
example, caller mistakes vs. remote rejections) while still having access to
the status code and structured payload the service returned.
"""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional, Sequence

import httpx

__all__ = [
    "BlazeKitError",
    "ConfigurationError",
    "ValidationError",
    "NotFoundError",
    "CacheError",
    "SourceChangedError",
    "UploadCancelledError",
    "RemoteRequestError",
    "UnauthorizedError",
    "ServiceUnavailableError",
    "classify_response",
]

_EXPIRED_TOKEN_CODES = frozenset({"expired_auth_token", "bad_auth_token"})


class BlazeKitError(RuntimeError):
    """Base exception for every failure raised by the client."""


class ConfigurationError(BlazeKitError):
    """Raised when settings or credentials are missing or invalid."""


class ValidationError(BlazeKitError):
    """Raised before any network call when caller arguments violate a precondition."""


class NotFoundError(BlazeKitError):
    """Raised when a lookup the caller relies on produces no match."""


class CacheError(BlazeKitError):
    """Raised when the cache store cannot be provisioned."""


class SourceChangedError(BlazeKitError):
    """Raised when bytes read for transmission differ from the bytes hashed."""


class UploadCancelledError(BlazeKitError):
    """Raised when a multipart upload is stopped through its cancellation token.

    Parts already accepted by the service stay uploaded; ``file_id`` and
    ``completed_parts`` let the caller decide how to clean up.
    """

    def __init__(
        self,
        message: str,
        *,
        file_id: Optional[str] = None,
        completed_parts: Sequence[int] = (),
    ) -> None:
        super().__init__(message)
        self.file_id = file_id
        self.completed_parts = tuple(completed_parts)


class RemoteRequestError(BlazeKitError):
    """Raised when the service answers with a non-success status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        code: Optional[str] = None,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.payload = dict(payload or {})

    def __str__(self) -> str:
        base = super().__str__()
        if self.code:
            return f"{base} (status={self.status_code}, code={self.code})"
        return f"{base} (status={self.status_code})"


class UnauthorizedError(RemoteRequestError):
    """Raised on HTTP 401 responses."""

    @property
    def is_expired_token(self) -> bool:
        return self.code in _EXPIRED_TOKEN_CODES


class ServiceUnavailableError(RemoteRequestError):
    """Raised when HTTP 503 persists after the retry budget is exhausted."""


def _decode_error_payload(response: Any) -> dict[str, Any]:
    try:
        body = response.content
    except httpx.ResponseNotRead:
        return {}
    if not body:
        return {}
    try:
        decoded = json.loads(body)
    except (TypeError, ValueError):
        return {"message": body.decode("utf-8", errors="replace")[:512]}
    return decoded if isinstance(decoded, dict) else {"message": str(decoded)}


def classify_response(response: Any) -> RemoteRequestError:
    """Translate a non-success response into the matching exception instance.

    Args:
        response: httpx-compatible response carrying ``status_code`` and ``content``.

    Returns:
        A :class:`RemoteRequestError` (or subclass) ready to be raised.
    """

    status = int(response.status_code)
    payload = _decode_error_payload(response)
    code = payload.get("code")
    message = payload.get("message") or f"Request failed with HTTP {status}"

    if status == 401:
        error_cls: type[RemoteRequestError] = UnauthorizedError
    elif status == 503:
        error_cls = ServiceUnavailableError
    else:
        error_cls = RemoteRequestError
    return error_cls(str(message), status_code=status, code=code, payload=payload)
# === NAVMAP v1 ===
# {
#   "module": "BlazeKit.errors",
#   "purpose": "Define the exception hierarchy used across authorization, transport, and uploads",
#   "sections": [
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "local", "name": "Caller & Local Errors", "anchor": "LOC", "kind": "api"},
#     {"id": "remote", "name": "Remote Request Errors", "anchor": "REM", "kind": "api"},
#     {"id": "classify", "name": "classify_response", "anchor": "CLS", "kind": "function"}
#   ]
# }
# === /NAVMAP ===
