"""
Structured Logging Utilities

This module centralizes structured logging setup for the client. It provides
helpers for masking credentials and upload tokens, emitting JSON log records,
and managing correlation identifiers that tie together the requests issued by
one upload.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import IO, Dict, Optional

ROOT_LOGGER_NAME = "BlazeKit"

_SENSITIVE_KEYS = {
    "authorization",
    "authorizationtoken",
    "authorization_token",
    "application_key",
    "applicationkey",
    "token",
    "secret",
    "password",
}


def mask_sensitive_data(payload: Dict[str, object]) -> Dict[str, object]:
    """Remove secrets from structured payloads prior to logging.

    Args:
        payload: Arbitrary key-value pairs that may contain credentials or
            tokens gathered from authorization and upload-target responses.

    Returns:
        Copy of the payload where secret fields are replaced with
        `***masked***`.

    Examples:
        >>> mask_sensitive_data({"authorizationToken": "secret", "status": "ok"})
        {'authorizationToken': '***masked***', 'status': 'ok'}
    """
    masked: Dict[str, object] = {}
    for key, value in payload.items():
        if key.lower() in _SENSITIVE_KEYS:
            masked[key] = "***masked***"
        else:
            masked[key] = value
    return masked


def generate_correlation_id() -> str:
    """Create a short-lived identifier that links the requests of one upload.

    Examples:
        >>> cid = generate_correlation_id()
        >>> len(cid)
        12
    """
    return uuid.uuid4().hex[:12]


class JSONFormatter(logging.Formatter):
    """Formatter emitting JSON structured logs.

    Any ``extra=`` fields attached to the record are merged into the emitted
    object after secret masking.

    Examples:
        >>> formatter = JSONFormatter()
        >>> isinstance(formatter.format(logging.makeLogRecord({'msg': 'test'})), str)
        True
    """

    _RESERVED = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        log_obj: Dict[str, object] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in self._RESERVED or key.startswith("_"):
                continue
            log_obj[key] = value
        if record.exc_info:
            log_obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(log_obj), default=str)


def setup_logging(level: str = "INFO", stream: Optional[IO[str]] = None) -> logging.Logger:
    """Attach a JSON handler to the package logger.

    Calling this more than once replaces the previously installed handler
    instead of stacking duplicates.

    Args:
        level: Logging level name.
        stream: Destination stream; defaults to ``sys.stderr``.

    Returns:
        The configured ``BlazeKit`` logger.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_blazekit_managed", False):
            logger.removeHandler(handler)
            handler.close()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter())
    handler._blazekit_managed = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    return logger


__all__ = ["JSONFormatter", "setup_logging", "mask_sensitive_data", "generate_correlation_id"]
