"""Cooperative cancellation for long-running uploads.

A multipart upload transfers many parts; :class:`CancellationToken` lets
another thread ask it to stop.  The orchestrator checks the token before each
part begins, so a part already on the wire always completes and the caller
learns exactly which parts the service holds.
"""

from __future__ import annotations

import threading


class CancellationToken:
    """Thread-safe cancellation flag.

    Examples:
        >>> token = CancellationToken()
        >>> client.upload("photos", "a.bin", path, cancel_token=token)  # doctest: +SKIP
        >>> # From another thread
        >>> token.cancel()
    """

    def __init__(self) -> None:
        self._is_cancelled = threading.Event()

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        self._is_cancelled.set()

    def is_cancelled(self) -> bool:
        return self._is_cancelled.is_set()

    def reset(self) -> None:
        """Clear the flag so the token can guard another upload."""
        self._is_cancelled.clear()


__all__ = ["CancellationToken"]
