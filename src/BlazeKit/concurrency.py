"""Executor factory used by the multipart upload path."""

from __future__ import annotations

from concurrent import futures
from typing import Optional, Tuple

Executor = futures.Executor


def create_executor(workers: int) -> Tuple[Optional[Executor], bool]:
    """
    Return a thread pool for ``workers`` concurrent part transfers.

    Args:
        workers: Desired concurrency level.

    Returns:
        Tuple of (executor, needs_shutdown). ``(None, False)`` means the caller
        should transfer parts sequentially on its own thread.
    """
    if workers <= 1:
        return None, False
    return futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="blazekit-part"), True


__all__ = ["Executor", "create_executor"]
