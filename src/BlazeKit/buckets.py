"""Bucket directory: TTL-cached bucket listing with name/id resolution.

Operations that accept a bucket name need the bucket id (and downloads by
name need the reverse).  The directory keeps the account's full bucket list
in the cache and resolves by linear scan; accounts hold tens of buckets, not
millions.
"""

from __future__ import annotations

import logging
import threading
from typing import List, Optional

from .api import ApiSession
from .cache import CacheStore
from .errors import ValidationError
from .models import BucketById, BucketByName, BucketRecord, BucketRef

__all__ = ["BucketDirectory", "BUCKETS_CACHE_KEY"]

logger = logging.getLogger(__name__)

BUCKETS_CACHE_KEY = "blazekit:buckets"


class BucketDirectory:
    """Cached view of the account's buckets.

    Args:
        api: Session used for the ``b2_list_buckets`` call.
        cache: Shared cache store.
        ttl_sec: Lifetime of a listing in the cache.
    """

    def __init__(self, api: ApiSession, cache: CacheStore, *, ttl_sec: float) -> None:
        self._api = api
        self._cache = cache
        self.ttl_sec = ttl_sec
        self._lock = threading.Lock()
        self._generation = 0
        self.cache_key = f"{BUCKETS_CACHE_KEY}:{api.settings.key_id}"

    def _records(self, payload: list) -> List[BucketRecord]:
        return [BucketRecord.from_payload(entry) for entry in payload]

    def list_all(self, refresh: bool = False) -> List[BucketRecord]:
        """Return every bucket, listing remotely on a cache miss or when ``refresh`` is set."""

        if not refresh:
            cached = self._cache.get(self.cache_key)
            if cached is not None:
                return self._records(cached)

        observed = self._generation
        with self._lock:
            # A refresh that completed while we waited satisfies this call too.
            if self._generation != observed or not refresh:
                cached = self._cache.get(self.cache_key)
                if cached is not None:
                    return self._records(cached)

            response = self._api.call("b2_list_buckets", {"accountId": self._api.account_id})
            buckets = list(response.get("buckets") or [])
            self._cache.set(self.cache_key, buckets, self.ttl_sec)
            self._generation += 1
            logger.debug("Bucket listing refreshed", extra={"bucket_count": len(buckets)})
            return self._records(buckets)

    def invalidate(self) -> None:
        with self._lock:
            self._cache.forget(self.cache_key)

    def resolve_id_by_name(self, name: str) -> Optional[BucketRecord]:
        for bucket in self.list_all():
            if bucket.name == name:
                return bucket
        return None

    def resolve_name_by_id(self, bucket_id: str) -> Optional[BucketRecord]:
        for bucket in self.list_all():
            if bucket.bucket_id == bucket_id:
                return bucket
        return None

    def require_id(self, ref: BucketRef) -> str:
        """Return the bucket id for ``ref``.

        Raises:
            ValidationError: A bucket name did not resolve to any bucket.
        """
        if isinstance(ref, BucketById):
            return ref.bucket_id
        bucket = self.resolve_id_by_name(ref.name)
        if bucket is None:
            raise ValidationError(f"No bucket named {ref.name!r}; cannot determine bucket id")
        return bucket.bucket_id

    def require_name(self, ref: BucketRef) -> str:
        """Return the bucket name for ``ref``.

        Raises:
            ValidationError: A bucket id did not resolve to any bucket.
        """
        if isinstance(ref, BucketByName):
            return ref.name
        bucket = self.resolve_name_by_id(ref.bucket_id)
        if bucket is None:
            raise ValidationError(f"No bucket with id {ref.bucket_id!r}; cannot determine bucket name")
        return bucket.name
