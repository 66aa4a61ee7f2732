"""A token-bucket rate limiter whose state lives in a key/value store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from flashsale.kvstore import KeyValueStore

REDIS_PREFIX = "token_bucket_rate:"

# A fresh bucket behaves as if its last grant happened this many seconds ago.
_INITIAL_LOOKBACK = 10


@dataclass(frozen=True)
class TokenBucketLimit:
    """Bucket settings: key lifetime in seconds, refill rate per second, capacity."""

    expire: int
    rate: int
    burst: int


@dataclass(frozen=True)
class BucketResult:
    """``allowed`` is the number granted, or -1 when refused."""

    allowed: int
    remaining: int


class TokenBucketLimiter:
    """Grants tokens from per-key buckets kept as hashes in a ``KeyValueStore``."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def allow(self, key: str, limit: Optional[TokenBucketLimit]) -> BucketResult:
        return self.allow_n(key, limit, 1)

    def allow_n(self, key: str, limit: Optional[TokenBucketLimit], n: int) -> BucketResult:
        """Try to take ``n`` tokens from the bucket for ``key``."""
        if limit is None:
            raise ValueError(f"no token bucket limit configured for {key!r}")
        if limit.expire <= 0:
            raise ValueError("bucket expiry must be positive")
        bucket_key = REDIS_PREFIX + key
        store = self.store
        with store.lock:
            now = store.time()
            if not store.exists(bucket_key):
                store.hset(bucket_key, "rate", limit.rate)
                store.hset(bucket_key, "burst", limit.burst)
                store.hset(bucket_key, "lastBucket", 0)
                store.hset(bucket_key, "lastTime", now - _INITIAL_LOOKBACK)
                store.hset(bucket_key, "bucket", 0)
            store.expire(bucket_key, limit.expire)

            last_time = float(store.hget(bucket_key, "lastTime"))
            last_bucket = float(store.hget(bucket_key, "lastBucket"))
            bucket = float(store.hget(bucket_key, "bucket"))
            delta = (now - last_time) * limit.rate
            bucket = min(delta + bucket, float(limit.burst))

            if n <= bucket:
                bucket -= n
                store.hset(bucket_key, "lastBucket", last_bucket + n)
                store.hset(bucket_key, "lastTime", now)
                store.hset(bucket_key, "bucket", bucket)
                return BucketResult(allowed=n, remaining=int(bucket))
            return BucketResult(allowed=-1, remaining=int(bucket))