import pytest

from flashsale.kvstore import KeyValueStore
from flashsale.token_bucket import (
    REDIS_PREFIX,
    TokenBucketLimit,
    TokenBucketLimiter,
)


class FakeClock:
    def __init__(self, now=5000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return TokenBucketLimiter(KeyValueStore(clock))


def test_allow_first_request(limiter):
    limit = TokenBucketLimit(rate=100, burst=100, expire=10)
    result = limiter.allow("/foo", limit)
    assert result.allowed > 0
    assert result.allowed == 1
    assert result.remaining == 99


def test_bucket_state_stored_under_prefix(limiter):
    limiter.allow("/foo", TokenBucketLimit(rate=100, burst=100, expire=10))
    assert limiter.store.exists(REDIS_PREFIX + "/foo")
    assert limiter.store.hget(REDIS_PREFIX + "/foo", "rate") == "100"


def test_bucket_exhausts_then_refuses(limiter):
    limit = TokenBucketLimit(rate=1, burst=2, expire=10)
    assert limiter.allow("k", limit).allowed == 1
    assert limiter.allow("k", limit).allowed == 1
    refused = limiter.allow("k", limit)
    assert refused.allowed == -1
    assert refused.remaining == 0


def test_bucket_refills_over_time(limiter, clock):
    limit = TokenBucketLimit(rate=1, burst=1, expire=10)
    assert limiter.allow("k", limit).allowed == 1
    assert limiter.allow("k", limit).allowed == -1
    clock.now += 1
    assert limiter.allow("k", limit).allowed == 1


def test_keys_are_independent(limiter):
    limit = TokenBucketLimit(rate=1, burst=1, expire=10)
    assert limiter.allow("a", limit).allowed == 1
    assert limiter.allow("b", limit).allowed == 1
    assert limiter.allow("a", limit).allowed == -1


def test_allow_n_more_than_burst_refused(limiter):
    limit = TokenBucketLimit(rate=5, burst=5, expire=10)
    result = limiter.allow_n("k", limit, 6)
    assert result.allowed == -1
    assert result.remaining == 5


def test_allow_n_grants_count(limiter):
    limit = TokenBucketLimit(rate=5, burst=5, expire=10)
    result = limiter.allow_n("k", limit, 5)
    assert result.allowed == 5
    assert result.remaining == 0


def test_bucket_key_expires(limiter, clock):
    limit = TokenBucketLimit(rate=1, burst=1, expire=10)
    limiter.allow("k", limit)
    clock.now += 10
    assert limiter.store.exists(REDIS_PREFIX + "k") is False


def test_missing_limit_raises(limiter):
    with pytest.raises(ValueError):
        limiter.allow("k", None)


def test_non_positive_expire_raises(limiter):
    with pytest.raises(ValueError):
        limiter.allow("k", TokenBucketLimit(rate=1, burst=1, expire=0))