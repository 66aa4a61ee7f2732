"""Per-route rate limiting backed by a shared token bucket with a local fallback."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Union

from flashsale.token_bucket import TokenBucketLimit, TokenBucketLimiter

logger = logging.getLogger(__name__)

ROUTE_BUCKET_EXPIRE = 10

_ROUTE_FIELDS = {"host": "host", "scheme": "scheme", "uri": "uri", "limitrate": "limit_rate"}


@dataclass
class Route:
    """Where an action is forwarded to, and its request rate (0 means default)."""

    host: str = ""
    scheme: str = ""
    uri: str = ""
    limit_rate: int = 0

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Route":
        """Build a route from a JSON object; field names match case-insensitively."""
        values: Dict[str, Any] = {}
        for key, value in raw.items():
            name = _ROUTE_FIELDS.get(key.replace("_", "").lower())
            if name is None:
                continue
            if name == "limit_rate":
                if isinstance(value, bool) or not isinstance(value, int):
                    raise TypeError(f"limit rate must be an integer, got {value!r}")
            elif not isinstance(value, str):
                raise TypeError(f"route field {key!r} must be a string, got {value!r}")
            values[name] = value
        return cls(**values)


class LocalLimiter:
    """An in-process token bucket: ``rate`` tokens per second, at most ``burst``."""

    def __init__(
        self,
        rate: float,
        burst: int,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.rate = rate
        self.burst = burst
        self._clock = clock or time.monotonic
        self._tokens = float(burst)
        self._last = self._clock()

    def allow(self) -> bool:
        """Take one token if available."""
        now = self._clock()
        elapsed = max(0.0, now - self._last)
        self._last = now
        self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False


@dataclass
class RateLimiterConfig:
    routes: Dict[str, Route] = field(default_factory=dict)
    default_limit_rate: int = 0
    default_retry_time: int = 0
    default_limit_timeout: int = 0


@dataclass(frozen=True)
class LimitResult:
    is_allowed: bool
    is_timeout: bool = False


class RateLimiter:
    """Limits each configured route through the shared bucket.

    When the shared bucket fails, a local limiter of capacity one takes over,
    so the route is throttled as a leaky bucket at the same rate.
    """

    def __init__(self, config: RateLimiterConfig, bucket: TokenBucketLimiter) -> None:
        self.config = config
        self._bucket = bucket
        clock = bucket.store.time
        self.route_limits: Dict[str, TokenBucketLimit] = {}
        self.local_limits: Dict[str, LocalLimiter] = {}
        for name, route in config.routes.items():
            rate = route.limit_rate or config.default_limit_rate
            self.route_limits[name] = TokenBucketLimit(
                expire=ROUTE_BUCKET_EXPIRE, rate=rate, burst=rate
            )
            self.local_limits[name] = LocalLimiter(rate, 1, clock)

    def allow(self, url: str) -> LimitResult:
        try:
            result = self._bucket.allow(url, self.route_limits.get(url))
        except Exception as exc:  # the shared bucket is unavailable
            logger.error("limiter bucket error: %s", exc)
            local = self.local_limits.get(url)
            if local is None:
                logger.error("local limiter does not exist: %s", url)
                return LimitResult(is_allowed=True)
            allowed = local.allow()
            if allowed:
                logger.info("local limiter: %s", url)
            return LimitResult(is_allowed=allowed)
        logger.info("limiter allow: %s, remaining: %s", result.allowed, result.remaining)
        return LimitResult(is_allowed=result.allowed > 0)


def load_routes(path: Union[str, Path]) -> Dict[str, Route]:
    """Read the route table from a JSON file mapping action names to routes."""
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("route configuration must be a JSON object")
    routes: Dict[str, Route] = {}
    for name, entry in raw.items():
        if not isinstance(entry, dict):
            raise ValueError(f"route {name!r} must be a JSON object")
        routes[name] = Route.from_dict(entry)
    return routes


def init_limiter(
    route_config_path: Union[str, Path],
    bucket: TokenBucketLimiter,
    default_retry_time: int,
    default_limit_timeout: int,
    default_limit_rate: int,
) -> RateLimiter:
    """Load the route table and build a rate limiter for it."""
    config = RateLimiterConfig(
        routes=load_routes(route_config_path),
        default_limit_rate=default_limit_rate,
        default_retry_time=default_retry_time,
        default_limit_timeout=default_limit_timeout,
    )
    return RateLimiter(config, bucket)