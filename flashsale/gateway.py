"""The gateway: checks per-route limits and prepares requests for upstream services."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urlsplit

from flashsale.rate_limit import Route

logger = logging.getLogger(__name__)

USER_ID_HEADER = "UserID"
TRACE_ID_HEADER = "TraceID"
DEFAULT_TRACE_ID = "121321313"
EXTRA_HEADER = ("Pika-AAA", "abcdefghhhhhhhh")


@dataclass(frozen=True)
class ForwardRequest:
    """The request as it is to be sent to the upstream service."""

    scheme: str
    host: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayResponse:
    """A gateway outcome: a direct reply, or a request to forward."""

    status: int
    body: str = ""
    forward: Optional[ForwardRequest] = None


def check_limit(routes: Mapping[str, Route], rate_limiter: Any, action: str) -> Optional[GatewayResponse]:
    """Return a reply that stops the request, or None to let it through."""
    if action not in routes:
        return GatewayResponse(status=HTTPStatus.NOT_FOUND, body="route err")
    try:
        result = rate_limiter.allow(action)
    except Exception as exc:
        logger.error("rate limiter error: %s", exc)
        return GatewayResponse(status=HTTPStatus.OK, body="ok")
    if result.is_allowed:
        return None
    return GatewayResponse(status=HTTPStatus.OK, body="ok")


def build_forward(
    route: Route,
    user_id: str,
    headers: Optional[Mapping[str, str]],
    endpoint: str,
) -> ForwardRequest:
    """Rewrite a request for the upstream endpoint of ``route``."""
    new_headers = dict(headers or {})
    new_headers[USER_ID_HEADER] = user_id
    new_headers[TRACE_ID_HEADER] = DEFAULT_TRACE_ID
    new_headers[EXTRA_HEADER[0]] = EXTRA_HEADER[1]
    request = ForwardRequest(
        scheme=route.scheme,
        host=urlsplit(endpoint).netloc,
        path=route.uri,
        headers=new_headers,
    )
    logger.info("redirect url: %s", request)
    return request


class Gateway:
    """Routes actions through the limiter to upstream services found by ``resolver``."""

    def __init__(
        self,
        routes: Mapping[str, Route],
        rate_limiter: Any,
        resolver: Callable[[str], str],
    ) -> None:
        self.routes = routes
        self.rate_limiter = rate_limiter
        self.resolver = resolver

    def handle(
        self,
        action: str,
        user_id: str,
        headers: Optional[Mapping[str, str]] = None,
    ) -> GatewayResponse:
        stop = check_limit(self.routes, self.rate_limiter, action)
        if stop is not None:
            return stop
        route = self.routes.get(action)
        if route is None:
            return GatewayResponse(status=HTTPStatus.NOT_FOUND, body="")
        logger.info("redirect route: %s", route)
        endpoint = self.resolver(route.host)
        return GatewayResponse(
            status=HTTPStatus.OK,
            forward=build_forward(route, user_id, headers, endpoint),
        )