"""HTTP handlers of the flash-sale service and the WSGI application that serves them."""

from __future__ import annotations

import argparse
import json
import logging
import re
import threading
import time
from http import HTTPStatus
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qs
from wsgiref.simple_server import make_server

from flashsale.error_codes import get_err_msg
from flashsale.gateway import TRACE_ID_HEADER, USER_ID_HEADER
from flashsale.kvstore import KeyValueStore
from flashsale.messaging import MessageQueue
from flashsale.repository import Database
from flashsale.service import Reply, SecKillService

logger = logging.getLogger(__name__)

BIND_FAILED = -100
DEFAULT_GOODS_LIST_LIMIT = 200

_INT_RE = re.compile(r"[+-]?\d+")
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

Body = Union[None, str, bytes, bytearray, Mapping[str, Any]]
Result = Optional[Dict[str, Any]]


class BindError(ValueError):
    """The request body could not be read into a purchase request."""


def _atoi(text: Optional[str]) -> int:
    """Parse a decimal integer the strict way; anything else counts as 0."""
    if not text or not _INT_RE.fullmatch(text):
        return 0
    value = int(text)
    return value if _INT64_MIN <= value <= _INT64_MAX else 0


def _header(headers: Optional[Mapping[str, str]], name: str) -> str:
    """Return a header value, matching the name case-insensitively."""
    if not headers:
        return ""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return ""


def _bind(body: Body) -> Tuple[str, int]:
    """Read ``(goods_num, num)`` from a JSON body or a form mapping."""
    if body is None or (isinstance(body, (str, bytes, bytearray)) and not body.strip()):
        raise BindError("empty request body")
    if isinstance(body, (str, bytes, bytearray)):
        try:
            body = json.loads(body)
        except ValueError as exc:
            raise BindError(f"invalid JSON body: {exc}") from None
    if not isinstance(body, Mapping):
        raise BindError("request body must be an object")
    goods_num = ""
    num = 0
    for key, value in body.items():
        name = str(key).replace("_", "").lower()
        if name == "goodsnum":
            if not isinstance(value, str):
                raise BindError(f"goods number must be a string, got {value!r}")
            goods_num = value
        elif name == "num":
            if isinstance(value, str) and _INT_RE.fullmatch(value):
                value = int(value)
            if isinstance(value, bool) or not isinstance(value, int):
                raise BindError(f"num must be an integer, got {value!r}")
            if not _INT32_MIN <= value <= _INT32_MAX:
                raise BindError(f"num out of range: {value}")
            num = value
    return goods_num, num


class Handlers:
    """Turns HTTP requests into service calls and service results into replies.

    A reply is the JSON-ready dict of a ``Reply``, or None when the service failed.
    """

    def __init__(self, service: SecKillService) -> None:
        self.service = service

    @staticmethod
    def _caller(headers: Optional[Mapping[str, str]]) -> Tuple[int, str]:
        return _atoi(_header(headers, USER_ID_HEADER)), _header(headers, TRACE_ID_HEADER)

    @staticmethod
    def _run(name: str, trace_id: str, call: Callable[[], Reply]) -> Optional[Reply]:
        try:
            return call()
        except Exception as exc:
            logger.info("[%s] %s err %s", trace_id, name, exc)
            return None

    def _sec_kill(
        self,
        name: str,
        headers: Optional[Mapping[str, str]],
        body: Body,
        call: Callable[[int, str, int, str], Reply],
    ) -> Optional[Reply]:
        user_id, trace_id = self._caller(headers)
        try:
            goods_num, num = _bind(body)
        except BindError as exc:
            logger.error("[%s] shouldBind err %s", trace_id, exc)
            return Reply(code=BIND_FAILED)
        logger.info("[%s] req user=%d goods=%s num=%d", trace_id, user_id, goods_num, num)
        return self._run(name, trace_id, lambda: call(user_id, goods_num, num, trace_id))

    def sec_kill_v1(self, headers: Optional[Mapping[str, str]], body: Body) -> Result:
        reply = self._sec_kill(
            "SecKillV1",
            headers,
            body,
            lambda user_id, goods_num, num, _trace: self.service.sec_kill_v1(
                user_id, goods_num, num
            ),
        )
        if reply is None:
            return None
        reply.message = get_err_msg(reply.code)
        return reply.to_dict()

    def sec_kill_v2(self, headers: Optional[Mapping[str, str]], body: Body) -> Result:
        reply = self._sec_kill(
            "SecKillV2",
            headers,
            body,
            lambda user_id, goods_num, num, _trace: self.service.sec_kill_v2(
                user_id, goods_num, num
            ),
        )
        return None if reply is None else reply.to_dict()

    def sec_kill_v3(self, headers: Optional[Mapping[str, str]], body: Body) -> Result:
        reply = self._sec_kill("SecKillV3", headers, body, self.service.sec_kill_v3)
        return None if reply is None else reply.to_dict()

    def get_sec_kill_info(
        self, headers: Optional[Mapping[str, str]], query: Optional[Mapping[str, str]]
    ) -> Result:
        _user_id, trace_id = self._caller(headers)
        sec_num = (query or {}).get("sec_num", "")
        if not sec_num:
            logger.error("[%s] secNum not exist", trace_id)
            return Reply(code=BIND_FAILED).to_dict()
        reply = self._run(
            "GetSecKillInfo", trace_id, lambda: self.service.get_sec_kill_info(sec_num)
        )
        return None if reply is None else reply.to_dict()

    def get_goods_info(
        self, headers: Optional[Mapping[str, str]], query: Optional[Mapping[str, str]]
    ) -> Result:
        _user_id, trace_id = self._caller(headers)
        goods_num = (query or {}).get("goods_num", "")
        if not goods_num:
            logger.error("[%s] goodsNum not exist", trace_id)
            return Reply(code=BIND_FAILED).to_dict()
        reply = self._run(
            "GetGoodsInfo", trace_id, lambda: self.service.get_goods_info(goods_num)
        )
        return None if reply is None else reply.to_dict()

    def get_goods_list(
        self, headers: Optional[Mapping[str, str]], query: Optional[Mapping[str, str]]
    ) -> Result:
        _user_id, trace_id = self._caller(headers)
        query = query or {}
        limit = _atoi(query.get("limit", "")) or DEFAULT_GOODS_LIST_LIMIT
        offset = _atoi(query.get("offset", ""))
        reply = self._run(
            "GetGoodsList", trace_id, lambda: self.service.get_goods_list(offset, limit)
        )
        return None if reply is None else reply.to_dict()


def _environ_headers(environ: Mapping[str, Any]) -> Dict[str, str]:
    headers = {
        key[5:].replace("_", "-"): value
        for key, value in environ.items()
        if key.startswith("HTTP_")
    }
    if environ.get("CONTENT_TYPE"):
        headers["Content-Type"] = environ["CONTENT_TYPE"]
    return headers


def _read_body(environ: Mapping[str, Any]) -> Body:
    try:
        length = int(environ.get("CONTENT_LENGTH") or 0)
    except ValueError:
        length = 0
    data = environ["wsgi.input"].read(length) if length > 0 else b""
    content_type = (environ.get("CONTENT_TYPE") or "").lower()
    if content_type.startswith("application/x-www-form-urlencoded"):
        form = parse_qs(data.decode("utf-8", "replace"), keep_blank_values=True)
        return {key: values[0] for key, values in form.items()}
    return data


def _read_query(environ: Mapping[str, Any]) -> Dict[str, str]:
    query = parse_qs(environ.get("QUERY_STRING") or "", keep_blank_values=True)
    return {key: values[0] for key, values in query.items()}


def create_app(service: SecKillService) -> Callable[..., Iterable[bytes]]:
    """Build the WSGI application serving the flash-sale routes."""
    handlers = Handlers(service)
    routes: Dict[Tuple[str, str], Callable[[Any, Any], Result]] = {
        ("POST", "/v1/sec_kill"): handlers.sec_kill_v1,
        ("POST", "/v2/sec_kill"): handlers.sec_kill_v2,
        ("POST", "/v3/sec_kill"): handlers.sec_kill_v3,
        ("GET", "/v3/get_sec_kill_info"): handlers.get_sec_kill_info,
        ("GET", "/get_goods_info"): handlers.get_goods_info,
        ("GET", "/get_goods_list"): handlers.get_goods_list,
    }

    def app(environ: Dict[str, Any], start_response: Callable[..., Any]) -> List[bytes]:
        begin = time.monotonic()
        method = str(environ.get("REQUEST_METHOD", "GET")).upper()
        path = environ.get("PATH_INFO") or "/"
        headers = _environ_headers(environ)
        handler = routes.get((method, path))
        if handler is None:
            status = HTTPStatus.NOT_FOUND
            payload = b"404 page not found"
            content_type = "text/plain; charset=utf-8"
        else:
            argument = _read_body(environ) if method == "POST" else _read_query(environ)
            result = handler(headers, argument)
            status = HTTPStatus.OK
            payload = json.dumps(result, ensure_ascii=False).encode("utf-8")
            content_type = "application/json; charset=utf-8"
        logger.info(
            "[%s] ReqPath[%s]-Cost[%.6fs]",
            _header(headers, TRACE_ID_HEADER),
            path,
            time.monotonic() - begin,
        )
        start_response(
            f"{status.value} {status.phrase}",
            [("Content-Type", content_type), ("Content-Length", str(len(payload)))],
        )
        return [payload]

    return app


def _consume_loop(service: SecKillService, stop: threading.Event, interval: float) -> None:
    while not stop.wait(interval):
        try:
            service.consume()
        except Exception as exc:
            logger.error("consumer error: %s", exc)


def main(argv: Optional[List[str]] = None) -> int:
    """Serve the flash-sale service over HTTP until interrupted."""
    parser = argparse.ArgumentParser(prog="flashsale", description="Run the flash-sale service.")
    parser.add_argument("--addr", default="0.0.0.0:8000", help="listen address, host:port")
    parser.add_argument("--db", default=":memory:", help="SQLite database path")
    parser.add_argument(
        "--consume-interval",
        type=float,
        default=0.1,
        help="seconds between settlement queue polls",
    )
    args = parser.parse_args(argv)
    host, _, port_text = args.addr.rpartition(":")
    if not port_text.isdigit():
        parser.error(f"invalid listen address: {args.addr!r}")
    if args.consume_interval <= 0:
        parser.error("consume interval must be positive")

    db = Database(args.db)
    service = SecKillService(db, KeyValueStore(), MessageQueue())
    stop = threading.Event()
    consumer = threading.Thread(
        target=_consume_loop, args=(service, stop, args.consume_interval), daemon=True
    )
    consumer.start()
    try:
        with make_server(host or "0.0.0.0", int(port_text), create_app(service)) as server:
            server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        stop.set()
        consumer.join(timeout=1)
        db.close()
    return 0