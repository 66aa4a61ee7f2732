# flashsale

A small flash-sale backend in plain Python, with no third-party run-time
dependencies. It has two parts:

* **A gateway layer** that checks each request against a per-route rate limit
  and prepares the request to send on to the service behind it.
* **A sale service** that sells goods in limited quantities, honours per-user
  and per-goods quotas, and serves them over HTTP as a WSGI application.

## Installing

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Running the service

```
flashsale --addr 127.0.0.1:8000 --db sale.db
```

Options:

* `--addr` – listen address as `host:port` (default `0.0.0.0:8000`);
* `--db` – SQLite database path (default `:memory:`, so nothing is kept after exit);
* `--consume-interval` – seconds between polls of the settlement queue (default `0.1`).

The command serves the application built by `flashsale.handlers.create_app`
with `wsgiref` and runs a background thread that settles queued purchases.
Routes:

| Method | Path | Input |
| --- | --- | --- |
| POST | `/v1/sec_kill` | body with `goods_num` and `num` |
| POST | `/v2/sec_kill` | body with `goods_num` and `num` |
| POST | `/v3/sec_kill` | body with `goods_num` and `num` |
| GET | `/v3/get_sec_kill_info` | query `sec_num` |
| GET | `/get_goods_info` | query `goods_num` |
| GET | `/get_goods_list` | query `offset`, `limit` (default limit 200) |

POST bodies may be JSON or `application/x-www-form-urlencoded`. The caller's
user id and trace id are read from the `UserID` and `TraceID` headers. Replies
are JSON objects with `code`, `message` and `data`; a body that cannot be read,
or a missing query parameter, gives code `-100`; a request the service fails on
gives `null`. Other paths answer 404.

## Buying

`flashsale.service.SecKillService` offers three ways to buy:

* `sec_kill_v1` – settle directly in the database: check the quota, take the
  stock, create the order and the sale record in one transaction;
* `sec_kill_v2` – first reserve stock in the key-value store
  (`flashsale.pre_stock.PreStockStore`), then settle in the database at once;
* `sec_kill_v3` – reserve stock, queue a message and reply with the purchase
  number (`sec_num`); `consume` settles queued purchases later, and
  `get_sec_kill_info` reports the purchase's status and order number.

A user who already has a reservation in progress for the same goods gets the
running purchase number back in the reply message instead of a second
reservation. A purchase needs a quota: the user's own, or else the goods'
global one; with neither, the result is "用户额度不足" (code 8108).

The service starts with empty stores, so goods, stock and quotas are set up
from Python:

```python
from flashsale.kvstore import KeyValueStore
from flashsale.messaging import MessageQueue
from flashsale.models import Goods, Quota, SecKillStock
from flashsale.repository import Database
from flashsale.service import SecKillService

service = SecKillService(Database(), KeyValueStore(), MessageQueue())
goods = service.goods_repo.save(Goods(goods_num="g-1", goods_name="Lamp", price=9.5, seller=7))
service.stock_repo.save(SecKillStock(goods_id=goods.id, stock=10))
service.quota_repo.save(Quota(goods_id=goods.id, num=2))
service.pre_stock.set_stock(goods.id, 10)

reply = service.sec_kill_v3(user_id=1, goods_num="g-1", num=1, trace_id="t-1")
service.consume()
service.get_sec_kill_info(reply.data["sec_num"]).data  # status 2 and the order number
```

Result codes map to messages with `flashsale.error_codes.get_err_msg`:

```python
from flashsale.error_codes import get_err_msg

get_err_msg(0)      # "success"
get_err_msg(12345)  # "unknown error code 12345"
```

## Rate limiting and the gateway

Routes are read from a JSON file mapping action names to objects with `host`,
`scheme`, `uri` and `limit_rate` (0 means the default rate):

```python
from flashsale.kvstore import KeyValueStore
from flashsale.token_bucket import TokenBucketLimiter
from flashsale.rate_limit import init_limiter

store = KeyValueStore()
limiter = init_limiter("router.json", TokenBucketLimiter(store), 3, 10, 100)
limiter.allow("sec_kill").is_allowed
```

Each route is limited by a token bucket kept in the key-value store. If that
bucket raises, the route falls back to a `LocalLimiter` of capacity one at the
same rate.

`flashsale.gateway.Gateway` takes the routes, a rate limiter and a resolver
that turns a route's host name into an endpoint URL. `Gateway.handle` returns a
`GatewayResponse`: a 404 for an unknown action, a plain `"ok"` when the limit
refuses the request, or a `ForwardRequest` with the upstream scheme, host,
path and the headers to send.

## What this package does not do

* The gateway only decides and rewrites; it does not send the forwarded
  request, and there is no gateway command or HTTP server for it.
* The key-value store and the message queue live in the process; they are not
  shared between processes or machines.
* There are no HTTP routes for adding goods, stock or quotas; these are set up
  through the repositories and `PreStockStore` as shown above.

## Modules

| Module | Purpose |
| --- | --- |
| `flashsale.kvstore` | in-memory key-value store with expiry, counters and hashes |
| `flashsale.token_bucket` | token-bucket limiter kept in the key-value store |
| `flashsale.rate_limit` | per-route limits, local fallback, route file loading |
| `flashsale.gateway` | limit check and request rewriting for forwarding |
| `flashsale.models` | goods, orders, quotas, records and queue messages |
| `flashsale.error_codes` | service result codes and their messages |
| `flashsale.pre_stock` | stock reservation in the key-value store |
| `flashsale.messaging` | message queue and sale message encoding |
| `flashsale.repository` | SQLite-backed repositories |
| `flashsale.service` | the sale service |
| `flashsale.handlers` | HTTP handlers, the WSGI application and the `flashsale` command |