"""Database storage of goods, orders, quotas, flash-sale records and stock."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import fields
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence, Type, TypeVar, Union

from flashsale.kvstore import KeyValueStore
from flashsale.models import (
    Goods,
    Order,
    Quota,
    SecKillRecord,
    SecKillStatus,
    SecKillStock,
    UserQuota,
    goods_from_json,
)

logger = logging.getLogger(__name__)

GOODS_CACHE_TTL = 10

_SCHEMA = """
CREATE TABLE IF NOT EXISTS t_goods (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    goods_num TEXT NOT NULL DEFAULT '',
    goods_name TEXT NOT NULL DEFAULT '',
    price REAL NOT NULL DEFAULT 0,
    pic_url TEXT NOT NULL DEFAULT '',
    seller INTEGER NOT NULL DEFAULT 0,
    create_time TEXT,
    modify_time TEXT
);
CREATE TABLE IF NOT EXISTS t_order (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    seller INTEGER NOT NULL DEFAULT 0,
    buyer INTEGER NOT NULL DEFAULT 0,
    order_num TEXT NOT NULL DEFAULT '',
    goods_id INTEGER NOT NULL DEFAULT 0,
    goods_num TEXT NOT NULL DEFAULT '',
    price REAL NOT NULL DEFAULT 0,
    status INTEGER NOT NULL DEFAULT 0,
    create_time TEXT,
    modify_time TEXT
);
CREATE TABLE IF NOT EXISTS t_quota (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    num INTEGER NOT NULL DEFAULT 0,
    goods_id INTEGER NOT NULL DEFAULT 0,
    create_time TEXT,
    modify_time TEXT
);
CREATE TABLE IF NOT EXISTS t_user_quota (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    num INTEGER NOT NULL DEFAULT 0,
    killed_num INTEGER NOT NULL DEFAULT 0,
    user_id INTEGER NOT NULL DEFAULT 0,
    goods_id INTEGER NOT NULL DEFAULT 0,
    create_time TEXT,
    modify_time TEXT
);
CREATE TABLE IF NOT EXISTS t_seckill_record (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sec_num TEXT NOT NULL DEFAULT '',
    user_id INTEGER NOT NULL DEFAULT 0,
    goods_id INTEGER NOT NULL DEFAULT 0,
    order_num TEXT NOT NULL DEFAULT '',
    price REAL NOT NULL DEFAULT 0,
    status INTEGER NOT NULL DEFAULT 0,
    create_time TEXT,
    modify_time TEXT
);
CREATE TABLE IF NOT EXISTS t_seckill_stock (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    goods_id INTEGER NOT NULL DEFAULT 0,
    stock INTEGER NOT NULL DEFAULT 0,
    create_time TEXT,
    modify_time TEXT
);
"""

_Model = TypeVar("_Model", Goods, Order, Quota, UserQuota, SecKillRecord, SecKillStock)


class NotFoundError(LookupError):
    """No row matched the query."""


class Database:
    """A SQLite database holding the flash-sale tables.

    Statements outside ``transaction()`` commit on their own; inside it they
    commit together, or roll back together when the block raises.
    """

    def __init__(self, path: Union[str, Path] = ":memory:") -> None:
        self._conn = sqlite3.connect(str(path), isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        with self._lock:
            self._conn.executescript(_SCHEMA)

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """Run the block as one transaction; nested blocks join the outer one."""
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._conn.execute("BEGIN")
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._conn.execute("ROLLBACK")
                raise
            self._depth -= 1
            if outermost:
                self._conn.execute("COMMIT")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(sql, tuple(params))

    def _fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchone()

    def _fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchall()


def _to_column(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _from_column(name: str, value: Any) -> Any:
    if name.endswith("_time") and isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


def _insert(db: Database, obj: _Model) -> _Model:
    values = {f.name: _to_column(getattr(obj, f.name)) for f in fields(obj)}
    if not values["id"]:
        del values["id"]
    columns = ", ".join(values)
    marks = ", ".join("?" for _ in values)
    cursor = db._execute(
        f"INSERT INTO {type(obj).table_name} ({columns}) VALUES ({marks})",
        list(values.values()),
    )
    if not obj.id:
        obj.id = cursor.lastrowid
    return obj


def _from_row(cls: Type[_Model], row: sqlite3.Row) -> _Model:
    return cls(**{f.name: _from_column(f.name, row[f.name]) for f in fields(cls)})


def _first(db: Database, cls: Type[_Model], where: str, params: Sequence[Any]) -> _Model:
    row = db._fetch_one(
        f"SELECT * FROM {cls.table_name} WHERE {where} ORDER BY id LIMIT 1", params
    )
    if row is None:
        raise NotFoundError(f"record not found in {cls.table_name}")
    return _from_row(cls, row)


class GoodsRepo:
    def __init__(self, db: Database, cache: Optional[KeyValueStore] = None) -> None:
        self.db = db
        self.cache = cache

    def save(self, goods: Goods) -> Goods:
        return _insert(self.db, goods)

    def find_by_id(self, goods_id: int) -> Goods:
        return _first(self.db, Goods, "id = ?", [goods_id])

    def find_by_num(self, goods_num: str) -> Goods:
        return _first(self.db, Goods, "goods_num = ?", [goods_num])

    def find_by_num_cached(self, goods_num: str) -> Goods:
        """Look goods up in the cache first; cache a database hit for a short while."""
        cache_key = f"goodsInfo:{goods_num}"
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached:
                try:
                    return goods_from_json(cached)
                except ValueError:
                    logger.info("bad cached goods at %s", cache_key)
        goods = self.find_by_num(goods_num)
        if self.cache is not None:
            self.cache.set(cache_key, goods.to_json(), GOODS_CACHE_TTL)
        return goods

    def list(self, offset: int, limit: int) -> List[Goods]:
        """Return goods by id; a negative limit returns all from ``offset``."""
        rows = self.db._fetch_all(
            f"SELECT * FROM {Goods.table_name} ORDER BY id LIMIT ? OFFSET ?",
            [limit, max(0, offset)],
        )
        return [_from_row(Goods, row) for row in rows]


class OrderRepo:
    def __init__(self, db: Database) -> None:
        self.db = db

    def save(self, order: Order) -> Order:
        return _insert(self.db, order)

    def find_by_id(self, order_id: int) -> Order:
        return _first(self.db, Order, "id = ?", [order_id])

    def find_by_num(self, order_num: str) -> Order:
        return _first(self.db, Order, "order_num = ?", [order_num])


class QuotaRepo:
    def __init__(self, db: Database) -> None:
        self.db = db

    def save(self, quota: Quota) -> Quota:
        return _insert(self.db, quota)

    def find_by_goods_id(self, goods_id: int) -> Quota:
        return _first(self.db, Quota, "goods_id = ?", [goods_id])


class UserQuotaRepo:
    def __init__(self, db: Database) -> None:
        self.db = db

    def save(self, user_quota: UserQuota) -> UserQuota:
        return _insert(self.db, user_quota)

    def find_user_goods_quota(self, user_id: int, goods_id: int) -> UserQuota:
        return _first(self.db, UserQuota, "user_id = ? and goods_id = ?", [user_id, goods_id])

    def incr_killed_num(self, user_id: int, goods_id: int, num: int) -> int:
        """Add ``num`` to the user's bought count; return the rows changed."""
        cursor = self.db._execute(
            f"UPDATE {UserQuota.table_name} SET killed_num = killed_num + ? "
            "WHERE user_id = ? and goods_id = ?",
            [num, user_id, goods_id],
        )
        return cursor.rowcount


class SecKillRecordRepo:
    def __init__(self, db: Database) -> None:
        self.db = db

    def save(self, record: SecKillRecord) -> SecKillRecord:
        return _insert(self.db, record)

    def find_by_id(self, record_id: int) -> SecKillRecord:
        return _first(self.db, SecKillRecord, "id = ?", [record_id])

    def out_of_time(self, order_num: str) -> int:
        """Close an unpaid record as timed out; return the rows changed."""
        cursor = self.db._execute(
            f"UPDATE {SecKillRecord.table_name} SET status = ? "
            "WHERE order_num = ? and status = ?",
            [int(SecKillStatus.OOT), order_num, int(SecKillStatus.BEFORE_PAY)],
        )
        return cursor.rowcount


class SecKillStockRepo:
    def __init__(self, db: Database) -> None:
        self.db = db

    def save(self, stock: SecKillStock) -> SecKillStock:
        return _insert(self.db, stock)

    def find_by_id(self, stock_id: int) -> SecKillStock:
        return _first(self.db, SecKillStock, "id = ?", [stock_id])

    def desc_stock(self, goods_id: int, num: int) -> int:
        """Take ``num`` from the stock if enough is left; return the rows changed."""
        cursor = self.db._execute(
            f"UPDATE {SecKillStock.table_name} SET stock = stock - ? "
            "WHERE goods_id = ? and stock >= ?",
            [num, goods_id, num],
        )
        return cursor.rowcount

    def reback_stock(self, goods_id: int, num: int) -> int:
        """Return ``num`` to the stock; return the rows changed."""
        cursor = self.db._execute(
            f"UPDATE {SecKillStock.table_name} SET stock = stock + ? WHERE goods_id = ?",
            [num, goods_id],
        )
        return cursor.rowcount