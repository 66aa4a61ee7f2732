"""Cache-side flash-sale bookkeeping: stock, per-user limits and attempt records."""

from __future__ import annotations

import logging
from typing import Optional

from flashsale.kvstore import KeyValueStore
from flashsale.models import PreSecKillRecord, pre_record_from_json

logger = logging.getLogger(__name__)


class SecKillError(Exception):
    """A flash-sale attempt was refused by the cache."""

    message = "sec kill refused"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.message)


class AlreadyInSecKill(SecKillError):
    """The user already has an attempt in progress for these goods."""

    message = "already in sec kill"

    def __init__(self, sec_num: str = "") -> None:
        super().__init__()
        self.sec_num = sec_num


class UserGoodsOutOfLimit(SecKillError):
    message = "user out of limit on this goods"


class StockNotEnough(SecKillError):
    message = "stock not enough"


class SoldOut(SecKillError):
    message = "killed out"


_ERRORS = {
    -1: AlreadyInSecKill,
    -2: UserGoodsOutOfLimit,
    -3: StockNotEnough,
    -4: SoldOut,
}


def error_for_code(ret_code: int) -> Optional[SecKillError]:
    """Return the error a cache result code stands for, or None for success."""
    error_type = _ERRORS.get(ret_code)
    return None if error_type is None else error_type()


def _stock_key(goods_id: int) -> str:
    return f"SK:Stock:{goods_id}"


def _limit_key(goods_id: int) -> str:
    return f"SK:Limit{goods_id}"


def _in_progress_key(user_id: int, goods_id: int) -> str:
    return f"SK:UserGoodsSecNum:{user_id}:{goods_id}"


def _killed_key(user_id: int, goods_id: int) -> str:
    return f"SK:UserSecKilledNum:{user_id}:{goods_id}"


class PreStockStore:
    """Reserves flash-sale stock in a ``KeyValueStore`` before the database is touched."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def set_stock(self, goods_id: int, stock: int) -> None:
        """Set the flash-sale stock available for ``goods_id``."""
        self.store.set(_stock_key(goods_id), int(stock))

    def set_limit(self, goods_id: int, limit: int) -> None:
        """Set how many units of ``goods_id`` one user may buy."""
        self.store.set(_limit_key(goods_id), int(limit))

    def pre_desc_stock(
        self,
        user_id: int,
        goods_id: int,
        num: int,
        sec_num: str,
        record: PreSecKillRecord,
    ) -> str:
        """Reserve ``num`` units for the user and store the attempt under ``sec_num``.

        Raises ``AlreadyInSecKill`` (carrying the running attempt's number),
        ``UserGoodsOutOfLimit`` or ``StockNotEnough``.
        """
        store = self.store
        record_json = record.to_json()
        logger.info("secNum is %s, secRecord is %s", sec_num, record_json)
        in_progress = _in_progress_key(user_id, goods_id)
        killed_key = _killed_key(user_id, goods_id)
        stock_key = _stock_key(goods_id)
        with store.lock:
            already = store.get(in_progress)
            if already:
                logger.info("already in seckill, secnum is %s", already)
                raise AlreadyInSecKill(already)

            limit = store.get(_limit_key(goods_id))
            killed = store.get(killed_key)
            if limit is not None and killed is not None and int(killed) + num > int(limit):
                raise UserGoodsOutOfLimit()

            stock = store.get(stock_key)
            if stock is None or int(stock) < num:
                raise StockNotEnough()

            store.decr_by(stock_key, num)
            store.incr_by(killed_key, num)
            store.set(in_progress, sec_num)
            store.set(sec_num, record_json)
        return sec_num

    def set_success(
        self,
        user_id: int,
        goods_id: int,
        sec_num: str,
        record: PreSecKillRecord,
    ) -> str:
        """Mark the user's attempt as finished and store its final record."""
        record_json = record.to_json()
        logger.info("secNum is %s, secRecord is %s", sec_num, record_json)
        with self.store.lock:
            self.store.set(_in_progress_key(user_id, goods_id), "")
            self.store.set(sec_num, record_json)
        return sec_num

    def get_sec_kill_info(self, sec_num: str) -> PreSecKillRecord:
        """Return the stored attempt, or an empty record when there is none."""
        value = self.store.get(sec_num)
        if value is None:
            return PreSecKillRecord()
        return pre_record_from_json(value)