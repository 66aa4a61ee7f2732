"""The flash-sale service: buying flows, queries and the settlement consumer."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple, Union

from flashsale.error_codes import ErrorCode
from flashsale.kvstore import KeyValueStore
from flashsale.messaging import MessageQueue, SecKillMessenger
from flashsale.models import (
    Goods,
    Order,
    PreSecKillRecord,
    SecKillRecord,
    SecKillStatus,
    SeckillMessage,
    UserQuota,
)
from flashsale.pre_stock import AlreadyInSecKill, PreStockStore, SecKillError
from flashsale.repository import (
    Database,
    GoodsRepo,
    NotFoundError,
    OrderRepo,
    QuotaRepo,
    SecKillRecordRepo,
    SecKillStockRepo,
    UserQuotaRepo,
)

logger = logging.getLogger(__name__)

PRE_STOCK_FAILED = -10100


def _new_uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Reply:
    """A service reply: a result code, a message and an optional data payload."""

    code: int = 0
    message: str = ""
    data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"code": int(self.code), "message": self.message, "data": self.data}


def _goods_info(goods: Goods) -> Dict[str, Any]:
    return {
        "goods_num": goods.goods_num,
        "goods_name": goods.goods_name,
        "price": goods.price,
        "pic_url": goods.pic_url,
        "seller": goods.seller,
    }


class SecKillService:
    """Runs flash-sale purchases against the database, the cache and the queue."""

    def __init__(
        self,
        db: Database,
        cache: KeyValueStore,
        queue: MessageQueue,
        new_id: Optional[Callable[[], str]] = None,
    ) -> None:
        self.db = db
        self.cache = cache
        self.queue = queue
        self._new_id = new_id or _new_uuid
        self.goods_repo = GoodsRepo(db, cache)
        self.order_repo = OrderRepo(db)
        self.quota_repo = QuotaRepo(db)
        self.user_quota_repo = UserQuotaRepo(db)
        self.record_repo = SecKillRecordRepo(db)
        self.stock_repo = SecKillStockRepo(db)
        self.pre_stock = PreStockStore(cache)
        self.messenger = SecKillMessenger(queue)

    def sec_kill_v1(self, user_id: int, goods_num: str, num: int) -> Reply:
        """Buy straight in the database; store failures yield an empty reply."""
        goods = self.goods_repo.find_by_num(goods_num)
        sec_num = self._new_id()
        try:
            order_num, code = self._sec_kill_in_store(goods, sec_num, user_id, num)
        except Exception as exc:
            logger.error("secKillInStore err %s", exc)
            return Reply()
        return Reply(code=int(code), message="", data={"order_num": order_num})

    def _pre_record(self, goods: Goods, sec_num: str, user_id: int) -> PreSecKillRecord:
        now = _now()
        return PreSecKillRecord(
            sec_num=sec_num,
            user_id=user_id,
            goods_id=goods.id,
            order_num="",
            price=goods.price,
            status=int(SecKillStatus.BEFORE_ORDER),
            create_time=now,
            modify_time=now,
        )

    def sec_kill_v2(self, user_id: int, goods_num: str, num: int) -> Reply:
        """Reserve in the cache first, then settle in the database at once.

        A cache refusal other than an attempt in progress comes back as a
        reply with code -10100 and the refusal as message.
        """
        goods = self.goods_repo.find_by_num_cached(goods_num)
        sec_num = self._new_id()
        record = self._pre_record(goods, sec_num, user_id)
        try:
            self.pre_stock.pre_desc_stock(user_id, goods.id, num, sec_num, record)
        except AlreadyInSecKill as exc:
            return Reply(message=f"{exc}:{exc.sec_num}")
        except SecKillError as exc:
            logger.error("Desc stock err %s", exc)
            return Reply(code=PRE_STOCK_FAILED, message=str(exc))
        order_num, code = self._sec_kill_in_store(goods, sec_num, user_id, num)
        record.order_num = order_num
        record.status = int(SecKillStatus.BEFORE_PAY)
        record.modify_time = _now()
        self.pre_stock.set_success(user_id, goods.id, sec_num, record)
        return Reply(code=int(code), data={"order_num": order_num})

    def sec_kill_v3(self, user_id: int, goods_num: str, num: int, trace_id: str = "") -> Reply:
        """Reserve in the cache and queue the settlement; reply with the attempt number."""
        goods = self.goods_repo.find_by_num(goods_num)
        sec_num = self._new_id()
        record = self._pre_record(goods, sec_num, user_id)
        try:
            self.pre_stock.pre_desc_stock(user_id, goods.id, num, sec_num, record)
        except AlreadyInSecKill as exc:
            return Reply(message=f"{exc}:{exc.sec_num}")
        except SecKillError as exc:
            logger.error("Desc stock err %s", exc)
            raise
        self.messenger.send(
            SeckillMessage(
                trace_id=trace_id,
                goods=goods,
                sec_num=sec_num,
                user_id=user_id,
                num=num,
            )
        )
        return Reply(data={"sec_num": sec_num})

    def _sec_kill_in_store(
        self, goods: Goods, sec_num: str, user_id: int, num: int
    ) -> Tuple[str, ErrorCode]:
        """Settle a purchase in one transaction; failures roll back and raise."""
        order_num = self._new_id()
        with self.db.transaction():
            user_quota_exists = True
            user_quota_num = 0
            user_killed_num = 0
            try:
                user_quota = self.user_quota_repo.find_user_goods_quota(user_id, goods.id)
            except NotFoundError:
                user_quota_exists = False
            except Exception as exc:
                logger.error("[%d] FindUserGoodsQuota err %s", ErrorCode.FIND_USER_QUOTA_FAILED, exc)
                raise
            else:
                user_quota_num = user_quota.num
                user_killed_num = user_quota.killed_num

            if user_quota_num == 0:
                try:
                    user_quota_num = self.quota_repo.find_by_goods_id(goods.id).num
                except NotFoundError:
                    pass
                except Exception as exc:
                    logger.error("[%d] FindByGoodsID err %s", ErrorCode.FIND_GOODS_FAILED, exc)
                    raise

            left_quota = user_quota_num - user_killed_num
            if left_quota < num:
                logger.info("user %d, goods %d, quota limit %d", user_id, goods.id, left_quota)
                return "", ErrorCode.USER_QUOTA_NOT_ENOUGH

            if not user_quota_exists:
                self.user_quota_repo.save(
                    UserQuota(user_id=user_id, goods_id=goods.id, killed_num=num)
                )
            else:
                self.user_quota_repo.incr_killed_num(user_id, goods.id, num)

            if self.stock_repo.desc_stock(goods.id, num) == 0:
                logger.info("goods %d stock not enough", goods.id)
                return "", ErrorCode.GOODS_STOCK_NOT_ENOUGH

            self.order_repo.save(
                Order(
                    order_num=order_num,
                    goods_id=goods.id,
                    price=goods.price,
                    buyer=user_id,
                    seller=goods.seller,
                    status=int(SecKillStatus.BEFORE_PAY),
                )
            )
            if not sec_num:
                sec_num = self._new_id()
            self.record_repo.save(
                SecKillRecord(
                    user_id=user_id,
                    goods_id=goods.id,
                    sec_num=sec_num,
                    order_num=order_num,
                    price=goods.price,
                    status=int(SecKillStatus.BEFORE_PAY),
                )
            )
        return order_num, ErrorCode.SUCCESS

    def get_sec_kill_info(self, sec_num: str) -> Reply:
        record = self.pre_stock.get_sec_kill_info(sec_num)
        return Reply(
            data={
                "status": record.status,
                "order_num": record.order_num,
                "sec_num": record.sec_num,
            }
        )

    def get_goods_list(self, offset: int, limit: int) -> Reply:
        goods_list = self.goods_repo.list(offset, limit)
        return Reply(data={"goods_list": [_goods_info(goods) for goods in goods_list]})

    def get_goods_info(self, goods_num: str) -> Reply:
        goods = self.goods_repo.find_by_num(goods_num)
        return Reply(data={"goods_info": _goods_info(goods)})

    def handle_message(self, raw: Union[str, bytes, bytearray]) -> None:
        """Settle one queued purchase and mark its cached attempt as awaiting payment."""
        logger.info("message is: %s", raw)
        message = self.messenger.decode(raw)
        if message.goods is None:
            raise ValueError("message carries no goods")
        order_num, _code = self._sec_kill_in_store(
            message.goods, message.sec_num, message.user_id, message.num
        )
        record = self.pre_stock.get_sec_kill_info(message.sec_num)
        record.order_num = order_num
        record.status = int(SecKillStatus.BEFORE_PAY)
        record.modify_time = _now()
        self.pre_stock.set_success(message.user_id, message.goods.id, message.sec_num, record)

    def consume(self) -> int:
        """Settle every queued purchase; return how many were handled."""
        return self.queue.consume(self.handle_message)