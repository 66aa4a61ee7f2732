from datetime import datetime, timezone

import pytest

from flashsale.kvstore import KeyValueStore
from flashsale.models import PreSecKillRecord, SecKillStatus
from flashsale.pre_stock import (
    AlreadyInSecKill,
    PreStockStore,
    SecKillError,
    SoldOut,
    StockNotEnough,
    UserGoodsOutOfLimit,
    error_for_code,
)

WHEN = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def make_record(sec_num, user_id=1, goods_id=7, status=SecKillStatus.BEFORE_ORDER):
    return PreSecKillRecord(
        sec_num=sec_num,
        user_id=user_id,
        goods_id=goods_id,
        price=9.5,
        status=int(status),
        create_time=WHEN,
        modify_time=WHEN,
    )


@pytest.fixture
def store():
    return KeyValueStore()


@pytest.fixture
def pre(store):
    return PreStockStore(store)


def test_error_for_code_maps_codes():
    assert isinstance(error_for_code(-1), AlreadyInSecKill)
    assert isinstance(error_for_code(-2), UserGoodsOutOfLimit)
    assert isinstance(error_for_code(-3), StockNotEnough)
    assert isinstance(error_for_code(-4), SoldOut)
    assert error_for_code(0) is None


def test_error_messages_match_source():
    assert str(error_for_code(-1)) == "already in sec kill"
    assert str(error_for_code(-2)) == "user out of limit on this goods"
    assert str(error_for_code(-3)) == "stock not enough"
    assert str(error_for_code(-4)) == "killed out"
    assert all(isinstance(error_for_code(c), SecKillError) for c in (-1, -2, -3, -4))


def test_pre_desc_stock_reserves_and_stores_record(pre, store):
    pre.set_stock(7, 5)
    record = make_record("sec-a")
    assert pre.pre_desc_stock(1, 7, 2, "sec-a", record) == "sec-a"
    assert int(store.get("SK:Stock:7")) == 5 - 2
    assert pre.get_sec_kill_info("sec-a") == record


def test_second_attempt_reports_running_sec_num(pre):
    pre.set_stock(7, 5)
    pre.pre_desc_stock(1, 7, 1, "sec-a", make_record("sec-a"))
    with pytest.raises(AlreadyInSecKill) as info:
        pre.pre_desc_stock(1, 7, 1, "sec-b", make_record("sec-b"))
    assert info.value.sec_num == "sec-a"


def test_missing_stock_is_not_enough(pre):
    with pytest.raises(StockNotEnough):
        pre.pre_desc_stock(1, 7, 1, "sec-a", make_record("sec-a"))


def test_insufficient_stock_leaves_stock_untouched(pre, store):
    pre.set_stock(7, 1)
    with pytest.raises(StockNotEnough):
        pre.pre_desc_stock(1, 7, 2, "sec-a", make_record("sec-a"))
    assert store.get("SK:Stock:7") == "1"
    assert pre.get_sec_kill_info("sec-a") == PreSecKillRecord()


def test_user_limit_is_enforced_after_success(pre):
    pre.set_stock(7, 10)
    pre.set_limit(7, 2)
    pre.pre_desc_stock(1, 7, 2, "sec-a", make_record("sec-a"))
    pre.set_success(1, 7, "sec-a", make_record("sec-a", status=SecKillStatus.BEFORE_PAY))
    with pytest.raises(UserGoodsOutOfLimit):
        pre.pre_desc_stock(1, 7, 1, "sec-b", make_record("sec-b"))


def test_limit_ignored_for_first_purchase(pre, store):
    pre.set_stock(7, 10)
    pre.set_limit(7, 1)
    assert pre.pre_desc_stock(3, 7, 2, "sec-c", make_record("sec-c", user_id=3)) == "sec-c"
    assert int(store.get("SK:UserSecKilledNum:3:7")) == 2


def test_set_success_clears_in_progress_and_updates_record(pre, store):
    pre.set_stock(7, 10)
    pre.pre_desc_stock(1, 7, 1, "sec-a", make_record("sec-a"))
    final = make_record("sec-a", status=SecKillStatus.BEFORE_PAY)
    final.order_num = "order-1"
    assert pre.set_success(1, 7, "sec-a", final) == "sec-a"
    assert store.get("SK:UserGoodsSecNum:1:7") == ""
    assert pre.get_sec_kill_info("sec-a") == final
    assert pre.pre_desc_stock(1, 7, 1, "sec-b", make_record("sec-b")) == "sec-b"


def test_get_sec_kill_info_missing_returns_empty(pre):
    assert pre.get_sec_kill_info("nothing") == PreSecKillRecord()


def test_get_sec_kill_info_malformed_raises(pre, store):
    store.set("sec-bad", "{not json")
    with pytest.raises(ValueError):
        pre.get_sec_kill_info("sec-bad")