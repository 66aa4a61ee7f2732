from datetime import datetime, timezone

import pytest

from flashsale.kvstore import KeyValueStore
from flashsale.models import (
    Goods,
    Order,
    Quota,
    SecKillRecord,
    SecKillStatus,
    SecKillStock,
    UserQuota,
)
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


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def db():
    database = Database()
    yield database
    database.close()


def test_goods_save_assigns_id_and_round_trips(db):
    repo = GoodsRepo(db)
    created = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    goods = repo.save(
        Goods(goods_num="G1", goods_name="phone", price=9.5, pic_url="p.png", seller=7,
              create_time=created)
    )
    assert goods.id > 0
    found = repo.find_by_id(goods.id)
    assert found == goods
    assert found.create_time == created
    assert repo.find_by_num("G1") == goods


def test_goods_missing_raises(db):
    repo = GoodsRepo(db)
    with pytest.raises(NotFoundError):
        repo.find_by_id(1)
    with pytest.raises(NotFoundError):
        repo.find_by_num("nope")


def test_goods_list_offset_and_limit(db):
    repo = GoodsRepo(db)
    saved = [repo.save(Goods(goods_num=f"G{i}")) for i in range(5)]
    assert repo.list(0, 200) == saved
    assert repo.list(1, 2) == saved[1:3]
    assert repo.list(0, -1) == saved
    assert repo.list(10, 5) == []


def test_cached_lookup_stores_and_reads_cache(db):
    cache = KeyValueStore(FakeClock())
    repo = GoodsRepo(db, cache)
    goods = repo.save(Goods(goods_num="G1", goods_name="phone", price=3.0))
    assert repo.find_by_num_cached("G1") == goods
    assert cache.get("goodsInfo:G1") == goods.to_json()


def test_cached_lookup_prefers_cache(db):
    cache = KeyValueStore(FakeClock())
    cache.set("goodsInfo:X9", Goods(id=42, goods_num="X9", goods_name="cached").to_json())
    repo = GoodsRepo(db, cache)
    result = repo.find_by_num_cached("X9")
    assert result.goods_name == "cached"
    assert result.id == 42


def test_cached_lookup_falls_back_on_bad_cache_and_expiry(db):
    clock = FakeClock()
    cache = KeyValueStore(clock)
    repo = GoodsRepo(db, cache)
    goods = repo.save(Goods(goods_num="G1", goods_name="real"))
    cache.set("goodsInfo:G1", "not json")
    assert repo.find_by_num_cached("G1") == goods
    clock.now += 11
    assert cache.get("goodsInfo:G1") is None


def test_order_repo(db):
    repo = OrderRepo(db)
    order = repo.save(Order(order_num="O1", buyer=1, seller=2, goods_id=3, price=1.5,
                            status=int(SecKillStatus.BEFORE_PAY)))
    assert repo.find_by_id(order.id) == order
    assert repo.find_by_num("O1") == order
    with pytest.raises(NotFoundError):
        repo.find_by_num("O2")


def test_quota_repo(db):
    repo = QuotaRepo(db)
    quota = repo.save(Quota(num=3, goods_id=5))
    assert repo.find_by_goods_id(5) == quota
    with pytest.raises(NotFoundError):
        repo.find_by_goods_id(6)


def test_user_quota_incr(db):
    repo = UserQuotaRepo(db)
    repo.save(UserQuota(user_id=1, goods_id=2, num=5, killed_num=1))
    assert repo.incr_killed_num(1, 2, 2) == 1
    assert repo.find_user_goods_quota(1, 2).killed_num == 3
    assert repo.incr_killed_num(9, 2, 2) == 0
    with pytest.raises(NotFoundError):
        repo.find_user_goods_quota(9, 2)


def test_record_out_of_time(db):
    repo = SecKillRecordRepo(db)
    record = repo.save(SecKillRecord(sec_num="S1", user_id=1, goods_id=2, order_num="O1",
                                     status=int(SecKillStatus.BEFORE_PAY)))
    assert repo.out_of_time("O1") == 1
    assert repo.find_by_id(record.id).status == SecKillStatus.OOT
    assert repo.out_of_time("O1") == 0


def test_stock_desc_and_reback(db):
    repo = SecKillStockRepo(db)
    stock = repo.save(SecKillStock(goods_id=4, stock=3))
    assert repo.desc_stock(4, 2) == 1
    assert repo.find_by_id(stock.id).stock == 1
    assert repo.desc_stock(4, 2) == 0
    assert repo.find_by_id(stock.id).stock == 1
    assert repo.reback_stock(4, 2) == 1
    assert repo.find_by_id(stock.id).stock == 3


def test_transaction_rolls_back_on_error(db):
    repo = OrderRepo(db)
    with pytest.raises(RuntimeError):
        with db.transaction():
            repo.save(Order(order_num="O1"))
            raise RuntimeError("boom")
    with pytest.raises(NotFoundError):
        repo.find_by_num("O1")


def test_transaction_commits_and_nests(db):
    repo = OrderRepo(db)
    with db.transaction():
        repo.save(Order(order_num="O1"))
        with db.transaction():
            repo.save(Order(order_num="O2"))
    assert repo.find_by_num("O1").order_num == "O1"
    assert repo.find_by_num("O2").order_num == "O2"


def test_database_file_persists(tmp_path):
    path = tmp_path / "sale.db"
    with Database(path) as first:
        GoodsRepo(first).save(Goods(goods_num="G1"))
    with Database(path) as second:
        assert GoodsRepo(second).find_by_num("G1").goods_num == "G1"