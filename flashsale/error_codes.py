"""Result codes of the flash-sale service and their descriptions."""

from __future__ import annotations

from enum import IntEnum


class ErrorCode(IntEnum):
    SUCCESS = 0
    INPUT_INVALID = 8020
    SHOULD_BIND = 8021
    JSON_MARSHAL = 8022
    FIND_GOODS_FAILED = 8101
    GOODS_STOCK_NOT_ENOUGH = 8102
    CREATE_ORDER_FAILED = 8103
    CREATE_SECKILL_RECORD_FAILED = 8104
    RECORD_USER_KILLED_NUM_FAILED = 8105
    DESC_STOCK_FAILED = 8106
    CREATE_USER_QUOTA_FAILED = 8107
    USER_QUOTA_NOT_ENOUGH = 8108
    FIND_USER_QUOTA_FAILED = 8109


_MESSAGES = {
    ErrorCode.SUCCESS: "success",
    ErrorCode.INPUT_INVALID: "input invalid",
    ErrorCode.SHOULD_BIND: "should bind failed",
    ErrorCode.JSON_MARSHAL: "json marshal failed",
    ErrorCode.FIND_GOODS_FAILED: "商品查询失败",
    ErrorCode.GOODS_STOCK_NOT_ENOUGH: "商品库存不足",
    ErrorCode.CREATE_ORDER_FAILED: "订单创建失败",
    ErrorCode.CREATE_SECKILL_RECORD_FAILED: "秒杀记录创建失败",
    ErrorCode.RECORD_USER_KILLED_NUM_FAILED: "记录用户已经秒杀到的名额数失败",
    ErrorCode.DESC_STOCK_FAILED: "库存扣减失败",
    ErrorCode.CREATE_USER_QUOTA_FAILED: "插入用户限额记录失败",
    ErrorCode.USER_QUOTA_NOT_ENOUGH: "用户额度不足",
    ErrorCode.FIND_USER_QUOTA_FAILED: "查询用户额度失败",
}


def get_err_msg(code: int) -> str:
    """Describe a result code; unknown codes get a generic description."""
    message = _MESSAGES.get(code)
    if message is not None:
        return message
    return f"unknown error code {int(code)}"