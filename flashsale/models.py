"""Domain records of the flash-sale service and their JSON encoding."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Any, Callable, ClassVar, Dict, Mapping, Optional, Tuple, Union

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_TIME_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})?$"
)


class SecKillStatus(IntEnum):
    """Lifecycle of a flash-sale purchase."""

    BEFORE_ORDER = 1  # slot taken, order not yet created
    BEFORE_PAY = 2  # order created, awaiting payment
    PAYED = 3  # final: paid
    OOT = 4  # final: payment timed out
    CANCEL = 5  # final: cancelled by the buyer


def _format_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset()
    if offset is None:
        return text
    if offset == timedelta(0):
        return text + "Z"
    minutes = int(offset.total_seconds() // 60)
    sign = "+" if minutes >= 0 else "-"
    minutes = abs(minutes)
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _parse_time(value: Any, name: str) -> datetime:
    if not isinstance(value, str):
        raise ValueError(f"field {name} must be a time string, got {value!r}")
    match = _TIME_RE.match(value)
    if match is None:
        raise ValueError(f"field {name} is not a valid time: {value!r}")
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    micro = int((fraction or "")[:6].ljust(6, "0"))
    tz: Optional[timezone]
    if zone is None:
        tz = None
    elif zone == "Z":
        tz = timezone.utc
    else:
        sign = 1 if zone[0] == "+" else -1
        hours, minutes = zone[1:].split(":")
        tz = timezone(sign * timedelta(hours=int(hours), minutes=int(minutes)))
    try:
        return datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second), micro, tzinfo=tz
        )
    except ValueError as exc:
        raise ValueError(f"field {name} is not a valid time: {value!r}") from exc


def _parse_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field {name} must be an integer, got {value!r}")
    return value


def _parse_float(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"field {name} must be a number, got {value!r}")
    return float(value)


def _parse_str(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"field {name} must be a string, got {value!r}")
    return value


def _encode_float(value: float) -> Union[int, float]:
    return int(value) if float(value).is_integer() else value


_Spec = Dict[str, Tuple[str, Callable[[Any, str], Any]]]


def _decode_object(raw: Any, spec: _Spec) -> Dict[str, Any]:
    """Map a JSON object onto attribute values; keys match case-insensitively."""
    if not isinstance(raw, Mapping):
        raise ValueError(f"expected a JSON object, got {raw!r}")
    lowered = {str(key).lower(): value for key, value in raw.items()}
    values: Dict[str, Any] = {}
    for json_name, (attr, convert) in spec.items():
        value = lowered.get(json_name.lower())
        if value is not None:
            values[attr] = convert(value, json_name)
    return values


def _load(raw: Union[str, bytes, bytearray]) -> Any:
    return json.loads(raw)


def _dump(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


@dataclass
class Goods:
    id: int = 0
    goods_num: str = ""
    goods_name: str = ""
    price: float = 0.0
    pic_url: str = ""
    seller: int = 0
    create_time: Optional[datetime] = None
    modify_time: Optional[datetime] = None

    table_name: ClassVar[str] = "t_goods"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ID": self.id,
            "GoodsNum": self.goods_num,
            "GoodsName": self.goods_name,
            "Price": _encode_float(self.price),
            "PicUrl": self.pic_url,
            "Seller": self.seller,
            "CreateTime": _format_time(self.create_time),
            "ModifyTime": _format_time(self.modify_time),
        }

    def to_json(self) -> str:
        return _dump(self.to_dict())


_GOODS_SPEC: _Spec = {
    "ID": ("id", _parse_int),
    "GoodsNum": ("goods_num", _parse_str),
    "GoodsName": ("goods_name", _parse_str),
    "Price": ("price", _parse_float),
    "PicUrl": ("pic_url", _parse_str),
    "Seller": ("seller", _parse_int),
    "CreateTime": ("create_time", _parse_time),
    "ModifyTime": ("modify_time", _parse_time),
}


def _goods_from_obj(obj: Any) -> Goods:
    return Goods(**_decode_object(obj, _GOODS_SPEC))


def goods_from_json(raw: Union[str, bytes, bytearray]) -> Goods:
    """Decode goods from JSON; raises ValueError on malformed input."""
    obj = _load(raw)
    return Goods() if obj is None else _goods_from_obj(obj)


@dataclass
class Order:
    id: int = 0
    seller: int = 0
    buyer: int = 0
    order_num: str = ""
    goods_id: int = 0
    goods_num: str = ""
    price: float = 0.0
    status: int = 0
    create_time: Optional[datetime] = None
    modify_time: Optional[datetime] = None

    table_name: ClassVar[str] = "t_order"


@dataclass
class Quota:
    """Global per-goods purchase limit."""

    id: int = 0
    num: int = 0
    goods_id: int = 0
    create_time: Optional[datetime] = None
    modify_time: Optional[datetime] = None

    table_name: ClassVar[str] = "t_quota"


@dataclass
class UserQuota:
    """A user's purchase limit for one goods and how many they already bought."""

    id: int = 0
    num: int = 0
    killed_num: int = 0
    user_id: int = 0
    goods_id: int = 0
    create_time: Optional[datetime] = None
    modify_time: Optional[datetime] = None

    table_name: ClassVar[str] = "t_user_quota"


@dataclass
class SecKillRecord:
    id: int = 0
    sec_num: str = ""
    user_id: int = 0
    goods_id: int = 0
    order_num: str = ""
    price: float = 0.0
    status: int = 0
    create_time: Optional[datetime] = None
    modify_time: Optional[datetime] = None

    table_name: ClassVar[str] = "t_seckill_record"


@dataclass
class SecKillStock:
    id: int = 0
    goods_id: int = 0
    stock: int = 0
    create_time: Optional[datetime] = None
    modify_time: Optional[datetime] = None

    table_name: ClassVar[str] = "t_seckill_stock"


@dataclass
class PreSecKillRecord:
    """A flash-sale attempt as kept in the cache, keyed by ``sec_num``."""

    sec_num: str = ""
    user_id: int = 0
    goods_id: int = 0
    order_num: str = ""
    price: float = 0.0
    status: int = 0
    create_time: datetime = field(default=ZERO_TIME)
    modify_time: datetime = field(default=ZERO_TIME)

    def to_json(self) -> str:
        return _dump(
            {
                "SecNum": self.sec_num,
                "UserID": self.user_id,
                "GoodsID": self.goods_id,
                "OrderNum": self.order_num,
                "Price": _encode_float(self.price),
                "Status": self.status,
                "CreateTime": _format_time(self.create_time),
                "ModifyTime": _format_time(self.modify_time),
            }
        )


_PRE_RECORD_SPEC: _Spec = {
    "SecNum": ("sec_num", _parse_str),
    "UserID": ("user_id", _parse_int),
    "GoodsID": ("goods_id", _parse_int),
    "OrderNum": ("order_num", _parse_str),
    "Price": ("price", _parse_float),
    "Status": ("status", _parse_int),
    "CreateTime": ("create_time", _parse_time),
    "ModifyTime": ("modify_time", _parse_time),
}


def pre_record_from_json(raw: Union[str, bytes, bytearray]) -> PreSecKillRecord:
    """Decode a cached attempt record; raises ValueError on malformed input."""
    obj = _load(raw)
    if obj is None:
        return PreSecKillRecord()
    return PreSecKillRecord(**_decode_object(obj, _PRE_RECORD_SPEC))


@dataclass
class SeckillMessage:
    """The queued request to settle a flash-sale purchase in the database."""

    trace_id: str = ""
    goods: Optional[Goods] = None
    sec_num: str = ""
    user_id: int = 0
    num: int = 0

    def to_json(self) -> str:
        return _dump(
            {
                "TraceID": self.trace_id,
                "Goods": None if self.goods is None else self.goods.to_dict(),
                "SecNum": self.sec_num,
                "UserID": self.user_id,
                "Num": self.num,
            }
        )


_MESSAGE_SPEC: _Spec = {
    "TraceID": ("trace_id", _parse_str),
    "Goods": ("goods", lambda value, _name: _goods_from_obj(value)),
    "SecNum": ("sec_num", _parse_str),
    "UserID": ("user_id", _parse_int),
    "Num": ("num", _parse_int),
}


def message_from_json(raw: Union[str, bytes, bytearray]) -> SeckillMessage:
    """Decode a queued message; raises ValueError on malformed input."""
    obj = _load(raw)
    if obj is None:
        return SeckillMessage()
    return SeckillMessage(**_decode_object(obj, _MESSAGE_SPEC))