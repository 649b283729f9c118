"""链上 global-state 解码。

algod / indexer 返回的 global-state 为 ``[{key, value: {type, bytes, uint}}]``
列表，key 与 bytes 均为 base64。这里先解码为通用字典，再按合约
类型收敛为封闭的数据类：未知 key 忽略，类型不符的值丢弃。
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import fields
from typing import Any, Iterable, Type, TypeVar, Union

from algosdk import encoding

from ..clients.ledger import LedgerClient
from ..types import EscrowGlobalState, MarketGlobalState

StateValue = Union[int, str]
T = TypeVar("T", EscrowGlobalState, MarketGlobalState)

# 这些 key 的字节值是 32 字节公钥，需要编码为 Algorand 地址
ADDRESS_KEYS = frozenset(
    {"owner", "oracle_address", "fee_address", "market_friend_addr", "escrow_cancel_address"}
)

_TEAL_BYTES = 1
_TEAL_UINT = 2

# 以文本形式存储的字段，其余字段均为 uint
_TEXT_FIELDS = ADDRESS_KEYS | {"title", "rules"}


def _decode_bytes_value(key: str, raw: str) -> StateValue:
    data = base64.b64decode(raw)
    if key in ADDRESS_KEYS:
        if len(data) != 32:
            raise ValueError(f"{key} is not a 32-byte address")
        return encoding.encode_address(data)
    return data.decode("utf-8")


def decode_global_state(raw_state: Iterable[dict[str, Any]]) -> dict[str, StateValue]:
    """将原始 global-state 列表解码为 ``key -> int | str`` 字典。

    Args:
        raw_state: algod/indexer 返回的 global-state 列表。

    Returns:
        解码后的字典；无法解码的条目被跳过。
    """
    state: dict[str, StateValue] = {}
    for item in raw_state:
        try:
            key = base64.b64decode(item["key"]).decode("utf-8")
            value = item["value"]
            if value.get("type") == _TEAL_BYTES:
                state[key] = _decode_bytes_value(key, value.get("bytes", ""))
            elif value.get("type") == _TEAL_UINT:
                state[key] = int(value.get("uint", 0))
        except (KeyError, TypeError, ValueError, binascii.Error, UnicodeDecodeError):
            continue
    return state


def _to_record(cls: Type[T], state: dict[str, StateValue]) -> T:
    values: dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in state:
            continue
        value = state[f.name]
        expected = str if f.name in _TEXT_FIELDS else int
        if isinstance(value, expected) and not isinstance(value, bool):
            values[f.name] = value
    return cls(**values)


def decode_escrow_state(raw_state: Iterable[dict[str, Any]]) -> EscrowGlobalState:
    return _to_record(EscrowGlobalState, decode_global_state(raw_state))


def decode_market_state(raw_state: Iterable[dict[str, Any]]) -> MarketGlobalState:
    return _to_record(MarketGlobalState, decode_global_state(raw_state))


async def get_market_global_state(ledger: LedgerClient, market_app_id: int) -> MarketGlobalState:
    """从链上读取并解码市场合约状态。"""
    return decode_market_state(await ledger.get_application_state(market_app_id))


async def get_escrow_global_state(ledger: LedgerClient, escrow_app_id: int) -> EscrowGlobalState:
    return decode_escrow_state(await ledger.get_application_state(escrow_app_id))


async def get_asset_balance(ledger: LedgerClient, address: str, asset_id: int) -> int:
    """返回账户某 ASA 余额；未 opt-in 时为 0。"""
    for holding in await ledger.get_account_assets(address):
        if holding.asset_id == asset_id:
            return holding.amount
    return 0


async def check_asset_opt_in(ledger: LedgerClient, address: str, asset_id: int) -> bool:
    """检查账户是否已 opt-in 某 ASA，查询失败视为未 opt-in。"""
    try:
        holdings = await ledger.get_account_assets(address)
    except Exception:
        return False
    return any(h.asset_id == asset_id for h in holdings)
