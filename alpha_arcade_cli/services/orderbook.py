"""链上托管单 -> 盘口 / 未完成订单的投影。

市场合约创建的每个 app 都是一个托管单。这里只做纯投影：
公开盘口只包含有剩余量的限价单（slippage == 0），按
(position, side) 分到四个桶；钱包视图不限制 slippage。
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Iterable, List, Optional

import structlog
from algosdk.logic import get_application_address

from ..clients.ledger import LedgerClient, list_all_created_applications
from ..types import (
    AggregatedOrderbook,
    AggregatedOrderbookEntry,
    AggregatedOrderbookSide,
    EscrowGlobalState,
    EscrowRecord,
    OpenOrder,
    Orderbook,
    OrderbookEntry,
    OrderbookSide,
    OrderSide,
    Position,
)
from .state import get_escrow_global_state

logger = structlog.get_logger("services.orderbook")


def _is_complete(state: EscrowGlobalState) -> bool:
    """订单字段齐全且取值合法；缺失或类型错误的字段在解码时已变为 None。"""
    if None in (state.position, state.side, state.price, state.quantity) or not state.owner:
        return False
    return state.position in (Position.NO, Position.YES) and state.side in (OrderSide.SELL, OrderSide.BUY)


def _has_remaining(state: EscrowGlobalState) -> bool:
    return state.quantity > (state.quantity_filled or 0)


def _is_open_limit_order(state: EscrowGlobalState) -> bool:
    return _is_complete(state) and _has_remaining(state) and state.slippage == 0


def _to_entry(record: EscrowRecord) -> OrderbookEntry:
    state = record.state
    return OrderbookEntry(
        price=state.price,
        quantity=state.quantity - (state.quantity_filled or 0),
        escrow_app_id=record.app_id,
        owner=state.owner,
    )


def project_orderbook(records: Iterable[EscrowRecord]) -> Orderbook:
    """将托管单记录投影为 YES/NO 双边盘口。

    Args:
        records: 已解码的托管单记录。

    Returns:
        仅包含有剩余量限价单的 `Orderbook`，条目顺序与输入一致。
    """
    buckets: dict[tuple[int, int], List[OrderbookEntry]] = {
        (Position.YES, OrderSide.BUY): [],
        (Position.YES, OrderSide.SELL): [],
        (Position.NO, OrderSide.BUY): [],
        (Position.NO, OrderSide.SELL): [],
    }
    for record in records:
        state = record.state
        if record.app_id <= 0 or not _is_open_limit_order(state):
            continue
        bucket = buckets.get((state.position, state.side))
        if bucket is not None:
            bucket.append(_to_entry(record))

    return Orderbook(
        yes=OrderbookSide(
            bids=buckets[(Position.YES, OrderSide.BUY)],
            asks=buckets[(Position.YES, OrderSide.SELL)],
        ),
        no=OrderbookSide(
            bids=buckets[(Position.NO, OrderSide.BUY)],
            asks=buckets[(Position.NO, OrderSide.SELL)],
        ),
    )


def project_open_orders(records: Iterable[EscrowRecord], market_app_id: int, wallet: str) -> List[OpenOrder]:
    """筛选钱包在该市场上仍有剩余量的订单（含市价单）。"""
    orders: List[OpenOrder] = []
    for record in records:
        state = record.state
        if record.app_id <= 0 or state.owner != wallet:
            continue
        if not _is_complete(state) or not _has_remaining(state):
            continue
        orders.append(
            OpenOrder(
                escrow_app_id=record.app_id,
                market_app_id=market_app_id,
                position=Position(state.position),
                side=OrderSide(state.side),
                price=state.price,
                quantity=state.quantity,
                quantity_filled=state.quantity_filled or 0,
                slippage=state.slippage or 0,
                owner=state.owner,
            )
        )
    return orders


def _aggregate(entries: Iterable[OrderbookEntry], descending: bool) -> List[AggregatedOrderbookEntry]:
    quantities: dict[int, int] = defaultdict(int)
    counts: dict[int, int] = defaultdict(int)
    for entry in entries:
        quantities[entry.price] += entry.quantity
        counts[entry.price] += 1
    return [
        AggregatedOrderbookEntry(price=price, quantity=quantities[price], order_count=counts[price])
        for price in sorted(quantities, reverse=descending)
    ]


def aggregate_orderbook(book: Orderbook) -> AggregatedOrderbook:
    """按价格档聚合盘口：bids 从高到低，asks 从低到高。"""
    return AggregatedOrderbook(
        yes=AggregatedOrderbookSide(bids=_aggregate(book.yes.bids, True), asks=_aggregate(book.yes.asks, False)),
        no=AggregatedOrderbookSide(bids=_aggregate(book.no.bids, True), asks=_aggregate(book.no.asks, False)),
    )


async def _fetch_record(ledger: LedgerClient, app: dict[str, Any]) -> Optional[EscrowRecord]:
    try:
        app_id = int(app["id"])
        state = await get_escrow_global_state(ledger, app_id)
    except Exception as exc:  # noqa: BLE001
        # 单个托管单读取失败不影响整本盘口
        logger.debug("orderbook.escrow_skipped", app_id=app.get("id"), error=str(exc))
        return None
    return EscrowRecord(app_id=app_id, state=state)


async def fetch_escrow_records(ledger: LedgerClient, market_app_id: int) -> List[EscrowRecord]:
    """读取市场合约创建的全部托管单并解码其状态。

    Args:
        ledger: 账本客户端。
        market_app_id: 市场合约 app ID。

    Returns:
        成功解码的托管单记录列表。
    """
    market_address = get_application_address(market_app_id)
    applications = await list_all_created_applications(ledger, market_address)
    records = await asyncio.gather(*(_fetch_record(ledger, app) for app in applications))
    result = [r for r in records if r is not None]
    logger.debug(
        "orderbook.escrows_fetched",
        market_app_id=market_app_id,
        listed=len(applications),
        decoded=len(result),
    )
    return result


async def get_orderbook(ledger: LedgerClient, market_app_id: int) -> Orderbook:
    """获取市场的链上盘口。"""
    return project_orderbook(await fetch_escrow_records(ledger, market_app_id))


async def get_open_orders(ledger: LedgerClient, market_app_id: int, wallet: str) -> List[OpenOrder]:
    """获取钱包在市场上的未完成订单。"""
    return project_open_orders(await fetch_escrow_records(ledger, market_app_id), market_app_id, wallet)
