"""市场发现：链上（无需 API key）或 partners API。"""

from __future__ import annotations

import time
from typing import Any, Dict, Iterable, List, Optional

import structlog

from ..clients.ledger import LedgerClient, list_all_created_applications
from ..context import TradingContext
from ..types import Market, MarketGlobalState, MarketOption, MarketSource
from .state import decode_market_state, get_market_global_state

logger = structlog.get_logger("services.markets")

# 多选市场标题格式："父标题 : 选项名"
OPTION_SEPARATOR = " : "
GROUP_ID_PREFIX = "group:"


def _market_from_state(app_id: int, state: MarketGlobalState) -> Market:
    return Market(
        id=str(app_id),
        title=state.title or "",
        market_app_id=app_id,
        yes_asset_id=state.yes_asset_id or 0,
        no_asset_id=state.no_asset_id or 0,
        end_ts=state.resolution_time or 0,
        is_resolved=bool(state.is_resolved),
        is_live=bool(state.is_activated) and not state.is_resolved,
        fee_base=state.fee_base_percent,
        source=MarketSource.ONCHAIN,
    )


def _is_tradeable(state: MarketGlobalState, now: int) -> bool:
    if not state.is_activated or state.is_resolved:
        return False
    return not (state.resolution_time and state.resolution_time < now)


def group_multi_choice_markets(markets: Iterable[Market]) -> List[Market]:
    """把 "父标题 : 选项" 形式的市场归并到同一个父市场下。

    父市场 ID 为 ``group:<父标题>``，app ID 与时间等元数据取第一个选项；
    二元市场原样保留，输出顺序为首次出现的顺序。
    """
    result: List[Market] = []
    parents: Dict[str, Market] = {}
    for market in markets:
        head, sep, tail = market.title.rpartition(OPTION_SEPARATOR)
        if not sep:
            result.append(market)
            continue
        parent_title = head.strip()
        parent = parents.get(parent_title)
        if parent is None:
            parent = Market(
                id=f"{GROUP_ID_PREFIX}{parent_title}",
                title=parent_title,
                market_app_id=market.market_app_id,
                yes_asset_id=0,
                no_asset_id=0,
                end_ts=market.end_ts,
                is_resolved=market.is_resolved,
                is_live=market.is_live,
                fee_base=market.fee_base,
                source=market.source,
                options=[],
            )
            parents[parent_title] = parent
            result.append(parent)
        parent.options.append(
            MarketOption(
                id=market.id,
                title=tail.strip(),
                market_app_id=market.market_app_id,
                yes_asset_id=market.yes_asset_id,
                no_asset_id=market.no_asset_id,
            )
        )
    return result


def _global_state(app: dict[str, Any]) -> Optional[list]:
    return (app.get("params") or {}).get("global-state")


async def get_markets_onchain(
    ledger: LedgerClient,
    creator_address: str,
    *,
    active_only: bool = True,
    now: Optional[int] = None,
) -> List[Market]:
    """从市场创建者地址发现全部市场。

    Args:
        ledger: 账本客户端。
        creator_address: 市场创建者地址。
        active_only: 只保留已激活、未结算且未过结算时间的市场。
        now: 当前 Unix 秒，默认取系统时间。

    Returns:
        归并多选后的 `Market` 列表。
    """
    now = int(time.time()) if now is None else now
    flat: List[Market] = []
    for app in await list_all_created_applications(ledger, creator_address):
        raw_state = _global_state(app)
        if not raw_state:
            continue
        state = decode_market_state(raw_state)
        if active_only and not _is_tradeable(state, now):
            continue
        flat.append(_market_from_state(int(app["id"]), state))
    logger.debug("markets.onchain_loaded", creator=creator_address, count=len(flat))
    return group_multi_choice_markets(flat)


async def get_market_onchain(ledger: LedgerClient, market_app_id: int | str) -> Optional[Market]:
    """按 app ID 读取单个链上市场，读取失败返回 None。"""
    try:
        app_id = int(market_app_id)
        state = await get_market_global_state(ledger, app_id)
    except Exception as exc:  # noqa: BLE001
        logger.debug("markets.onchain_missing", market_app_id=market_app_id, error=str(exc))
        return None
    return _market_from_state(app_id, state)


async def get_markets(ctx: TradingContext) -> List[Market]:
    """有 API key 时走 partners API，否则链上发现。"""
    if ctx.api is not None and ctx.api.has_api_key:
        return await ctx.api.list_live_markets()
    return await get_markets_onchain(ctx.ledger, ctx.market_creator_address)


async def get_market(ctx: TradingContext, market_id: str) -> Optional[Market]:
    if ctx.api is not None and ctx.api.has_api_key:
        return await ctx.api.get_market(market_id)
    return await get_market_onchain(ctx.ledger, market_id)
