"""市场相关 CLI 子命令。

包含：

- 市场列表（API 或链上发现）；
- 单市场聚合盘口。
"""

from __future__ import annotations

import asyncio

import click

from ..services.markets import get_markets_onchain
from ..services.orderbook import aggregate_orderbook, get_orderbook
from . import main
from .common import build_clients, console, load_settings, print_markets, print_orderbook_side


async def _list_markets(limit: int, onchain: bool, include_inactive: bool) -> None:
    """列出市场；有 API key 且未指定 ``--onchain`` 时走 partners API。

    Args:
        limit: 最多展示的市场数量。
        onchain: 强制链上发现。
        include_inactive: 链上发现时包含已结算/未激活的市场。
    """
    settings = load_settings()
    ledger, api = build_clients(settings)
    try:
        if api.has_api_key and not onchain:
            rows = await api.list_live_markets()
        else:
            rows = await get_markets_onchain(
                ledger,
                settings.market_creator_address,
                active_only=not include_inactive,
            )
        if not rows:
            console.print("[yellow]No markets found[/yellow]")
            return
        print_markets(rows[:limit])
    finally:
        await asyncio.gather(ledger.close(), api.close())


async def _show_orderbook(market_app_id: int, depth: int) -> None:
    settings = load_settings()
    ledger, api = build_clients(settings)
    try:
        book = await get_orderbook(ledger, market_app_id)
        if book.is_empty():
            console.print(f"[yellow]No open limit orders on market {market_app_id}[/yellow]")
            return
        aggregated = aggregate_orderbook(book)
        print_orderbook_side("YES", aggregated.yes, depth)
        print_orderbook_side("NO", aggregated.no, depth)
    finally:
        await asyncio.gather(ledger.close(), api.close())


@main.command("markets")
@click.option("--limit", default=20, show_default=True, type=int, help="Max markets to show.")
@click.option("--onchain", is_flag=True, default=False, help="忽略 API key，直接从链上发现市场。")
@click.option("--all", "include_inactive", is_flag=True, default=False, help="链上发现时包含非活跃市场。")
def markets(limit: int, onchain: bool, include_inactive: bool) -> None:
    """显示可交易市场列表，多选市场按父标题归并。"""
    asyncio.run(_list_markets(limit=limit, onchain=onchain, include_inactive=include_inactive))


@main.command("orderbook")
@click.argument("market_app_id", type=int)
@click.option("--depth", default=10, show_default=True, type=int, help="每侧展示的档位数。")
def orderbook(market_app_id: int, depth: int) -> None:
    """显示某市场 YES/NO 两侧的聚合盘口。"""
    asyncio.run(_show_orderbook(market_app_id=market_app_id, depth=depth))
