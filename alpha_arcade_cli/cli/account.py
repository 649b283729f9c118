"""账户相关 CLI 子命令：未完成订单与持仓。"""

from __future__ import annotations

import asyncio
from typing import Optional

import click

from ..services.orderbook import get_open_orders
from ..services.positions import get_positions
from . import main
from .common import build_clients, console, load_settings, print_open_orders, print_positions, resolve_wallet


async def _show_orders(market_app_id: int, wallet: Optional[str]) -> None:
    settings = load_settings()
    address = resolve_wallet(settings, wallet)
    ledger, api = build_clients(settings)
    try:
        orders = await get_open_orders(ledger, market_app_id, address)
        if not orders:
            console.print(f"[yellow]No open orders for {address} on market {market_app_id}[/yellow]")
            return
        print_open_orders(orders)
    finally:
        await asyncio.gather(ledger.close(), api.close())


async def _show_positions(wallet: Optional[str]) -> None:
    settings = load_settings()
    address = resolve_wallet(settings, wallet)
    ledger, api = build_clients(settings)
    try:
        positions = await get_positions(ledger, address)
        if not positions:
            console.print(f"[yellow]No outcome-token positions for {address}[/yellow]")
            return
        print_positions(positions)
    finally:
        await asyncio.gather(ledger.close(), api.close())


@main.command("orders")
@click.argument("market_app_id", type=int)
@click.option("--wallet", default=None, help="钱包地址，默认取 ACTIVE_ADDRESS。")
def orders(market_app_id: int, wallet: Optional[str]) -> None:
    """显示钱包在某市场上的未完成订单（含市价单残量）。"""
    asyncio.run(_show_orders(market_app_id=market_app_id, wallet=wallet))


@main.command("positions")
@click.option("--wallet", default=None, help="钱包地址，默认取 ACTIVE_ADDRESS。")
def positions(wallet: Optional[str]) -> None:
    """显示钱包持有的 YES/NO 代币余额。"""
    asyncio.run(_show_positions(wallet=wallet))
