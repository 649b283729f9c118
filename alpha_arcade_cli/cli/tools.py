"""离线计算类 CLI 子命令：手续费与撮合预览。"""

from __future__ import annotations

import asyncio
from typing import Optional

import click
from rich.table import Table

from ..services.fees import calculate_fee, calculate_fee_from_total
from ..services.matching import calculate_matching_orders
from ..services.orderbook import get_orderbook
from ..services.state import get_market_global_state
from ..services.trader import cap_matches, funding_amount, weighted_match_price
from . import main
from .common import build_clients, console, fmt_micro, load_settings, to_micro


@main.command("fee")
@click.option("--price", required=True, type=float, help="成交价（0-1）。")
@click.option("--quantity", type=float, default=None, help="份额数量。")
@click.option("--total", type=float, default=None, help="含手续费的总金额，反推其中的手续费。")
@click.option("--fee-base", default=0.07, show_default=True, type=float, help="手续费基数（0.07 = 7%）。")
def fee(price: float, quantity: Optional[float], total: Optional[float], fee_base: float) -> None:
    """计算给定价格下的 taker 手续费。"""
    if (quantity is None) == (total is None):
        raise click.UsageError("Pass exactly one of --quantity or --total")
    try:
        if quantity is not None:
            result = calculate_fee(to_micro(quantity), to_micro(price), to_micro(fee_base))
        else:
            result = calculate_fee_from_total(to_micro(total), to_micro(price), to_micro(fee_base))
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    if result is None:
        console.print("[yellow]Fee is undefined at price 0[/yellow]")
        return
    console.print(f"Fee: [bold]{fmt_micro(result, 6)}[/bold] USDC")


async def _match_preview(
    market_app_id: int,
    yes: bool,
    buying: bool,
    price: int,
    quantity: int,
    slippage: int,
) -> None:
    settings = load_settings()
    ledger, api = build_clients(settings)
    try:
        book = await get_orderbook(ledger, market_app_id)
        market = await get_market_global_state(ledger, market_app_id)
    finally:
        await asyncio.gather(ledger.close(), api.close())

    matches = cap_matches(calculate_matching_orders(book, buying, yes, quantity, price, slippage), quantity)
    if not matches:
        console.print("[yellow]No resting orders within the price limit[/yellow]")
        return

    table = Table(title="Match Preview", header_style="bold cyan")
    table.add_column("Escrow", justify="right")
    table.add_column("Owner", overflow="fold")
    table.add_column("Price", justify="right")
    table.add_column("Quantity", justify="right")
    for match in matches:
        table.add_row(str(match.escrow_app_id), match.owner, fmt_micro(match.price), fmt_micro(match.quantity, 2))
    console.print(table)

    matched = sum(m.quantity for m in matches)
    fee_base = market.fee_base_percent or 0
    console.print(f"Matched: {fmt_micro(matched, 2)} / {fmt_micro(quantity, 2)}")
    console.print(f"Avg price: {fmt_micro(weighted_match_price(matches))}")
    funding = funding_amount(quantity, price, slippage, fee_base, buying)
    unit = "USDC" if buying else f"{'YES' if yes else 'NO'} tokens"
    console.print(f"Escrow funding: {fmt_micro(funding, 6)} {unit}")


@main.command("match-preview")
@click.argument("market_app_id", type=int)
@click.option("--position", type=click.Choice(["yes", "no"], case_sensitive=False), required=True)
@click.option("--side", type=click.Choice(["buy", "sell"], case_sensitive=False), required=True)
@click.option("--price", required=True, type=float, help="限价（0-1）。")
@click.option("--quantity", required=True, type=float, help="份额数量。")
@click.option("--slippage", default=0.0, show_default=True, type=float, help="滑点容忍度（0-1）。")
def match_preview(
    market_app_id: int, position: str, side: str, price: float, quantity: float, slippage: float
) -> None:
    """预览市价单会与哪些挂单撮合（不提交交易）。"""
    asyncio.run(
        _match_preview(
            market_app_id=market_app_id,
            yes=position.lower() == "yes",
            buying=side.lower() == "buy",
            price=to_micro(price),
            quantity=to_micro(quantity),
            slippage=to_micro(slippage),
        )
    )
