"""CLI 通用工具与共享对象。

本模块提供：

- 统一的 Rich `console` 实例；
- 配置加载与客户端构建辅助函数；
- 微单位格式化；
- 各子命令复用的表格渲染函数。
"""

from __future__ import annotations

from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from ..clients.algorand import AlgorandClient
from ..clients.alpha_api import AlphaApiClient
from ..clients.submitter import build_submitter
from ..config import Settings
from ..log import configure_logging
from ..types import MICROUNITS, AggregatedOrderbookSide, Market, OpenOrder, WalletPosition

console = Console()


def load_settings() -> Settings:
    """加载配置并按配置的级别初始化日志。"""
    settings = Settings.load()
    configure_logging(settings.log_level)
    return settings


def build_clients(settings: Settings) -> tuple[AlgorandClient, AlphaApiClient]:
    """根据配置构建账本客户端与 partners API 客户端。

    配置了 ``signer_mnemonic`` 时账本客户端带有交易组提交器，否则只读。

    Args:
        settings: 全局配置对象。

    Returns:
        ``(AlgorandClient, AlphaApiClient)`` 二元组。
    """
    return AlgorandClient(settings, build_submitter(settings)), AlphaApiClient(settings)


def resolve_wallet(settings: Settings, wallet: Optional[str]) -> str:
    """取 ``--wallet`` 参数，未提供时回退到配置的 ``active_address``。

    Raises:
        click.BadParameter: 两者都为空。
    """
    address = wallet or settings.active_address
    if not address:
        raise click.BadParameter("Pass --wallet or set ACTIVE_ADDRESS", param_hint="--wallet")
    return address


def to_micro(value: float) -> int:
    """把 0.55 / 12.5 这样的十进制数转换为微单位整数。"""
    return int(round(value * MICROUNITS))


def fmt_micro(value: Optional[int], digits: int = 4) -> str:
    if value is None:
        return "-"
    return f"{value / MICROUNITS:.{digits}f}"


def print_markets(markets: list[Market]) -> None:
    table = Table(title="Markets", header_style="bold cyan", row_styles=["dim", ""])
    table.add_column("ID", overflow="fold")
    table.add_column("App ID", justify="right")
    table.add_column("Title", overflow="fold")
    table.add_column("Options", justify="right")
    table.add_column("Fee base", justify="right")
    table.add_column("Source")
    for market in markets:
        table.add_row(
            market.id,
            str(market.market_app_id),
            market.title,
            str(len(market.options)) if market.options else "-",
            fmt_micro(market.fee_base),
            market.source.value,
        )
    console.print(table)


def print_orderbook_side(label: str, side: AggregatedOrderbookSide, depth: int) -> None:
    """打印单个 outcome（YES/NO）的聚合盘口。

    Args:
        label: 标签名称（YES/NO）。
        side: 聚合后的买卖档位。
        depth: 每侧展示的最大档位数。
    """
    table = Table(title=f"{label} Orderbook", header_style="bold cyan")
    table.add_column("Side", style="yellow")
    table.add_column("Price", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Orders", justify="right")
    for level in side.asks[:depth]:
        table.add_row("ASK", fmt_micro(level.price), fmt_micro(level.quantity, 2), str(level.order_count))
    for level in side.bids[:depth]:
        table.add_row("BID", fmt_micro(level.price), fmt_micro(level.quantity, 2), str(level.order_count))
    console.print(table)


def print_open_orders(orders: list[OpenOrder]) -> None:
    table = Table(title="Open Orders", header_style="bold cyan")
    table.add_column("Escrow", justify="right")
    table.add_column("Position")
    table.add_column("Side", style="yellow")
    table.add_column("Price", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Slippage", justify="right")
    for order in orders:
        table.add_row(
            str(order.escrow_app_id),
            order.position.name,
            order.side.name,
            fmt_micro(order.price),
            fmt_micro(order.remaining, 2),
            fmt_micro(order.slippage),
        )
    console.print(table)


def print_positions(positions: list[WalletPosition]) -> None:
    table = Table(title="Positions", header_style="bold cyan")
    table.add_column("Market App", justify="right")
    table.add_column("Title", overflow="fold")
    table.add_column("YES", justify="right")
    table.add_column("NO", justify="right")
    for pos in positions:
        table.add_row(
            str(pos.market_app_id),
            pos.title,
            fmt_micro(pos.yes_balance, 2),
            fmt_micro(pos.no_balance, 2),
        )
    console.print(table)


__all__ = [
    "console",
    "load_settings",
    "build_clients",
    "resolve_wallet",
    "to_micro",
    "fmt_micro",
    "print_markets",
    "print_orderbook_side",
    "print_open_orders",
    "print_positions",
]
