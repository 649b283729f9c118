"""Business logic services: fees, matching, orderbook, trading, positions, markets."""

from .fees import calculate_fee, calculate_fee_from_total
from .matching import calculate_matching_orders
from .orderbook import aggregate_orderbook, get_open_orders, get_orderbook
from .trader import Trader

__all__ = [
    "calculate_fee",
    "calculate_fee_from_total",
    "calculate_matching_orders",
    "aggregate_orderbook",
    "get_open_orders",
    "get_orderbook",
    "Trader",
]
