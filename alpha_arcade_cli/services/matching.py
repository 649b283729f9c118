from __future__ import annotations

from typing import Iterable, List

from ..types import MICROUNITS, CounterpartyMatch, Orderbook, OrderbookEntry


def _complementary(entries: Iterable[OrderbookEntry]) -> List[OrderbookEntry]:
    """Reprice opposite-outcome orders: a NO bid at p is a YES ask at 1 - p."""
    return [
        OrderbookEntry(
            price=MICROUNITS - entry.price,
            quantity=entry.quantity,
            escrow_app_id=entry.escrow_app_id,
            owner=entry.owner,
        )
        for entry in entries
    ]


def candidate_orders(
    orderbook: Orderbook,
    is_buying: bool,
    is_yes: bool,
    price: int,
    slippage_tolerance: int,
) -> List[OrderbookEntry]:
    """Resting orders a taker may cross, best effective price first.

    Direct orders come before complementary ones at equal price; ``sorted`` is
    stable so that order survives the sort.
    """
    same, other = (orderbook.yes, orderbook.no) if is_yes else (orderbook.no, orderbook.yes)

    if is_buying:
        candidates = sorted([*same.asks, *_complementary(other.bids)], key=lambda o: o.price)
        limit = price + slippage_tolerance
        return [o for o in candidates if o.price <= limit]

    candidates = sorted([*same.bids, *_complementary(other.asks)], key=lambda o: o.price, reverse=True)
    limit = price - slippage_tolerance
    return [o for o in candidates if o.price >= limit]


def calculate_matching_orders(
    orderbook: Orderbook,
    is_buying: bool,
    is_yes: bool,
    quantity: int,
    price: int,
    slippage_tolerance: int,
) -> List[CounterpartyMatch]:
    """Walk the book and allocate ``quantity`` across the best counterparties.

    Supports direct matching (buy YES vs sell YES) and complementary matching
    (buy YES at 0.60 vs buy NO at 0.40). Each match carries its effective fill
    price. Returns an empty list when nothing qualifies.
    """
    matches: List[CounterpartyMatch] = []
    remaining = quantity

    for order in candidate_orders(orderbook, is_buying, is_yes, price, slippage_tolerance):
        if remaining <= 0:
            break
        take = min(order.quantity, remaining)
        if take <= 0:
            continue
        matches.append(
            CounterpartyMatch(
                escrow_app_id=order.escrow_app_id,
                quantity=take,
                owner=order.owner,
                price=order.price,
            )
        )
        remaining -= take

    return matches
