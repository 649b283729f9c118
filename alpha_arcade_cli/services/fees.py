"""Parabolic taker fee and its inverse, in fixed-point microunits.

``fee = ceil(fee_base * quantity * price * (1 - price))`` where ``price`` and
``fee_base`` are fractions scaled by 1_000_000. All arithmetic stays in Python
integers so the ceiling of the exact rational result is reproduced for any
input size.
"""

from __future__ import annotations

from typing import Optional

from ..types import MICROUNITS


def _ceil_div(numerator: int, denominator: int) -> int:
    quotient, remainder = divmod(numerator, denominator)
    return quotient + 1 if remainder else quotient


def _validate(amount: int, price: int, fee_base: int) -> None:
    if amount < 0:
        raise ValueError(f"amount must be non-negative, got {amount}")
    if fee_base < 0:
        raise ValueError(f"fee_base must be non-negative, got {fee_base}")
    if not 0 <= price <= MICROUNITS:
        raise ValueError(f"price must be between 0 and {MICROUNITS}, got {price}")


def calculate_fee(quantity: int, price: int, fee_base: int) -> int:
    """Return the fee in microunits for ``quantity`` shares at ``price``.

    >>> calculate_fee(1_000_000, 500_000, 70_000)
    17500
    """
    quantity, price, fee_base = int(quantity), int(price), int(fee_base)
    _validate(quantity, price, fee_base)
    if quantity == 0 or fee_base == 0 or price == 0 or price == MICROUNITS:
        return 0
    numerator = fee_base * quantity * price * (MICROUNITS - price)
    return _ceil_div(numerator, MICROUNITS**3)


def calculate_fee_from_total(total_amount: int, price: int, fee_base: int) -> Optional[int]:
    """Return the fee embedded in a funding amount of ``quantity * price + fee``.

    Solves ``total = q * p + fee_base * q * p * (1 - p)`` for ``q`` and applies the
    fee formula to that (possibly fractional) quantity.

    Returns:
        The fee in microunits, or ``None`` when ``price == 0``: the quantity is
        undefined there and no fee can be derived from the total.
    """
    total_amount, price, fee_base = int(total_amount), int(price), int(fee_base)
    _validate(total_amount, price, fee_base)
    if price == 0:
        return None
    if total_amount == 0 or fee_base == 0 or price == MICROUNITS:
        return 0

    # q = total * 1e18 / (p * (1e12 + fb * (1e6 - p)))
    quantity_num = total_amount * MICROUNITS**3
    quantity_den = price * (MICROUNITS**2 + fee_base * (MICROUNITS - price))

    numerator = fee_base * quantity_num * price * (MICROUNITS - price)
    return _ceil_div(numerator, quantity_den * MICROUNITS**3)
