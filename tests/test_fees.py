"""手续费公式及其反函数的单元测试。"""

from __future__ import annotations

import pytest

from alpha_arcade_cli.services.fees import calculate_fee, calculate_fee_from_total


@pytest.mark.parametrize(
    "quantity,price,fee_base,expected",
    [
        (1_000_000, 500_000, 70_000, 17_500),
        (1_000_000, 100_000, 70_000, 6_300),
        (10_000_000, 500_000, 70_000, 175_000),
    ],
)
def test_fee_reference_values(quantity: int, price: int, fee_base: int, expected: int) -> None:
    assert calculate_fee(quantity, price, fee_base) == expected


@pytest.mark.parametrize(
    "quantity,price,fee_base",
    [
        (1_000_000, 0, 70_000),
        (1_000_000, 1_000_000, 70_000),
        (0, 500_000, 70_000),
        (1_000_000, 500_000, 0),
    ],
)
def test_fee_is_zero_for_degenerate_inputs(quantity: int, price: int, fee_base: int) -> None:
    assert calculate_fee(quantity, price, fee_base) == 0


def test_fee_rounds_up_fractional_amounts() -> None:
    # 70_000 * 1 * 500_000 * 500_000 / 1e18 = 0.0175 -> 1
    assert calculate_fee(1, 500_000, 70_000) == 1


def test_fee_is_non_decreasing_in_quantity() -> None:
    fees = [calculate_fee(q, 370_000, 70_000) for q in range(0, 5_000_000, 137_137)]
    assert all(isinstance(f, int) and f >= 0 for f in fees)
    assert fees == sorted(fees)


def test_fee_rejects_out_of_range_price() -> None:
    with pytest.raises(ValueError):
        calculate_fee(1_000_000, 1_000_001, 70_000)
    with pytest.raises(ValueError):
        calculate_fee(-1, 500_000, 70_000)


def test_fee_from_total_returns_none_at_zero_price() -> None:
    assert calculate_fee_from_total(1_000_000, 0, 70_000) is None


def test_fee_from_total_zero_cases() -> None:
    assert calculate_fee_from_total(0, 500_000, 70_000) == 0
    assert calculate_fee_from_total(1_000_000, 500_000, 0) == 0
    assert calculate_fee_from_total(1_000_000, 1_000_000, 70_000) == 0


def test_fee_from_total_recovers_embedded_fee() -> None:
    # 1 份 @ 0.50：本金 500_000 + 手续费 17_500
    assert calculate_fee_from_total(517_500, 500_000, 70_000) == 17_500


def test_fee_from_total_reference_value() -> None:
    assert calculate_fee_from_total(1_000_000, 500_000, 70_000) == 33_817
