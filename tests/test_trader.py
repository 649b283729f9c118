"""下单编排：交易组顺序、金额、撮合提案与托管单 ID 回查。"""

from __future__ import annotations

import pytest
from algosdk.logic import get_application_address
from conftest import FEE_ADDRESS, MAKER, MATCHER_APP_ID, TRADER, USDC, FakeLedger, SleepRecorder

from alpha_arcade_cli.clients.ledger import AppCall, AssetTransfer, Payment
from alpha_arcade_cli.context import TradingContext
from alpha_arcade_cli.services.trader import (
    ESCROW_FUNDING_MICROALGOS,
    Trader,
    cancel_order,
    cap_matches,
    create_limit_order,
    create_market_order,
    funding_amount,
    propose_match,
    weighted_match_price,
)
from alpha_arcade_cli.types import UNKNOWN_ESCROW_ID, CounterpartyMatch, Position, TradeRequest

MARKET = 9_000
YES = 1001
NO = 1002
MARKET_ADDRESS = get_application_address(MARKET)


def _request(**overrides) -> TradeRequest:
    params = dict(market_app_id=MARKET, position=Position.YES, price=500_000, quantity=2_000_000, is_buying=True)
    params.update(overrides)
    return TradeRequest(**params)


def test_funding_amount_for_buy_includes_fee() -> None:
    assert funding_amount(2_000_000, 500_000, 0, 70_000, True) == 1_035_000
    assert funding_amount(1_500_000, 500_000, 50_000, 70_000, True) == 850_988


def test_funding_amount_for_sell_is_quantity() -> None:
    assert funding_amount(2_000_000, 500_000, 30_000, 70_000, False) == 2_000_000


def test_cap_matches_trims_to_remaining_quantity() -> None:
    matches = [
        CounterpartyMatch(escrow_app_id=1, quantity=600_000, owner=MAKER, price=400_000),
        CounterpartyMatch(escrow_app_id=2, quantity=600_000, owner=MAKER, price=450_000),
        CounterpartyMatch(escrow_app_id=3, quantity=600_000, owner=MAKER, price=460_000),
    ]
    capped = cap_matches(matches, 1_000_000)
    assert [(m.escrow_app_id, m.quantity) for m in capped] == [(1, 600_000), (2, 400_000)]
    assert weighted_match_price(capped) == (600_000 * 400_000 + 400_000 * 450_000) // 1_000_000


@pytest.mark.asyncio
async def test_limit_buy_bundle_order_and_amounts(ctx: TradingContext, ledger: FakeLedger) -> None:
    ledger.add_market(MARKET)
    ledger.pending["TX1-3"] = {"inner-txns": [{"created-application-index": 777}]}

    result = await create_limit_order(ctx, _request(slippage=25_000))

    ops = ledger.submitted[0]
    assert len(ops) == 4
    opt_in, fund_fee, principal, create = ops
    assert isinstance(opt_in, AssetTransfer) and opt_in.is_opt_in and opt_in.asset_id == YES
    assert fund_fee == Payment(sender=TRADER, receiver=MARKET_ADDRESS, amount=ESCROW_FUNDING_MICROALGOS)
    assert isinstance(principal, AssetTransfer)
    assert (principal.asset_id, principal.amount, principal.receiver) == (USDC, 1_035_000, MARKET_ADDRESS)
    assert isinstance(create, AppCall) and create.method == "create_escrow"
    assert create.args == {"price": 500_000, "quantity": 2_000_000, "slippage": 0, "position": 1}

    assert result.escrow_app_id == 777
    assert result.escrow_resolved
    assert result.confirmed_round == 1234
    assert result.tx_ids == ["TX1-0", "TX1-1", "TX1-2", "TX1-3"]


@pytest.mark.asyncio
async def test_limit_sell_skips_opt_in_and_funds_with_outcome_token(
    ctx: TradingContext, ledger: FakeLedger
) -> None:
    ledger.add_market(MARKET)
    ledger.set_balance(TRADER, USDC, 0)
    ledger.created_app_ids = {2: 555}

    result = await create_limit_order(ctx, _request(position=Position.NO, is_buying=False, quantity=3_000_000))

    ops = ledger.submitted[0]
    assert [type(op) for op in ops] == [Payment, AssetTransfer, AppCall]
    assert (ops[1].asset_id, ops[1].amount) == (NO, 3_000_000)
    assert ops[2].args["position"] == 0
    assert result.escrow_app_id == 555


@pytest.mark.asyncio
async def test_explicit_fee_base_overrides_market_rate(ctx: TradingContext, ledger: FakeLedger) -> None:
    ledger.add_market(MARKET, fee_base=70_000)
    ledger.set_balance(TRADER, YES, 0)
    ledger.created_app_ids = {2: 1}

    await create_limit_order(ctx, _request(fee_base=0))

    assert ledger.submitted[0][1].amount == 1_000_000


@pytest.mark.asyncio
async def test_market_buy_auto_matches_direct_and_complementary(ctx: TradingContext, ledger: FakeLedger) -> None:
    ledger.add_market(MARKET)
    ledger.add_escrow(MARKET, 101, position=1, side=0, price=480_000, quantity=1_000_000)
    ledger.add_escrow(MARKET, 102, position=0, side=1, price=470_000, quantity=1_000_000)
    ledger.set_balance(TRADER, YES, 0)
    ledger.created_app_ids = {2: 888}

    result = await create_market_order(ctx, _request(quantity=1_500_000, slippage=50_000))

    ops = ledger.submitted[0]
    assert [type(op) for op in ops] == [Payment, AssetTransfer, AppCall, Payment, AppCall, Payment, AppCall]
    assert ops[1].amount == 850_988
    assert ops[2].args["slippage"] == 50_000

    first_pay, first_propose = ops[3], ops[4]
    assert first_pay == Payment(sender=TRADER, receiver=get_application_address(101), amount=1_000)
    assert first_propose.app_id == MATCHER_APP_ID
    assert first_propose.method == "propose_a_match"
    assert first_propose.fee == 10_000
    assert first_propose.accounts == (TRADER, FEE_ADDRESS, MAKER)
    assert first_propose.args["maker"] == 101
    assert first_propose.args["quantity_matched"] == 1_000_000
    assert first_propose.args["taker_app_created_index_offset"] == 2

    second_propose = ops[6]
    assert second_propose.args["maker"] == 102
    assert second_propose.args["quantity_matched"] == 500_000
    assert second_propose.args["taker_app_created_index_offset"] == 4

    assert result.escrow_app_id == 888
    assert result.matched_quantity == 1_500_000
    assert result.matched_price == 496_666


@pytest.mark.asyncio
async def test_market_sell_doubles_match_payment(ctx: TradingContext, ledger: FakeLedger) -> None:
    ledger.add_market(MARKET)
    ledger.add_escrow(MARKET, 301, position=1, side=1, price=520_000, quantity=5_000_000)
    ledger.set_balance(TRADER, USDC, 10)
    ledger.created_app_ids = {2: 999}

    result = await create_market_order(ctx, _request(is_buying=False, quantity=1_000_000))

    ops = ledger.submitted[0]
    assert [type(op) for op in ops] == [Payment, AssetTransfer, AppCall, Payment, AppCall]
    assert (ops[1].asset_id, ops[1].amount) == (YES, 1_000_000)
    assert ops[3].amount == 2_000
    assert result.matched_quantity == 1_000_000
    assert result.matched_price == 520_000


@pytest.mark.asyncio
async def test_market_order_with_no_liquidity_rests_without_proposals(
    ctx: TradingContext, ledger: FakeLedger
) -> None:
    ledger.add_market(MARKET)
    ledger.set_balance(TRADER, YES, 0)
    ledger.created_app_ids = {2: 10}

    result = await create_market_order(ctx, _request(slippage=10_000))

    assert len(ledger.submitted[0]) == 3
    assert result.matched_quantity == 0
    assert result.matched_price is None


@pytest.mark.asyncio
async def test_supplied_matches_are_capped_to_order_quantity(ctx: TradingContext, ledger: FakeLedger) -> None:
    ledger.add_market(MARKET)
    ledger.set_balance(TRADER, YES, 0)
    ledger.created_app_ids = {2: 10}
    supplied = [
        CounterpartyMatch(escrow_app_id=41, quantity=1_500_000, owner=MAKER, price=490_000),
        CounterpartyMatch(escrow_app_id=42, quantity=1_500_000, owner=MAKER, price=495_000),
        CounterpartyMatch(escrow_app_id=43, quantity=1_500_000, owner=MAKER, price=499_000),
    ]

    result = await create_market_order(ctx, _request(slippage=10_000, matching_orders=supplied))

    proposals = [op for op in ledger.submitted[0] if isinstance(op, AppCall) and op.method == "propose_a_match"]
    assert [(p.args["maker"], p.args["quantity_matched"]) for p in proposals] == [(41, 1_500_000), (42, 500_000)]
    assert result.matched_quantity == 2_000_000


@pytest.mark.asyncio
async def test_matches_require_fee_address(ctx: TradingContext, ledger: FakeLedger) -> None:
    ledger.add_market(MARKET, fee_address=None)
    ledger.add_escrow(MARKET, 101, position=1, side=0, price=480_000, quantity=1_000_000)

    with pytest.raises(ValueError):
        await create_market_order(ctx, _request())
    assert ledger.submitted == []


@pytest.mark.asyncio
async def test_escrow_id_found_after_indexer_lag(
    ctx: TradingContext, ledger: FakeLedger, sleeper: SleepRecorder
) -> None:
    ledger.add_market(MARKET)
    ledger.set_balance(TRADER, YES, 0)
    ledger.indexed["TX1-2"] = {"inner-txns": [{"created-application-index": 4242}]}
    ledger.indexer_ready_after = 2

    result = await create_limit_order(ctx, _request())

    assert result.escrow_app_id == 4242
    assert ledger.indexer_queries == 3
    assert sleeper.delays == [1.0, 1.5, 2.0]


@pytest.mark.asyncio
async def test_unresolved_escrow_id_returns_sentinel(
    ctx: TradingContext, ledger: FakeLedger, sleeper: SleepRecorder
) -> None:
    ledger.add_market(MARKET)
    ledger.set_balance(TRADER, YES, 0)

    result = await create_limit_order(ctx, _request())

    assert result.escrow_app_id == UNKNOWN_ESCROW_ID
    assert not result.escrow_resolved
    assert result.tx_ids
    assert ledger.indexer_queries == 6
    assert sleeper.delays == [1.0, 1.5, 2.0, 3.0, 5.0, 8.0]


@pytest.mark.asyncio
async def test_submission_failure_propagates_without_retry(
    ctx: TradingContext, ledger: FakeLedger, sleeper: SleepRecorder
) -> None:
    ledger.add_market(MARKET)
    ledger.submit_error = RuntimeError("overspend")

    with pytest.raises(RuntimeError, match="overspend"):
        await create_limit_order(ctx, _request())
    assert ledger.indexer_queries == 0
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_invalid_request_is_rejected_before_submission(ctx: TradingContext, ledger: FakeLedger) -> None:
    ledger.add_market(MARKET)
    with pytest.raises(ValueError):
        await create_limit_order(ctx, _request(quantity=0))
    with pytest.raises(ValueError):
        await create_limit_order(ctx, _request(price=1_200_000))
    assert ledger.submitted == []


@pytest.mark.asyncio
async def test_cancel_order_deletes_escrow(ctx: TradingContext, ledger: FakeLedger) -> None:
    ledger.add_market(MARKET)

    result = await cancel_order(ctx, market_app_id=MARKET, escrow_app_id=321, order_owner=MAKER)

    (call,) = ledger.submitted[0]
    assert isinstance(call, AppCall)
    assert call.sender == MAKER
    assert call.method == "delete_escrow"
    assert call.args == {"escrow_app_id": 321, "algo_receiver": MAKER}
    assert call.fee == 7_000
    assert result.success and result.confirmed_round == 1234


@pytest.mark.asyncio
async def test_standalone_propose_match(ctx: TradingContext, ledger: FakeLedger) -> None:
    ledger.add_market(MARKET)

    result = await propose_match(
        ctx, market_app_id=MARKET, maker_escrow_app_id=55, maker_address=MAKER, quantity_matched=250_000
    )

    pay, call = ledger.submitted[0]
    assert pay == Payment(sender=TRADER, receiver=get_application_address(55), amount=2_000)
    assert call.args["taker_app_created_index_offset"] == 0
    assert call.args["quantity_matched"] == 250_000
    assert result.tx_ids == ["TX1-0", "TX1-1"]


@pytest.mark.asyncio
async def test_trader_facade_delegates(ctx: TradingContext, ledger: FakeLedger) -> None:
    ledger.add_market(MARKET)
    ledger.add_escrow(MARKET, 201, position=1, side=1, price=480_000, quantity=1_000_000, owner=TRADER)
    trader = Trader(ctx)

    orders = await trader.get_open_orders(MARKET)
    book = await trader.get_orderbook(MARKET)

    assert [o.escrow_app_id for o in orders] == [201]
    assert [e.escrow_app_id for e in book.yes.bids] == [201]
