"""下单编排：撮合 -> 手续费 -> 原子交易组 -> 提交 -> 回查托管单 ID。

一笔交易的全部步骤先在内存中装入 `SettlementBundle`，再一次性
原子提交；失败时整体失败，不做局部重试。唯一的重试循环是提交
成功后对新建托管单 ID 的只读回查。
"""

from __future__ import annotations

from typing import List, Optional, Sequence

import structlog
from algosdk.logic import get_application_address
from tenacity import RetryError

from ..clients.ledger import (
    AppCall,
    AssetTransfer,
    GroupResult,
    LedgerClient,
    Payment,
    SettlementBundle,
    created_app_id,
)
from ..context import TradingContext
from ..retry import LookupPending, RetryPolicy
from ..types import (
    MICROUNITS,
    UNKNOWN_ESCROW_ID,
    ClaimResult,
    CounterpartyMatch,
    CreateOrderResult,
    Market,
    MarketGlobalState,
    OpenOrder,
    Orderbook,
    TradeRequest,
    TxGroupResult,
    WalletPosition,
)
from .fees import calculate_fee
from .markets import get_market, get_markets
from .matching import calculate_matching_orders
from .orderbook import get_open_orders, get_orderbook
from .positions import claim, get_positions, merge_shares, split_shares
from .state import check_asset_opt_in, get_market_global_state

logger = structlog.get_logger("services.trader")

# 托管合约最低余额 + 创建时的内部交易费用（微 ALGO）
ESCROW_FUNDING_MICROALGOS = 957_000
# 每个撮合对手方托管单的内部交易费用；卖单翻倍
MATCH_PAYMENT_MICROALGOS = 1_000
STANDALONE_MATCH_PAYMENT_MICROALGOS = 2_000
PROPOSE_MATCH_FEE_MICROALGOS = 10_000
CANCEL_FEE_MICROALGOS = 7_000


def _validate_request(request: TradeRequest) -> None:
    if request.quantity <= 0:
        raise ValueError(f"quantity must be positive, got {request.quantity}")
    if not 0 <= request.price <= MICROUNITS:
        raise ValueError(f"price must be between 0 and {MICROUNITS}, got {request.price}")
    if request.slippage < 0:
        raise ValueError(f"slippage must be non-negative, got {request.slippage}")


def funding_amount(quantity: int, price: int, slippage: int, fee_base: int, is_buying: bool) -> int:
    """托管单需要转入的资金量。

    买单转入 USDC：``floor(quantity * (price + slippage)) + fee``；
    卖单转入待卖出的 outcome 代币 ``quantity``。

    Args:
        quantity: 数量（微单位）。
        price: 限价（微单位）。
        slippage: 滑点容忍度（微单位）。
        fee_base: 手续费基数（微单位）。
        is_buying: 是否买入。

    Returns:
        转账数量（微单位）。
    """
    if not is_buying:
        return quantity
    worst_price = price + slippage
    fee = calculate_fee(quantity, min(worst_price, MICROUNITS), fee_base)
    return quantity * worst_price // MICROUNITS + fee


def cap_matches(matches: Sequence[CounterpartyMatch], quantity: int) -> List[CounterpartyMatch]:
    """按剩余数量截断撮合列表，丢弃截断后为 0 的项。"""
    capped: List[CounterpartyMatch] = []
    remaining = quantity
    for match in matches:
        take = min(match.quantity, remaining)
        if take <= 0:
            continue
        capped.append(CounterpartyMatch(escrow_app_id=match.escrow_app_id, quantity=take, owner=match.owner, price=match.price))
        remaining -= take
    return capped


def weighted_match_price(matches: Sequence[CounterpartyMatch]) -> Optional[int]:
    """按数量加权的平均成交价；没有带价格的撮合时返回 None。"""
    priced = [m for m in matches if m.price is not None]
    total = sum(m.quantity for m in priced)
    if total <= 0:
        return None
    return sum(m.quantity * m.price for m in priced) // total


async def resolve_created_app_id(
    ledger: LedgerClient,
    retry_policy: RetryPolicy,
    result: GroupResult,
    index: int,
) -> int:
    """回查组内第 ``index`` 笔交易新建的 app ID。

    依次尝试：提交结果中直接返回的 ID；algod 的交易包含记录；
    按 ``retry_policy`` 的退避表轮询 indexer。全部失败时返回
    ``UNKNOWN_ESCROW_ID``，不抛异常。
    """
    immediate = result.created_app_ids.get(index)
    if immediate:
        return immediate

    tx_id = result.tx_ids[index]
    try:
        async for attempt in retry_policy.retrying():
            with attempt:
                if attempt.retry_state.attempt_number == 1:
                    record = await ledger.get_pending_transaction(tx_id)
                else:
                    record = await ledger.lookup_transaction(tx_id)
                app_id = created_app_id(record)
                if not app_id:
                    raise LookupPending(tx_id)
                return app_id
    except RetryError as exc:
        logger.warning(
            "trader.escrow_id_unresolved",
            tx_id=tx_id,
            attempts=retry_policy.max_attempts,
            last_error=str(exc.last_attempt.exception()),
        )
    return UNKNOWN_ESCROW_ID


def _outcome_asset(market: MarketGlobalState, is_yes: bool) -> int:
    asset_id = market.yes_asset_id if is_yes else market.no_asset_id
    if not asset_id:
        raise ValueError("Market has no outcome asset ids; is it activated?")
    return asset_id


def _asset_refs(ctx: TradingContext, market: MarketGlobalState) -> tuple[int, ...]:
    return (ctx.usdc_asset_id, market.yes_asset_id or 0, market.no_asset_id or 0)


async def build_order_bundle(
    ctx: TradingContext,
    request: TradeRequest,
    market: MarketGlobalState,
    matches: Sequence[CounterpartyMatch],
) -> tuple[SettlementBundle, int]:
    """构建下单的原子操作组。

    顺序：
        1. （可选）opt-in 将要收到的资产；
        2. ALGO 转账给市场合约，覆盖托管单最低余额；
        3. 资金转账（买入转 USDC，卖出转 outcome 代币）；
        4. 调用 ``create_escrow``；
        5. 每个撮合：ALGO 转给对手托管单 + 调用撮合合约 ``propose_a_match``。

    Args:
        ctx: 交易上下文。
        request: 下单请求。
        market: 市场链上状态。
        matches: 已截断的撮合列表，限价单为空。

    Returns:
        ``(bundle, create_escrow 在组内的下标)``。
    """
    address = ctx.active_address
    market_address = get_application_address(request.market_app_id)
    outcome_asset = _outcome_asset(market, request.is_yes)
    assets = _asset_refs(ctx, market)
    fee_base = request.fee_base if request.fee_base is not None else (market.fee_base_percent or 0)

    bundle = SettlementBundle()

    receive_asset = outcome_asset if request.is_buying else ctx.usdc_asset_id
    if not await check_asset_opt_in(ctx.ledger, address, receive_asset):
        bundle.add(AssetTransfer(sender=address, receiver=address, asset_id=receive_asset, amount=0))

    bundle.add(Payment(sender=address, receiver=market_address, amount=ESCROW_FUNDING_MICROALGOS))

    bundle.add(
        AssetTransfer(
            sender=address,
            receiver=market_address,
            asset_id=ctx.usdc_asset_id if request.is_buying else outcome_asset,
            amount=funding_amount(request.quantity, request.price, request.slippage, fee_base, request.is_buying),
        )
    )

    create_index = bundle.add(
        AppCall(
            sender=address,
            app_id=request.market_app_id,
            method="create_escrow",
            args={
                "price": request.price,
                "quantity": request.quantity,
                "slippage": request.slippage,
                "position": int(request.position),
            },
            foreign_assets=assets,
        )
    )

    if matches and not market.fee_address:
        raise ValueError("Market has no fee_address; cannot propose matches")

    match_payment = MATCH_PAYMENT_MICROALGOS * (1 if request.is_buying else 2)
    for match in matches:
        payment_index = bundle.add(
            Payment(sender=address, receiver=get_application_address(match.escrow_app_id), amount=match_payment)
        )
        bundle.add(
            AppCall(
                sender=address,
                app_id=ctx.matcher_app_id,
                method="propose_a_match",
                args={
                    "market_app": request.market_app_id,
                    "maker": match.escrow_app_id,
                    "quantity_matched": match.quantity,
                    "taker_address": address,
                    "maker_address": match.owner,
                    "fee_address": market.fee_address,
                    "taker_app_created_index_offset": payment_index + 1 - create_index,
                },
                foreign_assets=assets,
                accounts=(address, market.fee_address, match.owner),
                fee=PROPOSE_MATCH_FEE_MICROALGOS,
            )
        )

    return bundle, create_index


async def _create_order(
    ctx: TradingContext,
    request: TradeRequest,
    matches: Sequence[CounterpartyMatch],
) -> CreateOrderResult:
    market = await get_market_global_state(ctx.ledger, request.market_app_id)
    bundle, create_index = await build_order_bundle(ctx, request, market, matches)
    logger.info(
        "trader.bundle_built",
        market_app_id=request.market_app_id,
        position=request.position.name,
        buying=request.is_buying,
        quantity=request.quantity,
        price=request.price,
        slippage=request.slippage,
        operations=len(bundle),
        matches=len(matches),
    )

    result = await ctx.ledger.execute_group(bundle.operations)
    escrow_app_id = await resolve_created_app_id(ctx.ledger, ctx.retry_policy, result, create_index)
    logger.info(
        "trader.order_submitted",
        market_app_id=request.market_app_id,
        escrow_app_id=escrow_app_id,
        confirmed_round=result.confirmed_round,
    )
    return CreateOrderResult(
        escrow_app_id=escrow_app_id,
        tx_ids=list(result.tx_ids),
        confirmed_round=result.confirmed_round,
    )


async def create_limit_order(ctx: TradingContext, request: TradeRequest) -> CreateOrderResult:
    """挂限价单（slippage 恒为 0，不做撮合）。"""
    limit = TradeRequest(
        market_app_id=request.market_app_id,
        position=request.position,
        price=request.price,
        quantity=request.quantity,
        is_buying=request.is_buying,
        slippage=0,
        fee_base=request.fee_base,
    )
    _validate_request(limit)
    return await _create_order(ctx, limit, [])


async def create_market_order(ctx: TradingContext, request: TradeRequest) -> CreateOrderResult:
    """下市价单并在同一原子组内撮合。

    未提供 ``matching_orders`` 时自动拉取盘口并计算撮合。

    Returns:
        包含 ``matched_quantity`` 与加权 ``matched_price`` 的下单结果。
    """
    _validate_request(request)
    matches = request.matching_orders
    if matches is None:
        book = await get_orderbook(ctx.ledger, request.market_app_id)
        matches = calculate_matching_orders(
            book,
            request.is_buying,
            request.is_yes,
            request.quantity,
            request.price,
            request.slippage,
        )
    matches = cap_matches(matches, request.quantity)

    result = await _create_order(ctx, request, matches)
    return CreateOrderResult(
        escrow_app_id=result.escrow_app_id,
        tx_ids=result.tx_ids,
        confirmed_round=result.confirmed_round,
        matched_quantity=sum(m.quantity for m in matches),
        matched_price=weighted_match_price(matches),
    )


async def cancel_order(
    ctx: TradingContext,
    *,
    market_app_id: int,
    escrow_app_id: int,
    order_owner: str,
) -> TxGroupResult:
    """撤单：删除托管合约，资金与最低余额退回 ``order_owner``。"""
    market = await get_market_global_state(ctx.ledger, market_app_id)
    bundle = SettlementBundle()
    bundle.add(
        AppCall(
            sender=order_owner,
            app_id=market_app_id,
            method="delete_escrow",
            args={"escrow_app_id": escrow_app_id, "algo_receiver": order_owner},
            foreign_assets=_asset_refs(ctx, market),
            foreign_apps=(escrow_app_id,),
            accounts=(order_owner,),
            fee=CANCEL_FEE_MICROALGOS,
        )
    )
    result = await ctx.ledger.execute_group(bundle.operations)
    logger.info("trader.order_cancelled", market_app_id=market_app_id, escrow_app_id=escrow_app_id)
    return TxGroupResult(success=True, tx_ids=list(result.tx_ids), confirmed_round=result.confirmed_round)


async def propose_match(
    ctx: TradingContext,
    *,
    market_app_id: int,
    maker_escrow_app_id: int,
    maker_address: str,
    quantity_matched: int,
) -> TxGroupResult:
    """显式指定对手托管单发起撮合。"""
    if quantity_matched <= 0:
        raise ValueError(f"quantity_matched must be positive, got {quantity_matched}")
    market = await get_market_global_state(ctx.ledger, market_app_id)
    if not market.fee_address:
        raise ValueError("Market has no fee_address; cannot propose matches")

    address = ctx.active_address
    bundle = SettlementBundle()
    bundle.add(
        Payment(
            sender=address,
            receiver=get_application_address(maker_escrow_app_id),
            amount=STANDALONE_MATCH_PAYMENT_MICROALGOS,
        )
    )
    bundle.add(
        AppCall(
            sender=address,
            app_id=ctx.matcher_app_id,
            method="propose_a_match",
            args={
                "market_app": market_app_id,
                "maker": maker_escrow_app_id,
                "quantity_matched": quantity_matched,
                "taker_address": address,
                "maker_address": maker_address,
                "fee_address": market.fee_address,
                "taker_app_created_index_offset": 0,
            },
            foreign_assets=_asset_refs(ctx, market),
            accounts=(address, market.fee_address, maker_address),
            fee=PROPOSE_MATCH_FEE_MICROALGOS,
        )
    )
    result = await ctx.ledger.execute_group(bundle.operations)
    logger.info("trader.match_proposed", market_app_id=market_app_id, maker=maker_escrow_app_id, quantity=quantity_matched)
    return TxGroupResult(success=True, tx_ids=list(result.tx_ids), confirmed_round=result.confirmed_round)


class Trader:
    """Facade binding a `TradingContext` to every trading and read operation."""

    def __init__(self, context: TradingContext):
        self.context = context

    async def create_limit_order(self, request: TradeRequest) -> CreateOrderResult:
        return await create_limit_order(self.context, request)

    async def create_market_order(self, request: TradeRequest) -> CreateOrderResult:
        return await create_market_order(self.context, request)

    async def cancel_order(self, market_app_id: int, escrow_app_id: int, order_owner: str) -> TxGroupResult:
        return await cancel_order(
            self.context, market_app_id=market_app_id, escrow_app_id=escrow_app_id, order_owner=order_owner
        )

    async def propose_match(
        self, market_app_id: int, maker_escrow_app_id: int, maker_address: str, quantity_matched: int
    ) -> TxGroupResult:
        return await propose_match(
            self.context,
            market_app_id=market_app_id,
            maker_escrow_app_id=maker_escrow_app_id,
            maker_address=maker_address,
            quantity_matched=quantity_matched,
        )

    async def split_shares(self, market_app_id: int, amount: int) -> TxGroupResult:
        return await split_shares(self.context, market_app_id=market_app_id, amount=amount)

    async def merge_shares(self, market_app_id: int, amount: int) -> TxGroupResult:
        return await merge_shares(self.context, market_app_id=market_app_id, amount=amount)

    async def claim(self, market_app_id: int, asset_id: int, amount: Optional[int] = None) -> ClaimResult:
        return await claim(self.context, market_app_id=market_app_id, asset_id=asset_id, amount=amount)

    async def get_positions(self, wallet: Optional[str] = None) -> List[WalletPosition]:
        return await get_positions(self.context.ledger, wallet or self.context.active_address)

    async def get_orderbook(self, market_app_id: int) -> Orderbook:
        return await get_orderbook(self.context.ledger, market_app_id)

    async def get_open_orders(self, market_app_id: int, wallet: Optional[str] = None) -> List[OpenOrder]:
        return await get_open_orders(self.context.ledger, market_app_id, wallet or self.context.active_address)

    async def get_markets(self) -> List[Market]:
        return await get_markets(self.context)

    async def get_market(self, market_id: str) -> Optional[Market]:
        return await get_market(self.context, market_id)
