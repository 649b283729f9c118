"""拆分 / 合并 / 兑付，以及钱包持仓读取。"""

from __future__ import annotations

import re
from typing import Dict, List, Optional

import structlog
from algosdk.logic import get_application_address

from ..clients.ledger import AppCall, AssetTransfer, LedgerClient, Payment, SettlementBundle
from ..context import TradingContext
from ..types import ClaimResult, TxGroupResult, WalletPosition
from .state import check_asset_opt_in, get_asset_balance, get_market_global_state

logger = structlog.get_logger("services.positions")

# 拆分/合并的内部交易费用，每个新 opt-in 额外 1000
SPLIT_MERGE_BASE_MICROALGOS = 5_000
OPT_IN_COST_MICROALGOS = 1_000
CLAIM_FEE_MICROALGOS = 1_000

OUTCOME_UNIT_PREFIX = "ALPHA-"
OUTCOME_NAME_RE = re.compile(r"^Alpha Market (\d+) (Yes|No)$")


def _require_positive(amount: int) -> None:
    if amount <= 0:
        raise ValueError(f"amount must be positive, got {amount}")


async def split_shares(ctx: TradingContext, *, market_app_id: int, amount: int) -> TxGroupResult:
    """将 ``amount`` USDC 拆分为等量 YES + NO 代币。

    组内顺序：YES/NO opt-in（按需）、ALGO 手续费、USDC 转账、``split_shares`` 调用。
    """
    _require_positive(amount)
    address = ctx.active_address
    market = await get_market_global_state(ctx.ledger, market_app_id)
    if not market.yes_asset_id or not market.no_asset_id:
        raise ValueError(f"Market {market_app_id} has no outcome asset ids")
    market_address = get_application_address(market_app_id)

    bundle = SettlementBundle()
    opt_ins = 0
    for asset_id in (market.yes_asset_id, market.no_asset_id):
        if not await check_asset_opt_in(ctx.ledger, address, asset_id):
            bundle.add(AssetTransfer(sender=address, receiver=address, asset_id=asset_id, amount=0))
            opt_ins += 1

    bundle.add(
        Payment(
            sender=address,
            receiver=market_address,
            amount=SPLIT_MERGE_BASE_MICROALGOS + OPT_IN_COST_MICROALGOS * opt_ins,
        )
    )
    bundle.add(AssetTransfer(sender=address, receiver=market_address, asset_id=ctx.usdc_asset_id, amount=amount))
    bundle.add(
        AppCall(
            sender=address,
            app_id=market_app_id,
            method="split_shares",
            foreign_assets=(ctx.usdc_asset_id, market.yes_asset_id, market.no_asset_id),
        )
    )

    result = await ctx.ledger.execute_group(bundle.operations)
    logger.info("positions.split", market_app_id=market_app_id, amount=amount, opt_ins=opt_ins)
    return TxGroupResult(success=True, tx_ids=list(result.tx_ids), confirmed_round=result.confirmed_round)


async def merge_shares(ctx: TradingContext, *, market_app_id: int, amount: int) -> TxGroupResult:
    """将等量 YES + NO 代币合并回 USDC。

    组内顺序：USDC opt-in（按需）、ALGO 手续费、YES 转账、NO 转账、``merge_shares`` 调用。
    """
    _require_positive(amount)
    address = ctx.active_address
    market = await get_market_global_state(ctx.ledger, market_app_id)
    if not market.yes_asset_id or not market.no_asset_id:
        raise ValueError(f"Market {market_app_id} has no outcome asset ids")
    market_address = get_application_address(market_app_id)

    bundle = SettlementBundle()
    opt_ins = 0
    if not await check_asset_opt_in(ctx.ledger, address, ctx.usdc_asset_id):
        bundle.add(AssetTransfer(sender=address, receiver=address, asset_id=ctx.usdc_asset_id, amount=0))
        opt_ins += 1

    bundle.add(
        Payment(
            sender=address,
            receiver=market_address,
            amount=SPLIT_MERGE_BASE_MICROALGOS + OPT_IN_COST_MICROALGOS * opt_ins,
        )
    )
    bundle.add(AssetTransfer(sender=address, receiver=market_address, asset_id=market.yes_asset_id, amount=amount))
    bundle.add(AssetTransfer(sender=address, receiver=market_address, asset_id=market.no_asset_id, amount=amount))
    bundle.add(
        AppCall(
            sender=address,
            app_id=market_app_id,
            method="merge_shares",
            foreign_assets=(ctx.usdc_asset_id,),
        )
    )

    result = await ctx.ledger.execute_group(bundle.operations)
    logger.info("positions.merge", market_app_id=market_app_id, amount=amount)
    return TxGroupResult(success=True, tx_ids=list(result.tx_ids), confirmed_round=result.confirmed_round)


async def claim(
    ctx: TradingContext,
    *,
    market_app_id: int,
    asset_id: int,
    amount: Optional[int] = None,
) -> ClaimResult:
    """用已结算市场的 outcome 代币兑付 USDC，并关闭该代币持仓。

    Args:
        ctx: 交易上下文。
        market_app_id: 市场合约 app ID。
        asset_id: 要兑付的 outcome 代币 ID。
        amount: 兑付数量；为空时使用钱包全部余额。

    Returns:
        `ClaimResult`，``amount_claimed`` 为实际转入合约的代币数量。

    Raises:
        ValueError: 显式数量非正，或没有可兑付的代币。
    """
    address = ctx.active_address
    if amount is not None:
        if amount <= 0:
            raise ValueError(f"claim amount must be positive, got {amount}")
        balance = amount
    else:
        balance = await get_asset_balance(ctx.ledger, address, asset_id)
    if balance <= 0:
        raise ValueError("No tokens to claim")
    market_address = get_application_address(market_app_id)

    bundle = SettlementBundle()
    bundle.add(AssetTransfer(sender=address, receiver=market_address, asset_id=asset_id, amount=balance))
    bundle.add(
        AppCall(
            sender=address,
            app_id=market_app_id,
            method="claim",
            foreign_assets=(ctx.usdc_asset_id, asset_id),
            fee=CLAIM_FEE_MICROALGOS,
        )
    )
    bundle.add(
        AssetTransfer(
            sender=address,
            receiver=market_address,
            asset_id=asset_id,
            amount=0,
            close_remainder_to=market_address,
        )
    )

    result = await ctx.ledger.execute_group(bundle.operations)
    logger.info("positions.claim", market_app_id=market_app_id, asset_id=asset_id, amount=balance)
    return ClaimResult(
        success=True,
        tx_ids=list(result.tx_ids),
        confirmed_round=result.confirmed_round,
        amount_claimed=balance,
    )


async def get_positions(ledger: LedgerClient, wallet: str) -> List[WalletPosition]:
    """读取钱包在各市场上的 YES/NO 代币余额。

    只识别 unit-name 以 ``ALPHA-`` 开头、名称形如
    ``Alpha Market <app_id> Yes|No`` 的代币；无法解析的资产跳过。
    """
    positions: Dict[int, WalletPosition] = {}
    for holding in await ledger.get_account_assets(wallet):
        if holding.amount <= 0:
            continue
        try:
            params = await ledger.get_asset_params(holding.asset_id)
            if not str(params.get("unit-name", "")).startswith(OUTCOME_UNIT_PREFIX):
                continue
            match = OUTCOME_NAME_RE.match(str(params.get("name", "")))
            if not match:
                continue
            market_app_id = int(match.group(1))
            is_yes = match.group(2) == "Yes"

            position = positions.get(market_app_id)
            if position is None:
                market = await get_market_global_state(ledger, market_app_id)
                if not market.yes_asset_id and not market.no_asset_id:
                    continue
                position = WalletPosition(
                    market_app_id=market_app_id,
                    title=market.title or "",
                    yes_asset_id=market.yes_asset_id or 0,
                    no_asset_id=market.no_asset_id or 0,
                )
                positions[market_app_id] = position
        except Exception as exc:  # noqa: BLE001
            logger.debug("positions.asset_skipped", asset_id=holding.asset_id, error=str(exc))
            continue

        if is_yes:
            position.yes_balance = holding.amount
        else:
            position.no_balance = holding.amount

    return list(positions.values())
