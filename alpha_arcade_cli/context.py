"""交易上下文：一次构建，显式传入每个编排调用。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .clients.alpha_api import AlphaApiClient
from .clients.ledger import LedgerClient
from .config import DEFAULT_MARKET_CREATOR_ADDRESS, Settings
from .retry import RetryPolicy


@dataclass(frozen=True)
class TradingContext:
    """下单、撤单、拆分合并等操作共享的只读上下文。

    Attributes:
        ledger: 账本客户端（读取状态 + 原子提交）。
        active_address: 签名钱包地址。
        matcher_app_id: 撮合合约 app ID。
        usdc_asset_id: 结算资产（USDC）ASA ID。
        market_creator_address: 链上市场发现使用的创建者地址。
        api: 可选的 partners API 客户端。
        retry_policy: 新建托管单 ID 回查的退避策略。
    """

    ledger: LedgerClient
    active_address: str
    matcher_app_id: int
    usdc_asset_id: int
    market_creator_address: str = DEFAULT_MARKET_CREATOR_ADDRESS
    api: Optional[AlphaApiClient] = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        if self.ledger is None:
            raise ValueError("ledger is required")
        if not self.active_address:
            raise ValueError("active_address is required")
        if not self.matcher_app_id:
            raise ValueError("matcher_app_id is required")
        if not self.usdc_asset_id:
            raise ValueError("usdc_asset_id is required")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        ledger: LedgerClient,
        *,
        api: Optional[AlphaApiClient] = None,
        active_address: Optional[str] = None,
    ) -> "TradingContext":
        """根据配置构建上下文。

        Args:
            settings: 全局配置对象。
            ledger: 账本客户端。
            api: 可选的 partners API 客户端。
            active_address: 覆盖配置中的钱包地址。

        Returns:
            校验通过的 `TradingContext`。
        """
        return cls(
            ledger=ledger,
            active_address=active_address or settings.active_address or "",
            matcher_app_id=settings.matcher_app_id,
            usdc_asset_id=settings.usdc_asset_id,
            market_creator_address=settings.market_creator_address,
            api=api,
            retry_policy=RetryPolicy.from_delays(settings.escrow_lookup_backoff_seconds),
        )
