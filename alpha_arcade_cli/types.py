from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Optional

# 1_000_000 微单位 = 1 USDC / 1 份额 / 概率 1.0
MICROUNITS = 1_000_000

# 托管单 ID 尚未从链上/索引确认时的占位值
UNKNOWN_ESCROW_ID = 0


class Position(IntEnum):
    """链上 position 字段：1 = YES，0 = NO。"""

    NO = 0
    YES = 1


class OrderSide(IntEnum):
    """链上 side 字段：1 = 买（bid），0 = 卖（ask）。"""

    SELL = 0
    BUY = 1


class MarketSource(str, Enum):
    ONCHAIN = "onchain"
    API = "api"


@dataclass(frozen=True)
class OrderbookEntry:
    """盘口中的单笔限价单。

    Attributes:
        price: 价格（微单位，500_000 = $0.50）。
        quantity: 剩余未成交数量（微单位）。
        escrow_app_id: 该订单对应的托管合约 app ID。
        owner: 挂单者地址。
    """

    price: int
    quantity: int
    escrow_app_id: int
    owner: str


@dataclass(frozen=True)
class OrderbookSide:
    bids: list[OrderbookEntry] = field(default_factory=list)
    asks: list[OrderbookEntry] = field(default_factory=list)


@dataclass(frozen=True)
class Orderbook:
    """单个市场的完整盘口，分 YES/NO 两个 outcome。"""

    yes: OrderbookSide = field(default_factory=OrderbookSide)
    no: OrderbookSide = field(default_factory=OrderbookSide)

    def is_empty(self) -> bool:
        return not (self.yes.bids or self.yes.asks or self.no.bids or self.no.asks)


@dataclass(frozen=True)
class AggregatedOrderbookEntry:
    price: int
    quantity: int
    order_count: int


@dataclass(frozen=True)
class AggregatedOrderbookSide:
    bids: list[AggregatedOrderbookEntry] = field(default_factory=list)
    asks: list[AggregatedOrderbookEntry] = field(default_factory=list)


@dataclass(frozen=True)
class AggregatedOrderbook:
    """按价格档聚合后的盘口，仅用于展示。"""

    yes: AggregatedOrderbookSide = field(default_factory=AggregatedOrderbookSide)
    no: AggregatedOrderbookSide = field(default_factory=AggregatedOrderbookSide)


@dataclass(frozen=True)
class CounterpartyMatch:
    """一次针对已有挂单的撮合建议。

    Attributes:
        escrow_app_id: 对手方托管单 app ID。
        quantity: 本次计划成交的数量，不超过对手单剩余量。
        owner: 对手方地址。
        price: 实际成交价（互补撮合时为 ``1_000_000 - 对手价``）。
    """

    escrow_app_id: int
    quantity: int
    owner: str
    price: Optional[int] = None


@dataclass(frozen=True)
class TradeRequest:
    """下单请求。

    Attributes:
        market_app_id: 市场合约 app ID。
        position: YES 或 NO。
        price: 限价 / 最差可接受价（微单位）。
        quantity: 数量（微单位）。
        is_buying: 是否买入。
        slippage: 滑点容忍度（微单位），0 表示纯限价单。
        fee_base: 手续费基数（微单位，70_000 = 7%），为空时读取市场链上配置。
        matching_orders: 预先计算的撮合列表；为空时自动拉取盘口计算。
    """

    market_app_id: int
    position: Position
    price: int
    quantity: int
    is_buying: bool
    slippage: int = 0
    fee_base: Optional[int] = None
    matching_orders: Optional[list[CounterpartyMatch]] = None

    @property
    def is_yes(self) -> bool:
        return self.position == Position.YES


@dataclass(frozen=True)
class OpenOrder:
    """钱包在某市场上的未完成挂单。"""

    escrow_app_id: int
    market_app_id: int
    position: Position
    side: OrderSide
    price: int
    quantity: int
    quantity_filled: int
    slippage: int
    owner: str

    @property
    def remaining(self) -> int:
        return self.quantity - self.quantity_filled


@dataclass(frozen=True)
class EscrowGlobalState:
    """托管合约的链上全局状态（解码后）。缺失或类型不符的字段为 None。"""

    position: Optional[int] = None
    side: Optional[int] = None
    price: Optional[int] = None
    quantity: Optional[int] = None
    quantity_filled: Optional[int] = None
    slippage: Optional[int] = None
    owner: Optional[str] = None
    market_app_id: Optional[int] = None
    asset_listed: Optional[int] = None
    fee_timer_start: Optional[int] = None


@dataclass(frozen=True)
class MarketGlobalState:
    """市场合约的链上全局状态（解码后）。"""

    collateral_asset_id: Optional[int] = None
    yes_asset_id: Optional[int] = None
    no_asset_id: Optional[int] = None
    yes_supply: Optional[int] = None
    no_supply: Optional[int] = None
    is_resolved: Optional[int] = None
    is_activated: Optional[int] = None
    outcome: Optional[int] = None
    resolution_time: Optional[int] = None
    fee_base_percent: Optional[int] = None
    fee_timer_threshold: Optional[int] = None
    title: Optional[str] = None
    rules: Optional[str] = None
    oracle_address: Optional[str] = None
    fee_address: Optional[str] = None
    market_friend_addr: Optional[str] = None
    escrow_cancel_address: Optional[str] = None


@dataclass(frozen=True)
class EscrowRecord:
    """链上托管单：app ID 与解码后的状态。"""

    app_id: int
    state: EscrowGlobalState


@dataclass
class MarketOption:
    """多选市场中的单个选项（每个选项本身是一个二元市场）。"""

    id: str
    title: str
    market_app_id: int
    yes_asset_id: int
    no_asset_id: int
    yes_prob: float = 0.0
    no_prob: float = 0.0


@dataclass
class Market:
    """预测市场元数据，来源为链上发现或 partners API。

    Attributes:
        id: 市场 ID（链上为 app ID 字符串，API 为 UUID）。
        title: 市场标题。
        market_app_id: 市场合约 app ID。
        yes_asset_id: YES 代币 ASA ID。
        no_asset_id: NO 代币 ASA ID。
        end_ts: 结束/结算时间（Unix 秒）。
        yes_prob: YES 概率（仅 API 提供）。
        no_prob: NO 概率（仅 API 提供）。
        volume: 成交量（仅 API 提供）。
        fee_base: 手续费基数（微单位）。
        options: 多选市场下的子选项列表。
        source: 数据来源。
        extra: API 返回的其余字段，原样保留。
    """

    id: str
    title: str
    market_app_id: int
    yes_asset_id: int
    no_asset_id: int
    end_ts: int = 0
    slug: Optional[str] = None
    image: Optional[str] = None
    yes_prob: Optional[float] = None
    no_prob: Optional[float] = None
    volume: Optional[float] = None
    resolution: Optional[int] = None
    is_resolved: Optional[bool] = None
    is_live: Optional[bool] = None
    categories: Optional[list[str]] = None
    featured: Optional[bool] = None
    options: Optional[list[MarketOption]] = None
    fee_base: Optional[int] = None
    source: MarketSource = MarketSource.ONCHAIN
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class WalletPosition:
    """钱包在单个市场上的 YES/NO 代币余额。"""

    market_app_id: int
    title: str
    yes_asset_id: int
    no_asset_id: int
    yes_balance: int = 0
    no_balance: int = 0


@dataclass(frozen=True)
class CreateOrderResult:
    """下单结果。

    Attributes:
        escrow_app_id: 新建托管单 app ID；未能确认时为 ``UNKNOWN_ESCROW_ID``。
        tx_ids: 原子交易组内全部交易 ID。
        confirmed_round: 确认区块高度。
        matched_quantity: 市价单计划撮合的总数量。
        matched_price: 按数量加权的平均成交价（微单位）。
    """

    escrow_app_id: int
    tx_ids: list[str]
    confirmed_round: int
    matched_quantity: Optional[int] = None
    matched_price: Optional[int] = None

    @property
    def escrow_resolved(self) -> bool:
        return self.escrow_app_id != UNKNOWN_ESCROW_ID


@dataclass(frozen=True)
class TxGroupResult:
    """撤单 / 撮合 / 拆分 / 合并等操作的通用结果。"""

    success: bool
    tx_ids: list[str]
    confirmed_round: int


@dataclass(frozen=True)
class ClaimResult:
    success: bool
    tx_ids: list[str]
    confirmed_round: int
    amount_claimed: int
