"""账本（algod / indexer）协作方的窄接口与交易组操作类型。

交易引擎只负责决定「提交什么」：每笔操作以不可变数据类描述，
按顺序装入 `SettlementBundle` 后整体交给 `LedgerClient.execute_group`
原子提交。签名与网络发送由实现方负责。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Sequence, Union


@dataclass(frozen=True)
class Payment:
    """ALGO 转账（微 ALGO），用于最低余额与内部交易手续费。"""

    sender: str
    receiver: str
    amount: int


@dataclass(frozen=True)
class AssetTransfer:
    """ASA 转账。``amount=0`` 且收款人为自己即为 opt-in。"""

    sender: str
    receiver: str
    asset_id: int
    amount: int
    close_remainder_to: Optional[str] = None

    @property
    def is_opt_in(self) -> bool:
        return self.amount == 0 and self.sender == self.receiver and self.close_remainder_to is None


@dataclass(frozen=True)
class AppCall:
    """合约 ABI 方法调用。

    Attributes:
        sender: 发起人地址。
        app_id: 目标合约 app ID。
        method: ABI 方法名，如 ``create_escrow``。
        args: 方法参数（按名称）。
        foreign_assets: 需要引用的 ASA 列表。
        foreign_apps: 需要引用的 app 列表。
        accounts: 需要引用的账户列表。
        fee: 显式指定的交易手续费（微 ALGO），用于覆盖内部交易。
    """

    sender: str
    app_id: int
    method: str
    args: dict[str, Any] = field(default_factory=dict)
    foreign_assets: tuple[int, ...] = ()
    foreign_apps: tuple[int, ...] = ()
    accounts: tuple[str, ...] = ()
    fee: Optional[int] = None


Operation = Union[Payment, AssetTransfer, AppCall]


@dataclass
class SettlementBundle:
    """按顺序收集的原子操作组，只提交一次，不做部分重放。"""

    operations: list[Operation] = field(default_factory=list)

    def add(self, operation: Operation) -> int:
        """追加一笔操作并返回其在组内的下标。"""
        self.operations.append(operation)
        return len(self.operations) - 1

    def __len__(self) -> int:
        return len(self.operations)


@dataclass(frozen=True)
class GroupResult:
    """原子交易组的确认结果。

    Attributes:
        tx_ids: 按组内顺序排列的交易 ID。
        confirmed_round: 确认区块高度。
        created_app_ids: 组内下标 -> 新建 app ID，仅在提交结果中立即可得时填充。
    """

    tx_ids: list[str]
    confirmed_round: int
    created_app_ids: dict[int, int] = field(default_factory=dict)



def created_app_id(record: dict[str, Any]) -> int:
    """从交易记录的内部交易中取出新建的 app ID，没有时为 0。"""
    for inner in record.get("inner-txns") or []:
        app_id = inner.get("created-application-index") or inner.get("application-index")
        if app_id:
            return int(app_id)
    return 0


@dataclass(frozen=True)
class AssetHolding:
    asset_id: int
    amount: int


@dataclass(frozen=True)
class CreatedApplicationsPage:
    """某地址创建的 app 列表中的一页（indexer 分页）。"""

    applications: list[dict[str, Any]]
    next_token: Optional[str] = None


class LedgerClient(Protocol):
    """引擎依赖的账本读写能力。"""

    async def get_application_state(self, app_id: int) -> list[dict[str, Any]]:
        """返回 app 的原始 global-state 列表（base64 key/value）。"""
        ...

    async def get_account_assets(self, address: str) -> list[AssetHolding]:
        ...

    async def list_created_applications(
        self, address: str, *, limit: int = 100, next_token: Optional[str] = None
    ) -> CreatedApplicationsPage:
        ...

    async def get_asset_params(self, asset_id: int) -> dict[str, Any]:
        ...

    async def execute_group(self, operations: Sequence[Operation]) -> GroupResult:
        """原子提交整组操作；任一失败则整体失败并抛出异常。"""
        ...

    async def get_pending_transaction(self, tx_id: str) -> dict[str, Any]:
        """主账本（algod）上的交易包含记录。"""
        ...

    async def lookup_transaction(self, tx_id: str) -> dict[str, Any]:
        """二级索引（indexer）上的交易记录，可能滞后。"""
        ...


async def list_all_created_applications(
    ledger: LedgerClient, address: str, *, limit: int = 100
) -> list[dict[str, Any]]:
    """翻页拉取地址创建的全部 app，并过滤已删除的。

    Args:
        ledger: 账本客户端。
        address: 创建者地址（市场合约地址或市场创建者地址）。
        limit: 每页条数。

    Returns:
        未删除的 app 原始记录列表。
    """
    applications: list[dict[str, Any]] = []
    next_token: Optional[str] = None
    while True:
        page = await ledger.list_created_applications(address, limit=limit, next_token=next_token)
        applications.extend(page.applications)
        if not page.next_token:
            break
        next_token = page.next_token
    return [app for app in applications if not app.get("deleted", False)]
