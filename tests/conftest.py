"""共享测试夹具：内存账本与交易上下文。"""

from __future__ import annotations

import base64
from typing import Any, Optional, Sequence

import pytest
from algosdk import encoding
from algosdk.logic import get_application_address

from alpha_arcade_cli.clients.ledger import (
    AppCall,
    AssetHolding,
    AssetTransfer,
    CreatedApplicationsPage,
    GroupResult,
    Operation,
    Payment,
)
from alpha_arcade_cli.context import TradingContext
from alpha_arcade_cli.retry import RetryPolicy
from alpha_arcade_cli.services.state import ADDRESS_KEYS

USDC = 31566704
MATCHER_APP_ID = 3078581851


def make_address(seed: int) -> str:
    return encoding.encode_address(bytes([seed]) * 32)


TRADER = make_address(1)
MAKER = make_address(2)
FEE_ADDRESS = make_address(3)
CREATOR = make_address(4)


def raw_state(values: dict[str, Any]) -> list[dict[str, Any]]:
    """把 ``{key: int | str}`` 编码成 algod 的 global-state 格式。"""
    items: list[dict[str, Any]] = []
    for key, value in values.items():
        encoded_key = base64.b64encode(key.encode()).decode()
        if isinstance(value, int):
            items.append({"key": encoded_key, "value": {"type": 2, "uint": value, "bytes": ""}})
            continue
        data = encoding.decode_address(value) if key in ADDRESS_KEYS else value.encode()
        items.append({"key": encoded_key, "value": {"type": 1, "bytes": base64.b64encode(data).decode(), "uint": 0}})
    return items


class FakeLedger:
    """内存中的账本：可注入状态、记录提交的交易组、模拟索引延迟。

    Attributes:
        submitted: 每次 ``execute_group`` 收到的操作列表。
        created_app_ids: 下一次提交结果中直接返回的 ``{组内下标: app ID}``。
        pending: ``tx_id -> algod 交易记录``。
        indexed: ``tx_id -> indexer 交易记录``。
        indexer_ready_after: indexer 在前 N 次查询中返回空记录。
        submit_error: 设置后提交直接抛出该异常。
        simulate_balances: 提交时按操作语义更新余额（拆分/合并）。
    """

    def __init__(self) -> None:
        self.app_states: dict[int, list[dict[str, Any]]] = {}
        self.created: dict[str, list[dict[str, Any]]] = {}
        self.balances: dict[str, dict[int, int]] = {}
        self.asset_params: dict[int, dict[str, Any]] = {}
        self.submitted: list[list[Operation]] = []
        self.created_app_ids: dict[int, int] = {}
        self.pending: dict[str, dict[str, Any]] = {}
        self.indexed: dict[str, dict[str, Any]] = {}
        self.indexer_ready_after = 0
        self.indexer_queries = 0
        self.submit_error: Optional[Exception] = None
        self.simulate_balances = False
        self.page_size_seen: list[int] = []

    # ── 状态注入 ──────────────────────────────────────────────

    def add_market(
        self,
        app_id: int,
        *,
        yes_asset_id: int = 1001,
        no_asset_id: int = 1002,
        fee_base: int = 70_000,
        fee_address: Optional[str] = FEE_ADDRESS,
        title: str = "Will it rain tomorrow?",
        is_activated: int = 1,
        is_resolved: int = 0,
        resolution_time: int = 2_000_000_000,
        creator: str = CREATOR,
        deleted: bool = False,
    ) -> None:
        values: dict[str, Any] = {
            "yes_asset_id": yes_asset_id,
            "no_asset_id": no_asset_id,
            "fee_base_percent": fee_base,
            "title": title,
            "is_activated": is_activated,
            "is_resolved": is_resolved,
            "resolution_time": resolution_time,
            "collateral_asset_id": USDC,
        }
        if fee_address:
            values["fee_address"] = fee_address
        state = raw_state(values)
        self.app_states[app_id] = state
        self.created.setdefault(creator, []).append(
            {"id": app_id, "deleted": deleted, "params": {"global-state": state}}
        )

    def add_escrow(
        self,
        market_app_id: int,
        app_id: int,
        *,
        position: int,
        side: int,
        price: int,
        quantity: int,
        quantity_filled: int = 0,
        slippage: int = 0,
        owner: str = MAKER,
        deleted: bool = False,
    ) -> None:
        state = raw_state(
            {
                "position": position,
                "side": side,
                "price": price,
                "quantity": quantity,
                "quantity_filled": quantity_filled,
                "slippage": slippage,
                "owner": owner,
                "market_app_id": market_app_id,
            }
        )
        self.app_states[app_id] = state
        market_address = get_application_address(market_app_id)
        self.created.setdefault(market_address, []).append(
            {"id": app_id, "deleted": deleted, "params": {"global-state": state}}
        )

    def set_balance(self, address: str, asset_id: int, amount: int) -> None:
        self.balances.setdefault(address, {})[asset_id] = amount

    def balance(self, address: str, asset_id: int) -> int:
        return self.balances.get(address, {}).get(asset_id, 0)

    # ── LedgerClient 接口 ────────────────────────────────────

    async def get_application_state(self, app_id: int) -> list[dict[str, Any]]:
        if app_id not in self.app_states:
            raise KeyError(f"application {app_id} not found")
        return self.app_states[app_id]

    async def get_account_assets(self, address: str) -> list[AssetHolding]:
        return [AssetHolding(asset_id=a, amount=v) for a, v in self.balances.get(address, {}).items()]

    async def list_created_applications(
        self, address: str, *, limit: int = 100, next_token: Optional[str] = None
    ) -> CreatedApplicationsPage:
        self.page_size_seen.append(limit)
        apps = self.created.get(address, [])
        start = int(next_token or 0)
        page = apps[start : start + limit]
        more = start + limit < len(apps)
        return CreatedApplicationsPage(applications=page, next_token=str(start + limit) if more else None)

    async def get_asset_params(self, asset_id: int) -> dict[str, Any]:
        if asset_id not in self.asset_params:
            raise KeyError(f"asset {asset_id} not found")
        return self.asset_params[asset_id]

    async def execute_group(self, operations: Sequence[Operation]) -> GroupResult:
        if self.submit_error is not None:
            raise self.submit_error
        ops = list(operations)
        self.submitted.append(ops)
        if self.simulate_balances:
            self._apply(ops)
        tx_ids = [f"TX{len(self.submitted)}-{i}" for i in range(len(ops))]
        return GroupResult(tx_ids=tx_ids, confirmed_round=1234, created_app_ids=dict(self.created_app_ids))

    async def get_pending_transaction(self, tx_id: str) -> dict[str, Any]:
        return self.pending.get(tx_id, {})

    async def lookup_transaction(self, tx_id: str) -> dict[str, Any]:
        self.indexer_queries += 1
        if self.indexer_queries <= self.indexer_ready_after:
            return {}
        return self.indexed.get(tx_id, {})

    # ── 余额模拟 ──────────────────────────────────────────────

    def _apply(self, ops: list[Operation]) -> None:
        received: dict[int, int] = {}
        for op in ops:
            if isinstance(op, AssetTransfer):
                if op.is_opt_in:
                    self.balances.setdefault(op.sender, {}).setdefault(op.asset_id, 0)
                    continue
                self.set_balance(op.sender, op.asset_id, self.balance(op.sender, op.asset_id) - op.amount)
                received[op.asset_id] = received.get(op.asset_id, 0) + op.amount
            elif isinstance(op, AppCall) and op.method in ("split_shares", "merge_shares"):
                state = {item["key"]: item["value"] for item in self.app_states[op.app_id]}
                yes = state[base64.b64encode(b"yes_asset_id").decode()]["uint"]
                no = state[base64.b64encode(b"no_asset_id").decode()]["uint"]
                if op.method == "split_shares":
                    amount = received.get(USDC, 0)
                    self.set_balance(op.sender, yes, self.balance(op.sender, yes) + amount)
                    self.set_balance(op.sender, no, self.balance(op.sender, no) + amount)
                else:
                    amount = min(received.get(yes, 0), received.get(no, 0))
                    self.set_balance(op.sender, USDC, self.balance(op.sender, USDC) + amount)
            elif isinstance(op, Payment):
                continue


class SleepRecorder:
    """替代 ``asyncio.sleep``：只记录请求的等待时长。"""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def ctx(ledger: FakeLedger, sleeper: SleepRecorder) -> TradingContext:
    return TradingContext(
        ledger=ledger,
        active_address=TRADER,
        matcher_app_id=MATCHER_APP_ID,
        usdc_asset_id=USDC,
        market_creator_address=CREATOR,
        retry_policy=RetryPolicy(sleep=sleeper),
    )
