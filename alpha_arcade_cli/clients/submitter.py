"""基于 py-algorand-sdk 的交易组签名与提交。

把 `Payment` / `AssetTransfer` / `AppCall` 转成 algosdk 交易，装入
`AtomicTransactionComposer` 后签名、发送并等待确认。合约方法的 ABI
签名与参数顺序集中在 `CONTRACT_METHODS` 中，`AppCall.args` 按名称取值。
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import structlog
from algosdk import abi, account, mnemonic, transaction
from algosdk.atomic_transaction_composer import (
    AccountTransactionSigner,
    AtomicTransactionComposer,
    AtomicTransactionResponse,
    TransactionSigner,
    TransactionWithSigner,
)
from algosdk.v2client import algod

from ..config import Settings
from .ledger import AppCall, AssetTransfer, GroupResult, Operation, Payment, created_app_id

logger = structlog.get_logger("clients.submitter")

# 发送后等待确认的最大轮数
WAIT_ROUNDS = 4


@dataclass(frozen=True)
class MethodSpec:
    """合约方法的 ABI 描述与 `AppCall.args` 中参数名的顺序。"""

    method: abi.Method
    arg_names: tuple[str, ...]


def _method(signature: str, *arg_names: str) -> MethodSpec:
    method = abi.Method.from_signature(signature)
    if len(method.args) != len(arg_names):
        raise ValueError(f"{signature} takes {len(method.args)} args, got names {arg_names}")
    return MethodSpec(method=method, arg_names=arg_names)


CONTRACT_METHODS: dict[str, MethodSpec] = {
    "create_escrow": _method(
        "create_escrow(uint64,uint64,uint64,uint64)void",
        "price",
        "quantity",
        "slippage",
        "position",
    ),
    # market_app / maker 为 app 引用类型，编码时自动加入 foreign apps
    "propose_a_match": _method(
        "propose_a_match(application,application,uint64,address,address,address,uint64)void",
        "market_app",
        "maker",
        "quantity_matched",
        "taker_address",
        "maker_address",
        "fee_address",
        "taker_app_created_index_offset",
    ),
    "delete_escrow": _method("delete_escrow(uint64,address)void", "escrow_app_id", "algo_receiver"),
    "split_shares": _method("split_shares()void"),
    "merge_shares": _method("merge_shares()void"),
    "claim": _method("claim()void"),
}


def _with_fee(sp: transaction.SuggestedParams, fee: Optional[int]) -> transaction.SuggestedParams:
    if fee is None:
        return sp
    params = copy.copy(sp)
    params.flat_fee = True
    params.fee = fee
    return params


def _method_args(call: AppCall) -> tuple[MethodSpec, list[Any]]:
    spec = CONTRACT_METHODS.get(call.method)
    if spec is None:
        raise ValueError(f"Unknown contract method: {call.method}")
    missing = [name for name in spec.arg_names if name not in call.args]
    if missing:
        raise ValueError(f"{call.method} is missing args: {', '.join(missing)}")
    return spec, [call.args[name] for name in spec.arg_names]


def created_app_ids(response: AtomicTransactionResponse) -> dict[int, int]:
    """从执行结果中收集 ``{组内下标: 新建 app ID}``。

    只有 ABI 方法调用带回交易记录，其内部交易里的新建 app 即为托管单。
    """
    positions = {tx_id: index for index, tx_id in enumerate(response.tx_ids)}
    created: dict[int, int] = {}
    for result in response.abi_results:
        app_id = created_app_id(result.tx_info or {})
        if app_id and result.tx_id in positions:
            created[positions[result.tx_id]] = app_id
    return created


class AlgosdkSubmitter:
    """用单一签名者签名并提交交易组的 `GroupSubmitter` 实现。

    algosdk 的 algod 客户端是同步的，网络调用放到线程中执行。
    """

    def __init__(self, client: algod.AlgodClient, signer: TransactionSigner, *, wait_rounds: int = WAIT_ROUNDS):
        self.client = client
        self.signer = signer
        self.wait_rounds = wait_rounds

    @classmethod
    def from_mnemonic(cls, settings: Settings, words: str) -> "AlgosdkSubmitter":
        private_key = mnemonic.to_private_key(words)
        client = algod.AlgodClient(settings.algod_token, settings.algod_url)
        return cls(client, AccountTransactionSigner(private_key))

    def build_composer(
        self, operations: Sequence[Operation], sp: transaction.SuggestedParams
    ) -> AtomicTransactionComposer:
        """按顺序把操作装入 composer，不做任何网络调用。

        Args:
            operations: 交易组操作，顺序即组内顺序。
            sp: 建议参数；`AppCall.fee` 非空时以固定手续费覆盖。

        Returns:
            待签名的 `AtomicTransactionComposer`。

        Raises:
            ValueError: 未知的合约方法或缺少参数。
            TypeError: 不支持的操作类型。
        """
        atc = AtomicTransactionComposer()
        for op in operations:
            if isinstance(op, Payment):
                txn = transaction.PaymentTxn(sender=op.sender, sp=sp, receiver=op.receiver, amt=op.amount)
                atc.add_transaction(TransactionWithSigner(txn, self.signer))
            elif isinstance(op, AssetTransfer):
                txn = transaction.AssetTransferTxn(
                    sender=op.sender,
                    sp=sp,
                    receiver=op.receiver,
                    amt=op.amount,
                    index=op.asset_id,
                    close_assets_to=op.close_remainder_to,
                )
                atc.add_transaction(TransactionWithSigner(txn, self.signer))
            elif isinstance(op, AppCall):
                spec, args = _method_args(op)
                atc.add_method_call(
                    app_id=op.app_id,
                    method=spec.method,
                    sender=op.sender,
                    sp=_with_fee(sp, op.fee),
                    signer=self.signer,
                    method_args=args,
                    accounts=list(op.accounts) or None,
                    foreign_apps=list(op.foreign_apps) or None,
                    foreign_assets=list(op.foreign_assets) or None,
                )
            else:
                raise TypeError(f"Unsupported operation: {type(op).__name__}")
        return atc

    async def __call__(self, operations: Sequence[Operation]) -> GroupResult:
        sp = await asyncio.to_thread(self.client.suggested_params)
        atc = self.build_composer(operations, sp)
        response = await asyncio.to_thread(atc.execute, self.client, self.wait_rounds)
        created = created_app_ids(response)
        logger.info(
            "submitter.group_confirmed",
            size=len(response.tx_ids),
            confirmed_round=response.confirmed_round,
            created=created,
        )
        return GroupResult(
            tx_ids=list(response.tx_ids),
            confirmed_round=response.confirmed_round,
            created_app_ids=created,
        )


def build_submitter(settings: Settings) -> Optional[AlgosdkSubmitter]:
    """配置了签名助记词时构建提交器，否则返回 None（只读）。

    Raises:
        ValueError: 助记词对应的地址与 ``active_address`` 不一致。
    """
    if not settings.signer_mnemonic:
        return None
    address = account.address_from_private_key(mnemonic.to_private_key(settings.signer_mnemonic))
    if settings.active_address and settings.active_address != address:
        raise ValueError("signer_mnemonic does not belong to active_address")
    return AlgosdkSubmitter.from_mnemonic(settings, settings.signer_mnemonic)
