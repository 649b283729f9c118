"""Algorand algod / indexer REST 客户端封装。"""

from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence

import httpx

from ..config import Settings
from .ledger import AssetHolding, CreatedApplicationsPage, GroupResult, Operation


class GroupSubmitter(Protocol):
    """负责签名并发送原子交易组的可调用对象（钱包 / KMS / 本地账户）。"""

    async def __call__(self, operations: Sequence[Operation]) -> GroupResult:
        ...


class AlgorandClient:
    """基于 algod 与 indexer REST API 的账本客户端。

    读取全部走 HTTP JSON 接口；交易组提交委托给外部注入的
    `GroupSubmitter`。未注入时客户端为只读，提交会抛出异常。
    """

    def __init__(
        self,
        settings: Settings,
        submitter: Optional[GroupSubmitter] = None,
        *,
        algod_transport: Optional[httpx.AsyncBaseTransport] = None,
        indexer_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        algod_headers = {"X-Algo-API-Token": settings.algod_token} if settings.algod_token else {}
        indexer_headers = {"X-Indexer-API-Token": settings.indexer_token} if settings.indexer_token else {}
        self._algod = httpx.AsyncClient(
            base_url=settings.algod_url,
            headers=algod_headers,
            timeout=settings.http_timeout_seconds,
            transport=algod_transport,
        )
        self._indexer = httpx.AsyncClient(
            base_url=settings.indexer_url,
            headers=indexer_headers,
            timeout=settings.http_timeout_seconds,
            transport=indexer_transport,
        )
        self._submitter = submitter

    async def get_application_state(self, app_id: int) -> list[dict[str, Any]]:
        """读取 app 的原始 global-state。

        Args:
            app_id: 合约 app ID。

        Returns:
            algod 返回的 ``global-state`` 列表，缺失时为空列表。
        """
        resp = await self._algod.get(f"/v2/applications/{app_id}")
        resp.raise_for_status()
        payload = resp.json()
        return list((payload.get("params") or {}).get("global-state") or [])

    async def get_account_assets(self, address: str) -> list[AssetHolding]:
        """读取账户持有的全部 ASA 及余额。"""
        resp = await self._algod.get(f"/v2/accounts/{address}")
        resp.raise_for_status()
        holdings: list[AssetHolding] = []
        for item in resp.json().get("assets") or []:
            asset_id = item.get("asset-id", item.get("assetId"))
            if asset_id is None:
                continue
            holdings.append(AssetHolding(asset_id=int(asset_id), amount=int(item.get("amount") or 0)))
        return holdings

    async def list_created_applications(
        self, address: str, *, limit: int = 100, next_token: Optional[str] = None
    ) -> CreatedApplicationsPage:
        """通过 indexer 分页读取地址创建的 app。

        Args:
            address: 创建者地址。
            limit: 每页条数。
            next_token: 上一页返回的续页 token。

        Returns:
            当前页数据与下一页 token。
        """
        params: dict[str, Any] = {"limit": limit}
        if next_token:
            params["next"] = next_token
        resp = await self._indexer.get(f"/v2/accounts/{address}/created-applications", params=params)
        resp.raise_for_status()
        payload = resp.json()
        return CreatedApplicationsPage(
            applications=list(payload.get("applications") or []),
            next_token=payload.get("next-token") or None,
        )

    async def get_asset_params(self, asset_id: int) -> dict[str, Any]:
        resp = await self._indexer.get(f"/v2/assets/{asset_id}")
        resp.raise_for_status()
        return dict((resp.json().get("asset") or {}).get("params") or {})

    async def execute_group(self, operations: Sequence[Operation]) -> GroupResult:
        return await self._require_submitter()(operations)

    async def get_pending_transaction(self, tx_id: str) -> dict[str, Any]:
        resp = await self._algod.get(f"/v2/transactions/pending/{tx_id}")
        resp.raise_for_status()
        return resp.json()

    async def lookup_transaction(self, tx_id: str) -> dict[str, Any]:
        resp = await self._indexer.get(f"/v2/transactions/{tx_id}")
        resp.raise_for_status()
        return resp.json().get("transaction") or {}

    def _require_submitter(self) -> GroupSubmitter:
        if self._submitter is None:
            raise RuntimeError("No group submitter configured; AlgorandClient is read-only.")
        return self._submitter

    async def close(self) -> None:
        """关闭底层 HTTP 客户端。"""
        await self._algod.aclose()
        await self._indexer.aclose()
