"""Alpha partners REST API 客户端封装。"""

from __future__ import annotations

from typing import Any, List, Optional

import httpx
import structlog

from ..config import Settings
from ..types import Market, MarketOption, MarketSource

logger = structlog.get_logger("clients.alpha_api")

_KNOWN_FIELDS = {
    "id",
    "title",
    "slug",
    "image",
    "marketAppId",
    "yesAssetId",
    "noAssetId",
    "yesProb",
    "noProb",
    "volume",
    "endTs",
    "resolution",
    "isResolved",
    "isLive",
    "categories",
    "featured",
    "options",
    "feeBase",
}


class AlphaApiError(RuntimeError):
    """partners API 返回非 2xx（404 除外）时抛出，携带 HTTP 状态码。"""

    def __init__(self, status_code: int, reason: str = ""):
        super().__init__(f"Alpha API error: {status_code} {reason}".rstrip())
        self.status_code = status_code
        self.reason = reason


class AlphaApiClient:
    """Alpha partners API 数据客户端。

    每个请求都带 ``x-api-key`` 头；列表接口按 ``lastEvaluatedKey``
    自动翻页。
    """

    def __init__(
        self,
        settings: Settings,
        base_url: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.base_url = base_url or settings.alpha_api_base_url
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )

    @property
    def has_api_key(self) -> bool:
        return bool(self.settings.alpha_api_key)

    async def list_live_markets(self, page_size: int = 300) -> List[Market]:
        """获取全部可交易市场。

        Args:
            page_size: 每页请求的市场数量。

        Returns:
            `Market` 列表，``source`` 为 ``api``。

        Raises:
            ValueError: 未配置 API key。
            AlphaApiError: 接口返回非 2xx。
        """
        headers = self._headers()
        markets: List[Market] = []
        last_key: Optional[str] = None

        while True:
            params: dict[str, Any] = {"activeOnly": "true", "limit": page_size}
            if last_key:
                params["lastEvaluatedKey"] = last_key
            resp = await self._http.get("/get-live-markets", params=params, headers=headers)
            _raise_for_status(resp)
            data = resp.json()

            if isinstance(data, list):
                markets.extend(_parse_markets(data))
                break
            if isinstance(data, dict) and "markets" in data:
                markets.extend(_parse_markets(data.get("markets") or []))
                last_key = data.get("lastEvaluatedKey") or None
                if not last_key:
                    break
                continue
            break

        logger.debug("alpha_api.list_live_markets", count=len(markets))
        return markets

    async def get_market(self, market_id: str) -> Optional[Market]:
        """按 ID 获取单个市场，404 时返回 None。"""
        resp = await self._http.get("/get-market", params={"marketId": market_id}, headers=self._headers())
        if resp.status_code == 404:
            return None
        _raise_for_status(resp)
        data = resp.json()
        raw = data.get("market", data) if isinstance(data, dict) else None
        if not raw:
            return None
        return _market_from_api(raw)

    def _headers(self) -> dict[str, str]:
        if not self.settings.alpha_api_key:
            raise ValueError("alpha_api_key is required for API-based market fetching; use on-chain discovery instead.")
        return {"x-api-key": self.settings.alpha_api_key}

    async def close(self) -> None:
        """关闭底层 HTTP 客户端。"""
        await self._http.aclose()


def _raise_for_status(resp: httpx.Response) -> None:
    if resp.is_success:
        return
    raise AlphaApiError(resp.status_code, resp.reason_phrase)


def _parse_markets(items: list[Any]) -> List[Market]:
    """批量解析市场，单条解析失败时跳过。"""
    results: List[Market] = []
    for item in items:
        try:
            results.append(_market_from_api(item))
        except Exception:
            continue
    return results


def _opt_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def _opt_int(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


def _market_from_api(mk: dict[str, Any]) -> Market:
    """将 API 返回的市场字典转换为 `Market`。

    Args:
        mk: 单个市场的原始字典。

    Returns:
        规范化后的 `Market`；未知字段保留在 ``extra`` 中。
    """
    options = None
    if isinstance(mk.get("options"), list):
        options = [
            MarketOption(
                id=str(opt.get("id")),
                title=str(opt.get("title") or ""),
                market_app_id=int(opt.get("marketAppId") or 0),
                yes_asset_id=int(opt.get("yesAssetId") or 0),
                no_asset_id=int(opt.get("noAssetId") or 0),
                yes_prob=float(opt.get("yesProb") or 0.0),
                no_prob=float(opt.get("noProb") or 0.0),
            )
            for opt in mk["options"]
        ]
    return Market(
        id=str(mk["id"]),
        title=str(mk.get("title") or ""),
        market_app_id=int(mk.get("marketAppId") or 0),
        yes_asset_id=int(mk.get("yesAssetId") or 0),
        no_asset_id=int(mk.get("noAssetId") or 0),
        end_ts=int(mk.get("endTs") or 0),
        slug=mk.get("slug"),
        image=mk.get("image"),
        yes_prob=_opt_float(mk.get("yesProb")),
        no_prob=_opt_float(mk.get("noProb")),
        volume=_opt_float(mk.get("volume")),
        resolution=_opt_int(mk.get("resolution")),
        is_resolved=mk.get("isResolved"),
        is_live=mk.get("isLive"),
        categories=mk.get("categories"),
        featured=mk.get("featured"),
        options=options,
        fee_base=_opt_int(mk.get("feeBase")),
        source=MarketSource.API,
        extra={k: v for k, v in mk.items() if k not in _KNOWN_FIELDS},
    )
