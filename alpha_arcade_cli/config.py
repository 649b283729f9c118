from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# Alpha Arcade 主网市场创建者地址，用于链上市场发现
DEFAULT_MARKET_CREATOR_ADDRESS = "5P5Y6HTWUNG2E3VXBQDZN3ENZD3JPAIR5PKT3LOYJAPAUKOLFD6KANYTRY"


class Settings(BaseSettings):
    """运行时配置模型，从环境变量或 .env 加载。

    集中管理 algod / indexer 节点地址、Alpha partners API
    凭证、撮合合约与 USDC 资产 ID、托管单 ID 回查的退避
    表以及日志级别等。
    """

    # Algorand 节点（algod 负责状态读取与交易确认，indexer 为二级索引）
    algod_url: str = "https://mainnet-api.algonode.cloud"
    algod_token: str = ""
    indexer_url: str = "https://mainnet-idx.algonode.cloud"
    indexer_token: str = ""

    # Alpha partners REST API；未配置 key 时市场列表改走链上发现
    alpha_api_base_url: str = "https://partners.alphaarcade.com/api"
    alpha_api_key: Optional[str] = None

    # 当前签名钱包地址，只读命令可通过 --wallet 覆盖
    active_address: Optional[str] = None
    # 签名账户的 25 词助记词；为空时账本客户端只读
    signer_mnemonic: Optional[str] = None

    matcher_app_id: int = 3078581851
    usdc_asset_id: int = 31566704
    market_creator_address: str = DEFAULT_MARKET_CREATOR_ADDRESS

    # indexer 存在延迟，新建托管单 ID 按此表逐次退避查询（秒）
    escrow_lookup_backoff_seconds: list[float] = [1.0, 1.5, 2.0, 3.0, 5.0, 8.0]

    http_timeout_seconds: float = 10.0
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_prefix="", extra="ignore")

    @classmethod
    def load(cls, env_file: Optional[str | Path] = None, overrides: Optional[dict[str, Any]] = None) -> "Settings":
        """Load settings, allowing an optional .env override and programmatic overrides."""
        kwargs: dict[str, Any] = {}
        if env_file:
            kwargs["_env_file"] = env_file
        if overrides:
            kwargs.update(overrides)
        return cls(**kwargs)
