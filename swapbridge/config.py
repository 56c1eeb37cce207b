import os

from decimal import Decimal
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Ensure we pick up legacy environment variable aliases."""

        super().model_post_init(__context)

        if not self.okx_secret_key:
            fallback = os.getenv("OKX_SECRET") or os.getenv("OKX_API_SECRET")
            if fallback:
                object.__setattr__(self, "okx_secret_key", fallback)

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Li.Fi (bridge aggregator)
    enable_lifi: bool = Field(default=True, description="Enable Li.Fi bridge quotes and status")
    lifi_base_url: str = Field(default="", description="Override the default Li.Fi API base URL")
    lifi_api_key: str = Field(default="", description="Optional Li.Fi API key for higher rate limits")
    lifi_integrator: str = Field(default="swapbridge", description="Integrator id sent with Li.Fi quotes")
    lifi_fee: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        lt=1,
        description="Integrator fee fraction requested on Li.Fi quotes (0.015 = 1.5%)",
    )

    # OKX DEX aggregator
    enable_okx: bool = Field(default=False, description="Enable OKX DEX aggregator quotes")
    okx_base_url: str = Field(default="", description="Override the default OKX Web3 API base URL")
    okx_api_key: str = Field(default="", description="OKX API key")
    okx_secret_key: str = Field(
        default="",
        description="OKX secret key used to sign requests",
        validation_alias=AliasChoices("okx_secret_key", "OKX_SECRET_KEY"),
    )
    okx_passphrase: str = Field(default="", description="OKX API passphrase")
    okx_project_id: str = Field(default="", description="OKX Web3 project id")

    # Jupiter (Solana)
    enable_jupiter: bool = Field(default=True, description="Enable Jupiter quotes for Solana swaps")
    jupiter_base_url: str = Field(default="", description="Override the default Jupiter swap API base URL")
    jupiter_api_key: str = Field(default="", description="Optional Jupiter API key")

    # ChangeNow (instant exchange)
    enable_changenow: bool = Field(default=False, description="Enable ChangeNow instant exchange quotes")
    changenow_base_url: str = Field(default="", description="Override the default ChangeNow API base URL")
    changenow_api_key: str = Field(default="", description="ChangeNow API key")

    request_timeout_seconds: int = Field(default=20, ge=1, description="Provider request timeout")

    # Request coordination
    quote_cache_ttl_seconds: float = Field(default=10.0, gt=0, description="TTL for cached quotes")
    max_cache_size: int = Field(default=500, ge=1, description="Maximum coordinator cache entries")
    rate_limit_max_requests: int = Field(
        default=10,
        ge=1,
        description="Outbound quote requests allowed per rate-limit window",
    )
    rate_limit_window_seconds: float = Field(default=1.0, gt=0, description="Sliding rate-limit window")
    request_count_window_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Window after which per-tag request counters reset",
    )

    # Quote engine
    quote_debounce_seconds: float = Field(default=0.8, ge=0, description="Debounce applied to input changes")
    quote_max_retries: int = Field(default=3, ge=0, description="Automatic retries for rate-limited quotes")
    quote_retry_base_seconds: float = Field(default=1.0, gt=0, description="Base delay for quote retries")
    quote_retry_cap_seconds: float = Field(default=8.0, gt=0, description="Maximum delay between quote retries")

    # Status polling
    poll_interval_seconds: float = Field(default=15.0, gt=0, description="Bridge status poll interval")
    max_poll_seconds: float = Field(
        default=1800.0,
        gt=0,
        description="Stop actively polling a transaction after this many seconds",
    )

    # Transaction history
    transactions_dir: str = Field(
        default="",
        description="Directory for persisted bridge history; empty keeps history in memory",
    )
    max_stored_transactions: int = Field(default=50, ge=1, description="Stored transactions per account")
    transaction_retention_days: int = Field(default=30, ge=1, description="Days to keep finished transactions")

    @property
    def has_okx_credentials(self) -> bool:
        return bool(self.okx_api_key and self.okx_secret_key and self.okx_passphrase)

    @property
    def has_changenow_key(self) -> bool:
        return bool(self.changenow_api_key)

    @property
    def persistent_history(self) -> bool:
        return bool(self.transactions_dir)


# Global settings instance
settings = Settings()
