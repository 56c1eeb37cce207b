"""Async client for the OKX DEX aggregator (same-chain EVM swaps)."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import httpx

from ..config import Settings, settings
from ..core.errors import (
    RATE_LIMIT_CODES,
    ProviderError,
    ProviderErrorClass,
    RateLimitedError,
    classify_message,
    extract_minimum_amount,
)
from ..core.quotes.models import Quote, QuoteParams
from .base import HTTPProviderMixin, QuoteProvider, configured_base_urls

QUOTE_PATH = "/api/v6/dex/aggregator/quote"


def _okx_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def sign_request(secret_key: str, timestamp: str, method: str, request_path: str, body: str = "") -> str:
    """Base64 HMAC-SHA256 over ``timestamp + METHOD + path?query + body``."""
    message = f"{timestamp}{method.upper()}{request_path}{body}"
    digest = hmac.new(secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class OkxDexProvider(HTTPProviderMixin, QuoteProvider):
    """Signed client for https://web3.okx.com aggregator quotes."""

    name = "okx"

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        passphrase: Optional[str] = None,
        project_id: Optional[str] = None,
        timeout_s: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timestamp_factory: Callable[[], str] = _okx_timestamp,
        config: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or settings
        self.base_urls = configured_base_urls(base_url or self.config.okx_base_url, ["https://web3.okx.com"])
        self.api_key = api_key if api_key is not None else self.config.okx_api_key
        self.secret_key = secret_key if secret_key is not None else self.config.okx_secret_key
        self.passphrase = passphrase if passphrase is not None else self.config.okx_passphrase
        self.project_id = project_id if project_id is not None else self.config.okx_project_id
        self.timeout_s = timeout_s or self.config.request_timeout_seconds
        self.transport = transport
        self._timestamp = timestamp_factory
        self.logger = logger or logging.getLogger(__name__)

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.secret_key and self.passphrase)

    async def ready(self) -> bool:
        return self.config.enable_okx and self.has_credentials

    def _signed_headers(self, method: str, request_path: str, body: str = "") -> Dict[str, str]:
        timestamp = self._timestamp()
        headers = {
            "OK-ACCESS-KEY": self.api_key,
            "OK-ACCESS-SIGN": sign_request(self.secret_key, timestamp, method, request_path, body),
            "OK-ACCESS-TIMESTAMP": timestamp,
            "OK-ACCESS-PASSPHRASE": self.passphrase,
            "content-type": "application/json",
        }
        if self.project_id:
            headers["OK-ACCESS-PROJECT"] = self.project_id
        return headers

    def supports(self, params: QuoteParams) -> bool:
        return (
            self.has_credentials
            and isinstance(params.source_chain, int)
            and params.source_chain == params.dest_chain
        )

    async def get_quote(self, params: QuoteParams) -> Quote:
        query = urlencode({
            "chainIndex": params.source_chain,
            "fromTokenAddress": params.source_asset.address,
            "toTokenAddress": params.dest_asset.address,
            "amount": params.from_amount_base_units,
            "slippage": str(Decimal(params.slippage_bps) / Decimal(100)),
        })
        # The signature covers the exact query string sent on the wire
        request_path = f"{QUOTE_PATH}?{query}"
        response = await self._request("GET", request_path, headers=self._signed_headers("GET", request_path))
        payload = response.json()

        code = str(payload.get("code", "0"))
        if code != "0":
            raise self._error_from_body(code, payload.get("msg") or "OKX API error")

        data = payload.get("data") or []
        if not data:
            raise ProviderError("No route returned by OKX", ProviderErrorClass.NO_ROUTE, provider=self.name)
        route = data[0]

        to_amount = str(route.get("toTokenAmount") or "0")
        if to_amount == "0":
            raise ProviderError("OKX quote has no output amount", ProviderErrorClass.NO_ROUTE, provider=self.name)

        # Aggregator quotes carry no min-received; derive it from slippage
        min_amount = int(to_amount) * (10_000 - params.slippage_bps) // 10_000
        trade_fee = route.get("tradeFee")

        return Quote(
            from_asset=params.source_asset,
            to_asset=params.dest_asset,
            from_amount=str(route.get("fromTokenAmount") or params.from_amount_base_units),
            to_amount=to_amount,
            to_amount_min=str(min_amount),
            provider_name=self.name,
            request_key=params.request_key,
            estimated_duration_seconds=None,
            fee_usd=Decimal(str(trade_fee)) if trade_fee not in (None, "") else None,
            tool="okx-dex",
            raw=route,
        )

    def _error_from_body(self, code: str, message: str) -> ProviderError:
        if code in RATE_LIMIT_CODES:
            error = RateLimitedError(message, provider=self.name)
            error.code = code
            return error
        error_class = classify_message(message)
        return ProviderError(
            message,
            error_class,
            provider=self.name,
            minimum_amount=extract_minimum_amount(message) if error_class == ProviderErrorClass.AMOUNT_TOO_LOW else None,
            code=code,
        )
