"""Async client for the ChangeNow instant exchange (estimates and exchange status)."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import Settings, settings
from ..core.errors import ProviderError, ProviderErrorClass
from ..core.quotes.amounts import to_base_units
from ..core.quotes.models import ChainId, Quote, QuoteParams
from .base import HTTPProviderMixin, QuoteProvider, StatusProvider, StatusResult, StatusValue, configured_base_urls

# ChangeNow network tickers by chain id
NETWORKS: Dict[str, str] = {
    "1": "eth",
    "10": "op",
    "56": "bsc",
    "137": "matic",
    "8453": "base",
    "42161": "arbitrum",
    "43114": "avaxc",
    "solana": "sol",
}

_DONE_STATUSES = {"finished"}
_FAILED_STATUSES = {"failed", "refunded"}


def _parse_forecast(forecast: Optional[str]) -> Optional[int]:
    """``"10-60"`` minutes -> 3600 seconds (upper bound)."""
    if not forecast:
        return None
    upper = str(forecast).split("-")[-1].strip()
    try:
        return int(float(upper) * 60)
    except ValueError:
        return None


class ChangeNowProvider(HTTPProviderMixin, QuoteProvider, StatusProvider):
    """Thin wrapper around the ChangeNow v2 exchange API."""

    name = "changenow"

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_s: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        config: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or settings
        self.base_urls = configured_base_urls(base_url or self.config.changenow_base_url, ["https://api.changenow.io"])
        self.api_key = api_key if api_key is not None else self.config.changenow_api_key
        self.timeout_s = timeout_s or self.config.request_timeout_seconds
        self.transport = transport
        self.logger = logger or logging.getLogger(__name__)

    async def ready(self) -> bool:
        return self.config.enable_changenow and bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {"accept": "application/json", "x-changenow-api-key": self.api_key}

    def supports(self, params: QuoteParams) -> bool:
        return (
            bool(self.api_key)
            and str(params.source_chain) in NETWORKS
            and str(params.dest_chain) in NETWORKS
            and bool(params.source_asset.symbol)
            and bool(params.dest_asset.symbol)
        )

    async def get_quote(self, params: QuoteParams) -> Quote:
        query: Dict[str, Any] = {
            "fromCurrency": params.source_asset.symbol.lower(),
            "toCurrency": params.dest_asset.symbol.lower(),
            "fromAmount": params.amount,
            "fromNetwork": NETWORKS[str(params.source_chain)],
            "toNetwork": NETWORKS[str(params.dest_chain)],
            "flow": "standard",
            "type": "direct",
        }
        response = await self._request("GET", "/v2/exchange/estimated-amount", params=query)
        payload = response.json()

        to_amount = payload.get("toAmount")
        if to_amount in (None, "", 0):
            raise ProviderError("ChangeNow returned no estimate", ProviderErrorClass.NO_ROUTE, provider=self.name)

        # ChangeNow amounts are human-readable decimals
        to_base = to_base_units(str(to_amount), params.dest_asset.decimals)
        return Quote(
            from_asset=params.source_asset,
            to_asset=params.dest_asset,
            from_amount=params.from_amount_base_units,
            to_amount=to_base,
            to_amount_min=to_base,
            provider_name=self.name,
            request_key=params.request_key,
            estimated_duration_seconds=_parse_forecast(payload.get("transactionSpeedForecast")),
            tool="changenow",
            raw=payload,
        )

    async def get_status(
        self,
        tx_hash: str,
        source_chain: ChainId,
        dest_chain: ChainId,
        provider_hint: Optional[str] = None,
    ) -> StatusResult:
        """Look up an exchange; ``tx_hash`` is the ChangeNow exchange id."""
        try:
            response = await self._request("GET", "/v2/exchange/by-id", params={"id": tx_hash})
        except ProviderError as exc:
            if exc.status_code in (400, 404):
                return StatusResult(status=StatusValue.NOT_FOUND)
            raise

        payload = response.json()
        raw_status = str(payload.get("status") or "").lower()
        amount_to = payload.get("amountTo")

        if raw_status in _DONE_STATUSES:
            status = StatusValue.DONE
        elif raw_status in _FAILED_STATUSES:
            status = StatusValue.FAILED
        elif raw_status:
            status = StatusValue.PENDING
        else:
            status = StatusValue.NOT_FOUND

        return StatusResult(
            status=status,
            substatus=raw_status.upper() or None,
            dest_tx_hash=payload.get("payoutHash"),
            dest_amount=str(amount_to) if amount_to is not None else None,
        )
