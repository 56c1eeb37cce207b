"""Async client for the Li.Fi bridge aggregator (quotes and bridge status)."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from ..config import Settings, settings
from ..core.errors import ProviderError, ProviderErrorClass, extract_minimum_amount
from ..core.quotes.models import NATIVE_EEEE, NATIVE_PLACEHOLDER, ChainId, Quote, QuoteParams
from .base import HTTPProviderMixin, QuoteProvider, StatusProvider, StatusResult, StatusValue, configured_base_urls

# Li.Fi error codes that carry a definite meaning
_LIFI_CODES = {
    1002: ProviderErrorClass.NO_ROUTE,
    1011: ProviderErrorClass.UNSUPPORTED_CHAIN,
}


def normalize_token_address(address: str) -> str:
    """Li.Fi expects the zero address for native tokens."""
    if address.lower() == NATIVE_EEEE:
        return NATIVE_PLACEHOLDER
    return address


def _sum_usd(costs: Optional[List[Dict[str, Any]]]) -> Decimal:
    total = Decimal("0")
    for cost in costs or []:
        try:
            total += Decimal(str(cost.get("amountUSD") or "0"))
        except ArithmeticError:
            continue
    return total


class LiFiProvider(HTTPProviderMixin, QuoteProvider, StatusProvider):
    """Thin wrapper around https://li.quest/v1 quote and status endpoints."""

    name = "lifi"

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        integrator: Optional[str] = None,
        fee: Optional[Decimal] = None,
        timeout_s: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        config: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or settings
        self.base_urls = configured_base_urls(base_url or self.config.lifi_base_url, ["https://li.quest"])
        self.api_key = api_key if api_key is not None else self.config.lifi_api_key
        self.integrator = integrator or self.config.lifi_integrator
        self.fee = fee if fee is not None else self.config.lifi_fee
        self.timeout_s = timeout_s or self.config.request_timeout_seconds
        self.transport = transport
        self.logger = logger or logging.getLogger(__name__)

    async def ready(self) -> bool:
        return self.config.enable_lifi

    def _headers(self) -> Dict[str, str]:
        headers = {"accept": "application/json"}
        if self.api_key:
            headers["x-lifi-api-key"] = self.api_key
        return headers

    def supports(self, params: QuoteParams) -> bool:
        # EVM chains only; Solana swaps go through Jupiter
        return isinstance(params.source_chain, int) and isinstance(params.dest_chain, int)

    async def get_quote(self, params: QuoteParams) -> Quote:
        query: Dict[str, Any] = {
            "fromChain": params.source_chain,
            "toChain": params.dest_chain,
            "fromToken": normalize_token_address(params.source_asset.address),
            "toToken": normalize_token_address(params.dest_asset.address),
            "fromAmount": params.from_amount_base_units,
            "slippage": str(Decimal(params.slippage_bps) / Decimal(10_000)),
            "integrator": self.integrator,
        }
        if params.sender_address:
            query["fromAddress"] = params.sender_address
        if self.fee:
            query["fee"] = str(self.fee)

        try:
            response = await self._request("GET", "/v1/quote", params=query)
        except ProviderError as exc:
            raise self._refine(exc) from exc

        payload = response.json()
        estimate = payload.get("estimate") or {}
        to_amount = estimate.get("toAmount")
        if not to_amount:
            raise ProviderError("Li.Fi returned a quote without an output amount", provider=self.name)

        fee_usd = _sum_usd(estimate.get("feeCosts")) + _sum_usd(estimate.get("gasCosts"))
        duration = estimate.get("executionDuration")

        return Quote(
            from_asset=params.source_asset,
            to_asset=params.dest_asset,
            from_amount=str(estimate.get("fromAmount") or params.from_amount_base_units),
            to_amount=str(to_amount),
            to_amount_min=str(estimate.get("toAmountMin") or to_amount),
            provider_name=self.name,
            request_key=params.request_key,
            estimated_duration_seconds=int(duration) if duration is not None else None,
            fee_usd=fee_usd,
            tool=payload.get("tool"),
            raw=payload,
        )

    def _refine(self, error: ProviderError) -> ProviderError:
        """Fall back to Li.Fi's numeric error code when the message is inconclusive."""
        if error.error_class == ProviderErrorClass.RATE_LIMITED:
            return error
        code_class = None
        if error.code and error.code.isdigit():
            code_class = _LIFI_CODES.get(int(error.code))
        if code_class is not None and error.error_class == ProviderErrorClass.UNKNOWN:
            error.error_class = code_class
        if error.error_class == ProviderErrorClass.AMOUNT_TOO_LOW and error.minimum_amount is None:
            error.minimum_amount = extract_minimum_amount(error.message)
        return error

    async def get_status(
        self,
        tx_hash: str,
        source_chain: ChainId,
        dest_chain: ChainId,
        provider_hint: Optional[str] = None,
    ) -> StatusResult:
        query: Dict[str, Any] = {"txHash": tx_hash, "fromChain": source_chain, "toChain": dest_chain}
        if provider_hint:
            query["bridge"] = provider_hint

        try:
            response = await self._request("GET", "/v1/status", params=query)
        except ProviderError as exc:
            # Freshly submitted transactions are unknown to Li.Fi for a while
            if exc.status_code in (400, 404):
                return StatusResult(status=StatusValue.NOT_FOUND)
            raise

        payload = response.json()
        try:
            status = StatusValue(payload.get("status", "NOT_FOUND"))
        except ValueError:
            status = StatusValue.PENDING

        receiving = payload.get("receiving") or {}
        return StatusResult(
            status=status,
            substatus=payload.get("substatus") or payload.get("substatusMessage"),
            dest_tx_hash=receiving.get("txHash"),
            dest_amount=receiving.get("amount"),
        )
