"""
Jupiter swap quotes for Solana.

Jupiter only routes within Solana; chains are identified by the string id
``"solana"`` and tokens by their mint address.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import Settings, settings
from ..core.errors import ProviderError, ProviderErrorClass, classify_message
from ..core.quotes.models import NATIVE_PLACEHOLDER, Quote, QuoteParams
from .base import HTTPProviderMixin, QuoteProvider, configured_base_urls

SOLANA_CHAIN_ID = "solana"
WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"


class JupiterProvider(HTTPProviderMixin, QuoteProvider):
    """Jupiter swap API quote client. No API key required on the lite host."""

    name = "jupiter"
    timeout_s = 15

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
        self.api_key = api_key if api_key is not None else self.config.jupiter_api_key
        defaults = ["https://api.jup.ag"] if self.api_key else ["https://lite-api.jup.ag"]
        self.base_urls = configured_base_urls(base_url or self.config.jupiter_base_url, defaults)
        self.timeout_s = timeout_s or self.timeout_s
        self.transport = transport
        self.logger = logger or logging.getLogger(__name__)

    async def ready(self) -> bool:
        return self.config.enable_jupiter

    def _headers(self) -> Dict[str, str]:
        headers = {"accept": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def supports(self, params: QuoteParams) -> bool:
        return params.source_chain == SOLANA_CHAIN_ID and params.dest_chain == SOLANA_CHAIN_ID

    @staticmethod
    def _mint(address: str) -> str:
        # Native SOL is quoted through its wrapped mint
        if address.lower() in ("sol", NATIVE_PLACEHOLDER):
            return WRAPPED_SOL_MINT
        return address

    async def get_quote(self, params: QuoteParams) -> Quote:
        query: Dict[str, Any] = {
            "inputMint": self._mint(params.source_asset.address),
            "outputMint": self._mint(params.dest_asset.address),
            "amount": params.from_amount_base_units,
            "slippageBps": params.slippage_bps,
            "swapMode": "ExactIn",
        }
        response = await self._request("GET", "/swap/v1/quote", params=query)
        payload = response.json()

        if payload.get("error"):
            # Jupiter sometimes answers 200 with an error document
            message = str(payload.get("errorCode") or payload["error"])
            raise ProviderError(message, classify_message(message), provider=self.name)

        out_amount = payload.get("outAmount")
        if not out_amount:
            raise ProviderError("No route found by Jupiter", ProviderErrorClass.NO_ROUTE, provider=self.name)

        return Quote(
            from_asset=params.source_asset,
            to_asset=params.dest_asset,
            from_amount=str(payload.get("inAmount") or params.from_amount_base_units),
            to_amount=str(out_amount),
            to_amount_min=str(payload.get("otherAmountThreshold") or out_amount),
            provider_name=self.name,
            request_key=params.request_key,
            estimated_duration_seconds=None,
            tool="jupiter",
            raw=payload,
        )
