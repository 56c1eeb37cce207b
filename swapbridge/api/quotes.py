import asyncio
from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, model_validator

from ..core.quotes.models import AssetRef, QuoteParams
from ..runtime import SwapBridgeRuntime
from .deps import get_runtime

router = APIRouter(prefix="/quotes")

ChainIdField = Union[int, str]


class AssetModel(BaseModel):
    chainId: ChainIdField = Field(description="Chain id (EVM integer or 'solana')")
    address: str = Field(description="Token address or mint; zero address for native")
    symbol: str = Field(default="", description="Token symbol")
    decimals: int = Field(default=18, ge=0, le=36, description="Token decimals")

    def to_ref(self) -> AssetRef:
        return AssetRef(chain_id=self.chainId, address=self.address, symbol=self.symbol, decimals=self.decimals)


class QuoteRequest(BaseModel):
    sourceChain: ChainIdField
    destChain: ChainIdField
    sourceAsset: AssetModel
    destAsset: AssetModel
    amount: str = Field(description="Human-readable amount, e.g. '100.5'")
    senderAddress: Optional[str] = Field(default=None, description="Wallet that will send the funds")
    slippageBps: int = Field(default=50, ge=0, le=10_000)

    def to_params(self) -> QuoteParams:
        return QuoteParams(
            source_chain=self.sourceChain,
            dest_chain=self.destChain,
            source_asset=self.sourceAsset.to_ref(),
            dest_asset=self.destAsset.to_ref(),
            amount=self.amount,
            sender_address=self.senderAddress,
            slippage_bps=self.slippageBps,
        )

    @model_validator(mode="after")
    def _check_quotable(self) -> "QuoteRequest":
        reason = self.to_params().validate()
        if reason:
            raise ValueError(reason)
        return self


@router.post("")
async def request_quote(
    request: QuoteRequest,
    runtime: SwapBridgeRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    """One-shot quote: debounce disabled, waits for a settled or failed result."""

    params = request.to_params()
    engine = runtime.new_quote_engine(debounce_seconds=0)
    config = runtime.config
    # Worst case: every retry waits the capped delay, plus one request timeout per attempt
    budget = (config.quote_max_retries + 1) * (config.request_timeout_seconds + config.quote_retry_cap_seconds)

    try:
        engine.update(params)
        snapshot = await engine.wait_until_resolved(timeout=budget)
    except asyncio.TimeoutError:
        raise HTTPException(status_code=504, detail="Timed out waiting for a quote")
    finally:
        await engine.close()

    return {
        "success": snapshot.quote is not None,
        "requestKey": params.request_key,
        **snapshot.to_dict(),
    }
