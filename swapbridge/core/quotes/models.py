"""
Quote Models

Immutable value types for quote requests and provider quotes. Amounts are
integer strings in smallest units; only ``QuoteParams.amount`` keeps the
human-readable decimal the caller typed.
"""

import hashlib
import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from .amounts import parse_decimal, to_base_units

ChainId = Union[int, str]

NATIVE_PLACEHOLDER = "0x0000000000000000000000000000000000000000"
NATIVE_EEEE = "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee"


@dataclass(frozen=True)
class AssetRef:
    """A token on a specific chain."""

    chain_id: ChainId
    address: str
    symbol: str = ""
    decimals: int = 18

    @property
    def is_native(self) -> bool:
        return self.address.lower() in (NATIVE_PLACEHOLDER, NATIVE_EEEE)

    def same_asset(self, other: "AssetRef") -> bool:
        return str(self.chain_id) == str(other.chain_id) and self.address.lower() == other.address.lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chainId": self.chain_id,
            "address": self.address,
            "symbol": self.symbol,
            "decimals": self.decimals,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssetRef":
        return cls(
            chain_id=data["chainId"],
            address=data["address"],
            symbol=data.get("symbol", ""),
            decimals=int(data.get("decimals", 18)),
        )


@dataclass(frozen=True)
class QuoteParams:
    """Inputs of one quote request."""

    source_chain: Optional[ChainId]
    dest_chain: Optional[ChainId]
    source_asset: Optional[AssetRef]
    dest_asset: Optional[AssetRef]
    amount: Optional[str]
    sender_address: Optional[str] = None
    slippage_bps: int = 50

    def validate(self) -> Optional[str]:
        """Return why these params cannot be quoted, or None when they can."""
        if self.source_chain is None or self.dest_chain is None:
            return "Select source and destination chains"
        if self.source_asset is None or self.dest_asset is None:
            return "Select tokens to swap"
        if self.amount is None or not str(self.amount).strip():
            return "Enter an amount"
        parsed = parse_decimal(self.amount)
        if parsed is None or parsed <= 0:
            return "Enter an amount greater than zero"
        if self.source_asset.same_asset(self.dest_asset):
            return "Source and destination tokens are the same"
        if not 0 <= self.slippage_bps <= 10_000:
            return "Slippage must be between 0 and 10000 bps"
        return None

    @property
    def is_valid(self) -> bool:
        return self.validate() is None

    @property
    def is_cross_chain(self) -> bool:
        return str(self.source_chain) != str(self.dest_chain)

    @property
    def from_amount_base_units(self) -> str:
        return to_base_units(self.amount, self.source_asset.decimals)

    @property
    def request_key(self) -> str:
        """Deterministic key over every input field."""
        canonical = json.dumps(asdict(self), sort_keys=True, separators=(",", ":"), default=str)
        return "quote:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Quote:
    """A settled provider quote. Changed inputs always produce a new Quote."""

    from_asset: AssetRef
    to_asset: AssetRef
    from_amount: str
    to_amount: str
    to_amount_min: str
    provider_name: str
    request_key: str
    estimated_duration_seconds: Optional[int] = None
    fee_usd: Optional[Decimal] = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    tool: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False, hash=False)

    @property
    def to_amount_int(self) -> int:
        return int(self.to_amount)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fromAsset": self.from_asset.to_dict(),
            "toAsset": self.to_asset.to_dict(),
            "fromAmount": self.from_amount,
            "toAmount": self.to_amount,
            "toAmountMin": self.to_amount_min,
            "providerName": self.provider_name,
            "tool": self.tool,
            "estimatedDurationSeconds": self.estimated_duration_seconds,
            "feeUsd": str(self.fee_usd) if self.fee_usd is not None else None,
            "fetchedAt": self.fetched_at.isoformat(),
            "requestKey": self.request_key,
        }
