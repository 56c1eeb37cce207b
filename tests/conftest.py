"""Shared fakes and fixtures for the swapbridge test suite."""

import asyncio
from typing import List, Optional

import pytest

from swapbridge.core.bridge.storage import InMemoryTransactionStorage
from swapbridge.core.coordinator import RequestCoordinator
from swapbridge.core.quotes.models import AssetRef, Quote, QuoteParams
from swapbridge.providers.base import QuoteProvider, StatusProvider, StatusResult, StatusValue

OWNER = "0x50aC5CFcc81BB0872e85255D7079F8a529345D16"
OTHER_OWNER = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"

USDC_ETHEREUM = AssetRef(1, "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", "USDC", 6)
USDC_BASE = AssetRef(8453, "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", "USDC", 6)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeQuoteProvider(QuoteProvider):
    """Scripted quote provider; ``errors`` are raised in order before answering."""

    def __init__(
        self,
        name: str = "fake",
        to_amount: str = "99500000",
        errors: Optional[List[Optional[Exception]]] = None,
        gate: Optional[asyncio.Event] = None,
        supported: bool = True,
    ):
        self.name = name
        self.to_amount = to_amount
        self.errors = list(errors or [])
        self.gate = gate
        self.supported = supported
        self.calls: List[QuoteParams] = []

    async def ready(self) -> bool:
        return True

    def supports(self, params: QuoteParams) -> bool:
        return self.supported

    async def get_quote(self, params: QuoteParams) -> Quote:
        self.calls.append(params)
        if self.gate is not None:
            await self.gate.wait()
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error
        return Quote(
            from_asset=params.source_asset,
            to_asset=params.dest_asset,
            from_amount=params.from_amount_base_units,
            to_amount=self.to_amount,
            to_amount_min=str(int(self.to_amount) * 995 // 1000),
            provider_name=self.name,
            request_key=params.request_key,
            estimated_duration_seconds=180,
            tool="stargate",
        )


class FakeStatusProvider(StatusProvider):
    """Returns scripted results; the last one repeats. Exceptions are raised."""

    name = "fake"

    def __init__(self, results: List, name: str = "fake"):
        self.name = name
        self.results = list(results)
        self.calls: List[str] = []

    async def ready(self) -> bool:
        return True

    async def get_status(self, tx_hash, source_chain, dest_chain, provider_hint=None) -> StatusResult:
        self.calls.append(tx_hash)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class FakeSigner:
    """Wallet stand-in recording every call."""

    def __init__(
        self,
        sufficient: bool = True,
        approve_error: Optional[Exception] = None,
        send_error: Optional[Exception] = None,
    ):
        self.sufficient = sufficient
        self.approve_error = approve_error
        self.send_error = send_error
        self.calls: List[str] = []

    async def has_sufficient_allowance(self, owner, quote) -> bool:
        self.calls.append("allowance")
        return self.sufficient

    async def approve(self, owner, quote) -> str:
        self.calls.append("approve")
        if self.approve_error:
            raise self.approve_error
        return "0xapprove"

    async def send_source_transaction(self, owner, quote) -> str:
        self.calls.append("send")
        if self.send_error:
            raise self.send_error
        return "0xsource"


class SlowStorage(InMemoryTransactionStorage):
    """In-memory storage that yields to the loop on every call and can fail writes."""

    def __init__(self, put_errors: Optional[List[Exception]] = None):
        super().__init__()
        self.put_errors = list(put_errors or [])
        self.puts = 0

    async def get(self, owner):
        await asyncio.sleep(0)
        return await super().get(owner)

    async def put(self, owner, records):
        self.puts += 1
        await asyncio.sleep(0)
        if self.put_errors:
            raise self.put_errors.pop(0)
        await super().put(owner, records)


def make_params(amount: Optional[str] = "100", **overrides) -> QuoteParams:
    values = dict(
        source_chain=1,
        dest_chain=8453,
        source_asset=USDC_ETHEREUM,
        dest_asset=USDC_BASE,
        amount=amount,
        sender_address=OWNER,
        slippage_bps=50,
    )
    values.update(overrides)
    return QuoteParams(**values)


def make_quote(params: Optional[QuoteParams] = None, provider_name: str = "fake") -> Quote:
    params = params or make_params()
    return Quote(
        from_asset=params.source_asset,
        to_asset=params.dest_asset,
        from_amount=params.from_amount_base_units,
        to_amount="99500000",
        to_amount_min="99000000",
        provider_name=provider_name,
        request_key=params.request_key,
        estimated_duration_seconds=180,
        tool="stargate",
    )


def done(dest_tx_hash: str = "0xdest", dest_amount: str = "99500000") -> StatusResult:
    return StatusResult(status=StatusValue.DONE, substatus="COMPLETED", dest_tx_hash=dest_tx_hash, dest_amount=dest_amount)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coordinator(clock):
    async def fast_sleep(seconds):
        clock.advance(seconds)
        await asyncio.sleep(0)

    return RequestCoordinator(max_requests=10, window_seconds=1.0, default_ttl=10.0, clock=clock, sleep=fast_sleep)


@pytest.fixture
def usdc_params():
    """100 USDC from Ethereum to Base."""
    return make_params()
