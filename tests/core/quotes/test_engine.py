"""
Tests for the Quote Acquisition Engine

Input validation, debounce, stale-result discard, automatic retries and
failure reporting.
"""

import asyncio

import pytest

from conftest import FakeQuoteProvider, make_params
from swapbridge.core.errors import AmountTooLowError, ProviderError, ProviderErrorClass, RateLimitedError
from swapbridge.core.quotes.aggregator import QuoteAggregator
from swapbridge.core.quotes.engine import QuoteAcquisitionEngine, QuoteStatus
from swapbridge.core.retry import BackoffPolicy


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def delays():
    return []


@pytest.fixture
def make_engine(coordinator, delays):
    """Engine factory with recorded, instant sleeps."""

    async def recorded_sleep(seconds):
        delays.append(seconds)
        await asyncio.sleep(0)

    def factory(*providers, debounce_seconds=0.0, max_retries=3):
        aggregator = QuoteAggregator(list(providers), coordinator)
        return QuoteAcquisitionEngine(
            aggregator,
            coordinator,
            debounce_seconds=debounce_seconds,
            backoff=BackoffPolicy(max_retries=max_retries, base_seconds=1.0, cap_seconds=8.0),
            sleep=recorded_sleep,
        )

    return factory


def _statuses(engine):
    seen = []
    engine.subscribe(lambda snapshot: seen.append(snapshot))
    return seen


# =============================================================================
# Input handling
# =============================================================================

class TestInput:
    """What update() does before any network request."""

    @pytest.mark.asyncio
    async def test_zero_amount_stays_idle_without_requests(self, make_engine, coordinator):
        provider = FakeQuoteProvider("lifi")
        engine = make_engine(provider)

        engine.update(make_params(amount="0"))
        snapshot = await engine.wait_until_resolved(timeout=1)

        assert snapshot.status == QuoteStatus.IDLE
        assert snapshot.invalid_reason == "Enter an amount greater than zero"
        assert snapshot.quote is None
        assert provider.calls == []
        assert coordinator.get_request_count("quote:lifi") == 0

    @pytest.mark.asyncio
    async def test_valid_input_debounces_then_settles(self, make_engine, delays, usdc_params):
        provider = FakeQuoteProvider("lifi")
        engine = make_engine(provider, debounce_seconds=0.8)
        seen = _statuses(engine)

        engine.update(usdc_params)
        assert engine.get_state().status == QuoteStatus.DEBOUNCING
        assert engine.get_state().is_loading

        snapshot = await engine.wait_until_resolved(timeout=1)

        assert delays == [0.8]
        assert [s.status for s in seen] == [QuoteStatus.DEBOUNCING, QuoteStatus.FETCHING, QuoteStatus.SETTLED]
        assert snapshot.quote.provider_name == "lifi"
        assert str(snapshot.formatted_output_amount) == "99.5"
        assert snapshot.estimated_minutes == 3
        await engine.close()

    @pytest.mark.asyncio
    async def test_rapid_updates_issue_one_request(self, make_engine):
        provider = FakeQuoteProvider("lifi")
        engine = make_engine(provider, debounce_seconds=0.8)

        for amount in ("1", "10", "100"):
            engine.update(make_params(amount=amount))
        snapshot = await engine.wait_until_resolved(timeout=1)

        assert len(provider.calls) == 1
        assert provider.calls[0].amount == "100"
        assert snapshot.params.amount == "100"
        assert engine.generation == 3

    @pytest.mark.asyncio
    async def test_unchanged_input_is_ignored_while_loading(self, make_engine, usdc_params):
        provider = FakeQuoteProvider("lifi")
        engine = make_engine(provider)

        engine.update(usdc_params)
        engine.update(make_params())
        await engine.wait_until_resolved(timeout=1)

        assert engine.generation == 1
        assert len(provider.calls) == 1


# =============================================================================
# Stale results
# =============================================================================

class TestStaleDiscard:
    """Results for superseded input never reach subscribers."""

    @pytest.mark.asyncio
    async def test_response_for_old_input_is_dropped(self, make_engine):
        gate = asyncio.Event()
        provider = FakeQuoteProvider("lifi", gate=gate)
        engine = make_engine(provider)
        seen = _statuses(engine)

        first = make_params(amount="100")
        second = make_params(amount="200")

        engine.update(first)
        for _ in range(10):
            await asyncio.sleep(0)
        assert len(provider.calls) == 1

        engine.update(second)
        for _ in range(10):
            await asyncio.sleep(0)
        gate.set()

        snapshot = await engine.wait_until_resolved(timeout=1)

        settled = [s for s in seen if s.status == QuoteStatus.SETTLED]
        assert len(settled) == 1
        assert settled[0].quote.request_key == second.request_key
        assert snapshot.generation == 2
        assert snapshot.params == second

    @pytest.mark.asyncio
    async def test_close_ignores_later_updates(self, make_engine, usdc_params):
        provider = FakeQuoteProvider("lifi")
        engine = make_engine(provider, debounce_seconds=5)

        engine.update(usdc_params)
        await engine.close()
        engine.update(make_params(amount="5"))

        assert engine.closed
        assert provider.calls == []
        assert engine.generation == 1


# =============================================================================
# Retries and failures
# =============================================================================

class TestRetries:
    """Bounded automatic retries for transient errors."""

    @pytest.mark.asyncio
    async def test_rate_limit_then_success(self, make_engine, delays, usdc_params):
        provider = FakeQuoteProvider("lifi", errors=[RateLimitedError(), None])
        engine = make_engine(provider)
        seen = _statuses(engine)

        engine.update(usdc_params)
        snapshot = await engine.wait_until_resolved(timeout=1)

        assert snapshot.status == QuoteStatus.SETTLED
        assert QuoteStatus.RETRYING in [s.status for s in seen]
        retrying = next(s for s in seen if s.status == QuoteStatus.RETRYING)
        assert retrying.error == "Service busy. Retry 1/3..."
        assert delays == [1.0]
        assert snapshot.error is None

    @pytest.mark.asyncio
    async def test_retries_are_bounded_with_growing_delays(self, make_engine, delays, usdc_params):
        provider = FakeQuoteProvider("lifi", errors=[RateLimitedError() for _ in range(10)])
        engine = make_engine(provider, max_retries=3)

        engine.update(usdc_params)
        snapshot = await engine.wait_until_resolved(timeout=1)

        assert snapshot.status == QuoteStatus.FAILED
        assert snapshot.error_class == ProviderErrorClass.RATE_LIMITED
        assert len(provider.calls) == 4
        assert delays == [1.0, 2.0, 4.0]
        assert delays == sorted(delays)

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(self, make_engine, delays, usdc_params):
        provider = FakeQuoteProvider("lifi", errors=[ProviderError("No available quotes", ProviderErrorClass.NO_ROUTE)])
        engine = make_engine(provider)

        engine.update(usdc_params)
        snapshot = await engine.wait_until_resolved(timeout=1)

        assert snapshot.status == QuoteStatus.FAILED
        assert snapshot.error_class == ProviderErrorClass.NO_ROUTE
        assert len(provider.calls) == 1
        assert delays == []

    @pytest.mark.asyncio
    async def test_minimum_amount_is_surfaced(self, make_engine):
        provider = FakeQuoteProvider("lifi", errors=[AmountTooLowError("Amount too low, minimum 0.05")])
        engine = make_engine(provider)

        engine.update(make_params(amount="0.01"))
        snapshot = await engine.wait_until_resolved(timeout=1)

        assert snapshot.status == QuoteStatus.FAILED
        assert snapshot.minimum_amount == "0.05"
        assert snapshot.error.endswith("(minimum 0.05 USDC)")

    @pytest.mark.asyncio
    async def test_retry_after_failure_on_same_input(self, make_engine, usdc_params):
        provider = FakeQuoteProvider("lifi", errors=[ProviderError("No route", ProviderErrorClass.NO_ROUTE), None])
        engine = make_engine(provider)

        engine.update(usdc_params)
        failed = await engine.wait_until_resolved(timeout=1)
        engine.update(usdc_params)
        settled = await engine.wait_until_resolved(timeout=1)

        assert failed.status == QuoteStatus.FAILED
        assert settled.status == QuoteStatus.SETTLED

    @pytest.mark.asyncio
    async def test_refresh_bypasses_cache(self, make_engine, usdc_params):
        provider = FakeQuoteProvider("lifi")
        engine = make_engine(provider)

        engine.update(usdc_params)
        await engine.wait_until_resolved(timeout=1)
        await engine.refresh()
        snapshot = await engine.wait_until_resolved(timeout=1)

        assert snapshot.status == QuoteStatus.SETTLED
        assert len(provider.calls) == 2
