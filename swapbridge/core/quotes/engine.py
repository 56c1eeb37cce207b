"""
Quote Acquisition Engine

Turns a stream of caller input changes into at most one settled quote for
the latest input:

    idle -> debouncing -> fetching -> settled
                              |  ^
                              v  |
                           retrying -> failed

Every input change bumps a generation counter and cancels the token of the
previous generation, so a response that arrives for superseded input is
dropped instead of being shown.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from ..coordinator import RequestCoordinator
from ..errors import ProviderErrorClass, classify_error, user_message
from ..retry import BackoffPolicy
from ..state import StateManager
from .aggregator import QuoteAggregator
from .amounts import estimated_minutes, exchange_rate, from_base_units
from .models import Quote, QuoteParams


class QuoteStatus(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    FETCHING = "fetching"
    SETTLED = "settled"
    RETRYING = "retrying"
    FAILED = "failed"


RESOLVED_STATUSES = frozenset({QuoteStatus.IDLE, QuoteStatus.SETTLED, QuoteStatus.FAILED})


class CancellationToken:
    """Marks the work of one generation as superseded."""

    def __init__(self, generation: int):
        self.generation = generation
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass(frozen=True)
class QuoteSnapshot:
    """What a subscriber sees at any instant."""

    status: QuoteStatus = QuoteStatus.IDLE
    params: Optional[QuoteParams] = None
    quote: Optional[Quote] = None
    error: Optional[str] = None
    error_class: Optional[ProviderErrorClass] = None
    minimum_amount: Optional[str] = None
    retry_attempt: int = 0
    generation: int = 0
    invalid_reason: Optional[str] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_loading(self) -> bool:
        return self.status in (QuoteStatus.DEBOUNCING, QuoteStatus.FETCHING, QuoteStatus.RETRYING)

    @property
    def formatted_output_amount(self) -> Optional[Decimal]:
        if self.quote is None:
            return None
        return from_base_units(self.quote.to_amount, self.quote.to_asset.decimals)

    @property
    def exchange_rate(self) -> Optional[Decimal]:
        output = self.formatted_output_amount
        if output is None or self.params is None:
            return None
        return exchange_rate(self.params.amount, output)

    @property
    def estimated_minutes(self) -> Optional[int]:
        if self.quote is None:
            return None
        return estimated_minutes(self.quote.estimated_duration_seconds)

    def to_dict(self) -> Dict[str, Any]:
        output = self.formatted_output_amount
        rate = self.exchange_rate
        return {
            "status": self.status.value,
            "quote": self.quote.to_dict() if self.quote else None,
            "error": self.error,
            "errorClass": self.error_class.value if self.error_class else None,
            "minimumAmount": self.minimum_amount,
            "retryAttempt": self.retry_attempt,
            "generation": self.generation,
            "invalidReason": self.invalid_reason,
            "formattedOutputAmount": str(output) if output is not None else None,
            "exchangeRate": str(rate) if rate is not None else None,
            "estimatedMinutes": self.estimated_minutes,
            "updatedAt": self.updated_at.isoformat(),
        }


class QuoteAcquisitionEngine:
    """
    One engine per caller (one quote form, one API request).

    Public methods never raise provider errors; failures are reported through
    the snapshot.
    """

    def __init__(
        self,
        aggregator: QuoteAggregator,
        coordinator: RequestCoordinator,
        debounce_seconds: float = 0.8,
        backoff: Optional[BackoffPolicy] = None,
        cache_ttl: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self.aggregator = aggregator
        self.coordinator = coordinator
        self.debounce_seconds = debounce_seconds
        self.backoff = backoff or BackoffPolicy()
        self.cache_ttl = cache_ttl
        self._sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

        self._state: StateManager[QuoteSnapshot] = StateManager(QuoteSnapshot(), logger=self.logger)
        self._generation = 0
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Task] = None
        self._params: Optional[QuoteParams] = None
        self._resolved = asyncio.Event()
        self._resolved.set()
        self._closed = False

    # ==================== Observation ====================

    def get_state(self) -> QuoteSnapshot:
        return self._state.get_state()

    def subscribe(self, listener: Callable[[QuoteSnapshot], None]) -> Callable[[], None]:
        return self._state.subscribe(listener)

    @property
    def generation(self) -> int:
        return self._generation

    async def wait_until_resolved(self, timeout: Optional[float] = None) -> QuoteSnapshot:
        """Wait until the current generation is idle, settled or failed."""
        await asyncio.wait_for(self._resolved.wait(), timeout)
        return self.get_state()

    def _publish(self, **changes: Any) -> None:
        snapshot = replace(self.get_state(), updated_at=datetime.now(timezone.utc), **changes)
        if snapshot.status in RESOLVED_STATUSES:
            self._resolved.set()
        else:
            self._resolved.clear()
        self._state.set_state(snapshot)

    # ==================== Input ====================

    def update(self, params: QuoteParams) -> None:
        """Feed new input. Must be called from the running event loop."""
        if self._closed:
            return

        current = self.get_state()
        if (
            params == self._params
            and current.status not in (QuoteStatus.IDLE, QuoteStatus.FAILED)
        ):
            return

        self._params = params
        token = self._next_generation()

        reason = params.validate()
        if reason is not None:
            self._publish(
                status=QuoteStatus.IDLE,
                params=params,
                quote=None,
                error=None,
                error_class=None,
                minimum_amount=None,
                retry_attempt=0,
                generation=token.generation,
                invalid_reason=reason,
            )
            return

        self._publish(
            status=QuoteStatus.DEBOUNCING,
            params=params,
            quote=None,
            error=None,
            error_class=None,
            minimum_amount=None,
            retry_attempt=0,
            generation=token.generation,
            invalid_reason=None,
        )
        self._task = asyncio.ensure_future(self._run(params, token, self.debounce_seconds))

    async def refresh(self) -> None:
        """Re-quote the current input, bypassing cached results."""
        params = self._params
        if self._closed or params is None or not params.is_valid:
            return
        await self.coordinator.invalidate_prefix(params.request_key)

        token = self._next_generation()
        self._publish(
            status=QuoteStatus.FETCHING,
            params=params,
            error=None,
            error_class=None,
            minimum_amount=None,
            retry_attempt=0,
            generation=token.generation,
        )
        self._task = asyncio.ensure_future(self._run(params, token, 0))

    def _next_generation(self) -> CancellationToken:
        if self._token is not None:
            self._token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._generation += 1
        self._token = CancellationToken(self._generation)
        return self._token

    # ==================== Acquisition ====================

    async def _run(self, params: QuoteParams, token: CancellationToken, debounce: float) -> None:
        try:
            if debounce > 0:
                await self._sleep(debounce)
            await self._acquire(params, token)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.exception(f"Quote acquisition crashed: {e}")
            if not token.cancelled:
                self._publish(status=QuoteStatus.FAILED, error=user_message(classify_error(e)))

    async def _acquire(self, params: QuoteParams, token: CancellationToken) -> None:
        attempt = 0
        key = params.request_key

        while True:
            if token.cancelled:
                return
            self._publish(status=QuoteStatus.FETCHING, retry_attempt=attempt)

            try:
                await self.coordinator.wait_for_slot()
                quote = await self.coordinator.dedupe(
                    key, lambda: self.aggregator.get_quote(params), self.cache_ttl
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = classify_error(e)
                if token.cancelled:
                    self.logger.debug(f"Dropping error for superseded generation {token.generation}")
                    return

                if error.retryable and self.backoff.can_retry(attempt):
                    delay = self.backoff.get_delay(attempt)
                    attempt += 1
                    self.logger.info(
                        f"Quote {error.error_class.value}, retry {attempt}/{self.backoff.max_retries} in {delay:.2f}s"
                    )
                    self._publish(
                        status=QuoteStatus.RETRYING,
                        error=f"Service busy. Retry {attempt}/{self.backoff.max_retries}...",
                        error_class=error.error_class,
                        retry_attempt=attempt,
                    )
                    await self._sleep(delay)
                    continue

                self.logger.info(f"Quote failed: {error.error_class.value} {error.message}")
                self._publish(
                    status=QuoteStatus.FAILED,
                    quote=None,
                    error=self._failure_message(error, params),
                    error_class=error.error_class,
                    minimum_amount=error.minimum_amount,
                    retry_attempt=attempt,
                )
                return

            if token.cancelled:
                self.logger.debug(f"Dropping quote for superseded generation {token.generation}")
                return

            self._publish(
                status=QuoteStatus.SETTLED,
                quote=quote,
                error=None,
                error_class=None,
                minimum_amount=None,
                retry_attempt=0,
            )
            return

    @staticmethod
    def _failure_message(error, params: QuoteParams) -> str:
        message = user_message(error)
        if error.error_class == ProviderErrorClass.AMOUNT_TOO_LOW and error.minimum_amount:
            minimum = error.minimum_amount
            if params.source_asset is not None and params.source_asset.symbol:
                minimum = f"{minimum} {params.source_asset.symbol}"
            message = f"{message} (minimum {minimum})"
        return message

    # ==================== Teardown ====================

    async def close(self) -> None:
        """Cancel pending timers and in-flight work; later updates are ignored."""
        self._closed = True
        if self._token is not None:
            self._token.cancel()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._resolved.set()

    @property
    def closed(self) -> bool:
        return self._closed
