"""
Quote Aggregator

Fans one quote request out to every provider that can route it and keeps
the best answer (largest output amount).
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from ..coordinator import RequestCoordinator
from ..errors import ProviderError, ProviderErrorClass, classify_error, most_actionable
from .models import Quote, QuoteParams


class QuoteAggregator:
    """Concurrent multi-provider quoting through the shared coordinator."""

    def __init__(
        self,
        providers: Sequence,
        coordinator: RequestCoordinator,
        logger: Optional[logging.Logger] = None,
    ):
        self.providers = list(providers)
        self.coordinator = coordinator
        self.logger = logger or logging.getLogger(__name__)

    def eligible(self, params: QuoteParams) -> List:
        return [p for p in self.providers if p.supports(params)]

    async def _quote_from(self, provider, params: QuoteParams) -> Quote:
        async def produce() -> Quote:
            self.coordinator.record_request(f"quote:{provider.name}")
            try:
                return await provider.get_quote(params)
            except ProviderError:
                raise
            except Exception as e:
                raise classify_error(e, provider=provider.name) from e

        return await self.coordinator.dedupe(f"{params.request_key}:{provider.name}", produce)

    async def get_quote(self, params: QuoteParams) -> Quote:
        """
        Best quote across providers.

        Raises:
            ProviderError: the most actionable failure when no provider
                produced a quote
        """
        providers = self.eligible(params)
        if not providers:
            raise ProviderError(
                f"No provider supports {params.source_chain} -> {params.dest_chain}",
                ProviderErrorClass.UNSUPPORTED_CHAIN,
            )

        results = await asyncio.gather(
            *(self._quote_from(p, params) for p in providers),
            return_exceptions=True,
        )

        quotes: List[Quote] = []
        errors: List[ProviderError] = []
        for provider, result in zip(providers, results):
            if isinstance(result, Quote):
                quotes.append(result)
            elif isinstance(result, Exception):
                error = classify_error(result, provider=provider.name)
                self.logger.info(f"{provider.name} quote failed: {error.error_class.value} {error.message}")
                errors.append(error)
            else:
                # CancelledError and friends
                raise result

        if not quotes:
            raise most_actionable(errors)

        best = max(quotes, key=lambda q: q.to_amount_int)
        self.logger.debug(
            f"Best quote from {best.provider_name} ({len(quotes)}/{len(providers)} providers answered)"
        )
        return best
