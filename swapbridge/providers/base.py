from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from ..core.errors import ProviderError, classify_error
from ..core.quotes.models import ChainId, Quote, QuoteParams


class StatusValue(str, Enum):
    PENDING = "PENDING"
    DONE = "DONE"
    FAILED = "FAILED"
    NOT_FOUND = "NOT_FOUND"


@dataclass(frozen=True)
class StatusResult:
    """Outcome of one status lookup for a source transaction."""

    status: StatusValue
    substatus: Optional[str] = None
    dest_tx_hash: Optional[str] = None
    dest_amount: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (StatusValue.DONE, StatusValue.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "substatus": self.substatus,
            "destTxHash": self.dest_tx_hash,
            "destAmount": self.dest_amount,
        }


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: int = 20

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass

    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        if not await self.ready():
            return {"status": "disabled", "provider": self.name}
        return {"status": "ready", "provider": self.name}


class QuoteProvider(Provider):
    """Provider that can price a swap or bridge"""

    def supports(self, params: QuoteParams) -> bool:
        """Whether this provider can route ``params`` at all."""
        return True

    @abstractmethod
    async def get_quote(self, params: QuoteParams) -> Quote:
        """Return a quote or raise ProviderError"""
        pass


class StatusProvider(Provider):
    """Provider that can report the progress of a submitted bridge"""

    @abstractmethod
    async def get_status(
        self,
        tx_hash: str,
        source_chain: ChainId,
        dest_chain: ChainId,
        provider_hint: Optional[str] = None,
    ) -> StatusResult:
        pass


class HTTPProviderMixin:
    """
    httpx plumbing shared by the HTTP adapters.

    Each request opens a short-lived ``httpx.AsyncClient`` and walks the
    configured base URLs, moving on after transport errors or 404/405.
    """

    name: str = "http"
    base_urls: List[str]
    timeout_s: int = 20
    transport: Optional[httpx.AsyncBaseTransport] = None
    logger: logging.Logger

    def _headers(self) -> Dict[str, str]:
        return {"accept": "application/json"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        merged_headers = {**self._headers(), **(headers or {})}
        last_error: Optional[Exception] = None

        for index, base_url in enumerate(self.base_urls):
            try:
                async with httpx.AsyncClient(
                    base_url=base_url,
                    timeout=self.timeout_s,
                    transport=self.transport,
                ) as client:
                    response = await client.request(
                        method, path, params=params, json=json, headers=merged_headers
                    )
                    response.raise_for_status()
                    return response
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code in (404, 405) and index < len(self.base_urls) - 1:
                    last_error = exc
                    continue
                raise classify_error(exc, provider=self.name) from exc
            except httpx.RequestError as exc:
                self.logger.warning(f"{self.name} request to {base_url}{path} failed: {exc}")
                last_error = exc
                continue

        if last_error is not None:
            raise classify_error(last_error, provider=self.name) from last_error
        raise ProviderError(f"All {self.name} hosts failed without providing an error response", provider=self.name)


def configured_base_urls(override: str, defaults: List[str]) -> List[str]:
    if override:
        return [override.rstrip("/")]
    return [url.rstrip("/") for url in defaults]
