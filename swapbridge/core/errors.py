"""
Provider Error Classification

Every failure coming back from a quote or status provider is normalised into
a ``ProviderError`` carrying one of the error classes the quote engine
branches on. Transient classes are retried; the rest are surfaced at once.
"""

import re
from enum import Enum
from typing import Optional, Tuple

import httpx


class ProviderErrorClass(str, Enum):
    """Error classes the quote engine recognises."""

    RATE_LIMITED = "RATE_LIMITED"
    NO_ROUTE = "NO_ROUTE"
    AMOUNT_TOO_LOW = "AMOUNT_TOO_LOW"
    UNSUPPORTED_CHAIN = "UNSUPPORTED_CHAIN"
    INSUFFICIENT_LIQUIDITY = "INSUFFICIENT_LIQUIDITY"
    NETWORK = "NETWORK"      # Transport failure, no response
    TIMEOUT = "TIMEOUT"      # Provider did not answer in time
    UNKNOWN = "UNKNOWN"


RETRYABLE_CLASSES = frozenset({
    ProviderErrorClass.RATE_LIMITED,
    ProviderErrorClass.NETWORK,
    ProviderErrorClass.TIMEOUT,
})

# Precedence when several providers fail for the same request: the most
# actionable class is reported to the caller.
CLASS_PRIORITY = {
    ProviderErrorClass.AMOUNT_TOO_LOW: 0,
    ProviderErrorClass.INSUFFICIENT_LIQUIDITY: 1,
    ProviderErrorClass.NO_ROUTE: 2,
    ProviderErrorClass.UNSUPPORTED_CHAIN: 3,
    ProviderErrorClass.RATE_LIMITED: 4,
    ProviderErrorClass.TIMEOUT: 5,
    ProviderErrorClass.NETWORK: 6,
    ProviderErrorClass.UNKNOWN: 7,
}

USER_MESSAGES = {
    ProviderErrorClass.RATE_LIMITED: "Service is busy. Please try again shortly.",
    ProviderErrorClass.NO_ROUTE: "No route available for this swap. Try different tokens or chains.",
    ProviderErrorClass.AMOUNT_TOO_LOW: "Amount is below the minimum for this bridge",
    ProviderErrorClass.UNSUPPORTED_CHAIN: "This chain is not yet supported for bridging.",
    ProviderErrorClass.INSUFFICIENT_LIQUIDITY: "Insufficient liquidity for this route",
    ProviderErrorClass.NETWORK: "Unable to reach the quote provider. Please check your connection.",
    ProviderErrorClass.TIMEOUT: "The quote provider took too long to answer. Please try again.",
    ProviderErrorClass.UNKNOWN: "Unable to get quote. Please try again.",
}

# Bare error codes meaning "slow down" (HTTP 429, OKX 50011)
RATE_LIMIT_CODES = frozenset({"429", "50011"})

_MINIMUM_PATTERNS = (
    re.compile(r"minimal[:\s]+([0-9]+(?:\.[0-9]+)?)", re.IGNORECASE),
    re.compile(r"minimum[:\s]+([0-9]+(?:\.[0-9]+)?)", re.IGNORECASE),
    re.compile(r"at least[:\s]+([0-9]+(?:\.[0-9]+)?)", re.IGNORECASE),
    re.compile(r"\bmin[:\s]+([0-9]+(?:\.[0-9]+)?)", re.IGNORECASE),
)


class ProviderError(Exception):
    """A classified failure reported by (or while talking to) a provider."""

    def __init__(
        self,
        message: str,
        error_class: ProviderErrorClass = ProviderErrorClass.UNKNOWN,
        *,
        provider: Optional[str] = None,
        minimum_amount: Optional[str] = None,
        retry_after: Optional[float] = None,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_class = error_class
        self.provider = provider
        self.minimum_amount = minimum_amount
        self.retry_after = retry_after
        self.status_code = status_code
        # Provider-specific error code from the response body, when present
        self.code = code

    @property
    def retryable(self) -> bool:
        return self.error_class in RETRYABLE_CLASSES

    def __repr__(self) -> str:
        return (
            f"ProviderError({self.error_class.value}, {self.message!r}, "
            f"provider={self.provider!r}, minimum_amount={self.minimum_amount!r})"
        )


class RateLimitedError(ProviderError):
    """Provider answered with HTTP 429 or an equivalent throttling code."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        provider: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(
            message,
            ProviderErrorClass.RATE_LIMITED,
            provider=provider,
            retry_after=retry_after,
            status_code=429,
        )


class AmountTooLowError(ProviderError):
    """Requested amount is below the route minimum."""

    def __init__(
        self,
        message: str = "Amount too low",
        *,
        provider: Optional[str] = None,
        minimum_amount: Optional[str] = None,
    ):
        super().__init__(
            message,
            ProviderErrorClass.AMOUNT_TOO_LOW,
            provider=provider,
            minimum_amount=minimum_amount if minimum_amount is not None else extract_minimum_amount(message),
        )


def extract_minimum_amount(message: str) -> Optional[str]:
    """Pull a minimum amount such as ``"0.05"`` out of a provider message."""
    for pattern in _MINIMUM_PATTERNS:
        match = pattern.search(message or "")
        if match:
            return match.group(1)
    return None


def classify_message(message: str) -> ProviderErrorClass:
    """
    Classify a provider error message.

    Matches the wording used by Li.Fi, OKX, Jupiter and ChangeNow error
    bodies. The first matching class wins.
    """
    text = (message or "").lower().strip()

    rate_limit_patterns = ["rate limit", "too many requests", "throttl", "quota exceeded"]
    if text in RATE_LIMIT_CODES or any(p in text for p in rate_limit_patterns):
        return ProviderErrorClass.RATE_LIMITED

    no_route_patterns = [
        "no available quotes",
        "no_possible_route",
        "no route",
        "no routes",
        "could_not_find_any_route",
        "route not found",
        "pair_is_inactive",
    ]
    if any(p in text for p in no_route_patterns):
        return ProviderErrorClass.NO_ROUTE

    amount_patterns = [
        "amount_too_low",
        "amount too low",
        "deposit_too_small",
        "out_of_range",
        "minimum",
        "minimal",
        "at least",
        "too small",
    ]
    if any(p in text for p in amount_patterns):
        return ProviderErrorClass.AMOUNT_TOO_LOW

    liquidity_patterns = ["insufficient_liquidity", "insufficient liquidity", "not enough liquidity"]
    if any(p in text for p in liquidity_patterns):
        return ProviderErrorClass.INSUFFICIENT_LIQUIDITY

    chain_patterns = ["unsupported chain", "chain not supported", "not supported", "invalid chain"]
    if any(p in text for p in chain_patterns):
        return ProviderErrorClass.UNSUPPORTED_CHAIN

    timeout_patterns = ["timeout", "timed out", "deadline"]
    if any(p in text for p in timeout_patterns):
        return ProviderErrorClass.TIMEOUT

    network_patterns = ["connection", "network", "unreachable", "refused", "dns", "socket"]
    if any(p in text for p in network_patterns):
        return ProviderErrorClass.NETWORK

    return ProviderErrorClass.UNKNOWN


def _retry_after_header(response: httpx.Response) -> Optional[float]:
    raw = response.headers.get("retry-after")
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _response_detail(response: httpx.Response) -> Tuple[str, Optional[str]]:
    """Error message and provider error code from a JSON (or text) error body."""
    try:
        payload = response.json()
    except ValueError:
        return (response.text or "").strip(), None
    if not isinstance(payload, dict):
        return str(payload), None

    code = payload.get("code", payload.get("errorCode"))
    code = str(code) if code not in (None, "") else None
    for key in ("message", "error", "msg", "detail"):
        value = payload.get(key)
        if value:
            return str(value), code
    return code or str(payload), code


def classify_error(error: BaseException, provider: Optional[str] = None) -> ProviderError:
    """
    Normalise any exception raised while talking to a provider.

    ``ProviderError`` instances pass through untouched; httpx status and
    transport errors are mapped by status code first, then by message.
    """
    if isinstance(error, ProviderError):
        if provider and not error.provider:
            error.provider = provider
        return error

    if isinstance(error, httpx.TimeoutException):
        return ProviderError(str(error) or "Request timed out", ProviderErrorClass.TIMEOUT, provider=provider)

    if isinstance(error, httpx.TransportError):
        return ProviderError(str(error) or "Network error", ProviderErrorClass.NETWORK, provider=provider)

    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        detail, code = _response_detail(response)
        if response.status_code == 429:
            limited = RateLimitedError(
                detail or "Too many requests",
                provider=provider,
                retry_after=_retry_after_header(response),
            )
            limited.code = code
            return limited
        if code in RATE_LIMIT_CODES:
            error_class = ProviderErrorClass.RATE_LIMITED
        else:
            error_class = classify_message(detail)
            if error_class == ProviderErrorClass.UNKNOWN and code:
                error_class = classify_message(code)
        if error_class in (ProviderErrorClass.NETWORK, ProviderErrorClass.TIMEOUT) and response.status_code < 500:
            error_class = ProviderErrorClass.UNKNOWN
        return ProviderError(
            detail or f"HTTP {response.status_code}",
            error_class,
            provider=provider,
            minimum_amount=extract_minimum_amount(detail) if error_class == ProviderErrorClass.AMOUNT_TOO_LOW else None,
            status_code=response.status_code,
            code=code,
        )

    message = str(error)
    error_class = classify_message(message)
    return ProviderError(
        message or error.__class__.__name__,
        error_class,
        provider=provider,
        minimum_amount=extract_minimum_amount(message) if error_class == ProviderErrorClass.AMOUNT_TOO_LOW else None,
    )


def user_message(error: ProviderError) -> str:
    """Human-readable text surfaced to callers for a classified error."""
    return USER_MESSAGES.get(error.error_class, USER_MESSAGES[ProviderErrorClass.UNKNOWN])


def most_actionable(errors: list[ProviderError]) -> ProviderError:
    """Pick the error to report when every provider failed."""
    if not errors:
        return ProviderError("No provider returned a quote", ProviderErrorClass.NO_ROUTE)
    return min(errors, key=lambda e: CLASS_PRIORITY.get(e.error_class, len(CLASS_PRIORITY)))
