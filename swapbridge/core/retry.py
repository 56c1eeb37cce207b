"""
Retry Backoff

Delay schedule shared by the quote engine's automatic retries.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff capped at ``cap_seconds``; no jitter."""

    max_retries: int = 3
    base_seconds: float = 1.0
    cap_seconds: float = 8.0
    exponential_base: float = 2.0

    def get_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        delay = min(
            self.base_seconds * (self.exponential_base ** attempt),
            self.cap_seconds,
        )
        return max(delay, 0.0)

    def can_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries
