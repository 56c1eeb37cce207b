"""
Observable State

Small pub-sub holder used wherever callers subscribe to a changing value
(quote engine snapshots, per-owner transaction lists).
"""

import logging
from typing import Callable, Generic, List, Optional, TypeVar

T = TypeVar("T")

Listener = Callable[[T], None]


class StateManager(Generic[T]):
    """Holds the current value and notifies listeners synchronously on change."""

    def __init__(self, initial: T, logger: Optional[logging.Logger] = None):
        self._state = initial
        self._listeners: List[Listener] = []
        self.logger = logger or logging.getLogger(__name__)

    def get_state(self) -> T:
        return self._state

    def set_state(self, state: T) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                self.logger.error(f"State listener error: {e}")

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; the returned callable unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
