"""
Bridge Status Poller

Tracks submitted bridges until the status provider reports a terminal
outcome or the polling budget runs out. One asyncio task per transaction.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from ...providers.base import StatusProvider, StatusResult, StatusValue
from .models import (
    BridgeState,
    BridgeTransaction,
    InvalidTransitionError,
    TransactionNotFoundError,
)
from .state_machine import DEFAULT_FAILURE_MESSAGE
from .store import BridgeTransactionStore


@dataclass
class PollTask:
    transaction_id: str
    owner: str
    started_at: float
    task: asyncio.Task


class StatusPollingScheduler:
    """
    Polls the status provider for every pending bridge.

    Polls once immediately, then every ``interval_seconds``; gives up after
    ``max_poll_seconds`` without touching the record. Provider errors are
    logged and the next tick tries again.
    """

    def __init__(
        self,
        store: BridgeTransactionStore,
        status_providers: Mapping[str, StatusProvider],
        default_provider: Optional[str] = None,
        interval_seconds: float = 15.0,
        max_poll_seconds: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        if not status_providers:
            raise ValueError("At least one status provider is required")
        self.store = store
        self.status_providers = dict(status_providers)
        self.default_provider = default_provider or next(iter(self.status_providers))
        self.interval_seconds = interval_seconds
        self.max_poll_seconds = max_poll_seconds
        self._clock = clock
        self._sleep = sleep
        self.logger = logger or logging.getLogger(__name__)
        self._tasks: Dict[str, PollTask] = {}

    # ==================== Task management ====================

    def start(self, tx: BridgeTransaction) -> bool:
        """Begin tracking ``tx``. Returns False when nothing was started."""
        if tx.id in self._tasks:
            return False
        if not tx.is_pollable:
            self.logger.debug(f"Not polling bridge {tx.id} in state {tx.state.value}")
            return False

        started_at = self._clock()
        task = asyncio.ensure_future(self._run(tx.id, tx.owner_address, started_at))
        self._tasks[tx.id] = PollTask(
            transaction_id=tx.id,
            owner=tx.owner_address,
            started_at=started_at,
            task=task,
        )
        task.add_done_callback(lambda _t, tx_id=tx.id: self._forget(tx_id, _t))
        self.logger.info(f"Polling bridge {tx.id} ({tx.source_tx_hash})")
        return True

    def _forget(self, transaction_id: str, task: asyncio.Task) -> None:
        current = self._tasks.get(transaction_id)
        if current is not None and current.task is task:
            del self._tasks[transaction_id]

    def stop(self, transaction_id: str) -> bool:
        entry = self._tasks.pop(transaction_id, None)
        if entry is None:
            return False
        entry.task.cancel()
        self.logger.info(f"Stopped polling bridge {transaction_id}")
        return True

    async def shutdown(self) -> None:
        """Cancel every poll task and wait for them to unwind."""
        entries = list(self._tasks.values())
        self._tasks.clear()
        for entry in entries:
            entry.task.cancel()
        if entries:
            await asyncio.gather(*(e.task for e in entries), return_exceptions=True)
        self.logger.info(f"Poller shut down ({len(entries)} tasks cancelled)")

    def is_polling(self, transaction_id: str) -> bool:
        return transaction_id in self._tasks

    @property
    def active_ids(self) -> List[str]:
        return list(self._tasks.keys())

    def resume_pending(self, owner: Optional[str] = None) -> int:
        """Start polling every pollable record of ``owner`` (default: active account)."""
        started = 0
        for tx in self.store.list(owner):
            if tx.is_pollable and self.start(tx):
                started += 1
        if started:
            self.logger.info(f"Resumed polling for {started} pending bridges")
        return started

    # ==================== Polling ====================

    async def _run(self, transaction_id: str, owner: str, started_at: float) -> None:
        while True:
            finished = await self._tick(transaction_id, owner)
            if finished:
                return

            await self._sleep(self.interval_seconds)

            elapsed = self._clock() - started_at
            if elapsed > self.max_poll_seconds:
                self.logger.warning(
                    f"Giving up polling bridge {transaction_id} after {elapsed:.0f}s; state left unchanged"
                )
                return

    async def poll_once(self, transaction_id: str, owner: Optional[str] = None) -> Optional[BridgeTransaction]:
        """Manual refresh: one status lookup outside the schedule."""
        resolved = owner.lower() if owner else self.store.active_account
        tx = self.store.get(transaction_id, resolved)
        if tx is None:
            raise TransactionNotFoundError(transaction_id)
        if tx.is_pollable:
            finished = await self._tick(transaction_id, tx.owner_address)
            if finished:
                self.stop(transaction_id)
        return self.store.get(transaction_id, tx.owner_address)

    def _provider_for(self, tx: BridgeTransaction) -> StatusProvider:
        return self.status_providers.get(tx.provider_name) or self.status_providers[self.default_provider]

    async def _tick(self, transaction_id: str, owner: str) -> bool:
        """One status lookup. True when polling should stop."""
        tx = self.store.get(transaction_id, owner)
        if tx is None or tx.is_terminal:
            return True
        if not tx.is_pollable:
            return False

        try:
            result = await self._provider_for(tx).get_status(
                tx.source_tx_hash,
                tx.source_chain,
                tx.dest_chain,
                provider_hint=tx.tool,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.warning(f"Status check for bridge {transaction_id} failed: {e}")
            return False

        try:
            return await self._apply(tx, result)
        except (InvalidTransitionError, TransactionNotFoundError) as e:
            # Another refresh may have moved the record first
            self.logger.warning(f"Cannot apply status {result.status.value} to bridge {transaction_id}: {e}")
            current = self.store.get(transaction_id, owner)
            return current is None or current.is_terminal
        except OSError as e:
            # Nothing was committed; the next tick re-applies the status
            self.logger.warning(f"Could not store status {result.status.value} for bridge {transaction_id}: {e}")
            return False

    async def _apply(self, tx: BridgeTransaction, result: StatusResult) -> bool:
        if result.status == StatusValue.DONE:
            await self.store.transition(
                tx.id,
                BridgeState.COMPLETED,
                reason="Provider reported DONE",
                owner=tx.owner_address,
                dest_tx_hash=result.dest_tx_hash,
                dest_amount=result.dest_amount,
            )
            return True

        if result.status == StatusValue.FAILED:
            await self.store.transition(
                tx.id,
                BridgeState.FAILED,
                reason="Provider reported FAILED",
                owner=tx.owner_address,
                error=result.substatus or DEFAULT_FAILURE_MESSAGE,
            )
            return True

        current = self.store.get(tx.id, tx.owner_address)
        if (
            result.status == StatusValue.PENDING
            and current is not None
            and current.state == BridgeState.PENDING_SOURCE
        ):
            await self.store.transition(
                tx.id,
                BridgeState.BRIDGING,
                reason=result.substatus or "Provider picked up the transfer",
                owner=tx.owner_address,
            )

        return False
