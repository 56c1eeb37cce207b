"""
Bridge Transaction Store

Per-owner transaction history with:
- owner isolation (reads and writes scoped to one lowercased address)
- per-transaction serialisation of state changes
- full-list persistence after every mutation, committed to memory only once stored
- bounded history (oldest finished records evicted first) and retention
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from .models import (
    BridgeState,
    BridgeTransaction,
    NoActiveAccountError,
    TransactionNotFoundError,
)
from .state_machine import BridgeTransactionStateMachine
from .storage import InMemoryTransactionStorage, TransactionStorage

TransactionsListener = Callable[[List[BridgeTransaction]], None]
ChangeListener = Callable[[BridgeTransaction], None]
RemovalListener = Callable[[List[str]], None]


def _newest_first(records: Iterable[BridgeTransaction]) -> List[BridgeTransaction]:
    return sorted(records, key=lambda tx: tx.created_at, reverse=True)


class BridgeTransactionStore:
    """Owns every persisted bridge transaction of the process."""

    def __init__(
        self,
        storage: Optional[TransactionStorage] = None,
        state_machine: Optional[BridgeTransactionStateMachine] = None,
        max_records: int = 50,
        retention_days: int = 30,
        logger: Optional[logging.Logger] = None,
    ):
        self.storage = storage or InMemoryTransactionStorage()
        self.state_machine = state_machine or BridgeTransactionStateMachine()
        self.max_records = max_records
        self.retention = timedelta(days=retention_days)
        self.logger = logger or logging.getLogger(__name__)

        self._records: Dict[str, Dict[str, BridgeTransaction]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._owner_locks: Dict[str, asyncio.Lock] = {}
        self._listeners: Dict[str, List[TransactionsListener]] = {}
        self._change_listeners: List[ChangeListener] = []
        self._removal_listeners: List[RemovalListener] = []
        self._active: Optional[str] = None

    # ==================== Accounts ====================

    @property
    def active_account(self) -> Optional[str]:
        return self._active

    async def set_active_account(self, address: Optional[str]) -> None:
        """Switch the account every unscoped read and write refers to."""
        self._active = address.lower() if address else None
        if self._active:
            await self.ensure_loaded(self._active)

    def _owner(self, owner: Optional[str]) -> str:
        resolved = owner.lower() if owner else self._active
        if not resolved:
            raise NoActiveAccountError()
        return resolved

    def _owner_lock(self, owner: str) -> asyncio.Lock:
        return self._owner_locks.setdefault(owner, asyncio.Lock())

    async def ensure_loaded(self, owner: str) -> None:
        owner = owner.lower()
        if owner in self._records:
            return

        documents = await self.storage.get(owner)
        if owner in self._records:
            # A concurrent load finished first and may already hold newer records
            return

        cutoff = datetime.now(timezone.utc) - self.retention
        records: Dict[str, BridgeTransaction] = {}
        expired = 0
        for doc in documents:
            try:
                tx = BridgeTransaction.from_dict(doc)
            except (KeyError, ValueError) as e:
                self.logger.warning(f"Skipping unreadable bridge record for {owner}: {e}")
                continue
            if tx.owner_address != owner:
                continue
            if tx.is_terminal and tx.created_at < cutoff:
                expired += 1
                continue
            records[tx.id] = tx

        self._records[owner] = records
        if expired:
            self.logger.info(f"Dropped {expired} bridge records older than {self.retention.days} days for {owner}")
            async with self._owner_lock(owner):
                await self._commit(owner, dict(self._records[owner]))

    # ==================== Reads ====================

    def list(self, owner: Optional[str] = None) -> List[BridgeTransaction]:
        """Owner's records, newest first. Empty without an active account."""
        resolved = owner.lower() if owner else self._active
        if not resolved:
            return []
        return _newest_first(self._records.get(resolved, {}).values())

    def get(self, transaction_id: str, owner: Optional[str] = None) -> Optional[BridgeTransaction]:
        resolved = owner.lower() if owner else self._active
        if not resolved:
            return None
        return self._records.get(resolved, {}).get(transaction_id)

    def pending(self, owner: Optional[str] = None) -> List[BridgeTransaction]:
        return [tx for tx in self.list(owner) if tx.is_pending]

    @property
    def pending_count(self) -> int:
        return len(self.pending())

    # ==================== Writes ====================

    async def create(
        self,
        *,
        source_chain: Any,
        dest_chain: Any,
        source_asset: Any,
        dest_asset: Any,
        from_amount: str,
        to_amount: str,
        provider_name: str,
        tool: Optional[str] = None,
        estimated_duration_seconds: Optional[int] = None,
        owner: Optional[str] = None,
    ) -> BridgeTransaction:
        """
        Create a record in state ``idle`` for ``owner`` (default: the active account).

        The owner is fixed before any await, so a concurrent account switch
        cannot move the record to someone else.

        Raises:
            NoActiveAccountError: no owner given and no active account is set
        """
        resolved = self._owner(owner)
        await self.ensure_loaded(resolved)

        tx = BridgeTransaction(
            owner_address=resolved,
            source_chain=source_chain,
            dest_chain=dest_chain,
            source_asset=source_asset,
            dest_asset=dest_asset,
            from_amount=from_amount,
            to_amount=to_amount,
            provider_name=provider_name,
            tool=tool,
            estimated_duration_seconds=estimated_duration_seconds,
        )

        async with self._owner_lock(resolved):
            records = dict(self._records[resolved])
            records[tx.id] = tx
            evicted = self._enforce_cap(resolved, records)
            await self._commit(resolved, records)

        self.logger.info(f"Created bridge {tx.id} for {resolved} via {provider_name}")
        self._removed(evicted)
        self._notify(resolved, tx)
        return tx

    async def transition(
        self,
        transaction_id: str,
        to_state: BridgeState,
        *,
        reason: Optional[str] = None,
        owner: Optional[str] = None,
        **fields: Any,
    ) -> BridgeTransaction:
        """
        Move one of the owner's records to ``to_state`` and persist.

        Raises:
            TransactionNotFoundError: the id is not one of the owner's records
            InvalidTransitionError: the lifecycle does not allow the change
        """
        resolved = self._owner(owner)
        lock = self._locks.setdefault(transaction_id, asyncio.Lock())

        async with lock:
            async with self._owner_lock(resolved):
                current = self._records.get(resolved, {}).get(transaction_id)
                if current is None:
                    raise TransactionNotFoundError(transaction_id)

                updated = self.state_machine.transition(current, to_state, reason=reason, **fields)
                records = dict(self._records[resolved])
                records[transaction_id] = updated
                await self._commit(resolved, records)

        self._notify(resolved, updated)
        return updated

    async def clear_history(self, owner: Optional[str] = None) -> int:
        """Drop the owner's finished records; pending ones are kept."""
        resolved = self._owner(owner)
        await self.ensure_loaded(resolved)

        async with self._owner_lock(resolved):
            finished = [tx_id for tx_id, tx in self._records[resolved].items() if tx.is_terminal]
            if finished:
                records = {
                    tx_id: tx for tx_id, tx in self._records[resolved].items() if tx_id not in finished
                }
                await self._commit(resolved, records)

        if finished:
            self._removed(finished)
            self._notify(resolved)
        return len(finished)

    def _enforce_cap(self, owner: str, records: Dict[str, BridgeTransaction]) -> List[str]:
        """Evict the oldest finished records from ``records``; returns the evicted ids."""
        overflow = len(records) - self.max_records
        if overflow <= 0:
            return []
        oldest_finished = sorted(
            (tx for tx in records.values() if tx.is_terminal),
            key=lambda tx: tx.created_at,
        )
        evicted = [tx.id for tx in oldest_finished[:overflow]]
        for tx_id in evicted:
            del records[tx_id]
        if len(records) > self.max_records:
            self.logger.warning(f"{owner} has {len(records)} bridge records, all pending; keeping them")
        return evicted

    async def _commit(self, owner: str, records: Dict[str, BridgeTransaction]) -> None:
        """Store ``records`` as the owner's full list, then make them current."""
        documents = [tx.to_dict() for tx in _newest_first(records.values())]
        await self.storage.put(owner, documents)
        self._records[owner] = records

    def _removed(self, transaction_ids: List[str]) -> None:
        if not transaction_ids:
            return
        for tx_id in transaction_ids:
            self._locks.pop(tx_id, None)
        for listener in list(self._removal_listeners):
            try:
                listener(list(transaction_ids))
            except Exception as e:
                self.logger.error(f"Removal listener error: {e}")

    # ==================== Subscriptions ====================

    def subscribe(self, owner: str, listener: TransactionsListener) -> Callable[[], None]:
        """Call ``listener`` with the owner's list after every change."""
        key = owner.lower()
        self._listeners.setdefault(key, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(key, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def add_change_listener(self, listener: ChangeListener) -> Callable[[], None]:
        """Call ``listener`` with each created or transitioned record, for every owner."""
        self._change_listeners.append(listener)

        def remove() -> None:
            if listener in self._change_listeners:
                self._change_listeners.remove(listener)

        return remove

    def add_removal_listener(self, listener: RemovalListener) -> Callable[[], None]:
        """Call ``listener`` with the ids dropped by ``clear_history`` or the history cap."""
        self._removal_listeners.append(listener)

        def remove() -> None:
            if listener in self._removal_listeners:
                self._removal_listeners.remove(listener)

        return remove

    def _notify(self, owner: str, changed: Optional[BridgeTransaction] = None) -> None:
        snapshot = self.list(owner)
        for listener in list(self._listeners.get(owner, [])):
            try:
                listener(snapshot)
            except Exception as e:
                self.logger.error(f"Transaction listener error: {e}")
        if changed is None:
            return
        for change_listener in list(self._change_listeners):
            try:
                change_listener(changed)
            except Exception as e:
                self.logger.error(f"Change listener error: {e}")
