"""
Bridge Submission

Drives one bridge from a settled quote to a submitted source transaction:

    idle -> checking-approval -> [awaiting-approval -> approving] -> pending-source

then hands the record to the status poller. Wallet work is delegated to a
``TransactionSigner``; any signer failure marks the record failed.
"""

import logging
from typing import Optional, Protocol

from ..quotes.models import Quote
from .models import BridgeState, BridgeTransaction
from .poller import StatusPollingScheduler
from .store import BridgeTransactionStore


class TransactionSigner(Protocol):
    """Wallet boundary. Implementations sign and broadcast; nothing here does."""

    async def has_sufficient_allowance(self, owner: str, quote: Quote) -> bool:
        ...

    async def approve(self, owner: str, quote: Quote) -> str:
        """Submit a token approval and return its tx hash."""
        ...

    async def send_source_transaction(self, owner: str, quote: Quote) -> str:
        """Submit the bridge transaction and return its tx hash."""
        ...


def _signer_error(exc: Exception, fallback: str) -> str:
    message = str(exc).strip()
    return message or fallback


class BridgeService:
    def __init__(
        self,
        store: BridgeTransactionStore,
        scheduler: StatusPollingScheduler,
        signer: Optional[TransactionSigner] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.signer = signer
        self.logger = logger or logging.getLogger(__name__)

    async def submit_bridge(self, quote: Quote, owner: Optional[str] = None) -> str:
        """
        Submit ``quote`` for ``owner`` (default: the active account).

        Returns the transaction id. Lifecycle failures are recorded on the
        transaction rather than raised.

        Raises:
            NoActiveAccountError: no owner given and no active account
            RuntimeError: no signer configured
        """
        if self.signer is None:
            raise RuntimeError("No transaction signer configured")
        tx = await self.store.create(
            owner=owner,
            source_chain=quote.from_asset.chain_id,
            dest_chain=quote.to_asset.chain_id,
            source_asset=quote.from_asset,
            dest_asset=quote.to_asset,
            from_amount=quote.from_amount,
            to_amount=quote.to_amount,
            provider_name=quote.provider_name,
            tool=quote.tool,
            estimated_duration_seconds=quote.estimated_duration_seconds,
        )
        owner_address = tx.owner_address

        tx = await self.store.transition(tx.id, BridgeState.CHECKING_APPROVAL, owner=owner_address)
        try:
            sufficient = await self.signer.has_sufficient_allowance(owner_address, quote)
        except Exception as e:
            self.logger.warning(f"Allowance check for bridge {tx.id} failed: {e}")
            await self._fail(tx, _signer_error(e, "Allowance check failed"))
            return tx.id

        approval_hash = None
        if not sufficient:
            tx = await self.store.transition(
                tx.id, BridgeState.AWAITING_APPROVAL, reason="Allowance too low", owner=owner_address
            )
            tx = await self.store.transition(
                tx.id, BridgeState.APPROVING, reason="Approval requested", owner=owner_address
            )
            try:
                approval_hash = await self.signer.approve(owner_address, quote)
            except Exception as e:
                self.logger.warning(f"Approval for bridge {tx.id} failed: {e}")
                await self._fail(tx, _signer_error(e, "Token approval was rejected"))
                return tx.id

        try:
            source_hash = await self.signer.send_source_transaction(owner_address, quote)
        except Exception as e:
            self.logger.warning(f"Source transaction for bridge {tx.id} failed: {e}")
            await self._fail(tx, _signer_error(e, "Source transaction failed"))
            return tx.id

        tx = await self.store.transition(
            tx.id,
            BridgeState.PENDING_SOURCE,
            reason="Source transaction submitted",
            owner=owner_address,
            source_tx_hash=source_hash,
            approval_tx_hash=approval_hash,
        )
        self.scheduler.start(tx)
        return tx.id

    async def _fail(self, tx: BridgeTransaction, error: str) -> None:
        await self.store.transition(tx.id, BridgeState.FAILED, reason=error, owner=tx.owner_address, error=error)

    async def refresh(self, transaction_id: str, owner: Optional[str] = None) -> Optional[BridgeTransaction]:
        """Manual status refresh; restarts polling for a pollable record that lost its task."""
        updated = await self.scheduler.poll_once(transaction_id, owner)
        if updated is not None and updated.is_pollable and not self.scheduler.is_polling(updated.id):
            self.scheduler.start(updated)
        return updated
