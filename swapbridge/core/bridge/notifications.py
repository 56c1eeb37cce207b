"""Completion and failure notices for bridge transactions."""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Set

from .models import BridgeState, BridgeTransaction

EXPLORER_TX_URLS: Dict[str, str] = {
    "1": "https://etherscan.io/tx/",
    "10": "https://optimistic.etherscan.io/tx/",
    "56": "https://bscscan.com/tx/",
    "137": "https://polygonscan.com/tx/",
    "324": "https://explorer.zksync.io/tx/",
    "8453": "https://basescan.org/tx/",
    "42161": "https://arbiscan.io/tx/",
    "43114": "https://snowtrace.io/tx/",
    "59144": "https://lineascan.build/tx/",
    "solana": "https://solscan.io/tx/",
}


def explorer_url(chain_id: Any, tx_hash: Optional[str]) -> Optional[str]:
    if not tx_hash:
        return None
    base = EXPLORER_TX_URLS.get(str(chain_id))
    return f"{base}{tx_hash}" if base else None


@dataclass(frozen=True)
class BridgeNotification:
    transaction_id: str
    owner_address: str
    state: BridgeState
    title: str
    body: str
    explorer_url: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transactionId": self.transaction_id,
            "ownerAddress": self.owner_address,
            "state": self.state.value,
            "title": self.title,
            "body": self.body,
            "explorerUrl": self.explorer_url,
            "createdAt": self.created_at.isoformat(),
        }


class BridgeNotifier:
    """Emits exactly one notice per transaction when it reaches a terminal state."""

    def __init__(self, max_recent: int = 100, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._notified: Set[str] = set()
        self._recent: Deque[BridgeNotification] = deque(maxlen=max_recent)
        self._sinks: List[Callable[[BridgeNotification], None]] = []

    def add_sink(self, sink: Callable[[BridgeNotification], None]) -> None:
        self._sinks.append(sink)

    def recent(self, owner: Optional[str] = None) -> List[BridgeNotification]:
        items = list(self._recent)
        if owner:
            items = [n for n in items if n.owner_address == owner.lower()]
        return items

    def forget(self, transaction_ids: Iterable[str]) -> None:
        """Store removal hook: dropped records can no longer change."""
        self._notified.difference_update(transaction_ids)

    def handle(self, tx: BridgeTransaction) -> Optional[BridgeNotification]:
        """Store change hook."""
        if not tx.is_terminal or tx.id in self._notified:
            return None
        self._notified.add(tx.id)

        route = f"{tx.source_asset.symbol} {tx.source_chain} -> {tx.dest_chain}".strip()
        if tx.state == BridgeState.COMPLETED:
            notification = BridgeNotification(
                transaction_id=tx.id,
                owner_address=tx.owner_address,
                state=tx.state,
                title="Bridge completed",
                body=f"Your {route} bridge has arrived.",
                explorer_url=explorer_url(tx.dest_chain, tx.dest_tx_hash)
                or explorer_url(tx.source_chain, tx.source_tx_hash),
            )
        else:
            notification = BridgeNotification(
                transaction_id=tx.id,
                owner_address=tx.owner_address,
                state=tx.state,
                title="Bridge failed",
                body=f"Your {route} bridge failed: {tx.error}",
                explorer_url=explorer_url(tx.source_chain, tx.source_tx_hash),
            )

        self._recent.append(notification)
        self.logger.info(f"{notification.title}: {tx.id}")
        for sink in list(self._sinks):
            try:
                sink(notification)
            except Exception as e:
                self.logger.error(f"Notification sink error: {e}")
        return notification
