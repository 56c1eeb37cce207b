"""
Bridge Transaction Models

States, records and errors of the bridge transaction lifecycle.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union
from uuid import uuid4

from ..quotes.models import AssetRef

ChainId = Union[int, str]


class BridgeState(str, Enum):
    """States a bridge transaction moves through."""

    IDLE = "idle"                            # Created, nothing submitted yet
    CHECKING_APPROVAL = "checking-approval"  # Reading token allowance
    AWAITING_APPROVAL = "awaiting-approval"  # Allowance too low, waiting for the owner
    APPROVING = "approving"                  # Approval transaction submitted
    PENDING_SOURCE = "pending-source"        # Source transaction submitted
    BRIDGING = "bridging"                    # Provider has seen the transfer
    COMPLETED = "completed"                  # Funds delivered on the destination chain
    FAILED = "failed"                        # Terminal failure


TERMINAL_STATES = frozenset({BridgeState.COMPLETED, BridgeState.FAILED})
POLLABLE_STATES = frozenset({BridgeState.PENDING_SOURCE, BridgeState.BRIDGING})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class StateTransition:
    """Record of a state transition."""

    from_state: BridgeState
    to_state: BridgeState
    timestamp: datetime = field(default_factory=_utcnow)
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fromState": self.from_state.value,
            "toState": self.to_state.value,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StateTransition":
        return cls(
            from_state=BridgeState(data["fromState"]),
            to_state=BridgeState(data["toState"]),
            timestamp=_parse_dt(data.get("timestamp")) or _utcnow(),
            reason=data.get("reason"),
        )


@dataclass(frozen=True)
class BridgeTransaction:
    """
    One bridge submission owned by one account.

    Records are immutable; every lifecycle change produces a new record
    through the state machine.
    """

    owner_address: str
    source_chain: ChainId
    dest_chain: ChainId
    source_asset: AssetRef
    dest_asset: AssetRef
    from_amount: str
    to_amount: str
    provider_name: str
    id: str = field(default_factory=lambda: str(uuid4()))
    state: BridgeState = BridgeState.IDLE
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    source_tx_hash: Optional[str] = None
    approval_tx_hash: Optional[str] = None
    dest_tx_hash: Optional[str] = None
    dest_amount: Optional[str] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    tool: Optional[str] = None
    estimated_duration_seconds: Optional[int] = None
    history: Tuple[StateTransition, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "owner_address", self.owner_address.lower())

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_pending(self) -> bool:
        return not self.is_terminal

    @property
    def is_pollable(self) -> bool:
        return self.state in POLLABLE_STATES and bool(self.source_tx_hash)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ownerAddress": self.owner_address,
            "state": self.state.value,
            "sourceChain": self.source_chain,
            "destChain": self.dest_chain,
            "sourceAsset": self.source_asset.to_dict(),
            "destAsset": self.dest_asset.to_dict(),
            "fromAmount": self.from_amount,
            "toAmount": self.to_amount,
            "providerName": self.provider_name,
            "tool": self.tool,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "sourceTxHash": self.source_tx_hash,
            "approvalTxHash": self.approval_tx_hash,
            "destTxHash": self.dest_tx_hash,
            "destAmount": self.dest_amount,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
            "estimatedDurationSeconds": self.estimated_duration_seconds,
            "history": [t.to_dict() for t in self.history],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BridgeTransaction":
        return cls(
            id=data["id"],
            owner_address=data["ownerAddress"],
            state=BridgeState(data["state"]),
            source_chain=data["sourceChain"],
            dest_chain=data["destChain"],
            source_asset=AssetRef.from_dict(data["sourceAsset"]),
            dest_asset=AssetRef.from_dict(data["destAsset"]),
            from_amount=data["fromAmount"],
            to_amount=data["toAmount"],
            provider_name=data["providerName"],
            tool=data.get("tool"),
            created_at=_parse_dt(data.get("createdAt")) or _utcnow(),
            updated_at=_parse_dt(data.get("updatedAt")) or _utcnow(),
            source_tx_hash=data.get("sourceTxHash"),
            approval_tx_hash=data.get("approvalTxHash"),
            dest_tx_hash=data.get("destTxHash"),
            dest_amount=data.get("destAmount"),
            completed_at=_parse_dt(data.get("completedAt")),
            error=data.get("error"),
            estimated_duration_seconds=data.get("estimatedDurationSeconds"),
            history=tuple(StateTransition.from_dict(t) for t in data.get("history") or []),
        )


class InvalidTransitionError(Exception):
    """Raised when a state transition is not allowed."""

    def __init__(
        self,
        from_state: BridgeState,
        to_state: BridgeState,
        message: Optional[str] = None,
    ):
        self.from_state = from_state
        self.to_state = to_state
        self.message = message or f"Invalid transition from {from_state.value} to {to_state.value}"
        super().__init__(self.message)


class TransactionNotFoundError(Exception):
    """No transaction with this id belongs to the active account."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Bridge transaction {transaction_id} not found")


class NoActiveAccountError(Exception):
    """A write was attempted without an active account."""

    def __init__(self, message: str = "No active account"):
        super().__init__(message)
