"""
Bridge Transaction State Machine

Validates lifecycle transitions and produces the next immutable record.
Persistence and serialisation per transaction live in the store.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Optional, Set

from .models import BridgeState, BridgeTransaction, InvalidTransitionError, StateTransition

DEFAULT_FAILURE_MESSAGE = "Bridge transaction failed"

# Fields a transition may set on the record
MUTABLE_FIELDS: FrozenSet[str] = frozenset({
    "source_tx_hash",
    "approval_tx_hash",
    "dest_tx_hash",
    "dest_amount",
    "error",
})


class BridgeTransactionStateMachine:
    """
    Bridge lifecycle rules.

    completed and failed are terminal: nothing leaves them.
    """

    TRANSITIONS: Dict[BridgeState, Set[BridgeState]] = {
        BridgeState.IDLE: {
            BridgeState.CHECKING_APPROVAL,
        },
        BridgeState.CHECKING_APPROVAL: {
            BridgeState.AWAITING_APPROVAL,
            BridgeState.PENDING_SOURCE,  # Allowance already sufficient
            BridgeState.FAILED,
        },
        BridgeState.AWAITING_APPROVAL: {
            BridgeState.APPROVING,
        },
        BridgeState.APPROVING: {
            BridgeState.PENDING_SOURCE,
            BridgeState.FAILED,          # Rejected or reverted
        },
        BridgeState.PENDING_SOURCE: {
            BridgeState.BRIDGING,
            BridgeState.COMPLETED,       # First poll may already report DONE
            BridgeState.FAILED,
        },
        BridgeState.BRIDGING: {
            BridgeState.COMPLETED,
            BridgeState.FAILED,
        },
        BridgeState.COMPLETED: set(),
        BridgeState.FAILED: set(),
    }

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def can_transition(self, from_state: BridgeState, to_state: BridgeState) -> bool:
        return to_state in self.TRANSITIONS.get(from_state, set())

    def allowed_transitions(self, from_state: BridgeState) -> Set[BridgeState]:
        return set(self.TRANSITIONS.get(from_state, set()))

    def transition(
        self,
        record: BridgeTransaction,
        to_state: BridgeState,
        *,
        reason: Optional[str] = None,
        **fields: Any,
    ) -> BridgeTransaction:
        """
        Return ``record`` moved to ``to_state``.

        Raises:
            InvalidTransitionError: edge not in the table, or a field that
                only a completed record may carry
        """
        from_state = record.state
        if not self.can_transition(from_state, to_state):
            raise InvalidTransitionError(
                from_state=from_state,
                to_state=to_state,
                message=f"Invalid transition from {from_state.value} to {to_state.value}. "
                        f"Allowed: {sorted(s.value for s in self.allowed_transitions(from_state))}",
            )

        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot set {sorted(unknown)} on a bridge transaction")

        if fields.get("dest_tx_hash") and to_state != BridgeState.COMPLETED:
            raise InvalidTransitionError(
                from_state=from_state,
                to_state=to_state,
                message="Destination tx hash can only be recorded on completion",
            )

        now = datetime.now(timezone.utc)
        updates: Dict[str, Any] = {k: v for k, v in fields.items() if v is not None}

        if to_state == BridgeState.COMPLETED:
            updates["completed_at"] = now
            updates["error"] = None
        elif to_state == BridgeState.FAILED:
            updates["error"] = fields.get("error") or DEFAULT_FAILURE_MESSAGE

        step = StateTransition(from_state=from_state, to_state=to_state, timestamp=now, reason=reason)
        updated = replace(
            record,
            state=to_state,
            updated_at=now,
            history=record.history + (step,),
            **updates,
        )

        self.logger.info(
            f"Bridge {record.id}: {from_state.value} -> {to_state.value}"
            f"{f' ({reason})' if reason else ''}"
        )
        return updated
