from .models import (
    BridgeState,
    BridgeTransaction,
    InvalidTransitionError,
    NoActiveAccountError,
    StateTransition,
    TransactionNotFoundError,
)
from .state_machine import BridgeTransactionStateMachine
from .storage import InMemoryTransactionStorage, JsonFileTransactionStorage, TransactionStorage
from .store import BridgeTransactionStore

__all__ = [
    "BridgeState",
    "BridgeTransaction",
    "InvalidTransitionError",
    "NoActiveAccountError",
    "StateTransition",
    "TransactionNotFoundError",
    "BridgeTransactionStateMachine",
    "InMemoryTransactionStorage",
    "JsonFileTransactionStorage",
    "TransactionStorage",
    "BridgeTransactionStore",
]
