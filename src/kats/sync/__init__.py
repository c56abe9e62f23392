"""Checkpointed backfill and tail engine."""

from .backfill import BackfillController, BackfillResult
from .checkpoint import (
    CheckpointRegressionError,
    CheckpointRepository,
    CheckpointStore,
    FileCheckpointStore,
    InMemoryCheckpointStore,
)
from .dispatcher import PeriodicTrigger, SingleFlightDispatcher
from .metrics import SyncMetrics
from .publisher import (
    ALL_TRANSACTIONS,
    TransactionPublisher,
    is_publishable,
    routing_key,
)
from .state import BackfillState, TailState
from .tail import TailController, TailResult

__all__ = [
    "ALL_TRANSACTIONS",
    "BackfillController",
    "BackfillResult",
    "BackfillState",
    "CheckpointRegressionError",
    "CheckpointRepository",
    "CheckpointStore",
    "FileCheckpointStore",
    "InMemoryCheckpointStore",
    "PeriodicTrigger",
    "SingleFlightDispatcher",
    "SyncMetrics",
    "TailController",
    "TailResult",
    "TailState",
    "TransactionPublisher",
    "is_publishable",
    "routing_key",
]
